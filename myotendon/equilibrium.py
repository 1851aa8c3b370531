"""Bracketed root finding for the initial fiber equilibrium.

The equilibrium condition is a zero of a scalar function of fiber length
(the fiber velocity implied by force balance, with activation and path
length held fixed). The zero is first bracketed by expanding an interval
around the starting length, then refined with an `optimistix` root finder.

Failures are reported as a tagged `EquilibriumResult` rather than raised, so
that callers can choose their own fallback; `EquilibriumResult.raise_for_status`
converts a failure into the matching exception.

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import Enum
import logging
import math
from typing import Any, Optional

from equinox import Module, field
import jax.numpy as jnp
from jaxtyping import Array, Scalar
import optimistix as optx

from myotendon.errors import (
    ConvergenceFailureError,
    EquilibriumNotFoundError,
    InvalidArgumentError,
)


logger = logging.getLogger(__name__)


class EquilibriumStatus(Enum):
    SUCCESS = "success"
    EQUILIBRIUM_NOT_FOUND = "equilibrium_not_found"
    CONVERGENCE_FAILURE = "convergence_failure"


class EquilibriumConfig(Module):
    """Tolerances and work limits of the equilibrium solve.

    Attributes:
        rtol: Relative tolerance on the fiber length passed to the root finder.
        atol: Absolute tolerance passed to the root finder.
        max_steps: Maximum number of root finder iterations.
        max_bracket_expansions: Maximum number of interval expansions while
            searching for a sign change.
        initial_bracket_fraction: Half-width of the first probe interval, as a
            fraction of the starting fiber length.
    """

    rtol: float = 1e-10
    atol: float = 1e-10
    max_steps: int = field(default=256, static=True)
    max_bracket_expansions: int = field(default=40, static=True)
    initial_bracket_fraction: float = 0.1

    def __check_init__(self):
        for name in ("rtol", "atol", "initial_bracket_fraction"):
            value = getattr(self, name)
            if not (math.isfinite(value) and value > 0):
                raise InvalidArgumentError(f"{name} must be positive and finite, got {value}")
        for name in ("max_steps", "max_bracket_expansions"):
            value = getattr(self, name)
            if int(value) != value or value < 1:
                raise InvalidArgumentError(f"{name} must be a positive integer, got {value}")

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> EquilibriumConfig:
        """Build a config from a mapping such as a parsed YAML section."""
        known = {"rtol", "atol", "max_steps", "max_bracket_expansions", "initial_bracket_fraction"}
        unknown = set(mapping) - known
        if unknown:
            raise InvalidArgumentError(
                f"Unknown equilibrium config keys: {', '.join(sorted(unknown))}"
            )
        return cls(**dict(mapping))


class EquilibriumResult(Module):
    """Outcome of an equilibrium solve.

    Attributes:
        status: Whether the solve succeeded, and if not, how it failed.
        fiber_length: The converged fiber length on success; otherwise the
            last iterate (or the starting length if no bracket was found).
        fiber_velocity: Fiber velocity evaluated at `fiber_length`.
        num_steps: Root finder iterations taken.
        bracket: The interval handed to the root finder, if one was found.
        message: Human-readable description of a failure.
    """

    status: EquilibriumStatus = field(static=True)
    fiber_length: float
    fiber_velocity: float
    num_steps: int = field(static=True, default=0)
    bracket: Optional[tuple[float, float]] = field(static=True, default=None)
    message: str = field(static=True, default="")

    @property
    def succeeded(self) -> bool:
        return self.status is EquilibriumStatus.SUCCESS

    def raise_for_status(self) -> None:
        if self.status is EquilibriumStatus.EQUILIBRIUM_NOT_FOUND:
            raise EquilibriumNotFoundError(self.message)
        if self.status is EquilibriumStatus.CONVERGENCE_FAILURE:
            raise ConvergenceFailureError(self.message)


def _changes_sign(f_a: float, f_b: float) -> bool:
    if not (math.isfinite(f_a) and math.isfinite(f_b)):
        return False
    return f_a == 0.0 or f_b == 0.0 or (f_a < 0.0) != (f_b < 0.0)


def bracket_root(
    fn: Callable[[float], Any],
    start: float,
    lower_bound: float,
    upper_bound: float,
    config: EquilibriumConfig,
    *,
    f_start: Optional[float] = None,
) -> Optional[tuple[float, float]]:
    """Expand an interval around `start` until `fn` changes sign across it.

    Probes move away from `start` by a step that doubles on every expansion.
    Near a bound, a probe instead halves its distance to the bound, so all
    probes stay strictly inside `(lower_bound, upper_bound)`.

    Returns:
        The bracketing interval, or `None` if no sign change was detected
        within `config.max_bracket_expansions` expansions.
    """
    if f_start is None:
        f_start = float(fn(start))
    if not math.isfinite(f_start):
        return None

    step = config.initial_bracket_fraction * max(abs(start), config.atol)

    for k in range(config.max_bracket_expansions):
        width = step * 2.0**k
        shrink = 0.5 ** (k + 1)

        lower = max(start - width, lower_bound + (start - lower_bound) * shrink)
        if _changes_sign(float(fn(lower)), f_start):
            logger.debug(f"Bracketed root in [{lower}, {start}] after {k + 1} expansions")
            return lower, start

        if math.isinf(upper_bound):
            upper = start + width
        else:
            upper = min(start + width, upper_bound - (upper_bound - start) * shrink)
        if _changes_sign(f_start, float(fn(upper))):
            logger.debug(f"Bracketed root in [{start}, {upper}] after {k + 1} expansions")
            return start, upper

    return None


def solve_fiber_equilibrium(
    fn: Callable[[Array], Scalar],
    start: float,
    lower_bound: float = 0.0,
    upper_bound: float = math.inf,
    config: Optional[EquilibriumConfig] = None,
    root_finder: Optional[optx.AbstractRootFinder] = None,
) -> EquilibriumResult:
    """Find a fiber length at which `fn` (the fiber velocity) is zero.

    Args:
        fn: Fiber velocity as a function of candidate fiber length. Must be
            traceable by JAX.
        start: Fiber length at which the search starts.
        lower_bound: Exclusive lower bound of the valid domain.
        upper_bound: Exclusive upper bound of the valid domain.
        config: Tolerances and work limits.
        root_finder: Root finder for the refinement step. Defaults to
            `optx.Bisection` with the config's tolerances.

    Returns:
        A tagged result; this function does not raise on numerical failure.
    """
    if config is None:
        config = EquilibriumConfig()

    start = float(start)
    if not (math.isfinite(start) and lower_bound < start < upper_bound):
        return EquilibriumResult(
            status=EquilibriumStatus.EQUILIBRIUM_NOT_FOUND,
            fiber_length=start,
            fiber_velocity=math.nan,
            message=(
                f"Starting fiber length {start} is outside the valid domain "
                f"({lower_bound}, {upper_bound})"
            ),
        )

    f_start = float(fn(jnp.asarray(start)))
    if f_start == 0.0:
        return EquilibriumResult(
            status=EquilibriumStatus.SUCCESS,
            fiber_length=start,
            fiber_velocity=0.0,
            bracket=(start, start),
        )

    bracket = bracket_root(
        lambda x: fn(jnp.asarray(x)), start, lower_bound, upper_bound, config, f_start=f_start
    )
    if bracket is None:
        message = (
            f"No sign change of fiber velocity found in ({lower_bound}, {upper_bound}) "
            f"after {config.max_bracket_expansions} expansions from {start}"
        )
        logger.warning(message)
        return EquilibriumResult(
            status=EquilibriumStatus.EQUILIBRIUM_NOT_FOUND,
            fiber_length=start,
            fiber_velocity=f_start,
            message=message,
        )

    lower, upper = bracket
    # A probe may land exactly on the root; bisection needs a strict sign change.
    for endpoint in bracket:
        if endpoint != start and float(fn(jnp.asarray(endpoint))) == 0.0:
            return EquilibriumResult(
                status=EquilibriumStatus.SUCCESS,
                fiber_length=endpoint,
                fiber_velocity=0.0,
                bracket=bracket,
            )

    if root_finder is None:
        root_finder = optx.Bisection(rtol=config.rtol, atol=config.atol)

    sol = optx.root_find(
        lambda y, args: fn(y),
        root_finder,
        jnp.asarray(0.5 * (lower + upper)),
        options=dict(lower=lower, upper=upper),
        max_steps=config.max_steps,
        throw=False,
    )
    fiber_length = float(sol.value)
    fiber_velocity = float(fn(sol.value))
    num_steps = int(sol.stats["num_steps"])

    if not bool(sol.result == optx.RESULTS.successful):
        message = (
            f"Root finder did not converge within {config.max_steps} steps "
            f"in [{lower}, {upper}]; last iterate {fiber_length}"
        )
        logger.warning(message)
        return EquilibriumResult(
            status=EquilibriumStatus.CONVERGENCE_FAILURE,
            fiber_length=fiber_length,
            fiber_velocity=fiber_velocity,
            num_steps=num_steps,
            bracket=bracket,
            message=message,
        )

    logger.debug(f"Fiber equilibrium at {fiber_length} after {num_steps} steps")
    return EquilibriumResult(
        status=EquilibriumStatus.SUCCESS,
        fiber_length=fiber_length,
        fiber_velocity=fiber_velocity,
        num_steps=num_steps,
        bracket=bracket,
    )
