"""Hill-type muscle with an elastic tendon in series with the fiber.

The fiber and tendon carry the same force. Given activation, fiber length
and path length, the tendon force is known, and the fiber velocity is the
one at which the fiber's force-velocity multiplier makes the fiber force
match it:

    F_tendon = F0 * (a * fl(l) * fv(v) + fpe(l))

Pennation is not modeled.

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from equinox import Module, field
import jax.numpy as jnp
from jaxtyping import Array, Scalar

from myotendon.curves import (
    ActivationDynamics,
    ForceLengthCurve,
    ForceVelocityCurve,
    PassiveForceLengthCurve,
    TendonForceLengthCurve,
)
from myotendon.equilibrium import EquilibriumConfig
from myotendon.errors import InvalidArgumentError
from myotendon.host import HostState
from myotendon.muscle import DEFAULT_ACTIVATION, AbstractActivationFiberLengthMuscle
from myotendon.path import AbstractMusclePath


logger = logging.getLogger(__name__)


class HillMuscleParams(Module):
    """Physical parameters for a Hill-type muscle.

    Attributes:
        max_isometric_force: Peak force at optimal length [N].
        optimal_fiber_length: Length at which peak force is produced [m].
        tendon_slack_length: Unstretched tendon length [m].
        max_contraction_velocity: Maximum shortening velocity [optimal lengths/s].
        min_norm_fiber_length: Shortest allowed fiber length [optimal lengths].
        max_norm_fiber_length: Longest allowed fiber length [optimal lengths].
        tau_activation: Activation time constant [s].
        tau_deactivation: Deactivation time constant [s].
        min_activation: Floor applied to activation in the force balance,
            keeping the force-velocity inversion well defined.
    """

    max_isometric_force: float
    optimal_fiber_length: float
    tendon_slack_length: float
    max_contraction_velocity: float = 10.0
    min_norm_fiber_length: float = 0.2
    max_norm_fiber_length: float = 2.0
    tau_activation: float = 0.01
    tau_deactivation: float = 0.04
    min_activation: float = field(default=0.01, static=True)

    def __check_init__(self):
        for name in (
            "max_isometric_force",
            "optimal_fiber_length",
            "tendon_slack_length",
            "max_contraction_velocity",
            "min_norm_fiber_length",
            "max_norm_fiber_length",
            "tau_activation",
            "tau_deactivation",
        ):
            value = getattr(self, name)
            if not (math.isfinite(value) and value > 0):
                raise InvalidArgumentError(f"{name} must be positive and finite, got {value}")
        if self.max_norm_fiber_length <= self.min_norm_fiber_length:
            raise InvalidArgumentError(
                "max_norm_fiber_length must exceed min_norm_fiber_length"
            )
        if not 0.0 < self.min_activation < 1.0:
            raise InvalidArgumentError(
                f"min_activation must be in (0, 1), got {self.min_activation}"
            )


class CompliantTendonHillMuscle(AbstractActivationFiberLengthMuscle):
    """Two-state Hill muscle driven by a constant excitation.

    Attributes:
        params: Physical muscle parameters.
        path: Provides the musculotendon length.
        excitation: Neural excitation in [0, 1].
        activation_dynamics: Excitation-to-activation dynamics, built from
            the time constants in `params`.
        force_length: Active force-length curve.
        passive_force_length: Passive force-length curve.
        force_velocity: Force-velocity curve.
        tendon_force_length: Tendon force-length curve.
    """

    params: HillMuscleParams
    path: AbstractMusclePath
    excitation: float
    activation_dynamics: ActivationDynamics
    force_length: ForceLengthCurve
    passive_force_length: PassiveForceLengthCurve
    force_velocity: ForceVelocityCurve
    tendon_force_length: TendonForceLengthCurve

    def __init__(
        self,
        name: str,
        params: HillMuscleParams,
        path: AbstractMusclePath,
        excitation: float = 0.0,
        default_activation: float = DEFAULT_ACTIVATION,
        default_fiber_length: Optional[float] = None,
        equilibrium_config: Optional[EquilibriumConfig] = None,
    ):
        """Initialize a compliant tendon muscle.

        Args:
            name: Unique name of the muscle within a host system.
            params: Physical muscle parameters.
            path: Musculotendon path.
            excitation: Constant neural excitation in [0, 1].
            default_activation: Activation assumed when none is assigned.
            default_fiber_length: Fiber length assumed when none is
                assigned. Defaults to the optimal fiber length.
            equilibrium_config: Tolerances of the equilibrium solve.
        """
        if not 0.0 <= excitation <= 1.0:
            raise InvalidArgumentError(f"excitation must be in [0, 1], got {excitation}")

        self.params = params
        self.path = path
        self.excitation = excitation
        self.activation_dynamics = ActivationDynamics(
            tau_activation=params.tau_activation,
            tau_deactivation=params.tau_deactivation,
        )
        self.force_length = ForceLengthCurve()
        self.passive_force_length = PassiveForceLengthCurve()
        self.force_velocity = ForceVelocityCurve()
        self.tendon_force_length = TendonForceLengthCurve()

        if default_fiber_length is None:
            default_fiber_length = params.optimal_fiber_length

        super().__init__(
            name,
            default_activation=default_activation,
            default_fiber_length=default_fiber_length,
            equilibrium_config=equilibrium_config,
        )

    def _validate_default_activation(self, value) -> float:
        value = super()._validate_default_activation(value)
        if not 0.0 < value <= 1.0:
            raise InvalidArgumentError(f"default_activation must be in (0, 1], got {value}")
        return value

    @property
    def min_fiber_length(self) -> float:
        return self.params.min_norm_fiber_length * self.params.optimal_fiber_length

    @property
    def max_fiber_length(self) -> float:
        return self.params.max_norm_fiber_length * self.params.optimal_fiber_length

    def fiber_length_bounds(self, state: HostState) -> tuple[float, float]:
        # Past path length minus slack the tendon is slack and the fiber can only shorten.
        slack_limit = float(self.path.length(state)) - self.params.tendon_slack_length
        return self.min_fiber_length, min(self.max_fiber_length, slack_limit)

    def compute_tendon_force(self, state: HostState, fiber_length: Array) -> Scalar:
        """Tendon force [N] when the fiber has length `fiber_length`."""
        tendon_length = self.path.length(state) - fiber_length
        norm_force = self.tendon_force_length(tendon_length / self.params.tendon_slack_length)
        return self.params.max_isometric_force * norm_force

    def calc_activation_rate(self, state: HostState) -> Scalar:
        return self.activation_dynamics(jnp.asarray(self.excitation), self.get_activation(state))

    def calc_fiber_velocity(
        self,
        state: HostState,
        activation: Array,
        fiber_length: Array,
    ) -> Scalar:
        p = self.params
        norm_length = fiber_length / p.optimal_fiber_length
        norm_tendon_force = self.compute_tendon_force(state, fiber_length) / p.max_isometric_force

        afl = jnp.maximum(activation, p.min_activation) * self.force_length(norm_length)
        # Prevent division by zero
        afl = jnp.maximum(afl, 1e-6)
        fv = (norm_tendon_force - self.passive_force_length(norm_length)) / afl

        norm_velocity = self.force_velocity.inverse(fv)
        return norm_velocity * p.max_contraction_velocity * p.optimal_fiber_length

    def calc_fiber_force(
        self,
        state: HostState,
        activation: Array,
        fiber_length: Array,
        fiber_velocity: Array,
    ) -> Scalar:
        p = self.params
        norm_length = fiber_length / p.optimal_fiber_length
        norm_velocity = fiber_velocity / (p.max_contraction_velocity * p.optimal_fiber_length)

        fl = self.force_length(norm_length)
        fv = self.force_velocity(norm_velocity)
        passive = self.passive_force_length(norm_length)

        return p.max_isometric_force * (activation * fl * fv + passive)
