"""Two-state muscle: activation and fiber length as continuous state.

`AbstractActivationFiberLengthMuscle` registers its two state variables with
a `HostSystem`, routes the force law's rates into the host's derivative
slots, and can place the fiber in static equilibrium before integration
starts. The force law itself (activation dynamics, force-length-velocity
relationships, tendon) is left to subclasses.

Lifecycle of a muscle relative to one host system:

1. Unregistered: constructed, holds only its default properties.
2. Registered: `declare_state_variables` (normally via
   `HostSystem.add_component`) returned a copy holding cached handles.
3. Initialized: `HostSystem.init_state` seeded the slots from the defaults.
4. Equilibrated (optional): `compute_initial_fiber_equilibrium`.
5. Integrating: the host calls `compute_state_variable_derivatives`.

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

from __future__ import annotations

from abc import abstractmethod
from enum import Enum
import logging
import math
from typing import ClassVar, Optional

import equinox as eqx
from equinox import Module, field
import optimistix as optx
from jaxtyping import Array, Scalar

from myotendon.equilibrium import (
    EquilibriumConfig,
    EquilibriumResult,
    solve_fiber_equilibrium,
)
from myotendon.errors import (
    InvalidArgumentError,
    InvalidStateError,
    StateVariableNotFoundError,
)
from myotendon.host import HostState, HostSystem, StateHandle


logger = logging.getLogger(__name__)


STATE_ACTIVATION_NAME = "activation"
STATE_FIBER_LENGTH_NAME = "fiber_length"

DEFAULT_ACTIVATION = 0.05
DEFAULT_FIBER_LENGTH = 0.1


class MuscleLifecycle(Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"


class MuscleStateHandles(Module):
    """Cached handles of the two continuous state variables, in declaration order."""

    activation: StateHandle
    fiber_length: StateHandle


def _finite_float(name: str, value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"{name} must be a real number, got {value!r}") from e
    if not math.isfinite(value):
        raise InvalidArgumentError(f"{name} must be finite, got {value}")
    return value


class AbstractActivationFiberLengthMuscle(Module):
    """Base class for muscles with activation and fiber length states.

    Subclasses provide the force law through `calc_activation_rate`,
    `calc_fiber_velocity` and `calc_fiber_force`, and may narrow the valid
    fiber length domain by overriding `min_fiber_length`,
    `max_fiber_length` and `fiber_length_bounds`.

    Attributes:
        name: Unique name of the muscle within a host system.
        default_activation: Activation assumed when none is assigned.
        default_fiber_length: Fiber length [m] assumed unless otherwise assigned.
        equilibrium_config: Tolerances and limits of the equilibrium solve.
        handles: Cached state handles; `None` until registration.
    """

    STATE_ACTIVATION_NAME: ClassVar[str] = STATE_ACTIVATION_NAME
    STATE_FIBER_LENGTH_NAME: ClassVar[str] = STATE_FIBER_LENGTH_NAME

    name: str = field(static=True)
    default_activation: float
    default_fiber_length: float
    equilibrium_config: EquilibriumConfig
    handles: Optional[MuscleStateHandles]

    def __init__(
        self,
        name: str,
        default_activation: float = DEFAULT_ACTIVATION,
        default_fiber_length: float = DEFAULT_FIBER_LENGTH,
        equilibrium_config: Optional[EquilibriumConfig] = None,
    ):
        """Initialize the muscle's properties.

        Subclasses should assign their own fields before calling this, since
        the default values are validated against the subclass's ranges.

        Args:
            name: Unique name of the muscle within a host system.
            default_activation: Activation assumed when none is assigned.
            default_fiber_length: Fiber length assumed when none is assigned.
            equilibrium_config: Tolerances and limits of the equilibrium
                solve. Defaults to `EquilibriumConfig()`.
        """
        if not isinstance(name, str) or not name:
            raise InvalidArgumentError(f"Muscle name must be a non-empty string, got {name!r}")
        self.name = name
        self.default_activation = self._validate_default_activation(default_activation)
        self.default_fiber_length = self._validate_default_fiber_length(default_fiber_length)
        if equilibrium_config is None:
            equilibrium_config = EquilibriumConfig()
        self.equilibrium_config = equilibrium_config
        self.handles = None

    # ------------------------------------------------------------------
    # Force law
    # ------------------------------------------------------------------

    @abstractmethod
    def calc_activation_rate(self, state: HostState) -> Scalar:
        """Time derivative of activation at `state`."""
        ...

    @abstractmethod
    def calc_fiber_velocity(
        self,
        state: HostState,
        activation: Array,
        fiber_length: Array,
    ) -> Scalar:
        """Fiber velocity [m/s] implied by force balance.

        Everything other than activation and fiber length (path length,
        excitation, time) is read from `state`. The equilibrium solve
        evaluates this at candidate fiber lengths that differ from the
        stored one, so implementations must use the arguments rather than
        reading these two quantities back from `state`.
        """
        ...

    @abstractmethod
    def calc_fiber_force(
        self,
        state: HostState,
        activation: Array,
        fiber_length: Array,
        fiber_velocity: Array,
    ) -> Scalar:
        """Force [N] developed by the fiber at the given conditions."""
        ...

    @property
    def min_fiber_length(self) -> float:
        """Exclusive lower bound of the physically valid fiber length."""
        return 0.0

    @property
    def max_fiber_length(self) -> float:
        """Exclusive upper bound of the physically valid fiber length."""
        return math.inf

    def fiber_length_bounds(self, state: HostState) -> tuple[float, float]:
        """Exclusive bounds of the fiber length domain searched for equilibrium.

        Subclasses whose upper limit depends on the configuration (such as
        the current path length) narrow it here.
        """
        return self.min_fiber_length, self.max_fiber_length

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def _validate_default_activation(self, value) -> float:
        return _finite_float("default_activation", value)

    def _validate_default_fiber_length(self, value) -> float:
        value = _finite_float("default_fiber_length", value)
        if not self.min_fiber_length < value < self.max_fiber_length:
            raise InvalidArgumentError(
                f"default_fiber_length must be in ({self.min_fiber_length}, "
                f"{self.max_fiber_length}), got {value}"
            )
        return value

    def get_default_activation(self) -> float:
        return self.default_activation

    def set_default_activation(self, activation: float) -> AbstractActivationFiberLengthMuscle:
        """Return a copy with a new default activation."""
        activation = self._validate_default_activation(activation)
        return eqx.tree_at(lambda m: m.default_activation, self, activation)

    def get_default_fiber_length(self) -> float:
        return self.default_fiber_length

    def set_default_fiber_length(self, length: float) -> AbstractActivationFiberLengthMuscle:
        """Return a copy with a new default fiber length."""
        length = self._validate_default_fiber_length(length)
        return eqx.tree_at(lambda m: m.default_fiber_length, self, length)

    def with_equilibrium_config(self, config: EquilibriumConfig) -> AbstractActivationFiberLengthMuscle:
        return eqx.tree_at(lambda m: m.equilibrium_config, self, config)

    # ------------------------------------------------------------------
    # State variables
    # ------------------------------------------------------------------

    @classmethod
    def state_variable_names(cls) -> tuple[str, str]:
        """Names of the continuous state variables, in declaration order."""
        return (STATE_ACTIVATION_NAME, STATE_FIBER_LENGTH_NAME)

    @property
    def lifecycle(self) -> MuscleLifecycle:
        if self.handles is None:
            return MuscleLifecycle.UNREGISTERED
        return MuscleLifecycle.REGISTERED

    def declare_state_variables(self, system: HostSystem) -> AbstractActivationFiberLengthMuscle:
        """Declare activation, then fiber length, with `system`.

        Returns:
            A copy of this muscle holding the handles of its two slots.
        """
        if self.handles is not None:
            raise InvalidStateError(f"Muscle '{self.name}' has already declared its state variables")
        system.begin_registration(self.name, self.state_variable_names())
        handles = MuscleStateHandles(
            activation=system.declare_continuous_variable(
                self.name, STATE_ACTIVATION_NAME, self.default_activation
            ),
            fiber_length=system.declare_continuous_variable(
                self.name, STATE_FIBER_LENGTH_NAME, self.default_fiber_length
            ),
        )
        logger.debug(
            f"Muscle '{self.name}' registered state at indices "
            f"{handles.activation.index}, {handles.fiber_length.index}"
        )
        return eqx.tree_at(lambda m: m.handles, self, handles, is_leaf=lambda x: x is None)

    def _require_handles(self) -> MuscleStateHandles:
        if self.handles is None:
            raise InvalidStateError(
                f"Muscle '{self.name}' has not declared its state variables with a host system"
            )
        return self.handles

    def resolve_handle(self, name: str) -> StateHandle:
        """Return the cached handle of the state variable called `name`."""
        handles = self._require_handles()
        if name == STATE_ACTIVATION_NAME:
            return handles.activation
        if name == STATE_FIBER_LENGTH_NAME:
            return handles.fiber_length
        raise StateVariableNotFoundError(
            f"Muscle '{self.name}' has no state variable '{name}'; "
            f"expected one of {self.state_variable_names()}"
        )

    def state_variable_system_index(self, name: str) -> int:
        """Index of the state variable `name` in the host's state vector."""
        return self.resolve_handle(name).index

    def _check_owned(self, handle: StateHandle) -> None:
        if handle.owner != self.name:
            raise InvalidArgumentError(
                f"Muscle '{self.name}' cannot write state variable '{handle.qualified_name}'"
            )

    def get_value(self, state: HostState, handle: StateHandle) -> Scalar:
        return state.get_value(handle)

    def set_value(self, state: HostState, handle: StateHandle, value) -> HostState:
        """Write one of this muscle's value slots outside of integration."""
        self._check_owned(handle)
        return state.set_value(handle, value)

    def get_activation(self, state: HostState) -> Scalar:
        return state.get_value(self._require_handles().activation)

    def set_activation(self, state: HostState, activation) -> HostState:
        return self.set_value(state, self._require_handles().activation, activation)

    def get_fiber_length(self, state: HostState) -> Scalar:
        return state.get_value(self._require_handles().fiber_length)

    def set_fiber_length(self, state: HostState, fiber_length) -> HostState:
        return self.set_value(state, self._require_handles().fiber_length, fiber_length)

    def init_state_from_properties(self, state: HostState) -> HostState:
        """Seed both value slots from the default properties."""
        state = self.set_activation(state, self.default_activation)
        return self.set_fiber_length(state, self.default_fiber_length)

    def set_properties_from_state(self, state: HostState) -> AbstractActivationFiberLengthMuscle:
        """Return a copy whose defaults are the current values in `state`."""
        muscle = self.set_default_activation(self.get_activation(state))
        return muscle.set_default_fiber_length(self.get_fiber_length(state))

    # ------------------------------------------------------------------
    # Derivatives
    # ------------------------------------------------------------------

    def compute_state_variable_derivatives(self, state: HostState) -> HostState:
        """Write activation rate and fiber velocity into the derivative slots.

        Only the derivative side of `state` changes. Nothing is cached
        between calls, so repeated calls on one snapshot agree exactly.
        """
        handles = self._require_handles()
        activation_rate = self.calc_activation_rate(state)
        fiber_velocity = self.calc_fiber_velocity(
            state,
            state.get_value(handles.activation),
            state.get_value(handles.fiber_length),
        )
        state = state.set_derivative(handles.activation, activation_rate)
        return state.set_derivative(handles.fiber_length, fiber_velocity)

    def get_state_variable_derivative(self, state: HostState, name: str) -> Scalar:
        return state.get_derivative(self.resolve_handle(name))

    def get_activation_rate(self, state: HostState) -> Scalar:
        return state.get_derivative(self._require_handles().activation)

    def compute_actuation(self, state: HostState) -> Scalar:
        """Fiber force at `state`, moving at its force-balance velocity."""
        activation = self.get_activation(state)
        fiber_length = self.get_fiber_length(state)
        fiber_velocity = self.calc_fiber_velocity(state, activation, fiber_length)
        return self.calc_fiber_force(state, activation, fiber_length, fiber_velocity)

    # ------------------------------------------------------------------
    # Equilibrium
    # ------------------------------------------------------------------

    def solve_initial_fiber_equilibrium(
        self,
        state: HostState,
        root_finder: Optional[optx.AbstractRootFinder] = None,
    ) -> EquilibriumResult:
        """Search for the fiber length with zero fiber velocity.

        Activation and path length are held at their values in `state`. The
        search starts from the stored fiber length. `state` is not modified.
        """
        activation = self.get_activation(state)
        lower, upper = self.fiber_length_bounds(state)

        def fiber_velocity(fiber_length):
            return self.calc_fiber_velocity(state, activation, fiber_length)

        return solve_fiber_equilibrium(
            fiber_velocity,
            float(self.get_fiber_length(state)),
            lower_bound=float(lower),
            upper_bound=float(upper),
            config=self.equilibrium_config,
            root_finder=root_finder,
        )

    def compute_initial_fiber_equilibrium(self, state: HostState) -> HostState:
        """Return `state` with the fiber in static equilibrium.

        Raises:
            EquilibriumNotFoundError: No root could be bracketed in the valid
                fiber length domain.
            ConvergenceFailureError: The root finder hit its step limit.
        """
        result = self.solve_initial_fiber_equilibrium(state)
        result.raise_for_status()
        return self.set_fiber_length(state, result.fiber_length)

    def compute_isometric_force(self, state: HostState, activation) -> Scalar:
        """Force at the stored fiber length and zero fiber velocity.

        `activation` is hypothetical; the activation stored in `state` is
        not read or changed.
        """
        fiber_length = self.get_fiber_length(state)
        return self.calc_fiber_force(state, activation, fiber_length, 0.0 * fiber_length)
