"""Reference host for continuous state: a flat arena of float slots.

The host owns the continuous-state vector and its derivative. Components
only hold `StateHandle`s into it, obtained once when they are added to a
`HostSystem`. `HostState` is an immutable snapshot; every write returns a
new snapshot, so trial steps of an adaptive integrator never interfere.

The host supplies the right-hand side of the ODE (`HostSystem.vector_field`,
or `HostSystem.term` for diffrax); the time stepping itself is left to the
caller's integrator.

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field as dc_field
import logging
from typing import Any, Optional, Protocol

import diffrax as dfx
import equinox as eqx
from equinox import Module, field
import jax.numpy as jnp
from jaxtyping import Array, Float, PyTree, Scalar

from myotendon.errors import InvalidStateError, StateVariableNotFoundError


logger = logging.getLogger(__name__)


class StateHandle(Module):
    """Opaque, stable reference to one slot of the continuous-state vector.

    Attributes:
        index: Position of the slot in `HostState.y` and `HostState.ydot`.
        name: State variable name, unique within its owner.
        owner: Name of the component that declared the variable.
    """

    index: int = field(static=True)
    name: str = field(static=True)
    owner: str = field(static=True)

    @property
    def qualified_name(self) -> str:
        return f"{self.owner}.{self.name}"


class HostState(Module):
    """Snapshot of the continuous state at one time.

    Attributes:
        t: Simulation time.
        y: Values of all continuous state variables.
        ydot: Time derivatives of the same variables, in the same order.
    """

    t: Scalar = field(converter=jnp.asarray)
    y: Float[Array, " n"] = field(converter=jnp.asarray)
    ydot: Float[Array, " n"] = field(converter=jnp.asarray)

    def get_value(self, handle: StateHandle) -> Scalar:
        return self.y[handle.index]

    def set_value(self, handle: StateHandle, value) -> HostState:
        """Return a copy of the snapshot with one value slot replaced."""
        return eqx.tree_at(lambda s: s.y, self, self.y.at[handle.index].set(value))

    def get_derivative(self, handle: StateHandle) -> Scalar:
        return self.ydot[handle.index]

    def set_derivative(self, handle: StateHandle, value) -> HostState:
        """Return a copy of the snapshot with one derivative slot replaced."""
        return eqx.tree_at(
            lambda s: s.ydot, self, self.ydot.at[handle.index].set(value)
        )

    def with_time(self, t) -> HostState:
        return eqx.tree_at(lambda s: s.t, self, jnp.asarray(t))

    def with_values(self, y) -> HostState:
        return eqx.tree_at(lambda s: s.y, self, jnp.asarray(y))


class StatefulComponent(Protocol):
    """What the host needs from a component that owns continuous state."""

    name: str

    def declare_state_variables(self, system: HostSystem) -> Any: ...

    def init_state_from_properties(self, state: HostState) -> HostState: ...

    def compute_state_variable_derivatives(self, state: HostState) -> HostState: ...


@dataclass
class _VariableSpec:
    owner: str
    name: str
    initial_value: float


@dataclass(eq=False)
class HostSystem:
    """Construction-time registry of continuous state variables.

    Components are added once; each declares its variables through
    `declare_continuous_variable` and keeps the returned handles. The layout
    is frozen by the first call to `init_state` or `vector_field`, after
    which no variables may be declared.
    """

    _variables: list[_VariableSpec] = dc_field(default_factory=list)
    _index: dict[tuple[str, str], int] = dc_field(default_factory=dict)
    _registered_owners: set[str] = dc_field(default_factory=set)
    _components: dict[str, StatefulComponent] = dc_field(default_factory=dict)
    _frozen: bool = False

    def begin_registration(self, owner: str, names: Sequence[str] = ()) -> None:
        """Mark `owner` as registered; a second registration is an error.

        `names` are the variables `owner` is about to declare. All of them are
        checked before anything is recorded, so a rejected registration leaves
        the layout unchanged.
        """
        if self._frozen:
            raise InvalidStateError(
                f"Cannot register '{owner}': the state layout is already frozen"
            )
        if owner in self._registered_owners:
            raise InvalidStateError(
                f"'{owner}' has already declared its state variables with this system"
            )
        taken = [name for name in names if (owner, name) in self._index]
        if taken:
            raise InvalidStateError(
                f"State variables already declared for '{owner}': {', '.join(taken)}"
            )
        self._registered_owners.add(owner)

    def declare_continuous_variable(
        self,
        owner: str,
        name: str,
        initial_value: float,
    ) -> StateHandle:
        """Append a continuous state variable and return its handle."""
        if self._frozen:
            raise InvalidStateError(
                f"Cannot declare '{owner}.{name}': the state layout is already frozen"
            )
        key = (owner, name)
        if key in self._index:
            raise InvalidStateError(f"State variable '{owner}.{name}' already declared")
        index = len(self._variables)
        self._variables.append(_VariableSpec(owner, name, float(initial_value)))
        self._index[key] = index
        logger.debug(f"Declared state variable {owner}.{name} at index {index}")
        return StateHandle(index=index, name=name, owner=owner)

    def add_component(self, component: StatefulComponent):
        """Register `component` and return its copy bound to this system."""
        registered = component.declare_state_variables(self)
        self._components[registered.name] = registered
        return registered

    def component(self, name: str) -> StatefulComponent:
        try:
            return self._components[name]
        except KeyError:
            raise StateVariableNotFoundError(f"No component named '{name}'") from None

    def handle(self, owner: str, name: str) -> StateHandle:
        """Look up a handle by qualified name. Prefer caching the result."""
        try:
            index = self._index[(owner, name)]
        except KeyError:
            raise StateVariableNotFoundError(f"No state variable '{owner}.{name}'") from None
        return StateHandle(index=index, name=name, owner=owner)

    @property
    def variable_names(self) -> tuple[str, ...]:
        return tuple(f"{v.owner}.{v.name}" for v in self._variables)

    @property
    def size(self) -> int:
        return len(self._variables)

    def init_state(self, t: float = 0.0) -> HostState:
        """Materialize a state snapshot seeded from component properties."""
        self._frozen = True
        y0 = jnp.asarray([v.initial_value for v in self._variables], dtype=float)
        state = HostState(t=t, y=y0, ydot=jnp.zeros_like(y0))
        for component in self._components.values():
            state = component.init_state_from_properties(state)
        return state

    def vector_field(self, t: Scalar, y: Float[Array, " n"], args: Optional[PyTree]) -> Float[Array, " n"]:
        """ODE right-hand side over all registered components."""
        self._frozen = True
        state = HostState(t=t, y=y, ydot=jnp.zeros_like(y))
        for component in self._components.values():
            state = component.compute_state_variable_derivatives(state)
        return state.ydot

    def term(self) -> dfx.ODETerm:
        """Wrap `vector_field` for use with `diffrax.diffeqsolve`."""
        return dfx.ODETerm(self.vector_field)  # type: ignore[arg-type]
