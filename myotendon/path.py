"""Musculotendon path collaborators.

Path geometry (routing, wrapping) is not modeled here. A muscle only needs
the total path length and its rate of change at a host state, so a path is
anything that can answer those two queries.

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable
import logging

from equinox import Module, field
import jax
import jax.numpy as jnp
from jaxtyping import Array, Scalar

from myotendon.host import HostState


logger = logging.getLogger(__name__)


class AbstractMusclePath(Module):
    """Total musculotendon length as seen by a muscle."""

    @abstractmethod
    def length(self, state: HostState) -> Scalar:
        """Musculotendon path length [m] at `state`."""
        ...

    @abstractmethod
    def lengthening_speed(self, state: HostState) -> Scalar:
        """Rate of change of the path length [m/s]. Negative = shortening."""
        ...


class ConstantPath(AbstractMusclePath):
    """A path whose length does not change, e.g. a clamped muscle."""

    path_length: float

    def length(self, state: HostState) -> Scalar:
        return jnp.asarray(self.path_length)

    def lengthening_speed(self, state: HostState) -> Scalar:
        return jnp.zeros(())


class PrescribedPath(AbstractMusclePath):
    """A path whose length is a given function of simulation time.

    Attributes:
        length_fn: Maps time [s] to path length [m]. Must be differentiable
            by JAX; the lengthening speed is its time derivative.
    """

    length_fn: Callable[[Array], Array] = field(static=True)

    def length(self, state: HostState) -> Scalar:
        return self.length_fn(state.t)

    def lengthening_speed(self, state: HostState) -> Scalar:
        t = jnp.asarray(state.t, dtype=float)
        _, speed = jax.jvp(self.length_fn, (t,), (jnp.ones_like(t),))
        return speed
