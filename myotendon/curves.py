"""Normalized Hill-type muscle curves and activation dynamics.

All curves act on normalized quantities: fiber length over optimal fiber
length, tendon length over tendon slack length, and fiber velocity over
maximum contraction velocity (so that -1 is the fastest shortening).

Key references:
- Hill (1938): The heat of shortening and dynamic constants of muscle
- Zajac (1989): Muscle and tendon: properties, models, scaling
- Thelen (2003): Adjustment of muscle mechanics model parameters

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

from __future__ import annotations

from equinox import Module
import jax.numpy as jnp
from jaxtyping import Array


class ForceLengthCurve(Module):
    """Gaussian active force-length multiplier, equal to 1 at optimal length."""

    width: float = 0.56

    def __call__(self, norm_length: Array) -> Array:
        return jnp.exp(-(((norm_length - 1.0) / self.width) ** 2))


def _exponential_toe(strain: Array, strain_at_one: float, stiffness: float) -> Array:
    # Zero when slack, 1 at `strain_at_one`.
    return jnp.where(
        strain > 0,
        (jnp.exp(stiffness * strain / strain_at_one) - 1.0) / (jnp.exp(stiffness) - 1.0),
        0.0,
    )


class PassiveForceLengthCurve(Module):
    """Passive fiber force, rising exponentially beyond optimal length.

    Attributes:
        strain_at_one_norm_force: Fiber strain at which the passive force
            equals the maximum isometric force.
        stiffness: Shape factor of the exponential.
    """

    strain_at_one_norm_force: float = 0.7
    stiffness: float = 4.0

    def __call__(self, norm_length: Array) -> Array:
        return _exponential_toe(norm_length - 1.0, self.strain_at_one_norm_force, self.stiffness)


class ForceVelocityCurve(Module):
    """Force-velocity relationship for muscle fibers.

    Shortening follows the Hill hyperbola, which reaches zero force at the
    maximum contraction velocity. Lengthening rises from 1 towards
    `eccentric_force_max`, with the same slope at zero velocity as the
    shortening branch, so the curve is smooth and strictly increasing.

    Attributes:
        concentric_curvature: Hill's a/F0 for the shortening branch.
        eccentric_force_max: Asymptotic normalized force during lengthening.
    """

    concentric_curvature: float = 0.25
    eccentric_force_max: float = 1.4

    @property
    def _eccentric_scale(self) -> float:
        # Matches the slope of the concentric branch at zero velocity.
        slope = 1.0 + 1.0 / self.concentric_curvature
        return (self.eccentric_force_max - 1.0) / slope

    def __call__(self, norm_velocity: Array) -> Array:
        """Compute force-velocity multiplier.

        Args:
            norm_velocity: Fiber velocity / max contraction velocity.
                Negative = shortening, positive = lengthening.

        Returns:
            Force multiplier.
        """
        a = self.concentric_curvature
        b = self._eccentric_scale
        fmax = self.eccentric_force_max
        shortening = jnp.minimum(norm_velocity, 0.0)
        lengthening = jnp.maximum(norm_velocity, 0.0)
        concentric = (1.0 + shortening) / (1.0 - shortening / a)
        eccentric = fmax - (fmax - 1.0) * b / (b + lengthening)
        return jnp.where(norm_velocity <= 0, jnp.maximum(concentric, 0.0), eccentric)

    def inverse(self, multiplier: Array) -> Array:
        """Normalized fiber velocity at which the curve equals `multiplier`.

        `multiplier` is clipped to the curve's range `[0, eccentric_force_max)`.
        """
        a = self.concentric_curvature
        b = self._eccentric_scale
        fmax = self.eccentric_force_max
        fv = jnp.clip(multiplier, 0.0, fmax * (1.0 - 1e-6))
        concentric_fv = jnp.minimum(fv, 1.0)
        eccentric_fv = jnp.maximum(fv, 1.0)
        concentric = (concentric_fv - 1.0) / (1.0 + concentric_fv / a)
        eccentric = (fmax - 1.0) * b / (fmax - eccentric_fv) - b
        return jnp.where(fv <= 1.0, concentric, eccentric)


class TendonForceLengthCurve(Module):
    """Normalized tendon force as a function of tendon length over slack length."""

    strain_at_one_norm_force: float = 0.033
    stiffness: float = 35.0

    def __call__(self, norm_length: Array) -> Array:
        return _exponential_toe(norm_length - 1.0, self.strain_at_one_norm_force, self.stiffness)

    def inverse(self, norm_force: Array) -> Array:
        """Tendon length over slack length at which the force is `norm_force`."""
        strain = jnp.where(
            norm_force > 0,
            (self.strain_at_one_norm_force / self.stiffness)
            * jnp.log(1.0 + norm_force * (jnp.exp(self.stiffness) - 1.0)),
            0.0,
        )
        return 1.0 + strain


class ActivationDynamics(Module):
    """Rate of change of activation towards the excitation.

    Activation rises with `tau_activation` and decays with `tau_deactivation`.
    """

    tau_activation: float = 0.01
    tau_deactivation: float = 0.04

    def __call__(self, excitation: Array, activation: Array) -> Array:
        tau = jnp.where(excitation > activation, self.tau_activation, self.tau_deactivation)
        return (excitation - activation) / tau
