"""Exceptions raised by muscle state bookkeeping and the equilibrium solve.

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

from __future__ import annotations


class InvalidArgumentError(ValueError):
    """A configuration value was rejected. The previous value is kept."""


class InvalidStateError(RuntimeError):
    """A lifecycle method was called out of order, e.g. double registration."""


class StateVariableNotFoundError(KeyError):
    """The requested state variable name is not declared by the component."""


class EquilibriumError(RuntimeError):
    """Base class for failures of the initial fiber equilibrium solve."""


class EquilibriumNotFoundError(EquilibriumError):
    """No sign change of fiber velocity could be bracketed in the valid domain."""


class ConvergenceFailureError(EquilibriumError):
    """The root finder ran out of steps before meeting its tolerance."""


class NumericalError(FloatingPointError):
    """Raised by force laws when their equations are ill-posed at a state."""
