"""
:copyright: Copyright 2023-2024 by MLL <mll@mll.bio>.
:license: Apache 2.0, see LICENSE for details.
"""

import importlib.metadata
import logging
import os

from myotendon.equilibrium import (
    EquilibriumConfig,
    EquilibriumResult,
    EquilibriumStatus,
    bracket_root,
    solve_fiber_equilibrium,
)
from myotendon.errors import (
    ConvergenceFailureError,
    EquilibriumError,
    EquilibriumNotFoundError,
    InvalidArgumentError,
    InvalidStateError,
    NumericalError,
    StateVariableNotFoundError,
)
from myotendon.host import HostState, HostSystem, StateHandle
from myotendon.muscle import (
    STATE_ACTIVATION_NAME,
    STATE_FIBER_LENGTH_NAME,
    AbstractActivationFiberLengthMuscle,
    MuscleLifecycle,
    MuscleStateHandles,
)
from myotendon.path import AbstractMusclePath, ConstantPath, PrescribedPath


__version__ = importlib.metadata.version("myotendon")


if os.environ.get("MYOTENDON_DEBUG", False) == "True":
    DEFAULT_LOG_LEVEL = "DEBUG"
else:
    DEFAULT_LOG_LEVEL = "INFO"

LOG_LEVEL = os.environ.get("MYOTENDON_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()


logger = logging.getLogger(__package__)
logger.addHandler(logging.NullHandler())
