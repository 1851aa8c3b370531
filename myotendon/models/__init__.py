"""Concrete force laws built on the two-state muscle base.

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

from myotendon.models.compliant_tendon import CompliantTendonHillMuscle, HillMuscleParams

__all__ = [
    "CompliantTendonHillMuscle",
    "HillMuscleParams",
]
