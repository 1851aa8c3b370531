"""Persist the default properties of two-state muscles as YAML.

A muscle contributes exactly two named fields, `default_activation` and
`default_fiber_length`. Restored values pass through the muscle's validated
setters, so a stored value the muscle would reject is reported as an
`InvalidArgumentError` at load time.

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Any, TextIO, TypeVar

from ruamel.yaml import YAML

from myotendon.errors import InvalidArgumentError
from myotendon.muscle import AbstractActivationFiberLengthMuscle


logger = logging.getLogger(__name__)


PROPERTY_NAMES = ("default_activation", "default_fiber_length")

MuscleT = TypeVar("MuscleT", bound=AbstractActivationFiberLengthMuscle)


def get_yaml_loader(typ: str = "safe") -> YAML:
    yaml = YAML(typ=typ)
    yaml.default_flow_style = False
    return yaml


def muscle_properties(muscle: AbstractActivationFiberLengthMuscle) -> dict[str, float]:
    """Return the serializable properties of `muscle`."""
    return {
        "default_activation": float(muscle.get_default_activation()),
        "default_fiber_length": float(muscle.get_default_fiber_length()),
    }


def apply_properties(muscle: MuscleT, properties: Mapping[str, Any]) -> MuscleT:
    """Return a copy of `muscle` with the given properties set.

    Missing keys keep the muscle's current value.
    """
    unknown = set(properties) - set(PROPERTY_NAMES)
    if unknown:
        raise InvalidArgumentError(
            f"Unknown properties for muscle '{muscle.name}': {', '.join(sorted(unknown))}"
        )
    if "default_activation" in properties:
        muscle = muscle.set_default_activation(properties["default_activation"])
    if "default_fiber_length" in properties:
        muscle = muscle.set_default_fiber_length(properties["default_fiber_length"])
    return muscle


def dump_properties(muscle: AbstractActivationFiberLengthMuscle, stream: TextIO) -> None:
    """Write the properties of `muscle` to `stream` as a YAML mapping."""
    get_yaml_loader().dump(muscle_properties(muscle), stream)


def load_properties(muscle: MuscleT, stream: TextIO | str) -> MuscleT:
    """Read a YAML mapping of properties and apply it to `muscle`."""
    properties = get_yaml_loader().load(stream) or {}
    if not isinstance(properties, Mapping):
        raise InvalidArgumentError(
            f"Expected a mapping of muscle properties, got {type(properties).__name__}"
        )
    logger.debug(f"Loaded properties for muscle '{muscle.name}': {dict(properties)}")
    return apply_properties(muscle, properties)
