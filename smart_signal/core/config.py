"""
Controller Configuration

Immutable, validated value object handed to the controller at construction.
Reading files or the environment is the job of ``utils.config_loader``.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


DEFAULT_LANES = ('north', 'west', 'south', 'east')

DEFAULT_SENSOR_MAP = {
    'sensor1': 'north',
    'sensor2': 'west',
    'sensor3': 'south',
    'sensor4': 'east',
}

# Duration/distance fields, in validation and rendering order
_MAGNITUDE_FIELDS = (
    'detection_threshold_cm',
    'presence_timeout_ms',
    'min_green_ms',
    'max_green_ms',
    'yellow_ms',
    'max_red_ms',
    'hold_after_clear_ms',
    'vehicle_presence_grace_ms',
)

# camelCase names sent by field devices and used in snapshots
_CAMEL_NAMES = {
    'lanes': 'lanes',
    'sensor_map': 'sensorMap',
    'detection_threshold_cm': 'detectionThresholdCm',
    'presence_timeout_ms': 'presenceTimeoutMs',
    'min_green_ms': 'minGreenMs',
    'max_green_ms': 'maxGreenMs',
    'yellow_ms': 'yellowMs',
    'max_red_ms': 'maxRedMs',
    'hold_after_clear_ms': 'holdAfterClearMs',
    'vehicle_presence_grace_ms': 'vehiclePresenceGraceMs',
}


class ConfigError(ValueError):
    """Raised when a controller configuration fails validation."""
    pass


@dataclass(frozen=True)
class ControllerConfig:
    """
    Timing and topology configuration for one intersection.

    All durations are milliseconds, distances are centimetres.
    """
    lanes: Tuple[str, ...] = DEFAULT_LANES
    sensor_map: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_SENSOR_MAP))
    detection_threshold_cm: float = 13.6
    presence_timeout_ms: float = 10_000
    min_green_ms: float = 8_000
    max_green_ms: float = 20_000
    yellow_ms: float = 3_000
    max_red_ms: float = 60_000
    hold_after_clear_ms: float = 2_000
    vehicle_presence_grace_ms: float = 4_000

    def __post_init__(self):
        if isinstance(self.lanes, (str, bytes)) or not isinstance(self.lanes, Sequence):
            raise ConfigError(f"lanes must be a list of lane identifiers, got {self.lanes!r}")
        if not isinstance(self.sensor_map, Mapping):
            raise ConfigError(f"sensor_map must be a mapping of sensor id to lane id, got {self.sensor_map!r}")

        # Freeze the containers so the config can be shared and hashed
        object.__setattr__(self, 'lanes', tuple(self.lanes))
        object.__setattr__(self, 'sensor_map', MappingProxyType(dict(self.sensor_map)))
        self.validate()

    def __hash__(self):
        return hash((self.lanes, frozenset(self.sensor_map.items()))
                    + tuple(getattr(self, name) for name in _MAGNITUDE_FIELDS))

    def validate(self) -> None:
        """
        Validate lane topology and timing values.

        Raises:
            ConfigError: If any value is out of range or inconsistent
        """
        if len(self.lanes) < 2:
            raise ConfigError(f"At least two lanes are required, got {list(self.lanes)}")

        if len(set(self.lanes)) != len(self.lanes):
            raise ConfigError(f"Lane identifiers must be unique: {list(self.lanes)}")

        for lane_id in self.lanes:
            if not isinstance(lane_id, str) or not lane_id:
                raise ConfigError(f"Lane identifiers must be non-empty strings, got {lane_id!r}")

        for name in _MAGNITUDE_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value) or value < 0:
                raise ConfigError(f"{name} must be a non-negative finite number, got {value!r}")

        if self.min_green_ms > self.max_green_ms:
            raise ConfigError(
                f"min_green_ms ({self.min_green_ms}) cannot exceed max_green_ms ({self.max_green_ms})"
            )

        unknown = sorted(
            f"{sensor_id}->{lane_id}"
            for sensor_id, lane_id in self.sensor_map.items()
            if lane_id not in self.lanes
        )
        if unknown:
            raise ConfigError(f"sensor_map points at unconfigured lanes: {unknown}")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]] = None) -> 'ControllerConfig':
        """
        Create a ControllerConfig from a dictionary.

        Accepts snake_case keys as well as the camelCase keys used by the
        field devices. Missing keys keep their defaults.

        Raises:
            ConfigError: If the resulting configuration is invalid
        """
        data = dict(data or {})
        kwargs: Dict[str, Any] = {}
        for name, camel in _CAMEL_NAMES.items():
            if name in data:
                kwargs[name] = data[name]
            elif camel in data:
                kwargs[name] = data[camel]

        for name in _MAGNITUDE_FIELDS:
            if name in kwargs and isinstance(kwargs[name], str):
                try:
                    kwargs[name] = float(kwargs[name])
                except ValueError:
                    raise ConfigError(f"{name} must be a number, got {kwargs[name]!r}")

        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ConfigError(str(e)) from e

    def replace(self, **changes) -> 'ControllerConfig':
        """Return a copy with some fields changed (validated again)."""
        data = self.to_dict(camel_case=False)
        data.update(changes)
        return ControllerConfig.from_dict(data)

    def to_dict(self, camel_case: bool = True) -> Dict[str, Any]:
        """Convert to dictionary."""
        values = {
            'lanes': list(self.lanes),
            'sensor_map': dict(self.sensor_map),
        }
        for name in _MAGNITUDE_FIELDS:
            values[name] = getattr(self, name)

        if not camel_case:
            return values
        return {_CAMEL_NAMES[name]: value for name, value in values.items()}
