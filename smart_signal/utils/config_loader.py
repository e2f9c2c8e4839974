"""
Configuration Loader with Hot-Reload Support
"""

import copy
import json
import logging
import os
from typing import Dict, Any, Mapping, Optional

from ..core.config import ControllerConfig, ConfigError, DEFAULT_LANES, DEFAULT_SENSOR_MAP

log = logging.getLogger(__name__)

# Environment variables understood by the field deployment -> config keys
ENV_OVERRIDES = {
    'DETECTION_THRESHOLD_CM': 'controller.detection_threshold_cm',
    'PRESENCE_TIMEOUT_MS': 'controller.presence_timeout_ms',
    'MIN_GREEN_MS': 'controller.min_green_ms',
    'MAX_GREEN_MS': 'controller.max_green_ms',
    'YELLOW_MS': 'controller.yellow_ms',
    'MAX_RED_MS': 'controller.max_red_ms',
    'HOLD_AFTER_CLEAR_MS': 'controller.hold_after_clear_ms',
    'VEHICLE_PRESENCE_GRACE_MS': 'controller.vehicle_presence_grace_ms',
    # Older firmware name; applied last so it wins
    'VEHICLE_GAP_HOLD_MS': 'controller.vehicle_presence_grace_ms',
    'TICK_INTERVAL_MS': 'ticker.interval_ms',
}


class ConfigLoader:
    """
    Load and monitor configuration file for changes.

    Supports hot-reload by checking file modification time. Numeric
    environment overrides from ``ENV_OVERRIDES`` are applied on every load.
    """

    def __init__(self, config_path='config.json', environ: Optional[Mapping[str, str]] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to JSON configuration file
            environ: Environment mapping for overrides (default os.environ)
        """
        self.config_path = config_path
        self._environ = os.environ if environ is None else environ
        self._config: Dict[str, Any] = {}
        self._last_modified: Optional[float] = None
        self._load()

    def _load(self):
        """Load configuration from file."""
        try:
            with open(self.config_path, 'r') as f:
                loaded = json.load(f)
            if not isinstance(loaded, dict):
                raise json.JSONDecodeError("top level must be an object", "", 0)

            # Update last modified time
            self._last_modified = os.path.getmtime(self.config_path)
            self._config = _merge(self._get_default_config(), loaded)
            # ControllerConfig carries its own defaults and accepts camelCase keys
            if isinstance(loaded.get('controller'), dict):
                self._config['controller'] = copy.deepcopy(loaded['controller'])

            log.info("Configuration loaded", extra={"config_path": str(self.config_path)})

        except FileNotFoundError:
            log.warning("Config file not found, using defaults", extra={"config_path": str(self.config_path)})
            self._config = self._get_default_config()
            self._create_default_config_file()
        except json.JSONDecodeError as e:
            log.error("Error parsing config file", extra={"config_path": str(self.config_path), "error": str(e)})
            self._config = self._get_default_config()

        self._apply_env_overrides()

    def _apply_env_overrides(self):
        for env_name, key in ENV_OVERRIDES.items():
            raw = self._environ.get(env_name)
            if raw is None or raw == '':
                continue
            try:
                value = float(raw)
            except ValueError:
                log.warning("Ignoring non-numeric environment override", extra={"variable": env_name, "value": raw})
                continue
            self._set(key, value)

    def check_for_updates(self) -> bool:
        """
        Check if config file has been modified and reload if needed.

        Returns:
            bool: True if config was reloaded, False otherwise
        """
        try:
            current_mtime = os.path.getmtime(self.config_path)

            if current_mtime != self._last_modified:
                log.info("Config file modified, reloading", extra={"config_path": str(self.config_path)})
                self._load()
                return True

        except FileNotFoundError:
            pass

        return False

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key (supports dot notation, e.g., 'controller.min_green_ms')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        # Support dot notation
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def _set(self, key: str, value: Any):
        keys = key.split('.')
        target = self._config
        for k in keys[:-1]:
            target = target.setdefault(k, {})
        target[keys[-1]] = value

    def get_all(self) -> Dict[str, Any]:
        """Get entire configuration dictionary."""
        return copy.deepcopy(self._config)

    def controller_config(self) -> ControllerConfig:
        """
        Build the validated controller configuration.

        Raises:
            ConfigError: If the 'controller' section is invalid
        """
        section = self.get('controller', {})
        if not isinstance(section, dict):
            raise ConfigError("'controller' section must be an object")
        return ControllerConfig.from_dict(section)

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            "intersection": {
                "id": "default",
                "timezone": "UTC"
            },
            "controller": {
                "lanes": list(DEFAULT_LANES),
                "sensor_map": dict(DEFAULT_SENSOR_MAP),
                "detection_threshold_cm": 13.6,
                "presence_timeout_ms": 10000,
                "min_green_ms": 8000,
                "max_green_ms": 20000,
                "yellow_ms": 3000,
                "max_red_ms": 60000,
                "hold_after_clear_ms": 2000,
                "vehicle_presence_grace_ms": 4000
            },
            "ticker": {
                "interval_ms": 250
            },
            "storage": {
                "enabled": True,
                "db_path": "smart_signal.db"
            },
            "device": {
                "link_timeout_ms": 15000
            },
            "logging": {
                "level": "INFO",
                "json": True
            },
            "web_ui": {
                "enabled": True,
                "host": "0.0.0.0",
                "port": 5000
            }
        }

    def _create_default_config_file(self):
        """Create default config file if it doesn't exist."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self._config, f, indent=2)
            self._last_modified = os.path.getmtime(self.config_path)
            log.info("Created default config file", extra={"config_path": str(self.config_path)})
        except OSError as e:
            log.warning("Could not create config file", extra={"config_path": str(self.config_path), "error": str(e)})


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged
