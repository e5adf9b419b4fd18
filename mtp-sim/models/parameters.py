import json
import logging
import os
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

import yaml

# Configure logging
logger = logging.getLogger("SimulationConfig")

DEFAULT_CONFIG_FILE = "simconfig.json"


@dataclass
class SimulationConfig:
    """
    Simulation settings shared by the engine and the admin API.
    The engine reads these on every tick, so updates apply live.
    """
    update_interval_ms: float = 1000.0
    noise_amplitude: float = 0.1
    ramp_step: float = 0.5

    # Field metadata and valid ranges
    LIMITS = {
        'update_interval_ms': {
            'min': 10.0,
            'max': 3600000.0,
            'unit': 'ms',
            'description': 'Interval between simulation ticks',
            'aliases': ('UpdateIntervalMs', 'updateIntervalMs'),
        },
        'noise_amplitude': {
            'min': 0.0,
            'max': 1000.0,
            'unit': '',
            'description': 'Uniform noise added to every generated sample',
            'aliases': ('NoiseAmplitude', 'noiseAmplitude'),
        },
        'ramp_step': {
            'min': 0.0,
            'max': 1000.0,
            'unit': '',
            'description': 'Ramp increment (not used by the sine generator)',
            'aliases': ('RampStep', 'rampStep'),
        },
    }

    @property
    def update_interval_s(self) -> float:
        return self.update_interval_ms / 1000.0

    def set(self, key: str, value: Any) -> bool:
        """Set a field with validation, clamping to its range."""
        if key not in self.LIMITS:
            return False
        limits = self.LIMITS[key]
        try:
            value = float(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric value for '{key}': {value!r}")
            return False
        value = max(limits['min'], min(limits['max'], value))
        setattr(self, key, value)
        logger.info(f"Simulation setting '{key}' set to {value}")
        return True

    def update(self, values: Dict[str, Any]) -> Dict[str, bool]:
        """Set several fields at once; keys may use any accepted spelling."""
        results = {}
        for raw_key, value in values.items():
            results[raw_key] = self.set(_field_name(raw_key) or raw_key, value)
        return results

    def to_dict(self) -> Dict[str, float]:
        """Export using the camelCase keys of the config file."""
        return {
            'updateIntervalMs': self.update_interval_ms,
            'noiseAmplitude': self.noise_amplitude,
            'rampStep': self.ramp_step,
        }

    def describe(self) -> Dict[str, Dict]:
        """Current values with their metadata."""
        defaults = asdict(SimulationConfig())
        result = {}
        for key, limits in self.LIMITS.items():
            result[key] = {
                'value': getattr(self, key),
                'default': defaults[key],
                'min': limits['min'],
                'max': limits['max'],
                'unit': limits['unit'],
                'description': limits['description'],
            }
        return result


def _field_name(key: str) -> Optional[str]:
    if key in SimulationConfig.LIMITS:
        return key
    for name, limits in SimulationConfig.LIMITS.items():
        if key in limits['aliases']:
            return name
    return None


class ConfigManager:
    """Loads and saves the simulation settings file."""

    @staticmethod
    def load_or_default(path: str = DEFAULT_CONFIG_FILE) -> SimulationConfig:
        """
        Load settings from a JSON (or YAML) file.
        A missing or corrupt file yields the defaults; it is never fatal.
        """
        config = SimulationConfig()
        if not os.path.exists(path):
            logger.info(f"No config file at {path}, using defaults")
            return config

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to read config {path}, using defaults: {e}")
            return config

        if not isinstance(data, dict):
            logger.warning(f"Config {path} is not a mapping, using defaults")
            return config

        for key, value in data.items():
            name = _field_name(str(key))
            if name is None:
                logger.debug(f"Ignoring unknown config key '{key}'")
                continue
            config.set(name, value)
        logger.info(f"Loaded simulation config from {path}")
        return config

    @staticmethod
    def save(config: SimulationConfig, path: str = DEFAULT_CONFIG_FILE) -> None:
        """Write settings as indented JSON."""
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(config.to_dict(), f, indent=2)
        logger.info(f"Saved simulation config to {path}")
