"""Configuration management for declcfg-inline-bundles"""

import json
import os
import re
from pathlib import Path
from typing import Optional

from .lib.errors import ConfigError
from .lib.materializer import DEFAULT_PERMANENT_ERROR_PATTERN
from .utils.retry import Backoff

CONFIG_ENV_VAR = "DECLCFG_INLINE_BUNDLES_CONFIG"

DEFAULTS = {
    'max_workers': 4,
    'retry_steps': 5,
    'retry_duration': 1.0,
    'retry_factor': 2.0,
    'retry_jitter': 0.1,
    'retry_cap': 30.0,
    'permanent_error_pattern': DEFAULT_PERMANENT_ERROR_PATTERN,
    'skopeo': 'skopeo',
    'tls_verify': True,
    'log_level': 'INFO',
}


class Config:
    """Settings for declcfg-inline-bundles: built-in defaults, then the config file, then overrides"""

    def __init__(self, config_file: Optional[str] = None):
        self.config_dir = Path.home() / ".declcfg-inline-bundles"
        if config_file:
            self.config_file = Path(config_file)
        elif os.getenv(CONFIG_ENV_VAR):
            self.config_file = Path(os.environ[CONFIG_ENV_VAR])
        else:
            self.config_file = self.config_dir / "config.json"
        self.explicit = bool(config_file or os.getenv(CONFIG_ENV_VAR))
        self.config = dict(DEFAULTS)
        self.config.update(self._load_config())

    def _load_config(self) -> dict:
        """Load configuration from file"""
        if not self.config_file.exists():
            if self.explicit:
                raise ConfigError(f"Config file {self.config_file} not found")
            return {}

        try:
            with open(self.config_file, 'r') as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not read config file {self.config_file}: {e}") from e

        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {self.config_file} must contain a JSON object")
        for key, value in loaded.items():
            self._check(key, value)
        return loaded

    def _check(self, key, value) -> None:
        if key not in DEFAULTS:
            raise ConfigError(f"Unknown config key '{key}' (known keys: {', '.join(sorted(DEFAULTS))})")

        default = DEFAULTS[key]
        if isinstance(default, bool):
            valid = isinstance(value, bool)
        elif isinstance(default, int):
            valid = isinstance(value, int) and not isinstance(value, bool) and value >= 1
        elif isinstance(default, (int, float)):
            valid = isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0
        else:
            valid = isinstance(value, str)
        if not valid:
            raise ConfigError(f"Invalid value for '{key}': {value!r}")

        if key == 'permanent_error_pattern':
            try:
                re.compile(value)
            except re.error as e:
                raise ConfigError(f"Invalid regular expression for '{key}': {e}") from e

    def get(self, key: str, default=None):
        return self.config.get(key, default)

    def override(self, **values) -> None:
        """Apply command line overrides. ``None`` values are ignored."""
        for key, value in values.items():
            if value is None:
                continue
            self._check(key, value)
            self.config[key] = value

    def backoff(self) -> Backoff:
        """Build the pull retry policy from the retry_* settings"""
        return Backoff(
            steps=int(self.config['retry_steps']),
            duration=float(self.config['retry_duration']),
            factor=float(self.config['retry_factor']),
            jitter=float(self.config['retry_jitter']),
            cap=float(self.config['retry_cap']),
        )

    def show_config(self) -> None:
        """Display current configuration"""
        print("=" * 70)
        print("CURRENT CONFIGURATION")
        print("=" * 70)
        print(json.dumps(self.config, indent=2))
        print("=" * 70)
        source = self.config_file if self.config_file.exists() else "built-in defaults"
        print(f"\nConfig file: {source}\n")
