"""Provides functions for loading and accessing configuration settings.

Supports loading from a YAML configuration file (~/.tenantops/config.yaml),
a .env file and environment variables, and builds the validated
ResilienceSettings consumed by the executor, pool and batch orchestrator.
"""

import logging
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".tenantops"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "TENANTOPS_"

# --- Global Configuration Store (Simple Approach) ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False


def load_configuration(
    config_file: Path = DEFAULT_CONFIG_FILE,
    env_file: Optional[Path] = None,
    reload: bool = False,
) -> None:
    """Loads configuration from a YAML file and a .env file.

    Priority order (highest to lowest):
    1. Test overrides (set_config_for_testing)
    2. Environment Variables (TENANTOPS_ prefix)
    3. .env file
    4. YAML configuration file
    5. Defaults of ResilienceSettings

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        reload: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not reload:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. YAML file (lowest priority)
    config_file = Path(config_file)
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. .env file; override=False so real environment variables win
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no file found).")

    _loaded = True
    logger.debug("Configuration loading process completed.")


def _flatten(data: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flattens nested mappings into dotted keys ({'pool': {'max': 1}} -> {'pool.max': 1})."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, prefix=f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


def env_var_name(key: str) -> str:
    """Environment variable for a dotted key: 'pool.max_connections' -> 'TENANTOPS_POOL_MAX_CONNECTIONS'."""
    return ENV_PREFIX + key.upper().replace('.', '_')


def _coerce(value: str) -> Any:
    lowered = value.strip().lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by dotted key.

    Args:
        key: The configuration key, e.g. 'resilience.max_retries'.
        default: Default value if the key is not found.

    Returns:
        The configuration value.
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    if key in _config:
        return _config[key]

    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Set configuration values that override every other source (tests only)."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


def reset_configuration() -> None:
    """Forget loaded file configuration so the next load starts fresh."""
    global _config, _loaded
    _config = {}
    _loaded = False


# --- Resilience Settings ---

@dataclass(frozen=True)
class ResilienceSettings:
    """Configuration inputs of the resilience core with documented defaults."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 300.0
    throttle_retry_mode: bool = False
    max_connections: int = 10
    idle_timeout_seconds: float = 1800.0
    connect_max_retries: int = 3
    batch_concurrency: int = 5
    continue_on_error: bool = True

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.connect_max_retries < 0:
            raise ValueError(f"connect_max_retries must be >= 0, got {self.connect_max_retries}")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("Delays must be >= 0")
        if self.max_connections < 1:
            raise ValueError(f"max_connections must be >= 1, got {self.max_connections}")
        if self.idle_timeout_seconds <= 0:
            raise ValueError(f"idle_timeout_seconds must be > 0, got {self.idle_timeout_seconds}")
        if self.batch_concurrency < 1:
            raise ValueError(f"batch_concurrency must be >= 1, got {self.batch_concurrency}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Dotted config key for each ResilienceSettings field
SETTING_KEYS: Dict[str, str] = {
    "max_retries": "resilience.max_retries",
    "base_delay_seconds": "resilience.base_delay_seconds",
    "max_delay_seconds": "resilience.max_delay_seconds",
    "throttle_retry_mode": "resilience.throttle_retry_mode",
    "max_connections": "pool.max_connections",
    "idle_timeout_seconds": "pool.idle_timeout_seconds",
    "connect_max_retries": "pool.connect_max_retries",
    "batch_concurrency": "batch.concurrency_limit",
    "continue_on_error": "batch.continue_on_error",
}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def load_resilience_settings(**overrides: Any) -> ResilienceSettings:
    """Builds ResilienceSettings from the configuration sources.

    Args:
        **overrides: Field values that take precedence over configuration.

    Raises:
        ValueError: If a configured value has the wrong type or is out of range.
    """
    load_configuration()
    values: Dict[str, Any] = {}
    for f in fields(ResilienceSettings):
        raw = overrides[f.name] if f.name in overrides else get_config(SETTING_KEYS[f.name])
        if raw is None:
            continue
        try:
            if f.type is bool or f.type == 'bool':
                values[f.name] = _as_bool(raw)
            elif f.type is int or f.type == 'int':
                values[f.name] = int(raw)
            else:
                values[f.name] = float(raw)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid value for {SETTING_KEYS[f.name]}: {raw!r}") from e
    settings = ResilienceSettings(**values)
    logger.debug(f"Resilience settings: {settings}")
    return settings
