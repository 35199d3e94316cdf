"""
Devboard Configuration
----------------------
Configuration constants, environment variables and the optional YAML
settings file for the dashboard aggregation layer.

Precedence (lowest first): defaults below, YAML file, DEVBOARD_* environment
variables, explicit overrides (CLI flags).
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Final, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

# =============================================================================
# Storage
# =============================================================================

DEFAULT_STORE_PATH: Final[Path] = Path.home() / ".devboard" / "credentials.json"

# =============================================================================
# HTTP / Adapter Configuration
# =============================================================================

WAKATIME_API_URL: Final[str] = "https://wakatime.com/api/v1"
GITHUB_API_URL: Final[str] = "https://api.github.com"

REQUEST_TIMEOUT_SECONDS: Final[float] = 10.0
GITHUB_PAGE_SIZE: Final[int] = 3
SPOTIFY_PAGE_SIZE: Final[int] = 10

# =============================================================================
# Orchestrator Configuration
# =============================================================================

# Upper bound on a single adapter call, including all of its HTTP requests
FETCH_DEADLINE_SECONDS: Final[float] = 20.0
MAX_RETRIES: Final[int] = 2
RETRY_BASE_DELAY_SECONDS: Final[float] = 1.0
RETRY_MULTIPLIER: Final[float] = 2.0
# Longest wait between retries; a longer Retry-After is reported instead of honored
MAX_RETRY_DELAY_SECONDS: Final[float] = 10.0

# =============================================================================
# Environment variables
# =============================================================================

ENV_VARS: Final[Dict[str, str]] = {
    "store_path": "DEVBOARD_STORE_PATH",
    "request_timeout": "DEVBOARD_REQUEST_TIMEOUT",
    "fetch_deadline": "DEVBOARD_FETCH_DEADLINE",
    "max_retries": "DEVBOARD_MAX_RETRIES",
    "max_retry_delay": "DEVBOARD_MAX_RETRY_DELAY",
    "github_page_size": "DEVBOARD_GITHUB_PAGE_SIZE",
    "spotify_page_size": "DEVBOARD_SPOTIFY_PAGE_SIZE",
}


@dataclass(frozen=True)
class DashboardConfig:
    """Runtime configuration for a dashboard context."""

    store_path: Path = DEFAULT_STORE_PATH
    wakatime_api_url: str = WAKATIME_API_URL
    github_api_url: str = GITHUB_API_URL
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    github_page_size: int = GITHUB_PAGE_SIZE
    spotify_page_size: int = SPOTIFY_PAGE_SIZE
    fetch_deadline: float = FETCH_DEADLINE_SECONDS
    max_retries: int = MAX_RETRIES
    retry_base_delay: float = RETRY_BASE_DELAY_SECONDS
    retry_multiplier: float = RETRY_MULTIPLIER
    max_retry_delay: float = MAX_RETRY_DELAY_SECONDS

    def __post_init__(self):
        for name in ("request_timeout", "fetch_deadline", "max_retry_delay"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("github_page_size", "spotify_page_size"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1, got {getattr(self, name)}")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries cannot be negative, got {self.max_retries}")
        if self.retry_base_delay < 0 or self.retry_multiplier < 1:
            raise ConfigError("retry_base_delay must be >= 0 and retry_multiplier >= 1")


def load_env(dotenv_path: Path) -> None:
    """Load environment variables from .env file."""
    from dotenv import load_dotenv

    if dotenv_path.exists():
        load_dotenv(dotenv_path)
        logger.debug(f"Loaded .env from {dotenv_path}")
    else:
        logger.debug(f".env file not found at {dotenv_path}")


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convert a raw value to the type of the matching default."""
    try:
        if isinstance(default, Path):
            return Path(value).expanduser()
        return type(default)(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read configuration file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    logger.debug(f"Loaded configuration from {path}")
    return raw


def load_config(path: Optional[Path] = None, **overrides: Any) -> DashboardConfig:
    """
    Build a DashboardConfig.

    Args:
        path: Optional YAML settings file. Keys must match DashboardConfig fields.
        **overrides: Explicit values that win over everything else. None values
            are ignored so CLI flags can be passed through unconditionally.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: If the file is unreadable, a key is unknown or a value
            is invalid.
    """
    config = DashboardConfig()
    defaults = {f.name: getattr(config, f.name) for f in fields(DashboardConfig)}
    raw: Dict[str, Any] = {}

    if path is not None:
        raw.update(_read_yaml(path))

    for name, env_var in ENV_VARS.items():
        if os.getenv(env_var):
            raw[name] = os.environ[env_var]

    raw.update({k: v for k, v in overrides.items() if v is not None})

    unknown = set(raw) - set(defaults)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    values = {name: _coerce(name, value, defaults[name]) for name, value in raw.items()}
    return replace(config, **values)
