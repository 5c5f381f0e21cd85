"""
Client configuration and credential handling.

Settings are resolved in priority order:
1. Explicit keyword overrides
2. Environment variables (a .env file is loaded first if present)
3. An optional YAML configuration file
4. Defaults

Environment variables:
- POLYGON_KEY (or POLYGON_API_KEY): API key, required
- POLYGON_BASE: REST base URL
- POLYGON_AUTH_MODE: 'header' (bearer token) or 'query' (apiKey parameter)
- POLYGON_RATE_LIMIT: requests per second
- POLYGON_TIMEOUT: request timeout in seconds
- POLYGON_MAX_BODY_BYTES: response size cap
- POLYGON_LOG_DIR: directory for diagnostic dumps
- POLYGON_EQUITY_OFFSET_HOURS: equity timestamp correction

Example:
    >>> settings = ClientSettings.from_env(config_file="polygon.yaml")
    >>> client = PolygonClient(settings)
"""

import logging
import os
import re
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from .diagnostics import DEFAULT_LOG_DIR
from .exceptions import ConfigError
from .rate_limiter import DEFAULT_REQUESTS_PER_SECOND
from .timestamps import DEFAULT_EQUITY_OFFSET_HOURS

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.polygon.io"
DEFAULT_TIMEOUT_SECONDS = 5.0


class AuthMode(Enum):
    """How the API key is sent."""

    HEADER = "header"
    QUERY = "query"


# Environment variable -> (settings field, parser)
_ENV_FIELDS: Dict[str, tuple] = {
    "POLYGON_KEY": ("api_key", str),
    "POLYGON_API_KEY": ("api_key", str),
    "POLYGON_BASE": ("base_url", str),
    "POLYGON_AUTH_MODE": ("auth_mode", AuthMode),
    "POLYGON_RATE_LIMIT": ("rate_limit_per_second", float),
    "POLYGON_TIMEOUT": ("timeout_seconds", float),
    "POLYGON_MAX_BODY_BYTES": ("max_body_bytes", int),
    "POLYGON_LOG_DIR": ("log_dir", os.fspath),
    "POLYGON_EQUITY_OFFSET_HOURS": ("equity_offset_hours", float),
}

# Settings field -> parser, for config file values and overrides
_FIELD_PARSERS: Dict[str, Callable[[Any], Any]] = {
    field_name: parser for field_name, parser in _ENV_FIELDS.values()
}


@dataclass
class ClientSettings:
    """Resolved settings for a PolygonClient."""

    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    auth_mode: AuthMode = AuthMode.HEADER
    rate_limit_per_second: float = DEFAULT_REQUESTS_PER_SECOND
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_body_bytes: Optional[int] = None
    log_dir: str = DEFAULT_LOG_DIR
    equity_offset_hours: float = DEFAULT_EQUITY_OFFSET_HOURS

    def validate(self) -> "ClientSettings":
        """
        Check the settings.

        Raises:
            ConfigError: If the API key is missing or a value is invalid.
        """
        if not isinstance(self.api_key, str) or not self.api_key.strip():
            raise ConfigError("missing Polygon API key; set POLYGON_KEY")
        if not isinstance(self.base_url, str) or not self.base_url.startswith(("http://", "https://")):
            raise ConfigError("base_url must be an http(s) URL", base_url=self.base_url)
        if not isinstance(self.auth_mode, AuthMode):
            raise ConfigError("auth_mode must be an AuthMode", auth_mode=self.auth_mode)
        _check_positive("rate_limit_per_second", self.rate_limit_per_second)
        _check_positive("timeout_seconds", self.timeout_seconds)
        if self.max_body_bytes is not None:
            _check_positive("max_body_bytes", self.max_body_bytes, int)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Settings as a dictionary with the API key masked."""
        data = asdict(self)
        data["auth_mode"] = self.auth_mode.value
        if self.api_key:
            data["api_key"] = SensitiveDataMasker.mask_string(self.api_key)
        return data

    @classmethod
    def from_env(
        cls,
        config_file: Optional[Union[str, Path]] = None,
        env_file: Optional[str] = ".env",
        environ: Optional[Dict[str, str]] = None,
        **overrides: Any,
    ) -> "ClientSettings":
        """
        Resolve settings from overrides, environment and config file.

        Args:
            config_file: Optional YAML file with settings field names as keys.
            env_file: .env file to load before reading the environment.
            environ: Environment mapping (defaults to os.environ).
            **overrides: Field values that take priority over everything.

        Raises:
            ConfigError: If the config file is unreadable, a value cannot be
                parsed, or the resulting settings are invalid.
        """
        if environ is None:
            if env_file and os.path.exists(env_file):
                load_dotenv(env_file)
                logger.debug(f"Loaded environment variables from {env_file}")
            environ = dict(os.environ)

        values: Dict[str, Any] = {}
        if config_file is not None:
            values.update(_load_config_file(config_file))

        # POLYGON_KEY wins over POLYGON_API_KEY, so apply it last
        for name in sorted(_ENV_FIELDS, key=lambda n: n == "POLYGON_KEY"):
            if environ.get(name):
                field_name, parser = _ENV_FIELDS[name]
                values[field_name] = _parse(name, environ[name], parser)

        for name, value in overrides.items():
            if value is not None:
                values[name] = _coerce(name, value)

        settings = replace(cls(), **values)
        logger.debug(f"Resolved client settings: {settings.to_dict()}")
        return settings.validate()


def _parse(name: str, raw: Any, parser: Callable[[Any], Any]) -> Any:
    try:
        return parser(raw)
    except (ValueError, TypeError) as e:
        raise ConfigError(f"invalid value for {name}", cause=e, value=raw) from e


def _coerce(name: str, value: Any) -> Any:
    """Parse a config file or override value with the field's parser."""
    if name not in _FIELD_PARSERS:
        raise ConfigError(f"unknown setting {name}")
    parser = _FIELD_PARSERS[name]
    # bool is an int, and str() accepts anything
    if isinstance(value, bool) or (parser is str and not isinstance(value, str)):
        raise ConfigError(f"invalid value for {name}", value=value)
    return _parse(name, value, parser)


def _check_positive(name: str, value: Any, kind: Union[type, tuple] = (int, float)) -> None:
    if isinstance(value, bool) or not isinstance(value, kind):
        raise ConfigError(f"{name} must be a number", **{name: value})
    if value <= 0:
        raise ConfigError(f"{name} must be positive", **{name: value})


def _load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    known = {f.name for f in fields(ClientSettings)}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"could not read config file {path}", cause=e) from e

    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    # Allow the settings to live under a top-level 'polygon' key
    data = data.get("polygon", data)
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"unknown settings in {path}", keys=sorted(unknown))
    return {name: _coerce(name, value) for name, value in data.items() if value is not None}


class SensitiveDataMasker:
    """Utility for masking API keys in logs and error messages."""

    PATTERNS = [
        # apiKey / apikey / api_key query parameters and fields
        re.compile(r'(api_?key[=:"\'\s]+)([^&\s"\',}]+)', re.IGNORECASE),
        # Bearer tokens
        re.compile(r'(bearer\s+)(\S+)', re.IGNORECASE),
    ]

    @staticmethod
    def mask_string(value: str) -> str:
        """
        Mask a sensitive string, keeping the first 3 and last character.

        Example:
            >>> SensitiveDataMasker.mask_string("abcdefgh")
            'abc****h'
        """
        if len(value) <= 4:
            return '*' * len(value)
        return value[:3] + '*' * (len(value) - 4) + value[-1]

    @classmethod
    def mask_message(cls, message: str) -> str:
        """Mask every API key or bearer token found in message."""
        for pattern in cls.PATTERNS:
            message = pattern.sub(lambda m: m.group(1) + "***", message)
        return message
