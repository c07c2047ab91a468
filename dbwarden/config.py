"""
Configuration models.

The configuration is supplied by an external collaborator (a JSON file or an
already-parsed mapping), validated once, and frozen. Malformed configuration
is the only fatal-at-startup error: ``load_config`` raises ``ConfigError`` and
no backend is ever polled or backed up from a partially valid config.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator, model_validator

from . import (
    DEFAULT_BACKUP_INTERVAL,
    DEFAULT_BACKUP_RETRIES,
    DEFAULT_BACKUP_TIMEOUT,
    DEFAULT_DOWN_THRESHOLD,
    DEFAULT_HEALTH_HISTORY_RETENTION,
    DEFAULT_HISTORY_RETENTION,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_TIMEOUT,
    DEFAULT_PORTS,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_SHUTDOWN_GRACE,
    LOGGER_NAME,
)
from .credential_manager import CredentialManager
from .errors import ConfigError

logger = logging.getLogger(LOGGER_NAME)


class BackendKind(str, Enum):
    """Supported DBMS kinds."""
    POSTGRES = "postgres"
    MARIADB = "mariadb"
    MONGO = "mongo"


class BackendConfig(BaseModel):
    """Connection settings for one backend. Immutable once loaded."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    kind: BackendKind
    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    database: Optional[str] = None
    username: str = Field(min_length=1)
    password: SecretStr = SecretStr("")
    credentials_ref: Optional[str] = None
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    poll_timeout: float = Field(default=DEFAULT_POLL_TIMEOUT, gt=0)

    @field_validator("host", "username")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("credentials_ref")
    @classmethod
    def _valid_reference(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            CredentialManager.parse_reference(value)
        return value

    @model_validator(mode="before")
    @classmethod
    def _fill_port(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and data.get("port") is None:
            kind = getattr(data.get("kind"), "value", data.get("kind"))
            if kind in DEFAULT_PORTS:
                data = {**data, "port": DEFAULT_PORTS[kind]}
        return data

    def secret(self) -> str:
        return self.password.get_secret_value()


class RunnerConfig(BaseModel):
    """Process-wide settings plus the full list of backends."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    backends: list[BackendConfig] = Field(min_length=1)
    backup_dir: Path
    backup_interval: float = Field(default=DEFAULT_BACKUP_INTERVAL, gt=0)
    backup_timeout: float = Field(default=DEFAULT_BACKUP_TIMEOUT, gt=0)
    backup_retries: int = Field(default=DEFAULT_BACKUP_RETRIES, ge=0)
    retry_base_delay: float = Field(default=DEFAULT_RETRY_BASE_DELAY, ge=0)
    retry_max_delay: float = Field(default=DEFAULT_RETRY_MAX_DELAY, ge=0)
    down_threshold: int = Field(default=DEFAULT_DOWN_THRESHOLD, ge=1)
    history_retention: int = Field(default=DEFAULT_HISTORY_RETENTION, ge=1)
    health_history_retention: int = Field(default=DEFAULT_HEALTH_HISTORY_RETENTION, ge=1)
    shutdown_grace: float = Field(default=DEFAULT_SHUTDOWN_GRACE, ge=0)
    run_backup_on_start: bool = False

    @model_validator(mode="after")
    def _unique_names(self) -> "RunnerConfig":
        seen = set()
        duplicates = set()
        for backend in self.backends:
            if backend.name in seen:
                duplicates.add(backend.name)
            seen.add(backend.name)
        if duplicates:
            raise ValueError(f"duplicate backend names: {', '.join(sorted(duplicates))}")
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    def backend(self, name: str) -> BackendConfig:
        for backend in self.backends:
            if backend.name == name:
                return backend
        raise KeyError(name)


def _resolve_credentials(data: dict, environ: Optional[Mapping[str, str]]) -> dict:
    """Replace credentials_ref entries with resolved passwords."""
    backends = []
    for index, raw in enumerate(data.get("backends") or []):
        if not isinstance(raw, Mapping):
            backends.append(raw)
            continue
        entry = dict(raw)
        ref = entry.get("credentials_ref")
        if ref and not entry.get("password"):
            try:
                entry["password"] = CredentialManager.resolve(ref, environ=environ)
            except ValueError as e:
                name = entry.get("name", f"#{index}")
                raise ConfigError(f"backend {name}: {e}") from e
        backends.append(entry)
    resolved = dict(data)
    if "backends" in data:
        resolved["backends"] = backends
    return resolved


def load_config(
    source: Union[str, Path, Mapping[str, Any]],
    environ: Optional[Mapping[str, str]] = None,
) -> RunnerConfig:
    """
    Load and validate the runner configuration.

    Args:
        source: Path to a JSON file, or an already-parsed mapping.
        environ: Environment used for ``env:`` credential references.

    Returns:
        A frozen RunnerConfig.

    Raises:
        ConfigError: If the file is unreadable, not JSON, or fails validation.
    """
    if isinstance(source, Mapping):
        data = dict(source)
    else:
        path = Path(source)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e.strerror}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")

    data = _resolve_credentials(data, environ)

    try:
        config = RunnerConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from e

    logger.info(
        f"Loaded configuration with {len(config.backends)} backend(s): "
        f"{', '.join(b.name for b in config.backends)}"
    )
    return config
