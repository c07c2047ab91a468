"""
dbwarden - Health-check and backup orchestration for database backends

Polls PostgreSQL, MariaDB and MongoDB backends for health, runs concurrent
backups with bounded retry, and exposes pull-based snapshots of both.
"""

__version__ = "0.3.0"

# =============================================================================
# Logger name shared by every module
# =============================================================================

LOGGER_NAME = "dbwarden"

# =============================================================================
# Supported Backend Kinds
# =============================================================================

SUPPORTED_KINDS = ["postgres", "mariadb", "mongo"]

DEFAULT_PORTS = {
    "postgres": 5432,
    "mariadb": 3306,
    "mongo": 27017,
}

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_POLL_TIMEOUT = 5.0
DEFAULT_DOWN_THRESHOLD = 3
DEFAULT_BACKUP_INTERVAL = 86400.0
DEFAULT_BACKUP_TIMEOUT = 600.0
DEFAULT_BACKUP_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 2.0
DEFAULT_RETRY_MAX_DELAY = 30.0
DEFAULT_HISTORY_RETENTION = 100
DEFAULT_HEALTH_HISTORY_RETENTION = 50
DEFAULT_SHUTDOWN_GRACE = 30.0

from .config import BackendConfig, BackendKind, RunnerConfig, load_config  # noqa: E402
from .errors import (  # noqa: E402
    AlreadyExists,
    AuthFailed,
    BackendError,
    BackendTimeout,
    BackupRunInProgress,
    ConfigError,
    ConnectionRefused,
    DbWardenError,
    ErrorKind,
    OperationCancelled,
    RestoreRefused,
    UnknownBackendError,
)
from .models import (  # noqa: E402
    BackupHistory,
    BackupJob,
    BackupOutcome,
    BackupReport,
    HealthState,
    HealthStatus,
    PingResult,
)
from .services import (  # noqa: E402
    BackupCoordinator,
    HealthMonitor,
    RetryPolicy,
    Runner,
    ShutdownReport,
    build_adapter,
)

__all__ = [
    "AlreadyExists",
    "AuthFailed",
    "BackendConfig",
    "BackendError",
    "BackendKind",
    "BackendTimeout",
    "BackupCoordinator",
    "BackupHistory",
    "BackupJob",
    "BackupOutcome",
    "BackupReport",
    "BackupRunInProgress",
    "ConfigError",
    "ConnectionRefused",
    "DbWardenError",
    "ErrorKind",
    "HealthMonitor",
    "HealthState",
    "HealthStatus",
    "OperationCancelled",
    "PingResult",
    "RestoreRefused",
    "RetryPolicy",
    "Runner",
    "RunnerConfig",
    "ShutdownReport",
    "UnknownBackendError",
    "build_adapter",
    "load_config",
]
