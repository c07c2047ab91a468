"""
dbwarden services

Adapters, the backup coordinator, the health monitor and the runner that
drives them.
"""

from .adapters import BaseAdapter, build_adapter, get_adapter_class, list_kinds
from .backup_coordinator import BackupCoordinator, RetryPolicy
from .command_runner import CommandResult, run_command
from .health_monitor import HealthMonitor, next_status
from .runner import Runner, ShutdownReport

__all__ = [
    "BaseAdapter",
    "BackupCoordinator",
    "CommandResult",
    "HealthMonitor",
    "RetryPolicy",
    "Runner",
    "ShutdownReport",
    "build_adapter",
    "get_adapter_class",
    "list_kinds",
    "next_status",
    "run_command",
]
