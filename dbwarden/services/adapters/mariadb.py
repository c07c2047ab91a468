"""
MariaDB Backend Adapter

Health checks with the mariadb client, backups with mariadb-dump and restores
by piping the dump back into the client. The password is passed through
MYSQL_PWD so it never shows up in the process list.
"""

from pathlib import Path
from typing import Optional

from .base import BaseAdapter

SYSTEM_SCHEMAS = ("information_schema", "mysql", "performance_schema", "sys")


class MariaDBAdapter(BaseAdapter):
    """MariaDB backend adapter."""

    kind = "mariadb"
    display_name = "MariaDB"
    default_port = 3306
    artifact_extension = ".sql"

    auth_patterns = (
        "access denied for user",
        "error 1045",
        "error 1698",
    )
    connection_patterns = (
        "can't connect to",
        "connection refused",
        "error 2002",
        "error 2003",
        "error 2005",
        "lost connection to server",
        "server has gone away",
    )

    def _connection_args(self) -> list[str]:
        return [
            "--host",
            self.config.host,
            "--port",
            str(self.config.port),
            "--user",
            self.config.username,
            "--connect-timeout=10",
        ]

    def get_env(self) -> dict[str, str]:
        secret = self.config.secret()
        return {"MYSQL_PWD": secret} if secret else {}

    def get_ping_command(self) -> list[str]:
        return [
            "mariadb",
            *self._connection_args(),
            "-N",  # No column names
            "-e",
            "SHOW DATABASES;",
        ]

    def parse_ping_output(self, stdout: str) -> bool:
        return "information_schema" in stdout

    def get_has_data_command(self) -> list[str]:
        excluded = ", ".join(f"'{schema}'" for schema in SYSTEM_SCHEMAS)
        query = f"SELECT COUNT(*) FROM information_schema.TABLES WHERE TABLE_SCHEMA NOT IN ({excluded});"
        return [
            "mariadb",
            *self._connection_args(),
            "-N",
            "-e",
            query,
        ]

    def parse_has_data_output(self, stdout: str) -> bool:
        try:
            return int(stdout.strip().splitlines()[-1]) > 0
        except (IndexError, ValueError):
            return True

    def get_backup_command(self, artifact_path: Path) -> list[str]:
        """
        mariadb-dump with --single-transaction for consistent InnoDB backups
        without locking. Dumps every database unless one is configured.
        """
        cmd = [
            "mariadb-dump",
            *self._connection_args(),
            "--single-transaction",
            "--routines",
            "--triggers",
            "--events",
            f"--result-file={artifact_path}",
        ]

        if self.config.database:
            cmd.extend(["--databases", self.config.database])
        else:
            cmd.append("--all-databases")

        return cmd

    def get_restore_command(self, artifact_path: Path) -> list[str]:
        # The dump carries its own CREATE DATABASE / USE statements.
        return [
            "mariadb",
            *self._connection_args(),
        ]

    def get_restore_stdin(self, artifact_path: Path) -> Optional[Path]:
        return artifact_path
