"""
PostgreSQL Backend Adapter

Health checks with psql, backups with pg_dump custom format (-Fc) and
restores with pg_restore. The password reaches the tools only through
PGPASSWORD in the child environment.
"""

from pathlib import Path

from .base import BaseAdapter


class PostgreSQLAdapter(BaseAdapter):
    """PostgreSQL backend adapter."""

    kind = "postgres"
    display_name = "PostgreSQL"
    default_port = 5432
    artifact_extension = ".dump"

    auth_patterns = (
        "password authentication failed",
        "no pg_hba.conf entry",
        "fatal:  role",
        "fe_sendauth: no password supplied",
    )
    connection_patterns = (
        "connection refused",
        "could not connect to server",
        "could not translate host name",
        "no route to host",
        "server closed the connection unexpectedly",
        "the database system is starting up",
        "the database system is shutting down",
    )

    @property
    def database(self) -> str:
        return self.config.database or "postgres"

    def _connection_args(self) -> list[str]:
        return [
            "-h",
            self.config.host,
            "-p",
            str(self.config.port),
            "-U",
            self.config.username,
        ]

    def get_env(self) -> dict[str, str]:
        env = {"PGCONNECT_TIMEOUT": "10"}
        secret = self.config.secret()
        if secret:
            env["PGPASSWORD"] = secret
        return env

    def get_ping_command(self) -> list[str]:
        """
        List non-template databases.

        Unlike pg_isready this authenticates, so bad credentials surface as
        AuthFailed instead of a healthy answer.
        """
        return [
            "psql",
            *self._connection_args(),
            "-d",
            self.database,
            "-w",  # never prompt
            "-tAc",
            "SELECT datname FROM pg_database WHERE NOT datistemplate",
        ]

    def parse_ping_output(self, stdout: str) -> bool:
        return bool(stdout.strip())

    def get_has_data_command(self) -> list[str]:
        query = (
            "SELECT count(*) FROM information_schema.tables "
            "WHERE table_schema NOT IN ('pg_catalog', 'information_schema')"
        )
        return [
            "psql",
            *self._connection_args(),
            "-d",
            self.database,
            "-w",
            "-tAc",
            query,
        ]

    def parse_has_data_output(self, stdout: str) -> bool:
        try:
            return int(stdout.strip().splitlines()[-1]) > 0
        except (IndexError, ValueError):
            # Unparseable answer: assume data so a restore is not run blindly.
            return True

    def get_backup_command(self, artifact_path: Path) -> list[str]:
        """pg_dump custom format: compressed and restorable with pg_restore."""
        return [
            "pg_dump",
            *self._connection_args(),
            "-w",
            "-Fc",
            "-f",
            str(artifact_path),
            self.database,
        ]

    def get_restore_command(self, artifact_path: Path) -> list[str]:
        return [
            "pg_restore",
            *self._connection_args(),
            "-w",
            "-d",
            self.database,
            "--clean",
            "--if-exists",
            str(artifact_path),
        ]
