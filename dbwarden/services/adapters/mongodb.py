"""
MongoDB Backend Adapter

Health checks with mongosh, backups with mongodump into a single gzipped
archive and restores with mongorestore --drop.
"""

import json
from pathlib import Path

from .base import BaseAdapter

SYSTEM_DATABASES = ("admin", "config", "local")


class MongoDBAdapter(BaseAdapter):
    """MongoDB backend adapter."""

    kind = "mongo"
    display_name = "MongoDB"
    default_port = 27017
    artifact_extension = ".archive"

    auth_patterns = (
        "authentication failed",
        "auth failed",
        "unauthorized",
        "requires authentication",
    )
    connection_patterns = (
        "econnrefused",
        "connection refused",
        "server selection error",
        "no reachable servers",
        "mongonetworkerror",
        "enotfound",
    )
    timeout_patterns = (
        "timed out",
        "server selection timeout",
        "mongoservertimeouterror",
    )

    def _connection_args(self) -> list[str]:
        args = [
            "--host",
            self.config.host,
            "--port",
            str(self.config.port),
            "--username",
            self.config.username,
            "--authenticationDatabase",
            "admin",
        ]
        secret = self.config.secret()
        if secret:
            args.extend(["--password", secret])
        return args

    def _eval(self, script: str) -> list[str]:
        return [
            "mongosh",
            "--quiet",
            *self._connection_args(),
            "--eval",
            script,
        ]

    def get_ping_command(self) -> list[str]:
        """List databases through the admin command; prints {"ok": 1, ...}."""
        return self._eval(
            "const r = db.adminCommand({listDatabases: 1, nameOnly: true});"
            "print(JSON.stringify({ok: r.ok, databases: r.databases.length}));"
        )

    def parse_ping_output(self, stdout: str) -> bool:
        try:
            data = json.loads(stdout.strip().splitlines()[-1])
        except (json.JSONDecodeError, IndexError):
            return False
        return data.get("ok") == 1

    def get_has_data_command(self) -> list[str]:
        excluded = json.dumps(list(SYSTEM_DATABASES))
        return self._eval(
            "const r = db.adminCommand({listDatabases: 1, nameOnly: true});"
            f"print(r.databases.filter(d => !{excluded}.includes(d.name)).length);"
        )

    def parse_has_data_output(self, stdout: str) -> bool:
        try:
            return int(stdout.strip().splitlines()[-1]) > 0
        except (IndexError, ValueError):
            return True

    def get_backup_command(self, artifact_path: Path) -> list[str]:
        cmd = [
            "mongodump",
            *self._connection_args(),
            f"--archive={artifact_path}",
            "--gzip",
        ]
        if self.config.database:
            cmd.extend(["--db", self.config.database])
        return cmd

    def get_restore_command(self, artifact_path: Path) -> list[str]:
        return [
            "mongorestore",
            *self._connection_args(),
            f"--archive={artifact_path}",
            "--gzip",
            "--drop",
        ]
