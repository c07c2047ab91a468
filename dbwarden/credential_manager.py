"""
Credential Manager

Resolves credential references supplied by the external configuration
collaborator and keeps secrets out of logs. Secrets are held only in the
frozen configuration objects and handed to client tools through the
subprocess environment; nothing here writes them anywhere.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Mapping, Optional

from . import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)

REDACTED = "********"


class CredentialManager:
    """Static helpers for credential references and redaction."""

    SCHEMES = ("env", "file")

    @staticmethod
    def parse_reference(ref: str) -> tuple[str, str]:
        """
        Split a credential reference into (scheme, target).

        Supported forms:
            env:NAME        value of environment variable NAME
            file:/path      contents of the file, trailing newline stripped

        Raises:
            ValueError: If the reference is malformed or the scheme unknown.
        """
        scheme, sep, target = ref.partition(":")
        if not sep or not target:
            raise ValueError(f"Malformed credential reference '{ref}' (expected scheme:target)")
        if scheme not in CredentialManager.SCHEMES:
            supported = ", ".join(CredentialManager.SCHEMES)
            raise ValueError(f"Unknown credential scheme '{scheme}'. Supported: {supported}")
        return scheme, target

    @staticmethod
    def resolve(ref: str, environ: Optional[Mapping[str, str]] = None) -> str:
        """
        Resolve a credential reference to its secret value.

        Args:
            ref: Reference string such as "env:PG_PASSWORD" or "file:/run/secrets/pg".
            environ: Environment mapping to read from (defaults to os.environ).

        Returns:
            The secret value.

        Raises:
            ValueError: If the reference cannot be resolved.
        """
        scheme, target = CredentialManager.parse_reference(ref)

        if scheme == "env":
            env = os.environ if environ is None else environ
            if target not in env:
                raise ValueError(f"Environment variable '{target}' referenced by credentials is not set")
            return env[target]

        path = Path(target)
        try:
            value = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ValueError(f"Cannot read credential file {target}: {e.strerror}") from e
        logger.debug(f"Resolved credential from file {target}")
        return value.rstrip("\r\n")

    @staticmethod
    def redact(cmd: Iterable[str], secrets: Iterable[str]) -> str:
        """Join a command line for logging with every secret masked."""
        masked = " ".join(cmd)
        for secret in secrets:
            if secret:
                masked = masked.replace(secret, REDACTED)
        return masked
