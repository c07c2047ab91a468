"""
Adapter Registry — Maps backend kinds to adapter classes.

Usage:
    from .adapters import build_adapter
    adapter = build_adapter(backend_config)
"""

from ...config import BackendConfig
from .base import BaseAdapter, format_timestamp
from .mariadb import MariaDBAdapter
from .mongodb import MongoDBAdapter
from .postgresql import PostgreSQLAdapter

# =============================================================================
# Adapter Registry
# =============================================================================

_ADAPTERS: dict[str, type[BaseAdapter]] = {
    "postgres": PostgreSQLAdapter,
    "mariadb": MariaDBAdapter,
    "mongo": MongoDBAdapter,
}


def get_adapter_class(kind: str) -> type[BaseAdapter]:
    """Get the adapter class for a backend kind.

    Raises:
        ValueError: If the kind is not registered.
    """
    kind = getattr(kind, "value", kind)
    adapter_class = _ADAPTERS.get(kind)
    if adapter_class is None:
        supported = ", ".join(sorted(_ADAPTERS.keys()))
        raise ValueError(f"Unknown backend kind '{kind}'. Supported: {supported}")
    return adapter_class


def build_adapter(config: BackendConfig) -> BaseAdapter:
    """Instantiate the adapter for a validated backend configuration."""
    return get_adapter_class(config.kind)(config)


def list_kinds() -> list[dict]:
    """Return summary info for all supported kinds."""
    return [
        {
            "kind": kind,
            "display_name": adapter_class.display_name,
            "default_port": adapter_class.default_port,
            "artifact_extension": adapter_class.artifact_extension,
        }
        for kind, adapter_class in sorted(_ADAPTERS.items())
    ]


__all__ = [
    "BaseAdapter",
    "MariaDBAdapter",
    "MongoDBAdapter",
    "PostgreSQLAdapter",
    "build_adapter",
    "format_timestamp",
    "get_adapter_class",
    "list_kinds",
]
