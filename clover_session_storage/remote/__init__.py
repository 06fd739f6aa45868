"""Pool service access."""

from .client import RemoteSessionClient

__all__ = ["RemoteSessionClient"]
