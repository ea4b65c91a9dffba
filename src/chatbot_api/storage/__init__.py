"""
Conversation store backends.

All backends implement the ConversationStore contract and can be swapped at
startup without touching the orchestrator.
"""

from typing import TYPE_CHECKING

from .base import DEFAULT_OWNER_ID, ConversationStore
from .memory import InMemoryConversationStore
from .snapshot import SnapshotFileConversationStore
from .sql import SQLConversationStore

if TYPE_CHECKING:
    from ..config.settings import AppSettings

__all__ = [
    "DEFAULT_OWNER_ID",
    "ConversationStore",
    "InMemoryConversationStore",
    "SQLConversationStore",
    "SnapshotFileConversationStore",
    "create_store",
    "create_store_from_settings",
    "get_supported_backends",
]


def create_store(backend: str, **kwargs) -> ConversationStore:
    """
    Create a conversation store for the given backend.

    Args:
        backend: Backend name ("memory", "file" or "sql")
        **kwargs: Backend-specific configuration (path, database_url)

    Returns:
        Configured store instance

    Raises:
        ValueError: If the backend is unsupported or misconfigured

    Example:
        >>> store = create_store("file", path="data/conversations.json")
        >>> conversation = await store.create_conversation("alice")
    """
    backend = backend.lower().strip()

    if backend == "memory":
        return InMemoryConversationStore()
    elif backend in ("file", "snapshot"):
        if not kwargs.get("path"):
            raise ValueError("Snapshot path is required for the file backend")
        return SnapshotFileConversationStore(kwargs["path"])
    elif backend == "sql":
        if not kwargs.get("database_url"):
            raise ValueError("Database URL is required for the sql backend")
        return SQLConversationStore(kwargs["database_url"])
    else:
        raise ValueError(f"Unsupported storage backend: {backend}")


def get_supported_backends() -> list[str]:
    """Get list of supported backend names."""
    return ["memory", "file", "sql"]


def create_store_from_settings(settings: "AppSettings") -> ConversationStore:
    """Create the store selected by the application settings."""
    return create_store(
        settings.storage.backend,
        path=settings.get_snapshot_path(),
        database_url=settings.get_database_url(),
    )
