"""
Snapshot-file conversation store.

The whole store is held in memory and written wholesale to a single JSON file
after every mutation. The file is read once at startup.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import StorageUnavailable
from ..core.models import ChatMessage, Conversation
from .base import message_sort_key
from .memory import InMemoryConversationStore

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class SnapshotFileConversationStore(InMemoryConversationStore):
    """
    In-memory store mirrored to a JSON snapshot file.

    Every mutating call returns only after the snapshot has been replaced on
    disk. A write failure rolls the in-memory change back and raises
    StorageUnavailable. An unreadable snapshot at startup is moved aside and
    replaced by an empty one instead of failing startup.
    """

    backend_name = "snapshot"

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self._load_snapshot()

    async def _persist(self) -> None:
        payload = self._snapshot()
        try:
            await asyncio.to_thread(self._write_snapshot, payload)
        except OSError as e:
            logger.error(f"Failed to write snapshot {self.path}: {e}")
            raise StorageUnavailable(
                f"Failed to write conversation snapshot: {e}",
                details={"path": str(self.path), "error_type": type(e).__name__},
            ) from e

    def _snapshot(self) -> dict[str, Any]:
        """Serialize the current state."""
        return {
            "version": SNAPSHOT_VERSION,
            "next_conversation_id": self._next_conversation_id,
            "next_message_id": self._next_message_id,
            "conversations": [
                conversation.model_dump(mode="json")
                for conversation in self._conversations.values()
            ],
            "messages": [
                message.model_dump(mode="json")
                for messages in self._messages.values()
                for message in messages
            ],
        }

    def _write_snapshot(self, payload: dict[str, Any]) -> None:
        """Replace the snapshot file atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    def _load_snapshot(self) -> None:
        if not self.path.exists():
            logger.info(f"No snapshot at {self.path}, starting empty")
            self._write_initial_snapshot()
            return

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            self._restore(data)
        except (OSError, ValueError, KeyError, TypeError, PydanticValidationError) as e:
            logger.error(
                f"Snapshot {self.path} is unreadable ({type(e).__name__}: {e}), "
                "reinitializing an empty store"
            )
            self._reset_state()
            self._set_aside_corrupt_snapshot()
            self._write_initial_snapshot()
            return

        logger.info(
            f"Loaded snapshot {self.path}: {len(self._conversations)} conversations"
        )

    def _restore(self, data: dict[str, Any]) -> None:
        if not isinstance(data, dict):
            raise TypeError("Snapshot root must be an object")

        conversations = [Conversation.model_validate(c) for c in data["conversations"]]
        messages = [ChatMessage.model_validate(m) for m in data["messages"]]

        self._conversations = {c.id: c for c in conversations}
        self._messages = {c.id: [] for c in conversations}
        for conversation in conversations:
            self._observe_timestamp(conversation.created_at)

        for message in messages:
            owned = self._messages.get(message.conversation_id)
            if owned is None:
                logger.warning(
                    f"Dropping orphan message {message.id} of missing "
                    f"conversation {message.conversation_id}"
                )
                continue
            owned.append(message)
            self._observe_timestamp(message.timestamp)

        for owned in self._messages.values():
            owned.sort(key=message_sort_key)

        max_conversation_id = max((c.id for c in conversations), default=0)
        max_message_id = max((m.id for m in messages), default=0)
        self._next_conversation_id = max(
            int(data.get("next_conversation_id", 1)), max_conversation_id + 1
        )
        self._next_message_id = max(
            int(data.get("next_message_id", 1)), max_message_id + 1
        )

    def _reset_state(self) -> None:
        self._conversations = {}
        self._messages = {}
        self._next_conversation_id = 1
        self._next_message_id = 1

    def _set_aside_corrupt_snapshot(self) -> None:
        corrupt_path = self.path.with_name(self.path.name + ".corrupt")
        try:
            os.replace(self.path, corrupt_path)
            logger.warning(f"Moved unreadable snapshot to {corrupt_path}")
        except OSError as e:
            logger.warning(f"Could not move unreadable snapshot aside: {e}")

    def _write_initial_snapshot(self) -> None:
        try:
            self._write_snapshot(self._snapshot())
        except OSError as e:
            # Later mutations retry the write and surface StorageUnavailable
            logger.error(f"Failed to write initial snapshot {self.path}: {e}")
