"""
Abstract conversation store interface.

This module defines the contract every persistence backend implements, so the
orchestrator can work with volatile memory, a snapshot file or a relational
database without knowing which one it was given.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

from ..core.models import (
    DEFAULT_OWNER_ID,
    ChatMessage,
    Conversation,
    ConversationSummary,
    MessageRole,
    StoreStats,
)


class ConversationStore(ABC):
    """
    Abstract base for all conversation stores.

    Guarantees shared by every backend:
    - conversation and message ids are assigned monotonically and never reused
    - messages of a conversation are returned ordered by (timestamp, id)
    - appending to a missing conversation raises ConversationNotFound
    - deleting a conversation removes its messages in the same operation
    """

    backend_name = "abstract"

    def __init__(self) -> None:
        self._last_timestamp: datetime | None = None

    @abstractmethod
    async def create_conversation(
        self, owner_id: str = DEFAULT_OWNER_ID
    ) -> Conversation:
        """
        Create an empty conversation.

        Raises:
            StorageUnavailable: The medium failed; nothing was written
        """
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: int) -> Conversation | None:
        """Look up a conversation, returning None if it does not exist."""
        pass

    @abstractmethod
    async def append_message(
        self, conversation_id: int, role: MessageRole, content: str
    ) -> ChatMessage:
        """
        Append a message to an existing conversation.

        Raises:
            ConversationNotFound: The conversation does not exist
            StorageUnavailable: The medium failed; nothing was written
        """
        pass

    @abstractmethod
    async def list_messages(self, conversation_id: int) -> list[ChatMessage]:
        """
        Return the conversation's messages, oldest first.

        An existing conversation without messages yields an empty list.

        Raises:
            ConversationNotFound: The conversation does not exist
        """
        pass

    @abstractmethod
    async def list_conversations(
        self, owner_id: str = DEFAULT_OWNER_ID
    ) -> list[ConversationSummary]:
        """Summaries of the owner's conversations, most recently active first."""
        pass

    @abstractmethod
    async def delete_conversation(self, conversation_id: int) -> None:
        """
        Delete a conversation together with all of its messages.

        Raises:
            ConversationNotFound: The conversation does not exist
        """
        pass

    @abstractmethod
    async def get_stats(self) -> StoreStats:
        """Counts of stored conversations and messages."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass

    def _next_timestamp(self) -> datetime:
        """
        Current UTC time, strictly later than any timestamp issued before.

        Keeps append order and timestamp order identical even when the wall
        clock steps backwards or two writes land in the same microsecond.
        """
        now = datetime.now(UTC)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _observe_timestamp(self, timestamp: datetime) -> None:
        """Account for a timestamp loaded from persisted state."""
        if self._last_timestamp is None or timestamp > self._last_timestamp:
            self._last_timestamp = timestamp

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(backend='{self.backend_name}')"


def sort_summaries(summaries: list[ConversationSummary]) -> list[ConversationSummary]:
    """Order summaries by last activity descending, ties by id descending."""
    return sorted(
        summaries, key=lambda s: (s.last_message_at, s.id), reverse=True
    )


def message_sort_key(message: ChatMessage) -> tuple[datetime, int]:
    return (message.timestamp, message.id)
