"""
In-memory conversation store.

Everything lives in process memory: zero I/O latency, and everything is lost
when the process exits. Use it for development, demos and tests, never where
conversations must survive a restart.
"""

import asyncio
import logging

from ..core.exceptions import ConversationNotFound, StorageUnavailable
from ..core.models import (
    ChatMessage,
    Conversation,
    ConversationSummary,
    MessageRole,
    StoreStats,
)
from .base import DEFAULT_OWNER_ID, ConversationStore, sort_summaries

logger = logging.getLogger(__name__)


class InMemoryConversationStore(ConversationStore):
    """
    Volatile store keeping each conversation's ordered message list in a dict.

    Durability is limited to the process lifetime. All mutations run under a
    single asyncio lock, so each append is atomic and ids are never duplicated.
    """

    backend_name = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._conversations: dict[int, Conversation] = {}
        self._messages: dict[int, list[ChatMessage]] = {}
        self._next_conversation_id = 1
        self._next_message_id = 1
        self._lock = asyncio.Lock()

        logger.info(f"Initialized {self.backend_name} conversation store")

    async def create_conversation(
        self, owner_id: str = DEFAULT_OWNER_ID
    ) -> Conversation:
        async with self._lock:
            conversation = Conversation(
                id=self._allocate_conversation_id(),
                owner_id=owner_id,
                created_at=self._next_timestamp(),
            )
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []

            try:
                await self._persist()
            except StorageUnavailable:
                del self._conversations[conversation.id]
                del self._messages[conversation.id]
                raise

        logger.debug(f"Created conversation {conversation.id} for {owner_id}")
        return conversation

    async def get_conversation(self, conversation_id: int) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def append_message(
        self, conversation_id: int, role: MessageRole, content: str
    ) -> ChatMessage:
        async with self._lock:
            messages = self._messages.get(conversation_id)
            if conversation_id not in self._conversations or messages is None:
                raise ConversationNotFound(conversation_id)

            message = ChatMessage(
                id=self._allocate_message_id(),
                conversation_id=conversation_id,
                role=role,
                content=content,
                timestamp=self._next_timestamp(),
            )
            messages.append(message)

            try:
                await self._persist()
            except StorageUnavailable:
                messages.pop()
                raise

        return message

    async def list_messages(self, conversation_id: int) -> list[ChatMessage]:
        if conversation_id not in self._conversations:
            raise ConversationNotFound(conversation_id)
        # Append order is timestamp order: timestamps are issued under the lock
        return list(self._messages.get(conversation_id, []))

    async def list_conversations(
        self, owner_id: str = DEFAULT_OWNER_ID
    ) -> list[ConversationSummary]:
        summaries = []
        for conversation in self._conversations.values():
            if conversation.owner_id != owner_id:
                continue
            messages = self._messages.get(conversation.id, [])
            summaries.append(
                ConversationSummary(
                    id=conversation.id,
                    created_at=conversation.created_at,
                    message_count=len(messages),
                    last_message_at=(
                        messages[-1].timestamp if messages else conversation.created_at
                    ),
                )
            )
        return sort_summaries(summaries)

    async def delete_conversation(self, conversation_id: int) -> None:
        async with self._lock:
            conversation = self._conversations.pop(conversation_id, None)
            if conversation is None:
                raise ConversationNotFound(conversation_id)
            messages = self._messages.pop(conversation_id, [])

            try:
                await self._persist()
            except StorageUnavailable:
                self._conversations[conversation_id] = conversation
                self._messages[conversation_id] = messages
                raise

        logger.info(
            f"Deleted conversation {conversation_id} ({len(messages)} messages)"
        )

    async def get_stats(self) -> StoreStats:
        return StoreStats(
            backend=self.backend_name,
            conversations=len(self._conversations),
            messages=sum(len(messages) for messages in self._messages.values()),
        )

    async def _persist(self) -> None:
        """Hook called under the lock after every mutation."""
        pass

    def _allocate_conversation_id(self) -> int:
        conversation_id = self._next_conversation_id
        self._next_conversation_id += 1
        return conversation_id

    def _allocate_message_id(self) -> int:
        message_id = self._next_message_id
        self._next_message_id += 1
        return message_id
