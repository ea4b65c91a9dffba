"""
ChatOrchestrator for conversation turns.

This module provides the ChatOrchestrator class that coordinates a chat turn:
persisting the user message, assembling the conversation context, calling the
completion provider and persisting the reply.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from ..clients import BaseClient, ClientError, create_client_from_settings
from ..core.exceptions import CompletionFailed, ConversationNotFound
from ..core.models import (
    ChatMessage,
    Conversation,
    ConversationSummary,
    MessageRole,
    ModelRequest,
    ModelResponse,
    StoreStats,
)
from ..storage import ConversationStore, create_store_from_settings
from ..utils.sanitization import sanitize_message, sanitize_owner_id
from .types import ChatResult

if TYPE_CHECKING:
    from ..config.settings import AppSettings

logger = logging.getLogger(__name__)


class ChatOrchestrator:
    """
    Coordinates chat turns between the conversation store and a completion client.

    Turns within one conversation are serialized so that concurrent requests
    always produce user, assistant, user, assistant ordering. Turns in
    different conversations run in parallel.
    """

    def __init__(
        self,
        store: ConversationStore,
        client: BaseClient,
        model: str,
        completion_timeout: float = 60.0,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ):
        """
        Initialize the chat orchestrator.

        Args:
            store: Conversation store used for all persistence
            client: Completion provider client
            model: Model identifier sent with every request
            completion_timeout: Upper bound in seconds for one completion
            temperature: Optional sampling temperature
            max_tokens: Optional generation limit
        """
        self.store = store
        self.client = client
        self.model = model
        self.completion_timeout = completion_timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

        self._turn_locks: dict[int, asyncio.Lock] = {}
        self._turn_users: dict[int, int] = {}

        logger.debug(
            f"ChatOrchestrator initialized: store={store.backend_name}, "
            f"provider={client.provider_name}, model={model}"
        )

    @property
    def provider_name(self) -> str:
        return self.client.provider_name

    @property
    def is_mock(self) -> bool:
        return self.client.is_mock

    async def handle_user_message(
        self,
        text: str,
        conversation_id: int | None = None,
        owner_id: str | None = None,
    ) -> ChatResult:
        """
        Run one chat turn.

        Args:
            text: User message text
            conversation_id: Existing conversation to continue; a missing or
                unknown id starts a new conversation
            owner_id: Owner for a newly created conversation

        Returns:
            ChatResult with the persisted reply and token usage

        Raises:
            ValidationError: The message is missing, empty or too long
            CompletionFailed: The provider failed or timed out; the user
                message stays stored, no reply is stored
            StorageUnavailable: The store could not be written
        """
        content = sanitize_message(text)
        owner = sanitize_owner_id(owner_id)

        created = False
        conversation = None
        if conversation_id is not None:
            conversation = await self.store.get_conversation(conversation_id)
            if conversation is None:
                logger.info(
                    f"Conversation {conversation_id} not found, starting a new one"
                )

        if conversation is None:
            conversation = await self._start_conversation(owner)
            created = True

        turn = await self._run_turn(conversation.id, content)
        if turn is None and not created:
            logger.info(
                f"Conversation {conversation.id} was deleted before the turn, "
                "starting a new one"
            )
            conversation = await self._start_conversation(owner)
            created = True
            turn = await self._run_turn(conversation.id, content)
        if turn is None:
            raise ConversationNotFound(conversation.id)

        history, response = turn

        logger.info(
            f"Completed turn in conversation {conversation.id}: "
            f"{len(history)} context messages, {response.usage.total_tokens} tokens"
        )

        return ChatResult(
            conversation_id=conversation.id,
            reply=response.content,
            usage=response.usage,
            model=response.model,
            provider=response.provider,
            mock=self.client.is_mock,
            created_conversation=created,
        )

    async def _start_conversation(self, owner: str) -> Conversation:
        conversation = await self.store.create_conversation(owner)
        logger.info(
            f"Created conversation {conversation.id} for owner {conversation.owner_id}"
        )
        return conversation

    async def _run_turn(
        self, conversation_id: int, content: str
    ) -> tuple[list[ChatMessage], ModelResponse] | None:
        """
        Store the user message, complete and store the reply.

        Returns None when the conversation no longer exists, in which case
        nothing was stored.
        """
        async with self._turn_lock(conversation_id):
            try:
                await self.store.append_message(
                    conversation_id, MessageRole.USER, content
                )
            except ConversationNotFound:
                return None

            history = await self.store.list_messages(conversation_id)
            response = await self._complete(conversation_id, history)

            # Once the reply is in hand it is stored even if the caller goes away
            await asyncio.shield(
                self.store.append_message(
                    conversation_id, MessageRole.ASSISTANT, response.content
                )
            )

        return history, response

    async def _complete(
        self, conversation_id: int, history: list[ChatMessage]
    ) -> ModelResponse:
        """Call the provider with the full conversation context."""
        request = ModelRequest(
            model=self.model,
            messages=[message.to_context() for message in history],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            metadata={"conversation_id": conversation_id},
        )

        logger.debug(
            f"Requesting completion from {self.client.provider_name} "
            f"for conversation {conversation_id}"
        )

        try:
            return await asyncio.wait_for(
                self.client.complete(request), timeout=self.completion_timeout
            )
        except TimeoutError as e:
            logger.error(
                f"Completion timed out after {self.completion_timeout}s "
                f"for conversation {conversation_id}"
            )
            raise CompletionFailed(
                f"Completion timed out after {self.completion_timeout}s",
                provider=self.client.provider_name,
                model=self.model,
            ) from e
        except ClientError as e:
            logger.error(f"Completion failed for conversation {conversation_id}: {e}")
            raise CompletionFailed(
                e.message,
                provider=e.provider,
                model=e.model or self.model,
                details=e.details,
            ) from e
        except Exception as e:
            logger.exception(
                f"Unexpected completion error for conversation {conversation_id}"
            )
            raise CompletionFailed(
                f"Unexpected error during completion: {e}",
                provider=self.client.provider_name,
                model=self.model,
                details={"error_type": type(e).__name__},
            ) from e

    @asynccontextmanager
    async def _turn_lock(self, conversation_id: int) -> AsyncIterator[None]:
        """Hold the conversation's turn lock, dropping it once nobody uses it."""
        lock = self._turn_locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._turn_locks[conversation_id] = lock
        users = self._turn_users.get(conversation_id, 0)
        self._turn_users[conversation_id] = users + 1

        try:
            async with lock:
                yield
        finally:
            remaining = self._turn_users[conversation_id] - 1
            if remaining:
                self._turn_users[conversation_id] = remaining
            else:
                del self._turn_users[conversation_id]
                del self._turn_locks[conversation_id]

    async def get_history(self, conversation_id: int) -> list[ChatMessage]:
        """
        Ordered messages of a conversation.

        Raises:
            ConversationNotFound: The conversation does not exist
        """
        return await self.store.list_messages(conversation_id)

    async def list_conversations(
        self, owner_id: str | None = None
    ) -> list[ConversationSummary]:
        """Summaries of the owner's conversations, most recently active first."""
        return await self.store.list_conversations(sanitize_owner_id(owner_id))

    async def delete_conversation(self, conversation_id: int) -> None:
        """
        Delete a conversation and all of its messages.

        Raises:
            ConversationNotFound: The conversation does not exist
        """
        await self.store.delete_conversation(conversation_id)
        logger.info(f"Deleted conversation {conversation_id}")

    async def get_stats(self) -> StoreStats:
        return await self.store.get_stats()

    async def close(self) -> None:
        """Release the store and client."""
        await self.client.close()
        await self.store.close()
        logger.debug("ChatOrchestrator closed")


def create_orchestrator(settings: "AppSettings") -> ChatOrchestrator:
    """
    Build an orchestrator from application settings.

    Args:
        settings: Loaded application settings

    Returns:
        Orchestrator wired to the configured store and provider
    """
    store = create_store_from_settings(settings)
    client = create_client_from_settings(settings)

    return ChatOrchestrator(
        store=store,
        client=client,
        model=settings.completion.model,
        completion_timeout=settings.completion.timeout,
        temperature=settings.completion.temperature,
        max_tokens=settings.completion.max_tokens,
    )
