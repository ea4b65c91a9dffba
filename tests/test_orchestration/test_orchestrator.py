"""
Tests for the ChatOrchestrator turn workflow.
"""

import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest

from chatbot_api.clients import EchoClient
from chatbot_api.clients.base import AuthenticationError
from chatbot_api.config.settings import AppSettings
from chatbot_api.core.exceptions import (
    CompletionFailed,
    ConversationNotFound,
    StorageUnavailable,
    ValidationError,
)
from chatbot_api.core.models import MessageRole
from chatbot_api.orchestration import ChatOrchestrator, create_orchestrator
from chatbot_api.storage import InMemoryConversationStore, SQLConversationStore


class TestHandleUserMessage:
    """Successful turns."""

    @pytest.mark.asyncio
    async def test_new_conversation(self, orchestrator, memory_store):
        result = await orchestrator.handle_user_message("Hello")

        assert result.created_conversation is True
        assert result.reply == "reply to Hello"
        assert result.usage.total_tokens == 15
        assert result.provider == "scripted"
        assert result.mock is False

        messages = await memory_store.list_messages(result.conversation_id)
        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.USER, "Hello"),
            (MessageRole.ASSISTANT, "reply to Hello"),
        ]

    @pytest.mark.asyncio
    async def test_second_turn_sends_full_context(
        self, orchestrator, scripted_client
    ):
        first = await orchestrator.handle_user_message("Hello")
        second = await orchestrator.handle_user_message(
            "How are you?", conversation_id=first.conversation_id
        )

        assert second.conversation_id == first.conversation_id
        assert second.created_conversation is False

        context = scripted_client.requests[-1].messages
        assert [(m.role, m.content) for m in context] == [
            ("user", "Hello"),
            ("assistant", "reply to Hello"),
            ("user", "How are you?"),
        ]
        assert scripted_client.requests[-1].model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_unknown_conversation_starts_new_one(self, orchestrator):
        result = await orchestrator.handle_user_message("Hi", conversation_id=999)

        assert result.created_conversation is True
        assert result.conversation_id != 999

    @pytest.mark.asyncio
    async def test_conversation_deleted_before_turn_starts_new_one(
        self, orchestrator, memory_store, monkeypatch
    ):
        existing = await memory_store.create_conversation("alice")
        lookup = memory_store.get_conversation

        async def lookup_then_delete(conversation_id):
            found = await lookup(conversation_id)
            await memory_store.delete_conversation(conversation_id)
            return found

        monkeypatch.setattr(memory_store, "get_conversation", lookup_then_delete)

        result = await orchestrator.handle_user_message(
            "Hi", conversation_id=existing.id, owner_id="alice"
        )

        assert result.created_conversation is True
        assert result.conversation_id != existing.id
        messages = await memory_store.list_messages(result.conversation_id)
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert orchestrator._turn_locks == {}

    @pytest.mark.asyncio
    async def test_owner_assigned_to_new_conversation(self, orchestrator):
        result = await orchestrator.handle_user_message("Hi", owner_id="alice")

        summaries = await orchestrator.list_conversations("alice")
        assert [s.id for s in summaries] == [result.conversation_id]
        assert await orchestrator.list_conversations() == []

    @pytest.mark.asyncio
    async def test_message_is_sanitized(self, orchestrator, memory_store):
        result = await orchestrator.handle_user_message("  Hello\x00  ")

        messages = await memory_store.list_messages(result.conversation_id)
        assert messages[0].content == "Hello"

    @pytest.mark.asyncio
    async def test_request_options_forwarded(self, memory_store, scripted_client):
        orchestrator = ChatOrchestrator(
            store=memory_store,
            client=scripted_client,
            model="gpt-4o",
            temperature=0.2,
            max_tokens=64,
        )

        await orchestrator.handle_user_message("Hi")

        request = scripted_client.requests[0]
        assert request.model == "gpt-4o"
        assert request.temperature == 0.2
        assert request.max_tokens == 64

    @pytest.mark.asyncio
    async def test_echo_client_marks_reply_as_mock(self, memory_store):
        orchestrator = ChatOrchestrator(
            store=memory_store, client=EchoClient(), model="gpt-4o-mini"
        )

        result = await orchestrator.handle_user_message("ping")

        assert result.mock is True
        assert "ping" in result.reply
        assert len(await memory_store.list_messages(result.conversation_id)) == 2


class TestValidation:
    """Rejected input leaves no state behind."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [None, "", "   ", 42])
    async def test_invalid_message_rejected(self, orchestrator, memory_store, text):
        with pytest.raises(ValidationError):
            await orchestrator.handle_user_message(text)

        stats = await memory_store.get_stats()
        assert stats.conversations == 0
        assert stats.messages == 0

    @pytest.mark.asyncio
    async def test_too_long_message_rejected(self, orchestrator, scripted_client):
        with pytest.raises(ValidationError, match="maximum length"):
            await orchestrator.handle_user_message("x" * 50001)

        assert scripted_client.requests == []


class TestFailFast:
    """Provider failures keep the user turn and store no reply."""

    @pytest.mark.asyncio
    async def test_client_error_raises_completion_failed(
        self, orchestrator, scripted_client, memory_store
    ):
        first = await orchestrator.handle_user_message("Hello")
        scripted_client.replies = [AuthenticationError("bad key", provider="scripted")]

        with pytest.raises(CompletionFailed) as exc_info:
            await orchestrator.handle_user_message(
                "Again", conversation_id=first.conversation_id
            )

        assert exc_info.value.provider == "scripted"
        assert isinstance(exc_info.value.__cause__, AuthenticationError)

        messages = await memory_store.list_messages(first.conversation_id)
        assert [m.role for m in messages] == [
            MessageRole.USER,
            MessageRole.ASSISTANT,
            MessageRole.USER,
        ]
        assert messages[-1].content == "Again"

    @pytest.mark.asyncio
    async def test_unexpected_error_raises_completion_failed(
        self, orchestrator, scripted_client
    ):
        scripted_client.replies = [RuntimeError("socket exploded")]

        with pytest.raises(CompletionFailed, match="socket exploded"):
            await orchestrator.handle_user_message("Hello")

    @pytest.mark.asyncio
    async def test_timeout_leaves_only_user_turn(self, memory_store, scripted_client):
        scripted_client.delay = 1.0
        orchestrator = ChatOrchestrator(
            store=memory_store,
            client=scripted_client,
            model="gpt-4o-mini",
            completion_timeout=0.05,
        )

        with pytest.raises(CompletionFailed, match="timed out"):
            await orchestrator.handle_user_message("Hello")

        [summary] = await memory_store.list_conversations()
        messages = await memory_store.list_messages(summary.id)
        assert [(m.role, m.content) for m in messages] == [(MessageRole.USER, "Hello")]

    @pytest.mark.asyncio
    async def test_conversation_usable_after_failure(
        self, orchestrator, scripted_client, memory_store
    ):
        scripted_client.replies = [RuntimeError("down"), "back again"]

        with pytest.raises(CompletionFailed):
            await orchestrator.handle_user_message("first")
        [summary] = await memory_store.list_conversations()

        result = await orchestrator.handle_user_message(
            "second", conversation_id=summary.id
        )

        assert result.reply == "back again"
        context = scripted_client.requests[-1].messages
        assert [m.content for m in context] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, scripted_client):
        store = InMemoryConversationStore()
        orchestrator = ChatOrchestrator(
            store=store, client=scripted_client, model="gpt-4o-mini"
        )

        with patch.object(
            store,
            "_persist",
            AsyncMock(side_effect=StorageUnavailable("disk gone")),
        ):
            with pytest.raises(StorageUnavailable):
                await orchestrator.handle_user_message("Hello")

        assert scripted_client.requests == []


class TestConcurrency:
    """Turn serialization and parallelism."""

    @pytest.mark.asyncio
    async def test_same_conversation_turns_alternate(
        self, orchestrator, scripted_client, memory_store
    ):
        scripted_client.delay = 0.01
        first = await orchestrator.handle_user_message("start")
        conversation_id = first.conversation_id

        await asyncio.gather(
            *[
                orchestrator.handle_user_message(
                    f"message {i}", conversation_id=conversation_id
                )
                for i in range(5)
            ]
        )

        messages = await memory_store.list_messages(conversation_id)
        roles = [m.role for m in messages]
        assert len(messages) == 12
        assert roles == [MessageRole.USER, MessageRole.ASSISTANT] * 6
        # Every reply answers the user message immediately before it
        for user, assistant in zip(messages[::2], messages[1::2], strict=True):
            assert assistant.content == f"reply to {user.content}"
        assert orchestrator._turn_locks == {}
        assert orchestrator._turn_users == {}

    @pytest.mark.asyncio
    async def test_different_conversations_run_in_parallel(
        self, memory_store, scripted_client
    ):
        scripted_client.delay = 0.2
        orchestrator = ChatOrchestrator(
            store=memory_store, client=scripted_client, model="gpt-4o-mini"
        )

        started = time.monotonic()
        results = await asyncio.gather(
            *[orchestrator.handle_user_message(f"hello {i}") for i in range(5)]
        )
        elapsed = time.monotonic() - started

        assert len({r.conversation_id for r in results}) == 5
        # Serialized execution would take at least a full second
        assert elapsed < 0.8

    @pytest.mark.asyncio
    async def test_turn_locks_released_after_each_turn(self, orchestrator):
        for i in range(3):
            await orchestrator.handle_user_message(f"hello {i}")

        assert orchestrator._turn_locks == {}
        assert orchestrator._turn_users == {}


class TestCancellation:
    """A caller going away mid-turn."""

    @pytest.mark.asyncio
    async def test_cancel_during_completion_keeps_user_turn(
        self, orchestrator, scripted_client, memory_store
    ):
        scripted_client.delay = 1.0
        task = asyncio.create_task(orchestrator.handle_user_message("hi"))
        await asyncio.sleep(0.1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        [conversation] = await memory_store.list_conversations()
        messages = await memory_store.list_messages(conversation.id)
        assert [(m.role, m.content) for m in messages] == [(MessageRole.USER, "hi")]
        assert orchestrator._turn_locks == {}

        scripted_client.delay = 0.0
        result = await orchestrator.handle_user_message(
            "again", conversation_id=conversation.id
        )

        assert result.created_conversation is False
        messages = await memory_store.list_messages(conversation.id)
        assert [m.role for m in messages] == [
            MessageRole.USER,
            MessageRole.USER,
            MessageRole.ASSISTANT,
        ]

    @pytest.mark.asyncio
    async def test_reply_stored_when_cancelled_during_append(
        self, orchestrator, memory_store, monkeypatch
    ):
        append = memory_store.append_message

        async def slow_assistant_append(conversation_id, role, content):
            if role is MessageRole.ASSISTANT:
                await asyncio.sleep(0.2)
            return await append(conversation_id, role, content)

        monkeypatch.setattr(memory_store, "append_message", slow_assistant_append)

        task = asyncio.create_task(orchestrator.handle_user_message("hi"))
        await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        # The shielded append finishes on its own
        await asyncio.sleep(0.3)
        [conversation] = await memory_store.list_conversations()
        messages = await memory_store.list_messages(conversation.id)
        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.USER, "hi"),
            (MessageRole.ASSISTANT, "reply to hi"),
        ]


class TestReadOperations:
    """Delegated store operations."""

    @pytest.mark.asyncio
    async def test_get_history(self, orchestrator):
        result = await orchestrator.handle_user_message("Hello")

        history = await orchestrator.get_history(result.conversation_id)

        assert [m.content for m in history] == ["Hello", "reply to Hello"]

    @pytest.mark.asyncio
    async def test_get_history_missing(self, orchestrator):
        with pytest.raises(ConversationNotFound):
            await orchestrator.get_history(5)

    @pytest.mark.asyncio
    async def test_delete_conversation(self, orchestrator):
        result = await orchestrator.handle_user_message("Hello")

        await orchestrator.delete_conversation(result.conversation_id)

        with pytest.raises(ConversationNotFound):
            await orchestrator.get_history(result.conversation_id)
        assert result.conversation_id not in orchestrator._turn_locks

    @pytest.mark.asyncio
    async def test_get_stats(self, orchestrator):
        await orchestrator.handle_user_message("Hello")

        stats = await orchestrator.get_stats()

        assert stats.backend == "memory"
        assert stats.conversations == 1
        assert stats.messages == 2

    @pytest.mark.asyncio
    async def test_close_releases_client(self, orchestrator, scripted_client):
        await orchestrator.close()

        assert scripted_client.closed is True


class TestCreateOrchestrator:
    """Wiring from settings."""

    @pytest.mark.asyncio
    async def test_defaults_to_sql_store_and_echo_client(self, tmp_path):
        settings = AppSettings(data_dir=str(tmp_path))

        orchestrator = create_orchestrator(settings)

        assert isinstance(orchestrator.store, SQLConversationStore)
        assert isinstance(orchestrator.client, EchoClient)
        assert orchestrator.model == "gpt-4o-mini"
        assert orchestrator.completion_timeout == 60.0
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_memory_store_and_completion_settings(self):
        settings = AppSettings(
            storage={"backend": "memory"},
            completion={"provider": "echo", "model": "gpt-4o", "timeout": 5},
        )

        orchestrator = create_orchestrator(settings)

        assert isinstance(orchestrator.store, InMemoryConversationStore)
        assert orchestrator.model == "gpt-4o"
        assert orchestrator.completion_timeout == 5
        await orchestrator.close()
