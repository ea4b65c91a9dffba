"""
Shared test fixtures and configuration for Chatbot API tests.

This file provides global state management, environment isolation and the
fixtures shared by the storage, orchestration and API tests.
"""

import asyncio
import logging
import os
import warnings
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from chatbot_api.clients import EchoClient
from chatbot_api.clients.base import BaseClient
from chatbot_api.core.models import ModelRequest, ModelResponse, TokenUsage
from chatbot_api.orchestration import ChatOrchestrator
from chatbot_api.storage import (
    InMemoryConversationStore,
    SnapshotFileConversationStore,
    SQLConversationStore,
)

# Suppress specific warnings that can slow down tests
warnings.filterwarnings("ignore", category=DeprecationWarning)

# Configure logging for tests
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("chatbot_api").setLevel(logging.WARNING)


@pytest.fixture(autouse=True, scope="function")
def isolated_environment(tmp_path):
    """
    Isolate environment variables for each test to prevent test pollution.

    This ensures that configuration tests don't inherit environment variables
    from the host system, .env files, or other tests.
    """
    sensitive_env_vars = [
        "LOG_LEVEL",
        "ENVIRONMENT",
        "APP_NAME",
        "DATA_DIR",
        "OPENAI_API_KEY",
        "STORAGE__BACKEND",
        "STORAGE__SNAPSHOT_PATH",
        "STORAGE__DATABASE_URL",
        "COMPLETION__PROVIDER",
        "COMPLETION__MODEL",
        "COMPLETION__TIMEOUT",
        "SERVER__PORT",
    ]

    original_env = {}
    for var in sensitive_env_vars:
        original_env[var] = os.environ.get(var)
        # Remove from environment to test defaults
        if var in os.environ:
            del os.environ[var]

    # Change working directory to temp path to avoid loading .env files
    original_cwd = os.getcwd()
    os.chdir(tmp_path)

    yield

    # Restore original environment and working directory
    os.chdir(original_cwd)
    for var, original_value in original_env.items():
        if original_value is not None:
            os.environ[var] = original_value
        elif var in os.environ:
            del os.environ[var]


@pytest.fixture(autouse=True, scope="function")
def reset_global_state():
    """Reset the configuration manager before and after each test."""
    from chatbot_api.config.settings import config_manager

    config_manager.reset()
    yield
    config_manager.reset()


@pytest.fixture(params=["memory", "file", "sql"])
def store_backend(request):
    """Backend name for contract tests that run against every store."""
    return request.param


def build_store(backend: str, tmp_path):
    if backend == "memory":
        return InMemoryConversationStore()
    if backend == "file":
        return SnapshotFileConversationStore(tmp_path / "conversations.json")
    return SQLConversationStore(f"sqlite:///{tmp_path / 'messages.db'}")


@pytest_asyncio.fixture
async def store(store_backend, tmp_path):
    """A fresh conversation store for each supported backend."""
    conversation_store = build_store(store_backend, tmp_path)
    yield conversation_store
    await conversation_store.close()


@pytest_asyncio.fixture
async def memory_store():
    conversation_store = InMemoryConversationStore()
    yield conversation_store
    await conversation_store.close()


class ScriptedClient(BaseClient):
    """
    Test client returning canned replies.

    Each call records the context it was given. A reply can be a string, an
    exception to raise, or a coroutine function awaited before answering.
    """

    def __init__(self, replies=None, delay: float = 0.0):
        super().__init__("scripted", "sk-test")
        self.replies = list(replies or [])
        self.delay = delay
        self.requests: list[ModelRequest] = []
        self.closed = False

    async def complete(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        reply = (
            self.replies.pop(0)
            if self.replies
            else f"reply to {request.messages[-1].content}"
        )
        if isinstance(reply, BaseException):
            raise reply

        return ModelResponse(
            content=reply,
            model=request.model,
            usage=TokenUsage(input_tokens=10, output_tokens=5, total_tokens=15),
            provider=self.provider_name,
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def scripted_client():
    return ScriptedClient()


@pytest.fixture
def orchestrator(memory_store, scripted_client):
    """Orchestrator over an in-memory store and a scripted provider."""
    return ChatOrchestrator(
        store=memory_store,
        client=scripted_client,
        model="gpt-4o-mini",
        completion_timeout=5.0,
    )


@pytest.fixture
def echo_client():
    return EchoClient()


@pytest.fixture(scope="function")
def mock_http_client():
    """
    Provide a mock HTTP client for testing.

    This prevents tests from making real network calls and
    ensures consistent, fast test execution.
    """
    mock_client = AsyncMock()

    # Default successful response
    mock_response = MagicMock()
    mock_response.status_code = 200
    mock_response.json.return_value = {
        "id": "chatcmpl-test",
        "model": "gpt-4o-mini",
        "choices": [{"message": {"content": "Test response"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }

    mock_client.post.return_value = mock_response
    return mock_client


# Pytest configuration hooks
def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Mark integration tests by location."""
    for item in items:
        if "integration" in item.nodeid or "test_api" in item.nodeid:
            item.add_marker(pytest.mark.integration)
