"""
Tests for the offline echo client.
"""

import pytest

from chatbot_api.clients.echo import MOCK_PREFIX, EchoClient
from chatbot_api.core.models import Message, ModelRequest


class TestEchoClient:
    """Offline placeholder replies."""

    def test_is_mock(self, echo_client):
        assert echo_client.is_mock is True
        assert echo_client.provider_name == "echo"

    @pytest.mark.asyncio
    async def test_echoes_latest_user_message(self, echo_client):
        request = ModelRequest(
            model="gpt-4o-mini",
            messages=[
                Message(role="user", content="first question"),
                Message(role="assistant", content="an answer"),
                Message(role="user", content="second question"),
            ],
        )

        response = await echo_client.complete(request)

        assert response.content == f"{MOCK_PREFIX} Echo: second question"
        assert response.provider == "echo"
        assert response.model == "gpt-4o-mini"
        assert response.metadata == {"mock": True}

    @pytest.mark.asyncio
    async def test_usage_is_estimated(self, echo_client):
        request = ModelRequest(
            model="gpt-4o-mini", messages=[Message(role="user", content="x" * 40)]
        )

        response = await echo_client.complete(request)

        assert response.usage.input_tokens == 10
        assert response.usage.output_tokens > 0
        assert (
            response.usage.total_tokens
            == response.usage.input_tokens + response.usage.output_tokens
        )

    @pytest.mark.asyncio
    async def test_close_is_safe(self):
        async with EchoClient() as client:
            assert client.is_mock
