"""
Offline echo client.

Used when no provider credentials are configured, so the service stays usable
for local development and tests. Replies are labelled as mock responses.
"""

import logging
from typing import Any

from ..core.models import ModelRequest, ModelResponse, TokenUsage
from .base import BaseClient

logger = logging.getLogger(__name__)

MOCK_PREFIX = "[mock]"


class EchoClient(BaseClient):
    """Client that answers by echoing the latest user message."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__("echo", None, **kwargs)

    @property
    def is_mock(self) -> bool:
        return True

    async def complete(self, request: ModelRequest) -> ModelResponse:
        validated_request = await self.validate_request(request)

        last_user = next(
            (m.content for m in reversed(validated_request.messages) if m.role == "user"),
            validated_request.messages[-1].content,
        )
        content = f"{MOCK_PREFIX} Echo: {last_user}"

        input_tokens = sum(
            self._estimate_tokens(m.content) for m in validated_request.messages
        )
        output_tokens = self._estimate_tokens(content)

        logger.debug(
            f"Echo reply for {len(validated_request.messages)} context messages"
        )

        return ModelResponse(
            content=content,
            model=validated_request.model,
            usage=TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            provider=self.provider_name,
            metadata={"mock": True},
        )
