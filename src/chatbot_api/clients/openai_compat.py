"""
OpenAI-compatible client implementation.

This module provides a concrete implementation of the BaseClient interface
for any service exposing the OpenAI chat completions API (OpenAI itself,
OpenRouter, and self-hosted gateways).
"""

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from ..core.exceptions import ValidationError
from ..core.models import ModelRequest, ModelResponse, TokenUsage
from .base import (
    AuthenticationError,
    BaseClient,
    ClientError,
    ModelNotFoundError,
    RateLimitError,
    RetryableError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatibleClient(BaseClient):
    """
    Client for the chat completions wire format.

    The full context (every stored turn plus the new user message) is sent on
    each request; the service keeps no state between calls.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        provider_name: str = "openai",
        http_client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(provider_name, api_key, **kwargs)

        if not api_key:
            raise ValueError(f"{provider_name} API key is required")

        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")

        # HTTP client configuration
        self._http_client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

    async def complete(self, request: ModelRequest) -> ModelResponse:
        """
        Execute model completion via the chat completions endpoint.

        Args:
            request: Standardized model request

        Returns:
            Standardized model response

        Raises:
            ClientError: API or validation errors
        """
        # Validate request
        validated_request = await self.validate_request(request)

        payload = self._prepare_request(validated_request)

        try:
            # Make API call with retry logic
            response = await self.retry_with_backoff(
                self._make_completion_request, payload
            )

            return self._parse_response(response, validated_request)

        except Exception as e:
            logger.error(f"{self.provider_name} completion failed: {e}")
            if isinstance(e, ClientError | ValidationError):
                raise
            else:
                raise ClientError(
                    f"Unexpected error during completion: {e}",
                    provider=self.provider_name,
                    model=request.model,
                    details={"error_type": type(e).__name__},
                ) from e

    def _prepare_request(self, request: ModelRequest) -> dict[str, Any]:
        """Prepare the wire request from a standardized request."""
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [
                {"role": msg.role, "content": msg.content} for msg in request.messages
            ],
        }

        # Add optional parameters
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens

        if request.temperature is not None:
            payload["temperature"] = request.temperature

        return payload

    async def _make_completion_request(
        self, request_data: dict[str, Any]
    ) -> httpx.Response:
        """Make the actual HTTP request."""
        try:
            response = await self._http_client.post(
                "/chat/completions", json=request_data
            )
        except httpx.TimeoutException as e:
            raise RetryableError(
                f"Request timed out: {e}",
                provider=self.provider_name,
                model=request_data.get("model"),
            ) from e
        except httpx.TransportError as e:
            raise RetryableError(
                f"Connection failed: {e}",
                provider=self.provider_name,
                model=request_data.get("model"),
            ) from e

        if response.status_code != 200:
            self._handle_http_error(response, request_data.get("model"))

        return response

    def _handle_http_error(self, response: httpx.Response, model: str | None) -> None:
        """Map HTTP error responses to client exceptions."""
        try:
            error_data = response.json()
            error_info = error_data.get("error", {})
            if isinstance(error_info, str):
                error_message = error_info
            else:
                error_message = error_info.get(
                    "message", f"HTTP {response.status_code}"
                )
        except ValueError:
            error_message = f"HTTP {response.status_code}: {response.text[:200]}"

        details = {"status_code": response.status_code}

        if response.status_code == 401:
            raise AuthenticationError(
                f"Authentication failed: {error_message}",
                provider=self.provider_name,
                model=model,
                details=details,
            )
        elif response.status_code == 404:
            raise ModelNotFoundError(
                f"Model not found: {error_message}",
                provider=self.provider_name,
                model=model,
                details=details,
            )
        elif response.status_code == 429:
            retry_after = None
            if "retry-after" in response.headers:
                try:
                    retry_after = int(response.headers["retry-after"])
                except ValueError:
                    retry_after = None

            raise RateLimitError(
                f"Rate limit exceeded: {error_message}",
                provider=self.provider_name,
                retry_after=retry_after,
                model=model,
                details=details,
            )
        elif response.status_code in (408, 500, 502, 503, 504):
            raise RetryableError(
                f"Service temporarily unavailable: {error_message}",
                provider=self.provider_name,
                model=model,
                details=details,
            )
        else:
            raise ClientError(
                f"API error: {error_message}",
                provider=self.provider_name,
                model=model,
                details=details,
            )

    def _parse_response(
        self, response: httpx.Response, request: ModelRequest
    ) -> ModelResponse:
        """Parse a chat completions response into standardized format."""
        try:
            data = response.json()
        except ValueError as e:
            raise ClientError(
                f"Failed to parse response: {e}",
                provider=self.provider_name,
                model=request.model,
                details={"error_type": type(e).__name__},
            ) from e

        choices = data.get("choices") or []
        if not choices:
            raise ClientError(
                "No choices in response",
                provider=self.provider_name,
                model=request.model,
            )

        content = (choices[0].get("message") or {}).get("content") or ""
        if not content.strip():
            raise ClientError(
                "Empty completion in response",
                provider=self.provider_name,
                model=request.model,
            )

        usage_data = data.get("usage") or {}
        input_tokens = usage_data.get("prompt_tokens", 0)
        output_tokens = usage_data.get("completion_tokens", 0)
        usage = TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )

        return ModelResponse(
            content=content,
            model=data.get("model") or request.model,
            usage=usage,
            provider=self.provider_name,
            metadata={
                "response_id": data.get("id"),
                "finish_reason": choices[0].get("finish_reason"),
                "response_time": datetime.now(UTC).isoformat(),
            },
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._http_client.aclose()
