"""
Abstract base client interface for completion providers.

This module defines the standard interface that all completion provider
clients must implement, ensuring consistent behavior across providers.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Any

from ..core.models import ModelRequest, ModelResponse
from ..utils.sanitization import validate_model_name

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """Base exception for client errors."""

    def __init__(
        self,
        message: str,
        provider: str,
        model: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.provider = provider
        self.model = model
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [f"{self.provider}: {self.message}"]
        if self.model:
            parts.append(f"Model: {self.model}")
        return " | ".join(parts)


class AuthenticationError(ClientError):
    """Authentication failed with provider."""

    pass


class RateLimitError(ClientError):
    """Rate limit exceeded."""

    def __init__(
        self, message: str, provider: str, retry_after: int | None = None, **kwargs: Any
    ) -> None:
        super().__init__(message, provider, **kwargs)
        self.retry_after = retry_after


class ModelNotFoundError(ClientError):
    """Requested model not found or unavailable."""

    pass


class RetryableError(ClientError):
    """Error that can be retried."""

    pass


class BaseClient(ABC):
    """
    Abstract base client for all completion providers.

    The orchestrator only ever calls complete(); everything provider-specific
    stays behind this interface.
    """

    def __init__(
        self, provider_name: str, api_key: str | None = None, **kwargs: Any
    ) -> None:
        self.provider_name = provider_name
        self.api_key = api_key

        # Configuration from kwargs
        self.timeout = kwargs.get("timeout", 30)
        self.max_retries = kwargs.get("max_retries", 2)
        self.base_delay = kwargs.get("base_delay", 1.0)
        self.max_delay = kwargs.get("max_delay", 30.0)

        logger.info(f"Initialized {self.provider_name} client")

    @property
    def is_mock(self) -> bool:
        """Whether replies are placeholders rather than real completions."""
        return False

    @abstractmethod
    async def complete(self, request: ModelRequest) -> ModelResponse:
        """
        Execute model completion with standardized interface.

        Args:
            request: Standardized model request

        Returns:
            Standardized model response

        Raises:
            ClientError: Provider-specific errors
        """
        pass

    async def validate_request(self, request: ModelRequest) -> ModelRequest:
        """
        Validate a request before sending it.

        Raises:
            ValidationError: Invalid model name
        """
        model_name = validate_model_name(request.model)
        return request.model_copy(update={"model": model_name})

    async def retry_with_backoff(
        self, operation: Any, *args: Any, **kwargs: Any
    ) -> Any:
        """
        Execute operation with exponential backoff retry logic.

        Args:
            operation: Async function to execute
            *args, **kwargs: Arguments to pass to operation

        Returns:
            Result of successful operation

        Raises:
            ClientError: If all retries are exhausted
        """
        last_exception: RetryableError | None = None

        for attempt in range(self.max_retries + 1):
            try:
                return await operation(*args, **kwargs)
            except RetryableError as e:
                last_exception = e
                if attempt == self.max_retries:
                    break

                # Exponential backoff with 10% jitter
                delay = min(self.base_delay * (2**attempt), self.max_delay)
                jitter = delay * 0.1
                actual_delay = delay + random.uniform(-jitter, jitter)

                logger.warning(
                    f"Attempt {attempt + 1} failed for {self.provider_name}: {e}. "
                    f"Retrying in {actual_delay:.2f}s"
                )
                await asyncio.sleep(max(0.0, actual_delay))
            except ClientError:
                # Non-retryable errors
                raise

        if last_exception is not None:
            raise last_exception
        else:
            raise ClientError(
                "Operation failed without retryable errors", self.provider_name
            )

    def _estimate_tokens(self, text: str) -> int:
        """
        Rough estimation of token count for text.

        Roughly 4 characters per token for English text.
        """
        return max(1, len(text) // 4)

    async def close(self) -> None:
        """Release client resources."""
        pass

    async def __aenter__(self) -> "BaseClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(provider='{self.provider_name}')"
