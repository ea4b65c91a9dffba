"""
Completion provider clients.

This package provides a unified interface to completion providers through the
BaseClient abstraction.
"""

import logging
from typing import TYPE_CHECKING

from .base import (
    AuthenticationError,
    BaseClient,
    ClientError,
    ModelNotFoundError,
    RateLimitError,
    RetryableError,
)
from .echo import EchoClient
from .openai_compat import OpenAICompatibleClient

if TYPE_CHECKING:
    from ..config.settings import AppSettings

logger = logging.getLogger(__name__)

__all__ = [
    "BaseClient",
    "ClientError",
    "AuthenticationError",
    "RateLimitError",
    "ModelNotFoundError",
    "RetryableError",
    "EchoClient",
    "OpenAICompatibleClient",
    "create_client",
    "create_client_from_settings",
    "get_supported_providers",
]

PROVIDER_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
}


def create_client(provider: str, **kwargs) -> BaseClient:
    """
    Create a client for the specified provider.

    Args:
        provider: Provider name ("openai", "openrouter" or "echo")
        **kwargs: Provider-specific configuration

    Returns:
        Configured client instance

    Raises:
        ValueError: If provider is not supported

    Example:
        >>> client = create_client("openai", api_key="sk-...")
        >>> response = await client.complete(request)
    """
    provider = provider.lower().strip()

    if provider in PROVIDER_BASE_URLS:
        if not kwargs.get("api_key"):
            raise ValueError(f"{provider} API key is required but not provided")
        api_key = kwargs.pop("api_key")
        base_url = kwargs.pop("base_url", None) or PROVIDER_BASE_URLS[provider]
        return OpenAICompatibleClient(
            api_key=api_key, base_url=base_url, provider_name=provider, **kwargs
        )
    elif provider == "echo":
        kwargs.pop("api_key", None)
        kwargs.pop("base_url", None)
        return EchoClient(**kwargs)
    else:
        raise ValueError(f"Unsupported provider: {provider}")


def get_supported_providers() -> list[str]:
    """Get list of supported provider names."""
    return [*PROVIDER_BASE_URLS, "echo"]


def create_client_from_settings(settings: "AppSettings") -> BaseClient:
    """
    Create the client selected by the application settings.

    Falls back to the echo client when no API key is configured.
    """
    provider = settings.completion.provider
    if provider != "echo" and not settings.openai_api_key:
        logger.warning(
            f"No API key configured for {provider}; replies will be mock echoes"
        )
        provider = "echo"

    return create_client(
        provider,
        api_key=settings.openai_api_key,
        base_url=settings.completion.base_url,
        timeout=settings.api.timeout,
        max_retries=settings.api.retries,
        base_delay=settings.api.backoff_factor,
        max_delay=settings.api.max_backoff,
    )
