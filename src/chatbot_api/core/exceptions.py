"""
Error taxonomy shared by the store, the orchestrator and the HTTP layer.
"""

from typing import Any


class ChatServiceError(Exception):
    """Base exception for chat service errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ValidationError(ChatServiceError):
    """Bad or missing input. No state was changed."""

    pass


class ConversationNotFound(ChatServiceError):
    """The addressed conversation does not exist."""

    def __init__(self, conversation_id: Any, **kwargs: Any) -> None:
        super().__init__(f"Conversation not found: {conversation_id}", **kwargs)
        self.conversation_id = conversation_id


class StorageUnavailable(ChatServiceError):
    """The persistence medium is unreachable or corrupt."""

    pass


class CompletionFailed(ChatServiceError):
    """The completion provider failed or timed out."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.provider = provider
        self.model = model
