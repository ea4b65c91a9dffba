"""
Core data models and error taxonomy.
"""

from .exceptions import (
    ChatServiceError,
    CompletionFailed,
    ConversationNotFound,
    StorageUnavailable,
    ValidationError,
)
from .models import (
    ChatMessage,
    Conversation,
    ConversationSummary,
    Message,
    MessageRole,
    ModelRequest,
    ModelResponse,
    StoreStats,
    TokenUsage,
)

__all__ = [
    "ChatMessage",
    "ChatServiceError",
    "CompletionFailed",
    "Conversation",
    "ConversationNotFound",
    "ConversationSummary",
    "Message",
    "MessageRole",
    "ModelRequest",
    "ModelResponse",
    "StorageUnavailable",
    "StoreStats",
    "TokenUsage",
    "ValidationError",
]
