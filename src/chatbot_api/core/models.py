"""
Core Pydantic models for the Chatbot API.

This module contains the data models shared by the conversation store, the
completion clients and the HTTP layer, providing type safety, validation, and
serialization capabilities.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_OWNER_ID = "anonymous"

# Largest id a signed 64-bit primary key can hold
MAX_CONVERSATION_ID = 2**63 - 1


class MessageRole(str, Enum):
    """Roles a stored message can carry."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


# Stored entities

class Conversation(BaseModel):
    """A conversation thread owned by a caller-supplied identifier."""
    id: int = Field(..., ge=1, description="Store-assigned conversation identifier")
    owner_id: str = Field(default=DEFAULT_OWNER_ID, description="Caller-supplied owner identifier")
    created_at: datetime = Field(..., description="Creation time (UTC)")


class ChatMessage(BaseModel):
    """A single persisted turn of a conversation."""
    id: int = Field(..., ge=1, description="Store-assigned message identifier")
    conversation_id: int = Field(..., ge=1, description="Owning conversation")
    role: MessageRole = Field(..., description="Message role")
    content: str = Field(..., min_length=1, description="Message text")
    timestamp: datetime = Field(..., description="Write time (UTC), the ordering key")

    def to_context(self) -> "Message":
        """Strip storage metadata, keeping what a completion provider needs."""
        return Message(role=self.role.value, content=self.content)


class ConversationSummary(BaseModel):
    """Listing entry for a conversation."""
    id: int = Field(..., description="Conversation identifier")
    created_at: datetime = Field(..., description="Creation time (UTC)")
    message_count: int = Field(..., ge=0, description="Number of stored messages")
    last_message_at: datetime = Field(..., description="Latest message time, or creation time when empty")


class StoreStats(BaseModel):
    """Store statistics for the health endpoint."""
    backend: str = Field(..., description="Persistence strategy in use")
    conversations: int = Field(..., ge=0)
    messages: int = Field(..., ge=0)


# Completion provider models

class Message(BaseModel):
    """Standardized message format for model interactions."""
    role: str = Field(..., description="Message role (user, assistant, system)")
    content: str = Field(..., description="Message content")

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        valid_roles = {role.value for role in MessageRole}
        if v not in valid_roles:
            raise ValueError(f"Role must be one of {valid_roles}")
        return v

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        if not v or not v.strip():
            raise ValueError("Message content cannot be empty")
        return v


class TokenUsage(BaseModel):
    """Token usage information from model APIs."""
    input_tokens: int = Field(..., ge=0, description="Number of input tokens")
    output_tokens: int = Field(..., ge=0, description="Number of output tokens")
    total_tokens: int = Field(..., ge=0, description="Total tokens used")

    @model_validator(mode='after')
    def validate_total(self):
        if self.total_tokens != self.input_tokens + self.output_tokens:
            raise ValueError("Total tokens must equal input_tokens + output_tokens")
        return self

    def to_api(self) -> Dict[str, int]:
        """Usage counters in the provider's wire naming."""
        return {
            "prompt_tokens": self.input_tokens,
            "completion_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


class ModelRequest(BaseModel):
    """Standardized request format for all completion providers."""
    model: str = Field(..., description="Model identifier")
    messages: List[Message] = Field(..., min_length=1, description="Conversation messages")
    max_tokens: Optional[int] = Field(None, ge=1, le=32000, description="Maximum tokens to generate")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0, description="Sampling temperature")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional request metadata")


class ModelResponse(BaseModel):
    """Standardized response format from completion providers."""
    content: str = Field(..., description="Generated content")
    model: str = Field(..., description="Model used for generation")
    usage: TokenUsage = Field(..., description="Token usage information")
    provider: str = Field(..., description="Model provider")
    request_id: str = Field(default_factory=lambda: str(uuid4()), description="Unique request identifier")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Response timestamp")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional response metadata")
