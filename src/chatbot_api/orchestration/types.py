"""
Type definitions for chat orchestration.

This module defines the data classes returned by the ChatOrchestrator to the
HTTP and CLI interfaces.
"""

from dataclasses import dataclass

from ..core.models import TokenUsage


@dataclass
class ChatResult:
    """
    Outcome of one completed chat turn.

    Both the user message and the assistant reply have been persisted by the
    time a ChatResult is returned.
    """

    conversation_id: int
    """Conversation the turn belongs to"""

    reply: str
    """Assistant reply text"""

    usage: TokenUsage
    """Token usage reported (or estimated) by the provider"""

    model: str
    """Model that produced the reply"""

    provider: str
    """Provider that produced the reply"""

    mock: bool = False
    """Whether the reply is an offline placeholder"""

    created_conversation: bool = False
    """Whether this turn started a new conversation"""
