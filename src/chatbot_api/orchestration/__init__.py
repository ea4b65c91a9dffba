"""
Chat orchestration: one request/response turn over the store and provider.
"""

from .orchestrator import ChatOrchestrator, create_orchestrator
from .types import ChatResult

__all__ = ["ChatOrchestrator", "ChatResult", "create_orchestrator"]
