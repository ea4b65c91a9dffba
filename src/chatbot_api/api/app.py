"""
HTTP interface for the Chatbot API.

Exposes the chat orchestrator over FastAPI. Domain exceptions raised by the
orchestrator and the store are translated to JSON error bodies of the form
{"success": false, "error": ..., "details": ...}.
"""

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..config.settings import AppSettings, get_settings
from ..core.exceptions import (
    ChatServiceError,
    CompletionFailed,
    ConversationNotFound,
    StorageUnavailable,
    ValidationError,
)
from ..core.models import MAX_CONVERSATION_ID, ChatMessage, ConversationSummary
from ..orchestration import ChatOrchestrator, create_orchestrator

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "POST /message": "Send a message and get AI response",
    "GET /history/{conversationId}": "Get conversation history",
    "GET /conversations": "List all conversations",
    "DELETE /conversation/{id}": "Delete a conversation",
    "GET /health": "Health check",
}


def setup_api_logging(level: str = "INFO") -> None:
    """Configure logging for the HTTP server process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class MessageRequest(BaseModel):
    """Body of POST /message."""

    model_config = ConfigDict(populate_by_name=True)

    # Validated by the orchestrator so a missing message is a 400 with a clear error
    message: Any = Field(default=None, description="User message text")
    conversation_id: int | str | None = Field(
        default=None, alias="conversationId", description="Conversation to continue"
    )
    user_id: str | None = Field(
        default=None, alias="userId", description="Owner of a new conversation"
    )


def _parse_conversation_id(value: Any) -> int | None:
    """Integer conversation id, or None when the value cannot name a conversation."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        parsed = value
    else:
        try:
            parsed = int(str(value).strip())
        except ValueError:
            return None

    if not 1 <= parsed <= MAX_CONVERSATION_ID:
        return None
    return parsed


def _error_response(
    status_code: int, error: str, details: Any | None = None
) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _message_to_api(message: ChatMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role.value,
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
    }


def _summary_to_api(summary: ConversationSummary) -> dict[str, Any]:
    return {
        "id": summary.id,
        "createdAt": summary.created_at.isoformat(),
        "messageCount": summary.message_count,
        "lastMessageAt": summary.last_message_at.isoformat(),
    }


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return _error_response(400, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(
        request: Request, exc: RequestValidationError
    ):
        errors = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
            for error in exc.errors()
        ]
        return _error_response(400, "Invalid request body", errors)

    @app.exception_handler(ConversationNotFound)
    async def handle_not_found(request: Request, exc: ConversationNotFound):
        return _error_response(404, "Conversation not found")

    @app.exception_handler(CompletionFailed)
    async def handle_completion_failed(request: Request, exc: CompletionFailed):
        logger.error(f"Completion failed on {request.url.path}: {exc.message}")
        return _error_response(500, "Failed to process message", exc.message)

    @app.exception_handler(StorageUnavailable)
    async def handle_storage_unavailable(request: Request, exc: StorageUnavailable):
        logger.error(f"Storage unavailable on {request.url.path}: {exc.message}")
        return _error_response(500, "Storage unavailable", exc.message)


def create_app(
    orchestrator: ChatOrchestrator | None = None,
    settings: AppSettings | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        orchestrator: Orchestrator to serve; built from settings when omitted
        settings: Application settings; the global settings when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    orchestrator = orchestrator or create_orchestrator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"{settings.app_name} starting: store={orchestrator.store.backend_name}, "
            f"provider={orchestrator.provider_name}, "
            f"API key {'configured' if settings.provider_configured else 'missing'}"
        )
        yield
        logger.info("Shutting down, closing store and provider client")
        await orchestrator.close()

    app = FastAPI(
        title=settings.app_name, version=settings.app_version, lifespan=lifespan
    )
    app.state.orchestrator = orchestrator
    app.state.settings = settings

    if settings.server.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.server.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    _register_exception_handlers(app)

    @app.post("/message")
    async def send_message(body: MessageRequest) -> dict[str, Any]:
        result = await orchestrator.handle_user_message(
            body.message,
            conversation_id=_parse_conversation_id(body.conversation_id),
            owner_id=body.user_id,
        )
        return {
            "success": True,
            "conversationId": result.conversation_id,
            "reply": result.reply,
            "usage": result.usage.to_api(),
            "model": result.model,
            "mock": result.mock,
        }

    @app.get("/history/{conversation_id}")
    async def get_history(conversation_id: str) -> dict[str, Any]:
        parsed_id = _parse_conversation_id(conversation_id)
        if parsed_id is None:
            raise ConversationNotFound(conversation_id)

        messages = await orchestrator.get_history(parsed_id)
        return {
            "success": True,
            "conversationId": parsed_id,
            "messages": [_message_to_api(m) for m in messages],
        }

    @app.get("/conversations")
    async def list_conversations(userId: str | None = None) -> dict[str, Any]:
        summaries = await orchestrator.list_conversations(userId)
        return {
            "success": True,
            "conversations": [_summary_to_api(s) for s in summaries],
        }

    @app.delete("/conversation/{conversation_id}")
    async def delete_conversation(conversation_id: str) -> dict[str, Any]:
        parsed_id = _parse_conversation_id(conversation_id)
        if parsed_id is None:
            raise ConversationNotFound(conversation_id)

        await orchestrator.delete_conversation(parsed_id)
        return {"success": True, "message": "Conversation deleted"}

    @app.get("/health")
    async def health() -> dict[str, Any]:
        status = "OK"
        stats: dict[str, Any] | None
        try:
            stats = (await orchestrator.get_stats()).model_dump()
        except ChatServiceError as e:
            logger.warning(f"Health check could not read store stats: {e}")
            status = "DEGRADED"
            stats = None

        return {
            "status": status,
            "timestamp": datetime.now(UTC).isoformat(),
            "providerConfigured": settings.provider_configured,
            "mock": orchestrator.is_mock,
            "stats": stats,
        }

    @app.get("/")
    async def index() -> dict[str, Any]:
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "endpoints": ENDPOINTS,
        }

    return app
