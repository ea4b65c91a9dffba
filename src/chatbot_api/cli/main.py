"""
CLI interface for the Chatbot API.

This module provides the command line application using Typer, with support for:
- Serving the HTTP API with uvicorn
- Chatting and inspecting conversations directly against the configured store
- Exporting a configuration template
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from chatbot_api.api import create_app, setup_api_logging
from chatbot_api.config.settings import AppSettings, config_manager, get_settings
from chatbot_api.core.exceptions import (
    ChatServiceError,
    CompletionFailed,
    ConversationNotFound,
    ValidationError,
)
from chatbot_api.orchestration import ChatOrchestrator, create_orchestrator

T = TypeVar("T")

# Initialize CLI components
app = typer.Typer(
    name="chatbot-api",
    help="Conversational chat API backed by an LLM completion provider",
    no_args_is_help=True,
)
console = Console()

CONFIG_OPTION_HELP = "Path to a YAML configuration file"


class CLIError(Exception):
    """User-friendly CLI error."""

    def __init__(self, message: str, exit_code: int = 1):
        self.message = message
        self.exit_code = exit_code
        super().__init__(message)


def run_async(coro: Awaitable[T]) -> T:
    """Run async coroutine in sync context."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    # Already inside an event loop; run on a fresh one in a worker thread
    import concurrent.futures

    with concurrent.futures.ThreadPoolExecutor() as executor:
        return executor.submit(asyncio.run, coro).result()


def handle_cli_error(func):
    """Decorator to handle CLI errors gracefully."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CLIError as e:
            console.print(f"[red]Error:[/red] {e.message}")
            raise typer.Exit(e.exit_code) from None
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            raise typer.Exit(130) from None
        except typer.Exit:
            raise
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {str(e)}")
            console.print("[dim]Use --help for usage information[/dim]")
            raise typer.Exit(1) from e

    return wrapper


def _load_settings(config_path: Path | None) -> AppSettings:
    if config_path is not None:
        if not config_path.exists():
            raise CLIError(f"Configuration file not found: {config_path}")
        return config_manager.load_configuration(config_path)
    return get_settings()


async def _with_orchestrator(
    settings: AppSettings, operation: Callable[[ChatOrchestrator], Awaitable[T]]
) -> T:
    """Run an operation against a freshly built orchestrator, mapping domain errors."""
    orchestrator = create_orchestrator(settings)
    try:
        return await operation(orchestrator)
    except ValidationError as e:
        raise CLIError(e.message, exit_code=2) from e
    except ConversationNotFound as e:
        raise CLIError(e.message, exit_code=3) from e
    except CompletionFailed as e:
        raise CLIError(f"Completion failed: {e.message}") from e
    except ChatServiceError as e:
        raise CLIError(e.message) from e
    finally:
        await orchestrator.close()


@app.command("serve")
@handle_cli_error
def serve_command(
    host: str | None = typer.Option(None, "--host", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on"),
    config: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Run the HTTP API server."""
    settings = _load_settings(config)
    setup_api_logging(settings.log_level)

    bind_host = host or settings.server.host
    bind_port = port or settings.server.port

    console.print(
        Panel.fit(
            f"[bold]{settings.app_name}[/bold] v{settings.app_version}\n"
            f"Listening on http://{bind_host}:{bind_port}\n"
            f"Storage: {settings.storage.backend}\n"
            f"API key: {'[green]configured[/green]' if settings.provider_configured else '[yellow]missing (mock replies)[/yellow]'}",
            border_style="blue",
        )
    )

    uvicorn.run(
        create_app(settings=settings),
        host=bind_host,
        port=bind_port,
        log_level=settings.log_level.lower(),
    )


@app.command("chat")
@handle_cli_error
def chat_command(
    message: str = typer.Argument(..., help="Message to send"),
    conversation_id: int | None = typer.Option(
        None, "--conversation-id", "-i", help="Conversation to continue"
    ),
    user_id: str | None = typer.Option(
        None, "--user-id", "-u", help="Owner of a new conversation"
    ),
    config: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Send a message and print the assistant reply."""
    settings = _load_settings(config)

    with console.status("[bold blue]Waiting for the assistant..."):
        result = run_async(
            _with_orchestrator(
                settings,
                lambda o: o.handle_user_message(
                    message, conversation_id=conversation_id, owner_id=user_id
                ),
            )
        )

    title = f"Conversation {result.conversation_id}"
    if result.created_conversation:
        title += " (new)"

    console.print(
        Panel(
            Text(result.reply),
            title=title,
            subtitle=f"{result.model} | {result.usage.total_tokens} tokens"
            + (" | mock" if result.mock else ""),
            border_style="green",
        )
    )


@app.command("history")
@handle_cli_error
def history_command(
    conversation_id: int = typer.Argument(..., help="Conversation id"),
    config: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Show the messages of a conversation."""
    settings = _load_settings(config)
    messages = run_async(
        _with_orchestrator(settings, lambda o: o.get_history(conversation_id))
    )

    if not messages:
        console.print(f"[dim]Conversation {conversation_id} has no messages[/dim]")
        return

    table = Table(
        title=f"Conversation {conversation_id}",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Role", style="cyan", no_wrap=True)
    table.add_column("Message", style="white", ratio=3)
    table.add_column("Timestamp", style="dim")

    for msg in messages:
        table.add_row(
            str(msg.id),
            msg.role.value,
            Text(msg.content),
            msg.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@app.command("conversations")
@handle_cli_error
def conversations_command(
    user_id: str | None = typer.Option(
        None, "--user-id", "-u", help="Owner whose conversations to list"
    ),
    config: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """List conversations, most recently active first."""
    settings = _load_settings(config)
    summaries = run_async(
        _with_orchestrator(settings, lambda o: o.list_conversations(user_id))
    )

    if not summaries:
        console.print("[dim]No conversations found[/dim]")
        return

    table = Table(title="Conversations", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Created", style="white")
    table.add_column("Messages", style="green", justify="right")
    table.add_column("Last activity", style="yellow")

    for summary in summaries:
        table.add_row(
            str(summary.id),
            summary.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(summary.message_count),
            summary.last_message_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@app.command("delete")
@handle_cli_error
def delete_command(
    conversation_id: int = typer.Argument(..., help="Conversation id"),
    config: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Delete a conversation and all of its messages."""
    settings = _load_settings(config)
    run_async(
        _with_orchestrator(settings, lambda o: o.delete_conversation(conversation_id))
    )
    console.print(f"[green]Conversation {conversation_id} deleted[/green]")


@app.command("config-template")
@handle_cli_error
def config_template_command(
    output: Path = typer.Argument(..., help="Where to write the template"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Write a YAML configuration template."""
    if output.exists() and not force:
        raise CLIError(f"{output} already exists (use --force to overwrite)")

    config_manager.export_config_template(output)
    console.print(f"[green]Configuration template written to {output}[/green]")


def main() -> Any:
    return app()


# Entry point is handled by pyproject.toml script configuration
