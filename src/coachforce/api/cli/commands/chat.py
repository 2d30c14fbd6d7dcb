"""Chat command - interactive coaching conversation."""

import asyncio
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel

from coachforce.application.executor import CoachExecutor
from coachforce.application.factory import CoachFactory
from coachforce.logging_config import setup_logging

app = typer.Typer(help="Interactive coaching chat")
console = Console()

EXIT_COMMANDS = ("exit", "quit", "bye")


async def stream_reply(
    executor: CoachExecutor,
    message: str,
    user_id: str,
    history: list[dict[str, Any]],
    show_progress: bool = True,
) -> tuple[str, dict[str, Any] | None]:
    """Print one streamed reply; returns the reply text and the final event."""
    parts: list[str] = []
    final: dict[str, Any] | None = None
    async for event in executor.stream_conversation(message, user_id, history=history):
        if event["type"] == "chunk":
            parts.append(event["content"])
            console.print(event["content"], end="", markup=False, highlight=False)
        elif event["type"] == "contextual":
            if show_progress:
                console.print(f"\n[dim italic]{event['content']}[/dim italic]")
        else:
            final = event
    console.print()
    return "".join(parts), final


@app.callback(invoke_without_command=True)
def chat(
    ctx: typer.Context,
    user_id: str = typer.Option("cli-user", "--user-id", "-u", help="Athlete user id"),
    quiet_progress: bool = typer.Option(False, "--no-progress", help="Hide progress messages"),
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="Configuration profile (overrides global --profile)"),
):
    """Start an interactive coaching chat.

    Examples:
        coachforce chat --user-id athlete-1
        coachforce --debug chat
    """
    global_opts = ctx.obj or {}
    profile = profile or global_opts.get("profile", "dev")
    debug = global_opts.get("debug", False)
    setup_logging(debug=debug, quiet=not debug)

    executor = CoachExecutor(CoachFactory(global_opts.get("config_dir", "configs")), profile=profile)
    console.print(Panel(f"Coachforce chat  profile=[cyan]{profile}[/cyan]  user=[cyan]{user_id}[/cyan]"))
    console.print("[dim]Type 'exit' or press Ctrl+C to end the session[/dim]")

    async def run_chat_loop():
        history: list[dict[str, Any]] = []
        try:
            await chat_turns(history)
        finally:
            await executor.shutdown()

    async def chat_turns(history: list[dict[str, Any]]):
        while True:
            try:
                user_input = console.input("[bold green]You:[/bold green] ")
            except (KeyboardInterrupt, EOFError):
                console.print("\nGoodbye!")
                break
            if user_input.strip().lower() in EXIT_COMMANDS:
                console.print("Goodbye!")
                break
            if not user_input.strip():
                continue

            console.print("[bold blue]Coach:[/bold blue] ", end="")
            reply, final = await stream_reply(
                executor, user_input, user_id, history, show_progress=not quiet_progress
            )
            if final and final["type"] == "error":
                console.print(f"[red]Error:[/red] {final['error']}")
            elif final and debug:
                console.print(
                    f"[dim]stop={final['stopReason']} iterations={final['iterations']} "
                    f"tools={final['toolsUsed']}[/dim]"
                )
            history.append({"role": "user", "content": user_input})
            if reply:
                history.append({"role": "assistant", "content": reply})

    asyncio.run(run_chat_loop())
