"""Coachforce CLI entry point."""

import typer
from rich.console import Console
from rich.table import Table

from coachforce.api.cli.commands import chat, program
from coachforce.application.factory import CoachFactory
from coachforce.core.domain.errors import ConfigurationError

app = typer.Typer(
    name="coachforce",
    help="Coachforce - AI coaching agents",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.add_typer(chat.app, name="chat", help="Interactive coaching chat")
app.add_typer(program.app, name="program", help="Training program design")


@app.callback()
def main(
    ctx: typer.Context,
    profile: str = typer.Option("dev", "--profile", "-p", help="Configuration profile"),
    config_dir: str = typer.Option("configs", "--config-dir", help="Directory with profile YAML files"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Coachforce CLI."""
    ctx.obj = {"profile": profile, "config_dir": config_dir, "debug": debug}


@app.command()
def profile(ctx: typer.Context):
    """Show the effective configuration of the selected profile."""
    global_opts = ctx.obj or {}
    try:
        summary = CoachFactory(global_opts.get("config_dir", "configs")).describe_profile(
            global_opts.get("profile", "dev")
        )
    except (ConfigurationError, FileNotFoundError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2)

    table = Table(title=f"Profile: {summary['profile']}", show_header=False)
    for key, value in summary.items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def version():
    """Show Coachforce version."""
    from coachforce import __version__

    console.print(f"[bold blue]Coachforce[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
