"""Program command - design a training program from the command line."""

import asyncio
import json
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from coachforce.application.executor import CoachExecutor
from coachforce.application.factory import CoachFactory
from coachforce.core.domain.errors import ConfigurationError
from coachforce.logging_config import setup_logging

app = typer.Typer(help="Training program design")
console = Console()


def print_result(result: dict, output_json: bool) -> None:
    if output_json:
        console.print_json(json.dumps(result, default=str))
    elif result["success"]:
        table = Table(title=result.get("programName") or result["programId"], show_header=False)
        for key in ("programId", "totalDays", "phases", "totalWorkouts", "trainingFrequency", "s3DetailKey"):
            table.add_row(key, str(result.get(key)))
        console.print(table)
        if result.get("summary"):
            console.print(result["summary"])
    else:
        console.print(f"[yellow]Program not saved:[/yellow] {result.get('reason')}")


async def run_design(executor: CoachExecutor, user_id: str, requirements: dict, output_json: bool) -> dict:
    """Design and print a program; the index write finishes before the event loop closes."""
    try:
        with console.status("[bold blue]Designing your program...[/bold blue]"):
            result = await executor.design_program(user_id, requirements)
        print_result(result, output_json)
        return result
    finally:
        await executor.shutdown()


@app.command("design")
def design(
    ctx: typer.Context,
    goal: List[str] = typer.Option(..., "--goal", "-g", help="Training goal (repeatable)"),
    duration: str = typer.Option("8 weeks", "--duration", "-d", help="Program duration, e.g. '8 weeks'"),
    frequency: int = typer.Option(4, "--frequency", "-f", help="Training days per week"),
    equipment: List[str] = typer.Option([], "--equipment", "-e", help="Available equipment (repeatable)"),
    experience: str = typer.Option("intermediate", "--experience", help="Experience level"),
    start_date: Optional[str] = typer.Option(None, "--start-date", help="YYYY-MM-DD"),
    user_id: str = typer.Option("cli-user", "--user-id", "-u", help="Athlete user id"),
    output_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
):
    """Design, validate and save a training program.

    Examples:
        coachforce program design -g strength -g conditioning -d "12 weeks" -f 3
    """
    global_opts = ctx.obj or {}
    profile = global_opts.get("profile", "dev")
    setup_logging(debug=global_opts.get("debug", False), quiet=not global_opts.get("debug", False))

    executor = CoachExecutor(CoachFactory(global_opts.get("config_dir", "configs")), profile=profile)
    requirements = {
        "trainingGoals": goal,
        "programDuration": duration,
        "trainingFrequency": frequency,
        "equipmentConstraints": equipment,
        "experienceLevel": experience,
        "startDate": start_date,
    }

    try:
        result = asyncio.run(run_design(executor, user_id, requirements, output_json))
    except (ConfigurationError, FileNotFoundError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2)

    if not result["success"]:
        raise typer.Exit(code=1)
