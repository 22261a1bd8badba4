"""Main CLI application - ties all subcommands together."""

from typing import Annotated

import typer

from cadence import __version__
from cadence.cli.common import NEON_CYAN, console
from cadence.cli.graph import app as graph_app
from cadence.cli.metrics import metrics
from cadence.cli.workflow import app as workflow_app
from cadence.main import configure_logging

app = typer.Typer(
    name="cadence",
    help="Cadence - task dependency, workflow and delivery analytics",
    add_completion=False,
    no_args_is_help=True,
)

app.add_typer(graph_app, name="graph")
app.add_typer(workflow_app, name="workflow")
app.command("metrics")(metrics)


@app.callback()
def root(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Show engine debug logs")
    ] = False,
) -> None:
    configure_logging("DEBUG" if verbose else "WARNING")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[{NEON_CYAN}]cadence[/{NEON_CYAN}] {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
