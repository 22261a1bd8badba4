"""Workflow inspection commands."""

from pathlib import Path
from typing import Annotated

import pydantic
import typer

from cadence.cli.common import console, create_table, error, format_status
from cadence.models import Workflow, default_workflow

app = typer.Typer(
    name="workflow",
    help="Workflow definitions",
    no_args_is_help=True,
)


@app.command("show")
def show(
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Workflow JSON to validate and show"),
    ] = None,
) -> None:
    """Show a workflow's states and transitions (the default workflow if no file)."""
    if file is None:
        workflow = default_workflow()
    else:
        try:
            workflow = Workflow.model_validate_json(file.read_text(encoding="utf-8"))
        except (OSError, pydantic.ValidationError) as e:
            error(f"Invalid workflow {file}: {e}")
            raise typer.Exit(1) from e

    states = create_table(f"Workflow: {workflow.name}", "State", "Name", "Category", "Flags")
    for state in workflow.states:
        flags = []
        if state.id == workflow.initial_state:
            flags.append("initial")
        if state.id == workflow.cancel_state:
            flags.append("cancel")
        if state.blocked:
            flags.append("blocked")
        if state.is_terminal:
            flags.append("terminal")
        states.add_row(
            state.id,
            state.name,
            format_status(state.category.value, state.category.value),
            ", ".join(flags) or "-",
        )
    console.print(states)

    transitions = create_table("Transitions", "From", "To", "Conditions", "Approvals", "Actions")
    for t in workflow.transitions:
        transitions.add_row(
            t.from_state,
            t.to_state,
            "; ".join(c.describe() for c in t.conditions) or "-",
            str(t.required_approvals),
            ", ".join(a.kind for a in t.post_actions) or "-",
        )
    console.print(transitions)
