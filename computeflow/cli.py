"""Command line interface for computeflow workflows."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import pydantic
import typer
import yaml

from computeflow import WorkflowEngine, load_config
from computeflow.config import ComputeFlowConfig, configure_logging
from computeflow.contracts import ExecutionStatus, Workflow, WorkflowExecution
from computeflow.errors import ComputeFlowError
from computeflow.providers import get_provider
from computeflow.templates import default_workflows

app = typer.Typer(help="CLI for computeflow workflows")

workflow_app = typer.Typer(help="Commands for validating and running workflows")

app.add_typer(workflow_app, name="workflow")


@app.callback()
def main() -> None:
    """computeflow CLI entry point."""
    pass


def _read_definition(path: Path) -> Dict[str, Any]:
    """Load a workflow document; YAML parsing also covers JSON files."""
    if not path.exists():
        typer.secho(f"File not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        typer.secho(f"Could not parse {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(data, dict):
        typer.secho(f"{path} does not contain a workflow mapping", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return data


def _load_workflow(path: Path) -> Workflow:
    data = _read_definition(path)
    try:
        return Workflow.model_validate(data)
    except pydantic.ValidationError as exc:
        typer.secho(f"Invalid workflow in {path}:", fg=typer.colors.RED)
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"])
            typer.echo(f"  {location or '<root>'}: {error['msg']}")
        raise typer.Exit(code=1)


def _print_execution(execution: WorkflowExecution) -> None:
    colour = (
        typer.colors.GREEN
        if execution.status == ExecutionStatus.COMPLETED
        else typer.colors.RED
    )
    typer.secho(f"Execution {execution.id}: {execution.status.value}", fg=colour)
    for record in execution.steps:
        line = f"- {record.step_id}: {record.status.value}"
        if record.error:
            line += f" ({record.error})"
        typer.echo(line)
    if execution.error:
        typer.echo(f"Error [{execution.error_code}]: {execution.error}")
    typer.echo(f"Context: {json.dumps(execution.context, default=str)}")


@workflow_app.command("validate")
def workflow_validate(path: Path) -> None:
    """
    Validate a workflow definition file (YAML or JSON).

    Checks step configuration, unique step ids and dependency references
    without running anything.

    Example:
        computeflow workflow validate deploy.yaml
    """
    workflow = _load_workflow(path)
    typer.echo(f"Workflow '{workflow.name}' is valid ({len(workflow.steps)} steps)")


@workflow_app.command("run")
def workflow_run(
    path: Path,
    context: Optional[str] = typer.Option(
        None, help="Initial execution context as a JSON object"
    ),
    provider: Optional[str] = typer.Option(
        None, help="Compute provider backend: inmemory, local or fly"
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a computeflow YAML config file"
    ),
) -> None:
    """
    Run a workflow definition file to completion.

    Prints each step's final status and the resulting context. Exits with a
    non-zero status when the execution does not complete.

    Example:
        computeflow workflow run clone.yaml --context '{"repoUrl": "https://..."}'
        computeflow workflow run build.yaml --provider local
    """
    workflow = _load_workflow(path)

    initial: Dict[str, Any] = {}
    if context:
        try:
            initial = json.loads(context)
        except json.JSONDecodeError as exc:
            typer.secho(f"Invalid --context JSON: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1)
        if not isinstance(initial, dict):
            typer.secho("--context must be a JSON object", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    config: ComputeFlowConfig = load_config(str(config_path) if config_path else None)
    configure_logging(config.log_level)
    try:
        backend = get_provider(provider, config)
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    async def _run() -> WorkflowExecution:
        async with WorkflowEngine(provider=backend, config=config) as engine:
            stored = await engine.create_workflow(workflow)
            return await engine.run_workflow(stored.id, initial)

    try:
        execution = asyncio.run(_run())
    except ComputeFlowError as exc:
        typer.secho(f"{exc.code}: {exc.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    _print_execution(execution)
    if execution.status != ExecutionStatus.COMPLETED:
        raise typer.Exit(code=1)


@workflow_app.command("templates")
def workflow_templates() -> None:
    """List the built-in workflow templates and their steps."""
    for workflow in default_workflows():
        typer.echo(f"{workflow.name}: {workflow.description}")
        for step in workflow.steps:
            deps = f" (after {', '.join(step.depends_on)})" if step.depends_on else ""
            typer.echo(f"  - {step.id} [{step.kind.value}]{deps}")


if __name__ == "__main__":
    app()
