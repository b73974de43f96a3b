"""Command line interface for inspecting and submitting agentboard workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import typer

from agentboard import Coordinator, get_repository, load_config
from agentboard.errors import AgentboardError, WorkflowNotFoundError
from agentboard.states import TaskStatus, WorkflowStatus

app = typer.Typer(help="CLI for agentboard coordination")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflows")
task_app = typer.Typer(help="Commands for inspecting tasks")
audit_app = typer.Typer(help="Commands for reading the audit trail")
coordinator_app = typer.Typer(help="Commands for coordinator operations")

app.add_typer(workflow_app, name="workflow")
app.add_typer(task_app, name="task")
app.add_typer(audit_app, name="audit")
app.add_typer(coordinator_app, name="coordinator")


def _coordinator() -> Coordinator:
    config = load_config()
    return Coordinator(get_repository(), config=config)


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for agentboard"),
) -> None:
    """Agentboard CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@workflow_app.command("start")
def workflow_start(
    workflow_type: str,
    context: Optional[str] = typer.Option(
        None, help="JSON object stored as the workflow context"
    ),
) -> None:
    """
    Create a workflow and its tasks from the template for WORKFLOW_TYPE.

    Example:
        agentboard workflow start secure-deployment --context '{"branch": "main"}'
        # Output: 5f0c...-...  (workflow id)
    """
    try:
        parsed = json.loads(context) if context else {}
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid context JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(parsed, dict):
        typer.secho("Context must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    coordinator = _coordinator()
    try:
        workflow_id = asyncio.run(coordinator.start_workflow(workflow_type, parsed))
    except AgentboardError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(workflow_id)


@workflow_app.command("list")
def workflow_list(
    status: Optional[WorkflowStatus] = typer.Option(None, help="Only show this status"),
) -> None:
    """
    List workflows of the configured tenant with their current status.

    Example:
        agentboard workflow list --status running
        # Output: abc123-def456-789    secure-deployment    running
    """
    config = load_config()
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows(config.tenant_id, status=status))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.workflow_id}\t{wf.workflow_type}\t{wf.status}")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """
    Show a workflow, its context and every task with its status.

    Example:
        agentboard workflow show abc123-def456-789
        # Output: Workflow abc123-def456-789 (secure-deployment): running
        #         - security-scanner/security_scan: completed
        #         - deployment-agent/deploy: pending (after security-scanner, test-runner)
    """
    coordinator = _coordinator()
    try:
        snapshot = asyncio.run(coordinator.get_workflow_status(workflow_id))
    except WorkflowNotFoundError:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)

    wf = snapshot.workflow
    typer.echo(f"Workflow {wf.workflow_id} ({wf.workflow_type}): {wf.status}")
    if wf.context:
        typer.echo(f"Context: {json.dumps(wf.context)}")
    if wf.completed_at:
        typer.echo(f"Completed at: {wf.completed_at.isoformat()}")
    for task in snapshot.tasks:
        line = f"- {task.agent_id}/{task.task_type}: {task.status}"
        if task.status is TaskStatus.PENDING and task.dependencies:
            line += f" (after {', '.join(task.dependencies)})"
        if task.error_data:
            line += f" error={task.error_data.get('error')}"
        typer.echo(line)


@task_app.command("list")
def task_list(
    status: Optional[TaskStatus] = typer.Option(None, help="Only show this status"),
    workflow_id: Optional[str] = typer.Option(None, help="Only show this workflow"),
    agent_id: Optional[str] = typer.Option(None, help="Only show this agent"),
) -> None:
    """
    List tasks, oldest first. Useful for finding tasks stuck in pending or assigned.

    Example:
        agentboard task list --status assigned
    """
    config = load_config()
    repo = get_repository()
    tasks = asyncio.run(
        repo.list_tasks(
            config.tenant_id, workflow_id=workflow_id, status=status, agent_id=agent_id
        )
    )
    if not tasks:
        typer.echo("No tasks found")
        return
    for task in tasks:
        typer.echo(
            f"{task.coordination_id}\t{task.workflow_id}\t{task.agent_id}\t"
            f"{task.task_type}\t{task.status}"
        )


@audit_app.command("list")
def audit_list(
    limit: int = typer.Option(50, help="Number of most recent entries"),
    action_type: Optional[str] = typer.Option(None, help="Only show this action"),
) -> None:
    """Show the most recent audit entries."""
    config = load_config()
    repo = get_repository()
    entries = asyncio.run(
        repo.list_audit(config.tenant_id, action_type=action_type, limit=limit)
    )
    if not entries:
        typer.echo("No audit entries found")
        return
    for entry in entries:
        typer.echo(
            f"{entry.created_at.isoformat()}\t{entry.agent_id}\t{entry.action_type}\t"
            f"{json.dumps(entry.action_data, default=str)}"
        )


@coordinator_app.command("health")
def coordinator_health() -> None:
    """
    Report store reachability and tasks that will not progress.

    Exits with code 1 when the store is unreachable or tasks are stranded.
    """
    coordinator = _coordinator()
    report = asyncio.run(coordinator.health_check())
    typer.echo(report.model_dump_json(indent=2))
    if not report.healthy:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
