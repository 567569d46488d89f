"""Command line interface for convoflow workers and operators."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError

from convoflow import (
    FlowDefinition,
    FlowEngine,
    FlowWorker,
    ResumeRequest,
    StoredFlow,
    TriggerRequest,
    get_ledger,
    get_transport,
    load_config,
)
from convoflow.contracts import ExecutionResult

app = typer.Typer(help="CLI for convoflow conversational flows")

worker_app = typer.Typer(help="Commands for running workers")
flow_app = typer.Typer(help="Commands for managing and running flows")
execution_app = typer.Typer(help="Commands for inspecting executions")

app.add_typer(worker_app, name="worker")
app.add_typer(flow_app, name="flow")
app.add_typer(execution_app, name="execution")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Python logging level"),
) -> None:
    """convoflow CLI entry point."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _echo_result(result: ExecutionResult) -> None:
    typer.echo(result.model_dump_json(indent=2))
    if not result.success:
        raise typer.Exit(code=1)


@worker_app.command("run")
def worker_run(lifespan: Optional[float] = None) -> None:
    """
    Run a worker that executes trigger and resume events.

    Listens on the configured transport topic and hands every event to the
    flow engine. Runs until stopped, or for ``--lifespan`` seconds.

    Example:
        convoflow worker run
        convoflow worker run --lifespan 300
    """
    config = load_config()
    transport = get_transport(config=config)
    engine = FlowEngine.from_config(config)
    worker = FlowWorker(
        transport,
        engine,
        topic=config.transport.topic,
        max_concurrency=config.transport.concurrency,
    )
    typer.echo(f"Starting worker on topic: {config.transport.topic}")
    asyncio.run(worker.start(lifespan=lifespan))


@flow_app.command("load")
def flow_load(
    path: Path,
    flow_id: str = typer.Option(..., "--flow-id", help="Identifier to store the flow under"),
    channel: str = typer.Option(..., "--channel", help="messenger, instagram or whatsapp"),
    account_id: Optional[str] = typer.Option(None, "--account-id", help="Page, account or phone number id"),
) -> None:
    """Store a flow definition exported from the editor (JSON or YAML)."""
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    try:
        data = yaml.safe_load(path.read_text()) or {}
        definition = FlowDefinition.model_validate(data)
    except (yaml.YAMLError, ValidationError) as exc:
        typer.secho(f"Invalid flow definition: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    flow = StoredFlow(
        flow_id=flow_id, channel=channel, account_id=account_id, definition=definition
    )
    asyncio.run(get_ledger().save_flow(flow))
    typer.echo(f"Loaded flow {flow_id} ({len(definition.nodes)} nodes)")


@flow_app.command("list")
def flow_list() -> None:
    """List stored flows."""
    flows = asyncio.run(get_ledger().list_flows())
    if not flows:
        typer.echo("No flows found")
        return
    for flow in flows:
        typer.echo(f"{flow.flow_id}\t{flow.channel}\t{len(flow.definition.nodes)} nodes")


@flow_app.command("trigger")
def flow_trigger(
    flow_id: str,
    subscriber_id: str,
    token: Optional[str] = typer.Option(None, "--token", help="Channel access token"),
    conversation_id: Optional[str] = typer.Option(None, "--conversation-id"),
    event_id: Optional[str] = typer.Option(None, "--event-id", help="Idempotency key"),
    start_node: Optional[str] = typer.Option(None, "--start-node", help="Start from this node"),
) -> None:
    """
    Run a flow for a subscriber in this process.

    Example:
        convoflow flow trigger welcome 1234567890 --token EAAB...
    """
    request = TriggerRequest(
        flow_id=flow_id,
        subscriber_id=subscriber_id,
        channel_access_token=token,
        conversation_id=conversation_id,
        event_id=event_id,
        start_from_node_id=start_node,
    )
    engine = FlowEngine.from_config(ledger=get_ledger())
    _echo_result(asyncio.run(engine.trigger(request)))


@flow_app.command("resume")
def flow_resume(
    execution_id: str,
    response: str,
    token: Optional[str] = typer.Option(None, "--token", help="Channel access token"),
) -> None:
    """Continue a waiting execution with a subscriber reply."""
    request = ResumeRequest(
        resume_flow_execution_id=execution_id,
        user_response=response,
        channel_access_token=token,
    )
    engine = FlowEngine.from_config(ledger=get_ledger())
    _echo_result(asyncio.run(engine.resume(request)))


@execution_app.command("list")
def execution_list(
    status: Optional[str] = typer.Option(None, "--status", help="running, waiting, completed or failed"),
) -> None:
    """
    List executions with their current status.

    Example:
        convoflow execution list --status waiting
        # Output: 0b6f...    welcome    1234567890    waiting
    """
    executions = asyncio.run(get_ledger().list_executions(status))
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(
            f"{execution.id}\t{execution.flow_id}\t{execution.subscriber_id}\t{execution.status}"
        )


@execution_app.command("show")
def execution_show(execution_id: str) -> None:
    """Show an execution with its node visits and captured inputs."""
    ledger = get_ledger()

    async def _load():
        execution = await ledger.get_execution(execution_id)
        if execution is None:
            return None, [], []
        return (
            execution,
            await ledger.get_node_executions(execution_id),
            await ledger.get_user_inputs(execution_id),
        )

    execution, nodes, inputs = asyncio.run(_load())
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)

    typer.echo(f"Execution {execution.id}: {execution.status}")
    typer.echo(f"Flow: {execution.flow_id}  Subscriber: {execution.subscriber_id}")
    if execution.error_message:
        typer.echo(f"Error: {execution.error_message}")
    for node in nodes:
        timing = f" ({node.execution_time_ms} ms)" if node.execution_time_ms is not None else ""
        line = f"- {node.node_id} [{node.node_type}]: {node.status}{timing}"
        if node.error_message:
            line += f" - {node.error_message}"
        typer.echo(line)
    for item in inputs:
        typer.echo(f"{item.variable_name} = {item.value}")


@execution_app.command("reap")
def execution_reap(
    ttl_hours: Optional[float] = typer.Option(None, "--ttl-hours", help="Override the waiting TTL"),
) -> None:
    """Fail waiting executions that received no reply within the TTL."""
    engine = FlowEngine.from_config(ledger=get_ledger())
    max_age = timedelta(hours=ttl_hours) if ttl_hours is not None else None
    expired = asyncio.run(engine.expire_waiting(max_age))
    typer.echo(f"Expired {len(expired)} waiting executions")
    for execution_id in expired:
        typer.echo(execution_id)


if __name__ == "__main__":
    app()
