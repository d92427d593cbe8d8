"""Command line interface for chatflow."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

import typer

from chatflow.config import load_config
from chatflow.contracts import InboundMessage, ReplyOption, WorkflowType, utcnow
from chatflow.dispatch import build_dispatcher
from chatflow.persistence import get_state_store

app = typer.Typer(help="CLI for chatflow guided workflows")

state_app = typer.Typer(help="Inspect and manage in-progress workflow state")
app.add_typer(state_app, name="state")


class ConsoleReplyChannel:
    """Print replies to the terminal."""

    async def prompt(
        self,
        user_id: str,
        text: str,
        options: Optional[Sequence[ReplyOption]] = None,
    ) -> None:
        typer.echo(f"bot> {text}")
        for option in options or []:
            typer.echo(f"     [{option.label}]")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level"),
) -> None:
    """chatflow CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=(log_level or config.logging.level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_workflow_type(value: str) -> WorkflowType:
    try:
        return WorkflowType(value)
    except ValueError:
        choices = ", ".join(wt.value for wt in WorkflowType)
        typer.secho(f"Unknown workflow type '{value}'. Choose one of: {choices}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@app.command("chat")
def chat(
    user: str = typer.Option("local-user", help="User id to chat as"),
    message: Optional[List[str]] = typer.Option(
        None, "--message", "-m", help="Send these messages and exit instead of starting a prompt"
    ),
) -> None:
    """
    Talk to the workflow engine from the terminal.

    Uses the configured state store and entity repository. Without a delivery
    or execution endpoint, documents are logged instead of emailed and
    transfers are priced by the simulated execution client.

    Example:
        chatflow chat --user alice
        chatflow chat -m "/invoice" -m "Alice"
    """

    async def _run() -> None:
        dispatcher = await build_dispatcher(ConsoleReplyChannel())
        if message:
            for text in message:
                typer.echo(f"you> {text}")
                await dispatcher.handle(InboundMessage(user_id=user, text=text))
            return
        typer.echo("Type a message, or 'exit' to quit.")
        while True:
            text = await asyncio.to_thread(input, "you> ")
            if text.strip().lower() in {"exit", "quit"}:
                break
            if not text.strip():
                continue
            await dispatcher.handle(InboundMessage(user_id=user, text=text))

    try:
        asyncio.run(_run())
    except (EOFError, KeyboardInterrupt):
        typer.echo("")


@state_app.command("list")
def state_list(user: Optional[str] = typer.Option(None, help="Only show this user's flows")) -> None:
    """
    List in-progress workflows.

    Output is tab separated: user, workflow type, current step, expiry.

    Example:
        chatflow state list
        chatflow state list --user alice
    """
    store = get_state_store()
    states = asyncio.run(store.list_for_user(user) if user else store.list_states())
    if not states:
        typer.echo("No active workflows")
        return
    now = utcnow()
    for state in states:
        expiry = state.expires_at.isoformat() if state.expires_at else "-"
        marker = " (expired)" if state.is_expired(now) else ""
        typer.echo(
            f"{state.user_id}\t{state.workflow_type.value}\t{state.current_step}\t{expiry}{marker}"
        )


@state_app.command("show")
def state_show(user: str, workflow_type: str) -> None:
    """Show the collected fields of one in-progress workflow."""
    wt = _parse_workflow_type(workflow_type)
    store = get_state_store()
    state = asyncio.run(store.get(user, wt))
    if state is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"{state.workflow_type.value} for {state.user_id}: step {state.current_step}")
    typer.echo(f"Draft: {state.draft_id}")
    phase = getattr(state, "phase", None)
    if phase is not None:
        typer.echo(f"Phase: {phase.value}")
    for name, value in state.collected.model_dump(mode="json").items():
        if value is not None:
            typer.echo(f"- {name}: {value}")


@state_app.command("cancel")
def state_cancel(user: str, workflow_type: str) -> None:
    """Cancel a workflow on the user's behalf and mark its draft cancelled."""
    wt = _parse_workflow_type(workflow_type)

    async def _cancel() -> bool:
        dispatcher = await build_dispatcher(ConsoleReplyChannel())
        state = await dispatcher.store.get(user, wt)
        if state is None:
            return False
        await dispatcher.pipeline.cancel(state)
        return True

    if not asyncio.run(_cancel()):
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Cancelled {wt.value} for {user}")


@state_app.command("purge-expired")
def state_purge_expired() -> None:
    """
    Discard every expired workflow and mark its draft cancelled.

    Example:
        chatflow state purge-expired
        # Output: Purged 3 expired workflows
    """

    async def _purge() -> int:
        dispatcher = await build_dispatcher(ConsoleReplyChannel())
        now = utcnow()
        purged = 0
        for state in await dispatcher.store.list_states():
            if state.is_expired(now):
                await dispatcher.pipeline.cancel(state, reason="expired")
                purged += 1
        return purged

    count = asyncio.run(_purge())
    typer.echo(f"Purged {count} expired workflow{'s' if count != 1 else ''}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
