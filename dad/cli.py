"""CLI application — Click commands for running and inspecting Dad.

  dad serve                  run the Slack service
  dad relationship USER_ID   show a user's respect score and recent history
  dad conversations          list recent conversations with cost and turns
"""

from __future__ import annotations

import json as json_mod
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import click
from rich.console import Console
from rich.table import Table

from dad import __version__


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color)


def format_timestamp(ts: Optional[float]) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def score_style(score: int) -> str:
    if score >= 80:
        return "green"
    if score >= 50:
        return "yellow"
    return "red"


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(str(v) for v in row))
    return table


def _open_database(db_path: Optional[Path]):
    from dad.memory.store import Database

    if db_path is None:
        from dad.config import DadConfig

        db_path = DadConfig().storage.db_path
    db = Database(db_path)
    db.initialize()
    return db


@click.group()
@click.version_option(__version__, prog_name="dad")
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite database (defaults to DB_PATH)",
)
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, db_path: Optional[Path], no_color: bool) -> None:
    """Dad - an always-on agent for your Slack workspace."""
    if ctx.invoked_subcommand != "serve":
        from dad.main import configure_logging

        # Inspection commands print data on stdout; only warnings reach stderr.
        configure_logging(logging.WARNING)
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path
    ctx.obj["no_color"] = no_color


@cli.command("serve")
def serve_cmd() -> None:
    """Run the Slack service until interrupted."""
    from dad.main import run

    run()


@cli.command("relationship")
@click.argument("user_id")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def relationship_cmd(ctx: click.Context, user_id: str, json_output: bool) -> None:
    """Show how Dad feels about USER_ID."""
    from dad.memory.relationships import RelationshipStore

    db = _open_database(ctx.obj["db_path"])
    try:
        relationship = RelationshipStore(db).get(user_id)
    finally:
        db.close()

    if relationship is None:
        if json_output:
            click.echo(json_mod.dumps({"user_id": user_id, "found": False}))
        else:
            click.echo(f"No relationship recorded for {user_id}.")
        ctx.exit(1)

    if json_output:
        click.echo(json_mod.dumps({
            "user_id": relationship.user_id,
            "display_name": relationship.display_name,
            "respect_score": relationship.respect_score,
            "total_interactions": relationship.total_interactions,
            "last_interaction": relationship.last_interaction,
            "history": [item.to_dict() for item in relationship.history],
        }, indent=2))
        return

    console = get_console(no_color=ctx.obj["no_color"])
    name = relationship.display_name or relationship.user_id
    style = score_style(relationship.respect_score)
    console.print(f"[bold]{name}[/bold] ({relationship.user_id})")
    console.print(f"  Respect: [{style}]{relationship.respect_score}/100[/{style}]")
    console.print(f"  Interactions: {relationship.total_interactions}")
    console.print(f"  Last seen: {format_timestamp(relationship.last_interaction)}")
    if relationship.history:
        rows = [
            [format_timestamp(item.timestamp), item.sentiment, item.topic]
            for item in relationship.history[-10:]
        ]
        console.print(build_table("Recent interactions", ["When", "Sentiment", "Topic"], rows))


@cli.command("conversations")
@click.option("--limit", "-n", default=20, show_default=True, help="How many to show")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def conversations_cmd(ctx: click.Context, limit: int, json_output: bool) -> None:
    """List the most recently active conversations."""
    from dad.memory.conversations import ConversationStore

    db = _open_database(ctx.obj["db_path"])
    try:
        conversations = ConversationStore(db).recent(limit=max(1, limit))
    finally:
        db.close()

    if json_output:
        click.echo(json_mod.dumps([
            {
                "id": conv.id,
                "channel_id": conv.channel_id,
                "thread_id": conv.thread_id,
                "user_id": conv.user_id,
                "session_id": conv.session_id,
                "total_cost_usd": conv.total_cost_usd,
                "total_turns": conv.total_turns,
                "updated_at": conv.updated_at,
            }
            for conv in conversations
        ], indent=2))
        return

    if not conversations:
        click.echo("No conversations yet.")
        return

    rows = [
        [
            conv.id,
            conv.channel_id,
            conv.thread_id,
            conv.user_id,
            f"${conv.total_cost_usd:.4f}",
            conv.total_turns,
            format_timestamp(conv.updated_at),
        ]
        for conv in conversations
    ]
    console = get_console(no_color=ctx.obj["no_color"])
    console.print(build_table(
        "Recent conversations",
        ["ID", "Channel", "Thread", "User", "Cost", "Turns", "Updated"],
        rows,
    ))


if __name__ == "__main__":
    cli()
