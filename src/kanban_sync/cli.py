"""CLI entry point for kanban-sync."""

import asyncio
import logging

import click

from .api import ApiError, SessionApi
from .backends import create_transport
from .chat import ChatViewController
from .config import clear_token, load_hidden_types, save_token
from .core import Message
from .message_store import LoadResult, MessageStore
from .session_store import SessionRosterStore
from .sorting import SortType, sort_sessions


@click.group()
@click.option("--verbose", is_flag=True, help="Log debug output to stderr.")
def main(verbose: bool):
    """Follow Agentic Kanban Board sessions from the terminal."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


@main.command()
@click.option("--token", prompt=True, hide_input=True, help="Bearer token issued by the board.")
@click.option("--expires-in", default=24 * 3600, show_default=True, help="Token lifetime in seconds.")
def login(token: str, expires_in: int):
    """Store a bearer token for API and realtime calls."""
    path = save_token(token, expires_in)
    click.echo(f"Token saved to {path}")


@main.command()
def logout():
    """Forget the stored token."""
    clear_token()
    click.echo("Logged out")


@main.command()
@click.option(
    "--sort", "sort_type",
    type=click.Choice([s.value for s in SortType]),
    default=SortType.UPDATED_DESC.value, show_default=True,
)
def sessions(sort_type: str):
    """List sessions grouped by status."""
    asyncio.run(_list_sessions(sort_type))


@main.command()
@click.argument("session_id")
def watch(session_id: str):
    """Print a session's history, then its live messages until Ctrl-C."""
    try:
        asyncio.run(_watch(session_id))
    except KeyboardInterrupt:
        pass


@main.command()
@click.argument("session_id")
@click.argument("text")
def send(session_id: str, text: str):
    """Send a message to a session."""
    asyncio.run(_send(session_id, text))


# ── Command bodies ───────────────────────────────────────────────


async def _list_sessions(sort_type: str) -> None:
    async with SessionApi() as api:
        roster = SessionRosterStore(api)
        await roster.load_sessions()
        if roster.error:
            raise click.ClickException(roster.error)

        for status, group in roster.sessions_by_status.items():
            if not group:
                continue
            click.secho(f"{status.value.upper()} ({len(group)})", bold=True)
            for session in sort_sessions(group, sort_type):
                count = session.message_count or 0
                click.echo(f"  {session.session_id}  {session.name}  [{count} messages]")
                if session.last_user_message:
                    click.echo(f"      > {session.last_user_message[:80]}")


async def _watch(session_id: str) -> None:
    transport = create_transport()
    async with SessionApi() as api:
        try:
            await transport.connect()
        except Exception as e:
            raise click.ClickException(f"Cannot connect to realtime endpoint: {e}")

        roster = SessionRosterStore(api, transport)
        await roster.load_sessions()
        session = roster.get(session_id)
        if session is None:
            await transport.disconnect()
            raise click.ClickException(roster.error or f"Session not found: {session_id}")
        click.secho(f"{session.name} [{session.status.value}]", bold=True)

        store = MessageStore(api)
        chat = ChatViewController(store, transport, api, roster=roster, hidden_types=load_hidden_types())
        printed: set[str] = set()

        def render(_store: MessageStore) -> None:
            visible, _ = chat.visible_messages()
            for msg in visible:
                if msg.message_id not in printed and not msg.is_temporary:
                    printed.add(msg.message_id)
                    _echo_message(msg)

        def on_status(data: dict) -> None:
            if data.get("sessionId") == session_id:
                click.secho(f"-- status: {data.get('status')}", dim=True)

        roster.attach()
        store.add_listener(render)
        transport.on("status_update", on_status)
        try:
            result = await chat.mount(session_id)
            if result == LoadResult.FAILED:
                raise click.ClickException(f"Failed to load messages: {store.error}")
            await asyncio.Event().wait()
        finally:
            await chat.unmount()
            roster.detach()
            await transport.disconnect()


async def _send(session_id: str, text: str) -> None:
    transport = create_transport()
    async with SessionApi() as api:
        try:
            await transport.connect()
        except Exception as e:
            click.echo(f"Realtime endpoint unavailable, sending without it: {e}", err=True)

        store = MessageStore(api)
        chat = ChatViewController(store, transport, api)
        try:
            await chat.mount(session_id)
            sent = await chat.send_message(text)
        except ApiError as e:
            raise click.ClickException(f"Failed to send message: {e}")
        finally:
            await chat.unmount()
            if transport.connected:
                await transport.disconnect()

        if sent is None:
            raise click.ClickException("Nothing to send")
        click.echo(f"Sent {sent.message_id}")


def _echo_message(msg: Message) -> None:
    label = msg.type.upper()
    ts = msg.timestamp.strftime("%Y-%m-%d %H:%M:%S")
    color = {"user": "blue", "error": "red", "system": "yellow"}.get(msg.type)
    click.secho(f"[{ts}] {label}", fg=color, bold=True)
    click.echo(msg.content)

