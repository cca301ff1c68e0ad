"""Terminal front-end for the KayChat client."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from aioconsole import ainput
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import protocol
from .client import ChatClient
from .config import load_config
from .errors import ConfigError, InvalidIdentityError, KayChatClientError
from .models import (
    DEFAULT_PLACEHOLDER_AVATAR,
    RenderedMessage,
    SessionIdentity,
    SessionSnapshot,
    SessionState,
)

app = typer.Typer(help="KayChat terminal client")
console = Console()


class LogLevel(str, Enum):
    """Accepted values for --log-level."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class TerminalView:
    """Renders session snapshots as scrolling terminal output."""

    def __init__(
        self,
        out: Console,
        identity: SessionIdentity,
        placeholder: str = DEFAULT_PLACEHOLDER_AVATAR,
    ) -> None:
        self._out = out
        self._identity = identity
        self._placeholder = placeholder
        self._shown_messages = 0
        self._last_users: tuple[str, ...] | None = None

    def render_update(self, snapshot: SessionSnapshot) -> None:
        """Print presence changes and messages not yet shown."""
        names = snapshot.user_names
        if names != self._last_users:
            self._last_users = names
            self._out.print(f"[dim]👥 Active users: {escape(', '.join(names)) or '-'}[/]")

        rendered = snapshot.rendered_messages(self._placeholder)
        # History carried over a reconnect is already on screen.
        for message in rendered[self._shown_messages :]:
            self._out.print(self._format_message(message))
        self._shown_messages = len(rendered)

    def _format_message(self, message: RenderedMessage) -> str:
        if message.sender == self._identity.display_name:
            style = "bold green"
        elif message.sender_present:
            style = "bold cyan"
        else:
            style = "dim cyan"
        body = escape(message.body)
        if message.is_image:
            body = f"🖼  [italic]{body}[/]"
        return f"[{style}]{escape(message.sender)}[/]: {body}"

    def render_state(self, state: SessionState) -> None:
        if state is SessionState.ACTIVE:
            self._out.print("[green]Connected.[/]")
        elif state is SessionState.CLOSED:
            self._out.print("[yellow]Disconnected.[/]")

    def render_users(self, client: ChatClient) -> None:
        """Print the presence list with avatar references."""
        table = Table(title="Active Users")
        table.add_column("Name")
        table.add_column("Avatar")
        for entry in client.snapshot().users:
            table.add_row(entry.display_name, entry.avatar)
        self._out.print(table)


def login(raw_name: str | None) -> SessionIdentity:
    """Ask for a display name until a valid one is given."""
    while True:
        name = raw_name if raw_name is not None else typer.prompt("Your username")
        try:
            return SessionIdentity.from_login(name)
        except InvalidIdentityError as err:
            console.print(f"[red]{err}[/]")
            raw_name = None


async def _chat_loop(client: ChatClient, view: TerminalView) -> None:
    """Read input lines and submit them until /quit or the client stops."""
    stopped = asyncio.create_task(client.wait_closed())
    try:
        while not stopped.done():
            reader = asyncio.create_task(ainput(""))
            done, _ = await asyncio.wait(
                {reader, stopped}, return_when=asyncio.FIRST_COMPLETED
            )
            if reader not in done:
                reader.cancel()
                break
            line = reader.result().rstrip("\n")
            if not line.strip():
                continue
            if line in {"/quit", "/exit"}:
                break
            if line == "/users":
                view.render_users(client)
                continue
            try:
                if not client.submit(line):
                    console.print("[red]Message not sent[/]")
            except KayChatClientError as err:
                console.print(f"[red]{err}[/]")
    finally:
        stopped.cancel()


@app.command()
def run(
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    server: Optional[str] = typer.Option(None, help="WebSocket URL of the chat server"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
    log_level: LogLevel = typer.Option(
        LogLevel.WARNING, case_sensitive=False, help="Log level"
    ),
) -> None:
    """Log in and start chatting."""
    logging.basicConfig(
        level=log_level.value,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    try:
        environ = {"KAYCHAT_SERVER_URL": server} if server else None
        config = load_config(config_path, environ=environ)
    except ConfigError as err:
        console.print(f"[red]{err}[/]")
        raise typer.Exit(code=2) from err

    identity = login(name)
    console.print(
        f"[bold green]KayChat[/] as {escape(identity.display_name)} on {config.server_url}"
        " ([dim]/users, /quit[/])"
    )

    async def main_loop() -> None:
        client = ChatClient(identity, config)
        view = TerminalView(console, identity, config.avatars.placeholder)
        client.on_update(view.render_update)
        client.on_state_changed(view.render_state)
        await client.start()
        try:
            await _chat_loop(client, view)
        finally:
            await client.close()

    asyncio.run(main_loop())


@app.command("encode-register")
def encode_register(name: str) -> None:
    """Print the register frame a client with NAME would send."""
    try:
        identity = SessionIdentity.from_login(name)
    except InvalidIdentityError as err:
        console.print(f"[red]{err}[/]")
        raise typer.Exit(code=2) from err
    typer.echo(protocol.encode(protocol.build_register(identity.display_name)))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
