"""collabsync CLI - Typer-based command line interface."""

import asyncio
import json
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from collabsync.client import ConnectionState, NotificationPermission, SyncClient
from collabsync.config import DEFAULT_WS_URL, SyncConfig, configure_logging
from collabsync.errors import ReconnectExhaustedError, TransportError
from collabsync.models import Comment, Envelope, Identity, Notification, Reaction, ResourceType
from collabsync.models.envelope import ServerMessageType
from collabsync.store import SyncState

app = typer.Typer(
    name="collabsync",
    help="Real-time comment, notification and typing-presence sync",
    no_args_is_help=True,
)

console = Console()

_STATE_STYLES = {
    ConnectionState.DISCONNECTED: "red",
    ConnectionState.CONNECTING: "yellow",
    ConnectionState.CONNECTED: "green",
    ConnectionState.RECONNECTING: "yellow",
}


def parse_resource(value: str) -> tuple[ResourceType, str]:
    """Parse ``type:id`` (e.g. ``task:task-1``) into a resource reference."""
    kind, sep, resource_id = value.partition(":")
    if not sep or not resource_id:
        raise typer.BadParameter(f"Expected TYPE:ID, got {value!r}")
    try:
        return ResourceType(kind), resource_id
    except ValueError:
        choices = ", ".join(t.value for t in ResourceType)
        raise typer.BadParameter(
            f"Unknown resource type {kind!r} (choose from {choices})"
        ) from None


class ConsoleNotifier:
    """Shows notifications as panels on the terminal."""

    def __init__(self, console: Console):
        self.console = console

    def notify(self, notification: Notification) -> None:
        self.console.print(
            Panel(
                notification.message,
                title=f"🔔 {notification.type.value}",
                subtitle=f"from {notification.from_user_name}",
            )
        )


def render_envelope(envelope: Envelope, state: SyncState) -> str | None:
    """One line of feed output for a routed envelope, or None to stay quiet."""
    payload = envelope.payload
    if envelope.type == ServerMessageType.COMMENT_ADDED.value:
        comment = Comment.model_validate(payload)
        prefix = "↳ " if comment.parent_id else ""
        return (
            f"{prefix}[cyan]{comment.author_name}[/cyan] on "
            f"[bold]{comment.resource_id}[/bold]: {comment.content}"
        )
    if envelope.type == ServerMessageType.COMMENT_UPDATED.value:
        return f"[blue]edited[/blue] {payload.get('commentId')}"
    if envelope.type == ServerMessageType.COMMENT_DELETED.value:
        return f"[red]deleted[/red] {payload.get('commentId')}"
    if envelope.type == ServerMessageType.USER_TYPING.value:
        resource_id = payload.get("resourceId", "")
        users = state.typing.typing_users(resource_id)
        if not users:
            return f"[dim]{resource_id}: nobody typing[/dim]"
        return f"[dim]{resource_id}: {', '.join(users)} typing...[/dim]"
    return None


def _build_client(
    user: str, name: str | None, url: str | None, token: str | None, notify: bool
) -> SyncClient:
    identity = Identity(user_id=user, display_name=name or user, token=token)
    config = SyncConfig.from_env(ws_url=url)
    return SyncClient(
        identity,
        config,
        notifier=ConsoleNotifier(console) if notify else None,
        notification_permission=(
            NotificationPermission.GRANTED if notify else NotificationPermission.DENIED
        ),
    )


UserOption = Annotated[str, typer.Option("--user", "-u", help="User id to connect as")]
NameOption = Annotated[
    str | None, typer.Option("--name", "-n", help="Display name (defaults to user id)")
]
UrlOption = Annotated[
    str | None,
    typer.Option("--url", help=f"Server URL (default $COLLABSYNC_WS_URL or {DEFAULT_WS_URL})"),
]
TokenOption = Annotated[str | None, typer.Option("--token", "-t", help="Bearer token")]


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", "-h", help="Host to bind to")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to listen on")] = 8080,
    reload: Annotated[bool, typer.Option("--reload", help="Enable auto-reload")] = False,
) -> None:
    """Start the development relay server."""
    import uvicorn

    console.print("[green]Starting collabsync relay[/green]")
    console.print(f"  Socket: ws://{host}:{port}/ws?userId=...")
    console.print(f"  Health: http://{host}:{port}/health")
    console.print()

    uvicorn.run(
        "collabsync.relay.server:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def listen(
    user: UserOption,
    resources: Annotated[
        list[str], typer.Argument(help="Resources to follow, as TYPE:ID (e.g. task:task-1)")
    ],
    name: NameOption = None,
    url: UrlOption = None,
    token: TokenOption = None,
    log_level: Annotated[str, typer.Option("--log-level", help="Log level")] = "WARNING",
) -> None:
    """Connect and print the live comment, typing and notification feed."""
    configure_logging(log_level)
    targets = [parse_resource(value) for value in resources]
    client = _build_client(user, name, url, token, notify=True)

    async def _listen() -> int:
        lost = asyncio.Event()
        pending: set[asyncio.Task] = set()

        def on_state(state: ConnectionState) -> None:
            console.print(f"[{_STATE_STYLES[state]}]● {state.value}[/{_STATE_STYLES[state]}]")
            if state == ConnectionState.CONNECTED:
                # Subscriptions do not survive a reconnect; resend them every time
                for resource_type, resource_id in targets:
                    task = asyncio.create_task(
                        client.commands.subscribe_to_resource(resource_type, resource_id)
                    )
                    pending.add(task)
                    task.add_done_callback(pending.discard)
            elif state == ConnectionState.DISCONNECTED and client.connection.fatal:
                lost.set()

        def on_envelope(envelope: Envelope) -> None:
            line = render_envelope(envelope, client.state)
            if line:
                console.print(line)

        client.connection.add_listener(on_state)
        client.connection.dispatcher.add_listener(on_envelope)
        await client.connect()
        try:
            await lost.wait()
        finally:
            await client.disconnect()
        console.print(f"[red]Connection lost:[/red] {client.connection.last_error}")
        console.print("Run the command again to reconnect.")
        return 1

    try:
        code = asyncio.run(_listen())
    except KeyboardInterrupt:
        code = 0
    raise typer.Exit(code)


@app.command()
def post(
    user: UserOption,
    resource: Annotated[str, typer.Argument(help="Resource as TYPE:ID")],
    content: Annotated[str, typer.Argument(help="Comment text")],
    name: NameOption = None,
    parent: Annotated[
        str | None, typer.Option("--reply-to", "-r", help="Parent comment id")
    ] = None,
    mentions: Annotated[
        list[str] | None, typer.Option("--mention", "-m", help="User id to mention")
    ] = None,
    url: UrlOption = None,
    token: TokenOption = None,
    timeout: Annotated[float, typer.Option("--timeout", help="Seconds to wait for connection")] = 10.0,
) -> None:
    """Post a single comment and exit."""
    configure_logging("WARNING")
    resource_type, resource_id = parse_resource(resource)
    client = _build_client(user, name, url, token, notify=False)

    async def _post() -> Comment | None:
        await client.connect()
        try:
            await client.connection.wait_connected(timeout)
        except (ReconnectExhaustedError, TransportError, TimeoutError) as e:
            console.print(f"[red]Error:[/red] could not connect: {e}")
            return None
        try:
            await client.commands.subscribe_to_resource(resource_type, resource_id)
            return await client.commands.post_comment(
                resource_type, resource_id, content, parent_id=parent, mentions=mentions
            )
        finally:
            await client.disconnect()

    comment = asyncio.run(_post())
    if comment is None:
        raise typer.Exit(1)
    console.print(f"[green]Posted[/green] {comment.id} on {resource_type.value}:{resource_id}")


@app.command()
def schema(
    model: Annotated[
        str,
        typer.Argument(help="Model to export (comment, reaction, notification, envelope)"),
    ] = "comment",
) -> None:
    """Export a wire model's JSON Schema."""
    models = {
        "comment": Comment,
        "reaction": Reaction,
        "notification": Notification,
        "envelope": Envelope,
    }

    if model not in models:
        console.print(f"[red]Error:[/red] Unknown model: {model}")
        console.print(f"Available models: {', '.join(models.keys())}")
        raise typer.Exit(1)

    print(json.dumps(models[model].model_json_schema(by_alias=True), indent=2, ensure_ascii=False))


@app.command()
def config() -> None:
    """Show the effective configuration from the environment."""
    settings = SyncConfig.from_env()
    table = Table(title="collabsync configuration")
    table.add_column("Setting")
    table.add_column("Value", justify="right")
    for key, value in settings.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


if __name__ == "__main__":
    app()
