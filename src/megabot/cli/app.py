"""CLI for megabot: interactive chat, HTTP server and background task inspection."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from megabot.api.service import NOTIFICATION_EVENTS, MegabotService
from megabot.bus import Event, EventFilter, EventType
from megabot.config import Settings
from megabot.logging_setup import configure_logging
from megabot.providers.base import Chunk, ChunkType

console = Console()


class ChunkRenderer:
    """Renders one turn's chunks to the console."""

    def __init__(self) -> None:
        self._live: Live | None = None
        self._text = ""

    def render(self, chunk: Chunk) -> None:
        if chunk.type == ChunkType.TEXT:
            self._text += chunk.text
            if self._live is None:
                self._live = Live(console=console, refresh_per_second=8)
                self._live.start()
            self._live.update(Markdown(self._text))
        elif chunk.type == ChunkType.TOOL_EXECUTING:
            self._flush()
            console.print(f"  [dim]▶ {chunk.tool_name}[/dim]", end="")
        elif chunk.type == ChunkType.TOOL_RESULT:
            if chunk.is_error:
                console.print(f" [red]✗ {chunk.text[:100]}[/red]")
            else:
                preview = chunk.text[:80].replace("\n", " ")
                console.print(f" [green]✓[/green] [dim]{preview}[/dim]")
        elif chunk.type == ChunkType.ERROR:
            self._flush()
            console.print(f"[red]Error: {chunk.error}[/red]")
        elif chunk.type == ChunkType.DONE:
            self._flush()
            if chunk.usage and (chunk.usage.input_tokens or chunk.usage.output_tokens):
                console.print(
                    f"\n[dim]tokens: {chunk.usage.input_tokens} in / "
                    f"{chunk.usage.output_tokens} out[/dim]"
                )

    def _flush(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None
        self._text = ""

    def close(self) -> None:
        self._flush()


def _print_notification(event: Event) -> None:
    data = event.data
    if event.type == EventType.NOTIFICATION_SENT:
        console.print(f"\n[bold magenta]🔔 {data.get('title', '')}[/bold magenta] {data.get('message', '')}")
    elif event.type == EventType.TASK_FAILED:
        task_id = str(data.get("task_id", "?"))[:8]
        error = str(data.get("error", "unknown"))[:60]
        console.print(f"\n[red]✗ Background task {task_id}... failed: {error}[/red]")
    elif event.type == EventType.AGENT_COMPLETED:
        console.print(f"\n[green]✓ Agent {data.get('agent_name', '?')} finished[/green]")


async def run_repl(settings: Settings | None = None, scheduler: bool = True) -> None:
    """Run the interactive REPL."""
    service = MegabotService(settings)
    await service.initialize(start_scheduler=scheduler)
    app = service.app

    unsubscribe = app.bus.on_any(_notification_printer(EventFilter(types=NOTIFICATION_EVENTS)))

    llm_plugins = [p.id for p in app.plugins.llm_plugins()]
    console.print(
        Panel(
            "[bold]megabot[/bold] personal assistant\n"
            f"[dim]LLM plugins: {', '.join(llm_plugins) or '(none)'} | "
            f"Tools: {len(app.tool_registry.list())} | "
            f"Default tier: {app.settings.default_tier.value}[/dim]",
            border_style="blue",
        )
    )
    console.print("[dim]Type your message. Ctrl+C or 'exit' to quit. /help for commands.[/dim]\n")

    history_dir = Path(app.settings.data_dir)
    history_dir.mkdir(parents=True, exist_ok=True)
    session = PromptSession(history=FileHistory(str(history_dir / "repl_history")))
    conversation_id: str | None = None

    try:
        while True:
            try:
                user_input = (await session.prompt_async("▶ ")).strip()
            except EOFError:
                break

            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit", "/exit", "/quit"):
                break

            if user_input.startswith("/"):
                if user_input.lower() == "/new":
                    conversation_id = None
                    console.print("[dim]Started a new conversation.[/dim]\n")
                else:
                    await _handle_command(user_input, service, conversation_id)
                continue

            try:
                response = await service.send_message(conversation_id, user_input)
            except Exception as e:
                console.print(f"[red]Error: {e}[/red]")
                continue

            conversation_id = response.conversation_id
            renderer = ChunkRenderer()
            try:
                async for chunk in service.stream_chat(conversation_id, from_current_turn=False):
                    renderer.render(chunk)
            finally:
                renderer.close()
            console.print()

    except KeyboardInterrupt:
        console.print("\n[dim]Bye![/dim]")
    finally:
        unsubscribe()
        await service.shutdown()


def _notification_printer(event_filter: EventFilter):
    def handler(event: Event) -> None:
        if event_filter.matches(event):
            _print_notification(event)

    return handler


async def _handle_command(cmd: str, service: MegabotService, conversation_id: str | None) -> None:
    """Handle slash commands."""
    command = cmd.split(maxsplit=1)[0].lower()
    app = service.app

    if command == "/tools":
        console.print("\n[bold]Registered Tools:[/bold]")
        for tool in app.tool_registry.list():
            console.print(f"  [cyan]{tool.name:28}[/cyan] {tool.description[:70]}")
        console.print()

    elif command == "/agents":
        agents = await service.list_agents()
        if not agents:
            console.print("\n[dim]No agents defined.[/dim]\n")
            return
        console.print("\n[bold]Agents:[/bold]")
        for agent in agents:
            creator = agent.created_by.value if agent.created_by else "?"
            console.print(
                f"  [cyan]{agent.name:20}[/cyan] {agent.id[:8]}... | "
                f"tools={', '.join(agent.tools) or '-'} | by {creator}"
            )
        console.print()

    elif command == "/tasks":
        _print_tasks(await service.list_tasks(limit=20))

    elif command == "/scheduled":
        _print_scheduled(await service.list_scheduled_tasks())

    elif command == "/history":
        conversations = await service.list_conversations(limit=10)
        if not conversations:
            console.print("\n[dim]No conversations found.[/dim]\n")
            return
        console.print("\n[bold]Recent Conversations:[/bold]")
        for conv in conversations:
            marker = "[green]●[/green]" if conv.id == conversation_id else " "
            console.print(f" {marker} {conv.id[:8]}... | {conv.title or '(untitled)'}")
        console.print()

    elif command == "/models":
        console.print("\n[bold]Models:[/bold]")
        for plugin in app.plugins.llm_plugins():
            for model in plugin.provider.models:
                console.print(
                    f"  [cyan]{model.id:30}[/cyan] {model.tier.value:10} ({plugin.id})"
                )
        console.print()

    elif command == "/help":
        console.print("\n[bold]Commands:[/bold]")
        console.print("  /new        Start a new conversation")
        console.print("  /history    List recent conversations")
        console.print("  /agents     List defined agents")
        console.print("  /tasks      List recent background tasks")
        console.print("  /scheduled  List scheduled tasks")
        console.print("  /tools      List registered tools")
        console.print("  /models     List models by tier")
        console.print("  /help       Show this help")
        console.print("  exit        Quit")
        console.print()

    else:
        console.print(f"[dim]Unknown command: {command}. Try /help[/dim]")


def _print_tasks(tasks) -> None:
    if not tasks:
        console.print("\n[dim]No tasks found.[/dim]\n")
        return
    table = Table(title="Background Tasks")
    table.add_column("ID", style="dim")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Created")
    table.add_column("Error", style="red")
    colors = {"completed": "green", "failed": "red", "running": "yellow"}
    for task in tasks:
        color = colors.get(task.status.value, "white")
        table.add_row(
            task.id[:8],
            task.type.value,
            f"[{color}]{task.status.value}[/{color}]",
            str(task.attempts),
            task.created_at.strftime("%Y-%m-%d %H:%M"),
            (task.error or "")[:50],
        )
    console.print(table)


def _print_scheduled(scheduled) -> None:
    if not scheduled:
        console.print("\n[dim]No scheduled tasks found.[/dim]\n")
        return
    table = Table(title="Scheduled Tasks")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Schedule")
    table.add_column("Status")
    table.add_column("Next run")
    for task in scheduled:
        table.add_row(
            task.id[:8],
            task.name,
            f"{task.schedule} ({task.kind.value})",
            task.status.value,
            task.next_run_at.isoformat() if task.next_run_at else "-",
        )
    console.print(table)


def _load_settings(config_path: str | None) -> Settings:
    return Settings.load(config_path) if config_path else Settings.load()


@click.group(invoke_without_command=True)
@click.option("-c", "--config", "config_path", default=None, help="Path to config file")
@click.option("--log-level", default="WARNING", help="Console log level")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str) -> None:
    """megabot: personal assistant with background agents."""
    configure_logging(log_level, Console(stderr=True))
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    if ctx.invoked_subcommand is None:
        asyncio.run(run_repl(_load_settings(config_path)))


@cli.command()
@click.option("--no-scheduler", is_flag=True, help="Do not run scheduled tasks")
@click.pass_context
def chat(ctx: click.Context, no_scheduler: bool) -> None:
    """Start interactive chat (default)."""
    settings = _load_settings(ctx.obj["config_path"])
    asyncio.run(run_repl(settings, scheduler=not no_scheduler))


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8080, show_default=True, type=int)
@click.option("--no-scheduler", is_flag=True, help="Do not run scheduled tasks")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, no_scheduler: bool) -> None:
    """Run the HTTP API server."""
    from megabot.api.http.server import run_server

    settings = _load_settings(ctx.obj["config_path"])
    asyncio.run(run_server(host=host, port=port, settings=settings, scheduler=not no_scheduler))


async def _with_service(settings: Settings, fn):
    service = MegabotService(settings)
    await service.initialize(start_scheduler=False)
    try:
        return await fn(service)
    finally:
        await service.shutdown()


@cli.command()
@click.option("--status", default=None, help="Filter by task status")
@click.option("--limit", default=20, show_default=True, type=int)
@click.pass_context
def tasks(ctx: click.Context, status: str | None, limit: int) -> None:
    """List background tasks."""
    settings = _load_settings(ctx.obj["config_path"])
    _print_tasks(asyncio.run(_with_service(settings, lambda s: s.list_tasks(status, limit))))


@cli.group()
def scheduler() -> None:
    """Inspect and drive scheduled tasks."""


@scheduler.command("list")
@click.pass_context
def scheduler_list(ctx: click.Context) -> None:
    """List scheduled tasks."""
    settings = _load_settings(ctx.obj["config_path"])
    _print_scheduled(asyncio.run(_with_service(settings, lambda s: s.list_scheduled_tasks())))


@scheduler.command("tick")
@click.pass_context
def scheduler_tick(ctx: click.Context) -> None:
    """Fire every due scheduled task once and wait for the resulting jobs."""
    settings = _load_settings(ctx.obj["config_path"])

    async def tick(service: MegabotService) -> int:
        fired = await service.run_scheduler_tick()
        await service.app.jobs.drain()
        return fired

    fired = asyncio.run(_with_service(settings, tick))
    console.print(f"Fired {fired} scheduled task(s).")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
