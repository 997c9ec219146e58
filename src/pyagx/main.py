from __future__ import annotations

import asyncio
import json
import logging
import signal
from pathlib import Path

import typer
from rich.align import Align
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .app_context import AppContext
from .config.loader import load_local_config, local_config_path
from .config.models import ConfigError
from .runner import MAX_ROUND_TRIPS, format_tokens
from .session.models import Reasoning, Text, ToolCall, ToolResult
from .session.store import load_transcript
from .telemetry import setup_logging
from .tools.permissions import PermissionRecord

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="pyagx: terminal coding assistant with a permission-gated tool loop.")
console = Console()

QUIT_COMMANDS = {"/quit", "/exit", "bye", ":q"}

HELP_TEXT = """commands:
  /help        show this help
  /new         start a new conversation
  /approvals   show what is approved for this session
  clear        clear the screen
  /quit        exit (also /exit, bye, :q, ctrl+d)

press ctrl+c while the assistant is working to interrupt it"""


@app.callback()
def main() -> None:
    try:
        setup_logging()
    except OSError as e:
        console.print(f"[yellow]warning: couldn't set up log file: {escape(str(e))}[/yellow]")


def _default_cwd() -> Path:
    return Path.cwd()


def _resolve_cwd(cwd: Path | None) -> Path:
    cwd = cwd or _default_cwd()
    cwd = Path(str(cwd)).expanduser()
    if not cwd.is_absolute():
        cwd = (Path.cwd() / cwd).resolve()
    else:
        cwd = cwd.resolve()
    if not cwd.is_dir():
        raise typer.BadParameter(f"--cwd must be an existing directory, got: {cwd}")
    return cwd


def _banner(ctx: AppContext) -> None:
    table = Table.grid(padding=(0, 2))
    table.add_row("[bold green]cwd[/bold green]", f"[bright_cyan]{escape(str(ctx.cwd))}[/bright_cyan]")
    table.add_row("[bold green]session[/bold green]", f"[bright_cyan]{escape(str(ctx.transcript.session_dir))}[/bright_cyan]")
    table.add_row("[bold green]provider[/bold green]", f"[bright_cyan]{escape(ctx.provider.provider_name)}[/bright_cyan]")
    table.add_row("[bold green]model[/bold green]", f"[bright_cyan]{escape(ctx.provider.model)}[/bright_cyan]")
    if ctx.project_context is not None:
        table.add_row("[bold green]context[/bold green]", f"[bright_cyan]{escape(str(ctx.project_context.path))}[/bright_cyan]")
    if ctx.debug_server is not None:
        table.add_row("[bold green]debug events[/bold green]", f"[bright_cyan]{ctx.debug_server.url}[/bright_cyan]")
    console.print(
        Align.center(
            Panel(
                table,
                title="[bold magenta]pyagx[/bold magenta]",
                border_style="bright_blue",
            )
        )
    )
    console.print("[dim]type /help for commands[/dim]")


def _status_line(ctx: AppContext) -> str:
    model = f"[{ctx.provider.provider_name}/{ctx.provider.model}]"
    return (
        f"[bright_blue]{escape(model)}[/bright_blue] "
        f"[dim]{escape(str(ctx.cwd))}  {format_tokens(ctx.engine.tokens_in_context)}[/dim]"
    )


async def _repl(ctx: AppContext) -> None:
    engine = ctx.engine
    loop = asyncio.get_running_loop()

    def on_sigint() -> None:
        if engine.running:
            if engine.interrupt():
                console.print("\n[yellow]interrupting...[/yellow]")
            else:
                console.print("\n[yellow]cancellation already requested[/yellow]")
        else:
            console.print("\n[dim]press ctrl+d or type /quit to exit[/dim]")

    try:
        loop.add_signal_handler(signal.SIGINT, on_sigint)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        # No loop signal handlers on this platform; ctrl+c keeps its default behaviour.
        handler_installed = False

    await ctx.start()
    _banner(ctx)
    try:
        while True:
            console.print()
            console.print(_status_line(ctx))
            try:
                line = await asyncio.to_thread(console.input, "[bold]> [/bold]")
            except (EOFError, KeyboardInterrupt):
                break
            text = line.strip()
            if not text:
                continue
            if text in QUIT_COMMANDS:
                break
            if text == "/help":
                console.print(HELP_TEXT, markup=False)
            elif text == "/new":
                session_dir = engine.new_session()
                console.print(f"[green]started a new conversation[/green] [dim]{escape(str(session_dir or ''))}[/dim]")
            elif text == "/approvals":
                console.print(engine.approvals_summary(), markup=False)
            elif text == "clear":
                console.clear()
            else:
                await engine.run_turn(text)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await ctx.close()


@app.command()
def repl(
    provider: str = typer.Option(None, "--provider", help="Provider name registered in YAML (e.g. deepseek/kimi/openai/qwen)."),
    config: Path = typer.Option(Path("pyagx.yaml"), "--config", help="YAML config path (default: ./pyagx.yaml)."),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    model: str = typer.Option(None, "--model", help="Override the model of the selected provider."),
    base_url: str = typer.Option(None, "--base-url", help="Override the base URL of the selected provider."),
    api_key: str = typer.Option(None, "--api-key", help="Override the API key of the selected provider."),
    max_round_trips: int = typer.Option(MAX_ROUND_TRIPS, "--max-round-trips", min=1, help="Max model round-trips per turn."),
    cmd_timeout: float = typer.Option(120, "--cmd-timeout", min=1, help="Default timeout in seconds for run_cmd."),
    debug_server: bool = typer.Option(False, "--debug-server", help="Serve debug events on http://127.0.0.1:4880 (or PYAGX_DEBUG_SERVER=1)."),
):
    """Start an interactive session."""
    cwd = _resolve_cwd(cwd)
    try:
        ctx = AppContext.from_env(
            cwd=cwd,
            provider=provider,
            model=model,
            base_url=base_url,
            api_key=api_key,
            config_path=config if provider else None,
            max_round_trips=max_round_trips,
            cmd_timeout=cmd_timeout,
            debug_server=debug_server,
        )
    except ConfigError as e:
        logger.error("couldn't start session: %s", e)
        console.print(f"[red]error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)

    try:
        asyncio.run(_repl(ctx))
    except OSError as e:
        # e.g. the debug server port is already taken
        logger.exception("session failed")
        console.print(f"[red]error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)


@app.command()
def approvals(
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
):
    """Show command approvals persisted for a project."""
    cwd = _resolve_cwd(cwd)
    try:
        cfg = load_local_config(cwd)
    except ConfigError as e:
        console.print(f"[red]error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[dim]{escape(str(local_config_path(cwd)))}[/dim]")
    console.print(str(PermissionRecord(approved_commands=cfg.approved_commands)), markup=False)


@app.command()
def replay(
    file: Path = typer.Option(..., "--file", help="Transcript file (turn-NNNN.json) to show."),
    tail: int = typer.Option(0, "--tail", help="Show last N messages (0 shows all)."),
):
    """Replay conversation messages from a saved transcript."""
    try:
        msgs = load_transcript(file)
    except (OSError, ValueError, KeyError) as e:
        console.print(f"[red]error: couldn't read transcript: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    msgs = msgs[-tail:] if tail and tail > 0 else msgs

    console.print(Panel.fit(f"file: {escape(str(file))}\nmessages: {len(msgs)}", title="Replay"))
    for m in msgs:
        for item in m.content:
            if isinstance(item, Text):
                console.print(Panel(escape(item.text), title=m.role))
            elif isinstance(item, Reasoning):
                console.print(Panel(escape(item.reasoning), title=f"{m.role} (reasoning)", border_style="dim"))
            elif isinstance(item, ToolCall):
                args = json.dumps(item.arguments, ensure_ascii=False, indent=2)[:4000]
                console.print(Panel(escape(args), title=f"call: {escape(item.name)} ({escape(item.id)})", border_style="cyan"))
            elif isinstance(item, ToolResult):
                console.print(Panel(escape(item.content[:4000]), title=f"result ({escape(item.id)})", border_style="green"))


if __name__ == "__main__":
    app()
