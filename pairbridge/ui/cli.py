"""Main CLI entry point - one subcommand per bridge operation."""

import asyncio
import json
import logging
import signal
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from pairbridge.bridge.client import BridgeClient, BridgeError
from pairbridge.core.configs import (
    VERBOSITY_LEVELS,
    BridgeConfig,
    get_bridge_config,
    resolve_session_id,
    should_display,
)

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="pair-bridge - connect a main agent with a pair programming agent.",
)

console = Console()

EMIT_TYPES = ("activity", "prompt", "feedback")


# ============================================================================
# Shared Setup
# ============================================================================

def _load_config() -> BridgeConfig:
    """Load configuration. Exits on error."""
    try:
        return get_bridge_config()
    except ValueError as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1)


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _client(ctx: typer.Context, config: Optional[BridgeConfig] = None) -> BridgeClient:
    config = config or _load_config()
    return BridgeClient(session_id=ctx.obj["session_id"], socket_dir=config.socket_dir)


def _call(func, *args: Any) -> Any:
    """Run a client call, turning connection problems into a clean exit."""
    try:
        return func(*args)
    except (BridgeError, OSError) as e:
        _fail(str(e))


def _check_envelope(response: Any) -> None:
    if isinstance(response, dict) and response.get("ok") is False:
        _fail(response.get("error", "Unknown error"))


@app.callback()
def main(
    ctx: typer.Context,
    session: Optional[str] = typer.Option(
        None,
        "--session",
        "-s",
        help="Session id (default: $CLAUDE_SESSION_ID, $SESSION_ID or 'default')",
    ),
) -> None:
    ctx.obj = {"session_id": session or resolve_session_id()}


# ============================================================================
# Bridge lifecycle
# ============================================================================

@app.command()
def start(ctx: typer.Context) -> None:
    """Start the bridge server in the background."""
    config = _load_config()
    client = _client(ctx, config)

    if client.socket_path.exists():
        typer.echo("Bridge already running")
        return

    if not client.start_bridge(history_limit=config.history_limit):
        _fail("Bridge failed to start (socket not created)")

    typer.echo(f"Bridge started for session {client.session_id}")
    typer.echo(f"Socket: {client.socket_path}")


@app.command()
def serve(ctx: typer.Context) -> None:
    """Run the bridge server in the foreground until stopped."""
    from pairbridge.bridge.server import run_bridge

    config = _load_config()
    try:
        run_bridge(
            session_id=ctx.obj["session_id"],
            socket_dir=str(config.socket_dir),
            history_limit=config.history_limit,
            log_level=config.log_level,
        )
    except (ValueError, OSError) as e:
        _fail(str(e))


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop the bridge server."""
    client = _client(ctx)
    if not _call(client.stop):
        _fail("Bridge did not acknowledge stop")
    typer.echo("Bridge stopped")


@app.command()
def status(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show bridge status (session, activity count, pending feedback)."""
    data = _call(_client(ctx).status)
    _check_envelope(data)

    if as_json:
        typer.echo(json.dumps(data, indent=2))
        return

    table = Table(title=f"Bridge {data.get('session_id')}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Activities", str(data.get("activity_count")))
    table.add_row("Pending feedback", str(data.get("pending_feedback")))
    table.add_row("Pair connected", "yes" if data.get("pair_connected") else "no")
    table.add_row("Uptime", f"{data.get('uptime_seconds')}s")
    console.print(table)


# ============================================================================
# Event traffic
# ============================================================================

@app.command()
def emit(
    ctx: typer.Context,
    event_type: str = typer.Argument(..., help="Event type: activity, prompt or feedback"),
    payload: str = typer.Argument(..., help="Event JSON object"),
) -> None:
    """
    Send activity, prompt or feedback to the bridge.

    Example: pair-bridge emit activity '{"tool":"Edit","input":{"file":"foo.ts"}}'
    """
    if event_type not in EMIT_TYPES:
        _fail(f"Unknown event type '{event_type}'. Use one of: {', '.join(EMIT_TYPES)}")

    try:
        body = json.loads(payload)
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON payload: {e}")
    if not isinstance(body, dict):
        _fail("Payload must be a JSON object")

    client = _client(ctx)
    if event_type == "feedback":
        response = _call(client.emit_feedback, body)
    else:
        response = _call(client.emit_activity, body, event_type)
    _check_envelope(response)


@app.command()
def wait(
    ctx: typer.Context,
    last_seen: int = typer.Argument(0, min=0, help="Sequence number to resume from"),
) -> None:
    """Block until new activity arrives (for the pair agent)."""
    result = _call(_client(ctx).wait, last_seen)
    _check_envelope(result)
    typer.echo(json.dumps(result))


@app.command()
def poll(
    ctx: typer.Context,
    verbosity: Optional[str] = typer.Option(
        None,
        "--verbosity",
        help="quiet (high only), normal (high+medium) or verbose (all)",
    ),
) -> None:
    """Non-blocking check for pending feedback (for the main agent)."""
    config = _load_config()
    level = (verbosity or config.feedback_verbosity).lower()
    if level not in VERBOSITY_LEVELS:
        _fail(f"Unknown verbosity '{level}'")

    feedback = _call(_client(ctx, config).poll)
    if feedback is None:
        return
    _check_envelope(feedback)
    severity = feedback.get("severity", "")
    if should_display(severity, level):
        typer.echo(json.dumps(feedback))
    else:
        # Already removed from the bridge queue
        typer.echo(
            f"Suppressed {severity} feedback (verbosity: {level}): {feedback.get('message', '')}",
            err=True,
        )


@app.command()
def history(
    ctx: typer.Context,
    n: int = typer.Argument(10, min=0, help="Number of activities to show"),
) -> None:
    """Show the last n activities."""
    events = _call(_client(ctx).history, n)
    _check_envelope(events)
    typer.echo(json.dumps(events, indent=2))


# ============================================================================
# Orchestrated sessions
# ============================================================================

async def _run_session(
    config: BridgeConfig,
    backend: Optional[str],
    custom_prompt: Optional[str],
    spawn_pair: bool,
) -> Dict[str, Any]:
    from pairbridge.adapters import ClaudeOpusAdapter
    from pairbridge.core.session import SessionManager

    manager = SessionManager(config)
    info = await manager.start_session(
        backend=backend,
        custom_prompt=custom_prompt,
        spawn_pair=spawn_pair,
    )
    typer.echo(f"Session {info.session_id} started (backend: {info.backend or 'none'})")
    typer.echo(f"Socket: {info.socket_path}")
    typer.echo(f"export CLAUDE_SESSION_ID={info.session_id}")

    adapter = manager.active.adapter
    if isinstance(adapter, ClaudeOpusAdapter) and adapter.prompt:
        typer.echo("\nPair agent task prompt:\n")
        typer.echo(adapter.prompt)

    # A socket `stop` or a signal both go through manager.request_stop(),
    # which stops the pair agent and then the bridge
    loop = asyncio.get_running_loop()
    signals = (signal.SIGTERM, signal.SIGINT)
    for sig in signals:
        loop.add_signal_handler(sig, manager.request_stop)
    try:
        await manager.active.bridge.serve_forever()
        return await manager.request_stop()
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)


@app.command()
def session(
    backend: Optional[str] = typer.Option(None, "--backend", "-b", help="Pair agent backend"),
    prompt_file: Optional[str] = typer.Option(
        None, "--prompt-file", help="Read the pair agent system prompt from a file"
    ),
    no_pair: bool = typer.Option(False, "--no-pair", help="Start the bridge without a pair agent"),
) -> None:
    """
    Run a full pair session in the foreground: bridge plus pair agent.

    The session ends when the bridge is stopped (pair-bridge stop) or on Ctrl-C.
    """
    from pathlib import Path

    from pairbridge.adapters import AdapterError
    from pairbridge.core.session import SessionError

    config = _load_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    custom_prompt = None
    if prompt_file:
        try:
            custom_prompt = Path(prompt_file).read_text(encoding="utf-8")
        except OSError as e:
            _fail(f"Cannot read prompt file: {e}")

    try:
        summary = asyncio.run(_run_session(config, backend, custom_prompt, not no_pair))
    except (SessionError, AdapterError, ValueError, OSError) as e:
        _fail(str(e))

    typer.echo(f"Session {summary['session_id']} ended after {summary['duration']}s")


@app.command()
def backends() -> None:
    """List available pair agent backends."""
    from pairbridge.adapters import list_backends

    config = _load_config()
    for entry in list_backends():
        marker = "*" if entry["backend"] == config.default_backend else " "
        typer.echo(f"{marker} {entry['backend']:<12} {entry['name']}")


def run() -> None:
    """Entry point for console script mapping."""
    app()


if __name__ == "__main__":
    run()
