"""CLI for Praxis - offline ReAct coding agent on local Ollama models."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click

from praxis import __version__
from praxis.agent import Agent
from praxis.config import Config
from praxis.errors import PraxisError
from praxis.schemas import SessionResult, SessionStatus, Turn, TurnRole
from praxis.session import Session
from praxis.tools import build_default_registry

ROLE_LABELS = {
    TurnRole.USER: "Goal",
    TurnRole.THOUGHT: "Thought",
    TurnRole.ACTION: "Action",
    TurnRole.OBSERVATION: "Observation",
}

# Observations are shortened on screen, never in history
DISPLAY_OBSERVATION_CHARS = 300


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_config(config_path: str | None, **overrides) -> Config:
    try:
        return Config.load(config_path).with_overrides(**overrides)
    except PraxisError as e:
        raise click.ClickException(str(e)) from e


def _print_turn(session: Session, turn: Turn) -> None:
    indent = "  " * session.depth
    label = ROLE_LABELS[turn.role]
    content = turn.content
    if turn.role == TurnRole.OBSERVATION:
        if turn.kind is not None and turn.kind.value != "success":
            label = f"{label} [{turn.kind.value}]"
        if len(content) > DISPLAY_OBSERVATION_CHARS:
            content = content[:DISPLAY_OBSERVATION_CHARS] + "..."
    if session.depth and turn.role == TurnRole.USER:
        label = f"Sub-agent {session.id}"
    click.echo(f"{indent}{label}: {content}")


def _print_result(result: SessionResult) -> None:
    click.echo(f"\n{'=' * 60}")
    click.echo(
        f"Status: {result.status.value} | Turns: {result.turn_count}/{result.max_turns}"
    )
    if result.error:
        click.echo(f"Error: {result.error.code}: {result.error.message}")
    click.echo(f"{'=' * 60}\n")
    if result.output:
        click.echo(result.output)


async def _run_goal(config: Config, goal: str, raw: bool) -> SessionResult:
    agent = Agent(config)
    try:
        await agent.initialize()
        on_turn = None if raw else _print_turn
        on_token = None
        if config.streaming.enabled and config.streaming.print_tokens and not raw:
            on_token = lambda token: click.echo(token, nl=False)  # noqa: E731
        return await agent.run(goal, on_turn=on_turn, on_token=on_token)
    finally:
        await agent.aclose()


@click.group()
@click.version_option(version=__version__, prog_name="praxis")
def main() -> None:
    """Praxis - offline autonomous coding agent.

    Solves multi-step tasks with a ReAct loop over two local Ollama models:
    an orchestrator that picks tools and an executor that writes code.
    """
    pass


@main.command()
@click.argument("goal", nargs=-1, required=True)
@click.option("--orchestrator", "-o", default=None, help="Orchestrator model (tool selection)")
@click.option("--executor", "-e", default=None, help="Executor model (code generation)")
@click.option("--debug", "-d", is_flag=True, help="Enable debug logging")
@click.option("--no-browser", is_flag=True, help="Disable browser tools")
@click.option("--headed", is_flag=True, help="Show the browser window")
@click.option("--max-turns", type=click.IntRange(min=1), default=None, help="Turn budget")
@click.option("--max-depth", type=click.IntRange(min=0), default=None, help="Sub-agent nesting limit")
@click.option("--max-history", type=click.IntRange(min=1), default=None, help="History bound")
@click.option("--stream/--no-stream", default=None, help="Stream executor output")
@click.option("--raw", is_flag=True, help="Output the session result as JSON")
@click.option(
    "--config", "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="Config file (defaults to ~/.config/praxis/config.toml)",
)
def run(
    goal: tuple[str, ...],
    orchestrator: str | None,
    executor: str | None,
    debug: bool,
    no_browser: bool,
    headed: bool,
    max_turns: int | None,
    max_depth: int | None,
    max_history: int | None,
    stream: bool | None,
    raw: bool,
    config_path: str | None,
) -> None:
    """Run the agent on a goal.

    \b
    Example:
        praxis run "write a python function that parses ISO dates"
        praxis run -o qwen3-vl:8b -e qwen3:8b --max-turns 5 "fix this bug: ..."
    """
    config = _load_config(
        config_path,
        orchestrator=orchestrator,
        executor=executor,
        debug=debug or None,
        browser=False if no_browser else None,
        headed=headed or None,
        max_turns=max_turns,
        max_depth=max_depth,
        max_history=max_history,
        streaming=stream,
    )
    _configure_logging(config.agent.debug)

    try:
        result = asyncio.run(_run_goal(config, " ".join(goal), raw))
    except KeyboardInterrupt:
        click.echo("\nAborted.", err=True)
        sys.exit(130)
    except PraxisError as e:
        raise click.ClickException(str(e)) from e

    if raw:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        _print_result(result)

    if result.status != SessionStatus.COMPLETED:
        sys.exit(1)


@main.command()
@click.option("--config", "config_path", default=None, help="Config file path")
def models(config_path: str | None) -> None:
    """List models available in Ollama."""
    config = _load_config(config_path)

    async def _list() -> list[str]:
        agent = Agent(config)
        try:
            return await agent.list_models()
        finally:
            await agent.aclose()

    try:
        names = asyncio.run(_list())
    except PraxisError as e:
        raise click.ClickException(str(e)) from e

    if not names:
        click.echo("No models found. Pull one with: ollama pull qwen3:8b")
        return
    click.echo("Available models:")
    for name in sorted(names):
        marks = []
        if name == config.models.orchestrator:
            marks.append("orchestrator")
        if name == config.models.executor:
            marks.append("executor")
        suffix = f"  ({', '.join(marks)})" if marks else ""
        click.echo(f"  - {name}{suffix}")


@main.command()
@click.option("--no-browser", is_flag=True, help="Hide browser tools")
@click.option("--raw", is_flag=True, help="Output raw JSON instead of formatted text")
def tools(no_browser: bool, raw: bool) -> None:
    """List registered tools and their execution policy."""
    config = _load_config(None, browser=False if no_browser else None)
    infos = build_default_registry(config).tool_infos()

    if raw:
        click.echo(json.dumps([info.model_dump(mode="json") for info in infos], indent=2))
        return

    for info in infos:
        flags = []
        if info.fail_fast:
            flags.append("fail-fast")
        if not info.concurrency_safe:
            flags.append("sequential")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"  {info.name:<22} {info.category.value:<11} {info.description}{suffix}")


@main.command(name="config")
@click.option("--config", "config_path", default=None, help="Config file path")
def show_config(config_path: str | None) -> None:
    """Show the effective configuration."""
    config = _load_config(config_path)
    click.echo(json.dumps(config.model_dump(mode="json"), indent=2))


@main.command()
@click.option("--port", default=8000, help="Port to run the broker on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(port: int, host: str, reload: bool) -> None:
    """Start the Praxis HTTP broker server."""
    import uvicorn

    click.echo(f"Starting Praxis broker on {host}:{port}")
    uvicorn.run(
        "praxis.broker:app",
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    main()
