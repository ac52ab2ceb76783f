"""
Command-line interface for the agent loop.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, Prompt
from rich.table import Table

from agent_loop_engine.config import ProjectConfig
from agent_loop_engine.errors import AgentError
from agent_loop_engine.events import (
    AGENT_CHUNK,
    AGENT_COMPACTION,
    AGENT_COMPACTION_WARNING,
    AGENT_ERROR,
    AGENT_PLAN_READY,
    AGENT_TOOL_END,
    AGENT_TOOL_START,
    ChunkEvent,
    CompactionEvent,
    CompactionWarningEvent,
    ErrorEvent,
    PlanReadyEvent,
    ToolEndEvent,
    ToolStartEvent,
)
from agent_loop_engine.logging import setup_logging
from agent_loop_engine.prompts.agent_types import get_all_agent_types
from agent_loop_engine.service import AgentService
from agent_loop_engine.types import Message

console = Console()


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Agent Loop Engine CLI",
        prog="agent-loop",
    )

    # Global options
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug logging)",
    )
    parser.add_argument(
        "-p",
        "--project",
        default=".",
        help="Project directory (default: current directory)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the agent on a prompt")
    run_parser.add_argument("prompt", nargs="+", help="What to ask the agent")
    run_parser.add_argument(
        "-s",
        "--system",
        default=None,
        help="Extra system prompt placed between the project's pre and post prompts",
    )

    # Agents command
    subparsers.add_parser("agents", help="List sub-agent types")

    # Config command with subcommands
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show the project configuration")
    config_subparsers.add_parser("init", help="Create .agent/config.yaml with defaults")

    args = parser.parse_args()

    setup_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    project = Path(args.project).resolve()

    if args.command == "run":
        sys.exit(asyncio.run(_run(project, " ".join(args.prompt), args.system)))
    elif args.command == "agents":
        _agents()
    elif args.command == "config":
        if args.config_command == "show":
            _config_show(project)
        elif args.config_command == "init":
            _config_init(project)
        else:
            config_parser.print_help()


async def _run(project: Path, prompt: str, system: str | None) -> int:
    """Stream one top-level run to the terminal. Returns the exit code."""
    service = AgentService()

    def on_chunk(event: ChunkEvent) -> None:
        console.print(event.delta, end="", markup=False, highlight=False)

    def on_tool_start(event: ToolStartEvent) -> None:
        console.print(
            f"\n[cyan]⚙ {event.tool_name}[/cyan] [dim]{escape(str(event.tool_input))}[/dim]"
        )

    def on_tool_end(event: ToolEndEvent) -> None:
        style = "red" if event.is_error else "dim"
        preview = event.output if len(event.output) <= 200 else event.output[:200] + "..."
        console.print(f"[{style}]{escape(preview)}[/{style}]", highlight=False)

    def on_compaction(event: CompactionEvent) -> None:
        console.print(
            f"[dim]Context compacted: {event.original_tokens} -> "
            f"{event.compacted_tokens} tokens, {event.facts_count} facts[/dim]"
        )

    def on_warning(event: CompactionWarningEvent) -> None:
        console.print(f"[yellow]{event.message}[/yellow]")

    def on_error(event: ErrorEvent) -> None:
        console.print(f"\n[red]Error: {escape(event.error)}[/red]")

    async def on_plan(event: PlanReadyEvent) -> None:
        console.print("\n[bold]Proposed plan:[/bold]\n")
        console.print(event.plan)
        approved = await asyncio.to_thread(Confirm.ask, "Approve this plan?")
        if approved:
            service.approve_plan()
        else:
            reason = await asyncio.to_thread(Prompt.ask, "Reason (optional)", default="")
            service.reject_plan(reason or None)

    service.bus.on(AGENT_CHUNK, on_chunk)
    service.bus.on(AGENT_TOOL_START, on_tool_start)
    service.bus.on(AGENT_TOOL_END, on_tool_end)
    service.bus.on(AGENT_COMPACTION, on_compaction)
    service.bus.on(AGENT_COMPACTION_WARNING, on_warning)
    service.bus.on(AGENT_ERROR, on_error)
    service.bus.on(AGENT_PLAN_READY, on_plan)

    try:
        await service.send_message(project, [Message.user(prompt)], system_prompt=system)
    except AgentError:
        return 1
    finally:
        totals = service.usage_totals()
        console.print(
            f"\n[dim]tokens: {totals.input_tokens} in / {totals.output_tokens} out[/dim]"
        )
        await service.shutdown()
    return 0


def _agents() -> None:
    """List sub-agent types."""
    table = Table(title="Sub-agent Types")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Tools")
    table.add_column("Description")

    for agent in get_all_agent_types():
        tools = "[dim]none[/dim]" if agent.no_tools else ", ".join(agent.allowed_tools)
        table.add_row(agent.id, agent.name, tools, agent.description)

    console.print(table)


def _config_show(project: Path) -> None:
    """Show the project configuration."""
    path = ProjectConfig.path_for(project)
    try:
        config = ProjectConfig.load(project)
    except AgentError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(f"[dim]Loaded from: {path}[/dim]\n")
    console.print("[bold]Current Configuration:[/bold]\n")
    console.print(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False))


def _config_init(project: Path) -> None:
    """Create a default project configuration file."""
    output_path = ProjectConfig.path_for(project)

    if output_path.exists():
        console.print(f"[red]File already exists: {output_path}[/red]")
        sys.exit(1)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        yaml.dump(ProjectConfig().to_dict(), f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]Created config file: {output_path}[/green]")


if __name__ == "__main__":
    main()
