"""Command-line entry point for Vault Agent."""

import asyncio
import os
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from vault_agent.agent import Agent, AgentRunResult
from vault_agent.config import Config, set_config
from vault_agent.exceptions import ConfigurationError, LLMError, OperationAbortedError
from vault_agent.logging import configure_logging, log, set_log_sink
from vault_agent.response_handler import ToolDisplay
from vault_agent.session import create_history_store
from vault_agent.tools import ToolCommand, ToolResult, create_default_registry

console = Console()
cli = typer.Typer(help="Vault Agent - a tool-using assistant for a markdown notes vault")


class ConsoleEventSink:
    """Print tool outcomes as they happen."""

    def __init__(self, console: Console):
        self.console = console

    def on_tool_result(self, result: ToolResult, command: ToolCommand) -> None:
        pass

    def on_tool_display(self, display: ToolDisplay) -> None:
        self.console.print(Markdown(display.markdown))


def _console_log_line(line: str) -> None:
    """Print a log line dimmed so it stays apart from the conversation."""
    console.print(Text.from_ansi(line, style="dim"))


def _load_config(
    config: str = "",
    model: str = "",
    vault: str = "",
    max_tool_calls: int | None = None,
    verbose: bool = False,
) -> Config:
    if verbose:
        os.environ["VAULT_AGENT_LOGGING__LEVEL"] = "DEBUG"

    if config:
        try:
            cfg = Config.from_yaml(Path(config))
        except ConfigurationError as e:
            log.error("Failed to load config", error=str(e))
            cfg = Config.load()
    else:
        cfg = Config.load()

    # Apply CLI overrides
    if model:
        cfg.model.model = model
    if vault:
        cfg.vault.path = vault
    if max_tool_calls is not None:
        cfg.agent_mode = cfg.agent_mode.model_copy(update={"max_tool_calls": max_tool_calls})

    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)
    return cfg


def _print_result(result: AgentRunResult) -> None:
    console.print(Markdown(result.content or "_(no response)_"))
    status = result.task_status
    if status is not None:
        console.print(
            f"[dim]status: {status.status} · tools: "
            f"{status.tool_execution_count}/{status.max_tool_executions}[/dim]"
        )
        if status.can_continue:
            console.print("[yellow]Use /more N to allow more tool calls, then ask again.[/yellow]")


async def _run_session(cfg: Config, prompt: str) -> None:
    cfg.resolved_vault_path().mkdir(parents=True, exist_ok=True)
    agent = Agent(
        config=cfg,
        history_store=create_history_store(cfg.session.storage, cfg.session.path),
        event_sink=ConsoleEventSink(console),
    )
    try:
        if prompt:
            _print_result(await agent.run(prompt))
            return

        console.print("[bold cyan]Vault Agent[/bold cyan] · /new, /more N, /exit")
        while True:
            user_input = (await asyncio.to_thread(Prompt.ask, "[bold green]you[/bold green]")).strip()
            if not user_input:
                continue
            if user_input in ("/exit", "/quit"):
                break
            if user_input == "/new":
                await agent.new_conversation()
                console.print("[dim]Started a new conversation.[/dim]")
                continue
            if user_input.startswith("/more"):
                parts = user_input.split()
                try:
                    agent.add_tool_executions(int(parts[1]) if len(parts) > 1 else cfg.agent_mode.max_tool_calls)
                except ValueError as e:
                    console.print(f"[red]{e}[/red]")
                continue
            try:
                _print_result(await agent.run(user_input))
            except OperationAbortedError:
                console.print("[yellow]Cancelled.[/yellow]")
            except LLMError as e:
                log.error("Model call failed", error=str(e))
                console.print(f"[red]{e}[/red]")
    finally:
        await agent.close()


@cli.command()
def run(
    prompt: str = typer.Argument("", help="Single prompt; omit for an interactive session"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    vault: str = typer.Option("", "--vault", help="Override vault directory"),
    max_tool_calls: int | None = typer.Option(None, "--max-tool-calls", help="Override tool call budget"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Chat with the agent."""
    if not prompt:
        # Interactive sessions share the console with the prompt.
        set_log_sink(_console_log_line)
    cfg = _load_config(config, model, vault, max_tool_calls, verbose)
    try:
        asyncio.run(_run_session(cfg, prompt))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)
    except Exception as e:
        log.error("Fatal error", error=str(e))
        sys.exit(1)


@cli.command()
def tools(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """List the tools available to the model."""
    cfg = _load_config(config)
    registry = create_default_registry(
        vault_root=cfg.resolved_vault_path(),
        enabled_tools=cfg.agent_mode.enabled_tools,
        trash_dir=cfg.vault.trash_dir,
    )
    table = Table(title="Available Tools", show_header=True, header_style="bold cyan")
    table.add_column("Action")
    table.add_column("Description")
    table.add_column("Required")
    for tool in registry.describe_available():
        required = ", ".join(tool["parameter_schema"].get("required", []))
        table.add_row(tool["action"], tool["description"], required)
    console.print(table)


@cli.command()
def version() -> None:
    """Show version information."""
    from vault_agent import __version__
    console.print(f"Vault Agent v{__version__}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
