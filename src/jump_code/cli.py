"""Command-line interface for Jump Code."""

import asyncio
import logging
import sys
from typing import Optional
import click
from rich.logging import RichHandler
from .core.agent import CodingAgent
from .core.errors import ConfigurationError, IterationLimitError, TransportError
from .interface.approval import AutoConfirmation, InteractiveConfirmation
from .interface.display import display
from .interface.terminal import TerminalInterface
from .utils.config import DEFAULT_MODELS, config_manager
from . import __version__


def setup_logging(verbose: bool = False) -> None:
    """Route jump_code logs through rich; WARNING by default, DEBUG when verbose."""
    handler = RichHandler(console=display.console, show_path=verbose, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger = logging.getLogger("jump_code")
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def _apply_overrides(model: Optional[str] = None, provider: Optional[str] = None,
                     no_confirm: bool = False, no_stream: bool = False, verbose: bool = False) -> None:
    """Session-only overrides from the command line; nothing is written to disk."""
    config = config_manager.config
    if provider:
        config.llm.provider = provider
        if not model:
            config.llm.model = DEFAULT_MODELS.get(provider, config.llm.model)
    if model:
        config.llm.model = model
    if no_confirm:
        config.confirm_actions = False
    if no_stream:
        config.streaming = False
    if verbose:
        config.verbose = True
    display.configure(color_output=config.color_output, verbose=config.verbose)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="jump-code")
@click.pass_context
def cli(ctx):
    """Jump Code - AI-powered coding assistant in your terminal."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(start)


@cli.command()
@click.option("--model", "-m", help="Model name")
@click.option("--provider", "-p", type=click.Choice(["openai", "anthropic", "gateway"]), help="Model provider")
@click.option("--no-confirm", is_flag=True, help="Run tools without asking for confirmation")
@click.option("--no-stream", is_flag=True, help="Render complete responses instead of streaming")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def start(model=None, provider=None, no_confirm=False, no_stream=False, verbose=False):
    """Start the interactive Jump Code session."""
    setup_logging(verbose)
    _apply_overrides(model, provider, no_confirm, no_stream, verbose)

    agent = CodingAgent(confirmation=InteractiveConfirmation(display))

    async def run():
        await agent.initialize()
        await TerminalInterface(agent, display=display).start()

    try:
        asyncio.run(run())
    except ConfigurationError as e:
        display.print_error(str(e), f"Configuration file: {config_manager.config_path}")
        sys.exit(1)
    except KeyboardInterrupt:
        agent.save()
        display.print("\nJump Code stopped", style="yellow")


@cli.command()
@click.argument("message")
@click.option("--yes", "-y", is_flag=True, help="Allow side-effectful tools without asking")
@click.option("--model", "-m", help="Model name")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def chat(message, yes, model, verbose):
    """Send a single message (non-interactive mode).

    Without --yes, Bash, Write and Edit requests are denied.
    """
    setup_logging(verbose)
    _apply_overrides(model=model, verbose=verbose)
    config_manager.config.confirm_actions = True

    agent = CodingAgent(confirmation=AutoConfirmation(accept=yes))
    agent.on_tool_call = lambda block: display.print_tool_call(block.name, block.input)
    agent.on_tool_result = lambda block, result: display.print_tool_result(
        block.name, result.output, result.is_error, result.data
    )

    try:
        response = asyncio.run(agent.converse(message))
    except ConfigurationError as e:
        display.print_error(str(e), f"Configuration file: {config_manager.config_path}")
        sys.exit(1)
    except (TransportError, IterationLimitError) as e:
        display.print_error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        display.print("\nChat interrupted", style="yellow")
        sys.exit(130)

    display.print_response(response)


@cli.command()
def config():
    """Show current configuration."""
    config_dict = config_manager.config.model_dump()
    config_dict["llm"].pop("api_key", None)
    display.print_header("Current Configuration")
    display.print(f"File: {config_manager.config_path}", style="dim", highlight=False)
    display.print_tree(config_dict)


@cli.command("set-config")
@click.argument("key")
@click.argument("value")
def set_config(key, value):
    """Set a configuration value, e.g. set-config llm.model gpt-4o."""
    try:
        coerced = config_manager.set_value(key, value)
    except ConfigurationError as e:
        display.print_error(f"Failed to set configuration: {e}")
        sys.exit(1)
    display.print_success(f"Set {key} = {coerced}")


@cli.command()
@click.confirmation_option(prompt="Reset configuration to defaults?")
def reset():
    """Reset configuration to defaults."""
    config_manager.reset()
    display.print_success(f"Configuration reset ({config_manager.config_path})")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
