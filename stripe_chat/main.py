"""Command-line entry point for Stripe Chat."""

import asyncio

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stripe_chat.agent.chat_loop import ChatLoop
from stripe_chat.config import Config, get_config, set_config
from stripe_chat.llm import create_provider
from stripe_chat.llm.models import Conversation, Message
from stripe_chat.logging import configure_logging
from stripe_chat.mcp.client import MCPClient
from stripe_chat.relay import RelayContent, RelayDone, RelayError, RelayMetadata
from stripe_chat.tools.catalog import ToolCatalog
from stripe_chat.tools.executor import ToolExecutor

cli = typer.Typer(help="Stripe Chat - streaming chat with Stripe MCP tools")
console = Console()


def _load(config_path: str, verbose: bool) -> Config:
    cfg = Config.load(config_path or None)
    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)
    return cfg


def _mcp_client(cfg: Config) -> MCPClient:
    return MCPClient(url=cfg.mcp.url, secret_key=cfg.mcp.secret_key, timeout=cfg.mcp.timeout)


async def _list_tools(cfg: Config, refresh: bool) -> None:
    client = _mcp_client(cfg)
    try:
        tools = await ToolCatalog(client, ttl_seconds=cfg.mcp.cache_ttl_seconds).list(force_refresh=refresh)
    finally:
        await client.aclose()

    table = Table(title=f"Stripe MCP tools ({len(tools)})")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Description")
    table.add_column("Required")
    for tool in tools:
        required = ", ".join(tool.parameters.get("required") or [])
        table.add_row(tool.name, tool.description, required)
    console.print(table)


async def _ask(cfg: Config, prompt: str, temperature: float | None, max_tokens: int | None) -> int:
    provider = create_provider(
        provider=cfg.model.provider,
        api_url=cfg.model.api_url,
        api_key=cfg.model.api_key,
        temperature=cfg.model.temperature,
        max_tokens=cfg.model.max_tokens,
        timeout=cfg.model.timeout,
    )
    client = _mcp_client(cfg)
    loop = ChatLoop(
        provider=provider,
        catalog=ToolCatalog(client, ttl_seconds=cfg.mcp.cache_ttl_seconds),
        executor=ToolExecutor(client),
        conversation=Conversation([Message(role="user", content=prompt)]),
        max_iterations=cfg.chat.max_iterations,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    exit_code = 0
    try:
        provider.validate()
        async for event in loop.run():
            if isinstance(event, RelayContent):
                console.print(event.text, end="", markup=False, highlight=False)
            elif isinstance(event, RelayMetadata):
                usage = event.payload.get("usage") or {}
                if usage.get("total_tokens"):
                    console.print(f"\n[dim]Tokens: {usage['total_tokens']}[/dim]", end="")
            elif isinstance(event, RelayError):
                console.print(f"\n[red]Error:[/red] {escape(event.message)}")
                exit_code = 1
            elif isinstance(event, RelayDone):
                console.print()
    finally:
        await provider.close()
        await client.aclose()
    return exit_code


@cli.command()
def serve(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    host: str = typer.Option("", "--host", help="Override bind host"),
    port: int = typer.Option(0, "--port", help="Override bind port"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Run the streaming chat web server."""
    from stripe_chat.web_server import run_web_server

    cfg = _load(config, verbose)
    if host:
        cfg.web.host = host
    if port:
        cfg.web.port = port
    run_web_server(get_config())


@cli.command()
def tools(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    refresh: bool = typer.Option(False, "--refresh", help="Bypass the tool cache"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """List the tools offered by the Stripe MCP server."""
    cfg = _load(config, verbose)
    try:
        asyncio.run(_list_tools(cfg, refresh))
    except Exception as e:
        console.print(f"[red]Failed to list tools:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)


@cli.command()
def ask(
    prompt: str = typer.Argument(..., help="User message"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    temperature: float | None = typer.Option(None, "-t", "--temperature", help="Sampling temperature"),
    max_tokens: int | None = typer.Option(None, "--max-tokens", help="Max output tokens"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Send one message and stream the answer, running tools as needed."""
    cfg = _load(config, verbose)
    try:
        code = asyncio.run(_ask(cfg, prompt, temperature, max_tokens))
    except Exception as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)
    raise typer.Exit(code=code)


@cli.command()
def version() -> None:
    """Show version information."""
    from stripe_chat import __version__
    print(f"Stripe Chat v{__version__}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
