"""Web server for Stripe Chat: streaming chat endpoint plus tool catalog API."""

import asyncio
import signal
import sys
from contextlib import aclosing
from typing import Any, Awaitable, Callable

from aiohttp import web

from stripe_chat.agent.chat_loop import ChatLoop
from stripe_chat.config import Config, get_config, set_config
from stripe_chat.exceptions import ConfigurationError, ConversationError
from stripe_chat.llm import LLMProvider, create_provider
from stripe_chat.llm.models import Conversation
from stripe_chat.logging import configure_logging, get_logger
from stripe_chat.mcp.client import MCPClient
from stripe_chat.relay import ClientDisconnected, SSEWriter
from stripe_chat.tools.catalog import ToolCatalog
from stripe_chat.tools.executor import ToolExecutor

log = get_logger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error_response(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


class WebServer:
    """Stripe Chat web server."""

    def __init__(
        self,
        config: Config,
        provider: LLMProvider | None = None,
        mcp_client: MCPClient | None = None,
    ):
        self.config = config
        self.provider = provider or create_provider(
            provider=config.model.provider,
            api_url=config.model.api_url,
            api_key=config.model.api_key,
            temperature=config.model.temperature,
            max_tokens=config.model.max_tokens,
            timeout=config.model.timeout,
        )
        self.mcp_client = mcp_client or MCPClient(
            url=config.mcp.url,
            secret_key=config.mcp.secret_key,
            timeout=config.mcp.timeout,
        )
        self.catalog = ToolCatalog(self.mcp_client, ttl_seconds=config.mcp.cache_ttl_seconds)
        self.executor = ToolExecutor(self.mcp_client)

    # ── Middleware ───────────────────────────────────────────────────

    def _cors_headers(self, request: web.Request) -> dict[str, str]:
        origins = self.config.web.cors_origins
        origin = request.headers.get("Origin", "")
        if "*" in origins:
            allow_origin = "*"
        elif origin and origin in origins:
            allow_origin = origin
        else:
            return {}
        return {
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization",
        }

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        response = await handler(request)
        # Streaming responses have already sent their headers
        if not response.prepared:
            response.headers.update(self._cors_headers(request))
        return response

    # ── Chat ─────────────────────────────────────────────────────────

    async def chat_stream(self, request: web.Request) -> web.StreamResponse:
        """POST /api/chat-stream - streaming chat with Stripe tool support."""
        try:
            self.provider.validate()
        except ConfigurationError as e:
            return _error_response(str(e), status=500)

        try:
            body = await request.json()
        except ValueError:
            return _error_response("Invalid JSON in request body", status=400)
        if not isinstance(body, dict):
            return _error_response("Request body must be a JSON object", status=400)

        messages = body.get("messages")
        if not isinstance(messages, list) or not messages:
            return _error_response("messages array is required and must not be empty", status=400)
        try:
            conversation = Conversation.from_payload(messages)
        except ConversationError as e:
            return _error_response(str(e), status=400)

        try:
            temperature = _optional_number(body.get("temperature"), float)
            max_tokens = _optional_number(body.get("max_tokens"), int)
        except ValueError as e:
            return _error_response(str(e), status=400)

        loop = ChatLoop(
            provider=self.provider,
            catalog=self.catalog,
            executor=self.executor,
            conversation=conversation,
            max_iterations=self.config.chat.max_iterations,
            temperature=temperature if temperature is not None else self.config.model.temperature,
            max_tokens=max_tokens or self.config.model.max_tokens,
        )

        writer = SSEWriter(request, headers=self._cors_headers(request))
        await writer.prepare()
        try:
            async with aclosing(loop.run()) as events:
                async for event in events:
                    await writer.send(event)
        except ClientDisconnected:
            log.info("Client disconnected mid-stream", iteration=loop.iterations, state=loop.state.value)
            return writer.response
        await writer.close()
        log.info(
            "Chat stream finished",
            iterations=loop.iterations,
            state=loop.state.value,
            messages=len(conversation),
        )
        return writer.response

    # ── Tools ────────────────────────────────────────────────────────

    async def list_tools(self, request: web.Request) -> web.Response:
        """GET /api/tools - tool catalog in OpenAI function format."""
        force = request.query.get("refresh", "").lower() in ("1", "true", "yes")
        try:
            tools = await self.catalog.list(force_refresh=force)
        except Exception as e:
            log.error("Tool catalog unavailable", error=str(e))
            return _error_response(f"Failed to fetch tools: {e}", status=502)
        return web.json_response({"tools": [tool.to_openai() for tool in tools]})

    async def clear_tool_cache(self, request: web.Request) -> web.Response:
        """DELETE /api/tools/cache - drop cached tool definitions."""
        self.catalog.clear()
        return web.json_response({"ok": True})

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    # ── App setup ────────────────────────────────────────────────────

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[self._cors_middleware])
        app.router.add_post("/api/chat-stream", self.chat_stream)
        app.router.add_get("/api/tools", self.list_tools)
        app.router.add_delete("/api/tools/cache", self.clear_tool_cache)
        app.router.add_get("/health", self.health)
        app.router.add_route("OPTIONS", "/{tail:.*}", self._preflight)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _preflight(self, request: web.Request) -> web.Response:
        return web.Response(status=204)

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.provider.close()
        await self.mcp_client.aclose()


def _optional_number(value: Any, kind: type) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValueError(f"Expected a number, got {value!r}") from None


async def _run_server(config: Config) -> None:
    """Start the web server and wait for a stop signal."""
    server = WebServer(config)
    loop = asyncio.get_running_loop()

    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        if not stop_event.is_set():
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except (NotImplementedError, OSError):
            # Windows doesn't support add_signal_handler for SIGTERM.
            pass

    app = server.create_app()
    # Cancel the request task when the client goes away
    runner = web.AppRunner(app, handler_cancellation=True)
    await runner.setup()

    host = config.web.host
    port = config.web.port
    site = web.TCPSite(runner, host, port)
    await site.start()

    log.info("Server started", host=host, port=port)
    print(f"\n  Stripe Chat running at http://{host}:{port}")
    if not config.model.api_key or not config.mcp.secret_key:
        print("  Make sure DAT1_API_KEY and STRIPE_SECRET_KEY are set in your environment")
    print("  Press Ctrl+C to stop.\n")

    await stop_event.wait()

    print("\nShutting down...")
    await runner.cleanup()


def run_web_server(config: Config) -> None:
    """Entry point for running the web server."""
    try:
        asyncio.run(_run_server(config))
    except KeyboardInterrupt:
        pass  # Signal handler handles graceful shutdown.


def main() -> None:
    """Standalone entry point for stripe-chat-web."""
    cfg = Config.load()
    set_config(cfg)
    configure_logging()

    try:
        run_web_server(get_config())
    except KeyboardInterrupt:
        print("\nWeb server stopped.")
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)
