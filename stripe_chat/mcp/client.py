"""Stripe MCP client - JSON-RPC 2.0 over HTTP."""

import itertools
import time
from typing import Any

import httpx

from stripe_chat.config import DEFAULT_MCP_URL
from stripe_chat.exceptions import ConfigurationError, MCPError
from stripe_chat.logging import get_logger

log = get_logger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _preview(value: Any, limit: int = 200) -> str:
    if value is None:
        return "none"
    text = str(value)
    return text[:limit]


class MCPClient:
    """Minimal MCP client exposing ``tools/list`` and ``tools/call``."""

    def __init__(
        self,
        url: str = DEFAULT_MCP_URL,
        secret_key: str = "",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.secret_key = secret_key
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    def _check_key(self) -> None:
        if not self.secret_key:
            log.error("STRIPE_SECRET_KEY is not configured")
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
        log.debug(
            "Using Stripe key",
            key_prefix=self.secret_key[:7],
            key_length=len(self.secret_key),
        )
        if not self.secret_key.startswith("sk_"):
            log.warning("Stripe key does not start with 'sk_' - this might be incorrect")

    async def request(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send one JSON-RPC request and return the decoded response envelope.

        Raises:
            ConfigurationError: the secret key is missing
            MCPError: transport failure, non-2xx status or JSON-RPC error member
        """
        self._check_key()

        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": method,
            "id": next(self._ids),
        }
        if params is not None:
            payload["params"] = params

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.secret_key}",
        }

        start = time.monotonic()
        log.info("Calling MCP", method=method, request_id=payload["id"], params=_preview(params))
        try:
            response = await self.client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            log.error("MCP transport error", method=method, elapsed_ms=_elapsed_ms(start), error=str(e))
            raise MCPError(f"MCP transport error: {e}") from e

        log.debug(
            "MCP response received",
            method=method,
            status=response.status_code,
            elapsed_ms=_elapsed_ms(start),
        )

        if not response.is_success:
            error_text = response.text
            log.error("MCP server error", method=method, status=response.status_code, body=error_text[:500])
            raise MCPError(
                f"MCP server error: {response.status_code} {response.reason_phrase} - {error_text}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MCPError(f"MCP response decode error: {e}") from e
        if not isinstance(data, dict):
            raise MCPError("MCP response is not a JSON object")

        error = data.get("error")
        if error:
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            log.error("MCP error in response", method=method, code=code, message=message)
            raise MCPError(f"MCP error: {message} (code: {code})", code=code)

        log.info("MCP call completed", method=method, elapsed_ms=_elapsed_ms(start))
        return data

    async def list_tools(self) -> list[dict[str, Any]]:
        """List the tools offered by the MCP server."""
        data = await self.request("tools/list")
        result = data.get("result")
        tools = (result.get("tools") or []) if isinstance(result, dict) else []
        log.info("Listed MCP tools", count=len(tools))
        return list(tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Call a tool and return the raw JSON-RPC ``result``."""
        start = time.monotonic()
        try:
            data = await self.request("tools/call", {"name": name, "arguments": arguments})
        except Exception as e:
            log.warning("MCP tool failed", tool=name, elapsed_ms=_elapsed_ms(start), error=str(e))
            raise
        log.info("MCP tool completed", tool=name, elapsed_ms=_elapsed_ms(start))
        return data.get("result")

    async def aclose(self) -> None:
        await self.client.aclose()
