"""Tool catalog: MCP tool definitions cached with a TTL and stale-on-error fallback."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from stripe_chat.llm.models import ToolDefinition
from stripe_chat.logging import get_logger

log = get_logger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 60 * 60


class ToolLister(Protocol):
    async def list_tools(self) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable cache entry; replaced as a whole on refresh."""

    tools: tuple[ToolDefinition, ...]
    fetched_at: float


def convert_mcp_tool(mcp_tool: dict[str, Any]) -> ToolDefinition:
    """Convert an MCP tool description into a model-facing definition."""
    name = str(mcp_tool.get("name") or "")
    description = mcp_tool.get("description") or f"Execute {name} on Stripe"

    schema = mcp_tool.get("inputSchema")
    if isinstance(schema, dict):
        parameters: dict[str, Any] = {
            "type": schema.get("type") or "object",
            "properties": schema.get("properties") or {},
        }
        if schema.get("required") is not None:
            parameters["required"] = schema["required"]
    else:
        parameters = {"type": "object", "properties": {}}

    return ToolDefinition(name=name, description=str(description), parameters=parameters)


class ToolCatalog:
    """Process-wide tool list shared by all chat requests.

    Readers only ever see one complete snapshot: a refresh builds the new
    tuple first and then swaps the reference.
    """

    def __init__(
        self,
        lister: ToolLister,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.lister = lister
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: CatalogSnapshot | None = None

    @property
    def snapshot(self) -> CatalogSnapshot | None:
        return self._snapshot

    def _is_fresh(self, snapshot: CatalogSnapshot | None) -> bool:
        if snapshot is None or not snapshot.tools:
            return False
        return self._clock() - snapshot.fetched_at < self.ttl_seconds

    async def list(self, force_refresh: bool = False) -> list[ToolDefinition]:
        """Return tool definitions, refreshing from MCP when stale or forced.

        Raises whatever the lister raised when a refresh fails and nothing
        was cached before.
        """
        snapshot = self._snapshot
        if not force_refresh and self._is_fresh(snapshot):
            log.debug(
                "Using cached tools",
                count=len(snapshot.tools),
                age_s=round(self._clock() - snapshot.fetched_at),
            )
            return list(snapshot.tools)

        start = time.monotonic()
        try:
            mcp_tools = await self.lister.list_tools()
        except Exception as e:
            if snapshot is not None:
                log.warning("Using stale tool cache due to fetch failure", error=str(e))
                return list(snapshot.tools)
            log.error("Failed to fetch tools", error=str(e))
            raise

        tools = tuple(convert_mcp_tool(tool) for tool in mcp_tools if isinstance(tool, dict))
        self._snapshot = CatalogSnapshot(tools=tools, fetched_at=self._clock())
        log.info(
            "Refreshed tool catalog",
            count=len(tools),
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )
        return list(tools)

    def clear(self) -> None:
        """Drop the cached snapshot."""
        self._snapshot = None
