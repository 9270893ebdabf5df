"""Model provider - streaming chat completions over HTTP."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

import httpx

from stripe_chat.config import DEFAULT_MODEL_API_URL
from stripe_chat.exceptions import ConfigurationError, LLMAPIError
from stripe_chat.llm.models import (
    Conversation,
    Message,
    ToolCall,
    ToolCallFragment,
    ToolDefinition,
)
from stripe_chat.logging import get_logger

log = get_logger(__name__)

__all__ = [
    "Conversation",
    "Dat1Provider",
    "LLMProvider",
    "Message",
    "ToolCall",
    "ToolCallFragment",
    "ToolDefinition",
    "create_provider",
    "get_provider",
    "set_provider",
]


class LLMProvider(ABC):
    """Abstract base class for streaming model providers."""

    @abstractmethod
    def stream_chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Yield raw decoded text chunks of the provider's event stream.

        Raises ``LLMAPIError`` before the first chunk when the provider
        answers with a non-success status.
        """

    def validate(self) -> None:
        """Raise ``ConfigurationError`` when the provider cannot be used."""
        return None

    async def close(self) -> None:
        return None


class Dat1Provider(LLMProvider):
    """OpenAI-compatible chat-completions endpoint authenticated by ``X-API-Key``."""

    def __init__(
        self,
        api_url: str = DEFAULT_MODEL_API_URL,
        api_key: str = "",
        temperature: float = 0.7,
        max_tokens: int = 5000,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the provider.

        Args:
            api_url: Chat completions URL
            api_key: Value sent in the ``X-API-Key`` header
            temperature: Default sampling temperature
            max_tokens: Default max tokens to generate
            timeout: Per-request timeout in seconds
            client: Optional preconfigured HTTP client
        """
        self.api_url = api_url
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
        )

    def validate(self) -> None:
        if not self.api_key:
            raise ConfigurationError("DAT1_API_KEY is not configured")

    def _build_body(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": [msg.to_dict() for msg in messages],
            "temperature": self.temperature if temperature is None else temperature,
            "stream": True,
            "max_tokens": max_tokens or self.max_tokens,
        }
        # Only include tools if we have any
        if tools:
            body["tools"] = [tool.to_openai() for tool in tools]
        return body

    async def stream_chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Stream a completion as raw SSE text chunks."""
        self.validate()
        body = self._build_body(messages, tools, temperature, max_tokens)
        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
        }

        log.debug(
            "Calling model API",
            url=self.api_url,
            msg_count=len(body["messages"]),
            tool_count=len(body.get("tools", [])),
        )
        try:
            async with self.client.stream("POST", self.api_url, json=body, headers=headers) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"Model API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                        body=error_text,
                    )

                async for chunk in response.aiter_text():
                    if chunk:
                        yield chunk
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Model API streaming error: {e}", body=str(e)) from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    provider: str = "dat1",
    api_url: str = DEFAULT_MODEL_API_URL,
    api_key: str = "",
    temperature: float = 0.7,
    max_tokens: int = 5000,
    timeout: float = 120.0,
) -> LLMProvider:
    """Create a model provider.

    Args:
        provider: Provider name (``dat1`` or ``openai`` for any compatible endpoint)
        api_url: Chat completions URL
        api_key: API key
        temperature: Default temperature
        max_tokens: Default max tokens
        timeout: Request timeout in seconds

    Returns:
        Configured LLMProvider instance
    """
    name = (provider or "").strip().lower()
    if name in ("dat1", "openai", "openai-compatible"):
        return Dat1Provider(
            api_url=api_url,
            api_key=api_key,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    raise ValueError(f"Provider '{provider}' not supported. Use 'dat1'.")


# Global provider instance
_provider: LLMProvider | None = None


def get_provider() -> LLMProvider:
    """Get the global model provider instance."""
    global _provider
    if _provider is None:
        from stripe_chat.config import get_config
        cfg = get_config()
        _provider = create_provider(
            provider=cfg.model.provider,
            api_url=cfg.model.api_url,
            api_key=cfg.model.api_key,
            temperature=cfg.model.temperature,
            max_tokens=cfg.model.max_tokens,
            timeout=cfg.model.timeout,
        )
    return _provider


def set_provider(provider: LLMProvider | None) -> None:
    """Set the global model provider instance."""
    global _provider
    _provider = provider
