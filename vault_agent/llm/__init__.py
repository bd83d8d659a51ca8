"""Completion providers - direct HTTP calls to the Ollama chat API."""

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from vault_agent.exceptions import LLMAPIError, LLMError, OperationAbortedError
from vault_agent.logging import get_logger

log = get_logger(__name__)


OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"

StreamCallback = Callable[[str], Any]


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def coerce_message(message: "Message | dict[str, Any]") -> Message:
    """Accept both Message objects and history-style dicts."""
    if isinstance(message, Message):
        return message
    return Message(
        role=str(message.get("role") or message.get("sender") or "user"),
        content=str(message.get("content") or ""),
    )


class CompletionProvider(ABC):
    """Abstract base class for completion providers."""

    @abstractmethod
    async def get_completion(
        self,
        messages: list[Message],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        stream_callback: StreamCallback | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> str:
        """Return the full response text for ``messages``.

        Raises:
            OperationAbortedError if ``abort_event`` fires before completion
            LLMError / LLMAPIError for every other failure
        """
        pass

    async def close(self) -> None:
        pass


async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        pass


class OllamaProvider(CompletionProvider):
    """Direct Ollama API provider."""

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Ollama provider.

        Args:
            model: Ollama model name (e.g., 'llama3.2', 'qwen3:32b')
            base_url: Ollama API base URL
            temperature: Sampling temperature
            max_tokens: Max tokens to generate
            api_key: Optional API key (Ollama usually doesn't need one locally)
            client: Optional preconfigured HTTP client
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_key = api_key

        self.client = client or httpx.AsyncClient(
            timeout=120.0,
            follow_redirects=True,
        )

    def _build_body(
        self,
        messages: list[Message],
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {
            "num_ctx": 65536,
            "temperature": self.temperature if temperature is None else temperature,
        }
        if max_tokens or self.max_tokens:
            options["num_predict"] = max_tokens or self.max_tokens

        return {
            "model": self.model,
            "messages": [coerce_message(m).to_dict() for m in messages],
            "stream": True,
            "options": options,
        }

    async def get_completion(
        self,
        messages: list[Message],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        stream_callback: StreamCallback | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> str:
        """Stream a chat completion and return the accumulated text."""
        if abort_event is not None and abort_event.is_set():
            raise OperationAbortedError()

        stream_task = asyncio.create_task(
            self._stream_chat(messages, temperature, max_tokens, stream_callback)
        )
        abort_task = asyncio.create_task(abort_event.wait()) if abort_event is not None else None
        try:
            waiters = {stream_task} if abort_task is None else {stream_task, abort_task}
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if stream_task in done:
                return stream_task.result()
            log.info("Completion aborted", model=self.model)
            raise OperationAbortedError()
        finally:
            await _cancel_task(stream_task)
            await _cancel_task(abort_task)

    async def _stream_chat(
        self,
        messages: list[Message],
        temperature: float | None,
        max_tokens: int | None,
        stream_callback: StreamCallback | None,
    ) -> str:
        url = f"{self.base_url}/api/chat"
        body = self._build_body(messages, temperature, max_tokens)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            log.debug("Calling Ollama", model=self.model, url=url, msg_count=len(body["messages"]))
            async with self.client.stream("POST", url, json=body, headers=headers) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"Ollama API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )

                accumulated_content = ""
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if chunk.get("error"):
                        raise LLMError(f"Ollama stream error: {chunk['error']}")
                    content = (chunk.get("message") or {}).get("content")
                    if content:
                        accumulated_content += content
                        if stream_callback is not None:
                            stream_callback(content)
                    if chunk.get("done"):
                        break

            log.debug("Ollama response complete", model=self.model, chars=len(accumulated_content))
            return accumulated_content

        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama HTTP error: {e}")
        except Exception as e:
            raise LLMError(f"Ollama call failed: {e}")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    provider: str = "ollama",
    model: str = "llama3.2",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4096,
) -> CompletionProvider:
    """Create a completion provider.

    Args:
        provider: Provider name (only ``ollama`` is built in)
        model: Model name
        api_key: Optional API key
        base_url: Optional base URL
        temperature: Default temperature
        max_tokens: Default max tokens

    Returns:
        Configured CompletionProvider instance
    """
    if provider == "ollama":
        return OllamaProvider(
            model=model,
            base_url=base_url or OLLAMA_NATIVE_BASE_URL,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
        )
    raise ValueError(f"Provider '{provider}' not supported. Use 'ollama' or configure manually.")


# Global provider instance
_provider: CompletionProvider | None = None


def get_provider() -> CompletionProvider:
    """Get the global completion provider instance."""
    global _provider
    if _provider is None:
        from vault_agent.config import get_config
        cfg = get_config()
        _provider = create_provider(
            provider=cfg.model.provider,
            model=cfg.model.model,
            temperature=cfg.model.temperature,
            max_tokens=cfg.model.max_tokens,
            api_key=cfg.model.api_key or None,
            base_url=cfg.model.base_url or None,
        )
    return _provider


def set_provider(provider: CompletionProvider | None) -> None:
    """Set the global completion provider instance."""
    global _provider
    _provider = provider
