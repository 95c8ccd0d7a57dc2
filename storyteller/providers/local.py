"""Local backend speaking the OpenAI chat-completions wire format.

Request:   POST <url>  {"model": "local-model", "messages": [...], "stream": bool}
Streamed:  newline-delimited `data: {json}` frames, text in
           choices[0].delta.content, ended by `data: [DONE]`
Blocking:  one JSON body, text in choices[0].message.content

Local servers have small context windows, so a chat only ever sends the
system prompt plus the most recent messages.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from storyteller.errors import ProviderError, classify_provider_error
from storyteller.models import CharacterInfo, Message, PlayerState
from storyteller.providers.base import LLMProvider

logger = logging.getLogger(__name__)

LOCAL_MODEL = "local-model"
HISTORY_WINDOW = 10

CONNECT_HINT = (
    "The request to your local LLM server failed. Please ensure the server "
    "(e.g., text-generation-webui) is running, the URL in Settings is correct, "
    "and the server is configured for CORS. If the server is running, check its "
    "console output for errors; some extensions (like Silero TTS) can cause "
    "issues with API requests."
)


def _status_error(status: int, body: str) -> ProviderError:
    message = (
        f"The local LLM server returned an error ({status}). Please check the server "
        f"console for details. Some server extensions can cause issues with API "
        f"requests. Error: {body}"
    )
    if status == 429:
        return classify_provider_error(RuntimeError(f"429 {body}")) or ProviderError(message)
    return ProviderError(message)


def parse_stream_line(line: str) -> str | None:
    """Text carried by one SSE line; "" for frames without text, None at [DONE]."""
    line = line.strip()
    if not line.startswith("data:"):
        return ""
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return None
    try:
        frame = json.loads(data)
        return frame["choices"][0].get("delta", {}).get("content") or ""
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
        logger.warning("Could not parse stream chunk, skipping: %r", data[:200])
        return ""


class LocalChat:
    """Chat history kept client-side: pinned system prompt + sliding window."""

    def __init__(
        self,
        provider: LocalProvider,
        system_prompt: str,
        history: Sequence[Message],
        window: int = HISTORY_WINDOW,
    ) -> None:
        self._provider = provider
        self._window = window
        self.system = {"role": "system", "content": system_prompt}
        self.history: list[dict[str, str]] = [
            {"role": "assistant" if m.role == "model" else "user", "content": m.text}
            for m in list(history)[-window:]
        ]

    def messages_for(self, message: str) -> list[dict[str, str]]:
        recent = [*self.history, {"role": "user", "content": message}]
        return [self.system, *recent[-self._window:]]

    async def send_message_stream(self, message: str) -> AsyncIterator[str]:
        body = {"model": LOCAL_MODEL, "messages": self.messages_for(message), "stream": True}
        chunks: list[str] = []
        async for text in self._provider.stream(body):
            chunks.append(text)
            yield text
        # Only a completed exchange enters the window.
        self.history.append({"role": "user", "content": message})
        self.history.append({"role": "assistant", "content": "".join(chunks)})
        self.history = self.history[-self._window:]


class LocalProvider(LLMProvider):
    """OpenAI-compatible local server.

    Args:
        url:            Full chat-completions endpoint URL.
        history_window: Transcript messages sent along with each message.
        timeout:        HTTP timeout in seconds.
        transport:      Optional httpx transport (tests use MockTransport).
    """

    kind = "local"

    def __init__(
        self,
        url: str,
        *,
        history_window: int = HISTORY_WINDOW,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        if not url:
            raise ProviderError("The local LLM provider requires an API URL.")
        super().__init__([LOCAL_MODEL], **kwargs)
        self.url = url
        self.history_window = history_window
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def create_chat_session(
        self,
        info: CharacterInfo,
        state: PlayerState,
        mature: bool,
        history: Sequence[Message],
    ) -> LocalChat:
        prompt = self.system_instruction(info, state, mature)
        return LocalChat(self, prompt, history, self.history_window)

    async def _open(self, client: httpx.AsyncClient, body: dict) -> httpx.Response:
        request = client.build_request("POST", self.url, json=body)
        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise ProviderError(f"Local LLM server timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(CONNECT_HINT) from e
        if response.is_error:
            detail = (await response.aread()).decode(errors="replace")
            await response.aclose()
            logger.error("local llm error status=%d body=%s", response.status_code, detail[:500])
            raise _status_error(response.status_code, detail)
        return response

    async def stream(self, body: dict) -> AsyncIterator[str]:
        """POST a streaming request and yield text fragments until [DONE]."""
        logger.debug("llm call stage=chat url=%s messages=%d", self.url, len(body["messages"]))
        async with self._client() as client:
            response = await self.retrying(lambda: self._open(client, body))
            try:
                async for line in response.aiter_lines():
                    text = parse_stream_line(line)
                    if text is None:
                        break
                    if text:
                        yield text
            except httpx.HTTPError as e:
                raise ProviderError(CONNECT_HINT) from e
            finally:
                await response.aclose()

    async def generate(self, model: str, prompt: str, json_output: bool = False) -> str:
        body = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }
        logger.debug("llm call stage=generate url=%s prompt_len=%d", self.url, len(prompt))
        try:
            async with self._client() as client:
                resp = await client.post(self.url, json=body)
        except httpx.TimeoutException as e:
            raise ProviderError(f"Local LLM server timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(CONNECT_HINT) from e
        if resp.is_error:
            raise _status_error(resp.status_code, resp.text)

        try:
            return resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError("Unexpected response format from local LLM server") from e
