"""Hosted backend on the Gemini API (google-genai SDK).

Models are tried in priority order; a quota error moves the roster to the
next one. Models in the gemini-2.5 family take the game master prompt as a
system instruction. The others get it as an opening user turn answered by
a fixed acknowledgement.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from storyteller.errors import ProviderError, classify_provider_error
from storyteller.models import CharacterInfo, Message, PlayerState
from storyteller.prompts import PRIMING_REPLY
from storyteller.providers.base import LLMProvider, with_timeout

logger = logging.getLogger(__name__)

TEXT_MODELS = (
    "gemini-2.5-flash",
    "gemma-3-27b-it",
    "gemini-2.5-flash-lite",
    "gemini-2.0-flash",
    "gemini-2.0-flash-lite",
)
EMBEDDING_MODEL = "text-embedding-004"
EMBEDDING_TIMEOUT = 60.0

_MATURE_CATEGORIES = (
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)


def safety_settings(mature: bool) -> list[types.SafetySetting]:
    categories = _MATURE_CATEGORIES if mature else (types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,)
    return [
        types.SafetySetting(category=c, threshold=types.HarmBlockThreshold.BLOCK_NONE)
        for c in categories
    ]


def supports_system_instruction(model: str) -> bool:
    return model.startswith("gemini-2.5")


def _content(role: str, text: str) -> types.Content:
    return types.Content(role=role, parts=[types.Part(text=text)])


def _translate(exc: Exception) -> ProviderError:
    return classify_provider_error(exc) or ProviderError(f"Gemini API error: {exc}")


class GeminiChat:
    """Streams replies from a google-genai async chat."""

    def __init__(self, provider: GeminiProvider, chat: Any) -> None:
        self._provider = provider
        self._chat = chat

    async def _open(self, message: str) -> tuple[AsyncIterator[Any], Any]:
        # The SDK sends the request on the first iteration, not on the await.
        stream = await self._chat.send_message_stream(message)
        try:
            return stream, await anext(stream)
        except StopAsyncIteration:
            return stream, None

    async def send_message_stream(self, message: str) -> AsyncIterator[str]:
        try:
            stream, first = await self._provider.retrying(lambda: self._open(message))
            if first is None:
                return
            if getattr(first, "text", None):
                yield first.text
            async for chunk in stream:
                text = getattr(chunk, "text", None)
                if text:
                    yield text
        except genai_errors.APIError as e:
            raise _translate(e) from e


class GeminiProvider(LLMProvider):
    """Hosted provider.

    Args:
        api_key: Gemini API key.
        models:  Fallback roster, best first. Defaults to TEXT_MODELS.
        client:  Pre-built genai.Client (tests pass a mock).
    """

    kind = "gemini"

    def __init__(
        self,
        api_key: str = "",
        models: Sequence[str] = TEXT_MODELS,
        client: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(models, **kwargs)
        if client is None:
            if not api_key:
                raise ProviderError("A Gemini API key is required for the hosted provider.")
            client = genai.Client(api_key=api_key)
        self._client = client

    async def create_chat_session(
        self,
        info: CharacterInfo,
        state: PlayerState,
        mature: bool,
        history: Sequence[Message],
    ) -> GeminiChat:
        model = self.current_model
        instruction = self.system_instruction(info, state, mature)
        contents = [_content(m.role, m.text) for m in history]

        if supports_system_instruction(model):
            config = types.GenerateContentConfig(
                system_instruction=instruction,
                safety_settings=safety_settings(mature),
            )
        else:
            config = types.GenerateContentConfig(safety_settings=safety_settings(mature))
            contents = [_content("user", instruction), _content("model", PRIMING_REPLY), *contents]

        logger.debug("gemini chat model=%s history=%d mature=%s", model, len(contents), mature)
        chat = self._client.aio.chats.create(model=model, config=config, history=contents)
        return GeminiChat(self, chat)

    async def generate(self, model: str, prompt: str, json_output: bool = False) -> str:
        config = None
        if json_output and supports_system_instruction(model):
            config = types.GenerateContentConfig(response_mime_type="application/json")
        try:
            response = await self._client.aio.models.generate_content(
                model=model, contents=[_content("user", prompt)], config=config,
            )
        except genai_errors.APIError as e:
            raise _translate(e) from e
        if not response.text:
            raise ProviderError(f"Received an empty response from {model}.")
        return response.text

    def supports_embeddings(self) -> bool:
        return True

    async def batch_embed_contents(self, texts: Sequence[str]) -> list[list[float]]:
        async def embed() -> list[list[float]]:
            try:
                response = await self._client.aio.models.embed_content(
                    model=EMBEDDING_MODEL, contents=list(texts),
                )
            except genai_errors.APIError as e:
                raise _translate(e) from e
            return [list(e.values or []) for e in response.embeddings or []]

        return await with_timeout(self.retrying(embed), EMBEDDING_TIMEOUT)
