"""
Model access for codeassist.

Requests go to Anthropic (optionally through ANTHROPIC_BASE_URL) or to
OpenAI, whichever has credentials for the requested model.

The remote service is stateless: dialogues keep their history client-side
and resend it on every turn.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, TypeVar

import anthropic
import openai
from dotenv import load_dotenv
from pydantic import BaseModel

from .errors import ConfigurationFailure
from .session_schema import Attachment
from .structured import decode_structured, schema_instruction

logger = logging.getLogger(__name__)

_DOTENV_PATH = Path(__file__).resolve().parent.parent / ".env"
if _DOTENV_PATH.is_file():
    load_dotenv(_DOTENV_PATH)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

# Neutral message shape used by dialogues and converted per provider:
# {"role": "user" | "assistant", "content": str, "attachments": list[Attachment]}
Message = dict[str, Any]


class Provider(Enum):
    """Remote service family."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass
class StreamChunk:
    """One streamed text fragment, or the closing usage record."""

    text: str
    is_final: bool = False
    input_tokens: int = 0
    output_tokens: int = 0


_OPENAI_PREFIXES = ("gpt-", "o1", "o3")

_ANTHROPIC_ALIASES = {
    "opus": "claude-opus-4-5-20251101",
    "sonnet": "claude-sonnet-4-20250514",
    "haiku": "claude-haiku-4-5-20251001",
}
_OPENAI_ALIASES = {
    "gpt-5.2-codex": "gpt-5.2",
    "codex": "gpt-5.2",
}
_OPENAI_PINNED = ("gpt-5.2", "gpt-4o", "gpt-4o-mini", "o3-mini")

# Names accepted in config files, shorthand or pinned
MODEL_REGISTRY: dict[str, tuple[Provider, str]] = {
    **{name: (Provider.ANTHROPIC, model_id) for name, model_id in _ANTHROPIC_ALIASES.items()},
    **{model_id: (Provider.ANTHROPIC, model_id) for model_id in _ANTHROPIC_ALIASES.values()},
    **{model_id: (Provider.OPENAI, model_id) for model_id in _OPENAI_PINNED},
    **{name: (Provider.OPENAI, model_id) for name, model_id in _OPENAI_ALIASES.items()},
}


def resolve_model(model: str) -> tuple[Provider, str]:
    """Map a configured model name to its provider and concrete model id."""
    known = MODEL_REGISTRY.get(model)
    if known is not None:
        return known
    # Unregistered names are passed through; only OpenAI prefixes leave Anthropic
    provider = Provider.OPENAI if model.startswith(_OPENAI_PREFIXES) else Provider.ANTHROPIC
    return provider, model


def _env_credential(explicit: str | None, *names: str) -> str | None:
    if explicit:
        return explicit
    return next((os.environ[name] for name in names if os.environ.get(name)), None)


def _attachment_text(attachment: Attachment) -> str:
    return f"File: {attachment.name}\n```\n{attachment.content}\n```"


class Dialogue(Protocol):
    """An open multi-turn conversation with the remote service."""

    @property
    def history(self) -> list[Message]: ...

    def send(
        self, message: str, attachments: list[Attachment] | None = None
    ) -> AsyncIterator[StreamChunk]: ...


class LLMBackend(Protocol):
    """The remote text-generation collaborator."""

    def is_configured(self, model: str | None = None) -> bool: ...

    def stream_generate(
        self, content: str, system_instruction: str, model: str | None = None
    ) -> AsyncIterator[StreamChunk]: ...

    async def generate_structured(
        self,
        content: str,
        system_instruction: str,
        model: str | None,
        schema: type[SchemaT],
    ) -> SchemaT: ...

    def open_dialogue(
        self,
        model: str | None,
        history: list[Message],
        system_instruction: str,
    ) -> Dialogue: ...


class BaseLLMClient(ABC):
    """One provider SDK behind a common streaming call."""

    @abstractmethod
    def complete_streaming(
        self,
        messages: list[Message],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.3,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream the reply to `messages`, ending with a usage chunk."""
        ...

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.3,
    ) -> str:
        """Get a full completion by draining the stream."""
        parts = []
        async for chunk in self.complete_streaming(
            messages=messages,
            system=system,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
        ):
            parts.append(chunk.text)
        return "".join(parts)


class AnthropicClient(BaseLLMClient):
    """Streams replies through `anthropic.AsyncAnthropic`."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        self.api_key = _env_credential(api_key, "ANTHROPIC_API_KEY", "ANTHROPIC_AUTH_TOKEN")
        if self.api_key is None:
            raise ValueError("no Anthropic credentials (ANTHROPIC_API_KEY or ANTHROPIC_AUTH_TOKEN)")
        self.base_url = _env_credential(base_url, "ANTHROPIC_BASE_URL")
        if self.base_url:
            self.client = anthropic.AsyncAnthropic(api_key=self.api_key, base_url=self.base_url)
        else:
            self.client = anthropic.AsyncAnthropic(api_key=self.api_key)

    @staticmethod
    def _convert(message: Message) -> dict[str, Any]:
        attachments: list[Attachment] = message.get("attachments") or []
        if not attachments:
            return {"role": message["role"], "content": message["content"]}

        blocks: list[dict[str, Any]] = []
        for attachment in attachments:
            if attachment.is_image:
                blocks.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": attachment.mime_type,
                        "data": attachment.content,
                    },
                })
            else:
                blocks.append({"type": "text", "text": _attachment_text(attachment)})
        blocks.append({"type": "text", "text": message["content"]})
        return {"role": message["role"], "content": blocks}

    async def complete_streaming(
        self,
        messages: list[Message],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.3,
    ) -> AsyncGenerator[StreamChunk, None]:
        request_params: dict[str, Any] = {
            "model": model or os.environ.get("ANTHROPIC_DEFAULT_SONNET_MODEL", _ANTHROPIC_ALIASES["sonnet"]),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [self._convert(m) for m in messages],
        }

        if system:
            request_params["system"] = system
        async with self.client.messages.stream(**request_params) as stream:
            async for text in stream.text_stream:
                yield StreamChunk(text=text)

            final_message = await stream.get_final_message()

        yield StreamChunk(
            text="",
            is_final=True,
            input_tokens=final_message.usage.input_tokens,
            output_tokens=final_message.usage.output_tokens,
        )


class OpenAIClient(BaseLLMClient):
    """Streams replies through `openai.AsyncOpenAI` chat completions."""

    def __init__(self, api_key: str | None = None):
        self.api_key = _env_credential(api_key, "OPENAI_API_KEY")
        if self.api_key is None:
            raise ValueError("no OpenAI credentials (OPENAI_API_KEY)")
        self.client = openai.AsyncOpenAI(api_key=self.api_key)

    @staticmethod
    def _convert(message: Message) -> dict[str, Any]:
        attachments: list[Attachment] = message.get("attachments") or []
        if not attachments or message["role"] != "user":
            return {"role": message["role"], "content": message["content"]}

        parts: list[dict[str, Any]] = []
        for attachment in attachments:
            if attachment.is_image:
                parts.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{attachment.mime_type};base64,{attachment.content}"},
                })
            else:
                parts.append({"type": "text", "text": _attachment_text(attachment)})
        parts.append({"type": "text", "text": message["content"]})
        return {"role": "user", "content": parts}

    async def complete_streaming(
        self,
        messages: list[Message],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.3,
    ) -> AsyncGenerator[StreamChunk, None]:
        model = model or "gpt-5.2"

        full_messages: list[dict[str, Any]] = []
        if system:
            full_messages.append({"role": "system", "content": system})
        full_messages.extend(self._convert(m) for m in messages)

        # Newer OpenAI families reject max_tokens
        token_param = (
            "max_completion_tokens"
            if model.startswith(("gpt-5", "o1", "o3"))
            else "max_tokens"
        )
        stream = await self.client.chat.completions.create(
            model=model,
            messages=full_messages,
            temperature=temperature,
            stream=True,
            stream_options={"include_usage": True},
            **{token_param: max_tokens},
        )

        input_tokens = 0
        output_tokens = 0

        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                yield StreamChunk(text=chunk.choices[0].delta.content)
            if chunk.usage:
                input_tokens = chunk.usage.prompt_tokens
                output_tokens = chunk.usage.completion_tokens

        yield StreamChunk(
            text="",
            is_final=True,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


class ProviderDialogue:
    """
    Client-side dialogue history replayed on every send.

    A turn that produced any text is kept (partial on cancellation); a turn
    that failed before producing text is dropped so the history keeps
    alternating user/assistant roles.
    """

    def __init__(
        self,
        client: MultiProviderClient,
        model: str | None,
        history: list[Message],
        system_instruction: str,
    ):
        self._client = client
        self.model = model
        self.system_instruction = system_instruction
        self._history: list[Message] = list(history)

    @property
    def history(self) -> list[Message]:
        return list(self._history)

    async def send(
        self, message: str, attachments: list[Attachment] | None = None
    ) -> AsyncGenerator[StreamChunk, None]:
        self._history.append({
            "role": "user",
            "content": message,
            "attachments": list(attachments or []),
        })
        parts: list[str] = []
        try:
            async for chunk in self._client.complete_streaming(
                messages=list(self._history),
                system=self.system_instruction,
                model=self.model,
            ):
                parts.append(chunk.text)
                yield chunk
        finally:
            reply = "".join(parts)
            if reply:
                self._history.append({"role": "assistant", "content": reply})
            else:
                self._history.pop()


class MultiProviderClient:
    """
    Routes each request to the provider that serves its model.

    Construction never fails for lack of credentials; `is_configured()`
    reports whether a call could be dispatched and `_get_client()` raises
    ConfigurationFailure when none can.
    """

    def __init__(
        self,
        default_model: str = "sonnet",
        anthropic_key: str | None = None,
        openai_key: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.3,
    ):
        """
        Args:
            default_model: Model used when a call names none
            anthropic_key: Overrides ANTHROPIC_API_KEY / ANTHROPIC_AUTH_TOKEN
            openai_key: Overrides OPENAI_API_KEY
            max_tokens: Output token cap applied to every call
            temperature: Sampling temperature applied to every call
        """
        self.default_model = default_model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._clients: dict[Provider, BaseLLMClient] = {}

        try:
            self._clients[Provider.ANTHROPIC] = AnthropicClient(api_key=anthropic_key)
        except ValueError as e:
            logger.info(f"Anthropic provider disabled: {e}")

        try:
            self._clients[Provider.OPENAI] = OpenAIClient(api_key=openai_key)
        except ValueError as e:
            logger.info(f"OpenAI provider disabled: {e}")

    def is_configured(self, model: str | None = None) -> bool:
        """Whether any provider can serve the given model."""
        return bool(self._clients)

    def _get_client(self, model: str) -> tuple[BaseLLMClient, str | None]:
        """Pick the provider client for `model`, substituting another when unconfigured.

        A substituted provider gets `None` as model id so it uses its own default.
        """
        provider, full_model = resolve_model(model)

        if provider not in self._clients:
            if not self._clients:
                raise ConfigurationFailure(
                    "No model provider is configured; set ANTHROPIC_API_KEY or OPENAI_API_KEY"
                )
            substitute = next(iter(self._clients))
            logger.warning(f"{provider.value} has no credentials; using {substitute.value} instead")
            provider, full_model = substitute, None

        return self._clients[provider], full_model

    async def complete_streaming(
        self,
        messages: list[Message],
        system: str | None = None,
        model: str | None = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream from whichever provider serves `model`."""
        model = model or self.default_model
        client, full_model = self._get_client(model)

        async for chunk in client.complete_streaming(
            messages=messages,
            system=system,
            model=full_model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        ):
            yield chunk

    def stream_generate(
        self,
        content: str,
        system_instruction: str,
        model: str | None = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream a single-turn generation."""
        return self.complete_streaming(
            messages=[{"role": "user", "content": content}],
            system=system_instruction,
            model=model,
        )

    async def generate_structured(
        self,
        content: str,
        system_instruction: str,
        model: str | None,
        schema: type[SchemaT],
    ) -> SchemaT:
        """
        Single-shot generation decoded into a pydantic schema.

        Args:
            content: User prompt
            system_instruction: System prompt
            model: Model to use
            schema: Expected response shape

        Returns:
            Validated schema instance

        Raises:
            ConfigurationFailure: If no provider is configured
            StructuredDecodeFailure: If the response does not match the schema
        """
        model = model or self.default_model
        client, full_model = self._get_client(model)
        raw = await client.complete(
            messages=[{"role": "user", "content": content}],
            system=f"{system_instruction}\n\n{schema_instruction(schema)}",
            model=full_model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        return decode_structured(raw, schema)

    def open_dialogue(
        self,
        model: str | None,
        history: list[Message],
        system_instruction: str,
    ) -> ProviderDialogue:
        """Open a dialogue seeded with prior history."""
        return ProviderDialogue(self, model or self.default_model, history, system_instruction)


_shared: MultiProviderClient | None = None


def get_client() -> MultiProviderClient:
    """Return the process-wide client, creating it from the environment on first use."""
    global _shared
    if _shared is None:
        _shared = MultiProviderClient()
    return _shared


def init_client(
    api_key: str | None = None,
    default_model: str = "sonnet",
    **kwargs: Any,
) -> MultiProviderClient:
    """Replace the process-wide client with one built from explicit options."""
    global _shared
    _shared = MultiProviderClient(default_model=default_model, anthropic_key=api_key, **kwargs)
    return _shared


__all__ = [
    "AnthropicClient",
    "BaseLLMClient",
    "Dialogue",
    "LLMBackend",
    "MODEL_REGISTRY",
    "Message",
    "MultiProviderClient",
    "OpenAIClient",
    "Provider",
    "ProviderDialogue",
    "StreamChunk",
    "get_client",
    "init_client",
    "resolve_model",
]
