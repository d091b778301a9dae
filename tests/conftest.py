"""
Shared test configuration.

Provides a scripted stand-in for the remote model so sessions, chat and
dispatch can be exercised without network access.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import pytest

from codeassist.api_client import StreamChunk
from codeassist.config import AssistantConfig, FeatureFlags
from codeassist.dispatcher import RequestDispatcher
from codeassist.session import ConversationSession
from codeassist.session_schema import Attachment
from codeassist.structured import decode_structured
from codeassist.version_store import InMemoryBackend


class ScriptedStream:
    """
    A canned streaming response.

    With hold_after=N the stream yields N chunks, sets `reached_hold` and
    waits for `release` before yielding the rest.
    """

    def __init__(
        self,
        chunks: list[str],
        error: Exception | None = None,
        hold_after: int | None = None,
    ):
        self.chunks = chunks
        self.error = error
        self.hold_after = hold_after
        self.reached_hold = asyncio.Event()
        self.release = asyncio.Event()
        self.closed = False

    async def run(self) -> AsyncGenerator[StreamChunk, None]:
        try:
            for i, chunk in enumerate(self.chunks):
                if self.hold_after is not None and i == self.hold_after:
                    self.reached_hold.set()
                    await self.release.wait()
                yield StreamChunk(text=chunk)
            if self.error is not None:
                raise self.error
            yield StreamChunk(text="", is_final=True)
        finally:
            self.closed = True


class FakeDialogue:
    """Dialogue that records its seed history and what was sent."""

    def __init__(self, llm: FakeLLM, model: str | None, history: list[dict], system_instruction: str):
        self._llm = llm
        self.model = model
        self.system_instruction = system_instruction
        self.initial_history = [dict(m) for m in history]
        self._history = list(history)
        self.sent: list[tuple[str, list[Attachment]]] = []

    @property
    def history(self) -> list[dict]:
        return list(self._history)

    async def send(
        self, message: str, attachments: list[Attachment] | None = None
    ) -> AsyncGenerator[StreamChunk, None]:
        self.sent.append((message, list(attachments or [])))
        script = self._llm.chat_scripts.pop(0)
        async for chunk in script.run():
            yield chunk


class FakeLLM:
    """Scripted LLMBackend recording every call."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.stream_scripts: list[ScriptedStream] = []
        self.chat_scripts: list[ScriptedStream] = []
        self.structured_replies: list[Any] = []
        self.calls: list[dict[str, Any]] = []
        self.dialogues: list[FakeDialogue] = []

    def queue_stream(self, chunks: list[str], **kwargs: Any) -> ScriptedStream:
        script = ScriptedStream(chunks, **kwargs)
        self.stream_scripts.append(script)
        return script

    def queue_chat(self, chunks: list[str], **kwargs: Any) -> ScriptedStream:
        script = ScriptedStream(chunks, **kwargs)
        self.chat_scripts.append(script)
        return script

    def queue_structured(self, reply: Any) -> None:
        """Queue a schema instance, raw JSON text, or an exception to raise."""
        self.structured_replies.append(reply)

    def calls_of(self, kind: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == kind]

    def is_configured(self, model: str | None = None) -> bool:
        return self.configured

    def stream_generate(
        self, content: str, system_instruction: str, model: str | None = None
    ) -> AsyncGenerator[StreamChunk, None]:
        self.calls.append({"kind": "stream", "content": content, "system": system_instruction, "model": model})
        return self.stream_scripts.pop(0).run()

    async def generate_structured(self, content: str, system_instruction: str, model: str | None, schema: type) -> Any:
        self.calls.append({"kind": "structured", "content": content, "system": system_instruction, "model": model})
        reply = self.structured_replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return decode_structured(reply, schema)
        return reply

    def open_dialogue(self, model: str | None, history: list[dict], system_instruction: str) -> FakeDialogue:
        dialogue = FakeDialogue(self, model, history, system_instruction)
        self.dialogues.append(dialogue)
        return dialogue


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def dispatcher(fake_llm: FakeLLM) -> RequestDispatcher:
    return RequestDispatcher(fake_llm)


@pytest.fixture
def flags() -> FeatureFlags:
    return FeatureFlags(code_audit_mode=True, workbench_mode=True)


@pytest.fixture
def session(dispatcher: RequestDispatcher, flags: FeatureFlags) -> ConversationSession:
    session = ConversationSession(dispatcher, config=AssistantConfig(), flags=flags)
    session.update_inputs(code="def add(a, b):\n    return a - b\n")
    return session


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()
