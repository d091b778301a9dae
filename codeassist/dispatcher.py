"""
Request dispatcher: the single in-flight primary operation of a session.

Every outbound call goes through here. Failures raised by the remote
collaborator are classified at this boundary (see errors.classify_exception);
callers receive either a ConfigurationFailure before anything is dispatched
or an outcome carried by the returned handle/result.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel

from .api_client import Dialogue, LLMBackend, Message, StreamChunk, get_client
from .cancellation import CancellationToken, Outcome
from .errors import AssistantError, ConfigurationFailure, classify_exception
from .session_schema import Attachment

logger = logging.getLogger(__name__)

T = TypeVar("T")
SchemaT = TypeVar("SchemaT", bound=BaseModel)


async def _next_chunk(iterator: AsyncIterator[StreamChunk]) -> StreamChunk | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


async def race_cancellation(awaitable: Awaitable[T], token: CancellationToken) -> tuple[bool, T | None]:
    """
    Await `awaitable` unless the token is cancelled first.

    The awaitable is cancelled and its result discarded when the token wins,
    even if both finish in the same loop iteration.

    Args:
        awaitable: Pending operation
        token: Cancellation token to observe

    Returns:
        (cancelled, result) - result is None when cancelled

    Raises:
        Whatever the awaitable raises, when it finishes first
    """
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if token.cancelled or not task.done():
            task.cancel()

    if token.cancelled:
        await asyncio.gather(task, return_exceptions=True)
        return True, None
    return False, task.result()


class StreamHandle:
    """
    Async-iterable view of a dispatched streaming call.

    Yields text fragments in arrival order. After iteration ends, `outcome`
    is one of COMPLETED, CANCELLED or FAILED and `error` holds the classified
    failure for FAILED. No fragment is yielded once the token is cancelled.
    """

    def __init__(
        self,
        source: AsyncIterator[StreamChunk],
        token: CancellationToken,
        kind: str = "stream",
        on_finish: Callable[[StreamHandle], None] | None = None,
    ):
        self._source = source
        self.token = token
        self.kind = kind
        self.outcome: Outcome | None = None
        self.error: AssistantError | None = None
        self.chunks_received = 0
        self._on_finish = on_finish

    @property
    def done(self) -> bool:
        return self.outcome is not None

    def __aiter__(self) -> StreamHandle:
        return self

    async def __anext__(self) -> str:
        while self.outcome is None:
            if self.token.cancelled:
                await self._finish(Outcome.CANCELLED)
                break
            try:
                cancelled, chunk = await race_cancellation(_next_chunk(self._source), self.token)
            except Exception as e:
                if self.token.cancelled:
                    await self._finish(Outcome.CANCELLED)
                else:
                    self.error = classify_exception(e)
                    logger.warning(f"{self.kind} stream failed after {self.chunks_received} chunks: {self.error}")
                    await self._finish(Outcome.FAILED)
                break

            if cancelled:
                await self._finish(Outcome.CANCELLED)
            elif chunk is None:
                await self._finish(Outcome.COMPLETED)
            elif chunk.text:
                self.chunks_received += 1
                return chunk.text

        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Stop consuming and treat the stream as cancelled."""
        if self.outcome is None:
            self.token.cancel()
            await self._finish(Outcome.CANCELLED)

    async def _finish(self, outcome: Outcome) -> None:
        self.outcome = outcome
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info(f"{self.kind} stream finished: {outcome.value}")
        if self._on_finish is not None:
            self._on_finish(self)


@dataclass
class DispatchResult(Generic[SchemaT]):
    """Outcome of a single-shot structured call."""

    outcome: Outcome
    value: SchemaT | None = None
    error: AssistantError | None = None


class DispatchedDialogue:
    """A backend dialogue whose turns are cancellable StreamHandles."""

    def __init__(self, dispatcher: RequestDispatcher, dialogue: Dialogue, model: str | None):
        self._dispatcher = dispatcher
        self._dialogue = dialogue
        self.model = model

    @property
    def history(self) -> list[Message]:
        return self._dialogue.history

    def send(
        self,
        message: str,
        attachments: list[Attachment] | None = None,
        token: CancellationToken | None = None,
    ) -> StreamHandle:
        """
        Send a turn.

        Raises:
            ConfigurationFailure: If no credential is available; nothing is sent
        """
        self._dispatcher.require_configured(self.model)
        return StreamHandle(
            self._dialogue.send(message, attachments),
            token or CancellationToken(),
            kind="chat",
        )


class RequestDispatcher:
    """
    Owns the primary operation slot of one session.

    Starting a primary operation cancels the previous one (last request
    wins). Chat turns and side calls run on their own tokens and do not
    occupy the slot.
    """

    def __init__(self, backend: LLMBackend | None = None):
        self.backend = backend if backend is not None else get_client()
        self._token: CancellationToken | None = None

    @property
    def current_token(self) -> CancellationToken | None:
        return self._token

    @property
    def busy(self) -> bool:
        return self._token is not None and not self._token.cancelled

    def require_configured(self, model: str | None) -> None:
        if not self.backend.is_configured(model):
            logger.warning(f"Refusing to dispatch: no credential for model {model}")
            raise ConfigurationFailure(
                "No API credential configured. Set ANTHROPIC_API_KEY or OPENAI_API_KEY."
            )

    def cancel_current(self) -> bool:
        """Cancel the in-flight primary operation, if any."""
        if self._token is None:
            return False
        self._token.cancel()
        self._token = None
        return True

    def _claim(self, token: CancellationToken | None) -> CancellationToken:
        if self._token is not None and not self._token.cancelled:
            logger.info("Preempting in-flight primary operation")
            self._token.cancel()
        self._token = token or CancellationToken()
        return self._token

    def _release(self, token: CancellationToken) -> None:
        if self._token is token:
            self._token = None

    def start_streaming(
        self,
        kind: str,
        payload: str,
        system_instruction: str,
        model: str | None,
        token: CancellationToken | None = None,
    ) -> StreamHandle:
        """
        Start a primary streaming call.

        Args:
            kind: Operation label (review, audit, ...) used for logging
            payload: User prompt
            system_instruction: System prompt
            model: Model name or alias
            token: Token to use; a fresh one is created if omitted

        Returns:
            StreamHandle to iterate

        Raises:
            ConfigurationFailure: If no credential is available
        """
        self.require_configured(model)
        token = self._claim(token)
        logger.info(f"Dispatching {kind} stream ({len(payload)} chars) to {model}")
        source = self.backend.stream_generate(payload, system_instruction, model)
        return StreamHandle(source, token, kind=kind, on_finish=lambda h: self._release(h.token))

    async def start_structured(
        self,
        payload: str,
        system_instruction: str,
        model: str | None,
        schema: type[SchemaT],
        token: CancellationToken | None = None,
        primary: bool = True,
    ) -> DispatchResult[SchemaT]:
        """
        Run a single-shot structured call.

        Args:
            payload: User prompt
            system_instruction: System prompt
            model: Model name or alias
            schema: Expected response shape
            token: Token to use; a fresh one is created if omitted
            primary: Whether the call occupies the primary slot

        Returns:
            DispatchResult with outcome, value and classified error

        Raises:
            ConfigurationFailure: If no credential is available
        """
        self.require_configured(model)
        if primary:
            token = self._claim(token)
        else:
            token = token or CancellationToken()

        logger.info(f"Dispatching structured {schema.__name__} request to {model}")
        try:
            cancelled, value = await race_cancellation(
                self.backend.generate_structured(payload, system_instruction, model, schema),
                token,
            )
        except Exception as e:
            if token.cancelled:
                return DispatchResult(Outcome.CANCELLED)
            error = classify_exception(e)
            logger.warning(f"Structured {schema.__name__} request failed: {error}")
            return DispatchResult(Outcome.FAILED, error=error)
        finally:
            self._release(token)

        if cancelled:
            return DispatchResult(Outcome.CANCELLED)
        return DispatchResult(Outcome.COMPLETED, value=value)

    def open_dialogue(
        self,
        model: str | None,
        history: list[Message],
        system_instruction: str,
    ) -> DispatchedDialogue:
        """Open a dialogue seeded with `history`; nothing is sent yet."""
        dialogue = self.backend.open_dialogue(model, history, system_instruction)
        return DispatchedDialogue(self, dialogue, model)


__all__ = [
    "DispatchResult",
    "DispatchedDialogue",
    "RequestDispatcher",
    "StreamHandle",
    "race_cancellation",
]
