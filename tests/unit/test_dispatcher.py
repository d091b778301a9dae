"""Tests for RequestDispatcher, StreamHandle and CancellationToken."""

import asyncio

import anthropic
import httpx
import pytest

from codeassist.cancellation import CancellationToken, Outcome
from codeassist.dispatcher import RequestDispatcher, race_cancellation
from codeassist.errors import (
    ConfigurationFailure,
    StructuredDecodeFailure,
    TransportFailure,
    classify_exception,
)
from codeassist.structured import CommitMessage, FeatureMatrix


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_cancel_is_idempotent(self):
        token = CancellationToken()
        assert not token.cancelled
        token.cancel()
        token.cancel()
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_wait_returns_after_cancel(self):
        token = CancellationToken()
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_wait_on_cancelled_token_returns_immediately(self):
        token = CancellationToken()
        token.cancel()
        await asyncio.wait_for(token.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_race_returns_result_when_not_cancelled(self):
        async def work():
            return 42

        assert await race_cancellation(work(), CancellationToken()) == (False, 42)

    @pytest.mark.asyncio
    async def test_race_discards_pending_work_on_cancel(self):
        token = CancellationToken()
        started = asyncio.Event()

        async def never():
            started.set()
            await asyncio.Event().wait()

        racer = asyncio.create_task(race_cancellation(never(), token))
        await started.wait()
        token.cancel()
        assert await asyncio.wait_for(racer, timeout=1) == (True, None)


class TestStreaming:
    """Tests for start_streaming."""

    @pytest.mark.asyncio
    async def test_chunks_in_order_and_completed(self, fake_llm, dispatcher):
        fake_llm.queue_stream(["a", "b", "c"])
        handle = dispatcher.start_streaming("review", "prompt", "system", "sonnet")
        received = [text async for text in handle]
        assert received == ["a", "b", "c"]
        assert handle.outcome is Outcome.COMPLETED
        assert handle.error is None
        assert dispatcher.current_token is None

    @pytest.mark.asyncio
    async def test_configuration_failure_before_dispatch(self, fake_llm, dispatcher):
        fake_llm.configured = False
        with pytest.raises(ConfigurationFailure):
            dispatcher.start_streaming("review", "prompt", "system", "sonnet")
        assert fake_llm.calls == []

    @pytest.mark.asyncio
    async def test_transport_failure_captured_with_partial_output(self, fake_llm, dispatcher):
        fake_llm.queue_stream(["partial "], error=ConnectionResetError("socket closed"))
        handle = dispatcher.start_streaming("review", "prompt", "system", "sonnet")
        received = [text async for text in handle]
        assert received == ["partial "]
        assert handle.outcome is Outcome.FAILED
        assert isinstance(handle.error, TransportFailure)
        assert "socket closed" in str(handle.error)

    @pytest.mark.asyncio
    async def test_no_chunk_after_cancellation(self, fake_llm, dispatcher):
        script = fake_llm.queue_stream(["a", "b", "c"], hold_after=1)
        handle = dispatcher.start_streaming("review", "prompt", "system", "sonnet")
        received = []

        async def consume():
            async for text in handle:
                received.append(text)

        consumer = asyncio.create_task(consume())
        await script.reached_hold.wait()
        handle.token.cancel()
        script.release.set()
        await consumer

        assert received == ["a"]
        assert handle.outcome is Outcome.CANCELLED
        assert script.closed

    @pytest.mark.asyncio
    async def test_new_primary_preempts_previous(self, fake_llm, dispatcher):
        fake_llm.queue_stream(["x"])
        fake_llm.queue_stream(["y"])
        old = dispatcher.start_streaming("review", "one", "system", "sonnet")
        new = dispatcher.start_streaming("review", "two", "system", "sonnet")
        assert old.token.cancelled
        assert dispatcher.current_token is new.token

        assert [text async for text in old] == []
        assert old.outcome is Outcome.CANCELLED
        assert dispatcher.current_token is new.token
        assert [text async for text in new] == ["y"]

    def test_cancel_current(self, fake_llm, dispatcher):
        fake_llm.queue_stream(["x"])
        handle = dispatcher.start_streaming("review", "one", "system", "sonnet")
        assert dispatcher.busy
        assert dispatcher.cancel_current()
        assert handle.token.cancelled
        assert not dispatcher.busy
        assert not dispatcher.cancel_current()


class TestStructured:
    """Tests for start_structured."""

    @pytest.mark.asyncio
    async def test_decoded_value(self, fake_llm, dispatcher):
        fake_llm.queue_structured('{"type": "fix", "scope": "math", "subject": "correct add", "body": ""}')
        result = await dispatcher.start_structured("p", "s", "haiku", CommitMessage)
        assert result.outcome is Outcome.COMPLETED
        assert result.value.format() == "fix(math): correct add"

    @pytest.mark.asyncio
    async def test_decode_failure_is_captured(self, fake_llm, dispatcher):
        fake_llm.queue_structured('{"features": "not a list"}')
        result = await dispatcher.start_structured("p", "s", "sonnet", FeatureMatrix)
        assert result.outcome is Outcome.FAILED
        assert isinstance(result.error, StructuredDecodeFailure)
        assert result.value is None

    @pytest.mark.asyncio
    async def test_cancelled_structured_call(self, fake_llm, dispatcher):
        token = CancellationToken()
        token.cancel()
        fake_llm.queue_structured(CommitMessage(type="fix", subject="x"))
        result = await dispatcher.start_structured("p", "s", "haiku", CommitMessage, token=token)
        assert result.outcome is Outcome.CANCELLED
        assert result.value is None

    @pytest.mark.asyncio
    async def test_side_call_does_not_take_primary_slot(self, fake_llm, dispatcher):
        fake_llm.queue_stream(["x"])
        handle = dispatcher.start_streaming("review", "one", "system", "sonnet")
        fake_llm.queue_structured(CommitMessage(type="fix", subject="x"))
        result = await dispatcher.start_structured("p", "s", "haiku", CommitMessage, primary=False)
        assert result.outcome is Outcome.COMPLETED
        assert not handle.token.cancelled
        assert dispatcher.current_token is handle.token


class TestClassifyException:
    """Tests for classify_exception."""

    def test_status_error_is_short(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        response = httpx.Response(529, request=request)
        exc = anthropic.APIStatusError("Overloaded " + "x" * 500, response=response, body=None)
        error = classify_exception(exc)
        assert isinstance(error, TransportFailure)
        assert str(error) == "API returned status 529"

    def test_authentication_error_is_configuration_failure(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        response = httpx.Response(401, request=request)
        exc = anthropic.AuthenticationError("invalid x-api-key", response=response, body=None)
        assert isinstance(classify_exception(exc), ConfigurationFailure)

    def test_timeout(self):
        assert str(classify_exception(asyncio.TimeoutError())) == "Request timed out"

    def test_long_messages_truncated(self):
        error = classify_exception(RuntimeError("boom " * 100))
        assert len(str(error)) <= len("Request failed: ") + 200

    def test_classified_errors_pass_through(self):
        original = TransportFailure("already classified")
        assert classify_exception(original) is original
