"""Tests for the multi-provider client and dialogue history."""

import pytest

from codeassist.api_client import (
    AnthropicClient,
    BaseLLMClient,
    MultiProviderClient,
    OpenAIClient,
    Provider,
    StreamChunk,
    resolve_model,
)
from codeassist.errors import ConfigurationFailure, StructuredDecodeFailure
from codeassist.session_schema import Attachment
from codeassist.structured import CommitMessage


class RecordingClient(BaseLLMClient):
    """Provider client replaying canned replies and recording requests."""

    def __init__(self, replies: list[list[str]], error: Exception | None = None):
        self.replies = replies
        self.error = error
        self.requests: list[dict] = []

    async def complete_streaming(self, messages, system=None, model=None, max_tokens=8192, temperature=0.3):
        self.requests.append({"messages": [dict(m) for m in messages], "system": system, "model": model})
        for text in self.replies.pop(0):
            yield StreamChunk(text=text)
        if self.error is not None:
            raise self.error
        yield StreamChunk(text="", is_final=True)


@pytest.fixture
def no_keys(monkeypatch):
    for name in ("ANTHROPIC_API_KEY", "ANTHROPIC_AUTH_TOKEN", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def client_with(provider: Provider, fake: BaseLLMClient) -> MultiProviderClient:
    client = MultiProviderClient()
    client._clients = {provider: fake}
    return client


class TestResolveModel:
    """Tests for resolve_model."""

    def test_aliases(self):
        assert resolve_model("sonnet")[0] is Provider.ANTHROPIC
        assert resolve_model("gpt-4o") == (Provider.OPENAI, "gpt-4o")

    def test_prefixes(self):
        assert resolve_model("claude-3-haiku-custom") == (Provider.ANTHROPIC, "claude-3-haiku-custom")
        assert resolve_model("o3-pro") == (Provider.OPENAI, "o3-pro")

    def test_unknown_defaults_to_anthropic(self):
        assert resolve_model("mystery")[0] is Provider.ANTHROPIC


class TestMultiProviderClient:
    """Tests for routing and configuration checks."""

    @pytest.mark.asyncio
    async def test_unconfigured_client(self, no_keys):
        client = MultiProviderClient()
        assert not client.is_configured()
        with pytest.raises(ConfigurationFailure):
            await client.generate_structured("p", "s", "sonnet", CommitMessage)

    @pytest.mark.asyncio
    async def test_stream_generate_single_turn(self, no_keys):
        fake = RecordingClient([["Hello", " world"]])
        client = client_with(Provider.ANTHROPIC, fake)

        texts = [chunk.text async for chunk in client.stream_generate("Review", "Be strict", "sonnet")]

        assert "".join(texts) == "Hello world"
        request = fake.requests[0]
        assert request["messages"] == [{"role": "user", "content": "Review"}]
        assert request["system"] == "Be strict"
        assert request["model"] == "claude-sonnet-4-20250514"

    @pytest.mark.asyncio
    async def test_fallback_to_available_provider(self, no_keys):
        fake = RecordingClient([["ok"]])
        client = client_with(Provider.OPENAI, fake)

        assert [c.text async for c in client.stream_generate("p", "s", "sonnet")][0] == "ok"
        assert fake.requests[0]["model"] is None

    @pytest.mark.asyncio
    async def test_structured_appends_schema_instruction(self, no_keys):
        fake = RecordingClient([['```json\n{"type": "docs", "subject": "describe add"}\n```']])
        client = client_with(Provider.ANTHROPIC, fake)

        message = await client.generate_structured("diff", "Write commits", "haiku", CommitMessage)

        assert message.format() == "docs: describe add"
        system = fake.requests[0]["system"]
        assert system.startswith("Write commits")
        assert '"subject"' in system

    @pytest.mark.asyncio
    async def test_structured_decode_failure(self, no_keys):
        client = client_with(Provider.ANTHROPIC, RecordingClient([["not json at all"]]))
        with pytest.raises(StructuredDecodeFailure):
            await client.generate_structured("diff", "Write commits", "haiku", CommitMessage)


class TestProviderDialogue:
    """Tests for client-side history replay."""

    @pytest.mark.asyncio
    async def test_history_replayed_on_each_send(self, no_keys):
        fake = RecordingClient([["first reply"], ["second reply"]])
        client = client_with(Provider.ANTHROPIC, fake)
        anchor = [{"role": "user", "content": "prompt"}, {"role": "assistant", "content": "response"}]
        dialogue = client.open_dialogue("sonnet", anchor, "system")

        async for _ in dialogue.send("q1"):
            pass
        async for _ in dialogue.send("q2"):
            pass

        second = fake.requests[1]["messages"]
        assert [(m["role"], m["content"]) for m in second] == [
            ("user", "prompt"),
            ("assistant", "response"),
            ("user", "q1"),
            ("assistant", "first reply"),
            ("user", "q2"),
        ]
        assert dialogue.history[-1] == {"role": "assistant", "content": "second reply"}

    @pytest.mark.asyncio
    async def test_failed_turn_without_text_is_dropped(self, no_keys):
        fake = RecordingClient([[]], error=RuntimeError("down"))
        client = client_with(Provider.ANTHROPIC, fake)
        dialogue = client.open_dialogue("sonnet", [], "system")

        with pytest.raises(RuntimeError):
            async for _ in dialogue.send("q1"):
                pass

        assert dialogue.history == []

    @pytest.mark.asyncio
    async def test_partial_reply_kept(self, no_keys):
        fake = RecordingClient([["half"]], error=RuntimeError("reset"))
        client = client_with(Provider.ANTHROPIC, fake)
        dialogue = client.open_dialogue("sonnet", [], "system")

        with pytest.raises(RuntimeError):
            async for _ in dialogue.send("q1"):
                pass

        assert [m["role"] for m in dialogue.history] == ["user", "assistant"]
        assert dialogue.history[1]["content"] == "half"


class TestAttachmentConversion:
    """Tests for provider message conversion."""

    def test_anthropic_image_and_text(self):
        message = {
            "role": "user",
            "content": "What is wrong?",
            "attachments": [
                Attachment(name="shot.png", mime_type="image/png", content="iVBORw0"),
                Attachment(name="log.txt", content="Traceback"),
            ],
        }
        converted = AnthropicClient._convert(message)
        blocks = converted["content"]
        assert blocks[0]["source"] == {"type": "base64", "media_type": "image/png", "data": "iVBORw0"}
        assert "log.txt" in blocks[1]["text"]
        assert blocks[-1] == {"type": "text", "text": "What is wrong?"}

    def test_plain_message_unchanged(self):
        message = {"role": "assistant", "content": "Done", "attachments": []}
        assert AnthropicClient._convert(message) == {"role": "assistant", "content": "Done"}
        assert OpenAIClient._convert(message) == {"role": "assistant", "content": "Done"}

    def test_openai_image_data_url(self):
        message = {
            "role": "user",
            "content": "Look",
            "attachments": [Attachment(name="a.jpg", mime_type="image/jpeg", content="AAA")],
        }
        parts = OpenAIClient._convert(message)["content"]
        assert parts[0]["image_url"]["url"] == "data:image/jpeg;base64,AAA"
