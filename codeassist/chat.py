"""
Follow-up dialogue anchored on a primary prompt/response pair.

The anchor pair is frozen at creation and always replayed first when the
backend dialogue is (re)built; turns, revisions and files follow.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .cancellation import CancellationToken, Outcome
from .dispatcher import DispatchedDialogue, RequestDispatcher
from .errors import SessionStateError
from .response_parser import extract_final_code_block, extract_named_files
from .session_schema import (
    Attachment,
    ChatFile,
    ChatRevision,
    ChatSnapshot,
    ChatTurn,
)

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[ChatTurn], None]


class ChatChannel:
    """
    An open follow-up dialogue.

    At most one turn awaits a response at a time. Staged attachments are
    moved into the next user turn on send.
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        anchor_prompt: str,
        anchor_response: str,
        system_instruction: str,
        model: str,
        turns: list[ChatTurn] | None = None,
        revisions: list[ChatRevision] | None = None,
        files: list[ChatFile] | None = None,
        discussion_feature: str | None = None,
    ):
        self._anchor_prompt = anchor_prompt
        self._anchor_response = anchor_response
        self.system_instruction = system_instruction
        self.model = model
        self.turns: list[ChatTurn] = list(turns or [])
        self.revisions: list[ChatRevision] = list(revisions or [])
        self.files: list[ChatFile] = list(files or [])
        self.discussion_feature = discussion_feature
        self.staged: list[Attachment] = []
        self.error: str | None = None
        self._token: CancellationToken | None = None
        self._dialogue: DispatchedDialogue = dispatcher.open_dialogue(
            model, self.backend_history(), system_instruction
        )

    @property
    def anchor(self) -> tuple[str, str]:
        return self._anchor_prompt, self._anchor_response

    @property
    def is_awaiting(self) -> bool:
        """Whether a turn is awaiting a model response."""
        return self._token is not None

    def backend_history(self) -> list[dict]:
        """
        Conversation context for the backend dialogue.

        The anchor pair comes first, then each exchanged user/model pair in
        order. Exchanges whose model turn produced no text are skipped.
        """
        history: list[dict] = [
            {"role": "user", "content": self._anchor_prompt},
            {"role": "assistant", "content": self._anchor_response},
        ]
        for user, reply in zip(self.turns[0::2], self.turns[1::2]):
            if not reply.content:
                continue
            history.append({"role": "user", "content": user.content, "attachments": list(user.attachments)})
            history.append({"role": "assistant", "content": reply.content})
        return history

    # Attachments

    def stage_attachment(self, attachment: Attachment) -> None:
        self.staged.append(attachment)

    def unstage_attachment(self, name: str) -> Attachment:
        for i, attachment in enumerate(self.staged):
            if attachment.name == name:
                return self.staged.pop(i)
        raise KeyError(f"No staged attachment named {name}")

    # Turns

    async def send(self, message: str, on_chunk: ChunkCallback | None = None) -> ChatTurn:
        """
        Send a user turn and stream the reply into a new model turn.

        Transport failures are recorded on the model turn and on the
        channel; they are not raised.

        Args:
            message: User message
            on_chunk: Called with the model turn after every fragment

        Returns:
            The model turn

        Raises:
            SessionStateError: If a turn is already awaiting a response
            ConfigurationFailure: If no credential is available
        """
        if self.is_awaiting:
            raise SessionStateError("A chat turn is already awaiting a response")

        token = CancellationToken()
        handle = self._dialogue.send(message, self.staged, token)

        attachments, self.staged = self.staged, []
        user = ChatTurn(role="user", content=message, attachments=attachments)
        reply = ChatTurn(role="model")
        self.turns.extend([user, reply])
        self.error = None
        self._token = token

        try:
            async for text in handle:
                reply.content += text
                if on_chunk is not None:
                    on_chunk(reply)
        finally:
            self._token = None

        if handle.outcome is Outcome.FAILED:
            reply.error = str(handle.error)
            self.error = reply.error
            logger.warning(f"Chat turn failed: {reply.error}")
        elif handle.outcome is Outcome.COMPLETED:
            self._collect_artifacts(reply)
        return reply

    def cancel(self) -> bool:
        """Cancel the turn in flight, keeping its partial content."""
        if self._token is None:
            return False
        self._token.cancel()
        return True

    def _collect_artifacts(self, reply: ChatTurn) -> None:
        code = extract_final_code_block(reply.content)
        if code is not None:
            self.revisions.append(ChatRevision(name=f"Revision {len(self.revisions) + 1}", code=code))
        for named in extract_named_files(reply.content):
            self.files.append(ChatFile(name=named.name, content=named.content))

    # Revisions and files

    def _find(self, items: list, item_id: str, label: str):
        for item in items:
            if item.id == item_id:
                return item
        raise KeyError(f"No {label} with id {item_id}")

    def rename_revision(self, revision_id: str, name: str) -> None:
        self._find(self.revisions, revision_id, "revision").name = name

    def delete_revision(self, revision_id: str) -> None:
        self.revisions.remove(self._find(self.revisions, revision_id, "revision"))

    def clear_revisions(self) -> None:
        self.revisions.clear()

    def rename_file(self, file_id: str, name: str) -> None:
        self._find(self.files, file_id, "file").name = name

    def delete_file(self, file_id: str) -> None:
        self.files.remove(self._find(self.files, file_id, "file"))

    def clear_files(self) -> None:
        self.files.clear()

    # Persistence

    def snapshot(self) -> ChatSnapshot:
        return ChatSnapshot(
            anchor_prompt=self._anchor_prompt,
            anchor_response=self._anchor_response,
            system_instruction=self.system_instruction,
            model=self.model,
            turns=[t.model_copy(deep=True) for t in self.turns],
            revisions=[r.model_copy(deep=True) for r in self.revisions],
            files=[f.model_copy(deep=True) for f in self.files],
            discussion_feature=self.discussion_feature,
        )

    @classmethod
    def from_snapshot(cls, snapshot: ChatSnapshot, dispatcher: RequestDispatcher) -> ChatChannel:
        """Rebuild a channel whose fresh backend dialogue replays the stored history."""
        snapshot = snapshot.model_copy(deep=True)
        return cls(
            dispatcher,
            anchor_prompt=snapshot.anchor_prompt,
            anchor_response=snapshot.anchor_response,
            system_instruction=snapshot.system_instruction,
            model=snapshot.model,
            turns=snapshot.turns,
            revisions=snapshot.revisions,
            files=snapshot.files,
            discussion_feature=snapshot.discussion_feature,
        )


__all__ = ["ChatChannel"]
