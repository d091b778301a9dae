"""
ConversationSession: the state machine behind a review session.

States:
    IDLE -> SUBMITTING -> STREAMING -> {COMPLETED, ERRORED, CANCELLED}
    COMPLETED -> CHAT_ACTIVE (follow-up dialogue)
    SUBMITTING -> DECISION_PENDING (comparison feature matrix)
    DECISION_PENDING -> FINALIZING -> COMPLETED

Observers subscribe to SessionEvent messages instead of polling fields.
At most one primary operation is in flight; a new one either raises
SessionStateError or, with preempt=True, cancels the previous one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel

from . import prompts
from .cancellation import CancellationToken, Outcome
from .chat import ChatChannel
from .config import AssistantConfig, FeatureFlags
from .decisions import FeatureDecisionTracker
from .dispatcher import RequestDispatcher
from .errors import AssistantError, ConfigurationFailure, DecisionError, SessionStateError
from .response_parser import NamedFile, StreamAggregator, extract_named_files
from .session_schema import (
    ChatTurn,
    Decision,
    DecisionRecord,
    Feature,
    FinalizationSummary,
    Mode,
    PrimaryInputs,
    SessionSnapshot,
)
from .structured import CommitMessage, FeatureMatrix, VersionName

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle state of a ConversationSession."""

    IDLE = "idle"
    SUBMITTING = "submitting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"
    CHAT_ACTIVE = "chat_active"
    DECISION_PENDING = "decision_pending"
    FINALIZING = "finalizing"


BUSY_STATES = frozenset({SessionState.SUBMITTING, SessionState.STREAMING, SessionState.FINALIZING})


class EventKind(Enum):
    """Kinds of messages delivered to session observers."""

    STATE_CHANGED = "state_changed"
    OUTPUT_UPDATED = "output_updated"
    CHAT_UPDATED = "chat_updated"
    DECISIONS_CHANGED = "decisions_changed"
    ERROR = "error"


@dataclass(frozen=True)
class SessionEvent:
    """A notification sent to observers."""

    kind: EventKind
    state: SessionState
    payload: Any = None


Observer = Callable[[SessionEvent], None]


class RequestKind(str, Enum):
    """Primary operation kinds."""

    REVIEW = "review"
    DEBUG = "debug"
    AUDIT = "audit"
    COMPARISON = "comparison"
    FEATURE_MATRIX = "feature-matrix"
    FINALIZATION = "finalization"
    ROOT_CAUSE = "root-cause"
    TESTS = "tests"
    DOCS = "docs"
    EXPLAIN = "explain"
    REVIEW_SELECTION = "review-selection"


@dataclass
class PrimaryRequest:
    """A streaming primary operation ready to dispatch."""

    kind: RequestKind
    prompt: str
    system_instruction: str
    model: str | None = None
    # Code the output refers to; the basis for commit messages
    reviewed_code: str | None = None


class ConversationSession:
    """
    Single-owner session aggregate.

    Example:
        session = ConversationSession(RequestDispatcher())
        session.update_inputs(code="print('hi')")
        outcome = await session.review()
        print(session.output, session.extracted_code)
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        config: AssistantConfig | None = None,
        flags: FeatureFlags | None = None,
        mode: Mode = Mode.REVIEW,
    ):
        self.dispatcher = dispatcher
        self.config = config or AssistantConfig()
        self.flags = flags or FeatureFlags()
        self.mode = Mode(mode)
        self.state = SessionState.IDLE
        self._observers: list[Observer] = []
        self._tracker = FeatureDecisionTracker()
        self._active_token: CancellationToken | None = None
        self._clear()

    def _clear(self) -> None:
        self.inputs = PrimaryInputs()
        self.last_prompt = ""
        self.output: str | None = None
        self.extracted_code: str | None = None
        self.reviewed_code: str | None = None
        self.output_kind: str | None = None
        self.error: str | None = None
        self.chat: ChatChannel | None = None
        self.finalization_summary: FinalizationSummary | None = None
        self._tracker.clear()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """
        Register an observer.

        Returns:
            Function that removes the observer
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _emit(self, kind: EventKind, payload: Any = None) -> None:
        event = SessionEvent(kind=kind, state=self.state, payload=payload)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.warning(f"Observer failed on {kind.value}: {e}")

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        previous, self.state = self.state, state
        logger.info(f"Session state {previous.value} -> {state.value}")
        self._emit(EventKind.STATE_CHANGED, previous)

    def _record_error(self, error: AssistantError | str) -> None:
        self.error = str(error)
        self._emit(EventKind.ERROR, self.error)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self.state in BUSY_STATES

    @property
    def tracker(self) -> FeatureDecisionTracker:
        return self._tracker

    @property
    def feature_matrix(self) -> list[Feature] | None:
        return self._tracker.features if self._tracker.loaded else None

    @property
    def feature_decisions(self) -> dict[str, DecisionRecord]:
        return self._tracker.decisions

    @property
    def generated_files(self) -> list[NamedFile]:
        """Named documents in the current output."""
        return extract_named_files(self.output) if self.output else []

    def update_inputs(self, **changes: Any) -> PrimaryInputs:
        """Replace input fields, validating the result."""
        self.inputs = PrimaryInputs.model_validate({**self.inputs.model_dump(), **changes})
        return self.inputs

    def _core_model(self) -> str:
        return self.config.models.core_analysis

    def _fast_model(self) -> str:
        return self.config.models.fast_tasks

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _ensure_can_submit(self, preempt: bool) -> None:
        if self.is_busy and not preempt:
            raise SessionStateError(f"Cannot start a new request while {self.state.value}")

    def _require_mode(self, *modes: Mode) -> None:
        if self.mode not in modes:
            allowed = ", ".join(m.value for m in modes)
            raise SessionStateError(f"Operation requires {allowed} mode, session is in {self.mode.value} mode")

    def _close_chat(self) -> None:
        if self.chat is None:
            return
        self.chat.cancel()
        self.chat = None
        self._emit(EventKind.CHAT_UPDATED)

    def _begin_primary(
        self,
        token: CancellationToken,
        kind: RequestKind,
        prompt: str,
        reviewed_code: str | None,
        busy_state: SessionState,
    ) -> None:
        self._active_token = token
        self.error = None
        self._close_chat()
        if kind is not RequestKind.FINALIZATION:
            self._tracker.clear()
        self.finalization_summary = None
        self.output = None
        self.extracted_code = None
        self.last_prompt = prompt
        self.reviewed_code = reviewed_code
        self.output_kind = kind.value
        self._set_state(busy_state)
        self._emit(EventKind.OUTPUT_UPDATED)

    async def submit(self, request: PrimaryRequest, preempt: bool = False) -> Outcome:
        """
        Run a streaming primary operation.

        Args:
            request: Prompt, instruction and kind to dispatch
            preempt: Cancel an in-flight operation instead of raising

        Returns:
            Outcome of the operation (CANCELLED if it was preempted)

        Raises:
            SessionStateError: If busy and preempt is False
            ConfigurationFailure: If no credential is available
        """
        self._ensure_can_submit(preempt)
        return await self._run_stream(request, SessionState.SUBMITTING)

    async def _run_stream(self, request: PrimaryRequest, busy_state: SessionState) -> Outcome:
        model = request.model or self._core_model()
        try:
            handle = self.dispatcher.start_streaming(
                request.kind.value, request.prompt, request.system_instruction, model
            )
        except ConfigurationFailure as e:
            self._record_error(e)
            self._set_state(SessionState.ERRORED)
            raise

        token = handle.token
        self._begin_primary(token, request.kind, request.prompt, request.reviewed_code, busy_state)

        aggregator = StreamAggregator()
        async for text in handle:
            if self._active_token is not token:
                break
            if self.state is SessionState.SUBMITTING:
                self._set_state(SessionState.STREAMING)
            self.output = aggregator.append(text)
            self.extracted_code = aggregator.code_block
            self._emit(EventKind.OUTPUT_UPDATED, text)

        if self._active_token is not token:
            await handle.aclose()
            logger.info(f"Discarded superseded {request.kind.value} request")
            return Outcome.CANCELLED
        self._active_token = None

        if handle.outcome is Outcome.COMPLETED:
            self.extracted_code, _ = aggregator.finish()
            self.output = aggregator.text
            self._emit(EventKind.OUTPUT_UPDATED)
            self._set_state(SessionState.COMPLETED)
        elif handle.outcome is Outcome.CANCELLED:
            self._set_state(SessionState.CANCELLED)
        else:
            self._record_error(handle.error)
            self._set_state(SessionState.ERRORED)
        return handle.outcome

    def cancel(self) -> None:
        """
        Cancel the primary operation or the chat turn in flight.

        Partial output is kept.

        Raises:
            SessionStateError: If nothing is in flight
        """
        if self.is_busy and self._active_token is not None:
            self._active_token.cancel()
            self._set_state(SessionState.CANCELLED)
            return
        if self.chat is not None and self.chat.is_awaiting:
            self.chat.cancel()
            return
        raise SessionStateError(f"Nothing to cancel while {self.state.value}")

    def reset(self) -> None:
        """Discard all session fields, cancelling anything in flight."""
        if self._active_token is not None:
            self._active_token.cancel()
            self._active_token = None
        if self.chat is not None:
            self.chat.cancel()
        self._clear()
        self._set_state(SessionState.IDLE)
        self._emit(EventKind.OUTPUT_UPDATED)

    def switch_mode(self, mode: Mode | str) -> None:
        """
        Enter another mode with a fresh session.

        Raises:
            SessionStateError: If the mode is disabled by feature flags
        """
        mode = Mode(mode)
        if mode is Mode.AUDIT and not self.flags.code_audit_mode:
            raise SessionStateError("Audit mode is disabled (feature flag code_audit_mode)")
        if mode is Mode.WORKBENCH and not self.flags.workbench_mode:
            raise SessionStateError("Workbench mode is disabled (feature flag workbench_mode)")
        self.reset()
        self.mode = mode
        logger.info(f"Switched to {mode.value} mode")

    # ------------------------------------------------------------------
    # Primary operations
    # ------------------------------------------------------------------

    def _include_context(self) -> bool:
        return self.flags.multi_file_context and bool(self.inputs.context_files)

    def _require_code(self) -> str:
        if not self.inputs.code.strip():
            raise ValueError("No code to submit")
        return self.inputs.code

    async def review(self, preempt: bool = False) -> Outcome:
        """Review (or, in debug mode, debug) the working code."""
        if self.mode is Mode.AUDIT:
            return await self.audit(preempt=preempt)
        self._require_mode(Mode.REVIEW, Mode.DEBUG, Mode.WORKBENCH)
        code = self._require_code()

        if self.mode is Mode.DEBUG:
            request = PrimaryRequest(
                kind=RequestKind.DEBUG,
                prompt=prompts.build_debug_prompt(self.inputs, self._include_context()),
                system_instruction=prompts.DEBUG_INSTRUCTION,
                reviewed_code=code,
            )
        else:
            request = PrimaryRequest(
                kind=RequestKind.REVIEW,
                prompt=prompts.build_review_prompt(self.inputs, self._include_context()),
                system_instruction=prompts.review_system_instruction(
                    self.inputs.review_profile, self.inputs.custom_profile
                ),
                reviewed_code=code,
            )
        return await self.submit(request, preempt=preempt)

    async def audit(self, preempt: bool = False) -> Outcome:
        self._require_mode(Mode.AUDIT)
        code = self._require_code()
        request = PrimaryRequest(
            kind=RequestKind.AUDIT,
            prompt=prompts.build_audit_prompt(self.inputs, self._include_context()),
            system_instruction=prompts.AUDIT_INSTRUCTION,
            reviewed_code=code,
        )
        return await self.submit(request, preempt=preempt)

    def _require_pair(self) -> None:
        self._require_mode(Mode.COMPARISON)
        if not self.inputs.code.strip() or not (self.inputs.code_b or "").strip():
            raise ValueError("Comparison needs both codebase A and codebase B")

    async def compare(self, preempt: bool = False) -> Outcome:
        """Stream a comparison of codebase A and B."""
        self._require_pair()
        request = PrimaryRequest(
            kind=RequestKind.COMPARISON,
            prompt=prompts.build_comparison_prompt(self.inputs),
            system_instruction=prompts.COMPARISON_INSTRUCTION,
        )
        return await self.submit(request, preempt=preempt)

    async def request_feature_matrix(self, preempt: bool = False) -> Outcome:
        """
        Retrieve the feature matrix for a merge and enter DECISION_PENDING.

        Returns:
            Outcome of the structured call

        Raises:
            SessionStateError: If busy (without preempt) or not in comparison mode
            ConfigurationFailure: If no credential is available
        """
        self._require_pair()
        self._ensure_can_submit(preempt)
        model = self._core_model()
        try:
            self.dispatcher.require_configured(model)
        except ConfigurationFailure as e:
            self._record_error(e)
            self._set_state(SessionState.ERRORED)
            raise

        prompt = prompts.build_feature_matrix_prompt(self.inputs)
        token = CancellationToken()
        self._begin_primary(token, RequestKind.FEATURE_MATRIX, prompt, None, SessionState.SUBMITTING)

        result = await self.dispatcher.start_structured(
            prompt, prompts.FEATURE_MATRIX_INSTRUCTION, model, FeatureMatrix, token=token
        )
        if self._active_token is not token:
            logger.info("Discarded superseded feature matrix request")
            return Outcome.CANCELLED
        self._active_token = None

        if result.outcome is Outcome.COMPLETED and not result.value.features:
            self._record_error("The model returned an empty feature matrix")
            self._set_state(SessionState.ERRORED)
            return Outcome.FAILED
        if result.outcome is Outcome.COMPLETED:
            self._tracker.load(result.value.features)
            self._set_state(SessionState.DECISION_PENDING)
            self._emit(EventKind.DECISIONS_CHANGED)
        elif result.outcome is Outcome.CANCELLED:
            self._set_state(SessionState.CANCELLED)
        else:
            self._record_error(result.error)
            self._set_state(SessionState.ERRORED)
        return result.outcome

    async def finalize_decisions(self, preempt: bool = False) -> Outcome:
        """
        Issue the single synthesis request for a decision-complete matrix.

        Raises:
            DecisionError: If any feature is undecided
            SessionStateError: If busy or a feature discussion is open
        """
        self._ensure_can_submit(preempt)
        if self.chat is not None and self.chat.discussion_feature is not None:
            raise SessionStateError("Finish the open feature discussion first")
        summary = self._tracker.finalize()
        request = PrimaryRequest(
            kind=RequestKind.FINALIZATION,
            prompt=prompts.build_finalization_prompt(self.inputs, summary, self._tracker.transcripts()),
            system_instruction=prompts.FINALIZATION_INSTRUCTION,
            reviewed_code=self.inputs.code,
        )
        logger.info(
            f"Finalizing merge: {len(summary.included)} included, "
            f"{len(summary.removed)} removed, {len(summary.discussed)} discussed"
        )
        outcome = await self._run_stream(request, SessionState.FINALIZING)
        # Only a finished synthesis marks the merge as done
        if outcome is Outcome.COMPLETED:
            self.finalization_summary = summary
            self._emit(EventKind.DECISIONS_CHANGED)
        return outcome

    async def analyze_root_cause(self, preempt: bool = False) -> Outcome:
        """Explain the root cause behind a completed debug session."""
        self._require_mode(Mode.DEBUG)
        if not self.output or not self.extracted_code:
            raise SessionStateError("Root cause analysis needs a completed debug response with fixed code")
        request = PrimaryRequest(
            kind=RequestKind.ROOT_CAUSE,
            prompt=prompts.build_root_cause_prompt(self.inputs, self.output, self.extracted_code),
            system_instruction=prompts.ROOT_CAUSE_INSTRUCTION,
        )
        return await self.submit(request, preempt=preempt)

    async def generate_tests(self, preempt: bool = False) -> Outcome:
        """Generate unit tests for the revised code, or the working code."""
        code = self.extracted_code or self._require_code()
        request = PrimaryRequest(
            kind=RequestKind.TESTS,
            prompt=prompts.build_tests_prompt(self.inputs.language, code),
            system_instruction=prompts.TESTS_INSTRUCTION,
        )
        return await self.submit(request, preempt=preempt)

    async def generate_docs(self, code: str | None = None, preempt: bool = False) -> Outcome:
        """Generate documentation files; see generated_files for the result."""
        code = code or self.extracted_code or self._require_code()
        request = PrimaryRequest(
            kind=RequestKind.DOCS,
            prompt=prompts.build_docs_prompt(self.inputs.language, code),
            system_instruction=prompts.DOCS_INSTRUCTION,
        )
        return await self.submit(request, preempt=preempt)

    async def explain_selection(self, selection: str, preempt: bool = False) -> Outcome:
        if not selection.strip():
            raise ValueError("Selection is empty")
        request = PrimaryRequest(
            kind=RequestKind.EXPLAIN,
            prompt=prompts.build_explain_prompt(self.inputs.language, selection),
            system_instruction=prompts.EXPLAIN_INSTRUCTION,
        )
        return await self.submit(request, preempt=preempt)

    async def review_selection(self, selection: str, preempt: bool = False) -> Outcome:
        if not selection.strip():
            raise ValueError("Selection is empty")
        request = PrimaryRequest(
            kind=RequestKind.REVIEW_SELECTION,
            prompt=prompts.build_review_selection_prompt(self.inputs.language, selection),
            system_instruction=prompts.review_system_instruction(
                self.inputs.review_profile, self.inputs.custom_profile
            ),
            reviewed_code=selection,
        )
        return await self.submit(request, preempt=preempt)

    # ------------------------------------------------------------------
    # Side calls (structured, outside the primary slot)
    # ------------------------------------------------------------------

    async def _side_call(
        self,
        prompt: str,
        system_instruction: str,
        schema: type[BaseModel],
        token: CancellationToken | None,
    ) -> BaseModel | None:
        try:
            result = await self.dispatcher.start_structured(
                prompt, system_instruction, self._fast_model(), schema, token=token, primary=False
            )
        except ConfigurationFailure as e:
            self._record_error(e)
            raise
        if result.outcome is Outcome.FAILED:
            self._record_error(result.error)
        return result.value

    async def generate_commit_message(self, token: CancellationToken | None = None) -> str | None:
        """
        Describe the change from the reviewed code to the extracted revision.

        Returns:
            Formatted conventional commit message, or None on failure/cancel

        Raises:
            SessionStateError: If there is no distinct revision to describe
        """
        if (
            not self.reviewed_code
            or not self.extracted_code
            or self.reviewed_code.strip() == self.extracted_code.strip()
        ):
            raise SessionStateError("No revised code to describe")
        prompt = prompts.build_commit_prompt(self.inputs.language, self.reviewed_code, self.extracted_code)
        message = await self._side_call(prompt, prompts.COMMIT_INSTRUCTION, CommitMessage, token)
        return message.format() if message is not None else None

    async def suggest_version_name(self, token: CancellationToken | None = None) -> str | None:
        """Suggest a title for saving the current session."""
        kind = self.output_kind or self.mode.value
        prompt = prompts.build_version_name_prompt(kind, self.inputs, self.output)
        suggestion = await self._side_call(prompt, prompts.VERSION_NAME_INSTRUCTION, VersionName, token)
        return suggestion.name if suggestion is not None else None

    # ------------------------------------------------------------------
    # Follow-up chat
    # ------------------------------------------------------------------

    def start_follow_up(self) -> ChatChannel:
        """Open a dialogue anchored on the last prompt/response pair."""
        if self.state is not SessionState.COMPLETED or not self.output:
            raise SessionStateError("Follow-up needs a completed response")
        self.chat = ChatChannel(
            self.dispatcher,
            anchor_prompt=self.last_prompt,
            anchor_response=self.output,
            system_instruction=prompts.FOLLOW_UP_INSTRUCTION,
            model=self._core_model(),
        )
        self._set_state(SessionState.CHAT_ACTIVE)
        self._emit(EventKind.CHAT_UPDATED)
        return self.chat

    async def send_chat(self, message: str) -> ChatTurn:
        """
        Send a chat turn on the open channel.

        Returns:
            The model turn (with `error` set if the transport failed)

        Raises:
            SessionStateError: If no chat is open or a turn is in flight
            ConfigurationFailure: If no credential is available
        """
        if self.chat is None:
            raise SessionStateError("No chat is open")
        chat = self.chat
        try:
            reply = await chat.send(message, on_chunk=lambda turn: self._emit(EventKind.CHAT_UPDATED, turn))
        except ConfigurationFailure as e:
            self._record_error(e)
            raise
        if reply.error:
            self._record_error(reply.error)
        self._emit(EventKind.CHAT_UPDATED, reply)
        return reply

    def exit_chat(self) -> None:
        """Close the open chat, discarding an unfinished feature discussion."""
        if self.chat is None:
            raise SessionStateError("No chat is open")
        self._close_chat()
        if self.state is SessionState.CHAT_ACTIVE:
            self._set_state(SessionState.COMPLETED)

    # ------------------------------------------------------------------
    # Feature decisions
    # ------------------------------------------------------------------

    def _require_decisions_open(self) -> None:
        if self.is_busy:
            raise SessionStateError(f"Cannot change decisions while {self.state.value}")
        if not self._tracker.loaded:
            raise SessionStateError("No feature matrix loaded")

    def decide(self, name: str, decision: Decision | str) -> None:
        self._require_decisions_open()
        self._tracker.decide(name, decision)
        self._emit(EventKind.DECISIONS_CHANGED, name)

    def undecide(self, name: str) -> None:
        self._require_decisions_open()
        self._tracker.undecide(name)
        self._emit(EventKind.DECISIONS_CHANGED, name)

    def is_decision_complete(self) -> bool:
        return self._tracker.is_complete()

    def begin_feature_discussion(self, name: str) -> ChatChannel:
        """
        Open a sub-dialogue about one feature.

        The channel is anchored on the feature matrix prompt and response.
        """
        self._require_decisions_open()
        feature = next((f for f in self._tracker.features if f.name == name), None)
        if feature is None:
            raise DecisionError(f"Unknown feature: {name}")
        if self.chat is not None:
            self._close_chat()

        matrix_json = FeatureMatrix(features=self._tracker.features).model_dump_json(indent=2)
        self.chat = ChatChannel(
            self.dispatcher,
            anchor_prompt=self.last_prompt,
            anchor_response=matrix_json,
            system_instruction=prompts.feature_discussion_instruction(feature),
            model=self._core_model(),
            discussion_feature=name,
        )
        self._emit(EventKind.CHAT_UPDATED)
        return self.chat

    def finalize_feature_discussion(self) -> None:
        """Record the open discussion as the feature's transcript and close it."""
        if self.chat is None or self.chat.discussion_feature is None:
            raise SessionStateError("No feature discussion is open")
        if self.chat.is_awaiting:
            raise SessionStateError("Wait for the pending reply before finalizing the discussion")
        name = self.chat.discussion_feature
        self._tracker.finalize_discussion(name, self.chat.turns)
        self.chat = None
        self._emit(EventKind.CHAT_UPDATED)
        self._emit(EventKind.DECISIONS_CHANGED, name)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        """Deep copy of all serializable session fields."""
        snapshot = SessionSnapshot(
            mode=self.mode,
            inputs=self.inputs,
            last_prompt=self.last_prompt,
            output=self.output,
            extracted_code=self.extracted_code,
            reviewed_code=self.reviewed_code,
            output_kind=self.output_kind,
            chat=self.chat.snapshot() if self.chat is not None else None,
            feature_matrix=self.feature_matrix,
            feature_decisions=self._tracker.decisions,
            finalization_summary=self.finalization_summary,
        )
        return snapshot.model_copy(deep=True)

    @classmethod
    def from_snapshot(
        cls,
        snapshot: SessionSnapshot,
        dispatcher: RequestDispatcher,
        config: AssistantConfig | None = None,
        flags: FeatureFlags | None = None,
    ) -> ConversationSession:
        """
        Rebuild a live session from a snapshot.

        A stored chat gets a fresh backend dialogue seeded with the anchor
        pair followed by the stored turns.

        Raises:
            DecisionError: If decisions refer to features outside the matrix
        """
        snapshot = snapshot.model_copy(deep=True)
        session = cls(dispatcher, config=config, flags=flags, mode=snapshot.mode)
        session.inputs = snapshot.inputs
        session.last_prompt = snapshot.last_prompt
        session.output = snapshot.output
        session.extracted_code = snapshot.extracted_code
        session.reviewed_code = snapshot.reviewed_code
        session.output_kind = snapshot.output_kind
        session.finalization_summary = snapshot.finalization_summary

        if snapshot.feature_matrix is not None:
            session._tracker.restore(snapshot.feature_matrix, snapshot.feature_decisions)
        elif snapshot.feature_decisions:
            raise DecisionError("Snapshot has feature decisions but no feature matrix")

        if snapshot.chat is not None:
            session.chat = ChatChannel.from_snapshot(snapshot.chat, dispatcher)

        if session.chat is not None and session.chat.discussion_feature is None:
            session.state = SessionState.CHAT_ACTIVE
        elif session._tracker.loaded and session.finalization_summary is None:
            session.state = SessionState.DECISION_PENDING
        elif session.output is not None:
            session.state = SessionState.COMPLETED
        return session


__all__ = [
    "BUSY_STATES",
    "ConversationSession",
    "EventKind",
    "Observer",
    "PrimaryRequest",
    "RequestKind",
    "SessionEvent",
    "SessionState",
]
