"""codeassist: session orchestration for an interactive code review assistant.

Submits code (or pairs of codebases) to a remote model, streams the
response, and keeps the conversation state around it:

- Session: review, debug, audit, comparison and workbench modes
- Chat: follow-up dialogue anchored on the analysed prompt/response
- Decisions: per-feature merge decisions for two codebases
- Versions: immutable snapshots, export and import
"""

__version__ = "0.1.0"

# Core
from .cancellation import CancellationToken, Outcome
from .dispatcher import DispatchResult, RequestDispatcher, StreamHandle
from .response_parser import NamedFile, StreamAggregator, extract_final_code_block, extract_named_files
from .session import ConversationSession, EventKind, PrimaryRequest, RequestKind, SessionEvent, SessionState

# Chat, decisions, persistence
from .chat import ChatChannel
from .decisions import FeatureDecisionTracker
from .version_store import FileBackend, InMemoryBackend, PersistenceBackend, VersionStore

# Types, config & errors
from .session_schema import (
    Attachment,
    Decision,
    Feature,
    FeatureSource,
    Language,
    Mode,
    PrimaryInputs,
    ReviewProfile,
    SessionSnapshot,
    Version,
)
from .config import AssistantConfig, FeatureFlags
from .errors import (
    AssistantError,
    ConfigurationFailure,
    DecisionError,
    SessionImportError,
    SessionStateError,
    StructuredDecodeFailure,
    TransportFailure,
)
from .api_client import MultiProviderClient, get_client, init_client

__all__ = [
    # Core
    "CancellationToken",
    "Outcome",
    "DispatchResult",
    "RequestDispatcher",
    "StreamHandle",
    "NamedFile",
    "StreamAggregator",
    "extract_final_code_block",
    "extract_named_files",
    "ConversationSession",
    "EventKind",
    "PrimaryRequest",
    "RequestKind",
    "SessionEvent",
    "SessionState",
    # Chat, decisions, persistence
    "ChatChannel",
    "FeatureDecisionTracker",
    "FileBackend",
    "InMemoryBackend",
    "PersistenceBackend",
    "VersionStore",
    # Types
    "Attachment",
    "Decision",
    "Feature",
    "FeatureSource",
    "Language",
    "Mode",
    "PrimaryInputs",
    "ReviewProfile",
    "SessionSnapshot",
    "Version",
    # Config & errors
    "AssistantConfig",
    "FeatureFlags",
    "AssistantError",
    "ConfigurationFailure",
    "DecisionError",
    "SessionImportError",
    "SessionStateError",
    "StructuredDecodeFailure",
    "TransportFailure",
    # Client
    "MultiProviderClient",
    "get_client",
    "init_client",
]
