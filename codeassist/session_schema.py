"""
Session schema models for codeassist.

Pydantic models shared by the runtime session, the chat channel, the
decision tracker and the version store. Everything persisted or exported
goes through these models.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


def new_id(prefix: str) -> str:
    """Generate a short unique identifier with a readable prefix."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Mode(str, Enum):
    """Working mode; selects prompt shape and allowed operations."""

    REVIEW = "review"
    DEBUG = "debug"
    COMPARISON = "comparison"
    AUDIT = "audit"
    WORKBENCH = "workbench"


class Language(str, Enum):
    """Languages offered for review."""

    JAVASCRIPT = "JavaScript"
    TYPESCRIPT = "TypeScript"
    PYTHON = "Python"
    JAVA = "Java"
    CSHARP = "C#"
    CPP = "C++"
    GO = "Go"
    RUBY = "Ruby"
    PHP = "PHP"
    HTML = "HTML"
    CSS = "CSS"
    MARKDOWN = "Markdown"
    SQL = "SQL"
    SHELL = "Shell Script"
    KOTLIN = "Kotlin"
    SWIFT = "Swift"
    RUST = "Rust"
    OTHER = "Other"

    @property
    def fence_tag(self) -> str:
        """Markdown fence tag for this language."""
        return LANGUAGE_TAGS[self]


LANGUAGE_TAGS: dict[Language, str] = {
    Language.JAVASCRIPT: "javascript",
    Language.TYPESCRIPT: "typescript",
    Language.PYTHON: "python",
    Language.JAVA: "java",
    Language.CSHARP: "csharp",
    Language.CPP: "cpp",
    Language.GO: "go",
    Language.RUBY: "ruby",
    Language.PHP: "php",
    Language.HTML: "html",
    Language.CSS: "css",
    Language.MARKDOWN: "markdown",
    Language.SQL: "sql",
    Language.SHELL: "bash",
    Language.KOTLIN: "kotlin",
    Language.SWIFT: "swift",
    Language.RUST: "rust",
    Language.OTHER: "",
}


class ReviewProfile(str, Enum):
    """Optional review focus appended to the review system instruction."""

    NONE = "none"
    SECURITY = "security"
    MODULAR = "modular"
    IDIOMATIC = "idiomatic"
    DRY = "dry"
    CUSTOM = "custom"


class ContextFile(BaseModel):
    """A project file attached as extra context to primary prompts."""

    name: str
    content: str


class PrimaryInputs(BaseModel):
    """Working inputs of a session."""

    language: Language = Language.PYTHON
    code: str = ""
    code_b: str | None = None  # comparison mode
    error_context: str | None = None  # debug mode
    review_profile: ReviewProfile = ReviewProfile.NONE
    custom_profile: str = ""
    comparison_goal: str = ""
    context_files: list[ContextFile] = Field(default_factory=list)


class Attachment(BaseModel):
    """A file staged for, or sent with, a chat turn."""

    name: str
    mime_type: str = "text/plain"
    content: str  # raw text, or base64 for images

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class ChatTurn(BaseModel):
    """One turn of a follow-up dialogue."""

    id: str = Field(default_factory=lambda: new_id("msg"))
    role: Literal["user", "model"]
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    error: str | None = None


class ChatRevision(BaseModel):
    """Code snapshot extracted from a model turn."""

    id: str = Field(default_factory=lambda: new_id("rev"))
    name: str
    code: str


class ChatFile(BaseModel):
    """Generated document extracted from a model turn."""

    id: str = Field(default_factory=lambda: new_id("file"))
    name: str
    content: str


class FeatureSource(str, Enum):
    """Which codebase a feature comes from."""

    UNIQUE_A = "Unique to A"
    UNIQUE_B = "Unique to B"
    COMMON = "Common"

    @classmethod
    def _missing_(cls, value: object) -> "FeatureSource | None":
        if isinstance(value, str):
            key = value.replace(" ", "").replace("_", "").replace("-", "").lower()
            aliases = {
                "uniquetoa": cls.UNIQUE_A,
                "uniquea": cls.UNIQUE_A,
                "a": cls.UNIQUE_A,
                "uniquetob": cls.UNIQUE_B,
                "uniqueb": cls.UNIQUE_B,
                "b": cls.UNIQUE_B,
                "common": cls.COMMON,
                "both": cls.COMMON,
            }
            return aliases.get(key)
        return None


class Feature(BaseModel):
    """A named unit of functionality identified when reconciling two codebases."""

    name: str = Field(min_length=1)
    description: str = ""
    source: FeatureSource


class Decision(str, Enum):
    """Merge decision for a feature."""

    INCLUDE = "include"
    REMOVE = "remove"
    DISCUSSED = "discussed"


class DecisionRecord(BaseModel):
    """Decision for one feature, with the discussion transcript if any."""

    decision: Decision
    transcript: list[ChatTurn] = Field(default_factory=list)


class FinalizationSummary(BaseModel):
    """Features partitioned by decision."""

    included: list[Feature] = Field(default_factory=list)
    removed: list[Feature] = Field(default_factory=list)
    discussed: list[Feature] = Field(default_factory=list)


class ChatSnapshot(BaseModel):
    """Serializable state of a ChatChannel."""

    anchor_prompt: str
    anchor_response: str
    system_instruction: str
    model: str
    turns: list[ChatTurn] = Field(default_factory=list)
    revisions: list[ChatRevision] = Field(default_factory=list)
    files: list[ChatFile] = Field(default_factory=list)
    discussion_feature: str | None = None


class SessionSnapshot(BaseModel):
    """Serializable state of a ConversationSession."""

    mode: Mode = Mode.REVIEW
    inputs: PrimaryInputs = Field(default_factory=PrimaryInputs)
    last_prompt: str = ""
    output: str | None = None
    extracted_code: str | None = None
    reviewed_code: str | None = None
    output_kind: str | None = None
    chat: ChatSnapshot | None = None
    feature_matrix: list[Feature] | None = None
    feature_decisions: dict[str, DecisionRecord] = Field(default_factory=dict)
    finalization_summary: FinalizationSummary | None = None


class Version(BaseModel):
    """
    A saved, immutable session snapshot.

    Created only on explicit save and deleted only by explicit user action.
    """

    id: str = Field(default_factory=lambda: new_id("version"))
    name: str = Field(min_length=1)
    created_at: float
    kind: str = "review"
    snapshot: SessionSnapshot

    model_config = {
        "frozen": True,
    }


class SessionExport(BaseModel):
    """Session export file: all versions plus the live session."""

    format_version: str = "1.0"
    exported_at: float
    versions: list[Version]
    session: SessionSnapshot


__all__ = [
    "Attachment",
    "ChatFile",
    "ChatRevision",
    "ChatSnapshot",
    "ChatTurn",
    "ContextFile",
    "Decision",
    "DecisionRecord",
    "Feature",
    "FeatureSource",
    "FinalizationSummary",
    "LANGUAGE_TAGS",
    "Language",
    "Mode",
    "PrimaryInputs",
    "ReviewProfile",
    "SessionExport",
    "SessionSnapshot",
    "Version",
    "new_id",
]
