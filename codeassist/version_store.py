"""
Saved versions, session export/import and the persistence backends.

Versions are immutable snapshots kept under a single backend key. Storage
is injected: anything with get(key) -> bytes | None and set(key, bytes)
works, so the store never depends on a particular medium.
"""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from .config import AssistantConfig, FeatureFlags, write_atomic
from .dispatcher import RequestDispatcher
from .errors import AssistantError, SessionImportError
from .session import ConversationSession
from .session_schema import SessionExport, SessionSnapshot, Version

logger = logging.getLogger(__name__)

VERSIONS_KEY = "versions"
EXPORT_FORMAT_VERSION = "1.0"

_versions_adapter = TypeAdapter(list[Version])


def _check_decisions(snapshot: SessionSnapshot, label: str) -> None:
    names = {f.name for f in snapshot.feature_matrix or []}
    unknown = sorted(set(snapshot.feature_decisions) - names)
    if unknown:
        raise SessionImportError(f"Import is inconsistent: {label} has decisions for unknown features: {', '.join(unknown)}")


class PersistenceBackend(Protocol):
    """Opaque key-value storage."""

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...


class InMemoryBackend:
    """Process-local storage, used for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)


class FileBackend:
    """
    One file per key under a directory.

    Writes go to a temp file in the same directory and are renamed into
    place so readers never see a partial file.
    """

    _SAFE_KEY = re.compile(r"[^A-Za-z0-9._-]")

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{self._SAFE_KEY.sub('_', key)}.json"

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def set(self, key: str, value: bytes) -> None:
        write_atomic(self._path(key), value)


class VersionStore:
    """
    Named, immutable session snapshots.

    Versions are created only by save() and removed only by delete().
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        config: AssistantConfig | None = None,
        flags: FeatureFlags | None = None,
    ):
        self.backend = backend
        self.config = config
        self.flags = flags
        self._versions: list[Version] = self._load()

    def _load(self) -> list[Version]:
        raw = self.backend.get(VERSIONS_KEY)
        if raw is None:
            return []
        try:
            versions = _versions_adapter.validate_json(raw)
        except ValidationError as e:
            logger.error(f"Stored versions are corrupt: {e.error_count()} errors")
            raise AssistantError("Stored versions could not be read") from e
        logger.info(f"Loaded {len(versions)} saved versions")
        return versions

    def _persist(self) -> None:
        self.backend.set(VERSIONS_KEY, _versions_adapter.dump_json(self._versions, indent=2))

    def save(self, session: ConversationSession, name: str, kind: str | None = None) -> Version:
        """
        Save a deep copy of the session.

        Args:
            session: Session to snapshot
            name: Display name
            kind: Version kind; defaults to the output kind or the mode

        Returns:
            The new Version
        """
        if not name.strip():
            raise ValueError("Version name is required")
        version = Version(
            name=name.strip(),
            created_at=time.time(),
            kind=kind or session.output_kind or session.mode.value,
            snapshot=session.snapshot(),
        )
        self._versions.append(version)
        self._persist()
        logger.info(f"Saved version '{version.name}' ({version.id})")
        return version.model_copy(deep=True)

    def _find(self, version_id: str) -> Version | None:
        return next((v for v in self._versions if v.id == version_id), None)

    def list(self) -> list[Version]:
        """Copies of the saved versions, oldest first."""
        return [v.model_copy(deep=True) for v in self._versions]

    def get(self, version_id: str) -> Version | None:
        """A copy of one saved version; changing it never touches the store."""
        version = self._find(version_id)
        return version.model_copy(deep=True) if version is not None else None

    def delete(self, version_id: str) -> bool:
        """Delete a version. Returns False if no such version exists."""
        version = self._find(version_id)
        if version is None:
            return False
        self._versions.remove(version)
        self._persist()
        logger.info(f"Deleted version '{version.name}' ({version.id})")
        return True

    def restore(self, version: Version | str, dispatcher: RequestDispatcher) -> ConversationSession:
        """
        Rebuild a live session from a version.

        Raises:
            KeyError: If given an unknown version id
        """
        if isinstance(version, str):
            found = self.get(version)
            if found is None:
                raise KeyError(f"No version with id {version}")
            version = found
        logger.info(f"Restoring version '{version.name}' ({version.id})")
        return ConversationSession.from_snapshot(
            version.snapshot, dispatcher, config=self.config, flags=self.flags
        )

    def export_session(self, session: ConversationSession) -> bytes:
        """Serialize all versions plus the live session."""
        export = SessionExport(
            format_version=EXPORT_FORMAT_VERSION,
            exported_at=time.time(),
            versions=self.list(),
            session=session.snapshot(),
        )
        return export.model_dump_json(indent=2).encode("utf-8")

    def import_session(self, data: bytes | str, dispatcher: RequestDispatcher) -> ConversationSession:
        """
        Replace the saved versions from an export and return its live session.

        Nothing is replaced unless the whole export validates.

        Raises:
            SessionImportError: If the data is malformed
        """
        try:
            raw = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SessionImportError(f"Import is not valid JSON: {e}") from e

        if not isinstance(raw, dict):
            raise SessionImportError("Import must be a JSON object")
        if not isinstance(raw.get("versions"), list):
            raise SessionImportError("Import must contain an ordered list of versions")

        try:
            export = SessionExport.model_validate(raw)
        except ValidationError as e:
            raise SessionImportError(f"Import does not match the session format ({e.error_count()} errors)") from e

        for version in export.versions:
            _check_decisions(version.snapshot, f"version '{version.name}'")
        _check_decisions(export.session, "session")

        try:
            session = ConversationSession.from_snapshot(
                export.session, dispatcher, config=self.config, flags=self.flags
            )
        except AssistantError as e:
            raise SessionImportError(f"Import is inconsistent: {e}") from e

        self._versions = list(export.versions)
        self._persist()
        logger.info(f"Imported {len(self._versions)} versions")
        return session


__all__ = [
    "EXPORT_FORMAT_VERSION",
    "FileBackend",
    "InMemoryBackend",
    "PersistenceBackend",
    "VersionStore",
]
