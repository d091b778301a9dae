"""
Configuration management for codeassist.

Static settings live in ~/.codeassist/config.json; feature flags are
process-wide state stored through the persistence backend so they follow
the same storage as saved versions.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .version_store import PersistenceBackend

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".codeassist" / "config.json"
FEATURE_FLAGS_KEY = "feature_flags"


def write_atomic(path: Path, data: bytes) -> None:
    """Replace `path` with `data`; readers see the old file or the new one, never a partial write."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False)
    try:
        with tmp:
            tmp.write(data)
        os.replace(tmp.name, path)
    except Exception:
        Path(tmp.name).unlink(missing_ok=True)
        raise


def _filter_dataclass_fields(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


@dataclass
class ModelConfig:
    """Model selection per task class."""

    # Reviews, audits, comparisons, merges and chat
    core_analysis: str = "sonnet"
    # Commit messages and version names
    fast_tasks: str = "haiku"

    # 0.0-0.3 = deterministic, 0.4-0.7 = balanced
    temperature: float = 0.3
    max_tokens: int = 8192


@dataclass
class StorageConfig:
    """Where saved versions and flags are kept."""

    data_dir: str = "~/.codeassist/data"

    @property
    def path(self) -> Path:
        return Path(self.data_dir).expanduser()


@dataclass
class AssistantConfig:
    """
    Complete codeassist configuration.

    Environment overrides:
        CODEASSIST_MODEL: core analysis model
        CODEASSIST_FAST_MODEL: fast task model
        CODEASSIST_DATA_DIR: storage directory
    """

    models: ModelConfig = field(default_factory=ModelConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> AssistantConfig:
        """Load configuration from file, then apply environment overrides."""
        if path is None:
            path = CONFIG_PATH

        data: dict[str, Any] = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Ignoring unreadable config {path}: {e}")

        config = cls(
            models=ModelConfig(**_filter_dataclass_fields(data.get("models", {}), ModelConfig)),
            storage=StorageConfig(**_filter_dataclass_fields(data.get("storage", {}), StorageConfig)),
        )

        if os.getenv("CODEASSIST_MODEL"):
            config.models.core_analysis = os.environ["CODEASSIST_MODEL"]
        if os.getenv("CODEASSIST_FAST_MODEL"):
            config.models.fast_tasks = os.environ["CODEASSIST_FAST_MODEL"]
        if os.getenv("CODEASSIST_DATA_DIR"):
            config.storage.data_dir = os.environ["CODEASSIST_DATA_DIR"]
        return config

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = CONFIG_PATH

        data = {"models": asdict(self.models), "storage": asdict(self.storage)}
        write_atomic(path, json.dumps(data, indent=2).encode("utf-8"))


@dataclass
class FeatureFlags:
    """
    Toggles for optional modes and behaviors.

    - workbench_mode: allow switching to workbench mode
    - code_audit_mode: allow switching to audit mode
    - multi_file_context: append project context files to primary prompts
    """

    workbench_mode: bool = False
    code_audit_mode: bool = False
    multi_file_context: bool = False

    @classmethod
    def load(cls, backend: PersistenceBackend) -> FeatureFlags:
        """Load flags from the backend, falling back to defaults."""
        raw = backend.get(FEATURE_FLAGS_KEY)
        if raw is None:
            return cls()
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Stored feature flags are unreadable, using defaults: {e}")
            return cls()
        if not isinstance(data, dict):
            logger.warning("Stored feature flags are not an object, using defaults")
            return cls()
        return cls(**_filter_dataclass_fields(data, cls))

    def save(self, backend: PersistenceBackend) -> None:
        backend.set(FEATURE_FLAGS_KEY, json.dumps(asdict(self)).encode("utf-8"))

    def set(self, name: str, value: bool) -> None:
        """Set a flag by name."""
        if name not in {f.name for f in fields(self)}:
            raise KeyError(f"Unknown feature flag: {name}")
        setattr(self, name, bool(value))


__all__ = [
    "AssistantConfig",
    "CONFIG_PATH",
    "FEATURE_FLAGS_KEY",
    "FeatureFlags",
    "ModelConfig",
    "StorageConfig",
    "write_atomic",
]
