"""Structured (JSON) responses from the model, decoded into pydantic schemas."""

from __future__ import annotations

import json
import logging
from typing import TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import StructuredDecodeFailure
from .session_schema import Feature

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class FeatureMatrix(BaseModel):
    """Features identified when reconciling two codebases."""

    features: list[Feature]


class CommitMessage(BaseModel):
    """Conventional commit message fields."""

    type: str
    scope: str | None = None
    subject: str
    body: str = ""

    def format(self) -> str:
        scope = f"({self.scope})" if self.scope else ""
        message = f"{self.type}{scope}: {self.subject}"
        if self.body.strip():
            message += f"\n\n{self.body.strip()}"
        return message


class VersionName(BaseModel):
    """Short title for a saved version."""

    name: str = Field(min_length=1, max_length=80)

    @field_validator("name")
    @classmethod
    def _strip_quotes(cls, value: str) -> str:
        return value.replace('"', "").replace("'", "").strip()


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```json"):
        text = text[7:].strip()
    elif text.startswith("```"):
        text = text[3:].strip()
    if text.endswith("```"):
        text = text[:-3].strip()
    return text


def schema_instruction(schema: type[BaseModel]) -> str:
    """Instruction appended to the system prompt for structured calls."""
    return (
        "Respond with a single JSON object and nothing else. "
        "It must validate against this JSON schema:\n"
        f"{json.dumps(schema.model_json_schema(), indent=2)}"
    )


def decode_structured(raw: str, schema: type[SchemaT]) -> SchemaT:
    """
    Decode a model response into the given schema.

    Args:
        raw: Raw response text, optionally wrapped in a ```json fence
        schema: Pydantic model class

    Returns:
        Validated schema instance

    Raises:
        StructuredDecodeFailure: If the text is not valid JSON for the schema
    """
    text = _strip_fences(raw)
    try:
        return schema.model_validate_json(text)
    except ValidationError as e:
        logger.warning(f"Structured response did not match {schema.__name__}: {e.error_count()} errors")
        raise StructuredDecodeFailure(
            f"Response did not match the expected {schema.__name__} shape"
        ) from e


__all__ = [
    "CommitMessage",
    "FeatureMatrix",
    "VersionName",
    "decode_structured",
    "schema_instruction",
]
