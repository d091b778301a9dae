"""
Error taxonomy for the session orchestration core.

Every failure raised by the remote collaborator is translated into one of
these classes at the dispatcher boundary, so sessions, chat channels and the
decision tracker only ever see classified errors.
"""

from __future__ import annotations

import asyncio

import anthropic
import openai

# Upper bound on the description shown to the user
MAX_DESCRIPTION_LENGTH = 200


class AssistantError(Exception):
    """Base class for all codeassist errors."""

    pass


class ConfigurationFailure(AssistantError):
    """A fatal precondition is missing (e.g. no API credential)."""

    pass


class TransportFailure(AssistantError):
    """The remote call failed after dispatch."""

    pass


class StructuredDecodeFailure(AssistantError):
    """A structured response did not match the expected shape."""

    pass


class SessionStateError(AssistantError):
    """An operation was invoked from a state that does not allow it."""

    pass


class DecisionError(AssistantError):
    """Invalid feature decision operation."""

    pass


class SessionImportError(AssistantError):
    """A session export could not be imported."""

    pass


def _short(text: str) -> str:
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    if len(first_line) > MAX_DESCRIPTION_LENGTH:
        first_line = first_line[: MAX_DESCRIPTION_LENGTH - 3] + "..."
    return first_line


def classify_exception(exc: BaseException) -> AssistantError:
    """
    Translate an arbitrary exception into the codeassist taxonomy.

    Already-classified errors pass through unchanged. Provider SDK errors
    are reduced to a short description without transport internals.

    Args:
        exc: Exception raised by a remote call

    Returns:
        Classified AssistantError
    """
    if isinstance(exc, AssistantError):
        return exc

    if isinstance(exc, (anthropic.AuthenticationError, openai.AuthenticationError)):
        return ConfigurationFailure("API key is invalid or has insufficient permissions")

    if isinstance(exc, (anthropic.APIStatusError, openai.APIStatusError)):
        return TransportFailure(f"API returned status {exc.status_code}")

    if isinstance(exc, (anthropic.APITimeoutError, openai.APITimeoutError, asyncio.TimeoutError)):
        return TransportFailure("Request timed out")

    if isinstance(exc, (anthropic.APIConnectionError, openai.APIConnectionError)):
        return TransportFailure("Could not reach the model provider")

    if isinstance(exc, (anthropic.APIError, openai.APIError)):
        return TransportFailure(f"API error: {_short(str(exc))}")

    if isinstance(exc, OSError):
        return TransportFailure(f"Network error: {_short(str(exc))}")

    description = _short(str(exc)) or type(exc).__name__
    return TransportFailure(f"Request failed: {description}")


__all__ = [
    "AssistantError",
    "ConfigurationFailure",
    "DecisionError",
    "SessionImportError",
    "SessionStateError",
    "StructuredDecodeFailure",
    "TransportFailure",
    "classify_exception",
]
