"""
Parse streamed model responses for code blocks and generated files.

Two extraction rules run over the accumulated text:
- the final code block, which only counts when its closing fence ends the
  response
- named file blocks, a markdown heading directly followed by a fence

Both are pure functions of the text, so they can be re-run on every chunk
for a live preview and once more when the stream completes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class CodeBlock:
    """A closed fenced code block."""

    info: str  # everything after the opening backticks, e.g. "python" or "markdown:README.md"
    content: str  # raw content between the fences
    start: int  # offset of the opening fence
    end: int  # offset just past the closing backticks
    heading: str | None = None  # heading line directly above the block

    @property
    def language(self) -> str:
        return self.info.split(":", 1)[0].strip().lower()


@dataclass(frozen=True)
class NamedFile:
    """A generated document extracted from a response."""

    name: str
    content: str


class ResponseParser:
    """
    Scan markdown text for fenced code blocks.

    Fences are line-initial runs of at least three backticks. A block is
    closed by a line holding only backticks, at least as many as the opener.
    Unclosed blocks (e.g. mid-stream) are ignored.
    """

    OPEN_FENCE = re.compile(r"^(`{3,})([^`]*)$")
    CLOSE_FENCE = re.compile(r"^(`{3,})[ \t]*$")
    HEADING = re.compile(r"^#{1,6}[ \t]+(.+?)[ \t]*#*[ \t]*$")
    NAME_TRIM = " \t`*_\"'"

    def parse_blocks(self, text: str) -> list[CodeBlock]:
        """
        Return every closed code block in document order.

        Args:
            text: Complete or partial response text

        Returns:
            List of CodeBlock objects
        """
        blocks: list[CodeBlock] = []
        offset = 0
        fence: str | None = None
        info = ""
        block_start = 0
        content_start = 0
        block_heading: str | None = None
        pending_heading: str | None = None

        for line in text.splitlines(keepends=True):
            line_start = offset
            offset += len(line)
            stripped = line.rstrip("\r\n")

            if fence is not None:
                close = self.CLOSE_FENCE.match(stripped)
                if close and len(close.group(1)) >= len(fence):
                    blocks.append(
                        CodeBlock(
                            info=info,
                            content=text[content_start:line_start],
                            start=block_start,
                            end=line_start + len(close.group(1)),
                            heading=block_heading,
                        )
                    )
                    fence = None
                continue

            opening = self.OPEN_FENCE.match(stripped)
            if opening:
                fence = opening.group(1)
                info = opening.group(2).strip()
                block_start = line_start
                content_start = offset
                block_heading = pending_heading
                pending_heading = None
                continue

            heading = self.HEADING.match(stripped)
            if heading:
                pending_heading = heading.group(1)
            elif stripped.strip():
                pending_heading = None

        return blocks

    def final_code_block(self, text: str) -> str | None:
        """
        Extract the authoritative revision from a response.

        Only the last block qualifies, and only when its closing fence is
        the end of the text (trailing whitespace ignored). Any language tag
        is accepted.

        Args:
            text: Response text

        Returns:
            Trimmed block content, or None when no trailing block exists
        """
        blocks = self.parse_blocks(text)
        if not blocks:
            return None
        last = blocks[-1]
        if text[last.end:].strip():
            return None
        return last.content.strip()

    def named_files(self, text: str) -> list[NamedFile]:
        """
        Extract named generated files in document order.

        A block is named by the heading directly above it (blank lines
        allowed in between) or, failing that, by a `lang:filename` info
        string.

        Args:
            text: Response text

        Returns:
            List of NamedFile objects (possibly empty)
        """
        files: list[NamedFile] = []
        for block in self.parse_blocks(text):
            name = None
            if block.heading:
                name = self._clean_name(block.heading)
            if not name and ":" in block.info:
                name = self._clean_name(block.info.split(":", 1)[1])
            if name:
                files.append(NamedFile(name=name, content=block.content.strip()))
        return files

    def _clean_name(self, raw: str) -> str:
        name = raw.strip(self.NAME_TRIM)
        if name.lower().startswith("file:"):
            name = name[5:].strip(self.NAME_TRIM)
        return name


_parser = ResponseParser()


def extract_final_code_block(text: str) -> str | None:
    """Convenience function for ResponseParser.final_code_block."""
    return _parser.final_code_block(text)


def extract_named_files(text: str) -> list[NamedFile]:
    """Convenience function for ResponseParser.named_files."""
    return _parser.named_files(text)


class StreamAggregator:
    """
    Accumulate streamed chunks into a running buffer.

    `code_block` is recomputed on every append so callers can show a live
    preview; finish() returns the committed artifacts.
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._text = ""
        self.code_block: str | None = None

    @property
    def text(self) -> str:
        return self._text

    def append(self, chunk: str) -> str:
        """Append a chunk and return the full text so far."""
        self._parts.append(chunk)
        self._text += chunk
        self.code_block = extract_final_code_block(self._text)
        return self._text

    def finish(self) -> tuple[str | None, list[NamedFile]]:
        """Run both extractions on the completed text."""
        self.code_block = extract_final_code_block(self._text)
        return self.code_block, extract_named_files(self._text)

    def __len__(self) -> int:
        return len(self._parts)


__all__ = [
    "CodeBlock",
    "NamedFile",
    "ResponseParser",
    "StreamAggregator",
    "extract_final_code_block",
    "extract_named_files",
]
