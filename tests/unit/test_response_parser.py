"""Tests for response_parser: trailing code block and named file extraction."""

from codeassist.response_parser import (
    ResponseParser,
    StreamAggregator,
    extract_final_code_block,
    extract_named_files,
)


class TestFinalCodeBlock:
    """Tests for extract_final_code_block."""

    def test_returns_only_trailing_block(self):
        """Of two blocks, only the one closing the text is returned."""
        text = (
            "Here is an example:\n"
            "```python\nprint('illustration')\n```\n"
            "And the fixed version:\n"
            "```python\ndef add(a, b):\n    return a + b\n```"
        )
        assert extract_final_code_block(text) == "def add(a, b):\n    return a + b"

    def test_trailing_whitespace_ignored(self):
        text = "Fixed:\n```js\nconst x = 1;\n```\n\n   \n"
        assert extract_final_code_block(text) == "const x = 1;"

    def test_text_after_last_block_means_absent(self):
        text = "```python\nx = 1\n```\nLet me know if you need anything else."
        assert extract_final_code_block(text) is None

    def test_no_blocks(self):
        assert extract_final_code_block("Looks good to me.") is None

    def test_unclosed_block_is_absent(self):
        """A block still being streamed does not count."""
        text = "Fixed:\n```python\ndef add(a, b):\n    return a +"
        assert extract_final_code_block(text) is None

    def test_any_language_tag_accepted(self):
        text = "```rust\nfn main() {}\n```"
        assert extract_final_code_block(text) == "fn main() {}"

    def test_untagged_block(self):
        assert extract_final_code_block("```\nplain\n```") == "plain"

    def test_longer_fence_contains_shorter_fences(self):
        """A four-backtick fence can wrap content holding triple backticks."""
        text = "````markdown\n# Title\n```python\nx = 1\n```\n````"
        assert extract_final_code_block(text) == "# Title\n```python\nx = 1\n```"

    def test_fence_must_start_the_line(self):
        text = "Use ```inline``` fences like this."
        assert extract_final_code_block(text) is None

    def test_crlf_line_endings(self):
        text = "Fixed:\r\n```python\r\nx = 2\r\n```\r\n"
        assert extract_final_code_block(text) == "x = 2"


class TestNamedFiles:
    """Tests for extract_named_files."""

    def test_heading_followed_by_block(self):
        text = (
            "Generated documentation.\n\n"
            "### README.md\n"
            "```markdown\n# Project\n```\n\n"
            "### `docs/api.md`\n\n"
            "```markdown\n## API\n```\n"
        )
        files = extract_named_files(text)
        assert [f.name for f in files] == ["README.md", "docs/api.md"]
        assert files[0].content == "# Project"
        assert files[1].content == "## API"

    def test_heading_interrupted_by_prose_is_not_a_name(self):
        text = "### Overview\nSome prose here.\n```python\nx = 1\n```"
        assert extract_named_files(text) == []

    def test_info_string_filename(self):
        text = "```python:src/app.py\nprint('hi')\n```"
        files = extract_named_files(text)
        assert len(files) == 1
        assert files[0].name == "src/app.py"

    def test_file_prefix_stripped(self):
        text = "## File: setup.cfg\n```ini\n[metadata]\n```"
        assert extract_named_files(text)[0].name == "setup.cfg"

    def test_no_matches(self):
        assert extract_named_files("```python\nx = 1\n```") == []


class TestResponseParser:
    """Tests for the block scanner itself."""

    def test_blocks_in_document_order(self):
        parser = ResponseParser()
        text = "```a\n1\n```\ntext\n```b\n2\n```"
        blocks = parser.parse_blocks(text)
        assert [b.language for b in blocks] == ["a", "b"]
        assert text[blocks[1].end:] == ""

    def test_language_strips_filename(self):
        block = ResponseParser().parse_blocks("```Python:main.py\nx\n```")[0]
        assert block.language == "python"
        assert block.info == "Python:main.py"


class TestStreamAggregator:
    """Tests for StreamAggregator."""

    def test_live_preview_updates_per_chunk(self):
        aggregator = StreamAggregator()
        aggregator.append("Fixed:\n```python\nx = ")
        assert aggregator.code_block is None
        aggregator.append("1\n```")
        assert aggregator.code_block == "x = 1"
        aggregator.append("\nDone.")
        assert aggregator.code_block is None
        assert len(aggregator) == 3

    def test_finish_returns_artifacts(self):
        aggregator = StreamAggregator()
        for chunk in ["### notes.md\n", "```markdown\nhello\n```"]:
            aggregator.append(chunk)
        code, files = aggregator.finish()
        assert code == "hello"
        assert files[0].name == "notes.md"
        assert aggregator.text.endswith("```")
