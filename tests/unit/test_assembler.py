"""Unit tests for template rendering."""

from __future__ import annotations

import asyncio
import re

import pytest

from ctxtower.assembler import ContextAssembler, WrapMetadata, iso_timestamp, substitute, trim_blank_lines
from ctxtower.config import OutputFormat, WrapperFormat
from ctxtower.errors import RenderError

pytestmark = pytest.mark.unit

ROOT = "/ws"


def _assembler(fake_fs, **fmt) -> ContextAssembler:
    return ContextAssembler(ROOT, fs=fake_fs, fmt=OutputFormat(**fmt))


class TestRenderBlock:
    """Tests for ContextAssembler.render_block."""

    def test_round_trip_example(self, fake_fs) -> None:
        """Test the canonical single-file template."""
        path = fake_fs.add_file("src/a.ts", "X")
        asm = _assembler(fake_fs, block_template='<file name="{fileNameWithExtension}">{fileContent}</file>')
        assert asyncio.run(asm.render_block(path)) == '<file name="a.ts">X</file>'

    def test_all_placeholders(self, fake_fs) -> None:
        """Test every block placeholder."""
        path = fake_fs.add_file("src/util/helpers.py", "pass")
        template = "{fileNameWithExtension}|{rawFilePath}|{fileName}|{fileExtension}|{fullPath}|{fileContent}"
        asm = _assembler(fake_fs, block_template=template)
        result = asyncio.run(asm.render_block(path))
        assert result == "helpers.py|/src/util/helpers.py|helpers|.py|/ws/src/util/helpers.py|pass"

    def test_dotfile_has_no_extension(self, fake_fs) -> None:
        """Test name splitting for a file that starts with a dot."""
        path = fake_fs.add_file(".env")
        asm = _assembler(fake_fs, block_template="{fileName}:{fileExtension}")
        assert asyncio.run(asm.render_block(path)) == ".env:"

    def test_placeholders_in_content_are_not_expanded(self, fake_fs) -> None:
        """Test that placeholder-like file content is kept literally."""
        path = fake_fs.add_file("a.md", "see {fileName} and {rawFilePath}")
        asm = _assembler(fake_fs, block_template="[{fileName}] {fileContent}")
        assert asyncio.run(asm.render_block(path)) == "[a] see {fileName} and {rawFilePath}"

    def test_unknown_placeholders_pass_through(self, fake_fs) -> None:
        """Test that unrecognised tokens are left as-is."""
        path = fake_fs.add_file("a.py", "x")
        asm = _assembler(fake_fs, block_template="{language} {fileContent}")
        assert asyncio.run(asm.render_block(path)) == "{language} x"

    def test_unreadable_file_raises_named_error(self, fake_fs) -> None:
        """Test that a missing file raises RenderError naming the file."""
        asm = _assembler(fake_fs)
        with pytest.raises(RenderError) as exc_info:
            asyncio.run(asm.render_block("/ws/missing.py"))
        assert exc_info.value.path == "/ws/missing.py"
        assert "/ws/missing.py" in str(exc_info.value)


class TestJoin:
    """Tests for ContextAssembler.join."""

    def test_default_separator_is_newline(self, fake_fs) -> None:
        """Test joining with the default separator."""
        assert _assembler(fake_fs).join(["a", "b"]) == "a\nb"

    def test_custom_separator(self, fake_fs) -> None:
        """Test joining with a configured separator."""
        assert _assembler(fake_fs, block_separator="\n---\n").join(["a", "b"]) == "a\n---\nb"

    def test_trims_blank_lines_when_enabled(self, fake_fs) -> None:
        """Test per-block trimming of surrounding blank lines."""
        asm = _assembler(fake_fs, block_trim_lines=True)
        assert asm.join(["\n\n  a\n", "b\n \n"]) == "  a\nb"

    def test_keeps_blank_lines_when_disabled(self, fake_fs) -> None:
        """Test that blocks are untouched with trimming off."""
        asm = _assembler(fake_fs, block_trim_lines=False)
        assert asm.join(["\na\n", "b"]) == "\na\n\nb"


class TestWrap:
    """Tests for ContextAssembler.wrap."""

    def test_wrapper_placeholders(self, fake_fs) -> None:
        """Test substitution of every wrapper placeholder."""
        template = "{timestamp};{fileCount};{workspaceRoot};{outputFileName};{treeBlock};{githubIssues};{ticket};{blocks}"
        asm = _assembler(fake_fs, wrapper_format=WrapperFormat(template=template))
        metadata = WrapMetadata(
            file_count=2,
            output_file_name="context.txt",
            tree_block="TREE",
            github_issues="ISSUES",
            placeholders={"ticket": "T-1"},
            timestamp="2024-01-01T00:00:00+00:00",
        )
        result = asm.wrap("BLOCKS", metadata)
        assert result == "2024-01-01T00:00:00+00:00;2;/ws;context.txt;TREE;ISSUES;T-1;BLOCKS"

    def test_timestamp_defaults_to_now(self, fake_fs) -> None:
        """Test that a render-time UTC timestamp is filled in."""
        asm = _assembler(fake_fs, wrapper_format=WrapperFormat(template="{timestamp}"))
        result = asm.wrap("", WrapMetadata(file_count=0))
        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", result)

    def test_issue_text_is_not_expanded(self, fake_fs) -> None:
        """Test that placeholder text inside issue text is kept literally."""
        path = fake_fs.add_file("a.py", "SECRET_CONTENT")
        asm = _assembler(
            fake_fs,
            block_template="{fileContent}",
            wrapper_format=WrapperFormat(template="{githubIssues}|{blocks}"),
        )
        metadata = WrapMetadata(file_count=1, github_issues="Issue: template uses {blocks} and {fileCount}")
        result = asyncio.run(asm.render([path], metadata))
        assert result == "Issue: template uses {blocks} and {fileCount}|SECRET_CONTENT"
        assert result.count("SECRET_CONTENT") == 1

    def test_extra_placeholders_do_not_override_builtins(self, fake_fs) -> None:
        """Test that externally supplied values cannot replace the bundle."""
        asm = _assembler(fake_fs, wrapper_format=WrapperFormat(template="{ticket}:{blocks}"))
        metadata = WrapMetadata(file_count=0, placeholders={"blocks": "X", "ticket": "{blocks}"})
        assert asm.wrap("B", metadata) == "{blocks}:B"

    def test_placeholders_in_blocks_are_kept(self, fake_fs) -> None:
        """Test that wrapper placeholders inside file blocks are kept literally."""
        asm = _assembler(fake_fs, wrapper_format=WrapperFormat(template="<{fileCount}>{blocks}"))
        assert asm.wrap("{fileCount}", WrapMetadata(file_count=3)) == "<3>{fileCount}"

    def test_disabled_wrapper_returns_joined_verbatim(self, fake_fs) -> None:
        """Test that a None wrapper yields the joined blocks byte for byte."""
        a = fake_fs.add_file("a.py", "one")
        b = fake_fs.add_file("b.py", "two")
        asm = _assembler(fake_fs, block_template="{fileContent}", block_separator="\n\n", wrapper_format=None)
        result = asyncio.run(asm.render([a, b]))
        assert result == asm.join(["one", "two"]) == "one\n\ntwo"


class TestRender:
    """Tests for the full render pipeline."""

    def test_default_templates(self, fake_fs) -> None:
        """Test rendering with the default block and wrapper templates."""
        path = fake_fs.add_file("src/a.py", "print(1)\n")
        asm = _assembler(fake_fs)
        result = asyncio.run(asm.render([path]))
        assert result == (
            "<context>\n<project_files>\n"
            '<file name="a.py" path="/src/a.py">\nprint(1)\n\n</file>\n'
            "</project_files>\n</context>"
        )

    def test_unreadable_file_aborts_whole_render(self, fake_fs) -> None:
        """Test that one unreadable file fails the render with no output."""
        a = fake_fs.add_file("a.py", "ok")
        locked = fake_fs.add_file("locked.py", "no")
        fake_fs.denied.add(locked)
        asm = _assembler(fake_fs)
        with pytest.raises(RenderError, match="locked.py"):
            asyncio.run(asm.render([a, locked]))


class TestHelpers:
    """Tests for module-level helpers."""

    def test_substitute_never_rescans_values(self) -> None:
        """Test that a substituted value is not expanded again."""
        assert substitute("{a}{b}", {"a": "{b}", "b": "x"}) == "{b}x"

    def test_substitute_keeps_unknown_placeholders(self) -> None:
        """Test that unknown and malformed tokens pass through."""
        assert substitute("{a} {c} { a } {}", {"a": "1"}) == "1 {c} { a } {}"

    def test_iso_timestamp_format(self) -> None:
        """Test millisecond precision and the Z suffix."""
        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", iso_timestamp())

    def test_trim_blank_lines_keeps_inner_lines(self) -> None:
        """Test that only leading and trailing blank lines go."""
        assert trim_blank_lines("\n\na\n\nb\n\n") == "a\n\nb"
