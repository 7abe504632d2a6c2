"""Tests for dad/channels/formatting.py."""

from __future__ import annotations

from dad.channels.formatting import (
    SLACK_MAX_LEN,
    TOO_BUSY_TEXT,
    chunk_message,
    describe_error,
    markdown_to_slack,
)
from dad.errors import ProcessError, SpawnError, ThreadBusy, TooBusy


class TestMarkdownToSlack:
    def test_bold(self) -> None:
        assert markdown_to_slack("this is **important**") == "this is *important*"

    def test_headers_become_bold(self) -> None:
        assert markdown_to_slack("## Summary\nbody") == "*Summary*\nbody"

    def test_links(self) -> None:
        assert markdown_to_slack("see [docs](https://x.dev/a)") == "see <https://x.dev/a|docs>"

    def test_code_block_untouched(self) -> None:
        text = "```\n**not bold** [a](b)\n# not a header\n```"
        assert markdown_to_slack(text) == text

    def test_inline_code_untouched(self) -> None:
        assert markdown_to_slack("run `**x**` now **ok**") == "run `**x**` now *ok*"

    def test_plain_text_unchanged(self) -> None:
        assert markdown_to_slack("nothing special here") == "nothing special here"


class TestChunkMessage:
    def test_short_message_single_chunk(self) -> None:
        assert chunk_message("hello") == ["hello"]

    def test_every_chunk_within_limit(self) -> None:
        text = ("word " * 2000).strip()
        chunks = chunk_message(text)
        assert len(chunks) > 1
        assert all(len(c) <= SLACK_MAX_LEN for c in chunks)

    def test_prefers_paragraph_boundary(self) -> None:
        first = "a" * 3000
        second = "b" * 3000
        chunks = chunk_message(f"{first}\n\n{second}")
        assert chunks == [first, second]

    def test_falls_back_to_line_boundary(self) -> None:
        first = "a" * 3000
        second = "b" * 3000
        chunks = chunk_message(f"{first}\n{second}")
        assert chunks == [first, second]

    def test_early_boundary_ignored(self) -> None:
        text = "short\n\n" + "c" * 5000
        chunks = chunk_message(text)
        assert len(chunks[0]) == SLACK_MAX_LEN

    def test_hard_split_without_boundaries(self) -> None:
        chunks = chunk_message("z" * 8000)
        assert [len(c) for c in chunks] == [SLACK_MAX_LEN, SLACK_MAX_LEN, 8000 - 2 * SLACK_MAX_LEN]

    def test_content_preserved(self) -> None:
        chunks = chunk_message("x" * 5000)
        assert "".join(chunks) == "x" * 5000


class TestDescribeError:
    def test_kinds_are_distinct(self) -> None:
        messages = {
            describe_error(ThreadBusy("k")),
            describe_error(TooBusy("k", 3)),
            describe_error(SpawnError("no binary")),
            describe_error(ProcessError(1, "stack trace here")),
            describe_error(RuntimeError("weird")),
        }
        assert len(messages) == 5

    def test_too_busy(self) -> None:
        assert describe_error(TooBusy("k", 3)) == TOO_BUSY_TEXT

    def test_process_error_shows_excerpt(self) -> None:
        text = describe_error(ProcessError(1, "x" * 1000))
        assert "x" * 200 in text
        assert "x" * 201 not in text

    def test_process_error_without_output(self) -> None:
        assert "exit code 3" in describe_error(ProcessError(3, ""))

    def test_generic(self) -> None:
        assert describe_error(RuntimeError("weird")) == "_Error: weird_"
        assert describe_error(RuntimeError()) == "_Error: something went wrong._"
