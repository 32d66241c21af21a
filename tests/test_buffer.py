"""Tests for ptyhub.pty.buffer.OutputBuffer."""

from __future__ import annotations

import re

import pytest

from ptyhub.pty.buffer import OutputBuffer


class TestOutputBufferBasics:
    def test_empty(self) -> None:
        buf = OutputBuffer()
        assert buf.length == 0
        assert buf.total_lines == 0
        assert buf.read_raw() == ""
        assert buf.byte_length == 0

    def test_append_complete_lines(self) -> None:
        buf = OutputBuffer()
        buf.append("line1\nline2\nline3\n")
        assert buf.length == 3
        assert buf.read() == ["line1", "line2", "line3"]
        assert buf.pending == ""

    def test_crlf_is_one_delimiter(self) -> None:
        buf = OutputBuffer()
        buf.append("line1\r\nline2\r\n")
        assert buf.read() == ["line1", "line2"]
        assert buf.read_raw() == "line1\r\nline2\r\n"

    def test_fragment_stays_pending(self) -> None:
        buf = OutputBuffer()
        buf.append("no newline yet")
        assert buf.length == 0
        assert buf.pending == "no newline yet"
        assert buf.read_raw() == "no newline yet"

    def test_line_split_across_chunks(self) -> None:
        buf = OutputBuffer()
        buf.append("hel")
        buf.append("lo\r")
        buf.append("\nwor")
        buf.append("ld\n")
        assert buf.read() == ["hello", "world"]

    def test_empty_lines_kept(self) -> None:
        buf = OutputBuffer()
        buf.append("a\n\nb\n")
        assert buf.read() == ["a", "", "b"]

    def test_escape_sequences_untouched(self) -> None:
        buf = OutputBuffer()
        buf.append("\x1b[31mred\x1b[0m\n")
        assert buf.read() == ["\x1b[31mred\x1b[0m"]
        assert buf.read_raw() == "\x1b[31mred\x1b[0m\n"

    def test_empty_chunk_ignored(self) -> None:
        buf = OutputBuffer()
        buf.append("")
        assert buf.read_raw() == ""
        assert buf.length == 0


class TestOutputBufferFlush:
    def test_flush_commits_fragment(self) -> None:
        buf = OutputBuffer()
        buf.append("done\nprompt$ ")
        before = buf.length
        buf.flush()
        assert buf.length == before + 1
        assert buf.read(before) == ["prompt$ "]

    def test_flush_without_delimiter(self) -> None:
        buf = OutputBuffer()
        buf.append("partial")
        buf.flush()
        assert buf.length == 1
        assert buf.read() == ["partial"]
        assert buf.pending == ""

    def test_flush_idempotent(self) -> None:
        buf = OutputBuffer()
        buf.append("x")
        buf.flush()
        buf.flush()
        assert buf.length == 1

    def test_flush_noop_when_nothing_pending(self) -> None:
        buf = OutputBuffer()
        buf.append("a\n")
        buf.flush()
        assert buf.length == 1

    def test_flush_keeps_raw(self) -> None:
        buf = OutputBuffer()
        buf.append("tail")
        buf.flush()
        assert buf.read_raw() == "tail"


class TestOutputBufferRead:
    def _filled(self, n: int = 10) -> OutputBuffer:
        buf = OutputBuffer()
        buf.append("".join(f"line {i}\n" for i in range(n)))
        return buf

    def test_read_with_offset(self) -> None:
        buf = self._filled()
        assert buf.read(offset=5, limit=3) == ["line 5", "line 6", "line 7"]

    def test_read_without_limit(self) -> None:
        buf = self._filled()
        assert buf.read(offset=8) == ["line 8", "line 9"]

    def test_read_limit_past_end(self) -> None:
        buf = self._filled()
        assert buf.read(offset=9, limit=5) == ["line 9"]

    def test_read_beyond_end(self) -> None:
        buf = self._filled(1)
        assert buf.read(offset=5, limit=10) == []

    def test_read_at_length(self) -> None:
        buf = self._filled(3)
        assert buf.read(offset=buf.length) == []

    def test_negative_offset_clamped(self) -> None:
        buf = self._filled(3)
        assert buf.read(offset=-2, limit=1) == ["line 0"]

    def test_zero_limit(self) -> None:
        buf = self._filled(3)
        assert buf.read(offset=0, limit=0) == []


class TestOutputBufferSearch:
    def test_search_basic(self) -> None:
        buf = OutputBuffer()
        buf.append("error: something failed\ninfo: all good\nerror: another failure\n")
        results = buf.search("error")
        assert results == [(0, "error: something failed"), (2, "error: another failure")]

    def test_search_regex(self) -> None:
        buf = OutputBuffer()
        buf.append("addr: 0x401000\naddr: 0x402000\nno address here\n")
        assert len(buf.search(r"0x[0-9a-f]+")) == 2

    def test_search_compiled_pattern(self) -> None:
        buf = OutputBuffer()
        buf.append("Warning\nwarning\n")
        assert len(buf.search(re.compile("warning", re.IGNORECASE))) == 2

    def test_search_no_matches(self) -> None:
        buf = OutputBuffer()
        buf.append("hello\n")
        assert buf.search("xyz") == []

    def test_search_ignores_pending_fragment(self) -> None:
        buf = OutputBuffer()
        buf.append("match\nmatch again")
        assert buf.search("match") == [(0, "match")]

    def test_search_returns_everything(self) -> None:
        buf = OutputBuffer()
        buf.append("".join(f"match {i}\n" for i in range(200)))
        assert len(buf.search("match")) == 200

    def test_search_invalid_regex(self) -> None:
        buf = OutputBuffer()
        buf.append("hello\n")
        with pytest.raises(re.error):
            buf.search("[invalid")


class TestOutputBufferRaw:
    def test_byte_length_ascii(self) -> None:
        buf = OutputBuffer()
        buf.append("line1\r\nline2\r\nline3\r\n")
        assert buf.byte_length == 21

    def test_byte_length_utf8(self) -> None:
        buf = OutputBuffer()
        buf.append("héllo")
        assert buf.byte_length == len("héllo".encode("utf-8"))

    def test_raw_concatenates_chunks(self) -> None:
        buf = OutputBuffer()
        for chunk in ("a", "b\r\n", "c"):
            buf.append(chunk)
        assert buf.read_raw() == "ab\r\nc"


class TestOutputBufferBounds:
    def test_unbounded_by_default(self) -> None:
        buf = OutputBuffer()
        buf.append("x\n" * 100_000)
        assert buf.length == 100_000

    def test_max_lines_drops_oldest(self) -> None:
        buf = OutputBuffer(max_lines=3)
        buf.append("a\nb\nc\nd\n")
        assert buf.read() == ["b", "c", "d"]
        assert buf.length == 3
        assert buf.total_lines == 4

    def test_max_bytes_drops_oldest_chunks(self) -> None:
        buf = OutputBuffer(max_bytes=6)
        buf.append("aaa")
        buf.append("bbb")
        buf.append("ccc")
        assert buf.read_raw() == "bbbccc"
        assert buf.byte_length == 6

    def test_max_bytes_keeps_latest_chunk(self) -> None:
        buf = OutputBuffer(max_bytes=2)
        buf.append("too long")
        assert buf.read_raw() == "too long"


class TestOutputBufferClear:
    def test_clear(self) -> None:
        buf = OutputBuffer()
        buf.append("line 1\nline 2\npending")
        buf.clear()
        assert buf.length == 0
        assert buf.total_lines == 0
        assert buf.pending == ""
        assert buf.read_raw() == ""
        assert buf.byte_length == 0

    def test_append_after_clear(self) -> None:
        buf = OutputBuffer()
        buf.append("old")
        buf.clear()
        buf.append("new\n")
        assert buf.read() == ["new"]
