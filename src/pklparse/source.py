"""Source text representation and span tracking for diagnostics."""

from __future__ import annotations

import bisect
from dataclasses import dataclass


@dataclass(frozen=True)
class Span:
    """A half-open range ``[start, end)`` of offsets into the source text."""

    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start

    def __str__(self) -> str:
        return f"{self.start}..{self.end}"

    def cover(self, other: Span) -> Span:
        """Return the smallest span containing both spans."""
        return Span(min(self.start, other.start), max(self.end, other.end))


class SourceText:
    """An in-memory source buffer with line/column lookup."""

    def __init__(self, text: str, filename: str = "<input>") -> None:
        self.text = text
        self.filename = filename
        self.lines = text.splitlines()
        self._line_starts = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                self._line_starts.append(i + 1)

    def line_col(self, offset: int) -> tuple[int, int]:
        """Return the 1-indexed (line, column) of an offset."""
        offset = max(0, min(offset, len(self.text)))
        line = bisect.bisect_right(self._line_starts, offset) - 1
        return line + 1, offset - self._line_starts[line] + 1

    def line_at(self, n: int) -> str:
        """Return the 1-indexed line, or empty string if out of range."""
        if 1 <= n <= len(self.lines):
            return self.lines[n - 1]
        return ""

    def span_text(self, span: Span) -> str:
        """Extract the text covered by a span."""
        return self.text[span.start:span.end]

    def byte_span(self, span: Span) -> Span:
        """Convert a code-point span to UTF-8 byte offsets."""
        start = len(self.text[:span.start].encode("utf-8"))
        length = len(self.text[span.start:span.end].encode("utf-8"))
        return Span(start, start + length)
