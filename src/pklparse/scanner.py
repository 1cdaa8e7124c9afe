"""Character-level cursor shared by the literal and grammar parsers.

The scanner has two modes. In loose mode ``skip_trivia`` consumes
whitespace and comments between tokens; in tight mode it does nothing,
which keeps atomic tokens (identifiers, numbers, string bodies) from
absorbing surrounding trivia.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, NoReturn

from pklparse.ast_nodes import DocComment, IdentKind, Identifier
from pklparse.errors import Diagnostic, DiagnosticLabel, Severity, Suggestion
from pklparse.source import Span

KEYWORDS = frozenset({
    "abstract", "amends", "as", "class", "const", "else", "extends",
    "external", "false", "fixed", "for", "function", "hidden", "if",
    "import", "in", "is", "let", "local", "module", "new", "nothing",
    "null", "open", "out", "outer", "read", "super", "this", "throw",
    "trace", "true", "typealias", "unknown", "when",
})

# Not used by the grammar yet, but never valid as plain identifiers.
RESERVED_WORDS = frozenset({
    "case", "delete", "override", "protected", "record", "switch", "vararg",
})

_WHITESPACE = " \t\r\n\f\ufeff"


def is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch in "_$"


def is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


class Mode(Enum):
    LOOSE = "loose"
    TIGHT = "tight"


class ParseFailure(Exception):
    """Raised after an error diagnostic has been recorded.

    Carries no information of its own; the caller resynchronizes and
    the diagnostic list already explains what went wrong.
    """


@dataclass(frozen=True)
class Checkpoint:
    pos: int
    doc_count: int
    attached: frozenset[int]
    run_start: int
    trivia_end: int
    diagnostic_count: int


class Scanner:
    """A cursor over source text with trivia skipping and checkpoints."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self.mode = Mode.LOOSE
        self.diagnostics: list[Diagnostic] = []
        self.docs: list[DocComment] = []
        self._attached: set[int] = set()
        self._run_start = 0
        self._trivia_end = -1

    # ── Cursor ───────────────────────────────────────────────────

    def peek(self, offset: int = 0) -> str:
        idx = self.pos + offset
        if idx < len(self.text):
            return self.text[idx]
        return '\0'

    def startswith(self, s: str) -> bool:
        return self.text.startswith(s, self.pos)

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def advance(self, n: int = 1) -> str:
        chunk = self.text[self.pos:self.pos + n]
        self.pos = min(len(self.text), self.pos + n)
        return chunk

    def at_word(self, word: str) -> bool:
        """True if ``word`` starts here and is not part of a longer identifier."""
        if not self.startswith(word):
            return False
        return not is_ident_char(self.peek(len(word)))

    def peek_word(self) -> str:
        """Return the identifier-like word at the cursor without consuming it."""
        end = self.pos
        while end < len(self.text) and is_ident_char(self.text[end]):
            end += 1
        return self.text[self.pos:end]

    def newline_between(self, start: int, end: int) -> bool:
        return '\n' in self.text[start:end]

    # ── Modes ────────────────────────────────────────────────────

    @contextmanager
    def using(self, mode: Mode) -> Iterator[None]:
        """Switch to ``mode`` for the duration of a block."""
        saved = self.mode
        self.mode = mode
        try:
            yield
        finally:
            self.mode = saved

    # ── Trivia ───────────────────────────────────────────────────

    def skip_trivia(self) -> None:
        """Skip whitespace and comments, buffering doc comments.

        Does nothing in tight mode. Consecutive ``///`` lines form one
        doc comment block; each call starting at a fresh position opens
        a new trivia run, and only the last block of the current run can
        be attached to the declaration that follows.
        """
        if self.mode is Mode.TIGHT:
            return
        if self.pos != self._trivia_end:
            self._run_start = len(self.docs)
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch in _WHITESPACE:
                self.pos += 1
            elif self.startswith("///"):
                self._scan_doc_block()
            elif self.startswith("//"):
                self._skip_line()
            elif self.startswith("/*"):
                self._skip_block_comment()
            else:
                break
        self._trivia_end = self.pos

    def _skip_line(self) -> None:
        end = self.text.find('\n', self.pos)
        self.pos = len(self.text) if end < 0 else end

    def _skip_block_comment(self) -> None:
        start = self.pos
        end = self.text.find("*/", self.pos + 2)
        if end < 0:
            self.pos = len(self.text)
            self.error("E100", "unterminated block comment", Span(start, start + 2))
            return
        self.pos = end + 2

    def _scan_doc_block(self) -> None:
        start = self.pos
        lines: list[str] = []
        end = start
        while self.startswith("///"):
            self._skip_line()
            line = self.text[end + 3:self.pos].rstrip("\r")
            lines.append(line[1:] if line.startswith(" ") else line)
            end = self.pos
            # continue only if the next line is another /// line
            probe = self.pos + 1
            while probe < len(self.text) and self.text[probe] in " \t":
                probe += 1
            if self.pos < len(self.text) and self.text.startswith("///", probe):
                self.pos = probe
                end = probe
            else:
                break
        self.docs.append(DocComment("\n".join(lines), Span(start, self.pos)))

    # ── Doc comments ─────────────────────────────────────────────

    def take_doc_comment(self) -> DocComment | None:
        """Attach the doc comment directly preceding the cursor, if any."""
        if self.pos != self._trivia_end or len(self.docs) <= self._run_start:
            return None
        idx = len(self.docs) - 1
        if idx in self._attached:
            return None
        self._attached.add(idx)
        return self.docs[idx]

    def attached_doc_comments(self) -> frozenset[int]:
        return frozenset(self._attached)

    def release_doc_comments(self, attached: frozenset[int]) -> None:
        """Undo attachments made since ``attached`` was taken."""
        self._attached = set(attached)

    def orphan_doc_comments(self) -> list[DocComment]:
        return [d for i, d in enumerate(self.docs) if i not in self._attached]

    # ── Checkpoints ──────────────────────────────────────────────

    def mark(self) -> Checkpoint:
        return Checkpoint(
            pos=self.pos,
            doc_count=len(self.docs),
            attached=self.attached_doc_comments(),
            run_start=self._run_start,
            trivia_end=self._trivia_end,
            diagnostic_count=len(self.diagnostics),
        )

    def reset(self, cp: Checkpoint) -> None:
        """Rewind to a checkpoint, dropping anything recorded since."""
        self.pos = cp.pos
        del self.docs[cp.doc_count:]
        self._attached = set(cp.attached)
        self._run_start = cp.run_start
        self._trivia_end = cp.trivia_end
        del self.diagnostics[cp.diagnostic_count:]

    # ── Identifiers ──────────────────────────────────────────────

    def scan_identifier(self) -> Identifier | None:
        """Scan one identifier at the cursor, or return None if there is none."""
        start = self.pos
        ch = self.peek()
        if ch == '`':
            end = self.text.find('`', start + 1)
            newline = self.text.find('\n', start + 1)
            if end < 0 or (0 <= newline < end):
                self.fail("E100", "unterminated quoted identifier",
                          Span(start, start + 1), label="opened here")
            self.pos = end + 1
            return Identifier(self.text[start + 1:end], IdentKind.BACKTICK,
                              Span(start, self.pos))
        if not is_ident_start(ch):
            return None
        self.pos += 1
        while is_ident_char(self.peek()):
            self.pos += 1
        name = self.text[start:self.pos]
        if name == "_":
            kind = IdentKind.BLANK
        elif ch in "_$":
            kind = IdentKind.SYMBOL
        else:
            kind = IdentKind.PLAIN
        return Identifier(name, kind, Span(start, self.pos))

    # ── Diagnostics ──────────────────────────────────────────────

    def error(
        self,
        code: str,
        message: str,
        span: Span,
        *,
        label: str = "",
        expected: str | None = None,
        notes: list[str] | None = None,
        suggestions: list[Suggestion] | None = None,
        related: list[DiagnosticLabel] | None = None,
    ) -> Diagnostic:
        diag = Diagnostic(
            severity=Severity.ERROR,
            code=code,
            message=message,
            labels=[DiagnosticLabel(span=span, message=label), *(related or [])],
            suggestions=suggestions or [],
            notes=notes or [],
            expected=expected,
        )
        self.diagnostics.append(diag)
        return diag

    def fail(self, code: str, message: str, span: Span, **kwargs) -> NoReturn:
        """Record an error and abandon the current construct."""
        self.error(code, message, span, **kwargs)
        raise ParseFailure

    def warning(self, code: str, message: str, span: Span, label: str = "") -> Diagnostic:
        diag = Diagnostic(
            severity=Severity.WARNING,
            code=code,
            message=message,
            labels=[DiagnosticLabel(span=span, message=label)],
        )
        self.diagnostics.append(diag)
        return diag
