"""Number and string literal parsers.

Both run in tight mode; string interpolation hands control back to the
expression parser through a callback that is invoked in loose mode.
"""

from __future__ import annotations

from typing import Callable, NoReturn

from pklparse.ast_nodes import (
    EscapeSegment,
    Expr,
    FloatLit,
    IntBase,
    Interpolation,
    IntLit,
    StringKind,
    StringLit,
    StringSegment,
    TextSegment,
)
from pklparse.errors import DiagnosticLabel
from pklparse.scanner import Mode, Scanner, is_ident_char
from pklparse.source import Span

DURATION_UNITS = frozenset({"ns", "us", "ms", "s", "min", "h", "d"})
DATA_SIZE_UNITS = frozenset({
    "b", "kb", "kib", "mb", "mib", "gb", "gib", "tb", "tib", "pb", "pib",
})

_ESCAPES = {'t': '\t', 'n': '\n', 'r': '\r', '"': '"', '\\': '\\'}

_BASE_PREFIXES = {
    'x': (IntBase.HEX, "0123456789abcdefABCDEF", "hexadecimal"),
    'o': (IntBase.OCT, "01234567", "octal"),
    'b': (IntBase.BIN, "01", "binary"),
}

_DECIMAL = "0123456789"


# ── Numbers ──────────────────────────────────────────────────────


def at_number(scanner: Scanner) -> bool:
    ch = scanner.peek()
    if ch.isdigit():
        return True
    if ch == '.' and scanner.peek(1).isdigit():
        return True
    return scanner.at_word("NaN") or scanner.at_word("Infinity")


def parse_number(scanner: Scanner, *, style_warnings: bool = True) -> IntLit | FloatLit:
    """Parse an integer or float literal at the cursor."""
    start = scanner.pos
    with scanner.using(Mode.TIGHT):
        for word in ("NaN", "Infinity"):
            if scanner.at_word(word):
                scanner.advance(len(word))
                return FloatLit(word, Span(start, scanner.pos))

        if scanner.peek() == '0' and scanner.peek(1) in "xXoObB":
            base, alphabet, name = _BASE_PREFIXES[scanner.peek(1).lower()]
            scanner.advance(2)
            if scanner.peek() not in alphabet and scanner.peek() != '_':
                scanner.fail("E103", f"expected {name} digits after '0{scanner.text[start + 1]}'",
                             Span(start, scanner.pos), label="no digits")
            digits = _scan_digits(scanner, alphabet)
            _reject_trailing(scanner, start)
            return IntLit(base, digits, Span(start, scanner.pos))

        int_part = ""
        if scanner.peek() != '.':
            int_part = _scan_digits(scanner, _DECIMAL)
        is_float = False
        if scanner.peek() == '.' and scanner.peek(1).isdigit():
            is_float = True
            scanner.advance()
            _scan_digits(scanner, _DECIMAL)
        if scanner.peek() in "eE" and _exponent_follows(scanner):
            is_float = True
            scanner.advance()
            if scanner.peek() in "+-":
                scanner.advance()
            _scan_digits(scanner, _DECIMAL)
        _reject_trailing(scanner, start)

        span = Span(start, scanner.pos)
        if not is_float:
            return IntLit(IntBase.DEC, int_part, span)
        if not int_part and style_warnings:
            scanner.warning("W304", "float literal is missing its integer part", span,
                            label=f"write 0{scanner.text[start:scanner.pos]}")
        return FloatLit(scanner.text[start:scanner.pos], span)


def _exponent_follows(scanner: Scanner) -> bool:
    nxt = scanner.peek(1)
    if nxt.isdigit():
        return True
    return nxt in "+-" and scanner.peek(2).isdigit()


def _scan_digits(scanner: Scanner, alphabet: str) -> str:
    """Consume a run of digits separated by single underscores."""
    start = scanner.pos
    while scanner.peek() in alphabet or scanner.peek() == "_":
        scanner.advance()
    run = scanner.text[start:scanner.pos]
    for i, ch in enumerate(run):
        if ch != '_':
            continue
        if i == 0:
            problem = "leading"
        elif i == len(run) - 1:
            problem = "trailing"
        elif run[i + 1] == '_':
            problem = "doubled"
        else:
            continue
        at = start + i
        scanner.fail("E103", f"{problem} underscore in number literal", Span(at, at + 1),
                     label="underscores may only separate digits")
    return run


def _reject_trailing(scanner: Scanner, start: int) -> None:
    if is_ident_char(scanner.peek()):
        end = scanner.pos
        while is_ident_char(scanner.text[end:end + 1] or '\0'):
            end += 1
        scanner.fail("E103", f"malformed number literal '{scanner.text[start:end]}'",
                     Span(start, end), label="unexpected character in number")


# ── Strings ──────────────────────────────────────────────────────


def at_string(scanner: Scanner) -> bool:
    idx = scanner.pos
    while idx < len(scanner.text) and scanner.text[idx] == '#':
        idx += 1
    return scanner.text.startswith('"', idx)


def parse_string(
    scanner: Scanner,
    interpolate: Callable[[], Expr],
    *,
    style_warnings: bool = True,
) -> StringLit:
    """Parse a basic, multiline, or custom-delimited string literal.

    ``interpolate`` parses the expression inside ``\\(...)``; it is
    called with the scanner in loose mode and must leave the cursor on
    the closing parenthesis.
    """
    start = scanner.pos
    with scanner.using(Mode.TIGHT):
        pounds = 0
        while scanner.peek() == '#':
            pounds += 1
            scanner.advance()
        multiline = scanner.startswith('"""')
        scanner.advance(3 if multiline else 1)
        open_span = Span(start, scanner.pos)

        if multiline:
            probe = scanner.pos
            while probe < len(scanner.text) and scanner.text[probe] in " \t":
                probe += 1
            if scanner.text.startswith("\r\n", probe):
                scanner.pos = probe + 2
            elif scanner.text.startswith("\n", probe):
                scanner.pos = probe + 1
            elif style_warnings:
                scanner.warning("W305", "multiline string content should start on a new line",
                                open_span, label="line break expected after this")

        body = _StringBody(scanner, pounds, multiline, open_span, interpolate)
        body.scan()

    if pounds:
        kind = StringKind.CUSTOM
    elif multiline:
        kind = StringKind.MULTILINE
    else:
        kind = StringKind.BASIC
    return StringLit(
        kind=kind,
        multiline=multiline,
        pounds=pounds,
        segments=body.segments,
        content_span=body.content_span,
        indent=body.indent,
        span=Span(start, scanner.pos),
    )


class _StringBody:
    """Scans a string body up to and including its closing delimiter."""

    def __init__(
        self,
        scanner: Scanner,
        pounds: int,
        multiline: bool,
        open_span: Span,
        interpolate: Callable[[], Expr],
    ) -> None:
        self.scanner = scanner
        self.pounds = pounds
        self.multiline = multiline
        self.open_span = open_span
        self.interpolate = interpolate
        self.segments: list[StringSegment] = []
        self.indent: str | None = None
        self.content_span = Span(scanner.pos, scanner.pos)
        self._text_start = scanner.pos

    def scan(self) -> None:
        s = self.scanner
        content_start = s.pos
        while True:
            if self.multiline and s.pos > 0 and s.text[s.pos - 1] == '\n':
                if self._close_multiline(content_start):
                    return
            if s.at_end() or (not self.multiline and s.peek() == '\n'):
                s.fail("E100", "unterminated string literal", self.open_span,
                       label="string starts here")
            ch = s.peek()
            if ch == '"' and not self.multiline and self._closes_at(s.pos + 1):
                self._flush()
                self.content_span = Span(content_start, s.pos)
                s.advance(1 + self.pounds)
                return
            if ch == '\\' and self._escape_width() is not None:
                self._flush()
                self._scan_escape()
                self._text_start = s.pos
                continue
            s.advance()

    def _closes_at(self, idx: int) -> bool:
        """True if exactly ``pounds`` '#' characters start at ``idx``."""
        if self.pounds == 0:
            return True
        text = self.scanner.text
        end = idx
        while end < len(text) and text[end] == '#':
            end += 1
        return end - idx == self.pounds

    def _close_multiline(self, content_start: int) -> bool:
        s = self.scanner
        probe = s.pos
        while probe < len(s.text) and s.text[probe] in " \t":
            probe += 1
        if not s.text.startswith('"""', probe) or not self._closes_at(probe + 3):
            return False
        self._flush()
        self.indent = s.text[s.pos:probe]
        self.content_span = Span(content_start, s.pos)
        s.pos = probe + 3 + self.pounds
        return True

    def _escape_width(self) -> int | None:
        """Width of the escape introducer at the cursor, or None for plain text."""
        s = self.scanner
        if self.pounds == 0:
            return 1
        for i in range(self.pounds):
            if s.peek(1 + i) != '#':
                return None
        if s.peek(1 + self.pounds) == '#':
            return None
        return 1 + self.pounds

    def _scan_escape(self) -> None:
        s = self.scanner
        start = s.pos
        s.advance(self._escape_width() or 1)
        ch = s.peek()
        if ch in _ESCAPES:
            s.advance()
            self.segments.append(EscapeSegment(_ESCAPES[ch], Span(start, s.pos)))
        elif ch == 'u':
            s.advance()
            self.segments.append(EscapeSegment(self._scan_unicode(start), Span(start, s.pos)))
        elif ch == '(':
            s.advance()
            with s.using(Mode.LOOSE):
                s.skip_trivia()
                expr = self.interpolate()
                s.skip_trivia()
                if s.peek() != ')':
                    s.fail("E200", "expected ')' to close string interpolation",
                           Span(s.pos, s.pos + 1), label="interpolation opened earlier",
                           expected="')'")
                s.advance()
            self.segments.append(Interpolation(expr, Span(start, s.pos)))
        else:
            shown = s.text[start:s.pos + 1] if not s.at_end() else s.text[start:s.pos]
            self._fail_escape("E101", f"invalid escape sequence '{shown}'", Span(start, s.pos + 1),
                              label="valid escapes are \\t \\n \\r \\\" \\\\ \\u{...} and \\(...)")

    def _fail_escape(self, code: str, message: str, span: Span, label: str = "") -> NoReturn:
        self.scanner.fail(code, message, span, label=label, related=[
            DiagnosticLabel(self.open_span, "in the string starting here", style="secondary"),
        ])

    def _scan_unicode(self, start: int) -> str:
        s = self.scanner
        if s.peek() != '{':
            self._fail_escape("E102", "expected '{' after unicode escape", Span(start, s.pos + 1))
        s.advance()
        digits_start = s.pos
        while s.peek() in "0123456789abcdefABCDEF":
            s.advance()
        digits = s.text[digits_start:s.pos]
        if s.peek() != '}' or not 1 <= len(digits) <= 6:
            self._fail_escape("E102", "unicode escape needs 1 to 6 hex digits in braces",
                              Span(start, s.pos + 1))
        s.advance()
        value = int(digits, 16)
        if value > 0x10FFFF or 0xD800 <= value <= 0xDFFF:
            self._fail_escape("E102", f"invalid unicode scalar value U+{value:X}", Span(start, s.pos))
        return chr(value)

    def _flush(self) -> None:
        s = self.scanner
        if s.pos > self._text_start:
            self.segments.append(
                TextSegment(s.text[self._text_start:s.pos], Span(self._text_start, s.pos))
            )
        self._text_start = s.pos
