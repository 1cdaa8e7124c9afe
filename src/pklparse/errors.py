"""Diagnostics and Rust-style colored diagnostic rendering."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pklparse.source import SourceText, Span


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"


# ANSI color codes
_COLORS = {
    Severity.ERROR: "\033[1;31m",    # bold red
    Severity.WARNING: "\033[1;33m",  # bold yellow
    Severity.NOTE: "\033[1;36m",     # bold cyan
}
_BOLD = "\033[1m"
_BLUE = "\033[1;34m"
_RESET = "\033[0m"


@dataclass(frozen=True)
class DiagnosticLabel:
    """Points to a specific source location."""

    span: Span
    message: str
    style: str = "primary"  # "primary" or "secondary"


@dataclass(frozen=True)
class Suggestion:
    """A suggested fix."""

    message: str
    replacement: str


@dataclass
class Diagnostic:
    """A single diagnostic message with optional labels and suggestions."""

    severity: Severity
    code: str
    message: str
    labels: list[DiagnosticLabel] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    expected: str | None = None

    @property
    def span(self) -> Span | None:
        """The primary label's span, if any."""
        for label in self.labels:
            if label.style == "primary":
                return label.span
        return None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR


class DiagnosticRenderer:
    """Renders diagnostics in rustc style, with optional ANSI colors.

    ::

        error[E100]: unterminated string literal
         --> app.pkl:3:8
          |
        3 | name = "web
          |        ^ string starts here
          = note: ...

    The locator names the primary label. Secondary labels are underlined
    with ``-``; labels spanning several lines show their first and last
    line without an underline.
    """

    def __init__(self, *, color: bool = True) -> None:
        self.color = color

    def _c(self, code: str) -> str:
        return code if self.color else ""

    def render(self, diag: Diagnostic, source: SourceText) -> str:
        color = _COLORS[diag.severity]
        blue, reset = self._c(_BLUE), self._c(_RESET)
        out = [
            f"{self._c(color)}{diag.severity.value}[{diag.code}]{reset}"
            f"{self._c(_BOLD)}: {diag.message}{reset}"
        ]

        labels = sorted(diag.labels, key=lambda label: label.style != "primary")
        width = self._gutter_width(labels, source)
        margin = " " * (width + 1)
        if labels:
            line, col = source.line_col(labels[0].span.start)
            out.append(f"{' ' * width}{blue}-->{reset} {source.filename}:{line}:{col}")
            out.append(f"{margin}{blue}|{reset}")
            for label in labels:
                out.extend(self._snippet(label, source, width, color))

        for note in diag.notes:
            out.append(f"{margin}{blue}={reset} note: {note}")
        for suggestion in diag.suggestions:
            out.append(f"{margin}{blue}={reset} try: {suggestion.replacement}")
        return "\n".join(out)

    @staticmethod
    def _gutter_width(labels: list[DiagnosticLabel], source: SourceText) -> int:
        last = max(
            (source.line_col(max(label.span.start, label.span.end - 1))[0] for label in labels),
            default=1,
        )
        return len(str(last))

    def _snippet(
        self, label: DiagnosticLabel, source: SourceText, width: int, color: str,
    ) -> list[str]:
        blue, reset = self._c(_BLUE), self._c(_RESET)
        primary = label.style == "primary"
        mark_color = self._c(color if primary else _BLUE)
        start_line, start_col = source.line_col(label.span.start)
        end_line, end_col = source.line_col(max(label.span.start, label.span.end - 1))
        bar = f"{' ' * (width + 1)}{blue}|{reset}"

        out = [f"{blue}{start_line:>{width}} |{reset} {source.line_at(start_line)}"]
        if start_line == end_line:
            underline = ("^" if primary else "-") * max(1, end_col - start_col + 1)
            text = f" {label.message}" if label.message else ""
            out.append(f"{bar} {' ' * (start_col - 1)}{mark_color}{underline}{text}{reset}")
        else:
            out.append(f"{blue}{end_line:>{width}} |{reset} {source.line_at(end_line)}")
            if label.message:
                out.append(f"{bar} {mark_color}{label.message}{reset}")
        return out


class CompileError(Exception):
    """Batch error carrying multiple diagnostics."""

    def __init__(self, diagnostics: list[Diagnostic]) -> None:
        self.diagnostics = diagnostics
        messages = [d.message for d in diagnostics]
        super().__init__(f"{len(diagnostics)} error(s): {'; '.join(messages)}")


def raise_for_errors(diagnostics: list[Diagnostic]) -> None:
    """Raise a CompileError if any diagnostic is an error."""
    errors = [d for d in diagnostics if d.is_error]
    if errors:
        raise CompileError(errors)
