"""pklparse Language Server: pygls-based LSP for .pkl files.

Provides diagnostics, document symbols, doc-comment hover and keyword
completion via stdio transport.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from lsprotocol import types as lsp
from pygls.lsp.server import LanguageServer
from pygls.uris import to_fs_path

from pklparse import __version__
from pklparse.ast_nodes import (
    ClassDecl,
    Declaration,
    FunctionDecl,
    ImportDecl,
    Module,
    ModuleClause,
    PropertyDecl,
    TypeAliasDecl,
)
from pklparse.config import ParseOptions, load_config_for
from pklparse.errors import Diagnostic, Severity
from pklparse.parser import parse
from pklparse.scanner import KEYWORDS
from pklparse.source import SourceText, Span

# ── Conversion helpers ────────────────────────────────────────────

_SEVERITY_MAP = {
    Severity.ERROR: lsp.DiagnosticSeverity.Error,
    Severity.WARNING: lsp.DiagnosticSeverity.Warning,
    Severity.NOTE: lsp.DiagnosticSeverity.Information,
}

_KEYWORD_COMPLETIONS = sorted(KEYWORDS)


def span_to_range(span: Span, source: SourceText) -> lsp.Range:
    """Convert an offset Span to a 0-indexed LSP Range."""
    sl, sc = source.line_col(span.start)
    el, ec = source.line_col(span.end)
    return lsp.Range(
        start=lsp.Position(line=sl - 1, character=sc - 1),
        end=lsp.Position(line=el - 1, character=ec - 1),
    )


def _convert_diag(d: Diagnostic, source: SourceText) -> lsp.Diagnostic:
    """Convert a pklparse Diagnostic to an LSP Diagnostic."""
    span_range = lsp.Range(start=lsp.Position(0, 0), end=lsp.Position(0, 0))
    if d.span is not None:
        span_range = span_to_range(d.span, source)
    message = f"[{d.code}] {d.message}"
    for note in d.notes:
        message += f"\nnote: {note}"
    return lsp.Diagnostic(
        range=span_range,
        severity=_SEVERITY_MAP.get(d.severity, lsp.DiagnosticSeverity.Error),
        source="pklparse",
        code=d.code,
        message=message,
    )


# ── Per-document state ────────────────────────────────────────────


@dataclass
class DocumentState:
    """Cached analysis results for a single open document."""

    source: SourceText = field(default_factory=lambda: SourceText(""))
    module: Module | None = None
    diagnostics: list[lsp.Diagnostic] = field(default_factory=list)


# ── Server ────────────────────────────────────────────────────────

server = LanguageServer(
    "pklparse-lsp", __version__,
    text_document_sync_kind=lsp.TextDocumentSyncKind.Full,
)
_state: dict[str, DocumentState] = {}


def _options_for(uri: str) -> ParseOptions | None:
    """Parser options from the pklparse.toml governing a file URI."""
    path = to_fs_path(uri) if uri.startswith("file:") else None
    if path is None:
        return None
    return load_config_for(Path(path)).parser


def _analyze(uri: str, text: str) -> DocumentState:
    """Parse the document, cache results, return state."""
    source = SourceText(text, uri)
    module, diagnostics = parse(text, uri, _options_for(uri))
    ds = DocumentState(
        source=source,
        module=module,
        diagnostics=[_convert_diag(d, source) for d in diagnostics],
    )
    _state[uri] = ds
    return ds


_WORD = re.compile(r"[\w$]+")


def _get_word_at(source: str, line: int, character: int) -> str:
    """Extract the identifier at (or just before) the given 0-indexed position."""
    lines = source.splitlines()
    if not 0 <= line < len(lines):
        return ""
    for match in _WORD.finditer(lines[line]):
        if match.start() <= character <= match.end():
            return match.group()
    return ""


def _publish(uri: str, text: str) -> None:
    ds = _analyze(uri, text)
    server.text_document_publish_diagnostics(lsp.PublishDiagnosticsParams(
        uri=uri,
        diagnostics=ds.diagnostics,
    ))


# ── LSP Feature Handlers ─────────────────────────────────────────


@server.feature(lsp.TEXT_DOCUMENT_DID_OPEN)
def did_open(params: lsp.DidOpenTextDocumentParams) -> None:
    _publish(params.text_document.uri, params.text_document.text)


@server.feature(lsp.TEXT_DOCUMENT_DID_CHANGE)
def did_change(params: lsp.DidChangeTextDocumentParams) -> None:
    # Full sync: the last change holds the whole document
    text = params.content_changes[-1].text if params.content_changes else ""
    _publish(params.text_document.uri, text)


@server.feature(lsp.TEXT_DOCUMENT_DID_CLOSE)
def did_close(params: lsp.DidCloseTextDocumentParams) -> None:
    _state.pop(params.text_document.uri, None)


def _declared_names(module: Module) -> dict[str, Declaration]:
    names: dict[str, Declaration] = {}
    for decl in module.declarations:
        name = _decl_name(decl)
        if name:
            names.setdefault(name, decl)
        if isinstance(decl, ClassDecl) and decl.body:
            for member in decl.body:
                names.setdefault(member.name.name, member)
    return names


def _decl_name(decl: Declaration) -> str | None:
    if isinstance(decl, (ClassDecl, FunctionDecl, PropertyDecl, TypeAliasDecl)):
        return decl.name.name
    if isinstance(decl, ModuleClause):
        return decl.name.name
    if isinstance(decl, ImportDecl) and decl.alias is not None:
        return decl.alias.name
    return None


@server.feature(lsp.TEXT_DOCUMENT_HOVER)
def hover(params: lsp.HoverParams) -> lsp.Hover | None:
    ds = _state.get(params.text_document.uri)
    if ds is None or ds.module is None:
        return None

    word = _get_word_at(ds.source.text, params.position.line, params.position.character)
    if not word:
        return None

    decl = _declared_names(ds.module).get(word)
    if decl is None or decl.doc_comment is None:
        return None
    return lsp.Hover(contents=lsp.MarkupContent(
        kind=lsp.MarkupKind.Markdown,
        value=decl.doc_comment.text,
    ))


@server.feature(
    lsp.TEXT_DOCUMENT_COMPLETION,
    lsp.CompletionOptions(trigger_characters=["."]),
)
def completion(params: lsp.CompletionParams) -> lsp.CompletionList:
    ds = _state.get(params.text_document.uri)
    items: list[lsp.CompletionItem] = []

    for kw in _KEYWORD_COMPLETIONS:
        items.append(lsp.CompletionItem(
            label=kw,
            kind=lsp.CompletionItemKind.Keyword,
        ))

    if ds is not None and ds.module is not None:
        for name, decl in _declared_names(ds.module).items():
            items.append(lsp.CompletionItem(
                label=name,
                kind=_COMPLETION_KINDS.get(type(decl), lsp.CompletionItemKind.Text),
            ))

    # Deduplicate by label
    seen: set[str] = set()
    unique: list[lsp.CompletionItem] = []
    for item in items:
        if item.label not in seen:
            seen.add(item.label)
            unique.append(item)

    return lsp.CompletionList(is_incomplete=False, items=unique)


_COMPLETION_KINDS = {
    ClassDecl: lsp.CompletionItemKind.Class,
    FunctionDecl: lsp.CompletionItemKind.Function,
    PropertyDecl: lsp.CompletionItemKind.Property,
    TypeAliasDecl: lsp.CompletionItemKind.Class,
    ModuleClause: lsp.CompletionItemKind.Module,
    ImportDecl: lsp.CompletionItemKind.Module,
}


@server.feature(lsp.TEXT_DOCUMENT_DOCUMENT_SYMBOL)
def document_symbol(params: lsp.DocumentSymbolParams) -> list[lsp.DocumentSymbol]:
    ds = _state.get(params.text_document.uri)
    if ds is None or ds.module is None:
        return []

    symbols: list[lsp.DocumentSymbol] = []
    for decl in ds.module.declarations:
        sym = _decl_to_symbol(decl, ds.source)
        if sym is not None:
            symbols.append(sym)
    return symbols


def _decl_to_symbol(decl: Declaration, source: SourceText) -> lsp.DocumentSymbol | None:
    """Convert a declaration to an LSP DocumentSymbol."""
    if isinstance(decl, ModuleClause):
        return lsp.DocumentSymbol(
            name=decl.name.name,
            kind=lsp.SymbolKind.Module,
            range=span_to_range(decl.span, source),
            selection_range=span_to_range(decl.name.span, source),
        )
    if isinstance(decl, ClassDecl):
        children = [
            child for child in (_decl_to_symbol(m, source) for m in decl.body or [])
            if child is not None
        ]
        return lsp.DocumentSymbol(
            name=decl.name.name,
            kind=lsp.SymbolKind.Class,
            range=span_to_range(decl.span, source),
            selection_range=span_to_range(decl.name.span, source),
            children=children if children else None,
        )
    if isinstance(decl, FunctionDecl):
        params_str = ", ".join(p.name.name for p in decl.params)
        return lsp.DocumentSymbol(
            name=decl.name.name,
            kind=lsp.SymbolKind.Method,
            range=span_to_range(decl.span, source),
            selection_range=span_to_range(decl.name.span, source),
            detail=f"({params_str})",
        )
    if isinstance(decl, PropertyDecl):
        return lsp.DocumentSymbol(
            name=decl.name.name,
            kind=lsp.SymbolKind.Property,
            range=span_to_range(decl.span, source),
            selection_range=span_to_range(decl.name.span, source),
        )
    if isinstance(decl, TypeAliasDecl):
        return lsp.DocumentSymbol(
            name=decl.name.name,
            kind=lsp.SymbolKind.TypeParameter,
            range=span_to_range(decl.span, source),
            selection_range=span_to_range(decl.name.span, source),
        )
    return None


# ── Entry point ──────────────────────────────────────────────────


def main() -> None:
    """Start the pklparse language server on stdio."""
    server.start_io()
