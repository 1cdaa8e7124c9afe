"""Shared test helpers for the pklparse test suite."""

from __future__ import annotations

from pklparse.ast_nodes import Module, TypedInit, TypeOnly
from pklparse.config import ParseOptions
from pklparse.errors import Diagnostic
from pklparse.parser import parse


def parse_ok(source: str, options: ParseOptions | None = None) -> Module:
    """Parse source, asserting no errors (warnings are allowed)."""
    module, diagnostics = parse(source, "test.pkl", options)
    errors = [d for d in diagnostics if d.is_error]
    assert not errors, f"Unexpected errors: {[f'{d.code}: {d.message}' for d in errors]}"
    return module


def parse_decl(source: str):
    """Parse source and return the first declaration."""
    module = parse_ok(source)
    assert len(module.declarations) >= 1
    return module.declarations[0]


def parse_expr(source: str):
    """Parse ``x = <source>`` and return the initializer expression.

    Offsets in the result are shifted by ``len("x = ")``.
    """
    decl = parse_decl(f"x = {source}")
    assert isinstance(decl.form, TypedInit)
    return decl.form.value


def parse_type(source: str):
    """Parse ``x: <source>`` and return the declared type."""
    decl = parse_decl(f"x: {source}")
    assert isinstance(decl.form, TypeOnly)
    return decl.form.type_expr


def codes(source: str, options: ParseOptions | None = None) -> list[str]:
    """Parse source and return every diagnostic code in order."""
    _, diagnostics = parse(source, "test.pkl", options)
    return [d.code for d in diagnostics]


def parse_fails(source: str, error_code: str) -> list[Diagnostic]:
    """Parse source, asserting the given error code appears."""
    _, diagnostics = parse(source, "test.pkl")
    matching = [d for d in diagnostics if d.code == error_code]
    assert matching, (
        f"Expected error {error_code} but got: "
        f"{[f'{d.code}: {d.message}' for d in diagnostics] or 'no diagnostics'}"
    )
    return matching


def parse_warns(source: str, warning_code: str) -> list[Diagnostic]:
    """Parse source, asserting the given warning code appears."""
    _, diagnostics = parse(source, "test.pkl")
    matching = [d for d in diagnostics if d.code == warning_code]
    assert matching, (
        f"Expected warning {warning_code} but got: "
        f"{[f'{d.code}: {d.message}' for d in diagnostics] or 'no diagnostics'}"
    )
    return matching
