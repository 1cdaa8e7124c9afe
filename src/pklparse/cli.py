"""pklparse command line interface."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

import click

from pklparse import __version__
from pklparse.config import PklParseConfig, load_config_for
from pklparse.errors import Diagnostic, DiagnosticRenderer
from pklparse.parser import parse
from pklparse.source import SourceText


def _collect_files(paths: tuple[str, ...]) -> list[Path]:
    files: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(sorted(path.rglob("*.pkl")))
        else:
            files.append(path)
    return files


def _report(
    diagnostics: list[Diagnostic],
    source: SourceText,
    config: PklParseConfig,
    *,
    color: bool,
) -> None:
    renderer = DiagnosticRenderer(color=color and config.output.color)
    for diag in diagnostics:
        if not diag.is_error and not config.output.show_warnings:
            continue
        click.echo(renderer.render(diag, source), err=True)


@click.group()
@click.version_option(__version__, prog_name="pklparse")
def main() -> None:
    """Parse and check Pkl configuration files."""


@main.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--no-color", is_flag=True, help="Disable colored diagnostics.")
def check(paths: tuple[str, ...], no_color: bool) -> None:
    """Parse Pkl files and report syntax errors and warnings."""
    files = _collect_files(paths)
    if not files:
        click.echo("warning: no .pkl files found", err=True)
        return

    error_count = 0
    warning_count = 0
    for pkl_file in files:
        config = load_config_for(pkl_file)
        text = pkl_file.read_text(encoding="utf-8")
        source = SourceText(text, str(pkl_file))
        _, diagnostics = parse(text, str(pkl_file), config.parser)
        _report(diagnostics, source, config, color=not no_color)
        error_count += sum(1 for d in diagnostics if d.is_error)
        warning_count += sum(1 for d in diagnostics if not d.is_error)

    summary = f"checked {len(files)} file(s): {error_count} error(s), {warning_count} warning(s)"
    if error_count:
        click.echo(summary, err=True)
        raise SystemExit(1)
    click.echo(summary)


@main.command()
def lsp() -> None:
    """Start the pklparse language server."""
    from pklparse.lsp import main as lsp_main

    lsp_main()


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--spans", is_flag=True, help="Show the source span of every node.")
@click.option("--no-color", is_flag=True, help="Disable colored diagnostics.")
def view(file: str, spans: bool, no_color: bool) -> None:
    """View the syntax tree of a Pkl file."""
    path = Path(file)
    config = load_config_for(path)
    text = path.read_text(encoding="utf-8")
    module, diagnostics = parse(text, file, config.parser)

    _report(diagnostics, SourceText(text, file), config, color=not no_color)
    _dump_ast(module, 0, spans)
    if any(d.is_error for d in diagnostics):
        raise SystemExit(1)


def _dump_ast(node: object, depth: int, spans: bool = False) -> None:
    """Print a readable AST dump."""
    indent = "  " * depth
    name = type(node).__name__

    if hasattr(node, "__dataclass_fields__"):
        fields = node.__dataclass_fields__  # type: ignore[union-attr]
        header = f"{indent}{name}"
        if spans and hasattr(node, "span"):
            header += f" @{node.span}"  # type: ignore[union-attr]
        click.echo(header)
        for field_name in fields:
            if field_name in ("span", "content_span", "diagnostics", "filename"):
                continue
            value = getattr(node, field_name)
            if isinstance(value, list):
                if value:
                    click.echo(f"{indent}  {field_name}:")
                    for item in value:
                        _dump_ast(item, depth + 2, spans)
                else:
                    click.echo(f"{indent}  {field_name}: []")
            elif hasattr(value, "__dataclass_fields__"):
                click.echo(f"{indent}  {field_name}:")
                _dump_ast(value, depth + 2, spans)
            elif isinstance(value, Enum):
                click.echo(f"{indent}  {field_name}: {value.value}")
            elif isinstance(value, frozenset):
                if value:
                    names = sorted(getattr(v, "value", str(v)) for v in value)
                    click.echo(f"{indent}  {field_name}: {' '.join(names)}")
            elif value is not None:
                click.echo(f"{indent}  {field_name}: {value!r}")
    else:
        click.echo(f"{indent}{name}: {node!r}")
