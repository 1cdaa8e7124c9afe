"""TOML config loading for pklparse.toml."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_FILENAME = "pklparse.toml"


@dataclass
class ParseOptions:
    style_warnings: bool = True
    doc_comment_warnings: bool = True
    max_errors: int = 0  # 0 = unlimited


@dataclass
class OutputConfig:
    color: bool = True
    show_warnings: bool = True


@dataclass
class PklParseConfig:
    parser: ParseOptions = field(default_factory=ParseOptions)
    output: OutputConfig = field(default_factory=OutputConfig)


def find_config(start_path: Path | None = None) -> Path:
    """Walk up directories to find pklparse.toml. Raises FileNotFoundError."""
    path = (start_path or Path.cwd()).resolve()
    if path.is_file():
        path = path.parent
    while True:
        candidate = path / CONFIG_FILENAME
        if candidate.exists():
            return candidate
        parent = path.parent
        if parent == path:
            raise FileNotFoundError(f"No {CONFIG_FILENAME} found in any parent directory")
        path = parent


def load_config(path: Path) -> PklParseConfig:
    """Parse a pklparse.toml file into a PklParseConfig."""
    with open(path, "rb") as f:
        data = tomllib.load(f)

    config = PklParseConfig()

    if "parser" in data:
        prs = data["parser"]
        config.parser = ParseOptions(
            style_warnings=prs.get("style_warnings", True),
            doc_comment_warnings=prs.get("doc_comment_warnings", True),
            max_errors=prs.get("max_errors", 0),
        )

    if "output" in data:
        out = data["output"]
        config.output = OutputConfig(
            color=out.get("color", True),
            show_warnings=out.get("show_warnings", True),
        )

    return config


def load_config_for(path: Path) -> PklParseConfig:
    """Load the config governing ``path``, or defaults if there is none."""
    try:
        return load_config(find_config(path))
    except FileNotFoundError:
        return PklParseConfig()
