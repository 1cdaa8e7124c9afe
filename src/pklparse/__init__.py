"""Lexer and parser for the Pkl configuration language."""

from __future__ import annotations

from pklparse.config import ParseOptions
from pklparse.parser import parse

__version__ = "0.1.0"

__all__ = ["ParseOptions", "parse", "__version__"]
