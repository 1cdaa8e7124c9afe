"""Syntax tree node definitions for the Pkl language.

Every node is a frozen dataclass carrying a ``span``; a parent's span
always covers the spans of its children.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterator, Union

from pklparse.source import Span

if TYPE_CHECKING:
    from pklparse.errors import Diagnostic


# ── Identifiers ──────────────────────────────────────────────────


class IdentKind(Enum):
    PLAIN = "plain"            # letter first
    SYMBOL = "symbol"          # `_` or `$` first
    BACKTICK = "backtick"      # `any text`
    BLANK = "blank"            # _


@dataclass(frozen=True)
class Identifier:
    name: str
    kind: IdentKind
    span: Span


@dataclass(frozen=True)
class DocComment:
    text: str
    span: Span


# ── Literals ─────────────────────────────────────────────────────


class IntBase(Enum):
    DEC = 10
    HEX = 16
    OCT = 8
    BIN = 2


@dataclass(frozen=True)
class BoolLit:
    value: bool
    span: Span


@dataclass(frozen=True)
class NullLit:
    span: Span


@dataclass(frozen=True)
class IntLit:
    base: IntBase
    digits: str  # without prefix, underscores kept
    span: Span

    @property
    def value(self) -> int:
        return int(self.digits.replace("_", ""), self.base.value)


@dataclass(frozen=True)
class FloatLit:
    text: str  # `NaN`, `Infinity`, or the literal as written
    span: Span

    @property
    def value(self) -> float:
        if self.text == "NaN":
            return float("nan")
        if self.text == "Infinity":
            return float("inf")
        return float(self.text.replace("_", ""))


@dataclass(frozen=True)
class DurationLit:
    amount: IntLit | FloatLit
    unit: str
    span: Span


@dataclass(frozen=True)
class DataSizeLit:
    amount: IntLit | FloatLit
    unit: str
    span: Span


class StringKind(Enum):
    BASIC = "basic"
    MULTILINE = "multiline"
    CUSTOM = "custom"


@dataclass(frozen=True)
class TextSegment:
    text: str
    span: Span


@dataclass(frozen=True)
class EscapeSegment:
    value: str  # the decoded character
    span: Span


@dataclass(frozen=True)
class Interpolation:
    expr: Expr
    span: Span


StringSegment = Union[TextSegment, EscapeSegment, Interpolation]


@dataclass(frozen=True)
class StringLit:
    """A string literal of any form.

    ``pounds`` is the custom delimiter width (0 for plain strings).
    Multiline strings keep the terminator's leading whitespace in
    ``indent`` and the raw content range in ``content_span``; stripping
    that indentation from each line is left to the evaluator.
    """

    kind: StringKind
    multiline: bool
    pounds: int
    segments: list[StringSegment]
    content_span: Span
    indent: str | None
    span: Span

    @property
    def is_constant(self) -> bool:
        return not any(isinstance(s, Interpolation) for s in self.segments)

    def constant_value(self) -> str:
        """Join text and escape segments; only valid for constant strings."""
        return "".join(s.text if isinstance(s, TextSegment) else s.value
                       for s in self.segments
                       if not isinstance(s, Interpolation))


Literal = Union[BoolLit, NullLit, IntLit, FloatLit, DurationLit, DataSizeLit, StringLit]


# ── Type expressions ─────────────────────────────────────────────


@dataclass(frozen=True)
class NamedType:
    path: list[Identifier]
    span: Span

    @property
    def name(self) -> str:
        return ".".join(p.name for p in self.path)


@dataclass(frozen=True)
class GenericType:
    base: NamedType
    args: list[TypeExpr]
    span: Span


@dataclass(frozen=True)
class ConstrainedType:
    base: TypeExpr
    predicates: list[Expr]
    span: Span


@dataclass(frozen=True)
class NullableType:
    inner: TypeExpr
    span: Span


@dataclass(frozen=True)
class DefaultType:
    inner: TypeExpr
    span: Span


@dataclass(frozen=True)
class UnionType:
    members: list[TypeExpr]
    span: Span


@dataclass(frozen=True)
class FunctionType:
    params: list[TypeExpr]
    return_type: TypeExpr
    span: Span


@dataclass(frozen=True)
class StringLiteralType:
    value: StringLit
    span: Span


TypeExpr = Union[
    NamedType, GenericType, ConstrainedType, NullableType,
    DefaultType, UnionType, FunctionType, StringLiteralType,
]


# ── Expressions ──────────────────────────────────────────────────


class CallKind(Enum):
    IDENTIFIER = "identifier"
    NULLABLE_READ = "nullable-read"   # read?(...)
    GLOBBED_READ = "globbed-read"     # read*(...)


@dataclass(frozen=True)
class UnaryExpr:
    op: str
    operand: Expr
    span: Span


@dataclass(frozen=True)
class BinaryExpr:
    left: Expr
    op: str
    right: Expr
    span: Span


@dataclass(frozen=True)
class TypeTestExpr:
    expr: Expr
    type_expr: TypeExpr
    span: Span


@dataclass(frozen=True)
class TypeCastExpr:
    expr: Expr
    type_expr: TypeExpr
    span: Span


@dataclass(frozen=True)
class NonNullExpr:
    operand: Expr
    span: Span


@dataclass(frozen=True)
class IfExpr:
    condition: Expr
    then_branch: Expr
    else_branch: Expr
    span: Span


@dataclass(frozen=True)
class LetExpr:
    name: Identifier
    type_expr: TypeExpr | None
    value: Expr
    body: Expr
    span: Span


@dataclass(frozen=True)
class Param:
    name: Identifier
    type_expr: TypeExpr | None
    span: Span


@dataclass(frozen=True)
class LambdaExpr:
    params: list[Param]
    body: Expr
    span: Span


@dataclass(frozen=True)
class CallExpr:
    callee: Identifier
    kind: CallKind
    args: list[Expr]
    span: Span


@dataclass(frozen=True)
class DotAccess:
    member: Identifier | CallExpr
    span: Span


@dataclass(frozen=True)
class NullSafeAccess:
    member: Identifier | CallExpr
    span: Span


@dataclass(frozen=True)
class BracketAccess:
    index: Expr
    span: Span


Access = Union[DotAccess, NullSafeAccess, BracketAccess]


@dataclass(frozen=True)
class IndexExpr:
    target: Expr
    access: Access
    span: Span


@dataclass(frozen=True)
class NewExpr:
    type_expr: TypeExpr | None
    body: ObjectBody
    span: Span


@dataclass(frozen=True)
class AmendExpr:
    """`(expr) { ... }`"""

    target: Expr
    body: ObjectBody
    span: Span


@dataclass(frozen=True)
class ParenExpr:
    inner: Expr
    span: Span


@dataclass(frozen=True)
class AmendedValue:
    """A base expression followed by consecutive object bodies."""

    base: Expr
    layers: list[ObjectBody]
    span: Span


Expr = Union[
    BoolLit, NullLit, IntLit, FloatLit, DurationLit, DataSizeLit, StringLit,
    Identifier, UnaryExpr, BinaryExpr, TypeTestExpr, TypeCastExpr,
    NonNullExpr, IfExpr, LetExpr, LambdaExpr, CallExpr, IndexExpr,
    NewExpr, AmendExpr, ParenExpr, AmendedValue,
]


# ── Object bodies ────────────────────────────────────────────────


@dataclass(frozen=True)
class ObjectBody:
    members: list[ObjectMember]
    span: Span


@dataclass(frozen=True)
class ObjectForm:
    """One or more object bodies used as a member's value."""

    bodies: list[ObjectBody]
    span: Span


@dataclass(frozen=True)
class MappingEntry:
    key: Expr
    value: Expr | ObjectForm
    span: Span


@dataclass(frozen=True)
class PredicateEntry:
    predicate: Expr
    value: Expr | ObjectForm
    span: Span


@dataclass(frozen=True)
class FieldAmend:
    index: Expr
    body: ObjectBody
    span: Span


@dataclass(frozen=True)
class SpreadMember:
    expr: Expr
    nullable: bool
    span: Span


@dataclass(frozen=True)
class WhenGenerator:
    condition: Expr
    then_body: ObjectBody
    else_body: ObjectBody | None
    span: Span


@dataclass(frozen=True)
class ForGenerator:
    bindings: list[Identifier]
    iterable: Expr
    body: ObjectBody
    span: Span


@dataclass(frozen=True)
class ElementMember:
    expr: Expr
    span: Span


# ── Declarations ─────────────────────────────────────────────────


class PrefixKeyword(Enum):
    LOCAL = "local"
    FIXED = "fixed"
    CONST = "const"
    EXTERNAL = "external"
    HIDDEN = "hidden"
    ABSTRACT = "abstract"
    OPEN = "open"


class Variance(Enum):
    PLAIN = "plain"
    IN = "in"
    OUT = "out"


@dataclass(frozen=True)
class TypeParameter:
    variance: Variance
    type_expr: TypeExpr
    span: Span


@dataclass(frozen=True)
class Annotation:
    name: NamedType
    body: ObjectBody | None
    span: Span


@dataclass(frozen=True)
class TypedInit:
    type_expr: TypeExpr | None
    value: Expr
    span: Span


@dataclass(frozen=True)
class TypeOnly:
    type_expr: TypeExpr
    span: Span


PropertyForm = Union[ObjectForm, TypedInit, TypeOnly]


@dataclass(frozen=True)
class PropertyDecl:
    modifiers: frozenset[PrefixKeyword]
    name: Identifier
    form: PropertyForm
    doc_comment: DocComment | None
    annotations: list[Annotation]
    span: Span


@dataclass(frozen=True)
class FunctionDecl:
    modifiers: frozenset[PrefixKeyword]
    name: Identifier
    type_params: list[TypeParameter]
    params: list[Param]
    return_type: TypeExpr | None
    body: Expr | None
    doc_comment: DocComment | None
    annotations: list[Annotation]
    span: Span


@dataclass(frozen=True)
class ClassDecl:
    modifiers: frozenset[PrefixKeyword]
    name: Identifier
    type_params: list[TypeParameter]
    extends: TypeExpr | None
    body: list[PropertyDecl | FunctionDecl] | None  # None = no `{}` at all
    doc_comment: DocComment | None
    annotations: list[Annotation]
    span: Span


@dataclass(frozen=True)
class TypeAliasDecl:
    modifiers: frozenset[PrefixKeyword]
    name: Identifier
    type_params: list[TypeParameter]
    aliased: TypeExpr
    doc_comment: DocComment | None
    annotations: list[Annotation]
    span: Span


@dataclass(frozen=True)
class ModuleClause:
    modifiers: frozenset[PrefixKeyword]
    name: NamedType
    doc_comment: DocComment | None
    annotations: list[Annotation]
    span: Span

    @property
    def open(self) -> bool:
        return PrefixKeyword.OPEN in self.modifiers


@dataclass(frozen=True)
class ImportDecl:
    source: str
    globbed: bool
    alias: Identifier | None
    doc_comment: DocComment | None
    annotations: list[Annotation]
    span: Span


@dataclass(frozen=True)
class ExtendsClause:
    source: str
    doc_comment: DocComment | None
    annotations: list[Annotation]
    span: Span


@dataclass(frozen=True)
class AmendsClause:
    source: str
    doc_comment: DocComment | None
    annotations: list[Annotation]
    span: Span


ObjectMember = Union[
    PropertyDecl, FunctionDecl, MappingEntry, PredicateEntry, FieldAmend,
    SpreadMember, WhenGenerator, ForGenerator, ElementMember,
]

Declaration = Union[
    ModuleClause, ImportDecl, ExtendsClause, AmendsClause,
    TypeAliasDecl, ClassDecl, FunctionDecl, PropertyDecl,
]


@dataclass(frozen=True)
class Module:
    declarations: list[Declaration]
    diagnostics: list[Diagnostic]
    filename: str
    span: Span


# ── Traversal ────────────────────────────────────────────────────


def _is_node(value: object) -> bool:
    return dataclasses.is_dataclass(value) and hasattr(value, "span")


def iter_children(node: object) -> Iterator[object]:
    """Yield the direct child nodes of a node in field order."""
    for f in dataclasses.fields(node):  # type: ignore[arg-type]
        if f.name in ("span", "content_span", "diagnostics"):
            continue
        value = getattr(node, f.name)
        if isinstance(value, list):
            for item in value:
                if _is_node(item):
                    yield item
        elif _is_node(value):
            yield value


def walk(node: object) -> Iterator[object]:
    """Yield a node and all of its descendants, depth first."""
    yield node
    for child in iter_children(node):
        yield from walk(child)


def same_shape(a: object, b: object) -> bool:
    """Compare two trees for equality while ignoring spans."""
    if _is_node(a) and _is_node(b):
        if type(a) is not type(b):
            return False
        for f in dataclasses.fields(a):  # type: ignore[arg-type]
            if f.name in ("span", "content_span", "diagnostics", "filename"):
                continue
            if not same_shape(getattr(a, f.name), getattr(b, f.name)):
                return False
        return True
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(same_shape(x, y) for x, y in zip(a, b))
    return a == b
