"""Parser for the Pkl configuration language.

Scannerless recursive descent: declarations, object bodies and types are
read straight off the ``Scanner``, and infix expressions are collected
as a flat operand/operator sequence that ``fold_infix`` then resolves by
precedence.
"""

from __future__ import annotations

import dataclasses
import difflib
from typing import NoReturn

from pklparse.ast_nodes import (
    AmendedValue,
    AmendExpr,
    AmendsClause,
    Annotation,
    BoolLit,
    BracketAccess,
    CallExpr,
    CallKind,
    ClassDecl,
    ConstrainedType,
    DataSizeLit,
    Declaration,
    DefaultType,
    DotAccess,
    DurationLit,
    ElementMember,
    Expr,
    ExtendsClause,
    FieldAmend,
    FloatLit,
    ForGenerator,
    FunctionDecl,
    FunctionType,
    GenericType,
    IdentKind,
    Identifier,
    IfExpr,
    ImportDecl,
    IndexExpr,
    IntLit,
    LambdaExpr,
    LetExpr,
    MappingEntry,
    Module,
    ModuleClause,
    NamedType,
    NewExpr,
    NonNullExpr,
    NullableType,
    NullLit,
    NullSafeAccess,
    ObjectBody,
    ObjectForm,
    ObjectMember,
    Param,
    ParenExpr,
    PredicateEntry,
    PrefixKeyword,
    PropertyDecl,
    PropertyForm,
    SpreadMember,
    StringLit,
    StringLiteralType,
    TypeAliasDecl,
    TypeCastExpr,
    TypedInit,
    TypeExpr,
    TypeOnly,
    TypeParameter,
    TypeTestExpr,
    UnaryExpr,
    UnionType,
    Variance,
    WhenGenerator,
)
from pklparse.config import ParseOptions
from pklparse.errors import Diagnostic, Suggestion
from pklparse.literals import (
    DATA_SIZE_UNITS,
    DURATION_UNITS,
    at_number,
    at_string,
    parse_number,
    parse_string,
)
from pklparse.precedence import INFIX_OPERATORS, fold_infix
from pklparse.scanner import (
    KEYWORDS,
    RESERVED_WORDS,
    Mode,
    ParseFailure,
    Scanner,
    is_ident_start,
)
from pklparse.source import Span

_RESERVED = KEYWORDS | RESERVED_WORDS

_DECLARATION_KEYWORDS = (
    "module", "import", "extends", "amends", "typealias", "class", "function",
)
_SUGGESTABLE_KEYWORDS = _DECLARATION_KEYWORDS + tuple(k.value for k in PrefixKeyword)

# Keywords that read as plain identifiers in expressions.
_SELF_REFERENCES = frozenset({"this", "outer", "super", "module"})
# Keywords that may be called like functions.
_CALL_KEYWORDS = frozenset({"read", "throw", "trace", "import"})

_LITERAL_NODES = (BoolLit, NullLit, IntLit, FloatLit, DurationLit, DataSizeLit, StringLit)

# Characters that can start or continue some token of the language.
_TOKEN_CHARS = frozenset("{}[]()<>.,:;=+-*/%!?&|\"#@`_$~")

_BACKTICK_NOTE = "enclose it in backticks to use it as an identifier"

# Module header order: module, then amends/extends, then imports, then the rest.
_HEADER_PHASE: dict[type, int] = {
    ModuleClause: 1,
    AmendsClause: 2,
    ExtendsClause: 2,
    ImportDecl: 3,
}
_HEADER_ORDER_MESSAGES = {
    1: "'module' clause must come first in the file",
    2: "'amends' and 'extends' clauses must come before imports and declarations",
    3: "imports must come before other declarations",
}
_CLAUSE_KEYWORDS: dict[type, str] = {
    ModuleClause: "module",
    AmendsClause: "amends",
    ExtendsClause: "extends",
}


class Parser:
    """Parses Pkl source text into a Module."""

    def __init__(
        self,
        text: str,
        filename: str = "<input>",
        options: ParseOptions | None = None,
    ) -> None:
        self.text = text
        self.filename = filename
        self.options = options or ParseOptions()
        self.scanner = Scanner(text)
        self.diagnostics: list[Diagnostic] = self.scanner.diagnostics
        self._header_phase = 0
        self._seen_clauses: set[type] = set()

    # ── Cursor helpers ───────────────────────────────────────────

    def _skip(self) -> None:
        self.scanner.skip_trivia()

    def _at(self, s: str) -> bool:
        self._skip()
        return self.scanner.startswith(s)

    def _at_keyword(self, word: str) -> bool:
        self._skip()
        return self.scanner.at_word(word)

    def _at_identifier(self) -> bool:
        ch = self.scanner.peek()
        return ch == '`' or is_ident_start(ch)

    def _at_assign(self) -> bool:
        return self._at("=") and not self.scanner.startswith("==")

    def _accept(self, s: str) -> Span | None:
        if not self._at(s):
            return None
        start = self.scanner.pos
        self.scanner.advance(len(s))
        return Span(start, self.scanner.pos)

    def _accept_keyword(self, word: str) -> Span | None:
        if not self._at_keyword(word):
            return None
        start = self.scanner.pos
        self.scanner.advance(len(word))
        return Span(start, self.scanner.pos)

    def _expect(self, s: str) -> Span:
        span = self._accept(s)
        if span is None:
            self._fail_expected(f"'{s}'")
        return span

    def _expect_keyword(self, word: str) -> Span:
        span = self._accept_keyword(word)
        if span is None:
            self._fail_expected(f"'{word}'")
        return span

    def _here(self) -> Span:
        pos = self.scanner.pos
        return Span(pos, pos if self.scanner.at_end() else pos + 1)

    def _describe_current(self) -> str:
        s = self.scanner
        if s.at_end():
            return "end of input"
        if s.peek() == '\n':
            return "end of line"
        word = s.peek_word()
        if word:
            return f"'{word}'"
        return f"'{s.peek()}'"

    def _is_stray(self, ch: str) -> bool:
        return not (ch.isalnum() or ch.isspace() or ch in _TOKEN_CHARS)

    def _fail_expected(self, what: str) -> NoReturn:
        s = self.scanner
        if not s.at_end() and self._is_stray(s.peek()):
            s.fail("E104", f"unexpected character '{s.peek()}'", self._here(),
                   label=f"expected {what}", expected=what)
        s.fail("E200", f"expected {what}, found {self._describe_current()}", self._here(),
               label=f"expected {what}", expected=what)

    def _error_limit_reached(self) -> bool:
        limit = self.options.max_errors
        if limit <= 0:
            return False
        return sum(1 for d in self.diagnostics if d.is_error) >= limit

    # ── Top-level parsing ────────────────────────────────────────

    def parse(self) -> Module:
        """Parse the whole source into a Module; problems become diagnostics."""
        s = self.scanner
        declarations: list[Declaration] = []

        while True:
            self._skip()
            if s.at_end() or self._error_limit_reached():
                break
            start = s.pos
            recorded = len(self.diagnostics)
            attached = s.attached_doc_comments()
            try:
                decl = self._parse_declaration()
            except ParseFailure:
                s.release_doc_comments(attached)
                self._synchronize(start)
                continue
            except RecursionError:
                s.release_doc_comments(attached)
                del self.diagnostics[recorded:]
                s.error("E204", "nesting too deep", Span(start, start + 1),
                        label="in the declaration starting here")
                self._synchronize(start)
                continue
            self._check_header(decl)
            declarations.append(decl)

        if self.options.doc_comment_warnings:
            for doc in s.orphan_doc_comments():
                s.warning("W300", "doc comment is not attached to any declaration",
                          doc.span, label="orphaned doc comment")

        self.diagnostics.sort(key=lambda d: d.span.start if d.span is not None else 0)
        return Module(declarations, self.diagnostics, self.filename, Span(0, len(self.text)))

    def _synchronize(self, start: int) -> None:
        """Skip to the next line that begins a new top-level declaration."""
        s = self.scanner
        if s.pos <= start and not s.at_end():
            s.advance()
        while not s.at_end():
            if s.text[s.pos - 1] == '\n' and s.peek() not in " \t\r\n})]":
                return
            s.advance()

    def _synchronize_member(self, start: int) -> None:
        """Skip to the next class member line or to the closing brace."""
        s = self.scanner
        consumed = s.text[start:s.pos]
        depth = max(0, consumed.count('{') - consumed.count('}'))
        while not s.at_end():
            ch = s.peek()
            if ch == '{':
                depth += 1
            elif ch == '}':
                if depth == 0:
                    return
                depth -= 1
            elif ch == '\n' and depth == 0 and s.pos > start:
                s.advance()
                return
            s.advance()

    def _check_header(self, decl: Declaration) -> None:
        s = self.scanner
        kind = type(decl)
        if kind in _CLAUSE_KEYWORDS:
            keyword = _CLAUSE_KEYWORDS[kind]
            if kind in self._seen_clauses:
                s.warning("W302", f"duplicate '{keyword}' clause", decl.span,
                          label="already declared earlier")
            elif kind is not ModuleClause and self._seen_clauses & {AmendsClause, ExtendsClause}:
                s.warning("W301", "a module cannot both amend and extend another module",
                          decl.span, label=f"conflicting '{keyword}' clause")
            self._seen_clauses.add(kind)

        phase = _HEADER_PHASE.get(kind, 4)
        if phase < self._header_phase:
            s.warning("W306", _HEADER_ORDER_MESSAGES[phase], decl.span, label="out of order")
        self._header_phase = max(self._header_phase, phase)

    # ── Declarations ─────────────────────────────────────────────

    def _parse_declaration(self) -> Declaration:
        s = self.scanner
        start = s.pos
        doc = s.take_doc_comment()
        if doc is not None:
            start = doc.span.start
        annotations = self._parse_annotations()
        modifiers = self._parse_modifiers()
        self._skip()

        if s.at_word("module"):
            return self._parse_module_clause(start, modifiers, doc, annotations)
        if s.at_word("import"):
            return self._parse_import(start, doc, annotations)
        if s.at_word("extends"):
            s.advance(len("extends"))
            source = self._parse_source_string("extends")
            return ExtendsClause(source.constant_value(), doc, annotations,
                                 Span(start, source.span.end))
        if s.at_word("amends"):
            s.advance(len("amends"))
            source = self._parse_source_string("amends")
            return AmendsClause(source.constant_value(), doc, annotations,
                                Span(start, source.span.end))
        if s.at_word("typealias"):
            return self._parse_typealias(start, modifiers, doc, annotations)
        if s.at_word("class"):
            return self._parse_class(start, modifiers, doc, annotations)
        if s.at_word("function"):
            return self._parse_function(start, modifiers, doc, annotations)
        if self._at_identifier():
            return self._parse_property(start, modifiers, doc, annotations)

        if s.at_end():
            self._fail_expected("a declaration")
        if self._is_stray(s.peek()):
            s.fail("E104", f"unexpected character '{s.peek()}'", self._here(),
                   label="expected a declaration")
        s.fail("E201", f"unexpected {self._describe_current()} at module level", self._here(),
               label="expected a declaration", expected="a declaration")

    def _parse_modifiers(self) -> frozenset[PrefixKeyword]:
        s = self.scanner
        found: set[PrefixKeyword] = set()
        while True:
            self._skip()
            for kw in PrefixKeyword:
                if s.at_word(kw.value):
                    s.advance(len(kw.value))
                    found.add(kw)
                    break
            else:
                return frozenset(found)

    def _parse_annotations(self) -> list[Annotation]:
        s = self.scanner
        annotations: list[Annotation] = []
        while self._at("@"):
            start = s.pos
            s.advance()
            name = self._parse_qualified_name("an annotation name")
            body = None
            if self._at("{"):
                body = self._parse_object_body()
            end = body.span.end if body else name.span.end
            annotations.append(Annotation(name, body, Span(start, end)))
        return annotations

    def _scan_identifier(self, what: str) -> Identifier:
        ident = self.scanner.scan_identifier()
        if ident is None:
            self._fail_expected(what)
        return ident

    def _expect_name(self, what: str) -> Identifier:
        """Parse an identifier that names something; keywords need backticks."""
        self._skip()
        ident = self._scan_identifier(what)
        if ident.kind is IdentKind.PLAIN and ident.name in _RESERVED:
            self.scanner.fail(
                "E202", f"keyword '{ident.name}' cannot be used as {what}", ident.span,
                label="reserved keyword", notes=[_BACKTICK_NOTE],
            )
        return ident

    def _parse_qualified_name(self, what: str) -> NamedType:
        s = self.scanner
        path = [self._scan_identifier(what)]
        while s.peek() == '.' and (s.peek(1) == '`' or is_ident_start(s.peek(1))):
            s.advance()
            path.append(self._scan_identifier(what))
        return NamedType(path, Span(path[0].span.start, path[-1].span.end))

    def _parse_source_string(self, keyword: str) -> StringLit:
        s = self.scanner
        self._skip()
        if not at_string(s):
            self._fail_expected(f"a string literal after '{keyword}'")
        lit = self._parse_string()
        if not lit.is_constant:
            s.fail("E200", f"'{keyword}' needs a constant string", lit.span,
                   label="interpolation is not allowed here", expected="a constant string")
        return lit

    def _parse_module_clause(self, start, modifiers, doc, annotations) -> ModuleClause:
        self.scanner.advance(len("module"))
        self._skip()
        name = self._parse_qualified_name("a module name")
        return ModuleClause(modifiers, name, doc, annotations, Span(start, name.span.end))

    def _parse_import(self, start, doc, annotations) -> ImportDecl:
        s = self.scanner
        s.advance(len("import"))
        globbed = s.peek() == '*'
        if globbed:
            s.advance()
        source = self._parse_source_string("import*" if globbed else "import")
        alias = None
        end = source.span.end
        if self._accept_keyword("as"):
            alias = self._expect_name("an import alias")
            end = alias.span.end
        return ImportDecl(source.constant_value(), globbed, alias, doc, annotations,
                          Span(start, end))

    def _parse_typealias(self, start, modifiers, doc, annotations) -> TypeAliasDecl:
        self.scanner.advance(len("typealias"))
        name = self._expect_name("a type alias name")
        type_params, _ = self._parse_type_params(name.span.end)
        self._expect("=")
        aliased = self._parse_type()
        return TypeAliasDecl(modifiers, name, type_params, aliased, doc, annotations,
                             Span(start, aliased.span.end))

    def _parse_type_params(self, end: int) -> tuple[list[TypeParameter], int]:
        """Parse an optional ``<in A, out B, C>`` list; returns it and its end offset."""
        s = self.scanner
        open_span = self._accept("<")
        if open_span is None:
            return [], end
        params: list[TypeParameter] = []
        close = self._accept(">")
        if close is not None:
            s.warning("W303", "empty type parameter list", open_span.cover(close),
                      label="remove '<>'")
            return params, close.end
        while True:
            self._skip()
            start = s.pos
            variance = Variance.PLAIN
            if s.at_word("in"):
                s.advance(2)
                variance = Variance.IN
            elif s.at_word("out"):
                s.advance(3)
                variance = Variance.OUT
            type_expr = self._parse_type()
            params.append(TypeParameter(variance, type_expr, Span(start, type_expr.span.end)))
            if not self._accept(","):
                break
        close = self._expect(">")
        return params, close.end

    def _parse_class(self, start, modifiers, doc, annotations) -> ClassDecl:
        self.scanner.advance(len("class"))
        name = self._expect_name("a class name")
        type_params, end = self._parse_type_params(name.span.end)
        extends = None
        if self._accept_keyword("extends"):
            extends = self._parse_type()
            end = extends.span.end
        body = None
        if self._at("{"):
            body, end = self._parse_class_body()
        return ClassDecl(modifiers, name, type_params, extends, body, doc, annotations,
                         Span(start, end))

    def _parse_class_body(self) -> tuple[list[PropertyDecl | FunctionDecl], int]:
        s = self.scanner
        open_span = self._expect("{")
        members: list[PropertyDecl | FunctionDecl] = []
        while True:
            self._skip()
            if s.at_end():
                s.fail("E200", "expected '}' to close class body", open_span,
                       label="class body opened here", expected="'}'")
            if s.peek() == '}':
                s.advance()
                return members, s.pos
            start = s.pos
            try:
                members.append(self._parse_class_member())
            except ParseFailure:
                if self._error_limit_reached():
                    raise
                self._synchronize_member(start)

    def _parse_class_member(self) -> PropertyDecl | FunctionDecl:
        s = self.scanner
        start = s.pos
        doc = s.take_doc_comment()
        if doc is not None:
            start = doc.span.start
        annotations = self._parse_annotations()
        modifiers = self._parse_modifiers()
        self._skip()
        if s.at_word("function"):
            return self._parse_function(start, modifiers, doc, annotations)
        if self._at_identifier():
            return self._parse_property(start, modifiers, doc, annotations)
        self._fail_expected("a property or method")

    def _parse_function(self, start, modifiers, doc, annotations) -> FunctionDecl:
        self.scanner.advance(len("function"))
        name = self._expect_name("a function name")
        type_params, _ = self._parse_type_params(name.span.end)
        params, end = self._parse_params()
        return_type = None
        if self._accept(":"):
            return_type = self._parse_type()
            end = return_type.span.end
        body = None
        if self._at_assign():
            self.scanner.advance()
            body = self._parse_expr()
            end = body.span.end
        return FunctionDecl(modifiers, name, type_params, params, return_type, body,
                            doc, annotations, Span(start, end))

    def _parse_params(self) -> tuple[list[Param], int]:
        """Parse ``(name: Type, ...)``; returns the parameters and the end offset."""
        self._expect("(")
        params: list[Param] = []
        while not self._at(")"):
            name = self._expect_name("a parameter name")
            type_expr = None
            if self._accept(":"):
                type_expr = self._parse_type()
            end = type_expr.span.end if type_expr else name.span.end
            params.append(Param(name, type_expr, Span(name.span.start, end)))
            if not self._accept(","):
                break
        close = self._expect(")")
        return params, close.end

    def _parse_property(self, start, modifiers, doc, annotations) -> PropertyDecl:
        name = self._expect_name("a property name")
        form = self._parse_property_form(name)
        return PropertyDecl(modifiers, name, form, doc, annotations,
                            Span(start, form.span.end))

    def _parse_property_form(self, name: Identifier) -> PropertyForm:
        if self._at("{"):
            return self._parse_object_form()
        type_expr = None
        if self._accept(":"):
            type_expr = self._parse_type()
        if self._at_assign():
            self.scanner.advance()
            value = self._parse_expr()
            start = type_expr.span.start if type_expr else value.span.start
            return TypedInit(type_expr, value, Span(start, value.span.end))
        if type_expr is not None:
            return TypeOnly(type_expr, type_expr.span)

        suggestions = [
            Suggestion(f"did you mean '{match}'?", match)
            for match in difflib.get_close_matches(name.name, _SUGGESTABLE_KEYWORDS,
                                                   n=1, cutoff=0.7)
        ]
        self.scanner.fail(
            "E203", f"property '{name.name}' needs a type annotation, a value or an object body",
            name.span, label="empty property declaration", expected="':', '=' or '{'",
            suggestions=suggestions,
        )

    # ── Object bodies ────────────────────────────────────────────

    def _parse_object_form(self) -> ObjectForm:
        bodies = [self._parse_object_body()]
        while self._at("{"):
            bodies.append(self._parse_object_body())
        return ObjectForm(bodies, Span(bodies[0].span.start, bodies[-1].span.end))

    def _parse_object_body(self) -> ObjectBody:
        s = self.scanner
        open_span = self._expect("{")
        members: list[ObjectMember] = []
        with s.using(Mode.LOOSE):
            while True:
                self._skip()
                if s.at_end():
                    s.fail("E200", "expected '}' to close object body", open_span,
                           label="unclosed '{'", expected="'}'")
                if s.peek() == '}':
                    s.advance()
                    break
                if s.peek() == ';':
                    s.advance()
                    continue
                members.append(self._parse_object_member())
        return ObjectBody(members, Span(open_span.start, s.pos))

    def _parse_object_member(self) -> ObjectMember:
        s = self.scanner
        if s.startswith("[["):
            return self._parse_predicate_entry()
        if s.startswith("["):
            return self._parse_mapping_entry()
        if s.startswith("..."):
            return self._parse_spread()
        if self._at_field_amend():
            return self._parse_field_amend()
        if s.at_word("when"):
            return self._parse_when()
        if s.at_word("for"):
            return self._parse_for()
        member = self._try_property_member()
        if member is not None:
            return member
        expr = self._parse_expr()
        return ElementMember(expr, expr.span)

    def _try_property_member(self) -> PropertyDecl | FunctionDecl | None:
        s = self.scanner
        cp = s.mark()
        start = s.pos
        doc = s.take_doc_comment()
        if doc is not None:
            start = doc.span.start
        annotations = self._parse_annotations()
        modifiers = self._parse_modifiers()
        self._skip()
        if s.at_word("function"):
            return self._parse_function(start, modifiers, doc, annotations)
        if annotations or modifiers or self._at_property_head():
            return self._parse_property(start, modifiers, doc, annotations)
        s.reset(cp)
        return None

    def _at_property_head(self) -> bool:
        """True if the cursor is at ``name =``, ``name :`` or ``name {``."""
        s = self.scanner
        cp = s.mark()
        try:
            ident = s.scan_identifier()
        except ParseFailure:
            s.reset(cp)
            return False
        if ident is None or (ident.kind is IdentKind.PLAIN and ident.name in KEYWORDS):
            s.reset(cp)
            return False
        self._skip()
        found = s.peek() in "{:" or (s.peek() == '=' and s.peek(1) != '=')
        s.reset(cp)
        return found

    def _parse_entry_value(self) -> Expr | ObjectForm:
        if self._at_assign():
            self.scanner.advance()
            return self._parse_expr()
        if self._at("{"):
            return self._parse_object_form()
        self._fail_expected("'=' or '{'")

    def _parse_mapping_entry(self) -> MappingEntry:
        s = self.scanner
        start = s.pos
        s.advance()
        key = self._parse_expr()
        self._expect("]")
        value = self._parse_entry_value()
        return MappingEntry(key, value, Span(start, value.span.end))

    def _parse_predicate_entry(self) -> PredicateEntry:
        s = self.scanner
        start = s.pos
        s.advance(2)
        predicate = self._parse_expr()
        self._expect("]]")
        value = self._parse_entry_value()
        return PredicateEntry(predicate, value, Span(start, value.span.end))

    def _parse_spread(self) -> SpreadMember:
        s = self.scanner
        start = s.pos
        s.advance(3)
        nullable = s.peek() == '?'
        if nullable:
            s.advance()
        expr = self._parse_expr()
        return SpreadMember(expr, nullable, Span(start, expr.span.end))

    def _at_field_amend(self) -> bool:
        """True if the cursor is at ``(this[``."""
        s = self.scanner
        if not s.startswith("("):
            return False
        cp = s.mark()
        s.advance()
        self._skip()
        found = False
        if s.at_word("this"):
            s.advance(4)
            self._skip()
            found = s.startswith("[")
        s.reset(cp)
        return found

    def _parse_field_amend(self) -> FieldAmend:
        s = self.scanner
        start = s.pos
        s.advance()
        self._expect_keyword("this")
        self._expect("[")
        index = self._parse_expr()
        self._expect("]")
        self._expect(")")
        body = self._parse_object_body()
        return FieldAmend(index, body, Span(start, body.span.end))

    def _parse_when(self) -> WhenGenerator:
        s = self.scanner
        start = s.pos
        s.advance(len("when"))
        self._expect("(")
        condition = self._parse_expr()
        self._expect(")")
        then_body = self._parse_object_body()
        else_body = None
        if self._accept_keyword("else"):
            else_body = self._parse_object_body()
        end = (else_body or then_body).span.end
        return WhenGenerator(condition, then_body, else_body, Span(start, end))

    def _parse_for(self) -> ForGenerator:
        s = self.scanner
        start = s.pos
        s.advance(len("for"))
        self._expect("(")
        bindings = [self._expect_name("a loop variable")]
        if self._accept(","):
            bindings.append(self._expect_name("a loop variable"))
        self._expect_keyword("in")
        iterable = self._parse_expr()
        self._expect(")")
        body = self._parse_object_body()
        return ForGenerator(bindings, iterable, body, Span(start, body.span.end))

    # ── Expressions ──────────────────────────────────────────────

    def _parse_expr(self) -> Expr:
        operands = [self._parse_operand()]
        operators: list[str] = []
        while True:
            op = self._peek_infix(operands[-1])
            if op is None:
                break
            self.scanner.advance(len(op))
            operators.append(op)
            operands.append(self._parse_operand())
        return fold_infix(operands, operators)

    def _peek_infix(self, left: Expr) -> str | None:
        s = self.scanner
        self._skip()
        for op in INFIX_OPERATORS:
            if not s.startswith(op):
                continue
            if op == "-" and (s.startswith("->") or s.newline_between(left.span.end, s.pos)):
                return None
            return op
        return None

    def _parse_operand(self) -> Expr:
        """Parse ``prefix* primary postfix* (is|as Type)*``."""
        s = self.scanner
        prefixes: list[tuple[str, int]] = []
        while True:
            self._skip()
            if s.startswith("-") and not s.startswith("->"):
                prefixes.append(("-", s.pos))
            elif s.startswith("!") and not s.startswith("!="):
                prefixes.append(("!", s.pos))
            else:
                break
            s.advance()
        expr = self._parse_primary()
        expr = self._parse_postfix(expr)
        expr = self._parse_type_tests(expr)
        for op, start in reversed(prefixes):
            expr = UnaryExpr(op, expr, Span(start, expr.span.end))
        return expr

    def _parse_type_tests(self, expr: Expr) -> Expr:
        s = self.scanner
        while True:
            self._skip()
            if s.at_word("is"):
                s.advance(2)
                type_expr = self._parse_type()
                expr = TypeTestExpr(expr, type_expr, expr.span.cover(type_expr.span))
            elif s.at_word("as"):
                s.advance(2)
                type_expr = self._parse_type()
                expr = TypeCastExpr(expr, type_expr, expr.span.cover(type_expr.span))
            else:
                return expr

    def _parse_postfix(self, expr: Expr) -> Expr:
        s = self.scanner
        while True:
            self._skip()
            start = s.pos
            if s.startswith("?."):
                s.advance(2)
                member = self._parse_member()
                access = NullSafeAccess(member, Span(start, member.span.end))
                expr = IndexExpr(expr, access, expr.span.cover(access.span))
            elif s.startswith(".") and not s.startswith("..."):
                adjacent = start == expr.span.end
                s.advance()
                member = self._parse_member()
                unit = self._unit_literal(expr, member) if adjacent else None
                if unit is not None:
                    expr = unit
                    continue
                access = DotAccess(member, Span(start, member.span.end))
                expr = IndexExpr(expr, access, expr.span.cover(access.span))
            elif s.startswith("[") and not s.newline_between(expr.span.end, start):
                s.advance()
                index = self._parse_expr()
                close = self._expect("]")
                access = BracketAccess(index, Span(start, close.end))
                expr = IndexExpr(expr, access, expr.span.cover(access.span))
            elif s.startswith("!!"):
                s.advance(2)
                expr = NonNullExpr(expr, Span(expr.span.start, s.pos))
            elif s.startswith("{") and not isinstance(expr, _LITERAL_NODES):
                expr = self._parse_amendments(expr)
            else:
                return expr

    def _unit_literal(
        self, amount: Expr, member: Identifier | CallExpr,
    ) -> DurationLit | DataSizeLit | None:
        if not isinstance(amount, (IntLit, FloatLit)) or not isinstance(member, Identifier):
            return None
        if member.kind is not IdentKind.PLAIN:
            return None
        span = amount.span.cover(member.span)
        if member.name in DURATION_UNITS:
            return DurationLit(amount, member.name, span)
        if member.name in DATA_SIZE_UNITS:
            return DataSizeLit(amount, member.name, span)
        return None

    def _parse_member(self) -> Identifier | CallExpr:
        s = self.scanner
        self._skip()
        ident = self._scan_identifier("a member name")
        if s.peek() == '(':
            return self._parse_call(ident, CallKind.IDENTIFIER)
        return ident

    def _parse_amendments(self, base: Expr) -> Expr:
        layers: list[ObjectBody] = []
        while self._at("{"):
            layers.append(self._parse_object_body())
        span = Span(base.span.start, layers[-1].span.end)
        if isinstance(base, ParenExpr):
            amended = AmendExpr(base.inner, layers[0],
                                Span(base.span.start, layers[0].span.end))
            if len(layers) == 1:
                return amended
            return AmendedValue(amended, layers[1:], span)
        return AmendedValue(base, layers, span)

    def _parse_primary(self) -> Expr:
        s = self.scanner
        self._skip()
        start = s.pos

        if s.at_word("if"):
            return self._parse_if()
        if s.at_word("let"):
            return self._parse_let()
        if s.startswith("("):
            lam = self._try_lambda()
            if lam is not None:
                return lam
            s.advance()
            inner = self._parse_expr()
            close = self._expect(")")
            return ParenExpr(inner, Span(start, close.end))
        if s.at_word("new"):
            return self._parse_new()
        if at_number(s):
            return parse_number(s, style_warnings=self.options.style_warnings)
        if at_string(s):
            return self._parse_string()
        if s.at_word("true") or s.at_word("false"):
            value = s.at_word("true")
            s.advance(4 if value else 5)
            return BoolLit(value, Span(start, s.pos))
        if s.at_word("null"):
            s.advance(4)
            return NullLit(Span(start, s.pos))
        if self._at_identifier():
            return self._parse_identifier_expr()
        self._fail_expected("an expression")

    def _parse_identifier_expr(self) -> Expr:
        s = self.scanner
        start = s.pos
        if s.peek_word() == "read" and s.peek(4) in "?*" and s.peek(5) == '(':
            kind = CallKind.NULLABLE_READ if s.peek(4) == '?' else CallKind.GLOBBED_READ
            callee = Identifier("read", IdentKind.PLAIN, Span(start, start + 4))
            s.advance(5)
            return self._parse_call(callee, kind)

        ident = self._scan_identifier("an expression")
        keyword = ident.kind is IdentKind.PLAIN and ident.name in _RESERVED
        if s.peek() == '(':
            if keyword and ident.name not in _CALL_KEYWORDS:
                self._fail_keyword_in_expression(ident)
            return self._parse_call(ident, CallKind.IDENTIFIER)
        if keyword and ident.name not in _SELF_REFERENCES:
            self._fail_keyword_in_expression(ident)
        return ident

    def _fail_keyword_in_expression(self, ident: Identifier) -> NoReturn:
        self.scanner.fail(
            "E202", f"unexpected keyword '{ident.name}' in expression", ident.span,
            label="reserved keyword", expected="an expression", notes=[_BACKTICK_NOTE],
        )

    def _parse_call(self, callee: Identifier, kind: CallKind) -> CallExpr:
        """Parse the argument list; the cursor is on the adjacent '('."""
        self.scanner.advance()
        args: list[Expr] = []
        while not self._at(")"):
            args.append(self._parse_expr())
            if not self._accept(","):
                break
        close = self._expect(")")
        return CallExpr(callee, kind, args, Span(callee.span.start, close.end))

    def _try_lambda(self) -> LambdaExpr | None:
        s = self.scanner
        cp = s.mark()
        start = s.pos
        try:
            params, _ = self._parse_params()
        except ParseFailure:
            s.reset(cp)
            return None
        if not self._at("->"):
            s.reset(cp)
            return None
        s.advance(2)
        body = self._parse_expr()
        return LambdaExpr(params, body, Span(start, body.span.end))

    def _parse_if(self) -> IfExpr:
        s = self.scanner
        start = s.pos
        s.advance(len("if"))
        self._expect("(")
        condition = self._parse_expr()
        self._expect(")")
        then_branch = self._parse_expr()
        self._expect_keyword("else")
        else_branch = self._parse_expr()
        return IfExpr(condition, then_branch, else_branch, Span(start, else_branch.span.end))

    def _parse_let(self) -> LetExpr:
        s = self.scanner
        start = s.pos
        s.advance(len("let"))
        self._expect("(")
        name = self._expect_name("a variable name")
        type_expr = None
        if self._accept(":"):
            type_expr = self._parse_type()
        if not self._at_assign():
            self._fail_expected("'='")
        s.advance()
        value = self._parse_expr()
        self._expect(")")
        body = self._parse_expr()
        return LetExpr(name, type_expr, value, body, Span(start, body.span.end))

    def _parse_new(self) -> NewExpr:
        s = self.scanner
        start = s.pos
        s.advance(len("new"))
        type_expr = None
        if not self._at("{"):
            type_expr = self._parse_type()
        body = self._parse_object_body()
        return NewExpr(type_expr, body, Span(start, body.span.end))

    def _parse_string(self) -> StringLit:
        return parse_string(self.scanner, self._parse_expr,
                            style_warnings=self.options.style_warnings)

    # ── Types ────────────────────────────────────────────────────

    def _parse_type(self) -> TypeExpr:
        s = self.scanner
        self._skip()
        start = s.pos
        members = [self._parse_type_segment()]
        while self._at("|") and not s.startswith("||") and not s.startswith("|>"):
            s.advance()
            members.append(self._parse_type_segment())
        if len(members) == 1:
            return members[0]
        flat: list[TypeExpr] = []
        for member in members:
            if isinstance(member, UnionType):
                flat.extend(member.members)
            else:
                flat.append(member)
        return UnionType(flat, Span(start, members[-1].span.end))

    def _parse_type_segment(self) -> TypeExpr:
        """Parse ``*? atom (? | (constraints))*``; suffixes must be adjacent."""
        s = self.scanner
        self._skip()
        start = s.pos
        default = s.peek() == '*'
        if default:
            s.advance()
            self._skip()
        base = self._parse_type_atom()
        while True:
            if s.peek() == '?' and s.peek(1) not in "?.":
                s.advance()
                base = NullableType(base, Span(base.span.start, s.pos))
            elif s.peek() == '(' and not isinstance(base, FunctionType):
                base = self._parse_constraints(base)
            else:
                break
        if default:
            return DefaultType(base, Span(start, base.span.end))
        return base

    def _parse_constraints(self, base: TypeExpr) -> ConstrainedType:
        self.scanner.advance()
        predicates = [self._parse_expr()]
        while self._accept(","):
            predicates.append(self._parse_expr())
        close = self._expect(")")
        return ConstrainedType(base, predicates, Span(base.span.start, close.end))

    def _parse_type_atom(self) -> TypeExpr:
        s = self.scanner
        start = s.pos
        if s.peek() == '(':
            s.advance()
            params: list[TypeExpr] = []
            while not self._at(")"):
                params.append(self._parse_type())
                if not self._accept(","):
                    break
            close = self._expect(")")
            cp = s.mark()
            self._skip()
            if s.startswith("->"):
                s.advance(2)
                return_type = self._parse_type()
                return FunctionType(params, return_type, Span(start, return_type.span.end))
            s.reset(cp)
            if len(params) != 1:
                self._fail_expected("'->' after function type parameters")
            return dataclasses.replace(params[0], span=Span(start, close.end))
        if at_string(s):
            lit = self._parse_string()
            if not lit.is_constant:
                s.fail("E200", "string literal types cannot contain interpolation", lit.span,
                       expected="a constant string")
            return StringLiteralType(lit, lit.span)
        if self._at_identifier():
            name = self._parse_qualified_name("a type")
            if s.peek() == '<':
                return self._parse_type_args(name)
            return name
        self._fail_expected("a type")

    def _parse_type_args(self, base: NamedType) -> TypeExpr:
        s = self.scanner
        open_span = Span(s.pos, s.pos + 1)
        s.advance()
        args: list[TypeExpr] = []
        while not self._at(">"):
            args.append(self._parse_type())
            if not self._accept(","):
                break
        close = self._expect(">")
        span = Span(base.span.start, close.end)
        if not args:
            s.warning("W303", "empty type argument list", open_span.cover(close),
                      label="remove '<>'")
            return NamedType(base.path, span)
        return GenericType(base, args, span)


def parse(
    text: str,
    filename: str = "<input>",
    options: ParseOptions | None = None,
) -> tuple[Module, list[Diagnostic]]:
    """Parse Pkl source text into a syntax tree plus diagnostics.

    Never raises for malformed input: syntax errors are reported in the
    returned diagnostics and the tree holds every declaration that could
    be recovered.
    """
    module = Parser(text, filename, options).parse()
    return module, module.diagnostics
