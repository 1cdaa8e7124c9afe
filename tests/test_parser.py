"""Tests for declarations, recovery, spans and round-tripping."""

from __future__ import annotations

import pytest

from pklparse import parse as public_parse
from pklparse.ast_nodes import (
    AmendsClause,
    BinaryExpr,
    ClassDecl,
    ExtendsClause,
    FunctionDecl,
    GenericType,
    ImportDecl,
    IdentKind,
    Module,
    ModuleClause,
    NamedType,
    ObjectForm,
    PrefixKeyword,
    PropertyDecl,
    TypedInit,
    TypeOnly,
    Variance,
    iter_children,
    same_shape,
    walk,
)
from pklparse.config import ParseOptions
from pklparse.parser import Parser, parse
from pklparse.source import Span
from tests.helpers import codes, parse_decl, parse_fails, parse_ok, parse_warns


SAMPLE = '''\
/// Service configuration.
open module acme.service

amends "base.pkl"

import "pkl:math"
import* "plugins/*.pkl" as plugins

/// A network port.
typealias Port = Int(this > 0, this < 65536)

@Deprecated { message = "use Endpoint" }
abstract class Server<out T> extends Base {
  /// Listening port.
  port: Port = 8080
  hosts: Listing<String>
  local function url(path: String): String = "http://\\(host):\\(port)\\(path)"
}

function scale(n: Number, by) = n * by

timeout: Duration = 30.s
limit = 10.mb
name = if (env == "prod") "acme" else "acme-\\(env)"
backend = new Server<Int> {
  port = 9090
  hosts { "a"; "b" }
  [[this.startsWith("x")]] = null
  when (debug) { verbose = true } else { verbose = false }
  for (k, v in extra) { [k] = v }
  ...?overrides
}
chain = base { a = 1 } { b = 2 }
mapped = list.map((x) -> x * 2).filter((x) -> x > 2)?.first ?? 0
text = """
  multi
    line \\(name)
  """
raw = #"not \\(interpolated) "quoted""#
'''


class TestEntryPoint:
    def test_public_parse(self):
        module, diagnostics = public_parse("x = 1")
        assert isinstance(module, Module)
        assert diagnostics == []
        assert module.diagnostics is diagnostics

    def test_empty_source(self):
        module, diagnostics = parse("")
        assert module.declarations == []
        assert diagnostics == []
        assert module.span == Span(0, 0)

    def test_only_comments(self):
        module, diagnostics = parse("// hello\n/* world */\n")
        assert module.declarations == []
        assert diagnostics == []

    def test_parser_class(self):
        module = Parser("x = 1", "a.pkl").parse()
        assert len(module.declarations) == 1
        assert module.filename == "a.pkl"

    def test_default_filename(self):
        module, _ = parse("x = 1")
        assert module.filename == "<input>"

    def test_sample_parses_cleanly(self):
        module = parse_ok(SAMPLE)
        kinds = [type(d).__name__ for d in module.declarations]
        assert kinds == [
            "ModuleClause", "AmendsClause", "ImportDecl", "ImportDecl",
            "TypeAliasDecl", "ClassDecl", "FunctionDecl",
            "PropertyDecl", "PropertyDecl", "PropertyDecl", "PropertyDecl",
            "PropertyDecl", "PropertyDecl", "PropertyDecl", "PropertyDecl",
        ]

    def test_crlf_line_endings(self):
        module = parse_ok("x = 1\r\ny = 2\r\n")
        assert [d.name.name for d in module.declarations] == ["x", "y"]

    @pytest.mark.parametrize("source", [
        "{", "}", ")", "\"", "#\"", "x = \"\\(", "class", "@", "`", "x = 1.",
        "import", "x = new", "x = (", "/*", "x = [", "x { [", "function f(",
        "class A { x: = }", "x = a.", "x: Int(", "typealias", "x = \"\\u{",
        "x = #\"\"\"\n", "module", "amends", "x = let (", "obj { for (",
    ])
    def test_never_raises(self, source):
        module, diagnostics = parse(source)
        assert isinstance(module, Module)
        assert any(d.is_error for d in diagnostics)


class TestClasses:
    def test_class_with_extends_and_body(self):
        decl = parse_decl("class Foo extends Bar { x: Int }")
        assert isinstance(decl, ClassDecl)
        assert decl.name.name == "Foo"
        assert isinstance(decl.extends, NamedType)
        assert decl.extends.name == "Bar"
        (member,) = decl.body
        assert isinstance(member, PropertyDecl)
        assert member.name.name == "x"
        assert isinstance(member.form, TypeOnly)
        assert member.form.type_expr.name == "Int"

    def test_class_without_body(self):
        decl = parse_decl("class Marker")
        assert decl.body is None
        assert decl.span == Span(0, 12)

    def test_empty_body(self):
        decl = parse_decl("class Empty {}")
        assert decl.body == []

    def test_modifiers(self):
        decl = parse_decl("abstract class Base {}")
        assert decl.modifiers == frozenset({PrefixKeyword.ABSTRACT})
        assert parse_decl("open class Base").modifiers == frozenset({PrefixKeyword.OPEN})

    def test_type_parameters_with_variance(self):
        decl = parse_decl("class Box<in A, out B, C>")
        assert [p.variance for p in decl.type_params] == [
            Variance.IN, Variance.OUT, Variance.PLAIN,
        ]
        assert [p.type_expr.name for p in decl.type_params] == ["A", "B", "C"]

    def test_generic_extends(self):
        decl = parse_decl("class Names extends Listing<String>")
        assert isinstance(decl.extends, GenericType)

    def test_members(self):
        decl = parse_decl(
            "class Person {\n"
            "  name: String\n"
            "  hidden age: Int = 0\n"
            "  function greet(other: Person): String = \"hi \\(other.name)\"\n"
            "}"
        )
        name, age, greet = decl.body
        assert age.modifiers == frozenset({PrefixKeyword.HIDDEN})
        assert isinstance(greet, FunctionDecl)
        assert greet.params[0].type_expr.name == "Person"

    def test_annotated_member(self):
        decl = parse_decl("class A {\n  @Deprecated\n  old: Int\n}")
        (member,) = decl.body
        assert [a.name.name for a in member.annotations] == ["Deprecated"]

    def test_keyword_name_needs_backticks(self):
        diags = parse_fails("class if {}", "E202")
        assert diags[0].notes == ["enclose it in backticks to use it as an identifier"]
        decl = parse_decl("class `if` {}")
        assert decl.name.name == "if"
        assert decl.name.kind is IdentKind.BACKTICK

    def test_unclosed_body(self):
        diags = parse_fails("class A {\n  x: Int\n", "E200")
        assert "class body" in diags[0].message


class TestFunctions:
    def test_full_signature(self):
        decl = parse_decl("function add(a: Int, b: Int): Int = a + b")
        assert isinstance(decl, FunctionDecl)
        assert [p.name.name for p in decl.params] == ["a", "b"]
        assert decl.return_type.name == "Int"
        assert isinstance(decl.body, BinaryExpr)
        assert decl.span == Span(0, 41)

    def test_untyped_params(self):
        decl = parse_decl("function id(x) = x")
        assert decl.params[0].type_expr is None

    def test_type_params(self):
        decl = parse_decl("function first<T>(xs: List<T>): T = xs.first")
        assert [p.type_expr.name for p in decl.type_params] == ["T"]

    def test_external_without_body(self):
        decl = parse_decl("external function now(): Int")
        assert decl.body is None
        assert decl.modifiers == frozenset({PrefixKeyword.EXTERNAL})
        assert decl.span == Span(0, 28)

    def test_keyword_param(self):
        parse_fails("function f(class) = 1", "E202")


class TestProperties:
    def test_typed_init(self):
        decl = parse_decl("port: Int = 80")
        assert isinstance(decl.form, TypedInit)
        assert decl.form.type_expr.name == "Int"
        assert decl.form.span == Span(6, 14)

    def test_untyped_init(self):
        decl = parse_decl("port = 80")
        assert decl.form.type_expr is None

    def test_type_only(self):
        decl = parse_decl("port: Int")
        assert isinstance(decl.form, TypeOnly)

    def test_object_form(self):
        decl = parse_decl("server { port = 80 }")
        assert isinstance(decl.form, ObjectForm)

    def test_modifiers_are_a_set(self):
        decl = parse_decl("local fixed const x = 1")
        assert decl.modifiers == frozenset({
            PrefixKeyword.LOCAL, PrefixKeyword.FIXED, PrefixKeyword.CONST,
        })

    def test_backtick_name(self):
        decl = parse_decl("`my-prop` = 1")
        assert decl.name.name == "my-prop"

    def test_empty_property(self):
        diags = parse_fails("timeout", "E203")
        assert diags[0].span == Span(0, 7)
        assert diags[0].suggestions == []

    def test_misspelled_keyword_suggestion(self):
        diags = parse_fails("clas Foo {}", "E203")
        assert [s.replacement for s in diags[0].suggestions] == ["class"]

    def test_misspelled_function_suggestion(self):
        diags = parse_fails("fucntion f() = 1", "E203")
        assert [s.replacement for s in diags[0].suggestions] == ["function"]

    def test_equality_is_not_assignment(self):
        parse_fails("x == 1", "E203")


class TestAnnotationsAndDocs:
    def test_annotation_with_body(self):
        decl = parse_decl('@Deprecated { message = "no" }\nx = 1')
        (ann,) = decl.annotations
        assert ann.name.name == "Deprecated"
        assert len(ann.body.members) == 1
        assert decl.span.start == 0

    def test_qualified_annotation(self):
        decl = parse_decl("@meta.Since { version = \"1.0\" } @Internal\nx = 1")
        assert [a.name.name for a in decl.annotations] == ["meta.Since", "Internal"]

    def test_doc_comment_attaches(self):
        decl = parse_decl("/// The port.\n/// Defaults to 80.\nport: Int = 80")
        assert decl.doc_comment.text == "The port.\nDefaults to 80."
        assert decl.span.start == 0

    def test_doc_comment_before_annotation(self):
        decl = parse_decl("/// Old.\n@Deprecated\nold = 1")
        assert decl.doc_comment.text == "Old."
        assert len(decl.annotations) == 1

    def test_each_declaration_gets_its_own_doc(self):
        module = parse_ok("/// A\na = 1\n/// B\nb = 2")
        assert [d.doc_comment.text for d in module.declarations] == ["A", "B"]

    def test_orphan_doc_comment(self):
        diags = parse_warns("x = 1\n/// dangling\n", "W300")
        assert diags[0].span == Span(6, 18)

    def test_orphan_warning_can_be_disabled(self):
        source = "x = 1\n/// dangling\n"
        assert codes(source, ParseOptions(doc_comment_warnings=False)) == []

    def test_doc_comment_of_failed_declaration_is_reported(self):
        source = "/// The port.\nport = )\nhost = 1"
        module, diagnostics = parse(source)
        assert [d.code for d in diagnostics] == ["W300", "E200"]
        assert diagnostics[0].span == Span(0, 13)
        assert module.declarations[0].doc_comment is None


class TestModuleHeader:
    def test_module_clause(self):
        decl = parse_decl("open module acme.config")
        assert isinstance(decl, ModuleClause)
        assert decl.open
        assert decl.name.name == "acme.config"

    def test_closed_module(self):
        assert not parse_decl("module foo").open

    def test_imports(self):
        module = parse_ok('import "pkl:math"\nimport* "*.pkl" as all')
        plain, globbed = module.declarations
        assert isinstance(plain, ImportDecl)
        assert plain.source == "pkl:math"
        assert not plain.globbed
        assert plain.alias is None
        assert globbed.globbed
        assert globbed.alias.name == "all"
        assert globbed.span == Span(18, 40)

    def test_import_alias_keyword(self):
        parse_fails('import "a.pkl" as class', "E202")

    def test_import_needs_constant_string(self):
        parse_fails('import "\\(x).pkl"', "E200")

    def test_import_needs_string(self):
        diags = parse_fails("import foo", "E200")
        assert "string literal" in diags[0].message

    def test_amends_and_extends_clauses(self):
        amends = parse_decl('amends "base.pkl"')
        assert isinstance(amends, AmendsClause)
        assert amends.source == "base.pkl"
        extends = parse_decl('extends "base.pkl"')
        assert isinstance(extends, ExtendsClause)

    def test_amends_and_extends_conflict(self):
        module = parse_ok('amends "a.pkl"\nextends "b.pkl"')
        assert len(module.declarations) == 2
        assert codes('amends "a.pkl"\nextends "b.pkl"') == ["W301"]

    def test_duplicate_clause(self):
        assert codes('amends "a.pkl"\namends "b.pkl"') == ["W302"]
        assert codes("module a\nmodule b") == ["W302"]

    def test_module_must_come_first(self):
        diags = parse_warns('import "a.pkl"\nmodule foo', "W306")
        assert "first" in diags[0].message

    def test_imports_before_declarations(self):
        diags = parse_warns('x = 1\nimport "a.pkl"', "W306")
        assert diags[0].span == Span(6, 20)

    def test_well_ordered_header(self):
        assert codes('module m\nextends "b.pkl"\nimport "c.pkl"\nx = 1') == []


class TestRecovery:
    def test_resumes_at_next_line(self):
        module, diagnostics = parse("a = (1\nb = 2\nc = 3")
        assert [d.code for d in diagnostics] == ["E200"]
        assert [d.name.name for d in module.declarations] == ["b", "c"]

    def test_error_inside_multiline_expression(self):
        module, diagnostics = parse("a = (1\n  + 2\n  + 3\nb = 2")
        assert len([d for d in diagnostics if d.is_error]) == 1
        assert [d.name.name for d in module.declarations] == ["b"]

    def test_skips_indented_continuation(self):
        module, diagnostics = parse("a = f(1,\n  ]\n  x)\nb = 2")
        assert len([d for d in diagnostics if d.is_error]) == 1
        assert [d.name.name for d in module.declarations] == ["b"]

    def test_collects_several_errors(self):
        module, diagnostics = parse("a = )\nb = 1\nc = )\nd = 2")
        assert [d.code for d in diagnostics] == ["E200", "E200"]
        assert [d.name.name for d in module.declarations] == ["b", "d"]

    def test_class_member_recovery(self):
        module, diagnostics = parse("class A {\n  x: = 1\n  y: Int\n}\nz = 1")
        assert [d.code for d in diagnostics] == ["E200"]
        cls, z = module.declarations
        assert [m.name.name for m in cls.body] == ["y"]
        assert z.name.name == "z"

    def test_class_member_recovery_skips_nested_braces(self):
        module, diagnostics = parse("class A {\n  x { = }\n  y: Int\n}")
        assert len([d for d in diagnostics if d.is_error]) == 1
        assert [m.name.name for m in module.declarations[0].body] == ["y"]

    def test_unexpected_token_at_module_level(self):
        diags = parse_fails("= 1", "E201")
        assert diags[0].span == Span(0, 1)

    def test_stray_character_at_module_level(self):
        module, diagnostics = parse("x = 1 ^ 2\ny = 2")
        assert [d.code for d in diagnostics] == ["E104"]
        assert [d.name.name for d in module.declarations] == ["x", "y"]

    def test_max_errors(self):
        source = "a = )\nb = )\nc = )"
        assert len(codes(source)) == 3
        assert codes(source, ParseOptions(max_errors=1)) == ["E200"]

    def test_diagnostics_sorted_by_position(self):
        source = "obj {\n  /// orphan\n  1\n}\ny = )"
        _, diagnostics = parse(source)
        assert [d.code for d in diagnostics] == ["W300", "E200"]

    def test_error_at_end_of_input_sorts_last(self):
        _, diagnostics = parse('a = "x\\q"\nb = 1 +')
        assert [d.code for d in diagnostics] == ["E101", "E200"]
        assert [d.span.start for d in diagnostics] == [6, 17]
        assert len(diagnostics[1].span) == 0

    def test_error_carries_expected(self):
        diags = parse_fails("x = (1", "E200")
        assert diags[0].expected == "')'"


class TestSpans:
    def test_parents_cover_children(self):
        module = parse_ok(SAMPLE)
        for node in walk(module):
            for child in iter_children(node):
                assert node.span.start <= child.span.start, (node, child)
                assert child.span.end <= node.span.end, (node, child)

    def test_declaration_spans(self):
        module = parse_ok("x = 1\n\nclass A { y: Int }\n")
        x, a = module.declarations
        assert x.span == Span(0, 5)
        assert a.span == Span(7, 25)

    def test_module_span(self):
        module = parse_ok("x = 1\n")
        assert module.span == Span(0, 6)


class TestRoundTrip:
    @staticmethod
    def rebuild(source: str) -> tuple[Module, Module]:
        module = parse_ok(source)
        pieces = [source[d.span.start:d.span.end] for d in module.declarations]
        return module, parse_ok("\n".join(pieces))

    def test_sample(self):
        original, rebuilt = self.rebuild(SAMPLE)
        assert same_shape(original.declarations, rebuilt.declarations)

    def test_comments_between_declarations_are_dropped(self):
        original, rebuilt = self.rebuild("a = 1 // one\n/* gap */\nb = a + 1")
        assert same_shape(original.declarations, rebuilt.declarations)

    def test_same_shape_detects_differences(self):
        a = parse_ok("x = 1 + 2")
        b = parse_ok("x = 1 * 2")
        assert not same_shape(a.declarations, b.declarations)

    def test_same_shape_ignores_spans(self):
        a = parse_ok("x = 1")
        b = parse_ok("x   =   1")
        assert same_shape(a.declarations, b.declarations)
