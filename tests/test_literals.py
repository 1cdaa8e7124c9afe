"""Tests for number and string literal parsing."""

from __future__ import annotations

import math

import pytest

from pklparse.ast_nodes import (
    BinaryExpr,
    EscapeSegment,
    FloatLit,
    Identifier,
    IntBase,
    Interpolation,
    IntLit,
    StringKind,
    StringLit,
    TextSegment,
    UnaryExpr,
)
from pklparse.config import ParseOptions
from pklparse.parser import parse
from pklparse.source import Span
from tests.helpers import codes, parse_expr, parse_fails, parse_warns

OFFSET = len("x = ")


def content_of(source: str, lit: StringLit) -> str:
    text = f"x = {source}"
    return text[lit.content_span.start:lit.content_span.end]


# ── Numbers ──────────────────────────────────────────────────────


class TestIntegers:
    @pytest.mark.parametrize("text,base,value", [
        ("0", IntBase.DEC, 0),
        ("42", IntBase.DEC, 42),
        ("1_000_000", IntBase.DEC, 1000000),
        ("0xFF", IntBase.HEX, 255),
        ("0xdead_BEEF", IntBase.HEX, 0xDEADBEEF),
        ("0o17", IntBase.OCT, 15),
        ("0o7_7_7", IntBase.OCT, 0o777),
        ("0b1010_1010", IntBase.BIN, 170),
    ])
    def test_value_ignores_underscores(self, text, base, value):
        lit = parse_expr(text)
        assert isinstance(lit, IntLit)
        assert lit.base is base
        assert lit.value == value
        assert lit.span == Span(OFFSET, OFFSET + len(text))

    def test_digits_keep_underscores(self):
        lit = parse_expr("0x12_34")
        assert lit.digits == "12_34"

    @pytest.mark.parametrize("text,problem", [
        ("1__000", "doubled"),
        ("1_", "trailing"),
        ("0x_FF", "leading"),
        ("0b1__0", "doubled"),
        ("0o7_", "trailing"),
    ])
    def test_bad_underscores(self, text, problem):
        diags = parse_fails(f"x = {text}", "E103")
        assert problem in diags[0].message

    def test_doubled_underscore_position(self):
        diags = parse_fails("x = 1__0", "E103")
        assert diags[0].span == Span(OFFSET + 1, OFFSET + 2)

    def test_missing_hex_digits(self):
        diags = parse_fails("x = 0x", "E103")
        assert "hexadecimal" in diags[0].message

    def test_binary_rejects_other_digits(self):
        parse_fails("x = 0b102", "E103")

    def test_letters_after_number(self):
        diags = parse_fails("x = 123abc", "E103")
        assert diags[0].span == Span(OFFSET, OFFSET + 6)


class TestFloats:
    @pytest.mark.parametrize("text,value", [
        ("1.5", 1.5),
        ("0.25", 0.25),
        ("1e10", 1e10),
        ("2.5E-3", 2.5e-3),
        ("6e+2", 600.0),
        ("1_000.000_1", 1000.0001),
    ])
    def test_value(self, text, value):
        lit = parse_expr(text)
        assert isinstance(lit, FloatLit)
        assert lit.value == pytest.approx(value)

    def test_nan(self):
        lit = parse_expr("NaN")
        assert isinstance(lit, FloatLit)
        assert math.isnan(lit.value)

    def test_infinity(self):
        lit = parse_expr("Infinity")
        assert isinstance(lit, FloatLit)
        assert lit.value == math.inf

    def test_negative_infinity_is_unary(self):
        expr = parse_expr("-Infinity")
        assert isinstance(expr, UnaryExpr)
        assert expr.op == "-"
        assert isinstance(expr.operand, FloatLit)

    def test_missing_integer_part_is_a_warning(self):
        lit = parse_expr(".5")
        assert isinstance(lit, FloatLit)
        assert lit.value == 0.5
        parse_warns("x = .5", "W304")

    def test_missing_integer_part_warning_can_be_disabled(self):
        assert codes("x = .5", ParseOptions(style_warnings=False)) == []

    def test_trailing_dot_is_not_a_float(self):
        diags = parse_fails("x = 1.", "E200")
        assert "member name" in diags[0].message

    def test_bad_exponent_underscore(self):
        parse_fails("x = 1e1_", "E103")


# ── Strings ──────────────────────────────────────────────────────


class TestBasicStrings:
    def test_plain(self):
        lit = parse_expr('"hello"')
        assert isinstance(lit, StringLit)
        assert lit.kind is StringKind.BASIC
        assert not lit.multiline
        assert lit.pounds == 0
        assert lit.constant_value() == "hello"
        assert lit.segments == [TextSegment("hello", Span(OFFSET + 1, OFFSET + 6))]

    def test_empty(self):
        lit = parse_expr('""')
        assert lit.segments == []
        assert lit.constant_value() == ""

    def test_escapes(self):
        lit = parse_expr('"a\\tb\\nc\\r\\"\\\\"')
        assert lit.constant_value() == 'a\tb\nc\r"\\'
        escapes = [s for s in lit.segments if isinstance(s, EscapeSegment)]
        assert len(escapes) == 5

    def test_unicode_escape(self):
        lit = parse_expr('"\\u{1F600} \\u{41}"')
        assert lit.constant_value() == "\U0001F600 A"

    @pytest.mark.parametrize("escape", [
        "\\u{110000}",
        "\\u{D800}",
        "\\u{}",
        "\\u{1234567}",
        "\\u1234",
        "\\u{12",
    ])
    def test_bad_unicode_escape(self, escape):
        parse_fails(f'x = "{escape}"', "E102")

    def test_invalid_escape(self):
        diags = parse_fails('x = "a\\qb"', "E101")
        assert diags[0].span == Span(OFFSET + 2, OFFSET + 4)

    def test_escape_errors_point_at_string_start(self):
        invalid = parse_fails('x = "a\\qb"', "E101")[0]
        unicode = parse_fails('x = #"\\#u{D800}"#', "E102")[0]
        for diag, open_span in [(invalid, Span(OFFSET, OFFSET + 1)),
                                (unicode, Span(OFFSET, OFFSET + 2))]:
            primary, secondary = diag.labels
            assert primary.style == "primary"
            assert secondary.style == "secondary"
            assert secondary.span == open_span

    def test_unterminated(self):
        module, diagnostics = parse('a = 1\nx = "unterminated', "test.pkl")
        errors = [d for d in diagnostics if d.is_error]
        assert len(errors) == 1
        assert errors[0].code == "E100"
        assert errors[0].span == Span(10, 11)
        assert [d.name.name for d in module.declarations] == ["a"]

    def test_newline_ends_basic_string(self):
        module, diagnostics = parse('x = "abc\ny = 2', "test.pkl")
        assert [d.code for d in diagnostics] == ["E100"]
        assert [d.name.name for d in module.declarations] == ["y"]


class TestInterpolation:
    def test_simple(self):
        lit = parse_expr('"a\\(b + 1)c"')
        assert not lit.is_constant
        text, interp, tail = lit.segments
        assert text == TextSegment("a", Span(OFFSET + 1, OFFSET + 2))
        assert isinstance(interp, Interpolation)
        assert isinstance(interp.expr, BinaryExpr)
        assert interp.span == Span(OFFSET + 2, OFFSET + 10)
        assert tail.text == "c"

    def test_whitespace_and_comments_inside(self):
        lit = parse_expr('"\\( /* c */ name )"')
        assert isinstance(lit.segments[0].expr, Identifier)

    def test_nested_string(self):
        lit = parse_expr('"\\("in\\("ner")")"')
        outer = lit.segments[0]
        inner = outer.expr
        assert isinstance(inner, StringLit)
        assert inner.segments[0].text == "in"
        assert inner.segments[1].expr.constant_value() == "ner"

    def test_missing_close_paren(self):
        diags = parse_fails('x = "\\(a"', "E200")
        assert "')'" in diags[0].message


class TestCustomDelimiters:
    def test_quote_inside(self):
        lit = parse_expr('#"say "hi""#')
        assert lit.kind is StringKind.CUSTOM
        assert lit.pounds == 1
        assert lit.constant_value() == 'say "hi"'

    @pytest.mark.parametrize("n", range(1, 6))
    def test_only_exact_pound_count_closes(self, n):
        near_misses = '"' + "#" * (n - 1) + ' "' + "#" * (n + 1)
        text = "#" * n + '"' + near_misses + '"' + "#" * n
        lit = parse_expr(text)
        assert lit.pounds == n
        assert lit.constant_value() == near_misses
        assert lit.span == Span(OFFSET, OFFSET + len(text))

    def test_zero_pounds_closes_at_first_quote(self):
        module, diagnostics = parse('x = "a"#', "test.pkl")
        assert module.declarations[0].form.value.constant_value() == "a"
        assert [d.code for d in diagnostics] == ["E201"]

    def test_plain_backslash_is_text(self):
        lit = parse_expr('#"C:\\n\\t"#')
        assert lit.constant_value() == "C:\\n\\t"
        assert all(isinstance(s, TextSegment) for s in lit.segments)

    def test_scaled_escape(self):
        lit = parse_expr('#"a\\#nb"#')
        assert lit.constant_value() == "a\nb"

    def test_escape_with_wrong_pound_count_is_text(self):
        lit = parse_expr('#"a\\##nb"#')
        assert lit.constant_value() == "a\\##nb"

    def test_scaled_interpolation(self):
        lit = parse_expr('##"\\(x) \\##(y)"##')
        assert lit.segments[0].text == "\\(x) "
        assert isinstance(lit.segments[1], Interpolation)

    def test_mismatched_close_is_unterminated(self):
        parse_fails('x = ##"abc"#', "E100")


class TestMultilineStrings:
    def test_content_and_indent(self):
        source = '"""\nabc\ndef\n   """'
        lit = parse_expr(source)
        assert lit.kind is StringKind.MULTILINE
        assert lit.multiline
        assert lit.indent == "   "
        assert content_of(source, lit) == "abc\ndef\n"

    def test_content_on_opening_line(self):
        source = '"""abc\ndef\n   """'
        lit = parse_expr(source)
        assert lit.indent == "   "
        assert content_of(source, lit) == "abc\ndef\n"
        parse_warns(f"x = {source}", "W305")

    def test_opening_line_warning_can_be_disabled(self):
        source = 'x = """abc\n"""'
        assert codes(source, ParseOptions(style_warnings=False)) == []

    def test_empty(self):
        source = '"""\n"""'
        lit = parse_expr(source)
        assert lit.segments == []
        assert lit.indent == ""
        assert content_of(source, lit) == ""

    def test_trailing_spaces_after_opener(self):
        source = '"""  \nabc\n"""'
        lit = parse_expr(source)
        assert lit.constant_value() == "abc\n"
        assert codes(f"x = {source}") == []

    def test_quotes_inside(self):
        lit = parse_expr('"""\nsay "hi"\n"""')
        assert lit.constant_value() == 'say "hi"\n'

    def test_triple_quote_mid_line_is_content(self):
        lit = parse_expr('#"""\na"""b\n"""#')
        assert lit.kind is StringKind.CUSTOM
        assert lit.multiline
        assert lit.constant_value() == 'a"""b\n'

    def test_interpolation_across_lines(self):
        lit = parse_expr('"""\nport: \\(port)\n"""')
        assert isinstance(lit.segments[1], Interpolation)
        assert lit.segments[1].expr.name == "port"

    def test_unterminated(self):
        diags = parse_fails('x = """\nabc', "E100")
        assert diags[0].span == Span(OFFSET, OFFSET + 3)
