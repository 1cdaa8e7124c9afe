"""Operator precedence tables and infix reduction.

The expression grammar collects a flat ``operand (op operand)*``
sequence; ``fold_infix`` turns it into a tree using precedence climbing.
Prefix, postfix and type-test operators are applied while assembling
each operand, so their levels here document ordering only.
"""

from __future__ import annotations

from pklparse.ast_nodes import BinaryExpr, Expr

# ── Binding powers, lowest to highest ────────────────────────────

BINARY_PRECEDENCE: dict[str, int] = {
    "|>": 1,
    "??": 2,
    "||": 3,
    "&&": 4,
    "==": 5, "!=": 5,
    "<": 6, "<=": 6, ">": 6, ">=": 6,
    "+": 7, "-": 7,
    "*": 8, "/": 8, "~/": 8, "%": 8,
    "**": 9,
}

RIGHT_ASSOCIATIVE = frozenset({"**"})

PREFIX_PRECEDENCE = 10       # - !
NON_NULL_PRECEDENCE = 11     # !!
TYPE_TEST_PRECEDENCE = 12    # is as

# Longest first, so that "**" wins over "*" and "<=" over "<".
INFIX_OPERATORS: tuple[str, ...] = tuple(
    sorted(BINARY_PRECEDENCE, key=len, reverse=True)
)


def fold_infix(operands: list[Expr], operators: list[str]) -> Expr:
    """Reduce ``operands[0] operators[0] operands[1] ...`` into one tree."""
    if len(operands) != len(operators) + 1:
        raise ValueError(
            f"expected {len(operators) + 1} operands for {len(operators)} operators,"
            f" got {len(operands)}"
        )
    index = 0

    def climb(min_prec: int) -> Expr:
        nonlocal index
        left = operands[index]
        while index < len(operators):
            op = operators[index]
            prec = BINARY_PRECEDENCE[op]
            if prec < min_prec:
                break
            index += 1
            next_min = prec if op in RIGHT_ASSOCIATIVE else prec + 1
            right = climb(next_min)
            left = BinaryExpr(left, op, right, left.span.cover(right.span))
        return left

    return climb(0)
