"""Tiered-reduction formula evaluator.

A deliberately small calculator for PID formulas such as
``(A*256+B)/10`` or ``A<<24+B<<16+C<<8+D``:

1. The innermost parenthesised group is evaluated and its literal
   result substituted back, until no parentheses remain.
2. Operators are then reduced in three fixed tiers, always rewriting
   the leftmost occurrence first: ``<<``/``>>`` (integer-truncated
   operands), then ``*``/``/``, then ``+``/``-``.

Division by zero yields ``0``.  Any residue that is not a single
number (unbound symbols, unbalanced parentheses, stray characters)
makes the whole formula evaluate to ``0.0``.  Callers must not rely
on ordering beyond shift > mul/div > add/sub.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from decimal import Decimal

_logger = logging.getLogger(__name__)

# A minus sign is part of a literal only when not preceded by a digit or dot.
_NUMBER = r"(?:(?<![\d.])-)?\d+(?:\.\d*)?"
_NUMBER_RE = re.compile(rf"^{_NUMBER}$")
_MAX_SHIFT = 1023

_TIERS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"({_NUMBER})(<<|>>)({_NUMBER})"),
    re.compile(rf"({_NUMBER})([*/])({_NUMBER})"),
    re.compile(rf"({_NUMBER})([+\-])({_NUMBER})"),
)


class FormulaError(ValueError):
    """Raised internally for a formula that cannot be reduced."""


def _format(value: float) -> str:
    """Render *value* as a plain decimal literal (never exponent notation)."""
    if not math.isfinite(value):
        raise FormulaError(f"non-finite intermediate {value!r}")
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    text = repr(value)
    if "e" in text or "E" in text:
        text = format(Decimal(text), "f")
    return text


def _apply(left: str, op: str, right: str) -> float:
    if op in ("<<", ">>"):
        lhs, rhs = int(float(left)), int(float(right))
        if rhs > _MAX_SHIFT:
            raise FormulaError(f"shift count {rhs} too large")
        return float(lhs << rhs if op == "<<" else lhs >> rhs)
    a, b = float(left), float(right)
    if op == "*":
        return a * b
    if op == "/":
        return 0.0 if b == 0 else a / b
    if op == "+":
        return a + b
    return a - b


def _reduce(expression: str) -> float:
    """Evaluate a parenthesis-free expression tier by tier."""
    for pattern in _TIERS:
        match = pattern.search(expression)
        while match is not None:
            result = _apply(match.group(1), match.group(2), match.group(3))
            expression = f"{expression[: match.start()]}{_format(result)}{expression[match.end() :]}"
            match = pattern.search(expression)
    if not _NUMBER_RE.match(expression):
        raise FormulaError(f"unparsable residue {expression!r}")
    return float(expression)


def _resolve_parentheses(expression: str) -> str:
    while "(" in expression:
        start = expression.rfind("(")
        end = expression.find(")", start)
        if end == -1:
            raise FormulaError("unbalanced parentheses")
        inner = _reduce(expression[start + 1 : end])
        expression = f"{expression[:start]}{_format(inner)}{expression[end + 1 :]}"
    if ")" in expression:
        raise FormulaError("unbalanced parentheses")
    return expression


def bind(expression: str, variables: Mapping[str, float]) -> str:
    """Substitute whole-word symbols in *expression* with their literal values.

    Longer names are substituted first so ``AB`` is not clobbered by ``A``.
    """
    for name in sorted(variables, key=len, reverse=True):
        pattern = rf"(?<![A-Za-z0-9_]){re.escape(name)}(?![A-Za-z0-9_])"
        expression = re.sub(pattern, _format(float(variables[name])), expression)
    return expression


def evaluate(
    expression: str,
    variables: Mapping[str, float] | None = None,
    **bindings: float,
) -> float:
    """Evaluate *expression*, returning ``0.0`` for anything malformed.

    >>> evaluate("(A*256+B)/10", A=10, B=200)
    276.0
    """
    merged: dict[str, float] = dict(variables or {})
    merged.update(bindings)
    try:
        text = bind(expression, merged) if merged else expression
        text = "".join(text.split())
        if not text:
            raise FormulaError("empty formula")
        return _reduce(_resolve_parentheses(text))
    except (ValueError, OverflowError, ArithmeticError) as exc:
        _logger.debug("Formula %r evaluated to 0: %s", expression, exc)
        return 0.0
