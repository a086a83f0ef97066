from __future__ import annotations

import pytest

from pycarsoc.decoding.formula import bind, evaluate


def test_bound_variables_follow_arithmetic_precedence() -> None:
    assert evaluate("(A*256+B)/10", A=10, B=200) == 276.0


def test_variables_mapping_and_keyword_bindings_merge() -> None:
    assert evaluate("A*256+B", {"A": 1}, B=2) == 258.0


def test_shift_binds_tighter_than_addition() -> None:
    assert evaluate("0<<24+0<<16+4<<8+210") == 1234.0
    assert evaluate("1<<24+2<<16") == 16908288.0


def test_shift_truncates_operands_to_integers() -> None:
    assert evaluate("3.9<<1") == 6.0
    assert evaluate("256>>4") == 16.0


def test_multiplication_before_subtraction() -> None:
    assert evaluate("(1000*256+0)*0.5-1600") == 126400.0
    assert evaluate("10-2*3") == 4.0


def test_same_tier_reduces_left_to_right() -> None:
    assert evaluate("100/10/2") == 5.0
    assert evaluate("10-4-3") == 3.0


def test_nested_parentheses_resolve_innermost_first() -> None:
    assert evaluate("((2+3)*(4-1))/5") == 3.0


def test_negative_intermediate_results_keep_their_sign() -> None:
    assert evaluate("5-10+2") == -3.0
    assert evaluate("(20000-30000)/10") == -1000.0


def test_division_by_zero_yields_zero() -> None:
    assert evaluate("5/0") == 0.0
    assert evaluate("(A+1)/B", A=4, B=0) == 0.0


@pytest.mark.parametrize(
    "expression",
    ["", "A+1", "(1+2", "1+2)", "1+*2", "abc", "2**3"],
)
def test_malformed_expressions_yield_zero(expression: str) -> None:
    assert evaluate(expression) == 0.0


def test_whitespace_is_ignored() -> None:
    assert evaluate(" ( A * 256 + B ) / 10 ", A=1, B=4) == 26.0


def test_bind_substitutes_whole_words_only() -> None:
    assert bind("A+AB+BA", {"A": 1, "AB": 2}) == "1+2+BA"
