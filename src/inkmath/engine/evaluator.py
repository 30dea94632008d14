from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import sympy as sp
from sympy.parsing.sympy_parser import (
    convert_xor,
    implicit_multiplication_application,
    parse_expr,
    standard_transformations,
)

from .normalizer import normalize

logger = logging.getLogger(__name__)

# Hard cap on the normalized expression handed to the algebra engine.
MAX_EXPRESSION_LENGTH = 120
TOO_LONG = "Too long"
MAX_EXPONENT = 1000
EVALUATION_TIMEOUT_S = 5.0

_TRANSFORMS = standard_transformations + (implicit_multiplication_application, convert_xor)

_LOCALS = {
    "sqrt": sp.sqrt,
    # normalized form is root(index, radicand); sympy wants root(radicand, index)
    "root": lambda n, a: sp.root(a, n),
    "pi": sp.pi,
    "sin": sp.sin,
    "cos": sp.cos,
    "tan": sp.tan,
    "log": sp.log,
    "ln": sp.log,
    "exp": sp.exp,
}


@dataclass(frozen=True)
class Evaluation:
    value: Optional[str]
    expression: Optional[str]


def _format_number(v: sp.Expr, digits: int = 4) -> Optional[str]:
    """Integers exactly; everything else rounded to `digits` places, zeros trimmed."""
    if v.is_Integer:
        return str(int(v))
    n = sp.N(v)
    if not n.is_real:
        return None
    f = float(n)
    if f.is_integer():
        return str(int(f))
    out = f"{f:.{digits}f}".rstrip("0").rstrip(".")
    return "0" if out in ("-0", "") else out


def _globals() -> dict:
    # only what the parser's own rewriting emits; any other name becomes an
    # undefined symbol or function instead of resolving into sympy
    return {
        "Integer": sp.Integer,
        "Float": sp.Float,
        "Rational": sp.Rational,
        "Symbol": sp.Symbol,
        "Function": sp.Function,
        "Add": sp.Add,
        "Mul": sp.Mul,
        "Pow": sp.Pow,
    }


def _exponent_magnitude(exp: sp.Expr) -> float:
    if not exp.is_number:
        return 1.0
    try:
        return abs(float(sp.N(exp)))
    except (TypeError, ValueError, OverflowError):
        return float("inf")


def _power_load(expr: sp.Expr) -> float:
    """Largest product of exponents along any chain of nested powers."""
    if not expr.args:
        return 1.0
    if isinstance(expr, sp.Pow):
        base, exp = expr.args
        exp_load = _power_load(exp)
        if exp_load > MAX_EXPONENT:
            return float("inf")
        return max(_power_load(base) * max(_exponent_magnitude(exp), 1.0), exp_load)
    return max(_power_load(a) for a in expr.args)


def _has_huge_power(expr: sp.Expr) -> bool:
    return _power_load(expr) > MAX_EXPONENT


def _compute(expression: str) -> Optional[str]:
    expr = parse_expr(
        expression,
        local_dict=dict(_LOCALS),
        global_dict=_globals(),
        transformations=_TRANSFORMS,
        evaluate=False,
    )
    if not isinstance(expr, sp.Basic) or _has_huge_power(expr):
        return None
    expr = sp.simplify(expr.doit())
    if expr.free_symbols:
        # symbolic leftovers (e.g. "2x+5") are not a displayable answer
        return None
    if expr.has(sp.zoo, sp.nan, sp.oo, -sp.oo):
        return None
    return _format_number(expr)


def evaluate(latex: str | None) -> Evaluation:
    """
    Normalize `latex` and evaluate it with sympy.

    Never raises. `value` is None when there is no usable numeric answer; an
    expression over MAX_EXPRESSION_LENGTH yields the TOO_LONG sentinel without
    touching the algebra engine.
    """
    expression = normalize(latex)
    if expression is None:
        return Evaluation(None, None)
    if len(expression) > MAX_EXPRESSION_LENGTH:
        return Evaluation(TOO_LONG, expression)
    try:
        return Evaluation(_compute(expression), expression)
    except Exception as e:
        logger.debug("evaluation failed for %r: %s", expression, e)
        return Evaluation(None, expression)


async def evaluate_in_thread(
    latex: str | None,
    *,
    evaluator: Optional[Callable[[Optional[str]], Evaluation]] = None,
    timeout_s: Optional[float] = None,
) -> Evaluation:
    """
    Run `evaluator` (default: `evaluate`) off the event loop with a deadline.

    On timeout the caller gets an empty Evaluation; the worker thread is left
    to finish on its own.
    """
    fn = evaluator or evaluate
    limit = EVALUATION_TIMEOUT_S if timeout_s is None else timeout_s
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, latex), limit)
    except asyncio.TimeoutError:
        logger.warning("evaluation of %r timed out after %.1fs", latex, limit)
        return Evaluation(None, None)
