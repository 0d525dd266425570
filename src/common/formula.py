from __future__ import annotations

import ast
import math
import operator
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping


class FormulaError(ValueError):
    """Raised when a formula is not allowed or cannot be evaluated."""


_BIN_OPS: Dict[type, Callable[[float, float], float]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: Dict[type, Callable[[float], float]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS: Dict[str, Callable[..., float]] = {
    "min": min,
    "max": max,
    "abs": abs,
    "round": round,
}

# Keeps `2 ** 10 ** 10` style inputs from stalling the caller
_MAX_EXPONENT = 64


class Formula:
    """
    A compiled arithmetic expression over a fixed set of variable names.

    Only numeric constants, the declared names, + - * / // % **, unary + -,
    and calls to min/max/abs/round are accepted. Everything else is rejected
    at compile time, so evaluation never reaches Python's own eval.
    """

    def __init__(self, source: str, names: Iterable[str]) -> None:
        self.source = source
        self.names: FrozenSet[str] = frozenset(names)
        try:
            tree = ast.parse(source.strip(), mode="eval")
        except SyntaxError as exc:
            raise FormulaError(f"Invalid formula {source!r}: {exc.msg}") from exc
        self._validate(tree.body)
        self._tree = tree.body

    def _validate(self, node: ast.AST) -> None:
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise FormulaError(f"Unsupported constant {node.value!r}")
        elif isinstance(node, ast.Name):
            if node.id not in self.names:
                raise FormulaError(f"Unknown name {node.id!r}")
        elif isinstance(node, ast.BinOp):
            if type(node.op) not in _BIN_OPS:
                raise FormulaError(f"Unsupported operator {type(node.op).__name__}")
            self._validate(node.left)
            self._validate(node.right)
        elif isinstance(node, ast.UnaryOp):
            if type(node.op) not in _UNARY_OPS:
                raise FormulaError(f"Unsupported operator {type(node.op).__name__}")
            self._validate(node.operand)
        elif isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
                raise FormulaError("Only min, max, abs and round may be called")
            if node.keywords:
                raise FormulaError("Keyword arguments are not supported")
            if not node.args:
                raise FormulaError(f"{node.func.id}() needs at least one argument")
            for arg in node.args:
                self._validate(arg)
        else:
            raise FormulaError(f"Unsupported syntax: {type(node).__name__}")

    def evaluate(self, **values: float) -> float:
        missing = self.names - values.keys()
        if missing:
            raise FormulaError(f"Missing values for: {', '.join(sorted(missing))}")
        try:
            result = self._eval(self._tree, values)
        except (ArithmeticError, TypeError, ValueError) as exc:
            raise FormulaError(f"Failed to evaluate {self.source!r}: {exc}") from exc
        if isinstance(result, complex) or not math.isfinite(result):
            raise FormulaError(f"Formula {self.source!r} produced a non-finite result")
        return float(result)

    def _eval(self, node: ast.AST, values: Mapping[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            return values[node.id]
        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, values)
            right = self._eval(node.right, values)
            if isinstance(node.op, ast.Pow) and abs(right) > _MAX_EXPONENT:
                raise ValueError("exponent too large")
            return _BIN_OPS[type(node.op)](left, right)
        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPS[type(node.op)](self._eval(node.operand, values))
        if isinstance(node, ast.Call):
            args = [self._eval(arg, values) for arg in node.args]
            return _FUNCTIONS[node.func.id](*args)  # type: ignore[attr-defined]
        raise FormulaError(f"Unsupported syntax: {type(node).__name__}")


def compile_formula(source: str, names: Iterable[str]) -> Formula:
    return Formula(source, names)


__all__ = ["Formula", "FormulaError", "compile_formula"]
