"""Calculator: a restricted arithmetic evaluator and the calculate tool."""

from __future__ import annotations

import ast
import logging
import math
import operator
from typing import Any, Callable

from megabot.plugins.base import ToolPlugin
from megabot.tools.base import BaseTool, PermissionLevel, ToolContext, ToolResult

logger = logging.getLogger(__name__)

MAX_EXPONENT = 1000

_BINARY_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

FUNCTIONS: dict[str, Callable[..., Any]] = {
    "abs": abs,
    "acos": math.acos,
    "asin": math.asin,
    "atan": math.atan,
    "atan2": math.atan2,
    "ceil": math.ceil,
    "cos": math.cos,
    "exp": math.exp,
    "floor": math.floor,
    "log": math.log,
    "log10": math.log10,
    "max": max,
    "min": min,
    "pow": math.pow,
    "round": round,
    "sin": math.sin,
    "sqrt": math.sqrt,
    "tan": math.tan,
}

CONSTANTS = {"pi": math.pi, "e": math.e, "PI": math.pi, "E": math.e}


class CalculationError(ValueError):
    """The expression is not plain arithmetic or cannot be evaluated."""


def _eval(node: ast.AST) -> int | float:
    if isinstance(node, ast.Expression):
        return _eval(node.body)
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise CalculationError(f"Unsupported literal: {node.value!r}")
        return node.value
    if isinstance(node, ast.Name):
        if node.id not in CONSTANTS:
            raise CalculationError(f'Unknown name "{node.id}"')
        return CONSTANTS[node.id]
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval(node.operand))
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _eval(node.left), _eval(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise CalculationError(f"Exponent too large (max {MAX_EXPONENT})")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and not node.keywords:
        func = FUNCTIONS.get(node.func.id)
        if func is None:
            raise CalculationError(f'Unknown function "{node.func.id}"')
        return func(*(_eval(arg) for arg in node.args))
    raise CalculationError(f"Unsupported syntax: {type(node).__name__}")


def evaluate(expression: str) -> int | float:
    """Evaluate an arithmetic expression without executing any code.

    ``^`` means exponentiation and a ``Math.`` prefix on functions and
    constants is accepted, so ``Math.sqrt(16)`` and ``2^8`` both work.
    """
    source = expression.replace("^", "**").replace("Math.", "")
    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError as e:
        raise CalculationError(f"Invalid expression: {e.msg}") from e
    try:
        result = _eval(tree)
    except CalculationError:
        raise
    except (ArithmeticError, ValueError, TypeError) as e:
        raise CalculationError(f"Evaluation error: {e}") from e
    if isinstance(result, float) and not math.isfinite(result):
        raise CalculationError("Result is not a valid finite number")
    return result


def format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return str(value)


class CalculateTool(BaseTool):
    name = "calculate"
    description = (
        "Perform mathematical calculations. Supports arithmetic (+, -, *, /, //, %, ^ or **), "
        "parentheses for grouping, the constants pi and e, and functions such as sqrt, pow, "
        "log, sin, cos, abs, round, min and max. Examples: '2 + 2', '(5 * 3) - 8', "
        "'sqrt(16)', 'pow(2, 8)', '2^8'."
    )
    parameters = {
        "type": "object",
        "properties": {
            "expression": {
                "type": "string",
                "description": (
                    "The mathematical expression to evaluate. "
                    "Examples: '2 + 2', '(10 - 3) * 2', 'sqrt(144)', '2^10'"
                ),
            },
        },
        "required": ["expression"],
    }
    permissions = PermissionLevel.NONE
    keywords = ["math", "arithmetic", "calculator", "compute", "evaluate", "expression", "numbers"]

    def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        expression = str(params.get("expression") or "")
        if not expression.strip():
            return ToolResult.fail("Expression cannot be empty")
        try:
            result = evaluate(expression)
        except CalculationError as e:
            return ToolResult.fail(str(e))
        return ToolResult.ok(f"{expression} = {format_number(result)}")


class CalculatorPlugin(ToolPlugin):
    id = "calculator"
    name = "Calculator"
    description = "Mathematical expression evaluator"

    def __init__(self) -> None:
        super().__init__([CalculateTool()])

    async def after_tool_call(
        self, tool_name: str, params: dict[str, Any], context: ToolContext, result: ToolResult
    ) -> None:
        if result.success:
            logger.debug("Calculated %s", result.data)
        else:
            logger.warning("Calculation of %r failed: %s", params.get("expression"), result.error)
