"""
Sandboxed expression evaluation for condition blocks.

Expressions are parsed with ``ast`` and interpreted node by node against a
whitelist: literals, names from the supplied context, attribute/subscript
reads on mappings and sequences, arithmetic, comparisons, boolean logic and
a handful of pure builtins. Nothing is ever passed to ``eval``.

JavaScript-style operators (``===``, ``!==``, ``&&``, ``||``, ``!``) and
literals (``true``, ``false``, ``null``) are accepted as well.
"""

from typing import Any, Callable, Dict, Mapping
import ast
import operator
import re


class ExpressionError(Exception):
    """Expression could not be parsed or evaluated."""

    def __init__(self, message: str, expression: str = ""):
        super().__init__(message)
        self.expression = expression


_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_COMPARISONS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda x, y: x in y,
    ast.NotIn: lambda x, y: x not in y,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_FUNCTIONS: Dict[str, Callable] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "lower": lambda s: str(s).lower(),
    "upper": lambda s: str(s).upper(),
}

_LITERALS = {"true": True, "false": False, "null": None, "undefined": None}

# JS operator -> Python operator, applied outside string literals
_JS_OPERATORS = [
    (re.compile(r"!==|!="), " != "),
    (re.compile(r"===|=="), " == "),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
]
_STRING_LITERAL = re.compile(r"""("(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')""")

MAX_EXPRESSION_LENGTH = 2000


def _normalize(expression: str) -> str:
    parts = _STRING_LITERAL.split(expression)
    for i in range(0, len(parts), 2):
        # Even indexes are outside string literals
        for pattern, replacement in _JS_OPERATORS:
            parts[i] = pattern.sub(replacement, parts[i])
    return "".join(parts).strip()


class SafeExpressionEvaluator:
    """Evaluates whitelisted expressions against a read-only context."""

    def evaluate(self, expression: str, context: Mapping[str, Any]) -> Any:
        if len(expression) > MAX_EXPRESSION_LENGTH:
            raise ExpressionError("Expression is too long", expression)

        try:
            tree = ast.parse(_normalize(expression), mode="eval")
        except SyntaxError as e:
            raise ExpressionError(f"Syntax error in expression: {e.msg}", expression) from e

        try:
            return self._eval(tree.body, context)
        except ExpressionError:
            raise
        except Exception as e:
            raise ExpressionError(f"Expression evaluation failed: {e}", expression) from e

    def _eval(self, node: ast.AST, context: Mapping[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            if node.id in context:
                return context[node.id]
            if node.id in _LITERALS:
                return _LITERALS[node.id]
            raise ExpressionError(f"Unknown name '{node.id}'")

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self._eval(value, context)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self._eval(value, context)
                if result:
                    return result
            return result

        if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
            return _BIN_OPS[type(node.op)](
                self._eval(node.left, context), self._eval(node.right, context)
            )

        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
            return _UNARY_OPS[type(node.op)](self._eval(node.operand, context))

        if isinstance(node, ast.Compare):
            left = self._eval(node.left, context)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, context)
                if type(op) not in _COMPARISONS or not _COMPARISONS[type(op)](left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.IfExp):
            if self._eval(node.test, context):
                return self._eval(node.body, context)
            return self._eval(node.orelse, context)

        if isinstance(node, ast.Attribute):
            # Attribute access reads mapping keys only, never Python attributes
            target = self._eval(node.value, context)
            if isinstance(target, Mapping):
                return target.get(node.attr)
            if node.attr == "length" and isinstance(target, (str, list, tuple)):
                return len(target)
            raise ExpressionError(f"Cannot read '{node.attr}' of {type(target).__name__}")

        if isinstance(node, ast.Subscript):
            target = self._eval(node.value, context)
            key = self._eval(node.slice, context)
            if isinstance(target, Mapping):
                return target.get(key)
            if isinstance(target, (list, tuple, str)) and isinstance(key, int):
                return target[key] if -len(target) <= key < len(target) else None
            raise ExpressionError(f"Cannot index {type(target).__name__}")

        if isinstance(node, (ast.List, ast.Tuple)):
            return [self._eval(element, context) for element in node.elts]

        if isinstance(node, ast.Dict):
            return {
                self._eval(k, context): self._eval(v, context)
                for k, v in zip(node.keys, node.values)
                if k is not None
            }

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
                raise ExpressionError("Only whitelisted functions may be called")
            if node.keywords:
                raise ExpressionError("Keyword arguments are not supported")
            args = [self._eval(arg, context) for arg in node.args]
            return _FUNCTIONS[node.func.id](*args)

        raise ExpressionError(f"Unsupported expression element: {type(node).__name__}")


_evaluator = SafeExpressionEvaluator()


def evaluate(expression: str, context: Mapping[str, Any]) -> Any:
    """Evaluate an expression with the shared evaluator."""
    return _evaluator.evaluate(expression, context)


# ============================================================
# {{reference}} templates
# ============================================================

_REFERENCE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def _lookup(path: str, scopes: Mapping[str, Any]) -> Any:
    head, _, rest = path.partition(".")
    value = scopes.get(head)
    for part in rest.split(".") if rest else []:
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            return None
    return value


def resolve_references(value: Any, scopes: Mapping[str, Any]) -> Any:
    """
    Substitute ``{{scope.key}}`` references inside strings, lists and dicts.

    A string consisting of a single reference resolves to the raw value;
    references embedded in longer text are stringified. Unknown references
    are left untouched.
    """
    if isinstance(value, str):
        whole = _REFERENCE.fullmatch(value.strip())
        if whole:
            resolved = _lookup(whole.group(1), scopes)
            return value if resolved is None else resolved

        def substitute(match: "re.Match") -> str:
            resolved = _lookup(match.group(1), scopes)
            return match.group(0) if resolved is None else str(resolved)

        return _REFERENCE.sub(substitute, value)

    if isinstance(value, list):
        return [resolve_references(item, scopes) for item in value]

    if isinstance(value, Mapping):
        return {key: resolve_references(item, scopes) for key, item in value.items()}

    return value
