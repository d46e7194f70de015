"""
In-process implementations of the sandbox capabilities: expression
evaluation, template rendering and JSON Schema validation.

These are what the sandbox actor serves over RPC in isolated mode.
"""
import ast
import logging
import re
from typing import Any, Dict

import pystache
from jsonschema.validators import validator_for
from simpleeval import EvalWithCompoundTypes, InvalidExpression

from tagflow.tagflow_datatypes import ValueShapeError

logger = logging.getLogger(__name__)

SAFE_FUNCTIONS = {
    "abs": abs, "all": all, "any": any, "bool": bool, "dict": dict, "enumerate": enumerate,
    "filter": filter, "float": float, "int": int, "len": len, "list": list, "map": map,
    "max": max, "min": min, "range": range, "reversed": reversed, "round": round, "set": set,
    "sorted": sorted, "str": str, "sum": sum, "tuple": tuple, "zip": zip,
}

# Generator, coroutine, frame and traceback attributes lead back to interpreter state
_INTERNAL_ATTRIBUTE = re.compile(r"^(_|gi_|cr_|ag_|f_|tb_)")


def _check_expression(tree: ast.AST, expression: str) -> None:
    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute) and _INTERNAL_ATTRIBUTE.match(node.attr):
            raise ValueShapeError(f"Access to attribute {node.attr!r} is not allowed: {expression}")
        if isinstance(node, ast.Name) and node.id.startswith("__"):
            raise ValueShapeError(f"Access to {node.id!r} is not allowed: {expression}")


class ExpressionEvaluator:
    """Evaluates a single expression against `data` with simpleeval.

    The data's top-level keys are bound as names, and the whole value is
    available as `data`. Only the functions in `SAFE_FUNCTIONS` are callable
    by name; lambdas and imports are not available.
    """

    async def __call__(self, expression: str, data: Any = None) -> Any:
        try:
            tree = ast.parse(expression.strip(), mode="eval")
        except SyntaxError as e:
            raise ValueShapeError(f"Invalid expression {expression!r}: {e.msg}") from e
        _check_expression(tree, expression)
        names: Dict[str, Any] = dict(data) if isinstance(data, dict) else {}
        names["data"] = data
        evaluator = EvalWithCompoundTypes(names=names, functions=dict(SAFE_FUNCTIONS))
        try:
            return evaluator.eval(expression.strip())
        except InvalidExpression as e:
            raise ValueShapeError(f"Invalid expression {expression!r}: {e}") from e


class TemplateRenderer:
    """Mustache rendering through pystache."""

    def __init__(self):
        self.renderer = pystache.Renderer(missing_tags="ignore")

    async def __call__(self, template: str, data: Any) -> str:
        return self.renderer.render(template, data if data is not None else {})


class SchemaValidator:

    async def __call__(self, schema: Dict[str, Any], data: Any) -> bool:
        cls = validator_for(schema)
        cls.check_schema(schema)
        errors = list(cls(schema).iter_errors(data))
        for error in errors:
            logger.debug("Schema validation failed at %s: %s", list(error.absolute_path), error.message)
        return not errors
