"""
Structural validation of operator parameters.

Parameters are described with JSON Schema and checked with `jsonschema`.
Values that are still unevaluated computations are opaque: every keyword
accepts them, so a flow operator's raw parameters can be checked at build
time and a task operator's again after evaluation.
"""
from typing import Any, Dict, Iterable, Optional

from jsonschema import Draft202012Validator, validators
from jsonschema.exceptions import best_match

from tagflow.tagflow_datatypes import ParameterValidationError

ANY: Dict[str, Any] = {}
STRING = {"type": "string"}
NUMBER = {"type": "number"}
INTEGER = {"type": "integer"}
BOOLEAN = {"type": "boolean"}
ARRAY = {"type": "array"}
OBJECT = {"type": "object"}
KEY = {"anyOf": [STRING, INTEGER, {"type": "array", "items": {"anyOf": [STRING, INTEGER]}}]}


def array_of(items: Dict[str, Any], **extra) -> Dict[str, Any]:
    return {"type": "array", "items": items, **extra}


def record_of(values: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "object", "additionalProperties": values}


def enum(*values) -> Dict[str, Any]:
    return {"enum": list(values)}


def params(required: Iterable[str] = (), **properties) -> Dict[str, Any]:
    """Schema for an operator's parameter mapping."""
    return {
        "type": "object",
        "properties": properties,
        "required": list(required),
    }


def _is_opaque(instance) -> bool:
    # Imported lazily: the engine module imports this one.
    from tagflow.tagflow_operator import Computation
    return isinstance(instance, Computation)


def _opaque(keyword_fn):
    def check(validator, value, instance, schema):
        if _is_opaque(instance):
            return ()
        return keyword_fn(validator, value, instance, schema) or ()
    return check


OpaqueValidator = validators.extend(
    Draft202012Validator,
    {name: _opaque(fn) for name, fn in Draft202012Validator.VALIDATORS.items()},
)


def _format_path(error) -> str:
    parts = ["$"]
    for p in error.absolute_path:
        parts.append(f"[{p}]" if isinstance(p, int) else f".{p}")
    return "".join(parts)


def validate_params(operator: str, schema: Optional[Dict[str, Any]], value: Any) -> Any:
    """Validate `value` against `schema`, raising ParameterValidationError."""
    if schema is None:
        return value
    error = best_match(OpaqueValidator(schema).iter_errors(value))
    if error is not None:
        raise ParameterValidationError(operator, _format_path(error), error.message)
    return value
