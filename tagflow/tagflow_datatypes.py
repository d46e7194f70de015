"""
Defines the core data types for the tagflow runtime.

This module provides the reserved document keys, the error taxonomy shared by
the engine, the transport and the reference resolver, and the immutable Scope
every computation is evaluated against.
"""

import json
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional

OPERATOR_KEY = "$op"
REF_KEY = "$ref"


class _Missing:
    """Sentinel for absent optional parameters (``None`` is a legal value)."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False


MISSING = _Missing()


# =================================================================
# Errors
# =================================================================

class TagflowError(Exception):
    """Base class for every error raised by tagflow."""


class ParameterValidationError(TagflowError, ValueError):
    def __init__(self, operator: str, path: str, message: str):
        super().__init__(f"Invalid parameters for '{operator}' at {path}: {message}")
        self.operator = operator
        self.path = path
        self.message = message


class ValueNotFound(TagflowError, LookupError):
    def __init__(self, key: Any, message: Optional[str] = None):
        super().__init__(message or f"Value not found for key {key!r}")
        self.key = key


class ValueShapeError(TagflowError, TypeError):
    pass


class CyclicReferenceError(TagflowError):
    def __init__(self, key: str):
        super().__init__(f"Cyclic reference detected: {key}")
        self.key = key


class TransportError(TagflowError):
    pass


class RemoteError(TagflowError):
    """An error that crossed a context boundary; only its text survives."""
    def __init__(self, error: Any):
        text = error if isinstance(error, str) else stringify_error(error)
        super().__init__(text)
        self.error = text


class ThrownError(TagflowError):
    """Raised by the `throw` operator with an arbitrary document value."""
    def __init__(self, value: Any):
        super().__init__(value if isinstance(value, str) else json.dumps(value, default=str))
        self.value = value


def stringify_error(error: Any) -> str:
    """Reduce any error (or error-like value) to a plain string."""
    if isinstance(error, BaseException):
        text = str(error)
        return text if text else type(error).__name__
    if isinstance(error, str):
        return error
    try:
        return json.dumps(error)
    except (TypeError, ValueError):
        return repr(error)


def is_truthy(value: Any) -> bool:
    """Truthiness used by the language's conditional operators.

    Containers are truthy even when empty; only None, False, zero, NaN and
    the empty string are falsy.
    """
    if value is None or value is False:
        return False
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


# =================================================================
# Scope
# =================================================================

@dataclass(frozen=True)
class Scope:
    """The bindings visible to a computation.

    Scopes are never mutated. Entering a nested region produces a new Scope
    whose functions/constants are shallow-merged over the parent's, so inner
    bindings shadow outer ones without touching them.
    """
    functions: Mapping[str, Any] = field(default_factory=dict)
    constants: Mapping[str, Any] = field(default_factory=dict)
    context: Any = None
    error: Any = None
    array: Optional[list] = None
    index: Optional[int] = None

    def extend(self, functions: Optional[Mapping[str, Any]] = None,
               constants: Optional[Mapping[str, Any]] = None) -> 'Scope':
        merged_functions: Dict[str, Any] = {**self.functions, **functions} if functions else self.functions
        merged_constants: Dict[str, Any] = {**self.constants, **constants} if constants else self.constants
        return replace(self, functions=merged_functions, constants=merged_constants)

    def with_context(self, context: Any) -> 'Scope':
        return replace(self, context=context)

    def replace(self, **changes) -> 'Scope':
        return replace(self, **changes)


def root_scope(context: Any = None) -> Scope:
    return Scope(functions={}, constants={}, context=context)
