from __future__ import annotations

import collections.abc
from typing import Any, Callable, Sequence, Union

from tagflow.tagflow_datatypes import MISSING, ValueNotFound, ValueShapeError

PrimitiveKey = Union[str, int]
ComposedKey = Union[PrimitiveKey, Sequence[PrimitiveKey]]


def traverse_json_like(visitor: Callable[[Any], Any], value: Any) -> Any:
    """
    Rebuild a JSON-like tree bottom-up.

    Children are rebuilt first, then the visitor sees the rebuilt container,
    so a visitor may replace any node (including containers) with anything.
    """
    if isinstance(value, list):
        return visitor([traverse_json_like(visitor, item) for item in value])
    if isinstance(value, collections.abc.Mapping):
        return visitor({key: traverse_json_like(visitor, item) for key, item in value.items()})
    return visitor(value)


def prepare_for_serialization(value: Any) -> Any:
    """Make a value safe to send across a context boundary.

    Callables (built computations, host functions) become their text form,
    tuples become lists and mappings become plain dicts.
    """
    def visit(v):
        if callable(v):
            return str(v)
        if isinstance(v, tuple):
            return list(v)
        if isinstance(v, (bytes, bytearray)):
            return v.decode("utf-8", errors="replace")
        return v
    return traverse_json_like(visit, _untuple(value))


def _untuple(value):
    if isinstance(value, tuple):
        return [_untuple(v) for v in value]
    if isinstance(value, list):
        return [_untuple(v) for v in value]
    if isinstance(value, collections.abc.Mapping):
        return {str(k): _untuple(v) for k, v in value.items()}
    return value


def _lookup(container: Any, key: PrimitiveKey):
    """Returns (found, value) for one step of a keyed lookup."""
    if isinstance(container, list):
        if isinstance(key, int) and not isinstance(key, bool) and 0 <= key < len(container):
            return True, container[key]
        return False, None
    if isinstance(container, collections.abc.Mapping):
        if key in container:
            return True, container[key]
        # Document keys are strings; allow numeric lookups on string keys
        if isinstance(key, int) and str(key) in container:
            return True, container[str(key)]
        return False, None
    return False, None


def get_path(key: ComposedKey, source: Any, default: Any = MISSING) -> Any:
    """
    Keyed lookup with an optional default.

    `key` is a string, an int, or a list of them walked left to right.
    Raises ValueNotFound when a step is missing and no default is given.
    """
    if isinstance(key, (list, tuple)):
        result = source
        for k in key:
            found, value = _lookup(result, k)
            if found:
                result = value
                continue
            if default is not MISSING:
                return default
            raise ValueNotFound(
                k,
                f'Invalid container type "{type(result).__name__}: {result!r}" for key "{k}", '
                "expected an array or object",
            )
        return result
    found, value = _lookup(source, key)
    if found:
        return value
    if default is not MISSING:
        return default
    raise ValueNotFound(key, f'Value not found for key "{key}"')


def ensure_key(value: Any) -> ComposedKey:
    if isinstance(value, bool):
        raise ValueShapeError(f"Key must be a string, an integer or a list of them, got {value!r}")
    if isinstance(value, (str, int)):
        return value
    if isinstance(value, list) and all(isinstance(k, (str, int)) and not isinstance(k, bool) for k in value):
        return value
    raise ValueShapeError(f"Key must be a string, an integer or a list of them, got {value!r}")


__all__ = [
    "traverse_json_like",
    "prepare_for_serialization",
    "get_path",
    "ensure_key",
]
