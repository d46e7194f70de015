"""
Selectors: JSONPath queries over document trees.

    $.store.books[0].title
    store.books[-1]['odd key']
    $..title
    $.store.books[*]
    $.store.books[?(@.price < 10)]

A leading `$` (root) is optional. A selector may match several values; the
first match in document order is the selected one.
"""
from functools import lru_cache
from typing import Any

from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError
from jsonpath_ng.ext import parse
from jsonpath_ng.jsonpath import JSONPath

from tagflow.tagflow_datatypes import MISSING, ValueNotFound, ValueShapeError


@lru_cache(maxsize=256)
def compile_selector(selector: str) -> JSONPath:
    """Parse a selector into a reusable JSONPath expression."""
    try:
        return parse(selector.strip())
    except (JsonPathLexerError, JsonPathParserError) as e:
        raise ValueShapeError(f"Invalid selector {selector!r}: {e}") from e


def select_all(document: Any, selector: str) -> list:
    """Every value matched by `selector`, in document order."""
    if not selector.strip():
        return [document]
    return [match.value for match in compile_selector(selector).find(document)]


def select(document: Any, selector: str, default: Any = MISSING) -> Any:
    """Return the first value matched by `selector` in `document`."""
    matches = select_all(document, selector)
    if matches:
        return matches[0]
    if default is not MISSING:
        return default
    raise ValueNotFound(selector, f"Selector result is undefined: {selector}")
