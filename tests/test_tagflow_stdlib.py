import math

import pytest

from tagflow.tagflow_capabilities import Capabilities
from tagflow.tagflow_datatypes import ValueNotFound, ValueShapeError, is_truthy, root_scope
from tagflow.tagflow_operator import build, evaluate
from tagflow.tagflow_runtime import RuntimeSettings, create_catalogue
from tagflow.tagflow_stdlib import compare_json_value


@pytest.fixture
def catalogue():
    return create_catalogue(Capabilities(), RuntimeSettings())


async def run(catalogue, document, context=None):
    return await evaluate(build(catalogue, document), root_scope(context))


ITEM = {"$op": "array.item"}


# --- Truthiness ---

@pytest.mark.parametrize("value,expected", [
    (None, False), (False, False), (0, False), (0.0, False), (math.nan, False), ("", False),
    ([], True), ({}, True), ("0", True), (1, True), (True, True),
])
def test_is_truthy(value, expected):
    assert is_truthy(value) is expected


@pytest.mark.asyncio
async def test_and_treats_empty_containers_as_truthy(catalogue):
    doc = {"$op": "and", "conditions": [[], "value", {"$op": "get"}]}
    assert await run(catalogue, doc, context="ctx") == "ctx"


@pytest.mark.asyncio
async def test_and_returns_first_falsy(catalogue):
    assert await run(catalogue, {"$op": "and", "conditions": [{}, 0, "never"]}) == 0


def test_and_needs_at_least_one_condition(catalogue):
    from tagflow.tagflow_datatypes import ParameterValidationError
    with pytest.raises(ParameterValidationError):
        build(catalogue, {"$op": "and", "conditions": []})


@pytest.mark.asyncio
async def test_not(catalogue):
    assert await run(catalogue, {"$op": "not", "value": []}) is False
    assert await run(catalogue, {"$op": "not", "value": ""}) is True


# --- get / update ---

@pytest.mark.asyncio
async def test_get_nested_key(catalogue):
    doc = {"$op": "get", "key": ["a", 0, "b"]}
    assert await run(catalogue, doc, context={"a": [{"b": 5}]}) == 5


@pytest.mark.asyncio
async def test_get_from_and_default(catalogue):
    assert await run(catalogue, {"$op": "get", "key": "x", "from": {"x": 1}}) == 1
    assert await run(catalogue, {"$op": "ctx", "key": "y", "default": "d"}, context={}) == "d"
    with pytest.raises(ValueNotFound):
        await run(catalogue, {"$op": "get", "key": "y"}, context={})


@pytest.mark.asyncio
async def test_get_from_scalar_fails(catalogue):
    with pytest.raises(ValueShapeError):
        await run(catalogue, {"$op": "get", "key": "x"}, context=5)


@pytest.mark.asyncio
async def test_update_array_replaces_listed_indices(catalogue):
    doc = {"$op": "update", "source": ["a", "b", "c"], "properties": {"1": "B", "7": "x"}}
    assert await run(catalogue, doc) == ["a", "B", "c"]


@pytest.mark.asyncio
async def test_update_object_merges(catalogue):
    doc = {"$op": "update", "properties": {"b": 3}}
    assert await run(catalogue, doc, context={"a": 1, "b": 2}) == {"a": 1, "b": 3}


@pytest.mark.asyncio
async def test_update_errors(catalogue):
    with pytest.raises(ValueShapeError, match="Source must be an object or array"):
        await run(catalogue, {"$op": "update", "source": 5, "properties": {}})
    with pytest.raises(ValueShapeError, match="Properties must be an object"):
        await run(catalogue, {"$op": "update", "source": {}, "properties": [1]})


# --- Control flow ---

@pytest.mark.asyncio
async def test_pipe_threads_context(catalogue):
    doc = {"$op": "pipe", "do": [
        {"$op": "plus", "left": {"$op": "get"}, "right": 1},
        {"$op": "mul", "left": {"$op": "get"}, "right": 10},
    ]}
    assert await run(catalogue, doc, context=1) == 20


@pytest.mark.asyncio
async def test_if_else(catalogue):
    assert await run(catalogue, {"$op": "if", "condition": 0, "then": "a", "else": "b"}) == "b"
    assert await run(catalogue, {"$op": "if", "condition": [], "then": "a"}) == "a"
    assert await run(catalogue, {"$op": "if", "condition": None, "then": "a"}) is None


@pytest.mark.asyncio
async def test_cond(catalogue):
    doc = {"$op": "cond", "cases": [[False, "a"], [{"$op": "get"}, "b"]]}
    assert await run(catalogue, doc, context=True) == "b"
    assert await run(catalogue, {**doc, "default": "d"}, context=False) == "d"
    with pytest.raises(ValueNotFound, match="No case matched"):
        await run(catalogue, doc, context=False)


@pytest.mark.parametrize("op,left,right,expected", [
    ("lt", 1, 2, True), ("lt", "b", "a", False), ("lte", 2, 2, True), ("gt", [1, 2], [1], True),
    ("gte", None, 0, False), ("eq", 1, 1.0, True), ("eq", True, 1, False), ("neq", {"a": 1}, {"a": 2}, True),
])
@pytest.mark.asyncio
async def test_comparisons(catalogue, op, left, right, expected):
    assert await run(catalogue, {"$op": op, "left": left, "right": right}) is expected


def test_compare_json_value_orders_types():
    assert compare_json_value(None, False) == -1
    assert compare_json_value(1, "1") == -1
    assert compare_json_value({"a": 1}, {"a": 1}) == 0


# --- math / str / json ---

@pytest.mark.asyncio
async def test_math(catalogue):
    assert await run(catalogue, {"$op": "math.pow", "left": 2, "right": 10}) == 1024
    assert await run(catalogue, {"$op": "minus", "left": 1, "right": 3}) == -2
    assert await run(catalogue, {"$op": "div", "left": 1, "right": 4}) == 0.25
    assert await run(catalogue, {"$op": "mod", "left": -7, "right": 3}) == -1
    with pytest.raises(ValueShapeError):
        await run(catalogue, {"$op": "div", "left": 1, "right": 0})


@pytest.mark.asyncio
async def test_strings(catalogue):
    assert await run(catalogue, {"$op": "str.join", "values": ["a", "b"]}) == "ab"
    assert await run(catalogue, {"$op": "str.join", "values": ["a", "b"], "separator": ", "}) == "a, b"
    replace = {"value": "a-b-c", "pattern": "-", "replacement": "+"}
    assert await run(catalogue, {"$op": "str.replace", **replace}) == "a+b-c"
    assert await run(catalogue, {"$op": "str.replaceByRegExp", **replace}) == "a+b+c"
    regexp = {"value": "x1y22", "pattern": r"\d+", "replacement": "#"}
    assert await run(catalogue, {"$op": "str.replaceByRegExp", **regexp}) == "x#y#"


@pytest.mark.asyncio
async def test_json(catalogue):
    assert await run(catalogue, {"$op": "json.stringify", "value": {"a": [1, 2]}}) == '{"a":[1,2]}'
    assert await run(catalogue, {"$op": "json.parse", "value": '{"a": [1, 2]}'}) == {"a": [1, 2]}


# --- array.* ---

@pytest.mark.asyncio
async def test_array_map_with_item_and_index(catalogue):
    doc = {"$op": "array.map", "source": [1, 2, 3], "mapper": {"$op": "mul", "left": ITEM, "right": 2}}
    assert await run(catalogue, doc) == [2, 4, 6]
    doc = {"$op": "array.map", "mapper": {"$op": "array.index"}}
    assert await run(catalogue, doc, context=["a", "b"]) == [0, 1]


@pytest.mark.asyncio
async def test_array_find(catalogue):
    doc = {"$op": "array.find", "source": [1, 2, 3], "predicate": {"$op": "gt", "left": ITEM, "right": 1}}
    assert await run(catalogue, doc) == 2
    doc["predicate"] = False
    assert await run(catalogue, doc) is None


@pytest.mark.asyncio
async def test_array_reduce_starts_from_context(catalogue):
    doc = {"$op": "array.reduce", "source": [1, 2, 3], "reducer": {"$op": "plus", "left": {"$op": "get"}, "right": ITEM}}
    assert await run(catalogue, doc, context=10) == 16


@pytest.mark.asyncio
async def test_array_helpers(catalogue):
    assert await run(catalogue, {"$op": "array.length"}, context=[1, 2]) == 2
    assert await run(catalogue, {"$op": "array.length", "value": []}) == 0
    assert await run(catalogue, {"$op": "array.indexOf", "value": {"a": 1}}, context=[1, {"a": 1}]) == 1
    assert await run(catalogue, {"$op": "array.indexOf", "source": [1], "value": 2}) == -1
    assert await run(catalogue, {"$op": "array.slice", "source": [1, 2, 3, 4], "start": 1, "end": 3}) == [2, 3]
    assert await run(catalogue, {"$op": "array.slice", "start": -1}, context=[1, 2, 3]) == [3]
    assert await run(catalogue, {"$op": "array.reverse"}, context=[1, 2, 3]) == [3, 2, 1]


@pytest.mark.asyncio
async def test_array_item_outside_iteration(catalogue):
    with pytest.raises(ValueNotFound):
        await run(catalogue, ITEM)
    with pytest.raises(ValueShapeError):
        await run(catalogue, {"$op": "array.map", "mapper": 1}, context="not a list")
