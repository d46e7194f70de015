"""
Built-in operator families that need no host capability.

Each family is a plain class whose decorated methods are collected by
`Catalogue.add_family`. Flow operators receive built parameters plus the
scope and evaluate children themselves; task operators receive evaluated
parameters.
"""
import asyncio
import json
import math
import re
from typing import Any, Dict, List

from tagflow.tagflow_datatypes import (
    MISSING, Scope, ThrownError, ValueNotFound, ValueShapeError,
    is_truthy, stringify_error,
)
from tagflow.tagflow_operator import Catalogue, evaluate, flow, task
from tagflow.tagflow_schema import (
    ANY, ARRAY, NUMBER, OBJECT, STRING, array_of, params,
)
from tagflow.tagflow_tree import ensure_key, get_path


# ===================================================================
# sys.*
# ===================================================================

class SysOperators:
    """Closures, recursion, constants and dynamic operator execution."""

    def __init__(self, catalogue: Catalogue):
        self.catalogue = catalogue

    @flow("define", params(["for"], functions=OBJECT, constants=OBJECT, **{"for": ANY}))
    async def define(self, p: Dict[str, Any], scope: Scope):
        constants = None
        if "constants" in p:
            # Evaluated once, in the scope the definition appears in
            constants = await evaluate(p["constants"], scope)
            if not isinstance(constants, dict):
                raise ValueShapeError("Constants must be an object")
        functions = p.get("functions")
        if functions is not None and not isinstance(functions, dict):
            raise ValueShapeError("Functions must be an object")
        inner = scope.extend(functions=functions, constants=constants)
        return await evaluate(p["for"], inner)

    @flow("call", params(["fn"], fn=ANY, arg=ANY))
    async def call(self, p: Dict[str, Any], scope: Scope):
        name = await evaluate(p["fn"], scope)
        if not isinstance(name, str):
            raise ValueShapeError(f"Function name is not a string: {name!r}")
        if name not in scope.functions:
            raise ValueNotFound(name, f"Function {name} is not defined")
        func = scope.functions[name]
        if "arg" in p:
            scope = scope.with_context(await evaluate(p["arg"], scope))
        return await evaluate(func, scope)

    @flow("get", params(["key"], key=ANY, default=ANY))
    async def get(self, p: Dict[str, Any], scope: Scope):
        name = await evaluate(p["key"], scope)
        if not isinstance(name, str):
            raise ValueShapeError(f"Constant name is not a string: {name!r}")
        if name in scope.constants:
            return scope.constants[name]
        if "default" in p:
            return await evaluate(p["default"], scope)
        raise ValueNotFound(name, f"Constant {name} is not defined")

    @flow("exec", params(["op"], op=ANY, config=ANY, arg=ANY))
    async def exec_(self, p: Dict[str, Any], scope: Scope):
        op_name = await evaluate(p["op"], scope)
        config: Dict[str, Any] = {}
        if "config" in p:
            config = await evaluate(p["config"], scope)
            if not isinstance(config, dict):
                raise ValueShapeError("Config must be an object")
        computation = self.catalogue.create({**config, "$op": op_name})
        if "arg" in p:
            scope = scope.with_context(await evaluate(p["arg"], scope))
        return await computation(scope)

    @flow("eval", params(["expression"], expression=ANY))
    async def eval_(self, p: Dict[str, Any], scope: Scope):
        document = await evaluate(p["expression"], scope)
        return await evaluate(self.catalogue.build(document), scope)

    @flow("err")
    def err(self, p: Dict[str, Any], scope: Scope):
        return stringify_error(scope.error)

    @flow("wait", params(["ms"], ms=NUMBER))
    async def wait(self, p: Dict[str, Any], scope: Scope):
        ms = await evaluate(p["ms"], scope)
        await asyncio.sleep(ms / 1000)
        return scope.context


# ===================================================================
# get / ctx / update
# ===================================================================

_LOOKUP = params(key=ANY, default=ANY, **{"from": ANY})


class ContextOperators:

    async def _lookup(self, p: Dict[str, Any], scope: Scope):
        if "key" not in p:
            return scope.context
        key = ensure_key(await evaluate(p["key"], scope))
        source = await evaluate(p["from"], scope) if "from" in p else scope.context
        if not isinstance(source, (list, dict)):
            raise ValueShapeError(f"Cannot look up {key!r} in {type(source).__name__}, expected an array or object")
        try:
            return get_path(key, source)
        except ValueNotFound:
            if "default" in p:
                return await evaluate(p["default"], scope)
            raise

    @flow("get", _LOOKUP)
    async def get(self, p, scope):
        return await self._lookup(p, scope)

    @flow("ctx", _LOOKUP)
    async def ctx(self, p, scope):
        return await self._lookup(p, scope)

    @flow("update", params(["properties"], source=ANY, properties=ANY))
    async def update(self, p: Dict[str, Any], scope: Scope):
        properties = await evaluate(p["properties"], scope)
        if not isinstance(properties, dict):
            raise ValueShapeError("Properties must be an object")
        source = await evaluate(p["source"], scope) if "source" in p else scope.context
        if isinstance(source, list):
            return [properties[str(i)] if str(i) in properties else v for i, v in enumerate(source)]
        if isinstance(source, dict):
            return {**source, **properties}
        raise ValueShapeError("Source must be an object or array")


# ===================================================================
# Control flow and comparison
# ===================================================================

def _rank(value) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1
    if isinstance(value, (int, float)):
        return 2
    if isinstance(value, str):
        return 3
    if isinstance(value, list):
        return 4
    if isinstance(value, dict):
        return 5
    raise ValueShapeError(f"Value is not comparable: {value!r}")


def compare_json_value(left, right) -> int:
    """Total order over JSON values: null < bool < number < string < array < object."""
    lr, rr = _rank(left), _rank(right)
    if lr != rr:
        return -1 if lr < rr else 1
    if isinstance(left, list):
        for a, b in zip(left, right):
            c = compare_json_value(a, b)
            if c != 0:
                return c
        return compare_json_value(len(left), len(right))
    if isinstance(left, dict):
        keys = sorted(set(left) | set(right))
        for k in keys:
            if k not in left or k not in right:
                return -1 if k not in left else 1
            c = compare_json_value(left[k], right[k])
            if c != 0:
                return c
        return 0
    if left == right:
        return 0
    return -1 if left < right else 1


_BINARY = params(["left", "right"], left=ANY, right=ANY)


class FlowOperators:

    @flow("pipe", params(["do"], do=ARRAY))
    async def pipe(self, p: Dict[str, Any], scope: Scope):
        for stage in p["do"]:
            scope = scope.with_context(await evaluate(stage, scope))
        return scope.context

    @flow("and", params(["conditions"], conditions=array_of(ANY, minItems=1)))
    async def and_(self, p: Dict[str, Any], scope: Scope):
        result = None
        for condition in p["conditions"]:
            result = await evaluate(condition, scope)
            if not is_truthy(result):
                return result
        return result

    @task("not", params(["value"], value=ANY))
    def not_(self, p):
        return not is_truthy(p["value"])

    @flow("if", params(["condition", "then"], condition=ANY, then=ANY, **{"else": ANY}))
    async def if_(self, p: Dict[str, Any], scope: Scope):
        if is_truthy(await evaluate(p["condition"], scope)):
            return await evaluate(p["then"], scope)
        return await evaluate(p.get("else"), scope)

    @flow("cond", params(["cases"], cases=array_of(array_of(ANY, minItems=2, maxItems=2)), default=ANY))
    async def cond(self, p: Dict[str, Any], scope: Scope):
        for condition, then in p["cases"]:
            if is_truthy(await evaluate(condition, scope)):
                return await evaluate(then, scope)
        if "default" not in p:
            raise ValueNotFound("cond", "No case matched")
        return await evaluate(p["default"], scope)

    @flow("try", params(["do"], do=ANY, catch=ANY, **{"finally": ANY}))
    async def try_(self, p: Dict[str, Any], scope: Scope):
        error = None
        handled = False
        try:
            scope = scope.with_context(await evaluate(p["do"], scope))
        except Exception as e:
            error = e
            scope = scope.replace(error=e)
            if "catch" in p:
                scope = scope.with_context(await evaluate(p["catch"], scope))
                handled = True
        finally:
            # Runs even when the catch block itself fails
            if "finally" in p:
                scope = scope.with_context(await evaluate(p["finally"], scope))
        if error is not None and not handled:
            raise error
        return scope.context

    @flow("throw", params(["error"], error=ANY))
    async def throw(self, p: Dict[str, Any], scope: Scope):
        raise ThrownError(await evaluate(p["error"], scope))

    @task("lt", _BINARY)
    def lt(self, p):
        return compare_json_value(p["left"], p["right"]) == -1

    @task("lte", _BINARY)
    def lte(self, p):
        return compare_json_value(p["left"], p["right"]) < 1

    @task("gt", _BINARY)
    def gt(self, p):
        return compare_json_value(p["left"], p["right"]) == 1

    @task("gte", _BINARY)
    def gte(self, p):
        return compare_json_value(p["left"], p["right"]) > -1

    @task("eq", _BINARY)
    def eq(self, p):
        return compare_json_value(p["left"], p["right"]) == 0

    @task("neq", _BINARY)
    def neq(self, p):
        return compare_json_value(p["left"], p["right"]) != 0


# ===================================================================
# math.* / str.* / json.*
# ===================================================================

_NUMBERS = params(["left", "right"], left=NUMBER, right=NUMBER)


class MathOperators:

    @task("plus", _NUMBERS)
    def plus(self, p): return p["left"] + p["right"]

    @task("minus", _NUMBERS)
    def minus(self, p): return p["left"] - p["right"]

    @task("mul", _NUMBERS)
    def mul(self, p): return p["left"] * p["right"]

    @task("div", _NUMBERS)
    def div(self, p):
        if p["right"] == 0:
            raise ValueShapeError("Division by zero")
        return p["left"] / p["right"]

    @task("mod", _NUMBERS)
    def mod(self, p):
        if p["right"] == 0:
            raise ValueShapeError("Division by zero")
        # Sign follows the dividend
        result = math.fmod(p["left"], p["right"])
        return int(result) if isinstance(p["left"], int) and isinstance(p["right"], int) else result

    @task("pow", _NUMBERS)
    def pow(self, p): return p["left"] ** p["right"]


_REPLACE = params(["value", "pattern", "replacement"], value=STRING, pattern=STRING, replacement=STRING)


class StringOperators:

    @task("join", params(["values"], values=array_of(STRING), separator=STRING))
    def join(self, p):
        return p.get("separator", "").join(p["values"])

    @task("replace", _REPLACE)
    def replace(self, p):
        return p["value"].replace(p["pattern"], p["replacement"], 1)

    @task("replaceByRegExp", _REPLACE)
    def replace_by_regexp(self, p):
        return re.sub(p["pattern"], p["replacement"], p["value"])


class JsonOperators:

    @task("stringify", params(["value"], value=ANY))
    def stringify(self, p):
        return json.dumps(p["value"], separators=(",", ":"), ensure_ascii=False)

    @task("parse", params(["value"], value=STRING))
    def parse(self, p):
        return json.loads(p["value"])


# ===================================================================
# array.*
# ===================================================================

class ArrayOperators:
    """Iteration binds `array` and `index` in the scope of the body."""

    async def _source(self, p, scope, field="source") -> List[Any]:
        array = await evaluate(p[field], scope) if field in p else scope.context
        if not isinstance(array, list):
            raise ValueShapeError(f"{field.capitalize()} must be an array")
        return array

    @flow("index")
    def index(self, p, scope: Scope):
        if scope.index is None:
            raise ValueNotFound("index", "Index is not defined")
        return scope.index

    @flow("current")
    def current(self, p, scope: Scope):
        if scope.array is None:
            raise ValueNotFound("array", "Array is not defined")
        return scope.array

    @flow("item")
    def item(self, p, scope: Scope):
        if scope.array is None:
            raise ValueNotFound("array", "Array is not defined")
        if scope.index is None:
            raise ValueNotFound("index", "Index is not defined")
        return scope.array[scope.index]

    @flow("length", params(value=ANY))
    async def length(self, p, scope: Scope):
        return len(await self._source(p, scope, "value"))

    @flow("find", params(["predicate"], source=ANY, predicate=ANY))
    async def find(self, p, scope: Scope):
        array = await self._source(p, scope)
        for i, value in enumerate(array):
            if is_truthy(await evaluate(p["predicate"], scope.replace(array=array, index=i))):
                return value
        return None

    @flow("map", params(["mapper"], source=ANY, mapper=ANY))
    async def map(self, p, scope: Scope):
        array = await self._source(p, scope)
        result = []
        for i in range(len(array)):
            result.append(await evaluate(p["mapper"], scope.replace(array=array, index=i)))
        return result

    @flow("reduce", params(["reducer"], source=ANY, reducer=ANY))
    async def reduce(self, p, scope: Scope):
        array = await self._source(p, scope)
        acc = scope.context
        for i in range(len(array)):
            acc = await evaluate(p["reducer"], scope.replace(array=array, index=i, context=acc))
        return acc

    @task("indexOf", params(["value"], source=ARRAY, value=ANY), context_default="source")
    def index_of(self, p):
        for i, v in enumerate(p["source"]):
            if compare_json_value(v, p["value"]) == 0:
                return i
        return -1

    @task("slice", params(source=ARRAY, start=NUMBER, end=NUMBER), context_default="source")
    def slice(self, p):
        start = int(p.get("start", 0))
        end = p.get("end", MISSING)
        return p["source"][start:] if end is MISSING else p["source"][start:int(end)]

    @task("reverse", params(source=ARRAY), context_default="source")
    def reverse(self, p):
        return list(reversed(p["source"]))


def pure_families(catalogue: Catalogue) -> Dict[str, Any]:
    """Prefix → family for every capability-free operator family."""
    math_ops = MathOperators()
    return {
        "": [FlowOperators(), ContextOperators(), math_ops],
        "sys.": [SysOperators(catalogue)],
        "math.": [math_ops],
        "str.": [StringOperators()],
        "json.": [JsonOperators()],
        "array.": [ArrayOperators()],
    }
