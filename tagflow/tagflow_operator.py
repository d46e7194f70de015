"""
The operator evaluation engine: Computation, Operator, Catalogue, build and
evaluate.

A raw document is built once, bottom-up, into a tree whose operator nodes are
Computations. The built tree is pure and may be evaluated any number of times
against different Scopes.
"""
import asyncio
import collections.abc
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from tagflow.tagflow_datatypes import (
    OPERATOR_KEY, Scope, ValueNotFound, ValueShapeError,
)
from tagflow.tagflow_schema import validate_params
from tagflow.tagflow_tree import traverse_json_like

logger = logging.getLogger(__name__)

FLOW = "flow"
TASK = "task"


# =================================================================
# Operators
# =================================================================

@dataclass(frozen=True)
class Operator:
    """
    A named operator: parameter schema + execution mode + run strategy.

    - flow: `run(params, scope)` receives built, unevaluated parameters and
      decides if and when to evaluate them.
    - task: `run(params)` receives parameters that were evaluated
      concurrently and validated; an optional `context_default` names a
      parameter that falls back to the current context when omitted.
    """
    name: str
    mode: str
    schema: Optional[Dict[str, Any]]
    run: Callable[..., Any]
    context_default: Optional[str] = None

    def validate(self, raw: Any) -> Any:
        return validate_params(self.name, self.schema, raw)

    async def invoke(self, params: Dict[str, Any], scope: Scope) -> Any:
        if self.mode == FLOW:
            result = self.run(params, scope)
        else:
            values = await evaluate(params, scope)
            if self.context_default and self.context_default not in values:
                values[self.context_default] = scope.context
            self.validate(values)
            result = self.run(values)
        if inspect.isawaitable(result):
            result = await result
        return result


class Computation:
    """A built operator node; call it with a Scope to get a value."""
    __slots__ = ("operator", "params")

    def __init__(self, operator: Operator, params: Dict[str, Any]):
        self.operator = operator
        self.params = params

    def __call__(self, scope: Scope) -> Awaitable[Any]:
        return self.operator.invoke(self.params, scope)

    def __repr__(self):
        return f"<Computation {self.operator.name}>"


class _DebugComputation(Computation):
    __slots__ = ("log",)

    def __init__(self, operator, params, log):
        super().__init__(operator, params)
        self.log = log

    async def _traced(self, scope):
        result = await self.operator.invoke(self.params, scope)
        entry = {self.operator.name: result}
        outcome = self.log(entry)
        if inspect.isawaitable(outcome):
            await outcome
        return result

    def __call__(self, scope):
        return self._traced(scope)


def operator(name: str, mode: str, schema: Optional[Dict[str, Any]] = None,
             context_default: Optional[str] = None):
    """Mark a method of an operator family as an operator."""
    def decorate(func):
        func._tagflow_operator = (name, mode, schema, context_default)
        return func
    return decorate


def flow(name: str, schema: Optional[Dict[str, Any]] = None):
    return operator(name, FLOW, schema)


def task(name: str, schema: Optional[Dict[str, Any]] = None, context_default: Optional[str] = None):
    return operator(name, TASK, schema, context_default)


# =================================================================
# Evaluation
# =================================================================

async def evaluate(node: Any, scope: Scope) -> Any:
    """
    Evaluate a built node in `scope`.

    Computations are invoked; the children of lists and mappings are
    dispatched together and joined; everything else passes through.
    """
    if isinstance(node, Computation):
        return await node(scope)
    if isinstance(node, list):
        if not node:
            return []
        return list(await asyncio.gather(*(evaluate(item, scope) for item in node)))
    if isinstance(node, dict):
        if not node:
            return {}
        keys = list(node.keys())
        values = await asyncio.gather(*(evaluate(node[k], scope) for k in keys))
        return dict(zip(keys, values))
    return node


# =================================================================
# Catalogue
# =================================================================

class Catalogue:
    """Maps operator names to Operators and builds raw documents."""

    def __init__(self, debug_log: Optional[Callable[[Any], Any]] = None):
        self.operators: Dict[str, Operator] = {}
        # When set, every computation reports `{name: result}` through it.
        self.debug_log = debug_log

    def register(self, op: Operator) -> None:
        self.operators[op.name] = op

    def add_family(self, family: Any, prefix: str = "") -> List[str]:
        """Register every decorated operator method of `family` under `prefix`."""
        names = []
        for _, member in inspect.getmembers(family):
            # Bound methods expose their function's attributes
            marker = getattr(member, "_tagflow_operator", None)
            if marker is None:
                continue
            name, mode, schema, context_default = marker
            full_name = f"{prefix}{name}"
            self.register(Operator(full_name, mode, schema, member, context_default))
            names.append(full_name)
        return names

    def __contains__(self, name: str) -> bool:
        return name in self.operators

    def __getitem__(self, name: str) -> Operator:
        return self.operators[name]

    def names(self) -> List[str]:
        return sorted(self.operators)

    def create(self, raw: collections.abc.Mapping) -> Computation:
        """Turn one operator node (children already built) into a Computation."""
        name = raw.get(OPERATOR_KEY)
        if not isinstance(name, str):
            raise ValueShapeError(f"Invalid operator name: {name!r}")
        op = self.operators.get(name)
        if op is None:
            raise ValueNotFound(name, f"Unknown operator: {name}")
        params = {k: v for k, v in raw.items() if k != OPERATOR_KEY}
        op.validate(params)
        if self.debug_log is not None:
            return _DebugComputation(op, params, self.debug_log)
        return Computation(op, params)

    def resolve_node(self, node: Any) -> Any:
        """Operator nodes become Computations; anything else passes through."""
        if isinstance(node, collections.abc.Mapping) and OPERATOR_KEY in node:
            return self.create(node)
        return node

    def build(self, raw: Any) -> Any:
        return traverse_json_like(self.resolve_node, raw)


def build(catalogue: Catalogue, raw: Any) -> Any:
    return catalogue.build(raw)
