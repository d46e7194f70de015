"""
Terminal implementations of the interactive capabilities (forms and
acknowledgement prompts) and the in-process log collector.
"""
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional

from jsonschema.validators import validator_for

from tagflow.tagflow_capabilities import Logger
from tagflow.tagflow_datatypes import ValueShapeError

logger = logging.getLogger(__name__)
dbg_logger = logging.getLogger("tagflow.dbg")

InputFn = Callable[[str], Awaitable[str]]


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


class LogCollector(Logger):
    """Keeps `dbg.log` entries and mirrors them to the `tagflow.dbg` logger."""

    def __init__(self):
        self.entries: List[Any] = []

    def append(self, entry: Any) -> None:
        self.entries.append(entry)
        dbg_logger.info("%s", json.dumps(entry, default=str, ensure_ascii=False))

    def clear(self) -> None:
        self.entries.clear()


def _parse_answer(raw: str, schema: Dict[str, Any]) -> Any:
    kind = schema.get("type", "string")
    if isinstance(kind, list):
        kind = next((k for k in kind if k != "null"), "string")
    if "enum" in schema and kind == "string":
        return raw
    if kind == "integer":
        return int(raw)
    if kind == "number":
        return float(raw)
    if kind == "boolean":
        lowered = raw.lower()
        if lowered in ("y", "yes", "true", "1"):
            return True
        if lowered in ("n", "no", "false", "0"):
            return False
        raise ValueError(f"Expected yes or no, got {raw!r}")
    if kind in ("array", "object"):
        return json.loads(raw)
    return raw


class ConsoleFormShower:
    """Asks for each top-level property of an object schema in turn.

    An empty answer keeps the current (or default) value. The collected
    answers are validated against the schema and the form is asked again
    until they pass.
    """

    def __init__(self, input_fn: InputFn = ainput, output=None, max_attempts: int = 3):
        self.input_fn = input_fn
        self.output = output or sys.stdout
        self.max_attempts = max_attempts

    def _print(self, text: str) -> None:
        self.output.write(text + "\n")
        self.output.flush()

    async def _ask(self, name: str, prop: Dict[str, Any], current: Any) -> Any:
        label = prop.get("title", name)
        hint = f" ({'/'.join(map(str, prop['enum']))})" if "enum" in prop else ""
        shown = "" if current is None else f" [{json.dumps(current, ensure_ascii=False)}]"
        while True:
            raw = (await self.input_fn(f"{label}{hint}{shown}: ")).strip()
            if raw == "":
                return current
            try:
                return _parse_answer(raw, prop)
            except ValueError as e:
                self._print(f"Invalid value for {label}: {e}")

    async def __call__(self, schema: Dict[str, Any], ui_schema: Optional[Dict[str, Any]] = None,
                       data: Any = None, omit_extra_data: bool = False) -> Any:
        properties = schema.get("properties", {})
        ui_schema = ui_schema or {}
        order = ui_schema.get("ui:order") or list(properties)
        if "*" in order:
            rest = [k for k in properties if k not in order]
            i = order.index("*")
            order = order[:i] + rest + order[i + 1:]
        values = dict(data) if isinstance(data, dict) else {}
        if omit_extra_data:
            values = {k: v for k, v in values.items() if k in properties}
        if schema.get("title"):
            self._print(schema["title"])
        if schema.get("description"):
            self._print(schema["description"])
        cls = validator_for(schema)
        for _ in range(self.max_attempts):
            for name in order:
                prop = properties.get(name, {})
                if ui_schema.get(name, {}).get("ui:widget") == "hidden":
                    continue
                answer = await self._ask(name, prop, values.get(name, prop.get("default")))
                if answer is not None:
                    values[name] = answer
            errors = list(cls(schema).iter_errors(values))
            if not errors:
                return values
            for error in errors:
                self._print(f"{'.'.join(map(str, error.absolute_path)) or 'form'}: {error.message}")
        raise ValueShapeError("Form was not completed with valid data")


class ConsoleOkShower:

    def __init__(self, input_fn: InputFn = ainput, output=None):
        self.input_fn = input_fn
        self.output = output or sys.stdout

    async def __call__(self, message: str) -> bool:
        self.output.write(message + "\n")
        self.output.flush()
        answer = (await self.input_fn("Continue? [Y/n] ")).strip().lower()
        return answer in ("", "y", "yes")
