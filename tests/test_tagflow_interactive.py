import io
import logging

import pytest

from tagflow.tagflow_datatypes import ValueShapeError
from tagflow.tagflow_interactive import ConsoleFormShower, ConsoleOkShower, LogCollector


def scripted(answers):
    """An input function that replays `answers` and records the prompts."""
    prompts = []
    queue = list(answers)

    async def input_fn(prompt):
        prompts.append(prompt)
        return queue.pop(0) if queue else ""
    input_fn.prompts = prompts
    return input_fn


SCHEMA = {
    "type": "object",
    "title": "Profile",
    "properties": {
        "name": {"type": "string"},
        "age": {"type": "integer", "default": 3},
        "admin": {"type": "boolean"},
    },
    "required": ["name"],
}


# --- Forms ---

@pytest.mark.asyncio
async def test_form_collects_typed_answers():
    output = io.StringIO()
    form = ConsoleFormShower(scripted(["ann", "", "y"]), output)
    assert await form(SCHEMA) == {"name": "ann", "age": 3, "admin": True}
    assert output.getvalue().startswith("Profile\n")


@pytest.mark.asyncio
async def test_form_reasks_invalid_answers():
    output = io.StringIO()
    input_fn = scripted(["ann", "old", "40", "n"])
    assert await ConsoleFormShower(input_fn, output)(SCHEMA) == {"name": "ann", "age": 40, "admin": False}
    assert "Invalid value for age" in output.getvalue()
    assert len(input_fn.prompts) == 4


@pytest.mark.asyncio
async def test_form_keeps_existing_data():
    form = ConsoleFormShower(scripted([]), io.StringIO())
    data = {"name": "bob", "age": 7, "extra": 1}
    assert await form(SCHEMA, None, data) == {"name": "bob", "age": 7, "extra": 1}
    assert await form(SCHEMA, None, data, True) == {"name": "bob", "age": 7}


@pytest.mark.asyncio
async def test_form_ui_order_and_hidden_fields():
    input_fn = scripted(["x", "y"])
    ui = {"ui:order": ["admin", "*"], "age": {"ui:widget": "hidden"}}
    schema = {**SCHEMA, "properties": {**SCHEMA["properties"], "admin": {"type": "string"}}}
    result = await ConsoleFormShower(input_fn, io.StringIO())(schema, ui)
    assert [p.split(":")[0] for p in input_fn.prompts] == ["admin", "name"]
    assert result == {"admin": "x", "name": "y"}


@pytest.mark.asyncio
async def test_form_gives_up_after_max_attempts():
    output = io.StringIO()
    form = ConsoleFormShower(scripted([]), output, max_attempts=2)
    with pytest.raises(ValueShapeError, match="Form was not completed with valid data"):
        await form({"type": "object", "properties": {"name": {"type": "string"}}, "required": ["name"]})
    assert "'name' is a required property" in output.getvalue()


@pytest.mark.asyncio
async def test_form_parses_structured_answers():
    schema = {"type": "object", "properties": {"tags": {"type": "array"}, "size": {"type": "number"}}}
    result = await ConsoleFormShower(scripted(['["a"]', "1.5"]), io.StringIO())(schema)
    assert result == {"tags": ["a"], "size": 1.5}


# --- Acknowledgement ---

@pytest.mark.asyncio
@pytest.mark.parametrize("answer,expected", [("", True), ("Y", True), ("yes", True), ("n", False), ("later", False)])
async def test_ok_shower(answer, expected):
    output = io.StringIO()
    assert await ConsoleOkShower(scripted([answer]), output)("Proceed") is expected
    assert output.getvalue() == "Proceed\n"


# --- Log collector ---

def test_log_collector_mirrors_to_logging(caplog):
    log = LogCollector()
    with caplog.at_level(logging.INFO, logger="tagflow.dbg"):
        log.append({"step": "é"})
    assert log.entries == [{"step": "é"}]
    assert '{"step": "é"}' in caplog.text
    log.clear()
    assert log.entries == []
