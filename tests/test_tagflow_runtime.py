import pytest

from tagflow.tagflow_capabilities import Capabilities
from tagflow.tagflow_interactive import LogCollector
from tagflow.tagflow_runtime import ConfigRunner, ExecutionResult, RuntimeSettings, default_capabilities
from tagflow.tagflow_sandbox import TemplateRenderer


def make_runner(**settings):
    caps = Capabilities(renderer=TemplateRenderer(), logger=LogCollector())
    return ConfigRunner(caps, RuntimeSettings(**settings))


# --- Settings ---

def test_settings_from_env():
    settings = RuntimeSettings.from_env({
        "TAGFLOW_DEBUG": "yes",
        "TAGFLOW_HTTP_TIMEOUT": "2.5",
        "TAGFLOW_HTTP_RETRIES": "0",
        "TAGFLOW_DOWNLOAD_DIR": "/tmp/out",
        "TAGFLOW_ISOLATED": "0",
    })
    assert settings == RuntimeSettings(debug=True, http_timeout=2.5, http_retries=0,
                                       download_dir="/tmp/out", isolated=False)


def test_settings_defaults():
    assert RuntimeSettings.from_env({}) == RuntimeSettings()


def test_default_capabilities_are_complete():
    caps = default_capabilities(RuntimeSettings(http_timeout=1.0))
    assert caps.fetcher.timeout == 1.0
    assert caps.document is None
    assert all(getattr(caps, name) is not None for name in (
        "evaluator", "renderer", "validator", "form_shower", "ok_shower",
        "fetcher", "downloader", "file_opener", "logger"))


# --- handle_config ---

@pytest.mark.asyncio
async def test_references_and_secrets():
    files = {
        "main": {
            "greeting": {"$op": "template.render", "template": "Hi {{user}}"},
            "lib": {"$ref": "./lib#value"},
        },
        "lib": {"value": [1, {"$op": "get", "key": "user"}]},
    }
    result = await make_runner().handle_config(files, {"user": "ann"})
    assert result.status == "success"
    assert result.value == {"greeting": "Hi ann", "lib": [1, "ann"]}
    assert result.error_message is None
    assert result.format_error() == ""


@pytest.mark.asyncio
async def test_entry_defaults_to_first_file():
    result = await make_runner().handle_config({"only": {"$op": "plus", "left": 1, "right": 1}})
    assert result.value == 2


@pytest.mark.asyncio
async def test_explicit_entry():
    files = {"main": 1, "other": {"$op": "get"}}
    result = await make_runner().handle_config(files, "secret", entry="other")
    assert result.value == "secret"


@pytest.mark.asyncio
async def test_errors_are_reported_in_the_result():
    result = await make_runner().handle_config({"main": {"$op": "nope"}})
    assert result.status == "error"
    assert result.value is None
    assert result.error_message == "Unknown operator: nope"
    assert result.format_error() == "Unknown operator: nope"


@pytest.mark.asyncio
async def test_no_files():
    result = await make_runner().handle_config({})
    assert result.status == "error"
    assert result.error_message == "No config files to evaluate"


@pytest.mark.asyncio
async def test_cycles_are_reported():
    result = await make_runner().handle_config({"main": {"$ref": "./main"}})
    assert result.error_message == "Cyclic reference detected: main#"


@pytest.mark.asyncio
async def test_logs_belong_to_one_run():
    runner = make_runner()
    files = {"main": {"$op": "dbg.log", "label": "seen", "value": {"$op": "get"}}}
    first = await runner.handle_config(files, 1)
    second = await runner.handle_config(files, 2)
    assert first.logs == [{"seen": 1}]
    assert second.logs == [{"seen": 2}]


@pytest.mark.asyncio
async def test_debug_traces_every_operator():
    result = await make_runner(debug=True).handle_config({"main": {"$op": "plus", "left": 1, "right": 2}})
    assert result.value == 3
    assert result.logs == [{"plus": 3}]


def test_execution_result_defaults():
    result = ExecutionResult(status="error")
    assert result.format_error() == "Unknown error"
    assert result.logs == []
