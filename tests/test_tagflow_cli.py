import json

import pytest

from tagflow.tagflow_cli import build_parser, load_config_files, run


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("TAGFLOW_DEBUG", "TAGFLOW_ISOLATED", "TAGFLOW_HTTP_TIMEOUT",
                 "TAGFLOW_HTTP_RETRIES", "TAGFLOW_DOWNLOAD_DIR"):
        monkeypatch.delenv(name, raising=False)


def write(path, text):
    path.write_text(text, encoding="utf-8")
    return str(path)


# --- Arguments ---

def test_parse_args():
    options = build_parser().parse_intermixed_args(
        ["main.yaml", "--isolated", "lib.json", "--format=yaml", "--secrets", "s.json"])
    assert options.files == ["main.yaml", "lib.json"]
    assert options.isolated is True
    assert options.debug is False
    assert options.format == "yaml"
    assert options.secrets == "s.json"


@pytest.mark.parametrize("argv", [["--colour=red"], ["-x"], ["a.yaml", "--format=ini"]])
def test_parse_args_rejects_unknown_options(argv, capsys):
    with pytest.raises(SystemExit) as e:
        build_parser().parse_intermixed_args(argv)
    assert e.value.code == 2
    assert "usage: tagflow" in capsys.readouterr().err


def test_duplicate_file_names(tmp_path):
    (tmp_path / "x").mkdir()
    a = write(tmp_path / "main.yaml", "1")
    b = write(tmp_path / "x" / "main.json", "2")
    with pytest.raises(ValueError, match="Duplicate config file name: main"):
        load_config_files([a, b])


# --- run ---

@pytest.mark.asyncio
async def test_usage(capsys):
    assert await run([]) == 2
    assert capsys.readouterr().err.startswith("usage: tagflow")
    assert await run(["--help"]) == 0
    assert "--isolated" in capsys.readouterr().out
    assert await run(["--bogus=1"]) == 2
    assert "unrecognized arguments: --bogus=1" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_evaluates_main_with_secrets_and_references(tmp_path, capsys):
    main = write(tmp_path / "main.yaml", (
        "total:\n"
        "  $op: plus\n"
        "  left: {$op: get, key: n}\n"
        "  right: {$ref: './lib#one'}\n"
    ))
    lib = write(tmp_path / "lib.json", '{"one": 1}')
    secrets = write(tmp_path / "secrets.json", '{"n": 41}')
    assert await run([lib, main, f"--secrets={secrets}"]) == 0
    assert json.loads(capsys.readouterr().out) == {"total": 42}


@pytest.mark.asyncio
async def test_first_file_is_entry_without_main(tmp_path, capsys):
    entry = write(tmp_path / "start.yaml", "$op: str.join\nvalues: [a, b]\nseparator: '-'\n")
    assert await run([entry, "--format=yaml"]) == 0
    assert capsys.readouterr().out.startswith("a-b\n")


@pytest.mark.asyncio
async def test_evaluation_error(tmp_path, capsys):
    main = write(tmp_path / "main.yaml", "$op: nope\n")
    assert await run([main]) == 1
    assert "Error: Unknown operator: nope" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_unreadable_input(tmp_path, capsys):
    assert await run([str(tmp_path / "missing.yaml")]) == 1
    assert capsys.readouterr().err.startswith("Error:")


@pytest.mark.asyncio
async def test_page_document(tmp_path, capsys):
    page = write(tmp_path / "page.html", "<html><head><title>Hello</title></head><body></body></html>")
    main = write(tmp_path / "main.yaml", "$op: doc.get\nkey: title\n")
    assert await run([main, f"--page={page}", "--url=https://ex.com/"]) == 0
    assert json.loads(capsys.readouterr().out) == "Hello"
