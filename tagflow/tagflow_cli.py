"""
Command line entry point.

    tagflow MAIN [OTHER ...] [--secrets FILE] [--isolated] [--debug]
            [--format json|yaml|toml|xml] [--page FILE] [--url URL]

Each file is registered under its stem (`lib/b.yaml` -> `./b`); the file
named `main`, or the first one given, is evaluated.
"""
import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

from tagflow.tagflow_capabilities import PageDocument
from tagflow.tagflow_html import page_metadata
from tagflow.tagflow_runtime import ConfigRunner, MAIN_FILE, RuntimeSettings, default_capabilities
from tagflow.tagflow_serialize import FORMATS, load_document, serialize


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tagflow",
        description="Evaluate tag-based configuration files",
    )
    parser.add_argument("files", nargs="*", help="Config files; the one named 'main' (or the first) is evaluated")
    parser.add_argument("--secrets", help="JSON/YAML file used as the initial context")
    parser.add_argument("--isolated", action="store_true", help="Run sandboxed capabilities behind an actor")
    parser.add_argument("--debug", action="store_true", help="Log every operator evaluation")
    parser.add_argument("--format", choices=FORMATS, default="json", help="Output format")
    parser.add_argument("--page", help="HTML file exposed to the doc.* and html.* operators")
    parser.add_argument("--url", help="URL of the page document")
    return parser


def load_config_files(paths: List[str]) -> Dict[str, object]:
    files: Dict[str, object] = {}
    for path in paths:
        name = Path(path).stem
        if name in files:
            raise ValueError(f"Duplicate config file name: {name}")
        files[name] = load_document(path)
    return files


def load_page(path: Optional[str], url: Optional[str]) -> Optional[PageDocument]:
    if path is None and url is None:
        return None
    html = Path(path).read_text(encoding="utf-8") if path else ""
    url = url or (Path(path).resolve().as_uri() if path else "")
    title = page_metadata(html, url)["title"] if html else None
    return PageDocument(url=url, title=title or "", html=html)


async def run(argv: List[str]) -> int:
    parser = build_parser()
    try:
        options = parser.parse_intermixed_args(argv)
    except SystemExit as e:
        # argparse has already printed help or the usage error
        return e.code if isinstance(e.code, int) else 2
    if not options.files:
        parser.print_usage(sys.stderr)
        return 2

    settings = RuntimeSettings.from_env()
    settings = replace(
        settings,
        isolated=settings.isolated or options.isolated,
        debug=settings.debug or options.debug,
    )
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config_files = load_config_files(options.files)
        secrets = load_document(options.secrets) if options.secrets else None
        page = load_page(options.page, options.url)
    except Exception as e:
        # Unreadable or unparsable input files
        print(f"Error: {e}", file=sys.stderr)
        return 1

    entry = MAIN_FILE if MAIN_FILE in config_files else Path(options.files[0]).stem
    runner = ConfigRunner(default_capabilities(settings, page), settings)
    try:
        result = await runner.handle_config(config_files, secrets, entry)
    finally:
        runner.close()
    if result.status == 'error':
        print(f"Error: {result.format_error()}", file=sys.stderr)
        return 1
    print(serialize(result.value, fmt=options.format).rstrip("\n"))
    return 0


def main():
    try:
        raise SystemExit(asyncio.run(run(sys.argv[1:])))
    except KeyboardInterrupt:
        print("\nExiting.", file=sys.stderr)
        raise SystemExit(130)


if __name__ == "__main__":
    main()
