from __future__ import annotations

import base64
import collections.abc
import json
import os
import re
from typing import Any, Optional

import toml
import xmltodict
import yaml

FORMATS = ("json", "yaml", "toml", "xml")

_EXTENSIONS = {
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".xml": "xml",
}


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        try:
            return data.decode(encoding or 'utf-8', errors='replace')
        except LookupError:
            # Unknown charset label
            return data.decode('utf-8', errors='replace')
    return data


def encoding_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = re.search(r'charset\s*=\s*([^\s;]+)', content_type, re.IGNORECASE)
    if m:
        return m.group(1).strip('"').strip("'")
    return None


def _to_builtin(obj: Any) -> Any:
    # xmltodict returns nested OrderedDicts
    if isinstance(obj, (list, tuple)):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, collections.abc.Mapping):
        return {k: _to_builtin(v) for k, v in obj.items()}
    return obj


def detect_format(content_type: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name among: 'json', 'yaml', 'toml', 'xml'.
    Uses Content-Type first; falls back to simple data sniffing if provided.
    """
    ct = (content_type or "").lower()
    if 'json' in ct:
        return 'json'
    if 'yaml' in ct:
        return 'yaml'
    if 'toml' in ct:
        return 'toml'
    if 'xml' in ct:
        return 'xml'
    if ct:
        # A declared non-structured type (text/html, text/plain, ...)
        return None

    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
        if s.startswith('<?xml'):
            return 'xml'
    return None


def format_from_path(path: str) -> Optional[str]:
    return _EXTENSIONS.get(os.path.splitext(path)[1].lower())


def to_data_url(data: bytes, content_type: Optional[str]) -> str:
    mime = (content_type or "application/octet-stream").split(";")[0].strip()
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                content_type: Optional[str] = None,
                fmt: Optional[str] = None) -> Any:
    """
    Convert wire data (bytes/string) to documents.
    Supported fmt: 'json', 'yaml', 'toml', 'xml'.
    If fmt is None, uses content_type, then sniffing.
    Returns raw text for anything that is not a structured format.
    Parse errors propagate when the format was given explicitly.
    """
    text = _norm_text(data, encoding=encoding_from_content_type(content_type))
    f = fmt or detect_format(content_type, text)
    if f == 'json':
        return json.loads(text)
    if f == 'yaml':
        return yaml.safe_load(text)
    if f == 'toml':
        return toml.loads(text)
    if f == 'xml':
        return _to_builtin(xmltodict.parse(text))
    if fmt is not None:
        raise ValueError(f"Unsupported serialization format: {fmt!r}")
    return text


def serialize(value: Any,
              *,
              fmt: str,
              pretty: bool = True,
              xml_root: str = "root") -> str:
    """
    Convert a document into a textual representation.
    - fmt: 'json' | 'yaml' | 'toml' | 'xml'
    - For XML, if value is not a single-key dict, it is wrapped under {xml_root: value}
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False, allow_unicode=True)
    if f == 'toml':
        if not isinstance(built, dict):
            built = {xml_root: built}
        return toml.dumps(built)
    if f == 'xml':
        root = built if isinstance(built, dict) and len(built) == 1 else {xml_root: built}
        return xmltodict.unparse(root, pretty=pretty)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def load_document(path: str) -> Any:
    """Read a document file; the format follows the extension (YAML by default)."""
    with open(path, "rb") as f:
        data = f.read()
    return deserialize(data, fmt=format_from_path(path) or "yaml")


__all__ = [
    "FORMATS",
    "deserialize",
    "serialize",
    "detect_format",
    "format_from_path",
    "load_document",
    "to_data_url",
]
