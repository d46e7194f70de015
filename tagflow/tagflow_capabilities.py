"""
Capability interfaces consumed by the capability-bound operators.

A capability is an async callable. The engine never cares whether it runs
in-process or on the far side of an RPC channel; `Capabilities` just bundles
whichever implementations the runtime wired up.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol


class Evaluator(Protocol):
    async def __call__(self, expression: str, data: Any = None) -> Any: ...


class Renderer(Protocol):
    async def __call__(self, template: str, data: Any) -> str: ...


class Validator(Protocol):
    async def __call__(self, schema: Dict[str, Any], data: Any) -> bool: ...


class FormShower(Protocol):
    async def __call__(self, schema: Dict[str, Any], ui_schema: Optional[Dict[str, Any]],
                       data: Any, omit_extra_data: bool) -> Any: ...


class OkShower(Protocol):
    async def __call__(self, message: str) -> bool: ...


class Fetcher(Protocol):
    async def __call__(self, url: str, method: str = "GET", headers: Optional[Dict[str, str]] = None,
                       body: Optional[str] = None, as_: Optional[str] = None) -> Any: ...


class Downloader(Protocol):
    async def __call__(self, filename: str, content: str, mime_type: str = "text/plain") -> str: ...


class FileOpener(Protocol):
    async def __call__(self, path: str, extensions: Optional[List[str]] = None) -> str: ...


class Logger(ABC):
    """Append-only sink for `dbg.log` entries and debug traces."""

    @abstractmethod
    def append(self, entry: Any) -> Any:
        raise NotImplementedError


@dataclass
class PageDocument:
    """The document the document-bound operators read from."""
    url: str = ""
    title: str = ""
    html: str = ""
    selection_text: str = ""
    selection_html: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Dict[str, Any]) -> 'PageDocument':
        return cls(
            url=raw.get("url", ""),
            title=raw.get("title", ""),
            html=raw.get("html", ""),
            selection_text=raw.get("selectionText", raw.get("selection_text", "")),
            selection_html=raw.get("selectionHtml", raw.get("selection_html", "")),
            data=dict(raw.get("data", {})),
        )


@dataclass
class Capabilities:
    """Everything the host-bound operator families may call out to.

    Any field may be left as None; the matching operator family is then not
    registered.
    """
    evaluator: Optional[Evaluator] = None
    renderer: Optional[Renderer] = None
    validator: Optional[Validator] = None
    form_shower: Optional[FormShower] = None
    ok_shower: Optional[OkShower] = None
    fetcher: Optional[Fetcher] = None
    downloader: Optional[Downloader] = None
    file_opener: Optional[FileOpener] = None
    logger: Optional[Logger] = None
    document: Optional[PageDocument] = None
