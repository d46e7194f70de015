"""
Operator families bound to a host capability.

Each family takes the capability implementations it needs in its constructor,
so the same operators run against in-process implementations or remote
proxies without change.
"""
import inspect
import logging
import mimetypes
from typing import Any, Dict, Optional

from tagflow.tagflow_capabilities import (
    Capabilities, Downloader, Evaluator, Fetcher, FileOpener, FormShower,
    Logger, OkShower, PageDocument, Renderer, Validator,
)
from tagflow.tagflow_datatypes import MISSING, Scope, TagflowError, ValueShapeError
from tagflow.tagflow_html import html_to_markdown, page_metadata, readability, DEFAULT_MARKDOWN_OPTIONS
from tagflow.tagflow_operator import Catalogue, evaluate, flow, task
from tagflow.tagflow_schema import (
    ANY, BOOLEAN, KEY, OBJECT, STRING, array_of, enum, params, record_of,
)
from tagflow.tagflow_tree import get_path

logger = logging.getLogger(__name__)


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


def _require(capability, name: str):
    if capability is None:
        raise TagflowError(f"No {name} is configured")
    return capability


class TemplateOperators:

    def __init__(self, renderer: Renderer):
        self.renderer = renderer

    @flow("render", params(["template"], template=ANY, data=ANY))
    async def render(self, p: Dict[str, Any], scope: Scope):
        template = await evaluate(p["template"], scope)
        if not isinstance(template, str):
            raise ValueShapeError("Template must be a string")
        data = await evaluate(p["data"], scope) if "data" in p else scope.context
        return await self.renderer(template, data)


class JsonSchemaOperators:

    def __init__(self, validator: Optional[Validator] = None,
                 form_shower: Optional[FormShower] = None,
                 ok_shower: Optional[OkShower] = None):
        self.validator = validator
        self.form_shower = form_shower
        self.ok_shower = ok_shower

    @task("validate", params(["schema", "data"], schema=OBJECT, data=ANY))
    async def validate(self, p):
        return await _require(self.validator, "validator")(p["schema"], p["data"])

    @task("form", params(["schema"], schema=OBJECT, uiSchema=OBJECT, data=ANY, omitExtraData=BOOLEAN))
    async def form(self, p):
        return await _require(self.form_shower, "form shower")(
            p["schema"], p.get("uiSchema"), p.get("data"), p.get("omitExtraData", False))

    @task("ok", params(["message"], message=STRING))
    async def ok(self, p):
        return await _require(self.ok_shower, "acknowledgement prompt")(p["message"])


class HttpOperators:

    def __init__(self, fetcher: Fetcher):
        self.fetcher = fetcher

    @task("request", params(
        ["url"],
        url=STRING,
        method=enum("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"),
        headers=record_of(STRING),
        body=STRING,
        **{"as": enum("json", "text", "dataUrl")},
    ))
    async def request(self, p):
        return await self.fetcher(p["url"], p.get("method", "GET"), p.get("headers"),
                                  p.get("body"), p.get("as"))


class FsOperators:

    def __init__(self, downloader: Optional[Downloader] = None, file_opener: Optional[FileOpener] = None):
        self.downloader = downloader
        self.file_opener = file_opener

    @task("saveFile", params(["filename", "content"], filename=STRING, content=STRING, mimeType=STRING))
    async def save_file(self, p):
        mime_type = p.get("mimeType") or mimetypes.guess_type(p["filename"])[0]
        if not mime_type:
            raise ValueShapeError(f"Could not determine mime type for {p['filename']}")
        return await _require(self.downloader, "downloader")(p["filename"], p["content"], mime_type)

    @task("openFile", params(["path"], path=STRING, extensions=array_of(STRING)))
    async def open_file(self, p):
        return await _require(self.file_opener, "file opener")(p["path"], p.get("extensions"))


class DebugOperators:

    def __init__(self, log: Logger):
        self.log = log

    @flow("log", params(label=ANY, value=ANY))
    async def log_(self, p: Dict[str, Any], scope: Scope):
        label = await evaluate(p["label"], scope) if p.get("label") is not None else None
        value = await evaluate(p["value"], scope) if p.get("value") is not None else scope.context
        await _maybe_await(self.log.append({str(label) if label else "log": value}))
        return scope.context


class DocumentOperators:
    """Reads from the page document the runtime was started with."""

    def __init__(self, document: PageDocument, evaluator: Optional[Evaluator] = None):
        self.document = document
        self.evaluator = evaluator

    def _as_mapping(self) -> Dict[str, Any]:
        doc = self.document
        return {
            **doc.data,
            "url": doc.url,
            "URL": doc.url,
            "title": doc.title,
            "html": doc.html,
        }

    @task("get", params(["key"], key=KEY, default=ANY))
    def get(self, p):
        return get_path(p["key"], self._as_mapping(), p.get("default", MISSING))

    @task("eval", params(["expression"], expression=STRING, default=ANY))
    async def eval_(self, p):
        if "default" not in p:
            return await _require(self.evaluator, "evaluator")(p["expression"], self._as_mapping())
        try:
            return await _require(self.evaluator, "evaluator")(p["expression"], self._as_mapping())
        except Exception as e:
            logger.warning("doc.eval failed, using default: %s", e)
            return p["default"]

    @task("selection", params(default=ANY, **{"as": enum("text", "html")}))
    def selection(self, p):
        kind = p.get("as", "text")
        text = self.document.selection_text if kind == "text" else self.document.selection_html
        if not text:
            return p.get("default", "")
        return text

    @task("metadata")
    def metadata(self, p):
        return page_metadata(self.document.html, self.document.url)


class HtmlOperators:

    @task("readability", params(["baseUrl", "html"], baseUrl=STRING, html=STRING, default=ANY))
    def readability(self, p):
        article = readability(p["html"], p["baseUrl"])
        return p.get("default", "") if article is None else article

    @task("simplify", params(["baseUrl", "html"], baseUrl=STRING, html=STRING, default=ANY))
    def simplify(self, p):
        article = readability(p["html"], p["baseUrl"])
        return p.get("default", "") if article is None else article["content"]

    @task("markdown", params(["html"], html=STRING, options=record_of(STRING)))
    def markdown(self, p):
        return html_to_markdown(p["html"], p.get("options", DEFAULT_MARKDOWN_OPTIONS))


def host_families(capabilities: Capabilities) -> Dict[str, Any]:
    """Prefix → families for every capability that is present."""
    caps = capabilities
    families: Dict[str, Any] = {"html.": [HtmlOperators()]}
    if caps.renderer is not None:
        families["template."] = [TemplateOperators(caps.renderer)]
    if caps.validator or caps.form_shower or caps.ok_shower:
        families["jsonSchema."] = [JsonSchemaOperators(caps.validator, caps.form_shower, caps.ok_shower)]
    if caps.fetcher is not None:
        families["http."] = [HttpOperators(caps.fetcher)]
    if caps.downloader or caps.file_opener:
        families["fs."] = [FsOperators(caps.downloader, caps.file_opener)]
    if caps.logger is not None:
        families["dbg."] = [DebugOperators(caps.logger)]
    if caps.document is not None:
        families["doc."] = [DocumentOperators(caps.document, caps.evaluator)]
    return families


def register_host_families(catalogue: Catalogue, capabilities: Capabilities) -> None:
    for prefix, members in host_families(capabilities).items():
        for family in members:
            catalogue.add_family(family, prefix)
