"""
Capabilities across a context boundary.

`sandbox_logic()` / `host_logic()` expose in-process capabilities as actor
handlers; the `Remote*` proxies implement the same capability contracts by
calling a RemoteActor, so operators cannot tell the two apart.
"""
import inspect
from typing import Any, Dict, List, Optional

from tagflow.tagflow_actor import ActorLogic, RemoteActor
from tagflow.tagflow_capabilities import (
    Downloader, Evaluator, Fetcher, FormShower, Logger, OkShower, Renderer, Validator,
)
from tagflow.tagflow_tree import prepare_for_serialization

# Sandbox actor
EVAL_RUN = "eval::run"
TEMPLATE_RENDER = "template::render"
SCHEMA_VALIDATE = "schema::validate"

# Host actor
FORM_SHOW = "form::show"
OK_SHOW = "ok::show"
LOG_APPEND = "log::append"
REQUEST_MAKE = "request::make"
DOWNLOAD_START = "download::start"

SANDBOX_ACTIONS = (EVAL_RUN, TEMPLATE_RENDER, SCHEMA_VALIDATE)
HOST_ACTIONS = (FORM_SHOW, OK_SHOW, LOG_APPEND, REQUEST_MAKE, DOWNLOAD_START)


# ===================================================================
# Actor logic
# ===================================================================

def sandbox_logic(evaluator: Evaluator, renderer: Renderer, validator: Validator) -> ActorLogic:
    return ActorLogic({
        EVAL_RUN: lambda r: evaluator(r["expression"], r.get("data")),
        TEMPLATE_RENDER: lambda r: renderer(r["template"], r.get("data")),
        SCHEMA_VALIDATE: lambda r: validator(r["schema"], r.get("data")),
    })


async def _append(logger: Logger, entry: Any) -> None:
    result = logger.append(entry)
    if inspect.isawaitable(result):
        await result


def host_logic(form_shower: Optional[FormShower] = None, ok_shower: Optional[OkShower] = None,
               logger: Optional[Logger] = None, fetcher: Optional[Fetcher] = None,
               downloader: Optional[Downloader] = None) -> ActorLogic:
    handlers = {}
    if form_shower is not None:
        handlers[FORM_SHOW] = lambda r: form_shower(
            r["schema"], r.get("uiSchema"), r.get("data"), r.get("omitExtraData", False))
    if ok_shower is not None:
        handlers[OK_SHOW] = lambda r: ok_shower(r["message"])
    if logger is not None:
        # No result, so no response
        handlers[LOG_APPEND] = lambda r: _append(logger, r.get("entry"))
    if fetcher is not None:
        handlers[REQUEST_MAKE] = lambda r: fetcher(
            r["url"], r.get("method", "GET"), r.get("headers"), r.get("body"), r.get("as"))
    if downloader is not None:
        handlers[DOWNLOAD_START] = lambda r: downloader(
            r["filename"], r["content"], r.get("mimeType", "text/plain"))
    return ActorLogic(handlers)


# ===================================================================
# Proxies
# ===================================================================

class _RemoteCapability:

    def __init__(self, remote: RemoteActor):
        self.remote = remote

    async def _call(self, kind: str, **payload) -> Any:
        request = {"type": kind}
        request.update({k: prepare_for_serialization(v) for k, v in payload.items() if v is not None})
        return await self.remote.call(request)


class RemoteEvaluator(_RemoteCapability):
    async def __call__(self, expression: str, data: Any = None) -> Any:
        return await self._call(EVAL_RUN, expression=expression, data=data)


class RemoteRenderer(_RemoteCapability):
    async def __call__(self, template: str, data: Any) -> str:
        return await self._call(TEMPLATE_RENDER, template=template, data=data)


class RemoteValidator(_RemoteCapability):
    async def __call__(self, schema: Dict[str, Any], data: Any) -> bool:
        return await self._call(SCHEMA_VALIDATE, schema=schema, data=data)


class RemoteFormShower(_RemoteCapability):
    async def __call__(self, schema: Dict[str, Any], ui_schema: Optional[Dict[str, Any]] = None,
                       data: Any = None, omit_extra_data: bool = False) -> Any:
        return await self._call(FORM_SHOW, schema=schema, uiSchema=ui_schema, data=data,
                                omitExtraData=omit_extra_data)


class RemoteOkShower(_RemoteCapability):
    async def __call__(self, message: str) -> bool:
        return await self._call(OK_SHOW, message=message)


class RemoteFetcher(_RemoteCapability):
    async def __call__(self, url: str, method: str = "GET", headers: Optional[Dict[str, str]] = None,
                       body: Optional[str] = None, as_: Optional[str] = None) -> Any:
        return await self._call(REQUEST_MAKE, url=url, method=method, headers=headers, body=body, **{"as": as_})


class RemoteDownloader(_RemoteCapability):
    async def __call__(self, filename: str, content: str, mime_type: str = "text/plain") -> str:
        return await self._call(DOWNLOAD_START, filename=filename, content=content, mimeType=mime_type)


class RemoteLogger(Logger):
    """Log appends are fire-and-forget."""

    def __init__(self, remote: RemoteActor):
        self.remote = remote

    def append(self, entry: Any):
        return self.remote.notify({"type": LOG_APPEND, "entry": prepare_for_serialization(entry)})


def remote_sandbox_capabilities(remote: RemoteActor) -> Dict[str, Any]:
    return {
        "evaluator": RemoteEvaluator(remote),
        "renderer": RemoteRenderer(remote),
        "validator": RemoteValidator(remote),
    }


def remote_host_capabilities(remote: RemoteActor, actions: List[str] = HOST_ACTIONS) -> Dict[str, Any]:
    proxies = {
        FORM_SHOW: ("form_shower", RemoteFormShower),
        OK_SHOW: ("ok_shower", RemoteOkShower),
        LOG_APPEND: ("logger", RemoteLogger),
        REQUEST_MAKE: ("fetcher", RemoteFetcher),
        DOWNLOAD_START: ("downloader", RemoteDownloader),
    }
    return {proxies[a][0]: proxies[a][1](remote) for a in actions}
