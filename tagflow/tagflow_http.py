import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from tagflow.tagflow_datatypes import TagflowError
from tagflow.tagflow_serialize import deserialize, encoding_from_content_type, to_data_url

logger = logging.getLogger(__name__)

RESPONSE_TYPES = ("json", "text", "dataUrl")


def decode_response(content: bytes, content_type: Optional[str], as_: Optional[str]) -> Any:
    """
    Decode a response body.

    as_:
      - `json`    -> parsed JSON
      - `text`    -> decoded text
      - `dataUrl` -> `data:<mime>;base64,...`
      - None      -> decided by Content-Type (structured formats parsed, text otherwise)
    """
    if as_ == "dataUrl":
        return to_data_url(content, content_type)
    if as_ == "json":
        return deserialize(content, content_type=content_type, fmt="json")
    if as_ == "text":
        return content.decode(encoding_from_content_type(content_type) or "utf-8", errors="replace")
    return deserialize(content, content_type=content_type)


async def http_request(method: str, url: str, *, headers: Optional[Dict[str, str]] = None,
                       body: Optional[str] = None, as_: Optional[str] = None,
                       timeout: float = 5.0, retries: int = 2, backoff: float = 0.2) -> Any:
    """
    Core HTTP helper: returns the decoded body on 2xx, raises on anything else.

    Failed attempts are retried with exponential backoff.
    """
    headers = dict(headers or {})
    content = body.encode("utf-8") if body is not None else None
    if content is not None:
        headers.setdefault("Content-Type", "text/plain; charset=utf-8")

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        for attempt in range(retries + 1):
            try:
                resp = await client.request(method.upper(), url, headers=headers, content=content)
                if 200 <= resp.status_code < 300:
                    return decode_response(resp.content, resp.headers.get("Content-Type"), as_)
                preview = (resp.text or "")[:200]
                raise TagflowError(f"HTTP {resp.status_code} for {url}: {preview}")
            except Exception as e:
                if attempt < retries:
                    logger.debug("Request %s %s failed (attempt %d): %s", method, url, attempt + 1, e)
                    await asyncio.sleep(backoff * (2 ** attempt))
                    continue
                raise


class HttpFetcher:
    """The fetcher capability, backed by httpx."""

    def __init__(self, timeout: float = 5.0, retries: int = 2, backoff: float = 0.2):
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff

    async def __call__(self, url: str, method: str = "GET", headers: Optional[Dict[str, str]] = None,
                       body: Optional[str] = None, as_: Optional[str] = None) -> Any:
        return await http_request(method, url, headers=headers, body=body, as_=as_,
                                  timeout=self.timeout, retries=self.retries, backoff=self.backoff)
