"""Test helpers: canned fetch results and a stub fetcher."""

from __future__ import annotations

from typing import Dict, List, Optional
from unittest.mock import MagicMock

from multidict import CIMultiDict, CIMultiDictProxy

from core.proxy.errors import ContentError
from core.proxy.fetcher import FetchResult

PROXY_BASE = "http://proxy.test"


def make_result(
    url: str,
    body: bytes | str = b"",
    content_type: str = "text/html; charset=utf-8",
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
    final_url: Optional[str] = None,
    charset: Optional[str] = "utf-8",
) -> FetchResult:
    if isinstance(body, str):
        body = body.encode("utf-8")

    raw_headers = CIMultiDict(headers or {})
    if content_type:
        raw_headers["Content-Type"] = content_type

    return FetchResult(
        url=url,
        final_url=final_url or url,
        status=status,
        headers=CIMultiDictProxy(raw_headers),
        content_type=content_type,
        charset=charset,
        body=body,
        fetch_time_ms=12,
    )


def connection_key(host: str = "example.com", port: int = 443) -> MagicMock:
    return MagicMock(host=host, port=port, ssl=True)


class StubFetcher:
    """Stands in for ContentFetcher: canned results keyed by URL."""

    def __init__(self):
        self.responses: Dict[str, object] = {}
        self.calls: List[str] = []
        self.client_headers: List[object] = []

    def add(self, url: str, body: bytes | str = b"", **kwargs) -> FetchResult:
        result = make_result(url, body, **kwargs)
        self.responses[url] = result
        return result

    def fail(self, url: str, error: BaseException):
        self.responses[url] = error

    async def fetch(self, url, client_headers=None, content_filter=None):
        self.calls.append(url)
        self.client_headers.append(client_headers)

        response = self.responses[url]
        if isinstance(response, BaseException):
            raise response

        content_type = response.content_type or "text/html"
        if content_filter is not None and not content_filter(content_type):
            raise ContentError(response.content_type, "This content type cannot be displayed in the browser")
        return response
