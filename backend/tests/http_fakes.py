import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests


@dataclass
class FakeResponse:
    status_code: int = 200
    json_data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    lines: Optional[List[str]] = None
    stream_error: Optional[Exception] = None
    closed: bool = False

    def json(self) -> Any:
        if isinstance(self.json_data, Exception):
            raise self.json_data
        return self.json_data if self.json_data is not None else {}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_lines(self, decode_unicode: bool = False):
        for line in self.lines or []:
            yield line
        if self.stream_error is not None:
            raise self.stream_error

    def close(self) -> None:
        self.closed = True


def ndjson_response(games: Iterable[Dict[str, Any]], **kwargs) -> FakeResponse:
    return FakeResponse(lines=[json.dumps(game) for game in games], **kwargs)


class FakeSession:
    """Stands in for requests.Session; answers GETs by URL."""

    def __init__(self, routes: Optional[Dict[str, Any]] = None, default: Optional[FakeResponse] = None):
        self.routes = routes or {}
        self.default = default or FakeResponse(status_code=404)
        self.headers: Dict[str, str] = {}
        self.calls: List[Dict[str, Any]] = []

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        handler = self.routes.get(url, self.default)
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(url, **kwargs)
        return handler

    def urls(self) -> List[str]:
        return [call["url"] for call in self.calls]


def make_fake_get(
    responses: Iterable[FakeResponse],
    *,
    captured_urls: Optional[List[str]] = None,
) -> Callable[..., FakeResponse]:
    queue = list(responses)

    def _fake_get(url: str, *_args, **_kwargs) -> FakeResponse:
        if captured_urls is not None:
            captured_urls.append(url)
        return queue.pop(0)

    return _fake_get
