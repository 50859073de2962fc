from typing import Dict, List, Tuple, Union

import pytest
import requests

Route = Union[str, bytes, Tuple, Exception]


def make_response(
    url: str,
    body: bytes,
    content_type: str = "text/html; charset=utf-8",
    status: int = 200,
) -> requests.Response:
    resp = requests.Response()
    resp.url = url
    resp.status_code = status
    resp._content = body
    if content_type:
        resp.headers["Content-Type"] = content_type
    return resp


class FakeSession:
    """Stands in for requests.Session; unknown URLs fail like a dead host."""

    def __init__(self, routes: Dict[str, Route]):
        self.routes = dict(routes)
        self.calls: List[str] = []
        self.timeouts: List[float] = []

    def get(self, url: str, timeout=None, **kwargs) -> requests.Response:
        self.calls.append(url)
        self.timeouts.append(timeout)
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, str):
            return make_response(url, route.encode("utf-8"))
        if isinstance(route, bytes):
            return make_response(url, route, "application/octet-stream")
        return make_response(url, *route)


@pytest.fixture
def fake_session():
    return FakeSession
