"""Shared fixtures: a fake ZenTao HTTP session so no test touches the network.

The project root is added to sys.path so `import zentao_mcp` works without an
editable install.
"""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock
from urllib.parse import urlparse

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from zentao_mcp.client import ZentaoClient


def make_response(body, status_code=200):
    """A stand-in for requests.Response; dict/list bodies are JSON encoded."""
    response = MagicMock()
    response.status_code = status_code
    response.text = body if isinstance(body, str) else json.dumps(body)
    return response


class FakeZentao:
    """
    Routes requests the way a ZenTao instance would.

    - POST /api.php/v1/tokens returns ``token_body``
    - GET /api.php/v1/products pages over ``products``
    - GET /api.php/v1/bugs pages over ``bugs[product_id]``

    ``bug_errors`` maps product id to an error payload returned instead of a
    bug page. ``report_total=False`` drops ``total``/``limit`` from pages.
    """

    def __init__(self, products=None, bugs=None, token="tok-123"):
        self.token_body = {"token": token}
        self.products = products or []
        self.bugs = bugs or {}
        self.bug_errors = {}
        self.products_error = None
        self.report_total = True
        self.http = MagicMock()
        self.http.request.side_effect = self.request

    def request(self, method, url, **kwargs):
        path = urlparse(url).path
        params = kwargs.get("params") or {}

        if path.endswith("/api.php/v1/tokens"):
            return make_response(self.token_body)

        page = int(params.get("page", 1))
        limit = int(params.get("limit", 20))

        if path.endswith("/api.php/v1/products"):
            if self.products_error:
                return make_response({"error": self.products_error})
            return make_response(self._page("products", self.products, page, limit))

        if path.endswith("/api.php/v1/bugs"):
            product = int(params["product"])
            if product in self.bug_errors:
                return make_response(self.bug_errors[product])
            return make_response(self._page("bugs", self.bugs.get(product, []), page, limit))

        return make_response({"error": f"unknown path {path}"}, status_code=404)

    def _page(self, key, items, page, limit):
        start = (page - 1) * limit
        payload = {key: items[start:start + limit]}
        if self.report_total:
            payload.update({"page": page, "total": len(items), "limit": limit})
        return payload

    def calls_to(self, suffix):
        return [c for c in self.http.request.call_args_list if c.args[1].endswith(suffix)]


@pytest.fixture
def fake():
    return FakeZentao()


@pytest.fixture
def client(fake):
    return ZentaoClient("https://zentao.example.com/", "alice", "secret", http=fake.http)
