import json
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `common.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


class FakeRoom:
    """In-memory room endpoint served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.requests: List[Tuple[str, str]] = []
        self.puts: List[Tuple[str, Dict[str, Any]]] = []
        self.fail_gets = 0
        self.fail_puts = 0
        self.on_put = None

    def handler(self, request):
        resource = request.url.path.rsplit("/", 1)[-1]
        self.requests.append((request.method, resource))
        if request.method == "GET":
            if self.fail_gets:
                self.fail_gets -= 1
                return httpx.Response(503, text="unavailable")
            doc = self.docs.get(resource)
            if doc is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=doc)

        body = json.loads(request.content)
        if self.on_put is not None:
            self.on_put(resource, body)
        if self.fail_puts:
            self.fail_puts -= 1
            return httpx.Response(500, text="boom")
        self.docs[resource] = body
        self.puts.append((resource, body))
        return httpx.Response(200, json={"ok": True, "updatedAt": body.get("updatedAt")})

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def count(self, method: str, resource: Optional[str] = None) -> int:
        return sum(1 for m, r in self.requests if m == method and (resource is None or r == resource))


@pytest.fixture
def room() -> FakeRoom:
    return FakeRoom()
