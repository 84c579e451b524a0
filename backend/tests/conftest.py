"""Shared test fixtures for backend tests.

Provides an in-memory fake of the ERP REST API (served through
``httpx.MockTransport``), LLM response factories and sample graphs so that
tests never touch a real ERP or LLM API.
"""

import json
import sys
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from workflow.graph import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from agents.llm import ToolCallData  # noqa: E402
from capabilities.erp_client import ErpClient  # noqa: E402
from capabilities.registry import ErpIntegration  # noqa: E402
from store import AgentStore  # noqa: E402

ERP_BASE_URL = "http://erp.test"

# ---------------------------------------------------------------------------
# Fake ERP server
# ---------------------------------------------------------------------------

Route = tuple[int, Any] | Callable[[httpx.Request], httpx.Response] | Exception


class FakeErp:
    """Scripted ERP API.

    Routes are keyed by ``(method, path)``. A route is either a
    ``(status_code, json_body)`` tuple, a callable returning a response, or an
    exception to raise (e.g. ``httpx.ConnectError``). Unknown routes answer
    404. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, body: Any = None, status_code: int = 200) -> None:
        self.routes[(method, path)] = (status_code, body)

    def fail(self, method: str, path: str, error: Exception | None = None) -> None:
        self.routes[(method, path)] = error or httpx.ConnectError("connection refused")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        status_code, body = route
        if body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def bodies(self, method: str, path: str) -> list[Any]:
        return [json.loads(r.content) for r in self.calls(method, path)]


@pytest.fixture()
def fake_erp() -> FakeErp:
    return FakeErp()


@pytest.fixture()
async def erp_client(fake_erp: FakeErp) -> AsyncGenerator[ErpClient, None]:
    client = ErpClient(ERP_BASE_URL, api_key="secret", transport=fake_erp.transport)
    yield client
    await client.aclose()


@pytest.fixture()
async def erp(fake_erp: FakeErp) -> AsyncGenerator[ErpIntegration, None]:
    """An initialized ERP integration talking to ``fake_erp``."""
    integration = ErpIntegration(transport=fake_erp.transport)
    await integration.initialize({"base_url": ERP_BASE_URL, "api_key": "secret"})
    yield integration
    await integration.aclose()


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------


def sample_graph() -> dict[str, Any]:
    """A three step chain: trigger -> action -> condition."""
    return {
        "nodes": [
            {"id": "1", "type": "trigger", "data": {"label": "New Invoice"}},
            {"id": "2", "type": "action", "data": {"label": "Extract Data"}},
            {"id": "3", "type": "condition", "data": {"label": "Validate"}},
        ],
        "edges": [
            {"id": "e1-2", "source": "1", "target": "2"},
            {"id": "e2-3", "source": "2", "target": "3"},
        ],
    }


@pytest.fixture()
def store() -> AgentStore:
    return AgentStore()


# ---------------------------------------------------------------------------
# Response Factories
# ---------------------------------------------------------------------------


def make_tool_call(name: str, args: dict[str, Any], call_id: str = "tc_1") -> ToolCallData:
    """Create a ToolCallData."""
    return ToolCallData(id=call_id, name=name, args=args)
