"""Shared pytest fixtures: sample documents and a scripted mock endpoint."""

import copy
import logging
from pathlib import Path
from typing import Any, Callable, Iterator

import httpx
import orjson
import pytest
from click.testing import CliRunner

from openapi_snapshot.utils.config import get_settings

HEALTH_DOC: dict[str, Any] = {
    "paths": {
        "/health": {
            "get": {
                "parameters": [{"name": "x", "in": "query"}],
                "responses": {
                    "200": {
                        "content": {
                            "application/json": {
                                "schema": {"$ref": "#/components/schemas/H"}
                            }
                        }
                    }
                },
            }
        }
    },
    "components": {
        "schemas": {
            "H": {
                "type": "object",
                "required": ["status"],
                "properties": {"status": {"type": "string"}},
            }
        }
    },
}

# One scripted reply: a document (served as JSON 200), an httpx.Response, or an exception.
Reply = dict[str, Any] | httpx.Response | Exception


class ScriptedEndpoint:
    """Mock endpoint that replays a list of replies; the last one repeats."""

    def __init__(self, replies: list[Reply]) -> None:
        self.replies = list(replies)
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            # Fresh copy: a replayed reply may be served more than once.
            return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)
        return httpx.Response(200, content=orjson.dumps(reply))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run every test from a temp directory with fresh settings and logging."""
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield
    get_settings.cache_clear()
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


@pytest.fixture
def health_doc() -> dict[str, Any]:
    return copy.deepcopy(HEALTH_DOC)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def scripted_endpoint() -> Callable[[list[Reply]], ScriptedEndpoint]:
    return ScriptedEndpoint


@pytest.fixture
def mock_endpoint(monkeypatch: pytest.MonkeyPatch) -> Callable[[list[Reply]], ScriptedEndpoint]:
    """Route every httpx.AsyncClient through a ScriptedEndpoint.

    For code paths (the CLI) that build their own clients.
    """

    def install(replies: list[Reply]) -> ScriptedEndpoint:
        endpoint = ScriptedEndpoint(replies)
        original = httpx.AsyncClient

        class _MockClient(original):  # type: ignore[misc, valid-type]
            def __init__(self, *args: Any, **kwargs: Any) -> None:
                kwargs["transport"] = endpoint.transport
                super().__init__(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", _MockClient)
        return endpoint

    return install
