# tests/conftest.py
import json
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import parse_qs

# Required settings must be in place before the package is imported
os.environ["CLIENT_ID"] = "test-client-id"
os.environ["CLIENT_SECRET"] = "test-client-secret"
os.environ["REDIRECT_URI"] = "http://testserver/redirect_uri"
os.environ["SESSION_SECRET_KEY"] = "test-session-secret"
os.environ.pop("ID_TOKEN_JWKS_URI", None)
os.environ.pop("SCOPES", None)

SRC = Path(__file__).resolve().parent.parent / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import httpx
import pytest
from fastapi.testclient import TestClient

from oidc_drive_bff.main import app, get_http_client
from oidc_drive_bff.security import unsign_value
from oidc_drive_bff.session_data import SessionData
from oidc_drive_bff.sessions import SESSION_SECRET, session_store

TOKEN_PATH = "/token"
PROFILE_PATH = "/drive/v3/about"
RESOURCE_PATH = "/drive/v3/files"

FakeReply = Union[Tuple[int, Any], Callable[[httpx.Request], httpx.Response]]


class FakeProvider:
    """
    Stands in for the identity provider, the profile endpoint and the resource API.
    Replies are queued per endpoint; the last queued reply repeats once the queue is drained.
    """

    def __init__(self):
        self.replies: Dict[str, List[FakeReply]] = {TOKEN_PATH: [], PROFILE_PATH: [], RESOURCE_PATH: []}
        self.requests: List[httpx.Request] = []

    def queue(self, path: str, *replies: FakeReply) -> None:
        self.replies[path].extend(replies)

    def calls(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def token_forms(self) -> List[Dict[str, str]]:
        forms = []
        for request in self.calls(TOKEN_PATH):
            parsed = parse_qs(request.content.decode("utf-8"))
            forms.append({key: values[0] for key, values in parsed.items()})
        return forms

    def bearer_tokens(self, path: str) -> List[Optional[str]]:
        tokens = []
        for request in self.calls(path):
            header = request.headers.get("Authorization", "")
            tokens.append(header[len("Bearer "):] if header.startswith("Bearer ") else None)
        return tokens

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.replies.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"error": "not_found"})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(reply):
            return reply(request)
        status_code, body = reply
        if isinstance(body, (dict, list)):
            return httpx.Response(status_code, json=body)
        return httpx.Response(status_code, text=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def async_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def client(provider):
    async def override_http_client():
        async with provider.async_client() as http_client:
            yield http_client

    app.dependency_overrides[get_http_client] = override_http_client
    try:
        yield TestClient(app, follow_redirects=False)
    finally:
        app.dependency_overrides.clear()


def session_for(test_client: TestClient) -> SessionData:
    """Returns the server-side session behind the client's cookie, creating it if needed."""
    if "session_id" not in test_client.cookies:
        test_client.get("/")
    session_id = unsign_value(test_client.cookies.get("session_id"), SESSION_SECRET)
    session = session_store.get(session_id)
    assert session is not None
    return session


def json_body(response: httpx.Response) -> Any:
    return json.loads(response.text)
