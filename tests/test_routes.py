# tests/test_routes.py
import asyncio
from urllib.parse import parse_qs, urlparse

from conftest import PROFILE_PATH, RESOURCE_PATH, TOKEN_PATH, json_body, session_for
from oidc_drive_bff import auth_utils
from oidc_drive_bff.session_data import FlowState
from test_auth_utils import make_id_token

DRIVE_USER = {
    "kind": "drive#user",
    "displayName": "Ada Lovelace",
    "photoLink": "https://lh3.googleusercontent.com/a/photo",
    "emailAddress": "ada@example.com",
}


def start_flow(client):
    response = client.get("/start-flow")
    assert response.status_code == 302
    params = parse_qs(urlparse(response.headers["location"]).query)
    return params["state"][0], params["nonce"][0]


def test_index_renders_sign_in_link(client):
    response = client.get("/")
    assert response.status_code == 200
    assert 'href="/start-flow"' in response.text


def test_start_flow_redirects_to_provider_with_session_state(client):
    state, nonce = start_flow(client)
    session = session_for(client)
    assert session.state == state
    assert session.nonce == nonce
    assert session.flow_state is FlowState.PENDING


def test_callback_without_stored_state_restarts_flow(client, provider):
    response = client.get("/redirect_uri", params={"state": "X", "code": "validcode"})
    assert response.status_code == 302
    assert response.headers["location"] == "/start-flow"
    assert provider.calls(TOKEN_PATH) == []
    assert session_for(client).authorized is False


def test_callback_with_wrong_state_restarts_flow(client, provider):
    state, _ = start_flow(client)
    response = client.get("/redirect_uri", params={"state": state + "x", "code": "validcode"})
    assert response.status_code == 302
    assert response.headers["location"] == "/start-flow"
    assert provider.requests == []
    # The issued state was consumed by the failed attempt
    response = client.get("/redirect_uri", params={"state": state, "code": "validcode"})
    assert response.headers["location"] == "/start-flow"
    assert provider.requests == []


def test_callback_exchanges_code_and_stores_tokens(client, provider):
    session = session_for(client)
    session.state = "abc123"
    provider.queue(TOKEN_PATH, (200, {"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600, "scope": "openid"}))
    provider.queue(PROFILE_PATH, (200, {"user": DRIVE_USER}))

    response = client.get("/redirect_uri", params={"state": "abc123", "code": "validcode"})

    assert response.status_code == 200
    assert provider.token_forms()[0]["code"] == "validcode"
    assert (session.access_token, session.refresh_token, session.expires_in, session.scope) == (
        "AT1", "RT1", 3600, "openid"
    )
    assert session.authorized is True
    assert provider.bearer_tokens(PROFILE_PATH) == ["AT1"]
    assert session.display_name == "Ada Lovelace"
    assert session.email_address == "ada@example.com"
    assert session.flow_state is FlowState.PROFILE_RESOLVED
    assert "Ada Lovelace" in response.text
    assert "ada@example.com" in response.text


def test_full_flow_validates_id_token_nonce(client, provider):
    state, nonce = start_flow(client)
    provider.queue(
        TOKEN_PATH,
        (200, {"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600, "scope": "openid",
               "id_token": make_id_token(nonce)}),
    )
    provider.queue(PROFILE_PATH, (200, {"user": DRIVE_USER}))

    response = client.get("/redirect_uri", params={"state": state, "code": "validcode"})

    assert response.status_code == 200
    session = session_for(client)
    assert session.id_token_claims["nonce"] == nonce
    assert session.nonce is None


def test_id_token_validation_runs_off_the_event_loop(client, provider, monkeypatch):
    # Signature checks may fetch JWKS with a blocking client
    seen = []
    validate = auth_utils.validate_id_token

    def recording_validate(session):
        try:
            asyncio.get_running_loop()
            seen.append("event-loop")
        except RuntimeError:
            seen.append("worker-thread")
        return validate(session)

    monkeypatch.setattr(auth_utils, "validate_id_token", recording_validate)
    state, nonce = start_flow(client)
    provider.queue(TOKEN_PATH, (200, {"access_token": "AT1", "id_token": make_id_token(nonce)}))
    provider.queue(PROFILE_PATH, (200, {"user": DRIVE_USER}))

    response = client.get("/redirect_uri", params={"state": state, "code": "validcode"})

    assert response.status_code == 200
    assert seen == ["worker-thread"]
    assert session_for(client).id_token_claims["nonce"] == nonce


def test_id_token_with_foreign_nonce_discards_tokens(client, provider):
    state, _ = start_flow(client)
    provider.queue(TOKEN_PATH, (200, {"access_token": "AT1", "refresh_token": "RT1", "id_token": make_id_token("x" * 24)}))

    response = client.get("/redirect_uri", params={"state": state, "code": "validcode"})

    assert response.status_code == 400
    assert "invalid_id_token" in response.text
    session = session_for(client)
    assert session.access_token is None
    assert session.refresh_token is None
    assert provider.calls(PROFILE_PATH) == []


def test_token_endpoint_error_renders_error_page(client, provider):
    state, _ = start_flow(client)
    provider.queue(TOKEN_PATH, (400, {"error": "invalid_grant", "error_description": "Malformed auth code."}))

    response = client.get("/redirect_uri", params={"state": state, "code": "badcode"})

    assert response.status_code == 502
    assert "invalid_grant" in response.text
    session = session_for(client)
    assert session.authorized is True
    assert session.access_token is None
    assert provider.calls(PROFILE_PATH) == []


def test_provider_denial_makes_no_token_call(client, provider):
    state, _ = start_flow(client)
    response = client.get("/redirect_uri", params={"state": state, "error": "access_denied"})
    assert response.status_code == 400
    assert "access_denied" in response.text
    assert provider.requests == []


def test_missing_profile_does_not_fail_the_flow(client, provider):
    state, _ = start_flow(client)
    provider.queue(TOKEN_PATH, (200, {"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600}))
    provider.queue(PROFILE_PATH, (200, {"error": {"code": 403, "message": "Insufficient Permission"}}))

    response = client.get("/redirect_uri", params={"state": state, "code": "validcode"})

    assert response.status_code == 200
    session = session_for(client)
    assert session.flow_state is FlowState.TOKENS_ACQUIRED
    assert session.email_address is None
    assert "Signed in" in response.text


def test_get_files_returns_file_list(client, provider):
    session = session_for(client)
    session.access_token = "AT1"
    session.refresh_token = "RT1"
    provider.queue(RESOURCE_PATH, (200, {"files": [{"id": "1", "name": "notes.txt"}]}))

    response = client.get("/get-files")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    assert json_body(response) == [{"id": "1", "name": "notes.txt"}]


def test_get_files_refreshes_expired_token(client, provider):
    session = session_for(client)
    session.access_token = "EXPIRED"
    session.refresh_token = "RT1"
    provider.queue(RESOURCE_PATH, (200, {"error": "invalid_credentials"}), (200, {"files": []}))
    provider.queue(TOKEN_PATH, (200, {"access_token": "AT2", "expires_in": 3600}))

    response = client.get("/get-files")

    assert response.status_code == 200
    assert json_body(response) == []
    assert session.access_token == "AT2"
    assert session.refresh_token == "RT1"


def test_get_files_reports_terminal_failure_as_json(client, provider):
    session = session_for(client)
    session.access_token = "EXPIRED"
    session.refresh_token = "RT1"
    provider.queue(RESOURCE_PATH, (200, {"error": "invalid_credentials"}))
    provider.queue(TOKEN_PATH, (200, {"access_token": "AT2"}))

    response = client.get("/get-files")

    assert response.status_code == 502
    assert json_body(response)["error"] == "invalid_credentials"
    assert len(provider.calls(RESOURCE_PATH)) == 2


def test_get_files_without_tokens_requires_login(client, provider):
    response = client.get("/get-files")
    assert response.status_code == 401
    assert json_body(response)["error"] == "login_required"
    assert provider.requests == []
