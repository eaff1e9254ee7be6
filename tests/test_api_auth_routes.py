"""
tests/test_api_auth_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> pydantic request models
(camelCase on the wire) -> AuthenticationService -> stores -> response models
and the error envelope. A minimal SRP client stands in for the browser.

Coverage:
  - register 201, duplicate 409, CAPTCHA failure 400, shape validation 422
  - login step1/step2 happy path, replay 401 session_expired, wrong password 401
  - refresh rotation and reuse rejection
  - /me and /logout require an access token; refresh tokens are not accepted
  - Cache-Control: no-store on responses carrying secrets
  - X-Request-ID echoed back

Fixtures used (from conftest.py):
  - api_client: TestClient over the real app, in-memory stores, fake CAPTCHA
  - captcha: the FakeCaptcha the app was wired with
  - srp_params: the parameter set the app's SRP engine uses
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from srp_client import client_proof, make_credentials

PASSWORD = "correct horse battery staple"


def _register(client: TestClient, srp_params, username: str = "alice", password: str = PASSWORD):
    salt, verifier = make_credentials(srp_params, username, password)
    return client.post(
        "/api/v1/auth/register",
        json={"username": username, "salt": salt, "verifier": verifier, "turnstileToken": "ok"},
    )


def _step1(client: TestClient, username: str = "alice"):
    return client.post("/api/v1/auth/login/step1", json={"username": username, "turnstileToken": "ok"})


def _login(client: TestClient, srp_params, username: str = "alice", password: str = PASSWORD):
    """Run both login steps; return (step2 response, client proof, step1 body)."""
    step1 = _step1(client, username).json()
    proof = client_proof(srp_params, username, password, step1["salt"], step1["serverPublicEphemeral"])
    resp = client.post(
        "/api/v1/auth/login/step2",
        json={
            "sessionId": step1["sessionId"],
            "clientPublicEphemeral": proof.A_hex,
            "clientProof": proof.M1_hex,
        },
    )
    return resp, proof, step1


@pytest.fixture
def logged_in(api_client: TestClient, srp_params) -> tuple[TestClient, dict]:
    """(client, step2 JSON) for a registered and logged-in alice."""
    assert _register(api_client, srp_params).status_code == 201
    resp, _, _ = _login(api_client, srp_params)
    assert resp.status_code == 200, resp.text
    return api_client, resp.json()


class TestRegisterRoute:
    def test_register_returns_201(self, api_client: TestClient, srp_params) -> None:
        resp = _register(api_client, srp_params)
        assert resp.status_code == 201, resp.text
        assert resp.json() == {"success": True}

    def test_duplicate_returns_409(self, api_client: TestClient, srp_params) -> None:
        _register(api_client, srp_params)
        resp = _register(api_client, srp_params)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "username_taken"

    def test_captcha_failure_returns_400(self, api_client: TestClient, srp_params, captcha) -> None:
        captcha.result = False
        resp = _register(api_client, srp_params)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "captcha_failed"

    @pytest.mark.parametrize("username", ["ab", "x" * 33, "has space", "semi;colon"])
    def test_invalid_username_returns_422(self, api_client: TestClient, srp_params, username: str) -> None:
        resp = api_client.post(
            "/api/v1/auth/register",
            json={"username": username, "salt": "ab", "verifier": "cd", "turnstileToken": "ok"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_non_hex_verifier_returns_422(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/register",
            json={"username": "alice", "salt": "ab", "verifier": "not-hex", "turnstileToken": "ok"},
        )
        assert resp.status_code == 422


class TestLoginRoutes:
    def test_full_login(self, api_client: TestClient, srp_params) -> None:
        _register(api_client, srp_params)
        resp, proof, step1 = _login(api_client, srp_params)

        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert set(body) == {"serverProof", "accessToken", "refreshToken"}
        assert proof.verify_server(body["serverProof"])
        assert resp.headers["Cache-Control"] == "no-store"

    def test_step1_returns_camel_case_fields(self, api_client: TestClient, srp_params) -> None:
        _register(api_client, srp_params)
        resp = _step1(api_client)
        assert resp.status_code == 200
        assert set(resp.json()) == {"sessionId", "salt", "serverPublicEphemeral"}
        assert resp.headers["Cache-Control"] == "no-store"

    def test_step1_unknown_user_returns_generic_401(self, api_client: TestClient) -> None:
        resp = _step1(api_client, "nobody")
        assert resp.status_code == 401
        assert resp.json() == {"error": {"code": "invalid_credentials", "message": "Invalid credentials."}}

    def test_replayed_step2_returns_session_expired(self, api_client: TestClient, srp_params) -> None:
        _register(api_client, srp_params)
        _, proof, step1 = _login(api_client, srp_params)

        replay = api_client.post(
            "/api/v1/auth/login/step2",
            json={
                "sessionId": step1["sessionId"],
                "clientPublicEphemeral": proof.A_hex,
                "clientProof": proof.M1_hex,
            },
        )

        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "session_expired"

    def test_wrong_password_returns_401(self, api_client: TestClient, srp_params) -> None:
        _register(api_client, srp_params)
        resp, _, _ = _login(api_client, srp_params, password="wrong")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"
        assert resp.headers["Cache-Control"] == "no-store"


class TestTokenRoutes:
    def test_me_returns_identity(self, logged_in) -> None:
        client, tokens = logged_in
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {tokens['accessToken']}"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["username"] == "alice"
        assert data["id"]
        assert data["createdAt"]

    def test_me_without_token_returns_401(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_rejects_refresh_token(self, logged_in) -> None:
        client, tokens = logged_in
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {tokens['refreshToken']}"})
        assert resp.status_code == 401

    def test_refresh_rotates(self, logged_in) -> None:
        client, tokens = logged_in
        resp = client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert resp.status_code == 200, resp.text
        rotated = resp.json()
        assert rotated["refreshToken"] != tokens["refreshToken"]
        assert resp.headers["Cache-Control"] == "no-store"

        reuse = client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert reuse.status_code == 401
        assert reuse.json()["error"]["code"] == "invalid_refresh_token"

    def test_replayed_refresh_token_kills_the_rotated_one(self, logged_in) -> None:
        client, tokens = logged_in
        rotated = client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]}).json()

        replay = client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert replay.status_code == 401

        resp = client.post("/api/v1/auth/refresh", json={"refreshToken": rotated["refreshToken"]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

    def test_logout_then_refresh_fails(self, logged_in) -> None:
        client, tokens = logged_in
        headers = {"Authorization": f"Bearer {tokens['accessToken']}"}

        resp = client.post("/api/v1/auth/logout", json={"refreshToken": tokens["refreshToken"]}, headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        refresh = client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert refresh.status_code == 401

    def test_logout_without_body(self, logged_in) -> None:
        client, tokens = logged_in
        resp = client.post("/api/v1/auth/logout", headers={"Authorization": f"Bearer {tokens['accessToken']}"})
        assert resp.status_code == 200

    def test_logout_requires_access_token(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/logout")
        assert resp.status_code == 401


def test_request_id_is_echoed(api_client: TestClient) -> None:
    resp = api_client.get("/api/v1/health", headers={"X-Request-ID": "trace-123"})
    assert resp.headers["X-Request-ID"] == "trace-123"


def test_request_id_is_generated(api_client: TestClient) -> None:
    resp = api_client.get("/api/v1/health")
    assert len(resp.headers["X-Request-ID"]) == 32
