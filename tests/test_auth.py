from datetime import datetime, timedelta

from fastapi.testclient import TestClient
from jose import jwt

from sessionguard.api import deps
from sessionguard.core.security import create_access_token, decode_token
from sessionguard.middleware.token_blocklist import TokenBlocklist


def _csrf_headers(client: TestClient) -> dict:
    token_response = client.get("/api/v1/auth/csrf-token")
    assert token_response.status_code == 200
    token = token_response.json()["csrfToken"]
    assert token is not None
    return {"X-CSRF-Token": token}


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _issued_minutes_ago(minutes: int) -> datetime:
    return datetime.utcnow() - timedelta(minutes=minutes)


def test_session_requires_token(client: TestClient):
    response = client.get("/api/v1/auth/session")

    assert response.status_code == 401
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"] == "NOT_AUTHENTICATED"


def test_session_rejects_bad_signature(client: TestClient):
    forged = jwt.encode(
        {"sub": "7", "iat": datetime.utcnow(), "exp": datetime.utcnow() + timedelta(minutes=5)},
        "not-the-server-secret",
        algorithm="HS256",
    )

    response = client.get("/api/v1/auth/session", headers=_bearer(forged))

    assert response.status_code == 401
    assert response.json()["error"] == "INVALID_TOKEN"


def test_session_rejects_expired_token(client: TestClient):
    expired = create_access_token("7", expires_delta=timedelta(minutes=5), issued_at=_issued_minutes_ago(30))

    response = client.get("/api/v1/auth/session", headers=_bearer(expired))

    assert response.status_code == 401
    assert response.json()["error"] == "INVALID_TOKEN"


def test_session_accepts_bearer_and_cookie(client: TestClient):
    token = create_access_token("7", jti="session-jti")

    bearer_response = client.get("/api/v1/auth/session", headers=_bearer(token))
    assert bearer_response.status_code == 200
    data = bearer_response.json()["data"]
    assert data["user_id"] == "7"
    assert data["jti"] == "session-jti"
    assert data["expires_at"] > data["issued_at"]

    client.cookies.set("access_token", token)
    cookie_response = client.get("/api/v1/auth/session")
    assert cookie_response.status_code == 200


def test_access_token_claims():
    token = create_access_token("7", extra_claims={"role": "student"})
    payload = decode_token(token)

    assert payload["sub"] == "7"
    assert payload["type"] == "access"
    assert payload["role"] == "student"
    assert len(payload["jti"]) == 32
    assert payload["exp"] > payload["iat"]


def test_logout_revokes_access_token(client: TestClient, blocklist: TokenBlocklist):
    token = create_access_token("11")

    logout_response = client.post(
        "/api/v1/auth/logout",
        headers={**_bearer(token), **_csrf_headers(client)},
    )

    assert logout_response.status_code == 200
    assert logout_response.json()["message"] == "Logout successful"
    assert "csrf-token" in logout_response.headers.get("set-cookie", "")
    assert blocklist.stats()["blockedTokensCount"] == 1

    revoked_response = client.get("/api/v1/auth/session", headers=_bearer(token))
    assert revoked_response.status_code == 401
    assert revoked_response.json()["error"] == "TOKEN_BLOCKED"


def test_logout_requires_csrf_header(client: TestClient, blocklist: TokenBlocklist):
    token = create_access_token("12")
    client.get("/api/v1/auth/csrf-token")

    response = client.post("/api/v1/auth/logout", headers=_bearer(token))

    assert response.status_code == 403
    assert response.json()["error"] == "CSRF_HEADER_MISSING"
    assert blocklist.stats()["blockedTokensCount"] == 0


def test_revocation_is_checked_before_csrf(client: TestClient, blocklist: TokenBlocklist):
    token = create_access_token("13")
    blocklist.block(token)

    response = client.post("/api/v1/auth/logout", headers=_bearer(token))

    assert response.status_code == 401
    assert response.json()["error"] == "TOKEN_BLOCKED"


def test_logout_all_invalidates_older_tokens(client: TestClient, blocklist: TokenBlocklist):
    current = create_access_token("42", issued_at=_issued_minutes_ago(5))
    other_device = create_access_token("42", issued_at=_issued_minutes_ago(10))
    other_user = create_access_token("43", issued_at=_issued_minutes_ago(10))

    response = client.post(
        "/api/v1/auth/logout-all",
        headers={**_bearer(current), **_csrf_headers(client)},
    )

    assert response.status_code == 200
    assert blocklist.stats() == {"blockedTokensCount": 1, "invalidatedUsersCount": 1}

    current_response = client.get("/api/v1/auth/session", headers=_bearer(current))
    assert current_response.status_code == 401
    assert current_response.json()["error"] == "TOKEN_BLOCKED"

    device_response = client.get("/api/v1/auth/session", headers=_bearer(other_device))
    assert device_response.status_code == 401
    assert device_response.json()["error"] == "TOKEN_INVALIDATED"

    assert client.get("/api/v1/auth/session", headers=_bearer(other_user)).status_code == 200

    fresh = create_access_token("42", issued_at=datetime.utcnow() + timedelta(seconds=2))
    assert client.get("/api/v1/auth/session", headers=_bearer(fresh)).status_code == 200


def test_login_right_after_logout_all_is_allowed(client: TestClient, blocklist: TokenBlocklist):
    current = create_access_token("44", issued_at=_issued_minutes_ago(5))

    response = client.post(
        "/api/v1/auth/logout-all",
        headers={**_bearer(current), **_csrf_headers(client)},
    )
    assert response.status_code == 200

    relogin = create_access_token("44")
    session_response = client.get("/api/v1/auth/session", headers=_bearer(relogin))

    assert session_response.status_code == 200
    assert session_response.json()["data"]["user_id"] == "44"


def test_blocklist_stats_endpoint(client: TestClient, blocklist: TokenBlocklist):
    blocklist.invalidate_user("someone")
    token = create_access_token("50")

    response = client.get("/api/v1/auth/blocklist/stats", headers=_bearer(token))

    assert response.status_code == 200
    assert response.json()["data"] == {"blockedTokensCount": 0, "invalidatedUsersCount": 1}


def test_health_reports_blocklist(client: TestClient, blocklist: TokenBlocklist):
    blocklist.block(create_access_token("60"))

    response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "healthy"
    assert payload["token_blocklist"]["blockedTokensCount"] == 1


def test_responses_carry_correlation_id(client: TestClient):
    response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


class RecordingLogger:
    def __init__(self):
        self.events = []

    def debug(self, event: str, **kwargs) -> None:
        self.events.append((event, kwargs))


def test_authenticated_requests_log_token_usage(client: TestClient, monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(deps, "logger", recorder)
    token = create_access_token("70")

    response = client.get("/api/v1/auth/session", headers=_bearer(token))

    assert response.status_code == 200
    assert recorder.events == [
        (
            "token_usage",
            {"user_id": "70", "client_ip": "testclient", "path": "/api/v1/auth/session", "method": "GET"},
        )
    ]


def test_rejected_tokens_are_not_logged_as_usage(client: TestClient, blocklist: TokenBlocklist, monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(deps, "logger", recorder)
    token = create_access_token("71")
    blocklist.block(token)

    response = client.get("/api/v1/auth/session", headers=_bearer(token))

    assert response.status_code == 401
    assert recorder.events == []
