from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from nodegate.main import create_app

from tests.conftest import ADMIN, GOOD_SIGNATURE, OPERATOR, STRANGER, FakeVerifier


def _device_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "path": request.url.path,
            "apiKey": request.headers.get("X-API-Key"),
            "authorization": request.headers.get("Authorization"),
        },
    )


def _make_client(tmp_path, allowed: str = f"{ADMIN},{OPERATOR}", **environ) -> TestClient:
    env = {"ALLOWED_WALLETS": allowed, "JWT_SECRET": "test-secret", **environ}
    app = create_app(
        project_dir=str(tmp_path),
        environ=env,
        verifier=FakeVerifier(),
        proxy_client=httpx.AsyncClient(transport=httpx.MockTransport(_device_handler)),
    )
    return TestClient(app)


@pytest.fixture
def client(tmp_path):
    with _make_client(tmp_path) as c:
        yield c


def _login(client: TestClient, address: str = ADMIN) -> str:
    resp = client.post(
        "/api/wallet",
        json={"address": address, "signature": GOOD_SIGNATURE, "message": "Sign in"},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["token"]


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# -- Allow-list ---------------------------------------------------------------

def test_check_mode_hides_count_outside_debug(client):
    resp = client.get("/api/auth/check-mode")
    assert resp.json() == {"isPublicMode": False}


def test_check_mode_debug_shows_count(tmp_path):
    with _make_client(tmp_path, NODEGATE_DEBUG="1") as c:
        assert c.get("/api/auth/check-mode").json() == {"isPublicMode": False, "addressCount": 2}


def test_validate_address(client):
    resp = client.post("/api/auth/validate-address", json={"address": STRANGER})
    assert resp.json() == {"isAllowed": False, "isPublicMode": False}

    resp = client.post("/api/auth/validate-address", json={})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Address is required"


# -- Wallet sessions ----------------------------------------------------------

def test_login_verify_logout(client):
    resp = client.post(
        "/api/wallet",
        json={"address": OPERATOR, "signature": GOOD_SIGNATURE, "message": "Sign in"},
    )
    body = resp.json()
    assert body["allowed"] is True
    assert body["user"]["address"] == OPERATOR
    assert body["user"]["isAdmin"] is False
    token = body["token"]

    resp = client.get("/api/wallet/verify", headers=_auth(token))
    assert resp.json() == {
        "valid": True,
        "address": OPERATOR,
        "userId": body["user"]["id"],
        "allowed": True,
        "isAdmin": False,
    }

    resp = client.post("/api/wallet/logout", headers=_auth(token))
    assert resp.json() == {"success": True, "message": "Logout successful"}

    resp = client.get("/api/wallet/verify", headers=_auth(token))
    assert resp.status_code == 401

    # logging out again is still a success
    assert client.post("/api/wallet/logout", headers=_auth(token)).status_code == 200


def test_login_rejects_stranger(client):
    resp = client.post(
        "/api/wallet",
        json={"address": STRANGER, "signature": GOOD_SIGNATURE, "message": "Sign in"},
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "WALLET_NOT_AUTHORIZED"


def test_login_rejects_bad_signature(client):
    resp = client.post(
        "/api/wallet",
        json={"address": ADMIN, "signature": "0x00", "message": "Sign in"},
    )
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid signature"


def test_logout_without_token(client):
    resp = client.post("/api/wallet/logout")
    assert resp.status_code == 401
    assert resp.json()["error"] == "TOKEN_MISSING"


def test_refresh(client):
    token = _login(client)
    resp = client.post("/api/wallet/refresh", headers=_auth(token))
    assert resp.status_code == 200
    new_token = resp.json()["token"]

    assert client.get("/api/wallet/verify", headers=_auth(new_token)).status_code == 200
    assert client.get("/api/wallet/verify", headers=_auth(token)).status_code == 401


def test_login_rate_limit(client):
    for _ in range(10):
        assert client.post("/api/wallet", json={}).status_code == 400

    resp = client.post("/api/wallet", json={})
    assert resp.status_code == 429
    body = resp.json()
    assert body["code"] == "RATE_LIMIT_EXCEEDED"
    assert body["retryAfter"] >= 1
    assert resp.headers["Retry-After"] == str(body["retryAfter"])


# -- Devices ------------------------------------------------------------------

def test_devices_require_session(client):
    assert client.get("/api/devices").status_code == 401


def test_admin_creates_device(client):
    token = _login(client, ADMIN)
    resp = client.post(
        "/api/devices",
        json={"name": "node2", "ipAddress": "10.0.0.5"},
        headers=_auth(token),
    )
    assert resp.status_code == 200
    device = resp.json()
    assert len(device["apiKey"]) == 64
    assert device["port"] == 3000
    assert device["isMain"] is False

    listed = client.get("/api/devices", headers=_auth(token)).json()
    assert [d["id"] for d in listed] == [device["id"]]


def test_operator_cannot_create_device(client):
    token = _login(client, OPERATOR)
    resp = client.post(
        "/api/devices",
        json={"name": "node2", "ipAddress": "10.0.0.5"},
        headers=_auth(token),
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "Admin privileges required"


def test_create_device_validation(client):
    token = _login(client)
    resp = client.post("/api/devices", json={"name": "node2"}, headers=_auth(token))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Name and IP address are required"

    resp = client.post(
        "/api/devices",
        json={"name": "node2", "ipAddress": "10.0.0.5", "port": "abc"},
        headers=_auth(token),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_REQUEST"


def test_current_device(client):
    token = _login(client, OPERATOR)
    first = client.get("/api/devices/current", headers=_auth(token)).json()
    second = client.get("/api/devices/current", headers=_auth(token)).json()
    assert first["isMain"] is True
    assert first["id"] == second["id"]


def test_ping(client):
    token = _login(client)
    device = client.post(
        "/api/devices", json={"name": "node2", "ipAddress": "10.0.0.5"}, headers=_auth(token)
    ).json()

    resp = client.post("/api/devices/ping", json={"deviceId": device["id"], "apiKey": "0" * 64})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid device credentials"

    resp = client.post("/api/devices/ping", json={"deviceId": device["id"]})
    assert resp.status_code == 400

    resp = client.post(
        "/api/devices/ping", json={"deviceId": device["id"], "apiKey": device["apiKey"]}
    )
    assert resp.json() == {"success": True}

    listed = client.get("/api/devices", headers=_auth(token)).json()
    assert listed[0]["isActive"] is True
    assert listed[0]["lastSeen"] is not None


# -- Proxy --------------------------------------------------------------------

def test_proxy_forwards_with_device_key(client):
    admin = _login(client, ADMIN)
    device = client.post(
        "/api/devices", json={"name": "node2", "ipAddress": "10.0.0.5"}, headers=_auth(admin)
    ).json()
    client.post("/api/devices/ping", json={"deviceId": device["id"], "apiKey": device["apiKey"]})

    operator = _login(client, OPERATOR)
    resp = client.get(f"/api/proxy/status/nodes?deviceId={device['id']}", headers=_auth(operator))

    assert resp.status_code == 200
    assert resp.headers["X-Proxied-From"] == "node2"
    assert resp.json() == {
        "path": "/api/status/nodes",
        "apiKey": device["apiKey"],
        "authorization": None,
    }


def test_proxy_errors(client):
    token = _login(client)
    assert client.get("/api/proxy/status", headers=_auth(token)).status_code == 400
    assert client.get("/api/proxy/status?deviceId=nope", headers=_auth(token)).status_code == 404

    device = client.post(
        "/api/devices", json={"name": "node2", "ipAddress": "10.0.0.5"}, headers=_auth(token)
    ).json()
    resp = client.get(f"/api/proxy/status?deviceId={device['id']}", headers=_auth(token))
    assert resp.status_code == 503
    assert resp.json()["error"] == "Device is offline"


# -- Public mode --------------------------------------------------------------

def test_public_mode(tmp_path):
    with _make_client(tmp_path, allowed="") as c:
        assert c.get("/api/auth/check-mode").json() == {"isPublicMode": True}
        assert c.get("/api/devices").status_code == 200

        # admin routes still need a session
        resp = c.post("/api/devices", json={"name": "n", "ipAddress": "10.0.0.9"})
        assert resp.status_code == 401

        token = _login(c, STRANGER)
        resp = c.post(
            "/api/devices", json={"name": "n", "ipAddress": "10.0.0.9"}, headers=_auth(token)
        )
        assert resp.status_code == 200


def test_public_mode_ignores_stale_token_on_open_routes(tmp_path):
    with _make_client(tmp_path, allowed="") as c:
        token = _login(c, STRANGER)
        c.post("/api/wallet/logout", headers=_auth(token))

        assert c.get("/api/devices", headers=_auth(token)).status_code == 200
        assert c.get("/api/devices", headers=_auth("not-a-token")).status_code == 200

        resp = c.post(
            "/api/devices", json={"name": "n", "ipAddress": "10.0.0.9"}, headers=_auth(token)
        )
        assert resp.status_code == 401
