import httpx
import pytest
import pytest_asyncio

from api.dependencies import build_container, get_container
from shared.codes import BusinessCode


INITIAL = "Initial#Pass123"
ACTIVE = "Active#Pass456"


@pytest_asyncio.fixture
async def client(uow_factory, encrypted_index, permissions_cache):
    from main import app

    container = build_container(uow_factory, encrypted_index, cache=permissions_cache)
    app.dependency_overrides[get_container] = lambda: container
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _activate(client, first_name="Barbara", surname="Liskov"):
    resp = await client.post(
        "/api/v1/auth/register",
        json={"first_name": first_name, "surname": surname, "password": INITIAL},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]

    resp = await client.post(
        "/api/v1/auth/initial-password",
        json={
            "login": data["login"],
            "old_password": INITIAL,
            "new_password": ACTIVE,
            "confirm_password": ACTIVE,
        },
    )
    assert resp.status_code == 200
    return data


async def _login(client, login):
    resp = await client.post("/api/v1/auth/login", json={"login": login, "password": ACTIVE})
    assert resp.status_code == 200
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
    assert "X-Request-ID" in resp.headers


@pytest.mark.asyncio
async def test_full_authentication_flow(client):
    registered = await _activate(client)
    assert registered["login"] == "bliskov"

    tokens = await _login(client, "bliskov")
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    me = await client.get("/api/v1/permissions/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["data"]["user_id"] == registered["user_id"]
    assert me.json()["data"]["permissions"] == []

    resp = await client.post("/api/v1/auth/logout", headers=headers)
    assert resp.status_code == 200

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 401
    assert resp.json()["code"] in (BusinessCode.TOKEN_INVALID, BusinessCode.TOKEN_REVOKED)


@pytest.mark.asyncio
async def test_login_before_initial_change_is_forbidden(client):
    resp = await client.post(
        "/api/v1/auth/register",
        json={"first_name": "Barbara", "surname": "Liskov", "password": INITIAL},
    )
    login = resp.json()["data"]["login"]

    resp = await client.post("/api/v1/auth/login", json={"login": login, "password": INITIAL})
    assert resp.status_code == 403
    assert resp.json()["code"] == BusinessCode.PASSWORD_CHANGE_REQUIRED


@pytest.mark.asyncio
async def test_bad_credentials_are_uniform(client):
    await _activate(client)
    unknown = await client.post("/api/v1/auth/login", json={"login": "nobody", "password": ACTIVE})
    wrong = await client.post("/api/v1/auth/login", json={"login": "bliskov", "password": "Wrong#Pass999"})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json()["message"] == wrong.json()["message"]
    assert unknown.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_missing_and_invalid_token(client):
    resp = await client.get("/api/v1/permissions/me")
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"
    assert resp.json()["code"] == BusinessCode.UNAUTHORIZED

    resp = await client.get("/api/v1/permissions/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["code"] == BusinessCode.TOKEN_INVALID


@pytest.mark.asyncio
async def test_guarded_route_requires_permission(client, admin_service):
    registered = await _activate(client)
    tokens = await _login(client, registered["login"])
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    resp = await client.get(f"/api/v1/auth/users/{registered['user_id']}/identity", headers=headers)
    assert resp.status_code == 403
    body = resp.json()
    assert body["code"] == BusinessCode.PERMISSION_ERROR
    assert body["error"]["details"] == {"permission": "users_read"}

    role = await admin_service.create_role("support")
    await admin_service.assign_permission_to_role(role.id, "users_read")
    await admin_service.assign_role_to_user(registered["user_id"], role.id)

    resp = await client.get(f"/api/v1/auth/users/{registered['user_id']}/identity", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["email"] == "bliskov@example.com"


@pytest.mark.asyncio
async def test_access_check_endpoint(client, admin_service):
    registered = await _activate(client)
    await admin_service.override_permission_for_user(registered["user_id"], "reports_export", True)
    tokens = await _login(client, registered["login"])
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    resp = await client.post("/api/v1/permissions/me/check", json={"permission": "reports_export"}, headers=headers)
    assert resp.json()["data"] == {"allowed": True}

    resp = await client.post("/api/v1/permissions/me/check", json={"permission": "users_read"}, headers=headers)
    assert resp.json()["data"] == {"allowed": False}


@pytest.mark.asyncio
async def test_validation_errors(client):
    resp = await client.post("/api/v1/auth/register", json={"first_name": "", "surname": "Liskov", "password": INITIAL})
    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == BusinessCode.PARAM_VALIDATION_ERROR
    assert body["error"]["field"] == "first_name"

    resp = await client.post(
        "/api/v1/auth/register",
        json={"first_name": "Barbara", "surname": "Liskov", "password": "short"},
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["field"] == "password"


@pytest.mark.asyncio
async def test_password_confirmation_mismatch(client):
    registered = await _activate(client)
    tokens = await _login(client, registered["login"])
    resp = await client.post(
        "/api/v1/auth/change-password",
        json={"old_password": ACTIVE, "new_password": "Brand#New1234", "confirm_password": "Brand#New4321"},
        headers={"Authorization": f"Bearer {tokens['access_token']}"},
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == BusinessCode.PASSWORD_MISMATCH
