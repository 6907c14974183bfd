import pytest

from core.notifications import SecurityEvent
from conftest import DEFAULT_PASSWORD

AUTH = "/api/v1/auth"


@pytest.mark.anyio
async def test_refresh_rotates_and_rejects_replay(async_client, make_user, login, auth, clock):
    user = await make_user("alice@x.com")
    tokens = (await login("alice@x.com"))["tokens"]

    clock.advance(minutes=1)
    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 200, resp.text
    rotated = resp.json()["data"]["tokens"]
    assert rotated["refresh_token"] != tokens["refresh_token"]
    assert auth.tokens.decode_access_token(rotated["access_token"]).user_id == user.id

    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "token_revoked"

    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": rotated["refresh_token"]})
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_refresh_rejects_bad_tokens_uniformly(async_client, make_user, login, clock):
    await make_user("alice@x.com")
    tokens = (await login("alice@x.com"))["tokens"]

    head, payload, signature = tokens["refresh_token"].split(".")
    tampered = ".".join([head, payload, signature[::-1]])
    for candidate in ("garbage", tampered, tokens["access_token"]):
        resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": candidate})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_revoked"

    clock.advance(days=7, seconds=1)
    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "token_revoked"


@pytest.mark.anyio
async def test_refresh_fails_for_deactivated_user(async_client, make_user, login, db_session):
    user = await make_user("alice@x.com")
    tokens = (await login("alice@x.com"))["tokens"]
    user.is_active = False
    await db_session.commit()

    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "token_revoked"


@pytest.mark.anyio
async def test_refresh_fails_for_suspended_tenant(async_client, make_user, login, db_session, tenant):
    await make_user("alice@x.com")
    tokens = (await login("alice@x.com"))["tokens"]
    tenant.is_active = False
    await db_session.commit()

    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "tenant_suspended"


@pytest.mark.anyio
async def test_sixth_login_evicts_the_oldest_session(async_client, make_user, login, clock, bearer):
    await make_user("alice@x.com")
    issued = []
    for _ in range(6):
        issued.append((await login("alice@x.com"))["tokens"])
        clock.advance(seconds=1)

    resp = await async_client.get(f"{AUTH}/sessions", headers=bearer(issued[-1]["access_token"]))
    assert resp.status_code == 200
    assert resp.json()["data"]["total"] == 5

    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": issued[0]["refresh_token"]})
    assert resp.status_code == 401

    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": issued[1]["refresh_token"]})
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_logout_revokes_only_that_refresh_token(async_client, make_user, login, bearer):
    await make_user("alice@x.com")
    first = (await login("alice@x.com"))["tokens"]
    second = (await login("alice@x.com"))["tokens"]

    resp = await async_client.post(
        f"{AUTH}/logout",
        json={"refresh_token": first["refresh_token"]},
        headers=bearer(first["access_token"]),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["revoked"] == 1

    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": first["refresh_token"]})
    assert resp.status_code == 401
    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": second["refresh_token"]})
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_logout_ignores_foreign_and_invalid_tokens(async_client, make_user, login, bearer):
    await make_user("alice@x.com")
    await make_user("bob@x.com")
    alice = (await login("alice@x.com"))["tokens"]
    bob = (await login("bob@x.com"))["tokens"]

    for refresh_token in (bob["refresh_token"], "garbage"):
        resp = await async_client.post(
            f"{AUTH}/logout",
            json={"refresh_token": refresh_token},
            headers=bearer(alice["access_token"]),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["revoked"] == 0

    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": bob["refresh_token"]})
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_logout_requires_authentication(async_client):
    resp = await async_client.post(f"{AUTH}/logout", json={"refresh_token": "anything"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "authentication_required"


@pytest.mark.anyio
async def test_logout_all_revokes_every_session(async_client, make_user, login, bearer):
    await make_user("alice@x.com")
    sessions = [(await login("alice@x.com"))["tokens"] for _ in range(3)]

    resp = await async_client.post(f"{AUTH}/logout-all", headers=bearer(sessions[0]["access_token"]))
    assert resp.status_code == 200
    assert resp.json()["data"]["revoked"] == 3

    for tokens in sessions:
        resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 401

    # Access tokens live on until they expire
    resp = await async_client.get(f"{AUTH}/session/verify", headers=bearer(sessions[0]["access_token"]))
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_list_and_revoke_sessions(async_client, make_user, login, bearer, clock):
    await make_user("alice@x.com")
    await login("alice@x.com")
    clock.advance(seconds=5)
    tokens = (await login("alice@x.com"))["tokens"]
    headers = bearer(tokens["access_token"])

    resp = await async_client.get(f"{AUTH}/sessions", headers=headers)
    data = resp.json()["data"]
    assert data["total"] == 2
    newest, oldest = data["sessions"]
    assert newest["issued_at"] > oldest["issued_at"]
    assert "token_id" not in newest

    resp = await async_client.delete(f"{AUTH}/sessions/{oldest['id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "Session revoked"

    resp = await async_client.delete(f"{AUTH}/sessions/{oldest['id']}", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"

    resp = await async_client.get(f"{AUTH}/sessions", headers=headers)
    assert [s["id"] for s in resp.json()["data"]["sessions"]] == [newest["id"]]


@pytest.mark.anyio
async def test_cannot_revoke_someone_elses_session(async_client, make_user, login, bearer):
    await make_user("alice@x.com")
    await make_user("bob@x.com")
    alice = (await login("alice@x.com"))["tokens"]
    bob = (await login("bob@x.com"))["tokens"]

    bob_sessions = (await async_client.get(f"{AUTH}/sessions", headers=bearer(bob["access_token"]))).json()
    session_id = bob_sessions["data"]["sessions"][0]["id"]

    resp = await async_client.delete(f"{AUTH}/sessions/{session_id}", headers=bearer(alice["access_token"]))
    assert resp.status_code == 404


@pytest.mark.anyio
async def test_change_password_invalidates_existing_tokens(
    async_client, make_user, login, bearer, clock, notifier
):
    user = await make_user("alice@x.com")
    tokens = (await login("alice@x.com"))["tokens"]
    headers = bearer(tokens["access_token"])

    clock.advance(seconds=2)
    resp = await async_client.post(
        f"{AUTH}/change-password",
        json={"current_password": DEFAULT_PASSWORD, "new_password": "BrandNew456!"},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    assert SecurityEvent.PASSWORD_CHANGED in notifier.events_for(user.id)

    resp = await async_client.get(f"{AUTH}/profile", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "token_revoked"

    resp = await async_client.post(f"{AUTH}/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 401

    resp = await async_client.post(f"{AUTH}/login", json={"email": "alice@x.com", "password": DEFAULT_PASSWORD})
    assert resp.status_code == 401

    clock.advance(seconds=1)
    fresh = (await login("alice@x.com", "BrandNew456!"))["tokens"]
    resp = await async_client.get(f"{AUTH}/profile", headers=bearer(fresh["access_token"]))
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_change_password_checks_current_and_new(async_client, make_user, login, bearer):
    await make_user("alice@x.com")
    headers = bearer((await login("alice@x.com"))["tokens"]["access_token"])

    resp = await async_client.post(
        f"{AUTH}/change-password",
        json={"current_password": "wrong", "new_password": "BrandNew456!"},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_password"

    resp = await async_client.post(
        f"{AUTH}/change-password",
        json={"current_password": DEFAULT_PASSWORD, "new_password": DEFAULT_PASSWORD},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"

    resp = await async_client.post(
        f"{AUTH}/change-password",
        json={"current_password": DEFAULT_PASSWORD, "new_password": "short"},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["details"][0]["field"] == "new_password"


@pytest.mark.anyio
async def test_profile_returns_current_user(async_client, make_user, login, bearer, tenant):
    user = await make_user("alice@x.com")
    headers = bearer((await login("alice@x.com"))["tokens"]["access_token"])

    resp = await async_client.get(f"{AUTH}/profile", headers=headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["id"] == user.id
    assert data["tenant_id"] == tenant.id
    assert data["two_factor_enabled"] is False
    assert data["last_login_at"] is not None
