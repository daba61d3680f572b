"""
ApiClient scenarios: valid token, single expiry, concurrent expiry storm, failed refresh.
Each scenario counts calls seen by the fake API and logout events seen by a subscriber.
"""
import asyncio

import pytest

from session_client.client import ApiClient
from session_client.credentials import Credential, CredentialStore
from session_client.errors import HttpError, NetworkError, SessionExpiredError, UnauthorizedError


def _logouts(client):
    seen = []
    client.events.subscribe(seen.append)
    return seen


@pytest.mark.asyncio
async def test_scenario_a_valid_token_single_call(fake_api, make_client):
    client = make_client(access="new-at")
    logouts = _logouts(client)

    assert await client.get("/deals") == {"path": "/api/deals", "method": "GET"}
    assert fake_api.calls == [("GET", "/api/deals", "Bearer new-at")]
    assert fake_api.refresh_calls == 0
    assert logouts == []


@pytest.mark.asyncio
async def test_scenario_b_expired_token_refreshes_and_retries_once(fake_api, make_client):
    client = make_client()
    logouts = _logouts(client)

    assert await client.get("/deals") == {"path": "/api/deals", "method": "GET"}
    assert fake_api.calls_to("/api/deals") == [
        ("GET", "/api/deals", "Bearer expired-at"),
        ("GET", "/api/deals", "Bearer new-at"),
    ]
    assert fake_api.refresh_calls == 1
    assert client.store.get() == Credential(access_token="new-at", refresh_token="new-rt")
    assert logouts == []


@pytest.mark.asyncio
async def test_scenario_c_concurrent_expiry_single_refresh(fake_api, make_client):
    fake_api.hold_refresh_until = 5
    client = make_client()
    logouts = _logouts(client)
    paths = [f"/deals/{i}" for i in range(5)]

    results = await asyncio.gather(*(client.get(p) for p in paths))

    assert results == [{"path": f"/api{p}", "method": "GET"} for p in paths]
    assert fake_api.refresh_calls == 1
    retried = [c for c in fake_api.calls if c[2] == "Bearer new-at"]
    assert sorted(c[1] for c in retried) == sorted(f"/api{p}" for p in paths)
    assert client.store.get() == Credential(access_token="new-at", refresh_token="new-rt")
    assert client.coordinator.refreshing is False
    assert logouts == []


@pytest.mark.asyncio
async def test_scenario_d_refresh_rejected_fails_everyone_once(fake_api, make_client):
    fake_api.hold_refresh_until = 5
    fake_api.refresh_status = 401
    client = make_client()
    logouts = _logouts(client)

    results = await asyncio.gather(*(client.get(f"/deals/{i}") for i in range(5)), return_exceptions=True)

    assert len(results) == 5
    for r in results:
        assert isinstance(r, SessionExpiredError)
        assert r.message == "Session expired. Please login again."
    assert fake_api.refresh_calls == 1
    assert client.store.get().empty
    assert client.is_authenticated is False
    assert logouts == ["auth:logout"]
    # Nobody was retried
    assert not any(c[2] == "Bearer new-at" for c in fake_api.calls)


@pytest.mark.asyncio
async def test_refresh_server_error_is_refresh_failure(fake_api, make_client):
    fake_api.refresh_status = 500
    client = make_client()
    logouts = _logouts(client)

    with pytest.raises(SessionExpiredError):
        await client.get("/deals")
    assert logouts == ["auth:logout"]
    assert client.store.get().empty


@pytest.mark.asyncio
async def test_no_double_retry_when_new_token_also_rejected(fake_api, make_client):
    fake_api.hold_refresh_until = 3
    fake_api.valid_access = "never-matches"
    client = make_client()
    logouts = _logouts(client)

    results = await asyncio.gather(*(client.get(f"/deals/{i}") for i in range(3)), return_exceptions=True)

    assert all(isinstance(r, UnauthorizedError) for r in results)
    assert fake_api.refresh_calls == 1
    # original + one retry each, never a third attempt
    assert len([c for c in fake_api.calls if c[1].startswith("/api/deals/")]) == 6
    assert client.store.get().empty
    assert logouts == ["auth:logout"]


@pytest.mark.asyncio
async def test_network_error_is_not_an_auth_failure(fake_api, make_client):
    client = make_client(access="new-at")
    logouts = _logouts(client)

    with pytest.raises(NetworkError):
        await client.get("/offline")
    assert fake_api.refresh_calls == 0
    assert client.is_authenticated is True
    assert logouts == []


@pytest.mark.asyncio
async def test_other_http_error_surfaces_server_message(make_client):
    client = make_client(access="new-at")

    with pytest.raises(HttpError) as exc:
        await client.post("/broken", {"title": "x"})
    assert exc.value.status_code == 500
    assert exc.value.message == "Database unavailable"


@pytest.mark.asyncio
async def test_http_verbs(make_client):
    client = make_client(access="new-at")

    results = [
        await client.get("/a"),
        await client.post("/a", {"x": 1}),
        await client.put("/a", {"x": 2}),
        await client.patch("/a", {"x": 3}),
        await client.delete("/a"),
    ]
    assert [r["method"] for r in results] == ["GET", "POST", "PUT", "PATCH", "DELETE"]


@pytest.mark.asyncio
async def test_unauthenticated_401_expires_session_without_refresh_call(fake_api, make_client):
    client = make_client(access=None, refresh=None)
    logouts = _logouts(client)

    with pytest.raises(SessionExpiredError) as exc:
        await client.get("/deals")
    assert exc.value.status_code == 401
    assert fake_api.calls == [("GET", "/api/deals", None)]
    assert fake_api.refresh_calls == 0
    assert logouts == ["auth:logout"]


@pytest.mark.asyncio
async def test_login_sends_no_bearer_and_keeps_session_on_401(fake_api, make_client):
    client = make_client(access="new-at", refresh="valid-rt")
    logouts = _logouts(client)

    # The fake API answers 401 to anything without Bearer new-at, the login path included
    with pytest.raises(HttpError) as exc:
        await client.login("someone", "wrong")
    assert exc.value.status_code == 401
    assert not isinstance(exc.value, SessionExpiredError)
    assert fake_api.calls == [("POST", "/api/auth/login", None)]
    assert client.store.get() == Credential(access_token="new-at", refresh_token="valid-rt")
    assert fake_api.refresh_calls == 0
    assert logouts == []


@pytest.mark.asyncio
async def test_explicit_logout_during_refresh_is_not_overwritten(fake_api, make_client):
    # Gate opened by the test itself, never by the 401 counter
    fake_api.hold_refresh_until = 1000
    client = make_client()
    logouts = _logouts(client)

    pending = asyncio.create_task(client.get("/deals"))
    while fake_api.refresh_calls == 0:
        await asyncio.sleep(0)
    client.logout()
    fake_api.storm().set()

    with pytest.raises(SessionExpiredError):
        await pending
    assert client.store.get().empty
    assert client.is_authenticated is False
    assert client.coordinator.refreshing is False
    assert not any(c[2] == "Bearer new-at" for c in fake_api.calls)
    assert logouts == []


@pytest.mark.asyncio
async def test_explicit_logout_is_local_and_silent(make_client):
    client = make_client(access="new-at")
    logouts = _logouts(client)
    client.logout()
    assert client.is_authenticated is False
    assert logouts == []


@pytest.mark.asyncio
async def test_set_credentials(make_client):
    client = make_client(access=None, refresh=None)
    client.set_credentials("at", "rt")
    assert client.store.get() == Credential(access_token="at", refresh_token="rt")


@pytest.mark.asyncio
async def test_refreshed_pair_is_committed_when_the_call_returns(fake_api, transport, tmp_path):
    url = f"sqlite:///{tmp_path / 'credentials.db'}"
    store = CredentialStore(url)
    store.set(Credential(access_token="expired-at", refresh_token="valid-rt"))

    async with ApiClient("http://api.test/api", store=store, transport=transport) as client:
        await client.get("/deals")
        # Another process reading the database already sees the rotated pair
        assert CredentialStore(url).get() == Credential(access_token="new-at", refresh_token="new-rt")
    assert fake_api.refresh_calls == 1
