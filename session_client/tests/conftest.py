"""
Pytest configuration for session_client. A scriptable fake API served through httpx.MockTransport,
so no test touches the network or the on-disk credential database.
"""
import asyncio
import json
import os

import httpx
import pytest
import pytest_asyncio

# Keep credentials in memory unless a test passes its own database URL
os.environ["SESSION_CREDENTIAL_DB"] = ""

from session_client.client import ApiClient  # noqa: E402
from session_client.credentials import Credential, CredentialStore  # noqa: E402
from session_client.events import SessionEventBus  # noqa: E402

BASE_URL = "http://api.test/api"
EXPIRED_AT = "expired-at"
VALID_RT = "valid-rt"
NEW_AT = "new-at"
NEW_RT = "new-rt"


class FakeApi:
    """
    Accepts only `Bearer <valid_access>`; everything else gets 401.
    /api/auth/refresh trades `refresh_token` for (NEW_AT, NEW_RT) unless told to misbehave.
    """

    def __init__(self):
        self.valid_access = NEW_AT
        self.refresh_token = VALID_RT
        self.calls: list[tuple[str, str, str | None]] = []
        self.unauthorized = 0
        self.refresh_status = 200
        self.refresh_payload: object = None
        self.refresh_network_error = False
        self.refresh_hangs = False
        # Refresh responds only after this many 401s have been served (holds the storm open)
        self.hold_refresh_until = 0
        self._storm: asyncio.Event | None = None

    def storm(self) -> asyncio.Event:
        if self._storm is None:
            self._storm = asyncio.Event()
        return self._storm

    @property
    def refresh_calls(self) -> int:
        return sum(1 for _, path, _ in self.calls if path == "/api/auth/refresh")

    def calls_to(self, path: str) -> list[tuple[str, str, str | None]]:
        return [c for c in self.calls if c[1] == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        auth = request.headers.get("Authorization")
        self.calls.append((request.method, path, auth))

        if path == "/api/auth/refresh":
            if self.hold_refresh_until:
                await self.storm().wait()
            if self.refresh_hangs:
                await asyncio.Event().wait()
            if self.refresh_network_error:
                raise httpx.ConnectError("connection refused", request=request)
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": "Invalid or expired refresh token"})
            body = json.loads(request.content or b"{}")
            if body.get("refreshToken") != self.refresh_token:
                return httpx.Response(401, json={"error": "Refresh token not found or revoked"})
            if self.refresh_payload is not None:
                return httpx.Response(200, json=self.refresh_payload)
            self.refresh_token = NEW_RT
            return httpx.Response(200, json={"accessToken": NEW_AT, "refreshToken": NEW_RT})

        if path == "/api/broken":
            return httpx.Response(500, json={"error": "Database unavailable"})
        if path == "/api/plain-error":
            return httpx.Response(503, text="upstream down")
        if path == "/api/offline":
            raise httpx.ConnectError("network unreachable", request=request)

        if auth != f"Bearer {self.valid_access}":
            self.unauthorized += 1
            if self.hold_refresh_until and self.unauthorized >= self.hold_refresh_until:
                self.storm().set()
            return httpx.Response(401, json={"error": "Token expired"})
        if path == "/api/empty":
            return httpx.Response(204)
        return httpx.Response(200, json={"path": path, "method": request.method})


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def transport(fake_api):
    return httpx.MockTransport(fake_api.handler)


@pytest_asyncio.fixture
async def make_client(transport):
    """ApiClient factory over the fake API; every client is closed at teardown."""
    clients: list[ApiClient] = []

    def make(access=EXPIRED_AT, refresh=VALID_RT, **kwargs) -> ApiClient:
        store = CredentialStore(None)
        if access or refresh:
            store.set(Credential(access_token=access, refresh_token=refresh))
        client = ApiClient(BASE_URL, store=store, events=SessionEventBus(), transport=transport, **kwargs)
        clients.append(client)
        return client

    yield make
    for client in clients:
        await client.aclose()
