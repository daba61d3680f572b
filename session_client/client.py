"""
ApiClient: the one object every feature uses to talk to the remote API.
Callers either get the decoded body or a single terminal error; an intermediate 401 is never visible.
"""
import logging
from typing import Any

import httpx

from session_client.config import (
    API_BASE_URL,
    LOGIN_PATH,
    REFRESH_PATH,
    REFRESH_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
)
from session_client.credentials import Credential, CredentialStore
from session_client.errors import HttpError, RefreshRequired, UnauthorizedError
from session_client.events import SessionEventBus
from session_client.executor import RequestDescriptor, RequestExecutor
from session_client.refresh import RefreshCoordinator

logger = logging.getLogger(__name__)


class ApiClient:
    def __init__(
        self,
        base_url: str = API_BASE_URL,
        *,
        store: CredentialStore | None = None,
        events: SessionEventBus | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        refresh_path: str = REFRESH_PATH,
        login_path: str = LOGIN_PATH,
        refresh_timeout: float | None = REFRESH_TIMEOUT_SECONDS,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.store = store if store is not None else CredentialStore()
        self.events = events if events is not None else SessionEventBus()
        self._login_path = login_path
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=request_timeout)
        self.executor = RequestExecutor(self._http, self.store, refresh_path=refresh_path)
        self.coordinator = RefreshCoordinator(
            self.store,
            self.executor,
            self.events,
            refresh_path=refresh_path,
            timeout=refresh_timeout,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def is_authenticated(self) -> bool:
        return self.store.is_authenticated

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        descriptor = RequestDescriptor(method=method.upper(), path=path, headers=dict(headers or {}), body=body)
        try:
            try:
                return await self.executor.execute(descriptor)
            except RefreshRequired as signal:
                return await self.coordinator.handle_unauthorized(descriptor, rejected_token=signal.sent_token)
        except UnauthorizedError:
            self.coordinator.expire_session()
            raise

    async def get(self, path: str, headers: dict[str, str] | None = None) -> Any:
        return await self.request("GET", path, headers=headers)

    async def post(self, path: str, body: Any = None, headers: dict[str, str] | None = None) -> Any:
        return await self.request("POST", path, body=body, headers=headers)

    async def put(self, path: str, body: Any = None, headers: dict[str, str] | None = None) -> Any:
        return await self.request("PUT", path, body=body, headers=headers)

    async def patch(self, path: str, body: Any = None, headers: dict[str, str] | None = None) -> Any:
        return await self.request("PATCH", path, body=body, headers=headers)

    async def delete(self, path: str, headers: dict[str, str] | None = None) -> Any:
        return await self.request("DELETE", path, headers=headers)

    def set_credentials(self, access_token: str, refresh_token: str) -> None:
        self.store.set(Credential(access_token=access_token, refresh_token=refresh_token))

    async def login(self, username: str, password: str) -> dict:
        """
        POST credentials to the login endpoint and store the returned token pair.
        Sent without the bearer header: a 401 is a plain HttpError and the current session is kept.
        """
        descriptor = RequestDescriptor(
            method="POST",
            path=self._login_path,
            body={"username": username, "password": password},
            with_credentials=False,
        )
        data = await self.executor.execute(descriptor)
        if not isinstance(data, dict) or not data.get("accessToken") or not data.get("refreshToken"):
            raise HttpError(502, "Login response did not include a token pair")
        self.set_credentials(data["accessToken"], data["refreshToken"])
        logger.info("Logged in as %s", username)
        return data

    def logout(self) -> None:
        """Explicit, user-initiated logout. Local only; no session event is published."""
        self.store.clear()
