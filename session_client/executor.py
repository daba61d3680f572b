"""
Request executor: performs exactly one HTTP call and classifies the response.
Attaches the bearer token when one is stored. Never retries; retries belong to the refresh coordinator.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Any

import httpx

from session_client.config import REFRESH_PATH
from session_client.credentials import CredentialStore
from session_client.errors import HttpError, NetworkError, RefreshRequired, UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestDescriptor:
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    is_retry: bool = False
    # False: send without the bearer header; a 401 is then an answer about the request itself (e.g. login)
    with_credentials: bool = True

    def as_retry(self) -> "RequestDescriptor":
        return replace(self, is_retry=True)


def _normalize_path(path: str) -> str:
    return path.split("?", 1)[0].rstrip("/") or "/"


def _error_message(response: httpx.Response) -> str | None:
    """Server-supplied error text, if any. Accepts {"error": ...} and FastAPI {"detail": ...} shapes."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    detail = body.get("detail")
    if isinstance(detail, str) and detail:
        return detail
    if isinstance(detail, dict):
        body = detail
    for key in ("error_description", "error", "message"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _is_json(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    if _is_json(response.headers.get("content-type", "")):
        try:
            return response.json()
        except ValueError:
            raise HttpError(response.status_code, "Malformed response body")
    return response.text


class RequestExecutor:
    def __init__(self, http: httpx.AsyncClient, store: CredentialStore, *, refresh_path: str = REFRESH_PATH):
        self._http = http
        self._store = store
        self.refresh_path = _normalize_path(refresh_path)

    def is_refresh_path(self, path: str) -> bool:
        return _normalize_path(path) == self.refresh_path

    async def execute(self, descriptor: RequestDescriptor) -> Any:
        """
        Send one request. Returns the decoded body on 2xx.
        Raises RefreshRequired on a first-attempt 401, UnauthorizedError on a terminal 401 (retry or
        refresh endpoint), HttpError(401) for a request sent without credentials, HttpError on other
        non-2xx, NetworkError when no response arrives.
        """
        refresh_call = self.is_refresh_path(descriptor.path)
        credential = self._store.get()
        headers = {"Accept": "application/json", **descriptor.headers}
        sent_token = None
        if credential.access_token and descriptor.with_credentials and not refresh_call:
            sent_token = credential.access_token
            headers["Authorization"] = f"Bearer {sent_token}"

        try:
            r = await self._http.request(
                descriptor.method,
                descriptor.path,
                json=descriptor.body,
                headers=headers,
            )
        except httpx.TransportError as e:
            logger.debug("%s %s failed without a response: %s", descriptor.method, descriptor.path, e)
            raise NetworkError(str(e) or type(e).__name__) from e

        if r.is_success:
            return _decode(r)

        if r.status_code == 401:
            if refresh_call or descriptor.is_retry:
                logger.debug(
                    "%s %s: terminal 401 (retry=%s, refresh=%s)",
                    descriptor.method,
                    descriptor.path,
                    descriptor.is_retry,
                    refresh_call,
                )
                raise UnauthorizedError()
            if not descriptor.with_credentials:
                raise HttpError(401, _error_message(r))
            raise RefreshRequired(descriptor, sent_token)

        raise HttpError(r.status_code, _error_message(r))
