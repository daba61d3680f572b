"""
Single-flight token refresh.

When many requests hit 401 at nearly the same time, exactly one refresh exchange is sent. Every
caller is parked as a waiter until it settles. On success each waiter is retried once with the new
access token. On failure the credential store is cleared, every waiter is rejected with
SessionExpiredError, and "auth:logout" is published once.

The driver/waiter decision and the in_flight flip happen with no await in between. That, plus the
asyncio event loop running one task at a time, is what keeps two callers from both driving a refresh.

A refresh result is only stored if the session it was started for is still the stored one: after an
explicit logout (or a new login) mid-refresh the new pair is dropped and the waiters are rejected
without a logout event. A cancelled refresh task releases its waiters the same way.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from session_client.config import LOGOUT_EVENT, REFRESH_PATH, REFRESH_TIMEOUT_SECONDS
from session_client.credentials import Credential, CredentialStore
from session_client.errors import ApiError, RefreshFailedError, SessionExpiredError
from session_client.events import SessionEventBus
from session_client.executor import RequestDescriptor, RequestExecutor

logger = logging.getLogger(__name__)


@dataclass
class Waiter:
    descriptor: RequestDescriptor
    future: asyncio.Future


@dataclass
class RefreshState:
    in_flight: bool = False
    waiters: list[Waiter] = field(default_factory=list)


class RefreshCoordinator:
    def __init__(
        self,
        store: CredentialStore,
        executor: RequestExecutor,
        events: SessionEventBus,
        *,
        refresh_path: str = REFRESH_PATH,
        timeout: float | None = REFRESH_TIMEOUT_SECONDS,
    ):
        self._store = store
        self._executor = executor
        self._events = events
        self._refresh_path = refresh_path
        self._timeout = timeout
        self._state = RefreshState()
        self._task: asyncio.Task | None = None
        self.refresh_count = 0

    @property
    def refreshing(self) -> bool:
        return self._state.in_flight

    async def handle_unauthorized(self, descriptor: RequestDescriptor, rejected_token: str | None = None) -> Any:
        """
        Resolve a first-attempt 401 for descriptor. Returns the retried call's decoded body, or raises
        its terminal error. Raises SessionExpiredError if the refresh fails.
        """
        state = self._state
        current = self._store.get()
        if not state.in_flight and rejected_token is not None:
            if current.empty:
                # The session was torn down after this request went out; logout was already announced
                raise SessionExpiredError()
            if current.access_token is not None and current.access_token != rejected_token:
                # The token was rotated after this request went out; no new refresh needed
                logger.debug("%s %s: stale 401, retrying with current token", descriptor.method, descriptor.path)
                return await self._executor.execute(descriptor.as_retry())

        waiter = Waiter(descriptor=descriptor, future=asyncio.get_running_loop().create_future())
        state.waiters.append(waiter)
        if not state.in_flight:
            state.in_flight = True
            self.refresh_count += 1
            logger.info("Access token rejected on %s %s; starting refresh", descriptor.method, descriptor.path)
            self._task = asyncio.create_task(self._refresh_and_drain())
        else:
            logger.debug(
                "%s %s waiting on in-flight refresh (%d waiter(s))",
                descriptor.method,
                descriptor.path,
                len(state.waiters),
            )
        return await waiter.future

    def expire_session(self) -> None:
        """Terminal 401 after a retry: tear the session down once, however many callers report it."""
        if self._store.get().empty:
            return
        logger.warning("Session rejected after refresh; logging out")
        self._store.clear()
        self._events.publish(LOGOUT_EVENT)

    def _settle(self) -> list[Waiter]:
        """Back to Idle and hand over the waiters, in one synchronous step."""
        waiters = self._state.waiters
        self._state = RefreshState()
        return waiters

    async def _refresh_and_drain(self) -> None:
        state = self._state
        refresh_token = self._store.get().refresh_token
        try:
            try:
                if self._timeout is None:
                    credential = await self._exchange(refresh_token)
                else:
                    credential = await asyncio.wait_for(self._exchange(refresh_token), timeout=self._timeout)
            except asyncio.TimeoutError:
                self._fail(RefreshFailedError(f"Refresh timed out after {self._timeout}s"))
            except RefreshFailedError as e:
                self._fail(e)
            except Exception as e:
                logger.exception("Unexpected error during token refresh")
                self._fail(e)
            else:
                if self._store.get().refresh_token != refresh_token:
                    # Logged out (or logged in again) while the exchange was in flight: drop the new pair
                    logger.info("Session changed during refresh; discarding refreshed credentials")
                    self._reject(self._settle(), RefreshFailedError("Session changed during refresh"))
                    return
                self._store.set(credential)
                waiters = self._settle()
                logger.info("Token refresh succeeded; retrying %d request(s)", len(waiters))
                await asyncio.gather(*(self._retry(w) for w in waiters))
        finally:
            # Only reached with this state still current if the task was cancelled mid-refresh
            if self._state is state:
                logger.warning("Token refresh cancelled; releasing %d waiter(s)", len(state.waiters))
                self._settle()
            self._reject(state.waiters, RefreshFailedError("Token refresh was cancelled"))

    async def _exchange(self, refresh_token: str | None) -> Credential:
        if not refresh_token:
            raise RefreshFailedError("No refresh token stored")
        try:
            data = await self._executor.execute(
                RequestDescriptor(method="POST", path=self._refresh_path, body={"refreshToken": refresh_token})
            )
        except ApiError as e:
            raise RefreshFailedError(f"Refresh request failed: {e}") from e
        if not isinstance(data, dict):
            raise RefreshFailedError("Malformed refresh response")
        access_token = data.get("accessToken")
        new_refresh_token = data.get("refreshToken")
        if not isinstance(access_token, str) or not access_token:
            raise RefreshFailedError("Refresh response has no accessToken")
        if not isinstance(new_refresh_token, str) or not new_refresh_token:
            raise RefreshFailedError("Refresh response has no refreshToken")
        return Credential(access_token=access_token, refresh_token=new_refresh_token)

    async def _retry(self, waiter: Waiter) -> None:
        if waiter.future.done():
            # caller was cancelled while waiting
            return
        try:
            result = await self._executor.execute(waiter.descriptor.as_retry())
        except Exception as e:
            if not waiter.future.done():
                waiter.future.set_exception(e)
        else:
            if not waiter.future.done():
                waiter.future.set_result(result)

    def _reject(self, waiters: list[Waiter], cause: Exception) -> None:
        """Fail every still-pending waiter with SessionExpiredError caused by cause."""
        for waiter in waiters:
            if waiter.future.done():
                continue
            error = SessionExpiredError()
            error.__cause__ = cause
            waiter.future.set_exception(error)

    def _fail(self, cause: Exception) -> None:
        logger.warning("Token refresh failed: %s", cause)
        self._store.clear()
        self._reject(self._settle(), cause)
        self._events.publish(LOGOUT_EVENT)
