# src/shortlink_client/refresh_coordinator.py

"""
Single-flight token refresh coordinator.

However many calls discover a stale access token at the same time, exactly one
refresh call reaches the backend. The backend rotates refresh tokens, so a
second concurrent refresh would present an already-invalidated token and log
the user out.

Calls arriving while a refresh is in flight become waiters. When the refresh
resolves every waiter is released in arrival order, all with the same new
credential set or all with the same AuthenticationLostError.
"""

import asyncio
import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from .auth_event_logger import log_auth_event
from .credential_store import CredentialSet, CredentialStore
from .error_handler import (
    ApiError,
    AuthenticationLostError,
    ErrorCode,
    TransientNetworkError,
    mask_credential,
)
from .retry_policy import RetryPolicy

lib_logger = logging.getLogger("shortlink_client")

RefreshFunc = Callable[[str], Awaitable[CredentialSet]]
AuthLostCallback = Callable[[str], Any]


class RefreshState(Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshCoordinator:
    """
    Owns the refresh state: `state`, `attempt_count` and the FIFO waiter queue.

    Args:
        store: Credential store updated on success and cleared on failure
        refresh_func: Async function exchanging a refresh token for a new
            credential set. Raises ApiError subclasses on failure.
        retry_policy: Supplies the backoff between refresh attempts
        max_attempts: Refresh dispatches per cycle before giving up
        timeout: Seconds allowed for a single refresh dispatch
        on_auth_lost: Called with a reason string when a failed refresh
            ended a live session
    """

    def __init__(
        self,
        store: CredentialStore,
        refresh_func: RefreshFunc,
        retry_policy: Optional[RetryPolicy] = None,
        max_attempts: int = 2,
        timeout: float = 10.0,
        on_auth_lost: Optional[AuthLostCallback] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._store = store
        self._refresh_func = refresh_func
        self._retry_policy = retry_policy or RetryPolicy()
        self._max_attempts = max_attempts
        self._timeout = timeout
        self._sleep = sleep
        self.on_auth_lost = on_auth_lost

        self.state = RefreshState.IDLE
        self.attempt_count = 0
        self._waiters: Deque[asyncio.Future] = deque()
        self._task: Optional[asyncio.Task] = None
        self._trigger: Optional[str] = None

        # Guards the Idle -> Refreshing transition and the waiter drain
        self._lock = asyncio.Lock()

        # Statistics
        self._total_refreshes = 0
        self._successful_refreshes = 0
        self._failed_refreshes = 0
        self._timeout_attempts = 0

    @property
    def in_flight(self) -> bool:
        return self.state is RefreshState.REFRESHING

    async def refresh(
        self, failed_token: Optional[str] = None, trigger: str = "reactive"
    ) -> CredentialSet:
        """
        Wait for fresh credentials, starting a refresh only if none is in flight.

        Args:
            failed_token: Access token that was stored when the failing call was
                dispatched. If the store already moved past it, the current
                credentials are returned without refreshing.
            trigger: "reactive", "proactive" or "expiry" (logging only)

        Raises:
            AuthenticationLostError: The refresh failed; the store has been cleared
        """
        async with self._lock:
            current = self._store.get()
            if (
                self.state is RefreshState.IDLE
                and trigger == "reactive"
                and current is not None
                and current.access_token != failed_token
                and not self._store.is_expired()
            ):
                lib_logger.debug(
                    "[RefreshCoordinator] Credentials already rotated, replaying without refresh"
                )
                return current

            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)

            if self.state is RefreshState.IDLE:
                self.state = RefreshState.REFRESHING
                self._trigger = trigger
                self._total_refreshes += 1
                lib_logger.info(f"[RefreshCoordinator] Starting {trigger} token refresh")
                self._task = asyncio.create_task(self._run_refresh())
            else:
                lib_logger.debug(
                    f"[RefreshCoordinator] Refresh in flight ({self._trigger}), "
                    f"queued {trigger} waiter at position {len(self._waiters)}"
                )

        return await waiter

    async def _run_refresh(self) -> None:
        generation = self._store.generation
        creds = self._store.get()
        start_time = time.time()

        if creds is None or not creds.refresh_token:
            await self._fail("no refresh credential stored", None)
            return

        refresh_token = creds.refresh_token
        last_error: Optional[Exception] = None

        while True:
            self.attempt_count += 1
            try:
                new_creds = await asyncio.wait_for(
                    self._refresh_func(refresh_token), timeout=self._timeout
                )
            except asyncio.TimeoutError:
                self._timeout_attempts += 1
                last_error = TransientNetworkError(
                    f"Token refresh timed out after {self._timeout}s",
                    code=ErrorCode.NETWORK_TIMEOUT.value,
                )
            except ApiError as e:
                last_error = e
            except Exception as e:
                lib_logger.error(f"[RefreshCoordinator] Unexpected refresh error: {e}")
                last_error = e
            else:
                if self._store.generation != generation:
                    # Logged out (or logged in again) while the refresh was in flight
                    await self._session_replaced(None)
                    return
                await self._succeed(new_creds, time.time() - start_time)
                return

            transient = isinstance(last_error, TransientNetworkError)
            if not transient or self.attempt_count >= self._max_attempts:
                break

            delay = self._retry_policy.backoff_delay(self.attempt_count)
            lib_logger.warning(
                f"[RefreshCoordinator] Refresh attempt {self.attempt_count}/{self._max_attempts} "
                f"failed ({last_error}), retrying in {delay}s"
            )
            await self._sleep(delay)

            if self._store.generation != generation:
                await self._session_replaced(last_error)
                return

        await self._fail(f"token refresh failed: {last_error}", last_error)

    async def _session_replaced(self, cause: Optional[Exception]) -> None:
        """
        The session this refresh started from is gone. Waiters follow a newer
        live session if one was established, otherwise they are rejected
        without a second session-ended signal.
        """
        current = self._store.get()
        if current is not None and not self._store.is_expired():
            lib_logger.info(
                "[RefreshCoordinator] Session replaced during refresh, "
                "discarding refreshed credentials"
            )
            await self._release(current)
            return
        await self._fail("session ended during refresh", cause, notify=False)

    async def _succeed(self, new_creds: CredentialSet, duration: float) -> None:
        async with self._lock:
            self._store.set(new_creds)
            self._successful_refreshes += 1
        lib_logger.info(f"[RefreshCoordinator] Refresh SUCCESS in {duration:.1f}s")
        await self._release(new_creds)

    async def _release(self, creds: CredentialSet) -> None:
        async with self._lock:
            self.attempt_count = 0
            waiters = self._drain()
            self.state = RefreshState.IDLE

        lib_logger.info(
            f"[RefreshCoordinator] Releasing {len(waiters)} waiter(s) "
            f"with {mask_credential(creds.access_token)}"
        )
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(creds)

    async def _fail(
        self, reason: str, cause: Optional[Exception], notify: bool = True
    ) -> None:
        async with self._lock:
            attempts = self.attempt_count
            self._failed_refreshes += 1
            waiters = self._drain()
            cleared = self._store.clear() if notify else False
            self.attempt_count = 0
            self.state = RefreshState.IDLE

        lib_logger.error(
            f"[RefreshCoordinator] Refresh FAILED after {attempts} attempt(s): {reason}. "
            f"Rejecting {len(waiters)} waiter(s)."
        )
        for waiter in waiters:
            if not waiter.done():
                error = AuthenticationLostError(
                    "Session expired, please log in again",
                    code=ErrorCode.REFRESH_FAILED.value,
                )
                error.__cause__ = cause
                waiter.set_exception(error)

        if cleared:
            log_auth_event("refresh_failed", reason=reason, attempts=attempts, error=cause)
            await self._notify_auth_lost(reason)

    async def invalidate(
        self, rejected: CredentialSet, reason: str, cause: Optional[Exception] = None
    ) -> bool:
        """
        End the session after the backend rejected freshly refreshed credentials.

        Only clears the store while it still holds `rejected`; a session that has
        since been refreshed or replaced is left alone.

        Returns:
            True if this call ended the session
        """
        async with self._lock:
            current = self._store.get()
            if current is None or current.access_token != rejected.access_token:
                return False
            cleared = self._store.clear()

        if cleared:
            log_auth_event(
                "credentials_rejected",
                reason=reason,
                identity=rejected.identity,
                error=cause,
                token=mask_credential(rejected.access_token),
            )
            await self._notify_auth_lost(reason)
        return cleared

    async def _notify_auth_lost(self, reason: str) -> None:
        if self.on_auth_lost is None:
            return
        try:
            result = self.on_auth_lost(reason)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            lib_logger.error(f"[RefreshCoordinator] on_auth_lost callback failed: {e}")

    def _drain(self):
        waiters = list(self._waiters)
        self._waiters.clear()
        return waiters

    def get_pending_count(self) -> int:
        return len(self._waiters)

    def status(self) -> Dict[str, Any]:
        """Current coordinator status for debugging/monitoring."""
        return {
            "state": self.state.value,
            "trigger": self._trigger if self.in_flight else None,
            "attempt_count": self.attempt_count,
            "pending_count": len(self._waiters),
            "stats": {
                "total": self._total_refreshes,
                "successful": self._successful_refreshes,
                "failed": self._failed_refreshes,
                "timeouts": self._timeout_attempts,
            },
        }
