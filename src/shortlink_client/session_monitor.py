# src/shortlink_client/session_monitor.py

import asyncio
import logging
import time
from typing import Any, Callable, List, Optional

from .auth_event_logger import log_auth_event
from .credential_store import CredentialStore
from .error_handler import AuthenticationLostError
from .refresh_coordinator import RefreshCoordinator

lib_logger = logging.getLogger("shortlink_client")

SessionListener = Callable[[str], Any]


class SessionMonitor:
    """
    Keeps the session ahead of its expiry.

    A background task checks the time left on a fixed interval, and user
    activity triggers an extra check. Inside the warning window the monitor
    refreshes proactively through the shared RefreshCoordinator, so overlapping
    checks never produce more than one refresh. Past expiry it makes one last
    refresh attempt and forces a logout if that does not succeed.
    """

    def __init__(
        self,
        store: CredentialStore,
        coordinator: RefreshCoordinator,
        check_interval: float = 60.0,
        warning_seconds: float = 300.0,
    ):
        self._store = store
        self._coordinator = coordinator
        self._interval = check_interval
        self._warning_seconds = warning_seconds
        self._listeners: List[SessionListener] = []
        self._task: Optional[asyncio.Task] = None
        self._check_task: Optional[asyncio.Task] = None
        self.last_activity: Optional[float] = None

    def add_listener(self, listener: SessionListener) -> None:
        """Register a callback (sync or async) invoked with the reason when the session ends."""
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start(self):
        """Starts the background expiry check."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            lib_logger.info(
                f"Session monitor started. Check interval: {self._interval} seconds."
            )

    async def stop(self):
        """Stops the background expiry check."""
        if self._task:
            task, self._task = self._task, None
            task.cancel()
            # Stopping from inside the loop: the pending cancel ends it at its next await
            if task is not asyncio.current_task():
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            lib_logger.info("Session monitor stopped.")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def record_activity(self) -> Optional[asyncio.Task]:
        """
        Note a user-activity signal and schedule an expiry check.

        A check already in progress absorbs the signal.
        """
        self.last_activity = time.time()
        if self._store.get() is None:
            return None
        if self._check_task is None or self._check_task.done():
            self._check_task = asyncio.create_task(self.check())
        return self._check_task

    async def check(self) -> None:
        creds = self._store.get()
        if creds is None:
            return

        remaining = creds.expires_at - self._store.now()

        if remaining > self._warning_seconds:
            return

        if remaining > 0:
            lib_logger.info(
                f"Session for '{creds.identity}' expires in {int(remaining)}s, refreshing proactively"
            )
            try:
                await self._coordinator.refresh(trigger="proactive")
            except AuthenticationLostError as e:
                # The coordinator already cleared the store and notified listeners
                lib_logger.warning(f"Proactive refresh failed: {e}")
            return

        lib_logger.info(f"Session for '{creds.identity}' has expired, attempting refresh")
        try:
            await self._coordinator.refresh(trigger="expiry")
        except AuthenticationLostError as e:
            lib_logger.warning(f"Refresh at expiry failed: {e}")
            await self.force_logout("session_expired")

    async def force_logout(self, reason: str) -> bool:
        """
        Clear the store and notify listeners, once.

        Returns:
            True if this call ended a live session
        """
        if not self._store.clear():
            return False
        log_auth_event("forced_logout", reason=reason)
        await self.session_ended(reason)
        return True

    async def session_ended(self, reason: str) -> None:
        """Notify listeners that the session is gone. Wired as the coordinator's on_auth_lost."""
        lib_logger.info(f"Session ended ({reason})")
        for listener in list(self._listeners):
            try:
                result = listener(reason)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                lib_logger.error(f"Session listener failed: {e}")
        await self.stop()

    async def _run(self):
        while True:
            try:
                await self.check()
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                lib_logger.error(f"Unexpected error in session monitor loop: {e}")
                await asyncio.sleep(self._interval)
