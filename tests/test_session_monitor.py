"""
Session Monitor Tests

Proactive refresh inside the warning window, forced logout past expiry, and
activity-triggered checks.
"""

import asyncio
import time

import pytest

from shortlink_client.credential_store import CredentialSet, CredentialStore
from shortlink_client.error_handler import ValidationError
from shortlink_client.refresh_coordinator import RefreshCoordinator
from shortlink_client.session_monitor import SessionMonitor


class CountingRefresh:
    def __init__(self, fail: bool = False, delay: float = 0.02):
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def __call__(self, refresh_token):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.fail:
            raise ValidationError("revoked", status_code=401, code="TOKEN_REVOKED")
        return CredentialSet("T2", "R2", time.time() + 3600, "known@example.com")


def build(expires_in: float, refresh: CountingRefresh, fake_sleep):
    store = CredentialStore()
    store.set(CredentialSet("T1", "R1", time.time() + expires_in, "known@example.com"))
    coordinator = RefreshCoordinator(store, refresh, sleep=fake_sleep)
    monitor = SessionMonitor(store, coordinator, check_interval=0.01, warning_seconds=300)
    coordinator.on_auth_lost = monitor.session_ended
    ended = []
    monitor.add_listener(ended.append)
    return store, monitor, ended


class TestExpiryCheck:
    @pytest.mark.asyncio
    async def test_far_from_expiry_does_nothing(self, fake_sleep):
        refresh = CountingRefresh()
        store, monitor, ended = build(3600, refresh, fake_sleep)

        await monitor.check()

        assert refresh.calls == 0
        assert store.get().access_token == "T1"

    @pytest.mark.asyncio
    async def test_refreshes_inside_warning_window(self, fake_sleep):
        refresh = CountingRefresh()
        store, monitor, ended = build(120, refresh, fake_sleep)

        await monitor.check()

        assert refresh.calls == 1
        assert store.get().access_token == "T2"
        assert ended == []

    @pytest.mark.asyncio
    async def test_overlapping_checks_refresh_once(self, fake_sleep):
        refresh = CountingRefresh(delay=0.05)
        store, monitor, ended = build(120, refresh, fake_sleep)

        await asyncio.gather(monitor.check(), monitor.check(), monitor.check())

        assert refresh.calls == 1

    @pytest.mark.asyncio
    async def test_failed_proactive_refresh_ends_session_once(self, fake_sleep):
        refresh = CountingRefresh(fail=True)
        store, monitor, ended = build(120, refresh, fake_sleep)

        await monitor.check()

        assert store.get() is None
        assert len(ended) == 1

    @pytest.mark.asyncio
    async def test_expired_session_gets_one_last_refresh(self, fake_sleep):
        refresh = CountingRefresh()
        store, monitor, ended = build(-5, refresh, fake_sleep)

        await monitor.check()

        assert refresh.calls == 1
        assert store.get().access_token == "T2"
        assert ended == []

    @pytest.mark.asyncio
    async def test_expired_session_is_logged_out_when_refresh_fails(self, fake_sleep):
        refresh = CountingRefresh(fail=True)
        store, monitor, ended = build(-5, refresh, fake_sleep)

        await monitor.check()

        assert store.get() is None
        assert len(ended) == 1

    @pytest.mark.asyncio
    async def test_empty_store_is_ignored(self, fake_sleep):
        refresh = CountingRefresh()
        store, monitor, ended = build(-5, refresh, fake_sleep)
        store.clear()

        await monitor.check()

        assert refresh.calls == 0
        assert ended == []


class TestForcedLogout:
    @pytest.mark.asyncio
    async def test_force_logout_is_idempotent(self, fake_sleep, auth_event_log_dir):
        store, monitor, ended = build(3600, CountingRefresh(), fake_sleep)

        assert await monitor.force_logout("session_expired") is True
        assert await monitor.force_logout("session_expired") is False

        assert ended == ["session_expired"]
        assert '"event": "forced_logout"' in (auth_event_log_dir / "auth_events.log").read_text()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, fake_sleep):
        store, monitor, ended = build(3600, CountingRefresh(), fake_sleep)

        def broken(reason):
            raise RuntimeError("listener bug")

        async def async_listener(reason):
            ended.append(f"async:{reason}")

        monitor.remove_listener(ended.append)
        monitor.add_listener(broken)
        monitor.add_listener(async_listener)

        await monitor.force_logout("logout")

        assert ended == ["async:logout"]


class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_loop_refreshes_and_stops(self, fake_sleep):
        refresh = CountingRefresh()
        store, monitor, ended = build(120, refresh, fake_sleep)

        monitor.start()
        assert monitor.running
        await asyncio.sleep(0.1)
        await monitor.stop()

        assert not monitor.running
        assert refresh.calls == 1
        assert store.get().access_token == "T2"

    @pytest.mark.asyncio
    async def test_loop_stops_after_forced_logout(self, fake_sleep):
        store, monitor, ended = build(-5, CountingRefresh(fail=True), fake_sleep)

        monitor.start()
        await asyncio.sleep(0.1)

        assert not monitor.running
        assert len(ended) == 1

    @pytest.mark.asyncio
    async def test_activity_shares_the_running_check(self, fake_sleep):
        refresh = CountingRefresh(delay=0.05)
        store, monitor, ended = build(120, refresh, fake_sleep)

        first = monitor.record_activity()
        second = monitor.record_activity()

        assert first is second
        await first
        assert refresh.calls == 1
        assert monitor.last_activity is not None

    @pytest.mark.asyncio
    async def test_activity_without_session_schedules_nothing(self, fake_sleep):
        store, monitor, ended = build(3600, CountingRefresh(), fake_sleep)
        store.clear()
        assert monitor.record_activity() is None
