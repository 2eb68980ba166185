"""Tests for the browser session gateway."""

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from hearth_fetch import (
    BrowserUnavailableError,
    ChallengeTimeoutError,
    GatewayConfig,
    SessionGateway,
    UpstreamUnavailableError,
)
from hearth_fetch.gateway.browser import BrowserLauncher, PlaywrightSession
from tests.helpers import FakeLauncher, ManualClock, settle

URL = "https://hsreplay.net/api/v1/collection/"


def make_gateway(clock, launcher, **overrides):
    config = GatewayConfig(**{"recycle_after": 0, **overrides})
    return SessionGateway(config, launcher=launcher, clock=clock)


class TestEnsureReady:
    """Tests for clearance solving."""

    @pytest.mark.asyncio
    async def test_status_before_solve(self, gateway):
        status = gateway.get_status()
        assert not status.valid
        assert status.expires_in_seconds == 0

    @pytest.mark.asyncio
    async def test_single_flight_solve(self, gateway, launcher):
        """Test concurrent callers share one solve and one browser launch."""
        results = await asyncio.gather(gateway.ensure_ready(), gateway.ensure_ready())

        assert results == [True, True]
        assert launcher.launches == 1
        assert launcher.current.opened == ["https://hsreplay.net"]

    @pytest.mark.asyncio
    async def test_ready_skips_second_solve(self, gateway, launcher):
        assert await gateway.ensure_ready()
        assert await gateway.ensure_ready()

        assert launcher.current.opened == ["https://hsreplay.net"]

    @pytest.mark.asyncio
    async def test_cookie_expiry_is_used(self, clock):
        launcher = FakeLauncher(mode="cookie", clearance_expires=clock.time() + 3600)
        async with make_gateway(clock, launcher) as gateway:
            assert await gateway.ensure_ready()
            status = gateway.get_status()

        assert status.valid
        assert status.expires_in_seconds == 3600

    @pytest.mark.asyncio
    async def test_session_cookie_gets_default_window(self, gateway, clock):
        assert await gateway.ensure_ready()
        assert gateway.clearance.expires_at == clock.time() + 1800

    @pytest.mark.asyncio
    async def test_no_challenge_fast_path(self, clock):
        """Test a page without challenge markers counts as cleared."""
        launcher = FakeLauncher(mode="open")
        async with make_gateway(clock, launcher) as gateway:
            assert await gateway.ensure_ready()
            assert gateway.get_status().expires_in_seconds == 1800

    @pytest.mark.asyncio
    async def test_challenge_timeout(self, clock):
        """Test a challenge that never clears fails after the solve timeout."""
        launcher = FakeLauncher(mode="challenge")
        async with make_gateway(clock, launcher, solve_timeout=60.0) as gateway:
            task = asyncio.ensure_future(gateway.ensure_ready())
            await clock.advance(59)
            assert not task.done()
            await clock.advance(1)

            assert await task is False
            assert not gateway.get_status().valid
            assert launcher.launches == 1

    @pytest.mark.asyncio
    async def test_challenge_timeout_from_fetch(self, clock):
        launcher = FakeLauncher(mode="challenge")
        async with make_gateway(clock, launcher, solve_timeout=5.0) as gateway:
            task = asyncio.ensure_future(gateway.fetch_as("alice", URL))
            await clock.advance(5)

            with pytest.raises(ChallengeTimeoutError):
                await task
        assert launcher.requests == []

    @pytest.mark.asyncio
    async def test_launch_failure(self, clock):
        launcher = FakeLauncher()
        launcher.fail = True
        async with make_gateway(clock, launcher) as gateway:
            assert await gateway.ensure_ready() is False
            with pytest.raises(BrowserUnavailableError):
                await gateway.fetch_as(None, URL)

    @pytest.mark.asyncio
    async def test_invalidate_forces_new_solve(self, gateway, launcher):
        assert await gateway.ensure_ready()
        gateway.invalidate()

        assert not gateway.get_status().valid
        assert await gateway.ensure_ready()
        assert launcher.launches == 1
        assert len(launcher.current.opened) == 2


class TestFetchAs:
    """Tests for identity-scoped fetches."""

    @pytest.mark.asyncio
    async def test_fetch_uses_identity(self, gateway, launcher):
        response = await gateway.fetch_as("alice", URL)

        assert response.status == 200
        assert response.body == {"identity": "alice", "url": URL}
        assert gateway.installed_identity == "alice"

    @pytest.mark.asyncio
    async def test_anonymous_removes_identity(self, gateway, launcher):
        await gateway.fetch_as("alice", URL)
        response = await gateway.fetch_as(None, URL)

        assert response.body["identity"] is None
        assert launcher.current.identity() is None

    @pytest.mark.asyncio
    async def test_no_cross_identity_leakage(self, gateway, launcher):
        """Test concurrent fetches for different users each see their own identity."""
        identities = ["alice", "bob", None, "carol", "alice", "bob", None, "dave"] * 3

        responses = await asyncio.gather(
            *(gateway.fetch_as(identity, f"{URL}?n={i}") for i, identity in enumerate(identities))
        )

        assert [r.body["identity"] for r in responses] == identities
        assert launcher.launches == 1

    @pytest.mark.asyncio
    async def test_fifo_order(self, gateway, launcher):
        """Test fetches reach the browser in the order they were issued."""
        await gateway.ensure_ready()
        urls = [f"{URL}?n={i}" for i in range(10)]

        await asyncio.gather(
            *(gateway.fetch_as("alice" if i % 2 else "bob", url) for i, url in enumerate(urls))
        )

        assert [url for url, _ in launcher.requests] == urls

    @pytest.mark.asyncio
    async def test_rejection_is_returned_not_resolved(self, gateway, launcher):
        """Test a 401 after clearance comes back raw without a new solve."""
        launcher.add_route(URL, (401, {"detail": "expired"}))

        response = await gateway.fetch_as("stale", URL)

        assert response.status == 401
        assert gateway.get_status().valid
        assert launcher.current.opened == ["https://hsreplay.net"]

    @pytest.mark.asyncio
    async def test_dead_browser_is_relaunched(self, gateway, launcher):
        await gateway.fetch_as("alice", URL)
        launcher.current.responsive = False

        response = await gateway.fetch_as("alice", URL)

        assert response.body["identity"] == "alice"
        assert launcher.launches == 2
        assert launcher.browsers[0].closed

    @pytest.mark.asyncio
    async def test_closed_gateway(self, gateway, launcher):
        await gateway.fetch_as("alice", URL)
        await gateway.close()

        assert launcher.current.closed
        assert not gateway.browser_running
        assert await gateway.ensure_ready() is False
        with pytest.raises(BrowserUnavailableError):
            await gateway.fetch_as("alice", URL)


class TestLifecycle:
    """Tests for idle close, renewal and recycling."""

    @pytest.mark.asyncio
    async def test_idle_timeout_closes_browser(self, clock):
        launcher = FakeLauncher()
        async with make_gateway(clock, launcher, idle_timeout=300.0) as gateway:
            await gateway.fetch_as("alice", URL)
            await clock.advance(299)
            assert gateway.browser_running

            await clock.advance(1)

            assert not gateway.browser_running
            assert launcher.current.closed
            assert not gateway.get_status().valid

            # The next fetch relaunches and solves again
            response = await gateway.fetch_as("alice", URL)
            assert response.body["identity"] == "alice"
            assert launcher.launches == 2

    @pytest.mark.asyncio
    async def test_fetch_resets_idle_timer(self, clock):
        launcher = FakeLauncher()
        async with make_gateway(clock, launcher, idle_timeout=300.0) as gateway:
            await gateway.fetch_as("alice", URL)
            await clock.advance(200)
            await gateway.fetch_as("alice", URL)
            await clock.advance(200)

            assert gateway.browser_running
            await clock.advance(100)
            assert not gateway.browser_running

    @pytest.mark.asyncio
    async def test_renewal_before_expiry(self, clock):
        """Test clearance is re-solved at expiry minus the renewal margin."""
        start = clock.time()
        launcher = FakeLauncher(clearance_expires=start + 3600)
        async with make_gateway(
            clock, launcher, idle_timeout=100_000.0, renewal_margin=300.0
        ) as gateway:
            assert await gateway.ensure_ready()
            launcher.clearance_expires = start + 7200

            await clock.advance(3299)
            assert len(launcher.current.opened) == 1
            await clock.advance(1)

            assert len(launcher.current.opened) == 2
            assert gateway.clearance.expires_at == start + 7200
            assert launcher.launches == 1

    @pytest.mark.asyncio
    async def test_renewal_is_superseded(self, clock):
        """Test a re-solve replaces the pending renewal instead of adding one."""
        start = clock.time()
        launcher = FakeLauncher(clearance_expires=start + 3600)
        async with make_gateway(
            clock, launcher, idle_timeout=100_000.0, renewal_margin=300.0
        ) as gateway:
            assert await gateway.ensure_ready()
            await clock.advance(100)

            launcher.clearance_expires = start + 7200
            gateway.invalidate()
            assert await gateway.ensure_ready()
            assert len(launcher.current.opened) == 2

            # The first renewal would have fired here
            await clock.advance(3300)
            assert len(launcher.current.opened) == 2

            await clock.advance(3500)
            assert len(launcher.current.opened) == 3

    @pytest.mark.asyncio
    async def test_recycle_preserves_identity(self, clock):
        """Test recycling relaunches the browser and keeps cookies and clearance."""
        launcher = FakeLauncher()
        async with make_gateway(clock, launcher, recycle_after=2) as gateway:
            await gateway.fetch_as("alice", URL)
            issued_at = gateway.clearance.issued_at
            await gateway.fetch_as("alice", URL)

            assert launcher.launches == 2
            assert launcher.browsers[0].closed
            assert launcher.current.identity() == "alice"
            assert gateway.fetch_count == 0

            response = await gateway.fetch_as("alice", URL)

            assert response.body["identity"] == "alice"
            assert gateway.clearance.issued_at == issued_at
            assert gateway.get_status().valid
            # The relaunched browser only reloads the origin once
            assert launcher.current.opened == ["https://hsreplay.net"]

    @pytest.mark.asyncio
    async def test_close_cancels_timers(self):
        clock = ManualClock()
        launcher = FakeLauncher()
        gateway = make_gateway(clock, launcher)
        await gateway.fetch_as("alice", URL)

        await gateway.close()
        await settle()

        assert clock.sleepers == 0

    @pytest.mark.asyncio
    async def test_renewal_replaces_expiring_cookie(self, clock):
        """Test a renewal that gets the old cookie back does not re-solve on every fetch."""
        start = clock.time()
        launcher = FakeLauncher(clearance_expires=start + 3600)
        async with make_gateway(
            clock, launcher, idle_timeout=100_000.0, renewal_margin=300.0
        ) as gateway:
            assert await gateway.ensure_ready()
            await clock.advance(3300)
            assert len(launcher.current.opened) == 2

            for i in range(5):
                await gateway.fetch_as("alice", f"{URL}?n={i}")

            assert len(launcher.current.opened) == 2
            assert gateway.clearance.expires_at == start + 3300 + 1800
            assert gateway.get_status().valid

    @pytest.mark.asyncio
    async def test_close_during_solve(self, clock):
        """Test callers waiting on a solve see a closed gateway, not a cancellation."""
        launcher = FakeLauncher(mode="challenge")
        gateway = make_gateway(clock, launcher)
        ready = asyncio.ensure_future(gateway.ensure_ready())
        fetch = asyncio.ensure_future(gateway.fetch_as("alice", URL))
        await settle()

        await gateway.close()

        assert await ready is False
        with pytest.raises(BrowserUnavailableError, match="closed"):
            await fetch
        assert launcher.current.closed


class TestTimeouts:
    """Tests for the hard timeouts around browser calls."""

    @pytest.mark.asyncio
    async def test_fetch_timeout_releases_lock(self, clock):
        launcher = FakeLauncher()
        async with make_gateway(
            clock, launcher, fetch_timeout=0.05, health_probe_timeout=0.05
        ) as gateway:
            await gateway.fetch_as("alice", URL)
            launcher.current.hang_fetch = True

            with pytest.raises(UpstreamUnavailableError, match="timed out"):
                await gateway.fetch_as("alice", URL)

            launcher.current.hang_fetch = False
            response = await gateway.fetch_as("bob", URL)

        assert response.body["identity"] == "bob"
        assert launcher.launches == 1

    @pytest.mark.asyncio
    async def test_hanging_health_probe_relaunches(self, clock):
        launcher = FakeLauncher()
        async with make_gateway(clock, launcher, health_probe_timeout=0.05) as gateway:
            await gateway.fetch_as("alice", URL)
            launcher.current.hang_probe = True

            response = await gateway.fetch_as("alice", URL)

        assert response.body["identity"] == "alice"
        assert launcher.launches == 2
        assert launcher.browsers[0].closed


class StubPage:
    """Playwright page whose challenge check raises the queued errors first."""

    def __init__(self, errors=()):
        self.errors = list(errors)
        self.visited = []

    async def goto(self, url, **kwargs):
        self.visited.append(url)

    async def evaluate(self, script, arg=None):
        if script == "1":
            return 1
        if self.errors:
            raise self.errors.pop(0)
        return False

    async def close(self):
        pass


class StubContext:
    def __init__(self, broken=False):
        self.broken = broken
        self.jar = []

    async def cookies(self):
        if self.broken:
            raise PlaywrightError("Target page, context or browser has been closed")
        return list(self.jar)

    async def add_cookies(self, cookies):
        self.jar.extend(cookies)

    async def clear_cookies(self, **kwargs):
        self.jar = [c for c in self.jar if c["name"] != kwargs.get("name")]

    async def close(self):
        pass


class StubProcess:
    async def close(self):
        pass

    async def stop(self):
        pass


class StubLauncher(BrowserLauncher):
    def __init__(self, page, context=None):
        self.page = page
        self.context = context or StubContext()
        self.launches = 0

    async def launch(self):
        self.launches += 1
        return PlaywrightSession(StubProcess(), StubProcess(), self.context, self.page)


class TestPlaywrightErrors:
    """Tests for Playwright errors raised inside the gateway."""

    @pytest.mark.asyncio
    async def test_navigation_during_check_keeps_polling(self, clock):
        """Test the challenge reloading under a check counts as still challenged."""
        navigated = PlaywrightError(
            "Execution context was destroyed, most likely because of a navigation"
        )
        page = StubPage([navigated, navigated])
        gateway = SessionGateway(GatewayConfig(), launcher=StubLauncher(page), clock=clock)
        try:
            task = asyncio.ensure_future(gateway.ensure_ready())
            await clock.advance(1)
            assert not task.done()
            await clock.advance(1)

            assert await task is True
            assert page.visited == ["https://hsreplay.net"]
        finally:
            await gateway.close()

    @pytest.mark.asyncio
    async def test_dead_page_fails_solve(self, clock):
        page = StubPage([PlaywrightError("Target page, context or browser has been closed")])
        gateway = SessionGateway(GatewayConfig(), launcher=StubLauncher(page), clock=clock)
        try:
            assert await gateway.ensure_ready() is False
            assert not gateway.browser_running
        finally:
            await gateway.close()

    @pytest.mark.asyncio
    async def test_cookie_error_is_typed(self, clock):
        launcher = StubLauncher(StubPage(), StubContext(broken=True))
        gateway = SessionGateway(GatewayConfig(), launcher=launcher, clock=clock)
        try:
            with pytest.raises(BrowserUnavailableError, match="has been closed"):
                await gateway.fetch_as("alice", URL)
        finally:
            await gateway.close()
