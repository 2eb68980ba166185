"""Browser session gateway for the challenge-protected collection service.

The gateway owns a single browser. It earns anti-bot clearance by loading
the service origin, keeps that clearance fresh with a renewal timer, and
runs identity-scoped fetches from inside the page so they share the
browser's fingerprint and cookies.

All browser access is serialized by one asyncio.Lock. Its waiters are
woken in arrival order, and each holder installs its own identity cookie
before fetching, so responses never leak across identities.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, replace

from hearth_fetch.core.clock import Clock, ScheduledTask, SystemClock
from hearth_fetch.core.config import GatewayConfig
from hearth_fetch.core.exceptions import (
    AcquisitionError,
    BrowserUnavailableError,
    ChallengeTimeoutError,
    UpstreamUnavailableError,
)
from hearth_fetch.core.retry import Outcome, RetryPolicy
from hearth_fetch.gateway.browser import BrowserLauncher, BrowserSession, PlaywrightLauncher
from hearth_fetch.gateway.state import ClearanceState, GatewayResponse, GatewayStatus

logger = logging.getLogger(__name__)

# Attempts made by fetch_as when a dead browser takes the clearance with it
_FETCH_PASSES = 2


@dataclass
class _ClearanceProbe:
    """One poll of the solve loop; expires_at is None while still challenged."""

    expires_at: float | None = None
    retry_after: float | None = None

    @property
    def outcome(self) -> Outcome:
        return Outcome.PENDING if self.expires_at is None else Outcome.SUCCESS


class SessionGateway:
    """Identity-scoped fetches through one challenge-cleared browser.

    Example:
        async with SessionGateway(GatewayConfig()) as gateway:
            if await gateway.ensure_ready():
                response = await gateway.fetch_as(session_id, url)
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        launcher: BrowserLauncher | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            config: Gateway configuration (uses defaults if None)
            launcher: Browser launcher (Playwright Chromium if None)
            clock: Clock for timers and expiry checks (system clock if None)
        """
        self.config = config or GatewayConfig()
        self.config.validate()
        self._launcher = launcher or PlaywrightLauncher(self.config)
        self._clock = clock or SystemClock()
        self._solve_policy = RetryPolicy(
            max_attempts=int(self.config.solve_timeout / self.config.poll_interval) + 1,
            base_delay=self.config.poll_interval,
            multiplier=1.0,
        )

        self._lock = asyncio.Lock()
        self._browser: BrowserSession | None = None
        self._identity: str | None = None
        self._fetch_count = 0
        self._clearance = ClearanceState()
        self._solve_task: asyncio.Task[None] | None = None
        self._renewal: ScheduledTask | None = None
        self._idle: ScheduledTask | None = None
        self._last_used = 0.0
        self._closed = False

    async def __aenter__(self) -> SessionGateway:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def clearance(self) -> ClearanceState:
        return replace(self._clearance)

    @property
    def installed_identity(self) -> str | None:
        """Identity currently in the cookie jar (None = anonymous)."""
        return self._identity

    @property
    def browser_running(self) -> bool:
        return self._browser is not None

    @property
    def fetch_count(self) -> int:
        return self._fetch_count

    async def start(self) -> None:
        """Open the gateway. The browser itself is launched on first use."""
        self._closed = False

    async def close(self) -> None:
        """Cancel timers and any running solve, then close the browser."""
        self._closed = True
        for timer in (self._renewal, self._idle):
            if timer is not None:
                timer.cancel()
        self._renewal = self._idle = None

        solve, self._solve_task = self._solve_task, None
        if solve is not None and not solve.done():
            solve.cancel()
            with contextlib.suppress(asyncio.CancelledError, AcquisitionError):
                await solve

        async with self._lock:
            await self._teardown()

    def get_status(self) -> GatewayStatus:
        """Read the clearance state without side effects."""
        now = self._clock.time()
        valid = self._clearance.is_valid(now)
        expires_in = round(self._clearance.expires_in(now)) if valid else 0
        return GatewayStatus(valid=valid, expires_in_seconds=expires_in)

    def invalidate(self) -> None:
        """Mark clearance as not ready so the next call solves again."""
        if self._clearance.ready:
            logger.info("Clearance invalidated")
        self._clearance.ready = False

    async def ensure_ready(self) -> bool:
        """Make sure clearance is valid, solving the challenge if needed.

        Concurrent callers share one solve.

        Returns:
            True when clearance is valid, False if the solve failed
        """
        try:
            await self._ensure_clearance()
        except (ChallengeTimeoutError, BrowserUnavailableError) as e:
            logger.warning("Clearance not obtained: %s", e)
            return False
        return True

    async def fetch_as(self, identity: str | None, url: str) -> GatewayResponse:
        """Fetch a URL from inside the browser as the given identity.

        Args:
            identity: Session cookie value of the user, or None for anonymous
            url: URL on the protected service

        Returns:
            Raw response; 401/403 are returned as-is and never re-solved

        Raises:
            ChallengeTimeoutError: If clearance cannot be obtained
            BrowserUnavailableError: If the browser cannot be (re)launched
            UpstreamUnavailableError: If the in-page fetch times out
        """
        for _ in range(_FETCH_PASSES):
            await self._ensure_clearance()
            self._reset_idle_timer()
            async with self._lock:
                browser = await self._ensure_browser()
                # A relaunch in _ensure_browser drops the clearance
                if not self._clearance.is_valid(self._clock.time()):
                    continue
                return await self._fetch_locked(browser, identity, url)
        raise BrowserUnavailableError("browser lost its clearance while fetching")

    def _clearance_valid(self) -> bool:
        return self._clearance.is_valid(self._clock.time(), self.config.renewal_margin)

    async def _ensure_clearance(self) -> None:
        if self._closed:
            raise BrowserUnavailableError("gateway is closed")
        if self._clearance_valid():
            return
        if self._solve_task is None or self._solve_task.done():
            self._solve_task = asyncio.create_task(self._solve(), name="clearance-solve")
        solve = self._solve_task
        try:
            await asyncio.shield(solve)
        except asyncio.CancelledError:
            # close() cancelled the shared solve, not this caller
            current = asyncio.current_task()
            if solve.cancelled() and self._closed and not (current and current.cancelling()):
                raise BrowserUnavailableError("gateway is closed") from None
            raise

    async def _solve(self) -> None:
        origin = self.config.origin
        async with self._lock:
            if self._clearance_valid():
                return
            logger.info("Solving challenge for %s", origin)
            browser = await self._ensure_browser()
            self._reset_idle_timer()
            try:
                await self._drop_stale_clearance(browser)
                await asyncio.wait_for(
                    browser.open(origin, self.config.navigation_timeout),
                    self.config.navigation_timeout,
                )
                probe = await self._solve_policy.run(
                    lambda: self._probe_clearance(browser),
                    clock=self._clock,
                    label="clearance poll",
                )
            except TimeoutError as e:
                logger.warning("Navigation to %s timed out", origin)
                raise ChallengeTimeoutError(origin, self.config.navigation_timeout) from e
            except BrowserUnavailableError:
                await self._teardown()
                raise

            if probe is None or probe.expires_at is None:
                logger.warning(
                    "Challenge for %s not cleared within %gs", origin, self.config.solve_timeout
                )
                raise ChallengeTimeoutError(origin, self.config.solve_timeout)
            self._grant(probe.expires_at)

    def _is_stale(self, expires: float, now: float) -> bool:
        return expires > 0 and expires - self.config.renewal_margin <= now

    async def _drop_stale_clearance(self, browser: BrowserSession) -> None:
        """Remove a clearance cookie that is about to expire so the origin issues a new one."""
        now = self._clock.time()
        for cookie in await browser.cookies():
            if cookie.get("name") != self.config.clearance_cookie:
                continue
            if self._is_stale(float(cookie.get("expires") or -1), now):
                logger.debug("Dropping clearance cookie that expires inside the renewal margin")
                await browser.remove_cookie(
                    self.config.clearance_cookie, cookie.get("domain") or self.config.cookie_domain
                )

    async def _probe_clearance(self, browser: BrowserSession) -> _ClearanceProbe:
        now = self._clock.time()
        for cookie in await browser.cookies():
            if cookie.get("name") != self.config.clearance_cookie:
                continue
            expires = float(cookie.get("expires") or -1)
            if self._is_stale(expires, now):
                continue
            if expires <= 0:
                expires = now + self.config.default_clearance_window
            return _ClearanceProbe(expires_at=expires)
        if not await browser.has_challenge_markers():
            logger.info("No challenge detected, using the page as is")
            return _ClearanceProbe(expires_at=now + self.config.default_clearance_window)
        return _ClearanceProbe()

    def _grant(self, expires_at: float) -> None:
        now = self._clock.time()
        self._clearance = ClearanceState(ready=True, issued_at=now, expires_at=expires_at)
        logger.info("Challenge cleared, expires in %dm", round((expires_at - now) / 60))
        self._schedule_renewal()

    def _schedule_renewal(self) -> None:
        if self._renewal is not None and self._renewal.pending:
            self._renewal.cancel()
        self._renewal = None

        now = self._clock.time()
        delay = self._clearance.expires_at - self.config.renewal_margin - now
        if delay <= 0:
            logger.debug("Clearance expires inside the renewal margin, not scheduling renewal")
            return
        logger.debug("Renewal scheduled in %dm", round(delay / 60))
        self._renewal = self._clock.call_later(delay, self._renew, name="clearance-renewal")

    async def _renew(self) -> None:
        logger.info("Renewing clearance before expiry")
        if not await self.ensure_ready():
            logger.warning("Clearance renewal failed")

    def _reset_idle_timer(self) -> None:
        self._last_used = self._clock.monotonic()
        if self._idle is not None and self._idle.pending:
            self._idle.cancel()
        self._idle = self._clock.call_later(
            self.config.idle_timeout, self._close_idle, name="browser-idle"
        )

    async def _close_idle(self) -> None:
        async with self._lock:
            if self._browser is None:
                return
            if self._clock.monotonic() - self._last_used < self.config.idle_timeout:
                return
            logger.info("Browser idle for %gs, closing", self.config.idle_timeout)
            await self._teardown()

    async def _ensure_browser(self) -> BrowserSession:
        """Return a live browser, relaunching a dead one. Lock must be held."""
        if self._browser is not None:
            if await self._is_healthy(self._browser):
                return self._browser
            logger.warning("Browser failed its health probe, relaunching")
            await self._teardown()

        self._browser = await self._launcher.launch()
        self._fetch_count = 0
        self._identity = None
        return self._browser

    async def _is_healthy(self, browser: BrowserSession) -> bool:
        try:
            return await asyncio.wait_for(
                browser.is_responsive(), self.config.health_probe_timeout
            )
        except TimeoutError:
            return False

    async def _fetch_locked(
        self, browser: BrowserSession, identity: str | None, url: str
    ) -> GatewayResponse:
        try:
            if identity != self._identity:
                await browser.set_identity(
                    self.config.identity_cookie, identity, self.config.cookie_domain
                )
                self._identity = identity
            response = await asyncio.wait_for(
                browser.fetch(url, self.config.fetch_timeout),
                self.config.fetch_timeout + self.config.health_probe_timeout,
            )
        except TimeoutError as e:
            raise UpstreamUnavailableError(url, details="in-page fetch timed out") from e
        except BrowserUnavailableError:
            await self._teardown()
            raise

        self._fetch_count += 1
        logger.debug("Fetched %s (HTTP %d)", url, response.status)
        if self.config.recycle_after and self._fetch_count >= self.config.recycle_after:
            await self._recycle()
        return response

    async def _recycle(self) -> None:
        """Relaunch the browser, carrying the cookie jar over. Lock must be held."""
        old = self._browser
        if old is None:
            return
        logger.info("Recycling browser after %d fetches", self._fetch_count)
        try:
            cookies = await old.cookies()
            self._browser = None
            await self._close_browser(old)

            browser = await self._launcher.launch()
            self._browser = browser
            self._fetch_count = 0
            await browser.add_cookies(cookies)
            await asyncio.wait_for(
                browser.open(self.config.origin, self.config.navigation_timeout),
                self.config.navigation_timeout,
            )
        except (BrowserUnavailableError, TimeoutError) as e:
            logger.warning("Browser recycle failed: %s", e)
            await self._teardown()

    async def _teardown(self) -> None:
        """Close the browser and forget everything it held. Lock must be held."""
        browser, self._browser = self._browser, None
        self._clearance.reset()
        self._identity = None
        self._fetch_count = 0
        if self._renewal is not None and self._renewal.pending:
            self._renewal.cancel()
        self._renewal = None
        if browser is not None:
            await self._close_browser(browser)

    async def _close_browser(self, browser: BrowserSession) -> None:
        try:
            await browser.close()
        except (BrowserUnavailableError, OSError) as e:
            logger.debug("Ignoring error while closing browser: %s", e)
