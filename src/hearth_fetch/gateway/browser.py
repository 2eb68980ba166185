"""Browser abstraction used by the session gateway and its Playwright adapter."""

from __future__ import annotations

import abc
import json
import logging
from typing import TYPE_CHECKING, Any

from hearth_fetch.core.config import GatewayConfig
from hearth_fetch.core.exceptions import BrowserUnavailableError
from hearth_fetch.core.retry import parse_retry_after
from hearth_fetch.gateway.state import GatewayResponse

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright

logger = logging.getLogger(__name__)

Cookie = dict[str, Any]

CHALLENGE_TITLES = ("just a moment", "attention required")
CHALLENGE_SELECTORS = "#challenge-running, #challenge-form, .cf-browser-verification"

# Playwright errors raised when the page navigates under a running evaluate
_NAVIGATION_ERRORS = ("Execution context was destroyed", "Cannot find context with specified id")

_CHALLENGE_SCRIPT = """
([titles, selectors]) => {
    const title = document.title.toLowerCase();
    return titles.some(t => title.includes(t)) || !!document.querySelector(selectors);
}
"""

_FETCH_SCRIPT = """
async ([url, timeoutMs]) => {
    const controller = new AbortController();
    const timer = setTimeout(() => controller.abort(), timeoutMs);
    try {
        const res = await fetch(url, {
            credentials: 'include',
            headers: { 'Accept': 'application/json' },
            signal: controller.signal,
        });
        const text = await res.text();
        return { status: res.status, text, retryAfter: res.headers.get('retry-after') };
    } catch (e) {
        return { status: 0, text: String(e), retryAfter: null };
    } finally {
        clearTimeout(timer);
    }
}
"""


def decode_body(text: str) -> object:
    """Parse a response body as JSON, falling back to the raw text."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class BrowserSession(abc.ABC):
    """One live browser: a process, a context with its cookie jar, one page."""

    @abc.abstractmethod
    async def open(self, url: str, timeout: float) -> None:
        """Navigate the page to a URL."""

    @abc.abstractmethod
    async def is_responsive(self) -> bool:
        """Trivial health probe: True if the page still evaluates script."""

    @abc.abstractmethod
    async def cookies(self) -> list[Cookie]:
        """Snapshot of the cookie jar."""

    @abc.abstractmethod
    async def add_cookies(self, cookies: list[Cookie]) -> None:
        """Install cookies into the jar."""

    @abc.abstractmethod
    async def remove_cookie(self, name: str, domain: str) -> None:
        """Delete a cookie from the jar."""

    @abc.abstractmethod
    async def set_identity(self, name: str, value: str | None, domain: str) -> None:
        """Install the identity cookie, or remove it when value is None."""

    @abc.abstractmethod
    async def has_challenge_markers(self) -> bool:
        """True while the page shows an anti-bot challenge."""

    @abc.abstractmethod
    async def fetch(self, url: str, timeout: float) -> GatewayResponse:
        """Run fetch() inside the page with the jar's credentials."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Close the browser and release its process."""


class BrowserLauncher(abc.ABC):
    """Factory for browser sessions."""

    @abc.abstractmethod
    async def launch(self) -> BrowserSession:
        """Launch a fresh browser.

        Raises:
            BrowserUnavailableError: If the browser cannot be started
        """


class PlaywrightSession(BrowserSession):
    """Chromium driven through Playwright."""

    def __init__(
        self,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
    ) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page

    async def open(self, url: str, timeout: float) -> None:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        try:
            await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)
        except PlaywrightTimeoutError as e:
            raise TimeoutError(f"Navigation to {url} timed out") from e
        except PlaywrightError as e:
            raise BrowserUnavailableError(str(e)) from e

    async def is_responsive(self) -> bool:
        from playwright.async_api import Error as PlaywrightError

        try:
            await self._page.evaluate("1")
        except PlaywrightError:
            return False
        return True

    async def cookies(self) -> list[Cookie]:
        from playwright.async_api import Error as PlaywrightError

        try:
            return [dict(cookie) for cookie in await self._context.cookies()]
        except PlaywrightError as e:
            raise BrowserUnavailableError(str(e)) from e

    async def add_cookies(self, cookies: list[Cookie]) -> None:
        from playwright.async_api import Error as PlaywrightError

        if not cookies:
            return
        try:
            await self._context.add_cookies(cookies)
        except PlaywrightError as e:
            raise BrowserUnavailableError(str(e)) from e

    async def remove_cookie(self, name: str, domain: str) -> None:
        from playwright.async_api import Error as PlaywrightError

        try:
            await self._context.clear_cookies(name=name, domain=domain)
        except PlaywrightError as e:
            raise BrowserUnavailableError(str(e)) from e

    async def set_identity(self, name: str, value: str | None, domain: str) -> None:
        if value is None:
            await self.remove_cookie(name, domain)
            return
        await self.add_cookies(
            [
                {
                    "name": name,
                    "value": value,
                    "domain": domain,
                    "path": "/",
                    "httpOnly": True,
                    "secure": True,
                }
            ]
        )

    async def has_challenge_markers(self) -> bool:
        from playwright.async_api import Error as PlaywrightError

        try:
            return bool(
                await self._page.evaluate(
                    _CHALLENGE_SCRIPT, [list(CHALLENGE_TITLES), CHALLENGE_SELECTORS]
                )
            )
        except PlaywrightError as e:
            # The challenge page reloads itself once it is solved
            if any(marker in str(e) for marker in _NAVIGATION_ERRORS):
                logger.debug("Page navigated during challenge check: %s", e)
                return True
            raise BrowserUnavailableError(str(e)) from e

    async def fetch(self, url: str, timeout: float) -> GatewayResponse:
        from playwright.async_api import Error as PlaywrightError

        try:
            result = await self._page.evaluate(_FETCH_SCRIPT, [url, int(timeout * 1000)])
        except PlaywrightError as e:
            raise BrowserUnavailableError(str(e)) from e
        return GatewayResponse(
            status=int(result.get("status") or 0),
            body=decode_body(result.get("text") or ""),
            retry_after=parse_retry_after(result.get("retryAfter")),
        )

    async def close(self) -> None:
        from playwright.async_api import Error as PlaywrightError

        for closer in (self._page.close, self._context.close, self._browser.close):
            try:
                await closer()
            except PlaywrightError as e:
                logger.debug("Ignoring error while closing browser: %s", e)
        await self._playwright.stop()


class PlaywrightLauncher(BrowserLauncher):
    """Launches headless Chromium with the gateway's flags and user agent."""

    def __init__(self, config: GatewayConfig) -> None:
        self.config = config

    async def launch(self) -> BrowserSession:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import async_playwright

        logger.info("Launching browser (headless=%s)", self.config.headless)
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=self.config.headless,
                args=list(self.config.launch_args),
            )
            context = await browser.new_context(
                user_agent=self.config.user_agent,
                viewport={"width": 1920, "height": 1080},
            )
            page = await context.new_page()
        except PlaywrightError as e:
            await playwright.stop()
            raise BrowserUnavailableError(str(e)) from e
        return PlaywrightSession(playwright, browser, context, page)
