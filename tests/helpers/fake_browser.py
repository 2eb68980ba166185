"""In-memory browser used in place of Playwright."""

from __future__ import annotations

import asyncio
from typing import Any

from hearth_fetch.core.exceptions import BrowserUnavailableError
from hearth_fetch.gateway.browser import BrowserLauncher, BrowserSession, Cookie
from hearth_fetch.gateway.state import GatewayResponse


class FakeBrowser(BrowserSession):
    """Browser whose fetches echo the identity cookie in the jar.

    Routes registered on the launcher answer with queued (status, body)
    pairs instead; an exhausted route falls back to the echo answer.
    """

    def __init__(self, launcher: FakeLauncher) -> None:
        self.launcher = launcher
        self.jar: dict[tuple[str, str], Cookie] = {}
        self.opened: list[str] = []
        self.responsive = True
        self.closed = False
        # Block forever in the health probe or in fetch, to exercise hard timeouts
        self.hang_probe = False
        self.hang_fetch = False

    def identity(self) -> str | None:
        for (name, _), cookie in self.jar.items():
            if name == self.launcher.identity_cookie:
                return cookie["value"]
        return None

    async def open(self, url: str, timeout: float) -> None:
        self.opened.append(url)
        if self.launcher.mode == "cookie":
            self.jar[("cf_clearance", ".hsreplay.net")] = {
                "name": "cf_clearance",
                "value": "cleared",
                "domain": ".hsreplay.net",
                "path": "/",
                "expires": self.launcher.clearance_expires or -1,
            }

    async def is_responsive(self) -> bool:
        if self.hang_probe:
            await asyncio.Event().wait()
        return self.responsive and not self.closed

    async def cookies(self) -> list[Cookie]:
        return [dict(cookie) for cookie in self.jar.values()]

    async def add_cookies(self, cookies: list[Cookie]) -> None:
        for cookie in cookies:
            self.jar[(cookie["name"], cookie["domain"])] = dict(cookie)

    async def remove_cookie(self, name: str, domain: str) -> None:
        self.jar.pop((name, domain), None)

    async def set_identity(self, name: str, value: str | None, domain: str) -> None:
        if value is None:
            self.jar.pop((name, domain), None)
            return
        self.jar[(name, domain)] = {"name": name, "value": value, "domain": domain, "path": "/"}

    async def has_challenge_markers(self) -> bool:
        return self.launcher.mode == "challenge"

    async def fetch(self, url: str, timeout: float) -> GatewayResponse:
        if self.closed:
            raise BrowserUnavailableError("browser closed")
        if self.hang_fetch:
            await asyncio.Event().wait()
        identity = self.identity()
        # Give other tasks the chance to interleave with the request
        for _ in range(3):
            await asyncio.sleep(0)
        self.launcher.requests.append((url, identity))

        queued = self.launcher.routes.get(url)
        if queued:
            status, body = queued.pop(0)
            return GatewayResponse(status=status, body=body)
        return GatewayResponse(status=200, body={"identity": identity, "url": url})

    async def close(self) -> None:
        self.closed = True


class FakeLauncher(BrowserLauncher):
    """Launcher counting launches and handing out FakeBrowser instances.

    Args:
        mode: "cookie" sets a clearance cookie when the origin is opened,
            "open" shows a page without challenge markers, "challenge"
            never clears
        clearance_expires: Unix expiry of the clearance cookie (-1 = session)
    """

    identity_cookie = "sessionid"

    def __init__(self, mode: str = "cookie", clearance_expires: float | None = None) -> None:
        self.mode = mode
        self.clearance_expires = clearance_expires
        self.launches = 0
        self.fail = False
        self.browsers: list[FakeBrowser] = []
        self.requests: list[tuple[str, str | None]] = []
        self.routes: dict[str, list[tuple[int, Any]]] = {}

    @property
    def current(self) -> FakeBrowser:
        return self.browsers[-1]

    def add_route(self, url: str, *answers: tuple[int, Any]) -> None:
        self.routes.setdefault(url, []).extend(answers)

    async def launch(self) -> BrowserSession:
        await asyncio.sleep(0)
        if self.fail:
            raise BrowserUnavailableError("launch failed")
        self.launches += 1
        browser = FakeBrowser(self)
        self.browsers.append(browser)
        return browser
