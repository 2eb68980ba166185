"""Browser session gateway for the challenge-protected collection service."""

from hearth_fetch.gateway.browser import BrowserLauncher, BrowserSession, PlaywrightLauncher
from hearth_fetch.gateway.session import SessionGateway
from hearth_fetch.gateway.state import ClearanceState, GatewayResponse, GatewayStatus

__all__ = [
    "BrowserLauncher",
    "BrowserSession",
    "PlaywrightLauncher",
    "SessionGateway",
    "ClearanceState",
    "GatewayResponse",
    "GatewayStatus",
]
