"""Clearance state and the values the gateway hands to callers."""

from __future__ import annotations

from dataclasses import dataclass

from hearth_fetch.core.retry import Outcome, classify_status


@dataclass
class ClearanceState:
    """Anti-bot clearance held by the browser.

    Attributes:
        ready: Whether a clearance was obtained since the last reset
        issued_at: Unix timestamp of the solve that produced it
        expires_at: Unix timestamp after which the clearance is stale
    """

    ready: bool = False
    issued_at: float = 0.0
    expires_at: float = 0.0

    def is_valid(self, now: float, margin: float = 0.0) -> bool:
        """True when ready and not expiring within ``margin`` seconds."""
        return self.ready and now < self.expires_at - margin

    def expires_in(self, now: float) -> float:
        if not self.ready:
            return 0.0
        return max(0.0, self.expires_at - now)

    def reset(self) -> None:
        self.ready = False
        self.issued_at = 0.0
        self.expires_at = 0.0


@dataclass
class GatewayStatus:
    """Read-only view of the clearance for status endpoints."""

    valid: bool
    expires_in_seconds: int


@dataclass
class GatewayResponse:
    """Raw answer of an in-page fetch.

    Attributes:
        status: HTTP status code
        body: Parsed JSON body when the answer was JSON, else the raw text
        retry_after: Retry-After header value in seconds, when present
    """

    status: int
    body: object = None
    retry_after: float | None = None

    @property
    def outcome(self) -> Outcome:
        return classify_status(self.status)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300
