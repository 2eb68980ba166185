"""HSReplay JSON endpoints fetched through the session gateway."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx

from hearth_fetch.core.clock import Clock, SystemClock
from hearth_fetch.core.exceptions import (
    AcquisitionError,
    AssetNotFoundError,
    RateLimitedError,
    TransientFailureError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from hearth_fetch.core.retry import Outcome, RetryPolicy
from hearth_fetch.gateway.session import SessionGateway
from hearth_fetch.gateway.state import GatewayResponse

logger = logging.getLogger(__name__)

HSREPLAY_BASE_URL = "https://hsreplay.net"
ACCOUNT_URL = f"{HSREPLAY_BASE_URL}/api/v1/account/"
COLLECTION_URL = f"{HSREPLAY_BASE_URL}/api/v1/collection/"
CARD_LIST_URL = f"{HSREPLAY_BASE_URL}/analytics/query/card_list_free/"


class GameType(StrEnum):
    """Ranked formats with published card statistics."""

    RANKED_STANDARD = "RANKED_STANDARD"
    RANKED_WILD = "RANKED_WILD"


@dataclass
class BlizzardAccount:
    """Blizzard account linked to an HSReplay user."""

    account_lo: str
    battletag: str
    region: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BlizzardAccount:
        account_lo = str(data.get("account_lo") or "")
        return cls(
            account_lo=account_lo,
            battletag=data.get("battletag") or f"Player#{account_lo}",
            region=int(data.get("region") or 0),
        )


@dataclass
class CardStat:
    """Play statistics of one card in one format.

    Attributes:
        dbf_id: Numeric card id
        popularity: Share of decks including the card (percent)
        winrate: Winrate of decks including the card (percent)
        decks: Number of times played
        card_class: Class the statistics were reported under
    """

    dbf_id: int
    popularity: float
    winrate: float
    decks: int
    card_class: str


def parse_card_stats(data: Any) -> dict[int, CardStat]:
    """Flatten a card_list_free answer into one entry per card.

    Cards reported under several classes keep the most popular entry.
    """
    if not isinstance(data, dict):
        return {}
    series = (data.get("series") or {}).get("data")
    if not isinstance(series, dict):
        return {}

    stats: dict[int, CardStat] = {}
    for card_class, cards in series.items():
        if not isinstance(cards, list):
            continue
        for card in cards:
            dbf_id = int(card["dbf_id"])
            popularity = float(card.get("included_popularity") or 0)
            existing = stats.get(dbf_id)
            if existing is not None and existing.popularity >= popularity:
                continue
            stats[dbf_id] = CardStat(
                dbf_id=dbf_id,
                popularity=popularity,
                winrate=float(card.get("included_winrate") or 0),
                decks=int(card.get("times_played") or 0),
                card_class=card_class,
            )
    return stats


class HSReplayClient:
    """Client for the HSReplay account, collection and statistics endpoints.

    Example:
        async with SessionGateway() as gateway:
            client = HSReplayClient(gateway)
            account = await client.fetch_account(session_id)
            collection = await client.fetch_collection(session_id, account)
    """

    def __init__(
        self,
        gateway: SessionGateway,
        poll_policy: RetryPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            gateway: Session gateway performing the requests
            poll_policy: Policy for polling answers that are still processing
            clock: Clock for the waits between polls (system clock if None)
        """
        self.gateway = gateway
        self.poll_policy = poll_policy or RetryPolicy(
            max_attempts=12, base_delay=10.0, multiplier=1.0
        )
        self._clock = clock or SystemClock()

    async def fetch_json(
        self,
        identity: str | None,
        url: str,
        retry_rejected: bool = False,
    ) -> Any:
        """Fetch a JSON document, polling while the server is still computing it.

        Args:
            identity: Session cookie value, or None for anonymous requests
            url: Endpoint URL
            retry_rejected: Invalidate the gateway clearance and try once more
                when the first answer is 401/403

        Returns:
            Decoded JSON body

        Raises:
            UpstreamRejectedError: On 401/403
            AssetNotFoundError: On 404
            RateLimitedError: On 429 after the poll attempts are used up
            UpstreamUnavailableError: On 5xx, network errors or endless 202s
            TransientFailureError: On any other status or a non-JSON body
        """
        response = await self._poll(identity, url)
        if response.outcome is Outcome.REJECTED and retry_rejected:
            logger.info("HTTP %d for %s, re-solving the challenge", response.status, url)
            self.gateway.invalidate()
            response = await self._poll(identity, url)
        return self._unwrap(url, response)

    async def _poll(self, identity: str | None, url: str) -> GatewayResponse:
        async def attempt() -> GatewayResponse:
            response = await self.gateway.fetch_as(identity, url)
            if response.outcome is Outcome.PENDING:
                logger.info("HSReplay query processing: %s", url)
            return response

        result = await self.poll_policy.run(attempt, clock=self._clock, label=url)
        if result is None:
            raise UpstreamUnavailableError(url, details="no attempts configured")
        return result

    def _unwrap(self, url: str, response: GatewayResponse) -> Any:
        outcome = response.outcome
        if outcome is Outcome.SUCCESS:
            if isinstance(response.body, str):
                raise TransientFailureError(url, response.status)
            return response.body
        if outcome is Outcome.PENDING:
            raise UpstreamUnavailableError(url, response.status, "query still processing")
        if outcome is Outcome.NOT_FOUND:
            raise AssetNotFoundError(url)
        if outcome is Outcome.REJECTED:
            raise UpstreamRejectedError(url, response.status)
        if outcome is Outcome.RATE_LIMITED:
            raise RateLimitedError(url, response.retry_after)
        if outcome is Outcome.UNAVAILABLE:
            raise UpstreamUnavailableError(url, response.status or None)
        raise TransientFailureError(url, response.status)

    async def fetch_account(self, identity: str) -> BlizzardAccount:
        """Get the first Blizzard account linked to the session.

        Raises:
            UpstreamRejectedError: If the session cookie is invalid or expired
            AcquisitionError: If no Blizzard account is linked
        """
        data = await self.fetch_json(identity, ACCOUNT_URL)
        accounts = data.get("blizzard_accounts") if isinstance(data, dict) else None
        if not accounts:
            raise AcquisitionError("No Blizzard account linked to HSReplay", ACCOUNT_URL)
        return BlizzardAccount.from_dict(accounts[0])

    async def fetch_collection(
        self, identity: str, account: BlizzardAccount | None = None
    ) -> dict[str, Any]:
        """Get the card collection of a user.

        Args:
            identity: Session cookie value
            account: Linked account (looked up first if None)

        Returns:
            Collection document; ``collection`` maps dbf ids to counts
        """
        if account is None:
            account = await self.fetch_account(identity)

        params: dict[str, str] = {}
        if account.account_lo:
            params["account_lo"] = account.account_lo
        if account.region:
            params["region"] = str(account.region)
        url = str(httpx.URL(COLLECTION_URL, params=params))

        data = await self.fetch_json(identity, url)
        if not isinstance(data, dict):
            raise TransientFailureError(url)
        logger.info(
            "Fetched collection for %s: %d cards",
            account.battletag,
            len(data.get("collection") or {}),
        )
        return data

    async def fetch_card_stats(
        self, game_type: GameType | str = GameType.RANKED_STANDARD
    ) -> dict[int, CardStat]:
        """Get per-card play statistics for the current patch.

        The query is anonymous. A rejection here means the clearance went
        stale, so it is invalidated and the query retried once.
        """
        url = str(
            httpx.URL(
                CARD_LIST_URL,
                params={
                    "GameType": str(GameType(game_type)),
                    "TimeRange": "CURRENT_PATCH",
                    "LeagueRankRange": "BRONZE_THROUGH_GOLD",
                },
            )
        )
        data = await self.fetch_json(None, url, retry_rejected=True)
        stats = parse_card_stats(data)
        logger.info("Card stats for %s: %d cards", game_type, len(stats))
        return stats
