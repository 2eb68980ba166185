#!/usr/bin/env python3
"""Example: Syncing a Collection from HSReplay

This example demonstrates how to fetch a user's linked Blizzard account,
card collection and the current card statistics through the session
gateway, which keeps a headless browser past the Cloudflare challenge.

To run:
    playwright install chromium
    export HSREPLAY_SESSION_ID="your_sessionid_cookie"
    python main.py
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from hearth_fetch import GatewayConfig, HSReplayClient, SessionGateway, UpstreamRejectedError


async def main() -> None:
    session_id = os.getenv("HSREPLAY_SESSION_ID", "")
    if not session_id:
        print("Please set the HSREPLAY_SESSION_ID environment variable")
        sys.exit(1)

    # Set headless=False to watch the challenge being solved
    config = GatewayConfig(headless=True, solve_timeout=90.0)

    async with SessionGateway(config) as gateway:
        if not await gateway.ensure_ready():
            print("Could not get past the HSReplay challenge")
            sys.exit(1)

        status = gateway.get_status()
        print(f"Clearance valid for {status.expires_in_seconds}s\n")

        client = HSReplayClient(gateway)
        try:
            account = await client.fetch_account(session_id)
        except UpstreamRejectedError:
            print("The session cookie is invalid or expired")
            sys.exit(1)

        print(f"Account: {account.battletag} (region {account.region})")

        collection = await client.fetch_collection(session_id, account)
        cards = collection.get("collection") or {}
        print(f"Collection: {len(cards)} cards, {collection.get('dust', 0)} dust\n")

        # Card statistics are public and fetched without a session cookie
        stats = await client.fetch_card_stats()
        top = sorted(stats.values(), key=lambda s: s.popularity, reverse=True)[:10]
        print("Most played cards:")
        for i, stat in enumerate(top, 1):
            owned = "owned" if str(stat.dbf_id) in cards else "missing"
            print(
                f"{i}. dbf {stat.dbf_id} ({stat.card_class}): "
                f"{stat.popularity:.1f}% played, {stat.winrate:.1f}% winrate, {owned}"
            )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    asyncio.run(main())
