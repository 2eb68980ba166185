#!/usr/bin/env python3
"""Example: Sweeping Card Art into the Local Cache

This example demonstrates how to run a prioritized art sweep over a card
list. Owned cards are fetched first; cards without art are remembered as
misses so later sweeps skip them.

The card list is the HearthstoneJSON collectible export:
    https://api.hearthstonejson.com/v1/latest/enUS/cards.collectible.json

To run:
    python main.py cards.collectible.json [collection.json ...]
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

from hearth_fetch import AssetOrchestrator, CatalogCard, OrchestratorConfig, SweepCatalog

# Sets released with signature art
SIGNATURE_SETS = {"TITANS", "WONDERS", "WHIZBANGS_WORKSHOP", "ISLAND_VACATION", "SPACE"}


def load_cards(path: Path) -> list[CatalogCard]:
    data = json.loads(path.read_text())
    return [
        CatalogCard(
            id=card["id"],
            dbf_id=card["dbfId"],
            card_set=card.get("set", ""),
            rarity=card.get("rarity", ""),
        )
        for card in data
        if card.get("type") != "HERO"
    ]


async def main() -> None:
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    cards = load_cards(Path(sys.argv[1]))
    # Collections as saved from HSReplayClient.fetch_collection
    collections = [
        json.loads(Path(arg).read_text()).get("collection") or {} for arg in sys.argv[2:]
    ]
    catalog = SweepCatalog.from_collections(cards, collections, signature_sets=SIGNATURE_SETS)
    print(f"{len(catalog.cards)} cards, {len(catalog.owned)} owned\n")

    config = OrchestratorConfig(cache_dir=Path("card-art"))

    async with AssetOrchestrator(config) as orchestrator:
        report = await orchestrator.run_prioritized_sweep(catalog)

        print("Phases:")
        for phase in report.phases:
            print(
                f"  {phase.label}: {phase.eligible} eligible, {phase.cached} cached, "
                f"{phase.fetched} fetched, {phase.not_found} without art, "
                f"{phase.dropped} dropped"
            )

        stats = await orchestrator.cache_stats()
        print(f"\nCache: {stats.cached} files, {stats.missed} misses in {stats.cache_dir}")
        for variant, counts in sorted(stats.variants.items()):
            print(f"  {variant}: {counts.cached} cached, {counts.missed} missed")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    asyncio.run(main())
