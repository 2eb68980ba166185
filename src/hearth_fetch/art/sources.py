"""Card art variants and the hosts that serve them."""

from __future__ import annotations

from enum import StrEnum
from typing import Final


class ArtVariant(StrEnum):
    """Card art variants kept in the cache."""

    NORMAL = "normal"
    NORMAL_LARGE = "normal-lg"
    GOLDEN = "golden"
    SIGNATURE = "signature"
    DIAMOND = "diamond"


ART_SOURCES: Final[dict[ArtVariant, str]] = {
    ArtVariant.NORMAL: "https://art.hearthstonejson.com/v1/render/latest/enUS/256x/{card_id}.png",
    ArtVariant.NORMAL_LARGE: "https://art.hearthstonejson.com/v1/render/latest/enUS/512x/{card_id}.png",
    ArtVariant.GOLDEN: "https://hearthstone.wiki.gg/images/{card_id}_Premium1.png",
    ArtVariant.SIGNATURE: "https://hearthstone.wiki.gg/images/{card_id}_Premium3.png",
    ArtVariant.DIAMOND: "https://hearthstone.wiki.gg/images/{card_id}_Premium2.png",
}


def art_url(card_id: str, variant: ArtVariant | str) -> str:
    """Get the upstream URL for a card art variant.

    Args:
        card_id: Card id (e.g., "EX1_001")
        variant: Art variant

    Returns:
        Source URL

    Raises:
        ValueError: If the variant is unknown
    """
    return ART_SOURCES[ArtVariant(variant)].format(card_id=card_id)
