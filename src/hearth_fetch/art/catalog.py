"""Sweep catalog, collection ownership and the default phase plan."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from hearth_fetch.art.sources import ArtVariant
from hearth_fetch.core.config import OrchestratorConfig, PhaseConfig

LEGENDARY = "LEGENDARY"

# Collection count slots: [normal, golden, diamond, signature]
_NORMAL, _GOLDEN, _DIAMOND, _SIGNATURE = range(4)


@dataclass(frozen=True)
class CatalogCard:
    """A collectible card as the sweep needs it.

    Attributes:
        id: Card id used in art URLs (e.g., "EX1_001")
        dbf_id: Numeric id used by collection data
        card_set: Set code
        rarity: Rarity code (e.g., "LEGENDARY")
    """

    id: str
    dbf_id: int
    card_set: str = ""
    rarity: str = ""


@dataclass
class SweepCatalog:
    """Cards to sweep plus what the users own.

    Attributes:
        cards: All collectible cards
        owned: Card ids owned in any variant
        owned_diamond: Card ids owned in diamond
        owned_signature: Card ids owned in signature
        signature_sets: Set codes that have signature art
    """

    cards: list[CatalogCard] = field(default_factory=list)
    owned: set[str] = field(default_factory=set)
    owned_diamond: set[str] = field(default_factory=set)
    owned_signature: set[str] = field(default_factory=set)
    signature_sets: frozenset[str] = frozenset()

    @classmethod
    def from_collections(
        cls,
        cards: Iterable[CatalogCard],
        collections: Iterable[Mapping[str, Sequence[int]]],
        signature_sets: Iterable[str] = (),
    ) -> SweepCatalog:
        """Build a catalog from per-user collections.

        Collections map a dbf id (as a string) to counts
        ``[normal, golden, diamond, signature]``; several users are merged
        by taking the highest count per slot.

        Args:
            cards: All collectible cards
            collections: One mapping per user
            signature_sets: Set codes that have signature art

        Returns:
            SweepCatalog with ownership resolved to card ids
        """
        merged: dict[str, list[int]] = {}
        for collection in collections:
            for dbf_id, counts in collection.items():
                current = merged.setdefault(str(dbf_id), [0, 0, 0, 0])
                for i, count in enumerate(list(counts)[:4]):
                    current[i] = max(current[i], count or 0)

        catalog = cls(cards=list(cards), signature_sets=frozenset(signature_sets))
        for card in catalog.cards:
            counts = merged.get(str(card.dbf_id))
            if not counts:
                continue
            if sum(counts) > 0:
                catalog.owned.add(card.id)
            if counts[_DIAMOND] > 0:
                catalog.owned_diamond.add(card.id)
            if counts[_SIGNATURE] > 0:
                catalog.owned_signature.add(card.id)
        return catalog

    def has_signature_art(self, card: CatalogCard) -> bool:
        return card.card_set in self.signature_sets

    def has_diamond_art(self, card: CatalogCard) -> bool:
        return card.rarity == LEGENDARY

    def supports(self, card: CatalogCard, variant: ArtVariant) -> bool:
        """Whether art for the variant can exist for the card at all."""
        if variant is ArtVariant.SIGNATURE:
            return self.has_signature_art(card)
        if variant is ArtVariant.DIAMOND:
            return self.has_diamond_art(card)
        return True


@dataclass
class SweepPhase:
    """One ordered pass of a prioritized sweep.

    Attributes:
        label: Name used for progress and logs
        variant: Art variant fetched by this phase
        concurrency: Number of concurrent workers
        delay: Seconds each worker waits after a request
        rounds: Number of batch rounds before unresolved tasks are dropped
        select: Predicate choosing the cards of this phase
    """

    label: str
    variant: ArtVariant
    concurrency: int
    delay: float
    rounds: int
    select: Callable[[CatalogCard], bool]

    @classmethod
    def tuned(
        cls,
        label: str,
        variant: ArtVariant,
        tuning: PhaseConfig,
        select: Callable[[CatalogCard], bool],
    ) -> SweepPhase:
        return cls(
            label=label,
            variant=variant,
            concurrency=tuning.concurrency,
            delay=tuning.delay,
            rounds=tuning.rounds,
            select=select,
        )

    def eligible(self, catalog: SweepCatalog) -> list[CatalogCard]:
        return [card for card in catalog.cards if self.select(card)]


def build_default_phases(catalog: SweepCatalog, config: OrchestratorConfig) -> list[SweepPhase]:
    """Build the default sweep order.

    Premium art the users own comes first, then every other variant of owned
    cards, then unowned cards.

    Args:
        catalog: Cards and ownership
        config: Orchestrator configuration with per-class phase tuning

    Returns:
        Ordered list of phases
    """

    def is_owned(card: CatalogCard) -> bool:
        return card.id in catalog.owned

    def is_unowned(card: CatalogCard) -> bool:
        return card.id not in catalog.owned

    normal = config.normal_phase
    golden = config.golden_phase
    premium = config.premium_phase

    return [
        SweepPhase.tuned(
            "owned-diamond",
            ArtVariant.DIAMOND,
            premium,
            lambda c: c.id in catalog.owned_diamond,
        ),
        SweepPhase.tuned(
            "owned-signature",
            ArtVariant.SIGNATURE,
            premium,
            lambda c: c.id in catalog.owned_signature,
        ),
        SweepPhase.tuned("owned-normal", ArtVariant.NORMAL, normal, is_owned),
        SweepPhase.tuned("owned-golden", ArtVariant.GOLDEN, golden, is_owned),
        SweepPhase.tuned(
            "owned-signature-eligible",
            ArtVariant.SIGNATURE,
            premium,
            lambda c: is_owned(c)
            and c.id not in catalog.owned_signature
            and catalog.has_signature_art(c),
        ),
        SweepPhase.tuned(
            "owned-diamond-eligible",
            ArtVariant.DIAMOND,
            premium,
            lambda c: is_owned(c)
            and c.id not in catalog.owned_diamond
            and catalog.has_diamond_art(c),
        ),
        SweepPhase.tuned("unowned-normal", ArtVariant.NORMAL, normal, is_unowned),
        SweepPhase.tuned("unowned-golden", ArtVariant.GOLDEN, golden, is_unowned),
        SweepPhase.tuned(
            "unowned-signature",
            ArtVariant.SIGNATURE,
            premium,
            lambda c: is_unowned(c) and catalog.has_signature_art(c),
        ),
        SweepPhase.tuned(
            "unowned-diamond",
            ArtVariant.DIAMOND,
            premium,
            lambda c: is_unowned(c) and catalog.has_diamond_art(c),
        ),
    ]
