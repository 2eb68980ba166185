"""Card art acquisition."""

from hearth_fetch.art.catalog import CatalogCard, SweepCatalog, SweepPhase, build_default_phases
from hearth_fetch.art.orchestrator import AssetOrchestrator, BatchResult, FetchTask
from hearth_fetch.art.sources import ArtVariant, art_url

__all__ = [
    "AssetOrchestrator",
    "ArtVariant",
    "BatchResult",
    "CatalogCard",
    "FetchTask",
    "SweepCatalog",
    "SweepPhase",
    "art_url",
    "build_default_phases",
]
