"""
hearth-fetch: resilient data acquisition for a Hearthstone collection tracker.

This library fetches collection data from HSReplay through a browser that
keeps anti-bot clearance, and fills a local card art cache from the art
hosts without getting throttled.

Example usage:
    from hearth_fetch import AssetOrchestrator, HSReplayClient, SessionGateway

    async with SessionGateway() as gateway:
        client = HSReplayClient(gateway)
        collection = await client.fetch_collection(session_id)

    async with AssetOrchestrator() as orchestrator:
        report = await orchestrator.run_prioritized_sweep(catalog)
        print(report.fetched, report.not_found)
"""

from hearth_fetch.art.catalog import CatalogCard, SweepCatalog, SweepPhase, build_default_phases
from hearth_fetch.art.orchestrator import (
    AssetOrchestrator,
    BatchResult,
    FetchTask,
    SweepProgress,
    SweepReport,
)
from hearth_fetch.art.sources import ArtVariant, art_url
from hearth_fetch.cache.disk import CacheStats, DiskCache, EntryState, cache_key
from hearth_fetch.core.config import (
    AcquisitionConfig,
    GatewayConfig,
    OrchestratorConfig,
    PhaseConfig,
)
from hearth_fetch.core.exceptions import (
    AcquisitionError,
    AssetNotFoundError,
    BrowserUnavailableError,
    CacheError,
    ChallengeTimeoutError,
    InvalidConfigurationError,
    RateLimitedError,
    TransientFailureError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from hearth_fetch.core.retry import Outcome, RetryPolicy, classify_status
from hearth_fetch.gateway.session import SessionGateway
from hearth_fetch.gateway.state import GatewayResponse, GatewayStatus
from hearth_fetch.sources.hsreplay import GameType, HSReplayClient

__version__ = "1.0.0"

__all__ = [
    # Config
    "AcquisitionConfig",
    "GatewayConfig",
    "OrchestratorConfig",
    "PhaseConfig",
    # Gateway
    "SessionGateway",
    "GatewayResponse",
    "GatewayStatus",
    "HSReplayClient",
    "GameType",
    # Card art
    "AssetOrchestrator",
    "ArtVariant",
    "BatchResult",
    "CatalogCard",
    "FetchTask",
    "SweepCatalog",
    "SweepPhase",
    "SweepProgress",
    "SweepReport",
    "art_url",
    "build_default_phases",
    # Cache
    "CacheStats",
    "DiskCache",
    "EntryState",
    "cache_key",
    # Retry
    "Outcome",
    "RetryPolicy",
    "classify_status",
    # Exceptions
    "AcquisitionError",
    "AssetNotFoundError",
    "BrowserUnavailableError",
    "CacheError",
    "ChallengeTimeoutError",
    "InvalidConfigurationError",
    "RateLimitedError",
    "TransientFailureError",
    "UpstreamRejectedError",
    "UpstreamUnavailableError",
]
