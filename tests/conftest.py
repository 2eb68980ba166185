"""Pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from hearth_fetch import DiskCache, GatewayConfig, OrchestratorConfig, PhaseConfig, RetryPolicy
from hearth_fetch.gateway.session import SessionGateway
from tests.helpers import FakeLauncher, ManualClock


@pytest.fixture
def clock() -> ManualClock:
    """Create a manually driven clock."""
    return ManualClock()


@pytest.fixture
def cache(tmp_path) -> DiskCache:
    """Create a disk cache in a temporary directory."""
    return DiskCache(tmp_path / "card-art")


@pytest.fixture
def orchestrator_config(tmp_path) -> OrchestratorConfig:
    """Create an orchestrator configuration with fast test tuning."""
    return OrchestratorConfig(
        cache_dir=tmp_path / "card-art",
        default_retry_after=30.0,
        rate_limit_pause=60.0,
        fetch_retry=RetryPolicy(max_attempts=3, base_delay=3.0, multiplier=3.0),
        round_backoff=RetryPolicy(max_attempts=3, base_delay=15.0, multiplier=2.0),
        normal_phase=PhaseConfig(concurrency=4, delay=0.0, rounds=1),
        golden_phase=PhaseConfig(concurrency=2, delay=0.0, rounds=3),
        premium_phase=PhaseConfig(concurrency=2, delay=0.0, rounds=2),
        refresh_phase=PhaseConfig(concurrency=2, delay=0.0, rounds=1),
    )


@pytest.fixture
def gateway_config() -> GatewayConfig:
    """Create a gateway configuration with default timings."""
    return GatewayConfig(recycle_after=0)


@pytest.fixture
def launcher() -> FakeLauncher:
    """Create a fake browser launcher that clears with a session cookie."""
    return FakeLauncher(mode="cookie")


@pytest.fixture
async def gateway(gateway_config, launcher, clock):
    """Create a session gateway over the fake browser."""
    async with SessionGateway(gateway_config, launcher=launcher, clock=clock) as gateway:
        yield gateway
