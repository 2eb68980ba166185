"""Configuration classes for the hearth-fetch library."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from hearth_fetch.core.exceptions import InvalidConfigurationError
from hearth_fetch.core.retry import RetryPolicy

CHROME_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-translate",
    "--no-first-run",
    "--js-flags=--max-old-space-size=128",
]


def _get_default_cache_dir() -> Path:
    """Get the default card art cache directory."""
    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        cache_dir = Path(xdg_cache) / "hearth-fetch" / "card-art"
    elif os.name == "nt":
        cache_dir = Path(os.environ.get("LOCALAPPDATA", "~")) / "hearth-fetch" / "card-art"
    else:
        cache_dir = Path.home() / ".cache" / "hearth-fetch" / "card-art"
    return cache_dir.expanduser()


@dataclass
class GatewayConfig:
    """Configuration for the browser session gateway.

    Attributes:
        origin: Origin of the protected service, navigated to when solving
        cookie_domain: Domain used for the identity cookie
        identity_cookie: Name of the per-user session cookie
        clearance_cookie: Name of the anti-bot clearance cookie
        headless: Whether to run the browser headless
        user_agent: User agent presented by the browser
        launch_args: Extra Chromium command line flags
        solve_timeout: Hard limit in seconds for one challenge solve
        poll_interval: Seconds between clearance checks while solving
        navigation_timeout: Hard limit in seconds for loading the origin
        fetch_timeout: Hard limit in seconds for one in-page fetch
        health_probe_timeout: Seconds the browser gets to answer a health probe
        idle_timeout: Seconds of inactivity before the browser is closed
        renewal_margin: Seconds before clearance expiry at which it is renewed
        default_clearance_window: Assumed clearance lifetime when the cookie has no expiry
        recycle_after: Relaunch the browser after this many fetches (0 = never)
    """

    origin: str = "https://hsreplay.net"
    cookie_domain: str = ".hsreplay.net"
    identity_cookie: str = "sessionid"
    clearance_cookie: str = "cf_clearance"
    headless: bool = True
    user_agent: str = CHROME_USER_AGENT
    launch_args: list[str] = field(default_factory=lambda: list(DEFAULT_LAUNCH_ARGS))
    solve_timeout: float = 60.0
    poll_interval: float = 1.0
    navigation_timeout: float = 60.0
    fetch_timeout: float = 60.0
    health_probe_timeout: float = 5.0
    idle_timeout: float = 300.0  # 5 minutes
    renewal_margin: float = 300.0  # 5 minutes
    default_clearance_window: float = 1800.0  # 30 minutes
    recycle_after: int = 500

    def validate(self) -> None:
        """Raise InvalidConfigurationError for unusable values."""
        for name in (
            "solve_timeout",
            "poll_interval",
            "navigation_timeout",
            "fetch_timeout",
            "health_probe_timeout",
            "idle_timeout",
            "default_clearance_window",
        ):
            if getattr(self, name) <= 0:
                raise InvalidConfigurationError(f"gateway.{name} must be positive")
        if self.renewal_margin < 0:
            raise InvalidConfigurationError("gateway.renewal_margin must not be negative")
        if self.recycle_after < 0:
            raise InvalidConfigurationError("gateway.recycle_after must not be negative")


@dataclass
class PhaseConfig:
    """Tuning for one class of sweep phases.

    Attributes:
        concurrency: Number of concurrent workers
        delay: Seconds each worker waits after a request
        rounds: Number of batch rounds before unresolved tasks are dropped
    """

    concurrency: int = 3
    delay: float = 0.5
    rounds: int = 3


@dataclass
class OrchestratorConfig:
    """Configuration for the card art orchestrator.

    Attributes:
        cache_dir: Directory for the art cache. None uses the default
            (~/.cache/hearth-fetch/card-art)
        timeout: Request timeout in seconds for on-demand and batch fetches
        retry_timeout: Request timeout in seconds for background retries
        default_retry_after: Retry hint assumed for a failed response without one
        network_retry_after: Retry hint assumed after a network error or timeout
        rate_limit_pause: Pause applied to a whole batch on a 429 without a hint
        fetch_retry: Background retry policy for fetch_one
        round_backoff: Backoff between sweep rounds of one phase
        normal_phase: Tuning for normal-art phases
        golden_phase: Tuning for golden-art phases
        premium_phase: Tuning for signature and diamond phases
        refresh_phase: Tuning for re-fetching changed cards
        retry_concurrency: Worker count used for retry rounds
        retry_delay_factor: Multiplier applied to the phase delay on retry rounds
        user_agent: User agent string for art requests
    """

    cache_dir: Path | None = None
    timeout: float = 8.0
    retry_timeout: float = 12.0
    default_retry_after: float = 30.0
    network_retry_after: float = 5.0
    rate_limit_pause: float = 60.0
    fetch_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(
            max_attempts=5, base_delay=3.0, multiplier=3.0, max_delay=30.0
        )
    )
    round_backoff: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=5, base_delay=15.0, multiplier=2.0)
    )
    normal_phase: PhaseConfig = field(
        default_factory=lambda: PhaseConfig(concurrency=10, delay=0.05, rounds=1)
    )
    golden_phase: PhaseConfig = field(
        default_factory=lambda: PhaseConfig(concurrency=3, delay=0.5, rounds=5)
    )
    premium_phase: PhaseConfig = field(
        default_factory=lambda: PhaseConfig(concurrency=3, delay=0.5, rounds=3)
    )
    refresh_phase: PhaseConfig = field(
        default_factory=lambda: PhaseConfig(concurrency=3, delay=0.5, rounds=1)
    )
    retry_concurrency: int = 2
    retry_delay_factor: float = 2.0
    user_agent: str = "hearth-fetch/1.0"

    def get_cache_dir(self) -> Path:
        """Get the resolved cache directory path."""
        if self.cache_dir is not None:
            return Path(self.cache_dir)
        return _get_default_cache_dir()

    def validate(self) -> None:
        """Raise InvalidConfigurationError for unusable values."""
        if self.timeout <= 0 or self.retry_timeout <= 0:
            raise InvalidConfigurationError("orchestrator timeouts must be positive")
        if self.retry_concurrency < 1:
            raise InvalidConfigurationError("orchestrator.retry_concurrency must be >= 1")
        for name in ("normal_phase", "golden_phase", "premium_phase", "refresh_phase"):
            phase: PhaseConfig = getattr(self, name)
            if phase.concurrency < 1:
                raise InvalidConfigurationError(f"orchestrator.{name}.concurrency must be >= 1")
            if phase.rounds < 1:
                raise InvalidConfigurationError(f"orchestrator.{name}.rounds must be >= 1")
            if phase.delay < 0:
                raise InvalidConfigurationError(f"orchestrator.{name}.delay must not be negative")


def _orchestrator_from_dict(data: dict[str, Any]) -> OrchestratorConfig:
    """Build an OrchestratorConfig, converting nested dictionaries."""
    values = dict(data)
    for key in ("fetch_retry", "round_backoff"):
        if isinstance(values.get(key), dict):
            values[key] = RetryPolicy(**values[key])
    for key in ("normal_phase", "golden_phase", "premium_phase", "refresh_phase"):
        if isinstance(values.get(key), dict):
            values[key] = PhaseConfig(**values[key])
    if values.get("cache_dir") is not None:
        values["cache_dir"] = Path(values["cache_dir"])
    return OrchestratorConfig(**values)


@dataclass
class AcquisitionConfig:
    """Root configuration bundling the gateway and the orchestrator.

    Attributes:
        gateway: Session gateway configuration
        orchestrator: Card art orchestrator configuration
        poll_policy: Policy for polling "query still processing" (202) answers
    """

    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    poll_policy: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=12, base_delay=10.0, multiplier=1.0)
    )

    def validate(self) -> None:
        self.gateway.validate()
        self.orchestrator.validate()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AcquisitionConfig:
        """Create an AcquisitionConfig from a dictionary."""
        kwargs: dict[str, Any] = {}

        try:
            if "gateway" in data:
                kwargs["gateway"] = GatewayConfig(**data["gateway"])
            if "orchestrator" in data:
                kwargs["orchestrator"] = _orchestrator_from_dict(data["orchestrator"])
            if isinstance(data.get("poll_policy"), dict):
                kwargs["poll_policy"] = RetryPolicy(**data["poll_policy"])
            config = cls(**kwargs)
        except TypeError as e:
            raise InvalidConfigurationError(str(e)) from e
        config.validate()
        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert the configuration to a dictionary."""
        data = asdict(self)
        cache_dir = data["orchestrator"]["cache_dir"]
        if cache_dir is not None:
            data["orchestrator"]["cache_dir"] = str(cache_dir)
        return data
