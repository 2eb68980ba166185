"""Core functionality for hearth-fetch."""

from hearth_fetch.core.clock import Clock, ScheduledTask, SystemClock
from hearth_fetch.core.config import (
    AcquisitionConfig,
    GatewayConfig,
    OrchestratorConfig,
    PhaseConfig,
)
from hearth_fetch.core.exceptions import AcquisitionError
from hearth_fetch.core.retry import Outcome, RetryPolicy, classify_status, parse_retry_after

__all__ = [
    "AcquisitionConfig",
    "GatewayConfig",
    "OrchestratorConfig",
    "PhaseConfig",
    "AcquisitionError",
    "Clock",
    "ScheduledTask",
    "SystemClock",
    "Outcome",
    "RetryPolicy",
    "classify_status",
    "parse_retry_after",
]
