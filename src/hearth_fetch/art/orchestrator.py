"""Concurrency-bounded card art acquisition with cooperative rate limiting."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

import httpx

from hearth_fetch.art.catalog import SweepCatalog, SweepPhase, build_default_phases
from hearth_fetch.art.sources import ArtVariant, art_url
from hearth_fetch.cache.disk import CacheStats, DiskCache, EntryState, cache_key
from hearth_fetch.core.clock import Clock, SystemClock
from hearth_fetch.core.config import OrchestratorConfig
from hearth_fetch.core.retry import Outcome, classify_status, parse_retry_after

logger = logging.getLogger(__name__)

# Variants whose miss markers are cleared when a card changes upstream
REFRESH_VARIANTS = (
    ArtVariant.NORMAL,
    ArtVariant.NORMAL_LARGE,
    ArtVariant.GOLDEN,
    ArtVariant.SIGNATURE,
    ArtVariant.DIAMOND,
)


@dataclass
class FetchTask:
    """One art file to fetch.

    Attributes:
        cache_key: Cache key ({card_id}_{variant})
        url: Upstream URL
        attempts_remaining: Batch rounds this task may still fail transiently
    """

    cache_key: str
    url: str
    attempts_remaining: int = 1


@dataclass
class FetchResult:
    """Outcome of a single request to an art host."""

    status: int
    content: bytes | None = None
    retry_after: float | None = None

    @property
    def outcome(self) -> Outcome:
        # An empty 200 body is a broken answer, not art
        if self.content == b"":
            return Outcome.TRANSIENT
        return classify_status(self.status)


@dataclass
class BatchResult:
    """Aggregate result of run_batch.

    Attributes:
        fetched: Number of tasks stored as hits
        rate_limited: Number of 429 answers absorbed
        not_found: Tasks the host answered 404 for (no markers written)
        failed: Tasks that failed transiently and were left unresolved
    """

    fetched: int = 0
    rate_limited: int = 0
    not_found: list[FetchTask] = field(default_factory=list)
    failed: list[FetchTask] = field(default_factory=list)


@dataclass
class SweepProgress:
    """Progress of the current sweep, for external polling."""

    running: bool = False
    phase: str = ""
    done: int = 0
    total: int = 0


@dataclass
class PhaseReport:
    """Per-phase summary of a sweep."""

    label: str
    eligible: int = 0
    cached: int = 0
    fetched: int = 0
    not_found: int = 0
    rate_limited: int = 0
    dropped: int = 0


@dataclass
class SweepReport:
    """Summary of a prioritized sweep."""

    phases: list[PhaseReport] = field(default_factory=list)

    @property
    def fetched(self) -> int:
        return sum(p.fetched for p in self.phases)

    @property
    def not_found(self) -> int:
        return sum(p.not_found for p in self.phases)


class _PauseWindow:
    """Shared "pause until" timestamp observed by every worker of a batch."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._until = 0.0

    def extend(self, seconds: float) -> None:
        self._until = max(self._until, self._clock.monotonic() + seconds)

    async def wait(self) -> None:
        while (remaining := self._until - self._clock.monotonic()) > 0:
            await self._clock.sleep(remaining)


class AssetOrchestrator:
    """Fills the card art cache from the art hosts.

    Example:
        async with AssetOrchestrator(OrchestratorConfig()) as orchestrator:
            data = await orchestrator.fetch_one(
                "EX1_001_normal", art_url("EX1_001", "normal")
            )
            report = await orchestrator.run_prioritized_sweep(catalog)
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        cache: DiskCache | None = None,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Orchestrator configuration (uses defaults if None)
            cache: Disk cache (created from config.cache_dir if None)
            clock: Clock for delays and pauses (system clock if None)
            transport: Optional httpx transport, mainly for tests
        """
        self.config = config or OrchestratorConfig()
        self.config.validate()
        self.cache = cache or DiskCache(self.config.get_cache_dir())
        self._clock = clock or SystemClock()
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._in_flight: dict[str, asyncio.Future[bytes | None]] = {}
        self._retry_tasks: dict[str, asyncio.Task[None]] = {}
        self._progress = SweepProgress()

    async def __aenter__(self) -> AssetOrchestrator:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def progress(self) -> SweepProgress:
        """Snapshot of the current sweep progress."""
        return replace(self._progress)

    def _count_done(self, count: int = 1) -> None:
        if self._progress.running:
            self._progress.done += count

    @property
    def pending_retries(self) -> int:
        return sum(1 for task in self._retry_tasks.values() if not task.done())

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout),
                follow_redirects=True,
                headers={"User-Agent": self.config.user_agent},
                transport=self._transport,
            )
        return self._http_client

    async def _request(self, url: str, timeout: float | None = None) -> FetchResult:
        """Perform one GET against an art host and classify the answer."""
        client = await self._get_http_client()
        try:
            response = await client.get(url, timeout=timeout or self.config.timeout)
        except httpx.TimeoutException:
            logger.debug("Art request timed out: %s", url)
            return FetchResult(status=0, retry_after=self.config.network_retry_after)
        except httpx.RequestError as e:
            logger.debug("Art request error for %s: %s", url, e)
            return FetchResult(status=0, retry_after=self.config.network_retry_after)

        if response.status_code == 200:
            return FetchResult(status=200, content=response.content)

        logger.debug("HTTP %d for %s", response.status_code, url)
        return FetchResult(
            status=response.status_code,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
        )

    async def _request_with_hint(self, url: str, timeout: float | None = None) -> FetchResult:
        """Like _request, but a failure without a retry hint gets the default one."""
        result = await self._request(url, timeout)
        if result.outcome is not Outcome.SUCCESS and result.retry_after is None:
            result.retry_after = self.config.default_retry_after
        return result

    async def fetch_one(self, key: str, url: str) -> bytes | None:
        """Get art for a key, fetching it on demand.

        Concurrent callers for the same unresolved key share one request.
        A 404 is recorded as a permanent miss; any other failure schedules
        background retries and returns None for this call.

        Args:
            key: Cache key ({card_id}_{variant})
            url: Upstream URL

        Returns:
            Image bytes, or None when absent or not yet available
        """
        state = await self.cache.state(key)
        if state is EntryState.HIT:
            return await self.cache.get(key)
        if state is EntryState.MISS:
            return None

        pending = self._in_flight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_and_store(key, url))
            self._in_flight[key] = pending
            pending.add_done_callback(lambda _: self._in_flight.pop(key, None))
        return await asyncio.shield(pending)

    async def fetch_art(self, card_id: str, variant: ArtVariant | str) -> bytes | None:
        """Convenience wrapper resolving the key and URL for a card variant."""
        variant = ArtVariant(variant)
        return await self.fetch_one(cache_key(card_id, variant), art_url(card_id, variant))

    async def _fetch_and_store(self, key: str, url: str) -> bytes | None:
        result = await self._request_with_hint(url)
        if result.outcome is Outcome.SUCCESS and result.content is not None:
            await self.cache.put_hit(key, result.content)
            return result.content
        if result.outcome is Outcome.NOT_FOUND:
            await self.cache.put_miss(key)
            return None

        self._schedule_retries(key, url, result.retry_after or 0.0)
        return None

    def _schedule_retries(self, key: str, url: str, first_delay: float) -> None:
        existing = self._retry_tasks.get(key)
        if existing is not None and not existing.done():
            return
        task = asyncio.create_task(
            self._retry_in_background(key, url, first_delay),
            name=f"art-retry:{key}",
        )
        self._retry_tasks[key] = task

        def forget(finished: asyncio.Task[None]) -> None:
            if self._retry_tasks.get(key) is finished:
                del self._retry_tasks[key]

        task.add_done_callback(forget)

    async def _retry_in_background(self, key: str, url: str, first_delay: float) -> None:
        async def attempt() -> FetchResult:
            if await self.cache.is_resolved(key):
                return FetchResult(status=200)
            return await self._request_with_hint(url, timeout=self.config.retry_timeout)

        result = await self.config.fetch_retry.run(
            attempt,
            clock=self._clock,
            first_delay=first_delay,
            label=f"art retry {key}",
        )
        if result is None:
            return
        if result.outcome is Outcome.SUCCESS and result.content is not None:
            await self.cache.put_hit(key, result.content)
            logger.debug("Background retry fetched %s", key)
        elif result.outcome is Outcome.NOT_FOUND:
            await self.cache.put_miss(key)
        elif not result.outcome.is_terminal:
            logger.debug("Giving up on %s until the next sweep (%s)", key, result.outcome)

    async def run_batch(
        self,
        tasks: Sequence[FetchTask],
        concurrency: int,
        inter_request_delay: float = 0.0,
    ) -> BatchResult:
        """Drain a task list with a fixed number of concurrent workers.

        Hits are written to the cache. 404s are only reported, so the caller
        decides whether they become permanent miss markers. A 429 pauses
        every worker until the shared pause window has elapsed and puts the
        task back at the front of the queue.

        Args:
            tasks: Tasks to fetch
            concurrency: Number of concurrent workers
            inter_request_delay: Seconds each worker waits after a request

        Returns:
            BatchResult with counters, not-found and failed tasks
        """
        result = BatchResult()
        queue: deque[FetchTask] = deque(tasks)
        pause = _PauseWindow(self._clock)

        async def worker() -> None:
            while True:
                await pause.wait()
                if not queue:
                    return
                task = queue.popleft()

                fetched = await self._request(task.url)
                outcome = fetched.outcome
                if outcome is Outcome.SUCCESS and fetched.content is not None:
                    await self.cache.put_hit(task.cache_key, fetched.content)
                    result.fetched += 1
                    self._count_done()
                elif outcome is Outcome.NOT_FOUND:
                    result.not_found.append(task)
                    self._count_done()
                elif outcome is Outcome.RATE_LIMITED:
                    result.rate_limited += 1
                    seconds = fetched.retry_after or self.config.rate_limit_pause
                    pause.extend(seconds)
                    logger.warning("429 rate limited, all workers pausing %gs", seconds)
                    queue.appendleft(task)
                    continue
                else:
                    task.attempts_remaining -= 1
                    result.failed.append(task)

                if inter_request_delay > 0:
                    await self._clock.sleep(inter_request_delay)

        workers = max(1, min(concurrency, len(queue)))
        if queue:
            await asyncio.gather(*(worker() for _ in range(workers)))
        return result

    async def _pending_tasks(
        self, catalog: SweepCatalog, phase: SweepPhase
    ) -> tuple[int, list[FetchTask]]:
        """Build a phase's task list, skipping resolved keys.

        Returns:
            Tuple of (eligible card count, tasks still to fetch)
        """
        eligible = phase.eligible(catalog)
        tasks = []
        for card in eligible:
            key = cache_key(card.id, phase.variant)
            if await self.cache.is_resolved(key):
                self._count_done()
                continue
            tasks.append(FetchTask(key, art_url(card.id, phase.variant), phase.rounds))
        return len(eligible), tasks

    async def _run_phase(self, catalog: SweepCatalog, phase: SweepPhase) -> PhaseReport:
        report = PhaseReport(label=phase.label)
        report.eligible, tasks = await self._pending_tasks(catalog, phase)
        report.cached = report.eligible - len(tasks)
        if not tasks:
            logger.info("%s: all %d already cached", phase.label, report.eligible)
            return report

        remaining = tasks
        for round_index in range(phase.rounds):
            if not remaining:
                break
            concurrency, delay = phase.concurrency, phase.delay
            if round_index > 0:
                backoff = self.config.round_backoff.delay_for(round_index)
                logger.info(
                    "%s: retry round %d, %d items, waiting %gs",
                    phase.label,
                    round_index,
                    len(remaining),
                    backoff,
                )
                await self._clock.sleep(backoff)
                concurrency = min(concurrency, self.config.retry_concurrency)
                delay = delay * self.config.retry_delay_factor

            batch = await self.run_batch(remaining, concurrency, delay)
            for task in batch.not_found:
                await self.cache.put_miss(task.cache_key)
            report.fetched += batch.fetched
            report.not_found += len(batch.not_found)
            report.rate_limited += batch.rate_limited
            remaining = [task for task in batch.failed if task.attempts_remaining > 0]
            dropped = len(batch.failed) - len(remaining)
            report.dropped += dropped
            self._count_done(dropped)

            logger.info(
                "%s round %d: %d fetched, %d not found, %d rate-limited, %d failed",
                phase.label,
                round_index + 1,
                batch.fetched,
                len(batch.not_found),
                batch.rate_limited,
                len(batch.failed),
            )

        if remaining:
            report.dropped += len(remaining)
        if report.dropped:
            logger.info("%s: %d left unresolved for the next sweep", phase.label, report.dropped)
        return report

    async def run_prioritized_sweep(
        self,
        catalog: SweepCatalog,
        phases: Sequence[SweepPhase] | None = None,
    ) -> SweepReport:
        """Run ordered phases over the whole catalog.

        Keys that already have a hit or a miss marker are filtered out before
        a phase builds its task list, so re-running a sweep over an
        unchanged, fully resolved catalog performs no requests.

        Args:
            catalog: Cards and ownership
            phases: Phase plan (uses build_default_phases if None)

        Returns:
            SweepReport with one entry per phase
        """
        if phases is None:
            phases = build_default_phases(catalog, self.config)

        report = SweepReport()
        self._progress = SweepProgress(
            running=True,
            total=sum(len(phase.eligible(catalog)) for phase in phases),
        )
        try:
            for phase in phases:
                self._progress.phase = phase.label
                report.phases.append(await self._run_phase(catalog, phase))
        finally:
            self._progress.running = False

        logger.info(
            "Card art sweep complete: %d fetched, %d not found",
            report.fetched,
            report.not_found,
        )
        return report

    async def refresh_cards(self, catalog: SweepCatalog, card_ids: Iterable[str]) -> int:
        """Re-fetch art for cards that changed upstream.

        Miss markers of the changed cards are cleared first, then every
        variant the card can have and that is not cached yet is fetched
        again; 404s become miss markers.

        Args:
            catalog: Cards and set eligibility
            card_ids: Ids of the changed cards

        Returns:
            Number of art files fetched
        """
        changed = set(card_ids)
        if not changed:
            return 0
        await self.cache.invalidate(changed, REFRESH_VARIANTS)

        cards = [card for card in catalog.cards if card.id in changed]
        logger.info("Re-fetching art for %d changed cards", len(cards))

        tuning = self.config.refresh_phase
        fetched = 0
        for variant in (
            ArtVariant.NORMAL,
            ArtVariant.GOLDEN,
            ArtVariant.SIGNATURE,
            ArtVariant.DIAMOND,
        ):
            tasks = []
            for card in cards:
                if not catalog.supports(card, variant):
                    continue
                key = cache_key(card.id, variant)
                if await self.cache.state(key) is EntryState.HIT:
                    continue
                tasks.append(FetchTask(key, art_url(card.id, variant), tuning.rounds))
            if not tasks:
                continue

            batch = await self.run_batch(tasks, tuning.concurrency, tuning.delay)
            for task in batch.not_found:
                await self.cache.put_miss(task.cache_key)
            fetched += batch.fetched
            logger.info(
                "%s: re-fetched %d/%d for changed cards", variant, batch.fetched, len(tasks)
            )
        return fetched

    async def clear_misses(self) -> int:
        """Remove every miss marker so the next sweep retries those keys."""
        return await self.cache.clear_misses()

    async def cache_stats(self) -> CacheStats:
        """Get cache statistics."""
        return await self.cache.get_stats()

    async def close(self) -> None:
        """Cancel background retries and close the HTTP client."""
        tasks = [task for task in self._retry_tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._retry_tasks.clear()

        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
