"""File-based card art cache with permanent miss markers."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from hearth_fetch.core.exceptions import CacheError

logger = logging.getLogger(__name__)

HIT_SUFFIX = ".png"
MISS_SUFFIX = ".miss"

# "EX1_001_normal-lg" -> ("EX1_001", "normal-lg")
_KEY_PATTERN = re.compile(r"^(?P<id>.+)_(?P<variant>[a-z]+(?:-lg)?)$")


class EntryState(StrEnum):
    """Persisted state of a cache entry."""

    ABSENT = "absent"
    HIT = "hit"
    MISS = "miss"


def cache_key(card_id: str, variant: str) -> str:
    """Build the stable cache key for a card art variant."""
    return f"{card_id}_{variant}"


def split_cache_key(key: str) -> tuple[str, str] | None:
    """Split a cache key into (card_id, variant), or None if malformed."""
    match = _KEY_PATTERN.match(key)
    if match is None:
        return None
    return match.group("id"), match.group("variant")


@dataclass
class VariantStats:
    """Counts for one art variant."""

    cached: int = 0
    missed: int = 0


@dataclass
class CacheStats:
    """Summary of the cache directory contents.

    Attributes:
        cached: Number of hit files
        missed: Number of miss markers
        variants: Counts per art variant
        cache_dir: Cache directory path
    """

    cached: int = 0
    missed: int = 0
    variants: dict[str, VariantStats] = field(default_factory=dict)
    cache_dir: str = ""


class DiskCache:
    """Cache of binary art keyed by ``{card_id}_{variant}``.

    Each key has at most one of two files:
    cache_dir/
        EX1_001_normal.png      hit, the image bytes
        EX1_001_golden.miss     zero-byte marker, upstream has no such art

    Hits and misses are terminal. A miss is only removed through
    ``invalidate``/``clear_misses``, never by age.
    """

    def __init__(self, cache_dir: Path) -> None:
        """Initialize the disk cache.

        Args:
            cache_dir: Directory holding hit files and miss markers
        """
        self._cache_dir = Path(cache_dir)
        self._initialized = False

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError("init", str(e)) from e
        self._initialized = True

    def hit_path(self, key: str) -> Path:
        return self._cache_dir / f"{key}{HIT_SUFFIX}"

    def miss_path(self, key: str) -> Path:
        return self._cache_dir / f"{key}{MISS_SUFFIX}"

    async def state(self, key: str) -> EntryState:
        """Get the persisted state of a key."""
        if self.hit_path(key).exists():
            return EntryState.HIT
        if self.miss_path(key).exists():
            return EntryState.MISS
        return EntryState.ABSENT

    async def is_resolved(self, key: str) -> bool:
        """True when the key has a hit file or a miss marker."""
        return await self.state(key) is not EntryState.ABSENT

    async def get(self, key: str) -> bytes | None:
        """Read the cached bytes for a key, or None when not a hit."""
        try:
            return self.hit_path(key).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheError("read", f"{key}: {e}") from e

    async def put_hit(self, key: str, data: bytes) -> Path:
        """Persist image bytes for a key.

        The file is written under a temporary name and renamed into place
        so readers never observe a partial image. A stale miss marker for
        the key is removed.

        Args:
            key: Cache key
            data: Image bytes

        Returns:
            Path of the hit file
        """
        self._ensure_initialized()
        path = self.hit_path(key)
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.part")
        try:
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as e:
            raise CacheError("write", f"{key}: {e}") from e
        finally:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)

        self.miss_path(key).unlink(missing_ok=True)
        logger.debug("Cached %d bytes for %s", len(data), key)
        return path

    async def put_miss(self, key: str) -> bool:
        """Record that the upstream has no art for a key.

        Returns:
            True if the marker was written, False if a hit already exists
        """
        self._ensure_initialized()
        if self.hit_path(key).exists():
            return False
        try:
            self.miss_path(key).touch()
        except OSError as e:
            raise CacheError("write", f"{key}: {e}") from e
        logger.debug("Marked %s as missing", key)
        return True

    async def invalidate(self, card_ids: Iterable[str], variants: Iterable[str]) -> int:
        """Remove miss markers for cards whose upstream entry changed.

        Args:
            card_ids: Card ids whose markers should be cleared
            variants: Art variants to clear for each card

        Returns:
            Number of markers removed
        """
        variant_list = list(variants)
        removed = 0
        for card_id in card_ids:
            for variant in variant_list:
                path = self.miss_path(cache_key(card_id, variant))
                if path.exists():
                    path.unlink(missing_ok=True)
                    removed += 1
        if removed:
            logger.info("Cleared %d miss markers for changed cards", removed)
        return removed

    async def clear_misses(self) -> int:
        """Remove every miss marker.

        Returns:
            Number of markers removed
        """
        if not self._cache_dir.exists():
            return 0
        removed = 0
        for path in self._cache_dir.glob(f"*{MISS_SUFFIX}"):
            path.unlink(missing_ok=True)
            removed += 1
        logger.info("Cleared %d miss markers", removed)
        return removed

    async def confirmed_ids(self, variant: str) -> list[str]:
        """List card ids that have a cached hit for the given variant."""
        if not self._cache_dir.exists():
            return []
        suffix = f"_{variant}{HIT_SUFFIX}"
        return sorted(
            path.name[: -len(suffix)]
            for path in self._cache_dir.glob(f"*{suffix}")
        )

    async def get_stats(self) -> CacheStats:
        """Count hits and misses, overall and per variant."""
        stats = CacheStats(cache_dir=str(self._cache_dir))
        if not self._cache_dir.exists():
            return stats

        for path in self._cache_dir.iterdir():
            if path.suffix == HIT_SUFFIX and not path.name.startswith("."):
                is_hit = True
            elif path.suffix == MISS_SUFFIX:
                is_hit = False
            else:
                continue

            parts = split_cache_key(path.stem)
            variant_stats = None
            if parts is not None:
                variant_stats = stats.variants.setdefault(parts[1], VariantStats())

            if is_hit:
                stats.cached += 1
                if variant_stats is not None:
                    variant_stats.cached += 1
            else:
                stats.missed += 1
                if variant_stats is not None:
                    variant_stats.missed += 1
        return stats
