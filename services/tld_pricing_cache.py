"""
TLD pricing cache.

Process-local, TTL-bounded cache of the upstream price table.

Behavior:
- Reads are served from memory while the cache is enabled and `now < expires_at`.
- A miss (or a disabled cache) refreshes synchronously from the pricing source.
- Each refresh derives `cached_at`/`expires_at` from the persisted TTL setting,
  so admin changes take effect without a restart.
- Disabling the cache purges it immediately; while disabled every read goes
  upstream and nothing is stored.
- `purge()` only invalidates; the next read refreshes.
- Concurrent refreshes collapse into one upstream call. Followers wait for the
  leader and receive its snapshot (or its error).

The clock, the settings store and the pricing source are injected so TTL
behavior can be tested without sleeping.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Protocol

from domain.pricing import PricingSnapshot, TLDPrice
from domain.time import Clock, utc_now
from repositories.settings_repository import (
    CACHING_CATEGORY,
    TLD_PRICING_CACHE_ENABLED,
    TLD_PRICING_CACHE_TTL,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES: int = 60


class PricingSource(Protocol):
    source_label: str

    def fetch_prices(self) -> Mapping[str, TLDPrice]:
        ...


class CacheSettings(Protocol):
    def get_cache_enabled(self, default: bool = True) -> bool:
        ...

    def get_cache_ttl_minutes(self, default: int) -> int:
        ...

    def set_setting(
        self,
        key: str,
        value: Any,
        *,
        description: str = "",
        category: str = "general",
        updated_by: str = "system",
    ) -> None:
        ...


@dataclass(frozen=True, slots=True)
class CacheStatus:
    """Snapshot of the cache state for the admin surface."""
    is_cached: bool
    cached_at: Optional[datetime]
    expires_at: Optional[datetime]
    remaining_seconds: Optional[int]
    item_count: Optional[int]
    ttl_minutes: int
    enabled: bool
    source: Optional[str] = None


class _InFlightRefresh:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Optional[PricingSnapshot] = None
        self.error: Optional[BaseException] = None


class TLDPricingCache:
    def __init__(
        self,
        source: PricingSource,
        settings: CacheSettings,
        *,
        clock: Clock = utc_now,
        default_ttl_minutes: int = DEFAULT_TTL_MINUTES,
    ):
        if default_ttl_minutes <= 0:
            raise ValueError("default_ttl_minutes must be > 0")

        self._source = source
        self._settings = settings
        self._clock = clock
        self._default_ttl = default_ttl_minutes

        self._lock = threading.Lock()
        self._snapshot: Optional[PricingSnapshot] = None
        self._in_flight: Optional[_InFlightRefresh] = None
        self._enabled: Optional[bool] = None
        # Bumped by purge so a refresh that started earlier does not repopulate
        self._generation = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _is_enabled(self) -> bool:
        if self._enabled is None:
            self._enabled = self._settings.get_cache_enabled(True)
        return self._enabled

    def get_snapshot(self) -> PricingSnapshot:
        """Current price table, refreshing from upstream on a miss."""

        if self._is_enabled():
            now = self._clock()
            with self._lock:
                snapshot = self._snapshot
            if snapshot is not None and snapshot.is_fresh(now):
                logger.debug(
                    f"Serving cached TLD pricing "
                    f"({int(snapshot.remaining(now).total_seconds() // 60)} minutes remaining)"
                )
                return snapshot
            if snapshot is not None:
                logger.info("TLD pricing cache expired, refreshing")

        return self.refresh()

    def get_price(self, tld: str) -> Optional[TLDPrice]:
        """Price entry for one extension, or None if the upstream does not list it."""

        return self.get_snapshot().get(tld)

    # ------------------------------------------------------------------
    # Refresh / invalidation
    # ------------------------------------------------------------------

    def refresh(self, source: Optional[PricingSource] = None) -> PricingSnapshot:
        """
        Fetch a new price table from upstream.

        Only one refresh runs at a time; concurrent callers share its outcome.
        """

        with self._lock:
            flight = self._in_flight
            leader = flight is None
            if flight is None:
                flight = _InFlightRefresh()
                self._in_flight = flight
            generation = self._generation

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            if flight.result is None:
                raise RuntimeError("TLD pricing refresh finished without a result")
            return flight.result

        upstream = source or self._source
        try:
            entries = dict(upstream.fetch_prices())
            ttl = self._settings.get_cache_ttl_minutes(self._default_ttl)
            enabled = self._settings.get_cache_enabled(True)
            now = self._clock()
            snapshot = PricingSnapshot(
                entries=entries,
                cached_at=now,
                expires_at=now + timedelta(minutes=ttl),
                ttl_minutes=ttl,
                source=upstream.source_label,
            )

            with self._lock:
                self._enabled = enabled
                if enabled and generation == self._generation:
                    self._snapshot = snapshot

            if enabled:
                logger.info(
                    f"Cached TLD pricing ({snapshot.total_count} TLDs, expires in {ttl} minutes)",
                    extra={"tld_count": snapshot.total_count, "ttl_minutes": ttl},
                )
            flight.result = snapshot
            return snapshot
        except Exception as e:
            logger.warning(f"TLD pricing refresh failed: {e}")
            flight.error = e
            raise
        finally:
            with self._lock:
                self._in_flight = None
            flight.done.set()

    def purge(self) -> bool:
        """Drop the cached table. Returns True if something was cached."""

        with self._lock:
            had_snapshot = self._snapshot is not None
            self._snapshot = None
            self._generation += 1

        if had_snapshot:
            logger.info("Purged TLD pricing cache")
        else:
            logger.info("TLD pricing cache already empty, nothing to purge")
        return had_snapshot

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_ttl(self, minutes: int, *, updated_by: str = "system") -> None:
        """Persist a new TTL and apply it to the current snapshot immediately."""

        if minutes <= 0:
            raise ValueError("ttl minutes must be > 0")

        self._settings.set_setting(
            TLD_PRICING_CACHE_TTL,
            minutes,
            description="TLD pricing cache TTL in minutes",
            category=CACHING_CATEGORY,
            updated_by=updated_by,
        )
        with self._lock:
            if self._snapshot is not None:
                self._snapshot = self._snapshot.with_ttl(minutes)

        logger.info(f"TLD pricing cache TTL updated to {minutes} minutes by {updated_by}")

    def set_enabled(self, enabled: bool, *, updated_by: str = "system") -> None:
        self._settings.set_setting(
            TLD_PRICING_CACHE_ENABLED,
            enabled,
            description="Enable/disable TLD pricing cache",
            category=CACHING_CATEGORY,
            updated_by=updated_by,
        )
        with self._lock:
            self._enabled = enabled

        logger.info(f"TLD pricing cache {'enabled' if enabled else 'disabled'} by {updated_by}")
        if not enabled:
            self.purge()

    def status(self) -> CacheStatus:
        enabled = self._is_enabled()
        ttl = self._settings.get_cache_ttl_minutes(self._default_ttl)
        now = self._clock()
        with self._lock:
            snapshot = self._snapshot

        if snapshot is None or not snapshot.is_fresh(now):
            return CacheStatus(
                is_cached=False,
                cached_at=None,
                expires_at=None,
                remaining_seconds=None,
                item_count=None,
                ttl_minutes=ttl,
                enabled=enabled,
            )

        return CacheStatus(
            is_cached=True,
            cached_at=snapshot.cached_at,
            expires_at=snapshot.expires_at,
            remaining_seconds=int(snapshot.remaining(now).total_seconds()),
            item_count=snapshot.total_count,
            ttl_minutes=snapshot.ttl_minutes,
            enabled=enabled,
            source=snapshot.source,
        )


__all__ = [
    "TLDPricingCache",
    "CacheStatus",
    "PricingSource",
    "CacheSettings",
    "DEFAULT_TTL_MINUTES",
]
