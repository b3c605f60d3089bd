"""
Domain: TLD pricing entries and cache snapshots.

A PricingSnapshot is one complete price table fetched from the upstream source,
stamped with when it was cached and when it expires. Freshness is judged
against an explicit `now`; nothing here reads the clock.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional

from .time import require_utc_timestamp


def normalize_tld(tld: str) -> str:
    """'.COM' -> 'com'. Multi-label extensions keep their inner dots ('co.in')."""

    value = tld.strip().lower().lstrip(".")
    if not value:
        raise ValueError("tld must not be empty")
    return value


def tld_of(domain_name: str) -> str:
    """Extension of a domain name: everything after the first label."""

    _, _, rest = domain_name.strip().lower().partition(".")
    if not rest:
        raise ValueError(f"Domain name has no extension: {domain_name!r}")
    return rest


def margin_percent(customer_price: Decimal, reseller_price: Decimal) -> Optional[Decimal]:
    if customer_price <= 0 or reseller_price <= 0:
        return None
    margin = (customer_price - reseller_price) / customer_price * Decimal("100")
    return margin.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class TLDPrice:
    tld: str
    customer_price: Decimal
    reseller_price: Decimal
    currency: str
    category: str
    description: Optional[str] = None
    margin: Optional[Decimal] = None

    def __post_init__(self) -> None:
        if self.tld != normalize_tld(self.tld):
            raise ValueError(f"tld must be normalized, got {self.tld!r}")
        if self.customer_price < 0 or self.reseller_price < 0:
            raise ValueError("prices must be >= 0")

    @property
    def display_tld(self) -> str:
        return f".{self.tld}"


@dataclass(frozen=True, slots=True)
class PricingSnapshot:
    entries: Mapping[str, TLDPrice]
    cached_at: datetime
    expires_at: datetime
    ttl_minutes: int
    source: str

    def __post_init__(self) -> None:
        require_utc_timestamp("cached_at", self.cached_at)
        require_utc_timestamp("expires_at", self.expires_at)
        if self.expires_at < self.cached_at:
            raise ValueError("expires_at must be >= cached_at")

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at

    def remaining(self, now: datetime) -> timedelta:
        return max(self.expires_at - now, timedelta(0))

    def get(self, tld: str) -> Optional[TLDPrice]:
        return self.entries.get(normalize_tld(tld))

    def with_ttl(self, ttl_minutes: int) -> "PricingSnapshot":
        """Same prices, expiry re-derived from cached_at and the new TTL."""

        return replace(
            self,
            ttl_minutes=ttl_minutes,
            expires_at=self.cached_at + timedelta(minutes=ttl_minutes),
        )

    @property
    def total_count(self) -> int:
        return len(self.entries)
