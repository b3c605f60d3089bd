"""
Domain: Orders and their domain line items.

An Order owns an ordered list of DomainLineItems. Line items are appended only
at checkout; afterwards only the status/step-log and registrar fields of an
existing line item change.

Domain names are unique within one order (case-insensitive) but not globally:
the same name may appear in a later order after an earlier attempt failed.

Line item transitions return new instances, mirroring the immutable ledger
style of the rest of the domain model.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from .booking import BookingLog, BookingStep, DomainStatus
from .time import require_utc_timestamp


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


def normalize_domain_name(name: str) -> str:
    """Domain names compare case-insensitively and are stored lower-cased."""

    normalized = name.strip().lower().rstrip(".")
    if not normalized or "." not in normalized:
        raise ValueError(f"Invalid domain name: {name!r}")
    return normalized


def registration_expiry(registered_at: datetime, registration_period: int) -> datetime:
    """Expiry is registration time plus period x 365 days."""

    return registered_at + timedelta(days=365 * registration_period)


@dataclass(frozen=True, slots=True)
class DomainLineItem:
    domain_name: str
    price: Decimal
    currency: str
    registration_period: int
    booking_log: BookingLog = field(default_factory=BookingLog)
    name_servers: Tuple[str, ...] = ()

    # Registrar identifiers, filled in as the saga progresses
    registrar_order_id: Optional[str] = None
    customer_id: Optional[str] = None
    contact_id: Optional[str] = None

    registered_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    dns_activated: bool = False
    dns_activated_at: Optional[datetime] = None
    error: Optional[str] = None

    # Ownership claim of the first saga run; None when nobody is working on it
    lease_acquired_at: Optional[datetime] = None

    # Only set by an explicit cancellation; otherwise status follows the log
    cancelled: bool = False

    def __post_init__(self) -> None:
        if self.registration_period < 1 or self.registration_period > 10:
            raise ValueError("registration_period must be between 1 and 10 years")
        if self.price < 0:
            raise ValueError("price must be >= 0")
        for name in ("registered_at", "expires_at", "dns_activated_at", "lease_acquired_at"):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)

    @property
    def status(self) -> DomainStatus:
        if self.cancelled:
            return DomainStatus.CANCELLED
        return self.booking_log.status

    @property
    def progress(self) -> int:
        return self.booking_log.progress

    @property
    def last_step(self) -> Optional[BookingStep]:
        return self.booking_log.last_step

    def matches(self, domain_name: str) -> bool:
        return self.domain_name.lower() == domain_name.strip().lower()

    def lease_is_held(self, now: datetime, grace: timedelta) -> bool:
        """True when another run claimed this item and the claim is still fresh."""

        if self.lease_acquired_at is None:
            return False
        return now - self.lease_acquired_at < grace

    def with_step(
        self,
        step: BookingStep,
        message: str,
        timestamp: datetime,
        progress: Optional[int] = None,
        **changes: object,
    ) -> "DomainLineItem":
        """Append a booking entry (validated by the FSM) and apply field changes."""

        log = self.booking_log.append(step, message, timestamp, progress)
        return replace(self, booking_log=log, **changes)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class Order:
    order_id: str
    user_id: str
    payment_id: str
    amount: Decimal
    currency: str
    status: OrderStatus
    domains: Tuple[DomainLineItem, ...]
    is_deleted: bool = False
    invoice_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)

        seen: set[str] = set()
        for item in self.domains:
            key = item.domain_name.lower()
            if key in seen:
                raise ValueError(f"Duplicate domain in order {self.order_id}: {item.domain_name}")
            seen.add(key)

    def find_domain(self, domain_name: str) -> Optional[DomainLineItem]:
        for item in self.domains:
            if item.matches(domain_name):
                return item
        return None

    def replace_domain(self, updated: DomainLineItem) -> "Order":
        """Return a new Order with the matching line item swapped for `updated`."""

        if self.find_domain(updated.domain_name) is None:
            raise ValueError(f"Domain {updated.domain_name} is not part of order {self.order_id}")
        domains = tuple(
            updated if item.matches(updated.domain_name) else item
            for item in self.domains
        )
        return replace(self, domains=domains)

    @property
    def has_unfinished_domains(self) -> bool:
        return any(item.status.is_unfinished for item in self.domains)

    @property
    def successful_domains(self) -> list[str]:
        return [d.domain_name for d in self.domains if d.status is DomainStatus.REGISTERED]

    @property
    def failed_domains(self) -> list[str]:
        return [d.domain_name for d in self.domains if d.status is DomainStatus.FAILED]
