"""
Domain: Pending domain records.

A PendingDomain is created when a saga run cannot finish registration
synchronously. It carries every identifier a retry needs so that customer and
contact creation are not repeated.

Lifecycle:
- pending    -> created on the first failure (or manually by an admin)
- processing -> an operator retry holds the lease (lease_acquired_at is set)
- completed  -> retry or verification confirmed registration
- failed     -> retry or verification confirmed permanent failure

Records are never deleted automatically; they remain as an audit trail.
The domain name is globally unique among pending records.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from .registrar import ContactIds, ContactRole
from .time import require_utc_timestamp

DEFAULT_PENDING_REASON = "Domain registration failed - likely due to insufficient funds"

# A processing lease older than this is considered abandoned
DEFAULT_LEASE_GRACE = timedelta(minutes=15)


class PendingDomainStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Statuses from which an operator retry may claim the lease
RETRYABLE_STATUSES: Tuple[PendingDomainStatus, ...] = (
    PendingDomainStatus.PENDING,
    PendingDomainStatus.FAILED,
)


@dataclass(frozen=True, slots=True)
class PendingDomain:
    id: str
    domain_name: str
    price: Decimal
    currency: str
    registration_period: int
    user_id: str
    order_id: str
    status: PendingDomainStatus = PendingDomainStatus.PENDING
    reason: str = DEFAULT_PENDING_REASON

    customer_id: Optional[str] = None
    contact_id: Optional[str] = None
    admin_contact_id: Optional[str] = None
    tech_contact_id: Optional[str] = None
    billing_contact_id: Optional[str] = None
    name_servers: Tuple[str, ...] = ()

    verification_attempts: int = 0
    last_verified_at: Optional[datetime] = None
    registrar_order_id: Optional[str] = None
    registered_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    admin_notes: Optional[str] = None

    lease_acquired_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.domain_name != self.domain_name.lower():
            raise ValueError("domain_name must be stored lower-cased")
        if self.price < 0:
            raise ValueError("price must be >= 0")
        if self.registration_period < 1 or self.registration_period > 10:
            raise ValueError("registration_period must be between 1 and 10 years")
        if self.verification_attempts < 0:
            raise ValueError("verification_attempts must be >= 0")
        for name in (
            "last_verified_at",
            "registered_at",
            "expires_at",
            "lease_acquired_at",
            "created_at",
            "updated_at",
        ):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)

    def contact_overrides(self) -> Dict[ContactRole, str]:
        """Role-specific contact ids set on the record, possibly for only some roles."""

        overrides = {
            ContactRole.ADMIN: self.admin_contact_id,
            ContactRole.TECH: self.tech_contact_id,
            ContactRole.BILLING: self.billing_contact_id,
        }
        return {role: contact for role, contact in overrides.items() if contact}

    def contacts(self) -> Optional[ContactIds]:
        """
        Contact ids for registration. Role-specific overrides win over the
        shared contact id. None while any role is still unresolved.
        """

        overrides = self.contact_overrides()
        resolved = {
            role: overrides.get(role) or self.contact_id
            for role in (ContactRole.ADMIN, ContactRole.TECH, ContactRole.BILLING)
        }
        if not all(resolved.values()):
            return None
        return ContactIds(
            admin=resolved[ContactRole.ADMIN],
            tech=resolved[ContactRole.TECH],
            billing=resolved[ContactRole.BILLING],
        )

    def is_lease_stale(self, now: datetime, grace: timedelta) -> bool:
        """A processing record whose lease is older than `grace` may be taken over."""

        if self.status is not PendingDomainStatus.PROCESSING:
            return False
        if self.lease_acquired_at is None:
            return True
        return now - self.lease_acquired_at >= grace

    def can_retry(self, now: datetime, grace: timedelta) -> bool:
        return self.status in RETRYABLE_STATUSES or self.is_lease_stale(now, grace)
