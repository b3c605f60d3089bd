"""
Pending-work reconciliation service.

Operators see one list of "domains not yet finished", merged from two sources
that are updated independently:

- Scan A: pending domain records (authoritative once they exist)
- Scan B: line items of non-deleted orders still pending/processing, projected
  into the same shape with id `order:<orderId>:<domainName>` and source `order`

A Scan B line item is dropped when any pending record exists for the same
domain name (case-insensitive). The merged list is sorted newest first and
paginated by offset. The status summary is counted over the merged set after
the text filter and before the status filter and pagination, so it does not
change with the requested page.

Also drives batch verification against the registrar and admin retries, which
re-enter the provisioning saga under the pending record's lease.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from domain.booking import BookingStep
from domain.order import Order, normalize_domain_name, registration_expiry
from domain.pending_domain import DEFAULT_PENDING_REASON, PendingDomain, PendingDomainStatus
from domain.registrar import Registrar, RegistrarDomainState, RegistrarError
from domain.time import Clock, utc_now
from repositories.order_repository import LineItemNotFoundError, OrderNotFoundError, OrderRepository
from repositories.pending_domain_repository import PendingDomainRepository
from services.provisioning_service import (
    DomainProvisioningService,
    ProvisioningOutcome,
    ProvisioningResult,
)

logger = logging.getLogger(__name__)

ORDER_ITEM_PREFIX = "order:"

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

VERIFIED_REASON = "Domain verification successful - registration completed"
NOT_FOUND_REASON = "Domain not found at registrar - likely still pending registration"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_SUMMARY_STATUSES: Tuple[str, ...] = tuple(s.value for s in PendingDomainStatus)


class PendingWorkSource(str, Enum):
    PENDING_DOMAIN = "pending_domain"
    ORDER = "order"


class PendingDomainNotFoundError(LookupError):
    def __init__(self, pending_id: str):
        self.pending_id = pending_id
        super().__init__(f"Pending domain not found: {pending_id}")


class NoPendingDomainsError(LookupError):
    """None of the ids given to a batch verification refer to a pending record."""


@dataclass(frozen=True, slots=True)
class PendingWorkItem:
    id: str
    domain_name: str
    status: str
    reason: str
    price: Decimal
    currency: str
    registration_period: int
    user_id: str
    order_id: str
    source: PendingWorkSource
    customer_id: Optional[str] = None
    contact_id: Optional[str] = None
    name_servers: Tuple[str, ...] = ()
    verification_attempts: int = 0
    last_verified_at: Optional[datetime] = None
    registrar_order_id: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @staticmethod
    def from_pending_domain(record: PendingDomain) -> "PendingWorkItem":
        return PendingWorkItem(
            id=record.id,
            domain_name=record.domain_name,
            status=record.status.value,
            reason=record.reason,
            price=record.price,
            currency=record.currency,
            registration_period=record.registration_period,
            user_id=record.user_id,
            order_id=record.order_id,
            source=PendingWorkSource.PENDING_DOMAIN,
            customer_id=record.customer_id,
            contact_id=record.contact_id,
            name_servers=record.name_servers,
            verification_attempts=record.verification_attempts,
            last_verified_at=record.last_verified_at,
            registrar_order_id=record.registrar_order_id,
            admin_notes=record.admin_notes,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


def order_item_id(order_id: str, domain_name: str) -> str:
    return f"{ORDER_ITEM_PREFIX}{order_id}:{domain_name}"


def project_order_items(order: Order) -> List[PendingWorkItem]:
    """Unfinished line items of one order, shaped like pending records."""

    items: List[PendingWorkItem] = []
    for line in order.domains:
        if not line.status.is_unfinished:
            continue
        last = line.booking_log.last
        reason = line.error or (last.message if last is not None else "Awaiting registration")
        items.append(
            PendingWorkItem(
                id=order_item_id(order.order_id, line.domain_name),
                domain_name=line.domain_name,
                status=line.status.value,
                reason=reason,
                price=line.price,
                currency=line.currency,
                registration_period=line.registration_period,
                user_id=order.user_id,
                order_id=order.order_id,
                source=PendingWorkSource.ORDER,
                customer_id=line.customer_id,
                contact_id=line.contact_id,
                name_servers=line.name_servers,
                registrar_order_id=line.registrar_order_id,
                created_at=order.created_at,
                updated_at=order.updated_at,
            )
        )
    return items


@dataclass(frozen=True, slots=True)
class PendingWorkFilter:
    status: Optional[str] = None
    search: Optional[str] = None

    def matches_text(self, item: PendingWorkItem) -> bool:
        term = (self.search or "").strip().lower()
        if not term:
            return True
        return term in item.domain_name.lower() or term in item.order_id.lower()


@dataclass(frozen=True, slots=True)
class Pagination:
    page: int
    limit: int
    total: int
    pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass(frozen=True, slots=True)
class StatusSummary:
    counts: Mapping[str, int]

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def get(self, status: str) -> int:
        return self.counts.get(status, 0)


@dataclass(frozen=True, slots=True)
class PendingWorkPage:
    items: List[PendingWorkItem]
    pagination: Pagination
    summary: StatusSummary


class VerificationOutcome(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"
    # Record changed concurrently (retry or admin override); nothing written
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class VerificationResult:
    pending_id: str
    domain_name: str
    outcome: VerificationOutcome
    reason: str
    checked_at: datetime
    expires_at: Optional[datetime] = None
    # Set when the outcome could not be mirrored onto the originating order
    integrity_error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class VerificationReport:
    results: List[VerificationResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    def _count(self, outcome: VerificationOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def successful(self) -> int:
        return self._count(VerificationOutcome.COMPLETED)

    @property
    def pending(self) -> int:
        return self._count(VerificationOutcome.PENDING)

    @property
    def failed(self) -> int:
        return self._count(VerificationOutcome.FAILED)

    @property
    def pending_domains(self) -> List[str]:
        return [r.domain_name for r in self.results if r.outcome is VerificationOutcome.PENDING]


class ReconciliationService:
    def __init__(
        self,
        orders: OrderRepository,
        pending_domains: PendingDomainRepository,
        registrar: Registrar,
        provisioning: DomainProvisioningService,
        *,
        clock: Clock = utc_now,
    ):
        self._orders = orders
        self._pending = pending_domains
        self._registrar = registrar
        self._provisioning = provisioning
        self._clock = clock

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_pending_work(
        self,
        work_filter: Optional[PendingWorkFilter] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> PendingWorkPage:
        """
        Merged, deduplicated, paginated view of unfinished domains.

        Raises:
            ValueError: page < 1 or limit outside 1..MAX_PAGE_SIZE
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        work_filter = work_filter or PendingWorkFilter()

        # Scan A
        merged: List[PendingWorkItem] = [
            PendingWorkItem.from_pending_domain(record)
            for record in self._pending.list(work_filter.search)
        ]

        # Scan B
        projected: List[PendingWorkItem] = []
        for order in self._orders.list_orders_with_unfinished_domains():
            projected.extend(
                item for item in project_order_items(order) if work_filter.matches_text(item)
            )

        existing = self._pending.find_existing_names(item.domain_name for item in projected)
        survivors = [item for item in projected if item.domain_name.lower() not in existing]
        if len(survivors) != len(projected):
            logger.debug(
                f"Dropped {len(projected) - len(survivors)} order line item(s) "
                "already tracked as pending domains"
            )
        merged.extend(survivors)

        merged.sort(key=lambda item: item.created_at or _EPOCH, reverse=True)

        counts: Dict[str, int] = {status: 0 for status in _SUMMARY_STATUSES}
        for item in merged:
            counts[item.status] = counts.get(item.status, 0) + 1
        summary = StatusSummary(counts=counts)

        if work_filter.status:
            merged = [item for item in merged if item.status == work_filter.status]

        total = len(merged)
        start = (page - 1) * limit
        return PendingWorkPage(
            items=merged[start:start + limit],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit) if total else 0,
            ),
            summary=summary,
        )

    # ------------------------------------------------------------------
    # Single record administration
    # ------------------------------------------------------------------

    def get_pending_domain(self, pending_id: str) -> PendingDomain:
        record = self._pending.get_by_id(pending_id)
        if record is None:
            raise PendingDomainNotFoundError(pending_id)
        return record

    def create_manual_pending_domain(
        self,
        *,
        domain_name: str,
        order_id: str,
        price: Decimal,
        currency: str = "INR",
        registration_period: int = 1,
        reason: Optional[str] = None,
        customer_id: Optional[str] = None,
        contact_id: Optional[str] = None,
        admin_contact_id: Optional[str] = None,
        tech_contact_id: Optional[str] = None,
        billing_contact_id: Optional[str] = None,
        name_servers: Sequence[str] = (),
        admin_notes: Optional[str] = None,
    ) -> PendingDomain:
        """
        Admin-created pending record.

        Raises:
            OrderNotFoundError: order_id does not reference a stored order
            DuplicatePendingDomainError: a record for the name already exists
        """
        order = self._orders.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)

        now = self._clock()
        record = PendingDomain(
            id=str(uuid.uuid4()),
            domain_name=normalize_domain_name(domain_name),
            price=price,
            currency=currency,
            registration_period=registration_period,
            user_id=order.user_id,
            order_id=order_id,
            status=PendingDomainStatus.PENDING,
            reason=reason or DEFAULT_PENDING_REASON,
            customer_id=customer_id,
            contact_id=contact_id,
            admin_contact_id=admin_contact_id,
            tech_contact_id=tech_contact_id,
            billing_contact_id=billing_contact_id,
            name_servers=tuple(name_servers),
            admin_notes=admin_notes,
            created_at=now,
            updated_at=now,
        )
        return self._pending.create(record)

    def update_pending_domain(
        self,
        pending_id: str,
        *,
        status: Optional[PendingDomainStatus] = None,
        reason: Optional[str] = None,
        admin_notes: Optional[str] = None,
    ) -> PendingDomain:
        """
        Admin override of status/reason/notes.

        completed/failed are mirrored into the originating order line item.
        `processing` is reserved for the retry lease and cannot be set here.

        Raises:
            OrderNotFoundError / LineItemNotFoundError: completed/failed was
                requested but the originating line item is gone; nothing is
                written
        """
        if status is PendingDomainStatus.PROCESSING:
            raise ValueError("status 'processing' is set only by a registration retry")

        record = self.get_pending_domain(pending_id)
        if status in (PendingDomainStatus.COMPLETED, PendingDomainStatus.FAILED):
            error = self._missing_line_item(record)
            if error is not None:
                raise error
        now = self._clock()

        changes: Dict[str, object] = {"updated_at": now}
        if reason is not None:
            changes["reason"] = reason
        if admin_notes is not None:
            changes["admin_notes"] = admin_notes

        expires_at: Optional[datetime] = None
        if status is not None:
            changes["status"] = status
            changes["lease_acquired_at"] = None
            if status is PendingDomainStatus.COMPLETED:
                expires_at = record.expires_at or registration_expiry(now, record.registration_period)
                changes["registered_at"] = record.registered_at or now
                changes["expires_at"] = expires_at

        updated = self._pending.update_fields(pending_id, changes)
        if updated is None:
            raise PendingDomainNotFoundError(pending_id)

        if status is PendingDomainStatus.COMPLETED:
            self._mirror_registered(updated, expires_at, "Marked as registered by admin")
        elif status is PendingDomainStatus.FAILED:
            self._mirror_failed(updated, reason or updated.reason)

        logger.info(
            f"Pending domain {updated.domain_name} updated by admin",
            extra={"pending_id": pending_id, "status": updated.status.value},
        )
        return updated

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_batch(self, pending_ids: Sequence[str]) -> VerificationReport:
        """
        Query the registrar for each referenced record that is still pending.

        Records are referenced by id; an identifier that matches no id is
        looked up as a domain name.

        Raises:
            NoPendingDomainsError: no id refers to a record with status pending
        """
        ids = [i for i in dict.fromkeys(pending_ids) if not i.startswith(ORDER_ITEM_PREFIX)]
        found = {record.id: record for record in self._pending.list_by_ids(ids)}
        for identifier in ids:
            if identifier in found or "." not in identifier:
                continue
            record = self._pending.get_by_domain_name(identifier)
            if record is not None:
                found[record.id] = record

        records = [
            record for record in found.values() if record.status is PendingDomainStatus.PENDING
        ]
        if not records:
            raise NoPendingDomainsError("No pending domains found")

        logger.info(f"Verifying {len(records)} pending domain(s)")
        results = [self._verify_one(record) for record in records]
        report = VerificationReport(results=results)

        logger.info(
            f"Verification completed: {report.successful} registered, "
            f"{report.pending} still pending, {report.failed} failed",
            extra={
                "verified": report.total,
                "successful": report.successful,
                "failed": report.failed,
            },
        )
        return report

    def _verify_one(self, record: PendingDomain) -> VerificationResult:
        now = self._clock()
        name = record.domain_name

        try:
            report = self._registrar.query_domain_status(name)
        except RegistrarError as e:
            if e.transient:
                reason = f"Verification failed: {e.message} (will retry)"
                return self._record(record, now, VerificationOutcome.PENDING, reason)
            reason = f"Verification failed: {e.message}"
            result = self._record(
                record, now, VerificationOutcome.FAILED, reason, status=PendingDomainStatus.FAILED
            )
            if result.outcome is VerificationOutcome.FAILED:
                result = replace(result, integrity_error=self._mirror_failed(record, reason))
            return result

        if report.state is RegistrarDomainState.ACTIVE:
            expires_at = report.expires_at or registration_expiry(now, record.registration_period)
            registrar_order_id = report.registrar_order_id or record.registrar_order_id
            result = self._record(
                record,
                now,
                VerificationOutcome.COMPLETED,
                VERIFIED_REASON,
                status=PendingDomainStatus.COMPLETED,
                registrar_order_id=registrar_order_id,
                registered_at=record.registered_at or now,
                expires_at=expires_at,
                lease_acquired_at=None,
                expires=expires_at,
            )
            if result.outcome is VerificationOutcome.COMPLETED:
                integrity_error = self._mirror_registered(
                    record, expires_at, "Registration confirmed by registrar", registrar_order_id
                )
                result = replace(result, integrity_error=integrity_error)
            return result

        if report.state is RegistrarDomainState.NOT_FOUND:
            # Treated as "not yet registered" rather than a rejection
            return self._record(record, now, VerificationOutcome.PENDING, NOT_FOUND_REASON)

        raw = f" ({report.raw_status})" if report.raw_status else ""
        return self._record(
            record,
            now,
            VerificationOutcome.PENDING,
            f"Registrar reports registration still pending{raw}",
        )

    def _record(
        self,
        record: PendingDomain,
        now: datetime,
        outcome: VerificationOutcome,
        reason: str,
        *,
        status: PendingDomainStatus = PendingDomainStatus.PENDING,
        expires: Optional[datetime] = None,
        **changes: object,
    ) -> VerificationResult:
        updated = self._pending.record_verification(
            record, now=now, status=status, reason=reason, **changes
        )
        if updated is None:
            logger.info(
                f"Pending domain {record.domain_name} changed during verification, skipped",
                extra={"pending_id": record.id},
            )
            return VerificationResult(
                pending_id=record.id,
                domain_name=record.domain_name,
                outcome=VerificationOutcome.SKIPPED,
                reason="Record changed concurrently",
                checked_at=now,
            )

        logger.info(
            f"Verified {record.domain_name}: {outcome.value}",
            extra={"pending_id": record.id, "domain_name": record.domain_name, "outcome": outcome.value},
        )
        return VerificationResult(
            pending_id=record.id,
            domain_name=record.domain_name,
            outcome=outcome,
            reason=reason,
            checked_at=now,
            expires_at=expires,
        )

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    def retry(self, pending_id: str) -> ProvisioningResult:
        """
        Admin-triggered registration retry.

        Claims the record's `processing` lease by compare-and-set; when the
        lease is held the registrar is not called and CONFLICT is returned.
        """
        record = self.get_pending_domain(pending_id)

        if record.status is PendingDomainStatus.COMPLETED:
            return ProvisioningResult(
                order_id=record.order_id,
                domain_name=record.domain_name,
                outcome=ProvisioningOutcome.ALREADY_FINALIZED,
                message="Domain registration already completed",
                registrar_order_id=record.registrar_order_id,
                expires_at=record.expires_at,
                pending_domain_id=record.id,
            )

        leased = self._pending.acquire_lease(
            pending_id, now=self._clock(), grace=self._provisioning.lease_grace
        )
        if leased is None:
            logger.warning(
                f"Retry for {record.domain_name} skipped: registration already in progress",
                extra={"pending_id": pending_id, "domain_name": record.domain_name},
            )
            return ProvisioningResult(
                order_id=record.order_id,
                domain_name=record.domain_name,
                outcome=ProvisioningOutcome.CONFLICT,
                message="Registration is already in progress",
                pending_domain_id=record.id,
            )

        logger.info(
            f"Retrying registration of {leased.domain_name}",
            extra={"pending_id": pending_id, "order_id": leased.order_id},
        )
        return self._provisioning.resume(leased)

    # ------------------------------------------------------------------
    # Order mirror
    # ------------------------------------------------------------------

    def _mirror_registered(
        self,
        record: PendingDomain,
        expires_at: Optional[datetime],
        message: str,
        registrar_order_id: Optional[str] = None,
    ) -> Optional[str]:
        now = self._clock()

        def mark(item):
            if not item.booking_log.can_append(BookingStep.DOMAIN_REGISTERED):
                return None
            return item.with_step(
                BookingStep.DOMAIN_REGISTERED,
                message,
                now,
                registrar_order_id=registrar_order_id or item.registrar_order_id,
                registered_at=item.registered_at or now,
                expires_at=expires_at,
                error=None,
            )

        return self._mirror(record, mark)

    def _mirror_failed(self, record: PendingDomain, reason: str) -> Optional[str]:
        now = self._clock()

        def mark(item):
            if not item.booking_log.can_append(BookingStep.DOMAIN_FAILED):
                return None
            return item.with_step(BookingStep.DOMAIN_FAILED, reason, now, error=reason)

        return self._mirror(record, mark)

    def _missing_line_item(self, record: PendingDomain) -> Optional[LookupError]:
        order = self._orders.get_order(record.order_id)
        if order is None:
            return OrderNotFoundError(record.order_id)
        if order.find_domain(record.domain_name) is None:
            return LineItemNotFoundError(record.order_id, record.domain_name)
        return None

    def _mirror(self, record: PendingDomain, mark) -> Optional[str]:
        """Apply `mark` to the originating line item. Returns an error message when it is gone."""

        missing = self._missing_line_item(record)
        if missing is not None:
            message = f"Order line item out of sync for {record.domain_name}: {missing}"
            logger.error(
                message,
                extra={"pending_id": record.id, "order_id": record.order_id},
            )
            return message

        try:
            updated = self._orders.update_line_item(
                record.order_id, record.domain_name, mark, now=self._clock()
            )
        except (OrderNotFoundError, LineItemNotFoundError) as e:
            message = f"Order line item out of sync for {record.domain_name}: {e}"
            logger.error(message, extra={"pending_id": record.id, "order_id": record.order_id})
            return message

        if updated is None:
            logger.info(
                f"Order line item for {record.domain_name} already final, not mirrored",
                extra={"pending_id": record.id, "order_id": record.order_id},
            )
        return None


__all__ = [
    "ReconciliationService",
    "PendingWorkItem",
    "PendingWorkFilter",
    "PendingWorkPage",
    "PendingWorkSource",
    "Pagination",
    "StatusSummary",
    "VerificationOutcome",
    "VerificationResult",
    "VerificationReport",
    "PendingDomainNotFoundError",
    "NoPendingDomainsError",
    "order_item_id",
    "project_order_items",
    "ORDER_ITEM_PREFIX",
    "VERIFIED_REASON",
    "NOT_FOUND_REASON",
]
