"""
Domain provisioning service (registration saga).

Drives one paid domain line item through the registrar:

1. registrar customer  -> customer_created (40)
2. registrar contacts  -> contact_created (60)
3. domain registration -> domain_registering (80) before the call
4. success             -> domain_registered (100), expiry = now + period x 365 days
5. failure             -> domain_failed, line item failed, pending domain upserted

Each step's log entry is durable before the next step starts. Steps whose ids
are already known (from the hint, the user profile, the line item or a pending
record) are not repeated, so a retry never creates a second customer or contact.

Exceptions from external calls never escape `execute`/`resume`: every path
ends with the line item and/or pending record in a terminal or explicitly
resumable state, and a typed ProvisioningResult is returned.

Ownership: a first run claims the line item lease (`lease_acquired_at`); an
operator retry (`resume`) runs under the pending record's `processing` lease.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from domain.booking import BookingStep, DomainStatus
from domain.customer import CustomerProfile
from domain.order import DomainLineItem, normalize_domain_name, registration_expiry
from domain.pending_domain import DEFAULT_LEASE_GRACE, PendingDomain, PendingDomainStatus
from domain.registrar import (
    ContactIds,
    ContactRole,
    DomainAlreadyRegisteredError,
    Registrar,
    RegistrarDomainState,
    RegistrarError,
    RegistrarHint,
)
from domain.time import Clock, utc_now
from repositories.order_repository import LineItemNotFoundError, OrderNotFoundError, OrderRepository
from repositories.pending_domain_repository import ClosedPendingDomainError, PendingDomainRepository
from repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

AWAITING_REGISTRY_REASON = "Awaiting registry confirmation"


class ProvisioningOutcome(str, Enum):
    REGISTERED = "registered"
    # Accepted by the registrar, not yet active; verification finishes it
    PENDING = "pending"
    FAILED = "failed"
    # Another run holds the lease; nothing was called
    CONFLICT = "conflict"
    # Line item was already registered/failed/cancelled or awaiting verification
    ALREADY_FINALIZED = "already_finalized"


@dataclass(frozen=True, slots=True)
class ProvisioningResult:
    """
    Result of one saga run.

    error carries the raw registrar message for operators; user-facing
    surfaces must not show it. integrity_error is set when the outcome could
    not be recorded on a pending record because that record is closed.
    """
    order_id: str
    domain_name: str
    outcome: ProvisioningOutcome
    message: str
    registrar_order_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None
    transient: bool = False
    pending_domain_id: Optional[str] = None
    integrity_error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome is ProvisioningOutcome.REGISTERED


@dataclass
class _SagaState:
    """Mutable working state of one run. Identifiers fill in as steps complete."""
    order_id: str
    user_id: str
    domain_name: str
    registration_period: int
    price: Decimal
    currency: str
    name_servers: Tuple[str, ...]
    customer_id: Optional[str] = None
    contacts: Optional[ContactIds] = None
    # Role-specific contact ids an operator set for only some roles
    contact_overrides: Dict[ContactRole, str] = field(default_factory=dict)
    item: Optional[DomainLineItem] = None
    pending: Optional[PendingDomain] = None
    profile: Optional[CustomerProfile] = field(default=None, repr=False)

    @property
    def last_step(self) -> Optional[BookingStep]:
        return self.item.last_step if self.item is not None else None


class DomainProvisioningService:
    def __init__(
        self,
        orders: OrderRepository,
        pending_domains: PendingDomainRepository,
        users: UserRepository,
        registrar: Registrar,
        *,
        clock: Clock = utc_now,
        lease_grace: timedelta = DEFAULT_LEASE_GRACE,
        default_name_servers: Sequence[str] = (),
    ):
        self._orders = orders
        self._pending = pending_domains
        self._users = users
        self._registrar = registrar
        self._clock = clock
        self._lease_grace = lease_grace
        self._default_name_servers = tuple(default_name_servers)

    @property
    def lease_grace(self) -> timedelta:
        return self._lease_grace

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def execute(
        self,
        order_id: str,
        domain_name: str,
        hint: Optional[RegistrarHint] = None,
    ) -> ProvisioningResult:
        """
        Run the saga for one line item of a paid order.

        Args:
            order_id: Order holding the line item
            domain_name: Domain of the line item (case-insensitive)
            hint: Registrar ids already known to the caller

        Returns:
            ProvisioningResult (never raises for registrar failures)

        Raises:
            OrderNotFoundError / LineItemNotFoundError: the reference is invalid
            ValueError: payment_verified was not recorded before invocation
        """
        hint = hint or RegistrarHint()
        name = normalize_domain_name(domain_name)

        order = self._orders.require_order(order_id)
        item = order.find_domain(name)
        if item is None:
            raise LineItemNotFoundError(order_id, name)

        if item.last_step is None:
            raise ValueError(f"Payment has not been verified for {name} in order {order_id}")

        if item.status is not DomainStatus.PROCESSING:
            logger.info(
                f"[{name}] Line item already {item.status.value}, nothing to do",
                extra={"order_id": order_id, "domain_name": name},
            )
            return ProvisioningResult(
                order_id=order_id,
                domain_name=name,
                outcome=ProvisioningOutcome.ALREADY_FINALIZED,
                message=f"Domain is already {item.status.value}",
                registrar_order_id=item.registrar_order_id,
                expires_at=item.expires_at,
            )

        now = self._clock()
        leased = self._orders.acquire_line_item_lease(
            order_id, name, now=now, grace=self._lease_grace
        )
        if leased is None:
            logger.warning(
                f"[{name}] Another provisioning run holds the lease, skipping",
                extra={"order_id": order_id, "domain_name": name},
            )
            return ProvisioningResult(
                order_id=order_id,
                domain_name=name,
                outcome=ProvisioningOutcome.CONFLICT,
                message="Registration is already in progress",
            )

        # Re-check under the lease: a run that just finished may have released it
        if leased.status is not DomainStatus.PROCESSING:
            self._release_line_item_lease(order_id, name, now)
            return ProvisioningResult(
                order_id=order_id,
                domain_name=name,
                outcome=ProvisioningOutcome.ALREADY_FINALIZED,
                message=f"Domain is already {leased.status.value}",
                registrar_order_id=leased.registrar_order_id,
                expires_at=leased.expires_at,
            )

        contacts = hint.contacts
        if contacts is None and leased.contact_id:
            contacts = ContactIds.shared(leased.contact_id)

        state = _SagaState(
            order_id=order_id,
            user_id=order.user_id,
            domain_name=name,
            registration_period=leased.registration_period,
            price=leased.price,
            currency=leased.currency,
            name_servers=tuple(hint.name_servers)
            or leased.name_servers
            or self._default_name_servers,
            customer_id=hint.customer_id or leased.customer_id,
            contacts=contacts,
            item=leased,
        )

        try:
            return self._run(state)
        finally:
            self._release_line_item_lease(order_id, name, now)

    def resume(self, pending: PendingDomain) -> ProvisioningResult:
        """
        Operator retry of a pending domain that is already leased (`processing`).

        Steps 1-2 run only for identifiers that are still missing. On success
        the pending record is completed and the line item registered. A
        permanent failure marks the record failed; a transient one returns it
        to pending so it can be retried again.

        Raises:
            OrderNotFoundError / LineItemNotFoundError: the record points at no
                stored line item; the record is marked failed and the
                registrar is not called
        """
        order = self._orders.get_order(pending.order_id)
        item = order.find_domain(pending.domain_name) if order is not None else None
        if order is None or item is None:
            error: LookupError = (
                OrderNotFoundError(pending.order_id)
                if order is None
                else LineItemNotFoundError(pending.order_id, pending.domain_name)
            )
            logger.error(
                f"[{pending.domain_name}] Retry refused: {error}",
                extra={"pending_id": pending.id, "order_id": pending.order_id},
            )
            self._pending.update_fields(
                pending.id,
                {
                    "status": PendingDomainStatus.FAILED,
                    "reason": f"Retry refused: {error}",
                    "lease_acquired_at": None,
                    "updated_at": self._clock(),
                },
            )
            raise error

        if item.status is DomainStatus.REGISTERED:
            now = self._clock()
            self._pending.update_fields(
                pending.id,
                {
                    "status": PendingDomainStatus.COMPLETED,
                    "reason": "Domain already registered for the originating order",
                    "registrar_order_id": item.registrar_order_id,
                    "registered_at": item.registered_at,
                    "expires_at": item.expires_at,
                    "lease_acquired_at": None,
                    "updated_at": now,
                },
            )
            return ProvisioningResult(
                order_id=pending.order_id,
                domain_name=pending.domain_name,
                outcome=ProvisioningOutcome.REGISTERED,
                message="Domain was already registered",
                registrar_order_id=item.registrar_order_id,
                expires_at=item.expires_at,
                pending_domain_id=pending.id,
            )

        overrides = pending.contact_overrides()
        contacts = pending.contacts()
        if contacts is None and item.contact_id:
            contacts = _apply_overrides(ContactIds.shared(item.contact_id), overrides)

        state = _SagaState(
            order_id=pending.order_id,
            user_id=pending.user_id,
            domain_name=pending.domain_name,
            registration_period=pending.registration_period,
            price=pending.price,
            currency=pending.currency,
            name_servers=pending.name_servers
            or item.name_servers
            or self._default_name_servers,
            customer_id=pending.customer_id or item.customer_id,
            contacts=contacts,
            contact_overrides=overrides,
            item=item,
            pending=pending,
        )
        return self._run(state)

    # ------------------------------------------------------------------
    # Saga
    # ------------------------------------------------------------------

    def _run(self, state: _SagaState) -> ProvisioningResult:
        try:
            self._ensure_customer(state)
            self._ensure_contacts(state)
            registrar_order_id, expires_at, accepted_pending = self._register(state)
        except Exception as e:
            return self._fail(state, e)

        if accepted_pending:
            return self._mark_awaiting_registry(state, registrar_order_id)
        return self._complete(state, registrar_order_id, expires_at)

    def _append(self, state: _SagaState, step: BookingStep, message: str, **changes: Any) -> None:
        if state.item is None:
            logger.info(f"[{state.domain_name}] {step.value}: {message}")
            return
        state.item = self._orders.append_booking_status(
            state.order_id,
            state.domain_name,
            step,
            message,
            now=self._clock(),
            **changes,
        )

    def _can_log(self, state: _SagaState, step: BookingStep) -> bool:
        # A retry resuming after a late failure skips entries the log can no longer take
        return state.item is None or state.item.booking_log.can_append(step)

    def _load_profile(self, state: _SagaState) -> CustomerProfile:
        if state.profile is None:
            profile = self._users.get_profile(state.user_id)
            if profile is None:
                raise RegistrarError(f"Customer profile not found for user {state.user_id}")
            state.profile = profile
        return state.profile

    def _ensure_customer(self, state: _SagaState) -> None:
        if state.customer_id is not None:
            if state.last_step is BookingStep.PAYMENT_VERIFIED:
                self._append(
                    state,
                    BookingStep.CUSTOMER_CREATED,
                    "Using existing registrar customer",
                    customer_id=state.customer_id,
                )
            return

        profile = self._load_profile(state)
        if profile.registrar_customer_id:
            customer_id = profile.registrar_customer_id
            message = "Using existing registrar customer"
        else:
            customer_id = self._registrar.create_or_get_customer(profile)
            self._users.save_registrar_ids(state.user_id, now=self._clock(), customer_id=customer_id)
            message = "Registrar customer created"

        state.customer_id = customer_id
        if self._can_log(state, BookingStep.CUSTOMER_CREATED):
            self._append(state, BookingStep.CUSTOMER_CREATED, message, customer_id=customer_id)

    def _ensure_contacts(self, state: _SagaState) -> None:
        customer_id = self._require_customer_id(state)

        if state.contacts is not None:
            if state.last_step is BookingStep.CUSTOMER_CREATED:
                self._append(
                    state,
                    BookingStep.CONTACT_CREATED,
                    "Using existing registrar contacts",
                    contact_id=state.contacts.admin,
                )
            return

        profile = self._load_profile(state)
        if self._registrar.shares_contact_roles:
            if profile.registrar_contact_id:
                contact_id = profile.registrar_contact_id
                message = "Using existing registrar contact"
            else:
                contact_id = self._registrar.create_or_get_contact(
                    customer_id, profile, ContactRole.ADMIN
                )
                self._users.save_registrar_ids(state.user_id, now=self._clock(), contact_id=contact_id)
                message = "Registrar contact created"
            contacts = ContactIds.shared(contact_id)
        else:
            created = {
                role: state.contact_overrides.get(role)
                or self._registrar.create_or_get_contact(customer_id, profile, role)
                for role in (ContactRole.ADMIN, ContactRole.TECH, ContactRole.BILLING)
            }
            contacts = ContactIds(
                admin=created[ContactRole.ADMIN],
                tech=created[ContactRole.TECH],
                billing=created[ContactRole.BILLING],
            )
            message = "Registrar contacts created"

        state.contacts = _apply_overrides(contacts, state.contact_overrides)
        if self._can_log(state, BookingStep.CONTACT_CREATED):
            self._append(state, BookingStep.CONTACT_CREATED, message, contact_id=state.contacts.admin)

    def _require_customer_id(self, state: _SagaState) -> str:
        if state.customer_id is None:
            raise RuntimeError(f"No registrar customer resolved for {state.domain_name}")
        return state.customer_id

    def _register(self, state: _SagaState) -> Tuple[Optional[str], Optional[datetime], bool]:
        """Returns (registrar order id, expiry from registrar, accepted-but-pending)."""

        customer_id = self._require_customer_id(state)
        if state.contacts is None:
            raise RuntimeError(f"No registrar contacts resolved for {state.domain_name}")

        if self._can_log(state, BookingStep.DOMAIN_REGISTERING):
            self._append(state, BookingStep.DOMAIN_REGISTERING, "Registering domain with registrar")

        try:
            receipt = self._registrar.register_domain(
                state.domain_name,
                state.registration_period,
                customer_id,
                state.name_servers,
                state.contacts,
            )
        except DomainAlreadyRegisteredError as e:
            logger.info(
                f"[{state.domain_name}] Registrar reports duplicate registration, checking status",
                extra={"order_id": state.order_id, "domain_name": state.domain_name},
            )
            report = self._registrar.query_domain_status(state.domain_name)
            if report.state is not RegistrarDomainState.ACTIVE:
                raise RegistrarError(e.message, transient=e.transient) from e
            return report.registrar_order_id, report.expires_at, False

        return receipt.registrar_order_id, receipt.expires_at, receipt.pending

    def _complete(
        self,
        state: _SagaState,
        registrar_order_id: Optional[str],
        expires_at: Optional[datetime],
    ) -> ProvisioningResult:
        now = self._clock()
        expires_at = expires_at or registration_expiry(now, state.registration_period)

        self._append(
            state,
            BookingStep.DOMAIN_REGISTERED,
            "Domain registered successfully",
            registrar_order_id=registrar_order_id,
            registered_at=now,
            expires_at=expires_at,
            error=None,
        )

        if state.pending is not None:
            self._pending.update_fields(
                state.pending.id,
                {
                    "status": PendingDomainStatus.COMPLETED,
                    "reason": "Domain registered successfully via admin retry",
                    "registrar_order_id": registrar_order_id,
                    "registered_at": now,
                    "expires_at": expires_at,
                    "customer_id": state.customer_id,
                    "contact_id": state.contacts.admin if state.contacts else None,
                    "lease_acquired_at": None,
                    "updated_at": now,
                },
            )

        logger.info(
            f"[{state.domain_name}] Registered (registrar order {registrar_order_id})",
            extra={
                "order_id": state.order_id,
                "domain_name": state.domain_name,
                "outcome": ProvisioningOutcome.REGISTERED.value,
            },
        )
        return ProvisioningResult(
            order_id=state.order_id,
            domain_name=state.domain_name,
            outcome=ProvisioningOutcome.REGISTERED,
            message="Domain registered successfully",
            registrar_order_id=registrar_order_id,
            expires_at=expires_at,
            pending_domain_id=state.pending.id if state.pending is not None else None,
        )

    def _mark_awaiting_registry(
        self, state: _SagaState, registrar_order_id: Optional[str]
    ) -> ProvisioningResult:
        now = self._clock()
        self._append(
            state,
            BookingStep.DOMAIN_PENDING,
            "Registration submitted, awaiting registry confirmation",
            registrar_order_id=registrar_order_id,
        )

        integrity_error: Optional[str] = None
        if state.pending is not None:
            record = self._pending.update_fields(
                state.pending.id,
                {
                    "status": PendingDomainStatus.PENDING,
                    "reason": AWAITING_REGISTRY_REASON,
                    "registrar_order_id": registrar_order_id,
                    "lease_acquired_at": None,
                    "updated_at": now,
                },
            )
        else:
            record, integrity_error = self._record_pending(state, AWAITING_REGISTRY_REASON, now)

        return ProvisioningResult(
            order_id=state.order_id,
            domain_name=state.domain_name,
            outcome=ProvisioningOutcome.PENDING,
            message=AWAITING_REGISTRY_REASON,
            registrar_order_id=registrar_order_id,
            pending_domain_id=record.id if record is not None else None,
            integrity_error=integrity_error,
        )

    def _fail(self, state: _SagaState, error: Exception) -> ProvisioningResult:
        transient = isinstance(error, RegistrarError) and error.transient
        message = error.message if isinstance(error, RegistrarError) else str(error) or type(error).__name__

        if isinstance(error, RegistrarError):
            logger.warning(
                f"[{state.domain_name}] Registration failed: {message}",
                extra={
                    "order_id": state.order_id,
                    "domain_name": state.domain_name,
                    "transient": transient,
                },
            )
        else:
            logger.exception(
                f"[{state.domain_name}] Unexpected error during provisioning",
                extra={"order_id": state.order_id, "domain_name": state.domain_name},
            )

        now = self._clock()
        self._append(state, BookingStep.DOMAIN_FAILED, message, error=message)

        integrity_error: Optional[str] = None
        if state.pending is not None:
            status = PendingDomainStatus.PENDING if transient else PendingDomainStatus.FAILED
            record = self._pending.update_fields(
                state.pending.id,
                {
                    "status": status,
                    "reason": message,
                    "customer_id": state.customer_id,
                    "contact_id": state.contacts.admin if state.contacts else None,
                    "lease_acquired_at": None,
                    "updated_at": now,
                },
            )
        else:
            record, integrity_error = self._record_pending(state, message, now)

        return ProvisioningResult(
            order_id=state.order_id,
            domain_name=state.domain_name,
            outcome=ProvisioningOutcome.FAILED,
            message="Domain registration failed",
            error=message,
            transient=transient,
            pending_domain_id=record.id if record is not None else None,
            integrity_error=integrity_error,
        )

    def _record_pending(
        self, state: _SagaState, reason: str, now: datetime
    ) -> Tuple[Optional[PendingDomain], Optional[str]]:
        """
        Create or refresh the pending record of an unfinished first run.

        Returns (record, integrity error). A completed record for the same
        name is never reopened; the conflict is reported instead.
        """
        try:
            record = self._pending.upsert_by_domain_name(
                domain_name=state.domain_name,
                order_id=state.order_id,
                user_id=state.user_id,
                price=state.price,
                currency=state.currency,
                registration_period=state.registration_period,
                reason=reason,
                now=now,
                customer_id=state.customer_id,
                contact_id=state.contacts.admin if state.contacts else None,
                name_servers=state.name_servers,
                lease_grace=self._lease_grace,
            )
        except ClosedPendingDomainError as e:
            logger.error(
                f"[{state.domain_name}] Cannot record pending work for order {state.order_id}: {e}",
                extra={
                    "order_id": state.order_id,
                    "domain_name": state.domain_name,
                    "pending_id": e.record.id,
                },
            )
            return None, str(e)
        return record, None

    def _release_line_item_lease(self, order_id: str, domain_name: str, acquired_at: datetime) -> None:
        try:
            self._orders.release_line_item_lease(
                order_id, domain_name, acquired_at=acquired_at, now=self._clock()
            )
        except Exception:
            # The lease goes stale after the grace period and is taken over then
            logger.exception(
                f"[{domain_name}] Failed to release line item lease",
                extra={"order_id": order_id, "domain_name": domain_name},
            )


def _apply_overrides(contacts: ContactIds, overrides: Dict[ContactRole, str]) -> ContactIds:
    """Role-specific contact ids win over the ones resolved for the run."""

    return ContactIds(
        admin=overrides.get(ContactRole.ADMIN) or contacts.admin,
        tech=overrides.get(ContactRole.TECH) or contacts.tech,
        billing=overrides.get(ContactRole.BILLING) or contacts.billing,
    )


__all__ = [
    "DomainProvisioningService",
    "ProvisioningOutcome",
    "ProvisioningResult",
    "AWAITING_REGISTRY_REASON",
    "DEFAULT_LEASE_GRACE",
]
