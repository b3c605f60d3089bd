"""
Order repository (persistence).

Orders are stored as one row per order in the `orders` table, with the domain
line items embedded as a JSON list (the document shape of the storefront).

Writes to an existing order are compare-and-set on the row's `version`
column: the order is re-read, the change is applied to the domain model, and
the update only lands if nobody else wrote in between. That gives an atomic
append to a line item's booking-status log without a server-side function.

Step ordering is validated by the domain model before anything is written, so
an out-of-order append is rejected here at the store boundary.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Optional

from domain.booking import BookingLog, BookingStep
from domain.order import DomainLineItem, Order, OrderStatus
from domain.time import optional_iso_utc, parse_optional_utc, to_iso_utc

logger = logging.getLogger(__name__)

# Supabase table name for orders.
# Keep this aligned with your database schema.
_ORDERS_TABLE: str = "orders"

# Attempts before a compare-and-set write gives up
_MAX_CAS_ATTEMPTS: int = 5


class OrderNotFoundError(LookupError):
    """Raised when an order reference does not resolve to a stored order."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class LineItemNotFoundError(LookupError):
    """Raised when a domain is not part of the referenced order."""

    def __init__(self, order_id: str, domain_name: str):
        self.order_id = order_id
        self.domain_name = domain_name
        super().__init__(f"Domain {domain_name} not found in order {order_id}")


class ConcurrentUpdateError(RuntimeError):
    """Raised when a compare-and-set write keeps losing to concurrent writers."""


def _line_item_to_dict(item: DomainLineItem) -> dict[str, Any]:
    return {
        "domain_name": item.domain_name,
        "price": str(item.price),
        "currency": item.currency,
        "registration_period": item.registration_period,
        # Denormalized for readers that only need the coarse status
        "status": item.status.value,
        "booking_status": item.booking_log.to_dicts(),
        "name_servers": list(item.name_servers),
        "registrar_order_id": item.registrar_order_id,
        "customer_id": item.customer_id,
        "contact_id": item.contact_id,
        "registered_at": optional_iso_utc(item.registered_at, name="registered_at"),
        "expires_at": optional_iso_utc(item.expires_at, name="expires_at"),
        "dns_activated": item.dns_activated,
        "dns_activated_at": optional_iso_utc(item.dns_activated_at, name="dns_activated_at"),
        "error": item.error,
        "lease_acquired_at": optional_iso_utc(item.lease_acquired_at, name="lease_acquired_at"),
        "cancelled": item.cancelled,
    }


def _optional_str(value: Any) -> Optional[str]:
    return None if value in (None, "") else str(value)


def _dict_to_line_item(raw: Mapping[str, Any]) -> DomainLineItem:
    return DomainLineItem(
        domain_name=str(raw["domain_name"]),
        price=Decimal(str(raw["price"])),
        currency=str(raw.get("currency", "INR")),
        registration_period=int(raw.get("registration_period", 1)),
        booking_log=BookingLog.from_dicts(raw.get("booking_status")),
        name_servers=tuple(raw.get("name_servers") or ()),
        registrar_order_id=_optional_str(raw.get("registrar_order_id")),
        customer_id=_optional_str(raw.get("customer_id")),
        contact_id=_optional_str(raw.get("contact_id")),
        registered_at=parse_optional_utc(raw.get("registered_at")),
        expires_at=parse_optional_utc(raw.get("expires_at")),
        dns_activated=bool(raw.get("dns_activated", False)),
        dns_activated_at=parse_optional_utc(raw.get("dns_activated_at")),
        error=raw.get("error"),
        lease_acquired_at=parse_optional_utc(raw.get("lease_acquired_at")),
        cancelled=bool(raw.get("cancelled", False)),
    )


def _row_to_order(row: Mapping[str, Any]) -> Order:
    """Convert a Supabase row into an Order."""

    return Order(
        order_id=str(row["order_id"]),
        user_id=str(row["user_id"]),
        payment_id=str(row["payment_id"]),
        amount=Decimal(str(row["amount"])),
        currency=str(row.get("currency", "INR")),
        status=OrderStatus(str(row.get("status", "pending"))),
        domains=tuple(_dict_to_line_item(d) for d in (row.get("domains") or [])),
        is_deleted=bool(row.get("is_deleted", False)),
        invoice_number=row.get("invoice_number"),
        created_at=parse_optional_utc(row.get("created_at")),
        updated_at=parse_optional_utc(row.get("updated_at")),
        version=int(row.get("version", 0)),
    )


def _order_to_row(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.order_id,
        "user_id": order.user_id,
        "payment_id": order.payment_id,
        "amount": str(order.amount),
        "currency": order.currency,
        "status": order.status.value,
        "is_deleted": order.is_deleted,
        "invoice_number": order.invoice_number,
        "domains": [_line_item_to_dict(d) for d in order.domains],
        "has_unfinished_domains": order.has_unfinished_domains,
        "version": order.version,
        "created_at": optional_iso_utc(order.created_at, name="created_at"),
        "updated_at": optional_iso_utc(order.updated_at, name="updated_at"),
    }


class OrderRepository:
    """Persistence operations for orders and their embedded line items."""

    def __init__(self, client: Any):
        self._client = client

    def create_order(self, order: Order) -> Order:
        """Insert a new order. Line items are only ever added here."""

        response = self._client.table(_ORDERS_TABLE).insert(_order_to_row(order)).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to create order: {error}")

        logger.info(
            f"Order {order.order_id} created with {len(order.domains)} domain(s)",
            extra={"order_id": order.order_id, "user_id": order.user_id},
        )
        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        response = (
            self._client.table(_ORDERS_TABLE)
            .select("*")
            .eq("order_id", order_id)
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to get order: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_order(rows[0])

    def require_order(self, order_id: str) -> Order:
        order = self.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def list_orders_with_unfinished_domains(self) -> List[Order]:
        """
        Non-deleted orders holding at least one pending/processing line item,
        newest first.
        """

        response = (
            self._client.table(_ORDERS_TABLE)
            .select("*")
            .eq("is_deleted", False)
            .eq("has_unfinished_domains", True)
            .order("created_at", desc=True)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list orders with unfinished domains: {error}")

        rows = getattr(response, "data", None) or []
        return [_row_to_order(row) for row in rows]

    def _compare_and_set(
        self,
        order_id: str,
        transform: Callable[[Order], Optional[Order]],
        now: datetime,
    ) -> Optional[Order]:
        """
        Apply `transform` to the current order and write it back if the
        version is unchanged. `transform` returning None aborts without writing.
        """

        for _ in range(_MAX_CAS_ATTEMPTS):
            current = self.require_order(order_id)
            updated = transform(current)
            if updated is None:
                return None

            updated = replace(updated, version=current.version + 1, updated_at=now)
            response = (
                self._client.table(_ORDERS_TABLE)
                .update({
                    "domains": [_line_item_to_dict(d) for d in updated.domains],
                    "has_unfinished_domains": updated.has_unfinished_domains,
                    "status": updated.status.value,
                    "version": updated.version,
                    "updated_at": to_iso_utc(now, name="updated_at"),
                })
                .eq("order_id", order_id)
                .eq("version", current.version)
                .execute()
            )
            error = getattr(response, "error", None)
            if error:
                raise RuntimeError(f"Failed to update order: {error}")

            if getattr(response, "data", None):
                return updated

            logger.debug(f"Order {order_id} changed concurrently, retrying write")

        raise ConcurrentUpdateError(
            f"Order {order_id} kept changing; gave up after {_MAX_CAS_ATTEMPTS} attempts"
        )

    def update_line_item(
        self,
        order_id: str,
        domain_name: str,
        mutate: Callable[[DomainLineItem], Optional[DomainLineItem]],
        *,
        now: datetime,
    ) -> Optional[DomainLineItem]:
        """Compare-and-set one line item. `mutate` returning None aborts."""

        result: dict[str, DomainLineItem] = {}

        def transform(order: Order) -> Optional[Order]:
            item = order.find_domain(domain_name)
            if item is None:
                raise LineItemNotFoundError(order_id, domain_name)
            updated = mutate(item)
            if updated is None:
                return None
            result["item"] = updated
            return order.replace_domain(updated)

        written = self._compare_and_set(order_id, transform, now)
        if written is None:
            return None
        return result["item"]

    def append_booking_status(
        self,
        order_id: str,
        domain_name: str,
        step: BookingStep,
        message: str,
        *,
        now: datetime,
        progress: Optional[int] = None,
        **changes: Any,
    ) -> DomainLineItem:
        """
        Atomically append one booking-status entry and apply field changes.

        Raises InvalidBookingTransitionError when the step is out of order.
        """

        item = self.update_line_item(
            order_id,
            domain_name,
            lambda current: current.with_step(step, message, now, progress, **changes),
            now=now,
        )
        if item is None:
            raise RuntimeError(f"Failed to append {step.value} for {domain_name} in order {order_id}")
        logger.info(
            f"[{domain_name}] {step.value} ({item.progress}%): {message}",
            extra={"order_id": order_id, "domain_name": domain_name, "step": step.value},
        )
        return item

    def acquire_line_item_lease(
        self,
        order_id: str,
        domain_name: str,
        *,
        now: datetime,
        grace: timedelta,
    ) -> Optional[DomainLineItem]:
        """
        Claim the line item for one saga run.

        Returns None when another run holds a fresh lease. A lease older than
        `grace` is considered abandoned and is taken over.
        """

        def claim(item: DomainLineItem) -> Optional[DomainLineItem]:
            if item.lease_is_held(now, grace):
                return None
            if item.lease_acquired_at is not None:
                logger.warning(
                    f"Taking over stale lease on {domain_name} in order {order_id}",
                    extra={"order_id": order_id, "domain_name": domain_name},
                )
            return replace(item, lease_acquired_at=now)

        return self.update_line_item(order_id, domain_name, claim, now=now)

    def release_line_item_lease(
        self,
        order_id: str,
        domain_name: str,
        *,
        acquired_at: datetime,
        now: datetime,
    ) -> bool:
        """
        Clear the lease taken at `acquired_at`.

        A lease taken over by another run in the meantime is left alone.
        Returns True if the lease was released.
        """

        def release(item: DomainLineItem) -> Optional[DomainLineItem]:
            if item.lease_acquired_at != acquired_at:
                return None
            return replace(item, lease_acquired_at=None)

        released = self.update_line_item(order_id, domain_name, release, now=now)
        if released is None:
            logger.warning(
                f"Lease on {domain_name} in order {order_id} is no longer ours, not released",
                extra={"order_id": order_id, "domain_name": domain_name},
            )
        return released is not None


__all__ = [
    "OrderRepository",
    "OrderNotFoundError",
    "LineItemNotFoundError",
    "ConcurrentUpdateError",
]
