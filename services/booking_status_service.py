"""
User-facing booking status and DNS activation.

End users only ever see the coarse line-item status and the step log. The
registrar's error text stays on the order and pending records for operators;
failed steps are shown with a generic message instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional

from domain.booking import BookingStatusEntry, BookingStep, DomainStatus
from domain.order import DomainLineItem, normalize_domain_name
from domain.time import Clock, utc_now
from repositories.order_repository import (
    LineItemNotFoundError,
    OrderNotFoundError,
    OrderRepository,
)

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Domain registration could not be completed"


class DnsActivationError(ValueError):
    """DNS can only be activated for a registered domain."""


@dataclass(frozen=True, slots=True)
class BookingStatusView:
    order_id: str
    domain_name: str
    status: DomainStatus
    progress: int
    steps: List[BookingStatusEntry]
    message: Optional[str]
    expires_at: Optional[datetime] = None
    dns_activated: bool = False


def _public_entry(entry: BookingStatusEntry) -> BookingStatusEntry:
    if entry.step is BookingStep.DOMAIN_FAILED:
        return replace(entry, message=GENERIC_FAILURE_MESSAGE)
    return entry


def to_public_view(order_id: str, item: DomainLineItem) -> BookingStatusView:
    steps = [_public_entry(e) for e in item.booking_log.entries]
    if item.status is DomainStatus.FAILED:
        message: Optional[str] = GENERIC_FAILURE_MESSAGE
    else:
        message = steps[-1].message if steps else None
    return BookingStatusView(
        order_id=order_id,
        domain_name=item.domain_name,
        status=item.status,
        progress=item.progress,
        steps=steps,
        message=message,
        expires_at=item.expires_at,
        dns_activated=item.dns_activated,
    )


class BookingStatusService:
    def __init__(self, orders: OrderRepository, *, clock: Clock = utc_now):
        self._orders = orders
        self._clock = clock

    def _owned_item(self, user_id: str, order_id: str, domain_name: str) -> DomainLineItem:
        order = self._orders.get_order(order_id)
        # Orders of other users are reported as missing
        if order is None or order.is_deleted or order.user_id != user_id:
            raise OrderNotFoundError(order_id)
        item = order.find_domain(domain_name)
        if item is None:
            raise LineItemNotFoundError(order_id, domain_name)
        return item

    def get_booking_status(self, user_id: str, order_id: str, domain_name: str) -> BookingStatusView:
        """Polled by the storefront while a registration is in progress."""

        name = normalize_domain_name(domain_name)
        return to_public_view(order_id, self._owned_item(user_id, order_id, name))

    def activate_dns(self, user_id: str, order_id: str, domain_name: str) -> BookingStatusView:
        """
        Append dns_activated to a registered domain. Activating twice is a no-op.

        Raises:
            DnsActivationError: the domain is not registered
        """
        name = normalize_domain_name(domain_name)
        item = self._owned_item(user_id, order_id, name)
        if item.status is not DomainStatus.REGISTERED:
            raise DnsActivationError(
                f"Domain {name} must be registered before DNS can be activated"
            )

        now = self._clock()

        def activate(current: DomainLineItem) -> Optional[DomainLineItem]:
            if current.dns_activated or current.last_step is BookingStep.DNS_ACTIVATED:
                return None
            return current.with_step(
                BookingStep.DNS_ACTIVATED,
                "DNS activated",
                now,
                dns_activated=True,
                dns_activated_at=now,
            )

        updated = self._orders.update_line_item(order_id, name, activate, now=now)
        if updated is None:
            logger.info(
                f"DNS already active for {name}",
                extra={"order_id": order_id, "domain_name": name},
            )
            updated = self._owned_item(user_id, order_id, name)
        else:
            logger.info(
                f"DNS activated for {name}",
                extra={"order_id": order_id, "domain_name": name, "step": BookingStep.DNS_ACTIVATED.value},
            )
        return to_public_view(order_id, updated)


__all__ = [
    "BookingStatusService",
    "BookingStatusView",
    "DnsActivationError",
    "GENERIC_FAILURE_MESSAGE",
    "to_public_view",
]
