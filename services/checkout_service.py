"""
Checkout service for paid domain orders.

Handles:
- Cart quotes priced through the TLD pricing cache
- Recording a paid order (one line item per domain, log starting at payment_verified)
- Starting the registration saga for every domain of the order

Payment capture itself happens elsewhere; this service only accepts a
confirmation fact (paid yes/no plus amount and currency) for the order.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from domain.booking import BookingLog, BookingStep
from domain.order import DomainLineItem, Order, OrderStatus, normalize_domain_name
from domain.pricing import tld_of
from domain.time import Clock, utc_now
from repositories.order_repository import OrderRepository
from services.provisioning_service import DomainProvisioningService, ProvisioningResult
from services.tld_pricing_cache import TLDPricingCache

logger = logging.getLogger(__name__)

QUOTE_VALIDITY_MINUTES: int = 15

_INVOICE_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


class UnsupportedTLDError(ValueError):
    """No price is listed for the extension of a requested domain."""

    def __init__(self, domain_name: str, tld: str):
        self.domain_name = domain_name
        self.tld = tld
        super().__init__(f"Extension .{tld} is not available for {domain_name}")


class PaymentNotConfirmedError(ValueError):
    """Payment is missing, unconfirmed, or does not match the quoted total."""


@dataclass(frozen=True, slots=True)
class CartItem:
    """One domain requested at checkout."""
    domain_name: str
    registration_period: int = 1
    name_servers: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class QuotedDomain:
    """
    Price for one cart item.

    unit_price is the one-year price; price covers the whole registration period.
    """
    domain_name: str
    tld: str
    registration_period: int
    unit_price: Decimal
    price: Decimal
    currency: str
    name_servers: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CartQuote:
    items: List[QuotedDomain]
    subtotal: Decimal
    currency: str
    created_at: datetime
    expires_at: datetime

    @property
    def total_items(self) -> int:
        return len(self.items)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True, slots=True)
class PaymentConfirmation:
    payment_id: str
    confirmed: bool
    amount: Decimal
    currency: str


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    order: Order
    results: List[ProvisioningResult] = field(default_factory=list)

    @property
    def registered(self) -> List[str]:
        return [r.domain_name for r in self.results if r.success]

    @property
    def unfinished(self) -> List[str]:
        return [r.domain_name for r in self.results if not r.success]


def generate_order_id(now: datetime) -> str:
    return f"ord_{int(now.timestamp() * 1000)}_{secrets.token_hex(4)}"


def generate_invoice_number(now: datetime) -> str:
    digits = str(int(now.timestamp() * 1000))[-6:]
    suffix = "".join(secrets.choice(_INVOICE_SUFFIX_ALPHABET) for _ in range(3))
    return f"INV-{digits}-{suffix}"


class CheckoutService:
    def __init__(
        self,
        orders: OrderRepository,
        pricing: TLDPricingCache,
        provisioning: DomainProvisioningService,
        *,
        clock: Clock = utc_now,
        quote_validity_minutes: int = QUOTE_VALIDITY_MINUTES,
    ):
        self._orders = orders
        self._pricing = pricing
        self._provisioning = provisioning
        self._clock = clock
        self._quote_validity = timedelta(minutes=quote_validity_minutes)

    def quote_cart(self, items: Sequence[CartItem]) -> CartQuote:
        """
        Price every domain in the cart.

        Args:
            items: Domains to quote (at least one, no duplicates)

        Returns:
            CartQuote with itemized pricing

        Raises:
            ValueError: empty cart, duplicate domain, or mixed currencies
            UnsupportedTLDError: an extension has no listed price

        Example:
            quote = checkout.quote_cart([CartItem("example.com", 2)])
            print(f"Total: {quote.subtotal} {quote.currency}")
        """
        if not items:
            raise ValueError("Cart is empty")

        snapshot = self._pricing.get_snapshot()
        quoted: List[QuotedDomain] = []
        seen: set[str] = set()

        for item in items:
            name = normalize_domain_name(item.domain_name)
            if name in seen:
                raise ValueError(f"Duplicate domain in cart: {name}")
            seen.add(name)

            if item.registration_period < 1 or item.registration_period > 10:
                raise ValueError(f"registration_period must be between 1 and 10 years for {name}")

            tld = tld_of(name)
            entry = snapshot.get(tld)
            if entry is None:
                raise UnsupportedTLDError(name, tld)

            quoted.append(
                QuotedDomain(
                    domain_name=name,
                    tld=tld,
                    registration_period=item.registration_period,
                    unit_price=entry.customer_price,
                    price=entry.customer_price * item.registration_period,
                    currency=entry.currency,
                    name_servers=tuple(item.name_servers),
                )
            )

        currencies = {q.currency for q in quoted}
        if len(currencies) > 1:
            raise ValueError(f"Cart mixes currencies: {', '.join(sorted(currencies))}")

        now = self._clock()
        return CartQuote(
            items=quoted,
            subtotal=sum((q.price for q in quoted), Decimal("0")),
            currency=quoted[0].currency,
            created_at=now,
            expires_at=now + self._quote_validity,
        )

    def place_paid_order(
        self,
        user_id: str,
        payment: PaymentConfirmation,
        items: Sequence[CartItem],
    ) -> CheckoutResult:
        """
        Record a paid order and run the registration saga for each domain.

        Registration failures do not fail the checkout: they are recorded on
        the line item and as pending domains for operators.

        Raises:
            PaymentNotConfirmedError: payment unconfirmed or not matching the quote
            UnsupportedTLDError / ValueError: see quote_cart
        """
        if not payment.confirmed:
            raise PaymentNotConfirmedError(f"Payment {payment.payment_id} is not confirmed")

        quote = self.quote_cart(items)
        if payment.currency.upper() != quote.currency.upper():
            raise PaymentNotConfirmedError(
                f"Payment currency {payment.currency} does not match order currency {quote.currency}"
            )
        if payment.amount != quote.subtotal:
            raise PaymentNotConfirmedError(
                f"Payment amount {payment.amount} does not match order total {quote.subtotal}"
            )

        now = self._clock()
        line_items = tuple(
            DomainLineItem(
                domain_name=q.domain_name,
                price=q.price,
                currency=q.currency,
                registration_period=q.registration_period,
                booking_log=BookingLog().append(
                    BookingStep.PAYMENT_VERIFIED, "Payment verified", now
                ),
                name_servers=q.name_servers,
            )
            for q in quote.items
        )

        order = self._orders.create_order(
            Order(
                order_id=generate_order_id(now),
                user_id=user_id,
                payment_id=payment.payment_id,
                amount=quote.subtotal,
                currency=quote.currency,
                status=OrderStatus.COMPLETED,
                domains=line_items,
                invoice_number=generate_invoice_number(now),
                created_at=now,
                updated_at=now,
            )
        )

        results = [
            self._provisioning.execute(order.order_id, item.domain_name)
            for item in order.domains
        ]

        registered = sum(1 for r in results if r.success)
        logger.info(
            f"Order {order.order_id}: {registered}/{len(results)} domain(s) registered",
            extra={"order_id": order.order_id, "user_id": user_id},
        )

        refreshed: Optional[Order] = self._orders.get_order(order.order_id)
        return CheckoutResult(order=refreshed or order, results=results)


__all__ = [
    "CheckoutService",
    "CartItem",
    "CartQuote",
    "QuotedDomain",
    "PaymentConfirmation",
    "CheckoutResult",
    "PaymentNotConfirmedError",
    "UnsupportedTLDError",
    "generate_order_id",
    "generate_invoice_number",
]
