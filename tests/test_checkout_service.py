"""
Tests for `services/checkout_service.py`.

Covers contract rules:
- Quotes price each domain from the TLD pricing cache (unit price x period).
- A paid order starts every line item at payment_verified (20%).
- Registration failures do not fail the checkout.
- Unconfirmed or mismatched payments create no order.
"""

from __future__ import annotations

import re
from datetime import timedelta
from decimal import Decimal

import pytest

from domain.booking import BookingStep, DomainStatus
from domain.order import OrderStatus
from domain.registrar import RegistrarError
from fakes import FakePricingSource, tld_price
from services.checkout_service import (
    CartItem,
    CheckoutService,
    PaymentConfirmation,
    PaymentNotConfirmedError,
    UnsupportedTLDError,
    generate_invoice_number,
    generate_order_id,
)
from services.tld_pricing_cache import TLDPricingCache


def _payment(amount: str, currency: str = "INR", confirmed: bool = True) -> PaymentConfirmation:
    return PaymentConfirmation(
        payment_id="pay_123", confirmed=confirmed, amount=Decimal(amount), currency=currency
    )


def test_quote_prices_each_domain_for_its_period(checkout, clock) -> None:
    quote = checkout.quote_cart([CartItem("Example.COM", 2), CartItem("example.in")])

    assert [q.domain_name for q in quote.items] == ["example.com", "example.in"]
    assert quote.items[0].unit_price == Decimal("899.00")
    assert quote.items[0].price == Decimal("1798.00")
    assert quote.subtotal == Decimal("2397.00")
    assert quote.currency == "INR"
    assert quote.total_items == 2
    assert quote.expires_at == clock() + timedelta(minutes=15)
    assert not quote.is_expired(clock() + timedelta(minutes=15))
    assert quote.is_expired(clock() + timedelta(minutes=16))


@pytest.mark.parametrize(
    "items",
    [
        [],
        [CartItem("a.com"), CartItem("A.com")],
        [CartItem("a.com", 0)],
        [CartItem("a.com", 11)],
        [CartItem("no-extension")],
    ],
)
def test_invalid_carts_are_rejected(checkout, items) -> None:
    with pytest.raises(ValueError):
        checkout.quote_cart(items)


def test_unlisted_extension_is_unsupported(checkout) -> None:
    with pytest.raises(UnsupportedTLDError) as exc:
        checkout.quote_cart([CartItem("example.xyz")])

    assert exc.value.tld == "xyz"


def test_mixed_currencies_are_rejected(orders, settings, provisioning, clock) -> None:
    source = FakePricingSource({"com": tld_price("com", "899"), "io": tld_price("io", "40", "USD")})
    service = CheckoutService(orders, TLDPricingCache(source, settings, clock=clock), provisioning, clock=clock)

    with pytest.raises(ValueError, match="mixes currencies"):
        service.quote_cart([CartItem("a.com"), CartItem("a.io")])


def test_paid_order_registers_every_domain(checkout, orders, registrar) -> None:
    result = checkout.place_paid_order(
        "user-1", _payment("1498.00"), [CartItem("foo.com"), CartItem("foo.in")]
    )

    assert result.registered == ["foo.com", "foo.in"]
    assert result.unfinished == []
    order = orders.require_order(result.order.order_id)
    assert order.status is OrderStatus.COMPLETED
    assert order.amount == Decimal("1498.00")
    assert order.payment_id == "pay_123"
    assert not order.has_unfinished_domains
    for item in order.domains:
        assert item.booking_log.entries[0].step is BookingStep.PAYMENT_VERIFIED
        assert item.booking_log.entries[0].progress == 20
        assert item.status is DomainStatus.REGISTERED
    assert registrar.count("create_or_get_customer") == 1


def test_registration_failure_does_not_fail_checkout(checkout, pending_repo, registrar) -> None:
    registrar.register_outcomes.append(RegistrarError("Insufficient funds"))

    result = checkout.place_paid_order(
        "user-1", _payment("1498.00"), [CartItem("foo.com"), CartItem("foo.in")]
    )

    assert result.unfinished == ["foo.com"]
    assert result.registered == ["foo.in"]
    assert result.order.find_domain("foo.com").status is DomainStatus.FAILED
    assert pending_repo.get_by_domain_name("foo.com").order_id == result.order.order_id


def test_name_servers_from_cart_reach_the_registrar(checkout, registrar) -> None:
    checkout.place_paid_order(
        "user-1", _payment("899.00"), [CartItem("foo.com", name_servers=("ns1.host.io", "ns2.host.io"))]
    )

    name_servers = registrar.calls[-1][1][3]
    assert name_servers == ("ns1.host.io", "ns2.host.io")


@pytest.mark.parametrize(
    "payment",
    [
        _payment("899.00", confirmed=False),
        _payment("100.00"),
        _payment("899.00", currency="USD"),
    ],
)
def test_payment_must_be_confirmed_and_match(checkout, db, registrar, payment) -> None:
    with pytest.raises(PaymentNotConfirmedError):
        checkout.place_paid_order("user-1", payment, [CartItem("foo.com")])

    assert db.rows("orders") == []
    assert registrar.calls == []


def test_generated_identifiers(clock) -> None:
    assert re.fullmatch(r"ord_\d{13}_[0-9a-f]{8}", generate_order_id(clock()))
    assert re.fullmatch(r"INV-\d{6}-[A-Z0-9]{3}", generate_invoice_number(clock()))
