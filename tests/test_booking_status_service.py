"""
Tests for `services/booking_status_service.py`.

Covers contract rules:
- Users only see their own orders.
- Registrar error text never reaches the user-facing view.
- DNS activation requires a registered domain and is idempotent.
"""

from __future__ import annotations

import pytest

from domain.booking import BookingStep, DomainStatus
from domain.registrar import RegistrarError
from fakes import paid_line_item, paid_order
from repositories.order_repository import LineItemNotFoundError, OrderNotFoundError
from services.booking_status_service import GENERIC_FAILURE_MESSAGE, DnsActivationError


@pytest.fixture
def paid(orders, clock):
    return orders.create_order(paid_order("ord_1", [paid_line_item("foo.com", clock())], clock()))


@pytest.mark.usefixtures("paid")
def test_status_of_paid_domain(booking_status) -> None:
    view = booking_status.get_booking_status("user-1", "ord_1", "FOO.com")

    assert view.status is DomainStatus.PROCESSING
    assert view.progress == 20
    assert view.message == "Payment verified"
    assert [s.step for s in view.steps] == [BookingStep.PAYMENT_VERIFIED]


@pytest.mark.usefixtures("paid")
def test_other_users_cannot_see_the_order(booking_status) -> None:
    with pytest.raises(OrderNotFoundError):
        booking_status.get_booking_status("user-2", "ord_1", "foo.com")
    with pytest.raises(LineItemNotFoundError):
        booking_status.get_booking_status("user-1", "ord_1", "bar.com")


@pytest.mark.usefixtures("paid")
def test_failure_details_are_masked(booking_status, provisioning, orders, registrar) -> None:
    registrar.register_outcomes.append(RegistrarError("Insufficient funds in reseller account"))
    provisioning.execute("ord_1", "foo.com")

    view = booking_status.get_booking_status("user-1", "ord_1", "foo.com")

    assert view.status is DomainStatus.FAILED
    assert view.message == GENERIC_FAILURE_MESSAGE
    assert view.steps[-1].message == GENERIC_FAILURE_MESSAGE
    assert all("funds" not in s.message for s in view.steps)
    # Operators still see the raw error on the order
    assert orders.require_order("ord_1").find_domain("foo.com").error == (
        "Insufficient funds in reseller account"
    )


@pytest.mark.usefixtures("paid")
def test_dns_activation_requires_registration(booking_status) -> None:
    with pytest.raises(DnsActivationError):
        booking_status.activate_dns("user-1", "ord_1", "foo.com")


@pytest.mark.usefixtures("paid")
def test_dns_activation_is_idempotent(booking_status, provisioning, orders, clock) -> None:
    provisioning.execute("ord_1", "foo.com")

    first = booking_status.activate_dns("user-1", "ord_1", "foo.com")
    second = booking_status.activate_dns("user-1", "ord_1", "foo.com")

    assert first.dns_activated and second.dns_activated
    assert first.progress == 100
    assert first.status is DomainStatus.REGISTERED
    item = orders.require_order("ord_1").find_domain("foo.com")
    assert [e.step for e in item.booking_log.entries].count(BookingStep.DNS_ACTIVATED) == 1
    assert item.dns_activated_at == clock()
