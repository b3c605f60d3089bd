"""
Pytest configuration and shared fixtures.

Adds the project root to the Python path so that tests can import the
domain, repositories and services packages, and wires the services against
the in-memory fakes from `fakes.py`.
"""

import sys
from datetime import timedelta
from pathlib import Path

import pytest

# Add the project directory to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fakes import FakeClock, FakePricingSource, FakeRegistrar, FakeSupabase, user_row  # noqa: E402

from repositories.order_repository import OrderRepository  # noqa: E402
from repositories.pending_domain_repository import PendingDomainRepository  # noqa: E402
from repositories.settings_repository import SettingsRepository  # noqa: E402
from repositories.user_repository import UserRepository  # noqa: E402
from services.booking_status_service import BookingStatusService  # noqa: E402
from services.checkout_service import CheckoutService  # noqa: E402
from services.provisioning_service import DomainProvisioningService  # noqa: E402
from services.reconciliation_service import ReconciliationService  # noqa: E402
from services.tld_pricing_cache import TLDPricingCache  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db() -> FakeSupabase:
    store = FakeSupabase()
    store.table("users").insert(user_row("user-1")).execute()
    return store


@pytest.fixture
def registrar() -> FakeRegistrar:
    return FakeRegistrar()


@pytest.fixture
def orders(db: FakeSupabase) -> OrderRepository:
    return OrderRepository(db)


@pytest.fixture
def pending_repo(db: FakeSupabase) -> PendingDomainRepository:
    return PendingDomainRepository(db)


@pytest.fixture
def users(db: FakeSupabase) -> UserRepository:
    return UserRepository(db)


@pytest.fixture
def settings(db: FakeSupabase, clock: FakeClock) -> SettingsRepository:
    return SettingsRepository(db, clock=clock)


@pytest.fixture
def provisioning(orders, pending_repo, users, registrar, clock) -> DomainProvisioningService:
    return DomainProvisioningService(
        orders,
        pending_repo,
        users,
        registrar,
        clock=clock,
        lease_grace=timedelta(minutes=15),
        default_name_servers=("ns1.example.net", "ns2.example.net"),
    )


@pytest.fixture
def reconciliation(orders, pending_repo, registrar, provisioning, clock) -> ReconciliationService:
    return ReconciliationService(orders, pending_repo, registrar, provisioning, clock=clock)


@pytest.fixture
def pricing_source() -> FakePricingSource:
    return FakePricingSource()


@pytest.fixture
def pricing_cache(pricing_source, settings, clock) -> TLDPricingCache:
    return TLDPricingCache(pricing_source, settings, clock=clock)


@pytest.fixture
def checkout(orders, pricing_cache, provisioning, clock) -> CheckoutService:
    return CheckoutService(orders, pricing_cache, provisioning, clock=clock)


@pytest.fixture
def booking_status(orders, clock) -> BookingStatusService:
    return BookingStatusService(orders, clock=clock)
