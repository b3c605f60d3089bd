"""
Service wiring and admin authentication for the API.

Services are built once per process from environment configuration (the
Supabase client, the registrar client and the pricing cache are shared by all
requests). Tests replace them through `app.dependency_overrides`.

Environment variables:
- ADMIN_API_TOKEN: shared secret expected in the X-Admin-Token header
- DEFAULT_NAME_SERVERS: comma-separated nameservers used when an order has none
- PROVISIONING_LEASE_GRACE_MINUTES: staleness grace of processing leases (default 15)
- TLD_PRICING_DEFAULT_TTL_MINUTES: cache TTL when no setting is stored (default 60)
"""

from __future__ import annotations

import logging
import os
import secrets
from datetime import timedelta
from functools import lru_cache
from typing import Optional, Tuple

from fastapi import Header, HTTPException

from repositories.client import get_supabase
from repositories.order_repository import OrderRepository
from repositories.pending_domain_repository import PendingDomainRepository
from repositories.settings_repository import SettingsRepository
from repositories.user_repository import UserRepository
from services.booking_status_service import BookingStatusService
from services.checkout_service import CheckoutService
from services.pricing_source import ResellerClubPricingSource
from services.provisioning_service import DEFAULT_LEASE_GRACE, DomainProvisioningService
from services.reconciliation_service import ReconciliationService
from services.registrar_client import ResellerClubClient
from services.tld_pricing_cache import DEFAULT_TTL_MINUTES, TLDPricingCache

logger = logging.getLogger(__name__)


def _name_servers_from_env() -> Tuple[str, ...]:
    raw = os.getenv("DEFAULT_NAME_SERVERS", "")
    return tuple(ns.strip() for ns in raw.split(",") if ns.strip())


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default
    return value if value > 0 else default


def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> str:
    """Reject requests without the admin token (401) or with a wrong one (403)."""

    if not x_admin_token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    expected = os.getenv("ADMIN_API_TOKEN")
    if not expected or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=403, detail="Forbidden")
    return "admin"


@lru_cache(maxsize=1)
def get_registrar_client() -> ResellerClubClient:
    return ResellerClubClient.from_env()


@lru_cache(maxsize=1)
def get_order_repository() -> OrderRepository:
    return OrderRepository(get_supabase())


@lru_cache(maxsize=1)
def get_pending_domain_repository() -> PendingDomainRepository:
    return PendingDomainRepository(get_supabase())


@lru_cache(maxsize=1)
def get_settings_repository() -> SettingsRepository:
    return SettingsRepository(get_supabase())


@lru_cache(maxsize=1)
def get_user_repository() -> UserRepository:
    return UserRepository(get_supabase())


@lru_cache(maxsize=1)
def get_pricing_cache() -> TLDPricingCache:
    return TLDPricingCache(
        ResellerClubPricingSource(get_registrar_client()),
        get_settings_repository(),
        default_ttl_minutes=_int_from_env("TLD_PRICING_DEFAULT_TTL_MINUTES", DEFAULT_TTL_MINUTES),
    )


@lru_cache(maxsize=1)
def get_provisioning_service() -> DomainProvisioningService:
    grace_minutes = _int_from_env(
        "PROVISIONING_LEASE_GRACE_MINUTES", int(DEFAULT_LEASE_GRACE.total_seconds() // 60)
    )
    return DomainProvisioningService(
        get_order_repository(),
        get_pending_domain_repository(),
        get_user_repository(),
        get_registrar_client(),
        lease_grace=timedelta(minutes=grace_minutes),
        default_name_servers=_name_servers_from_env(),
    )


@lru_cache(maxsize=1)
def get_reconciliation_service() -> ReconciliationService:
    return ReconciliationService(
        get_order_repository(),
        get_pending_domain_repository(),
        get_registrar_client(),
        get_provisioning_service(),
    )


@lru_cache(maxsize=1)
def get_checkout_service() -> CheckoutService:
    return CheckoutService(
        get_order_repository(),
        get_pricing_cache(),
        get_provisioning_service(),
    )


@lru_cache(maxsize=1)
def get_booking_status_service() -> BookingStatusService:
    return BookingStatusService(get_order_repository())


__all__ = [
    "require_admin",
    "get_registrar_client",
    "get_pricing_cache",
    "get_provisioning_service",
    "get_reconciliation_service",
    "get_checkout_service",
    "get_booking_status_service",
]
