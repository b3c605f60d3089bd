"""
ResellerClub registrar client.

Implements the Registrar protocol over the ResellerClub HTTP API using httpx.
Every call carries the reseller credentials as query parameters and a bounded
timeout. Failures are reduced to RegistrarError:

- timeouts, network errors and 5xx responses are transient
- 4xx responses and `{"status": "ERROR"}` bodies are permanent
- "already registered" style rejections raise DomainAlreadyRegisteredError

Environment variables (see `from_env`):
- RESELLERCLUB_API_URL
- RESELLERCLUB_API_ID
- RESELLERCLUB_API_KEY
- RESELLERCLUB_TIMEOUT_SECONDS (default 30)
"""

from __future__ import annotations

import logging
import os
import secrets
import time
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import httpx

from domain.customer import CustomerProfile
from domain.registrar import (
    ContactIds,
    ContactRole,
    DomainAlreadyRegisteredError,
    DomainStatusReport,
    RegistrarDomainState,
    RegistrarError,
    RegistrationReceipt,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS: float = 30.0

# Registrar messages that mean the name is taken (by us or by someone else)
_ALREADY_REGISTERED_MARKERS = (
    "already registered",
    "already exists",
    "not available",
    "domain is not available",
)

# Registrar messages on a status query that mean there is no order for the name
_NOT_FOUND_MARKERS = (
    "not found",
    "doesn't exist",
    "does not exist",
    "no entity",
    "invalid domain",
)

Params = List[Tuple[str, Any]]


def _contains_any(message: str, markers: Sequence[str]) -> bool:
    text = message.lower()
    return any(marker in text for marker in markers)


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, Mapping):
        for key in ("message", "error", "actionstatusdesc"):
            value = body.get(key)
            if value:
                return str(value)
    if isinstance(body, str) and body.strip():
        return body.strip()
    return fallback


def _parse_epoch(value: Any) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


class ResellerClubClient:
    """Synchronous ResellerClub API client (one httpx.Client per instance)."""

    # ResellerClub accepts one contact id for admin, tech and billing roles.
    shares_contact_roles: bool = True

    def __init__(
        self,
        base_url: str,
        api_id: str,
        api_key: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._auth: Params = [("auth-userid", api_id), ("api-key", api_key)]
        timeout = httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds))
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=transport,
        )

    @classmethod
    def from_env(cls) -> "ResellerClubClient":
        base_url = os.getenv("RESELLERCLUB_API_URL")
        api_id = os.getenv("RESELLERCLUB_API_ID")
        api_key = os.getenv("RESELLERCLUB_API_KEY")

        if not base_url or not api_id or not api_key:
            raise RuntimeError(
                "ResellerClub API configuration is missing. "
                "Set RESELLERCLUB_API_URL, RESELLERCLUB_API_ID and RESELLERCLUB_API_KEY."
            )

        timeout = float(os.getenv("RESELLERCLUB_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
        return cls(base_url, api_id, api_key, timeout_seconds=timeout)

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, params: Optional[Params] = None) -> Any:
        """Send one API call and return the decoded body, or raise RegistrarError."""

        query: Params = list(self._auth) + [(k, v) for k, v in (params or []) if v is not None]
        started = time.monotonic()

        try:
            response = self._http.request(method, path, params=query)
        except httpx.TimeoutException as e:
            logger.warning(f"ResellerClub {path} timed out after {time.monotonic() - started:.1f}s")
            raise RegistrarError(
                "ResellerClub API request timeout. Please try again.", transient=True
            ) from e
        except httpx.TransportError as e:
            logger.warning(f"ResellerClub {path} connection failed: {e}")
            raise RegistrarError(
                "ResellerClub API connection failed. Please check network connectivity.",
                transient=True,
            ) from e

        elapsed = time.monotonic() - started
        logger.debug(f"ResellerClub {method} {path} -> {response.status_code} ({elapsed:.2f}s)")

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if response.status_code >= 500 or response.status_code == 429:
            raise RegistrarError(
                _error_message(body, f"ResellerClub API server error ({response.status_code})"),
                transient=True,
            )

        if response.status_code >= 400:
            message = _error_message(body, f"ResellerClub API rejected request ({response.status_code})")
            if response.status_code == 409:
                raise DomainAlreadyRegisteredError(message)
            raise RegistrarError(message)

        if isinstance(body, Mapping) and str(body.get("status", "")).upper() == "ERROR":
            raise RegistrarError(_error_message(body, "ResellerClub API returned an error"))

        return body

    # ------------------------------------------------------------------
    # Customers and contacts
    # ------------------------------------------------------------------

    def create_or_get_customer(self, profile: CustomerProfile) -> str:
        if profile.registrar_customer_id:
            return profile.registrar_customer_id

        try:
            existing = self._request(
                "GET", "/api/customers/details.json", [("username", profile.email)]
            )
        except RegistrarError as e:
            if e.transient:
                raise
            existing = None

        if isinstance(existing, Mapping) and existing.get("customerid"):
            customer_id = str(existing["customerid"])
            logger.info(f"Reusing ResellerClub customer {customer_id} for {profile.email}")
            return customer_id

        missing = profile.missing_registration_fields()
        if missing:
            raise RegistrarError(
                f"Customer profile incomplete, missing: {', '.join(missing)}"
            )

        created = self._request(
            "POST",
            "/api/customers/signup.json",
            [
                ("username", profile.email),
                ("passwd", secrets.token_urlsafe(12)),
                ("name", profile.full_name),
                ("company", profile.company_name or profile.full_name),
                ("address-line-1", profile.address_line1),
                ("city", profile.city),
                ("state", profile.state or profile.city),
                ("country", profile.country),
                ("zipcode", profile.zipcode),
                ("phone-cc", profile.phone_cc),
                ("phone", profile.phone),
                ("lang-pref", "en"),
            ],
        )
        customer_id = str(created)
        logger.info(f"Created ResellerClub customer {customer_id} for {profile.email}")
        return customer_id

    def create_or_get_contact(
        self, customer_id: str, profile: CustomerProfile, role: ContactRole
    ) -> str:
        if profile.registrar_contact_id:
            return profile.registrar_contact_id

        found = self._request(
            "GET",
            "/api/contacts/search.json",
            [
                ("customer-id", customer_id),
                ("no-of-records", 10),
                ("page-no", 1),
                ("email", profile.email),
                ("type", "Contact"),
            ],
        )
        results = found.get("result") if isinstance(found, Mapping) else None
        if results:
            contact_id = str(results[0].get("contact.contactid") or results[0].get("entity.entityid"))
            logger.info(f"Reusing ResellerClub contact {contact_id} ({role.value}) for customer {customer_id}")
            return contact_id

        created = self._request(
            "POST",
            "/api/contacts/add.json",
            [
                ("name", profile.full_name),
                ("company", profile.company_name or profile.full_name),
                ("email", profile.email),
                ("address-line-1", profile.address_line1),
                ("city", profile.city),
                ("country", profile.country),
                ("zipcode", profile.zipcode),
                ("phone-cc", profile.phone_cc),
                ("phone", profile.phone),
                ("customer-id", customer_id),
                ("type", "Contact"),
            ],
        )
        contact_id = str(created)
        logger.info(f"Created ResellerClub contact {contact_id} ({role.value}) for customer {customer_id}")
        return contact_id

    # ------------------------------------------------------------------
    # Domains
    # ------------------------------------------------------------------

    def register_domain(
        self,
        domain_name: str,
        years: int,
        customer_id: str,
        name_servers: Sequence[str],
        contacts: ContactIds,
    ) -> RegistrationReceipt:
        params: Params = [
            ("domain-name", domain_name),
            ("years", years),
            ("customer-id", customer_id),
            ("reg-contact-id", contacts.admin),
            ("admin-contact-id", contacts.admin),
            ("tech-contact-id", contacts.tech),
            ("billing-contact-id", contacts.billing),
            ("invoice-option", "NoInvoice"),
        ]
        params.extend(("ns", ns) for ns in name_servers)

        logger.info(f"Registering {domain_name} for {years} year(s) with customer {customer_id}")
        try:
            body = self._request("POST", "/api/domains/register.json", params)
        except DomainAlreadyRegisteredError:
            raise
        except RegistrarError as e:
            if not e.transient and _contains_any(e.message, _ALREADY_REGISTERED_MARKERS):
                raise DomainAlreadyRegisteredError(e.message) from e
            raise

        if not isinstance(body, Mapping):
            raise RegistrarError(f"Unexpected registration response for {domain_name}: {body!r}")

        order_id = body.get("entityid") or body.get("orderid")
        action_status = str(body.get("actionstatus", "")).lower()
        pending = action_status not in ("", "success")
        if pending:
            logger.info(
                f"Registration of {domain_name} accepted but not yet active "
                f"({body.get('actionstatusdesc') or action_status})"
            )

        return RegistrationReceipt(
            registrar_order_id=str(order_id) if order_id is not None else None,
            pending=pending,
        )

    def query_domain_status(self, domain_name: str) -> DomainStatusReport:
        try:
            body = self._request(
                "GET",
                "/api/domains/details-by-name.json",
                [("domain-name", domain_name), ("options", "OrderDetails")],
            )
        except RegistrarError as e:
            if not e.transient and _contains_any(e.message, _NOT_FOUND_MARKERS):
                return DomainStatusReport(
                    domain_name=domain_name,
                    state=RegistrarDomainState.NOT_FOUND,
                    raw_status=e.message,
                )
            raise

        if not isinstance(body, Mapping):
            raise RegistrarError(f"Unexpected status response for {domain_name}: {body!r}")

        raw_status = str(body.get("currentstatus", ""))
        state = (
            RegistrarDomainState.ACTIVE
            if raw_status.lower() == "active"
            else RegistrarDomainState.PENDING
        )
        order_id = body.get("orderid")
        return DomainStatusReport(
            domain_name=domain_name,
            state=state,
            registrar_order_id=str(order_id) if order_id is not None else None,
            expires_at=_parse_epoch(body.get("endtime")),
            raw_status=raw_status or None,
        )

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def fetch_price_lists(self) -> Tuple[Mapping[str, Any], Mapping[str, Any]]:
        """Customer and reseller price lists, keyed by ResellerClub product key."""

        started = time.monotonic()
        customer = self._request("GET", "/api/products/customer-price.json")
        reseller = self._request("GET", "/api/products/reseller-price.json")
        logger.info(f"Fetched ResellerClub price lists in {time.monotonic() - started:.2f}s")

        if not isinstance(customer, Mapping) or not isinstance(reseller, Mapping):
            raise RegistrarError("Unexpected pricing response from ResellerClub API")
        return customer, reseller


__all__ = ["ResellerClubClient", "DEFAULT_TIMEOUT_SECONDS"]
