"""
Pending domain repository (persistence).

Stores domains whose registration could not complete synchronously in the
`pending_domains` table. `domain_name` is unique (lower-cased) across the
table; a unique-key violation surfaces as DuplicatePendingDomainError.

Status changes that race with other operators are conditional updates: the
row is only written if it still has the expected status. An empty result set
means somebody else got there first.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from postgrest.exceptions import APIError

from domain.pending_domain import (
    DEFAULT_PENDING_REASON,
    DEFAULT_LEASE_GRACE,
    RETRYABLE_STATUSES,
    PendingDomain,
    PendingDomainStatus,
)
from domain.time import optional_iso_utc, parse_optional_utc, to_iso_utc

logger = logging.getLogger(__name__)

_PENDING_DOMAINS_TABLE: str = "pending_domains"

# Postgres error code for unique_violation
_UNIQUE_VIOLATION: str = "23505"

# Characters that carry meaning inside a PostgREST or() filter
_FILTER_UNSAFE = re.compile(r"[,()*%\\]")


class DuplicatePendingDomainError(ValueError):
    """A pending record for this domain name already exists."""

    def __init__(self, domain_name: str, message: Optional[str] = None):
        self.domain_name = domain_name
        super().__init__(message or f"Domain {domain_name} already exists in pending domains")


class ClosedPendingDomainError(DuplicatePendingDomainError):
    """The record for this domain name is completed and is kept as an audit trail."""

    def __init__(self, record: PendingDomain):
        self.record = record
        super().__init__(
            record.domain_name,
            f"Domain {record.domain_name} was already registered through order "
            f"{record.order_id}; its pending record is closed",
        )


def _sanitize_search(search: str) -> str:
    return _FILTER_UNSAFE.sub(" ", search).strip()


def _row_to_pending_domain(row: Mapping[str, Any]) -> PendingDomain:
    """Convert a Supabase row into a PendingDomain."""

    def get_optional(key: str) -> Optional[str]:
        value = row.get(key)
        return None if value in (None, "") else str(value)

    return PendingDomain(
        id=str(row["id"]),
        domain_name=str(row["domain_name"]),
        price=Decimal(str(row.get("price", "0"))),
        currency=str(row.get("currency", "INR")),
        registration_period=int(row.get("registration_period", 1)),
        user_id=str(row["user_id"]),
        order_id=str(row["order_id"]),
        status=PendingDomainStatus(str(row.get("status", "pending"))),
        reason=str(row.get("reason") or DEFAULT_PENDING_REASON),
        customer_id=get_optional("customer_id"),
        contact_id=get_optional("contact_id"),
        admin_contact_id=get_optional("admin_contact_id"),
        tech_contact_id=get_optional("tech_contact_id"),
        billing_contact_id=get_optional("billing_contact_id"),
        name_servers=tuple(row.get("name_servers") or ()),
        verification_attempts=int(row.get("verification_attempts") or 0),
        last_verified_at=parse_optional_utc(row.get("last_verified_at")),
        registrar_order_id=get_optional("registrar_order_id"),
        registered_at=parse_optional_utc(row.get("registered_at")),
        expires_at=parse_optional_utc(row.get("expires_at")),
        admin_notes=row.get("admin_notes"),
        lease_acquired_at=parse_optional_utc(row.get("lease_acquired_at")),
        created_at=parse_optional_utc(row.get("created_at")),
        updated_at=parse_optional_utc(row.get("updated_at")),
    )


def _pending_domain_to_row(record: PendingDomain) -> dict[str, Any]:
    return {
        "id": record.id,
        "domain_name": record.domain_name,
        "price": str(record.price),
        "currency": record.currency,
        "registration_period": record.registration_period,
        "user_id": record.user_id,
        "order_id": record.order_id,
        "status": record.status.value,
        "reason": record.reason,
        "customer_id": record.customer_id,
        "contact_id": record.contact_id,
        "admin_contact_id": record.admin_contact_id,
        "tech_contact_id": record.tech_contact_id,
        "billing_contact_id": record.billing_contact_id,
        "name_servers": list(record.name_servers),
        "verification_attempts": record.verification_attempts,
        "last_verified_at": optional_iso_utc(record.last_verified_at, name="last_verified_at"),
        "registrar_order_id": record.registrar_order_id,
        "registered_at": optional_iso_utc(record.registered_at, name="registered_at"),
        "expires_at": optional_iso_utc(record.expires_at, name="expires_at"),
        "admin_notes": record.admin_notes,
        "lease_acquired_at": optional_iso_utc(record.lease_acquired_at, name="lease_acquired_at"),
        "created_at": optional_iso_utc(record.created_at, name="created_at"),
        "updated_at": optional_iso_utc(record.updated_at, name="updated_at"),
    }


def _serialize_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, PendingDomainStatus):
            payload[key] = value.value
        elif isinstance(value, datetime):
            payload[key] = to_iso_utc(value, name=key)
        elif isinstance(value, Decimal):
            payload[key] = str(value)
        elif isinstance(value, tuple):
            payload[key] = list(value)
        else:
            payload[key] = value
    return payload


def _is_unique_violation(exc: APIError) -> bool:
    return getattr(exc, "code", None) == _UNIQUE_VIOLATION


class PendingDomainRepository:
    """Persistence operations for pending domain records."""

    def __init__(self, client: Any):
        self._client = client

    def _first(self, response: Any, action: str) -> Optional[PendingDomain]:
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to {action}: {error}")
        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_pending_domain(rows[0])

    def get_by_id(self, pending_id: str) -> Optional[PendingDomain]:
        response = (
            self._client.table(_PENDING_DOMAINS_TABLE)
            .select("*")
            .eq("id", pending_id)
            .limit(1)
            .execute()
        )
        return self._first(response, "fetch pending domain")

    def get_by_domain_name(self, domain_name: str) -> Optional[PendingDomain]:
        response = (
            self._client.table(_PENDING_DOMAINS_TABLE)
            .select("*")
            .eq("domain_name", domain_name.lower())
            .limit(1)
            .execute()
        )
        return self._first(response, "fetch pending domain")

    def list(self, search: Optional[str] = None) -> List[PendingDomain]:
        """
        All pending records, optionally filtered by a case-insensitive
        substring of the domain name or order id. Newest first.
        """

        query = self._client.table(_PENDING_DOMAINS_TABLE).select("*")
        term = _sanitize_search(search or "")
        if term:
            query = query.or_(f"domain_name.ilike.*{term}*,order_id.ilike.*{term}*")
        response = query.order("created_at", desc=True).execute()

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list pending domains: {error}")

        rows = getattr(response, "data", None) or []
        return [_row_to_pending_domain(row) for row in rows]

    def list_by_ids(self, ids: Sequence[str]) -> List[PendingDomain]:
        if not ids:
            return []
        response = (
            self._client.table(_PENDING_DOMAINS_TABLE)
            .select("*")
            .in_("id", list(ids))
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch pending domains: {error}")

        rows = getattr(response, "data", None) or []
        return [_row_to_pending_domain(row) for row in rows]

    def list_ids_by_status(self, status: PendingDomainStatus) -> List[str]:
        response = (
            self._client.table(_PENDING_DOMAINS_TABLE)
            .select("id")
            .eq("status", status.value)
            .order("created_at", desc=True)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list pending domain ids: {error}")

        rows = getattr(response, "data", None) or []
        return [str(row["id"]) for row in rows]

    def find_existing_names(self, domain_names: Iterable[str]) -> set[str]:
        """Lower-cased names among `domain_names` that have a pending record."""

        names = sorted({name.lower() for name in domain_names})
        if not names:
            return set()

        response = (
            self._client.table(_PENDING_DOMAINS_TABLE)
            .select("domain_name")
            .in_("domain_name", names)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to check pending domain names: {error}")

        rows = getattr(response, "data", None) or []
        return {str(row["domain_name"]).lower() for row in rows}

    def create(self, record: PendingDomain) -> PendingDomain:
        """
        Insert a new pending record.

        Raises:
            DuplicatePendingDomainError: a record for the name already exists
        """

        try:
            response = (
                self._client.table(_PENDING_DOMAINS_TABLE)
                .insert(_pending_domain_to_row(record))
                .execute()
            )
        except APIError as exc:
            if _is_unique_violation(exc):
                raise DuplicatePendingDomainError(record.domain_name) from exc
            raise RuntimeError(f"Failed to create pending domain: {exc}") from exc

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to create pending domain: {error}")

        logger.info(
            f"Pending domain created for {record.domain_name}",
            extra={"domain_name": record.domain_name, "order_id": record.order_id},
        )
        return record

    def upsert_by_domain_name(
        self,
        *,
        domain_name: str,
        order_id: str,
        user_id: str,
        price: Decimal,
        currency: str,
        registration_period: int,
        reason: str,
        now: datetime,
        customer_id: Optional[str] = None,
        contact_id: Optional[str] = None,
        name_servers: Sequence[str] = (),
        lease_grace: timedelta = DEFAULT_LEASE_GRACE,
    ) -> PendingDomain:
        """
        Record (or refresh) the pending entry for a domain that failed to register.

        An existing `pending`/`failed` record (or one whose retry lease is older
        than `lease_grace`) keeps its id, creation time and verification
        counter; status returns to `pending` and the latest failure reason and
        identifiers are written over it. Known identifiers are never cleared.

        A record held by a running retry is returned unchanged.

        Raises:
            ClosedPendingDomainError: the record for this name is `completed`
        """

        name = domain_name.lower()
        existing = self.get_by_domain_name(name)

        if existing is None:
            record = PendingDomain(
                id=str(uuid.uuid4()),
                domain_name=name,
                price=price,
                currency=currency,
                registration_period=registration_period,
                user_id=user_id,
                order_id=order_id,
                status=PendingDomainStatus.PENDING,
                reason=reason or DEFAULT_PENDING_REASON,
                customer_id=customer_id,
                contact_id=contact_id,
                name_servers=tuple(name_servers),
                created_at=now,
                updated_at=now,
            )
            try:
                return self.create(record)
            except DuplicatePendingDomainError:
                # Lost a race with a concurrent insert for the same name
                existing = self.get_by_domain_name(name)
                if existing is None:
                    raise

        changes: dict[str, Any] = {
            "order_id": order_id,
            "user_id": user_id,
            "price": price,
            "currency": currency,
            "registration_period": registration_period,
            "status": PendingDomainStatus.PENDING,
            "reason": reason or DEFAULT_PENDING_REASON,
            "customer_id": customer_id or existing.customer_id,
            "contact_id": contact_id or existing.contact_id,
            "name_servers": tuple(name_servers) or existing.name_servers,
            "lease_acquired_at": None,
            "updated_at": now,
        }
        updated = self.update_fields(existing.id, changes, expected_statuses=RETRYABLE_STATUSES)
        if updated is None:
            updated = self._update_if_lease_stale(existing.id, changes, now=now, grace=lease_grace)

        if updated is None:
            current = self.get_by_id(existing.id) or existing
            if current.status is PendingDomainStatus.COMPLETED:
                raise ClosedPendingDomainError(current)
            logger.warning(
                f"Pending domain {name} is held by a running retry, left unchanged",
                extra={"domain_name": name, "order_id": order_id, "pending_id": current.id},
            )
            return current

        logger.info(
            f"Pending domain refreshed for {name}",
            extra={"domain_name": name, "order_id": order_id},
        )
        return updated

    def update_fields(
        self,
        pending_id: str,
        changes: Mapping[str, Any],
        *,
        expected_statuses: Optional[Sequence[PendingDomainStatus]] = None,
        expected_values: Optional[Mapping[str, Any]] = None,
    ) -> Optional[PendingDomain]:
        """
        Apply `changes` to one record.

        When `expected_statuses` or `expected_values` is given the write is
        conditional on the stored row; None is returned if the condition did
        not hold.
        """

        query = (
            self._client.table(_PENDING_DOMAINS_TABLE)
            .update(_serialize_changes(changes))
            .eq("id", pending_id)
        )
        if expected_statuses is not None:
            query = query.in_("status", [s.value for s in expected_statuses])
        for column, value in _serialize_changes(expected_values or {}).items():
            query = query.eq(column, value)
        response = query.execute()
        return self._first(response, "update pending domain")

    def _update_if_lease_stale(
        self,
        pending_id: str,
        changes: Mapping[str, Any],
        *,
        now: datetime,
        grace: timedelta,
    ) -> Optional[PendingDomain]:
        """Write `changes` only to a `processing` record whose lease is older than `grace`."""

        cutoff = to_iso_utc(now - grace, name="lease_cutoff")
        response = (
            self._client.table(_PENDING_DOMAINS_TABLE)
            .update(_serialize_changes(changes))
            .eq("id", pending_id)
            .eq("status", PendingDomainStatus.PROCESSING.value)
            .lt("lease_acquired_at", cutoff)
            .execute()
        )
        updated = self._first(response, "take over pending domain lease")
        if updated is not None:
            logger.warning(
                f"Took over stale lease on pending domain {updated.domain_name}",
                extra={"pending_id": pending_id, "domain_name": updated.domain_name},
            )
        return updated

    def acquire_lease(
        self,
        pending_id: str,
        *,
        now: datetime,
        grace: timedelta,
    ) -> Optional[PendingDomain]:
        """
        Move a record to `processing` for one operator retry.

        Succeeds from `pending`/`failed`, or from a `processing` record whose
        lease is older than `grace`. Returns None when the lease is held.
        """

        changes = {
            "status": PendingDomainStatus.PROCESSING,
            "lease_acquired_at": now,
            "updated_at": now,
        }

        claimed = self.update_fields(pending_id, changes, expected_statuses=RETRYABLE_STATUSES)
        if claimed is not None:
            return claimed
        return self._update_if_lease_stale(pending_id, changes, now=now, grace=grace)

    def record_verification(
        self,
        record: PendingDomain,
        *,
        now: datetime,
        status: PendingDomainStatus = PendingDomainStatus.PENDING,
        **changes: Any,
    ) -> Optional[PendingDomain]:
        """
        Store the outcome of one verification call.

        Conditional on the record still being `pending` with the attempt
        counter that was read: a concurrent retry, admin override or
        verification wins and None is returned.
        """

        payload: dict[str, Any] = {
            "status": status,
            "verification_attempts": record.verification_attempts + 1,
            "last_verified_at": now,
            "updated_at": now,
        }
        payload.update(changes)
        return self.update_fields(
            record.id,
            payload,
            expected_statuses=(PendingDomainStatus.PENDING,),
            expected_values={"verification_attempts": record.verification_attempts},
        )


__all__ = [
    "PendingDomainRepository",
    "DuplicatePendingDomainError",
    "ClosedPendingDomainError",
]
