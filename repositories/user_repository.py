"""
User repository for customer profiles.

Provides the profile data the registrar needs and remembers the registrar
customer/contact ids after they are first created, so later orders from the
same user reuse them instead of creating duplicates.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from domain.customer import CustomerProfile
from domain.time import parse_optional_utc, to_iso_utc

_USERS_TABLE: str = "users"


def _row_to_profile(row: Mapping[str, Any]) -> CustomerProfile:
    return CustomerProfile(
        user_id=str(row["user_id"]),
        email=str(row["email"]),
        first_name=row.get("first_name") or "",
        last_name=row.get("last_name") or "",
        phone=row.get("phone"),
        phone_cc=row.get("phone_cc"),
        company_name=row.get("company_name"),
        address_line1=row.get("address_line1"),
        city=row.get("city"),
        state=row.get("state"),
        country=row.get("country"),
        zipcode=row.get("zipcode"),
        registrar_customer_id=row.get("resellerclub_customer_id"),
        registrar_contact_id=row.get("resellerclub_contact_id"),
        created_at=parse_optional_utc(row.get("created_at")),
        updated_at=parse_optional_utc(row.get("updated_at")),
    )


class UserRepository:
    def __init__(self, client: Any):
        self._client = client

    def get_profile(self, user_id: str) -> Optional[CustomerProfile]:
        """
        Get a user's profile by id.

        Args:
            user_id: Application user id

        Returns:
            CustomerProfile or None if not found
        """
        response = (
            self._client.table(_USERS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch user: {error}")

        rows = getattr(response, "data", None) or []

        if not rows:
            return None

        return _row_to_profile(rows[0])

    def save_registrar_ids(
        self,
        user_id: str,
        *,
        now: datetime,
        customer_id: Optional[str] = None,
        contact_id: Optional[str] = None,
    ) -> None:
        """Remember registrar ids on the profile. None values are left untouched."""

        payload: dict[str, Any] = {"updated_at": to_iso_utc(now, name="updated_at")}
        if customer_id is not None:
            payload["resellerclub_customer_id"] = customer_id
        if contact_id is not None:
            payload["resellerclub_contact_id"] = contact_id

        response = (
            self._client.table(_USERS_TABLE)
            .update(payload)
            .eq("user_id", user_id)
            .execute()
        )

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to update registrar ids: {error}")


__all__ = ["UserRepository"]
