"""
Domain: Customer profile used for registrar provisioning.

Represents the paying user as the registrar needs to see them: contact details
for customer/contact creation, plus the registrar identifiers remembered after
the first successful creation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .time import require_utc_timestamp


@dataclass(frozen=True, slots=True)
class CustomerProfile:
    """
    Customer account with the fields registrar provisioning depends on.

    Registrar ids:
    - registrar_customer_id: created once per user, reused for every order
    - registrar_contact_id: shared admin/tech/billing contact for that customer
    """

    user_id: str
    email: str
    first_name: str = ""
    last_name: str = ""

    # Optional profile information
    phone: Optional[str] = None
    phone_cc: Optional[str] = None  # country calling code, e.g. "91"
    company_name: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None  # ISO 3166-1 alpha-2
    zipcode: Optional[str] = None

    # Registrar identifiers
    registrar_customer_id: Optional[str] = None
    registrar_contact_id: Optional[str] = None

    # Timestamps
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate timestamps are UTC-aware."""
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)

    @property
    def full_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email

    def missing_registration_fields(self) -> list[str]:
        """Profile fields the registrar requires that are still empty."""
        required = {
            "phone": self.phone,
            "phone_cc": self.phone_cc,
            "address_line1": self.address_line1,
            "city": self.city,
            "country": self.country,
            "zipcode": self.zipcode,
        }
        return [name for name, value in required.items() if not value]

    def is_complete_for_registration(self) -> bool:
        return not self.missing_registration_fields()
