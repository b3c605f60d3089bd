"""
Domain: Registrar collaborator contract.

The provisioning core treats the registrar as an opaque remote service with
four operations. Errors are opaque strings; the only distinctions the core
makes are transient vs. permanent failures, "domain already registered", and
"domain not found" on a status query.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, Sequence, Tuple

from .customer import CustomerProfile


class ContactRole(str, Enum):
    ADMIN = "admin"
    TECH = "tech"
    BILLING = "billing"


class RegistrarDomainState(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    NOT_FOUND = "not_found"


class RegistrarError(Exception):
    """
    Registrar call failed.

    transient=True marks timeouts, 5xx responses and network errors; those are
    retried only by explicit operator action.
    """

    def __init__(self, message: str, *, transient: bool = False):
        self.message = message
        self.transient = transient
        super().__init__(message)


class DomainAlreadyRegisteredError(RegistrarError):
    """The registrar reports the name as already registered (duplicate attempt)."""


@dataclass(frozen=True, slots=True)
class ContactIds:
    admin: str
    tech: str
    billing: str

    @staticmethod
    def shared(contact_id: str) -> "ContactIds":
        return ContactIds(admin=contact_id, tech=contact_id, billing=contact_id)


@dataclass(frozen=True, slots=True)
class RegistrarHint:
    """
    Identifiers already known before a saga run starts.

    Any id present here is reused instead of calling the registrar again.
    """

    customer_id: Optional[str] = None
    contacts: Optional[ContactIds] = None
    name_servers: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RegistrationReceipt:
    registrar_order_id: Optional[str]
    # Accepted by the registrar but not yet active at the registry
    pending: bool = False
    expires_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class DomainStatusReport:
    domain_name: str
    state: RegistrarDomainState
    registrar_order_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    raw_status: Optional[str] = None


class Registrar(Protocol):
    # When True a single contact id serves the admin, tech and billing roles.
    shares_contact_roles: bool

    def create_or_get_customer(self, profile: CustomerProfile) -> str:
        ...

    def create_or_get_contact(
        self, customer_id: str, profile: CustomerProfile, role: ContactRole
    ) -> str:
        ...

    def register_domain(
        self,
        domain_name: str,
        years: int,
        customer_id: str,
        name_servers: Sequence[str],
        contacts: ContactIds,
    ) -> RegistrationReceipt:
        ...

    def query_domain_status(self, domain_name: str) -> DomainStatusReport:
        ...
