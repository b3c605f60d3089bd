"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Order / Checkout Models
# ============================================================================

class CartItemRequest(BaseModel):
    """One domain in a checkout cart."""
    domain_name: str = Field(..., min_length=3, description="Domain to register, e.g. example.com")
    registration_period: int = Field(1, ge=1, le=10, description="Registration period in years")
    name_servers: List[str] = Field(default_factory=list)


class QuoteRequest(BaseModel):
    """Request to price a cart."""
    items: List[CartItemRequest] = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "items": [
                    {"domain_name": "example.com", "registration_period": 1},
                    {"domain_name": "example.in", "registration_period": 2}
                ]
            }
        }


class QuotedDomainResponse(BaseModel):
    domain_name: str
    tld: str
    registration_period: int
    unit_price: Decimal
    price: Decimal
    currency: str


class QuoteResponse(BaseModel):
    """Itemized cart quote."""
    items: List[QuotedDomainResponse]
    subtotal: Decimal
    currency: str
    total_items: int
    created_at: datetime
    expires_at: datetime


class PaymentRequest(BaseModel):
    """Payment confirmation supplied by the payment collaborator."""
    payment_id: str = Field(..., min_length=1)
    confirmed: bool
    amount: Decimal = Field(..., ge=0)
    currency: str = Field("INR", min_length=3, max_length=3)


class PlaceOrderRequest(BaseModel):
    """Record a paid order and start registration."""
    user_id: str = Field(..., min_length=1)
    payment: PaymentRequest
    items: List[CartItemRequest] = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "user_123",
                "payment": {
                    "payment_id": "pay_NXk2abc",
                    "confirmed": True,
                    "amount": "899.00",
                    "currency": "INR"
                },
                "items": [{"domain_name": "example.com", "registration_period": 1}]
            }
        }


class OrderDomainResponse(BaseModel):
    """Per-domain registration result. Never carries registrar error text."""
    domain_name: str
    status: str
    progress: int
    message: Optional[str] = None
    expires_at: Optional[datetime] = None


class PlaceOrderResponse(BaseModel):
    order_id: str
    invoice_number: Optional[str] = None
    amount: Decimal
    currency: str
    domains: List[OrderDomainResponse]
    registered: List[str]
    message: str

    class Config:
        json_schema_extra = {
            "example": {
                "order_id": "ord_1767225600000_9f3a1c2e",
                "invoice_number": "INV-600000-X7K",
                "amount": "899.00",
                "currency": "INR",
                "domains": [
                    {
                        "domain_name": "example.com",
                        "status": "registered",
                        "progress": 100,
                        "message": "Domain registered successfully",
                        "expires_at": "2027-01-01T00:00:00Z"
                    }
                ],
                "registered": ["example.com"],
                "message": "1 of 1 domain(s) registered."
            }
        }


# ============================================================================
# Booking Status Models
# ============================================================================

class BookingStepResponse(BaseModel):
    step: str
    message: str
    timestamp: datetime
    progress: int


class BookingStatusResponse(BaseModel):
    """Coarse registration status polled by the storefront."""
    order_id: str
    domain_name: str
    status: str
    progress: int
    message: Optional[str] = None
    steps: List[BookingStepResponse]
    expires_at: Optional[datetime] = None
    dns_activated: bool = False


class ActivateDnsRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)
    domain_name: str = Field(..., min_length=3)


# ============================================================================
# TLD Pricing Models
# ============================================================================

class TLDPriceResponse(BaseModel):
    """Public price of one extension."""
    tld: str
    display_tld: str
    price: Decimal
    currency: str
    category: str
    description: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "tld": "com",
                "display_tld": ".com",
                "price": "899.00",
                "currency": "INR",
                "category": "Generic",
                "description": "Commercial organizations"
            }
        }


class TLDPriceListResponse(BaseModel):
    items: List[TLDPriceResponse]
    total_count: int
    cached_at: datetime
    expires_at: datetime


class CacheStatusResponse(BaseModel):
    is_cached: bool
    cached_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    remaining_seconds: Optional[int] = None
    item_count: Optional[int] = None
    ttl_minutes: int
    enabled: bool
    source: Optional[str] = None


class CacheSettingsUpdateRequest(BaseModel):
    """Enable/disable the cache and/or change its TTL."""
    enabled: Optional[bool] = None
    ttl_minutes: Optional[int] = Field(None, gt=0, description="Cache TTL in minutes")
    updated_by: str = "admin"

    class Config:
        json_schema_extra = {"example": {"enabled": True, "ttl_minutes": 30}}


class CacheActionResponse(BaseModel):
    success: bool
    message: str
    cache: CacheStatusResponse


# ============================================================================
# Pending Domain Models (admin)
# ============================================================================

class PendingDomainResponse(BaseModel):
    """Pending work item; `source` tells pending records from order line items."""
    id: str
    domain_name: str
    status: str
    reason: str
    price: Decimal
    currency: str
    registration_period: int
    user_id: str
    order_id: str
    source: str
    customer_id: Optional[str] = None
    contact_id: Optional[str] = None
    name_servers: List[str] = Field(default_factory=list)
    verification_attempts: int = 0
    last_verified_at: Optional[datetime] = None
    registrar_order_id: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool


class PendingDomainListResponse(BaseModel):
    items: List[PendingDomainResponse]
    pagination: PaginationResponse
    summary: Dict[str, int]
    total: int

    class Config:
        json_schema_extra = {
            "example": {
                "items": [],
                "pagination": {
                    "page": 1, "limit": 20, "total": 3, "pages": 1,
                    "has_next": False, "has_prev": False
                },
                "summary": {"pending": 2, "processing": 1, "completed": 0, "failed": 0},
                "total": 3
            }
        }


class PendingDomainCreateRequest(BaseModel):
    """Manual pending-domain entry created by an operator."""
    domain_name: str = Field(..., min_length=3)
    order_id: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0)
    currency: str = Field("INR", min_length=3, max_length=3)
    registration_period: int = Field(1, ge=1, le=10)
    reason: Optional[str] = None
    customer_id: Optional[str] = None
    contact_id: Optional[str] = None
    admin_contact_id: Optional[str] = Field(None, description="Overrides contact_id for the admin role")
    tech_contact_id: Optional[str] = Field(None, description="Overrides contact_id for the tech role")
    billing_contact_id: Optional[str] = Field(None, description="Overrides contact_id for the billing role")
    name_servers: List[str] = Field(default_factory=list)
    admin_notes: Optional[str] = None


class PendingDomainUpdateRequest(BaseModel):
    status: Optional[Literal["pending", "completed", "failed"]] = None
    reason: Optional[str] = None
    admin_notes: Optional[str] = None


class VerifyRequest(BaseModel):
    domain_ids: List[str] = Field(..., min_length=1, description="Pending domain ids to verify")


class VerificationResultResponse(BaseModel):
    id: str
    domain_name: str
    outcome: str
    reason: str
    checked_at: datetime
    expires_at: Optional[datetime] = None
    integrity_error: Optional[str] = Field(None, description="Set when the originating order could not be updated")


class VerificationReportResponse(BaseModel):
    message: str
    total: int
    successful: int
    pending: int
    failed: int
    pending_domains: List[str]
    results: List[VerificationResultResponse]


class RetryResponse(BaseModel):
    """Outcome of an operator retry. `error` is the registrar message, admin only."""
    id: str
    domain_name: str
    outcome: str
    success: bool
    message: str
    error: Optional[str] = None
    registrar_order_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    integrity_error: Optional[str] = None
