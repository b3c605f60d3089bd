"""
Orders API Endpoints.

Cart quotes and the checkout entry point that records a paid order and
starts domain registration.
"""

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_checkout_service
from api.models import (
    OrderDomainResponse,
    PlaceOrderRequest,
    PlaceOrderResponse,
    QuotedDomainResponse,
    QuoteRequest,
    QuoteResponse,
)
from services.booking_status_service import to_public_view
from services.checkout_service import CartItem, CheckoutService, PaymentConfirmation

router = APIRouter()


def _cart_items(items) -> list[CartItem]:
    return [
        CartItem(
            domain_name=item.domain_name,
            registration_period=item.registration_period,
            name_servers=tuple(item.name_servers),
        )
        for item in items
    ]


@router.post(
    "/orders/quote",
    response_model=QuoteResponse,
    summary="Quote Cart",
    description="Price the domains of a cart using current TLD pricing."
)
def quote_cart(
    request: QuoteRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    try:
        quote = service.quote_cart(_cart_items(request.items))
        return QuoteResponse(
            items=[
                QuotedDomainResponse(
                    domain_name=q.domain_name,
                    tld=q.tld,
                    registration_period=q.registration_period,
                    unit_price=q.unit_price,
                    price=q.price,
                    currency=q.currency,
                )
                for q in quote.items
            ],
            subtotal=quote.subtotal,
            currency=quote.currency,
            total_items=quote.total_items,
            created_at=quote.created_at,
            expires_at=quote.expires_at,
        )

    except ValueError as e:
        # Includes UnsupportedTLDError
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to calculate quote: {str(e)}"
        )


@router.post(
    "/orders",
    response_model=PlaceOrderResponse,
    status_code=201,
    summary="Place Paid Order",
    description="Record a paid order and register its domains."
)
def place_order(
    request: PlaceOrderRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    Place a paid order.

    **Process:**
    1. Re-prices the cart and checks the payment matches the total
    2. Stores the order with `payment_verified` on every domain
    3. Registers each domain with the registrar

    Domains that could not be registered stay visible to operators as pending
    work; the response only reports their coarse status.
    """
    try:
        payment = PaymentConfirmation(
            payment_id=request.payment.payment_id,
            confirmed=request.payment.confirmed,
            amount=request.payment.amount,
            currency=request.payment.currency,
        )
        result = service.place_paid_order(request.user_id, payment, _cart_items(request.items))

        domains = []
        for item in result.order.domains:
            view = to_public_view(result.order.order_id, item)
            domains.append(
                OrderDomainResponse(
                    domain_name=view.domain_name,
                    status=view.status.value,
                    progress=view.progress,
                    message=view.message,
                    expires_at=view.expires_at,
                )
            )

        return PlaceOrderResponse(
            order_id=result.order.order_id,
            invoice_number=result.order.invoice_number,
            amount=result.order.amount,
            currency=result.order.currency,
            domains=domains,
            registered=result.registered,
            message=f"{len(result.registered)} of {len(result.results)} domain(s) registered.",
        )

    except ValueError as e:
        # Includes PaymentNotConfirmedError and UnsupportedTLDError
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        raise HTTPException(
            status_code=500,
            detail="Failed to place order"
        )
