"""
Domains API Endpoints.

Booking status polled by the storefront while a registration is running, and
DNS activation once a domain is registered. Registrar error text is never
returned here.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_booking_status_service
from api.models import ActivateDnsRequest, BookingStatusResponse, BookingStepResponse
from repositories.order_repository import LineItemNotFoundError, OrderNotFoundError
from services.booking_status_service import BookingStatusService, BookingStatusView

router = APIRouter()


def _status_response(view: BookingStatusView) -> BookingStatusResponse:
    return BookingStatusResponse(
        order_id=view.order_id,
        domain_name=view.domain_name,
        status=view.status.value,
        progress=view.progress,
        message=view.message,
        steps=[
            BookingStepResponse(
                step=entry.step.value,
                message=entry.message,
                timestamp=entry.timestamp,
                progress=entry.progress,
            )
            for entry in view.steps
        ],
        expires_at=view.expires_at,
        dns_activated=view.dns_activated,
    )


@router.get(
    "/domains/booking-status",
    response_model=BookingStatusResponse,
    summary="Booking Status",
    description="Registration progress of one domain in an order."
)
def get_booking_status(
    user_id: str = Query(..., min_length=1),
    order_id: str = Query(..., min_length=1),
    domain_name: str = Query(..., min_length=3),
    service: BookingStatusService = Depends(get_booking_status_service),
):
    """
    Booking status of one domain.

    **Authorization:**
    Only the user who placed the order can read it; other users get 404.
    """
    try:
        return _status_response(service.get_booking_status(user_id, order_id, domain_name))

    except (OrderNotFoundError, LineItemNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        raise HTTPException(
            status_code=500,
            detail="Failed to fetch booking status"
        )


@router.post(
    "/domains/activate-dns",
    response_model=BookingStatusResponse,
    summary="Activate DNS",
    description="Activate DNS for a registered domain."
)
def activate_dns(
    request: ActivateDnsRequest,
    service: BookingStatusService = Depends(get_booking_status_service),
):
    try:
        view = service.activate_dns(request.user_id, request.order_id, request.domain_name)
        return _status_response(view)

    except (OrderNotFoundError, LineItemNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        # Includes DnsActivationError
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        raise HTTPException(
            status_code=500,
            detail="Failed to activate DNS"
        )
