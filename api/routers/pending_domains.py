"""
Pending Domains API Endpoints (admin).

Operator surface of the reconciler: list unfinished work from pending records
and order line items, verify against the registrar, retry registration, and
maintain pending records by hand. Every endpoint requires X-Admin-Token.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_reconciliation_service, require_admin
from api.models import (
    PaginationResponse,
    PendingDomainCreateRequest,
    PendingDomainListResponse,
    PendingDomainResponse,
    PendingDomainUpdateRequest,
    RetryResponse,
    VerificationReportResponse,
    VerificationResultResponse,
    VerifyRequest,
)
from domain.pending_domain import PendingDomain, PendingDomainStatus
from repositories.order_repository import LineItemNotFoundError, OrderNotFoundError
from services.provisioning_service import ProvisioningResult
from services.reconciliation_service import (
    NoPendingDomainsError,
    PendingDomainNotFoundError,
    PendingWorkFilter,
    PendingWorkItem,
    ReconciliationService,
)

router = APIRouter(dependencies=[Depends(require_admin)])


def _to_response(item: PendingWorkItem) -> PendingDomainResponse:
    return PendingDomainResponse(
        id=item.id,
        domain_name=item.domain_name,
        status=item.status,
        reason=item.reason,
        price=item.price,
        currency=item.currency,
        registration_period=item.registration_period,
        user_id=item.user_id,
        order_id=item.order_id,
        source=item.source.value,
        customer_id=item.customer_id,
        contact_id=item.contact_id,
        name_servers=list(item.name_servers),
        verification_attempts=item.verification_attempts,
        last_verified_at=item.last_verified_at,
        registrar_order_id=item.registrar_order_id,
        admin_notes=item.admin_notes,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _record_response(record: PendingDomain) -> PendingDomainResponse:
    return _to_response(PendingWorkItem.from_pending_domain(record))


def _retry_response(pending_id: str, result: ProvisioningResult) -> RetryResponse:
    return RetryResponse(
        id=pending_id,
        domain_name=result.domain_name,
        outcome=result.outcome.value,
        success=result.success,
        message=result.message,
        error=result.error,
        registrar_order_id=result.registrar_order_id,
        expires_at=result.expires_at,
        integrity_error=result.integrity_error,
    )


@router.get(
    "/admin/pending-domains",
    response_model=PendingDomainListResponse,
    summary="List Pending Work",
    description="Merged list of pending domain records and unfinished order line items."
)
def list_pending_domains(
    status: Optional[PendingDomainStatus] = Query(None, description="Filter by status"),
    search: Optional[str] = Query(None, description="Substring of the domain name or order id"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    List pending work.

    Entries with `source: "order"` have synthetic ids
    (`order:<orderId>:<domainName>`) and disappear once a pending record for
    the same domain exists. `summary` counts every status of the text-filtered
    set and does not change with `status`, `page` or `limit`.
    """
    try:
        result = service.list_pending_work(
            PendingWorkFilter(status=status.value if status else None, search=search),
            page=page,
            limit=limit,
        )
        return PendingDomainListResponse(
            items=[_to_response(item) for item in result.items],
            pagination=PaginationResponse(
                page=result.pagination.page,
                limit=result.pagination.limit,
                total=result.pagination.total,
                pages=result.pagination.pages,
                has_next=result.pagination.has_next,
                has_prev=result.pagination.has_prev,
            ),
            summary=dict(result.summary.counts),
            total=result.summary.total,
        )

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch pending domains: {str(e)}"
        )


@router.post(
    "/admin/pending-domains",
    response_model=PendingDomainResponse,
    status_code=201,
    summary="Create Pending Domain",
    description="Add a pending domain by hand for an existing order."
)
def create_pending_domain(
    request: PendingDomainCreateRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    try:
        record = service.create_manual_pending_domain(
            domain_name=request.domain_name,
            order_id=request.order_id,
            price=request.price,
            currency=request.currency,
            registration_period=request.registration_period,
            reason=request.reason,
            customer_id=request.customer_id,
            contact_id=request.contact_id,
            admin_contact_id=request.admin_contact_id,
            tech_contact_id=request.tech_contact_id,
            billing_contact_id=request.billing_contact_id,
            name_servers=request.name_servers,
            admin_notes=request.admin_notes,
        )
        return _record_response(record)

    except OrderNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        # Includes DuplicatePendingDomainError
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to create pending domain: {str(e)}"
        )


@router.post(
    "/admin/pending-domains/verify",
    response_model=VerificationReportResponse,
    summary="Verify Pending Domains",
    description="Ask the registrar for the current state of each pending domain."
)
def verify_pending_domains(
    request: VerifyRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Batch verification.

    Active domains are completed and their order line items registered;
    registrar rejections mark them failed; everything else stays pending with
    an updated reason. Only records with status `pending` are checked.
    """
    try:
        report = service.verify_batch(request.domain_ids)
        return VerificationReportResponse(
            message=(
                f"Verification completed: {report.successful} successful, "
                f"{report.pending} still pending, {report.failed} failed"
            ),
            total=report.total,
            successful=report.successful,
            pending=report.pending,
            failed=report.failed,
            pending_domains=report.pending_domains,
            results=[
                VerificationResultResponse(
                    id=r.pending_id,
                    domain_name=r.domain_name,
                    outcome=r.outcome.value,
                    reason=r.reason,
                    checked_at=r.checked_at,
                    expires_at=r.expires_at,
                    integrity_error=r.integrity_error,
                )
                for r in report.results
            ],
        )

    except NoPendingDomainsError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to verify domains: {str(e)}"
        )


@router.get(
    "/admin/pending-domains/{pending_id}",
    response_model=PendingDomainResponse,
    summary="Get Pending Domain"
)
def get_pending_domain(
    pending_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    try:
        return _record_response(service.get_pending_domain(pending_id))

    except PendingDomainNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch pending domain: {str(e)}"
        )


@router.put(
    "/admin/pending-domains/{pending_id}",
    response_model=PendingDomainResponse,
    summary="Update Pending Domain",
    description="Override status, reason or notes. completed/failed are mirrored to the order."
)
def update_pending_domain(
    pending_id: str,
    request: PendingDomainUpdateRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    try:
        record = service.update_pending_domain(
            pending_id,
            status=PendingDomainStatus(request.status) if request.status else None,
            reason=request.reason,
            admin_notes=request.admin_notes,
        )
        return _record_response(record)

    except PendingDomainNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (OrderNotFoundError, LineItemNotFoundError) as e:
        # The record points at an order line item that no longer exists
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to update pending domain: {str(e)}"
        )


@router.post(
    "/admin/pending-domains/{pending_id}/register",
    response_model=RetryResponse,
    summary="Retry Registration",
    description="Retry registering a pending domain with the registrar."
)
def retry_pending_domain(
    pending_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Retry registration.

    Returns `outcome: "conflict"` without calling the registrar when another
    retry is already running for the record.
    """
    try:
        result = service.retry(pending_id)
        return _retry_response(pending_id, result)

    except PendingDomainNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (OrderNotFoundError, LineItemNotFoundError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to retry registration: {str(e)}"
        )
