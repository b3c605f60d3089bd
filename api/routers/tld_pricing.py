"""
TLD Pricing API Endpoints.

Public price list served from the TLD pricing cache, plus the admin endpoints
that inspect, configure and purge the cache.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_pricing_cache, require_admin
from api.models import (
    CacheActionResponse,
    CacheSettingsUpdateRequest,
    CacheStatusResponse,
    TLDPriceListResponse,
    TLDPriceResponse,
)
from domain.pricing import TLDPrice
from services.tld_pricing_cache import CacheStatus, TLDPricingCache

router = APIRouter()


def _price_response(entry: TLDPrice) -> TLDPriceResponse:
    return TLDPriceResponse(
        tld=entry.tld,
        display_tld=entry.display_tld,
        price=entry.customer_price,
        currency=entry.currency,
        category=entry.category,
        description=entry.description,
    )


def _status_response(status: CacheStatus) -> CacheStatusResponse:
    return CacheStatusResponse(
        is_cached=status.is_cached,
        cached_at=status.cached_at,
        expires_at=status.expires_at,
        remaining_seconds=status.remaining_seconds,
        item_count=status.item_count,
        ttl_minutes=status.ttl_minutes,
        enabled=status.enabled,
        source=status.source,
    )


@router.get(
    "/tld-pricing",
    response_model=TLDPriceListResponse,
    summary="List TLD Prices",
    description="Registration prices for every available extension."
)
def list_tld_prices(
    category: Optional[str] = Query(None, description="Generic, Country Code, New Generic or Other"),
    cache: TLDPricingCache = Depends(get_pricing_cache),
):
    try:
        snapshot = cache.get_snapshot()
        entries = sorted(snapshot.entries.values(), key=lambda e: e.tld)
        if category:
            entries = [e for e in entries if e.category.lower() == category.lower()]

        return TLDPriceListResponse(
            items=[_price_response(e) for e in entries],
            total_count=len(entries),
            cached_at=snapshot.cached_at,
            expires_at=snapshot.expires_at,
        )

    except Exception:
        raise HTTPException(
            status_code=500,
            detail="Failed to fetch TLD pricing"
        )


@router.get(
    "/tld-pricing/{tld}",
    response_model=TLDPriceResponse,
    summary="Get TLD Price"
)
def get_tld_price(tld: str, cache: TLDPricingCache = Depends(get_pricing_cache)):
    try:
        entry = cache.get_price(tld)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        raise HTTPException(
            status_code=500,
            detail="Failed to fetch TLD pricing"
        )

    if entry is None:
        raise HTTPException(status_code=404, detail=f"No pricing available for .{tld.lstrip('.')}")
    return _price_response(entry)


@router.get(
    "/admin/tld-pricing/cache",
    response_model=CacheStatusResponse,
    summary="Cache Status",
    dependencies=[Depends(require_admin)]
)
def get_cache_status(cache: TLDPricingCache = Depends(get_pricing_cache)):
    try:
        return _status_response(cache.status())

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get cache status: {str(e)}"
        )


@router.put(
    "/admin/tld-pricing/cache",
    response_model=CacheActionResponse,
    summary="Update Cache Settings",
    description="Enable/disable the cache and change its TTL. Disabling purges it.",
    dependencies=[Depends(require_admin)]
)
def update_cache_settings(
    request: CacheSettingsUpdateRequest,
    cache: TLDPricingCache = Depends(get_pricing_cache),
):
    try:
        if request.enabled is not None:
            cache.set_enabled(request.enabled, updated_by=request.updated_by)
        if request.ttl_minutes is not None:
            cache.set_ttl(request.ttl_minutes, updated_by=request.updated_by)

        return CacheActionResponse(
            success=True,
            message="Cache settings updated successfully",
            cache=_status_response(cache.status()),
        )

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to update cache settings: {str(e)}"
        )


@router.delete(
    "/admin/tld-pricing/cache",
    response_model=CacheActionResponse,
    summary="Purge Cache",
    dependencies=[Depends(require_admin)]
)
def purge_cache(cache: TLDPricingCache = Depends(get_pricing_cache)):
    try:
        purged = cache.purge()
        return CacheActionResponse(
            success=True,
            message="Cache purged successfully" if purged else "Cache was already empty",
            cache=_status_response(cache.status()),
        )

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to purge cache: {str(e)}"
        )
