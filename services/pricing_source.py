"""
Upstream TLD pricing source backed by the ResellerClub price lists.

Builds one TLDPrice per catalogue extension from the customer and reseller
price lists (first-year registration price), tagged with a category, a short
description and the margin between the two prices.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Sequence

from domain.pricing import TLDPrice, margin_percent
from services.registrar_client import ResellerClubClient

logger = logging.getLogger(__name__)

SOURCE_LABEL: str = "ResellerClub API"
DEFAULT_CURRENCY: str = "INR"

# Extensions offered in the storefront catalogue
COMMON_TLDS: Sequence[str] = (
    "com", "net", "org", "info", "biz", "co", "in", "co.in",
    "shop", "store", "online", "site", "website", "app", "dev", "io", "ai",
    "tech", "digital", "cloud", "host", "space", "me", "tv", "cc", "mobi",
    "name", "pro", "asia", "us", "uk", "ca", "au", "de", "fr", "es", "nl",
)

# ResellerClub product keys where they differ from "dot<tld>"
_PRODUCT_KEYS: Mapping[str, str] = {
    "com": "domcno",
    "org": "domorg",
    "info": "dominfo",
    "biz": "dombiz",
    "in": "dotin",
    "co.in": "thirdleveldotin",
}

_CATEGORIES: Mapping[str, str] = {
    **{tld: "Generic" for tld in ("com", "net", "org", "info", "biz", "name", "pro")},
    **{
        tld: "Country Code"
        for tld in ("in", "co.in", "us", "uk", "ca", "au", "de", "fr", "es", "nl")
    },
    **{
        tld: "New Generic"
        for tld in (
            "shop", "store", "online", "site", "website", "app", "dev", "tech",
            "digital", "cloud", "host", "space", "io", "ai", "me", "tv", "cc",
            "mobi", "asia", "co",
        )
    },
}

_DESCRIPTIONS: Mapping[str, str] = {
    "com": "Commercial organizations",
    "net": "Network infrastructure",
    "org": "Non-profit organizations",
    "info": "Informational sites",
    "biz": "Business websites",
    "co": "Companies and corporations",
    "in": "India",
    "co.in": "India commercial",
    "shop": "E-commerce and shopping",
    "store": "Online stores",
    "online": "Online presence",
    "site": "Websites and web presence",
    "website": "Websites and web presence",
    "app": "Applications and software",
    "dev": "Development and developers",
    "io": "Technology and startups",
    "ai": "Artificial intelligence",
    "tech": "Technology companies",
    "digital": "Digital services",
    "cloud": "Cloud services",
    "host": "Hosting services",
    "space": "Personal and creative spaces",
    "me": "Personal websites",
    "tv": "Television and media",
    "cc": "Creative Commons",
    "mobi": "Mobile websites",
    "name": "Personal names",
    "pro": "Professionals",
    "asia": "Asia Pacific region",
    "us": "United States",
    "uk": "United Kingdom",
    "ca": "Canada",
    "au": "Australia",
    "de": "Germany",
    "fr": "France",
    "es": "Spain",
    "nl": "Netherlands",
}


def product_key(tld: str) -> str:
    return _PRODUCT_KEYS.get(tld, "dot" + tld.replace(".", ""))


def tld_category(tld: str) -> str:
    return _CATEGORIES.get(tld, "Other")


def tld_description(tld: str) -> Optional[str]:
    return _DESCRIPTIONS.get(tld)


def _first_year_price(price_list: Mapping[str, Any], key: str) -> Optional[Decimal]:
    """addnewdomain price for a one-year term, or None when not listed."""

    product = price_list.get(key)
    if not isinstance(product, Mapping):
        return None
    slabs = product.get("addnewdomain")
    if not isinstance(slabs, Mapping):
        return None
    raw = slabs.get("1")
    if raw is None:
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        logger.warning(f"Ignoring unparseable price for {key}: {raw!r}")
        return None


def build_price_table(
    customer_prices: Mapping[str, Any],
    reseller_prices: Mapping[str, Any],
    tlds: Sequence[str] = COMMON_TLDS,
    currency: str = DEFAULT_CURRENCY,
) -> Dict[str, TLDPrice]:
    table: Dict[str, TLDPrice] = {}
    for tld in tlds:
        key = product_key(tld)
        customer = _first_year_price(customer_prices, key)
        if customer is None:
            logger.debug(f"No customer price listed for .{tld} ({key}), skipping")
            continue
        reseller = _first_year_price(reseller_prices, key) or Decimal("0")
        table[tld] = TLDPrice(
            tld=tld,
            customer_price=customer,
            reseller_price=reseller,
            currency=currency,
            category=tld_category(tld),
            description=tld_description(tld),
            margin=margin_percent(customer, reseller),
        )
    return table


class ResellerClubPricingSource:
    """Pricing source for the TLD pricing cache."""

    source_label: str = SOURCE_LABEL

    def __init__(self, client: ResellerClubClient, tlds: Sequence[str] = COMMON_TLDS):
        self._client = client
        self._tlds = tuple(tlds)

    def fetch_prices(self) -> Dict[str, TLDPrice]:
        customer, reseller = self._client.fetch_price_lists()
        table = build_price_table(customer, reseller, self._tlds)
        logger.info(f"Built TLD price table with {len(table)} extensions")
        return table


__all__ = [
    "ResellerClubPricingSource",
    "build_price_table",
    "product_key",
    "tld_category",
    "tld_description",
    "COMMON_TLDS",
    "SOURCE_LABEL",
]
