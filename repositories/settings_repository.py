"""
Settings repository for persisted runtime configuration.

Key/value rows in the `settings` table override in-memory defaults and
survive restarts. The TLD pricing cache reads its enabled flag and TTL from
here on every refresh, so admin changes apply without a redeploy.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from domain.time import Clock, to_iso_utc, utc_now

logger = logging.getLogger(__name__)

_SETTINGS_TABLE: str = "settings"

TLD_PRICING_CACHE_ENABLED: str = "tld_pricing_cache_enabled"
TLD_PRICING_CACHE_TTL: str = "tld_pricing_cache_ttl"

CACHING_CATEGORY: str = "caching"


class SettingsRepository:
    """Read/write access to the `settings` table."""

    def __init__(self, client: Any, clock: Clock = utc_now):
        self._client = client
        self._clock = clock

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value.

        Args:
            key: Setting key, e.g. "tld_pricing_cache_ttl"
            default: Returned when no row exists for the key

        Returns:
            The stored JSON value, or `default`

        Example:
            ttl = repo.get_setting(TLD_PRICING_CACHE_TTL, 60)
        """
        response = (
            self._client.table(_SETTINGS_TABLE)
            .select("value")
            .eq("key", key)
            .limit(1)
            .execute()
        )

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch setting {key}: {error}")

        rows = getattr(response, "data", None) or []

        if not rows:
            return default

        return rows[0].get("value", default)

    def set_setting(
        self,
        key: str,
        value: Any,
        *,
        description: str = "",
        category: str = "general",
        updated_by: str = "system",
    ) -> None:
        """Upsert a setting row keyed on `key`."""

        now: datetime = self._clock()
        payload = {
            "key": key,
            "value": value,
            "description": description,
            "category": category,
            "updated_at": to_iso_utc(now, name="updated_at"),
            "updated_by": updated_by,
        }

        response = (
            self._client.table(_SETTINGS_TABLE)
            .upsert(payload, on_conflict="key")
            .execute()
        )

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to update setting {key}: {error}")

        logger.info(
            f"Setting {key} = {value!r} updated by {updated_by}",
            extra={"setting_key": key, "updated_by": updated_by},
        )

    def get_cache_enabled(self, default: bool = True) -> bool:
        value = self.get_setting(TLD_PRICING_CACHE_ENABLED, default)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    def get_cache_ttl_minutes(self, default: int) -> int:
        value: Optional[Any] = self.get_setting(TLD_PRICING_CACHE_TTL, default)
        try:
            minutes = int(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid {TLD_PRICING_CACHE_TTL} setting: {value!r}")
            return default
        return minutes if minutes > 0 else default


__all__ = [
    "SettingsRepository",
    "TLD_PRICING_CACHE_ENABLED",
    "TLD_PRICING_CACHE_TTL",
    "CACHING_CATEGORY",
]
