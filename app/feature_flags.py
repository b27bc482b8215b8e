"""
app/feature_flags.py

Feature-flag lookups backed by the database and a TTL cache.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.cache import TTLCache
from db.repositories.feature_flag_repository import FeatureFlagRepository

logger = logging.getLogger(__name__)

DISCREPANCY_NOTIFICATIONS = "discrepancy_notifications"


@dataclass(frozen=True)
class FlagState:
    is_enabled: bool
    enabled_for_roles: tuple[str, ...] = ()


class FeatureFlags:
    """
    Evaluate feature flags.

    Flags missing from the store fall back to ``defaults`` (or False).
    A role listed in ``enabled_for_roles`` sees the flag enabled even when
    it is globally off.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        cache: TTLCache[FlagState],
        defaults: dict[str, bool] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._defaults = defaults or {DISCREPANCY_NOTIFICATIONS: True}

    def is_enabled(self, key: str, *, role: str | None = None) -> bool:
        state = self._cache.get_or_load(key, lambda: self._load(key))
        if state.is_enabled:
            return True
        return role is not None and role in state.enabled_for_roles

    def _load(self, key: str) -> FlagState:
        with self._session_factory() as db:
            flag = FeatureFlagRepository(db).get_by_key(key)
            if flag is None:
                return FlagState(is_enabled=self._defaults.get(key, False))
            return FlagState(
                is_enabled=flag.is_enabled,
                enabled_for_roles=tuple(flag.enabled_for_roles or ()),
            )
