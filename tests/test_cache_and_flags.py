"""
tests/test_cache_and_flags.py

Pytest unit tests for TTLCache and FeatureFlags.

Coverage
--------
- Entries expire after their TTL; invalidate drops one key or all
- get_or_load calls the loader once per TTL window
- Flags: stored value, role targeting, defaults for unknown keys
- Flag values may be stale for up to one TTL
"""

from __future__ import annotations

import pytest

from app.cache import TTLCache
from app.feature_flags import DISCREPANCY_NOTIFICATIONS, FeatureFlags, FlagState
from db.models.feature_flag import FeatureFlag


class Ticker:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# TTLCache
# ---------------------------------------------------------------------------


class TestTTLCache:
    def test_entry_expires(self) -> None:
        ticker = Ticker()
        cache: TTLCache[str] = TTLCache(ttl_seconds=60, clock=ticker)
        cache.set("k", "v")

        ticker.now = 59.9
        assert cache.get("k") == "v"
        ticker.now = 60.0
        assert cache.get("k") is None

    def test_get_or_load_caches_within_ttl(self) -> None:
        ticker = Ticker()
        cache: TTLCache[int] = TTLCache(ttl_seconds=10, clock=ticker)
        loads: list[int] = []

        def loader() -> int:
            loads.append(1)
            return len(loads)

        first = cache.get_or_load("k", loader)
        second = cache.get_or_load("k", loader)
        ticker.now = 11
        third = cache.get_or_load("k", loader)

        assert (first, second, third) == (1, 1, 2)

    def test_invalidate(self) -> None:
        cache: TTLCache[str] = TTLCache(ttl_seconds=60)
        cache.set("a", "1")
        cache.set("b", "2")

        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.get("b") == "2"

        cache.invalidate()
        assert cache.get("b") is None


# ---------------------------------------------------------------------------
# FeatureFlags
# ---------------------------------------------------------------------------


@pytest.fixture()
def ticker() -> Ticker:
    return Ticker()


@pytest.fixture()
def flags(session_factory, ticker) -> FeatureFlags:
    cache: TTLCache[FlagState] = TTLCache(ttl_seconds=30, clock=ticker)
    return FeatureFlags(session_factory=session_factory, cache=cache)


def _store(session_factory, key: str, *, enabled: bool, roles: list[str] | None = None) -> None:
    with session_factory() as db, db.begin():
        flag = db.query(FeatureFlag).filter_by(key=key).one_or_none()
        if flag is None:
            db.add(FeatureFlag(key=key, is_enabled=enabled, enabled_for_roles=roles))
        else:
            flag.is_enabled = enabled
            flag.enabled_for_roles = roles


class TestFeatureFlags:
    def test_defaults_when_not_stored(self, flags) -> None:
        assert flags.is_enabled(DISCREPANCY_NOTIFICATIONS) is True
        assert flags.is_enabled("beta_dashboard") is False

    def test_stored_value_wins(self, flags, session_factory) -> None:
        _store(session_factory, DISCREPANCY_NOTIFICATIONS, enabled=False)

        assert flags.is_enabled(DISCREPANCY_NOTIFICATIONS) is False

    def test_role_targeting(self, flags, session_factory) -> None:
        _store(session_factory, "beta_dashboard", enabled=False, roles=["ADMIN"])

        assert flags.is_enabled("beta_dashboard", role="ADMIN") is True
        assert flags.is_enabled("beta_dashboard", role="VIEWER") is False
        assert flags.is_enabled("beta_dashboard") is False

    def test_changes_visible_after_ttl(self, flags, session_factory, ticker) -> None:
        _store(session_factory, "beta_dashboard", enabled=False)
        assert flags.is_enabled("beta_dashboard") is False

        _store(session_factory, "beta_dashboard", enabled=True)
        stale = flags.is_enabled("beta_dashboard")
        ticker.now = 30
        fresh = flags.is_enabled("beta_dashboard")

        assert stale is False
        assert fresh is True
