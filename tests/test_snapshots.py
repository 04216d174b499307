from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from pga_rank.datagolf_client import DataGolfAPIError
from pga_rank.snapshots import ProviderSnapshot, SnapshotCache, load_provider_snapshot, provider_rankings


class _FakeClient:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    async def _payload(self, name: str):
        self.calls += 1
        if self.fail:
            raise DataGolfAPIError("provider down")
        return {"name": name}

    async def get_dg_rankings(self):
        self.calls += 1
        if self.fail:
            raise DataGolfAPIError("provider down")
        return {
            "rankings": [
                {"dg_id": 1001, "player_name": "Player 2", "datagolf_rank": 2},
                {"dg_id": 1000, "player_name": "Player 1", "datagolf_rank": 1},
                {"dg_id": None, "datagolf_rank": 3},
            ]
        }

    async def get_approach_skill(self, period: str = "l24"):
        return await self._payload(f"approach-{period}")

    async def get_skill_ratings(self, display: str = "value"):
        return await self._payload("skills")

    async def get_field_updates(self, tour: str = "pga"):
        return await self._payload("field")

    async def get_player_decompositions(self, tour: str = "pga"):
        return await self._payload("decompositions")

    async def get_historical_rounds(self, event_id: str, year: int, tour: str = "pga"):
        return await self._payload(f"rounds-{event_id}-{year}")


def _aged_snapshot(cache: SnapshotCache, hours: float) -> ProviderSnapshot:
    snapshot = ProviderSnapshot(
        key="100",
        fetched_at=datetime.now(timezone.utc) - timedelta(hours=hours),
        payloads={"dg_rankings": {"rankings": [{"dg_id": "7", "datagolf_rank": 4}]}},
    )
    cache.write(snapshot)
    return snapshot


def test_cache_round_trip_and_freshness(tmp_path) -> None:
    cache = SnapshotCache(tmp_path, ttl_hours=24)
    snapshot = _aged_snapshot(cache, hours=1)

    loaded = cache.read("100")

    assert cache.path_for("100").name == "snapshot_100.json"
    assert loaded.fetched_at == snapshot.fetched_at
    assert loaded.payloads == snapshot.payloads
    assert cache.is_fresh(loaded)
    assert not cache.is_fresh(loaded, now=snapshot.fetched_at + timedelta(hours=25))
    assert cache.read("missing") is None


def test_unreadable_cache_file_is_ignored(tmp_path) -> None:
    cache = SnapshotCache(tmp_path)
    cache.path_for("100").write_text("not json", encoding="utf-8")

    assert cache.read("100") is None


def test_fresh_cache_skips_provider(tmp_path) -> None:
    cache = SnapshotCache(tmp_path, ttl_hours=24)
    _aged_snapshot(cache, hours=1)
    client = _FakeClient()

    snapshot = asyncio.run(load_provider_snapshot(client, cache, key="100"))

    assert client.calls == 0
    assert snapshot.status == "fresh"


def test_expired_cache_is_refreshed(tmp_path) -> None:
    cache = SnapshotCache(tmp_path, ttl_hours=24)
    _aged_snapshot(cache, hours=48)
    client = _FakeClient()

    snapshot = asyncio.run(load_provider_snapshot(client, cache, key="100", event_id="100", year=2024))

    assert snapshot.status == "fresh"
    assert snapshot.payloads["historical_rounds"] == {"name": "rounds-100-2024"}
    assert set(cache.read("100").payloads) == set(snapshot.payloads)


def test_provider_failure_uses_stale_cache(tmp_path) -> None:
    cache = SnapshotCache(tmp_path, ttl_hours=24)
    _aged_snapshot(cache, hours=48)

    snapshot = asyncio.run(load_provider_snapshot(_FakeClient(fail=True), cache, key="100"))

    assert snapshot.stale
    assert snapshot.status == "stale"
    assert provider_rankings(snapshot) == {"7": 4.0}


def test_provider_failure_without_cache_returns_none(tmp_path) -> None:
    cache = SnapshotCache(tmp_path)

    assert asyncio.run(load_provider_snapshot(_FakeClient(fail=True), cache, key="100")) is None


def test_provider_rankings_reads_nested_rows(tmp_path) -> None:
    snapshot = asyncio.run(load_provider_snapshot(_FakeClient(), SnapshotCache(tmp_path), key="100"))

    assert provider_rankings(snapshot) == {"1001": 2.0, "1000": 1.0}
    assert provider_rankings(None) == {}
