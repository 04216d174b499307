from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import json
import logging
from pathlib import Path
import re
from typing import Any

from .datagolf_client import DataGolfAPIError, DataGolfClient

logger = logging.getLogger(__name__)

_ID_KEYS = ("dg_id", "player_id", "id")
_RANK_KEYS = ("datagolf_rank", "dg_rank", "rank", "owgr_rank")
_SAFE_KEY = re.compile(r"[^a-z0-9_-]+")


@dataclass
class ProviderSnapshot:
    key: str
    fetched_at: datetime
    payloads: dict[str, Any] = field(default_factory=dict)
    stale: bool = False

    @property
    def status(self) -> str:
        return "stale" if self.stale else "fresh"


class SnapshotCache:
    def __init__(self, directory: str | Path, ttl_hours: float = 24.0):
        self._directory = Path(directory)
        self._ttl = timedelta(hours=ttl_hours)

    def path_for(self, key: str) -> Path:
        safe = _SAFE_KEY.sub("-", key.strip().lower()) or "default"
        return self._directory / f"snapshot_{safe}.json"

    def read(self, key: str) -> ProviderSnapshot | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            fetched_at = datetime.fromisoformat(payload["fetched_at"])
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable snapshot %s: %s", path, exc)
            return None
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        return ProviderSnapshot(key=key, fetched_at=fetched_at, payloads=payload.get("payloads") or {})

    def write(self, snapshot: ProviderSnapshot) -> Path:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(snapshot.key)
        body = {"fetched_at": snapshot.fetched_at.isoformat(), "payloads": snapshot.payloads}
        path.write_text(json.dumps(body), encoding="utf-8")
        return path

    def is_fresh(self, snapshot: ProviderSnapshot, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now - snapshot.fetched_at <= self._ttl


async def fetch_provider_payloads(
    client: DataGolfClient,
    tour: str = "pga",
    event_id: str | None = None,
    year: int | None = None,
) -> dict[str, Any]:
    rankings, approach, skills, field_updates, decompositions = await asyncio.gather(
        client.get_dg_rankings(),
        client.get_approach_skill("l24"),
        client.get_skill_ratings(),
        client.get_field_updates(tour=tour),
        client.get_player_decompositions(tour=tour),
    )
    payloads = {
        "dg_rankings": rankings,
        "approach_skill": approach,
        "skill_ratings": skills,
        "field_updates": field_updates,
        "player_decompositions": decompositions,
    }
    if event_id and year is not None:
        payloads["historical_rounds"] = await client.get_historical_rounds(event_id, year, tour=tour)
    return payloads


async def load_provider_snapshot(
    client: DataGolfClient,
    cache: SnapshotCache,
    key: str,
    tour: str = "pga",
    event_id: str | None = None,
    year: int | None = None,
) -> ProviderSnapshot | None:
    """Return a fresh cached snapshot, else fetch one.

    If the provider fails, the most recent cached snapshot is returned marked
    stale; with no cache at all the result is None.
    """
    cached = cache.read(key)
    if cached is not None and cache.is_fresh(cached):
        return cached

    try:
        payloads = await fetch_provider_payloads(client, tour=tour, event_id=event_id, year=year)
    except DataGolfAPIError as exc:
        if cached is not None:
            logger.warning("Provider unavailable (%s); using stale snapshot from %s", exc, cached.fetched_at)
            cached.stale = True
            return cached
        logger.warning("Provider unavailable (%s); continuing without snapshot", exc)
        return None

    snapshot = ProviderSnapshot(key=key, fetched_at=datetime.now(timezone.utc), payloads=payloads)
    cache.write(snapshot)
    logger.info("Fetched provider snapshot %s", key)
    return snapshot


def _extract_rows(payload: Any, preferred_terms: tuple[str, ...]) -> list[dict[str, Any]]:
    candidates: list[tuple[tuple[str, ...], list[dict[str, Any]]]] = []

    def walk(node: Any, path: tuple[str, ...]) -> None:
        if isinstance(node, list):
            dict_rows = [row for row in node if isinstance(row, dict)]
            if dict_rows and len(dict_rows) == len(node):
                candidates.append((path, dict_rows))
            return
        if isinstance(node, dict):
            for key, value in node.items():
                walk(value, path + (str(key).lower(),))

    walk(payload, tuple())
    if not candidates:
        return []

    def score(candidate: tuple[tuple[str, ...], list[dict[str, Any]]]) -> tuple[int, int]:
        path, rows = candidate
        path_score = sum(4 for term in preferred_terms if any(term in p for p in path))
        row_score = 2 if any("dg_id" == str(k).lower() for k in rows[0]) else 0
        return path_score + row_score, len(rows)

    return max(candidates, key=score)[1]


def _value_from_keys(row: dict[str, Any], keys: tuple[str, ...]) -> Any:
    lowered = {str(k).lower(): v for k, v in row.items()}
    for key in keys:
        value = lowered.get(key)
        if value not in (None, "") and not isinstance(value, (dict, list)):
            return value
    return None


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def provider_rankings(snapshot: ProviderSnapshot | None) -> dict[str, float]:
    if snapshot is None:
        return {}
    rows = _extract_rows(snapshot.payloads.get("dg_rankings"), ("ranking", "player"))
    ranks: dict[str, float] = {}
    for row in rows:
        player_id = _value_from_keys(row, _ID_KEYS)
        rank = _to_float(_value_from_keys(row, _RANK_KEYS))
        if player_id is None or rank is None:
            continue
        text = str(player_id).strip()
        ranks[text[:-2] if text.endswith(".0") else text] = rank
    return ranks
