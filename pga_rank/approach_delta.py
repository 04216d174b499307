from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
import logging
import math

from .metrics import APPROACH_BUCKETS, FIELD_TO_LABEL, approach_field, is_lower_better
from .models import ApproachRow
from .rounds import optional_metric_value

logger = logging.getLogger(__name__)

LOW_DATA_SHOT_THRESHOLD = 20
DELTA_KINDS = ("gir", "sg", "prox")


@dataclass
class BucketDelta:
    bucket: str
    previous_shots: float | None
    current_shots: float | None
    deltas: dict[str, float | None]
    low_data: bool
    volume_weight: float | None


@dataclass
class PlayerApproachDelta:
    player_id: str
    player_name: str
    buckets: dict[str, BucketDelta] = field(default_factory=dict)


@dataclass
class _ApproachEntry:
    player_name: str
    values: dict[str, float | None]
    shots: dict[str, float | None]


def _index_rows(rows: Iterable[ApproachRow], warnings: list[str]) -> dict[str, _ApproachEntry]:
    index: dict[str, _ApproachEntry] = {}
    for row in rows:
        if not row.dg_id:
            continue
        values = {}
        shots = {}
        for bucket in APPROACH_BUCKETS:
            for kind in DELTA_KINDS:
                values[approach_field(bucket, kind)] = optional_metric_value(
                    getattr(row, f"{bucket}_{kind}"), kind == "gir", warnings, f"{bucket}_{kind}"
                )
            shots[bucket] = optional_metric_value(
                getattr(row, f"{bucket}_shots"), False, warnings, f"{bucket}_shots"
            )
        index[row.dg_id] = _ApproachEntry(row.player_name, values, shots)
    return index


def _bucket_delta(
    bucket: str, previous: _ApproachEntry | None, current: _ApproachEntry | None
) -> BucketDelta:
    previous_shots = previous.shots.get(bucket) if previous else None
    current_shots = current.shots.get(bucket) if current else None
    low_data = max(previous_shots or 0.0, current_shots or 0.0) < LOW_DATA_SHOT_THRESHOLD

    deltas: dict[str, float | None] = {}
    for kind in DELTA_KINDS:
        key = approach_field(bucket, kind)
        before = previous.values.get(key) if previous else None
        after = current.values.get(key) if current else None
        deltas[key] = after - before if not low_data and before is not None and after is not None else None

    volume_weight = None
    if not low_data and (previous_shots is not None or current_shots is not None):
        volume_weight = math.sqrt((previous_shots or 0.0) + (current_shots or 0.0))
    return BucketDelta(bucket, previous_shots, current_shots, deltas, low_data, volume_weight)


def compute_approach_deltas(
    previous_rows: Iterable[ApproachRow],
    current_rows: Iterable[ApproachRow],
    field_ids: Iterable[str] | None = None,
) -> list[PlayerApproachDelta]:
    warnings: list[str] = []
    previous = _index_rows(previous_rows, warnings)
    current = _index_rows(current_rows, warnings)
    allowed = set(field_ids) if field_ids is not None else None

    results = []
    for player_id in sorted(set(previous) | set(current)):
        if allowed is not None and player_id not in allowed:
            continue
        before = previous.get(player_id)
        after = current.get(player_id)
        name = (after.player_name if after else "") or (before.player_name if before else "")
        delta = PlayerApproachDelta(player_id=player_id, player_name=name)
        for bucket in APPROACH_BUCKETS:
            delta.buckets[bucket] = _bucket_delta(bucket, before, after)
        results.append(delta)

    if warnings:
        logger.warning("Approach delta inputs had %d invalid values", len(warnings))
    logger.info("Computed approach deltas for %d players", len(results))
    return results


def approach_delta_alignment(deltas: Iterable[PlayerApproachDelta]) -> dict[str, float]:
    """Field-level direction of each approach metric, scaled into [-1, 1].

    Each metric's deltas are averaged with the bucket's volume weight; deltas of
    lower-is-better metrics are negated so a positive score means improvement.
    """
    totals: dict[str, float] = {}
    weights: dict[str, float] = {}
    for player in deltas:
        for bucket in player.buckets.values():
            if bucket.volume_weight is None or bucket.volume_weight <= 0:
                continue
            for key, value in bucket.deltas.items():
                if value is None:
                    continue
                label = FIELD_TO_LABEL[key]
                directional = -value if is_lower_better(label) else value
                totals[label] = totals.get(label, 0.0) + directional * bucket.volume_weight
                weights[label] = weights.get(label, 0.0) + bucket.volume_weight

    means = {label: totals[label] / weights[label] for label in totals if weights[label] > 0}
    scale = max((abs(value) for value in means.values()), default=0.0)
    if scale <= 0:
        return {}
    return {label: value / scale for label, value in means.items()}
