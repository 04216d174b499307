from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
import logging
import math
from typing import Any

from .config import CourseContext
from .metrics import (
    APPROACH_BUCKETS,
    HISTORICAL_FIELDS,
    PERCENTAGE_FIELDS,
    PUTTING_FIELDS,
    ZERO_IS_MISSING_FIELDS,
    approach_field,
)
from .models import ApproachRow, FieldRow, RoundRow

logger = logging.getLogger(__name__)

_ROUND_COLUMNS: dict[str, str] = {
    "sg_total": "sg_total",
    "driving_distance": "driving_dist",
    "driving_accuracy": "driving_acc",
    "sg_t2g": "sg_t2g",
    "sg_approach": "sg_app",
    "sg_around_green": "sg_arg",
    "sg_ott": "sg_ott",
    "sg_putting": "sg_putt",
    "greens_in_regulation": "gir",
    "scrambling": "scrambling",
    "great_shots": "great_shots",
    "poor_shots": "poor_shots",
    "scoring_average": "score",
    "fairway_proximity": "prox_fw",
    "rough_proximity": "prox_rgh",
}
_DATE_FORMATS = ("%Y/%m/%d", "%m/%d/%Y", "%m/%d/%y")


@dataclass(frozen=True)
class Round:
    event_id: str
    year: int | None
    date: datetime | None
    round_num: int
    values: dict[str, float]

    def value(self, metric_field: str) -> float | None:
        return self.values.get(metric_field)

    def sort_key(self) -> tuple[datetime, int]:
        return (self.date or datetime.min, self.round_num)


@dataclass
class EventRecord:
    event_id: str
    year: int | None
    finish_text: str | None
    rounds: list[Round] = field(default_factory=list)


@dataclass(frozen=True)
class ApproachSnapshot:
    values: dict[str, float]
    shots: dict[str, float]


@dataclass
class PlayerHistory:
    player_id: str
    player_name: str
    historical_rounds: list[Round] = field(default_factory=list)
    similar_rounds: list[Round] = field(default_factory=list)
    putting_rounds: list[Round] = field(default_factory=list)
    events: dict[tuple[str, int | None], EventRecord] = field(default_factory=dict)
    approach: ApproachSnapshot | None = None
    warnings: list[str] = field(default_factory=list)

    def all_rounds(self) -> list[Round]:
        combined = self.historical_rounds + self.similar_rounds + self.putting_rounds
        return sorted(combined, key=Round.sort_key, reverse=True)


@dataclass
class AggregationOptions:
    decay: float = 0.2
    putting_decay: float = 0.3
    min_historical_rounds: int = 10
    min_similar_rounds: int = 5
    min_putting_rounds: int = 5
    similar_weight: float = 0.7
    putting_weight: float = 0.75
    full_weight_rounds: int = 20

    @classmethod
    def from_context(cls, context: CourseContext) -> "AggregationOptions":
        return cls(
            similar_weight=context.similar_courses_weight,
            putting_weight=context.putting_courses_weight,
        )


@dataclass
class AggregatedMetrics:
    values: dict[str, float]
    covered: set[str]
    low_data: set[str]
    sources: dict[str, str]


def clean_metric_value(
    value: Any,
    percentage: bool = False,
    warnings: list[str] | None = None,
    label: str = "value",
) -> float:
    if value is None or value == "":
        return 0.0
    try:
        numeric = float(str(value).replace("%", "").replace(",", "").strip())
    except (TypeError, ValueError):
        numeric = math.nan
    if not math.isfinite(numeric):
        if warnings is not None:
            warnings.append(f"Invalid {label} {value!r} replaced with 0.")
        return 0.0
    if percentage and numeric > 1.0:
        numeric /= 100.0
    return numeric


def optional_metric_value(
    value: Any, percentage: bool, warnings: list[str], label: str
) -> float | None:
    if value is None or value == "":
        return None
    return clean_metric_value(value, percentage=percentage, warnings=warnings, label=label)


def parse_round_date(value: str | None) -> datetime | None:
    if not value:
        return None
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def round_from_row(row: RoundRow, warnings: list[str]) -> Round:
    values: dict[str, float] = {}
    for metric_field, column in _ROUND_COLUMNS.items():
        parsed = optional_metric_value(
            getattr(row, column),
            percentage=metric_field in PERCENTAGE_FIELDS,
            warnings=warnings,
            label=f"{column} for player {row.dg_id}",
        )
        if parsed is not None:
            values[metric_field] = parsed

    birdies = optional_metric_value(row.birdies, False, warnings, f"birdies for player {row.dg_id}")
    eagles = optional_metric_value(
        row.eagles_or_better, False, warnings, f"eagles_or_better for player {row.dg_id}"
    )
    if birdies is not None or eagles is not None:
        values["birdies_or_better"] = (birdies or 0.0) + (eagles or 0.0)

    date = parse_round_date(row.event_completed)
    year = row.year if row.year is not None else (date.year if date else None)
    return Round(
        event_id=row.event_id,
        year=year,
        date=date,
        round_num=int(row.round_num),
        values=values,
    )


def approach_from_row(row: ApproachRow, warnings: list[str]) -> ApproachSnapshot:
    values: dict[str, float] = {}
    shots: dict[str, float] = {}
    for bucket in APPROACH_BUCKETS:
        for kind in ("gir", "sg", "prox"):
            raw = getattr(row, f"{bucket}_{kind}")
            values[approach_field(bucket, kind)] = clean_metric_value(
                raw,
                percentage=kind == "gir",
                warnings=warnings,
                label=f"{bucket}_{kind} for player {row.dg_id}",
            )
        shots[bucket] = clean_metric_value(getattr(row, f"{bucket}_shots"))
    return ApproachSnapshot(values=values, shots=shots)


def build_player_histories(
    field_rows: Iterable[FieldRow],
    round_rows: Iterable[RoundRow],
    context: CourseContext,
    approach_rows: Iterable[ApproachRow] = (),
    as_of: datetime | None = None,
    before_season: int | None = None,
) -> dict[str, PlayerHistory]:
    similar_ids = set(context.similar_course_ids)
    putting_ids = set(context.putting_course_ids)

    players: dict[str, PlayerHistory] = {}
    for row in field_rows:
        if row.dg_id and row.dg_id not in players:
            players[row.dg_id] = PlayerHistory(player_id=row.dg_id, player_name=row.player_name)

    for row in round_rows:
        player = players.get(row.dg_id)
        if player is None:
            continue
        round_ = round_from_row(row, player.warnings)
        if not _is_before_cutoff(round_, as_of, before_season):
            continue

        key = (round_.event_id, round_.year)
        event = player.events.get(key)
        if event is None:
            event = EventRecord(event_id=round_.event_id, year=round_.year, finish_text=row.fin_text)
            player.events[key] = event
        event.rounds.append(round_)

        if round_.event_id in putting_ids:
            player.putting_rounds.append(round_)
        elif round_.event_id in similar_ids:
            player.similar_rounds.append(round_)
        else:
            player.historical_rounds.append(round_)

    for row in approach_rows:
        player = players.get(row.dg_id)
        if player is not None:
            player.approach = approach_from_row(row, player.warnings)

    for player in players.values():
        player.historical_rounds.sort(key=Round.sort_key, reverse=True)
        player.similar_rounds.sort(key=Round.sort_key, reverse=True)
        player.putting_rounds.sort(key=Round.sort_key, reverse=True)

    logger.info(
        "Built histories for %d players (%d rounds)",
        len(players),
        sum(len(p.all_rounds()) for p in players.values()),
    )
    return players


def _is_before_cutoff(
    round_: Round, as_of: datetime | None, before_season: int | None
) -> bool:
    if as_of is not None:
        if round_.date is not None:
            return round_.date < as_of
        # Undated rounds only count when they belong to an earlier season.
        return round_.year is not None and round_.year < as_of.year
    if before_season is not None and round_.year is not None:
        return round_.year < before_season
    return True


def calculate_dynamic_weight(
    base_weight: float, data_points: int, min_points: int, max_points: int = 20
) -> float:
    if data_points <= min_points:
        return base_weight * 0.8
    if data_points >= max_points:
        return base_weight
    span = max(1, max_points - min_points)
    scale = 0.8 + (0.2 * (data_points - min_points) / span)
    return base_weight * scale


def recency_weighted_average(values: list[float], decay: float) -> float | None:
    if not values:
        return None
    weights = [math.exp(-decay * index) for index in range(len(values))]
    total = sum(weights)
    if total <= 0:
        return None
    return sum(w * v for w, v in zip(weights, values)) / total


def _metric_values(rounds: list[Round], metric_field: str) -> list[float]:
    out = []
    for round_ in rounds:
        value = round_.value(metric_field)
        if value is None or not math.isfinite(value):
            continue
        if metric_field in PERCENTAGE_FIELDS and value > 1.0:
            value /= 100.0
        out.append(value)
    return out


def _source_average(
    rounds: list[Round], metric_field: str, decay: float, min_points: int
) -> tuple[float | None, int]:
    values = _metric_values(rounds, metric_field)
    if len(values) < max(1, min_points):
        return None, len(values)
    return recency_weighted_average(values, decay), len(values)


def aggregate_historical_metrics(
    history: PlayerHistory, options: AggregationOptions | None = None
) -> AggregatedMetrics:
    options = options or AggregationOptions()
    values: dict[str, float] = {}
    covered: set[str] = set()
    low_data: set[str] = set()
    sources: dict[str, str] = {}

    for metric_field in HISTORICAL_FIELDS:
        historical_avg, _ = _source_average(
            history.historical_rounds, metric_field, options.decay, options.min_historical_rounds
        )
        similar_avg, similar_count = _source_average(
            history.similar_rounds, metric_field, options.decay, options.min_similar_rounds
        )
        putting_avg, putting_count = (None, 0)
        if metric_field in PUTTING_FIELDS:
            putting_avg, putting_count = _source_average(
                history.putting_rounds,
                metric_field,
                options.putting_decay,
                options.min_putting_rounds,
            )

        value: float | None = None
        if putting_avg is not None:
            if historical_avg is not None:
                weight = calculate_dynamic_weight(
                    options.putting_weight,
                    putting_count,
                    options.min_putting_rounds,
                    options.full_weight_rounds,
                )
                value = (putting_avg * weight) + (historical_avg * (1.0 - weight))
                sources[metric_field] = "putting+historical"
            else:
                value = putting_avg
                sources[metric_field] = "putting"
        elif similar_avg is not None:
            if historical_avg is not None:
                weight = calculate_dynamic_weight(
                    options.similar_weight,
                    similar_count,
                    options.min_similar_rounds,
                    options.full_weight_rounds,
                )
                value = (similar_avg * weight) + (historical_avg * (1.0 - weight))
                sources[metric_field] = "similar+historical"
            else:
                value = similar_avg
                sources[metric_field] = "similar"
        elif historical_avg is not None:
            value = historical_avg
            sources[metric_field] = "historical"
        else:
            combined, _ = _source_average(
                history.all_rounds(), metric_field, options.decay, options.min_historical_rounds
            )
            if combined is not None:
                value = combined
                sources[metric_field] = "combined"
                low_data.add(metric_field)

        if value is None:
            values[metric_field] = 0.0
            sources[metric_field] = "none"
            continue
        values[metric_field] = float(value)
        if not (value == 0.0 and metric_field in ZERO_IS_MISSING_FIELDS):
            covered.add(metric_field)

    return AggregatedMetrics(values=values, covered=covered, low_data=low_data, sources=sources)
