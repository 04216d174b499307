from __future__ import annotations

from dataclasses import dataclass
import math

import numpy as np

from .config import CourseSetupWeights
from .metrics import (
    APPROACH_FIELDS,
    FIELD_TO_LABEL,
    HISTORICAL_FIELDS,
    MetricVector,
    is_lower_better,
)
from .rounds import AggregatedMetrics, PlayerHistory, Round

TREND_WINDOW_ROUNDS = 24
TREND_MIN_ROUNDS = 15
TREND_DECAY = 0.2
TREND_THRESHOLD = 0.005
TREND_WEIGHT = 0.30
SMOOTHING_WINDOW = 3
APPROACH_SHOTS_PER_ROUND = 18.0


@dataclass(frozen=True)
class BirdieChanceWeights:
    """Calibrated component weights for the birdie-chances-created composite.

    These were fitted offline against historical scoring data and are kept as
    constants; callers may override them for experiments.
    """

    gir: float = 0.40
    approach: float = 0.30
    putting: float = 0.25
    scoring: float = 0.05
    proximity_scale: float = 30.0
    scoring_reference: float = 74.0
    default_scoring_average: float = 72.0
    default_fairway_rate: float = 0.6


def normalize_approach_sg(per_shot_value: float) -> float:
    return per_shot_value * APPROACH_SHOTS_PER_ROUND


def _by_distance(
    metrics: MetricVector,
    kind: str,
    setup: CourseSetupWeights,
    fairway: float,
    rough: float,
    transform=None,
) -> float:
    def read(bucket: str) -> float:
        value = getattr(metrics, f"approach_{bucket}_{kind}")
        if not math.isfinite(value):
            return 0.0
        return transform(value) if transform else value

    return (
        read("under_100") * setup.under_100
        + read("under_150_fw") * setup.from_100_to_150 * fairway
        + read("under_150_rough") * setup.from_100_to_150 * rough
        + read("under_200_fw") * setup.from_150_to_200 * fairway
        + read("over_150_rough") * (setup.from_150_to_200 + setup.over_200) * rough
        + read("over_200_fw") * setup.over_200 * fairway
    )


def birdie_chances_created(
    metrics: MetricVector,
    course_setup: CourseSetupWeights | None = None,
    weights: BirdieChanceWeights | None = None,
) -> float:
    weights = weights or BirdieChanceWeights()
    setup = (course_setup or CourseSetupWeights()).normalized()

    fairway = metrics.driving_accuracy or weights.default_fairway_rate
    rough = 1.0 - fairway

    weighted_gir = _by_distance(metrics, "gir", setup, fairway, rough)
    weighted_sg = _by_distance(metrics, "sg", setup, fairway, rough, normalize_approach_sg)
    weighted_prox = _by_distance(metrics, "prox", setup, fairway, rough)

    sg_putting = metrics.sg_putting if math.isfinite(metrics.sg_putting) else 0.0
    scoring_average = metrics.scoring_average or weights.default_scoring_average

    approach_component = weighted_sg - (weighted_prox / weights.proximity_scale)
    scoring_component = weights.scoring_reference - scoring_average
    return (
        (weighted_gir * weights.gir)
        + (approach_component * weights.approach)
        + (sg_putting * weights.putting)
        + (scoring_component * weights.scoring)
    )


def smooth_series(values: list[float], window: int = SMOOTHING_WINDOW) -> list[float]:
    if len(values) < window:
        return list(values)
    smoothed = []
    for index in range(len(values)):
        start = max(0, index - window // 2)
        end = min(len(values), index + math.ceil(window / 2))
        smoothed.append(sum(values[start:end]) / (end - start))
    return smoothed


def weighted_trend_slope(values: list[float], decay: float = TREND_DECAY) -> float:
    n = len(values)
    if n < 2:
        return 0.0
    x = np.arange(1, n + 1, dtype=np.float64)
    y = np.asarray(values, dtype=np.float64)
    w = np.exp(-decay * (n - np.arange(n, dtype=np.float64)))
    sum_w = float(w.sum())
    sum_x = float((w * x).sum())
    sum_y = float((w * y).sum())
    sum_xy = float((w * x * y).sum())
    sum_x2 = float((w * x * x).sum())
    denominator = (sum_w * sum_x2) - (sum_x * sum_x)
    if denominator == 0:
        return 0.0
    return ((sum_w * sum_xy) - (sum_x * sum_y)) / denominator


def compute_metric_trends(rounds: list[Round]) -> dict[str, float]:
    recent = sorted(rounds, key=Round.sort_key, reverse=True)[:TREND_WINDOW_ROUNDS]
    trends = {metric_field: 0.0 for metric_field in HISTORICAL_FIELDS}
    if len(recent) < TREND_MIN_ROUNDS:
        return trends

    chronological = list(reversed(recent))
    for metric_field in HISTORICAL_FIELDS:
        values = [
            value
            for value in (round_.value(metric_field) for round_ in chronological)
            if value is not None and math.isfinite(value)
        ]
        if len(values) < TREND_MIN_ROUNDS:
            continue
        slope = weighted_trend_slope(smooth_series(values))
        if abs(slope) > TREND_THRESHOLD:
            trends[metric_field] = round(slope, 3)
    return trends


def apply_trends(metrics: MetricVector, trends: dict[str, float]) -> MetricVector:
    changes: dict[str, float] = {}
    for metric_field, trend in trends.items():
        if abs(trend) <= TREND_THRESHOLD:
            continue
        impact = trend * TREND_WEIGHT
        if is_lower_better(FIELD_TO_LABEL[metric_field]):
            impact = -impact
        changes[metric_field] = getattr(metrics, metric_field) * (1.0 + impact)
    return metrics.with_values(**changes) if changes else metrics


def build_metric_vector(
    history: PlayerHistory,
    aggregated: AggregatedMetrics,
    course_setup: CourseSetupWeights | None = None,
    bcc_weights: BirdieChanceWeights | None = None,
    apply_trend_adjustment: bool = True,
) -> tuple[MetricVector, set[str]]:
    values = dict(aggregated.values)
    covered = set(aggregated.covered)
    if history.approach is not None:
        for metric_field in APPROACH_FIELDS:
            value = history.approach.values.get(metric_field, 0.0)
            values[metric_field] = value
            if value != 0.0:
                covered.add(metric_field)

    metrics = MetricVector(**values)
    if apply_trend_adjustment:
        metrics = apply_trends(metrics, compute_metric_trends(history.all_rounds()))

    bcc = birdie_chances_created(metrics, course_setup, bcc_weights)
    metrics = metrics.with_values(birdie_chances_created=bcc)
    if covered & {"greens_in_regulation", "sg_putting"} or any(
        field_name in covered for field_name in APPROACH_FIELDS
    ):
        covered.add("birdie_chances_created")
    return metrics, covered
