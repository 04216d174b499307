from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging
import math

import numpy as np

from .metrics import BASELINE_STATS, PlayerProfile, resolve_metric_label, transform_metric_value
from .templates import Template

logger = logging.getLogger(__name__)

MIN_STAT_SAMPLES = 2
STD_DEV_FLOOR = 1e-3
OUTLIER_Z_THRESHOLD = 2.0
OUTLIER_EXPONENT = 0.75
OUTLIER_NAME_MARKERS = ("Score", "Birdie", "Par")
COVERAGE_DAMPENING_THRESHOLD = 0.70
COVERAGE_DAMPENING_RATE = 1.5


@dataclass(frozen=True)
class MetricStats:
    mean: float
    std_dev: float
    count: int
    from_baseline: bool = False


@dataclass
class GroupStats:
    stats: dict[tuple[str, str], MetricStats] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def get(self, group: str, metric_name: str) -> MetricStats | None:
        return self.stats.get((group, metric_name))


def baseline_stats(label: str) -> MetricStats:
    raw_mean, std_dev = BASELINE_STATS.get(label, (0.0, 1.0))
    return MetricStats(
        mean=transform_metric_value(label, raw_mean),
        std_dev=max(std_dev, STD_DEV_FLOOR),
        count=0,
        from_baseline=True,
    )


def compute_metric_stats(label: str, values: Sequence[float]) -> MetricStats:
    array = np.asarray(
        [transform_metric_value(label, v) for v in values if v is not None and math.isfinite(v)],
        dtype=np.float64,
    )
    if array.size < MIN_STAT_SAMPLES:
        return baseline_stats(label)
    std_dev = float(np.std(array))
    return MetricStats(
        mean=float(np.mean(array)),
        std_dev=max(std_dev, STD_DEV_FLOOR),
        count=int(array.size),
    )


def compute_group_stats(players: Sequence[PlayerProfile], template: Template) -> GroupStats:
    group_stats = GroupStats()
    for group, metrics in template.metric_weights.items():
        for metric_name in metrics:
            label = resolve_metric_label(metric_name)
            if label is None:
                group_stats.warnings.append(f"Unknown metric {metric_name!r} in group {group!r}.")
                continue
            values = [p.metrics.get(label) for p in players if p.has_data(label)]
            stats = compute_metric_stats(label, values)
            if stats.from_baseline:
                group_stats.warnings.append(
                    f"{group}/{metric_name}: {len(values)} valid values, using baseline stats."
                )
            group_stats.stats[(group, metric_name)] = stats

    if group_stats.warnings:
        logger.warning("Group stats fell back for %d metrics", len(group_stats.warnings))
    return group_stats


def compress_outlier(label: str, z: float) -> float:
    if not any(marker in label for marker in OUTLIER_NAME_MARKERS):
        return z
    magnitude = abs(z)
    if magnitude <= OUTLIER_Z_THRESHOLD:
        return z
    compressed = OUTLIER_Z_THRESHOLD * (magnitude / OUTLIER_Z_THRESHOLD) ** OUTLIER_EXPONENT
    return math.copysign(compressed, z)


def metric_z_score(label: str, raw_value: float, stats: MetricStats) -> float:
    if raw_value is None or not math.isfinite(raw_value):
        return 0.0
    transformed = transform_metric_value(label, raw_value)
    z = (transformed - stats.mean) / max(stats.std_dev, STD_DEV_FLOOR)
    return compress_outlier(label, z)


def coverage_dampening_factor(coverage: float) -> float:
    if coverage >= COVERAGE_DAMPENING_THRESHOLD:
        return 1.0
    return math.exp(-COVERAGE_DAMPENING_RATE * (1.0 - max(0.0, coverage)))
