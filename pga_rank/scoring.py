from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
import logging
import math

from .evaluation import parse_finish_position
from .metrics import MetricVector, PastFinish, PlayerProfile, resolve_metric_label
from .normalization import (
    COVERAGE_DAMPENING_THRESHOLD,
    GroupStats,
    compute_group_stats,
    coverage_dampening_factor,
    metric_z_score,
)
from .templates import Template, normalize_template

logger = logging.getLogger(__name__)

CONFIDENCE_FLOOR = 0.5
COVERAGE_MULTIPLIER_FLOOR = 0.4
# Calibrated finish -> impact lookup, checked in order.
POSITION_IMPACTS: tuple[tuple[int, float], ...] = (
    (1, 1.5),
    (3, 1.2),
    (5, 1.0),
    (10, 0.8),
    (25, 0.4),
    (50, 0.1),
)
MISSED_CUT_IMPACT = -0.2
PAST_PERFORMANCE_RANGE = (0.5, 1.8)
PAST_PERFORMANCE_DECAY = 0.5


@dataclass(frozen=True)
class PastPerformanceSettings:
    enabled: bool = False
    weight: float = 0.0
    current_event_id: str | None = None
    impacts: tuple[tuple[int, float], ...] = POSITION_IMPACTS
    missed_cut_impact: float = MISSED_CUT_IMPACT


@dataclass
class PlayerScore:
    player_id: str
    player_name: str
    metrics: MetricVector
    group_scores_raw: dict[str, float]
    group_scores: dict[str, float]
    weighted_score: float
    refined_score: float
    confidence_factor: float
    coverage_multiplier: float
    data_coverage: float
    past_performance_multiplier: float
    final_score: float
    war: float
    composite_score: float = 0.0
    rank: int = 0
    low_data_metrics: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass
class ScoringRun:
    players: list[PlayerScore]
    group_stats: GroupStats
    warnings: list[str] = field(default_factory=list)


def confidence_factor(coverage: float) -> float:
    coverage = min(1.0, max(0.0, coverage))
    return min(1.0, max(CONFIDENCE_FLOOR, 0.5 + (0.5 * math.sqrt(coverage))))


def coverage_multiplier(coverage: float) -> float:
    t = min(1.0, max(0.0, coverage) / COVERAGE_DAMPENING_THRESHOLD)
    eased = t * t * (3.0 - (2.0 * t))
    return COVERAGE_MULTIPLIER_FLOOR + ((1.0 - COVERAGE_MULTIPLIER_FLOOR) * eased)


def position_impact(
    position: int | None,
    impacts: tuple[tuple[int, float], ...] = POSITION_IMPACTS,
    missed_cut_impact: float = MISSED_CUT_IMPACT,
) -> float:
    if position is None:
        return missed_cut_impact
    for limit, impact in impacts:
        if position <= limit:
            return impact
    return missed_cut_impact


def _finish_sort_key(finish: PastFinish) -> tuple[datetime, int]:
    return (finish.date or datetime.min, finish.year or 0)


def past_performance_multiplier(
    finishes: Sequence[PastFinish], settings: PastPerformanceSettings
) -> float:
    if not settings.enabled or settings.weight <= 0:
        return 1.0

    ordered = sorted(finishes, key=_finish_sort_key, reverse=True)
    impacts = settings.impacts
    low_impact = min([impact for _, impact in impacts] + [settings.missed_cut_impact])
    high_impact = max(impact for _, impact in impacts) if impacts else 1.0

    weighted_total = 0.0
    weight_total = 0.0
    index = 0
    for finish in ordered:
        if settings.current_event_id and finish.event_id == settings.current_event_id:
            continue
        impact = position_impact(
            parse_finish_position(finish.finish_text), impacts, settings.missed_cut_impact
        )
        recency = PAST_PERFORMANCE_DECAY**index
        weighted_total += impact * recency
        weight_total += recency
        index += 1

    if weight_total <= 0 or high_impact <= low_impact:
        return 1.0

    average = weighted_total / weight_total
    low, high = PAST_PERFORMANCE_RANGE
    scaled = low + ((average - low_impact) / (high_impact - low_impact)) * (high - low)
    scaled = min(high, max(low, scaled))
    return 1.0 + ((scaled - 1.0) * settings.weight)


def _group_score(z_scores: dict[str, float], weights: dict[str, float], factor: float) -> float:
    numerator = 0.0
    denominator = 0.0
    for metric_name, z in z_scores.items():
        weight = weights[metric_name]
        numerator += z * factor * weight
        denominator += abs(weight)
    return numerator / denominator if denominator > 0 else 0.0


def _weighted_score(group_scores: dict[str, float], group_weights: dict[str, float]) -> float:
    numerator = 0.0
    denominator = 0.0
    for group, score in group_scores.items():
        weight = group_weights.get(group, 0.0)
        if weight <= 0:
            continue
        numerator += score * weight
        denominator += weight
    return numerator / denominator if denominator > 0 else 0.0


def _war(
    z_by_group: dict[str, dict[str, float]], template: Template, kpi_total: float
) -> float:
    if kpi_total <= 0:
        return 0.0
    total = 0.0
    for group, z_scores in z_by_group.items():
        group_weight = template.group_weights.get(group, 0.0)
        for metric_name, z in z_scores.items():
            kpi_weight = (group_weight * template.metric_weights[group][metric_name]) / kpi_total
            total += math.copysign(math.log1p(abs(z)), z) * kpi_weight if z else 0.0
    return total


def score_player(
    profile: PlayerProfile,
    template: Template,
    group_stats: GroupStats,
    past_performance: PastPerformanceSettings,
) -> PlayerScore:
    labels = template.metric_labels()
    covered_labels = {label for label in labels if profile.has_data(label)}
    coverage = len(covered_labels) / len(labels) if labels else 0.0

    z_by_group: dict[str, dict[str, float]] = {}
    kpi_total = 0.0
    for group, metrics in template.metric_weights.items():
        z_scores: dict[str, float] = {}
        for metric_name, weight in metrics.items():
            stats = group_stats.get(group, metric_name)
            label = resolve_metric_label(metric_name)
            if stats is None or label is None:
                continue
            if label in covered_labels:
                z_scores[metric_name] = metric_z_score(label, profile.metrics.get(label), stats)
            else:
                z_scores[metric_name] = 0.0
            kpi_total += abs(template.group_weights.get(group, 0.0) * weight)
        z_by_group[group] = z_scores

    group_scores_raw = {
        group: _group_score(z_scores, template.metric_weights[group], 1.0)
        for group, z_scores in z_by_group.items()
    }
    dampening = coverage_dampening_factor(coverage)
    if dampening < 1.0:
        group_scores = {
            group: _group_score(z_scores, template.metric_weights[group], dampening)
            for group, z_scores in z_by_group.items()
        }
    else:
        group_scores = dict(group_scores_raw)

    weighted = _weighted_score(group_scores, template.group_weights)
    confidence = confidence_factor(coverage)
    multiplier = coverage_multiplier(coverage)
    refined = weighted * confidence * multiplier
    past_multiplier = past_performance_multiplier(profile.past_finishes, past_performance)

    return PlayerScore(
        player_id=profile.player_id,
        player_name=profile.player_name,
        metrics=profile.metrics,
        group_scores_raw=group_scores_raw,
        group_scores=group_scores,
        weighted_score=weighted,
        refined_score=refined,
        confidence_factor=confidence,
        coverage_multiplier=multiplier,
        data_coverage=coverage,
        past_performance_multiplier=past_multiplier,
        final_score=refined * past_multiplier,
        war=_war(z_by_group, template, kpi_total),
        low_data_metrics=tuple(sorted(profile.low_data)),
        warnings=tuple(profile.warnings),
    )


def score_players(
    profiles: Sequence[PlayerProfile],
    template: Template,
    past_performance: PastPerformanceSettings | None = None,
) -> ScoringRun:
    normalized = normalize_template(template)
    settings = past_performance or PastPerformanceSettings()
    group_stats = compute_group_stats(profiles, normalized)
    players = [score_player(p, normalized, group_stats, settings) for p in profiles]
    warnings = list(group_stats.warnings)
    for player in players:
        warnings.extend(f"{player.player_name or player.player_id}: {w}" for w in player.warnings)
    logger.info("Scored %d players with template %s", len(players), template.name)
    return ScoringRun(players=players, group_stats=group_stats, warnings=warnings)
