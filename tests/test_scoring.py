from __future__ import annotations

from datetime import datetime
import math

import pytest

from pga_rank.config import CourseContext
from pga_rank.metrics import MetricVector, PastFinish, PlayerProfile
from pga_rank.normalization import (
    baseline_stats,
    compress_outlier,
    compute_metric_stats,
    coverage_dampening_factor,
    metric_z_score,
)
from pga_rank.pipeline import run_ranking
from pga_rank.scoring import (
    PastPerformanceSettings,
    confidence_factor,
    coverage_multiplier,
    past_performance_multiplier,
    position_impact,
    score_players,
)
from pga_rank.templates import Template


def _profile(player_id: str, sg_total: float | None, **extra) -> PlayerProfile:
    covered = {"sg_total"} if sg_total is not None else set()
    return PlayerProfile(
        player_id=player_id,
        player_name=f"Player {player_id}",
        metrics=MetricVector(sg_total=sg_total or 0.0),
        covered=frozenset(covered),
        **extra,
    )


def _single_metric_template() -> Template:
    return Template(name="ONE", group_weights={"G": 1.0}, metric_weights={"G": {"SG Total": 1.0}})


def test_population_stats_for_three_players() -> None:
    stats = compute_metric_stats("SG Total", [10.0, 20.0, 30.0])

    assert stats.mean == pytest.approx(20.0)
    assert stats.std_dev == pytest.approx(8.165, abs=1e-3)
    assert stats.count == 3
    assert not stats.from_baseline


def test_single_sample_falls_back_to_baseline() -> None:
    stats = compute_metric_stats("Approach <150 FW Prox", [12.0])

    assert stats.from_baseline
    assert stats == baseline_stats("Approach <150 FW Prox")
    assert stats.mean == pytest.approx(50.0 - 30.0)
    assert stats.std_dev == pytest.approx(7.0)


def test_lower_better_values_are_transformed_before_stats() -> None:
    stats = compute_metric_stats("Poor Shots", [2.0, 4.0])

    assert stats.mean == pytest.approx(9.0)


def test_outlier_compression_only_for_scoring_metrics() -> None:
    assert compress_outlier("Birdie Chances Created", 4.0) == pytest.approx(2.0 * 2.0**0.75)
    assert compress_outlier("Birdies or Better", -4.0) == pytest.approx(-2.0 * 2.0**0.75)
    assert compress_outlier("Birdie Chances Created", 1.5) == 1.5
    assert compress_outlier("SG Total", 4.0) == 4.0


def test_z_score_is_monotonic_and_finite() -> None:
    stats = compute_metric_stats("SG Total", [0.0, 1.0, 2.0])
    values = [metric_z_score("SG Total", raw, stats) for raw in (-1.0, 0.5, 1.0, 3.0)]

    assert values == sorted(values)
    assert metric_z_score("SG Total", math.nan, stats) == 0.0


def test_coverage_curves() -> None:
    assert coverage_dampening_factor(0.8) == 1.0
    assert coverage_dampening_factor(0.0) == pytest.approx(math.exp(-1.5))
    assert confidence_factor(0.0) == 0.5
    assert confidence_factor(1.0) == 1.0
    assert coverage_multiplier(0.0) == pytest.approx(0.4)
    assert coverage_multiplier(0.7) == pytest.approx(1.0)
    assert coverage_multiplier(0.35) == pytest.approx(0.7)


def test_three_player_scenario_ranks_by_z_score() -> None:
    profiles = [_profile("1", 10.0), _profile("2", 20.0), _profile("3", 30.0)]

    run = run_ranking(profiles, _single_metric_template(), CourseContext(event_id="100"))

    assert [p.player_id for p in run.players] == ["3", "2", "1"]
    assert [p.rank for p in run.players] == [1, 2, 3]
    by_id = {p.player_id: p for p in run.players}
    assert by_id["1"].group_scores["G"] == pytest.approx(-1.2247, abs=1e-4)
    assert by_id["2"].refined_score == pytest.approx(0.0)
    assert by_id["3"].refined_score == pytest.approx(1.2247, abs=1e-4)
    assert by_id["3"].war == pytest.approx(math.log1p(1.2247), abs=1e-4)


def test_zero_coverage_player_gets_finite_floor_score() -> None:
    profiles = [_profile("1", 1.0), _profile("2", 2.0), _profile("3", None)]

    scoring = score_players(profiles, _single_metric_template())
    empty = next(p for p in scoring.players if p.player_id == "3")

    assert empty.data_coverage == 0.0
    assert math.isfinite(empty.refined_score)
    assert empty.refined_score == 0.0
    assert empty.confidence_factor == 0.5
    assert empty.coverage_multiplier == pytest.approx(0.4)


def test_partial_coverage_dampens_group_scores() -> None:
    template = Template(
        name="TWO",
        group_weights={"G": 1.0},
        metric_weights={"G": {"SG Total": 0.5, "SG Putting": 0.5}},
    )
    profiles = [_profile("1", 1.0), _profile("2", 2.0), _profile("3", 3.0)]

    scoring = score_players(profiles, template)
    best = next(p for p in scoring.players if p.player_id == "3")

    assert best.data_coverage == pytest.approx(0.5)
    assert best.group_scores_raw["G"] == pytest.approx(0.5 * 1.2247, abs=1e-4)
    assert best.group_scores["G"] == pytest.approx(best.group_scores_raw["G"] * math.exp(-1.5 * 0.5))
    assert best.weighted_score == pytest.approx(best.group_scores["G"])


def test_ranking_is_idempotent() -> None:
    profiles = [_profile(str(i), float(i % 4)) for i in range(8)]
    context = CourseContext(event_id="100")

    first = run_ranking(profiles, _single_metric_template(), context)
    second = run_ranking(profiles, _single_metric_template(), context)

    assert [(p.player_id, p.rank, p.refined_score, p.war) for p in first.players] == [
        (p.player_id, p.rank, p.refined_score, p.war) for p in second.players
    ]


def test_position_impact_table() -> None:
    assert position_impact(1) == 1.5
    assert position_impact(3) == 1.2
    assert position_impact(4) == 1.0
    assert position_impact(25) == 0.4
    assert position_impact(60) == -0.2
    assert position_impact(None) == -0.2


def test_past_performance_multiplier() -> None:
    finishes = (
        PastFinish(event_id="100", year=2023, finish_text="CUT", date=datetime(2023, 4, 10)),
        PastFinish(event_id="200", year=2024, finish_text="1", date=datetime(2024, 3, 1)),
    )
    enabled = PastPerformanceSettings(enabled=True, weight=1.0, current_event_id="100")

    assert past_performance_multiplier(finishes, PastPerformanceSettings()) == 1.0
    # Only the win elsewhere counts; the best impact maps to the top of the range.
    assert past_performance_multiplier(finishes, enabled) == pytest.approx(1.8)
    half = PastPerformanceSettings(enabled=True, weight=0.5, current_event_id="100")
    assert past_performance_multiplier(finishes, half) == pytest.approx(1.4)
    assert past_performance_multiplier(finishes[:1], enabled) == 1.0


def test_past_performance_scales_final_score() -> None:
    win = (PastFinish(event_id="200", year=2024, finish_text="1"),)
    profiles = [_profile("1", 1.0, past_finishes=win), _profile("2", 0.0), _profile("3", -1.0)]
    settings = PastPerformanceSettings(enabled=True, weight=1.0, current_event_id="100")

    scoring = score_players(profiles, _single_metric_template(), settings)
    leader = next(p for p in scoring.players if p.player_id == "1")

    assert leader.past_performance_multiplier == pytest.approx(1.8)
    assert leader.final_score == pytest.approx(leader.refined_score * 1.8)
