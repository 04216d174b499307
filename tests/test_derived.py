from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from pga_rank.config import CourseSetupWeights
from pga_rank.derived import (
    BirdieChanceWeights,
    apply_trends,
    birdie_chances_created,
    build_metric_vector,
    compute_metric_trends,
    normalize_approach_sg,
    smooth_series,
)
from pga_rank.metrics import MetricVector
from pga_rank.rounds import AggregatedMetrics, ApproachSnapshot, PlayerHistory, Round


def _rounds(values: list[float], metric_field: str = "sg_total") -> list[Round]:
    start = datetime(2024, 1, 1)
    return [
        Round(
            event_id="x",
            year=2024,
            date=start + timedelta(days=7 * index),
            round_num=1,
            values={metric_field: value},
        )
        for index, value in enumerate(values)
    ]


def test_approach_sg_is_scaled_to_a_round() -> None:
    assert normalize_approach_sg(0.1) == pytest.approx(1.8)


def test_birdie_chances_defaults_for_empty_vector() -> None:
    # Defaults: 60% fairways, scoring average 72, everything else zero.
    assert birdie_chances_created(MetricVector()) == pytest.approx(0.1)


def test_birdie_chances_reward_approach_and_putting() -> None:
    base = MetricVector(driving_accuracy=0.6, scoring_average=71.0)
    better = base.with_values(approach_under_100_sg=0.05, sg_putting=0.5)

    assert birdie_chances_created(better) > birdie_chances_created(base)


def test_birdie_chances_follow_course_setup() -> None:
    metrics = MetricVector(driving_accuracy=0.6, approach_over_200_fw_gir=0.5)
    short_course = CourseSetupWeights(under_100=1.0, from_100_to_150=0.0, from_150_to_200=0.0, over_200=0.0)
    long_course = CourseSetupWeights(under_100=0.0, from_100_to_150=0.0, from_150_to_200=0.0, over_200=1.0)

    assert birdie_chances_created(metrics, long_course) > birdie_chances_created(metrics, short_course)


def test_birdie_chance_weights_are_overridable() -> None:
    metrics = MetricVector(sg_putting=1.0, scoring_average=74.0)

    heavy = birdie_chances_created(metrics, weights=BirdieChanceWeights(putting=1.0))

    assert heavy == pytest.approx(1.0)


def test_smooth_series_uses_centred_window() -> None:
    assert smooth_series([1.0, 2.0]) == [1.0, 2.0]
    assert smooth_series([0.0, 3.0, 6.0]) == pytest.approx([1.5, 3.0, 4.5])


def test_trends_need_enough_rounds() -> None:
    trends = compute_metric_trends(_rounds([0.1 * i for i in range(14)]))

    assert all(value == 0.0 for value in trends.values())


def test_trends_detect_improvement() -> None:
    trends = compute_metric_trends(_rounds([0.1 * i for i in range(20)]))

    assert trends["sg_total"] > 0
    assert trends["sg_putting"] == 0.0


def test_apply_trends_flips_lower_better_metrics() -> None:
    metrics = MetricVector(sg_total=2.0, scoring_average=70.0, sg_putting=1.0)

    adjusted = apply_trends(metrics, {"sg_total": 0.1, "scoring_average": 0.1, "sg_putting": 0.004})

    assert adjusted.sg_total == pytest.approx(2.06)
    assert adjusted.scoring_average == pytest.approx(67.9)
    assert adjusted.sg_putting == 1.0


def test_metric_vector_merges_approach_snapshot() -> None:
    history = PlayerHistory(
        player_id="1",
        player_name="Player One",
        approach=ApproachSnapshot(values={"approach_under_100_sg": 0.03}, shots={"under_100": 30.0}),
    )
    aggregated = AggregatedMetrics(
        values={"sg_total": 1.0, "sg_putting": 0.2},
        covered={"sg_total", "sg_putting"},
        low_data=set(),
        sources={},
    )

    metrics, covered = build_metric_vector(history, aggregated)

    assert metrics.approach_under_100_sg == 0.03
    assert "approach_under_100_sg" in covered
    assert "approach_under_150_fw_sg" not in covered
    assert "birdie_chances_created" in covered
    assert metrics.birdie_chances_created == pytest.approx(birdie_chances_created(metrics))
