from __future__ import annotations

from datetime import datetime

import pytest

from pga_rank.config import CourseContext
from pga_rank.models import ApproachRow, FieldRow, RoundRow
from pga_rank.rounds import (
    AggregationOptions,
    aggregate_historical_metrics,
    approach_from_row,
    build_player_histories,
    calculate_dynamic_weight,
    clean_metric_value,
    parse_round_date,
    recency_weighted_average,
)


def _row(event_id: str, day: int, round_num: int = 1, **stats) -> RoundRow:
    return RoundRow(
        dg_id="1",
        player_name="Player One",
        event_id=event_id,
        year=2024,
        event_completed=f"2024-01-{day:02d}",
        round_num=round_num,
        **stats,
    )


def _histories(rows: list[RoundRow], **context):
    return build_player_histories(
        [FieldRow(dg_id="1", player_name="Player One")],
        rows,
        CourseContext(event_id="100", **context),
    )


def test_clean_metric_value_coerces_and_warns() -> None:
    warnings: list[str] = []

    assert clean_metric_value("65%", percentage=True) == pytest.approx(0.65)
    assert clean_metric_value("0.61", percentage=True) == pytest.approx(0.61)
    assert clean_metric_value("1,250") == 1250.0
    assert clean_metric_value(None, warnings=warnings) == 0.0
    assert clean_metric_value("n/a", warnings=warnings) == 0.0
    assert len(warnings) == 1


def test_parse_round_date_accepts_common_formats() -> None:
    assert parse_round_date("2024-04-14") == datetime(2024, 4, 14)
    assert parse_round_date("2024/04/14") == datetime(2024, 4, 14)
    assert parse_round_date("04/14/2024") == datetime(2024, 4, 14)
    assert parse_round_date("soon") is None


def test_dynamic_weight_scales_with_sample_count() -> None:
    assert calculate_dynamic_weight(0.7, 3, 5) == pytest.approx(0.56)
    assert calculate_dynamic_weight(0.7, 20, 5) == pytest.approx(0.7)
    assert calculate_dynamic_weight(0.7, 10, 5) == pytest.approx(0.7 * (0.8 + 0.2 * 5 / 15))


def test_recency_weighted_average_favours_recent_values() -> None:
    assert recency_weighted_average([], 0.2) is None
    assert recency_weighted_average([3.0, 3.0], 0.2) == pytest.approx(3.0)
    assert recency_weighted_average([2.0, 0.0], 0.2) > 1.0


def test_rounds_are_classified_and_sorted() -> None:
    rows = [
        _row("x", 1, sg_total=1.0),
        _row("x", 1, round_num=2, sg_total=1.0),
        _row("s", 5, sg_total=1.0),
        _row("p", 9, sg_putt=0.5),
    ]

    player = _histories(rows, similar_course_ids=["s"], putting_course_ids=["p", "s"])["1"]

    assert [r.event_id for r in player.putting_rounds] == ["p", "s"]
    assert player.similar_rounds == []
    assert [r.round_num for r in player.historical_rounds] == [2, 1]
    assert set(player.events) == {("x", 2024), ("s", 2024), ("p", 2024)}


def test_rounds_on_or_after_cutoff_are_excluded() -> None:
    rows = [_row("x", day, sg_total=1.0) for day in range(1, 11)]
    histories = build_player_histories(
        [FieldRow(dg_id="1")],
        rows,
        CourseContext(event_id="100"),
        as_of=datetime(2024, 1, 6),
    )

    assert len(histories["1"].historical_rounds) == 5


def test_undated_rounds_of_the_cutoff_season_are_excluded() -> None:
    rows = [
        _row("x", 2, sg_total=1.0),
        RoundRow(dg_id="1", event_id="100", year=2024, event_completed=None, round_num=1, sg_total=9.0),
        RoundRow(dg_id="1", event_id="y", year=2023, event_completed=None, round_num=1, sg_total=2.0),
    ]

    histories = build_player_histories(
        [FieldRow(dg_id="1")],
        rows,
        CourseContext(event_id="100"),
        as_of=datetime(2024, 1, 6),
    )

    kept = histories["1"].all_rounds()
    assert sorted(r.event_id for r in kept) == ["x", "y"]


def test_players_outside_field_are_ignored() -> None:
    rows = [_row("x", 1, sg_total=1.0)]
    histories = build_player_histories([FieldRow(dg_id="2")], rows, CourseContext(event_id="100"))

    assert histories["2"].all_rounds() == []


def test_similar_rounds_blend_with_history() -> None:
    rows = [_row("x", day, sg_total=0.0) for day in range(1, 11)]
    rows += [_row("s", day, sg_total=1.0) for day in range(11, 16)]
    player = _histories(rows, similar_course_ids=["s"])["1"]

    aggregated = aggregate_historical_metrics(player, AggregationOptions())

    assert aggregated.values["sg_total"] == pytest.approx(0.56)
    assert aggregated.sources["sg_total"] == "similar+historical"
    assert "sg_total" in aggregated.covered
    assert "sg_total" not in aggregated.low_data


def test_combined_pool_fallback_flags_low_data() -> None:
    rows = [_row("x", day, sg_total=1.0) for day in range(1, 7)]
    rows += [_row("s", day, sg_total=1.0) for day in range(7, 11)]
    player = _histories(rows, similar_course_ids=["s"])["1"]

    aggregated = aggregate_historical_metrics(player)

    assert aggregated.values["sg_total"] == pytest.approx(1.0)
    assert aggregated.sources["sg_total"] == "combined"
    assert "sg_total" in aggregated.low_data
    assert aggregated.values["sg_putting"] == 0.0
    assert "sg_putting" not in aggregated.covered


def test_approach_snapshot_reads_every_bucket() -> None:
    warnings: list[str] = []
    snapshot = approach_from_row(
        ApproachRow(dg_id="1", under_100_gir="55", under_100_sg=0.02, under_100_prox=15.5, under_100_shots=40),
        warnings,
    )

    assert snapshot.values["approach_under_100_gir"] == pytest.approx(0.55)
    assert snapshot.values["approach_under_100_prox"] == 15.5
    assert snapshot.values["approach_over_200_fw_sg"] == 0.0
    assert snapshot.shots["under_100"] == 40.0
    assert warnings == []
