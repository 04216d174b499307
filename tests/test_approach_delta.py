from __future__ import annotations

import pytest

from pga_rank.approach_delta import approach_delta_alignment, compute_approach_deltas
from pga_rank.models import ApproachRow


def _row(player_id: str, sg: float, prox: float, shots: float, **extra) -> ApproachRow:
    return ApproachRow(
        dg_id=player_id,
        player_name=f"Player {player_id}",
        under_100_sg=sg,
        under_100_prox=prox,
        under_100_shots=shots,
        **extra,
    )


def test_bucket_delta_and_volume_weight() -> None:
    deltas = compute_approach_deltas([_row("1", 0.10, 20.0, 50)], [_row("1", 0.20, 18.0, 50)])

    bucket = deltas[0].buckets["under_100"]
    assert deltas[0].player_name == "Player 1"
    assert not bucket.low_data
    assert bucket.volume_weight == pytest.approx(10.0)
    assert bucket.deltas["approach_under_100_sg"] == pytest.approx(0.10)
    assert bucket.deltas["approach_under_100_prox"] == pytest.approx(-2.0)
    assert bucket.deltas["approach_under_100_gir"] is None


def test_low_volume_buckets_are_flagged() -> None:
    deltas = compute_approach_deltas([_row("1", 0.1, 20.0, 10)], [_row("1", 0.3, 15.0, 12)])

    bucket = deltas[0].buckets["under_100"]
    assert bucket.low_data
    assert bucket.volume_weight is None
    assert all(value is None for value in bucket.deltas.values())
    assert deltas[0].buckets["over_200_fw"].low_data


def test_field_filter_and_one_sided_players() -> None:
    previous = [_row("1", 0.1, 20.0, 50), _row("2", 0.1, 20.0, 50)]
    current = [_row("1", 0.2, 19.0, 50), _row("3", 0.2, 19.0, 50)]

    deltas = compute_approach_deltas(previous, current, field_ids=["1", "3"])

    assert [d.player_id for d in deltas] == ["1", "3"]
    assert deltas[1].buckets["under_100"].deltas["approach_under_100_sg"] is None


def test_alignment_points_towards_improvement() -> None:
    deltas = compute_approach_deltas([_row("1", 0.10, 20.0, 50)], [_row("1", 0.20, 18.0, 50)])

    alignment = approach_delta_alignment(deltas)

    # Lower proximity is better, so a drop reads as improvement.
    assert alignment["Approach <100 Prox"] == pytest.approx(1.0)
    assert alignment["Approach <100 SG"] == pytest.approx(0.05)
    assert approach_delta_alignment([]) == {}
