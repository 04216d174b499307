from __future__ import annotations

import math

from pga_rank.metrics import MetricVector
from pga_rank.ranking import assemble_ranking, composite_score
from pga_rank.scoring import PlayerScore


def _score(player_id: str, refined: float, war: float = 0.0) -> PlayerScore:
    return PlayerScore(
        player_id=player_id,
        player_name=f"Player {player_id}",
        metrics=MetricVector(),
        group_scores_raw={},
        group_scores={},
        weighted_score=refined,
        refined_score=refined,
        confidence_factor=1.0,
        coverage_multiplier=1.0,
        data_coverage=1.0,
        past_performance_multiplier=1.0,
        final_score=refined,
        war=war,
    )


def test_ties_share_a_dense_rank() -> None:
    players = [
        _score("a", 1.0, war=0.500),
        _score("b", 1.0, war=0.505),
        _score("c", 0.5),
        _score("d", 0.0),
    ]

    ranked = assemble_ranking(players)

    assert [(p.player_id, p.rank) for p in ranked] == [("b", 1), ("a", 1), ("c", 2), ("d", 3)]


def test_equal_scores_break_on_war() -> None:
    ranked = assemble_ranking([_score("a", 1.0, war=0.1), _score("b", 1.0, war=0.4)])

    assert [(p.player_id, p.rank) for p in ranked] == [("b", 1), ("a", 2)]


def test_close_scores_compare_composite() -> None:
    ranked = assemble_ranking([_score("a", 1.00, war=0.0), _score("b", 0.98, war=1.0)])

    assert [p.player_id for p in ranked] == ["b", "a"]
    assert ranked[0].composite_score == composite_score(ranked[0])


def test_non_finite_scores_sink_to_zero() -> None:
    ranked = assemble_ranking([_score("a", math.nan), _score("b", -0.5), _score("c", 0.5)])

    assert [p.player_id for p in ranked] == ["c", "a", "b"]
    assert ranked[1].refined_score == 0.0


def test_identical_players_order_by_id() -> None:
    ranked = assemble_ranking([_score("z", 0.3), _score("m", 0.3), _score("a", 0.3)])

    assert [p.player_id for p in ranked] == ["a", "m", "z"]
    assert {p.rank for p in ranked} == {1}
