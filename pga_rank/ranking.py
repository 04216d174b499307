from __future__ import annotations

from collections.abc import Sequence
from functools import cmp_to_key
import logging
import math

from .scoring import PlayerScore

logger = logging.getLogger(__name__)

CLOSE_SCORE_THRESHOLD = 0.05
WAR_COMPOSITE_WEIGHT = 0.3
WAR_TIE_TOLERANCE = 0.01


def _finite(value: float) -> float:
    return value if value is not None and math.isfinite(value) else 0.0


def composite_score(player: PlayerScore) -> float:
    return (_finite(player.refined_score) * (1.0 - WAR_COMPOSITE_WEIGHT)) + (
        _finite(player.war) * WAR_COMPOSITE_WEIGHT
    )


def _compare(a: PlayerScore, b: PlayerScore) -> int:
    score_a = _finite(a.refined_score)
    score_b = _finite(b.refined_score)
    if score_a == score_b:
        difference = _finite(b.war) - _finite(a.war)
    elif abs(score_a - score_b) <= CLOSE_SCORE_THRESHOLD:
        difference = b.composite_score - a.composite_score
    else:
        difference = score_b - score_a
    if difference > 0:
        return 1
    if difference < 0:
        return -1
    return 0


def is_tied(a: PlayerScore, b: PlayerScore) -> bool:
    return _finite(a.refined_score) == _finite(b.refined_score) and (
        abs(_finite(a.war) - _finite(b.war)) < WAR_TIE_TOLERANCE
    )


def assemble_ranking(players: Sequence[PlayerScore]) -> list[PlayerScore]:
    for player in players:
        player.refined_score = _finite(player.refined_score)
        player.war = _finite(player.war)
        player.composite_score = composite_score(player)

    ordered = sorted(players, key=lambda p: p.player_id)
    ordered.sort(key=cmp_to_key(_compare))

    rank = 0
    previous: PlayerScore | None = None
    for player in ordered:
        if previous is None or not is_tied(player, previous):
            rank += 1
        player.rank = rank
        previous = player

    if ordered:
        logger.info(
            "Ranked %d players; leader %s (%.3f)",
            len(ordered),
            ordered[0].player_name or ordered[0].player_id,
            ordered[0].refined_score,
        )
    return ordered
