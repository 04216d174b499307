from __future__ import annotations

import pytest

from pga_rank.config import CourseContext
from pga_rank.models import ApproachRow, FieldRow, ResultRow, RoundRow, TournamentDataset

PLAYER_COUNT = 24
SEASONS = (2022, 2023, 2024)
# (event_id, completion month-day) in calendar order.
EVENTS = (("200", "03-01"), ("100", "04-10"), ("300", "05-01"))


def _quality(index: int) -> float:
    return 1.0 - (index / PLAYER_COUNT)


def _finish(index: int) -> str:
    return "CUT" if index >= PLAYER_COUNT - 4 else str(index + 1)


def _round_row(index: int, event_id: str, year: int, date: str, round_num: int) -> RoundRow:
    q = _quality(index)
    jitter = 0.01 * round_num
    return RoundRow(
        dg_id=str(1000 + index),
        player_name=f"Player {index + 1}",
        event_id=event_id,
        year=year,
        event_completed=f"{year}-{date}",
        round_num=round_num,
        fin_text=_finish(index),
        score=72.0 - (2.0 * q) + jitter,
        birdies=3.0 + q,
        eagles_or_better=0.1,
        sg_total=(2.0 * q) - 1.0 + jitter,
        driving_dist=290.0 + (10.0 * q),
        driving_acc=0.55 + (0.1 * q),
        sg_t2g=(1.5 * q) - 0.7,
        sg_app=q - 0.5,
        sg_arg=(0.4 * q) - 0.2,
        sg_ott=(0.6 * q) - 0.3,
        sg_putt=(0.8 * q) - 0.4 + jitter,
        gir=0.60 + (0.1 * q),
        scrambling=0.50 + (0.1 * q),
        great_shots=3.0 + q,
        poor_shots=6.0 - (2.0 * q),
        prox_fw=32.0 - (4.0 * q),
        prox_rgh=40.0 - (6.0 * q),
    )


def _approach_row(index: int, season: int, shift: float) -> ApproachRow:
    q = _quality(index) + shift
    values = {"dg_id": str(1000 + index), "player_name": f"Player {index + 1}", "season": season}
    for bucket, prox in (
        ("under_100", 16.0),
        ("under_150_fw", 23.0),
        ("under_150_rough", 37.0),
        ("over_150_rough", 50.0),
        ("under_200_fw", 35.0),
        ("over_200_fw", 45.0),
    ):
        values[f"{bucket}_gir"] = 0.5 + (0.2 * q)
        values[f"{bucket}_sg"] = (0.1 * q) - 0.05
        values[f"{bucket}_prox"] = prox - (4.0 * q)
        values[f"{bucket}_shots"] = 40
    return ApproachRow(**values)


def build_dataset(event_id: str = "100", with_results: bool = True) -> TournamentDataset:
    rounds = [
        _round_row(index, event, year, date, round_num)
        for year in SEASONS
        for event, date in EVENTS
        for index in range(PLAYER_COUNT)
        for round_num in range(1, 5)
    ]
    results = []
    if with_results:
        results = [
            ResultRow(dg_id=str(1000 + index), player_name=f"Player {index + 1}", fin_text=_finish(index))
            for index in range(PLAYER_COUNT)
        ]
    return TournamentDataset(
        context=CourseContext(event_id=event_id, season=2024, similar_course_ids=["200", "300"]),
        field=[
            FieldRow(dg_id=str(1000 + index), player_name=f"Player {index + 1}")
            for index in range(PLAYER_COUNT)
        ],
        rounds=rounds,
        approach=[_approach_row(index, 2024, 0.0) for index in range(PLAYER_COUNT)],
        previous_approach=[_approach_row(index, 2023, -0.1) for index in range(PLAYER_COUNT)],
        results=results,
    )


@pytest.fixture
def dataset() -> TournamentDataset:
    return build_dataset()
