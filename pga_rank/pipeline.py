from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
import logging

from .config import CourseContext, CourseSetupWeights
from .derived import BirdieChanceWeights, build_metric_vector
from .evaluation import EvaluationResult, build_finish_map, evaluate_rankings
from .metrics import PastFinish, PlayerProfile
from .models import ApproachRow, FieldRow, RoundRow, TournamentDataset
from .normalization import GroupStats
from .ranking import assemble_ranking
from .rounds import (
    AggregationOptions,
    PlayerHistory,
    aggregate_historical_metrics,
    build_player_histories,
    parse_round_date,
)
from .scoring import PastPerformanceSettings, PlayerScore, score_players
from .templates import Template, without_approach_groups

logger = logging.getLogger(__name__)


@dataclass
class RankingRun:
    event_id: str
    template: Template
    players: list[PlayerScore]
    group_stats: GroupStats
    warnings: list[str] = field(default_factory=list)

    def predicted_ranks(self) -> dict[str, int]:
        return {player.player_id: player.rank for player in self.players}

    def evaluate(self, finishes: Mapping[str, float]) -> EvaluationResult:
        return evaluate_rankings(self.predicted_ranks(), finishes)


def _past_finishes(history: PlayerHistory) -> tuple[PastFinish, ...]:
    finishes = []
    for event in history.events.values():
        dates = [round_.date for round_ in event.rounds if round_.date is not None]
        finishes.append(
            PastFinish(
                event_id=event.event_id,
                year=event.year,
                finish_text=event.finish_text,
                date=max(dates) if dates else None,
            )
        )
    return tuple(finishes)


def build_profile(
    history: PlayerHistory,
    options: AggregationOptions,
    course_setup: CourseSetupWeights,
    bcc_weights: BirdieChanceWeights | None = None,
) -> PlayerProfile:
    aggregated = aggregate_historical_metrics(history, options)
    metrics, covered = build_metric_vector(history, aggregated, course_setup, bcc_weights)
    return PlayerProfile(
        player_id=history.player_id,
        player_name=history.player_name,
        metrics=metrics,
        covered=frozenset(covered),
        low_data=frozenset(aggregated.low_data),
        past_finishes=_past_finishes(history),
        warnings=tuple(history.warnings),
    )


def build_profiles(
    histories: Mapping[str, PlayerHistory] | Iterable[PlayerHistory],
    context: CourseContext,
    options: AggregationOptions | None = None,
    bcc_weights: BirdieChanceWeights | None = None,
) -> list[PlayerProfile]:
    values = histories.values() if isinstance(histories, Mapping) else histories
    options = options or AggregationOptions.from_context(context)
    return [
        build_profile(history, options, context.course_setup_weights, bcc_weights)
        for history in values
    ]


def past_performance_settings(context: CourseContext) -> PastPerformanceSettings:
    return PastPerformanceSettings(
        enabled=context.past_performance_enabled,
        weight=context.past_performance_weight,
        current_event_id=context.event_id or None,
    )


@dataclass
class EventSlice:
    event_id: str
    season: int | None
    profiles: list[PlayerProfile]
    finishes: dict[str, int]
    has_approach: bool

    def template_for(self, template: Template) -> Template:
        return template if self.has_approach else without_approach_groups(template)


def current_season(dataset: TournamentDataset) -> int | None:
    if dataset.context.season is not None:
        return dataset.context.season
    years = [row.year for row in dataset.rounds if row.year is not None]
    return max(years) if years else None


def _event_rows(rows: Iterable[RoundRow], event_id: str, season: int | None) -> list[RoundRow]:
    return [
        row
        for row in rows
        if row.event_id == event_id and (season is None or row.year == season)
    ]


def event_start(rows: Iterable[RoundRow], event_id: str, season: int | None) -> datetime | None:
    dates = [parse_round_date(row.event_completed) for row in _event_rows(rows, event_id, season)]
    dates = [d for d in dates if d is not None]
    return min(dates) if dates else None


def results_from_rounds(
    rows: Iterable[RoundRow], event_id: str, season: int | None
) -> list[tuple[str, str | None]]:
    finishes: dict[str, str | None] = {}
    for row in _event_rows(rows, event_id, season):
        if row.fin_text or row.dg_id not in finishes:
            finishes[row.dg_id] = row.fin_text
    return list(finishes.items())


def approach_rows_for_season(
    dataset: TournamentDataset, season: int | None, latest_season: int | None
) -> list[ApproachRow]:
    dated = [row for row in dataset.approach if row.season is not None and row.season == season]
    if dated:
        return dated
    if season is not None and season == latest_season:
        return [row for row in dataset.approach if row.season is None or row.season == season]
    return []


def seasons_with_event(dataset: TournamentDataset, event_id: str) -> list[int]:
    return sorted({row.year for row in dataset.rounds if row.event_id == event_id and row.year is not None})


def build_event_slice(
    dataset: TournamentDataset,
    event_id: str,
    season: int | None,
    field_rows: Sequence[FieldRow] | None = None,
    results: Sequence[tuple[str, str | None]] | None = None,
    bcc_weights: BirdieChanceWeights | None = None,
) -> EventSlice:
    """Profiles and finishes for one event edition, using only data known before it."""
    latest = current_season(dataset)
    if field_rows is None:
        names: dict[str, str] = {}
        for row in _event_rows(dataset.rounds, event_id, season):
            names.setdefault(row.dg_id, row.player_name)
        field_rows = [FieldRow(dg_id=pid, player_name=name) for pid, name in names.items()]
    if results is None:
        results = results_from_rounds(dataset.rounds, event_id, season)

    as_of = event_start(dataset.rounds, event_id, season)
    approach_rows = approach_rows_for_season(dataset, season, latest)
    context = dataset.context.model_copy(update={"event_id": event_id})
    histories = build_player_histories(
        field_rows,
        dataset.rounds,
        context,
        approach_rows=approach_rows,
        as_of=as_of,
        before_season=season if as_of is None and season != latest else None,
    )
    return EventSlice(
        event_id=event_id,
        season=season,
        profiles=build_profiles(histories, context, bcc_weights=bcc_weights),
        finishes=build_finish_map(results),
        has_approach=bool(approach_rows),
    )


def build_current_slice(
    dataset: TournamentDataset, bcc_weights: BirdieChanceWeights | None = None
) -> EventSlice:
    event_id = dataset.context.require_event_id()
    return build_event_slice(
        dataset,
        event_id,
        current_season(dataset),
        field_rows=dataset.field,
        results=[(row.dg_id, row.fin_text) for row in dataset.results],
        bcc_weights=bcc_weights,
    )


def run_slice(slice_: EventSlice, template: Template, context: CourseContext) -> RankingRun:
    context = context.model_copy(update={"event_id": slice_.event_id})
    return run_ranking(slice_.profiles, slice_.template_for(template), context)


def run_ranking(
    profiles: Sequence[PlayerProfile],
    template: Template,
    context: CourseContext,
) -> RankingRun:
    scoring = score_players(profiles, template, past_performance_settings(context))
    ranked = assemble_ranking(scoring.players)
    return RankingRun(
        event_id=context.event_id,
        template=template,
        players=ranked,
        group_stats=scoring.group_stats,
        warnings=scoring.warnings,
    )
