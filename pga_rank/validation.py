from __future__ import annotations

from dataclasses import dataclass, field
import logging

from .derived import BirdieChanceWeights
from .evaluation import EvaluationResult, aggregate_evaluations
from .models import TournamentDataset
from .optimizer import select_best_template
from .pipeline import (
    EventSlice,
    build_current_slice,
    build_event_slice,
    current_season,
    run_slice,
)
from .templates import Template, TemplateRepository

logger = logging.getLogger(__name__)

DEFAULT_SEASONS = 5
MIN_FOLD_EVENTS = 3
STRESS_MIN_MATCHED = 20
STRESS_MIN_SUBSET_CORRELATION = 0.10
STRESS_MIN_SUBSET_TOP20_WEIGHTED = 60.0


@dataclass(frozen=True)
class StressTestResult:
    passed: bool
    reasons: tuple[str, ...] = ()


@dataclass
class SeasonValidation:
    season: int
    evaluation: EvaluationResult
    stress: StressTestResult


@dataclass
class FoldValidation:
    season: int
    held_out_event_id: str
    template_name: str
    evaluation: EvaluationResult
    stress: StressTestResult


@dataclass
class ValidationReport:
    template_name: str
    seasons: list[SeasonValidation] = field(default_factory=list)
    folds: list[FoldValidation] = field(default_factory=list)
    season_aggregate: EvaluationResult | None = None
    fold_aggregate: EvaluationResult | None = None

    @property
    def failing_stress_tests(self) -> int:
        return sum(1 for s in self.seasons if not s.stress.passed) + sum(
            1 for f in self.folds if not f.stress.passed
        )


def stress_test(evaluation: EvaluationResult) -> StressTestResult:
    reasons = []
    if evaluation.matched_players < STRESS_MIN_MATCHED:
        reasons.append(f"matched players {evaluation.matched_players} < {STRESS_MIN_MATCHED}")
    subset = evaluation.subset
    if subset is None or subset.correlation < STRESS_MIN_SUBSET_CORRELATION:
        reasons.append(f"subset correlation below {STRESS_MIN_SUBSET_CORRELATION:.2f}")
    weighted = subset.top20_weighted_score if subset is not None else None
    if weighted is None or weighted < STRESS_MIN_SUBSET_TOP20_WEIGHTED:
        reasons.append(f"subset top-20 weighted score below {STRESS_MIN_SUBSET_TOP20_WEIGHTED:.0f}%")
    return StressTestResult(passed=not reasons, reasons=tuple(reasons))


class MultiYearValidator:
    def __init__(
        self,
        dataset: TournamentDataset,
        repository: TemplateRepository,
        seasons: int = DEFAULT_SEASONS,
        bcc_weights: BirdieChanceWeights | None = None,
    ):
        self.dataset = dataset
        self.repository = repository
        self.season_count = max(1, int(seasons))
        self.bcc_weights = bcc_weights
        self.event_id = dataset.context.require_event_id()
        self.latest = current_season(dataset)

    def _seasons_for(self, event_id: str) -> set[int]:
        return {
            row.year
            for row in self.dataset.rounds
            if row.event_id == event_id and row.year is not None
        }

    def seasons(self) -> list[int]:
        available = self._seasons_for(self.event_id)
        if self.latest is not None and self.dataset.results:
            available.add(self.latest)
        if self.latest is None:
            return sorted(available)[-self.season_count :]
        first = self.latest - self.season_count + 1
        return sorted(season for season in available if first <= season <= self.latest)

    def season_slice(self, season: int) -> EventSlice:
        if season == self.latest and self.dataset.results:
            return build_current_slice(self.dataset, self.bcc_weights)
        return build_event_slice(self.dataset, self.event_id, season, bcc_weights=self.bcc_weights)

    def fold_events(self, season: int) -> list[str]:
        events = [self.event_id]
        for event_id in self.dataset.context.similar_course_ids:
            if event_id not in events and season in self._seasons_for(event_id):
                events.append(event_id)
        return events

    def validate_seasons(self, template: Template) -> list[SeasonValidation]:
        results = []
        for season in self.seasons():
            slice_ = self.season_slice(season)
            evaluation = run_slice(slice_, template, self.dataset.context).evaluate(slice_.finishes)
            stress = stress_test(evaluation)
            if not stress.passed:
                logger.warning("Season %s failed stress test: %s", season, "; ".join(stress.reasons))
            results.append(SeasonValidation(season, evaluation, stress))
        return results

    def validate_folds(self, season: int) -> list[FoldValidation]:
        events = self.fold_events(season)
        if len(events) < MIN_FOLD_EVENTS:
            return []
        slices = {
            event_id: (
                self.season_slice(season)
                if event_id == self.event_id
                else build_event_slice(self.dataset, event_id, season, bcc_weights=self.bcc_weights)
            )
            for event_id in events
        }
        templates = self.repository.all()
        folds = []
        for held_out in events:
            training = [s for event_id, s in slices.items() if event_id != held_out]
            chosen = select_best_template(templates, training, self.dataset.context)
            if chosen is None:
                continue
            template, _ = chosen
            target = slices[held_out]
            evaluation = run_slice(target, template, self.dataset.context).evaluate(target.finishes)
            folds.append(
                FoldValidation(season, held_out, template.name, evaluation, stress_test(evaluation))
            )
        return folds

    def run(self, template: Template) -> ValidationReport:
        seasons = self.validate_seasons(template)
        folds = [fold for season in self.seasons() for fold in self.validate_folds(season)]
        report = ValidationReport(
            template_name=template.name,
            seasons=seasons,
            folds=folds,
            season_aggregate=aggregate_evaluations([s.evaluation for s in seasons]),
            fold_aggregate=aggregate_evaluations([f.evaluation for f in folds]),
        )
        logger.info(
            "Validated %s over %d seasons and %d folds (%d failing stress tests)",
            template.name,
            len(seasons),
            len(folds),
            report.failing_stress_tests,
        )
        return report

