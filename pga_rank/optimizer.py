from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
import logging
import math

from .config import CourseContext
from .evaluation import EvaluationResult, aggregate_evaluations
from .logistic import (
    CrossValidationResult,
    LogisticModel,
    Sample,
    SuggestedWeights,
    build_samples,
    compute_cv_reliability,
    cross_validate_by_event,
    suggest_metric_weights,
    top_n_correlations,
    train_logistic,
)
from .metrics import resolve_metric_label
from .pipeline import EventSlice, run_slice
from .rng import Rng
from .templates import (
    FLAT_KEY_SEPARATOR,
    Template,
    TemplateRepository,
    normalize_group_weights,
    normalize_signed_weights,
    normalize_template,
)

logger = logging.getLogger(__name__)

DEFAULT_TRIALS = 1500
GROUP_PERTURBATION = 0.20
METRIC_PERTURBATION = 0.15
GROUP_WEIGHT_FLOOR = 0.001
METRIC_WEIGHT_FLOOR = 0.0001
MIN_GROUPS_PERTURBED = 2
EXTRA_GROUPS_PERTURBED = 2

CORRELATION_OBJECTIVE_WEIGHT = 0.3
TOP20_OBJECTIVE_WEIGHT = 0.5
ALIGNMENT_OBJECTIVE_WEIGHT = 0.2

OWN_SIGNAL_PRIOR_WEIGHT = 0.6
VALIDATION_PRIOR_WEIGHT = 0.25
DELTA_TREND_PRIOR_WEIGHT = 0.15
APPROACH_DELTA_PRIOR_WEIGHT = 0.15

VALIDATION_BAND = 0.20
DELTA_TREND_BANDS = {"STABLE": 0.10, "WATCH": 0.20, "CHRONIC": 0.35}
DEFAULT_TREND_STATUS = "WATCH"

USE_OPTIMIZED_THRESHOLD = 0.01
PROGRESS_INTERVAL = 100


@dataclass(frozen=True)
class WeightBand:
    minimum: float
    maximum: float

    def clamp(self, value: float) -> float:
        return min(self.maximum, max(self.minimum, value))


@dataclass
class Candidate:
    template: Template
    evaluation: EvaluationResult
    alignment: float
    top20_composite: float
    objective: float


@dataclass
class SignalReport:
    correlations: dict[str, float] = field(default_factory=dict)
    model: LogisticModel | None = None
    cross_validation: CrossValidationResult | None = None
    cv_reliability: float = 0.0
    suggested: SuggestedWeights = field(default_factory=lambda: SuggestedWeights(source="none"))

    def top_features(self) -> list[tuple[str, float]]:
        return self.model.weight_ranking() if self.model is not None else []


@dataclass
class OptimizationReport:
    baseline: Candidate
    best: Candidate
    improvement: float
    recommendation: str
    trials_run: int
    cancelled: bool
    alignment_map: dict[str, float]
    signals: SignalReport
    baseline_candidates: list[Candidate] = field(default_factory=list)


def top20_composite(evaluation: EvaluationResult) -> float:
    accuracy = evaluation.top20 / 100.0 if evaluation.top20 is not None else None
    weighted = (
        evaluation.top20_weighted_score / 100.0
        if evaluation.top20_weighted_score is not None
        else None
    )
    if accuracy is not None and weighted is not None:
        return (accuracy + weighted) / 2
    if accuracy is not None:
        return accuracy
    if weighted is not None:
        return weighted
    return 0.0


def alignment_score(template: Template, alignment_map: Mapping[str, float]) -> float:
    if not alignment_map:
        return 0.0
    weighted_sum = 0.0
    total = 0.0
    for group, metrics in template.metric_weights.items():
        group_weight = template.group_weights.get(group, 1.0)
        for metric_name, weight in metrics.items():
            label = resolve_metric_label(metric_name)
            if label is None or label not in alignment_map:
                continue
            effective = group_weight * weight
            weighted_sum += effective * alignment_map[label]
            total += abs(effective)
    return weighted_sum / total if total else 0.0


def combined_objective(evaluation: EvaluationResult, alignment: float) -> tuple[float, float]:
    composite = top20_composite(evaluation)
    objective = (
        CORRELATION_OBJECTIVE_WEIGHT * ((evaluation.correlation + 1) / 2)
        + TOP20_OBJECTIVE_WEIGHT * composite
        + ALIGNMENT_OBJECTIVE_WEIGHT * ((alignment + 1) / 2)
    )
    return objective, composite


def blend_alignment_maps(maps: Sequence[tuple[Mapping[str, float], float]]) -> dict[str, float]:
    present = [(values, weight) for values, weight in maps if values and weight]
    total = sum(weight for _, weight in present) or 1.0
    combined: dict[str, float] = {}
    for values, weight in present:
        for label, value in values.items():
            combined[label] = combined.get(label, 0.0) + value * (weight / total)
    return combined


def own_signal_map(correlations: Mapping[str, float], model: LogisticModel | None) -> dict[str, float]:
    logistic = {label: abs(w) for label, w in model.weight_map().items()} if model else {}
    return blend_alignment_maps([(correlations, 0.5), (logistic, 0.5)])


def validation_alignment_map(validation_weights: Mapping[str, float]) -> dict[str, float]:
    by_label: dict[str, float] = {}
    for key, weight in validation_weights.items():
        label = resolve_metric_label(key.partition(FLAT_KEY_SEPARATOR)[2] or key)
        if label is not None:
            by_label[label] = float(weight)
    scale = max((abs(v) for v in by_label.values()), default=0.0)
    if scale <= 0:
        return {}
    return {label: value / scale for label, value in by_label.items()}


def delta_trend_alignment_map(delta_trends: Sequence) -> dict[str, float]:
    result = {}
    for trend in delta_trends:
        label = resolve_metric_label(trend.metric)
        if label is not None:
            result[label] = 1.0 - float(trend.bias_z)
    return result


def build_alignment_map(
    own: Mapping[str, float],
    validation: Mapping[str, float] | None = None,
    delta_trend: Mapping[str, float] | None = None,
    approach_delta: Mapping[str, float] | None = None,
) -> dict[str, float]:
    return blend_alignment_maps(
        [
            (own, OWN_SIGNAL_PRIOR_WEIGHT),
            (validation or {}, VALIDATION_PRIOR_WEIGHT),
            (delta_trend or {}, DELTA_TREND_PRIOR_WEIGHT),
            (approach_delta or {}, APPROACH_DELTA_PRIOR_WEIGHT),
        ]
    )


def build_validation_bands(
    validation_weights: Mapping[str, float],
    delta_trends: Sequence = (),
    band: float = VALIDATION_BAND,
) -> dict[str, WeightBand]:
    """Allowed range per ``Group::Metric`` key, centred on the validated weight.

    When delta trends are supplied, a metric's trend status sets the band width;
    metrics without a status are treated as WATCH.
    """
    statuses = {}
    for trend in delta_trends:
        label = resolve_metric_label(trend.metric)
        if label is not None:
            statuses[label] = str(trend.status or "").upper()

    bands = {}
    for key, weight in validation_weights.items():
        weight = float(weight)
        if not math.isfinite(weight):
            continue
        width = band
        if delta_trends:
            label = resolve_metric_label(key.partition(FLAT_KEY_SEPARATOR)[2] or key)
            status = statuses.get(label, DEFAULT_TREND_STATUS)
            width = DELTA_TREND_BANDS.get(status, band)
        bands[key] = WeightBand(max(0.0, weight * (1 - width)), weight * (1 + width))
    return bands


def apply_bands(template: Template, bands: Mapping[str, WeightBand]) -> Template:
    if not bands:
        return template
    result = template.copy()
    for group, metrics in result.metric_weights.items():
        clamped = {}
        for metric_name, weight in metrics.items():
            limit = bands.get(f"{group}{FLAT_KEY_SEPARATOR}{metric_name}")
            clamped[metric_name] = limit.clamp(weight) if limit else weight
        if sum(abs(v) for v in clamped.values()) > 0:
            result.metric_weights[group] = normalize_signed_weights(clamped)
    return result


def recommendation_for(improvement: float) -> str:
    if improvement > USE_OPTIMIZED_THRESHOLD:
        return "use optimized"
    if improvement > 0:
        return "marginal"
    return "keep baseline"


def samples_by_event(slices: Sequence[EventSlice]) -> list[list[Sample]]:
    return [build_samples(s.profiles, s.finishes) for s in slices]


def compute_signals(
    slice_: EventSlice,
    event_samples: Sequence[Sequence[Sample]] = (),
) -> SignalReport:
    correlations = top_n_correlations(slice_.profiles, slice_.finishes)
    cross_validation = cross_validate_by_event(event_samples) if event_samples else None
    if cross_validation is not None and cross_validation.success:
        model = cross_validation.final_model
    else:
        model = train_logistic(build_samples(slice_.profiles, slice_.finishes))
    return SignalReport(
        correlations=correlations,
        model=model,
        cross_validation=cross_validation,
        cv_reliability=compute_cv_reliability(cross_validation),
        suggested=suggest_metric_weights(correlations, model),
    )


def _baseline_key(candidate: Candidate) -> tuple[float, float, float]:
    evaluation = candidate.evaluation
    return (
        evaluation.top20_weighted_score if evaluation.top20_weighted_score is not None else -math.inf,
        evaluation.correlation,
        evaluation.top20 if evaluation.top20 is not None else -math.inf,
    )


def select_best_template(
    templates: Sequence[Template],
    slices: Sequence[EventSlice],
    context: CourseContext,
) -> tuple[Template, EvaluationResult] | None:
    """Best template across ``slices`` by top-20 weighted score, correlation, then top-20."""
    best = None
    for template in templates:
        evaluations = [run_slice(s, template, context).evaluate(s.finishes) for s in slices]
        aggregate = aggregate_evaluations(evaluations)
        if aggregate is None:
            continue
        candidate = Candidate(template, aggregate, 0.0, 0.0, 0.0)
        if best is None or _baseline_key(candidate) > _baseline_key(best):
            best = candidate
    return (best.template, best.evaluation) if best is not None else None


class WeightOptimizer:
    def __init__(
        self,
        slice_: EventSlice,
        context: CourseContext,
        repository: TemplateRepository,
        rng: Rng,
        trials: int = DEFAULT_TRIALS,
        alignment_map: Mapping[str, float] | None = None,
        bands: Mapping[str, WeightBand] | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ):
        self.slice = slice_
        self.context = context
        self.repository = repository
        self.rng = rng
        self.trials = max(0, int(trials))
        self.alignment_map = dict(alignment_map or {})
        self.bands = dict(bands or {})
        self.should_cancel = should_cancel

    def evaluate(self, template: Template) -> Candidate:
        normalized = normalize_template(template)
        evaluation = run_slice(self.slice, normalized, self.context).evaluate(self.slice.finishes)
        alignment = alignment_score(normalized, self.alignment_map)
        objective, composite = combined_objective(evaluation, alignment)
        return Candidate(normalized, evaluation, alignment, composite, objective)

    def baseline_candidates(self) -> list[Candidate]:
        return [self.evaluate(template) for template in self.repository.all()]

    def perturb(self, base: Template) -> Template:
        group_weights = dict(base.group_weights)
        groups = list(group_weights)
        if groups:
            adjustments = MIN_GROUPS_PERTURBED + math.floor(self.rng.random() * EXTRA_GROUPS_PERTURBED)
            for _ in range(adjustments):
                group = groups[math.floor(self.rng.random() * len(groups))]
                change = (self.rng.random() * 2 - 1) * GROUP_PERTURBATION
                group_weights[group] = max(GROUP_WEIGHT_FLOOR, group_weights[group] * (1 + change))

        metric_weights = {}
        for group, metrics in base.metric_weights.items():
            adjusted = {}
            for metric_name, weight in metrics.items():
                change = (self.rng.random() * 2 - 1) * METRIC_PERTURBATION
                magnitude = max(METRIC_WEIGHT_FLOOR, abs(weight) * (1 + change))
                adjusted[metric_name] = -magnitude if weight < 0 else magnitude
            metric_weights[group] = normalize_signed_weights(adjusted)

        candidate = Template(
            name=f"{base.name}_OPTIMIZED",
            group_weights=normalize_group_weights(group_weights),
            metric_weights=metric_weights,
            event_id=self.slice.event_id,
            description=f"Optimized from {base.name}",
        )
        return apply_bands(candidate, self.bands)

    def run(self, signals: SignalReport | None = None) -> OptimizationReport:
        baselines = self.baseline_candidates()
        if not baselines:
            raise LookupError("Template repository is empty.")
        baseline = max(baselines, key=_baseline_key)
        logger.info(
            "Baseline template %s: corr %.4f, objective %.4f",
            baseline.template.name,
            baseline.evaluation.correlation,
            baseline.objective,
        )

        best: Candidate | None = None
        trials_run = 0
        cancelled = False
        for trial in range(self.trials):
            if self.should_cancel is not None and self.should_cancel():
                cancelled = True
                logger.info("Optimizer cancelled after %d trials", trials_run)
                break
            candidate = self.evaluate(self.perturb(baseline.template))
            trials_run += 1
            if best is None or (candidate.objective, candidate.evaluation.correlation) > (
                best.objective,
                best.evaluation.correlation,
            ):
                best = candidate
            if (trial + 1) % PROGRESS_INTERVAL == 0:
                logger.info("Tested %d/%d candidates (best %.4f)", trial + 1, self.trials, best.objective)

        if best is None:
            best = baseline
        improvement = best.objective - baseline.objective
        recommendation = recommendation_for(improvement)
        logger.info(
            "Optimizer finished: best objective %.4f, improvement %.4f (%s)",
            best.objective,
            improvement,
            recommendation,
        )
        return OptimizationReport(
            baseline=baseline,
            best=best,
            improvement=improvement,
            recommendation=recommendation,
            trials_run=trials_run,
            cancelled=cancelled,
            alignment_map=dict(self.alignment_map),
            signals=signals or SignalReport(),
            baseline_candidates=baselines,
        )
