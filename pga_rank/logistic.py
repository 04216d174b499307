from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
import logging

import numpy as np

from .evaluation import spearman_correlation
from .metrics import METRIC_LABELS, PlayerProfile, is_lower_better, resolve_metric_label
from .templates import Template

logger = logging.getLogger(__name__)

TOP_N = 20
ITERATIONS = 300
LEARNING_RATE = 0.12
DEFAULT_L2 = 0.01
SIGMOID_CLAMP = 50.0
LOG_EPSILON = 1e-9
MIN_TRAINING_SAMPLES = 10
MIN_FEATURE_COVERAGE = 0.70
MIN_CORRELATION_SAMPLES = 5
TOP_FEATURES = 10

LAMBDA_GRID = (0.0, 0.001, 0.005, 0.01, 0.05, 0.1)
CV_MIN_EVENTS = 3
CV_MIN_SAMPLES = 30
CV_MIN_TRAIN_SAMPLES = 20
CV_MIN_HELDOUT_SAMPLES = 10


@dataclass(frozen=True)
class Sample:
    features: np.ndarray
    label: int


@dataclass
class LogisticModel:
    labels: tuple[str, ...]
    weights: np.ndarray
    bias: float
    means: np.ndarray
    stds: np.ndarray
    l2: float
    samples: int

    def predict(self, features: np.ndarray) -> np.ndarray:
        normalized = (np.atleast_2d(features) - self.means) / self.stds
        return sigmoid(normalized @ self.weights + self.bias)

    def weight_map(self) -> dict[str, float]:
        return {label: float(w) for label, w in zip(self.labels, self.weights)}

    def weight_ranking(self, limit: int = TOP_FEATURES) -> list[tuple[str, float]]:
        ranked = sorted(self.weight_map().items(), key=lambda item: abs(item[1]), reverse=True)
        return ranked[:limit]


@dataclass(frozen=True)
class LogisticEvaluation:
    accuracy: float
    log_loss: float
    samples: int


@dataclass
class CrossValidationResult:
    success: bool
    event_count: int
    total_samples: int = 0
    best_l2: float | None = None
    avg_log_loss: float | None = None
    avg_accuracy: float | None = None
    folds_used: int = 0
    final_model: LogisticModel | None = None
    message: str = ""


@dataclass
class SuggestedWeights:
    source: str
    weights: dict[str, float] = field(default_factory=dict)


def sigmoid(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values, dtype=np.float64)
    clipped = np.clip(values, -SIGMOID_CLAMP, SIGMOID_CLAMP)
    result = 1.0 / (1.0 + np.exp(-clipped))
    result = np.where(values < -SIGMOID_CLAMP, 0.0, result)
    return np.where(values > SIGMOID_CLAMP, 1.0, result)


def feature_vector(
    profile: PlayerProfile, labels: Sequence[str] = METRIC_LABELS
) -> np.ndarray | None:
    """Directional feature row for ``profile``, or None below the coverage floor.

    Lower-is-better metrics are negated so a larger feature is always better.
    """
    if not labels:
        return None
    values = []
    valid = 0
    for label in labels:
        if profile.has_data(label):
            valid += 1
            raw = profile.metrics.get(label)
            values.append(-raw if is_lower_better(label) else raw)
        else:
            values.append(0.0)
    if valid / len(labels) < MIN_FEATURE_COVERAGE:
        return None
    return np.asarray(values, dtype=np.float64)


def build_samples(
    profiles: Sequence[PlayerProfile],
    finishes: Mapping[str, float],
    labels: Sequence[str] = METRIC_LABELS,
    top_n: int = TOP_N,
) -> list[Sample]:
    samples = []
    for profile in profiles:
        finish = finishes.get(profile.player_id)
        if not finish:
            continue
        features = feature_vector(profile, labels)
        if features is None:
            continue
        samples.append(Sample(features=features, label=1 if finish <= top_n else 0))
    return samples


def train_logistic(
    samples: Sequence[Sample],
    labels: Sequence[str] = METRIC_LABELS,
    l2: float = DEFAULT_L2,
    iterations: int = ITERATIONS,
    learning_rate: float = LEARNING_RATE,
) -> LogisticModel | None:
    if len(samples) < MIN_TRAINING_SAMPLES:
        return None

    x = np.vstack([sample.features for sample in samples])
    y = np.asarray([sample.label for sample in samples], dtype=np.float64)
    means = x.mean(axis=0)
    stds = x.std(axis=0)
    stds[stds == 0] = 1.0
    normalized = (x - means) / stds

    n, feature_count = normalized.shape
    weights = np.zeros(feature_count, dtype=np.float64)
    bias = 0.0
    for _ in range(iterations):
        errors = sigmoid(normalized @ weights + bias) - y
        gradient = (normalized.T @ errors) / n + l2 * weights
        weights = weights - learning_rate * gradient
        bias -= learning_rate * float(errors.sum()) / n

    return LogisticModel(
        labels=tuple(labels),
        weights=weights,
        bias=bias,
        means=means,
        stds=stds,
        l2=l2,
        samples=n,
    )


def evaluate_logistic(model: LogisticModel | None, samples: Sequence[Sample]) -> LogisticEvaluation:
    if model is None or not samples:
        return LogisticEvaluation(accuracy=0.0, log_loss=0.0, samples=len(samples))
    x = np.vstack([sample.features for sample in samples])
    y = np.asarray([sample.label for sample in samples], dtype=np.float64)
    predictions = model.predict(x)
    predicted_class = (predictions >= 0.5).astype(np.float64)
    losses = -(y * np.log(predictions + LOG_EPSILON) + (1 - y) * np.log(1 - predictions + LOG_EPSILON))
    return LogisticEvaluation(
        accuracy=float(np.mean(predicted_class == y)),
        log_loss=float(np.mean(losses)),
        samples=len(samples),
    )


def cross_validate_by_event(
    event_samples: Sequence[Sequence[Sample]],
    labels: Sequence[str] = METRIC_LABELS,
    lambdas: Sequence[float] = LAMBDA_GRID,
) -> CrossValidationResult:
    event_count = len(event_samples)
    if event_count < CV_MIN_EVENTS:
        return CrossValidationResult(False, event_count, message="Not enough events for CV")

    all_samples = [sample for fold in event_samples for sample in fold]
    if len(all_samples) < CV_MIN_SAMPLES:
        return CrossValidationResult(
            False, event_count, total_samples=len(all_samples), message="Not enough samples for CV"
        )

    candidates = []
    for l2 in lambdas or LAMBDA_GRID:
        log_losses = []
        accuracies = []
        for held_out_index, held_out in enumerate(event_samples):
            training = [
                sample
                for index, fold in enumerate(event_samples)
                if index != held_out_index
                for sample in fold
            ]
            if len(training) < CV_MIN_TRAIN_SAMPLES or len(held_out) < CV_MIN_HELDOUT_SAMPLES:
                continue
            model = train_logistic(training, labels, l2=l2)
            if model is None:
                continue
            evaluation = evaluate_logistic(model, held_out)
            log_losses.append(evaluation.log_loss)
            accuracies.append(evaluation.accuracy)
        if log_losses:
            candidates.append(
                (
                    sum(log_losses) / len(log_losses),
                    l2,
                    sum(accuracies) / len(accuracies),
                    len(log_losses),
                )
            )

    if not candidates:
        return CrossValidationResult(
            False, event_count, total_samples=len(all_samples), message="No valid CV folds"
        )

    avg_log_loss, best_l2, avg_accuracy, folds_used = min(candidates, key=lambda item: item[0])
    logger.info(
        "Logistic CV picked l2=%s (log loss %.4f over %d folds)", best_l2, avg_log_loss, folds_used
    )
    return CrossValidationResult(
        success=True,
        event_count=event_count,
        total_samples=len(all_samples),
        best_l2=best_l2,
        avg_log_loss=avg_log_loss,
        avg_accuracy=avg_accuracy,
        folds_used=folds_used,
        final_model=train_logistic(all_samples, labels, l2=best_l2),
    )


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def _score_lower_better(value: float | None, good: float, bad: float) -> float:
    if value is None:
        return 0.0
    if value <= good:
        return 1.0
    if value >= bad:
        return 0.0
    return (bad - value) / (bad - good)


def _score_higher_better(value: float | None, good: float, bad: float) -> float:
    if value is None:
        return 0.0
    if value >= good:
        return 1.0
    if value <= bad:
        return 0.0
    return (value - bad) / (good - bad)


def compute_cv_reliability(
    result: CrossValidationResult | None,
    log_loss_good: float = 0.25,
    log_loss_bad: float = 0.45,
    accuracy_good: float = 0.65,
    accuracy_bad: float = 0.52,
    min_events: int = 3,
    max_events: int = 8,
    min_samples: int = 120,
    max_samples: int = 350,
) -> float:
    if result is None or not result.success:
        return 0.0
    log_loss_score = _score_lower_better(result.avg_log_loss, log_loss_good, log_loss_bad)
    accuracy_score = _score_higher_better(result.avg_accuracy, accuracy_good, accuracy_bad)
    event_score = _clamp01(
        (result.event_count - (min_events - 1)) / max(1, max_events - (min_events - 1))
    )
    sample_score = _clamp01((result.total_samples - min_samples) / max(1, max_samples - min_samples))
    return _clamp01(((log_loss_score + accuracy_score) / 2) * event_score * sample_score)


def top_n_correlations(
    profiles: Sequence[PlayerProfile],
    finishes: Mapping[str, float],
    labels: Sequence[str] = METRIC_LABELS,
    top_n: int = TOP_N,
) -> dict[str, float]:
    correlations = {}
    for label in labels:
        xs = []
        ys = []
        for profile in profiles:
            finish = finishes.get(profile.player_id)
            if not finish or not profile.has_data(label):
                continue
            raw = profile.metrics.get(label)
            xs.append(-raw if is_lower_better(label) else raw)
            ys.append(1.0 if finish <= top_n else 0.0)
        correlations[label] = (
            spearman_correlation(xs, ys) if len(xs) >= MIN_CORRELATION_SAMPLES else 0.0
        )
    return correlations


def suggest_metric_weights(
    correlations: Mapping[str, float], model: LogisticModel | None
) -> SuggestedWeights:
    if model is not None:
        source, raw = "top20-logistic", model.weight_map()
    elif correlations:
        source, raw = "top20-signal", dict(correlations)
    else:
        return SuggestedWeights(source="none")
    total = sum(abs(value) for value in raw.values())
    return SuggestedWeights(
        source=source,
        weights={label: (value / total if total > 0 else 0.0) for label, value in raw.items()},
    )


def suggest_template_weights(template: Template, suggested: SuggestedWeights) -> dict[str, dict[str, float]]:
    """Per-group metric weights proportional to each metric's absolute signal."""
    result: dict[str, dict[str, float]] = {}
    for group, metrics in template.metric_weights.items():
        signal = {
            name: abs(suggested.weights.get(resolve_metric_label(name) or "", 0.0))
            for name in metrics
        }
        total = sum(signal.values())
        if total <= 0:
            result[group] = dict(metrics)
            continue
        result[group] = {name: value / total for name, value in signal.items()}
    return result
