from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, fields
import math
from typing import Any

import numpy as np

NON_FINISH_CODES = frozenset({"CUT", "MC", "WD", "W/D", "DQ", "MDF", "DNS", "DNF"})


@dataclass(frozen=True)
class SubsetEvaluation:
    correlation: float
    rmse: float
    mae: float
    top10: float | None
    top20: float | None
    top20_weighted_score: float | None
    percentile_rmse: float
    percentile_mae: float


@dataclass(frozen=True)
class EvaluationResult:
    correlation: float
    rmse: float
    mae: float
    mean_error: float
    std_dev_error: float
    r_squared: float
    top10: float | None
    top20: float | None
    top20_weighted_score: float | None
    matched_players: int
    subset: SubsetEvaluation | None = None


def parse_finish_position(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value) or value <= 0:
            return None
        return int(value)
    cleaned = str(value).strip().upper()
    if not cleaned or cleaned in NON_FINISH_CODES:
        return None
    if cleaned.startswith("T"):
        cleaned = cleaned[1:]
    elif cleaned.endswith("T"):
        cleaned = cleaned[:-1]
    if cleaned.endswith(".0"):
        cleaned = cleaned[:-2]
    if cleaned.isdigit() and int(cleaned) > 0:
        return int(cleaned)
    return None


def build_finish_map(results: Iterable[tuple[str, Any]]) -> dict[str, int]:
    parsed: dict[str, int | None] = {}
    for player_id, finish_text in results:
        if not player_id:
            continue
        parsed[str(player_id)] = parse_finish_position(finish_text)
    worst = max((pos for pos in parsed.values() if pos is not None), default=0)
    fallback = worst + 1
    return {pid: (pos if pos is not None else fallback) for pid, pos in parsed.items()}


def average_ranks(values: Sequence[float]) -> np.ndarray:
    array = np.asarray(values, dtype=np.float64)
    order = np.argsort(array, kind="mergesort")
    ranks = np.empty(array.size, dtype=np.float64)
    index = 0
    while index < array.size:
        end = index
        while end + 1 < array.size and array[order[end + 1]] == array[order[index]]:
            end += 1
        ranks[order[index : end + 1]] = ((index + end) / 2.0) + 1.0
        index = end + 1
    return ranks


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    a = np.asarray(x, dtype=np.float64)
    b = np.asarray(y, dtype=np.float64)
    if a.size < 2 or a.size != b.size:
        return 0.0
    a_centered = a - a.mean()
    b_centered = b - b.mean()
    denominator = math.sqrt(float(np.sum(a_centered**2)) * float(np.sum(b_centered**2)))
    if denominator == 0:
        return 0.0
    return float(np.sum(a_centered * b_centered)) / denominator


def spearman_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    if len(x) < 2 or len(x) != len(y):
        return 0.0
    return pearson_correlation(average_ranks(x), average_ranks(y))


def top_n_accuracy(pairs: Sequence[tuple[float, float]], n: int) -> float | None:
    """Share of players predicted inside the top ``n`` who finished inside it.

    Both sides are thresholds, so every player tied at the cutoff counts.
    """
    if not pairs:
        return None
    predicted = [finish for rank, finish in pairs if rank <= n]
    hits = sum(1 for finish in predicted if finish <= n)
    return 100.0 * hits / (len(predicted) or n)


def top_n_weighted_score(pairs: Sequence[tuple[float, float]], n: int = 20) -> float | None:
    """DCG of the predicted top ``n`` against the ideal ordering, as a percentage.

    ``pairs`` holds ``(predicted_rank, actual_finish)`` for matched players. A
    finish worse than ``n`` earns no gain.
    """
    if not pairs:
        return None

    def gain(finish: float) -> float:
        return (n - finish + 1) if finish <= n else 0.0

    predicted = sorted(pairs, key=lambda pair: pair[0])[:n]
    ideal = sorted(finish for _, finish in pairs if finish <= n)[:n]
    dcg = sum(gain(finish) / math.log2(idx + 2) for idx, (_, finish) in enumerate(predicted))
    idcg = sum(gain(finish) / math.log2(idx + 2) for idx, finish in enumerate(ideal))
    if idcg <= 0:
        return 0.0
    return 100.0 * dcg / idcg


def _ordinal_positions(values: Sequence[float]) -> list[float]:
    order = sorted(range(len(values)), key=lambda i: (values[i], i))
    positions = [0.0] * len(values)
    for position, index in enumerate(order, start=1):
        positions[index] = float(position)
    return positions


def _min_ranks(values: Sequence[float]) -> list[float]:
    sorted_values = sorted(values)
    first_seen: dict[float, int] = {}
    for position, value in enumerate(sorted_values, start=1):
        first_seen.setdefault(value, position)
    return [float(first_seen[value]) for value in values]


def _subset_evaluation(pairs: Sequence[tuple[float, float]]) -> SubsetEvaluation:
    predicted = _ordinal_positions([p for p, _ in pairs])
    actual = _min_ranks([a for _, a in pairs])
    subset_pairs = list(zip(predicted, actual))
    errors = np.asarray(predicted) - np.asarray(actual)
    span = max(1, len(pairs) - 1)
    percentile_errors = errors / span
    return SubsetEvaluation(
        correlation=spearman_correlation(predicted, actual),
        rmse=float(np.sqrt(np.mean(errors**2))),
        mae=float(np.mean(np.abs(errors))),
        top10=top_n_accuracy(subset_pairs, 10),
        top20=top_n_accuracy(subset_pairs, 20),
        top20_weighted_score=top_n_weighted_score(subset_pairs, 20),
        percentile_rmse=float(np.sqrt(np.mean(percentile_errors**2))),
        percentile_mae=float(np.mean(np.abs(percentile_errors))),
    )


def evaluate_rankings(
    predicted_ranks: Mapping[str, float] | Sequence[tuple[str, float]],
    finishes: Mapping[str, float],
) -> EvaluationResult:
    items = predicted_ranks.items() if isinstance(predicted_ranks, Mapping) else predicted_ranks
    pairs = [
        (float(rank), float(finishes[player_id]))
        for player_id, rank in items
        if player_id in finishes
    ]
    if not pairs:
        return EvaluationResult(
            correlation=0.0,
            rmse=0.0,
            mae=0.0,
            mean_error=0.0,
            std_dev_error=0.0,
            r_squared=0.0,
            top10=None,
            top20=None,
            top20_weighted_score=None,
            matched_players=0,
        )

    ranks = [p for p, _ in pairs]
    actual = [a for _, a in pairs]
    errors = np.asarray(ranks) - np.asarray(actual)
    correlation = spearman_correlation(ranks, actual)
    return EvaluationResult(
        correlation=correlation,
        rmse=float(np.sqrt(np.mean(errors**2))),
        mae=float(np.mean(np.abs(errors))),
        mean_error=float(np.mean(errors)),
        std_dev_error=float(np.std(errors)),
        r_squared=correlation * correlation,
        top10=top_n_accuracy(pairs, 10),
        top20=top_n_accuracy(pairs, 20),
        top20_weighted_score=top_n_weighted_score(pairs, 20),
        matched_players=len(pairs),
        subset=_subset_evaluation(pairs),
    )


def _weighted_mean(values: list[tuple[float | None, int]]) -> float | None:
    present = [(value, weight) for value, weight in values if value is not None]
    total = sum(weight for _, weight in present)
    if not present or total <= 0:
        return None
    return sum(value * weight for value, weight in present) / total


def aggregate_evaluations(results: Sequence[EvaluationResult]) -> EvaluationResult | None:
    usable = [r for r in results if r.matched_players > 0]
    if not usable:
        return None

    subset = None
    subsets = [r for r in usable if r.subset is not None]
    if subsets:
        subset = SubsetEvaluation(
            **{
                f.name: _weighted_mean(
                    [(getattr(r.subset, f.name), r.matched_players) for r in subsets]
                )
                for f in fields(SubsetEvaluation)
            }
        )

    values = {
        f.name: _weighted_mean([(getattr(r, f.name), r.matched_players) for r in usable])
        for f in fields(EvaluationResult)
        if f.name not in ("matched_players", "subset")
    }
    return EvaluationResult(
        **values,
        matched_players=sum(r.matched_players for r in usable),
        subset=subset,
    )
