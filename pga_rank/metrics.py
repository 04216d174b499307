from __future__ import annotations

from dataclasses import astuple, dataclass, fields, replace
from datetime import datetime

import numpy as np


@dataclass(frozen=True)
class MetricVector:
    sg_total: float = 0.0
    driving_distance: float = 0.0
    driving_accuracy: float = 0.0
    sg_t2g: float = 0.0
    sg_approach: float = 0.0
    sg_around_green: float = 0.0
    sg_ott: float = 0.0
    sg_putting: float = 0.0
    greens_in_regulation: float = 0.0
    scrambling: float = 0.0
    great_shots: float = 0.0
    poor_shots: float = 0.0
    scoring_average: float = 0.0
    birdies_or_better: float = 0.0
    birdie_chances_created: float = 0.0
    fairway_proximity: float = 0.0
    rough_proximity: float = 0.0
    approach_under_100_gir: float = 0.0
    approach_under_100_sg: float = 0.0
    approach_under_100_prox: float = 0.0
    approach_under_150_fw_gir: float = 0.0
    approach_under_150_fw_sg: float = 0.0
    approach_under_150_fw_prox: float = 0.0
    approach_under_150_rough_gir: float = 0.0
    approach_under_150_rough_sg: float = 0.0
    approach_under_150_rough_prox: float = 0.0
    approach_over_150_rough_gir: float = 0.0
    approach_over_150_rough_sg: float = 0.0
    approach_over_150_rough_prox: float = 0.0
    approach_under_200_fw_gir: float = 0.0
    approach_under_200_fw_sg: float = 0.0
    approach_under_200_fw_prox: float = 0.0
    approach_over_200_fw_gir: float = 0.0
    approach_over_200_fw_sg: float = 0.0
    approach_over_200_fw_prox: float = 0.0

    def to_array(self) -> np.ndarray:
        return np.asarray(astuple(self), dtype=np.float64)

    @classmethod
    def from_array(cls, values) -> "MetricVector":
        array = np.asarray(values, dtype=np.float64)
        if array.shape != (len(METRIC_FIELDS),):
            raise ValueError(
                f"Metric array must have {len(METRIC_FIELDS)} values, got shape {array.shape}."
            )
        return cls(*(float(value) for value in array))

    def get(self, label: str) -> float:
        return float(getattr(self, LABEL_TO_FIELD[label]))

    def with_values(self, **changes: float) -> "MetricVector":
        return replace(self, **changes)


METRIC_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(MetricVector))

METRIC_LABELS: tuple[str, ...] = (
    "SG Total",
    "Driving Distance",
    "Driving Accuracy",
    "SG T2G",
    "SG Approach",
    "SG Around Green",
    "SG OTT",
    "SG Putting",
    "Greens in Regulation",
    "Scrambling",
    "Great Shots",
    "Poor Shots",
    "Scoring Average",
    "Birdies or Better",
    "Birdie Chances Created",
    "Fairway Proximity",
    "Rough Proximity",
    "Approach <100 GIR",
    "Approach <100 SG",
    "Approach <100 Prox",
    "Approach <150 FW GIR",
    "Approach <150 FW SG",
    "Approach <150 FW Prox",
    "Approach <150 Rough GIR",
    "Approach <150 Rough SG",
    "Approach <150 Rough Prox",
    "Approach >150 Rough GIR",
    "Approach >150 Rough SG",
    "Approach >150 Rough Prox",
    "Approach <200 FW GIR",
    "Approach <200 FW SG",
    "Approach <200 FW Prox",
    "Approach >200 FW GIR",
    "Approach >200 FW SG",
    "Approach >200 FW Prox",
)

LABEL_TO_FIELD: dict[str, str] = dict(zip(METRIC_LABELS, METRIC_FIELDS))
FIELD_TO_LABEL: dict[str, str] = dict(zip(METRIC_FIELDS, METRIC_LABELS))

# Aggregated from round-level data, in aggregation order.
HISTORICAL_FIELDS: tuple[str, ...] = (
    "sg_total",
    "driving_distance",
    "driving_accuracy",
    "sg_t2g",
    "sg_approach",
    "sg_around_green",
    "sg_ott",
    "sg_putting",
    "greens_in_regulation",
    "scrambling",
    "great_shots",
    "poor_shots",
    "scoring_average",
    "birdies_or_better",
    "fairway_proximity",
    "rough_proximity",
)

APPROACH_FIELDS: tuple[str, ...] = METRIC_FIELDS[METRIC_FIELDS.index("approach_under_100_gir") :]

PERCENTAGE_FIELDS = frozenset({"driving_accuracy", "greens_in_regulation", "scrambling"})
PUTTING_FIELDS = frozenset({"sg_putting"})
# Zero is not a plausible measurement for these, so a zero means "no data".
ZERO_IS_MISSING_FIELDS = frozenset({"driving_distance", "scoring_average"})

LOWER_BETTER_METRICS = frozenset(
    {
        "Poor Shots",
        "Scoring Average",
        "Fairway Proximity",
        "Rough Proximity",
        "Approach <100 Prox",
        "Approach <150 FW Prox",
        "Approach <150 Rough Prox",
        "Approach >150 Rough Prox",
        "Approach <200 FW Prox",
        "Approach >200 FW Prox",
    }
)

METRIC_CEILINGS: dict[str, float] = {
    "Approach <100 Prox": 40.0,
    "Approach <150 FW Prox": 50.0,
    "Approach <150 Rough Prox": 60.0,
    "Approach >150 Rough Prox": 75.0,
    "Approach <200 FW Prox": 65.0,
    "Approach >200 FW Prox": 90.0,
    "Fairway Proximity": 60.0,
    "Rough Proximity": 80.0,
    "Poor Shots": 12.0,
    "Scoring Average": 74.0,
    # Upper estimate only; higher-is-better metrics are never inverted.
    "Birdie Chances Created": 10.0,
}

# Calibrated (mean, std_dev) in raw units, used when a field has too few valid samples.
BASELINE_STATS: dict[str, tuple[float, float]] = {
    "SG Total": (0.0, 1.5),
    "Driving Distance": (295.0, 10.0),
    "Driving Accuracy": (0.60, 0.06),
    "SG T2G": (0.0, 1.2),
    "SG Approach": (0.0, 0.8),
    "SG Around Green": (0.0, 0.5),
    "SG OTT": (0.0, 0.6),
    "SG Putting": (0.0, 0.7),
    "Greens in Regulation": (0.65, 0.05),
    "Scrambling": (0.58, 0.07),
    "Great Shots": (3.5, 1.2),
    "Poor Shots": (5.5, 1.5),
    "Scoring Average": (71.0, 1.2),
    "Birdies or Better": (3.8, 0.8),
    "Birdie Chances Created": (4.0, 3.0),
    "Fairway Proximity": (30.0, 7.0),
    "Rough Proximity": (30.0, 10.0),
    "Approach <100 GIR": (0.5, 0.1),
    "Approach <100 SG": (0.0, 0.05),
    "Approach <100 Prox": (30.0, 5.0),
    "Approach <150 FW GIR": (0.5, 0.1),
    "Approach <150 FW SG": (0.0, 0.05),
    "Approach <150 FW Prox": (30.0, 7.0),
    "Approach <150 Rough GIR": (0.5, 0.1),
    "Approach <150 Rough SG": (0.0, 0.05),
    "Approach <150 Rough Prox": (30.0, 9.0),
    "Approach >150 Rough GIR": (0.5, 0.1),
    "Approach >150 Rough SG": (0.0, 0.05),
    "Approach >150 Rough Prox": (30.0, 12.0),
    "Approach <200 FW GIR": (0.5, 0.1),
    "Approach <200 FW SG": (0.0, 0.05),
    "Approach <200 FW Prox": (30.0, 10.0),
    "Approach >200 FW GIR": (0.5, 0.1),
    "Approach >200 FW SG": (0.0, 0.05),
    "Approach >200 FW Prox": (30.0, 14.0),
}

_LABEL_ALIASES: dict[str, str] = {
    "poor shot avoidance": "Poor Shots",
    "gir": "Greens in Regulation",
    "greens in reg": "Greens in Regulation",
    "fairway prox": "Fairway Proximity",
    "rough prox": "Rough Proximity",
    "sg app": "SG Approach",
    "sg arg": "SG Around Green",
    "sg putt": "SG Putting",
    "bcc": "Birdie Chances Created",
}

_LOWER_LABELS = {label.lower(): label for label in METRIC_LABELS}


def resolve_metric_label(name: str) -> str | None:
    text = " ".join(str(name).split())
    if not text:
        return None
    candidates = [text]
    if ":" in text:
        candidates.append(text.split(":", 1)[1].strip())
    for candidate in candidates:
        lowered = candidate.lower()
        if lowered in _LOWER_LABELS:
            return _LOWER_LABELS[lowered]
        if lowered in _LABEL_ALIASES:
            return _LABEL_ALIASES[lowered]
    return None


def is_lower_better(label: str) -> bool:
    return label in LOWER_BETTER_METRICS


def transform_metric_value(label: str, value: float) -> float:
    ceiling = METRIC_CEILINGS.get(label) if is_lower_better(label) else None
    if ceiling is None:
        return float(value)
    transformed = ceiling - float(value)
    if "Prox" in label:
        return max(0.0, transformed)
    return transformed


APPROACH_BUCKETS: tuple[str, ...] = (
    "under_100",
    "under_150_fw",
    "under_150_rough",
    "over_150_rough",
    "under_200_fw",
    "over_200_fw",
)


def approach_field(bucket: str, kind: str) -> str:
    return f"approach_{bucket}_{kind}"


@dataclass(frozen=True)
class PastFinish:
    event_id: str
    year: int | None
    finish_text: str | None
    date: datetime | None = None


@dataclass
class PlayerProfile:
    player_id: str
    player_name: str
    metrics: MetricVector
    covered: frozenset[str] = frozenset()
    low_data: frozenset[str] = frozenset()
    past_finishes: tuple[PastFinish, ...] = ()
    warnings: tuple[str, ...] = ()

    def has_data(self, label: str) -> bool:
        return LABEL_TO_FIELD[label] in self.covered
