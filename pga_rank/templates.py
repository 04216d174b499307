from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any

from .metrics import resolve_metric_label

logger = logging.getLogger(__name__)

FLAT_KEY_SEPARATOR = "::"
FALLBACK_TEMPLATE = "BALANCED"

APPROACH_GROUPS = frozenset(
    {
        "Approach - Short (<100)",
        "Approach - Mid (100-150)",
        "Approach - Long (150-200)",
        "Approach - Very Long (>200)",
    }
)


@dataclass
class Template:
    name: str
    group_weights: dict[str, float]
    metric_weights: dict[str, dict[str, float]]
    event_id: str | None = None
    description: str = ""

    def groups(self) -> list[str]:
        return list(self.metric_weights)

    def metric_labels(self) -> set[str]:
        labels = set()
        for metrics in self.metric_weights.values():
            for name in metrics:
                label = resolve_metric_label(name)
                if label is not None:
                    labels.add(label)
        return labels

    def copy(self, name: str | None = None) -> "Template":
        return Template(
            name=name or self.name,
            group_weights=dict(self.group_weights),
            metric_weights={g: dict(m) for g, m in self.metric_weights.items()},
            event_id=self.event_id,
            description=self.description,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "eventId": self.event_id,
            "description": self.description,
            "groupWeights": dict(self.group_weights),
            "metricWeights": self.nested_weights(),
        }

    def nested_weights(self) -> dict[str, dict[str, dict[str, float]]]:
        return {
            group: {metric: {"weight": weight} for metric, weight in metrics.items()}
            for group, metrics in self.metric_weights.items()
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Template":
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValueError("Template payload is missing a name.")
        metric_weights: dict[str, dict[str, float]] = {}
        for group, metrics in (payload.get("metricWeights") or {}).items():
            metric_weights[group] = {
                metric: float(value["weight"] if isinstance(value, Mapping) else value)
                for metric, value in metrics.items()
            }
        group_weights = {
            group: float(weight) for group, weight in (payload.get("groupWeights") or {}).items()
        }
        for group in metric_weights:
            group_weights.setdefault(group, 0.0)
        event_id = payload.get("eventId")
        return cls(
            name=name,
            group_weights=group_weights,
            metric_weights=metric_weights,
            event_id=str(event_id) if event_id not in (None, "") else None,
            description=str(payload.get("description") or ""),
        )


def flatten_metric_weights(
    nested: Mapping[str, Mapping[str, Mapping[str, float]]],
) -> dict[str, float]:
    flat: dict[str, float] = {}
    for group, metrics in nested.items():
        for metric, config in metrics.items():
            flat[f"{group}{FLAT_KEY_SEPARATOR}{metric}"] = float(config["weight"])
    return flat


def nest_metric_weights(flat: Mapping[str, float]) -> dict[str, dict[str, dict[str, float]]]:
    nested: dict[str, dict[str, dict[str, float]]] = {}
    for key, weight in flat.items():
        group, separator, metric = key.partition(FLAT_KEY_SEPARATOR)
        if not separator:
            raise ValueError(f"Flattened metric key {key!r} is missing the group separator.")
        nested.setdefault(group, {})[metric] = {"weight": float(weight)}
    return nested


def normalize_signed_weights(weights: Mapping[str, float]) -> dict[str, float]:
    total = sum(abs(value) for value in weights.values())
    if total <= 0:
        if not weights:
            return {}
        uniform = 1.0 / len(weights)
        return {key: uniform for key in weights}
    # Dividing by the absolute sum keeps inverted (negative) weights signed.
    return {key: value / total for key, value in weights.items()}


def normalize_group_weights(group_weights: Mapping[str, float]) -> dict[str, float]:
    return normalize_signed_weights({g: max(0.0, float(w)) for g, w in group_weights.items()})


def normalize_template(template: Template) -> Template:
    group_weights = {group: template.group_weights.get(group, 0.0) for group in template.metric_weights}
    return Template(
        name=template.name,
        group_weights=normalize_group_weights(group_weights),
        metric_weights={
            group: normalize_signed_weights(metrics) for group, metrics in template.metric_weights.items()
        },
        event_id=template.event_id,
        description=template.description,
    )


def weights_are_normalized(template: Template, tolerance: float = 1e-6) -> bool:
    if abs(sum(template.group_weights.values()) - 1.0) > tolerance:
        return False
    for metrics in template.metric_weights.values():
        if not metrics:
            continue
        if any(value < 0 for value in metrics.values()):
            total = sum(abs(value) for value in metrics.values())
        else:
            total = sum(metrics.values())
        if abs(total - 1.0) > tolerance:
            return False
    return True


def without_approach_groups(template: Template) -> Template:
    kept = {g: dict(m) for g, m in template.metric_weights.items() if g not in APPROACH_GROUPS}
    if not kept:
        return template.copy()
    return Template(
        name=template.name,
        group_weights={g: template.group_weights.get(g, 0.0) for g in kept},
        metric_weights=kept,
        event_id=template.event_id,
        description=template.description,
    )


class TemplateRepository:
    def __init__(self, templates: Iterable[Template] = ()):
        self._templates: dict[str, Template] = {}
        for template in templates:
            self.register(template)

    def register(self, template: Template) -> None:
        self._templates[template.name.upper()] = template

    def get(self, name: str) -> Template | None:
        return self._templates.get(str(name).strip().upper())

    def names(self) -> list[str]:
        return list(self._templates)

    def all(self) -> list[Template]:
        return list(self._templates.values())

    def find_by_event(self, event_id: str | None) -> Template | None:
        if not event_id:
            return None
        for template in self._templates.values():
            if template.event_id and template.event_id == str(event_id).strip():
                return template
        return None

    def resolve(self, event_id: str | None = None, template_name: str | None = None) -> Template:
        """Pick the template for a run.

        Priority: the template registered for ``event_id``, then ``template_name``,
        then the BALANCED fallback, then the first registered template.
        """
        by_event = self.find_by_event(event_id)
        if by_event is not None:
            return by_event
        if template_name:
            named = self.get(template_name)
            if named is not None:
                return named
            logger.warning("Template %s not found; using fallback", template_name)
        fallback = self.get(FALLBACK_TEMPLATE)
        if fallback is not None:
            return fallback
        if not self._templates:
            raise LookupError("Template repository is empty.")
        return next(iter(self._templates.values()))

    def load_file(self, path: str | Path) -> list[Template]:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(payload, list):
            entries = payload
        elif isinstance(payload, dict) and "name" in payload:
            entries = [payload]
        elif isinstance(payload, dict):
            entries = list(payload.values())
        else:
            raise ValueError(f"Unsupported template file layout in {path}.")
        loaded = []
        for entry in entries:
            template = Template.from_dict(entry)
            if not weights_are_normalized(template):
                logger.warning("Template %s weights do not sum to 1; normalizing", template.name)
                template = normalize_template(template)
            self.register(template)
            loaded.append(template)
        logger.info("Loaded %d templates from %s", len(loaded), path)
        return loaded

    @classmethod
    def with_defaults(cls) -> "TemplateRepository":
        return cls(Template.from_dict(payload) for payload in DEFAULT_TEMPLATES)


class TemplateWriter:
    def __init__(self, directory: str | Path):
        self._directory = Path(directory)

    def path_for(self, template: Template) -> Path:
        return self._directory / f"{template.name.lower()}.json"

    def write(self, template: Template) -> Path:
        self._directory.mkdir(parents=True, exist_ok=True)
        target = self.path_for(template)
        target.write_text(json.dumps(template.to_dict(), indent=2, sort_keys=False), encoding="utf-8")
        logger.info("Wrote template %s to %s", template.name, target)
        return target


def _approach_groups(
    short: tuple[float, float, float],
    mid: tuple[float, float, float],
    long: tuple[float, float, float],
    very_long: tuple[float, float, float],
) -> dict[str, dict[str, float]]:
    def bucket(prefixes: tuple[str, ...], weights: tuple[float, float, float]) -> dict[str, float]:
        out = {}
        for prefix in prefixes:
            out[f"{prefix} GIR"] = weights[0]
            out[f"{prefix} SG"] = weights[1]
            out[f"{prefix} Prox"] = weights[2]
        return out

    return {
        "Approach - Short (<100)": bucket(("Approach <100",), short),
        "Approach - Mid (100-150)": bucket(("Approach <150 FW", "Approach <150 Rough"), mid),
        "Approach - Long (150-200)": bucket(("Approach <200 FW", "Approach >150 Rough"), long),
        "Approach - Very Long (>200)": bucket(("Approach >200 FW",), very_long),
    }


def _template_payload(
    name: str,
    description: str,
    group_weights: tuple[float, ...],
    driving: tuple[float, float, float],
    approach: tuple[tuple[float, float, float], ...],
    scoring: tuple[float, ...],
    management: tuple[float, ...],
) -> dict[str, Any]:
    groups = (
        "Driving Performance",
        "Approach - Short (<100)",
        "Approach - Mid (100-150)",
        "Approach - Long (150-200)",
        "Approach - Very Long (>200)",
        "Putting",
        "Around the Green",
        "Scoring",
        "Course Management",
    )
    metric_weights: dict[str, dict[str, float]] = {
        "Driving Performance": dict(
            zip(("Driving Distance", "Driving Accuracy", "SG OTT"), driving)
        ),
        **_approach_groups(*approach),
        "Putting": {"SG Putting": 1.0},
        "Around the Green": {"SG Around Green": 1.0},
        "Scoring": dict(
            zip(
                (
                    "SG T2G",
                    "Scoring Average",
                    "Birdie Chances Created",
                    "Scoring: Approach <100 SG",
                    "Scoring: Approach <150 FW SG",
                    "Scoring: Approach <150 Rough SG",
                    "Scoring: Approach <200 FW SG",
                    "Scoring: Approach >200 FW SG",
                    "Scoring: Approach >150 Rough SG",
                ),
                scoring,
            )
        ),
        "Course Management": dict(
            zip(
                (
                    "Scrambling",
                    "Great Shots",
                    "Poor Shot Avoidance",
                    "Course Management: Approach <100 Prox",
                    "Course Management: Approach <150 FW Prox",
                    "Course Management: Approach <150 Rough Prox",
                    "Course Management: Approach >150 Rough Prox",
                    "Course Management: Approach <200 FW Prox",
                    "Course Management: Approach >200 FW Prox",
                ),
                management,
            )
        ),
    }
    return {
        "name": name,
        "description": description,
        "groupWeights": dict(zip(groups, group_weights)),
        "metricWeights": metric_weights,
    }


DEFAULT_TEMPLATES: tuple[dict[str, Any], ...] = (
    _template_payload(
        "POWER",
        "Distance-heavy courses",
        (0.130, 0.145, 0.180, 0.150, 0.030, 0.120, 0.080, 0.110, 0.055),
        (0.404, 0.123, 0.472),
        ((0.14, 0.33, 0.53), (0.12, 0.32, 0.56), (0.11, 0.30, 0.59), (0.10, 0.25, 0.65)),
        (0.20, 0.10, 0.10, 0.15, 0.15, 0.15, 0.05, 0.00, 0.10),
        (0.12, 0.08, 0.08, 0.10, 0.10, 0.15, 0.20, 0.12, 0.05),
    ),
    _template_payload(
        "TECHNICAL",
        "Precision courses",
        (0.065, 0.148, 0.185, 0.167, 0.037, 0.107, 0.125, 0.097, 0.069),
        (0.086, 0.354, 0.560),
        ((0.09, 0.32, 0.59), (0.09, 0.29, 0.62), (0.08, 0.27, 0.65), (0.08, 0.22, 0.70)),
        (0.18, 0.12, 0.10, 0.083, 0.298, 0.298, 0.448, 0.056, 0.056),
        (0.12, 0.08, 0.08, 0.068, 0.121, 0.121, 0.364, 0.023, 0.023),
    ),
    _template_payload(
        "BALANCED",
        "Balanced courses",
        (0.090, 0.148, 0.190, 0.160, 0.035, 0.115, 0.100, 0.105, 0.057),
        (0.061, 0.410, 0.529),
        ((0.12, 0.34, 0.54), (0.10, 0.30, 0.60), (0.09, 0.28, 0.63), (0.09, 0.24, 0.67)),
        (0.19, 0.11, 0.10, 0.15, 0.15, 0.15, 0.07, 0.03, 0.05),
        (0.12, 0.08, 0.08, 0.12, 0.12, 0.16, 0.18, 0.11, 0.03),
    ),
)
