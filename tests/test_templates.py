from __future__ import annotations

import json

import pytest

from pga_rank.templates import (
    APPROACH_GROUPS,
    Template,
    TemplateRepository,
    TemplateWriter,
    flatten_metric_weights,
    nest_metric_weights,
    normalize_template,
    weights_are_normalized,
    without_approach_groups,
)
from pga_rank.metrics import resolve_metric_label


def _template(name: str = "CUSTOM", event_id: str | None = None) -> Template:
    return Template(
        name=name,
        group_weights={"Driving": 2.0, "Putting": 2.0},
        metric_weights={
            "Driving": {"Driving Distance": 3.0, "Driving Accuracy": 1.0},
            "Putting": {"SG Putting": 4.0},
        },
        event_id=event_id,
    )


def test_default_templates_resolve_every_metric_name() -> None:
    repository = TemplateRepository.with_defaults()

    assert {t.name for t in repository.all()} == {"POWER", "TECHNICAL", "BALANCED"}
    for template in repository.all():
        for metrics in template.metric_weights.values():
            for name in metrics:
                assert resolve_metric_label(name) is not None, name


def test_flatten_and_nest_round_trip() -> None:
    template = TemplateRepository.with_defaults().get("technical")
    nested = template.nested_weights()

    flat = flatten_metric_weights(nested)

    assert "Putting::SG Putting" in flat
    assert nest_metric_weights(flat) == nested


def test_nest_rejects_keys_without_group() -> None:
    with pytest.raises(ValueError):
        nest_metric_weights({"SG Putting": 1.0})


def test_normalize_template_sums_to_one() -> None:
    normalized = normalize_template(_template())

    assert normalized.group_weights == {"Driving": 0.5, "Putting": 0.5}
    assert normalized.metric_weights["Driving"] == {"Driving Distance": 0.75, "Driving Accuracy": 0.25}
    assert weights_are_normalized(normalized)
    for template in TemplateRepository.with_defaults().all():
        assert weights_are_normalized(normalize_template(template))


def test_normalize_keeps_inverted_weights_signed() -> None:
    template = Template(
        name="SIGNED",
        group_weights={"G": 1.0},
        metric_weights={"G": {"SG Total": -1.0, "SG Putting": 3.0}},
    )

    normalized = normalize_template(template)

    assert normalized.metric_weights["G"] == {"SG Total": -0.25, "SG Putting": 0.75}
    assert weights_are_normalized(normalized)


def test_normalize_falls_back_to_uniform_for_zero_sums() -> None:
    template = Template(
        name="ZERO",
        group_weights={"A": 0.0, "B": 0.0},
        metric_weights={"A": {"SG Total": 0.0, "SG OTT": 0.0}, "B": {"SG Putting": 0.0}},
    )

    normalized = normalize_template(template)

    assert normalized.group_weights == {"A": 0.5, "B": 0.5}
    assert normalized.metric_weights["A"] == {"SG Total": 0.5, "SG OTT": 0.5}


def test_resolver_priority() -> None:
    repository = TemplateRepository.with_defaults()
    repository.register(_template("EVENT_100", event_id="100"))

    assert repository.resolve("100", "POWER").name == "EVENT_100"
    assert repository.resolve("999", "power").name == "POWER"
    assert repository.resolve("999", "MISSING").name == "BALANCED"
    assert repository.resolve(None, None).name == "BALANCED"

    only_custom = TemplateRepository([_template()])
    assert only_custom.resolve("999").name == "CUSTOM"

    with pytest.raises(LookupError):
        TemplateRepository().resolve("100")


def test_without_approach_groups_drops_distance_buckets() -> None:
    balanced = TemplateRepository.with_defaults().get("BALANCED")

    trimmed = without_approach_groups(balanced)

    assert not APPROACH_GROUPS & set(trimmed.metric_weights)
    assert set(trimmed.group_weights) == set(trimmed.metric_weights)
    assert "Putting" in trimmed.metric_weights


def test_writer_output_loads_back(tmp_path) -> None:
    template = _template("EVENT_100", event_id="100")

    path = TemplateWriter(tmp_path / "templates").write(template)
    payload = json.loads(path.read_text(encoding="utf-8"))
    repository = TemplateRepository()
    loaded = repository.load_file(path)

    assert path.name == "event_100.json"
    assert payload["eventId"] == "100"
    assert payload["metricWeights"]["Putting"]["SG Putting"] == {"weight": 4.0}
    assert loaded[0] == normalize_template(template)
    assert weights_are_normalized(loaded[0])
    assert repository.find_by_event("100") == loaded[0]


def test_template_payload_requires_name() -> None:
    with pytest.raises(ValueError):
        Template.from_dict({"groupWeights": {}})
