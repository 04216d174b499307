from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from .config import CourseContext

RawNumber = Optional[Union[float, str]]


def _normalize_player_id(value) -> str:
    text = "" if value is None else str(value).strip()
    if text.endswith(".0") and text[:-2].isdigit():
        return text[:-2]
    return text


class RoundRow(BaseModel):
    dg_id: str
    player_name: str = ""
    event_id: str
    year: Optional[int] = None
    event_completed: Optional[str] = None
    round_num: int = 1
    course_num: Optional[str] = None
    fin_text: Optional[str] = None
    score: RawNumber = None
    birdies: RawNumber = None
    eagles_or_better: RawNumber = None
    sg_total: RawNumber = None
    driving_dist: RawNumber = None
    driving_acc: RawNumber = None
    sg_t2g: RawNumber = None
    sg_app: RawNumber = None
    sg_arg: RawNumber = None
    sg_ott: RawNumber = None
    sg_putt: RawNumber = None
    gir: RawNumber = None
    scrambling: RawNumber = None
    great_shots: RawNumber = None
    poor_shots: RawNumber = None
    prox_fw: RawNumber = None
    prox_rgh: RawNumber = None

    @field_validator("dg_id", "event_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value):
        return _normalize_player_id(value)


class ApproachRow(BaseModel):
    dg_id: str
    player_name: str = ""
    season: Optional[int] = None
    under_100_gir: RawNumber = None
    under_100_sg: RawNumber = None
    under_100_prox: RawNumber = None
    under_100_shots: RawNumber = None
    under_150_fw_gir: RawNumber = None
    under_150_fw_sg: RawNumber = None
    under_150_fw_prox: RawNumber = None
    under_150_fw_shots: RawNumber = None
    under_150_rough_gir: RawNumber = None
    under_150_rough_sg: RawNumber = None
    under_150_rough_prox: RawNumber = None
    under_150_rough_shots: RawNumber = None
    over_150_rough_gir: RawNumber = None
    over_150_rough_sg: RawNumber = None
    over_150_rough_prox: RawNumber = None
    over_150_rough_shots: RawNumber = None
    under_200_fw_gir: RawNumber = None
    under_200_fw_sg: RawNumber = None
    under_200_fw_prox: RawNumber = None
    under_200_fw_shots: RawNumber = None
    over_200_fw_gir: RawNumber = None
    over_200_fw_sg: RawNumber = None
    over_200_fw_prox: RawNumber = None
    over_200_fw_shots: RawNumber = None

    @field_validator("dg_id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return _normalize_player_id(value)


class FieldRow(BaseModel):
    dg_id: str
    player_name: str = ""

    @field_validator("dg_id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return _normalize_player_id(value)


class ResultRow(BaseModel):
    dg_id: str
    player_name: str = ""
    fin_text: str

    @field_validator("dg_id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return _normalize_player_id(value)


class DeltaTrendRow(BaseModel):
    metric: str
    bias_z: float = 0.0
    status: str = "STABLE"


class TournamentDataset(BaseModel):
    context: CourseContext
    field: list[FieldRow] = Field(default_factory=list)
    rounds: list[RoundRow] = Field(default_factory=list)
    approach: list[ApproachRow] = Field(default_factory=list)
    previous_approach: list[ApproachRow] = Field(default_factory=list)
    results: list[ResultRow] = Field(default_factory=list)
    validation_weights: dict[str, float] = Field(default_factory=dict)
    delta_trends: list[DeltaTrendRow] = Field(default_factory=list)


class RankingRequest(BaseModel):
    dataset: TournamentDataset
    template_name: Optional[str] = None
    use_provider_snapshot: bool = False


class OptimizationRequest(BaseModel):
    dataset: TournamentDataset
    trials: Optional[int] = Field(default=None, ge=1, le=50_000)
    seed: Optional[str] = None
    use_validation_bands: bool = True


class ValidationRequest(BaseModel):
    dataset: TournamentDataset
    template_name: Optional[str] = None
    seasons: Optional[int] = Field(default=None, ge=1, le=15)


class TemplateSummary(BaseModel):
    name: str
    event_id: Optional[str] = None
    description: str = ""
    group_weights: dict[str, float]


class PlayerRankingOutput(BaseModel):
    player_id: str
    player_name: str
    rank: int
    refined_score: float
    final_score: float
    weighted_score: float
    composite_score: float
    war: float
    confidence_factor: float
    data_coverage: float
    past_performance_multiplier: float
    group_scores: dict[str, float] = Field(default_factory=dict)
    metrics: dict[str, float] = Field(default_factory=dict)
    low_data_metrics: list[str] = Field(default_factory=list)


class RankingResponse(BaseModel):
    generated_at: datetime
    event_id: str
    template_name: str
    players: list[PlayerRankingOutput]
    warnings: list[str] = Field(default_factory=list)
    provider_snapshot_status: Optional[str] = None
    provider_agreement: Optional[float] = None


class EvaluationOutput(BaseModel):
    correlation: float
    rmse: float
    mae: float
    mean_error: float
    std_dev_error: float
    r_squared: float
    top10: Optional[float] = None
    top20: Optional[float] = None
    top20_weighted_score: Optional[float] = None
    matched_players: int
    subset_correlation: Optional[float] = None
    subset_top20_weighted_score: Optional[float] = None
    percentile_rmse: Optional[float] = None
    percentile_mae: Optional[float] = None


class SeasonValidationOutput(BaseModel):
    season: int
    evaluation: EvaluationOutput
    stress_test_passed: bool
    stress_test_reasons: list[str] = Field(default_factory=list)


class FoldValidationOutput(BaseModel):
    season: int
    held_out_event_id: str
    template_name: str
    evaluation: EvaluationOutput
    stress_test_passed: bool


class ValidationResponse(BaseModel):
    generated_at: datetime
    event_id: str
    template_name: str
    seasons: list[SeasonValidationOutput]
    folds: list[FoldValidationOutput] = Field(default_factory=list)
    season_aggregate: Optional[EvaluationOutput] = None
    fold_aggregate: Optional[EvaluationOutput] = None
    failing_stress_tests: int = 0


class OptimizationResponse(BaseModel):
    generated_at: datetime
    event_id: str
    baseline_template: str
    baseline_evaluation: EvaluationOutput
    baseline_objective: float
    best_objective: float
    best_evaluation: EvaluationOutput
    improvement: float
    recommendation: str
    trials_run: int
    cancelled: bool = False
    group_weights: dict[str, float]
    metric_weights: dict[str, float]
    top_logistic_features: list[tuple[str, float]] = Field(default_factory=list)
    suggested_weights_source: str = "none"
    suggested_metric_weights: dict[str, float] = Field(default_factory=dict)
    cv_reliability: Optional[float] = None
    validation: Optional[ValidationResponse] = None
