from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
import logging
from pathlib import Path

from .approach_delta import approach_delta_alignment, compute_approach_deltas
from .config import Settings, get_settings
from .datagolf_client import DataGolfClient
from .evaluation import EvaluationResult, spearman_correlation
from .logistic import suggest_template_weights
from .metrics import METRIC_LABELS
from .models import (
    EvaluationOutput,
    FoldValidationOutput,
    OptimizationResponse,
    PlayerRankingOutput,
    RankingResponse,
    SeasonValidationOutput,
    TemplateSummary,
    TournamentDataset,
    ValidationResponse,
)
from .optimizer import (
    OptimizationReport,
    WeightOptimizer,
    build_alignment_map,
    build_validation_bands,
    compute_signals,
    delta_trend_alignment_map,
    own_signal_map,
    samples_by_event,
    validation_alignment_map,
)
from .pipeline import (
    RankingRun,
    build_current_slice,
    build_event_slice,
    current_season,
    run_slice,
    seasons_with_event,
)
from .rng import make_rng
from .scoring import PlayerScore
from .snapshots import ProviderSnapshot, SnapshotCache, load_provider_snapshot, provider_rankings
from .templates import Template, TemplateRepository, TemplateWriter, flatten_metric_weights
from .validation import MultiYearValidator

logger = logging.getLogger(__name__)


class PowerRankingService:
    def __init__(
        self,
        repository: TemplateRepository | None = None,
        datagolf: DataGolfClient | None = None,
        cache: SnapshotCache | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._repository = repository or TemplateRepository.with_defaults()
        self._datagolf = datagolf
        self._cache = cache or SnapshotCache(
            self._settings.snapshot_cache_dir, self._settings.snapshot_ttl_hours
        )

    @property
    def repository(self) -> TemplateRepository:
        return self._repository

    def list_templates(self) -> list[TemplateSummary]:
        return [
            TemplateSummary(
                name=template.name,
                event_id=template.event_id,
                description=template.description,
                group_weights=dict(template.group_weights),
            )
            for template in self._repository.all()
        ]

    def resolve_template(self, dataset: TournamentDataset, template_name: str | None = None) -> Template:
        event_id = dataset.context.require_event_id()
        return self._repository.resolve(event_id, template_name or dataset.context.template_name)

    def run(self, dataset: TournamentDataset, template_name: str | None = None) -> RankingRun:
        template = self.resolve_template(dataset, template_name)
        slice_ = build_current_slice(dataset)
        return run_slice(slice_, template, dataset.context)

    async def rank(
        self,
        dataset: TournamentDataset,
        template_name: str | None = None,
        use_provider_snapshot: bool = False,
    ) -> RankingResponse:
        event_id = dataset.context.require_event_id()
        snapshot = None
        if use_provider_snapshot:
            snapshot = await self._load_snapshot(event_id)

        ranking = self.run(dataset, template_name)
        warnings = list(ranking.warnings)
        if use_provider_snapshot and snapshot is None:
            warnings.append("Provider snapshot unavailable; ranking produced without it.")

        return RankingResponse(
            generated_at=datetime.now(timezone.utc),
            event_id=event_id,
            template_name=ranking.template.name,
            players=[_player_output(player) for player in ranking.players],
            warnings=warnings,
            provider_snapshot_status=snapshot.status if snapshot is not None else None,
            provider_agreement=_provider_agreement(ranking, snapshot),
        )

    async def _load_snapshot(self, event_id: str) -> ProviderSnapshot | None:
        if self._datagolf is not None:
            return await load_provider_snapshot(self._datagolf, self._cache, key=event_id)
        async with DataGolfClient(self._settings) as client:
            return await load_provider_snapshot(client, self._cache, key=event_id)

    def evaluate(self, dataset: TournamentDataset, template_name: str | None = None) -> EvaluationOutput:
        template = self.resolve_template(dataset, template_name)
        slice_ = build_current_slice(dataset)
        if not slice_.finishes:
            raise ValueError("Evaluation needs results for the current event.")
        ranking = run_slice(slice_, template, dataset.context)
        return _evaluation_output(ranking.evaluate(slice_.finishes))

    def optimize(
        self,
        dataset: TournamentDataset,
        trials: int | None = None,
        seed: str | None = None,
        use_validation_bands: bool = True,
        should_cancel: Callable[[], bool] | None = None,
        validate_winner: bool = True,
    ) -> OptimizationResponse:
        report = self.run_optimizer(dataset, trials, seed, use_validation_bands, should_cancel)
        validation = None
        if validate_winner and not report.cancelled:
            validation = self.validate_template(dataset, report.best.template)
        return _optimization_output(dataset.context.event_id, report, validation)

    def run_optimizer(
        self,
        dataset: TournamentDataset,
        trials: int | None = None,
        seed: str | None = None,
        use_validation_bands: bool = True,
        should_cancel: Callable[[], bool] | None = None,
    ) -> OptimizationReport:
        event_id = dataset.context.require_event_id()
        current = build_current_slice(dataset)
        if not current.finishes:
            raise ValueError("Optimization needs results for the current event.")

        latest = current_season(dataset)
        history = [
            build_event_slice(dataset, event_id, season)
            for season in seasons_with_event(dataset, event_id)
            if season != latest
        ]
        signals = compute_signals(current, samples_by_event(history + [current]))

        approach_map = {}
        if dataset.previous_approach and dataset.approach:
            deltas = compute_approach_deltas(
                dataset.previous_approach,
                dataset.approach,
                field_ids=[row.dg_id for row in dataset.field] or None,
            )
            approach_map = approach_delta_alignment(deltas)
        alignment_map = build_alignment_map(
            own_signal_map(signals.correlations, signals.model),
            validation_alignment_map(dataset.validation_weights),
            delta_trend_alignment_map(dataset.delta_trends),
            approach_map,
        )
        bands = (
            build_validation_bands(dataset.validation_weights, dataset.delta_trends)
            if use_validation_bands
            else {}
        )

        optimizer = WeightOptimizer(
            current,
            dataset.context,
            self._repository,
            make_rng(seed if seed is not None else self._settings.default_seed),
            trials=trials if trials is not None else self._settings.default_optimizer_trials,
            alignment_map=alignment_map,
            bands=bands,
            should_cancel=should_cancel,
        )
        return optimizer.run(signals)

    def write_template(self, template: Template, directory: str | Path) -> Path:
        return TemplateWriter(directory).write(template)

    def validate(
        self,
        dataset: TournamentDataset,
        template_name: str | None = None,
        seasons: int | None = None,
    ) -> ValidationResponse:
        return self.validate_template(dataset, self.resolve_template(dataset, template_name), seasons)

    def validate_template(
        self,
        dataset: TournamentDataset,
        template: Template,
        seasons: int | None = None,
    ) -> ValidationResponse:
        validator = MultiYearValidator(
            dataset,
            self._repository,
            seasons=seasons if seasons is not None else self._settings.validation_seasons,
        )
        report = validator.run(template)
        return ValidationResponse(
            generated_at=datetime.now(timezone.utc),
            event_id=validator.event_id,
            template_name=report.template_name,
            seasons=[
                SeasonValidationOutput(
                    season=s.season,
                    evaluation=_evaluation_output(s.evaluation),
                    stress_test_passed=s.stress.passed,
                    stress_test_reasons=list(s.stress.reasons),
                )
                for s in report.seasons
            ],
            folds=[
                FoldValidationOutput(
                    season=f.season,
                    held_out_event_id=f.held_out_event_id,
                    template_name=f.template_name,
                    evaluation=_evaluation_output(f.evaluation),
                    stress_test_passed=f.stress.passed,
                )
                for f in report.folds
            ],
            season_aggregate=_evaluation_output(report.season_aggregate),
            fold_aggregate=_evaluation_output(report.fold_aggregate),
            failing_stress_tests=report.failing_stress_tests,
        )


def _player_output(player: PlayerScore) -> PlayerRankingOutput:
    return PlayerRankingOutput(
        player_id=player.player_id,
        player_name=player.player_name,
        rank=player.rank,
        refined_score=player.refined_score,
        final_score=player.final_score,
        weighted_score=player.weighted_score,
        composite_score=player.composite_score,
        war=player.war,
        confidence_factor=player.confidence_factor,
        data_coverage=player.data_coverage,
        past_performance_multiplier=player.past_performance_multiplier,
        group_scores=dict(player.group_scores),
        metrics=dict(zip(METRIC_LABELS, player.metrics.to_array().tolist())),
        low_data_metrics=list(player.low_data_metrics),
    )


def _evaluation_output(result: EvaluationResult | None) -> EvaluationOutput | None:
    if result is None:
        return None
    subset = result.subset
    return EvaluationOutput(
        correlation=result.correlation,
        rmse=result.rmse,
        mae=result.mae,
        mean_error=result.mean_error,
        std_dev_error=result.std_dev_error,
        r_squared=result.r_squared,
        top10=result.top10,
        top20=result.top20,
        top20_weighted_score=result.top20_weighted_score,
        matched_players=result.matched_players,
        subset_correlation=subset.correlation if subset else None,
        subset_top20_weighted_score=subset.top20_weighted_score if subset else None,
        percentile_rmse=subset.percentile_rmse if subset else None,
        percentile_mae=subset.percentile_mae if subset else None,
    )


def _optimization_output(
    event_id: str, report: OptimizationReport, validation: ValidationResponse | None = None
) -> OptimizationResponse:
    best = report.best.template
    suggested = report.baseline.template.copy()
    suggested.metric_weights = suggest_template_weights(suggested, report.signals.suggested)
    return OptimizationResponse(
        generated_at=datetime.now(timezone.utc),
        event_id=event_id,
        baseline_template=report.baseline.template.name,
        baseline_evaluation=_evaluation_output(report.baseline.evaluation),
        baseline_objective=report.baseline.objective,
        best_objective=report.best.objective,
        best_evaluation=_evaluation_output(report.best.evaluation),
        improvement=report.improvement,
        recommendation=report.recommendation,
        trials_run=report.trials_run,
        cancelled=report.cancelled,
        group_weights=dict(best.group_weights),
        metric_weights=flatten_metric_weights(best.nested_weights()),
        top_logistic_features=report.signals.top_features(),
        suggested_weights_source=report.signals.suggested.source,
        suggested_metric_weights=flatten_metric_weights(suggested.nested_weights()),
        cv_reliability=report.signals.cv_reliability,
        validation=validation,
    )


def _provider_agreement(ranking: RankingRun, snapshot: ProviderSnapshot | None) -> float | None:
    provider = provider_rankings(snapshot)
    pairs = [
        (float(player.rank), provider[player.player_id])
        for player in ranking.players
        if player.player_id in provider
    ]
    if len(pairs) < 2:
        return None
    return spearman_correlation([p for p, _ in pairs], [q for _, q in pairs])
