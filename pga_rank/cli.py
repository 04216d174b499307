from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from pydantic import ValidationError

from .config import ConfigurationError, get_settings
from .datagolf_client import DataGolfAPIError
from .models import EvaluationOutput, TournamentDataset
from .service import PowerRankingService
from .templates import Template, TemplateRepository, nest_metric_weights


def _load_dataset(path: str) -> TournamentDataset:
    return TournamentDataset.model_validate_json(Path(path).read_text(encoding="utf-8"))


def _build_service(templates_file: str | None) -> PowerRankingService:
    repository = TemplateRepository.with_defaults()
    if templates_file:
        repository.load_file(templates_file)
    return PowerRankingService(repository=repository)


def _format_evaluation(evaluation: EvaluationOutput | None) -> str:
    if evaluation is None:
        return "n/a"
    top20 = f"{evaluation.top20:.1f}%" if evaluation.top20 is not None else "n/a"
    weighted = (
        f"{evaluation.top20_weighted_score:.1f}%"
        if evaluation.top20_weighted_score is not None
        else "n/a"
    )
    return (
        f"corr={evaluation.correlation:.4f} rmse={evaluation.rmse:.2f} "
        f"top20={top20} top20w={weighted} players={evaluation.matched_players}"
    )


async def _run_rank_command(args: argparse.Namespace) -> None:
    service = _build_service(args.templates_file)
    result = await service.rank(
        _load_dataset(args.dataset),
        template_name=args.template,
        use_provider_snapshot=args.snapshot,
    )

    print(f"\nEvent {result.event_id} | template={result.template_name}")
    if result.provider_snapshot_status:
        print(f"Provider snapshot: {result.provider_snapshot_status}")
    if result.provider_agreement is not None:
        print(f"Agreement with provider rankings: {result.provider_agreement:.3f}")
    print(f"{'Rank':<5} {'Player':<26} {'Refined':>9} {'WAR':>8} {'Cover':>7}")
    print("-" * 60)
    for player in result.players[: args.top]:
        print(
            f"{player.rank:<5} "
            f"{player.player_name[:26]:<26} "
            f"{player.refined_score:>9.4f} "
            f"{player.war:>8.3f} "
            f"{100.0 * player.data_coverage:>6.1f}%"
        )
    if result.warnings:
        print(f"\n{len(result.warnings)} warnings; first: {result.warnings[0]}")


def _run_optimize_command(args: argparse.Namespace) -> None:
    service = _build_service(args.templates_file)
    result = service.optimize(
        _load_dataset(args.dataset),
        trials=args.trials,
        seed=args.seed,
        use_validation_bands=not args.no_bands,
    )

    print(f"\nBaseline {result.baseline_template}: {_format_evaluation(result.baseline_evaluation)}")
    print(f"Optimized: {_format_evaluation(result.best_evaluation)}")
    print(
        f"Objective {result.baseline_objective:.4f} -> {result.best_objective:.4f} "
        f"({result.improvement:+.4f}) after {result.trials_run} trials"
    )
    print(f"Recommendation: {result.recommendation}")
    if result.validation is not None:
        validation = result.validation
        print(f"Multi-year check: {_format_evaluation(validation.season_aggregate)}")
        print(f"Fold check: {_format_evaluation(validation.fold_aggregate)}")
        print(f"Failing stress tests: {validation.failing_stress_tests}")
    print("Group weights:")
    for group, weight in sorted(result.group_weights.items(), key=lambda item: -item[1]):
        print(f"  {group:<32} {weight:.4f}")
    if result.top_logistic_features:
        print("Top logistic features:")
        for label, weight in result.top_logistic_features:
            print(f"  {label:<32} {weight:+.4f}")

    if args.write_template:
        template = Template.from_dict(
            {
                "name": f"{result.event_id}_OPTIMIZED",
                "eventId": result.event_id,
                "description": f"Optimized from {result.baseline_template}",
                "groupWeights": result.group_weights,
                "metricWeights": nest_metric_weights(result.metric_weights),
            }
        )
        path = service.write_template(template, args.write_template)
        print(f"Wrote optimized template to {path}")


def _run_validate_command(args: argparse.Namespace) -> None:
    service = _build_service(args.templates_file)
    result = service.validate(_load_dataset(args.dataset), template_name=args.template, seasons=args.seasons)

    print(f"\nValidation of {result.template_name} for event {result.event_id}")
    for season in result.seasons:
        status = "ok" if season.stress_test_passed else "FAIL " + "; ".join(season.stress_test_reasons)
        print(f"  {season.season}: {_format_evaluation(season.evaluation)} [{status}]")
    for fold in result.folds:
        status = "ok" if fold.stress_test_passed else "FAIL"
        print(
            f"  fold {fold.season}/{fold.held_out_event_id} ({fold.template_name}): "
            f"{_format_evaluation(fold.evaluation)} [{status}]"
        )
    print(f"Season aggregate: {_format_evaluation(result.season_aggregate)}")
    print(f"Fold aggregate: {_format_evaluation(result.fold_aggregate)}")
    print(f"Failing stress tests: {result.failing_stress_tests}")


def _run_evaluate_command(args: argparse.Namespace) -> None:
    service = _build_service(args.templates_file)
    result = service.evaluate(_load_dataset(args.dataset), template_name=args.template)
    print(_format_evaluation(result))


def _run_templates_command(args: argparse.Namespace) -> None:
    service = _build_service(args.templates_file)
    for summary in service.list_templates():
        suffix = f" (event {summary.event_id})" if summary.event_id else ""
        print(f"{summary.name}{suffix}")
        for group, weight in summary.group_weights.items():
            print(f"  {group:<32} {weight:.3f}")


def main() -> None:
    parser = argparse.ArgumentParser(description="PGA Tour power rankings, weight optimizer and validator.")
    parser.add_argument("--templates-file", default=None, help="Extra template JSON to register")
    sub = parser.add_subparsers(dest="command", required=True)

    rank_parser = sub.add_parser("rank", help="Rank the field for an event")
    rank_parser.add_argument("dataset")
    rank_parser.add_argument("--template", default=None)
    rank_parser.add_argument("--snapshot", action="store_true", help="Use the DataGolf snapshot")
    rank_parser.add_argument("--top", type=int, default=30)

    opt_parser = sub.add_parser("optimize", help="Search for better template weights")
    opt_parser.add_argument("dataset")
    opt_parser.add_argument("--trials", type=int, default=None)
    opt_parser.add_argument("--seed", default=None)
    opt_parser.add_argument("--no-bands", action="store_true")
    opt_parser.add_argument("--write-template", default=None, metavar="DIR")

    val_parser = sub.add_parser("validate", help="Multi-season and per-event validation")
    val_parser.add_argument("dataset")
    val_parser.add_argument("--template", default=None)
    val_parser.add_argument("--seasons", type=int, default=None)

    eval_parser = sub.add_parser("evaluate", help="Score a ranking against results")
    eval_parser.add_argument("dataset")
    eval_parser.add_argument("--template", default=None)

    sub.add_parser("templates", help="List registered templates")

    args = parser.parse_args()
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.command == "rank":
            asyncio.run(_run_rank_command(args))
            return
        if args.command == "optimize":
            _run_optimize_command(args)
            return
        if args.command == "validate":
            _run_validate_command(args)
            return
        if args.command == "evaluate":
            _run_evaluate_command(args)
            return
        if args.command == "templates":
            _run_templates_command(args)
            return
        parser.error(f"Unsupported command: {args.command}")
    except ConfigurationError as exc:
        parser.exit(2, f"Configuration error: {exc}\n")
    except ValidationError as exc:
        parser.exit(2, f"Invalid dataset: {exc}\n")
    except ValueError as exc:
        parser.exit(1, f"Error: {exc}\n")
    except DataGolfAPIError as exc:
        print(f"DataGolf API error: {exc}")


if __name__ == "__main__":
    main()
