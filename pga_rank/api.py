from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
import uvicorn

from .config import get_settings
from .datagolf_client import DataGolfAPIError, DataGolfClient
from .models import (
    EvaluationOutput,
    OptimizationRequest,
    OptimizationResponse,
    RankingRequest,
    RankingResponse,
    TemplateSummary,
    ValidationRequest,
    ValidationResponse,
)
from .service import PowerRankingService

_settings = get_settings()
_client = DataGolfClient(_settings)
_service = PowerRankingService(datagolf=_client, settings=_settings)


@asynccontextmanager
async def lifespan(_: FastAPI):
    try:
        yield
    finally:
        await _client.aclose()


app = FastAPI(
    title="PGA Power Rankings",
    version="0.1.0",
    description="Course-aware PGA power rankings with adaptive weight optimization and validation.",
    lifespan=lifespan,
)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/templates", response_model=list[TemplateSummary])
async def list_templates() -> list[TemplateSummary]:
    return _service.list_templates()


@app.post("/rankings", response_model=RankingResponse)
async def rank_field(request: RankingRequest) -> RankingResponse:
    try:
        return await _service.rank(
            request.dataset,
            template_name=request.template_name,
            use_provider_snapshot=request.use_provider_snapshot,
        )
    except DataGolfAPIError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/evaluate", response_model=EvaluationOutput)
def evaluate_ranking(request: RankingRequest) -> EvaluationOutput:
    try:
        return _service.evaluate(request.dataset, template_name=request.template_name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/optimize", response_model=OptimizationResponse)
def optimize_weights(request: OptimizationRequest) -> OptimizationResponse:
    try:
        return _service.optimize(
            request.dataset,
            trials=request.trials,
            seed=request.seed,
            use_validation_bands=request.use_validation_bands,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/validate", response_model=ValidationResponse)
def validate_template(request: ValidationRequest) -> ValidationResponse:
    try:
        return _service.validate(
            request.dataset,
            template_name=request.template_name,
            seasons=request.seasons,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def run() -> None:
    uvicorn.run("pga_rank.api:app", host="127.0.0.1", port=8000, reload=False)


if __name__ == "__main__":
    run()
