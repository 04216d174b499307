from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx

from .config import Settings

APPROACH_SKILL_PERIODS = ("l24", "l12", "ytd")


class DataGolfAPIError(RuntimeError):
    pass


class DataGolfClient:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.datagolf_base_url.rstrip("/"),
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "DataGolfClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        api_key = self._settings.datagolf_api_key.strip()
        if not api_key:
            raise DataGolfAPIError("DATAGOLF_API_KEY is not configured; set it in the environment or .env.")

        query_params: dict[str, Any] = {
            "file_format": "json",
            "key": api_key,
        }
        if params:
            query_params.update({k: v for k, v in params.items() if v is not None})

        try:
            response = await self._client.get(f"/{path.lstrip('/')}", params=query_params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DataGolfAPIError(
                f"DataGolf request failed ({exc.response.status_code}) for {path}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DataGolfAPIError(f"DataGolf request failed for {path}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise DataGolfAPIError(f"DataGolf returned non-JSON payload for {path}") from exc

        if isinstance(payload, dict) and payload.get("error"):
            raise DataGolfAPIError(f"DataGolf API error for {path}: {payload['error']}")
        return payload

    @staticmethod
    def _normalize_tour(tour: str) -> str:
        normalized = tour.strip().lower()
        aliases = {
            "dpwt": "euro",
            "european": "euro",
            "liv": "alt",
        }
        return aliases.get(normalized, normalized)

    async def get_dg_rankings(self) -> Any:
        return await self._get_json("preds/get-dg-rankings")

    async def get_approach_skill(self, period: str = "l24") -> Any:
        if period not in APPROACH_SKILL_PERIODS:
            raise DataGolfAPIError(f"Unsupported approach-skill period {period!r}.")
        return await self._get_json("preds/approach-skill", params={"period": period})

    async def get_skill_ratings(self, display: str = "value") -> Any:
        return await self._get_json("preds/skill-ratings", params={"display": display})

    async def get_field_updates(self, tour: str = "pga") -> Any:
        return await self._get_json("field-updates", params={"tour": self._normalize_tour(tour)})

    async def get_player_decompositions(self, tour: str = "pga") -> Any:
        return await self._get_json(
            "preds/player-decompositions", params={"tour": self._normalize_tour(tour)}
        )

    async def get_historical_rounds(
        self,
        event_id: str,
        year: int,
        tour: str = "pga",
    ) -> Any:
        return await self._get_json(
            "historical-raw-data/rounds",
            params={"tour": self._normalize_tour(tour), "event_id": event_id, "year": year},
        )
