from __future__ import annotations

import asyncio

import httpx
import pytest

from pga_rank.config import Settings
from pga_rank.datagolf_client import DataGolfAPIError, DataGolfClient


def _run(handler, call, api_key: str = "secret"):
    settings = Settings(datagolf_api_key=api_key, datagolf_base_url="https://feeds.example.com/")

    async def go():
        async with DataGolfClient(settings, transport=httpx.MockTransport(handler)) as client:
            return await call(client)

    return asyncio.run(go())


def test_requests_carry_key_and_params() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"rankings": []})

    payload = _run(handler, lambda client: client.get_field_updates(tour="European"))

    assert payload == {"rankings": []}
    assert seen[0].url.path == "/field-updates"
    assert seen[0].url.params["key"] == "secret"
    assert seen[0].url.params["file_format"] == "json"
    assert seen[0].url.params["tour"] == "euro"


def test_historical_rounds_query() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    _run(handler, lambda client: client.get_historical_rounds("100", 2024))

    assert seen[0].url.path == "/historical-raw-data/rounds"
    assert seen[0].url.params["event_id"] == "100"
    assert seen[0].url.params["year"] == "2024"


def test_http_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(DataGolfAPIError, match="503"):
        _run(handler, lambda client: client.get_dg_rankings())


def test_error_payload_and_bad_json_are_wrapped() -> None:
    def error_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": "bad key"})

    def text_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>")

    with pytest.raises(DataGolfAPIError, match="bad key"):
        _run(error_handler, lambda client: client.get_skill_ratings())
    with pytest.raises(DataGolfAPIError, match="non-JSON"):
        _run(text_handler, lambda client: client.get_player_decompositions())


def test_missing_key_and_bad_period() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(DataGolfAPIError, match="DATAGOLF_API_KEY"):
        _run(handler, lambda client: client.get_dg_rankings(), api_key=" ")
    with pytest.raises(DataGolfAPIError, match="period"):
        _run(handler, lambda client: client.get_approach_skill("l6"))
