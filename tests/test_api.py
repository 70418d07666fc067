"""Tests for the HTTP invocation endpoint."""

import contextlib
import json

import pytest
from aiohttp import test_utils

from dealsuite_sync.api import STARTUP_ERROR_KEY, create_app
from dealsuite_sync.config.settings import API_ROUTE
from dealsuite_sync.extraction.extractor import StructuredExtractor
from dealsuite_sync.pipeline.coordinator import PipelineCoordinator
from dealsuite_sync.scraping.retry import RetryOrchestrator

from conftest import (
    COOKIE_WITHOUT_DSTOKEN,
    LOGIN_MARKDOWN,
    VALID_COOKIE,
    ScriptedRenderClient,
    extraction_payload,
    fake_openai_client,
    success_outcome,
)


@contextlib.asynccontextmanager
async def api_client(app):
    client = test_utils.TestClient(test_utils.TestServer(app))
    await client.start_server()
    try:
        yield client
    finally:
        await client.close()


def make_app(store=None, markdown=None, **kwargs):
    outcome = success_outcome(markdown) if markdown else success_outcome()
    coordinator = PipelineCoordinator(
        RetryOrchestrator(ScriptedRenderClient([outcome]), retry_delay_seconds=0),
        StructuredExtractor(fake_openai_client(json.dumps(extraction_payload()))),
        store,
    )
    return create_app(coordinator=coordinator, **kwargs)


class TestScrapeEndpoint:
    """Tests for POST /dealsuite/scrape-wanted."""

    @pytest.mark.asyncio
    async def test_full_run(self, deal_store):
        async with api_client(make_app(deal_store)) as client:
            response = await client.post(API_ROUTE, json={"session_cookie": VALID_COOKIE})
            body = await response.json()

        assert response.status == 200
        assert body["success"] is True
        assert body["inserted"] == 2
        assert body["usage"]["render_calls"] == 1

    @pytest.mark.asyncio
    async def test_dry_run(self):
        async with api_client(make_app()) as client:
            response = await client.post(
                API_ROUTE, json={"session_cookie": VALID_COOKIE, "dry_run": True, "filters": {"sector": "12"}}
            )
            body = await response.json()

        assert response.status == 200
        assert body["dry_run"] is True
        assert body["is_authenticated"] is True

    @pytest.mark.asyncio
    async def test_pipeline_failures_are_200(self, deal_store):
        async with api_client(make_app(deal_store, markdown=LOGIN_MARKDOWN)) as client:
            response = await client.post(API_ROUTE, json={"session_cookie": VALID_COOKIE})
            body = await response.json()

        assert response.status == 200
        assert body["success"] is False
        assert body["error"] == "session_expired"

    @pytest.mark.asyncio
    async def test_rejected_cookie(self, deal_store):
        async with api_client(make_app(deal_store)) as client:
            response = await client.post(API_ROUTE, json={"session_cookie": COOKIE_WITHOUT_DSTOKEN})
            body = await response.json()

        assert response.status == 200
        assert body["error"] == "invalid_cookie_format"
        assert body["missing"] == ["dstoken"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"session_cookie": ""}, {"session_cookie": 12}])
    async def test_missing_cookie_is_400(self, payload):
        async with api_client(make_app()) as client:
            response = await client.post(API_ROUTE, json=payload)
            body = await response.json()

        assert response.status == 400
        assert body["success"] is False

    @pytest.mark.asyncio
    async def test_invalid_json_is_400(self):
        async with api_client(make_app()) as client:
            response = await client.post(
                API_ROUTE, data="{not json", headers={"Content-Type": "application/json"}
            )
        assert response.status == 400

    @pytest.mark.asyncio
    async def test_invalid_dry_run_flag_is_400(self):
        async with api_client(make_app()) as client:
            response = await client.post(API_ROUTE, json={"session_cookie": VALID_COOKIE, "dry_run": "yes"})
        assert response.status == 400

    @pytest.mark.asyncio
    async def test_full_run_without_store_is_500(self):
        async with api_client(make_app()) as client:
            response = await client.post(API_ROUTE, json={"session_cookie": VALID_COOKIE})
            body = await response.json()

        assert response.status == 500
        assert body["success"] is False

    @pytest.mark.asyncio
    async def test_startup_error_is_500(self):
        app = make_app()
        app[STARTUP_ERROR_KEY] = "FIRECRAWL_API_KEY not configured"
        async with api_client(app) as client:
            response = await client.post(API_ROUTE, json={"session_cookie": VALID_COOKIE})
            body = await response.json()

        assert response.status == 500
        assert body["message"] == "FIRECRAWL_API_KEY not configured"


class TestCors:
    """Tests for the CORS headers."""

    @pytest.mark.asyncio
    async def test_preflight(self):
        async with api_client(make_app(enable_cors=True)) as client:
            response = await client.options(API_ROUTE)

        assert response.status == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "POST" in response.headers["Access-Control-Allow-Methods"]

    @pytest.mark.asyncio
    async def test_error_responses_carry_headers(self):
        async with api_client(make_app(enable_cors=True)) as client:
            response = await client.post(API_ROUTE, json={})
        assert response.status == 400
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_disabled(self):
        async with api_client(make_app(enable_cors=False)) as client:
            response = await client.post(API_ROUTE, json={})
        assert "Access-Control-Allow-Origin" not in response.headers
