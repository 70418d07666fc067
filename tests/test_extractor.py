"""Tests for structured deal extraction."""

import datetime
import json

import openai
import pytest
from unittest.mock import AsyncMock

from dealsuite_sync.core.cancellation import CancellationToken
from dealsuite_sync.core.exceptions import ExtractionError, OperationCancelled
from dealsuite_sync.extraction.extractor import (
    StructuredExtractor,
    build_messages,
    parse_extraction_response,
)
from dealsuite_sync.extraction.models import DealRecord, synthesize_deal_id

from conftest import AUTHENTICATED_MARKDOWN, extraction_payload, fake_openai_client


class TestParseExtractionResponse:
    """Tests for parse_extraction_response()."""

    def test_fenced_and_unfenced_answers_are_equal(self):
        text = json.dumps(extraction_payload())
        fenced = f"```json\n{text}\n```"
        assert parse_extraction_response(fenced) == parse_extraction_response(text)

    def test_amounts_are_normalised_to_thousands(self):
        result = parse_extraction_response(json.dumps(extraction_payload()))
        first, second = result.deals
        assert (first.ebitda_min, first.ebitda_max) == (1000.0, 5000.0)
        assert (first.revenue_min, first.revenue_max) == (10000.0, 50000.0)
        assert (second.ebitda_min, second.ebitda_max) == (500.0, 2000.0)

    def test_dates_and_nulls(self):
        result = parse_extraction_response(json.dumps(extraction_payload()))
        first, second = result.deals
        assert first.published_at == datetime.date(2024, 3, 1)
        assert second.published_at is None
        assert first.description is None

    def test_invalid_json_raises_with_excerpt(self):
        with pytest.raises(ExtractionError) as excinfo:
            parse_extraction_response('{"deals": [')
        assert excinfo.value.raw_response == '{"deals": ['

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_answer_raises(self, text):
        with pytest.raises(ExtractionError):
            parse_extraction_response(text)

    def test_missing_deals_list_raises(self):
        with pytest.raises(ExtractionError):
            parse_extraction_response('{"total_found": 3}')

    def test_deal_without_title_fails_the_whole_extraction(self):
        payload = extraction_payload([{"deal_id": "W-1", "title": None}])
        with pytest.raises(ExtractionError):
            parse_extraction_response(json.dumps(payload))

    def test_defaults_for_optional_top_level_fields(self):
        result = parse_extraction_response('{"deals": [{"deal_id": "A", "title": "T"}]}')
        assert result.total_found == 1
        assert result.has_more_pages is False
        assert result.warnings == []

    def test_unknown_keys_are_ignored(self):
        payload = extraction_payload([{"deal_id": "A", "title": "T", "confidence": 0.9}])
        result = parse_extraction_response(json.dumps(payload))
        assert result.deals[0].raw_payload["confidence"] == 0.9
        assert not hasattr(result.deals[0], "confidence")

    def test_duplicate_keys_are_dropped_with_warning(self):
        payload = extraction_payload([
            {"deal_id": "A", "title": "First"},
            {"deal_id": "A", "title": "Second"},
        ])
        result = parse_extraction_response(json.dumps(payload))
        assert [d.title for d in result.deals] == ["First"]
        assert "duplicate deal_id A dropped" in result.warnings

    def test_inverted_range_is_warned(self):
        payload = extraction_payload([{"deal_id": "A", "title": "T", "ebitda_min": 5000, "ebitda_max": 1000}])
        result = parse_extraction_response(json.dumps(payload))
        assert any("ebitda_min" in w for w in result.warnings)


class TestDealRecord:
    """Tests for the deal record model."""

    def test_synthetic_key_when_reference_missing(self):
        record = DealRecord.model_validate({"deal_id": None, "title": "Buyer seeks HVAC installer"})
        assert record.has_synthetic_key
        assert record.deal_id == synthesize_deal_id("Buyer seeks HVAC installer")

    def test_synthetic_key_is_stable_across_whitespace_and_case(self):
        assert synthesize_deal_id("Buyer  seeks HVAC", "Firm", "NL") == synthesize_deal_id("buyer seeks hvac ", "firm", "nl")

    def test_synthetic_key_depends_on_advisor(self):
        assert synthesize_deal_id("Buyer", "Firm A") != synthesize_deal_id("Buyer", "Firm B")

    def test_numeric_deal_id_becomes_text(self):
        assert DealRecord.model_validate({"deal_id": 1234, "title": "T"}).deal_id == "1234"
        assert DealRecord.model_validate({"deal_id": 1234.0, "title": "T"}).deal_id == "1234"
        assert DealRecord.model_validate({"deal_id": 10 ** 400, "title": "T"}).deal_id == str(10 ** 400)

    def test_unparseable_amount_and_date_become_none(self):
        record = DealRecord.model_validate({
            "deal_id": "A", "title": "T", "ebitda_min": "on request", "published_at": "last week",
        })
        assert record.ebitda_min is None
        assert record.published_at is None

    def test_blank_text_fields_become_none(self):
        record = DealRecord.model_validate({"deal_id": "A", "title": "T", "sector": "  "})
        assert record.sector is None


class TestStructuredExtractor:
    """Tests for StructuredExtractor.extract()."""

    @pytest.mark.asyncio
    async def test_extract(self, openai_client):
        extractor = StructuredExtractor(openai_client, model="test-model")
        result = await extractor.extract(AUTHENTICATED_MARKDOWN)

        assert [d.deal_id for d in result.deals] == ["W-1001", "W-1002"]
        assert result.tokens_used == 321
        assert extractor.calls == 1
        assert extractor.tokens_used == 321

        kwargs = openai_client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert AUTHENTICATED_MARKDOWN in kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_content_is_truncated(self, openai_client):
        extractor = StructuredExtractor(openai_client, max_content_chars=50)
        await extractor.extract("x" * 500)
        user_message = openai_client.chat.completions.create.await_args.kwargs["messages"][1]["content"]
        assert user_message.endswith("x" * 50)
        assert "x" * 51 not in user_message

    @pytest.mark.asyncio
    async def test_invalid_answer_raises(self):
        extractor = StructuredExtractor(fake_openai_client("Sorry, I cannot help with that."))
        with pytest.raises(ExtractionError) as excinfo:
            await extractor.extract(AUTHENTICATED_MARKDOWN)
        assert "Sorry" in excinfo.value.raw_response

    @pytest.mark.asyncio
    async def test_service_error_raises_extraction_error(self, openai_client):
        openai_client.chat.completions.create = AsyncMock(side_effect=openai.OpenAIError("boom"))
        extractor = StructuredExtractor(openai_client)
        with pytest.raises(ExtractionError):
            await extractor.extract(AUTHENTICATED_MARKDOWN)

    @pytest.mark.asyncio
    async def test_cancelled_token_raises(self, openai_client):
        token = CancellationToken()
        token.cancel()
        extractor = StructuredExtractor(openai_client)
        with pytest.raises(OperationCancelled):
            await extractor.extract(AUTHENTICATED_MARKDOWN, cancel_token=token)


def test_build_messages_has_schema_instruction():
    messages = build_messages("content")
    assert messages[0]["role"] == "system"
    assert '"deals"' in messages[0]["content"]
    assert messages[1]["content"].endswith("content")
