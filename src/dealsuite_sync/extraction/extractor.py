"""
Structured deal extraction for the Dealsuite sync pipeline.

Rendered markdown is handed to a chat-completions model with a fixed
instruction describing the output schema. The answer is cleaned of any
code fence, decoded as JSON, and validated against ExtractionResult.

Extraction is not retried and is never partially accepted: a corrupted
answer cannot be reconciled safely, so any decode or schema failure raises
ExtractionError and stops the run before the store is touched.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import json
from typing import Dict, List, Optional, Tuple

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from dealsuite_sync.config.settings import (
    OPENAI_MODEL,
    EXTRACTION_TEMPERATURE,
    EXTRACTION_MAX_TOKENS,
    EXTRACTION_MAX_CONTENT_CHARS,
    EXTRACTION_TIMEOUT_SECONDS,
)
from dealsuite_sync.config.logging_config import get_logger
from dealsuite_sync.core.cancellation import CancellationToken
from dealsuite_sync.core.exceptions import ExtractionError
from dealsuite_sync.core.string_utils import strip_code_fences, truncate_string
from dealsuite_sync.extraction.models import DealRecord, ExtractionResult

logger = get_logger(__name__)

# Characters of a failed model answer kept on the raised error.
RAW_RESPONSE_EXCERPT_CHARS = 2000

SYSTEM_PROMPT = """You are an M&A analyst specialised in deal sourcing.

Your task is to extract the deals listed on the Dealsuite "Wanted" marketplace page.

Rules: precision over completeness. Never fabricate a field. If a value is not present on the page, use null.

TASK
1) Identify every deal listed on the page.
2) For each deal, extract:
   - deal_id (string): unique id (from the detail URL, a reference number, or null if none is shown)
   - title (string): deal title
   - sector (string|null): industry or sector
   - country (string|null): country
   - ebitda_min (number|null): minimum EBITDA in thousands of euros
   - ebitda_max (number|null): maximum EBITDA in thousands of euros
   - revenue_min (number|null): minimum revenue in thousands of euros
   - revenue_max (number|null): maximum revenue in thousands of euros
   - deal_type (string|null): MBO, MBI, Acquisition, Strategic Buyer, ...
   - advisor (string|null): advisor or firm listing the deal
   - description (string|null): short summary of the deal
   - published_at (string|null): ISO date if shown
   - detail_url (string|null): absolute URL of the deal detail page

VALUE CONVERSION (all amounts in thousands of euros):
- "1M" or "1 million" -> 1000
- "500K" or "500.000" -> 500
- a range such as "1-5M EBITDA" -> ebitda_min: 1000, ebitda_max: 5000

MANDATORY SCHEMA:
{
  "deals": [DealRecord],
  "total_found": number,
  "has_more_pages": boolean,
  "warnings": [string]
}

Answer ONLY with valid JSON, without markdown or comments."""


def build_messages(content: str, max_chars: int = EXTRACTION_MAX_CONTENT_CHARS) -> List[Dict[str, str]]:
    """
    Build the chat messages for one extraction request.

    Args:
        content: Rendered markdown of the board.
        max_chars: Only this prefix of the content is sent.

    Returns:
        list: System and user messages.
    """
    excerpt = truncate_string(content, max_chars)
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": f"Extract the deals from this Dealsuite content:\n\n{excerpt}",
        },
    ]


def parse_extraction_response(response_text: Optional[str]) -> ExtractionResult:
    """
    Decode and validate a model answer.

    A surrounding code fence is tolerated; anything else that is not a JSON
    object matching ExtractionResult is rejected.

    Args:
        response_text: The raw model output.

    Returns:
        ExtractionResult: The validated result, with range inconsistencies
            and duplicate keys added to its warnings.

    Raises:
        ExtractionError: On empty output, invalid JSON, or schema violation.

    Example:
        >>> result = parse_extraction_response('```json\\n{"deals": []}\\n```')
        >>> result.total_found
        0
    """
    if not response_text or not response_text.strip():
        raise ExtractionError("No response from extraction service")

    cleaned = strip_code_fences(response_text)
    excerpt = truncate_string(cleaned, RAW_RESPONSE_EXCERPT_CHARS)

    try:
        payload = json.loads(cleaned)
    except ValueError as e:
        logger.error(f"Failed to parse extraction response: {e}")
        raise ExtractionError("Failed to parse AI extraction result", raw_response=excerpt) from e

    try:
        result = ExtractionResult.model_validate(payload)
    except ValidationError as e:
        logger.error(f"Extraction response does not match the deal schema: {e.error_count()} error(s)")
        raise ExtractionError(
            f"Extraction result does not match the deal schema: {e.errors()[0]['msg']}",
            raw_response=excerpt,
        ) from e

    return _with_consistency_warnings(result)


def _with_consistency_warnings(result: ExtractionResult) -> ExtractionResult:
    warnings = list(result.warnings)
    unique: List[DealRecord] = []
    seen = set()

    for deal in result.deals:
        if deal.deal_id in seen:
            warnings.append(f"duplicate deal_id {deal.deal_id} dropped")
            continue
        seen.add(deal.deal_id)
        warnings.extend(deal.range_warnings())
        unique.append(deal)

    if len(warnings) == len(result.warnings) and len(unique) == len(result.deals):
        return result
    return result.model_copy(update={"deals": unique, "warnings": warnings})


class StructuredExtractor:
    """
    Extracts deals from rendered content with a chat-completions model.

    Attributes:
        calls: Number of extraction requests issued.
        tokens_used: Total tokens reported by the service.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = OPENAI_MODEL,
        temperature: float = EXTRACTION_TEMPERATURE,
        max_tokens: int = EXTRACTION_MAX_TOKENS,
        max_content_chars: int = EXTRACTION_MAX_CONTENT_CHARS,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_content_chars = max_content_chars
        self.calls = 0
        self.tokens_used = 0

    @classmethod
    def from_api_key(cls, api_key: str, base_url: Optional[str] = None, **kwargs) -> "StructuredExtractor":
        client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=EXTRACTION_TIMEOUT_SECONDS,
            max_retries=0,
        )
        return cls(client, **kwargs)

    async def _complete(self, content: str) -> Tuple[Optional[str], int]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=build_messages(content, self.max_content_chars),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )
        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", None) or 0
        self.tokens_used += tokens
        if not response.choices:
            return None, tokens
        return response.choices[0].message.content, tokens

    async def extract(
        self,
        content: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExtractionResult:
        """
        Extract deals from rendered content.

        Args:
            content: Rendered markdown of the board.
            cancel_token: Aborts the in-flight request when fired.

        Returns:
            ExtractionResult: The validated deals.

        Raises:
            ExtractionError: On service failure or unusable output.
            OperationCancelled: When the token fires first.
        """
        token = cancel_token or CancellationToken.none()
        self.calls += 1

        logger.info(
            f"Extracting deals with {self.model} "
            f"({min(len(content), self.max_content_chars)} of {len(content)} characters)"
        )

        try:
            response_text, tokens = await token.guard(self._complete(content))
        except openai.OpenAIError as e:
            logger.error(f"Extraction service error: {type(e).__name__}: {e}")
            raise ExtractionError(f"Extraction service error: {type(e).__name__}") from e

        result = parse_extraction_response(response_text).model_copy(update={"tokens_used": tokens})
        logger.info(
            f"Extracted {len(result.deals)} deals "
            f"(total_found={result.total_found}, has_more_pages={result.has_more_pages})"
        )
        return result
