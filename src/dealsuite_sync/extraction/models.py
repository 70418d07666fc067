"""
Record schema for deals extracted from the Wanted board.

The extraction service answers with loosely typed JSON. Nothing of it
reaches the store until it has passed these models: unknown keys are
dropped, every attribute is independently nullable, amounts are
normalised to thousands of euros, and each deal is guaranteed a non-empty
natural key (synthesised from its title when the page shows no reference).

Author: Leonardo Pacciani-Mori
License: MIT
"""

import datetime
import hashlib
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dealsuite_sync.core.date_utils import parse_published_date
from dealsuite_sync.core.numeric_utils import parse_amount_to_thousands
from dealsuite_sync.core.string_utils import normalize_whitespace

SYNTHETIC_KEY_PREFIX = "synthetic-"

AMOUNT_FIELDS = ("ebitda_min", "ebitda_max", "revenue_min", "revenue_max")

TEXT_FIELDS = ("sector", "country", "deal_type", "advisor", "description", "detail_url")


def synthesize_deal_id(title: str, advisor: Optional[str] = None, country: Optional[str] = None) -> str:
    """
    Derive a stable natural key for a deal shown without a reference.

    The same title, advisor and country always produce the same key, so a
    re-run updates the stored deal instead of inserting a duplicate.

    Example:
        >>> synthesize_deal_id("Buyer seeks HVAC installer").startswith("synthetic-")
        True
    """
    parts = [normalize_whitespace(p).lower() for p in (title, advisor or "", country or "")]
    digest = hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()
    return f"{SYNTHETIC_KEY_PREFIX}{digest[:16]}"


class DealRecord(BaseModel):
    """
    One deal listed on the Wanted board.

    Attributes:
        deal_id: Natural key (board reference, detail URL id, or synthetic).
        title: Deal title. Required.
        sector: Industry or sector.
        country: Country of the target.
        ebitda_min / ebitda_max: EBITDA range in thousands of euros.
        revenue_min / revenue_max: Revenue range in thousands of euros.
        deal_type: MBO, MBI, acquisition, strategic buyer, ...
        advisor: Firm listing the deal.
        description: Short description.
        published_at: Publication date.
        detail_url: Absolute URL of the deal page.
        raw_payload: The record exactly as the service returned it.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    deal_id: str
    title: str
    sector: Optional[str] = None
    country: Optional[str] = None
    ebitda_min: Optional[float] = None
    ebitda_max: Optional[float] = None
    revenue_min: Optional[float] = None
    revenue_max: Optional[float] = None
    deal_type: Optional[str] = None
    advisor: Optional[str] = None
    description: Optional[str] = None
    published_at: Optional[datetime.date] = None
    detail_url: Optional[str] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    @model_validator(mode="before")
    @classmethod
    def _fill_natural_key(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("each deal must be a JSON object")

        values = dict(data)
        values.setdefault("raw_payload", dict(data))

        deal_id = values.get("deal_id")
        if isinstance(deal_id, float) and deal_id.is_integer():
            deal_id = str(int(deal_id))
        elif isinstance(deal_id, (int, float)) and not isinstance(deal_id, bool):
            deal_id = str(deal_id)
        if isinstance(deal_id, str):
            deal_id = deal_id.strip()

        title = values.get("title")
        if not deal_id and isinstance(title, str) and title.strip():
            advisor = values.get("advisor") if isinstance(values.get("advisor"), str) else None
            country = values.get("country") if isinstance(values.get("country"), str) else None
            deal_id = synthesize_deal_id(title, advisor, country)

        values["deal_id"] = deal_id
        return values

    @field_validator("deal_id", "title")
    @classmethod
    def _require_text(cls, value: str) -> str:
        value = normalize_whitespace(value)
        if not value:
            raise ValueError("must be a non-empty string")
        return value

    @field_validator(*TEXT_FIELDS)
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator(*AMOUNT_FIELDS, mode="before")
    @classmethod
    def _normalize_amount(cls, value: Any) -> Optional[float]:
        if value is None:
            return None
        if isinstance(value, (bool, list, dict)):
            raise ValueError("amount must be a number, a string, or null")
        return parse_amount_to_thousands(value)

    @field_validator("published_at", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[datetime.date]:
        if value is None:
            return None
        if not isinstance(value, (str, datetime.date)):
            raise ValueError("published_at must be a date string or null")
        return parse_published_date(value)

    @property
    def has_synthetic_key(self) -> bool:
        return self.deal_id.startswith(SYNTHETIC_KEY_PREFIX)

    def range_warnings(self) -> List[str]:
        """Inconsistencies worth reporting (min above max)."""
        warnings = []
        for label, low, high in (
            ("ebitda", self.ebitda_min, self.ebitda_max),
            ("revenue", self.revenue_min, self.revenue_max),
        ):
            if low is not None and high is not None and low > high:
                warnings.append(
                    f"deal {self.deal_id}: {label}_min ({low}) is above {label}_max ({high})"
                )
        return warnings


class ExtractionResult(BaseModel):
    """
    Validated output of one extraction.

    Attributes:
        deals: The extracted deals.
        total_found: Number of deals the page reports (defaults to the
            number extracted).
        has_more_pages: Whether the board paginates beyond this page.
        warnings: Non-fatal remarks from the model and from validation.
        tokens_used: Tokens the extraction request consumed (set by the
            extractor, never read from the model output).
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    deals: List[DealRecord] = Field(default_factory=list)
    total_found: int = 0
    has_more_pages: bool = False
    warnings: List[str] = Field(default_factory=list)
    tokens_used: int = Field(default=0, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _apply_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("extraction output must be a JSON object")

        values = dict(data)
        values.pop("tokens_used", None)
        if "deals" not in values:
            raise ValueError("extraction output has no 'deals' list")
        if values["deals"] is None:
            values["deals"] = []
        if not isinstance(values["deals"], list):
            raise ValueError("'deals' must be a list")

        if values.get("total_found") is None:
            values["total_found"] = len(values["deals"])
        if values.get("has_more_pages") is None:
            values["has_more_pages"] = False

        warnings = values.get("warnings") or []
        if not isinstance(warnings, list):
            warnings = [warnings]
        values["warnings"] = [str(w) for w in warnings if w is not None]
        return values
