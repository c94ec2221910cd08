"""
Product Comparison — Core Pydantic Models
"""
from __future__ import annotations
import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# ============================================================
# Enums
# ============================================================

class Orientation(str, Enum):
    POSITIVE = "positive"   # higher raw value is better
    NEGATIVE = "negative"   # lower raw value is better (e.g. price)

# ============================================================
# Spec & Candidate Models
# ============================================================

class SpecDefinition(BaseModel):
    """One comparable attribute of a category."""
    model_config = ConfigDict(frozen=True)

    key: str
    display_name: str
    unit: str = ""
    orientation: Orientation = Orientation.POSITIVE
    icon_key: str = ""

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Optional[SpecDefinition]:
        """Build from a stored category spec record.

        Stored records use ``eng_name`` / ``kor_name`` / ``is_positive``;
        records already in this shape are accepted as well. Returns None
        when the record carries no key.
        """
        key = record.get("eng_name") or record.get("key")
        if not key:
            return None
        key = str(key)
        if "is_positive" in record:
            positive = record.get("is_positive") is not False
        else:
            positive = record.get("orientation", Orientation.POSITIVE.value) != Orientation.NEGATIVE.value
        return cls(
            key=key,
            display_name=str(record.get("kor_name") or record.get("display_name") or key),
            unit=str(record.get("unit") or ""),
            orientation=Orientation.POSITIVE if positive else Orientation.NEGATIVE,
            icon_key=str(record.get("icon_key") or key),
        )

class VariantRecord(BaseModel):
    """A product variant row joined with its product and maker, as stored."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    variant_name: Optional[str] = None
    price: Optional[float] = None
    option_specs: dict[str, Any] = Field(default_factory=dict)
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    image_url: Optional[str] = None
    common_specs: dict[str, Any] = Field(default_factory=dict)
    maker_name: Optional[str] = None

    @field_validator("option_specs", "common_specs", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v

class Candidate(BaseModel):
    """One variant under evaluation, attributes already merged."""
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    variant_label: Optional[str] = None
    brand: str = "Unknown"
    image_url: Optional[str] = None
    price: Optional[float] = None
    attributes: dict[str, Any] = Field(default_factory=dict)

class ScoredCandidate(Candidate):
    score: int = Field(ge=0, le=100)

# ============================================================
# API Request/Response Models
# ============================================================

class CalculateRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    candidate_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("candidateIds", "selectedVariantIds", "candidate_ids"),
    )
    weights: dict[str, float] = Field(default_factory=dict)
    category_id: str = Field(validation_alias=AliasChoices("categoryId", "category_id"))

    @field_validator("weights")
    @classmethod
    def validate_weights(cls, v: dict[str, float]) -> dict[str, float]:
        for key, w in v.items():
            if not math.isfinite(w) or w < 0:
                raise ValueError(f"weight for '{key}' must be a finite number >= 0")
        return v

class ComparisonResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ranked_data: list[ScoredCandidate] = Field(alias="rankedData")
    spec_definitions: list[SpecDefinition] = Field(alias="specDefinitions")

class HistoryScore(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    variant_id: str
    score: int

class HistoryRecord(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    owner_user_id: str
    category_id: str
    weights: dict[str, float] = Field(default_factory=dict)
    created_at: datetime
    scores: list[HistoryScore] = Field(default_factory=list)

class HistorySummary(BaseModel):
    id: str
    category_id: str
    created_at: datetime
    weights: dict[str, float] = Field(default_factory=dict)

class HistoryListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[HistorySummary] = Field(alias="list")
    total_count: int = Field(alias="totalCount")
    page: int = 1
    limit: int = 10

class HistoryDetail(ComparisonResult):
    id: str
    category_id: str
    weights: dict[str, float] = Field(default_factory=dict)
    created_at: datetime

# ============================================================
# Catalogue Models (pass-through lookups)
# ============================================================

class Category(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    slug: Optional[str] = None
    name: str
    specs: list[dict[str, Any]] = Field(default_factory=list)

class Maker(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="allow")

    id: str
    name: str

class ProductSummary(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    name: str
    brand: str = "Unknown"
    image_url: Optional[str] = None
    specs: dict[str, Any] = Field(default_factory=dict)

class VariantSummary(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    variant_name: Optional[str] = None
    price: Optional[float] = None
    option_specs: dict[str, Any] = Field(default_factory=dict)

class HealthResponse(BaseModel):
    status: str
    components: dict[str, dict]
    version: str
    uptime_seconds: int
    requests_served: int = 0
