"""
Tagged records stored on review queue items.

``suggested_values`` is discriminated by ``reason`` and ``resolution`` by
``outcome`` so readers never have to guess the shape of the JSON column.
"""

from pydantic import BaseModel, Field, TypeAdapter
from typing import Optional, Dict, Any, Union, Literal, Annotated
from schemas.extraction import ExtractionResult
from models.base import Intent


# ============================================================================
# Suggested values
# ============================================================================

class _Suggestion(BaseModel):
    extraction: ExtractionResult
    item_index: Optional[int] = None
    hint: Optional[str] = None


class LowConfidenceSuggestion(_Suggestion):
    """Extraction between the review and auto thresholds, draft listing attached"""
    reason: Literal["low_confidence"] = "low_confidence"


class UnknownIntentSuggestion(_Suggestion):
    """Confident extraction whose intent could not be classified"""
    reason: Literal["unknown_intent"] = "unknown_intent"


class BelowThresholdSuggestion(_Suggestion):
    """Extraction below the review threshold, no listing attached"""
    reason: Literal["below_threshold"] = "below_threshold"


class NoItemsSuggestion(_Suggestion):
    """Extraction returned no items, no listing attached"""
    reason: Literal["no_items"] = "no_items"


SuggestedValues = Annotated[
    Union[LowConfidenceSuggestion, UnknownIntentSuggestion, BelowThresholdSuggestion, NoItemsSuggestion],
    Field(discriminator="reason"),
]

_suggestion_adapter = TypeAdapter(SuggestedValues)


def load_suggestion(data: Optional[Dict[str, Any]]):
    if not data:
        return None
    return _suggestion_adapter.validate_python(data)


def dump_suggestion(suggestion) -> Dict[str, Any]:
    return suggestion.model_dump(mode="json")


# ============================================================================
# Resolution
# ============================================================================

class ResolvedResolution(BaseModel):
    outcome: Literal["resolved"] = "resolved"
    listing_id: int
    corrections: Dict[str, Any] = Field(default_factory=dict)


class SkippedResolution(BaseModel):
    outcome: Literal["skipped"] = "skipped"
    note: Optional[str] = None


Resolution = Annotated[
    Union[ResolvedResolution, SkippedResolution],
    Field(discriminator="outcome"),
]

_resolution_adapter = TypeAdapter(Resolution)


def load_resolution(data: Optional[Dict[str, Any]]):
    if not data:
        return None
    return _resolution_adapter.validate_python(data)


# ============================================================================
# Reviewer input
# ============================================================================

class ReviewCorrections(BaseModel):
    """Reviewer corrections; only non-null fields are applied"""
    item_description: Optional[str] = None
    category_name: Optional[str] = None
    manufacturer_name: Optional[str] = None
    part_number: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    price: Optional[float] = None
    price_currency: Optional[str] = None
    condition: Optional[str] = None
    intent: Optional[Intent] = None

    def provided(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
