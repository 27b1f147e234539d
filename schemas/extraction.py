"""
Structured output of the extraction engine with lenient field coercion
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Any
from models.base import Intent
import re

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def _parse_number(value: Any) -> Optional[float]:
    """Accept 12, "12", "$1,200.50"; anything else becomes None"""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER_RE.search(value.replace(",", ""))
        if match:
            return float(match.group())
    return None


class ExtractedItem(BaseModel):
    """One item mentioned in a trade message"""
    description: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    part_number: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    condition: Optional[str] = None

    @validator("quantity", "price", pre=True)
    def coerce_number(cls, v):
        return _parse_number(v)

    @validator("description", "category", "manufacturer", "part_number", "unit", "condition", pre=True)
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @validator("currency", pre=True)
    def normalize_currency(cls, v):
        if v is None:
            return None
        v = str(v).strip().upper()
        if v == "$":
            return "USD"
        return v[:3] or None


class ExtractionResult(BaseModel):
    """
    Result of one extraction call.

    A failed call is represented as intent=unknown, no items, confidence 0.0
    and the failure text in ``error``; it is never raised.
    """
    intent: Intent = Intent.UNKNOWN
    items: List[ExtractedItem] = Field(default_factory=list)
    unknown_terms: List[str] = Field(default_factory=list)
    confidence: float = 0.0
    error: Optional[str] = None

    @validator("intent", pre=True)
    def coerce_intent(cls, v):
        if isinstance(v, Intent):
            return v
        try:
            return Intent(str(v or "").strip().lower())
        except ValueError:
            return Intent.UNKNOWN

    @validator("confidence", pre=True)
    def clamp_confidence(cls, v):
        value = _parse_number(v)
        if value is None:
            return 0.0
        return min(1.0, max(0.0, value))

    @validator("items", pre=True)
    def none_to_empty(cls, v):
        return v or []

    @validator("unknown_terms", pre=True)
    def clean_terms(cls, v):
        seen = []
        for term in v or []:
            if term is None:
                continue
            term = str(term).strip()
            if term and term.upper() not in (s.upper() for s in seen):
                seen.append(term)
        return seen

    @classmethod
    def failed(cls, error: str) -> "ExtractionResult":
        return cls(intent=Intent.UNKNOWN, items=[], unknown_terms=[], confidence=0.0, error=error)

    @property
    def is_failure(self) -> bool:
        return self.error is not None
