"""
Map extracted items onto Listing rows with normalized references
"""

from typing import Dict, Any
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from core.exceptions import ValidationError
from models.base import Intent, ListingStatus
from models.listing import Listing
from models.raw_message import RawMessage
from schemas.extraction import ExtractedItem, ExtractionResult
from schemas.review import ReviewCorrections
from services.exchange_rates import ExchangeRateService
from services.reference_data import (
    ReferenceDataProvider, CATEGORIES, MANUFACTURERS, UNITS, CONDITIONS
)
import logging

logger = logging.getLogger(__name__)

DESCRIPTION_FALLBACK_CHARS = 500


class ListingNormalizer:
    """
    Normalize extracted items into listing fields.

    Handles:
    - Reference resolution (category, manufacturer, unit, condition)
    - Currency normalization and USD conversion
    - Description fallback to the message body
    - Selective overwrite of existing listings
    """

    def __init__(
        self,
        db_session: AsyncSession,
        reference: ReferenceDataProvider,
        exchange_rates: ExchangeRateService,
    ):
        self.db = db_session
        self.reference = reference
        self.exchange_rates = exchange_rates

    async def build_listing(
        self,
        raw: RawMessage,
        item: ExtractedItem,
        extraction: ExtractionResult,
        status: ListingStatus,
        expiry_days: int,
    ) -> Listing:
        """Create (but do not add) a Listing for one extracted item."""
        listing = Listing(
            raw_message_id=raw.id,
            conversation_id=raw.conversation_id,
            intent=extraction.intent,
            confidence_score=extraction.confidence,
            item_description=self.fallback_description(raw),
            original_text=raw.body,
            sender_name=raw.sender_name,
            sender_phone=raw.sender_id,
            status=status,
            needs_human_review=status == ListingStatus.PENDING_REVIEW,
            expires_at=datetime.utcnow() + timedelta(days=expiry_days),
        )
        await self.apply_item(listing, item)
        return listing

    @staticmethod
    def fallback_description(raw: RawMessage) -> str:
        body = (raw.body or "").strip()
        return body[:DESCRIPTION_FALLBACK_CHARS] or "(no description)"

    async def apply_item(self, listing: Listing, item: ExtractedItem, strict: bool = False) -> Dict[str, Any]:
        """
        Copy the non-null fields of ``item`` onto ``listing``.

        Reference names that do not resolve are skipped, or rejected with
        ValidationError when ``strict`` is set. Returns the changed columns.
        """
        changes: Dict[str, Any] = {}

        if item.description:
            changes["item_description"] = item.description

        resolvers = (
            ("category", "category_id", self.reference.resolve_category),
            ("manufacturer", "manufacturer_id", self.reference.resolve_manufacturer),
            ("unit", "unit_id", self.reference.resolve_unit),
            ("condition", "condition_id", self.reference.resolve_condition),
        )
        for field, column, resolve in resolvers:
            value = getattr(item, field)
            if value is None:
                continue
            ref_id = await resolve(self.db, value)
            if ref_id is None:
                if strict:
                    raise ValidationError(
                        f"Unknown {field}: {value}",
                        context={"field_name": field, "field_value": value}
                    )
                logger.debug(f"Unresolved {field} '{value}' left empty")
                continue
            changes[column] = ref_id

        if item.part_number:
            changes["part_number"] = item.part_number
        if item.quantity is not None:
            changes["quantity"] = item.quantity
        if item.price is not None:
            changes["price"] = item.price
        if item.currency:
            changes["price_currency"] = item.currency.upper()

        for column, value in changes.items():
            setattr(listing, column, value)

        if "price" in changes or "price_currency" in changes:
            await self.refresh_price(listing)

        return changes

    async def apply_corrections(self, listing: Listing, corrections: ReviewCorrections) -> Dict[str, Any]:
        """Apply reviewer corrections; unknown reference names are rejected."""
        item = ExtractedItem(
            description=corrections.item_description,
            category=corrections.category_name,
            manufacturer=corrections.manufacturer_name,
            part_number=corrections.part_number,
            quantity=corrections.quantity,
            unit=corrections.unit,
            price=corrections.price,
            currency=corrections.price_currency,
            condition=corrections.condition,
        )
        changes = await self.apply_item(listing, item, strict=True)
        if corrections.intent is not None:
            listing.intent = corrections.intent
            changes["intent"] = corrections.intent.value
        return changes

    async def refresh_price(self, listing: Listing):
        """Recompute exchange_rate_to_usd and price_usd from price and currency."""
        rate, price_usd = await self.exchange_rates.convert(listing.price, listing.price_currency)
        listing.exchange_rate_to_usd = rate
        listing.price_usd = price_usd

    async def snapshot(self, listing: Listing) -> Dict[str, Any]:
        """Current field values with reference ids resolved to names."""
        intent = listing.intent.value if isinstance(listing.intent, Intent) else listing.intent
        return {
            "intent": intent,
            "description": listing.item_description,
            "category": await self.reference.name_for(self.db, CATEGORIES, listing.category_id),
            "manufacturer": await self.reference.name_for(self.db, MANUFACTURERS, listing.manufacturer_id),
            "part_number": listing.part_number,
            "quantity": listing.quantity,
            "unit": await self.reference.name_for(self.db, UNITS, listing.unit_id),
            "price": listing.price,
            "currency": listing.price_currency,
            "condition": await self.reference.name_for(self.db, CONDITIONS, listing.condition_id),
            "confidence": listing.confidence_score,
        }
