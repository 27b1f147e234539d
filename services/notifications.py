"""
Notification rules: parsing, matching and dispatch.

A rule matches a listing when every criterion it sets holds; unset criteria
match anything. Dispatch failures are logged and swallowed so listing
creation is never undone by a notification problem.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field, validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import NotFoundError, NotificationDispatchError, ValidationError
from ingestion.extractors.llm_client import LLMClient
from ingestion.extractors.llm_extractor import strip_code_fences
from ingestion.extractors.prompts import build_rule_parser_prompt
from models.base import Intent, ListingStatus, NotifyChannel
from models.listing import Listing
from models.notification import NotificationRule
from services.reference_data import ReferenceDataProvider

logger = logging.getLogger(__name__)


# ============================================================================
# Matching
# ============================================================================

def rule_matches(rule: NotificationRule, listing: Listing) -> bool:
    """AND of all criteria set on the rule."""
    if rule.parsed_intent is not None and rule.parsed_intent != listing.intent:
        return False

    keywords = [k for k in (rule.parsed_keywords or []) if k and k.strip()]
    if keywords:
        haystack = f"{listing.item_description or ''} {listing.part_number or ''}".lower()
        if not any(k.strip().lower() in haystack for k in keywords):
            return False

    category_ids = rule.parsed_category_ids or []
    if category_ids and listing.category_id not in category_ids:
        return False

    if rule.parsed_price_min is not None or rule.parsed_price_max is not None:
        if listing.price is None:
            return False
        if rule.parsed_price_min is not None and listing.price < rule.parsed_price_min:
            return False
        if rule.parsed_price_max is not None and listing.price > rule.parsed_price_max:
            return False

    return True


def listing_payload(listing: Listing) -> Dict[str, Any]:
    return {
        "id": listing.id,
        "intent": listing.intent.value if isinstance(listing.intent, Intent) else listing.intent,
        "description": listing.item_description,
        "part_number": listing.part_number,
        "quantity": listing.quantity,
        "price": listing.price,
        "currency": listing.price_currency,
        "price_usd": listing.price_usd,
        "category_id": listing.category_id,
        "sender_name": listing.sender_name,
        "created_at": listing.created_at.isoformat() if listing.created_at else None,
    }


# ============================================================================
# Dispatch
# ============================================================================

class HttpNotificationDispatcher:
    """
    Deliver rule matches.

    webhook: POST JSON to the rule's target (or the default URL) with
    bounded timeout and retry with exponential backoff.
    log: write the match to the application log.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.http_client = http_client
        self.timeout = timeout if timeout is not None else settings.NOTIFY_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.RETRY_DELAY_SECONDS

    async def send(self, rule: NotificationRule, listing: Listing):
        payload = {
            "rule_id": rule.id,
            "rule_text": rule.rule_text,
            "owner": rule.owner,
            "listing": listing_payload(listing),
        }

        if rule.notify_channel == NotifyChannel.LOG:
            logger.info(f"Notification for rule {rule.id} ({rule.owner}): {json.dumps(payload, default=str)}")
            return

        url = rule.notify_target or settings.NOTIFY_DEFAULT_WEBHOOK_URL
        if not url:
            raise NotificationDispatchError(
                "No webhook target configured",
                context={"rule_id": rule.id}
            )

        if self.http_client is not None:
            await self._post_with_retry(self.http_client, url, payload, rule.id)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                await self._post_with_retry(client, url, payload, rule.id)

    async def _post_with_retry(self, client: httpx.AsyncClient, url: str, payload: Dict[str, Any], rule_id: int):
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                response = await client.post(url, json=payload, timeout=self.timeout)
                if response.status_code < 400:
                    return
                if response.status_code < 500 and response.status_code != 429:
                    raise NotificationDispatchError(
                        f"Notification webhook rejected payload with {response.status_code}",
                        context={"rule_id": rule_id, "url": url, "status_code": response.status_code}
                    )
                last_exception = httpx.HTTPStatusError(
                    f"HTTP {response.status_code}", request=response.request, response=response
                )
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                last_exception = e

            if attempt < self.max_retries - 1:
                delay = self.retry_delay * (2 ** attempt)
                logger.warning(f"Notification to {url} failed, retrying in {delay}s")
                await asyncio.sleep(delay)

        raise NotificationDispatchError(
            f"Notification webhook failed after {self.max_retries} attempts",
            context={"rule_id": rule_id, "url": url},
            original_exception=last_exception
        )


class NotificationMatcher:
    def __init__(self, db_session: AsyncSession, dispatcher):
        self.db = db_session
        self.dispatcher = dispatcher

    async def match_and_dispatch(self, listing: Listing) -> List[int]:
        """
        Dispatch every active rule matching an active listing.

        Returns the ids of rules that were delivered successfully.
        """
        if listing.status != ListingStatus.ACTIVE:
            return []

        result = await self.db.execute(
            select(NotificationRule).where(NotificationRule.is_active.is_(True)).order_by(NotificationRule.id)
        )
        rules = result.scalars().all()

        delivered = []
        for rule in rules:
            if not rule_matches(rule, listing):
                continue
            try:
                await self.dispatcher.send(rule, listing)
            except Exception as e:
                logger.error(f"Notification dispatch failed for rule {rule.id}, listing {listing.id}: {e}")
                continue
            rule.last_triggered = datetime.utcnow()
            delivered.append(rule.id)

        if delivered:
            await self.db.commit()
            logger.info(f"Listing {listing.id} matched rules {delivered}")
        return delivered


# ============================================================================
# Rule parsing and management
# ============================================================================

class ParsedRule(BaseModel):
    intent: Optional[Intent] = None
    keywords: List[str] = Field(default_factory=list)
    category_names: List[str] = Field(default_factory=list)
    price_min: Optional[float] = None
    price_max: Optional[float] = None

    @validator("intent", pre=True)
    def coerce_intent(cls, v):
        if v is None or isinstance(v, Intent):
            return v
        try:
            intent = Intent(str(v).strip().lower())
        except ValueError:
            return None
        return None if intent == Intent.UNKNOWN else intent

    @validator("keywords", "category_names", pre=True)
    def clean_list(cls, v):
        return [str(x).strip() for x in (v or []) if x is not None and str(x).strip()]

    @validator("price_min", "price_max", pre=True)
    def coerce_price(cls, v):
        try:
            return float(v) if v not in (None, "") else None
        except (TypeError, ValueError):
            return None


class RuleParser:
    """Natural-language rule text -> ParsedRule; failures give an empty rule."""

    def __init__(self, llm_client: LLMClient, reference: ReferenceDataProvider):
        self.llm = llm_client
        self.reference = reference

    async def parse(self, db: AsyncSession, rule_text: str) -> ParsedRule:
        try:
            system_prompt = build_rule_parser_prompt(await self.reference.categories(db))
            content = await self.llm.complete_json(system_prompt, rule_text)
            payload = json.loads(strip_code_fences(content))
            if not isinstance(payload, dict):
                raise ValueError("rule parse response is not an object")
            return ParsedRule.model_validate(payload)
        except Exception as e:
            logger.warning(f"Rule parsing failed, storing empty criteria: {e}")
            return ParsedRule()


class NotificationRuleService:
    def __init__(self, db_session: AsyncSession, parser: RuleParser, reference: ReferenceDataProvider):
        self.db = db_session
        self.parser = parser
        self.reference = reference

    async def create(
        self,
        owner: str,
        rule_text: str,
        notify_channel: NotifyChannel = NotifyChannel.LOG,
        notify_target: Optional[str] = None,
    ) -> NotificationRule:
        if not rule_text or not rule_text.strip():
            raise ValidationError("Rule text is required", context={"field_name": "rule_text"})

        parsed = await self.parser.parse(self.db, rule_text)
        category_ids = []
        for name in parsed.category_names:
            category_id = await self.reference.resolve_category(self.db, name)
            if category_id is not None and category_id not in category_ids:
                category_ids.append(category_id)

        rule = NotificationRule(
            owner=owner,
            rule_text=rule_text.strip(),
            parsed_intent=parsed.intent,
            parsed_keywords=parsed.keywords or None,
            parsed_category_ids=category_ids or None,
            parsed_price_min=parsed.price_min,
            parsed_price_max=parsed.price_max,
            notify_channel=notify_channel,
            notify_target=notify_target,
            is_active=True,
        )
        self.db.add(rule)
        await self.db.commit()
        logger.info(f"Created notification rule {rule.id} for {owner}")
        return rule

    async def get(self, rule_id: int) -> NotificationRule:
        rule = await self.db.get(NotificationRule, rule_id)
        if rule is None:
            raise NotFoundError(
                f"Notification rule {rule_id} not found",
                context={"entity": "notification_rules", "entity_id": rule_id}
            )
        return rule

    async def list(self, owner: Optional[str] = None, page: int = 1, page_size: int = 50) -> Tuple[List[NotificationRule], int]:
        query = select(NotificationRule)
        count_query = select(func.count()).select_from(NotificationRule)
        if owner:
            query = query.where(NotificationRule.owner == owner)
            count_query = count_query.where(NotificationRule.owner == owner)
        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(NotificationRule.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        )
        return list(result.scalars().all()), total

    async def set_active(self, rule_id: int, is_active: bool) -> NotificationRule:
        rule = await self.get(rule_id)
        rule.is_active = is_active
        await self.db.commit()
        return rule

    async def delete(self, rule_id: int):
        rule = await self.get(rule_id)
        await self.db.delete(rule)
        await self.db.commit()
        logger.info(f"Deleted notification rule {rule_id}")
