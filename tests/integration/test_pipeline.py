"""
Integration tests for the per-message pipeline: routing bands, failure
isolation and notification.
"""

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy import select
from core.exceptions import ServiceUnavailableError
from ingestion.loaders.confidence_router import ConfidenceRouter
from ingestion.runner import PipelineRunner
from models.base import Intent, ListingStatus, NotifyChannel, ReviewReason, ReviewStatus
from models.jargon import JargonEntry
from models.listing import Listing
from models.notification import NotificationRule
from models.raw_message import RawMessage
from models.review import ReviewQueueItem
from schemas.review import load_suggestion


async def archive_and_process(db_session, context, message):
    raw = (await context.archive(db_session).archive(message)).raw_message
    result = await PipelineRunner(db_session, context).process(raw.id)
    return raw.id, result


async def listings_for(db_session, raw_id):
    result = await db_session.execute(select(Listing).where(Listing.raw_message_id == raw_id))
    return list(result.scalars().all())


async def reviews_for(db_session, raw_id):
    result = await db_session.execute(select(ReviewQueueItem).where(ReviewQueueItem.raw_message_id == raw_id))
    return list(result.scalars().all())


class TestConfidenceBands:

    @pytest.mark.asyncio
    async def test_high_confidence_auto_accepts(self, seeded, context, fake_llm, make_extraction, make_item, make_inbound):
        db_session = seeded
        fake_llm.queue(make_extraction("sell", 0.8, [make_item()]))

        raw_id, result = await archive_and_process(db_session, context, make_inbound("m1", "WTS 316 SS pipe"))

        assert result["status"] == "success"
        assert result["outcome"] == "auto_accepted"
        listings = await listings_for(db_session, raw_id)
        assert len(listings) == 1
        assert listings[0].status == ListingStatus.ACTIVE
        assert listings[0].needs_human_review is False
        assert await reviews_for(db_session, raw_id) == []

    @pytest.mark.asyncio
    async def test_medium_confidence_queues_with_draft(self, seeded, context, fake_llm, make_extraction, make_item, make_inbound):
        db_session = seeded
        fake_llm.queue(make_extraction("sell", 0.65, [make_item()]))

        raw_id, result = await archive_and_process(db_session, context, make_inbound("m2", "316 pipe avail"))

        assert result["outcome"] == "queued_with_draft"
        listings = await listings_for(db_session, raw_id)
        reviews = await reviews_for(db_session, raw_id)
        assert len(listings) == 1
        assert listings[0].status == ListingStatus.PENDING_REVIEW
        assert listings[0].needs_human_review is True
        assert len(reviews) == 1
        assert reviews[0].listing_id == listings[0].id
        assert reviews[0].reason == ReviewReason.LOW_CONFIDENCE
        assert reviews[0].status == ReviewStatus.PENDING
        assert reviews[0].llm_explanation == (
            "Extraction confidence 0.65 is below auto-accept threshold 0.80. Intent: sell"
        )

    @pytest.mark.asyncio
    async def test_low_confidence_queues_without_listing(self, seeded, context, fake_llm, make_extraction, make_item, make_inbound):
        db_session = seeded
        fake_llm.queue(make_extraction("unknown", 0.3, [make_item()]))

        raw_id, result = await archive_and_process(db_session, context, make_inbound("m3", "anyone?"))

        assert result["outcome"] == "queued_without_draft"
        assert await listings_for(db_session, raw_id) == []
        reviews = await reviews_for(db_session, raw_id)
        assert len(reviews) == 1
        assert reviews[0].listing_id is None
        assert reviews[0].reason == ReviewReason.BELOW_THRESHOLD
        suggestion = load_suggestion(reviews[0].suggested_values)
        assert suggestion.extraction.confidence == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_high_confidence_unknown_intent_needs_review(self, seeded, context, fake_llm, make_extraction, make_item, make_inbound):
        db_session = seeded
        fake_llm.queue(make_extraction("unknown", 0.9, [make_item()]))

        raw_id, result = await archive_and_process(db_session, context, make_inbound("m4", "316 pipe"))

        assert result["outcome"] == "queued_with_draft"
        reviews = await reviews_for(db_session, raw_id)
        assert reviews[0].reason == ReviewReason.UNKNOWN_INTENT

    @pytest.mark.asyncio
    async def test_no_items_queues_without_listing(self, seeded, context, fake_llm, make_extraction, make_inbound):
        db_session = seeded
        fake_llm.queue(make_extraction("want", 0.85, []))

        raw_id, result = await archive_and_process(db_session, context, make_inbound("m5", "looking for stuff"))

        assert result["outcome"] == "queued_without_draft"
        reviews = await reviews_for(db_session, raw_id)
        assert reviews[0].reason == ReviewReason.NO_ITEMS

    @pytest.mark.asyncio
    async def test_one_listing_per_item(self, seeded, context, fake_llm, make_extraction, make_item, make_inbound):
        db_session = seeded
        fake_llm.queue(make_extraction("sell", 0.9, [
            make_item(part_number="A-1"),
            make_item(part_number="B-2", description="2in ball valve", category="Valves"),
        ]))

        raw_id, result = await archive_and_process(db_session, context, make_inbound("m6", "WTS pipe and valves"))

        assert result["listings_created"] == 2
        assert sorted(l.part_number for l in await listings_for(db_session, raw_id)) == ["A-1", "B-2"]


@pytest.mark.asyncio
async def test_end_to_end_sell_listing_triggers_rule(seeded, context, fake_llm, fake_dispatcher, make_extraction, make_item, make_inbound):
    db_session = seeded
    rule = NotificationRule(
        owner="buyer@example.com",
        rule_text="SS pipe under $15/ft",
        parsed_keywords=["SS", "pipe"],
        parsed_price_max=15,
        notify_channel=NotifyChannel.WEBHOOK,
        notify_target="https://hooks.test/buyer",
        is_active=True,
    )
    db_session.add(rule)
    await db_session.commit()

    fake_llm.queue(make_extraction("sell", 0.92, [make_item(price=12, unit="ft")]))

    raw_id, result = await archive_and_process(
        db_session, context, make_inbound("e2e-1", "WTS 500ft 316 SS pipe $12/ft")
    )

    listing = (await listings_for(db_session, raw_id))[0]
    assert listing.intent == Intent.SELL
    assert listing.status == ListingStatus.ACTIVE
    assert listing.price == 12.0
    assert listing.price_usd == 12.0
    assert listing.category_id is not None
    assert listing.unit_id is not None
    assert listing.sender_phone == "+971500000001"

    assert fake_dispatcher.sent == [(rule.id, listing.id)]
    assert result["notifications_sent"] == 1
    await db_session.refresh(rule)
    assert rule.last_triggered is not None

    # Verified jargon was expanded before extraction
    assert "stainless steel (SS)" in fake_llm.prompts[0][1]

    raw = await db_session.get(RawMessage, raw_id)
    assert raw.processed is True
    assert raw.processing_error is None
    assert raw.embedding == [0.1, 0.2, 0.3]


@pytest.mark.asyncio
async def test_non_usd_price_converted(seeded, context, fake_llm, make_extraction, make_item, make_inbound):
    db_session = seeded
    fake_llm.queue(make_extraction("sell", 0.9, [make_item(price=100, currency="EUR")]))

    raw_id, _ = await archive_and_process(db_session, context, make_inbound("eur-1", "WTS pipe 100 EUR"))

    listing = (await listings_for(db_session, raw_id))[0]
    assert listing.price_currency == "EUR"
    assert listing.exchange_rate_to_usd == pytest.approx(1.1)
    assert listing.price_usd == pytest.approx(110.0)


@pytest.mark.asyncio
async def test_dispatch_failure_keeps_listing(seeded, context, fake_llm, fake_dispatcher, make_extraction, make_item, make_inbound):
    db_session = seeded
    rule = NotificationRule(owner="x", rule_text="all", is_active=True, notify_channel=NotifyChannel.WEBHOOK)
    db_session.add(rule)
    await db_session.commit()
    fake_dispatcher.fail = True
    fake_llm.queue(make_extraction("sell", 0.95, [make_item()]))

    raw_id, result = await archive_and_process(db_session, context, make_inbound("d1", "WTS pipe"))

    assert result["status"] == "success"
    assert result["notifications_sent"] == 0
    listing = (await listings_for(db_session, raw_id))[0]
    assert listing.status == ListingStatus.ACTIVE
    await db_session.refresh(rule)
    assert rule.last_triggered is None
    raw = await db_session.get(RawMessage, raw_id)
    assert raw.processed is True


@pytest.mark.asyncio
async def test_extraction_failure_routes_as_zero_confidence(seeded, context, make_inbound):
    db_session = seeded
    # Nothing queued: the fake model raises

    raw_id, result = await archive_and_process(db_session, context, make_inbound("f1", "WTS pipe"))

    assert result["status"] == "success"
    assert result["outcome"] == "queued_without_draft"
    assert await listings_for(db_session, raw_id) == []
    reviews = await reviews_for(db_session, raw_id)
    assert reviews[0].reason == ReviewReason.BELOW_THRESHOLD
    assert "Extraction error" in reviews[0].llm_explanation

    raw = await db_session.get(RawMessage, raw_id)
    assert raw.processed is True
    assert raw.processing_error.startswith("Extraction failed:")


@pytest.mark.asyncio
async def test_embedding_failure_is_not_fatal(seeded, context, fake_llm, make_extraction, make_item, make_inbound):
    db_session = seeded
    fake_llm.embed_error = ServiceUnavailableError("embedding down")
    fake_llm.queue(make_extraction("sell", 0.9, [make_item()]))

    raw_id, result = await archive_and_process(db_session, context, make_inbound("emb1", "WTS pipe"))

    assert result["status"] == "success"
    assert result["error_details"][0]["phase"] == "embedding"
    assert len(await listings_for(db_session, raw_id)) == 1
    raw = await db_session.get(RawMessage, raw_id)
    assert raw.embedding is None
    assert raw.processed is True


@pytest.mark.asyncio
async def test_unexpected_stage_failure_recorded(seeded, context, fake_llm, make_extraction, make_item, make_inbound):
    db_session = seeded
    fake_llm.queue(make_extraction("sell", 0.9, [make_item()]))

    with patch.object(ConfidenceRouter, "route", new=AsyncMock(side_effect=RuntimeError("router exploded"))):
        raw_id, result = await archive_and_process(db_session, context, make_inbound("x1", "WTS pipe"))

    assert result["status"] == "failed"
    assert result["error_type"] == "RuntimeError"
    raw = await db_session.get(RawMessage, raw_id)
    assert raw.processed is True
    assert raw.processing_error == "RuntimeError: router exploded"


@pytest.mark.asyncio
async def test_processed_message_is_skipped(seeded, context, fake_llm, make_extraction, make_item, make_inbound):
    db_session = seeded
    fake_llm.queue(make_extraction("sell", 0.9, [make_item()]))
    raw_id, _ = await archive_and_process(db_session, context, make_inbound("s1", "WTS pipe"))

    result = await PipelineRunner(db_session, context).process(raw_id)

    assert result["status"] == "skipped"
    assert result["reason"] == "already_processed"
    assert len(await listings_for(db_session, raw_id)) == 1


@pytest.mark.asyncio
async def test_missing_message_is_skipped(db_session, context):
    result = await PipelineRunner(db_session, context).process(9999)
    assert result["status"] == "skipped"
    assert result["reason"] == "not_found"


@pytest.mark.asyncio
async def test_empty_body_marked_processed(seeded, context, fake_llm, make_inbound):
    db_session = seeded

    raw_id, result = await archive_and_process(db_session, context, make_inbound("e1", "   "))

    assert result["outcome"] == "empty_body"
    assert fake_llm.prompts == []
    raw = await db_session.get(RawMessage, raw_id)
    assert raw.processed is True


@pytest.mark.asyncio
async def test_sold_reply_marks_quoted_listing_sold(seeded, context, fake_llm, make_extraction, make_item, make_inbound):
    db_session = seeded
    fake_llm.queue(make_extraction("sell", 0.9, [make_item()]))
    original_id, _ = await archive_and_process(db_session, context, make_inbound("orig-1", "WTS 316 SS pipe"))

    reply_id, result = await archive_and_process(
        db_session,
        context,
        make_inbound("reply-1", "Sold!", quotedExternalId="orig-1", senderId="+971500000099", senderName="Bilal"),
    )

    assert result["outcome"] == "sold_reply"
    assert result["listings_sold"] == 1
    listing = (await listings_for(db_session, original_id))[0]
    assert listing.status == ListingStatus.SOLD
    assert listing.sold_message_id == reply_id
    assert listing.buyer_name == "Bilal"
    assert listing.sold_at is not None


@pytest.mark.asyncio
async def test_unknown_terms_are_learned(seeded, context, fake_llm, make_extraction, make_item, make_inbound):
    db_session = seeded
    fake_llm.queue(make_extraction("sell", 0.9, [make_item()], unknown_terms=["FBE", "SS"]))

    _, result = await archive_and_process(db_session, context, make_inbound("j1", "WTS FBE coated SS pipe"))

    assert result["terms_learned"] == 1
    entries = (await db_session.execute(select(JargonEntry).order_by(JargonEntry.acronym))).scalars().all()
    by_acronym = {e.acronym: e for e in entries}
    assert by_acronym["FBE"].verified is False
    assert by_acronym["FBE"].confidence == 0.5
    assert by_acronym["SS"].usage_count == 1
