"""
API endpoint tests
"""

import hashlib
import hmac
import json
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from unittest.mock import patch
from sqlalchemy import select
from api.dependencies import get_db
from api.main import app
from ingestion.runner import PipelineRunner
from models.audit import AuditLogEntry
from models.listing import Listing
from models.review import ReviewQueueItem


@pytest_asyncio.fixture
async def client(seeded, context):
    """API client bound to the test session and pipeline context"""

    async def override_get_db():
        yield seeded

    app.dependency_overrides[get_db] = override_get_db
    app.state.pipeline_context = context
    app.state.worker_pool = None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    del app.state.pipeline_context
    del app.state.worker_pool


@pytest.fixture
def process(seeded, context, fake_llm, make_inbound):
    """Archive and process one message; returns the raw message id"""

    async def _process(external_id, body, payload):
        fake_llm.queue(payload)
        raw = (await context.archive(seeded).archive(make_inbound(external_id, body))).raw_message
        await PipelineRunner(seeded, context).process(raw.id)
        return raw.id

    return _process


def webhook_body(*messages):
    return {"messages": [
        {
            "externalId": external_id,
            "conversationExternalId": "group-1@g.us",
            "senderId": "+971500000001",
            "senderName": "Ahmed",
            "body": body,
            "sentAtEpochSeconds": 1718000000,
        }
        for external_id, body in messages
    ]}


class TestWebhook:

    @pytest.mark.asyncio
    async def test_archives_and_counts_duplicates(self, client):
        first = await client.post("/webhooks/messages", json=webhook_body(("w1", "WTS pipe"), ("w2", "WTB valves")))
        second = await client.post("/webhooks/messages", json=webhook_body(("w2", "WTB valves"), ("w3", "hi")))

        assert first.status_code == 200
        assert first.json()["received"] == 2
        assert first.json()["archived"] == 2
        assert second.json()["archived"] == 1
        assert second.json()["duplicates"] == 1
        assert "X-Request-ID" in first.headers
        assert first.json()["request_id"] == first.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_invalid_payload(self, client):
        response = await client.post(
            "/webhooks/messages", content=b"not json", headers={"content-type": "application/json"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_blank_external_id_rejected(self, client):
        response = await client.post("/webhooks/messages", json=webhook_body(("  ", "WTS pipe")))

        assert response.status_code == 422
        assert response.json()["error_type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_signature_enforced_when_secret_set(self, client):
        body = json.dumps(webhook_body(("w9", "WTS pipe"))).encode()
        signature = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

        with patch("api.routes.webhook.settings.WEBHOOK_SECRET", "s3cret"):
            missing = await client.post("/webhooks/messages", content=body)
            wrong = await client.post(
                "/webhooks/messages", content=body, headers={"X-Webhook-Signature": "sha256=deadbeef"}
            )
            good = await client.post(
                "/webhooks/messages", content=body, headers={"X-Webhook-Signature": f"sha256={signature}"}
            )

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert good.status_code == 200
        assert good.json()["archived"] == 1


class TestReview:

    @pytest.mark.asyncio
    async def test_list_and_resolve(self, client, seeded, process, make_extraction, make_item):
        await process("rv1", "316 pipe avail", make_extraction("sell", 0.65, [make_item()]))

        listed = await client.get("/review")
        assert listed.status_code == 200
        data = listed.json()
        assert data["pagination"]["total_items"] == 1
        item = data["data"][0]
        assert item["reason"] == "low_confidence"
        assert item["original_text"] == "316 pipe avail"

        resolved = await client.post(
            f"/review/{item['id']}/resolve",
            json={"price": 10},
            headers={"X-Actor": "reviewer@example.com", "X-Forwarded-For": "10.2.3.4"},
        )
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "resolved"
        assert resolved.json()["resolved_by"] == "reviewer@example.com"

        listing = await seeded.get(Listing, item["listing_id"])
        assert listing.price == 10
        audit = (await seeded.execute(select(AuditLogEntry))).scalars().one()
        assert audit.ip_address == "10.2.3.4"

        again = await client.post(f"/review/{item['id']}/resolve")
        assert again.status_code == 409
        assert again.json()["error_type"] == "InvalidStateTransition"

    @pytest.mark.asyncio
    async def test_skip_without_body(self, client, seeded, process, make_extraction, make_item):
        raw_id = await process("rv2", "anyone?", make_extraction("unknown", 0.2, [make_item()]))
        item = (await seeded.execute(
            select(ReviewQueueItem).where(ReviewQueueItem.raw_message_id == raw_id)
        )).scalars().one()

        response = await client.post(f"/review/{item.id}/skip")

        assert response.status_code == 200
        assert response.json()["status"] == "skipped"
        assert response.json()["resolved_by"] == "anonymous"

    @pytest.mark.asyncio
    async def test_assist_failure_is_bad_gateway(self, client, seeded, process, fake_llm, make_extraction, make_item):
        raw_id = await process("rv3", "anyone?", make_extraction("unknown", 0.2, [make_item()]))
        item = (await seeded.execute(
            select(ReviewQueueItem).where(ReviewQueueItem.raw_message_id == raw_id)
        )).scalars().one()
        fake_llm.queue("garbage")

        response = await client.post(f"/review/{item.id}/assist", json={"hint": "it is a sell offer"})

        assert response.status_code == 502
        assert response.json()["error_type"] == "ExternalServiceError"

    @pytest.mark.asyncio
    async def test_missing_item_is_not_found(self, client):
        response = await client.get("/review/9999")

        assert response.status_code == 404
        body = response.json()
        assert body["error_type"] == "NotFoundError"
        assert body["context"]["entity_id"] == 9999
        assert body["request_id"] == response.headers["X-Request-ID"]


class TestListings:

    @pytest.mark.asyncio
    async def test_list_filter_and_cross_posts(self, client, process, make_extraction, make_item):
        await process("ls1", "WTS pipe", make_extraction("sell", 0.9, [make_item(part_number="PN-1")]))
        await process("ls2", "WTS pipe again", make_extraction("sell", 0.9, [make_item(part_number="PN-1")]))
        await process("ls3", "WTB valve", make_extraction("want", 0.9, [make_item(part_number="V-9")]))

        sells = await client.get("/listings", params={"intent": "sell"})
        assert sells.status_code == 200
        assert sells.json()["pagination"]["total_items"] == 2
        assert all(l["cross_post_count"] == 1 for l in sells.json()["data"])

        listing_id = sells.json()["data"][0]["id"]
        cross = await client.get(f"/listings/{listing_id}/cross-posts")
        assert cross.status_code == 200
        assert len(cross.json()) == 1
        assert cross.json()[0]["part_number"] == "PN-1"

        bad_sort = await client.get("/listings", params={"sort_order": "sideways"})
        assert bad_sort.status_code == 422

    @pytest.mark.asyncio
    async def test_retry_and_delete(self, client, process, fake_llm, make_extraction, make_item):
        raw_id = await process("ls4", "WTS pipe", make_extraction("sell", 0.9, [make_item()]))
        listing_id = (await client.get("/listings")).json()["data"][0]["id"]
        fake_llm.queue(make_extraction("sell", 0.95, [{"price": 14}]))

        retried = await client.post(f"/listings/{listing_id}/retry", json={"hint": "price is 14"})
        assert retried.status_code == 200
        assert retried.json()["price"] == 14
        assert retried.json()["raw_message_id"] == raw_id

        deleted = await client.delete(f"/listings/{listing_id}", headers={"X-Actor": "admin"})
        assert deleted.status_code == 200
        assert deleted.json()["status"] == "deleted"
        assert (await client.get("/listings")).json()["pagination"]["total_items"] == 0

    @pytest.mark.asyncio
    async def test_missing_listing(self, client):
        assert (await client.get("/listings/9999")).status_code == 404


class TestJargon:

    @pytest.mark.asyncio
    async def test_create_list_and_verify(self, client, context, seeded):
        created = await client.post("/jargon", json={"acronym": "OBO", "expansion": "or best offer"})
        assert created.status_code == 201
        assert created.json()["verified"] is True

        duplicate = await client.post("/jargon", json={"acronym": "OBO", "expansion": "or best offer"})
        assert duplicate.status_code == 409

        learned = (await context.jargon(seeded).learn(["FBE"]))[0]
        unverified = await client.get("/jargon", params={"verified": "false"})
        assert [e["acronym"] for e in unverified.json()["data"]] == ["FBE"]

        verified = await client.post(f"/jargon/{learned.id}/verify", json={"expansion": "fusion bonded epoxy"})
        assert verified.status_code == 200
        assert verified.json()["expansion"] == "fusion bonded epoxy"
        assert verified.json()["verified"] is True


class TestNotificationRules:

    @pytest.mark.asyncio
    async def test_rule_crud(self, client, fake_llm):
        fake_llm.queue({"intent": "sell", "keywords": ["SS", "pipe"], "category_names": ["Pipe Fittings"], "price_max": 15})

        created = await client.post(
            "/notifications/rules",
            json={"rule_text": "SS pipe for sale under $15/ft"},
            headers={"X-Actor": "buyer@example.com"},
        )
        assert created.status_code == 201
        rule = created.json()
        assert rule["owner"] == "buyer@example.com"
        assert rule["parsed_intent"] == "sell"
        assert rule["parsed_keywords"] == ["SS", "pipe"]
        assert len(rule["parsed_category_ids"]) == 1
        assert rule["parsed_price_max"] == 15
        assert rule["notify_channel"] == "log"

        listed = await client.get("/notifications/rules", params={"owner": "buyer@example.com"})
        assert listed.json()["pagination"]["total_items"] == 1

        paused = await client.patch(f"/notifications/rules/{rule['id']}", json={"is_active": False})
        assert paused.json()["is_active"] is False

        removed = await client.delete(f"/notifications/rules/{rule['id']}")
        assert removed.status_code == 204
        assert (await client.delete(f"/notifications/rules/{rule['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_unparseable_rule_stored_without_criteria(self, client):
        # Nothing queued: the parser call fails
        created = await client.post("/notifications/rules", json={"rule_text": "anything interesting"})

        assert created.status_code == 201
        assert created.json()["parsed_keywords"] is None
        assert created.json()["parsed_intent"] is None


class TestHealthAndStats:

    @pytest.mark.asyncio
    async def test_health_without_workers_is_degraded(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["database_connected"] is True
        assert data["workers_running"] is False
        assert data["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_stats(self, client, process, make_extraction, make_item):
        await process("st1", "WTS pipe", make_extraction("sell", 0.9, [make_item()]))
        await process("st2", "316 pipe", make_extraction("sell", 0.6, [make_item()]))
        await client.post("/webhooks/messages", json=webhook_body(("st3", "WTB valves")))

        response = await client.get("/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["total_messages"] == 3
        assert data["unprocessed_messages"] == 1
        assert data["failed_messages"] == 0
        assert data["listings_by_status"] == {"active": 1, "pending_review": 1}
        assert data["listings_by_intent"] == {"sell": 2}
        assert data["pending_reviews"] == 1
        assert data["unverified_jargon"] == 0
        assert data["active_rules"] == 0

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.json()["endpoints"]["webhook"] == "/webhooks/messages"
