"""
Pytest configuration and fixtures
"""

import json
import pytest
import pytest_asyncio
import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import build_engine, build_session_factory
from core.exceptions import LLMResponseError, NotificationDispatchError
from ingestion.context import PipelineContext
from ingestion.media import MediaDownloader
from models.base import Base, JargonSource
from models.jargon import JargonEntry
from models.reference import Category, Condition, Manufacturer, Unit
from schemas.inbound import InboundMessage
from services.exchange_rates import ExchangeRateService
from services.reference_data import ReferenceDataProvider
from typing import AsyncGenerator

# In-memory database shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite://"

EUR_TO_USD = 1.1


class FakeLLMClient:
    """
    Stand-in for LLMClient.

    complete_json answers from a queue of dicts, strings or exceptions;
    embed returns a fixed vector unless embed_error is set.
    """

    def __init__(self):
        self.responses = []
        self.prompts = []
        self.embed_calls = []
        self.embedding = [0.1, 0.2, 0.3]
        self.embed_error = None

    def queue(self, *responses):
        self.responses.extend(responses)

    async def complete_json(self, system_prompt, user_prompt, temperature=None):
        self.prompts.append((system_prompt, user_prompt))
        if not self.responses:
            raise LLMResponseError("No response queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response

    async def embed(self, text):
        self.embed_calls.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        return list(self.embedding)


class FakeDispatcher:
    """Records deliveries; raises for every send while fail is set"""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, rule, listing):
        if self.fail:
            raise NotificationDispatchError("dispatch down", context={"rule_id": rule.id})
        self.sent.append((rule.id, listing.id))


def extraction(intent="sell", confidence=0.92, items=None, unknown_terms=None):
    """Model response payload in the shape the extraction prompt asks for"""
    return {
        "intent": intent,
        "items": items if items is not None else [],
        "unknown_terms": unknown_terms or [],
        "confidence": confidence,
    }


def item(**fields):
    payload = {
        "description": "316 stainless steel pipe",
        "category": "Pipe Fittings",
        "manufacturer": None,
        "part_number": "SS316-PIPE",
        "quantity": 500,
        "unit": "ft",
        "price": 12,
        "currency": "USD",
        "condition": "New",
    }
    payload.update(fields)
    return payload


def inbound(external_id, body, **fields):
    payload = {
        "externalId": external_id,
        "conversationExternalId": fields.pop("conversation", "group-1@g.us"),
        "conversationName": "Industrial Surplus Traders",
        "senderId": "+971500000001",
        "senderName": "Ahmed",
        "body": body,
        "sentAtEpochSeconds": 1718000000,
    }
    payload.update(fields)
    return InboundMessage.model_validate(payload)


def rates_handler(request: httpx.Request) -> httpx.Response:
    if request.url.params.get("from") == "EUR":
        return httpx.Response(200, json={"amount": 1.0, "base": "EUR", "rates": {"USD": EUR_TO_USD}})
    return httpx.Response(404, json={"message": "not found"})


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    engine = build_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def seeded(db_session):
    """Reference vocabulary and one verified jargon entry"""
    db_session.add_all([
        Category(name="Pipe Fittings", sort_order=1),
        Category(name="Valves", sort_order=2),
        Manufacturer(name="Swagelok", aliases=["Swage"]),
        Manufacturer(name="Parker Hannifin", aliases=["Parker", "PH"]),
        Unit(name="each", abbreviation="ea"),
        Unit(name="feet", abbreviation="ft"),
        Condition(name="New"),
        Condition(name="New Old Stock", abbreviation="NOS"),
        JargonEntry(
            acronym="SS",
            expansion="stainless steel",
            source=JargonSource.SEED,
            confidence=1.0,
            usage_count=0,
            verified=True,
        ),
    ])
    await db_session.commit()
    return db_session


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def fake_dispatcher():
    return FakeDispatcher()


@pytest_asyncio.fixture
async def context(fake_llm, fake_dispatcher, tmp_path):
    """Pipeline context wired to fakes; exchange rates answered in-process"""
    rates_client = httpx.AsyncClient(transport=httpx.MockTransport(rates_handler))
    media_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"\x89PNG"))
    )
    context = PipelineContext(
        llm_client=fake_llm,
        reference=ReferenceDataProvider(),
        exchange_rates=ExchangeRateService(http_client=rates_client, base_url="https://rates.test/v1"),
        dispatcher=fake_dispatcher,
        media_downloader=MediaDownloader(storage_dir=str(tmp_path / "media"), http_client=media_client),
        auto_threshold=0.8,
        review_threshold=0.5,
        expiry_days=30,
    )
    yield context
    await rates_client.aclose()
    await media_client.aclose()


@pytest.fixture
def make_extraction():
    return extraction


@pytest.fixture
def make_item():
    return item


@pytest.fixture
def make_inbound():
    return inbound
