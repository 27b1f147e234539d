"""
Long-lived collaborators shared by API handlers and pipeline workers.

Clients and caches live here for the lifetime of the process; the
session-bound services are built per session through the factory methods.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from ingestion.archive import MessageArchive
from ingestion.extractors.embedding import EmbeddingGenerator
from ingestion.extractors.llm_client import LLMClient
from ingestion.extractors.llm_extractor import ExtractionEngine
from ingestion.loaders.confidence_router import ConfidenceRouter
from ingestion.media import MediaDownloader
from ingestion.transformers.jargon_expander import JargonExpander
from ingestion.transformers.normalizer import ListingNormalizer
from services.crosspost import CrossPostDetector
from services.exchange_rates import ExchangeRateService
from services.jargon import JargonService
from services.listings import ListingService
from services.notifications import (
    HttpNotificationDispatcher,
    NotificationMatcher,
    NotificationRuleService,
    RuleParser,
)
from services.reference_data import ReferenceDataProvider
from services.review import ReviewService


class PipelineContext:
    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        reference: Optional[ReferenceDataProvider] = None,
        exchange_rates: Optional[ExchangeRateService] = None,
        dispatcher=None,
        media_downloader: Optional[MediaDownloader] = None,
        auto_threshold: Optional[float] = None,
        review_threshold: Optional[float] = None,
        expiry_days: Optional[int] = None,
    ):
        self.llm_client = llm_client or LLMClient()
        self.reference = reference or ReferenceDataProvider()
        self.exchange_rates = exchange_rates or ExchangeRateService()
        self.dispatcher = dispatcher or HttpNotificationDispatcher()
        self.media_downloader = media_downloader or MediaDownloader()
        self.auto_threshold = settings.CONFIDENCE_AUTO_THRESHOLD if auto_threshold is None else auto_threshold
        self.review_threshold = settings.CONFIDENCE_REVIEW_THRESHOLD if review_threshold is None else review_threshold
        self.expiry_days = settings.LISTING_EXPIRY_DAYS if expiry_days is None else expiry_days
        self.expander = JargonExpander()

    def embedding_generator(self) -> EmbeddingGenerator:
        return EmbeddingGenerator(self.llm_client)

    def normalizer(self, db: AsyncSession) -> ListingNormalizer:
        return ListingNormalizer(db, self.reference, self.exchange_rates)

    def extraction_engine(self, db: AsyncSession) -> ExtractionEngine:
        return ExtractionEngine(db, self.llm_client, self.reference)

    def router(self, db: AsyncSession) -> ConfidenceRouter:
        return ConfidenceRouter(
            db,
            self.normalizer(db),
            auto_threshold=self.auto_threshold,
            review_threshold=self.review_threshold,
            expiry_days=self.expiry_days,
        )

    def jargon(self, db: AsyncSession) -> JargonService:
        return JargonService(db, self.reference)

    def notifier(self, db: AsyncSession) -> NotificationMatcher:
        return NotificationMatcher(db, self.dispatcher)

    def rules(self, db: AsyncSession) -> NotificationRuleService:
        return NotificationRuleService(db, RuleParser(self.llm_client, self.reference), self.reference)

    def listings(self, db: AsyncSession) -> ListingService:
        return ListingService(db, self.normalizer(db), self.extraction_engine(db))

    def review(self, db: AsyncSession) -> ReviewService:
        return ReviewService(
            db,
            self.normalizer(db),
            self.extraction_engine(db),
            notifier=self.notifier(db),
            expiry_days=self.expiry_days,
        )

    def crossposts(self, db: AsyncSession) -> CrossPostDetector:
        return CrossPostDetector(db)

    def archive(self, db: AsyncSession, pipeline=None) -> MessageArchive:
        return MessageArchive(db, self.media_downloader, pipeline)
