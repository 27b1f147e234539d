"""
Jargon learner and dictionary maintenance.

The pipeline reports unknown terms; new ones are stored unverified and
existing ones only have their usage counted. An admin verifies entries,
after which they appear in extraction prompts. Usage count never promotes
an entry on its own.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import DuplicateError, NotFoundError, ValidationError
from models.base import JargonSource
from models.jargon import JargonEntry
from services.audit import AuditService
from services.reference_data import JARGON, ReferenceDataProvider

logger = logging.getLogger(__name__)

LEARNED_CONFIDENCE = 0.5


class JargonService:
    def __init__(
        self,
        db_session: AsyncSession,
        reference: Optional[ReferenceDataProvider] = None,
        audit: Optional[AuditService] = None,
    ):
        self.db = db_session
        self.reference = reference
        self.audit = audit or AuditService(db_session)

    async def find_by_acronym(self, acronym: str) -> Optional[JargonEntry]:
        result = await self.db.execute(
            select(JargonEntry)
            .where(func.lower(JargonEntry.acronym) == acronym.strip().lower())
            .order_by(JargonEntry.id)
            .limit(1)
        )
        return result.scalars().first()

    async def learn(self, terms: List[str], context_example: Optional[str] = None) -> List[JargonEntry]:
        """
        Record unknown terms reported by extraction.

        Each term is committed on its own so one failure cannot discard the
        others. Returns the entries created by this call.
        """
        created = []
        for raw_term in terms or []:
            term = (raw_term or "").strip()
            if not term:
                continue

            existing = await self.find_by_acronym(term)
            if existing is not None:
                existing.usage_count = (existing.usage_count or 0) + 1
                await self.db.commit()
                logger.debug(f"Jargon '{term}' seen again (usage={existing.usage_count})")
                continue

            entry = JargonEntry(
                acronym=term,
                expansion=term,
                source=JargonSource.LLM,
                confidence=LEARNED_CONFIDENCE,
                usage_count=1,
                verified=False,
                context_example=(context_example or "")[:500] or None,
            )
            self.db.add(entry)
            try:
                await self.db.commit()
            except IntegrityError:
                # Lost a race with another worker inserting the same term
                await self.db.rollback()
                existing = await self.find_by_acronym(term)
                if existing is not None:
                    existing.usage_count = (existing.usage_count or 0) + 1
                    await self.db.commit()
                continue

            created.append(entry)
            logger.info(f"Learned new jargon term '{term}' (unverified)")

        return created

    async def get(self, entry_id: int) -> JargonEntry:
        entry = await self.db.get(JargonEntry, entry_id)
        if entry is None:
            raise NotFoundError(
                f"Jargon entry {entry_id} not found",
                context={"entity": "jargon_dictionary", "entity_id": entry_id}
            )
        return entry

    async def list(
        self,
        verified: Optional[bool] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[JargonEntry], int]:
        query = select(JargonEntry)
        count_query = select(func.count()).select_from(JargonEntry)
        if verified is not None:
            query = query.where(JargonEntry.verified.is_(verified))
            count_query = count_query.where(JargonEntry.verified.is_(verified))

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(JargonEntry.usage_count.desc(), JargonEntry.acronym)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def verify(
        self,
        entry_id: int,
        actor: str,
        expansion: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> JargonEntry:
        """Mark an entry verified so it is fed into extraction prompts."""
        entry = await self.get(entry_id)
        acronym = entry.acronym
        before = {"expansion": entry.expansion, "verified": entry.verified, "confidence": entry.confidence}

        if expansion is not None:
            if not expansion.strip():
                raise ValidationError("Expansion must not be blank", context={"field_name": "expansion"})
            entry.expansion = expansion.strip()
        entry.verified = True
        entry.confidence = 1.0

        await self.audit.log(
            actor, "jargon.verify", "jargon", entry.id,
            before=before,
            after={"expansion": entry.expansion, "verified": True, "confidence": 1.0},
            ip_address=ip_address,
        )
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateError(
                f"Jargon '{acronym}' already has expansion '{expansion}'",
                context={"acronym": acronym, "expansion": expansion},
                original_exception=e
            )

        if self.reference is not None:
            self.reference.invalidate(JARGON)
        logger.info(f"Jargon '{acronym}' verified as '{entry.expansion}' by {actor}")
        return entry

    async def create(
        self,
        acronym: str,
        expansion: str,
        actor: str,
        source: JargonSource = JargonSource.HUMAN,
        industry: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> JargonEntry:
        """Add a curated entry; human and seed entries are verified on creation."""
        if not acronym or not acronym.strip() or not expansion or not expansion.strip():
            raise ValidationError("Acronym and expansion are required", context={"acronym": acronym})

        curated = source in (JargonSource.HUMAN, JargonSource.SEED)
        entry = JargonEntry(
            acronym=acronym.strip(),
            expansion=expansion.strip(),
            industry=industry,
            source=source,
            confidence=1.0 if curated else LEARNED_CONFIDENCE,
            usage_count=0,
            verified=curated,
        )
        self.db.add(entry)
        try:
            await self.db.flush()
            await self.audit.log(
                actor, "jargon.create", "jargon", entry.id,
                after={"acronym": entry.acronym, "expansion": entry.expansion, "source": source.value},
                ip_address=ip_address,
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateError(
                f"Jargon '{acronym}' -> '{expansion}' already exists",
                context={"acronym": acronym, "expansion": expansion},
                original_exception=e
            )

        if self.reference is not None and curated:
            self.reference.invalidate(JARGON)
        return entry
