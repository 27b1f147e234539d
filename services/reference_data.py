"""
Read-through cache over the reference vocabularies.

Each table is cached as a list of plain dicts keyed by table name so the
cache can be shared across sessions and workers. Every write that goes
through this provider invalidates the affected table.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import DuplicateError, ValidationError
from models.jargon import JargonEntry
from models.reference import Category, Condition, Manufacturer, Unit

logger = logging.getLogger(__name__)

CATEGORIES = "categories"
MANUFACTURERS = "manufacturers"
UNITS = "units"
CONDITIONS = "conditions"
JARGON = "jargon"

REFERENCE_MODELS = {
    CATEGORIES: Category,
    MANUFACTURERS: Manufacturer,
    UNITS: Unit,
    CONDITIONS: Condition,
}


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class ReferenceDataProvider:
    """Cached lookup of categories, manufacturers, units, conditions and verified jargon"""

    def __init__(self):
        self._cache: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def invalidate(self, table: Optional[str] = None):
        if table is None:
            self._cache.clear()
        else:
            self._cache.pop(table, None)
        logger.debug(f"Reference cache invalidated: {table or 'all'}")

    async def get(self, db: AsyncSession, table: str) -> List[Dict[str, Any]]:
        cached = self._cache.get(table)
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._cache.get(table)
            if cached is not None:
                return cached
            rows = await self._load(db, table)
            self._cache[table] = rows
            logger.debug(f"Reference cache loaded {len(rows)} {table}")
            return rows

    async def _load(self, db: AsyncSession, table: str) -> List[Dict[str, Any]]:
        if table == CATEGORIES:
            result = await db.execute(
                select(Category).where(Category.is_active.is_(True)).order_by(Category.sort_order, Category.name)
            )
            return [{"id": c.id, "name": c.name, "parent_id": c.parent_id} for c in result.scalars()]

        if table == MANUFACTURERS:
            result = await db.execute(
                select(Manufacturer).where(Manufacturer.is_active.is_(True)).order_by(Manufacturer.name)
            )
            return [{"id": m.id, "name": m.name, "aliases": list(m.aliases or [])} for m in result.scalars()]

        if table == UNITS:
            result = await db.execute(select(Unit).order_by(Unit.name))
            return [{"id": u.id, "name": u.name, "abbreviation": u.abbreviation} for u in result.scalars()]

        if table == CONDITIONS:
            result = await db.execute(select(Condition).order_by(Condition.name))
            return [{"id": c.id, "name": c.name, "abbreviation": c.abbreviation} for c in result.scalars()]

        if table == JARGON:
            result = await db.execute(
                select(JargonEntry).where(JargonEntry.verified.is_(True)).order_by(JargonEntry.acronym)
            )
            return [{"id": j.id, "acronym": j.acronym, "expansion": j.expansion} for j in result.scalars()]

        raise ValidationError(f"Unknown reference table: {table}", context={"table": table})

    async def categories(self, db: AsyncSession) -> List[Dict[str, Any]]:
        return await self.get(db, CATEGORIES)

    async def manufacturers(self, db: AsyncSession) -> List[Dict[str, Any]]:
        return await self.get(db, MANUFACTURERS)

    async def units(self, db: AsyncSession) -> List[Dict[str, Any]]:
        return await self.get(db, UNITS)

    async def conditions(self, db: AsyncSession) -> List[Dict[str, Any]]:
        return await self.get(db, CONDITIONS)

    async def verified_jargon(self, db: AsyncSession) -> List[Dict[str, Any]]:
        return await self.get(db, JARGON)

    # ------------------------------------------------------------------
    # Name resolution (case-insensitive)
    # ------------------------------------------------------------------

    async def resolve_category(self, db: AsyncSession, name: Optional[str]) -> Optional[int]:
        key = _normalize(name)
        if not key:
            return None
        for row in await self.categories(db):
            if _normalize(row["name"]) == key:
                return row["id"]
        return None

    async def resolve_manufacturer(self, db: AsyncSession, name: Optional[str]) -> Optional[int]:
        key = _normalize(name)
        if not key:
            return None
        rows = await self.manufacturers(db)
        for row in rows:
            if _normalize(row["name"]) == key:
                return row["id"]
        for row in rows:
            if any(_normalize(alias) == key for alias in row["aliases"]):
                return row["id"]
        return None

    async def resolve_unit(self, db: AsyncSession, name: Optional[str]) -> Optional[int]:
        key = _normalize(name)
        if not key:
            return None
        for row in await self.units(db):
            if _normalize(row["name"]) == key or _normalize(row["abbreviation"]) == key:
                return row["id"]
        return None

    async def resolve_condition(self, db: AsyncSession, name: Optional[str]) -> Optional[int]:
        key = _normalize(name)
        if not key:
            return None
        for row in await self.conditions(db):
            if _normalize(row["name"]) == key or _normalize(row["abbreviation"]) == key:
                return row["id"]
        return None

    async def name_for(self, db: AsyncSession, table: str, row_id: Optional[int]) -> Optional[str]:
        if row_id is None:
            return None
        for row in await self.get(db, table):
            if row["id"] == row_id:
                return row["name"]
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, db: AsyncSession, table: str, **fields) -> Any:
        """
        Insert a reference row and invalidate that table's cache.

        Raises:
            DuplicateError: A row with the same unique name already exists
        """
        model = REFERENCE_MODELS.get(table)
        if model is None:
            raise ValidationError(f"Unknown reference table: {table}", context={"table": table})
        if not (fields.get("name") or "").strip():
            raise ValidationError("Reference name is required", context={"table": table, "field_name": "name"})

        row = model(**fields)
        db.add(row)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise DuplicateError(
                f"{table} entry already exists",
                context={"table": table, "name": fields.get("name")},
                original_exception=e
            )
        finally:
            self.invalidate(table)

        logger.info(f"Created {table} entry '{fields.get('name')}' (id={row.id})")
        return row
