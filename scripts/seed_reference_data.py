"""
Seed the reference vocabularies and a starter jargon dictionary.

Safe to run repeatedly: rows that already exist are skipped.
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, engine
from core.exceptions import DuplicateError
from core.logging import setup_logging
from models.base import JargonSource
from services.jargon import JargonService
from services.reference_data import (
    CATEGORIES,
    CONDITIONS,
    MANUFACTURERS,
    UNITS,
    ReferenceDataProvider,
)

logger = logging.getLogger(__name__)

SEED_ACTOR = "seed"

SEED_ROWS = {
    CATEGORIES: [
        {"name": "Pipe Fittings", "sort_order": 1},
        {"name": "Valves", "sort_order": 2},
        {"name": "Electrical", "sort_order": 3},
        {"name": "Instrumentation", "sort_order": 4},
        {"name": "Pumps", "sort_order": 5},
        {"name": "Motors", "sort_order": 6},
        {"name": "Heat Exchangers", "sort_order": 7},
    ],
    MANUFACTURERS: [
        {"name": "Parker Hannifin", "aliases": ["Parker", "PH"]},
        {"name": "Swagelok", "aliases": ["Swage"]},
        {"name": "Emerson", "aliases": ["Emerson Electric", "Emerson Process"]},
        {"name": "Honeywell", "aliases": ["HON"]},
        {"name": "Siemens", "aliases": ["Siemens AG"]},
    ],
    UNITS: [
        {"name": "each", "abbreviation": "ea"},
        {"name": "feet", "abbreviation": "ft"},
        {"name": "lot", "abbreviation": "lot"},
        {"name": "pounds", "abbreviation": "lbs"},
        {"name": "meters", "abbreviation": "m"},
        {"name": "inches", "abbreviation": "in"},
    ],
    CONDITIONS: [
        {"name": "New"},
        {"name": "Used"},
        {"name": "Surplus"},
        {"name": "New Old Stock", "abbreviation": "NOS"},
        {"name": "Refurbished"},
    ],
}

SEED_JARGON = [
    ("WTS", "want to sell"),
    ("WTB", "want to buy"),
    ("SS", "stainless steel"),
    ("NOS", "new old stock"),
    ("OBO", "or best offer"),
    ("NPT", "national pipe thread"),
]


async def seed():
    reference = ReferenceDataProvider()
    created = 0
    skipped = 0

    async with async_session_maker() as session:
        for table, rows in SEED_ROWS.items():
            for fields in rows:
                try:
                    await reference.create(session, table, **fields)
                    created += 1
                except DuplicateError:
                    skipped += 1

        jargon = JargonService(session, reference)
        for acronym, expansion in SEED_JARGON:
            try:
                await jargon.create(acronym, expansion, actor=SEED_ACTOR, source=JargonSource.SEED)
                created += 1
            except DuplicateError:
                skipped += 1

    logger.info(f"Seeding finished: {created} created, {skipped} already present")
    await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
