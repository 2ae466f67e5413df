"""Populate a development database with sample tags, equipment and projects.

Materials are not seeded: they need real audio files and are created
through the API.

Usage:
    python scripts/seed_data.py                   # insert missing rows
    python scripts/seed_data.py --create-tables   # also create the schema
    python scripts/seed_data.py --reset           # wipe master data first
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from phonica.db.engine import engine
from phonica.db.session import async_session_factory
from phonica.models import Base
from phonica.models.equipment import Equipment
from phonica.models.material import Material
from phonica.models.project import Project
from phonica.models.tag import Tag
from phonica.slugs import generate_unique_slug

logger = logging.getLogger("scripts.seed_data")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

SAMPLE_TAGS = ["nature", "urban", "water", "birds", "wind", "night", "machinery", "crowd"]

SAMPLE_EQUIPMENT = [
    {"name": "Zoom H6", "type": "Recorder", "manufacturer": "Zoom"},
    {"name": "Sound Devices MixPre-6 II", "type": "Recorder", "manufacturer": "Sound Devices"},
    {"name": "Rode NTG3", "type": "Microphone", "manufacturer": "Rode"},
    {"name": "Sennheiser MKH 416", "type": "Microphone", "manufacturer": "Sennheiser"},
    {"name": "Rycote Windjammer", "type": "Windscreen", "manufacturer": "Rycote"},
]

SAMPLE_PROJECTS = [
    {"name": "Forest Soundscapes", "description": "Dawn and dusk recordings in old-growth forest."},
    {"name": "City Ambiences", "description": "Street, station and market atmospheres."},
    {"name": "Coastal Survey", "description": None},
]


async def reset(session: AsyncSession) -> None:
    """Delete materials and master data. Audio files on disk are left alone."""
    for model in (Material, Tag, Equipment, Project):
        result = await session.execute(delete(model))
        logger.info("Deleted %d %s row(s)", result.rowcount, model.__tablename__)
    await session.commit()


async def seed(session: AsyncSession) -> dict[str, int]:
    """Insert sample rows whose names are not taken yet. Returns insert counts."""
    counts = {"tags": 0, "equipment": 0, "projects": 0}

    existing_tags = set((await session.execute(select(Tag.name))).scalars())
    for name in SAMPLE_TAGS:
        if name in existing_tags:
            continue
        session.add(Tag(name=name, slug=await generate_unique_slug(session, name, "tag")))
        await session.flush()
        counts["tags"] += 1

    existing_equipment = set((await session.execute(select(Equipment.name))).scalars())
    for item in SAMPLE_EQUIPMENT:
        if item["name"] in existing_equipment:
            continue
        session.add(Equipment(**item))
        counts["equipment"] += 1

    existing_projects = set((await session.execute(select(Project.name))).scalars())
    for item in SAMPLE_PROJECTS:
        if item["name"] in existing_projects:
            continue
        slug = await generate_unique_slug(session, item["name"] or "", "project")
        session.add(Project(slug=slug, **item))
        await session.flush()
        counts["projects"] += 1

    await session.commit()
    return counts


async def run(create_tables: bool, reset_first: bool) -> None:
    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Schema created")

    async with async_session_factory() as session:
        if reset_first:
            await reset(session)
        counts = await seed(session)

    await engine.dispose()
    logger.info(
        "Seeded %d tag(s), %d equipment, %d project(s)",
        counts["tags"],
        counts["equipment"],
        counts["projects"],
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Seed the Phonica database with sample master data.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete all materials, tags, equipment and projects before seeding.",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before seeding.",
    )
    return parser.parse_args(argv)


def main() -> None:
    """Entry point."""
    args = parse_args()
    try:
        asyncio.run(run(create_tables=args.create_tables, reset_first=args.reset))
    except OSError as exc:
        logger.error("Cannot reach the database: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
