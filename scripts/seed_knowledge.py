#!/usr/bin/env python3
"""
Seed the knowledge base for local development.

Run (from the project root):
    python scripts/seed_knowledge.py
    python scripts/seed_knowledge.py --file docs/knowledge_base.json

The JSON file is a list of {"category", "title", "content"} objects.
Entries are matched by title: existing titles get their content refreshed,
new titles are inserted.
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# add the project root to the path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import select  # noqa: E402

from steambot.core.logging import get_logger, setup_logging  # noqa: E402
from steambot.db.database import AsyncSessionLocal, create_tables  # noqa: E402
from steambot.db.models.knowledge_entry import KnowledgeCategory, KnowledgeEntry  # noqa: E402

logger = get_logger(__name__)

DEFAULT_ENTRIES = [
    {
        "category": "programs",
        "title": "About Journey to STEAM",
        "content": (
            "Hands-on robotics, coding, and LEGO engineering programs for kids ages 5-12 "
            "(grades K-8) in the Portland Metro area."
        ),
    },
    {
        "category": "programs",
        "title": "After-School Programs",
        "content": "Weekly after-school STEAM classes hosted at partner elementary schools.",
    },
    {
        "category": "programs",
        "title": "Summer Camps",
        "content": "Week-long themed robotics and coding camps during summer break.",
    },
    {
        "category": "programs",
        "title": "Birthday Parties",
        "content": "LEGO robotics birthday parties led by an instructor at your venue.",
    },
    {
        "category": "pricing",
        "title": "Program Pricing",
        "content": (
            "Pricing varies by program and location; current prices are listed on the "
            "registration page."
        ),
    },
    {
        "category": "faqs",
        "title": "What ages do you serve?",
        "content": "Students ages 5-12, grades K-8.",
    },
    {
        "category": "policies",
        "title": "Enrollment",
        "content": (
            "Enrollment and payment happen only through the online registration page; "
            "the assistant cannot enroll students or take payments."
        ),
    },
]


def load_entries(path: str | None) -> list[dict]:
    if not path:
        return DEFAULT_ENTRIES
    with open(path, encoding="utf-8") as f:
        entries = json.load(f)
    for entry in entries:
        KnowledgeCategory(entry["category"])
    return entries


async def seed(entries: list[dict]) -> tuple[int, int]:
    """Upsert entries by title; returns (inserted, updated)"""
    await create_tables()
    inserted = updated = 0

    async with AsyncSessionLocal() as db:
        result = await db.execute(select(KnowledgeEntry))
        existing = {entry.title: entry for entry in result.scalars().all()}

        for data in entries:
            category = KnowledgeCategory(data["category"])
            current = existing.get(data["title"])
            if current is None:
                db.add(KnowledgeEntry(
                    category=category,
                    title=data["title"],
                    content=data["content"],
                    is_active=True,
                ))
                inserted += 1
            elif current.content != data["content"] or current.category != category:
                current.content = data["content"]
                current.category = category
                updated += 1

        await db.commit()
    return inserted, updated


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the knowledge base")
    parser.add_argument("--file", help="JSON file with knowledge entries")
    args = parser.parse_args()

    setup_logging(level="INFO", json_format=False)
    inserted, updated = asyncio.run(seed(load_entries(args.file)))
    logger.info(
        "Knowledge base seeded",
        extra_data={"inserted": inserted, "updated": updated}
    )


if __name__ == "__main__":
    main()
