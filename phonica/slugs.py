"""URL-safe slug generation with collision avoidance.

Slugs are derived from a human title, then suffixed with ``-1``, ``-2``, ...
until no row of the target model uses them. The check is not atomic: two
concurrent callers may pick the same slug, in which case the unique
constraint on the ``slug`` column rejects the second insert and the caller
reports a retryable conflict.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
import unicodedata

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from phonica.models.material import Material
from phonica.models.project import Project
from phonica.models.tag import Tag

logger = logging.getLogger(__name__)

SLUG_MODELS: dict[str, type[Material] | type[Tag] | type[Project]] = {
    "material": Material,
    "tag": Tag,
    "project": Project,
}

_FRIENDLY_ADJECTIVES = ("gentle", "bright", "calm", "dynamic", "elegant")
_FRIENDLY_NOUNS = ("melody", "harmony", "rhythm", "sound", "wave")
_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_friendly_name() -> str:
    """Return a readable random name such as ``calm-wave-x3k9``."""
    adjective = secrets.choice(_FRIENDLY_ADJECTIVES)
    noun = secrets.choice(_FRIENDLY_NOUNS)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(4))
    return f"{adjective}-{noun}-{suffix}"


def slugify(text: str) -> str:
    """Normalize *text* to ``[a-z0-9-]`` without generating a fallback.

    Accented Latin characters are folded to ASCII; anything else outside the
    allowed set is dropped.
    """
    folded = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = folded.lower().strip()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]+", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def generate_base_slug(text: str) -> str:
    """Slugify *text*, falling back to a friendly random name.

    Titles written entirely in non-Latin scripts (or made of punctuation)
    slugify to nothing useful, so they get a generated name instead.
    """
    slug = slugify(text)
    if not re.search(r"[a-z0-9]", slug):
        slug = generate_friendly_name()
    return slug


async def slug_exists(
    session: AsyncSession,
    slug: str,
    kind: str,
    exclude_id: str | None = None,
) -> bool:
    model = SLUG_MODELS[kind]
    query = select(model.id).where(model.slug == slug)
    if exclude_id is not None:
        query = query.where(model.id != exclude_id)
    result = await session.execute(query.limit(1))
    return result.scalar_one_or_none() is not None


async def generate_unique_slug(
    session: AsyncSession,
    text: str,
    kind: str,
    exclude_id: str | None = None,
) -> str:
    """Return a slug for *text* that no *kind* row currently uses.

    Args:
        session: Session used for the existence checks.
        text: Source text, usually a title or name.
        kind: One of ``"material"``, ``"tag"`` or ``"project"``.
        exclude_id: Row to ignore, so renaming an entity can keep its slug.

    Raises:
        KeyError: If *kind* is not a slugged model.
    """
    if kind not in SLUG_MODELS:
        raise KeyError(f"No slugged model named {kind!r}")

    base = generate_base_slug(text)
    slug = base
    counter = 1
    while await slug_exists(session, slug, kind, exclude_id):
        slug = f"{base}-{counter}"
        counter += 1

    if slug != base:
        logger.debug("Slug %r taken for %s, using %r", base, kind, slug)
    return slug
