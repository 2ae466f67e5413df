"""Liveness plus a cheap database round trip."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from phonica.db.session import get_db
from phonica.schemas.health import HealthResponse
from phonica.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> HealthResponse:
    """Report ``ok`` when the database answers, ``degraded`` otherwise."""
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Health check could not reach the database: %s", exc)
        return HealthResponse(status="degraded", version=settings.app_version, database="unreachable")
    return HealthResponse(status="ok", version=settings.app_version, database="ok")
