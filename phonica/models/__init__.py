from datetime import UTC, datetime

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(UTC)


# Register mapped classes so string relationship targets resolve.
from phonica.models import equipment, material, project, tag  # noqa: E402, F401
