"""Base model class for all SQLAlchemy models."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow_naive() -> datetime:
    """Current UTC time as a **naive** datetime.

    Columns are ``TIMESTAMP WITHOUT TIME ZONE``, so every comparison the
    poller makes must be naive-UTC as well.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base model class with common fields for all models."""

    pass


class BaseModel(Base):
    """Abstract base model with a UUID key and timestamps.

    Nothing the engine writes is ever deleted: executions and their logs are
    the audit trail.
    """

    __abstract__ = True

    id: Mapped[str] = mapped_column(primary_key=True, default=lambda: str(uuid4()))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow_naive
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow_naive, onupdate=utcnow_naive
    )
