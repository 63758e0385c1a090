"""SQLAlchemy ORM models for the remote token backup."""

from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! Datetimes come back "naive".
# ALWAYS run DB datetimes through this before converting to epoch ms, or a naive value gets
# interpreted in the server's local timezone and the expiry shifts by hours.
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class MediaTokenModel(Base):
    """Backup copy of a user's media service tokens.

    One row per host-application user. The local store is authoritative; this row
    lets a fresh device (empty local store) pick up an existing connection.
    """

    __tablename__ = "media_tokens"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    # Stored in plain text, encryption at rest is the host application's concern
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<MediaTokenModel user_id={self.user_id!r} expires_at={self.expires_at}>"
