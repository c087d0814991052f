"""SQLAlchemy ORM models for tracker users and their hourly rates."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

import uuid_utils as uuid7_lib
from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-ordered) for use as default PK value."""
    return uuid.UUID(bytes=uuid7_lib.uuid7().bytes)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class RateScope(StrEnum):
    """How specific a rate assignment is. PROJECT beats QUEUE beats GLOBAL."""

    GLOBAL = "global"
    QUEUE = "queue"
    PROJECT = "project"


# ──────────────────────────────────────────────
# Tracker users
# ──────────────────────────────────────────────


class TrackerUser(Base):
    """Local mirror of a tracker user.

    ``tracker_uids`` holds every identifier the tracker has used for
    this person (accounts get re-created, orgs get merged), so worklogs
    authored under any of them resolve to the same local user.
    """

    __tablename__ = "users_tracker"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    tracker_uids: Mapped[list[str]] = mapped_column(ARRAY(String(64)), default=list)
    display: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    login: Mapped[str] = mapped_column(String(255), unique=True)
    dismissed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    rates: Mapped[list["UserRate"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


# ──────────────────────────────────────────────
# Hourly rates
# ──────────────────────────────────────────────


class UserRate(Base):
    """One historical hourly rate assignment.

    Rows are never updated except for ``is_active``: a new assignment for
    the same (user, scope, context_key) deactivates the previous one.
    """

    __tablename__ = "user_tracker_rates"
    __table_args__ = (
        Index(
            "uq_user_tracker_rates_active",
            "user_id",
            "scope",
            text("coalesce(context_key, '')"),
            unique=True,
            postgresql_where=text("is_active"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<UserRate(id={self.id}, user_id={self.user_id}, "
            f"scope='{self.scope}', context_key={self.context_key!r}, "
            f"amount={self.amount}, is_active={self.is_active})>"
        )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users_tracker.id", ondelete="CASCADE"), index=True
    )
    scope: Mapped[RateScope] = mapped_column(
        Enum(
            RateScope,
            name="user_tracker_rates_type_enum",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=RateScope.GLOBAL,
    )
    context_key: Mapped[str | None] = mapped_column(String(100))
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    user: Mapped["TrackerUser"] = relationship(back_populates="rates")
