"""Repository for hourly rate records and the users that own them."""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tracker_sync.storage.orm import RateScope, TrackerUser, UserRate


class RateRepository:
    """Data access for ``UserRate`` rows.

    Does not commit: transaction boundaries belong to the caller
    (``RateAssignmentService`` or the request handler owning the session).
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def user_exists(self, user_id: uuid.UUID) -> bool:
        """Check whether a tracker user with this id exists."""
        stmt = select(TrackerUser.id).where(TrackerUser.id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def lock_user(self, user_id: uuid.UUID) -> bool:
        """Take a row lock on the user for the rest of the transaction.

        Writers assigning rates to the same user queue up behind this
        lock, so two of them can never both see "no active rate" and
        both insert one.

        Returns:
            ``False`` if the user does not exist (nothing was locked).
        """
        stmt = (
            select(TrackerUser.id).where(TrackerUser.id == user_id).with_for_update()
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def find_active(
        self,
        user_id: uuid.UUID,
        scope: RateScope,
        context_key: str | None = None,
    ) -> list[UserRate]:
        """Active rates for one (user, scope, context_key), newest first.

        More than one row means the single-active invariant was broken;
        callers take the first element.
        """
        stmt = select(UserRate).where(
            UserRate.user_id == user_id,
            UserRate.scope == scope,
            UserRate.is_active.is_(True),
        )
        # GLOBAL rates ignore context_key entirely
        if scope != RateScope.GLOBAL:
            stmt = stmt.where(UserRate.context_key == context_key)
        stmt = stmt.order_by(UserRate.created_at.desc(), UserRate.id.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def deactivate(self, rate_id: uuid.UUID) -> None:
        """Mark a rate as superseded."""
        stmt = update(UserRate).where(UserRate.id == rate_id).values(is_active=False)
        await self._session.execute(stmt)

    async def insert(
        self,
        *,
        user_id: uuid.UUID,
        scope: RateScope,
        amount: Decimal,
        context_key: str | None = None,
        comment: str | None = None,
    ) -> UserRate:
        """Insert a new active rate."""
        rate = UserRate(
            user_id=user_id,
            scope=scope,
            context_key=None if scope == RateScope.GLOBAL else context_key,
            amount=amount,
            comment=comment,
            is_active=True,
        )
        self._session.add(rate)
        await self._session.flush()
        return rate

    async def list_active_with_aliases(self) -> list[tuple[UserRate, list[str]]]:
        """All active rates joined with the owner's tracker ids.

        Single query; input for ``build_rate_map``.
        """
        stmt = (
            select(UserRate, TrackerUser.tracker_uids)
            .join(TrackerUser, UserRate.user_id == TrackerUser.id)
            .where(UserRate.is_active.is_(True))
        )
        result = await self._session.execute(stmt)
        return [(row[0], list(row[1] or [])) for row in result.all()]

    async def list_for_user(self, user_id: uuid.UUID) -> list[UserRate]:
        """Full rate history of a user (active and superseded), newest first."""
        stmt = (
            select(UserRate)
            .where(UserRate.user_id == user_id)
            .order_by(UserRate.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
