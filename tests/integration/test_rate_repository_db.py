"""Rate assignment and resolution against a live PostgreSQL.

Run with ``pytest --run-db`` after starting the database.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tracker_sync.errors import UserNotFoundError
from tracker_sync.models.rates import RateChange
from tracker_sync.rate_assignment import RateAssignmentService
from tracker_sync.rate_resolution import RateResolver
from tracker_sync.storage.orm import RateScope, TrackerUser, UserRate
from tracker_sync.storage.rate_repository import RateRepository

pytestmark = pytest.mark.requires_db


async def _active(session: AsyncSession, user_id: uuid.UUID) -> list[UserRate]:
    result = await session.execute(
        select(UserRate).where(UserRate.user_id == user_id, UserRate.is_active.is_(True))
    )
    return list(result.scalars().all())


class TestSupersession:
    async def test_single_active_per_tuple(
        self, db_session: AsyncSession, seed_user: TrackerUser
    ) -> None:
        service = RateAssignmentService(db_session)

        for amount in ("1000", "1100", "1200"):
            await service.create_or_supersede(
                RateChange(
                    user_id=seed_user.id,
                    amount=Decimal(amount),
                    scope=RateScope.QUEUE,
                    context_key="ZOTA",
                )
            )

        active = await _active(db_session, seed_user.id)
        assert [r.amount for r in active] == [Decimal("1200.00")]
        history = await service.get_rates(seed_user.id)
        assert len(history) == 3

    async def test_unique_index_rejects_second_active(
        self, db_session: AsyncSession, seed_user: TrackerUser
    ) -> None:
        repo = RateRepository(db_session)
        await repo.insert(user_id=seed_user.id, scope=RateScope.GLOBAL, amount=Decimal("1"))

        with pytest.raises(IntegrityError):
            async with db_session.begin_nested():
                await repo.insert(
                    user_id=seed_user.id, scope=RateScope.GLOBAL, amount=Decimal("2")
                )

    async def test_unknown_user(self, db_session: AsyncSession) -> None:
        service = RateAssignmentService(db_session)

        with pytest.raises(UserNotFoundError):
            await service.create_or_supersede(
                RateChange(user_id=uuid.uuid4(), amount=Decimal("1"))
            )


class TestBatch:
    async def test_partial_failure_keeps_successes(
        self,
        db_session: AsyncSession,
        seed_user: TrackerUser,
        user_factory: Callable[..., Awaitable[TrackerUser]],
    ) -> None:
        other = await user_factory("2200000000000001")
        service = RateAssignmentService(db_session)

        results = await service.batch_create_or_supersede(
            [
                RateChange(user_id=seed_user.id, amount=Decimal("1000")),
                RateChange(user_id=uuid.uuid4(), amount=Decimal("1100")),
                RateChange(user_id=other.id, amount=Decimal("1200")),
            ]
        )

        assert [r.success for r in results] == [True, False, True]
        assert len(await _active(db_session, seed_user.id)) == 1
        assert len(await _active(db_session, other.id)) == 1


class TestResolution:
    async def test_direct_and_map_agree(
        self, db_session: AsyncSession, seed_user: TrackerUser
    ) -> None:
        service = RateAssignmentService(db_session)
        await service.create_or_supersede(
            RateChange(user_id=seed_user.id, amount=Decimal("1000"))
        )
        await service.create_or_supersede(
            RateChange(
                user_id=seed_user.id,
                amount=Decimal("1200"),
                scope=RateScope.QUEUE,
                context_key="ZOTA",
            )
        )
        await service.create_or_supersede(
            RateChange(
                user_id=seed_user.id,
                amount=Decimal("1500"),
                scope=RateScope.PROJECT,
                context_key="PROJ1",
            )
        )
        resolver = RateResolver(RateRepository(db_session))
        rate_map = await resolver.build_map()

        cases = [
            ("PROJ1", "ZOTA", Decimal("1500")),
            (None, "ZOTA", Decimal("1200")),
            ("OTHER", "OTHER", Decimal("1000")),
            (None, None, Decimal("1000")),
        ]
        for project, queue, expected in cases:
            direct = await resolver.resolve(seed_user.id, project, queue)
            assert direct == expected
            for alias in (str(seed_user.id), *seed_user.tracker_uids):
                assert rate_map.resolve(alias, project, queue) == expected
