"""Rate assignment: create a new active rate, superseding the previous one.

Rates are append-only. Assigning a rate for (user, scope, context_key)
deactivates whatever was active for that tuple and inserts a new row,
all inside the caller's transaction. The user row is locked first so
concurrent assignments for the same user run one after another.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tracker_sync.errors import UserNotFoundError
from tracker_sync.models.rates import BatchRateUpdateResult, RateChange
from tracker_sync.storage.orm import UserRate
from tracker_sync.storage.rate_repository import RateRepository

logger = structlog.get_logger()


class RateAssignmentService:
    """Writes rate changes. Never commits; the session owner does."""

    def __init__(
        self,
        session: AsyncSession,
        repository: RateRepository | None = None,
    ) -> None:
        self._session = session
        self._repository = repository or RateRepository(session)

    async def create_or_supersede(self, change: RateChange) -> UserRate:
        """Make ``change`` the single active rate for its tuple.

        Raises:
            UserNotFoundError: If ``change.user_id`` does not exist.
        """
        if not await self._repository.lock_user(change.user_id):
            logger.warning("rate_user_not_found", user_id=str(change.user_id))
            raise UserNotFoundError(change.user_id)

        previous = await self._repository.find_active(
            change.user_id, change.scope, change.context_key
        )
        for rate in previous:
            await self._repository.deactivate(rate.id)

        rate = await self._repository.insert(
            user_id=change.user_id,
            scope=change.scope,
            context_key=change.context_key,
            amount=change.amount,
            comment=change.comment,
        )
        logger.info(
            "rate_assigned",
            user_id=str(change.user_id),
            scope=change.scope.value,
            context_key=change.context_key,
            rate_id=str(rate.id),
            superseded=[str(r.id) for r in previous],
        )
        return rate

    async def batch_create_or_supersede(
        self,
        changes: list[RateChange],
    ) -> list[BatchRateUpdateResult]:
        """Apply each change independently within the current transaction.

        Every entry runs in its own SAVEPOINT: an entry failing on an
        unknown user or a database error is rolled back alone and reported,
        the rest keep their effects. The result list is aligned with
        ``changes``.
        """
        results: list[BatchRateUpdateResult] = []
        for change in changes:
            try:
                async with self._session.begin_nested():
                    rate = await self.create_or_supersede(change)
            except UserNotFoundError as exc:
                results.append(
                    BatchRateUpdateResult(
                        user_id=change.user_id, success=False, error=str(exc)
                    )
                )
                continue
            except SQLAlchemyError as exc:
                logger.warning(
                    "rate_batch_entry_failed",
                    user_id=str(change.user_id),
                    scope=change.scope.value,
                    context_key=change.context_key,
                    error=str(exc),
                )
                results.append(
                    BatchRateUpdateResult(
                        user_id=change.user_id, success=False, error=str(exc)
                    )
                )
                continue
            results.append(
                BatchRateUpdateResult(
                    user_id=change.user_id, success=True, rate_id=rate.id
                )
            )

        failed = sum(1 for r in results if not r.success)
        logger.info("rate_batch_applied", total=len(results), failed=failed)
        return results

    async def get_rates(self, user_id: uuid.UUID) -> list[UserRate]:
        """Rate history of a user, newest first.

        Raises:
            UserNotFoundError: If the user does not exist.
        """
        if not await self._repository.user_exists(user_id):
            raise UserNotFoundError(user_id)
        return await self._repository.list_for_user(user_id)
