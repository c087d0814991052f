"""Effective hourly rate lookup.

A user may have one active rate per scope and context:

    Scope    | Context key | Example key
    GLOBAL   | (none)      | "<user>:global"
    QUEUE    | queue key   | "<user>:queue:ZOTA"
    PROJECT  | project id  | "<user>:project:42"

Resolution is a strict override chain, never a sum or average:
PROJECT (if a project is given) -> QUEUE (if a queue is given) ->
GLOBAL -> 0. Recency only matters between several active rows for the
same key, which the storage layer should never produce; when it does,
the newest ``created_at`` wins and a warning is logged.

Two access paths implement the same chain:

* ``RateResolver.resolve`` queries the repository on every call.
* ``build_rate_map`` materialises all active rates once, and
  ``RateLookupMap.resolve`` answers with up to three dict lookups.
  Use it when iterating over many users (sync, workload reports).
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Protocol

import structlog

from tracker_sync.storage.orm import RateScope
from tracker_sync.storage.rate_repository import RateRepository

logger = structlog.get_logger()

NO_RATE = Decimal("0")


class RateRecord(Protocol):
    """Fields of a rate row that resolution depends on."""

    id: uuid.UUID
    user_id: uuid.UUID
    scope: RateScope
    context_key: str | None
    amount: Decimal
    created_at: datetime


def rate_key(user_ref: str, scope: RateScope, context_key: str | None = None) -> str:
    """Composite lookup key for one (user alias, scope, context)."""
    if scope == RateScope.GLOBAL:
        return f"{user_ref}:global"
    return f"{user_ref}:{scope.value}:{context_key}"


def lookup_order(
    project: str | None = None,
    queue: str | None = None,
) -> list[tuple[RateScope, str | None]]:
    """Scopes to try, most specific first. Empty contexts are skipped."""
    order: list[tuple[RateScope, str | None]] = []
    if project:
        order.append((RateScope.PROJECT, project))
    if queue:
        order.append((RateScope.QUEUE, queue))
    order.append((RateScope.GLOBAL, None))
    return order


def _recency(rate: RateRecord) -> tuple[datetime, uuid.UUID]:
    return rate.created_at, rate.id


def _log_anomaly(
    user_ref: str,
    scope: RateScope,
    context_key: str | None,
    winner: RateRecord,
    count: int,
) -> None:
    logger.warning(
        "rate_integrity_anomaly",
        user=user_ref,
        scope=scope.value,
        context_key=context_key,
        active_count=count,
        chosen_rate_id=str(winner.id),
    )


@dataclass(frozen=True, slots=True)
class RateLookupMap:
    """Immutable snapshot of active rates keyed by :func:`rate_key`."""

    rates: Mapping[str, Decimal]

    def resolve(
        self,
        alias: str | uuid.UUID,
        project: str | None = None,
        queue: str | None = None,
    ) -> Decimal:
        """Effective rate for a user alias; ``0`` when nothing is configured."""
        user_ref = str(alias)
        for scope, context_key in lookup_order(project, queue):
            amount = self.rates.get(rate_key(user_ref, scope, context_key))
            if amount is not None:
                return amount
        return NO_RATE

    def __len__(self) -> int:
        return len(self.rates)


def build_rate_map(
    rows: Iterable[tuple[RateRecord, Iterable[str]]],
) -> RateLookupMap:
    """Materialise active rates under every identifier of their owner.

    Each rate is registered under the local user id and under every
    tracker alias of that user, so lookups by either succeed.

    Args:
        rows: ``(rate, aliases)`` pairs, e.g. from
            ``RateRepository.list_active_with_aliases``.

    Returns:
        A read-only ``RateLookupMap``.
    """
    chosen: dict[str, RateRecord] = {}
    collisions: dict[str, int] = {}

    for rate, aliases in rows:
        refs = dict.fromkeys([str(rate.user_id), *(str(a) for a in aliases)])
        for ref in refs:
            key = rate_key(ref, rate.scope, rate.context_key)
            current = chosen.get(key)
            if current is None:
                chosen[key] = rate
                continue
            collisions[key] = collisions.get(key, 1) + 1
            if _recency(rate) > _recency(current):
                chosen[key] = rate

    for key, count in collisions.items():
        winner = chosen[key]
        _log_anomaly(key.split(":", 1)[0], winner.scope, winner.context_key, winner, count)

    return RateLookupMap(MappingProxyType({k: r.amount for k, r in chosen.items()}))


class RateResolver:
    """Direct (uncached) rate lookup against the repository."""

    def __init__(self, repository: RateRepository) -> None:
        self._repository = repository

    async def resolve(
        self,
        user_id: uuid.UUID,
        project: str | None = None,
        queue: str | None = None,
    ) -> Decimal:
        """Effective rate for a user in an optional project/queue context.

        Issues at most three queries and stops at the first scope with an
        active rate. Never raises for a missing rate: returns ``0``.
        """
        for scope, context_key in lookup_order(project, queue):
            active = await self._repository.find_active(user_id, scope, context_key)
            if not active:
                continue
            winner = max(active, key=_recency)
            if len(active) > 1:
                _log_anomaly(str(user_id), scope, context_key, winner, len(active))
            return winner.amount
        return NO_RATE

    async def build_map(self) -> RateLookupMap:
        """Snapshot every active rate for bulk resolution."""
        rows = await self._repository.list_active_with_aliases()
        rate_map = build_rate_map(rows)
        logger.debug("rate_map_built", active_rates=len(rows), keys=len(rate_map))
        return rate_map
