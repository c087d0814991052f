"""Tracker users (organisation members)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from tracker_sync.tracker.schemas import (
    PageCallback,
    PageMeta,
    PaginationStrategy,
    RequestOptions,
)

if TYPE_CHECKING:
    from tracker_sync.tracker.client import TrackerClient


class UserClient:
    """User endpoints. Obtain via ``TrackerClient.users``."""

    def __init__(self, client: TrackerClient) -> None:
        self._client = client

    async def get_user(self, user_id: str) -> dict[str, Any]:
        options = RequestOptions(endpoint=f"users/{user_id}")
        result: dict[str, Any] = await self._client.request(options, "get_user")
        return result

    async def iter_users(self, on_page: PageCallback) -> None:
        """Stream organisation users page by page."""
        await self._client.fetch_all(
            RequestOptions(endpoint="users"),
            "get_users",
            on_page,
            PaginationStrategy.PAGINATE,
        )

    async def list_users(self) -> list[dict[str, Any]]:
        """All organisation users in one list."""
        users: list[dict[str, Any]] = []

        def collect(page: list[dict[str, Any]], meta: PageMeta) -> None:
            users.extend(page)

        await self.iter_users(collect)
        return users
