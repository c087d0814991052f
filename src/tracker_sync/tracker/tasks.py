"""Tracker issues: create, get and paged search."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import structlog

from tracker_sync.tracker.schemas import (
    HttpMethod,
    PageCallback,
    PageMeta,
    PaginationStrategy,
    RequestOptions,
    TaskSearchRequest,
)

if TYPE_CHECKING:
    from tracker_sync.tracker.client import TrackerClient

logger = structlog.get_logger()

SUPPORTED_EXPAND = frozenset({"transitions", "attachments"})


def build_expand_params(expand: Iterable[str] | None) -> dict[str, str]:
    """``expand`` query parameter; unknown values are dropped."""
    if not expand:
        return {}
    values = [v for v in dict.fromkeys(expand) if v in SUPPORTED_EXPAND]
    return {"expand": ",".join(values)} if values else {}


class TaskClient:
    """Issue endpoints. Obtain via ``TrackerClient.tasks``."""

    def __init__(self, client: TrackerClient) -> None:
        self._client = client

    async def create_task(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create an issue; returns the created issue."""
        logger.info("tracker_create_task", summary=payload.get("summary"))
        options = RequestOptions(method=HttpMethod.POST, endpoint="issues", body=payload)
        result: dict[str, Any] = await self._client.request(options, "create_task")
        return result

    async def get_task(self, task_key: str) -> dict[str, Any]:
        options = RequestOptions(endpoint=f"issues/{task_key}")
        result: dict[str, Any] = await self._client.request(options, "get_task")
        return result

    async def search_tasks(
        self,
        search: TaskSearchRequest,
        on_page: PageCallback,
        *,
        expand: Iterable[str] | None = None,
        strategy: PaginationStrategy | None = None,
    ) -> None:
        """Stream search results page by page to ``on_page``."""
        logger.info(
            "tracker_search_tasks",
            has_filter=search.filter is not None,
            has_query=search.query is not None,
            queue=search.queue,
            strategy=strategy,
        )
        options = RequestOptions(
            method=HttpMethod.POST,
            endpoint="issues/_search",
            body=search.to_body(),
            params=build_expand_params(expand),
        )
        await self._client.fetch_all(options, "search_tasks", on_page, strategy)

    async def search_tasks_to_list(
        self,
        search: TaskSearchRequest,
        *,
        expand: Iterable[str] | None = None,
        strategy: PaginationStrategy | None = None,
    ) -> list[dict[str, Any]]:
        """Collect all search results into one list."""
        tasks: list[dict[str, Any]] = []

        def collect(page: list[dict[str, Any]], meta: PageMeta) -> None:
            tasks.extend(page)

        await self.search_tasks(search, collect, expand=expand, strategy=strategy)
        logger.info("tracker_search_completed", total_tasks=len(tasks))
        return tasks

    async def search_by_queue(
        self,
        queue_key: str,
        on_page: PageCallback,
        *,
        strategy: PaginationStrategy | None = None,
    ) -> None:
        await self.search_tasks(
            TaskSearchRequest(queue=queue_key), on_page, strategy=strategy
        )

    async def search_by_keys(
        self,
        keys: str | list[str],
        on_page: PageCallback,
        *,
        strategy: PaginationStrategy | None = None,
    ) -> None:
        await self.search_tasks(TaskSearchRequest(keys=keys), on_page, strategy=strategy)

    async def search_by_filter(
        self,
        filter_: dict[str, Any],
        on_page: PageCallback,
        *,
        order: str | None = None,
        strategy: PaginationStrategy | None = None,
    ) -> None:
        await self.search_tasks(
            TaskSearchRequest(filter=filter_, order=order), on_page, strategy=strategy
        )

    async def search_by_query(
        self,
        query: str,
        on_page: PageCallback,
        *,
        strategy: PaginationStrategy | None = None,
    ) -> None:
        """Search with the tracker query language, e.g. ``Queue: ZOTA``."""
        await self.search_tasks(TaskSearchRequest(query=query), on_page, strategy=strategy)
