"""Tracker API client: credentials, paged iteration, domain fetchers.

Quick start::

    from tracker_sync.config import get_settings
    from tracker_sync.tracker import TaskSearchRequest, TrackerClient

    async with TrackerClient.from_settings(get_settings()) as tracker:
        tasks = await tracker.tasks.search_tasks_to_list(
            TaskSearchRequest(queue="ZOTA")
        )
"""

from tracker_sync.tracker.client import MAX_ITERATIONS, TrackerClient
from tracker_sync.tracker.credentials import IamTokenCache, TrackerCredentials
from tracker_sync.tracker.observer import LoggingRequestObserver, RequestObserver
from tracker_sync.tracker.schemas import (
    PageMeta,
    PaginationStrategy,
    RequestOptions,
    TaskSearchRequest,
)

__all__ = [
    "MAX_ITERATIONS",
    "IamTokenCache",
    "LoggingRequestObserver",
    "PageMeta",
    "PaginationStrategy",
    "RequestObserver",
    "RequestOptions",
    "TaskSearchRequest",
    "TrackerClient",
    "TrackerCredentials",
]
