"""Request lifecycle observers for the tracker client."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

import httpx
import structlog

from tracker_sync.errors import TrackerTransportError

logger = structlog.get_logger()

_HIDDEN_HEADERS = frozenset({"authorization"})


class RequestObserver(Protocol):
    """Receives one start event and one success or error event per request."""

    def on_request_start(
        self,
        operation: str,
        method: str,
        url: str,
        headers: Mapping[str, str],
    ) -> None: ...

    def on_request_success(
        self,
        operation: str,
        method: str,
        url: str,
        response: httpx.Response,
    ) -> None: ...

    def on_request_error(
        self,
        operation: str,
        method: str,
        url: str,
        error: TrackerTransportError,
    ) -> None: ...


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy of ``headers`` with credential values hidden."""
    return {
        k: "[HIDDEN]" if k.lower() in _HIDDEN_HEADERS else v
        for k, v in headers.items()
    }


class LoggingRequestObserver:
    """Default observer: structured log line per request event."""

    def on_request_start(
        self,
        operation: str,
        method: str,
        url: str,
        headers: Mapping[str, str],
    ) -> None:
        logger.debug(
            "tracker_request_start",
            operation=operation,
            method=method,
            url=url,
            headers=sanitize_headers(headers),
        )

    def on_request_success(
        self,
        operation: str,
        method: str,
        url: str,
        response: httpx.Response,
    ) -> None:
        logger.info(
            "tracker_request_success",
            operation=operation,
            method=method,
            status=response.status_code,
            content_length=len(response.content),
        )

    def on_request_error(
        self,
        operation: str,
        method: str,
        url: str,
        error: TrackerTransportError,
    ) -> None:
        logger.error(
            "tracker_request_failed",
            operation=operation,
            method=method,
            url=url,
            status=error.status_code,
            error=str(error),
        )
