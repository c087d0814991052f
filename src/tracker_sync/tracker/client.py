"""HTTP client for the tracker API with scroll and page-number iteration.

Paged endpoints use one of two continuation protocols:

* **scroll** -- the first request carries ``scrollType``, ``perScroll``
  and ``scrollTTLMillis``; each response returns the next cursor in
  ``X-Scroll-Id`` and the following request sends it back as
  ``scrollId``. No ``X-Scroll-Id`` means the last page.
* **paginate** -- each request carries ``page``/``perPage``; responses
  report ``X-Total-Pages``. The last page is ``page >= total_pages``,
  or the first page when the header is missing.

``fetch_all`` hides the difference. Without a strategy hint it sends a
single scroll-style detection request and follows whichever marker
comes back.
Both loops stop with ``PaginationExhaustedError`` after
``MAX_ITERATIONS`` round-trips.
"""

from __future__ import annotations

import inspect
from types import TracebackType
from typing import Any

import httpx
import structlog

from tracker_sync.config import Settings
from tracker_sync.errors import (
    PaginationExhaustedError,
    StrategyDetectionError,
    TrackerTransportError,
)
from tracker_sync.tracker.credentials import TrackerCredentials
from tracker_sync.tracker.observer import LoggingRequestObserver, RequestObserver
from tracker_sync.tracker.schemas import (
    PageCallback,
    PageMeta,
    PaginationStrategy,
    RequestOptions,
    ScrollType,
)
from tracker_sync.tracker.tasks import TaskClient
from tracker_sync.tracker.users import UserClient

logger = structlog.get_logger()

MAX_ITERATIONS = 1000
DEFAULT_PAGE_START = 1
DEFAULT_PER_PAGE = 50
MAX_PER_PAGE = 1000
DEFAULT_PER_SCROLL = 100
MAX_PER_SCROLL = 1000
DEFAULT_SCROLL_TTL_MS = 60_000
MIN_SCROLL_TTL_MS = 1_000
DEFAULT_TIMEOUT = 15.0

SCROLL_ID_HEADER = "X-Scroll-Id"
TOTAL_COUNT_HEADER = "X-Total-Count"
TOTAL_PAGES_HEADER = "X-Total-Pages"


def _clamp(value: int | None, default: int, maximum: int) -> int:
    if value is None:
        return default
    return min(max(1, value), maximum)


def _int_header(headers: httpx.Headers, name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def build_scroll_params(
    scroll_id: str | None,
    *,
    scroll_type: ScrollType = ScrollType.SORTED,
    per_scroll: int | None = None,
    scroll_ttl_ms: int | None = None,
) -> dict[str, str]:
    """Query parameters for one scroll round-trip.

    The first request opens the scroll (type, size, TTL); later requests
    only carry the cursor.
    """
    if scroll_id:
        return {"scrollId": scroll_id}
    ttl = (
        DEFAULT_SCROLL_TTL_MS
        if scroll_ttl_ms is None
        else max(MIN_SCROLL_TTL_MS, scroll_ttl_ms)
    )
    return {
        "scrollType": scroll_type.value,
        "perScroll": str(_clamp(per_scroll, DEFAULT_PER_SCROLL, MAX_PER_SCROLL)),
        "scrollTTLMillis": str(ttl),
    }


def build_page_params(page: int, per_page: int | None = None) -> dict[str, str]:
    """Query parameters for one page-number round-trip."""
    return {
        "perPage": str(_clamp(per_page, DEFAULT_PER_PAGE, MAX_PER_PAGE)),
        "page": str(page),
    }


async def _deliver(on_page: PageCallback, data: Any, meta: PageMeta) -> None:
    result = on_page(data, meta)
    if inspect.isawaitable(result):
        await result


class TrackerClient:
    """Async tracker API client.

    Usage::

        async with TrackerClient.from_settings(get_settings()) as tracker:
            await tracker.fetch_all(options, "search_tasks", on_page)

    Auth headers are obtained from ``credentials`` before every request,
    so a token refreshed mid-iteration is used from the next page on.
    """

    def __init__(
        self,
        base_url: str,
        credentials: TrackerCredentials,
        *,
        http_client: httpx.AsyncClient | None = None,
        observer: RequestObserver | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._observer: RequestObserver = observer or LoggingRequestObserver()
        self._timeout = timeout

        self.tasks: TaskClient = TaskClient(self)
        self.users: UserClient = UserClient(self)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
        observer: RequestObserver | None = None,
    ) -> TrackerClient:
        """Build a client with credentials and timeout from settings.

        Raises:
            ValueError: Neither an OAuth token nor IAM is configured.
        """
        if not settings.tracker_auth_configured:
            msg = "Either an OAuth token or IAM credentials are required"
            raise ValueError(msg)
        http = http_client or httpx.AsyncClient()
        credentials = TrackerCredentials.from_settings(settings, http)
        client = cls(
            settings.tracker_api_url,
            credentials,
            http_client=http,
            observer=observer,
            timeout=settings.tracker_request_timeout,
        )
        client._owns_http = http_client is None
        return client

    async def aclose(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> TrackerClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # -- single request ---------------------------------------------------

    async def request(self, options: RequestOptions, operation: str) -> Any:
        """Send one request and return the decoded body.

        Raises:
            TrackerTransportError: Network failure or non-2xx response.
            CredentialError: No usable credentials.
        """
        response = await self._send(options, operation)
        return self._decode(response)

    async def _send(self, options: RequestOptions, operation: str) -> httpx.Response:
        headers = {**await self._credentials.headers(), **options.headers}
        if (
            options.body is not None
            and options.content_type
            and not any(k.lower() == "content-type" for k in headers)
        ):
            headers["Content-Type"] = options.content_type.value

        method = options.method.value
        url = f"{self._base_url}/{options.endpoint.lstrip('/')}"
        content: str | bytes | None = None
        json_body: Any = None
        if isinstance(options.body, str | bytes):
            content = options.body
        elif options.body is not None:
            json_body = options.body

        self._observer.on_request_start(operation, method, url, headers)
        try:
            response = await self._http.request(
                method,
                url,
                params=options.params or None,
                headers=headers,
                content=content,
                json=json_body,
                timeout=options.timeout or self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            error = TrackerTransportError(
                f"{status} {exc.response.reason_phrase}: {exc.response.text[:500]}",
                status_code=status,
                operation=operation,
            )
            self._observer.on_request_error(operation, method, url, error)
            raise error from exc
        except httpx.HTTPError as exc:
            error = TrackerTransportError(
                str(exc) or type(exc).__name__,
                operation=operation,
            )
            self._observer.on_request_error(operation, method, url, error)
            raise error from exc

        self._observer.on_request_success(operation, method, url, response)
        return response

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # -- scroll -----------------------------------------------------------

    async def scroll(
        self,
        options: RequestOptions,
        operation: str,
        on_page: PageCallback,
        *,
        scroll_type: ScrollType = ScrollType.SORTED,
        per_scroll: int | None = None,
        scroll_ttl_ms: int | None = None,
    ) -> None:
        """Follow ``X-Scroll-Id`` until the server stops returning one.

        Raises:
            PaginationExhaustedError: After ``MAX_ITERATIONS`` round-trips.
            TrackerTransportError: On any failed request; pages already
                delivered to ``on_page`` stay delivered.
        """
        scroll_id: str | None = None
        iterations = 0

        try:
            while True:
                if iterations >= MAX_ITERATIONS:
                    raise PaginationExhaustedError(
                        operation, PaginationStrategy.SCROLL, MAX_ITERATIONS
                    )
                iterations += 1

                params = build_scroll_params(
                    scroll_id,
                    scroll_type=scroll_type,
                    per_scroll=per_scroll,
                    scroll_ttl_ms=scroll_ttl_ms,
                )
                response = await self._send(options.with_params(params), operation)
                scroll_id = response.headers.get(SCROLL_ID_HEADER) or None
                is_last = scroll_id is None

                data = self._decode(response)
                if data is None:
                    logger.warning(
                        "scroll_empty_response", operation=operation, iteration=iterations
                    )
                    break

                await _deliver(
                    on_page,
                    data,
                    PageMeta(
                        strategy=PaginationStrategy.SCROLL,
                        is_last=is_last,
                        scroll_id=scroll_id,
                        total_count=_int_header(response.headers, TOTAL_COUNT_HEADER),
                    ),
                )
                if is_last:
                    break
        except Exception:
            logger.error(
                "scroll_request_failed",
                operation=operation,
                iterations=iterations,
                scroll_id=scroll_id,
            )
            raise

    # -- paginate ---------------------------------------------------------

    async def paginate(
        self,
        options: RequestOptions,
        operation: str,
        on_page: PageCallback,
        *,
        per_page: int | None = None,
        page_start: int | None = None,
    ) -> None:
        """Request page after page until ``page >= X-Total-Pages``.

        A response without ``X-Total-Pages`` is treated as the only page.

        Raises:
            PaginationExhaustedError: After ``MAX_ITERATIONS`` round-trips.
            TrackerTransportError: On any failed request.
        """
        page = DEFAULT_PAGE_START if page_start is None else page_start
        iterations = 0

        try:
            while True:
                if iterations >= MAX_ITERATIONS:
                    raise PaginationExhaustedError(
                        operation, PaginationStrategy.PAGINATE, MAX_ITERATIONS
                    )
                iterations += 1

                response = await self._send(
                    options.with_params(build_page_params(page, per_page)), operation
                )
                total_pages = _int_header(response.headers, TOTAL_PAGES_HEADER)
                is_last = page >= total_pages if total_pages else True

                data = self._decode(response)
                if data is None:
                    logger.warning("paginate_empty_response", operation=operation, page=page)
                    break

                await _deliver(
                    on_page,
                    data,
                    PageMeta(
                        strategy=PaginationStrategy.PAGINATE,
                        is_last=is_last,
                        page=page,
                        total_pages=total_pages,
                        total_count=_int_header(response.headers, TOTAL_COUNT_HEADER),
                    ),
                )
                if is_last:
                    break
                page += 1
        except Exception:
            logger.error(
                "paginate_request_failed",
                operation=operation,
                iterations=iterations,
                current_page=page,
            )
            raise

    # -- strategy selection -----------------------------------------------

    async def fetch_all(
        self,
        options: RequestOptions,
        operation: str,
        on_page: PageCallback,
        strategy: PaginationStrategy | None = None,
    ) -> None:
        """Deliver every page of a paged endpoint to ``on_page``.

        Without ``strategy`` a minimal scroll-style detection request
        decides: an ``X-Scroll-Id`` selects scroll, otherwise an
        ``X-Total-Pages`` selects paginate. The detection request never
        sends page-number parameters.

        Raises:
            StrategyDetectionError: The detection response carried neither
                marker.
            PaginationExhaustedError: Iteration bound reached.
            TrackerTransportError: Any failed request, including detection.
        """
        if strategy is None:
            detection = options.with_params(
                build_scroll_params(None, per_scroll=1, scroll_ttl_ms=MIN_SCROLL_TTL_MS)
            )
            response = await self._send(detection, f"{operation}_strategy_detection")
            if response.headers.get(SCROLL_ID_HEADER):
                strategy = PaginationStrategy.SCROLL
            elif _int_header(response.headers, TOTAL_PAGES_HEADER):
                strategy = PaginationStrategy.PAGINATE
            else:
                raise StrategyDetectionError(operation)
            logger.debug("pagination_strategy_detected", operation=operation, strategy=strategy)

        if strategy == PaginationStrategy.SCROLL:
            await self.scroll(options, operation, on_page)
        else:
            await self.paginate(options, operation, on_page)

    async def detect_strategies(
        self,
        options: RequestOptions,
        operation: str,
    ) -> frozenset[PaginationStrategy]:
        """Check which continuation protocols an endpoint supports.

        Sends one page-number request and one scroll request. A request
        that fails at the transport level only marks its own protocol as
        unsupported; an empty set means neither worked.
        """
        supported: set[PaginationStrategy] = set()

        try:
            response = await self._send(
                options.with_params(build_page_params(DEFAULT_PAGE_START, 1)),
                f"{operation}_pagination_check",
            )
            if _int_header(response.headers, TOTAL_PAGES_HEADER):
                supported.add(PaginationStrategy.PAGINATE)
        except TrackerTransportError as exc:
            logger.debug("pagination_not_supported", operation=operation, error=str(exc))

        try:
            response = await self._send(
                options.with_params(
                    build_scroll_params(None, per_scroll=1, scroll_ttl_ms=MIN_SCROLL_TTL_MS)
                ),
                f"{operation}_scroll_check",
            )
            if response.headers.get(SCROLL_ID_HEADER):
                supported.add(PaginationStrategy.SCROLL)
        except TrackerTransportError as exc:
            logger.debug("scroll_not_supported", operation=operation, error=str(exc))

        return frozenset(supported)
