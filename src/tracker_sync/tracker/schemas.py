"""Request and page metadata schemas for the tracker client."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HttpMethod(StrEnum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class ContentType(StrEnum):
    JSON = "application/json"
    FORM_URLENCODED = "application/x-www-form-urlencoded"
    TEXT = "text/plain"


class PaginationStrategy(StrEnum):
    """Continuation protocol of a paged tracker endpoint."""

    SCROLL = "scroll"  # opaque cursor in X-Scroll-Id
    PAGINATE = "paginate"  # page numbers, X-Total-Pages


class ScrollType(StrEnum):
    SORTED = "sorted"
    UNSORTED = "unsorted"


class RequestOptions(BaseModel):
    """One outbound tracker request.

    ``params`` and ``headers`` are plain string maps; the client adds
    protocol parameters and auth headers on top of them per request.
    """

    model_config = ConfigDict(frozen=True)

    method: HttpMethod = HttpMethod.GET
    endpoint: str = Field(..., min_length=1)
    body: Any = None
    params: dict[str, str] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float | None = Field(None, gt=0)
    content_type: ContentType | None = ContentType.JSON

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    def with_params(self, params: dict[str, str]) -> "RequestOptions":
        """Copy with ``params`` merged over the existing query parameters."""
        return self.model_copy(update={"params": {**self.params, **params}})


@dataclass(frozen=True, slots=True)
class PageMeta:
    """Metadata handed to the page callback alongside each page.

    ``is_last`` is true on the final page only. ``scroll_id`` is the
    cursor for the next page (scroll), ``page`` the page number just
    delivered (paginate).
    """

    strategy: PaginationStrategy
    is_last: bool
    total_count: int | None = None
    scroll_id: str | None = None
    page: int | None = None
    total_pages: int | None = None


PageCallback = Callable[[Any, PageMeta], Awaitable[None] | None]


class TaskSearchRequest(BaseModel):
    """Body of ``POST issues/_search``. Set exactly one criterion."""

    filter: dict[str, Any] | None = None
    order: str | None = None
    queue: str | None = None
    keys: str | list[str] | None = None
    query: str | None = None

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
