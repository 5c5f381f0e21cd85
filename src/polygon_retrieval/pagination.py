"""
Multi-page result assembly.

Two pagination disciplines are supported:

Cursor pagination (v3 endpoints)
    The envelope carries an optional next_url. Its cursor query parameter
    becomes the only query parameter of the next request. No next_url means
    the result set is exhausted; a next_url without a cursor is malformed.

Timestamp pagination with dedup (v2 tick endpoints)
    Pages are requested with a limit and an inclusive lower-bound timestamp.
    Timestamps are not unique, so the next page starts at the previous
    page's maximum timestamp and drops every record whose sequence number
    was already seen at that boundary. A page shorter than the limit ends
    the walk.

Pages are fetched strictly in order; errors from the fetch function
propagate unchanged.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Set, TypeVar, Union
from urllib.parse import parse_qs, urlsplit

from .exceptions import PaginationError
from .params import QueryParams, as_params

logger = logging.getLogger(__name__)

T = TypeVar('T')

Envelope = Dict[str, Any]
FetchEnvelope = Callable[[QueryParams], Envelope]
KeyFunc = Callable[[Any], Any]


@dataclass
class Page(Generic[T]):
    """One page of results and the token for the next one, if any."""

    items: List[T] = field(default_factory=list)
    continuation: Optional[Any] = None


def extract_cursor(next_url: str) -> str:
    """
    Return the cursor query parameter of a next_url.

    Raises:
        PaginationError: If next_url carries no cursor.
    """
    if not isinstance(next_url, str):
        raise PaginationError("next_url is not a string", next_url=next_url)
    values = parse_qs(urlsplit(next_url).query).get("cursor")
    if not values or not values[0]:
        raise PaginationError("next_url has no cursor parameter")
    return values[0]


def cursor_page(
    envelope: Envelope,
    results_field: str = "results",
    next_field: str = "next_url",
) -> Page:
    """Read one cursor-paginated envelope into a Page."""
    if not isinstance(envelope, dict):
        raise PaginationError("response envelope is not an object")
    items = envelope.get(results_field) or []
    next_url = envelope.get(next_field)
    cursor = None if next_url is None else extract_cursor(next_url)
    return Page(items=list(items), continuation=cursor)


def _key_func(key: Union[str, KeyFunc]) -> KeyFunc:
    if callable(key):
        return key
    return lambda record: record[key]


class Paginator:
    """
    Walks a paged endpoint to exhaustion.

    Attributes:
        max_pages: Optional cap on pages fetched; reaching it with more
            pages pending raises PaginationError.
        should_continue: Optional callable checked before every page after
            the first; returning False cancels with PaginationError.
    """

    def __init__(
        self,
        max_pages: Optional[int] = None,
        should_continue: Optional[Callable[[], bool]] = None,
    ):
        if max_pages is not None and max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        self.max_pages = max_pages
        self.should_continue = should_continue
        self.pages_fetched = 0

    def _before_next_page(self) -> None:
        if self.max_pages is not None and self.pages_fetched >= self.max_pages:
            raise PaginationError("page limit reached", max_pages=self.max_pages)
        if self.should_continue is not None and not self.should_continue():
            raise PaginationError("pagination cancelled", pages_fetched=self.pages_fetched)

    def collect_cursor(
        self,
        fetch: FetchEnvelope,
        params: Optional[Any] = None,
        results_field: str = "results",
        next_field: str = "next_url",
    ) -> List[Any]:
        """
        Collect all records of a cursor-paginated endpoint.

        Args:
            fetch: Fetches one envelope for the given query parameters.
            params: Parameters of the first request.
            results_field: Envelope field holding the records.
            next_field: Envelope field holding the next page URL.

        Returns:
            Records of all pages, in page order.

        Raises:
            PaginationError: If a next_url has no cursor.
        """
        query = as_params(params)
        collected: List[Any] = []
        self.pages_fetched = 0

        while True:
            if self.pages_fetched:
                self._before_next_page()
            page = cursor_page(fetch(query), results_field, next_field)
            self.pages_fetched += 1
            collected.extend(page.items)
            logger.debug(
                f"Cursor page {self.pages_fetched}: {len(page.items)} records "
                f"({len(collected)} total)"
            )

            if page.continuation is None:
                return collected
            query = QueryParams().cursor(page.continuation)

    def collect_by_timestamp(
        self,
        fetch: FetchEnvelope,
        params: Optional[Any] = None,
        limit: int = 50000,
        timestamp_key: Union[str, KeyFunc] = "t",
        id_key: Union[str, KeyFunc] = "q",
        results_field: str = "results",
    ) -> List[Any]:
        """
        Collect all records of a timestamp-paginated endpoint without duplicates.

        Args:
            fetch: Fetches one envelope for the given query parameters.
            params: Parameters of the first request; an existing
                'timestamp' is used as the first lower bound.
            limit: Records requested per page.
            timestamp_key: Field name or function giving a record's timestamp
                as the vendor reports it (the value sent back as 'timestamp').
            id_key: Field name or function giving a record's unique
                secondary key (sequence number).
            results_field: Envelope field holding the records.

        Returns:
            Records of all pages, in page order, each emitted once.

        Raises:
            PaginationError: If a full page adds no new record or the
                boundary timestamp moves backwards.
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")

        get_ts = _key_func(timestamp_key)
        get_id = _key_func(id_key)
        query = as_params(params).limit(limit)
        collected: List[Any] = []
        boundary_ts = None
        boundary_ids: Set[Any] = set()
        self.pages_fetched = 0

        while True:
            if self.pages_fetched:
                self._before_next_page()
            envelope = fetch(query)
            if not isinstance(envelope, dict):
                raise PaginationError("response envelope is not an object")
            records = list(envelope.get(results_field) or [])
            self.pages_fetched += 1

            fresh = [r for r in records if get_id(r) not in boundary_ids]
            collected.extend(fresh)
            logger.debug(
                f"Timestamp page {self.pages_fetched}: {len(records)} records, "
                f"{len(records) - len(fresh)} duplicates dropped ({len(collected)} total)"
            )

            if len(records) < limit:
                return collected
            if not fresh:
                raise PaginationError(
                    "full page contained no new records",
                    timestamp=boundary_ts,
                )

            page_max = max(get_ts(r) for r in records)
            at_max = {get_id(r) for r in records if get_ts(r) == page_max}
            if boundary_ts is not None and page_max < boundary_ts:
                raise PaginationError(
                    "page timestamps moved backwards",
                    timestamp=page_max,
                    boundary=boundary_ts,
                )
            if page_max == boundary_ts:
                boundary_ids |= at_max
            else:
                boundary_ids = at_max
            boundary_ts = page_max

            query = query.copy().timestamp(page_max)
