"""
Query parameter builder for Polygon endpoints.

QueryParams is an ordered, string-keyed map. Values are rendered the way
Polygon expects them (booleans as 'true'/'false', dates as YYYY-MM-DD).
Setters return self so calls can be chained.

Example:
    >>> params = QueryParams().limit(50000).adjusted(False).sort("asc")
    >>> params.to_dict()
    {'limit': '50000', 'adjusted': 'false', 'sort': 'asc'}
"""

from datetime import date
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

POLYGON_DATE_FORMAT = "%Y-%m-%d"


def render_value(value: Any) -> str:
    """Render a parameter value as Polygon expects it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, date):
        return value.strftime(POLYGON_DATE_FORMAT)
    return str(value)


class QueryParams:
    """Ordered query parameters with per-field setters."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._params: Dict[str, str] = {}
        for name, value in (initial or {}).items():
            self.set(name, value)

    def set(self, name: str, value: Any) -> "QueryParams":
        """Set a parameter; None removes it."""
        if value is None:
            self._params.pop(name, None)
        else:
            self._params[name] = render_value(value)
        return self

    def get(self, name: str) -> Optional[str]:
        return self._params.get(name)

    def limit(self, limit: int) -> "QueryParams":
        return self.set("limit", limit)

    def sort(self, sort: str) -> "QueryParams":
        return self.set("sort", sort)

    def order(self, order: str) -> "QueryParams":
        return self.set("order", order)

    def adjusted(self, adjusted: bool) -> "QueryParams":
        return self.set("adjusted", adjusted)

    def unadjusted(self, unadjusted: bool) -> "QueryParams":
        return self.set("unadjusted", unadjusted)

    def timestamp(self, timestamp: int) -> "QueryParams":
        return self.set("timestamp", timestamp)

    def timestamp_limit(self, timestamp_limit: int) -> "QueryParams":
        return self.set("timestamp_limit", timestamp_limit)

    def reverse(self, reverse: bool) -> "QueryParams":
        return self.set("reverse", reverse)

    def cursor(self, cursor: str) -> "QueryParams":
        return self.set("cursor", cursor)

    def market(self, market: str) -> "QueryParams":
        return self.set("market", market)

    def locale(self, locale: str) -> "QueryParams":
        return self.set("locale", locale)

    def active(self, active: bool) -> "QueryParams":
        return self.set("active", active)

    def copy(self) -> "QueryParams":
        return QueryParams(self._params)

    def to_dict(self) -> Dict[str, str]:
        return dict(self._params)

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self._params.items())

    def __len__(self) -> int:
        return len(self._params)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, QueryParams):
            return self._params == other._params
        return NotImplemented

    def __repr__(self) -> str:
        return f"QueryParams({self._params!r})"


def as_params(params: Optional[Any]) -> QueryParams:
    """Accept a QueryParams, a plain mapping or None."""
    if params is None:
        return QueryParams()
    if isinstance(params, QueryParams):
        return params.copy()
    return QueryParams(params)
