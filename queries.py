"""
Query building shared by the comment listing, user history and heatmap.

- ``comment_filter`` scopes comments to the pin / city / country hierarchy
  and optionally one calendar day.
- ``sort_for`` maps a sort keyword to a total order.
- ``day_range`` turns a calendar day in the reference time zone into the
  half-open UTC range stored timestamps are compared against.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from pymongo import ASCENDING, DESCENDING

from database import oid
from errors import BadRequestError

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

SortSpec = List[Tuple[str, int]]

_NEWEST: SortSpec = [("created_at", DESCENDING), ("_id", DESCENDING)]
_OLDEST: SortSpec = [("created_at", ASCENDING), ("_id", ASCENDING)]

SORTS: Dict[str, SortSpec] = {
    "new": _NEWEST,
    "newest": _NEWEST,
    "old": _OLDEST,
    "oldest": _OLDEST,
    "liked": [("likes", DESCENDING)] + _NEWEST,
    "disliked": [("dislikes", DESCENDING)] + _NEWEST,
    "top": [("score", DESCENDING)] + _NEWEST,
}


def sort_for(keyword: Optional[str], default: str = "top") -> SortSpec:
    """Unknown keywords fall back to net score ordering."""
    if keyword in SORTS:
        return SORTS[keyword]
    return SORTS.get(default, SORTS["top"])


def parse_day(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise BadRequestError("date must be formatted as YYYY-MM-DD")


def today(tz_name: str = "UTC") -> date:
    return datetime.now(ZoneInfo(tz_name)).date()


def day_range(day: date, tz_name: str = "UTC") -> Tuple[datetime, datetime]:
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


def comment_filter(
    pin_id: Optional[str] = None,
    city: Optional[str] = None,
    country: Optional[str] = None,
    day: Optional[date] = None,
    tz_name: str = "UTC",
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if pin_id:
        query["pin_id"] = oid(pin_id, "pin_id")
    elif city and country:
        query["country"] = country
        query["city"] = city
    elif country:
        query["country"] = country

    if day is not None:
        start, end = day_range(day, tz_name)
        query["created_at"] = {"$gte": start, "$lt": end}
    return query


def page_params(page: Optional[int], limit: Optional[int]) -> Tuple[int, int, int]:
    page_num = page if page and page > 0 else 1
    limit_num = min(limit if limit and limit > 0 else DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE)
    return page_num, limit_num, (page_num - 1) * limit_num


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": -(-total // limit),
    }
