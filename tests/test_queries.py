from datetime import date, datetime

import pytest
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from errors import BadRequestError
from queries import comment_filter, day_range, page_params, pagination, parse_day, sort_for


def test_pin_takes_precedence_over_city_and_country():
    pin_id = str(ObjectId())
    query = comment_filter(pin_id=pin_id, city="Paris", country="France")
    assert query == {"pin_id": ObjectId(pin_id)}


def test_city_needs_country():
    assert comment_filter(city="Paris", country="France") == {"country": "France", "city": "Paris"}
    assert comment_filter(city="Paris") == {}


def test_country_alone():
    assert comment_filter(country="France") == {"country": "France"}


def test_no_location_is_global():
    assert comment_filter() == {}


def test_date_is_anded_into_every_branch():
    day = date(2024, 5, 1)
    start, end = datetime(2024, 5, 1), datetime(2024, 5, 2)
    pin_id = str(ObjectId())
    assert comment_filter(pin_id=pin_id, day=day)["created_at"] == {"$gte": start, "$lt": end}
    assert comment_filter(country="France", day=day) == {
        "country": "France",
        "created_at": {"$gte": start, "$lt": end},
    }
    assert comment_filter(day=day) == {"created_at": {"$gte": start, "$lt": end}}


def test_invalid_pin_id():
    with pytest.raises(BadRequestError):
        comment_filter(pin_id="not-an-id")


def test_day_range_in_other_timezone():
    start, end = day_range(date(2024, 5, 1), "Europe/Paris")
    # CEST is UTC+2 in May
    assert start == datetime(2024, 4, 30, 22, 0)
    assert end == datetime(2024, 5, 1, 22, 0)


def test_parse_day():
    assert parse_day("2024-05-01") == date(2024, 5, 1)
    assert parse_day(None) is None
    with pytest.raises(BadRequestError):
        parse_day("05/01/2024")


@pytest.mark.parametrize("keyword", ["new", "newest"])
def test_newest(keyword):
    assert sort_for(keyword) == [("created_at", DESCENDING), ("_id", DESCENDING)]


@pytest.mark.parametrize("keyword", ["old", "oldest"])
def test_oldest(keyword):
    assert sort_for(keyword) == [("created_at", ASCENDING), ("_id", ASCENDING)]


def test_liked_and_disliked_break_ties_by_recency():
    assert sort_for("liked")[0] == ("likes", DESCENDING)
    assert sort_for("disliked")[0] == ("dislikes", DESCENDING)
    assert sort_for("liked")[1:] == [("created_at", DESCENDING), ("_id", DESCENDING)]


def test_unknown_keyword_is_top():
    assert sort_for("whatever") == sort_for("top")
    assert sort_for(None) == [("score", DESCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)]


def test_unknown_keyword_with_other_default():
    assert sort_for("whatever", default="newest") == sort_for("newest")


def test_page_params():
    assert page_params(None, None) == (1, 20, 0)
    assert page_params(3, 10) == (3, 10, 20)
    assert page_params(0, 500) == (1, 100, 0)
    assert page_params(-2, -1) == (1, 20, 0)


def test_pagination_rounds_pages_up():
    assert pagination(1, 20, 41) == {"page": 1, "limit": 20, "total": 41, "totalPages": 3}
    assert pagination(1, 20, 0)["totalPages"] == 0
