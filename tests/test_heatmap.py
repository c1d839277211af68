from datetime import date, timedelta

import pytest

from conftest import at, make_comment, make_pin, make_user
from heatmap import Bounds, build_heatmap, pin_rollup_pipeline

DAY = date(2024, 5, 1)


@pytest.fixture
def world(store):
    user = make_user(store, "mapper")
    louvre = make_pin(store, name="Louvre", lat=48.8606, lng=2.3376)
    tower = make_pin(store, name="Tower", lat=48.8584, lng=2.2945)
    quiet = make_pin(store, name="Quiet", lat=48.85, lng=2.35)
    tokyo = make_pin(store, name="Shibuya", lat=35.6595, lng=139.7005, city="Tokyo", country="Japan")

    make_comment(store, user, "a", pin=louvre, likes=5, dislikes=1, created_at=at(DAY, 9))
    make_comment(store, user, "b", pin=louvre, likes=2, dislikes=0, created_at=at(DAY, 10))
    make_comment(store, user, "c", pin=tower, likes=1, dislikes=0, created_at=at(DAY, 11))
    make_comment(store, user, "d", pin=tokyo, city="Tokyo", country="Japan", likes=9, created_at=at(DAY, 3))
    # yesterday's comment on the otherwise quiet pin
    make_comment(store, user, "old", pin=quiet, likes=50, created_at=at(DAY - timedelta(days=1), 23, 59))
    # pinless comments still count towards city and country
    make_comment(store, user, "e", city="Lyon", likes=3, created_at=at(DAY, 14))
    make_comment(store, user, "f", city=None, country="Belgium", dislikes=2, created_at=at(DAY, 15))
    return {"louvre": louvre, "tower": tower, "quiet": quiet, "tokyo": tokyo}


def test_pin_rollup_inner_join_and_order(store, world):
    result = build_heatmap(store, DAY)
    assert result["date"] == "2024-05-01"
    names = [p["name"] for p in result["pins"]]
    assert names == ["Shibuya", "Louvre", "Tower"]
    louvre = result["pins"][1]
    assert louvre["comment_count"] == 2
    assert louvre["total_score"] == 6
    assert louvre["top_comment_score"] == 4
    assert louvre["id"] == str(world["louvre"]["_id"])


def test_pin_without_comments_that_day_is_excluded(store, world):
    names = [p["name"] for p in build_heatmap(store, DAY)["pins"]]
    assert "Quiet" not in names


def test_bounds_apply_to_pins_only(store, world):
    paris = Bounds.from_params(48.8, 48.9, 2.2, 2.4)
    result = build_heatmap(store, DAY, paris)
    assert [p["name"] for p in result["pins"]] == ["Louvre", "Tower"]
    assert "Japan" in [c["country"] for c in result["countries"]]


def test_partial_bounds_are_ignored():
    assert Bounds.from_params(1.0, 2.0, None, 3.0) is None


def test_city_rollup(store, world):
    cities = build_heatmap(store, DAY)["cities"]
    assert cities[0] == {"city": "Tokyo", "country": "Japan", "comment_count": 1, "total_score": 9}
    paris = next(c for c in cities if c["city"] == "Paris")
    assert paris["comment_count"] == 3
    assert paris["total_score"] == 7
    assert all(c["city"] is not None for c in cities)


def test_country_rollup(store, world):
    countries = build_heatmap(store, DAY)["countries"]
    assert [c["country"] for c in countries] == ["France", "Japan", "Belgium"]
    assert countries[0] == {"country": "France", "comment_count": 4, "total_score": 10}


def test_top_comments(store, world):
    top = build_heatmap(store, DAY)["topComments"]
    assert [c["content"] for c in top[:2]] == ["d", "a"]
    assert top[0]["pin_name"] == "Shibuya"
    assert top[0]["lat"] == pytest.approx(35.6595)
    pinless = next(c for c in top if c["content"] == "e")
    assert pinless["pin_name"] is None and pinless["lat"] is None
    assert "old" not in [c["content"] for c in top]


def test_empty_day(store, world):
    result = build_heatmap(store, date(2020, 1, 1))
    assert result["pins"] == [] and result["cities"] == [] and result["countries"] == []
    assert result["topComments"] == []


def test_world_bounds_do_not_enumerate_pins(store, world):
    for i in range(300):
        make_pin(store, name=f"empty{i}", lat=-60 + i * 0.4, lng=-179 + i * 1.19)
    world_box = Bounds.from_params(-90, 90, -180, 180)
    pipeline = pin_rollup_pipeline({"created_at": {"$gte": at(DAY, 0)}}, world_box)
    # the query size stays constant however many pins fall inside the box
    assert "$in" not in repr(pipeline)
    assert [p["name"] for p in build_heatmap(store, DAY, world_box)["pins"]] == ["Shibuya", "Louvre", "Tower"]


def test_bounds_across_antimeridian(store):
    user = make_user(store, "islander")
    fiji = make_pin(store, name="Fiji", lat=-17.7, lng=178.4, city="Suva", country="Fiji")
    samoa = make_pin(store, name="Samoa", lat=-13.8, lng=-171.8, city="Apia", country="Samoa")
    hawaii = make_pin(store, name="Hawaii", lat=21.3, lng=-157.8, city="Honolulu", country="USA")
    for pin in (fiji, samoa, hawaii):
        make_comment(store, user, pin["name"], pin=pin, city=pin["city"], country=pin["country"],
                     likes=1, created_at=at(DAY, 12))

    pacific = Bounds.from_params(-30.0, 0.0, 170.0, -170.0)
    names = {p["name"] for p in build_heatmap(store, DAY, pacific)["pins"]}
    assert names == {"Fiji", "Samoa"}


def test_comment_on_deleted_pin_is_dropped(store, world):
    store.pins.delete_one({"_id": world["tower"]["_id"]})
    assert [p["name"] for p in build_heatmap(store, DAY)["pins"]] == ["Shibuya", "Louvre"]
