"""
Heatmap rollups for one calendar day: per pin, per city, per country, plus
the day's top comments. The four result sets are independent queries over
the same day range; only the per-pin rollup honours the bounding box.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING

from database import PIN_COLLECTION, Store, serialize
from geo import box_filter
from queries import day_range, today

PIN_LIMIT = 200
CITY_LIMIT = 100
COUNTRY_LIMIT = 50
TOP_COMMENT_LIMIT = 50


@dataclass(frozen=True)
class Bounds:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @classmethod
    def from_params(cls, min_lat, max_lat, min_lng, max_lng) -> Optional["Bounds"]:
        """Bounds only when all four edges are given."""
        if None in (min_lat, max_lat, min_lng, max_lng):
            return None
        return cls(min_lat, max_lat, min_lng, max_lng)


def _pins_by_id(store: Store, ids) -> Dict[Any, Dict[str, Any]]:
    ids = [i for i in ids if i is not None]
    if not ids:
        return {}
    return {p["_id"]: p for p in store.pins.find({"_id": {"$in": ids}})}


def pin_rollup_pipeline(day_match: Dict[str, Any], bounds: Optional[Bounds] = None) -> List[Dict[str, Any]]:
    """Day's comments joined to their pin, boxed, then grouped per pin.

    Comments whose pin no longer exists drop out at the unwind.
    """
    pipeline: List[Dict[str, Any]] = [
        {"$match": {**day_match, "pin_id": {"$ne": None}}},
        {"$lookup": {"from": PIN_COLLECTION, "localField": "pin_id", "foreignField": "_id", "as": "pin"}},
        {"$unwind": "$pin"},
    ]
    if bounds is not None:
        pipeline.append({"$match": box_filter(
            bounds.min_lat, bounds.max_lat, bounds.min_lng, bounds.max_lng, prefix="pin.",
        )})
    pipeline += [
        {"$group": {
            "_id": "$pin_id",
            "pin": {"$first": "$pin"},
            "comment_count": {"$sum": 1},
            "total_score": {"$sum": "$score"},
            "top_comment_score": {"$max": "$score"},
        }},
        {"$sort": {"total_score": DESCENDING, "comment_count": DESCENDING, "_id": ASCENDING}},
        {"$limit": PIN_LIMIT},
    ]
    return pipeline


def pin_rollup(store: Store, day_match: Dict[str, Any], bounds: Optional[Bounds] = None) -> List[Dict[str, Any]]:
    rows = []
    for g in store.comments.aggregate(pin_rollup_pipeline(day_match, bounds)):
        pin = g["pin"]
        rows.append({
            "id": str(pin["_id"]),
            "name": pin["name"],
            "lat": pin["lat"],
            "lng": pin["lng"],
            "city": pin.get("city"),
            "country": pin.get("country"),
            "comment_count": g["comment_count"],
            "total_score": g["total_score"],
            "top_comment_score": g["top_comment_score"],
        })
    return rows
def city_rollup(store: Store, day_match: Dict[str, Any]) -> List[Dict[str, Any]]:
    groups = store.comments.aggregate([
        {"$match": {**day_match, "city": {"$ne": None}}},
        {"$group": {
            "_id": {"city": "$city", "country": "$country"},
            "comment_count": {"$sum": 1},
            "total_score": {"$sum": "$score"},
        }},
        {"$sort": {"total_score": DESCENDING, "comment_count": DESCENDING}},
        {"$limit": CITY_LIMIT},
    ])
    return [
        {
            "city": g["_id"]["city"],
            "country": g["_id"]["country"],
            "comment_count": g["comment_count"],
            "total_score": g["total_score"],
        }
        for g in groups
    ]


def country_rollup(store: Store, day_match: Dict[str, Any]) -> List[Dict[str, Any]]:
    groups = store.comments.aggregate([
        {"$match": day_match},
        {"$group": {
            "_id": "$country",
            "comment_count": {"$sum": 1},
            "total_score": {"$sum": "$score"},
        }},
        {"$sort": {"total_score": DESCENDING, "comment_count": DESCENDING}},
        {"$limit": COUNTRY_LIMIT},
    ])
    return [
        {"country": g["_id"], "comment_count": g["comment_count"], "total_score": g["total_score"]}
        for g in groups
    ]


def top_comments(store: Store, day_match: Dict[str, Any]) -> List[Dict[str, Any]]:
    comments = list(
        store.comments.find(day_match)
        .sort([("score", DESCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)])
        .limit(TOP_COMMENT_LIMIT)
    )
    pins = _pins_by_id(store, {c.get("pin_id") for c in comments})
    rows = []
    for c in comments:
        pin = pins.get(c.get("pin_id"))
        rows.append(serialize({
            "_id": c["_id"],
            "content": c["content"],
            "likes": c["likes"],
            "dislikes": c["dislikes"],
            "score": c["score"],
            "pin_id": c.get("pin_id"),
            "pin_name": pin["name"] if pin else None,
            "lat": pin["lat"] if pin else None,
            "lng": pin["lng"] if pin else None,
            "city": c.get("city"),
            "country": c.get("country"),
            "created_at": c["created_at"],
        }))
    return rows


def build_heatmap(store: Store, day: Optional[date] = None, bounds: Optional[Bounds] = None,
                  tz_name: str = "UTC") -> Dict[str, Any]:
    target = day or today(tz_name)
    start, end = day_range(target, tz_name)
    day_match = {"created_at": {"$gte": start, "$lt": end}}
    return {
        "date": target.isoformat(),
        "pins": pin_rollup(store, day_match, bounds),
        "cities": city_rollup(store, day_match),
        "countries": country_rollup(store, day_match),
        "topComments": top_comments(store, day_match),
    }
