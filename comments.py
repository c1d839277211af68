import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument

from database import Store, now, oid, run_in_transaction, serialize
from errors import BadRequestError, ForbiddenError, NotFoundError, TooManyRequestsError
from geocoding import GoogleGeocoder, Location
from moderation import ProfanityModerator
from pins import resolve_pin_for_comment, validate_coordinates, validate_pin_name
from queries import comment_filter, page_params, pagination, sort_for, today
from translation import MyMemoryTranslator

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 1000
MAX_TRANSLATION_WORKERS = 8
DAILY_LIMIT_MESSAGE = "You can only post one comment per day"


@dataclass(frozen=True)
class NewPin:
    name: str
    lat: float
    lng: float
    google_place_id: Optional[str] = None


# ---------- Reads ----------

def display_content(comment: Dict[str, Any], lang: str, translator: MyMemoryTranslator) -> str:
    """Cached translation when present, otherwise translate now.

    On-demand translations are not written back to the comment.
    """
    cached = (comment.get("translated_content") or {}).get(lang)
    if cached:
        return cached
    return translator.translate(comment["content"], lang)


def display_contents(comments: List[Dict[str, Any]], lang: str, translator: MyMemoryTranslator) -> List[str]:
    """``display_content`` for each comment, cache misses translated in parallel."""
    if not comments:
        return []
    with ThreadPoolExecutor(max_workers=min(MAX_TRANSLATION_WORKERS, len(comments))) as pool:
        return list(pool.map(lambda c: display_content(c, lang, translator), comments))


def present_comments(store: Store, comments: List[Dict[str, Any]], lang: Optional[str],
                     translator: Optional[MyMemoryTranslator]) -> List[Dict[str, Any]]:
    user_ids = {c["user_id"] for c in comments}
    pin_ids = {c["pin_id"] for c in comments if c.get("pin_id")}
    users = {u["_id"]: u for u in store.users.find({"_id": {"$in": list(user_ids)}}, {"username": 1})}
    pins = {p["_id"]: p for p in store.pins.find({"_id": {"$in": list(pin_ids)}}, {"name": 1})} if pin_ids else {}

    displayed = display_contents(comments, lang, translator) if lang and translator is not None else None

    rows = []
    for i, c in enumerate(comments):
        user = users.get(c["user_id"])
        pin = pins.get(c.get("pin_id"))
        row = serialize({
            "_id": c["_id"],
            "content": c["content"],
            "translated_content": c.get("translated_content") or {},
            "country": c.get("country"),
            "city": c.get("city"),
            "likes": c["likes"],
            "dislikes": c["dislikes"],
            "created_at": c["created_at"],
            "username": user["username"] if user else None,
            "pin_id": pin["_id"] if pin else None,
            "pin_name": pin["name"] if pin else None,
        })
        if displayed is not None:
            row["displayContent"] = displayed[i]
        rows.append(row)
    return rows


def list_comments(
    store: Store,
    pin_id: Optional[str] = None,
    city: Optional[str] = None,
    country: Optional[str] = None,
    day: Optional[date] = None,
    sort: Optional[str] = "top",
    page: Optional[int] = 1,
    limit: Optional[int] = 20,
    lang: Optional[str] = None,
    translator: Optional[MyMemoryTranslator] = None,
    tz_name: str = "UTC",
) -> Dict[str, Any]:
    query = comment_filter(pin_id=pin_id, city=city, country=country, day=day, tz_name=tz_name)
    page_num, limit_num, offset = page_params(page, limit)
    items = list(store.comments.find(query).sort(sort_for(sort)).skip(offset).limit(limit_num))
    total = store.comments.count_documents(query)
    return {
        "comments": present_comments(store, items, lang, translator),
        "pagination": pagination(page_num, limit_num, total),
    }


def get_comment(store: Store, comment_id: str, lang: Optional[str] = None,
                translator: Optional[MyMemoryTranslator] = None) -> Dict[str, Any]:
    c = store.comments.find_one({"_id": oid(comment_id, "comment id")})
    if not c:
        raise NotFoundError("Comment not found")
    return present_comments(store, [c], lang, translator)[0]


# ---------- Writes ----------

def posted_today(user: Dict[str, Any], tz_name: str = "UTC") -> bool:
    return user.get("last_post_date") == today(tz_name).isoformat()


def validate_content(content: Any) -> str:
    if not content or not isinstance(content, str):
        raise BadRequestError("Content is required")
    trimmed = content.strip()
    if len(trimmed) < 1 or len(trimmed) > MAX_CONTENT_LENGTH:
        raise BadRequestError(f"Content must be between 1 and {MAX_CONTENT_LENGTH} characters")
    return trimmed


def _undo_post(store: Store, user_id: ObjectId, day: str, previous_day: Optional[str],
               created_pin_id: Optional[ObjectId]):
    logger.warning("Comment insert by user %s failed; releasing daily gate", user_id)
    store.users.update_one(
        {"_id": user_id, "last_post_date": day},
        {"$set": {"last_post_date": previous_day}},
    )
    if created_pin_id is not None:
        store.pins.delete_one({"_id": created_pin_id})


def create_comment(
    store: Store,
    geocoder: GoogleGeocoder,
    moderator: ProfanityModerator,
    user: Dict[str, Any],
    content: Any,
    country: Optional[str] = None,
    city: Optional[str] = None,
    pin_id: Optional[str] = None,
    new_pin: Optional[NewPin] = None,
    tz_name: str = "UTC",
) -> Dict[str, Any]:
    if posted_today(user, tz_name):
        raise TooManyRequestsError(DAILY_LIMIT_MESSAGE)

    text = validate_content(content)
    if not moderator.moderate(text).is_clean:
        raise ForbiddenError("Comment contains inappropriate content")

    final_pin_id: Optional[ObjectId] = None
    final_city = city or None
    final_country = country or None

    if pin_id:
        pin = store.pins.find_one({"_id": oid(pin_id, "pinId")})
        if pin is None:
            raise NotFoundError("Pin not found")
        final_pin_id = pin["_id"]
        if not final_country:
            final_city, final_country = pin.get("city"), pin.get("country")

    location: Optional[Location] = None
    if new_pin is not None:
        lat, lng = validate_coordinates(new_pin.lat, new_pin.lng)
        new_pin = NewPin(validate_pin_name(new_pin.name), lat, lng, new_pin.google_place_id)
        # geocode before the transaction opens, never while holding it
        location = geocoder.reverse_geocode(lat, lng)
        if not location.country:
            raise BadRequestError("Could not determine location country")
        final_city, final_country = location.city, location.country

    if not final_country:
        raise BadRequestError("Country is required")

    day = today(tz_name).isoformat()

    def work(session):
        # the daily gate is re-checked atomically so two parallel posts cannot both pass
        before = store.users.find_one_and_update(
            {"_id": user["_id"], "last_post_date": {"$ne": day}},
            {"$set": {"last_post_date": day}},
            return_document=ReturnDocument.BEFORE,
            session=session,
        )
        if before is None:
            raise TooManyRequestsError(DAILY_LIMIT_MESSAGE)

        created_pin_id = None
        try:
            attached_pin_id = final_pin_id
            if new_pin is not None:
                pin, created = resolve_pin_for_comment(
                    store, session, user["_id"], new_pin.name, new_pin.lat, new_pin.lng,
                    new_pin.google_place_id, location,
                )
                attached_pin_id = pin["_id"]
                if created:
                    created_pin_id = pin["_id"]
                else:
                    logger.info("Reusing pin %s for comment near (%s, %s)", pin["_id"], new_pin.lat, new_pin.lng)

            doc = {
                "user_id": user["_id"],
                "pin_id": attached_pin_id,
                "city": final_city,
                "country": final_country,
                "content": text,
                "likes": 0,
                "dislikes": 0,
                "score": 0,
                "translated_content": {},
                "created_at": now(),
            }
            res = store.comments.insert_one(doc, session=session)
            doc["_id"] = res.inserted_id
            return doc
        except Exception:
            if session is None:
                # no transaction to abort: undo the writes that already landed
                _undo_post(store, user["_id"], day, before.get("last_post_date"), created_pin_id)
            raise

    doc = run_in_transaction(store, work)
    logger.info("Comment %s created by user %s", doc["_id"], user["_id"])
    return serialize({
        "_id": doc["_id"],
        "content": doc["content"],
        "country": doc["country"],
        "city": doc["city"],
        "pin_id": doc["pin_id"],
        "likes": 0,
        "dislikes": 0,
        "created_at": doc["created_at"],
    })
