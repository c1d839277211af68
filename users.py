import logging
import re
from typing import Any, Dict, Optional

from pymongo.errors import DuplicateKeyError

from comments import present_comments
from database import Store, now, serialize
from errors import BadRequestError, ConflictError, NotFoundError
from queries import page_params, pagination, sort_for

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


def validate_username(username: Any) -> str:
    if not username or not isinstance(username, str):
        raise BadRequestError("Username is required")
    trimmed = username.strip()
    if len(trimmed) < 3 or len(trimmed) > 30:
        raise BadRequestError("Username must be between 3 and 30 characters")
    if not USERNAME_RE.match(trimmed):
        raise BadRequestError("Username can only contain letters, numbers, and underscores")
    return trimmed


def find_by_username(store: Store, username: str) -> Optional[Dict[str, Any]]:
    return store.users.find_one({"username_lower": username.strip().lower()})


def find_by_subject(store: Store, firebase_uid: str) -> Optional[Dict[str, Any]]:
    return store.users.find_one({"firebase_uid": firebase_uid})


def register(store: Store, firebase_uid: str, username: Any) -> Dict[str, Any]:
    name = validate_username(username)

    if find_by_subject(store, firebase_uid):
        raise ConflictError("User already registered")
    if find_by_username(store, name):
        raise ConflictError("Username already taken")

    doc = {
        "firebase_uid": firebase_uid,
        "username": name,
        "username_lower": name.lower(),
        "created_at": now(),
        "last_post_date": None,
    }
    try:
        res = store.users.insert_one(doc)
    except DuplicateKeyError as exc:
        # lost a race against a concurrent registration
        if "firebase_uid" in str(exc):
            raise ConflictError("User already registered")
        raise ConflictError("Username already taken")
    logger.info("Registered user %s", name)
    return serialize({"_id": res.inserted_id, "username": name, "created_at": doc["created_at"]})


def get_profile(store: Store, username: str) -> Dict[str, Any]:
    user = find_by_username(store, username)
    if not user:
        raise NotFoundError("User not found")
    return {
        "username": user["username"],
        "createdAt": serialize({"created_at": user["created_at"]})["created_at"],
        "commentCount": store.comments.count_documents({"user_id": user["_id"]}),
    }


def get_comment_history(store: Store, username: str, sort: Optional[str] = "newest",
                        page: Optional[int] = 1, limit: Optional[int] = 20) -> Dict[str, Any]:
    user = find_by_username(store, username)
    if not user:
        raise NotFoundError("User not found")

    query = {"user_id": user["_id"]}
    page_num, limit_num, offset = page_params(page, limit)
    items = list(
        store.comments.find(query).sort(sort_for(sort, default="newest")).skip(offset).limit(limit_num)
    )
    total = store.comments.count_documents(query)
    return {
        "comments": present_comments(store, items, None, None),
        "pagination": pagination(page_num, limit_num, total),
    }
