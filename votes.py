"""
Vote ledger: one vote per (user, comment), with the comment's ``likes``,
``dislikes`` and ``score`` counters moved in the same transaction as the
ledger row. Counter changes are ``$inc`` updates on the comment document, so
two transactions voting on one comment conflict and one is replayed instead
of overwriting the other's count.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from database import Store, now, oid, run_in_transaction
from errors import BadRequestError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)

LIKE = 1
DISLIKE = -1
COUNTERS = {LIKE: "likes", DISLIKE: "dislikes"}

CREATED = "created"
REMOVED = "removed"
UPDATED = "updated"


@dataclass(frozen=True)
class VoteResult:
    action: str
    vote_type: Optional[int]

    @property
    def message(self) -> str:
        return {
            CREATED: "Vote recorded",
            REMOVED: "Vote removed",
            UPDATED: "Vote updated",
        }[self.action]


def counter_delta(removed: Optional[int] = None, added: Optional[int] = None) -> Dict[str, int]:
    """``$inc`` document for taking back one vote and/or adding another."""
    inc = {"likes": 0, "dislikes": 0, "score": 0}
    if removed is not None:
        inc[COUNTERS[removed]] -= 1
        inc["score"] -= removed
    if added is not None:
        inc[COUNTERS[added]] += 1
        inc["score"] += added
    return {k: v for k, v in inc.items() if v}


def validate_vote_type(vote_type) -> int:
    # bool is an int subclass; True must not count as a like
    if isinstance(vote_type, bool) or not isinstance(vote_type, (int, float)) or vote_type not in COUNTERS:
        raise BadRequestError("voteType must be 1 (like) or -1 (dislike)")
    return int(vote_type)


def cast_vote(store: Store, user_id: ObjectId, comment_id: str, vote_type: int) -> VoteResult:
    vote_type = validate_vote_type(vote_type)
    cid = oid(comment_id, "commentId")

    def work(session):
        if store.comments.find_one({"_id": cid}, {"_id": 1}, session=session) is None:
            raise NotFoundError("Comment not found")

        existing = store.votes.find_one({"user_id": user_id, "comment_id": cid}, session=session)

        if existing is None:
            store.votes.insert_one({
                "user_id": user_id,
                "comment_id": cid,
                "vote_type": vote_type,
                "created_at": now(),
            }, session=session)
            store.comments.update_one({"_id": cid}, {"$inc": counter_delta(added=vote_type)}, session=session)
            return VoteResult(CREATED, vote_type)

        old_type = existing["vote_type"]
        if old_type == vote_type:
            res = store.votes.delete_one({"_id": existing["_id"], "vote_type": old_type}, session=session)
            if res.deleted_count != 1:
                raise ConflictError("Vote was modified concurrently, please retry")
            store.comments.update_one({"_id": cid}, {"$inc": counter_delta(removed=old_type)}, session=session)
            return VoteResult(REMOVED, None)

        res = store.votes.update_one(
            {"_id": existing["_id"], "vote_type": old_type},
            {"$set": {"vote_type": vote_type}},
            session=session,
        )
        if res.modified_count != 1:
            raise ConflictError("Vote was modified concurrently, please retry")
        store.comments.update_one(
            {"_id": cid},
            {"$inc": counter_delta(removed=old_type, added=vote_type)},
            session=session,
        )
        return VoteResult(UPDATED, vote_type)

    try:
        result = run_in_transaction(store, work)
    except DuplicateKeyError:
        raise ConflictError("Vote was modified concurrently, please retry")
    logger.info("Vote %s on comment %s by user %s", result.action, cid, user_id)
    return result


def remove_vote(store: Store, user_id: ObjectId, comment_id: str) -> None:
    cid = oid(comment_id, "commentId")

    def work(session):
        existing = store.votes.find_one({"user_id": user_id, "comment_id": cid}, session=session)
        if existing is None:
            raise NotFoundError("Vote not found")
        res = store.votes.delete_one({"_id": existing["_id"], "vote_type": existing["vote_type"]}, session=session)
        if res.deleted_count != 1:
            raise ConflictError("Vote was modified concurrently, please retry")
        store.comments.update_one(
            {"_id": cid},
            {"$inc": counter_delta(removed=existing["vote_type"])},
            session=session,
        )

    run_in_transaction(store, work)
    logger.info("Vote removed on comment %s by user %s", cid, user_id)
