"""
MongoDB access for the pinboard API.

``Store`` wraps one ``MongoClient`` and database name and hands out the
collections. Writes that must be atomic go through ``UnitOfWork`` /
``run_in_transaction`` which wrap a client session transaction. With
transactions disabled (standalone servers, tests) the unit of work runs with
no session and relies on single-document atomicity and unique indexes; a
``fn`` that writes several documents must undo its own earlier writes when a
later one fails and ``session`` is ``None``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.client_session import ClientSession
from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from errors import BadRequestError

logger = logging.getLogger(__name__)

MAX_TRANSACTION_ATTEMPTS = 5
MAX_COMMIT_ATTEMPTS = 3

USER_COLLECTION = "user"
PIN_COLLECTION = "pin"
COMMENT_COLLECTION = "comment"
VOTE_COLLECTION = "vote"
PIN_LOCK_COLLECTION = "pin_lock"


class Store:
    def __init__(self, client: MongoClient, name: str, transactional: bool = True):
        self.client = client
        self.db = client[name]
        self.transactional = transactional

    @property
    def users(self):
        return self.db[USER_COLLECTION]

    @property
    def pins(self):
        return self.db[PIN_COLLECTION]

    @property
    def comments(self):
        return self.db[COMMENT_COLLECTION]

    @property
    def votes(self):
        return self.db[VOTE_COLLECTION]

    @property
    def pin_locks(self):
        return self.db[PIN_LOCK_COLLECTION]

    def unit_of_work(self) -> "UnitOfWork":
        return UnitOfWork(self.client, self.transactional)

    def ensure_indexes(self):
        self.users.create_index("firebase_uid", unique=True)
        self.users.create_index("username_lower", unique=True)
        self.votes.create_index([("user_id", ASCENDING), ("comment_id", ASCENDING)], unique=True)
        self.comments.create_index([("pin_id", ASCENDING), ("created_at", DESCENDING)])
        self.comments.create_index([("country", ASCENDING), ("city", ASCENDING), ("created_at", DESCENDING)])
        self.comments.create_index([("created_at", DESCENDING)])
        self.comments.create_index([("score", DESCENDING), ("created_at", DESCENDING)])
        self.comments.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        self.pins.create_index([("lat", ASCENDING), ("lng", ASCENDING)])


class UnitOfWork:
    """Explicit begin/commit/rollback around one MongoDB transaction."""

    def __init__(self, client: MongoClient, transactional: bool = True):
        self.client = client
        self.transactional = transactional
        self.session: Optional[ClientSession] = None

    def begin(self):
        if not self.transactional:
            return
        self.session = self.client.start_session()
        self.session.start_transaction(
            read_concern=ReadConcern("snapshot"),
            write_concern=WriteConcern("majority"),
        )

    def commit(self):
        if self.session is None or not self.session.in_transaction:
            return
        for attempt in range(MAX_COMMIT_ATTEMPTS):
            try:
                self.session.commit_transaction()
                return
            except PyMongoError as exc:
                if exc.has_error_label("UnknownTransactionCommitResult") and attempt < MAX_COMMIT_ATTEMPTS - 1:
                    logger.warning("Retrying transaction commit: %s", exc)
                    continue
                raise

    def rollback(self):
        if self.session is not None and self.session.in_transaction:
            self.session.abort_transaction()

    def close(self):
        if self.session is not None:
            # ending a session aborts any transaction still open on it
            self.session.end_session()
            self.session = None

    def __enter__(self):
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            self.close()
        return False


def run_in_transaction(store: Store, fn: Callable[[Optional[ClientSession]], Any]) -> Any:
    """Run ``fn(session)`` in a unit of work, retrying on transient conflicts.

    Two transactions writing the same document (a comment's counters, a
    pin lock band) conflict on the server; the loser is aborted with the
    ``TransientTransactionError`` label and is replayed here from scratch so
    its reads observe the winner's writes.
    """
    for attempt in range(MAX_TRANSACTION_ATTEMPTS):
        try:
            with store.unit_of_work() as uow:
                return fn(uow.session)
        except PyMongoError as exc:
            if exc.has_error_label("TransientTransactionError") and attempt < MAX_TRANSACTION_ATTEMPTS - 1:
                logger.info("Transient transaction conflict, retrying (attempt %d)", attempt + 1)
                continue
            raise


# ---------- Utilities ----------

def now() -> datetime:
    # naive UTC, the form pymongo hands back when reading
    return datetime.now(timezone.utc).replace(tzinfo=None)


def oid(id_str: str, what: str = "id") -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except Exception:
        raise BadRequestError(f"Invalid {what}")


def serialize(doc: dict) -> dict:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, datetime):
            if v.tzinfo is None:
                v = v.replace(tzinfo=timezone.utc)
            d[k] = v.isoformat()
    return d
