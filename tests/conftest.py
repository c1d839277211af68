import threading
from datetime import datetime
from unittest.mock import MagicMock

import mongomock
import pytest
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from auth import Identity
from config import Settings
from database import Store, now
from errors import UnauthorizedError
from geocoding import Location, PlaceSuggestion
from moderation import ModerationResult


class FakeVerifier:
    """Accepts tokens of the form ``uid-<subject>``."""

    def verify(self, token):
        if token.startswith("uid-"):
            return Identity(subject_id=token[4:])
        raise UnauthorizedError("Invalid token")


class FakeGeocoder:
    def __init__(self, location=Location("Paris", "France"), suggestions=()):
        self.location = location
        self.suggestions = list(suggestions)
        self.calls = []

    def reverse_geocode(self, lat, lng):
        self.calls.append((lat, lng))
        return self.location

    def suggest_places(self, lat, lng):
        return self.suggestions


class FakeTranslator:
    def __init__(self):
        self.calls = []

    def translate(self, text, target_lang, source_lang="auto"):
        self.calls.append((text, target_lang))
        return f"[{target_lang}] {text}"


class FakeModerator:
    def __init__(self, banned=("frak",)):
        self.banned = set(banned)

    def moderate(self, text):
        dirty = any(word in text.lower().split() for word in self.banned)
        return ModerationResult(is_clean=not dirty, contains_profanity=dirty, cleaned_text=text)


@pytest.fixture
def store():
    s = Store(mongomock.MongoClient(), "pinboard_test", transactional=False)
    s.ensure_indexes()
    return s


SESSION_AWARE_OPS = (
    "find", "find_one", "insert_one", "update_one", "delete_one",
    "find_one_and_update", "count_documents", "aggregate",
)


@pytest.fixture
def server_ops(monkeypatch):
    """Make each collection call atomic, as a server would, and record its session.

    Returns the list of sessions seen, in call order.
    """
    lock = threading.RLock()
    sessions = []

    for name in SESSION_AWARE_OPS:
        original = getattr(mongomock.Collection, name)

        def op(self, *args, _original=original, session=None, **kwargs):
            with lock:
                sessions.append(session)
                return _original(self, *args, **kwargs)

        monkeypatch.setattr(mongomock.Collection, name, op)
    return sessions


@pytest.fixture
def session():
    return MagicMock(name="session")


@pytest.fixture
def tx_store(store, server_ops, session):
    """Store whose units of work open ``session``; data still lives in mongomock."""
    store.client = MagicMock(name="client")
    store.client.start_session.return_value = session
    store.transactional = True
    return store


@pytest.fixture
def fail_inserts(monkeypatch):
    def arm(collection_name):
        original = mongomock.Collection.insert_one

        def insert_one(self, document, *args, **kwargs):
            if self.name == collection_name:
                raise PyMongoError(f"insert into {collection_name} failed")
            return original(self, document, *args, **kwargs)

        monkeypatch.setattr(mongomock.Collection, "insert_one", insert_one)
    return arm


@pytest.fixture
def geocoder():
    return FakeGeocoder(suggestions=[PlaceSuggestion("abc", "Cafe", 48.0, 2.0, ["cafe"])])


@pytest.fixture
def translator():
    return FakeTranslator()


@pytest.fixture
def moderator():
    return FakeModerator()


@pytest.fixture
def settings():
    return Settings(app_env="production", mongo_transactions=False)


@pytest.fixture
def client(store, geocoder, translator, moderator, settings):
    from main import create_app

    app = create_app(
        settings,
        store=store,
        verifier=FakeVerifier(),
        geocoder=geocoder,
        translator=translator,
        moderator=moderator,
    )
    return TestClient(app)


def make_user(store, username="alice", uid=None, last_post_date=None):
    doc = {
        "firebase_uid": uid or f"fb-{username}",
        "username": username,
        "username_lower": username.lower(),
        "created_at": now(),
        "last_post_date": last_post_date,
    }
    doc["_id"] = store.users.insert_one(doc).inserted_id
    return doc


def make_pin(store, name="Pin", lat=48.8566, lng=2.3522, city="Paris", country="France", user=None):
    doc = {
        "name": name,
        "lat": lat,
        "lng": lng,
        "google_place_id": None,
        "city": city,
        "country": country,
        "created_by": user["_id"] if user else None,
        "created_at": now(),
    }
    doc["_id"] = store.pins.insert_one(doc).inserted_id
    return doc


def make_comment(store, user, content="hello", pin=None, city="Paris", country="France",
                 likes=0, dislikes=0, created_at=None, translated_content=None):
    doc = {
        "user_id": user["_id"],
        "pin_id": pin["_id"] if pin else None,
        "city": city,
        "country": country,
        "content": content,
        "likes": likes,
        "dislikes": dislikes,
        "score": likes - dislikes,
        "translated_content": translated_content or {},
        "created_at": created_at or now(),
    }
    doc["_id"] = store.comments.insert_one(doc).inserted_id
    return doc


def at(day, hour=12, minute=0):
    return datetime(day.year, day.month, day.day, hour, minute)
