"""Shared fixtures: isolated settings and an in-memory stand-in for the motor database."""
from datetime import datetime, timezone
from pathlib import Path
import copy
import sys
from types import SimpleNamespace

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from config.settings import get_settings
from core import database

TEST_ENV = {
    "ENV": "dev",
    "JWT_SECRET": "test-jwt-secret",
    "MEDIA_SIGNING_SECRET": "test-media-secret",
    "STORAGE_BASE_URL": "https://media.coursegate.test",
    "CREDENTIAL_AUTHORITY_URL": "https://api.coursegate.test/api/content/signed-url",
    "LOG_REDACTION_ENABLED": "true",
}


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


def _utc(value):
    # pymongo stores aware datetimes as UTC and returns them naive
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _matches(doc: dict, query: dict) -> bool:
    for key, expected in query.items():
        actual = doc.get(key)
        if isinstance(expected, dict) and "$ne" in expected:
            if actual == expected["$ne"]:
                return False
        elif isinstance(expected, dict) and "$gt" in expected:
            if actual is None or not _utc(actual) > _utc(expected["$gt"]):
                return False
        elif actual != expected:
            return False
    return True


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        self._docs.sort(key=lambda d: _utc(d.get(key)), reverse=direction < 0)
        return self

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


class FakeCollection:
    """Just enough of AsyncIOMotorCollection for the code under test."""

    def __init__(self):
        self.docs: list[dict] = []
        self.fail_with: Exception | None = None

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def create_index(self, *args, **kwargs):
        return "ok"

    async def insert_one(self, doc):
        self._check()
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=len(self.docs))

    async def find_one(self, query, projection=None):
        self._check()
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query, projection=None):
        self._check()
        return FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, query)])

    async def update_one(self, query, update, upsert=False):
        self._check()
        for doc in self.docs:
            if _matches(doc, query):
                before = dict(doc)
                doc.update(update.get("$set", {}))
                return SimpleNamespace(matched_count=1, modified_count=int(doc != before), upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.update(update.get("$set", {}))
            doc.update(update.get("$setOnInsert", {}))
            self.docs.append(doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=len(self.docs))
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)


class FakeDB:
    def __init__(self):
        self._collections: dict[str, FakeCollection] = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self._collections.setdefault(name, FakeCollection())

    def __getitem__(self, name):
        return getattr(self, name)


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeDB()
    monkeypatch.setattr(database, "_db", db)
    return db


@pytest.fixture
def course_db(fake_db):
    """One course with a mentor, an enrolled student, an admin and a few content items."""
    base = TEST_ENV["STORAGE_BASE_URL"]
    fake_db.courses.docs.append({"course_id": "course-1", "mentor_id": "mentor-1"})
    fake_db.course_sections.docs.append({"section_id": "sec-1", "course_id": "course-1"})
    fake_db.course_content.docs.extend([
        {
            "content_id": "c1",
            "section_id": "sec-1",
            "video_url": f"{base}/storage/v1/object/course-videos/lessons/c1/intro video.mp4",
            "audio_url": "https://open.spotify.com/episode/4rOoJ6Egrf8K2IrywzwOMk",
            "file_url": "https://cdn.partner.org/notes.pdf",
        },
        {"content_id": "c2", "section_id": "sec-1"},
        {"content_id": "c3", "section_id": "sec-1", "video_url": f"{base}/uploads/raw.mp4"},
        {"content_id": "orphan", "section_id": "missing", "video_url": f"{base}/storage/v1/object/course-videos/x.mp4"},
    ])
    fake_db.enrollments.docs.append({"course_id": "course-1", "student_id": "student-1"})
    fake_db.user_roles.docs.append({"user_id": "admin-1", "role": "admin"})
    return fake_db
