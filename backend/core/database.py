"""MongoDB async connection manager.

Provides singleton client and database references.
Creates indexes on startup for session, audit and course collections.
"""
import logging
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from config.settings import get_settings

logger = logging.getLogger(__name__)

_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = AsyncIOMotorClient(settings.MONGO_URL)
    return _client


def get_db() -> AsyncIOMotorDatabase:
    global _db
    if _db is None:
        settings = get_settings()
        _db = get_client()[settings.DB_NAME]
    return _db


async def init_indexes() -> None:
    """Create required indexes. Idempotent."""
    db = get_db()

    # User sessions: one row per session_token, upsert target
    await db.user_sessions.create_index("session_token", unique=True)
    await db.user_sessions.create_index([("user_id", 1), ("is_active", 1)])
    await db.user_sessions.create_index("last_active_at")

    # Security flags: admin review by user + time
    await db.security_flags.create_index([("user_id", 1), ("detected_at", -1)])

    # Audit events: time-series queries
    await db.audit_events.create_index([("user_id", 1), ("timestamp", -1)])
    await db.audit_events.create_index("event_type")

    # Course content authorization lookups
    await db.course_content.create_index("content_id", unique=True)
    await db.course_sections.create_index("section_id", unique=True)
    await db.courses.create_index("course_id", unique=True)
    await db.enrollments.create_index([("course_id", 1), ("student_id", 1)], unique=True)
    await db.user_roles.create_index([("user_id", 1), ("role", 1)])

    logger.info("MongoDB indexes initialized")


async def close_db() -> None:
    global _client, _db
    if _client:
        _client.close()
        _client = None
        _db = None
        logger.info("MongoDB connection closed")


# ── Safe query helpers (always exclude _id to prevent ObjectId serialization) ──

async def find_one_safe(
    collection_name: str,
    query: dict,
    extra_projection: dict | None = None,
) -> dict | None:
    """find_one with _id excluded by default."""
    db = get_db()
    projection: dict = {"_id": 0}
    if extra_projection:
        projection.update(extra_projection)
    return await getattr(db, collection_name).find_one(query, projection)
