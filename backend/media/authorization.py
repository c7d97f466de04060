"""Content access policy — who may obtain a credential for a content item.

Allowed: the course mentor, platform admins, students enrolled in the course.
Content → section → course is resolved from the course collections.
"""
import logging

from core.database import find_one_safe
from core.exceptions import ContentNotFoundError, CredentialDeniedError
from schemas.access import ContentKind

logger = logging.getLogger(__name__)

_URL_FIELDS = {
    ContentKind.VIDEO: "video_url",
    ContentKind.AUDIO: "audio_url",
    ContentKind.FILE: "file_url",
}


async def _course_for_content(content: dict) -> dict:
    section = await find_one_safe("course_sections", {"section_id": content.get("section_id")})
    if section is None:
        raise ContentNotFoundError("Content not found")
    course = await find_one_safe("courses", {"course_id": section.get("course_id")})
    if course is None:
        raise ContentNotFoundError("Content not found")
    return course


async def is_admin(user_id: str) -> bool:
    role = await find_one_safe("user_roles", {"user_id": user_id, "role": "admin"})
    return role is not None


async def is_enrolled(user_id: str, course_id: str) -> bool:
    enrollment = await find_one_safe("enrollments", {"course_id": course_id, "student_id": user_id})
    return enrollment is not None


async def authorize_content_access(user_id: str, content_id: str, kind: ContentKind) -> str:
    """Return the stored source URL of `kind` for the content, if `user_id` may access it.

    Raises ContentNotFoundError (404) or CredentialDeniedError (403).
    """
    content = await find_one_safe("course_content", {"content_id": content_id})
    if content is None:
        raise ContentNotFoundError("Content not found")

    course = await _course_for_content(content)
    course_id = course.get("course_id")

    if user_id == course.get("mentor_id"):
        role = "mentor"
    elif await is_admin(user_id):
        role = "admin"
    elif await is_enrolled(user_id, course_id):
        role = "student"
    else:
        logger.warning("Access refused: user=%s content=%s course=%s", user_id, content_id, course_id)
        raise CredentialDeniedError("Not enrolled in this course", status_code=403)

    source_url = content.get(_URL_FIELDS[kind])
    if not source_url:
        raise ContentNotFoundError(f"No {kind.value} URL found for this content")

    logger.debug("Access granted: user=%s content=%s role=%s", user_id, content_id, role)
    return source_url
