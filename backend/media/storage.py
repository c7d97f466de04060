"""Media storage layout — buckets, paths and storage URL parsing.

BUCKET STRATEGY:
  course-videos      Private. Lesson videos & audio (signed URLs)
  course-files       Private. Downloadable resources (PDFs, docs)
  course-thumbnails  Public. Marketing images only

Object URLs look like
  {STORAGE_BASE_URL}/storage/v1/object/public/<bucket>/<path>
  {STORAGE_BASE_URL}/storage/v1/object/<bucket>/<path>
"""
import re
from typing import NamedTuple, Optional

from schemas.access import ContentKind

BUCKET_VIDEOS = "course-videos"
BUCKET_FILES = "course-files"
BUCKET_THUMBNAILS = "course-thumbnails"

PRIVATE_BUCKETS = frozenset({BUCKET_VIDEOS, BUCKET_FILES})

_PUBLIC_OBJECT = re.compile(r"/storage/v1/object/public/([^/]+)/(.+)")
_PRIVATE_OBJECT = re.compile(r"/storage/v1/object/([^/]+)/(.+)")


class StorageObject(NamedTuple):
    bucket: str
    path: str


def bucket_for_kind(kind: ContentKind) -> str:
    """Video and audio share the videos bucket."""
    if kind in (ContentKind.VIDEO, ContentKind.AUDIO):
        return BUCKET_VIDEOS
    return BUCKET_FILES


def parse_storage_url(url: Optional[str]) -> Optional[StorageObject]:
    """Extract bucket + object path, or None if `url` is not a storage object URL."""
    if not url:
        return None
    path = url.split("?", 1)[0]
    m = _PUBLIC_OBJECT.search(path) or _PRIVATE_OBJECT.search(path)
    if m is None:
        return None
    return StorageObject(bucket=m.group(1), path=m.group(2))


def is_platform_storage_url(url: Optional[str], storage_base_url: str) -> bool:
    """True if `url` points at our own storage host."""
    if not url or not storage_base_url:
        return False
    return url.startswith(storage_base_url.rstrip("/") + "/")
