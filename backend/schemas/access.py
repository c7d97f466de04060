"""Access grant schemas — ephemeral, never persisted."""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ContentKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"


class OriginKind(str, Enum):
    INTERNAL = "internal"  # broker-issued signed URL required
    EXTERNAL = "external"  # provider URL usable as-is


class GrantStatus(str, Enum):
    ACTIVE = "active"        # signed credential, renewed before expiry
    EXTERNAL = "external"    # pass-through, provider enforces access
    DEGRADED = "degraded"    # authority unavailable, original URL used
    DENIED = "denied"        # authority refused, terminal for this item


class AccessGrant(BaseModel):
    content_id: str
    content_kind: ContentKind
    origin_kind: OriginKind
    credential: Optional[str] = None
    issued_at: datetime
    expires_at: Optional[datetime] = None
    status: GrantStatus = GrantStatus.ACTIVE
    provider: Optional[str] = None
    embed_url: Optional[str] = None  # player URL for external providers
    error: Optional[str] = None

    @property
    def is_external(self) -> bool:
        return self.origin_kind == OriginKind.EXTERNAL

    def is_valid_at(self, when: datetime) -> bool:
        """A credential must never be used at or past expires_at."""
        return self.expires_at is None or when < self.expires_at


class IssuedCredential(BaseModel):
    """What the credential authority hands back."""
    url: str
    expires_at: Optional[datetime] = None
    is_external: bool = False


class SignedUrlRequest(BaseModel):
    """Wire body of POST /api/content/signed-url."""
    content_id: str = Field(alias="contentId", min_length=1)
    url_type: ContentKind = Field(alias="urlType")

    model_config = {"populate_by_name": True}


class SignedUrlResponse(BaseModel):
    signed_url: str = Field(serialization_alias="signedUrl")
    is_external: bool = Field(serialization_alias="isExternal")
    expires_at: Optional[datetime] = Field(default=None, serialization_alias="expiresAt")
