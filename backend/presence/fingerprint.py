"""Device fingerprint — coarse similarity signal for concurrent-login detection.

Digest of stable client characteristics (user agent, locale, screen geometry,
timezone offset). Collisions are acceptable; this is NOT an identity proof and
must never be used as a security boundary.
"""
import hashlib
import locale
import platform
import sys
import time
from typing import Optional

from pydantic import BaseModel

FINGERPRINT_LENGTH = 12


class ClientEnvironment(BaseModel):
    """Read-only view of the client signals available to this process."""
    user_agent: str = ""
    language: str = ""
    screen_width: int = 0
    screen_height: int = 0
    color_depth: int = 0
    timezone_offset_min: int = 0  # minutes, sign as in JS getTimezoneOffset()
    country_code: Optional[str] = None

    @classmethod
    def detect(cls) -> "ClientEnvironment":
        """Build from the running Python process (headless clients, workers)."""
        lang = locale.getlocale()[0] or ""
        offset_s = time.altzone if time.localtime().tm_isdst > 0 else time.timezone
        return cls(
            user_agent=f"{platform.system()}/{platform.release()} Python/{sys.version.split()[0]}",
            language=lang.replace("_", "-"),
            timezone_offset_min=offset_s // 60,
        )

    def signal_string(self) -> str:
        return "|".join(
            str(v) for v in (
                self.user_agent,
                self.language,
                self.screen_width,
                self.screen_height,
                self.color_depth,
                self.timezone_offset_min,
            )
        )


def compute_fingerprint(env: ClientEnvironment) -> str:
    """Short deterministic digest of the environment signals."""
    digest = hashlib.sha256(env.signal_string().encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]
