"""External media providers — origin classification and embed info.

Content hosted by a public third party carries no confidentiality
requirement from our storage, so it is used as-is. Everything else is
`internal` and must go through the credential authority.

classify() is total: empty, malformed or unknown URLs are `internal`, which
defers the decision to the authority instead of guessing.
"""
import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple
from urllib.parse import quote, urlsplit

from pydantic import BaseModel

from schemas.access import ContentKind, OriginKind


@dataclass(frozen=True)
class ExternalProvider:
    name: str
    family: ContentKind
    hosts: Tuple[str, ...]
    media_id: re.Pattern
    embed: Callable[[re.Match, str], str]


def _youtube_embed(m: re.Match, url: str) -> str:
    return f"https://www.youtube.com/embed/{m.group(1)}?rel=0&modestbranding=1"


def _apple_music_embed(m: re.Match, url: str) -> str:
    country, album_id, song_id = m.group(1), m.group(2), m.group(3)
    path = f"{country}/album/{album_id}?i={song_id}" if song_id else f"{country}/album/{album_id}"
    return f"https://embed.music.apple.com/{path}"


def _soundcloud_embed(m: re.Match, url: str) -> str:
    return (
        f"https://w.soundcloud.com/player/?url={quote(url, safe='')}"
        "&color=%23ff5500&auto_play=false&hide_related=true&show_comments=false"
        "&show_user=true&show_reposts=false&show_teaser=false"
    )


# Order matters: music.youtube.com must win over youtube.com
PROVIDERS: Tuple[ExternalProvider, ...] = (
    ExternalProvider(
        name="youtube_music",
        family=ContentKind.AUDIO,
        hosts=("music.youtube.com",),
        media_id=re.compile(r"[?&]v=([a-zA-Z0-9_-]{11})"),
        embed=_youtube_embed,
    ),
    ExternalProvider(
        name="youtube",
        family=ContentKind.VIDEO,
        hosts=("youtube.com", "youtu.be", "youtube-nocookie.com"),
        media_id=re.compile(
            r"(?:youtube(?:-nocookie)?\.com/(?:watch\?v=|embed/|v/|shorts/)|youtu\.be/)([a-zA-Z0-9_-]{11})"
        ),
        embed=_youtube_embed,
    ),
    ExternalProvider(
        name="vimeo",
        family=ContentKind.VIDEO,
        hosts=("vimeo.com",),
        media_id=re.compile(r"vimeo\.com/(?:video/)?(\d+)"),
        embed=lambda m, url: f"https://player.vimeo.com/video/{m.group(1)}",
    ),
    ExternalProvider(
        name="wistia",
        family=ContentKind.VIDEO,
        hosts=("wistia.com", "wistia.net", "wi.st"),
        media_id=re.compile(r"(?:wistia\.com/medias/|wi\.st/medias/)([a-zA-Z0-9]+)"),
        embed=lambda m, url: f"https://fast.wistia.net/embed/iframe/{m.group(1)}",
    ),
    ExternalProvider(
        name="loom",
        family=ContentKind.VIDEO,
        hosts=("loom.com",),
        media_id=re.compile(r"loom\.com/(?:share|embed)/([a-zA-Z0-9]+)"),
        embed=lambda m, url: f"https://www.loom.com/embed/{m.group(1)}",
    ),
    ExternalProvider(
        name="spotify",
        family=ContentKind.AUDIO,
        hosts=("spotify.com",),
        media_id=re.compile(r"spotify\.com/(track|episode|album|playlist)/([a-zA-Z0-9]+)"),
        embed=lambda m, url: f"https://open.spotify.com/embed/{m.group(1)}/{m.group(2)}",
    ),
    ExternalProvider(
        name="apple_music",
        family=ContentKind.AUDIO,
        hosts=("music.apple.com",),
        media_id=re.compile(
            r"music\.apple\.com/([a-z]{2})/(?:album|playlist|song)/[^/]+/([a-zA-Z0-9]+)(?:\?i=(\d+))?"
        ),
        embed=_apple_music_embed,
    ),
    ExternalProvider(
        name="soundcloud",
        family=ContentKind.AUDIO,
        hosts=("soundcloud.com",),
        media_id=re.compile(r"soundcloud\.com/([a-zA-Z0-9_-]+)/([a-zA-Z0-9_-]+)"),
        embed=_soundcloud_embed,
    ),
)

_DISPLAY_NAMES = {
    "youtube": "YouTube",
    "vimeo": "Vimeo",
    "wistia": "Wistia",
    "loom": "Loom",
    "spotify": "Spotify",
    "apple_music": "Apple Music",
    "soundcloud": "SoundCloud",
    "youtube_music": "YouTube Music",
}


class EmbedInfo(BaseModel):
    is_external: bool
    provider: Optional[str] = None
    embed_url: Optional[str] = None


def _host_of(url: str) -> Optional[str]:
    raw = url.strip()
    try:
        parts = urlsplit(raw if "://" in raw else f"//{raw}")
        return parts.hostname
    except ValueError:
        return None


def match_provider(url: Optional[str]) -> Optional[ExternalProvider]:
    """Provider whose host signature matches `url`, if any."""
    if not url or not isinstance(url, str):
        return None
    host = _host_of(url)
    if not host:
        return None
    for provider in PROVIDERS:
        for h in provider.hosts:
            if host == h or host.endswith("." + h):
                return provider
    return None


def classify(url: Optional[str]) -> OriginKind:
    """Pure and total: known provider → external, anything else → internal."""
    if match_provider(url) is not None:
        return OriginKind.EXTERNAL
    return OriginKind.INTERNAL


def embed_info(url: Optional[str]) -> EmbedInfo:
    """Provider + embeddable player URL for external media."""
    provider = match_provider(url)
    if provider is None:
        return EmbedInfo(is_external=False)
    m = provider.media_id.search(url)
    return EmbedInfo(
        is_external=True,
        provider=provider.name,
        embed_url=provider.embed(m, url) if m else None,
    )


def provider_display_name(provider: Optional[str], kind: ContentKind = ContentKind.VIDEO) -> str:
    if provider in _DISPLAY_NAMES:
        return _DISPLAY_NAMES[provider]
    return "Audio" if kind == ContentKind.AUDIO else "Video"
