# src/services/ids.py
import re
from typing import Literal, Optional, Tuple
from urllib.parse import urlsplit

Platform = Literal["youtube", "instagram", "tiktok", "facebook", "vimeo"]

_VIDEO_HOSTS: dict[str, Platform] = {
    "youtube.com": "youtube",
    "m.youtube.com": "youtube",
    "youtu.be": "youtube",
    "instagram.com": "instagram",
    "tiktok.com": "tiktok",
    "vm.tiktok.com": "tiktok",
    "facebook.com": "facebook",
    "fb.watch": "facebook",
    "vimeo.com": "vimeo",
}

_YT_RE = re.compile(
    r"(?:youtu\.be/|youtube\.com/(?:watch\?v=|embed/|shorts/|live/))([A-Za-z0-9_-]{6,})"
)
_IG_RE = re.compile(
    r"instagram\.com/(?:reel|reels|p)/([A-Za-z0-9_-]{5,})"
)
_TT_RE = re.compile(r"tiktok\.com/(?:@[\w.-]+/video/|v/)?([A-Za-z0-9_-]{6,})")


def _host_of(url: str) -> str:
    candidate = url if "://" in url else f"https://{url}"
    host = (urlsplit(candidate).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def detect_video_platform(url: str) -> Optional[Platform]:
    """Return the video platform hosting this URL, or None for ordinary pages."""
    return _VIDEO_HOSTS.get(_host_of(url))


def detect_platform_and_id(url: str) -> Tuple[Platform, str]:
    """Return (platform, video_id) for a supported video URL."""
    m = _YT_RE.search(url)
    if m:
        return "youtube", m.group(1)
    m = _IG_RE.search(url)
    if m:
        return "instagram", m.group(1)
    m = _TT_RE.search(url)
    if m:
        return "tiktok", m.group(1)
    raise ValueError(f"URL is not a recognised video link: {url}")
