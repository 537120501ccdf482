from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Literal, Optional

import httpx
import yt_dlp
from youtube_transcript_api import (
    NoTranscriptFound,
    TranscriptsDisabled,
    YouTubeTranscriptApi,
)

from .errors import (
    FetchFailedError,
    InvalidURLError,
    NetworkTimeoutError,
    PrivateOrUnavailableError,
)
from .ids import detect_platform_and_id, detect_video_platform

logger = logging.getLogger(__name__)

SCRAPER_API_URL = "https://api.scraperapi.com/"
SCRAPER_TIMEOUT_SECONDS = 60.0
MIN_HTML_LENGTH = 500

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Upgrade-Insecure-Requests": "1",
}

VTT_TAG_PATTERN = re.compile(r"<[^>]+>")
WHITESPACE_PATTERN = re.compile(r"\s+")
PRIORITY_LANGUAGES = ("en", "en-US", "en-GB")
VTT_SKIP_PREFIXES = ("NOTE", "STYLE", "REGION", "WEBVTT")

FetchMethod = Literal["direct", "scraperapi"]


@dataclass(frozen=True)
class FetchedPage:
    url: str
    html: str
    method: FetchMethod
    status_code: int


@dataclass(frozen=True)
class VideoContent:
    url: str
    platform: str
    title: Optional[str]
    description: Optional[str]
    transcript: Optional[str]
    thumbnail_url: Optional[str]
    author: Optional[str]


def _clean_string(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


# ---------------------------------------------------------------------------
# Web pages
# ---------------------------------------------------------------------------

def _get(client: httpx.Client, url: str, timeout: float, **kwargs) -> httpx.Response:
    try:
        response = client.get(url, timeout=timeout, follow_redirects=True, **kwargs)
        response.raise_for_status()
        return response
    except httpx.TimeoutException as error:
        raise NetworkTimeoutError(url, timeout) from error
    except httpx.HTTPStatusError as error:
        raise FetchFailedError(f"HTTP {error.response.status_code} fetching {url}") from error
    except httpx.TransportError as error:
        raise FetchFailedError(f"Network error fetching {url}: {error}") from error


def _fetch_direct(client: httpx.Client, url: str, timeout: float) -> FetchedPage:
    response = _get(client, url, timeout, headers=BROWSER_HEADERS)
    html = response.text
    if len(html) < MIN_HTML_LENGTH:
        raise FetchFailedError(f"Page body too small ({len(html)} bytes): {url}")
    return FetchedPage(url=str(response.url), html=html, method="direct", status_code=response.status_code)


def _fetch_via_scraper(client: httpx.Client, url: str, api_key: str) -> FetchedPage:
    params = {"api_key": api_key, "url": url, "country_code": "us"}
    response = _get(client, SCRAPER_API_URL, SCRAPER_TIMEOUT_SECONDS, params=params)
    html = response.text
    if len(html) < MIN_HTML_LENGTH:
        raise FetchFailedError(f"Scraper returned too little content for {url}")
    return FetchedPage(url=url, html=html, method="scraperapi", status_code=response.status_code)


def fetch_html(
    url: str,
    *,
    timeout: float = 15.0,
    scraper_api_key: str | None = None,
    client: httpx.Client | None = None,
) -> FetchedPage:
    """
    Download a recipe page. A direct request with browser headers is tried
    first; when it fails and a ScraperAPI key is configured the page is
    fetched through the scraping proxy instead.
    """
    if not url.lower().startswith(("http://", "https://")):
        url = f"https://{url}"

    owns_client = client is None
    http = client or httpx.Client()
    try:
        try:
            page = _fetch_direct(http, url, timeout)
            logger.info("fetch.direct_ok url=%s bytes=%d", url, len(page.html))
            return page
        except (FetchFailedError, NetworkTimeoutError) as error:
            if not scraper_api_key:
                raise
            logger.warning("fetch.direct_failed url=%s error=%s falling_back=scraperapi", url, error)

        page = _fetch_via_scraper(http, url, scraper_api_key)
        logger.info("fetch.scraper_ok url=%s bytes=%d", url, len(page.html))
        return page
    finally:
        if owns_client:
            http.close()


# ---------------------------------------------------------------------------
# Videos
# ---------------------------------------------------------------------------

def _extract_thumbnail(info: dict | None) -> str | None:
    if not isinstance(info, dict):
        return None

    direct_url = _clean_string(info.get("thumbnail")) or _clean_string(info.get("thumbnail_url"))
    if direct_url:
        return direct_url

    thumbnails = info.get("thumbnails")
    if not isinstance(thumbnails, list):
        return None
    candidates = [
        (entry.get("preference") or 0, entry.get("width") or 0, _clean_string(entry.get("url")))
        for entry in thumbnails
        if isinstance(entry, dict) and _clean_string(entry.get("url"))
    ]
    if not candidates:
        return None
    candidates.sort(reverse=True, key=lambda item: (item[0], item[1]))
    return candidates[0][2]


def _create_ydl_options() -> dict:
    return {
        "quiet": True,
        "noprogress": True,
        "skip_download": True,
        "check_formats": False,
        "extractor_args": {"youtube": {"player_client": ["android"]}},
    }


def _check_video_availability(info: dict | None) -> None:
    if not info:
        raise PrivateOrUnavailableError("Video is private or unavailable.")
    if info.get("is_private") or info.get("availability") in {"private", "needs_auth"}:
        raise PrivateOrUnavailableError("Video is private or requires login.")


def _is_vtt_content_line(line: str) -> bool:
    if not line or line.startswith(VTT_SKIP_PREFIXES):
        return False
    return "-->" not in line and not line.isdigit()


def vtt_to_plain_text(content: str) -> str:
    in_note_block = False
    text_lines: list[str] = []

    for raw_line in content.splitlines():
        stripped = raw_line.strip()
        if in_note_block:
            in_note_block = bool(stripped)
            continue
        if stripped.startswith("NOTE"):
            in_note_block = True
            continue
        if not _is_vtt_content_line(stripped):
            continue
        cleaned = VTT_TAG_PATTERN.sub("", stripped).strip()
        # rolling captions repeat the previous cue
        if cleaned and (not text_lines or text_lines[-1] != cleaned):
            text_lines.append(cleaned)

    return WHITESPACE_PATTERN.sub(" ", " ".join(text_lines)).strip()


def _pick_caption_url(submap: dict | None) -> str | None:
    if not submap:
        return None
    for lang in PRIORITY_LANGUAGES:
        for item in submap.get(lang) or []:
            if item.get("ext") == "vtt" and item.get("url"):
                return item["url"]
    return None


def _extract_caption_text(info: dict, timeout: float = 15.0) -> str | None:
    for key in ("subtitles", "automatic_captions"):
        url = _pick_caption_url(info.get(key))
        if not url:
            continue
        try:
            with httpx.Client() as client:
                response = _get(client, url, timeout)
            return vtt_to_plain_text(response.text) or None
        except (NetworkTimeoutError, FetchFailedError) as error:
            logger.warning("fetch.caption_failed key=%s error=%s", key, error)
    return None


def _fetch_youtube_transcript(video_id: str) -> str | None:
    api = YouTubeTranscriptApi()
    try:
        fetched = api.fetch(video_id, languages=list(PRIORITY_LANGUAGES))
    except (TranscriptsDisabled, NoTranscriptFound):
        return None
    except (ConnectionError, TimeoutError) as error:
        logger.warning("fetch.transcript_network_error video=%s error=%s", video_id, error)
        return None

    data = fetched.to_raw_data() if hasattr(fetched, "to_raw_data") else fetched
    text = " ".join(item.get("text", "").strip() for item in data if item.get("text")).strip()
    return text or None


def fetch_video(url: str) -> VideoContent:
    """Metadata, description and transcript of a recipe video (no media download)."""
    platform = detect_video_platform(url)
    if platform is None:
        raise InvalidURLError(f"Not a supported video link: {url}")

    try:
        with yt_dlp.YoutubeDL(_create_ydl_options()) as ydl:
            info = ydl.extract_info(url, download=False)
    except yt_dlp.utils.DownloadError as error:
        raise FetchFailedError(f"Could not read video: {error}") from error
    except (ConnectionError, TimeoutError) as error:
        raise FetchFailedError(f"Network error reading video: {error}") from error

    _check_video_availability(info)

    transcript = None
    if platform == "youtube":
        try:
            _, video_id = detect_platform_and_id(url)
        except ValueError:
            video_id = _clean_string(info.get("id"))
        if video_id:
            transcript = _fetch_youtube_transcript(video_id)
    transcript = transcript or _extract_caption_text(info)

    logger.info(
        "fetch.video_ok platform=%s has_description=%s has_transcript=%s",
        platform,
        bool(info.get("description")),
        bool(transcript),
    )
    return VideoContent(
        url=url,
        platform=platform,
        title=_clean_string(info.get("title")),
        description=_clean_string(info.get("description")),
        transcript=transcript,
        thumbnail_url=_extract_thumbnail(info),
        author=_clean_string(info.get("uploader")) or _clean_string(info.get("channel")),
    )


def build_video_text(content: VideoContent) -> str:
    sections: list[str] = []
    if content.title:
        sections.append(f"## TITLE\n{content.title}")
    if content.author:
        sections.append(f"## CREATOR\n{content.author}")
    if content.description:
        sections.append(f"## CAPTION\n{content.description}")
    if content.transcript:
        sections.append(f"## TRANSCRIPT\n{content.transcript}")
    return "\n\n".join(sections)
