from __future__ import annotations

import hashlib
from typing import Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from src.app.domain.models import ImagePage
from src.services.errors import InvalidURLError
from src.services.ids import detect_video_platform

IMAGE_KEY_PREFIX = "image:"

TRACKING_PARAMS = frozenset({
    # UTM
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    # Facebook
    "fbclid", "fb_action_ids", "fb_action_types", "fb_ref", "fb_source",
    # Google
    "gclid", "gclsrc", "dclid", "gbraid", "wbraid",
    # Generic
    "ref", "referrer", "source", "campaign", "medium",
    # Social
    "igshid", "twclid", "li_fat_id",
    # Analytics
    "_ga", "_gl", "_ke", "mc_cid", "mc_eid",
    # Affiliate
    "aff_id", "affiliate_id", "aff", "tag",
    # Email
    "email_id", "email_campaign", "email_source",
    # Matomo / HubSpot
    "pk_campaign", "pk_kwd", "pk_medium", "pk_source",
    "hsctatracking", "hsa_acc", "hsa_cam", "hsa_grp", "hsa_ad", "hsa_src",
    "hsa_tgt", "hsa_kw", "hsa_mt", "hsa_net", "hsa_ver",
})

_DEFAULT_PORTS = {80, 443}


def _with_scheme(url: str) -> str:
    if url.startswith("//"):
        return f"https:{url}"
    lowered = url.lower()
    if not (lowered.startswith("http://") or lowered.startswith("https://")):
        return f"https://{url}"
    return url


def _clean_query(query: str) -> str:
    pairs = [
        (key, value)
        for key, value in parse_qsl(query, keep_blank_values=True)
        if key.lower() not in TRACKING_PARAMS
    ]
    pairs.sort(key=lambda pair: pair[0])
    return urlencode(pairs)


def normalize_url(url: str) -> str:
    """
    Produce the exact-match cache key for a link.

    http and https collapse to https, the host is lowercased and loses a
    leading "www." and any default port, fragments and tracking parameters
    are dropped, the remaining query is sorted, and the path loses its
    trailing slash. Paths are lowercased except on video platforms, whose
    ids are case sensitive. Idempotent.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidURLError("URL must be a non-empty string")

    parts = urlsplit(_with_scheme(url.strip()))
    host = (parts.hostname or "").lower()
    if not host:
        raise InvalidURLError(f"URL has no host: {url}")
    if host.startswith("www."):
        host = host[4:]

    try:
        port = parts.port
    except ValueError as error:
        raise InvalidURLError(f"URL has an invalid port: {url}") from error
    netloc = host if port is None or port in _DEFAULT_PORTS else f"{host}:{port}"

    # video ids are case sensitive
    path = parts.path if detect_video_platform(host) else parts.path.lower()
    while len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    if path == "/":
        path = ""

    return urlunsplit(("https", netloc, path, _clean_query(parts.query), ""))


def content_hash(pages: Iterable[ImagePage | bytes]) -> str:
    """Cache key for an ordered set of image pages."""
    digest = hashlib.sha256()
    count = 0
    for page in pages:
        digest.update(page.data if isinstance(page, ImagePage) else page)
        count += 1
    if count == 0:
        raise ValueError("At least one page is required")
    return f"{IMAGE_KEY_PREFIX}{digest.hexdigest()}"
