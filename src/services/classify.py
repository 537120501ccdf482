from __future__ import annotations

import re
from typing import Optional

from src.app.config import settings
from src.app.domain.errors import InvalidInputError
from src.app.domain.models import InputMode, InputType
from src.services.ids import detect_video_platform

MIN_INPUT_LENGTH = settings.MIN_INPUT_LENGTH
MAX_URL_LINES = 3

_HTTP_RE = re.compile(r"^https?://", re.IGNORECASE)
_DOMAIN_RE = re.compile(
    r"^[^\s/$.?#].[^\s]*\.[a-zA-Z]{2,}"
    r"(/[\w.-]*)*/?"
    r"(\?[\w%.-]+=[\w%.-]+(&[\w%.-]+=[\w%.-]+)*)?"
    r"(#\w*)?$"
)


def _has_alnum(text: str) -> bool:
    return any(ch.isalnum() for ch in text)


def _looks_like_bare_domain(raw: str, trimmed: str) -> bool:
    if not _DOMAIN_RE.match(trimmed):
        return False
    return len(raw.split("\n")) <= MAX_URL_LINES


def classify_input(raw: Optional[str], *, detect_video: bool = True) -> InputType:
    """
    Label a text submission as url, video, raw_text or invalid.

    Links to known video platforms come back as InputType.VIDEO; pass
    detect_video=False to treat them as plain URLs.
    """
    if not isinstance(raw, str):
        return InputType.INVALID
    trimmed = raw.strip()
    if len(trimmed) < MIN_INPUT_LENGTH or not _has_alnum(trimmed):
        return InputType.INVALID

    if _HTTP_RE.match(trimmed) or _looks_like_bare_domain(raw, trimmed):
        if detect_video and detect_video_platform(trimmed):
            return InputType.VIDEO
        return InputType.URL

    return InputType.RAW_TEXT


def is_link(input_type: InputType) -> bool:
    return input_type in (InputType.URL, InputType.VIDEO)


def check_input_mode(raw: Optional[str], mode: Optional[InputMode], *, detect_video: bool = True) -> InputType:
    """
    Classify the input and reject it when it does not fit the field it was
    typed into. Raises InvalidInputError with a message safe to show users.
    """
    input_type = classify_input(raw, detect_video=detect_video)

    if input_type is InputType.INVALID:
        if isinstance(raw, str) and raw.strip() and _has_alnum(raw):
            raise InvalidInputError(f"Please enter at least {MIN_INPUT_LENGTH} characters.")
        raise InvalidInputError("Please enter a recipe link or a dish name.")

    if mode is InputMode.URL and not is_link(input_type):
        raise InvalidInputError("That doesn't look like a link. Paste a recipe URL or use the dish name field.")
    if mode is InputMode.NAME and is_link(input_type):
        raise InvalidInputError("Links go in the URL field, not the dish name field.")

    return input_type
