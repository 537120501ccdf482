from __future__ import annotations

import pytest

from src.app.domain.errors import InvalidInputError
from src.app.domain.models import InputMode, InputType
from src.services.classify import check_input_mode, classify_input, is_link


class TestClassifyInput:
    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "!!!!!!!", "----  ----"])
    def test_invalid(self, raw) -> None:
        assert classify_input(raw) is InputType.INVALID

    @pytest.mark.parametrize(
        "raw",
        [
            "https://example.com/recipe",
            "HTTP://Example.com/Recipe/",
            "  http://cooking.example.org/pasta?id=3  ",
            "example.com/recipe",
            "www.allrecipes.com/recipe/123/lasagna",
        ],
    )
    def test_links_are_urls(self, raw) -> None:
        assert classify_input(raw) is InputType.URL

    @pytest.mark.parametrize("raw", ["garlic chicken", "Grandma's apple pie", "pasta with 2 eggs"])
    def test_free_text(self, raw) -> None:
        assert classify_input(raw) is InputType.RAW_TEXT

    @pytest.mark.parametrize(
        "url",
        ["https://www.youtube.com/watch?v=dQw4w9WgXcQ", "youtu.be/dQw4w9WgXcQ", "https://www.tiktok.com/@chef/video/123"],
    )
    def test_video_platforms(self, url) -> None:
        assert classify_input(url) is InputType.VIDEO
        assert classify_input(url, detect_video=False) is InputType.URL

    def test_is_pure(self) -> None:
        raw = "https://example.com/recipe"
        assert classify_input(raw) is classify_input(raw)

    def test_is_link(self) -> None:
        assert is_link(InputType.URL)
        assert is_link(InputType.VIDEO)
        assert not is_link(InputType.RAW_TEXT)
        assert not is_link(InputType.INVALID)


class TestCheckInputMode:
    def test_url_in_name_field_is_rejected(self) -> None:
        with pytest.raises(InvalidInputError) as exc:
            check_input_mode("https://example.com/recipe", InputMode.NAME)
        assert "URL field" in exc.value.message

    def test_text_in_url_field_is_rejected(self) -> None:
        with pytest.raises(InvalidInputError):
            check_input_mode("garlic chicken", InputMode.URL)

    def test_short_input_message(self) -> None:
        with pytest.raises(InvalidInputError) as exc:
            check_input_mode("abc", None)
        assert "5 characters" in exc.value.message

    def test_matching_mode_passes(self) -> None:
        assert check_input_mode("garlic chicken", InputMode.NAME) is InputType.RAW_TEXT
        assert check_input_mode("https://example.com/r", InputMode.URL) is InputType.URL

    def test_video_detected_by_default(self) -> None:
        assert check_input_mode("https://vimeo.com/12345", InputMode.URL) is InputType.VIDEO
