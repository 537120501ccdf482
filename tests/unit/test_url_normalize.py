from __future__ import annotations

import pytest

from src.app.domain.models import ImagePage
from src.services.errors import InvalidURLError
from src.services.url_normalize import IMAGE_KEY_PREFIX, content_hash, normalize_url


class TestNormalizeUrl:
    def test_case_scheme_and_trailing_slash_collapse(self) -> None:
        assert normalize_url("HTTP://Example.com/Recipe/") == normalize_url("https://example.com/recipe")
        assert normalize_url("https://example.com/recipe") == "https://example.com/recipe"

    def test_strips_www_fragment_and_tracking(self) -> None:
        url = "https://www.example.com/r?utm_source=x&b=2&fbclid=abc&a=1#comments"
        assert normalize_url(url) == "https://example.com/r?a=1&b=2"

    def test_tracking_params_are_case_insensitive(self) -> None:
        assert normalize_url("https://example.com/r?UTM_Campaign=spring") == "https://example.com/r"

    def test_default_port_dropped_custom_kept(self) -> None:
        assert normalize_url("http://example.com:80/x") == "https://example.com/x"
        assert normalize_url("http://example.com:8080/x") == "https://example.com:8080/x"

    def test_scheme_added_to_bare_domain(self) -> None:
        assert normalize_url("example.com/Pasta") == "https://example.com/pasta"

    def test_video_paths_keep_case(self) -> None:
        assert normalize_url("https://youtu.be/AbC123xyz") == "https://youtu.be/AbC123xyz"
        assert (
            normalize_url("https://www.youtube.com/watch?v=AbC123xyz&utm_medium=share")
            == "https://youtube.com/watch?v=AbC123xyz"
        )

    def test_root_path(self) -> None:
        assert normalize_url("https://Example.com/") == "https://example.com"

    @pytest.mark.parametrize(
        "url",
        [
            "HTTP://Example.com/Recipe/",
            "https://www.example.com/r?utm_source=x&b=2&a=1#frag",
            "https://www.instagram.com/reel/CxYz123/",
            "example.com:8443/a/b/",
        ],
    )
    def test_idempotent(self, url) -> None:
        once = normalize_url(url)
        assert normalize_url(once) == once

    @pytest.mark.parametrize("url", ["", "   ", "https://"])
    def test_rejects_unusable(self, url) -> None:
        with pytest.raises(InvalidURLError):
            normalize_url(url)


class TestContentHash:
    def test_prefix_and_stability(self) -> None:
        key = content_hash([b"page-one", b"page-two"])
        assert key.startswith(IMAGE_KEY_PREFIX)
        assert key == content_hash([ImagePage(data=b"page-one", mime_type="image/png"), ImagePage(data=b"page-two", mime_type="image/png")])

    def test_order_matters(self) -> None:
        assert content_hash([b"a", b"b"]) != content_hash([b"b", b"a"])

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValueError):
            content_hash([])
