from __future__ import annotations

import pytest

from src.services.errors import MalformedOutputError
from src.services.json_utils import recover_json_object, strip_markdown_fences


class TestStripMarkdownFences:
    def test_fenced(self) -> None:
        assert strip_markdown_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain(self) -> None:
        assert strip_markdown_fences('  {"a": 1} ') == '{"a": 1}'


class TestRecoverJsonObject:
    def test_clean_object(self) -> None:
        assert recover_json_object('{"title": "Soup"}') == {"title": "Soup"}

    def test_fenced_object(self) -> None:
        assert recover_json_object('```json\n{"title": "Soup"}\n```') == {"title": "Soup"}

    def test_prose_around_object(self) -> None:
        text = 'Sure! Here is the recipe: {"title": "Soup", "tips": []} Enjoy.'
        assert recover_json_object(text) == {"title": "Soup", "tips": []}

    def test_array_uses_first_element(self) -> None:
        assert recover_json_object('[{"title": "A"}, {"title": "B"}]') == {"title": "A"}

    @pytest.mark.parametrize("text", [None, "", "   ", "no json here", '{"title": ', "{'title': 'single quotes'}", "[1, 2]"])
    def test_unrecoverable(self, text) -> None:
        with pytest.raises(MalformedOutputError):
            recover_json_object(text)
