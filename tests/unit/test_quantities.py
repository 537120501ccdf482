from __future__ import annotations

import pytest

from src.services.quantities import normalize_servings, parse_amount


class TestParseAmount:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (2, 2.0),
            (0.25, 0.25),
            ("3", 3.0),
            ("0.5", 0.5),
            ("1,5", 1.5),
            ("1/2", 0.5),
            ("1 1/2", 1.5),
            ("½", 0.5),
            ("1½", 1.5),
            ("2-3", 2.0),
            ("2 to 3", 2.0),
            ("1/2 – 1", 0.5),
        ],
    )
    def test_parses(self, value, expected) -> None:
        assert parse_amount(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [None, True, "", "a pinch", "to taste", "1/0", [1]])
    def test_unparseable(self, value) -> None:
        assert parse_amount(value) is None


class TestNormalizeServings:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("4, 4 servings", "4"),
            ("4-6", "4"),
            ("Serves 8", "8"),
            (4, "4"),
            (4.0, "4"),
            (["", "6 people"], "6"),
            ("a crowd", "a crowd"),
            ("   ", None),
            (None, None),
        ],
    )
    def test_normalizes(self, value, expected) -> None:
        assert normalize_servings(value) == expected
