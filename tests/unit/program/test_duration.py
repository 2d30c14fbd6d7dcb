"""Unit tests for duration and frequency parsing."""

import pytest

from coachforce.program.duration import parse_duration_days, parse_training_frequency


class TestParseDurationDays:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("8 weeks", 56),
            ("12-week", 84),
            ("3 months", 90),
            ("42 days", 42),
            ("six weeks", 42),
            ("42", 42),
            (28, 28),
            ("a couple of months", 60),
            ("a few weeks", 21),
        ],
    )
    def test_parses(self, value, expected):
        assert parse_duration_days(value) == expected

    def test_clamped_to_range(self):
        assert parse_duration_days("2 days") == 7
        assert parse_duration_days("24 months") == 365

    @pytest.mark.parametrize("value", [None, "", "soon", 0, -3, True])
    def test_unparseable_uses_default(self, value):
        assert parse_duration_days(value) == 56
        assert parse_duration_days(value, default=30) == 30


class TestParseTrainingFrequency:
    @pytest.mark.parametrize("value, expected", [(3, 3), ("4x per week", 4), ("5 days", 5), (7, 7)])
    def test_parses(self, value, expected):
        assert parse_training_frequency(value) == expected

    @pytest.mark.parametrize("value", [None, 0, 8, "often", False])
    def test_invalid_uses_default(self, value):
        assert parse_training_frequency(value) == 4
