"""Tests for score and time formatting."""

import unittest
from datetime import timedelta

from redproxy.models.formatting import (
    SCORE_PLACEHOLDER,
    abbreviate,
    format_count,
    format_score,
    format_time,
)
from tests.fakes import NOW, NOW_TS


class TestAbbreviate(unittest.TestCase):
    """Test cases for count abbreviation."""

    def test_thresholds(self):
        self.assertEqual(abbreviate(0), "0")
        self.assertEqual(abbreviate(999), "999")
        self.assertEqual(abbreviate(1000), "1.0k")
        self.assertEqual(abbreviate(1500), "1.5k")
        self.assertEqual(abbreviate(12345), "12.3k")
        self.assertEqual(abbreviate(999_999), "1000.0k")
        self.assertEqual(abbreviate(1_000_000), "1.0m")
        self.assertEqual(abbreviate(2_300_000), "2.3m")


class TestFormatScore(unittest.TestCase):
    """Test cases for score pairs."""

    def test_pairs(self):
        score = format_score(12345)
        self.assertEqual(score.display, "12.3k")
        self.assertEqual(score.raw, "12345")

        score = format_score(2_300_000)
        self.assertEqual((score.display, score.raw), ("2.3m", "2300000"))

        score = format_score(999)
        self.assertEqual((score.display, score.raw), ("999", "999"))

    def test_zero_is_shown(self):
        self.assertEqual(format_score(0).display, "0")

    def test_negative_uses_placeholder(self):
        score = format_score(-5)
        self.assertEqual(score.display, SCORE_PLACEHOLDER)
        self.assertEqual(score.raw, "-5")

    def test_hidden_uses_placeholder(self):
        score = format_score(100, hidden=True)
        self.assertEqual(score.display, SCORE_PLACEHOLDER)
        self.assertEqual(score.raw, "Hidden")

    def test_count(self):
        self.assertEqual(format_count(1500).display, "1.5k")
        self.assertEqual(format_count(1500).raw, "1500")


class TestFormatTime(unittest.TestCase):
    """Test cases for time pairs."""

    def test_relative_forms(self):
        cases = [
            (timedelta(seconds=30), "just now"),
            (timedelta(minutes=5), "5m ago"),
            (timedelta(hours=3, minutes=10), "3h ago"),
            (timedelta(days=2, hours=1), "2d ago"),
            (timedelta(days=30), "30d ago"),
        ]
        for age, expected in cases:
            with self.subTest(age=age):
                self.assertEqual(format_time(NOW_TS - age.total_seconds(), NOW).relative, expected)

    def test_older_than_thirty_days_is_a_date(self):
        created = (NOW - timedelta(days=150)).timestamp()
        self.assertEqual(format_time(created, NOW).relative, "Jan 03 '24")

    def test_full_form(self):
        pair = format_time(NOW_TS, NOW)
        self.assertEqual(pair.full, "Jun 01 2024, 12:00:00 UTC")
        self.assertEqual(pair.timestamp, NOW_TS)

    def test_future_timestamp(self):
        self.assertEqual(format_time(NOW_TS + 5, NOW).relative, "just now")
