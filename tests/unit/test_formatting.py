"""Tests for display formatting and severity classification."""

import re
from datetime import datetime, timedelta, timezone

import pytest

from gpu_dashboard.data.formatting import (
    classify_temperature,
    classify_utilization,
    format_bytes,
    format_gib,
    format_percentage,
    format_power,
    format_relative_time,
    format_temperature,
    format_timestamp,
    get_temperature_color,
    get_utilization_bar_color,
    get_utilization_color,
    parse_timestamp,
)
from gpu_dashboard.data.models import Severity

NOW = datetime(2026, 1, 22, 12, 0, 0, tzinfo=timezone.utc)


class TestFormatBytes:
    @pytest.mark.parametrize("value,expected", [
        (0, "0 Bytes"),
        (500, "500 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (1048576, "1 MB"),
        (1024 ** 3 * 80, "80 GB"),
        (1024 ** 4 * 2.25, "2.25 TB"),
    ])
    def test_ladder(self, value, expected):
        assert format_bytes(value) == expected

    def test_decimals(self):
        assert format_bytes(1234567, decimals=1) == "1.2 MB"
        assert format_bytes(1234567, decimals=0) == "1 MB"

    def test_negative_decimals_treated_as_zero(self):
        assert format_bytes(1536, decimals=-3) == "2 KB"

    def test_gib_quantities(self):
        assert format_gib(40.5) == "40.5 GB"
        assert format_gib(0.5) == "512 MB"
        assert format_gib(0) == "0 Bytes"


class TestUnitFormatting:
    def test_percentage(self):
        assert format_percentage(42.567, 1) == "42.6%"
        assert format_percentage(100) == "100.0%"
        assert format_percentage(7.25, 0) == "7%"

    def test_temperature(self):
        assert format_temperature(65) == "65.0°C"

    def test_power(self):
        assert format_power(250.44) == "250.4W"


class TestTimestamps:
    def test_parse_iso_with_z(self):
        assert parse_timestamp("2026-01-22T12:00:00Z") == NOW

    def test_parse_nanosecond_fraction(self):
        parsed = parse_timestamp("2026-01-22T11:59:30.123456789Z")
        assert parsed == datetime(2026, 1, 22, 11, 59, 30, 123456, tzinfo=timezone.utc)

    def test_parse_epoch_seconds(self):
        assert parse_timestamp(NOW.timestamp()) == NOW

    def test_parse_naive_is_utc(self):
        assert parse_timestamp("2026-01-22T12:00:00") == NOW

    @pytest.mark.parametrize("value", ["", "yesterday", None, True])
    def test_parse_rejects(self, value):
        assert parse_timestamp(value) is None

    def test_format_timestamp_shape(self):
        text = format_timestamp("2026-01-22T12:00:00Z")
        assert re.fullmatch(r"\d{2}/\d{2}/\d{4}, \d{2}:\d{2}:\d{2} (AM|PM)", text)

    def test_format_timestamp_passthrough(self):
        assert format_timestamp("not a time") == "not a time"


class TestRelativeTime:
    @pytest.mark.parametrize("delta,expected", [
        (timedelta(seconds=0), "0 seconds ago"),
        (timedelta(seconds=1), "1 second ago"),
        (timedelta(seconds=45), "45 seconds ago"),
        (timedelta(minutes=1), "1 minute ago"),
        (timedelta(minutes=5, seconds=30), "5 minutes ago"),
        (timedelta(hours=2, minutes=59), "2 hours ago"),
        (timedelta(days=1, hours=3), "1 day ago"),
        (timedelta(days=3), "3 days ago"),
    ])
    def test_largest_unit(self, delta, expected):
        assert format_relative_time(NOW - delta, now=NOW) == expected

    def test_iso_string(self):
        assert format_relative_time("2026-01-22T11:59:00Z", now=NOW) == "1 minute ago"

    def test_future_clamps_to_zero(self):
        assert format_relative_time(NOW + timedelta(minutes=10), now=NOW) == "0 seconds ago"

    def test_unparseable_returned_as_is(self):
        assert format_relative_time("garbage", now=NOW) == "garbage"

    def test_unparseable_reference_uses_current_time(self):
        five_minutes_ago = datetime.now(timezone.utc) - timedelta(minutes=5, seconds=10)
        assert format_relative_time(five_minutes_ago, now="garbage") == "5 minutes ago"


class TestSeverity:
    @pytest.mark.parametrize("value,expected", [
        (0, Severity.LOW),
        (29.9, Severity.LOW),
        (30, Severity.MEDIUM),
        (69.9, Severity.MEDIUM),
        (70, Severity.HIGH),
        (100, Severity.HIGH),
    ])
    def test_utilization_bands(self, value, expected):
        assert classify_utilization(value) is expected

    @pytest.mark.parametrize("value,expected", [
        (59.9, Severity.LOW),
        (60, Severity.MEDIUM),
        (79.9, Severity.MEDIUM),
        (80, Severity.HIGH),
    ])
    def test_temperature_bands(self, value, expected):
        assert classify_temperature(value) is expected

    def test_colors(self):
        assert get_utilization_color(10) == "green"
        assert get_utilization_color(50) == "yellow"
        assert get_utilization_color(70) == "red"
        assert get_utilization_bar_color(85) == "bar-red"
        assert get_temperature_color(59) == "green"
        assert get_temperature_color(80) == "red"
