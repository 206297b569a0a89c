from datetime import datetime

import pytest

from export_helpers import clean_timestamp, list_export_files, local_name, parse_timestamp, safe_float


@pytest.mark.parametrize("raw", [
    "2020-06-20T16:56:44Z",
    "2020-06-20T16:56:44+00:00",
    "2020-06-20T16:56:44-05:00",
    "2020-06-20T16:56:44",
    "2020-06-20 16:56:44 +0000",
    "2020-06-20 16:56:44 -0500",
])
def test_clean_timestamp_strips_offset_and_separator(raw):
    assert clean_timestamp(raw) == "2020-06-20 16:56:44"


def test_clean_timestamp_is_idempotent():
    once = clean_timestamp("2024-01-01T10:00:05Z")
    assert clean_timestamp(once) == once == "2024-01-01 10:00:05"


def test_clean_timestamp_keeps_fractional_seconds():
    assert clean_timestamp("2024-01-01T10:00:05.250Z") == "2024-01-01 10:00:05.250"


def test_clean_timestamp_leaves_plain_times_alone():
    assert clean_timestamp("12:00") == "12:00"
    assert clean_timestamp("2024-01-01") == "2024-01-01"


def test_clean_timestamp_none():
    assert clean_timestamp(None) is None


def test_parse_timestamp():
    assert parse_timestamp("2024-01-01 08:00:00") == datetime(2024, 1, 1, 8, 0, 0)
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None


@pytest.mark.parametrize("value, microseconds", [
    ("2024-01-01 10:00:00.5", 500_000),
    ("2024-01-01 10:00:00.25", 250_000),
    ("2024-01-01 10:00:00.1234", 123_400),
    ("2024-01-01 10:00:00.123456", 123_456),
])
def test_parse_timestamp_accepts_any_fraction_length(value, microseconds):
    assert parse_timestamp(value) == datetime(2024, 1, 1, 10, 0, 0, microseconds)


def test_parse_timestamp_on_cleaned_fractional_export_value():
    cleaned = clean_timestamp("2024-01-01T10:00:00.5Z")
    assert cleaned == "2024-01-01 10:00:00.5"
    assert parse_timestamp(cleaned) == datetime(2024, 1, 1, 10, 0, 0, 500_000)


def test_safe_float():
    assert safe_float("72") == 72.0
    assert safe_float("-50.5") == -50.5
    assert safe_float("HKCategoryValueSleepAnalysisAsleep") is None
    assert safe_float(None) is None


def test_local_name_strips_namespace():
    assert local_name("{http://www.topografix.com/GPX/1/1}trkpt") == "trkpt"
    assert local_name("trkpt") == "trkpt"


def test_list_export_files_sorted_and_filtered(tmp_path):
    for name in ["route_b.gpx", "route_a.GPX", "notes.txt", "route_c.gpx"]:
        (tmp_path / name).write_text("x")
    (tmp_path / "folder.gpx").mkdir()

    files = list_export_files(str(tmp_path), ".gpx")

    assert [f.rsplit("/", 1)[-1] for f in files] == ["route_a.GPX", "route_b.gpx", "route_c.gpx"]


def test_list_export_files_missing_directory(tmp_path):
    assert list_export_files(str(tmp_path / "electrocardiograms"), ".csv") == []
