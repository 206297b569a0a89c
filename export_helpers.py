#
# Description:
# Small helpers shared by the export.xml, ECG and GPX parsers: timestamp
# clean-up, tolerant number parsing, namespace stripping and the sorted
# directory listing used by every per-file importer.
#

import os
import re

import pandas as pd

# "2020-06-20 16:56:44 +0000", "2020-06-20T16:56:44Z", "2020-06-20T16:56:44-05:00"
_TZ_SUFFIX = re.compile(r"^(.*\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)\s*(?:Z|[+-]\d{2}:?\d{2})$")
_DATE_TIME_SEPARATOR = re.compile(r"^(\d{4}-\d{2}-\d{2})T")


def clean_timestamp(value):
    """
    Strips the timezone suffix from an export timestamp and returns the
    naive "YYYY-MM-DD HH:MM:SS" form (UTC assumed). Already clean values
    come back unchanged.
    """
    if value is None:
        return None
    cleaned = value.strip()
    match = _TZ_SUFFIX.match(cleaned)
    if match:
        cleaned = match.group(1).rstrip()
    return _DATE_TIME_SEPARATOR.sub(r"\1 ", cleaned)


def parse_timestamp(value):
    """
    Parses a cleaned timestamp into a datetime, or None if it isn't one.

    This is the ISO 8601 parser write_rows() stores timestamps with, so a
    value accepted here is never stored as NULL. Fractions of a second may
    have any number of digits.
    """
    if not value:
        return None
    try:
        return pd.to_datetime(value, format="ISO8601").to_pydatetime()
    except (ValueError, TypeError):
        return None


def safe_float(value):
    if value is None:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def local_name(tag):
    """'{http://www.topografix.com/GPX/1/1}trkpt' -> 'trkpt'"""
    return tag.rsplit("}", 1)[-1]


def list_export_files(directory, extension):
    """
    Lists the files in `directory` ending with `extension`, sorted by file
    name so every run processes them in the same order.

    A missing directory is not an error: it simply has no files.
    """
    if not os.path.isdir(directory):
        return []
    extension = extension.lower()
    names = sorted(
        name for name in os.listdir(directory)
        if name.lower().endswith(extension) and os.path.isfile(os.path.join(directory, name))
    )
    return [os.path.join(directory, name) for name in names]
