#
# Description:
# This script imports the ECG recordings from the 'electrocardiograms' folder
# of an Apple Health export.
#
# Each CSV starts with a header of 'Key,Value' lines (Recorded Date,
# Classification, Device, Sample Rate, ...), then a blank line, then one
# voltage sample in microvolts per line. One file becomes one row in
# 'ecg_readings' plus one row per sample in 'ecg_samples'.
#

import csv
import logging
import re
from collections import Counter

from content_hash import compute_hash
from db_connection import write_rows
from export_helpers import clean_timestamp, list_export_files, parse_timestamp, safe_float

logger = logging.getLogger(__name__)

HEADER_KEYS = {
    "Name",
    "Date of Birth",
    "Recorded Date",
    "Classification",
    "Symptoms",
    "Software Version",
    "Device",
    "Sample Rate",
    "Lead",
    "Unit",
}
# Read so the header parses, but never stored
PRIVATE_KEYS = {"Name", "Date of Birth"}

_LEADING_NUMBER = re.compile(r"^\s*([-+]?\d+(?:\.\d*)?|[-+]?\.\d+)")


class EcgFormatError(ValueError):
    """The ECG file is missing something it cannot be stored without."""


def _parse_header_line(line):
    fields = next(csv.reader([line]))
    if not fields:
        return None, None
    key = fields[0].strip()
    value = ",".join(fields[1:]).strip()
    return key, value


def parse_sample_rate(value):
    """'512.000 Hz' -> 512.0"""
    if not value:
        return None
    match = _LEADING_NUMBER.match(value)
    return float(match.group(1)) if match else None


def parse_ecg_file(path, import_id):
    """
    Reads one ECG CSV.

    Returns:
        tuple: (reading_row, sample_rows) ready for the database.

    Raises:
        EcgFormatError: If the file has no 'Recorded Date'.
    """
    header = {}
    voltages = []
    in_header = True

    with open(path, "r", encoding="utf-8-sig") as f:
        for raw_line in f:
            line = raw_line.strip()
            if not line:
                continue

            if in_header:
                key, value = _parse_header_line(line)
                if key in HEADER_KEYS:
                    if key not in PRIVATE_KEYS:
                        header[key] = value
                    continue
                in_header = False

            voltage = safe_float(line)
            if voltage is None:
                if voltages:
                    break
                continue
            voltages.append(voltage)

    recorded_date = clean_timestamp(header.get("Recorded Date"))
    if not recorded_date:
        raise EcgFormatError("No recorded date found in ECG file")
    if parse_timestamp(recorded_date) is None:
        raise EcgFormatError(f"Unreadable recorded date: {recorded_date!r}")

    device = header.get("Device")
    ecg_hash = compute_hash([recorded_date, device])

    reading = {
        "ecg_hash": ecg_hash,
        "recorded_date": recorded_date,
        "classification": header.get("Classification"),
        "device": device,
        "sample_rate_hz": parse_sample_rate(header.get("Sample Rate")),
        "symptoms": header.get("Symptoms") or None,
        "software_version": header.get("Software Version"),
        "import_id": import_id,
    }
    samples = [
        {"ecg_hash": ecg_hash, "sample_idx": idx, "voltage_uv": voltage, "import_id": import_id}
        for idx, voltage in enumerate(voltages)
    ]
    return reading, samples


def import_single_ecg(engine, path, import_id):
    """Stores one ECG file's reading and samples together. Returns the sample count."""
    reading, samples = parse_ecg_file(path, import_id)

    with engine.begin() as conn:
        write_rows(conn, "ecg_readings", [reading])
        return write_rows(conn, "ecg_samples", samples)


def import_ecg_files(engine, ecg_dir, import_id):
    """
    Imports every .csv in `ecg_dir`. A file that fails is logged and skipped.

    Returns:
        Counter: 'files', 'samples' and 'failed_files'.
    """
    stats = Counter()
    paths = list_export_files(ecg_dir, ".csv")
    if not paths:
        logger.info("No ECG files found in %s", ecg_dir)
        return stats

    logger.info("Importing %d ECG files from %s...", len(paths), ecg_dir)
    for path in paths:
        try:
            sample_count = import_single_ecg(engine, path, import_id)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            stats["failed_files"] += 1
            logger.warning("Failed to import ECG %s: %s", path, e)
            continue
        stats["files"] += 1
        stats["samples"] += sample_count

    logger.info("ECG import complete: %d files, %d samples", stats["files"], stats["samples"])
    return stats
