#
# Description:
# This script imports the GPS tracks from the 'workout-routes' folder of an
# Apple Health export.
#
# Each GPX file is one workout's route. Every <trkpt> becomes a row in
# 'route_points', tagged with the workout it belongs to (looked up in the
# route map from build_route_map.py). Points whose workout can't be found
# are still kept, with no workout_hash.
#

import logging
import os
import xml.etree.ElementTree as ET
from collections import Counter

from build_route_map import lookup_workout_hash
from content_hash import compute_hash
from db_connection import append_rows
from export_helpers import clean_timestamp, list_export_files, local_name, parse_timestamp, safe_float

logger = logging.getLogger(__name__)

# Child elements of <trkpt> we keep, and the column each one fills
POINT_FIELDS = {
    "ele": "elevation",
    "speed": "speed",
    "course": "course",
    "hAcc": "h_accuracy",
    "vAcc": "v_accuracy",
}


def _point_row(point, workout_hash, import_id):
    latitude, longitude, raw_time = point["latitude"], point["longitude"], point["time"]
    return {
        "point_hash": compute_hash([workout_hash or "", raw_time, str(latitude), str(longitude)]),
        "workout_hash": workout_hash,
        "latitude": latitude,
        "longitude": longitude,
        "elevation": point.get("elevation"),
        "timestamp": clean_timestamp(raw_time),
        "speed": point.get("speed"),
        "course": point.get("course"),
        "h_accuracy": point.get("h_accuracy"),
        "v_accuracy": point.get("v_accuracy"),
        "import_id": import_id,
    }


def _is_complete(point):
    if point["latitude"] is None or point["longitude"] is None:
        return False
    return parse_timestamp(clean_timestamp(point["time"])) is not None


def parse_gpx_points(path, import_id, workout_hash=None):
    """
    Reads every track point of a GPX file, in file order.

    A point without lat, lon or a readable time is dropped. Raises ET.ParseError if
    the file is not well-formed.
    """
    rows = []
    point = None

    for event, elem in ET.iterparse(path, events=("start", "end")):
        tag = local_name(elem.tag)

        if event == "start":
            if tag == "trkpt":
                point = {
                    "latitude": safe_float(elem.get("lat")),
                    "longitude": safe_float(elem.get("lon")),
                    "time": None,
                }
            continue

        if point is not None:
            if tag == "trkpt":
                if _is_complete(point):
                    rows.append(_point_row(point, workout_hash, import_id))
                point = None
            elif tag == "time":
                point["time"] = (elem.text or "").strip() or None
            elif tag in POINT_FIELDS:
                point[POINT_FIELDS[tag]] = safe_float(elem.text)

        if tag == "trkpt":
            elem.clear()

    return rows


def import_single_gpx(engine, path, import_id, workout_hash=None):
    """Parses one GPX file and writes its points as one batch. Returns the point count."""
    rows = parse_gpx_points(path, import_id, workout_hash)
    return append_rows(engine, "route_points", rows)


def import_gpx_files(engine, routes_dir, import_id, route_map):
    """
    Imports every .gpx in `routes_dir`. A file that fails is logged and skipped.

    Returns:
        Counter: 'files', 'route_points', 'unlinked_files' and 'failed_files'.
    """
    stats = Counter()
    paths = list_export_files(routes_dir, ".gpx")
    if not paths:
        logger.info("No workout route files found in %s", routes_dir)
        return stats

    logger.info("Importing %d GPX route files from %s...", len(paths), routes_dir)
    for path in paths:
        filename = os.path.basename(path)
        workout_hash = lookup_workout_hash(route_map, filename)
        try:
            point_count = import_single_gpx(engine, path, import_id, workout_hash)
        except (OSError, ET.ParseError) as e:
            stats["failed_files"] += 1
            logger.warning("Failed to import GPX %s: %s", path, e)
            continue
        stats["files"] += 1
        stats["route_points"] += point_count
        if workout_hash is None:
            stats["unlinked_files"] += 1
            logger.debug("No workout references %s; its points were stored unlinked", filename)

    logger.info("GPX import complete: %d files, %d route points", stats["files"], stats["route_points"])
    return stats
