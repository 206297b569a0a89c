#
# Description:
# This script makes a second pass over 'export.xml' to find which workout
# each GPX route file belongs to.
#
# Inside a <Workout>, a <WorkoutRoute> lists its track file with a
# <FileReference path="/workout-routes/route_....gpx"/>. We map that path
# to the workout's content hash so parse_workout_routes.py can tag every
# route point with its workout.
#

import logging
import os
import xml.etree.ElementTree as ET

from parse_health_xml import MalformedElementError, iter_export_events, workout_hash_from_attrs

logger = logging.getLogger(__name__)

ROUTE_PATH_PREFIX = "/workout-routes/"


def build_workout_route_map(xml_path):
    """
    Returns a dict of {FileReference path: workout_hash}.

    A workout's references only count once its closing tag has been seen,
    so a workout cut off by a truncated file or a syntax error links
    nothing. Workouts after a syntax error are still mapped.
    """
    route_map = {}
    current_hash = None
    pending_paths = []

    def on_error(error, line_number):
        nonlocal current_hash, pending_paths
        logger.warning("XML syntax error at line %d of %s while mapping routes: %s",
                       line_number, xml_path, error)
        current_hash = None
        pending_paths = []

    logger.info("Building workout route map from %s...", xml_path)
    with open(xml_path, "rb") as source:
        try:
            for event, elem in iter_export_events(source, on_error):
                if event == "start":
                    if elem.tag == "Workout":
                        pending_paths = []
                        try:
                            current_hash = workout_hash_from_attrs(elem.attrib)
                        except MalformedElementError:
                            current_hash = None
                    elif elem.tag == "FileReference" and current_hash is not None:
                        path = elem.get("path")
                        if path:
                            pending_paths.append(path)

                elif elem.tag == "Workout":
                    if current_hash is not None:
                        for path in pending_paths:
                            route_map[path] = current_hash
                    current_hash = None
                    pending_paths = []
        except ET.ParseError as e:
            logger.warning("%s ends early while mapping routes: %s", xml_path, e)

    logger.info("Found %d route file references.", len(route_map))
    return route_map


def lookup_workout_hash(route_map, filename):
    """Finds the workout for a GPX file name, or None if nothing references it."""
    workout_hash = route_map.get(ROUTE_PATH_PREFIX + filename)
    if workout_hash is not None:
        return workout_hash

    # Some exports reference the file by another directory prefix
    for path, candidate in route_map.items():
        if os.path.basename(path) == filename:
            return candidate
    return None
