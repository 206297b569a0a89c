#
# Description:
# This script reads the 'export.xml' file from an Apple Health data export
# and loads it into the database.
#
# The file can be several gigabytes, so it is fed line by line to an
# ElementTree pull parser and nothing is kept in memory beyond the current
# batches. A syntax error (e.g. a bare '&' in one attribute) only costs the
# element it is in: parsing picks up again at the next top-level element.
# Three groups of tables are filled from it:
# 1. Records (with their MetadataEntry children in 'record_metadata').
# 2. Workouts, with their WorkoutEvent and WorkoutStatistics children.
# 3. Daily ActivitySummary rings.
#
# Correlation elements (e.g. blood pressure) only wrap Records that are also
# exported at the top level, so nothing inside a Correlation is stored.
#

import logging
import re
import xml.etree.ElementTree as ET
from collections import Counter, deque

from content_hash import compute_hash
from db_connection import append_rows
from export_helpers import clean_timestamp, parse_timestamp, safe_float

logger = logging.getLogger(__name__)

# --- Configuration ---
BATCH_SIZE = 100_000
PROGRESS_EVERY = 500_000

# Lines kept so the ones fed after a syntax error can be parsed again
RESYNC_WINDOW = 1_000

BATCH_TABLES = (
    "records",
    "record_metadata",
    "workouts",
    "workout_events",
    "workout_statistics",
    "activity_summaries",
)


class MalformedElementError(ValueError):
    """An element lacks something we need in order to store it."""


# --- Row Builders ---

def _required(attrs, name, tag):
    value = attrs.get(name)
    if not value:
        raise MalformedElementError(f"<{tag}> has no '{name}' attribute")
    return value


def _required_timestamp(attrs, name, tag):
    value = clean_timestamp(_required(attrs, name, tag))
    if parse_timestamp(value) is None:
        raise MalformedElementError(f"<{tag}> has an unreadable {name}: {attrs.get(name)!r}")
    return value


def _optional_timestamp(attrs, name):
    return clean_timestamp(attrs.get(name))


def record_row(attrs, import_id):
    """Builds a 'records' row from the attributes of a <Record> element."""
    record_type = _required(attrs, "type", "Record")
    start_date = _required_timestamp(attrs, "startDate", "Record")
    end_date = _required_timestamp(attrs, "endDate", "Record")
    source_name = attrs.get("sourceName", "")
    raw_value = attrs.get("value")
    unit = attrs.get("unit")

    return {
        "record_hash": compute_hash([record_type, source_name, start_date, end_date, raw_value, unit]),
        "record_type": record_type,
        "value": safe_float(raw_value),
        "unit": unit,
        "source_name": source_name,
        "source_version": attrs.get("sourceVersion"),
        "device": attrs.get("device"),
        "creation_date": _optional_timestamp(attrs, "creationDate"),
        "start_date": start_date,
        "end_date": end_date,
        "import_id": import_id,
    }


def workout_hash_from_attrs(attrs):
    """
    Identity of a <Workout>: activity type, source, start, end and the raw
    duration string. Also used by build_route_map.py, so both passes agree.
    """
    activity_type = _required(attrs, "workoutActivityType", "Workout")
    start_date = _required_timestamp(attrs, "startDate", "Workout")
    end_date = _required_timestamp(attrs, "endDate", "Workout")
    return compute_hash([
        activity_type,
        attrs.get("sourceName", ""),
        start_date,
        end_date,
        attrs.get("duration"),
    ])


def workout_row(attrs, import_id):
    return {
        "workout_hash": workout_hash_from_attrs(attrs),
        "activity_type": attrs["workoutActivityType"],
        "duration": safe_float(attrs.get("duration")),
        "duration_unit": attrs.get("durationUnit"),
        "total_distance": safe_float(attrs.get("totalDistance")),
        "total_distance_unit": attrs.get("totalDistanceUnit"),
        "total_energy_burned": safe_float(attrs.get("totalEnergyBurned")),
        "total_energy_unit": attrs.get("totalEnergyBurnedUnit"),
        "source_name": attrs.get("sourceName", ""),
        "source_version": attrs.get("sourceVersion"),
        "device": attrs.get("device"),
        "creation_date": _optional_timestamp(attrs, "creationDate"),
        "start_date": clean_timestamp(attrs["startDate"]),
        "end_date": clean_timestamp(attrs["endDate"]),
        "import_id": import_id,
    }


def workout_event_row(attrs, workout_hash, event_idx, import_id):
    """event_idx is the event's position among its workout's events, from 0."""
    return {
        "workout_hash": workout_hash,
        "event_idx": event_idx,
        "event_type": _required(attrs, "type", "WorkoutEvent"),
        "date": _optional_timestamp(attrs, "date"),
        "duration": safe_float(attrs.get("duration")),
        "duration_unit": attrs.get("durationUnit"),
        "import_id": import_id,
    }


def workout_statistic_row(attrs, workout_hash, stat_idx, import_id):
    return {
        "workout_hash": workout_hash,
        "stat_idx": stat_idx,
        "stat_type": _required(attrs, "type", "WorkoutStatistics"),
        "start_date": _optional_timestamp(attrs, "startDate"),
        "end_date": _optional_timestamp(attrs, "endDate"),
        "average": safe_float(attrs.get("average")),
        "minimum": safe_float(attrs.get("minimum")),
        "maximum": safe_float(attrs.get("maximum")),
        "sum": safe_float(attrs.get("sum")),
        "unit": attrs.get("unit"),
        "import_id": import_id,
    }


def activity_summary_row(attrs, import_id):
    row = {"date_components": _required(attrs, "dateComponents", "ActivitySummary")}
    for column, attribute in (
        ("active_energy_burned", "activeEnergyBurned"),
        ("active_energy_burned_goal", "activeEnergyBurnedGoal"),
        ("apple_move_time", "appleMoveTime"),
        ("apple_move_time_goal", "appleMoveTimeGoal"),
        ("apple_exercise_time", "appleExerciseTime"),
        ("apple_exercise_time_goal", "appleExerciseTimeGoal"),
        ("apple_stand_hours", "appleStandHours"),
        ("apple_stand_hours_goal", "appleStandHoursGoal"),
    ):
        row[column] = safe_float(attrs.get(attribute))
    row["import_id"] = import_id
    return row


# --- Parser State and Batching ---

class ParseState:
    """
    Where the parser currently is in the document.

    A workout's events and statistics wait in the pending lists until its
    closing tag is seen; a workout that never closes takes them with it.
    """

    def __init__(self):
        self.in_correlation = False
        self.record_hash = None
        self.workout = None
        self.pending_events = []
        self.pending_statistics = []

    @property
    def in_workout(self):
        return self.workout is not None

    def open_workout(self, row):
        self.workout = row
        self.pending_events = []
        self.pending_statistics = []

    def close_workout(self):
        """Returns (workout, events, statistics) for the open workout, or None."""
        if self.workout is None:
            return None
        closed = (self.workout, self.pending_events, self.pending_statistics)
        self.workout = None
        self.pending_events = []
        self.pending_statistics = []
        return closed

    def discard_workout(self):
        """Drops the open workout and returns how many pending children it had."""
        dropped = len(self.pending_events) + len(self.pending_statistics)
        self.workout = None
        self.pending_events = []
        self.pending_statistics = []
        return dropped

    def reset(self):
        """Forgets every open element; returns what discard_workout() dropped."""
        dropped = self.discard_workout()
        self.in_correlation = False
        self.record_hash = None
        return dropped


class RowBatcher:
    """Per-table row buffers that are written out as soon as they fill up."""

    def __init__(self, engine, batch_size=BATCH_SIZE):
        self.engine = engine
        self.batch_size = max(1, int(batch_size))
        self.batches = {name: [] for name in BATCH_TABLES}

    def add(self, table_name, row):
        batch = self.batches[table_name]
        batch.append(row)
        if len(batch) >= self.batch_size:
            self.flush(table_name)

    def extend(self, table_name, rows):
        for row in rows:
            self.add(table_name, row)

    def flush(self, table_name):
        batch = self.batches[table_name]
        if not batch:
            return
        append_rows(self.engine, table_name, batch)
        self.batches[table_name] = []

    def flush_all(self):
        for table_name in BATCH_TABLES:
            self.flush(table_name)


# --- Streaming Parser ---

def _handle_start(tag, attrs, state, batcher, stats, import_id):
    if tag == "Record":
        state.record_hash = None
        if state.in_correlation:
            return
        row = record_row(attrs, import_id)
        batcher.add("records", row)
        state.record_hash = row["record_hash"]
        stats["records"] += 1
        if stats["records"] % PROGRESS_EVERY == 0:
            logger.info("Processed %d records...", stats["records"])

    elif tag == "MetadataEntry":
        # Workout metadata has no table of its own
        if state.in_workout or state.record_hash is None:
            return
        batcher.add("record_metadata", {
            "record_hash": state.record_hash,
            "key": attrs.get("key", ""),
            "value": attrs.get("value", ""),
            "import_id": import_id,
        })
        stats["metadata_entries"] += 1

    elif tag == "Workout":
        row = workout_row(attrs, import_id)
        if state.in_workout:
            dropped = state.discard_workout()
            logger.warning("Workout opened inside another workout; dropping the outer one (%d children)", dropped)
        state.open_workout(row)

    elif tag == "WorkoutEvent":
        if state.in_workout:
            state.pending_events.append(
                workout_event_row(
                    attrs, state.workout["workout_hash"], len(state.pending_events), import_id
                )
            )

    elif tag == "WorkoutStatistics":
        if state.in_workout:
            state.pending_statistics.append(
                workout_statistic_row(
                    attrs, state.workout["workout_hash"], len(state.pending_statistics), import_id
                )
            )

    elif tag == "FileReference":
        # Resolved to workouts by build_route_map.py
        if state.in_workout:
            stats["route_references"] += 1

    elif tag == "Correlation":
        state.in_correlation = True
        stats["correlations"] += 1

    elif tag == "ActivitySummary":
        batcher.add("activity_summaries", activity_summary_row(attrs, import_id))
        stats["activity_summaries"] += 1


def _handle_end(tag, state, batcher, stats):
    if tag == "Record":
        state.record_hash = None

    elif tag == "Workout":
        closed = state.close_workout()
        if closed is None:
            return
        workout, events, statistics = closed
        batcher.extend("workout_events", events)
        batcher.extend("workout_statistics", statistics)
        batcher.add("workouts", workout)
        stats["workouts"] += 1
        stats["workout_events"] += len(events)
        stats["workout_statistics"] += len(statistics)

    elif tag == "Correlation":
        state.in_correlation = False


_RESYNC_START = re.compile(rb"^\s*<(?:Record|Workout|Correlation|ActivitySummary)[\s/>]")
_CORRELATION_START = re.compile(rb"^\s*<Correlation[\s>]")
_CORRELATION_END = re.compile(rb"</Correlation\s*>")


class _PullParser:
    """An XMLPullParser plus the stack of elements it has opened so far."""

    def __init__(self, first_line, wrapped):
        self.parser = ET.XMLPullParser(events=("start", "end"))
        self.first_line = first_line
        self.open_tags = []
        self.root = None
        if wrapped:
            # Restarted mid-document, so the top-level elements need a parent
            self.parser.feed(b"<HealthData>")

    def file_line(self, error):
        return self.first_line + error.position[0] - 1

    def events(self):
        for event, elem in self.parser.read_events():
            if event == "start":
                if self.root is None:
                    self.root = elem
                self.open_tags.append(elem.tag)
                yield event, elem
                continue

            self.open_tags.pop()
            yield event, elem

            # We must still clear elements to keep memory usage low
            elem.clear()
            if len(self.open_tags) == 1:
                self.root.clear()


def iter_export_events(source, on_error):
    """
    Yields ("start" | "end", element) pairs from an open export.xml, the way
    ET.iterparse does, and clears every element after its end event.

    Unlike iterparse, a syntax error does not end the pass. The error is
    reported through on_error(error, line_number) and parsing restarts at
    the next line that opens a top-level Record, Workout, Correlation or
    ActivitySummary, the way Apple writes them one per line. An error
    inside a Correlation skips to its closing tag first, so the Records it
    wraps are never read as top-level ones.

    Raises:
        ET.ParseError: If the file ends before the document is closed.
    """
    lines = enumerate(source, start=1)
    pending = deque()
    recent = deque(maxlen=RESYNC_WINDOW)
    current = _PullParser(first_line=1, wrapped=False)
    skip_to = None

    while True:
        if pending:
            number, line = pending.popleft()
        else:
            try:
                number, line = next(lines)
            except StopIteration:
                break

        if skip_to == "correlation_end":
            if _CORRELATION_END.search(line):
                skip_to = "top_level"
            continue
        if skip_to == "top_level":
            if not _RESYNC_START.match(line):
                continue
            skip_to = None
            current = _PullParser(first_line=number, wrapped=True)
            recent.clear()

        recent.append((number, line))
        current.parser.feed(line)
        try:
            yield from current.events()
        except ET.ParseError as e:
            error_line = current.file_line(e)
            on_error(e, error_line)

            bad_line = next((text for n, text in recent if n == error_line), b"")
            opens_correlation = (
                _CORRELATION_START.match(bad_line) and not bad_line.rstrip().endswith(b"/>")
            )
            if _CORRELATION_END.search(bad_line):
                skip_to = "top_level"
            elif "Correlation" in current.open_tags or opens_correlation:
                skip_to = "correlation_end"
            else:
                skip_to = "top_level"

            # Lines after the bad one may already have been fed; read them again
            refeed = [(n, text) for n, text in recent if n > error_line]
            pending.extendleft(reversed(refeed))

    if skip_to is not None:
        return
    try:
        current.parser.close()
    except ET.ParseError:
        yield from current.events()
        raise
    yield from current.events()


def _stream_export(source, state, batcher, stats, import_id):
    def on_error(error, line_number):
        stats["parse_errors"] += 1
        logger.warning("XML syntax error at line %d: %s. Skipping to the next top-level element.",
                       line_number, error)
        dropped = state.reset()
        if dropped:
            logger.warning("Discarded the open workout and its %d pending children", dropped)

    for event, elem in iter_export_events(source, on_error):
        if event == "start":
            try:
                _handle_start(elem.tag, elem.attrib, state, batcher, stats, import_id)
            except MalformedElementError as e:
                stats["skipped_elements"] += 1
                logger.warning("Skipping malformed element: %s", e)
        else:
            _handle_end(elem.tag, state, batcher, stats)


def import_health_xml(engine, xml_path, import_id, batch_size=BATCH_SIZE):
    """
    Parses export.xml and appends its rows to the database in batches.

    Args:
        engine: SQLAlchemy engine for the target database.
        xml_path (str): The path to the export.xml file.
        import_id (str): Tag written on every row this run produces.
        batch_size (int): Rows per table held in memory before writing.

    Returns:
        Counter: Row counts per entity kind plus 'correlations',
                 'route_references', 'skipped_elements' and 'parse_errors'.

    Raises:
        OSError: If the file cannot be opened. Anything wrong inside the
                 file is logged and skipped instead.
    """
    stats = Counter()
    state = ParseState()
    batcher = RowBatcher(engine, batch_size)

    logger.info("Parsing health data from %s...", xml_path)
    with open(xml_path, "rb") as source:
        try:
            _stream_export(source, state, batcher, stats, import_id)
        except ET.ParseError as e:
            # Truncated; keep everything read so far
            stats["parse_errors"] += 1
            logger.warning("%s ends early: %s. Keeping the data read so far.", xml_path, e)

    if state.in_workout:
        dropped = state.discard_workout()
        logger.warning("Input ended inside a workout; discarded it and %d pending children", dropped)

    batcher.flush_all()

    logger.info(
        "XML import complete: %d records, %d workouts, %d activity summaries, %d correlations",
        stats["records"], stats["workouts"], stats["activity_summaries"], stats["correlations"],
    )
    return stats
