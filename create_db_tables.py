#
# Description:
# This script defines the tables that hold the imported Apple Health export
# and creates them in the database.
#
# The tables have no primary keys or unique constraints. Every import appends
# its rows as-is and deduplicate_tables.py collapses repeats afterwards using
# the content hashes.
#
# This script can be run on its own to set up an empty database.
#

import logging

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

logger = logging.getLogger(__name__)

metadata = MetaData()

# --- Parsed from export.xml ---

records = Table(
    "records", metadata,
    Column("record_hash", String(64)),
    Column("record_type", String(255), nullable=False),
    Column("value", Float),
    Column("unit", String(64)),
    Column("source_name", String(255)),
    Column("source_version", String(255)),
    Column("device", Text),
    Column("creation_date", DateTime),
    Column("start_date", DateTime, nullable=False),
    Column("end_date", DateTime, nullable=False),
    Column("import_id", String(64), nullable=False),
    Index("idx_records_type_date", "record_type", "start_date"),
    Index("idx_records_source", "source_name"),
)

record_metadata = Table(
    "record_metadata", metadata,
    Column("record_hash", String(64), nullable=False),
    Column("key", String(255), nullable=False),
    Column("value", Text),
    Column("import_id", String(64), nullable=False),
)

workouts = Table(
    "workouts", metadata,
    Column("workout_hash", String(64)),
    Column("activity_type", String(255), nullable=False),
    Column("duration", Float),
    Column("duration_unit", String(32)),
    Column("total_distance", Float),
    Column("total_distance_unit", String(32)),
    Column("total_energy_burned", Float),
    Column("total_energy_unit", String(32)),
    Column("source_name", String(255)),
    Column("source_version", String(255)),
    Column("device", Text),
    Column("creation_date", DateTime),
    Column("start_date", DateTime, nullable=False),
    Column("end_date", DateTime, nullable=False),
    Column("import_id", String(64), nullable=False),
    Index("idx_workouts_type_date", "activity_type", "start_date"),
)

workout_events = Table(
    "workout_events", metadata,
    Column("workout_hash", String(64), nullable=False),
    Column("event_idx", Integer, nullable=False),
    Column("event_type", String(255), nullable=False),
    Column("date", DateTime),
    Column("duration", Float),
    Column("duration_unit", String(32)),
    Column("import_id", String(64), nullable=False),
)

workout_statistics = Table(
    "workout_statistics", metadata,
    Column("workout_hash", String(64), nullable=False),
    Column("stat_idx", Integer, nullable=False),
    Column("stat_type", String(255), nullable=False),
    Column("start_date", DateTime),
    Column("end_date", DateTime),
    Column("average", Float),
    Column("minimum", Float),
    Column("maximum", Float),
    Column("sum", Float),
    Column("unit", String(64)),
    Column("import_id", String(64), nullable=False),
)

activity_summaries = Table(
    "activity_summaries", metadata,
    Column("date_components", String(32)),
    Column("active_energy_burned", Float),
    Column("active_energy_burned_goal", Float),
    Column("apple_move_time", Float),
    Column("apple_move_time_goal", Float),
    Column("apple_exercise_time", Float),
    Column("apple_exercise_time_goal", Float),
    Column("apple_stand_hours", Float),
    Column("apple_stand_hours_goal", Float),
    Column("import_id", String(64), nullable=False),
)

# --- Parsed from electrocardiograms/*.csv ---

ecg_readings = Table(
    "ecg_readings", metadata,
    Column("ecg_hash", String(64)),
    Column("recorded_date", DateTime, nullable=False),
    Column("classification", String(255)),
    Column("device", Text),
    Column("sample_rate_hz", Float),
    Column("symptoms", Text),
    Column("software_version", String(64)),
    Column("import_id", String(64), nullable=False),
)

ecg_samples = Table(
    "ecg_samples", metadata,
    Column("ecg_hash", String(64), nullable=False),
    Column("sample_idx", Integer, nullable=False),
    Column("voltage_uv", Float, nullable=False),
    Column("import_id", String(64), nullable=False),
)

# --- Parsed from workout-routes/*.gpx ---

route_points = Table(
    "route_points", metadata,
    Column("point_hash", String(64)),
    Column("workout_hash", String(64)),
    Column("latitude", Float, nullable=False),
    Column("longitude", Float, nullable=False),
    Column("elevation", Float),
    Column("timestamp", DateTime, nullable=False),
    Column("speed", Float),
    Column("course", Float),
    Column("h_accuracy", Float),
    Column("v_accuracy", Float),
    Column("import_id", String(64), nullable=False),
    Index("idx_route_points_workout", "workout_hash"),
)

# --- Run log and derived tables ---

imports = Table(
    "imports", metadata,
    Column("import_id", String(64)),
    Column("export_dir", Text, nullable=False),
    Column("imported_at", DateTime, nullable=False),
    Column("record_count", BigInteger),
    Column("workout_count", BigInteger),
    Column("activity_summary_count", BigInteger),
    Column("metadata_count", BigInteger),
    Column("ecg_count", BigInteger),
    Column("route_point_count", BigInteger),
    Column("duration_secs", Float),
)

daily_record_stats = Table(
    "daily_record_stats", metadata,
    Column("record_type", String(255)),
    Column("date", Date),
    Column("unit", String(64)),
    Column("count", BigInteger),
    Column("avg_value", Float),
    Column("min_value", Float),
    Column("max_value", Float),
    Column("sum_value", Float),
)


def create_tables(engine):
    """Creates every table and index that does not exist yet."""
    logger.info("Creating tables...")
    metadata.create_all(engine, checkfirst=True)
    logger.info("All tables created successfully or already exist.")


# --- Main execution block ---
if __name__ == "__main__":
    from db_connection import get_db_engine
    from logging_config import setup_logging

    setup_logging()
    create_tables(get_db_engine())
