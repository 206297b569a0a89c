#
# Description:
# This is the master import script. It loads a complete Apple Health export
# (export.xml, the ECG recordings and the workout route files) into the
# database in one run:
#
#   1. Parse export.xml into records, workouts and activity summaries.
#   2. Map each workout route file to its workout.
#   3. Import the ECG CSVs and the GPX routes.
#   4. Deduplicate every table and rebuild the daily stats.
#   5. Log the run in the 'imports' table.
#
# It checks the modification time of export.xml against the last logged
# run and skips the import if nothing has changed (use --force to override).
#

import argparse
import logging
import os
import sys
import time
from datetime import datetime, timezone

from dotenv import load_dotenv
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

# --- Custom Modules ---
from build_route_map import build_workout_route_map
from create_daily_stats import rebuild_daily_stats
from create_db_tables import create_tables, imports
from db_connection import append_rows, get_db_engine
from deduplicate_tables import deduplicate_tables
from logging_config import setup_logging
from parse_ecg_csv import import_ecg_files
from parse_health_xml import BATCH_SIZE, import_health_xml
from parse_workout_routes import import_gpx_files

load_dotenv()

logger = logging.getLogger(__name__)

# --- Configuration ---
EXPORT_DIR = os.getenv("EXPORT_DIR", os.path.join("data_exports", "apple_health_export"))
IMPORT_BATCH_SIZE = int(os.getenv("IMPORT_BATCH_SIZE", BATCH_SIZE))


def _utc_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_import_id():
    """e.g. 'import_20240101_103000_123456'. Sorts in creation order."""
    return _utc_now().strftime("import_%Y%m%d_%H%M%S_%f")


# --- Run Log & Change Detection ---

def get_last_import_time(engine):
    """Returns when the most recent import was logged (naive UTC), or None."""
    with engine.connect() as conn:
        return conn.execute(select(func.max(imports.c.imported_at))).scalar()


def export_has_changed(engine, xml_path):
    """True if export.xml was modified after the last logged import."""
    last_import = get_last_import_time(engine)
    if last_import is None:
        return True
    modified = datetime.fromtimestamp(os.path.getmtime(xml_path), timezone.utc).replace(tzinfo=None)
    return modified > last_import


def record_import_run(engine, summary):
    append_rows(engine, "imports", [{
        "import_id": summary["import_id"],
        "export_dir": summary["export_dir"],
        "imported_at": summary["imported_at"],
        "record_count": summary["record_count"],
        "workout_count": summary["workout_count"],
        "activity_summary_count": summary["activity_summary_count"],
        "metadata_count": summary["metadata_count"],
        "ecg_count": summary["ecg_count"],
        "route_point_count": summary["route_point_count"],
        "duration_secs": summary["duration_secs"],
    }])
    logger.info("Recorded import run %s.", summary["import_id"])


# --- Main Pipeline Logic ---

def run_import(export_dir, db_url=None, batch_size=None):
    """
    Imports one export directory from start to finish.

    Raises:
        FileNotFoundError: If export_dir has no export.xml.
        SQLAlchemyError: If the database can't be reached or written.

    Returns:
        dict: The run's id, row counts and the per-source stats counters.
    """
    started = time.monotonic()
    xml_path = os.path.join(export_dir, "export.xml")
    if not os.path.isfile(xml_path):
        raise FileNotFoundError(f"No export.xml found in {export_dir}")

    engine = get_db_engine(db_url)
    try:
        create_tables(engine)
        import_id = new_import_id()
        logger.info("Starting import %s from %s", import_id, export_dir)

        xml_stats = import_health_xml(engine, xml_path, import_id, batch_size or IMPORT_BATCH_SIZE)
        route_map = build_workout_route_map(xml_path)
        ecg_stats = import_ecg_files(engine, os.path.join(export_dir, "electrocardiograms"), import_id)
        gpx_stats = import_gpx_files(engine, os.path.join(export_dir, "workout-routes"), import_id, route_map)

        deduplicate_tables(engine)
        rebuild_daily_stats(engine)

        summary = {
            "import_id": import_id,
            "export_dir": os.path.abspath(export_dir),
            "imported_at": _utc_now(),
            "record_count": xml_stats["records"],
            "workout_count": xml_stats["workouts"],
            "activity_summary_count": xml_stats["activity_summaries"],
            "metadata_count": xml_stats["metadata_entries"],
            "ecg_count": ecg_stats["files"],
            "route_point_count": gpx_stats["route_points"],
            "duration_secs": round(time.monotonic() - started, 3),
            "xml": xml_stats,
            "ecg": ecg_stats,
            "gpx": gpx_stats,
        }
        record_import_run(engine, summary)
    finally:
        engine.dispose()

    logger.info("Import %s finished in %.1fs", import_id, summary["duration_secs"])
    return summary


def print_summary(summary):
    xml_stats, ecg_stats, gpx_stats = summary["xml"], summary["ecg"], summary["gpx"]
    print(f"\n--- Import {summary['import_id']} ---")
    print(f"  - Records:            {summary['record_count']}")
    print(f"  - Metadata entries:   {summary['metadata_count']}")
    print(f"  - Workouts:           {summary['workout_count']}")
    print(f"  - Workout events:     {xml_stats['workout_events']}")
    print(f"  - Workout statistics: {xml_stats['workout_statistics']}")
    print(f"  - Activity summaries: {summary['activity_summary_count']}")
    print(f"  - ECG recordings:     {summary['ecg_count']} ({ecg_stats['samples']} samples)")
    print(f"  - Route points:       {summary['route_point_count']} from {gpx_stats['files']} files")

    problems = (
        xml_stats["skipped_elements"] + xml_stats["parse_errors"]
        + ecg_stats["failed_files"] + gpx_stats["failed_files"]
    )
    if problems:
        print("\nWarning: Some data could not be imported (see the log for details).")
        print(f"  - Skipped XML elements: {xml_stats['skipped_elements']}")
        print(f"  - XML parse errors:     {xml_stats['parse_errors']}")
        print(f"  - Failed ECG files:     {ecg_stats['failed_files']}")
        print(f"  - Failed GPX files:     {gpx_stats['failed_files']}")
    if gpx_stats["unlinked_files"]:
        print(f"  - Route files with no matching workout: {gpx_stats['unlinked_files']}")

    print(f"\nFinished in {summary['duration_secs']:.1f}s")


def main(argv=None):
    """Command line entry point. Returns the process exit code."""
    parser = argparse.ArgumentParser(description="Import an Apple Health export into the database.")
    parser.add_argument("--export-dir", default=EXPORT_DIR,
                        help=f"Unzipped export folder containing export.xml (default: {EXPORT_DIR})")
    parser.add_argument("--db-url", default=None,
                        help="SQLAlchemy database URL (default: DATABASE_URL or the local PostgreSQL database)")
    parser.add_argument("--batch-size", type=int, default=None,
                        help=f"Rows per table held in memory before writing (default: {IMPORT_BATCH_SIZE})")
    parser.add_argument("--force", action="store_true",
                        help="Import even if export.xml hasn't changed since the last run")
    args = parser.parse_args(argv)

    setup_logging()
    print("--- Starting Apple Health Import ---")

    xml_path = os.path.join(args.export_dir, "export.xml")
    if not os.path.isfile(xml_path):
        print(f"ERROR: No export.xml found in '{args.export_dir}'.")
        return 1

    try:
        if not args.force:
            engine = get_db_engine(args.db_url)
            try:
                create_tables(engine)
                changed = export_has_changed(engine, xml_path)
            finally:
                engine.dispose()
            if not changed:
                print("\nexport.xml has not changed since the last import. Database is up-to-date.")
                print("--- Import finished (use --force to import anyway) ---")
                return 0

        summary = run_import(args.export_dir, db_url=args.db_url, batch_size=args.batch_size)
    except (OSError, SQLAlchemyError) as e:
        logger.exception("Import failed")
        print(f"ERROR: Import failed: {e}")
        return 1

    print_summary(summary)
    print("\n--- Import finished successfully ---")
    return 0


# --- Main execution block ---
if __name__ == "__main__":
    sys.exit(main())
