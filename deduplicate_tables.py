#
# Description:
# This script collapses every imported table to one row per identity.
#
# Imports only ever append, so after importing the same export twice every
# row is there twice. Rows with the same identity (usually a content hash)
# are the same data, so we keep the first one by import_id and rebuild the
# table from those. Activity summaries are the exception: they are keyed by
# date alone and Apple revises them, so the most recent import wins.
#

import logging

from sqlalchemy import Column, MetaData, Table, delete, func, insert, select

from create_db_tables import metadata

logger = logging.getLogger(__name__)

# --- Identity of each table's rows ---
# None means every column except import_id
DEDUP_KEYS = {
    "records": ["record_hash"],
    "record_metadata": ["record_hash", "key"],
    "workouts": ["workout_hash"],
    "workout_events": None,
    "workout_statistics": None,
    "activity_summaries": ["date_components"],
    "ecg_readings": ["ecg_hash"],
    "ecg_samples": ["ecg_hash", "sample_idx"],
    "route_points": ["point_hash"],
    "imports": ["import_id"],
}

LATEST_IMPORT_WINS = {"activity_summaries"}


def _ranked_rows(table, key_names, latest_first):
    if key_names is None:
        key_names = [c.name for c in table.columns if c.name != "import_id"]
    order = table.c.import_id.desc() if latest_first else table.c.import_id.asc()

    ranked = select(
        *table.columns,
        func.row_number().over(
            partition_by=[table.c[name] for name in key_names],
            order_by=order,
        ).label("rn"),
    ).subquery("ranked")

    return select(*[ranked.c[c.name] for c in table.columns]).where(ranked.c.rn == 1)


def deduplicate_table(conn, table_name):
    """Rebuilds one table from its surviving rows. Returns the remaining row count."""
    table = metadata.tables[table_name]
    column_names = [c.name for c in table.columns]
    survivors = _ranked_rows(table, DEDUP_KEYS[table_name], table_name in LATEST_IMPORT_WINS)

    staging = Table(
        f"{table_name}_dedup", MetaData(),
        *[Column(c.name, c.type) for c in table.columns],
    )
    staging.drop(conn, checkfirst=True)
    staging.create(conn)

    conn.execute(insert(staging).from_select(column_names, survivors))
    conn.execute(delete(table))
    conn.execute(insert(table).from_select(column_names, select(*staging.columns)))
    staging.drop(conn)

    return conn.execute(select(func.count()).select_from(table)).scalar_one()


def deduplicate_tables(engine):
    """
    Deduplicates every imported table in a single transaction.

    Running it again with no new rows changes nothing.

    Returns:
        dict: {table_name: rows remaining}
    """
    logger.info("Deduplicating tables...")
    remaining = {}
    with engine.begin() as conn:
        for table_name in DEDUP_KEYS:
            remaining[table_name] = deduplicate_table(conn, table_name)
            logger.info("  %s: %d rows", table_name, remaining[table_name])
    return remaining
