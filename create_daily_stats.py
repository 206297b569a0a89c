#
# Description:
# This script rebuilds the 'daily_record_stats' table: one row per record
# type, day and unit with the count, average, minimum, maximum and sum of
# the values recorded that day. Records without a numeric value (sleep
# analysis, stand hours and other category types) are left out.
#
# The table is thrown away and recomputed from 'records' every time, so it
# always matches the deduplicated data.
#

import logging

from sqlalchemy import delete, func, insert, select

from create_db_tables import daily_record_stats, records

logger = logging.getLogger(__name__)


def rebuild_daily_stats(engine):
    """Replaces daily_record_stats with fresh aggregates. Returns its row count."""
    day = func.date(records.c.start_date)
    aggregates = (
        select(
            records.c.record_type,
            day,
            records.c.unit,
            func.count(),
            func.avg(records.c.value),
            func.min(records.c.value),
            func.max(records.c.value),
            func.sum(records.c.value),
        )
        .where(records.c.value.is_not(None))
        .group_by(records.c.record_type, day, records.c.unit)
    )

    logger.info("Rebuilding daily record stats...")
    with engine.begin() as conn:
        conn.execute(delete(daily_record_stats))
        conn.execute(
            insert(daily_record_stats).from_select(
                ["record_type", "date", "unit", "count",
                 "avg_value", "min_value", "max_value", "sum_value"],
                aggregates,
            )
        )
        row_count = conn.execute(select(func.count()).select_from(daily_record_stats)).scalar_one()

    logger.info("daily_record_stats now has %d rows.", row_count)
    return row_count
