#
# Description:
# Database connection details and the one write primitive the importers use:
# appending a batch of rows to a table. Everything goes through a SQLAlchemy
# engine, so the same code loads PostgreSQL in production and a SQLite file
# in the test suite.
#

import logging
import os

import pandas as pd
from dotenv import load_dotenv
from sqlalchemy import DateTime, create_engine
from sqlalchemy.engine import make_url

from create_db_tables import metadata

load_dotenv()

logger = logging.getLogger(__name__)

# --- Database Connection Details ---
DB_NAME = os.getenv("DB_NAME", "health_coach_db")
DB_USER = os.getenv("DB_USER", "PJ")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")

# Rows per INSERT round-trip when a batch is written out.
INSERT_CHUNK_SIZE = 10_000


def get_db_url():
    """Returns DATABASE_URL if set, otherwise the local PostgreSQL URL."""
    return os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{DB_USER}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
    )


def get_db_engine(db_url=None, read_only=False):
    """
    Creates and returns a SQLAlchemy engine.

    A read-only engine is meant for anything that queries the dataset while
    no import is running; writes through it fail at the database.
    """
    url = make_url(db_url or get_db_url())

    if not read_only:
        return create_engine(url)

    if url.get_backend_name() == "sqlite":
        # file:<path>?mode=ro needs the driver's URI mode
        database = url.database or ""
        url = url.set(database=f"file:{database}", query={"mode": "ro", "uri": "true"})
        return create_engine(url)

    return create_engine(url, execution_options={"postgresql_readonly": True})


def write_rows(conn, table_name, rows):
    """
    Appends row dicts to `table_name` on an open connection.

    Rows are written in the order given and without any uniqueness check;
    duplicates are collapsed later by deduplicate_tables. Timestamp columns
    arrive as cleaned strings and are converted here.

    Returns:
        int: The number of rows written.
    """
    if not rows:
        return 0

    table = metadata.tables[table_name]
    df = pd.DataFrame(rows, columns=[column.name for column in table.columns])
    for column in table.columns:
        if isinstance(column.type, DateTime):
            df[column.name] = pd.to_datetime(df[column.name], format="ISO8601", errors="coerce")

    df.to_sql(table_name, conn, if_exists="append", index=False, chunksize=INSERT_CHUNK_SIZE)
    logger.debug("Appended %d rows to %s", len(df), table_name)
    return len(df)


def append_rows(engine, table_name, rows):
    """Appends a batch of row dicts to `table_name` in its own transaction."""
    if not rows:
        return 0
    with engine.begin() as conn:
        return write_rows(conn, table_name, rows)
