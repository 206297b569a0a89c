"""
Pytest configuration and fixtures

Every test gets its own SQLite database file in tmp_path, so nothing is
shared between tests and no PostgreSQL server is needed.
"""
import os
import sys

import pandas as pd
import pytest
from sqlalchemy import text

# Add the project root to the path so the import scripts can be imported
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from create_db_tables import create_tables  # noqa: E402
from db_connection import get_db_engine  # noqa: E402

from tests.sample_exports import MINIMAL_ECG_CSV, MINIMAL_GPX, MINIMAL_XML, write_file  # noqa: E402


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'health.db'}"


@pytest.fixture
def engine(db_url):
    """A fresh database with every table created."""
    engine = get_db_engine(db_url)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def count_rows(engine):
    def _count(table_name):
        with engine.connect() as conn:
            return conn.execute(text(f"SELECT COUNT(*) FROM {table_name}")).scalar_one()
    return _count


@pytest.fixture
def read_table(engine):
    def _read(table_name):
        with engine.connect() as conn:
            return pd.read_sql_query(text(f"SELECT * FROM {table_name}"), conn)
    return _read


@pytest.fixture
def export_dir(tmp_path):
    """A complete export folder: export.xml, one ECG and one route file."""
    root = tmp_path / "apple_health_export"
    write_file(root / "export.xml", MINIMAL_XML)
    write_file(root / "electrocardiograms" / "ecg_2024-06-15.csv", MINIMAL_ECG_CSV)
    write_file(root / "workout-routes" / "route_2024-01-01.gpx", MINIMAL_GPX)
    return root
