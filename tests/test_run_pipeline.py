import os
import re
import shutil
from datetime import datetime, timedelta

import pytest
from sqlalchemy import text

import run_pipeline
from db_connection import append_rows, get_db_engine
from run_pipeline import export_has_changed, get_last_import_time, main, new_import_id, run_import

TABLES = [
    "records", "record_metadata", "workouts", "workout_events", "workout_statistics",
    "activity_summaries", "ecg_readings", "ecg_samples", "route_points",
]


@pytest.fixture(autouse=True)
def _keep_test_logging(monkeypatch):
    monkeypatch.setattr(run_pipeline, "setup_logging", lambda: None)


@pytest.fixture
def table_counts(db_url):
    def _counts():
        engine = get_db_engine(db_url)
        try:
            with engine.connect() as conn:
                return {t: conn.execute(text(f"SELECT COUNT(*) FROM {t}")).scalar_one() for t in TABLES}
        finally:
            engine.dispose()
    return _counts


def test_new_import_id_format_and_order():
    first = new_import_id()
    second = new_import_id()
    assert re.fullmatch(r"import_\d{8}_\d{6}_\d{6}", first)
    assert first <= second


def test_full_export(export_dir, db_url, table_counts, read_table):
    summary = run_import(str(export_dir), db_url=db_url)

    assert table_counts() == {
        "records": 2,
        "record_metadata": 1,
        "workouts": 1,
        "workout_events": 1,
        "workout_statistics": 1,
        "activity_summaries": 1,
        "ecg_readings": 1,
        "ecg_samples": 5,
        "route_points": 2,
    }
    assert summary["record_count"] == 2
    assert summary["ecg_count"] == 1
    assert summary["route_point_count"] == 2
    assert summary["xml"]["correlations"] == 1
    assert summary["gpx"]["unlinked_files"] == 0

    workouts = read_table("workouts")
    points = read_table("route_points")
    assert set(points["workout_hash"]) == {workouts.iloc[0]["workout_hash"]}

    runs = read_table("imports")
    assert list(runs["import_id"]) == [summary["import_id"]]
    assert runs.iloc[0]["record_count"] == 2
    assert runs.iloc[0]["route_point_count"] == 2

    stats = read_table("daily_record_stats")
    assert len(stats) == 2


def test_running_twice_gives_the_same_data(export_dir, db_url, table_counts, read_table):
    run_import(str(export_dir), db_url=db_url)
    once = table_counts()
    records_once = read_table("records")["record_hash"].sort_values().tolist()

    run_import(str(export_dir), db_url=db_url)

    assert table_counts() == once
    assert read_table("records")["record_hash"].sort_values().tolist() == records_once
    assert len(read_table("imports")) == 2


def test_xml_only_export(export_dir, db_url, table_counts):
    shutil.rmtree(export_dir / "electrocardiograms")
    shutil.rmtree(export_dir / "workout-routes")

    summary = run_import(str(export_dir), db_url=db_url)

    counts = table_counts()
    assert counts["records"] == 2
    assert counts["ecg_readings"] == 0
    assert counts["route_points"] == 0
    assert summary["ecg"]["files"] == 0
    assert summary["gpx"]["files"] == 0


def test_missing_export_raises(tmp_path, db_url):
    with pytest.raises(FileNotFoundError):
        run_import(str(tmp_path / "nowhere"), db_url=db_url)


def test_small_batch_size(export_dir, db_url, table_counts):
    run_import(str(export_dir), db_url=db_url, batch_size=1)
    assert table_counts()["records"] == 2


# --- Change detection ---

def test_change_detection(export_dir, engine):
    xml_path = str(export_dir / "export.xml")
    assert get_last_import_time(engine) is None
    assert export_has_changed(engine, xml_path)

    last_run = datetime(2024, 3, 1, 12, 0, 0)
    append_rows(engine, "imports", [{
        "import_id": "import_20240301_120000_000000",
        "export_dir": str(export_dir),
        "imported_at": last_run.strftime("%Y-%m-%d %H:%M:%S"),
    }])
    assert get_last_import_time(engine) == last_run

    before = (last_run - timedelta(days=1)).timestamp()
    os.utime(xml_path, (before, before))
    assert not export_has_changed(engine, xml_path)

    after = (last_run + timedelta(days=1)).timestamp()
    os.utime(xml_path, (after, after))
    assert export_has_changed(engine, xml_path)


# --- Command line ---

def test_main_imports_then_skips_unchanged(export_dir, db_url, capsys, table_counts):
    assert main(["--export-dir", str(export_dir), "--db-url", db_url]) == 0
    assert "Import finished successfully" in capsys.readouterr().out
    assert table_counts()["records"] == 2

    assert main(["--export-dir", str(export_dir), "--db-url", db_url]) == 0
    assert "has not changed" in capsys.readouterr().out

    assert main(["--export-dir", str(export_dir), "--db-url", db_url, "--force"]) == 0
    assert "Import finished successfully" in capsys.readouterr().out


def test_main_reports_missing_export(tmp_path, db_url, capsys):
    assert main(["--export-dir", str(tmp_path / "nowhere"), "--db-url", db_url]) == 1
    assert "ERROR" in capsys.readouterr().out


def test_main_reports_unreachable_database(export_dir, tmp_path, capsys):
    bad_url = f"sqlite:///{tmp_path / 'missing_dir' / 'health.db'}"
    assert main(["--export-dir", str(export_dir), "--db-url", bad_url, "--force"]) == 1
    assert "ERROR: Import failed" in capsys.readouterr().out

