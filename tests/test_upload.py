"""Tests for the upload entry script boundary checks and dry-run ingestion."""

import json

import pytest

from main_upload import check_upload, ingest_files
from perfmetrics.processing.pipeline import IngestionPipeline
from perfmetrics.storage.memory import InMemoryMetricStore

CSV = (
    "Date,Host,Service,@data.duration,accountId,@data.type,Content\n"
    "2024-01-15T08:10:00Z,h,s,100,acct-1,page_load,c\n"
    "2024-01-15T09:10:00Z,h,s,300,acct-1,page_load,c\n"
)


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "export.csv"
    path.write_text(CSV)
    return path


def test_accepts_csv(csv_file):
    assert check_upload(str(csv_file)) is None


def test_rejects_other_extensions(tmp_path):
    path = tmp_path / "export.txt"
    path.write_text(CSV)
    assert check_upload(str(path)) == "Only CSV files are allowed"


def test_rejects_oversized_files(csv_file):
    assert check_upload(str(csv_file), max_bytes=10) == "File size exceeds 0MB limit"


def test_rejects_missing_files(tmp_path):
    assert check_upload(str(tmp_path / "missing.csv")) == "No file provided"


def test_ingest_files_merges_and_reports(csv_file, tmp_path, capsys):
    store = InMemoryMetricStore()
    pipeline = IngestionPipeline(store, uploaded_by="cli")
    bad = tmp_path / "notes.txt"
    bad.write_text("x")

    failures = ingest_files(pipeline, [str(csv_file), str(bad)], "cli")

    assert failures == 1
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert lines[0]["success"] is True
    assert lines[0]["stats"]["aggregatedGroups"] == 1
    assert "aggregatedData" not in lines[0]
    assert lines[1] == {"file": str(bad), "success": False, "errors": ["Only CSV files are allowed"]}
    [stored] = store.records.values()
    assert (stored.avg_duration, stored.record_count) == (200.0, 2)
