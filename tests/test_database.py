"""Tests for the DuckDB store of synced entities."""

import tempfile
from pathlib import Path

import pytest

from wrestling_sync.database import SyncDatabase


def test_schema_created_on_open():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.duckdb"
        with SyncDatabase(db_path) as db:
            tables = db.conn.execute(
                "SELECT table_name FROM information_schema.tables WHERE table_name = 'synced_records'"
            ).fetchall()
            assert len(tables) == 1
        assert db.conn is None


def test_requires_open_connection():
    db = SyncDatabase(":memory:")
    with pytest.raises(RuntimeError):
        db.count()
    with pytest.raises(RuntimeError):
        with db.session("shows"):
            pass


def test_insert_and_find(test_db):
    with test_db.session("shows") as session:
        record = session.insert("show-1", {"name": "Raw", "show_date": "2024-01-01"})

    found = test_db.get_record("shows", "show-1")
    assert found.record_id == record.record_id
    assert found.fields == {"name": "Raw", "show_date": "2024-01-01"}
    assert found.last_synced_at is not None
    assert test_db.has_record("shows", "show-1")
    assert not test_db.has_record("seasons", "show-1")


def test_entity_types_are_isolated(test_db):
    with test_db.session("shows") as session:
        session.insert("id-1", {"name": "Raw"})
    with test_db.session("seasons") as session:
        session.insert("id-1", {"name": "Season 1"})

    assert test_db.count() == 2
    assert test_db.count("shows") == 1
    assert test_db.get_record("seasons", "id-1").fields["name"] == "Season 1"


def test_duplicate_external_id_is_rejected(test_db):
    with test_db.session("shows") as session:
        session.insert("show-1", {"name": "Raw"})
        with pytest.raises(ValueError):
            session.insert("show-1", {"name": "Raw again"})
        # rows created locally have no external ID yet
        session.insert(None, {"name": "Local 1"})
        session.insert(None, {"name": "Local 2"})

    assert test_db.count("shows") == 3


def test_locally_created_rows_are_unsynced(test_db):
    with test_db.session("shows") as session:
        record = session.insert(None, {"name": "Local"})

    assert record.last_synced_at is None
    assert test_db.get_last_sync_time("shows") is None


def test_update_replaces_fields(test_db):
    with test_db.session("wrestlers") as session:
        record = session.insert("wr-1", {"name": "Rock", "fans": 10})
        updated = session.update(record.record_id, {"name": "The Rock", "fans": 10})

    assert updated.fields == {"name": "The Rock", "fans": 10}
    assert updated.updated_at >= record.updated_at


def test_update_unknown_record(test_db):
    with test_db.session("wrestlers") as session:
        with pytest.raises(KeyError):
            session.update("missing", {"name": "Nobody"})


def test_set_external_id(test_db):
    with test_db.session("shows") as session:
        local = session.insert(None, {"name": "Local"})
        other = session.insert("show-2", {"name": "Other"})
        session.set_external_id(local.record_id, "show-1")
        with pytest.raises(ValueError):
            session.set_external_id(other.record_id, "show-1")

    assert test_db.get_record("shows", "show-1").record_id == local.record_id


def test_mark_synced_and_last_sync_time(test_db):
    with test_db.session("shows") as session:
        record = session.insert(None, {"name": "Local"})
        session.mark_synced(record.record_id)

    assert test_db.get_last_sync_time("shows") is not None
    assert test_db.get_last_sync_time("seasons") is None


def test_update_local_fields(test_db):
    with test_db.session("wrestlers") as session:
        session.insert("wr-1", {"name": "Rock", "fans": 0})

    updated = test_db.update_local_fields("wrestlers", "wr-1", fans=250)

    assert updated.fields == {"name": "Rock", "fans": 250}
    with pytest.raises(KeyError):
        test_db.update_local_fields("wrestlers", "wr-9", fans=1)


def test_list_records(test_db):
    with test_db.session("seasons") as session:
        for number in range(3):
            session.insert(f"s-{number}", {"name": f"Season {number}"})

    names = sorted(record.fields["name"] for record in test_db.list_records("seasons"))
    assert names == ["Season 0", "Season 1", "Season 2"]


def test_data_survives_reopen():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.duckdb"
        with SyncDatabase(db_path) as db:
            with db.session("shows") as session:
                session.insert("show-1", {"name": "Raw"})

        with SyncDatabase(db_path) as db:
            assert db.get_record("shows", "show-1").fields["name"] == "Raw"


def test_session_rolls_back_when_an_error_escapes(test_db):
    with test_db.session("shows") as session:
        session.insert("show-1", {"name": "Raw"})

    with pytest.raises(RuntimeError):
        with test_db.session("shows") as session:
            session.insert("show-2", {"name": "SmackDown"})
            record = session.find_by_external_id("show-1")
            session.update(record.record_id, {"name": "Monday Night Raw"})
            raise RuntimeError("disk full")

    assert test_db.count("shows") == 1
    assert not test_db.has_record("shows", "show-2")
    assert test_db.get_record("shows", "show-1").fields == {"name": "Raw"}


def test_session_commits_after_handled_record_errors(test_db):
    with test_db.session("shows") as session:
        session.insert("show-1", {"name": "Raw"})
        with pytest.raises(ValueError):
            session.insert("show-1", {"name": "Raw again"})
        session.insert("show-2", {"name": "SmackDown"})

    assert test_db.count("shows") == 2
