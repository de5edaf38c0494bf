"""
Tests for storage/db.py module.

Tests cover:
- Database initialization and idempotency
- Schema version management and migrations (v0 -> v1)
- Run CRUD and status updates
- Outcome insertion, sequencing and UNIQUE(run_id, prompt_id)
- Override updates and composite upserts

All tests use temporary databases to avoid filesystem pollution.
"""

import sqlite3

import pytest
from freezegun import freeze_time

from llm_rank_watcher.exceptions import DatabaseInitError, DatabaseMigrationError
from llm_rank_watcher.storage.db import (
    CURRENT_SCHEMA_VERSION,
    apply_migrations,
    connect,
    count_outcomes,
    delete_outcomes,
    get_schema_version,
    init_db_if_needed,
    insert_outcome,
    insert_run,
    select_composite,
    select_outcome,
    select_outcomes,
    select_run,
    select_runs,
    update_outcome_override,
    update_run_status,
    upsert_composite,
)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    init_db_if_needed(path)
    return path


@pytest.fixture
def conn(db_path):
    connection = connect(db_path)
    yield connection
    connection.close()


def _insert_outcome(conn, run_id="run-1", prompt_id="p1", score=1.0):
    return insert_outcome(
        conn,
        run_id=run_id,
        prompt_id=prompt_id,
        prompt_text=f"Prompt {prompt_id}",
        category_id="crm",
        response_text="1. Acme",
        truncated=False,
        ranking_json='{"schema_version": 1, "entries": []}',
        flags_json="{}",
        score=score,
        extraction_method="numbered_list",
    )


# ============================================================================
# Initialization and migrations
# ============================================================================


class TestInitDb:
    def test_creates_file_and_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "rank.db"

        init_db_if_needed(str(path))

        assert path.is_file()

    def test_sets_current_schema_version(self, conn):
        assert get_schema_version(conn) == CURRENT_SCHEMA_VERSION == 1

    def test_idempotent(self, db_path):
        init_db_if_needed(db_path)
        init_db_if_needed(db_path)

        with connect(db_path) as c:
            rows = c.execute("SELECT version FROM schema_version ORDER BY version").fetchall()
        assert [r[0] for r in rows] == [1]

    def test_creates_tables(self, conn):
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert {"schema_version", "runs", "prompt_outcomes", "composite_scores"} <= tables

    def test_outcomes_table_columns_and_index(self, conn):
        columns = [row[1] for row in conn.execute("PRAGMA table_info(prompt_outcomes)")]
        indexes = [row[1] for row in conn.execute("PRAGMA index_list(prompt_outcomes)")]

        assert "extraction_method" in columns
        assert "idx_outcomes_run_sequence" in indexes

    def test_newer_schema_rejected(self, db_path):
        with connect(db_path) as c:
            c.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (99, '2030-01-01T00:00:00Z')"
            )

        with pytest.raises(DatabaseInitError, match="newer than expected"):
            init_db_if_needed(db_path)

    def test_unopenable_path(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")

        with pytest.raises(DatabaseInitError):
            init_db_if_needed(str(blocker / "rank.db"))


class TestMigrations:
    def test_upgrade_from_empty(self, tmp_path):
        path = str(tmp_path / "old.db")
        c = connect(path)
        c.execute("CREATE TABLE schema_version (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
        assert get_schema_version(c) == 0
        c.close()

        init_db_if_needed(path)

        with connect(path) as c:
            assert get_schema_version(c) == 1

    def test_downgrade_rejected(self, conn):
        with pytest.raises(DatabaseMigrationError, match="Cannot downgrade"):
            apply_migrations(conn, 1, 0)

    def test_unknown_target_version(self, conn):
        with pytest.raises(DatabaseMigrationError, match="No migration defined"):
            apply_migrations(conn, 1, 2)


# ============================================================================
# Runs
# ============================================================================


class TestRuns:
    @freeze_time("2025-11-02T08:30:00Z")
    def test_insert_and_select(self, conn):
        insert_run(conn, "run-1", "Acme")

        row = select_run(conn, "run-1")

        assert row["brand_name"] == "Acme"
        assert row["status"] == "pending"
        assert row["created_at"] == "2025-11-02T08:30:00Z"
        assert row["tokens_used"] == 0

    def test_insert_is_idempotent(self, conn):
        insert_run(conn, "run-1", "Acme")
        insert_run(conn, "run-1", "Other")
        assert select_run(conn, "run-1")["brand_name"] == "Acme"

    def test_select_missing(self, conn):
        assert select_run(conn, "nope") is None

    def test_invalid_status_rejected(self, conn):
        insert_run(conn, "run-1", "Acme")
        with pytest.raises(sqlite3.IntegrityError):
            update_run_status(conn, "run-1", "exploded")

    def test_update_status_sets_optional_columns(self, conn):
        insert_run(conn, "run-1", "Acme")

        update_run_status(conn, "run-1", "running", model_meta_json='{"model": "m"}')
        update_run_status(conn, "run-1", "completed", tokens_used=321)

        row = select_run(conn, "run-1")
        assert row["status"] == "completed"
        assert row["model_meta_json"] == '{"model": "m"}'
        assert row["tokens_used"] == 321

    def test_error_message_only_while_failed(self, conn):
        insert_run(conn, "run-1", "Acme")

        update_run_status(conn, "run-1", "failed", error_message="boom")
        assert select_run(conn, "run-1")["error_message"] == "boom"

        update_run_status(conn, "run-1", "running")
        assert select_run(conn, "run-1")["error_message"] is None

    def test_update_missing_run(self, conn):
        with pytest.raises(ValueError, match="does not exist"):
            update_run_status(conn, "nope", "running")

    def test_select_runs_newest_first(self, conn):
        with freeze_time("2025-11-01T00:00:00Z"):
            insert_run(conn, "run-a", "Acme")
        with freeze_time("2025-11-02T00:00:00Z"):
            insert_run(conn, "run-b", "Acme")

        assert [r["run_id"] for r in select_runs(conn)] == ["run-b", "run-a"]
        assert [r["run_id"] for r in select_runs(conn, limit=1)] == ["run-b"]


# ============================================================================
# Outcomes
# ============================================================================


class TestOutcomes:
    def test_sequence_increments_per_run(self, conn):
        insert_run(conn, "run-1", "Acme")
        insert_run(conn, "run-2", "Acme")

        _insert_outcome(conn, "run-1", "p1")
        _insert_outcome(conn, "run-1", "p2")
        _insert_outcome(conn, "run-2", "p1")

        assert [r["sequence"] for r in select_outcomes(conn, "run-1")] == [1, 2]
        assert [r["sequence"] for r in select_outcomes(conn, "run-2")] == [1]

    def test_original_score_equals_score_on_insert(self, conn):
        insert_run(conn, "run-1", "Acme")
        outcome_id = _insert_outcome(conn, score=0.7)

        row = select_outcome(conn, outcome_id)
        assert row["score"] == 0.7
        assert row["original_score"] == 0.7
        assert row["override_ranking_json"] is None
        assert row["extraction_method"] == "numbered_list"

    def test_duplicate_prompt_in_run_rejected(self, conn):
        insert_run(conn, "run-1", "Acme")
        _insert_outcome(conn, prompt_id="p1")

        with pytest.raises(sqlite3.IntegrityError):
            _insert_outcome(conn, prompt_id="p1")

    def test_unknown_run_rejected(self, conn):
        with pytest.raises(sqlite3.IntegrityError):
            _insert_outcome(conn, run_id="ghost")

    def test_count_and_delete(self, conn):
        insert_run(conn, "run-1", "Acme")
        _insert_outcome(conn, prompt_id="p1")
        _insert_outcome(conn, prompt_id="p2")
        upsert_composite(conn, "run-1", 50.0, "{}")

        assert count_outcomes(conn, "run-1") == 2
        assert delete_outcomes(conn, "run-1") == 2
        assert count_outcomes(conn, "run-1") == 0
        assert select_composite(conn, "run-1") is None

    @freeze_time("2025-11-02T09:00:00Z")
    def test_override_set_and_clear(self, conn):
        insert_run(conn, "run-1", "Acme")
        outcome_id = _insert_outcome(conn, score=0.0)
        ranking_before = select_outcome(conn, outcome_id)["ranking_json"]

        update_outcome_override(
            conn, outcome_id, '{"schema_version": 1, "entries": []}', '{"manual_override": true}', 1.0
        )
        row = select_outcome(conn, outcome_id)
        assert row["score"] == 1.0
        assert row["original_score"] == 0.0
        assert row["overridden_at"] == "2025-11-02T09:00:00Z"
        assert row["ranking_json"] == ranking_before

        update_outcome_override(conn, outcome_id, None, "{}", 0.0)
        row = select_outcome(conn, outcome_id)
        assert row["override_ranking_json"] is None
        assert row["overridden_at"] is None

    def test_override_missing_outcome(self, conn):
        with pytest.raises(ValueError, match="does not exist"):
            update_outcome_override(conn, 999, None, "{}", 0.0)


class TestComposite:
    def test_upsert_replaces(self, conn):
        insert_run(conn, "run-1", "Acme")

        upsert_composite(conn, "run-1", 40.0, '{"crm": 40.0}')
        upsert_composite(conn, "run-1", 70.0, '{"crm": 70.0}')

        row = select_composite(conn, "run-1")
        assert row["overall"] == 70.0
        assert row["by_category_json"] == '{"crm": 70.0}'

    def test_missing(self, conn):
        assert select_composite(conn, "nope") is None
