"""
SQLite database initialization and schema management for LLM Rank Watcher.

This module provides database setup with schema versioning and migration
support, plus the parameterized statements used by storage.store. All
timestamps are stored in ISO 8601 format with 'Z' suffix (UTC).

The database tracks:
- runs: One measurement run with its state machine and model metadata
- prompt_outcomes: One row per prompt per run, with the extracted ranking,
  the (optional) manual override and the truncated reply text
- composite_scores: Materialized composite per run, upserted on every change

Example usage:
    >>> init_db_if_needed("./output/rank_watcher.db")
    # Creates database at the current schema version if needed
    # Or applies migrations if schema is outdated

Security:
    - ALL queries use parameterized statements to prevent SQL injection
    - NO API keys are ever stored in the database
"""

import logging
import sqlite3
from pathlib import Path

from llm_rank_watcher.exceptions import DatabaseInitError, DatabaseMigrationError
from llm_rank_watcher.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

# Current schema version - increment when migrations are added
CURRENT_SCHEMA_VERSION = 1

# Seconds to wait on a locked database before giving up
BUSY_TIMEOUT_SECONDS = 30.0


def connect(db_path: str) -> sqlite3.Connection:
    """
    Open a connection in autocommit mode with foreign keys enabled.

    Transactions are opened explicitly by callers (BEGIN / BEGIN IMMEDIATE).
    Rows are returned as sqlite3.Row for name-based access.
    """
    conn = sqlite3.connect(
        db_path, timeout=BUSY_TIMEOUT_SECONDS, isolation_level=None
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db_if_needed(db_path: str) -> None:
    """
    Initialize SQLite database with schema versioning.

    Idempotent: safe to call multiple times. If the database already exists
    at the current schema version, it's a no-op.

    Args:
        db_path: Filesystem path to SQLite database file.
                 Parent directory is created if needed.

    Raises:
        DatabaseInitError: If the file cannot be created or opened, or its
            schema is newer than this software
        DatabaseMigrationError: If a migration fails (rolled back)
    """
    try:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = connect(db_path)
    except (OSError, sqlite3.Error) as e:
        raise DatabaseInitError(f"Cannot open database {db_path}: {e}") from e

    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)

        current_version = get_schema_version(conn)

        if current_version < CURRENT_SCHEMA_VERSION:
            logger.info(
                f"Database schema upgrade needed: "
                f"v{current_version} -> v{CURRENT_SCHEMA_VERSION}"
            )
            apply_migrations(conn, current_version, CURRENT_SCHEMA_VERSION)
            logger.info(f"Database schema upgraded to v{CURRENT_SCHEMA_VERSION}")
        elif current_version == CURRENT_SCHEMA_VERSION:
            logger.debug(f"Database schema is current (v{CURRENT_SCHEMA_VERSION})")
        else:
            raise DatabaseInitError(
                f"Database schema version {current_version} is newer than "
                f"expected {CURRENT_SCHEMA_VERSION}. Update your software or "
                f"use a different database file."
            )
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Cannot initialize database {db_path}: {e}") from e
    finally:
        conn.close()


def get_schema_version(conn: sqlite3.Connection) -> int:
    """
    Get current schema version from database.

    Returns:
        int: Current schema version (0 if no migrations applied yet)
    """
    cursor = conn.execute("SELECT MAX(version) FROM schema_version")
    result = cursor.fetchone()[0]

    # MAX() returns None if table is empty
    return result if result is not None else 0


def apply_migrations(
    conn: sqlite3.Connection, from_version: int, to_version: int
) -> None:
    """
    Apply schema migrations from one version to another.

    Each migration runs in its own transaction; if migration to version N
    fails, the database remains at version N-1.

    Raises:
        DatabaseMigrationError: If any migration SQL fails, or on a
            downgrade request
    """
    if from_version > to_version:
        raise DatabaseMigrationError(
            f"Cannot downgrade schema from v{from_version} to v{to_version}. "
            f"Downgrades are not supported. Use a database backup instead."
        )

    migrations = {
        1: _migrate_to_v1,
    }

    for target_version in range(from_version + 1, to_version + 1):
        logger.info(f"Applying migration to schema version {target_version}")

        migration = migrations.get(target_version)
        if migration is None:
            raise DatabaseMigrationError(
                f"No migration defined for version {target_version}"
            )

        try:
            conn.execute("BEGIN")
            migration(conn)

            timestamp = utc_timestamp()
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (target_version, timestamp),
            )
            conn.execute("COMMIT")
            logger.info(
                f"Successfully migrated to schema version {target_version} "
                f"at {timestamp}"
            )

        except sqlite3.Error as e:
            conn.execute("ROLLBACK")
            logger.error(
                f"Migration to version {target_version} failed: {e}", exc_info=True
            )
            raise DatabaseMigrationError(
                f"Failed to migrate database to version {target_version}: {e}"
            ) from e


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """
    Create the initial tables.

    - runs: run_id, status (pending/running/completed/failed), model meta,
      token total and failure message
    - prompt_outcomes: per-prompt ranking/flags JSON, score, reply text,
      override columns and the extraction strategy that produced the
      ranking. ranking_json is never rewritten once stored.
    - composite_scores: one row per run, upserted
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS runs (
            run_id TEXT PRIMARY KEY,
            brand_name TEXT NOT NULL,
            status TEXT NOT NULL
                CHECK (status IN ('pending', 'running', 'completed', 'failed')),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            model_meta_json TEXT,
            tokens_used INTEGER NOT NULL DEFAULT 0,
            error_message TEXT
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS prompt_outcomes (
            outcome_id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT NOT NULL,
            prompt_id TEXT NOT NULL,
            prompt_text TEXT NOT NULL,
            category_id TEXT,
            sequence INTEGER NOT NULL,
            response_text TEXT NOT NULL,
            truncated INTEGER NOT NULL DEFAULT 0,
            ranking_json TEXT NOT NULL,
            flags_json TEXT NOT NULL,
            score REAL NOT NULL,
            original_score REAL NOT NULL,
            override_ranking_json TEXT,
            overridden_at TEXT,
            created_at TEXT NOT NULL,
            extraction_method TEXT,
            FOREIGN KEY (run_id) REFERENCES runs(run_id),
            UNIQUE(run_id, prompt_id)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS composite_scores (
            run_id TEXT PRIMARY KEY,
            overall REAL NOT NULL,
            by_category_json TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (run_id) REFERENCES runs(run_id)
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_runs_created
        ON runs(created_at)
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_outcomes_run_sequence
        ON prompt_outcomes(run_id, sequence)
    """)

    logger.debug("Created schema v1 tables and indexes")


# ============================================================================
# Runs
# ============================================================================


def insert_run(conn: sqlite3.Connection, run_id: str, brand_name: str) -> None:
    """
    Insert a new run in the 'pending' state.

    Uses INSERT OR IGNORE so re-creating an existing run is a no-op.
    """
    timestamp = utc_timestamp()
    conn.execute(
        """
        INSERT OR IGNORE INTO runs (
            run_id, brand_name, status, created_at, updated_at
        ) VALUES (?, ?, 'pending', ?, ?)
        """,
        (run_id, brand_name, timestamp, timestamp),
    )
    logger.debug(f"Inserted run {run_id} for brand {brand_name}")


def select_run(conn: sqlite3.Connection, run_id: str) -> sqlite3.Row | None:
    """Fetch one run row, or None if it does not exist."""
    cursor = conn.execute(
        """
        SELECT run_id, brand_name, status, created_at, updated_at,
               model_meta_json, tokens_used, error_message
        FROM runs
        WHERE run_id = ?
        """,
        (run_id,),
    )
    return cursor.fetchone()


def select_runs(conn: sqlite3.Connection, limit: int = 50) -> list[sqlite3.Row]:
    """Fetch the most recent runs, newest first."""
    cursor = conn.execute(
        """
        SELECT run_id, brand_name, status, created_at, updated_at,
               model_meta_json, tokens_used, error_message
        FROM runs
        ORDER BY created_at DESC, run_id DESC
        LIMIT ?
        """,
        (limit,),
    )
    return cursor.fetchall()


def update_run_status(
    conn: sqlite3.Connection,
    run_id: str,
    status: str,
    model_meta_json: str | None = None,
    tokens_used: int | None = None,
    error_message: str | None = None,
) -> None:
    """
    Move a run to a new status.

    Only the provided optional columns are changed. error_message is
    cleared whenever the run leaves the 'failed' state.

    Raises:
        ValueError: If run_id does not exist (rowcount == 0)
    """
    assignments = ["status = ?", "updated_at = ?"]
    params: list = [status, utc_timestamp()]

    if model_meta_json is not None:
        assignments.append("model_meta_json = ?")
        params.append(model_meta_json)

    if tokens_used is not None:
        assignments.append("tokens_used = ?")
        params.append(tokens_used)

    assignments.append("error_message = ?")
    params.append(error_message if status == "failed" else None)

    params.append(run_id)
    cursor = conn.execute(
        f"UPDATE runs SET {', '.join(assignments)} WHERE run_id = ?",
        params,
    )

    if cursor.rowcount == 0:
        raise ValueError(f"Cannot update status for run_id={run_id}: run does not exist")

    logger.debug(f"Run {run_id} -> {status}")


# ============================================================================
# Prompt outcomes
# ============================================================================

_OUTCOME_COLUMNS = """
    outcome_id, run_id, prompt_id, prompt_text, category_id, sequence,
    response_text, truncated, ranking_json, flags_json, score,
    original_score, override_ranking_json, overridden_at, created_at,
    extraction_method
"""


def insert_outcome(
    conn: sqlite3.Connection,
    run_id: str,
    prompt_id: str,
    prompt_text: str,
    category_id: str | None,
    response_text: str,
    truncated: bool,
    ranking_json: str,
    flags_json: str,
    score: float,
    extraction_method: str | None,
) -> int:
    """
    Append an outcome at the next sequence number of its run.

    Returns:
        The new outcome_id

    Raises:
        sqlite3.IntegrityError: If the prompt already has an outcome in this
            run, or the run does not exist
    """
    cursor = conn.execute(
        "SELECT COALESCE(MAX(sequence), 0) + 1 FROM prompt_outcomes WHERE run_id = ?",
        (run_id,),
    )
    sequence = cursor.fetchone()[0]

    cursor = conn.execute(
        """
        INSERT INTO prompt_outcomes (
            run_id, prompt_id, prompt_text, category_id, sequence,
            response_text, truncated, ranking_json, flags_json,
            score, original_score, created_at, extraction_method
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            run_id,
            prompt_id,
            prompt_text,
            category_id,
            sequence,
            response_text,
            1 if truncated else 0,
            ranking_json,
            flags_json,
            score,
            score,
            utc_timestamp(),
            extraction_method,
        ),
    )
    logger.debug(f"Inserted outcome for run={run_id} prompt={prompt_id} seq={sequence}")
    return cursor.lastrowid


def select_outcome(conn: sqlite3.Connection, outcome_id: int) -> sqlite3.Row | None:
    """Fetch one outcome row, or None if it does not exist."""
    cursor = conn.execute(
        f"SELECT {_OUTCOME_COLUMNS} FROM prompt_outcomes WHERE outcome_id = ?",
        (outcome_id,),
    )
    return cursor.fetchone()


def select_outcomes(conn: sqlite3.Connection, run_id: str) -> list[sqlite3.Row]:
    """Fetch all outcomes of a run in sequence order."""
    cursor = conn.execute(
        f"""
        SELECT {_OUTCOME_COLUMNS}
        FROM prompt_outcomes
        WHERE run_id = ?
        ORDER BY sequence
        """,
        (run_id,),
    )
    return cursor.fetchall()


def count_outcomes(conn: sqlite3.Connection, run_id: str) -> int:
    cursor = conn.execute(
        "SELECT COUNT(*) FROM prompt_outcomes WHERE run_id = ?", (run_id,)
    )
    return cursor.fetchone()[0]


def delete_outcomes(conn: sqlite3.Connection, run_id: str) -> int:
    """Delete every outcome and the composite of a run. Returns rows deleted."""
    cursor = conn.execute("DELETE FROM prompt_outcomes WHERE run_id = ?", (run_id,))
    conn.execute("DELETE FROM composite_scores WHERE run_id = ?", (run_id,))
    logger.debug(f"Deleted {cursor.rowcount} outcomes of run {run_id}")
    return cursor.rowcount


def update_outcome_override(
    conn: sqlite3.Connection,
    outcome_id: int,
    override_ranking_json: str | None,
    flags_json: str,
    score: float,
) -> None:
    """
    Set or clear the override of an outcome.

    ranking_json (the extracted ranking) is never touched. Passing
    override_ranking_json=None clears the override.
    """
    overridden_at = utc_timestamp() if override_ranking_json is not None else None
    cursor = conn.execute(
        """
        UPDATE prompt_outcomes
        SET override_ranking_json = ?, overridden_at = ?, flags_json = ?, score = ?
        WHERE outcome_id = ?
        """,
        (override_ranking_json, overridden_at, flags_json, score, outcome_id),
    )

    if cursor.rowcount == 0:
        raise ValueError(f"Cannot update outcome_id={outcome_id}: outcome does not exist")


# ============================================================================
# Composite scores
# ============================================================================


def upsert_composite(
    conn: sqlite3.Connection, run_id: str, overall: float, by_category_json: str
) -> None:
    """Insert or replace the composite of a run."""
    conn.execute(
        """
        INSERT INTO composite_scores (run_id, overall, by_category_json, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(run_id) DO UPDATE SET
            overall = excluded.overall,
            by_category_json = excluded.by_category_json,
            updated_at = excluded.updated_at
        """,
        (run_id, overall, by_category_json, utc_timestamp()),
    )
    logger.debug(f"Upserted composite for run {run_id}: {overall}")


def select_composite(conn: sqlite3.Connection, run_id: str) -> sqlite3.Row | None:
    cursor = conn.execute(
        """
        SELECT run_id, overall, by_category_json, updated_at
        FROM composite_scores
        WHERE run_id = ?
        """,
        (run_id,),
    )
    return cursor.fetchone()
