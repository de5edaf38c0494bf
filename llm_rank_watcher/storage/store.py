"""
Outcome store: the persistence facade used by the run orchestrator.

Wraps storage.db with record decoding and the single-writer discipline:
every mutation of a run's outcomes happens inside one SQLite
BEGIN IMMEDIATE transaction, serialized per run by an in-process lock, and
the run's composite is recomputed and upserted inside that same
transaction. Concurrent runs write concurrently; the composite of a run is
last-write-wins.

Callers pass a `composer` that turns the run's outcomes into a
CompositeScore, so the store stays independent of brand configuration.

Example:
    >>> store = OutcomeStore("./output/rank_watcher.db")
    >>> store.create_run("2025-11-02T08-30-00Z", "Acme")
    >>> store.list_outcomes("2025-11-02T08-30-00Z")
    []
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from llm_rank_watcher.exceptions import (
    DatabaseInitError,
    DatabaseQueryError,
    RankingDataIntegrityError,
    RunStateError,
)
from llm_rank_watcher.extractor.rank_extractor import ExtractionFlags, Ranking
from llm_rank_watcher.scoring.aggregator import CompositeScore

from . import db
from .codec import decode_flags, decode_ranking, encode_flags, encode_ranking
from .records import Override, PromptOutcome, RunRecord, RunStatus

logger = logging.getLogger(__name__)

Composer = Callable[[Sequence[PromptOutcome]], CompositeScore]


@dataclass
class _RunLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


def _run_from_row(row: sqlite3.Row) -> RunRecord:
    model_meta = None
    if row["model_meta_json"]:
        try:
            model_meta = json.loads(row["model_meta_json"])
        except json.JSONDecodeError as e:
            raise RankingDataIntegrityError(
                f"Malformed model meta for run {row['run_id']}: {e}"
            ) from e

    return RunRecord(
        run_id=row["run_id"],
        brand_name=row["brand_name"],
        status=RunStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        model_meta=model_meta,
        tokens_used=row["tokens_used"],
        error_message=row["error_message"],
    )


def _outcome_from_row(row: sqlite3.Row) -> PromptOutcome:
    ranking = decode_ranking(row["ranking_json"])

    override = None
    if row["override_ranking_json"] is not None:
        override = Override(
            original_ranking=ranking,
            override_ranking=decode_ranking(row["override_ranking_json"]),
            score=row["score"],
            overridden_at=row["overridden_at"],
        )

    return PromptOutcome(
        outcome_id=row["outcome_id"],
        run_id=row["run_id"],
        prompt_id=row["prompt_id"],
        prompt_text=row["prompt_text"],
        category_id=row["category_id"],
        sequence=row["sequence"],
        ranking=ranking,
        flags=decode_flags(row["flags_json"]),
        score=row["score"],
        original_score=row["original_score"],
        raw_text=row["response_text"],
        truncated=bool(row["truncated"]),
        extraction_method=row["extraction_method"],
        override=override,
        created_at=row["created_at"],
    )


class OutcomeStore:
    """
    SQLite-backed store for runs, prompt outcomes and composites.

    Thread-safe: one store may be shared across threads and event loops.
    Each operation opens its own short-lived connection.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._locks: dict[str, _RunLock] = {}
        self._locks_guard = threading.Lock()
        db.init_db_if_needed(db_path)

    # ------------------------------------------------------------------
    # Connection and transaction helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = db.connect(self.db_path)
        except sqlite3.Error as e:
            raise DatabaseInitError(f"Cannot open database {self.db_path}: {e}") from e

        try:
            yield conn
        except sqlite3.Error as e:
            raise DatabaseQueryError(
                f"Database operation failed on {self.db_path}: {e}"
            ) from e
        finally:
            conn.close()

    @contextmanager
    def _run_lock(self, run_id: str) -> Iterator[None]:
        """Hold the per-run writer lock; the entry is dropped once unused."""
        with self._locks_guard:
            entry = self._locks.get(run_id)
            if entry is None:
                entry = self._locks[run_id] = _RunLock()
            entry.users += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[run_id]

    @contextmanager
    def _write(self, run_id: str) -> Iterator[sqlite3.Connection]:
        """Single-writer transaction for one run."""
        with self._run_lock(run_id), self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _recompute(
        self, conn: sqlite3.Connection, run_id: str, composer: Composer
    ) -> CompositeScore:
        outcomes = [_outcome_from_row(row) for row in db.select_outcomes(conn, run_id)]
        composite = composer(outcomes)
        db.upsert_composite(
            conn,
            run_id,
            composite.overall,
            json.dumps(composite.by_category, sort_keys=True),
        )
        return composite

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(self, run_id: str, brand_name: str) -> RunRecord:
        """
        Create a run in the 'pending' state, or return it if it exists.
        """
        with self._write(run_id) as conn:
            db.insert_run(conn, run_id, brand_name)
            return _run_from_row(db.select_run(conn, run_id))

    def get_run(self, run_id: str) -> RunRecord | None:
        with self._connect() as conn:
            row = db.select_run(conn, run_id)
        return _run_from_row(row) if row is not None else None

    def require_run(self, run_id: str) -> RunRecord:
        """
        Raises:
            RunStateError: If the run does not exist
        """
        run = self.get_run(run_id)
        if run is None:
            raise RunStateError(f"Run not found: {run_id}")
        return run

    def list_runs(self, limit: int = 50) -> list[RunRecord]:
        with self._connect() as conn:
            rows = db.select_runs(conn, limit)
        return [_run_from_row(row) for row in rows]

    def mark_running(self, run_id: str, model_meta: dict[str, Any]) -> None:
        with self._write(run_id) as conn:
            db.update_run_status(
                conn,
                run_id,
                RunStatus.RUNNING.value,
                model_meta_json=json.dumps(model_meta, sort_keys=True),
            )

    def mark_completed(self, run_id: str, tokens_used: int | None = None) -> None:
        with self._write(run_id) as conn:
            db.update_run_status(
                conn, run_id, RunStatus.COMPLETED.value, tokens_used=tokens_used
            )

    def mark_failed(
        self, run_id: str, error_message: str, tokens_used: int | None = None
    ) -> None:
        with self._write(run_id) as conn:
            db.update_run_status(
                conn,
                run_id,
                RunStatus.FAILED.value,
                tokens_used=tokens_used,
                error_message=error_message,
            )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def count_outcomes(self, run_id: str) -> int:
        with self._connect() as conn:
            return db.count_outcomes(conn, run_id)

    def discard_outcomes(self, run_id: str) -> int:
        """Delete all outcomes and the composite of a run."""
        with self._write(run_id) as conn:
            deleted = db.delete_outcomes(conn, run_id)
        logger.info(f"Discarded {deleted} existing outcomes of run {run_id}")
        return deleted

    def append_outcome(
        self,
        run_id: str,
        prompt_id: str,
        prompt_text: str,
        category_id: str | None,
        ranking: Ranking,
        flags: ExtractionFlags,
        score: float,
        raw_text: str,
        truncated: bool,
        extraction_method: str | None,
        composer: Composer,
    ) -> tuple[PromptOutcome, CompositeScore]:
        """
        Append one outcome and recompute the run's composite atomically.

        Raises:
            RunStateError: If the run does not exist or the prompt already
                has an outcome in it
        """
        with self._write(run_id) as conn:
            if db.select_run(conn, run_id) is None:
                raise RunStateError(f"Run not found: {run_id}")

            try:
                outcome_id = db.insert_outcome(
                    conn,
                    run_id=run_id,
                    prompt_id=prompt_id,
                    prompt_text=prompt_text,
                    category_id=category_id,
                    response_text=raw_text,
                    truncated=truncated,
                    ranking_json=encode_ranking(ranking),
                    flags_json=encode_flags(flags),
                    score=score,
                    extraction_method=extraction_method,
                )
            except sqlite3.IntegrityError as e:
                raise RunStateError(
                    f"Prompt '{prompt_id}' already has an outcome in run {run_id}"
                ) from e

            composite = self._recompute(conn, run_id, composer)
            outcome = _outcome_from_row(db.select_outcome(conn, outcome_id))

        return outcome, composite

    def get_outcome(self, outcome_id: int) -> PromptOutcome | None:
        with self._connect() as conn:
            row = db.select_outcome(conn, outcome_id)
        return _outcome_from_row(row) if row is not None else None

    def require_outcome(self, outcome_id: int) -> PromptOutcome:
        """
        Raises:
            RunStateError: If the outcome does not exist
        """
        outcome = self.get_outcome(outcome_id)
        if outcome is None:
            raise RunStateError(f"Outcome not found: {outcome_id}")
        return outcome

    def list_outcomes(self, run_id: str) -> list[PromptOutcome]:
        with self._connect() as conn:
            rows = db.select_outcomes(conn, run_id)
        return [_outcome_from_row(row) for row in rows]

    def set_override(
        self,
        outcome_id: int,
        override_ranking: Ranking | None,
        score: float,
        composer: Composer,
    ) -> tuple[PromptOutcome, CompositeScore]:
        """
        Set (or, with override_ranking=None, clear) an outcome's override
        and recompute the run's composite atomically.

        The manual_override flag follows the override; the extracted
        ranking and the other flags are left as stored.
        """
        run_id = self.require_outcome(outcome_id).run_id

        with self._write(run_id) as conn:
            row = db.select_outcome(conn, outcome_id)
            if row is None:
                raise RunStateError(f"Outcome not found: {outcome_id}")

            flags = decode_flags(row["flags_json"]).with_flags(
                manual_override=override_ranking is not None
            )
            db.update_outcome_override(
                conn,
                outcome_id,
                override_ranking_json=(
                    encode_ranking(override_ranking)
                    if override_ranking is not None
                    else None
                ),
                flags_json=encode_flags(flags),
                score=score,
            )

            composite = self._recompute(conn, run_id, composer)
            outcome = _outcome_from_row(db.select_outcome(conn, outcome_id))

        return outcome, composite

    # ------------------------------------------------------------------
    # Composites
    # ------------------------------------------------------------------

    def get_composite(self, run_id: str) -> CompositeScore | None:
        with self._connect() as conn:
            row = db.select_composite(conn, run_id)

        if row is None:
            return None

        try:
            by_category = json.loads(row["by_category_json"])
        except json.JSONDecodeError as e:
            raise RankingDataIntegrityError(
                f"Malformed composite for run {run_id}: {e}"
            ) from e

        return CompositeScore(overall=row["overall"], by_category=by_category)
