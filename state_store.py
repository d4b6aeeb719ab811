"""Per-repository review state: unresolved findings, current review, fix history."""

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Protocol

from models import (
    DashboardStats,
    Finding,
    FixRecord,
    RepositoryReviewState,
    ReviewOutcome,
    ReviewRecord,
    TrackedFinding,
    utcnow,
)

logger = logging.getLogger(__name__)

# Dashboard estimate of reviewer time saved
HOURS_PER_REVIEW = 0.5
HOURS_PER_ISSUE = 0.1


class ReviewStateStore(Protocol):
    """Storage contract used by the review bot."""

    def get_unresolved(self, repo: str) -> list[TrackedFinding]: ...

    def set_unresolved(self, repo: str, findings: Iterable[Finding]) -> list[TrackedFinding]: ...

    def record_review_outcome(self, repo: str, outcome: ReviewOutcome) -> ReviewRecord: ...

    def record_review(self, repo: str, outcome: ReviewOutcome) -> ReviewRecord: ...

    def record_fix_outcome(self, repo: str, record: FixRecord) -> None: ...

    def remove_resolved(self, repo: str, ids_or_hashes: Iterable[str]) -> list[TrackedFinding]: ...

    def resolve(
        self, repo: str, ids_or_hashes: Iterable[str], record: FixRecord
    ) -> list[TrackedFinding]: ...

    def mark_completed(self, repo: str) -> None: ...

    def get_state(self, repo: str) -> RepositoryReviewState: ...


class SQLiteStateStore:
    """SQLite-backed review state.

    One connection is shared by every thread; statements are serialized by an
    internal lock, and read-modify-write sequences for the same repository are
    serialized by a per-repository lock.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Open (and create if needed) the database at *db_path*.

        Args:
            db_path: SQLite file path, or ":memory:" for a throwaway store
        """
        db_path = str(db_path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._db_lock = threading.RLock()
        self._repo_locks: dict[str, threading.Lock] = {}
        self._repo_locks_guard = threading.Lock()
        self._create_schema()

    def _create_schema(self) -> None:
        with self._db_lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS unresolved_findings (
                    repository TEXT NOT NULL,
                    finding_id TEXT NOT NULL,
                    hash TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (repository, finding_id)
                )
            """)
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_unresolved_hash "
                "ON unresolved_findings(repository, hash)"
            )
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS reviews (
                    repository TEXT PRIMARY KEY,
                    recorded_at TEXT NOT NULL,
                    completed_at TEXT,
                    outcome TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS fixes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repository TEXT NOT NULL,
                    recorded_at TEXT NOT NULL,
                    issues_fixed INTEGER NOT NULL,
                    data TEXT NOT NULL
                )
            """)
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_fixes_repository ON fixes(repository)")
            self._conn.commit()

    # -- locking -------------------------------------------------------------
    @contextmanager
    def repository_lock(self, repo: str) -> Iterator[None]:
        """Hold the mutation lock for *repo*."""
        with self._repo_locks_guard:
            lock = self._repo_locks.setdefault(repo, threading.Lock())
        with lock:
            yield

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._db_lock:
            try:
                yield self._conn
            except BaseException:
                self._conn.rollback()
                raise
            self._conn.commit()

    # -- unresolved findings -------------------------------------------------
    def get_unresolved(self, repo: str) -> list[TrackedFinding]:
        with self._db_lock:
            rows = self._conn.execute(
                "SELECT data FROM unresolved_findings WHERE repository = ? ORDER BY position",
                (repo,),
            ).fetchall()
        return [TrackedFinding.model_validate_json(row[0]) for row in rows]

    def set_unresolved(self, repo: str, findings: Iterable[Finding]) -> list[TrackedFinding]:
        """Replace the unresolved set for *repo*.

        Findings with the same identity collapse into the first occurrence.
        """
        tracked = self._track(findings)
        with self.repository_lock(repo), self._transaction() as conn:
            self._replace_unresolved(conn, repo, tracked)
        return tracked

    @staticmethod
    def _track(findings: Iterable[Finding]) -> list[TrackedFinding]:
        tracked: list[TrackedFinding] = []
        seen: set[str] = set()
        for finding in findings:
            item = finding if isinstance(finding, TrackedFinding) else finding.tracked()
            if item.id in seen:
                continue
            seen.add(item.id)
            tracked.append(item)
        return tracked

    @staticmethod
    def _replace_unresolved(
        conn: sqlite3.Connection, repo: str, tracked: list[TrackedFinding]
    ) -> None:
        conn.execute("DELETE FROM unresolved_findings WHERE repository = ?", (repo,))
        conn.executemany(
            """INSERT INTO unresolved_findings
            (repository, finding_id, hash, position, data)
            VALUES (?, ?, ?, ?, ?)""",
            [
                (repo, f.id, f.hash, position, f.model_dump_json())
                for position, f in enumerate(tracked)
            ],
        )
        logger.debug("Stored %d unresolved finding(s) for %s", len(tracked), repo)

    def remove_resolved(self, repo: str, ids_or_hashes: Iterable[str]) -> list[TrackedFinding]:
        """Remove findings by id or hash, logging the removal as a fix record."""
        tokens = list(ids_or_hashes)
        record = FixRecord(repository=repo, single_fix=len(tokens) == 1)
        return self.resolve(repo, tokens, record)

    def resolve(
        self, repo: str, ids_or_hashes: Iterable[str], record: FixRecord
    ) -> list[TrackedFinding]:
        """
        Remove resolved findings, append *record* and complete the review.

        All three happen in one transaction. When nothing remains unresolved the
        repository's current review flips to completed.

        Returns:
            The findings that were removed.
        """
        tokens = set(ids_or_hashes)
        with self.repository_lock(repo), self._transaction() as conn:
            rows = conn.execute(
                "SELECT finding_id, hash, data FROM unresolved_findings WHERE repository = ?",
                (repo,),
            ).fetchall()
            removed = [
                TrackedFinding.model_validate_json(data)
                for finding_id, digest, data in rows
                if finding_id in tokens or digest in tokens
            ]
            conn.executemany(
                "DELETE FROM unresolved_findings WHERE repository = ? AND finding_id = ?",
                [(repo, f.id) for f in removed],
            )

            remaining = len(rows) - len(removed)
            record = record.model_copy(
                update={
                    "resolved_ids": record.resolved_ids or [f.id for f in removed],
                    "issues_fixed": record.issues_fixed or len(removed),
                    "all_fixed": remaining == 0,
                }
            )
            self._insert_fix(conn, repo, record)
            if remaining == 0:
                self._complete_review(conn, repo)

        logger.info(
            "Resolved %d finding(s) for %s (%d still open)", len(removed), repo, remaining
        )
        return removed

    # -- reviews -------------------------------------------------------------
    def record_review_outcome(self, repo: str, outcome: ReviewOutcome) -> ReviewRecord:
        """Upsert the current review for *repo*; a second review replaces the first."""
        with self.repository_lock(repo), self._transaction() as conn:
            return self._upsert_review(conn, repo, outcome)

    def record_review(self, repo: str, outcome: ReviewOutcome) -> ReviewRecord:
        """Store *outcome* and make its findings the unresolved set, atomically."""
        tracked = self._track(outcome.findings)
        with self.repository_lock(repo), self._transaction() as conn:
            record = self._upsert_review(conn, repo, outcome)
            self._replace_unresolved(conn, repo, tracked)
        return record

    @staticmethod
    def _upsert_review(conn: sqlite3.Connection, repo: str, outcome: ReviewOutcome) -> ReviewRecord:
        record = ReviewRecord(
            repository=repo,
            completed_at=utcnow() if outcome.status == "completed" else None,
            outcome=outcome,
        )
        conn.execute(
            """INSERT INTO reviews (repository, recorded_at, completed_at, outcome)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(repository) DO UPDATE SET
                recorded_at = excluded.recorded_at,
                completed_at = excluded.completed_at,
                outcome = excluded.outcome""",
            (
                repo,
                record.recorded_at.isoformat(),
                record.completed_at.isoformat() if record.completed_at else None,
                outcome.model_dump_json(),
            ),
        )
        return record

    def mark_completed(self, repo: str) -> None:
        with self.repository_lock(repo), self._transaction() as conn:
            self._complete_review(conn, repo)

    def _complete_review(self, conn: sqlite3.Connection, repo: str) -> None:
        row = conn.execute("SELECT outcome FROM reviews WHERE repository = ?", (repo,)).fetchone()
        if row is None:
            return
        outcome = ReviewOutcome.model_validate_json(row[0])
        if outcome.status == "completed":
            return
        outcome = outcome.model_copy(update={"status": "completed"})
        conn.execute(
            "UPDATE reviews SET outcome = ?, completed_at = ? WHERE repository = ?",
            (outcome.model_dump_json(), utcnow().isoformat(), repo),
        )
        logger.info("Review for %s marked completed", repo)

    def get_review(self, repo: str) -> ReviewRecord | None:
        with self._db_lock:
            row = self._conn.execute(
                "SELECT repository, recorded_at, completed_at, outcome "
                "FROM reviews WHERE repository = ?",
                (repo,),
            ).fetchone()
        return self._row_to_review(row) if row else None

    def review_history(self, limit: int | None = None) -> list[ReviewRecord]:
        """Current review of every repository, most recent first."""
        sql = "SELECT repository, recorded_at, completed_at, outcome FROM reviews ORDER BY recorded_at DESC"
        params: list[object] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._db_lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_review(row) for row in rows]

    @staticmethod
    def _row_to_review(row: tuple[object, ...]) -> ReviewRecord:
        return ReviewRecord(
            repository=str(row[0]),
            recorded_at=datetime.fromisoformat(str(row[1])),
            completed_at=datetime.fromisoformat(str(row[2])) if row[2] is not None else None,
            outcome=ReviewOutcome.model_validate_json(str(row[3])),
        )

    # -- fixes ---------------------------------------------------------------
    def record_fix_outcome(self, repo: str, record: FixRecord) -> None:
        """Append *record* to the fix history of *repo*."""
        with self.repository_lock(repo), self._transaction() as conn:
            self._insert_fix(conn, repo, record)

    @staticmethod
    def _insert_fix(conn: sqlite3.Connection, repo: str, record: FixRecord) -> None:
        conn.execute(
            """INSERT INTO fixes (repository, recorded_at, issues_fixed, data)
            VALUES (?, ?, ?, ?)""",
            (repo, record.recorded_at.isoformat(), record.issues_fixed, record.model_dump_json()),
        )

    def fix_history(self, repo: str | None = None) -> list[FixRecord]:
        """Fix records in insertion order, optionally for one repository."""
        if repo is None:
            sql, params = "SELECT data FROM fixes ORDER BY id", ()
        else:
            sql, params = "SELECT data FROM fixes WHERE repository = ? ORDER BY id", (repo,)
        with self._db_lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [FixRecord.model_validate_json(row[0]) for row in rows]

    # -- aggregate views -----------------------------------------------------
    def get_state(self, repo: str) -> RepositoryReviewState:
        return RepositoryReviewState(
            repository=repo,
            unresolved_findings=self.get_unresolved(repo),
            review=self.get_review(repo),
            fixes=self.fix_history(repo),
        )

    def dashboard_stats(self) -> DashboardStats:
        """Totals across every repository in the store."""
        with self._db_lock:
            outcomes = [
                json.loads(row[0]) for row in self._conn.execute("SELECT outcome FROM reviews")
            ]
            resolved = self._conn.execute(
                "SELECT COALESCE(SUM(issues_fixed), 0) FROM fixes"
            ).fetchone()[0]
            open_findings = self._conn.execute(
                "SELECT COUNT(*) FROM unresolved_findings"
            ).fetchone()[0]

        issues_found = sum(len(o.get("findings", [])) for o in outcomes)
        hours = HOURS_PER_REVIEW * len(outcomes) + HOURS_PER_ISSUE * issues_found
        return DashboardStats(
            reviews_completed=len(outcomes),
            issues_resolved=int(resolved),
            open_findings=int(open_findings),
            time_saved_hours=round(hours, 1),
        )

    # -- lifecycle -----------------------------------------------------------
    def close(self) -> None:
        """Close the database connection."""
        with self._db_lock:
            self._conn.close()

    def __enter__(self) -> "SQLiteStateStore":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
