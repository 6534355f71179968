"""
DuckDB-based submission store for CodeSprint.
Holds contests, problems, test cases, submissions and the leaderboard aggregate.
"""

import random
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Type, TypeVar

import duckdb

from ..models.models import (
    Contest, LeaderboardEntry, Problem, Submission, SubmissionStatus, Testcase, generate_id
)
from ..utils.logger_config import get_logger
from .errors import PersistenceError
from .repository import Repository, SolveCredit

logger = get_logger("storage")

T = TypeVar("T")

# Optimistic retries for DuckDB write-write conflicts
MAX_TRANSACTION_ATTEMPTS = 10
RETRY_BACKOFF_SECONDS = 0.02


class DuckDBStorage(Repository):
    """
    DuckDB implementation of the repository. Each thread works on its own
    cursor of a single shared database instance.
    """

    def __init__(self, db_path: str = "data/codesprint.duckdb"):
        logger.info(f"Initializing DuckDB storage at {db_path}")
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._root_conn = duckdb.connect(db_path)
        self._thread_local = threading.local()
        self._cursors: List[duckdb.DuckDBPyConnection] = []
        self._cursors_lock = threading.Lock()
        self._create_schema()

    def _get_conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create the cursor for the current thread"""
        conn = getattr(self._thread_local, "conn", None)
        if conn is None:
            conn = self._root_conn.cursor()
            self._thread_local.conn = conn
            with self._cursors_lock:
                self._cursors.append(conn)
        return conn

    def _create_schema(self) -> None:
        """Create tables if they do not exist yet"""
        conn = self._get_conn()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS contests (
                id VARCHAR PRIMARY KEY,
                title VARCHAR NOT NULL,
                start_time TIMESTAMP NOT NULL,
                end_time TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS problems (
                id VARCHAR PRIMARY KEY,
                contest_id VARCHAR NOT NULL,
                title VARCHAR NOT NULL,
                time_limit_ms INTEGER DEFAULT 1000,       -- milliseconds
                memory_limit_mb INTEGER DEFAULT 256
            )
        """)

        conn.execute("CREATE SEQUENCE IF NOT EXISTS testcase_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS testcases (
                id VARCHAR PRIMARY KEY,
                problem_id VARCHAR NOT NULL,
                input TEXT,
                expected_output TEXT,
                is_sample BOOLEAN DEFAULT FALSE,
                created_at TIMESTAMP,
                seq BIGINT DEFAULT nextval('testcase_seq')  -- stable creation order
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS submissions (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                problem_id VARCHAR NOT NULL,
                contest_id VARCHAR NOT NULL,
                language VARCHAR NOT NULL,
                code TEXT,
                status VARCHAR NOT NULL,
                score INTEGER DEFAULT 0,
                runtime INTEGER DEFAULT 0,                 -- milliseconds
                created_at TIMESTAMP NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS leaderboard (
                contest_id VARCHAR NOT NULL,
                user_id VARCHAR NOT NULL,
                solved_count INTEGER DEFAULT 0,
                penalty INTEGER DEFAULT 0,                 -- minutes
                last_submission_time TIMESTAMP,
                PRIMARY KEY (contest_id, user_id)
            )
        """)

        # One row per credited (contest, user, problem); guards double credit
        conn.execute("""
            CREATE TABLE IF NOT EXISTS leaderboard_solves (
                contest_id VARCHAR NOT NULL,
                user_id VARCHAR NOT NULL,
                problem_id VARCHAR NOT NULL,
                solved_at TIMESTAMP NOT NULL,
                penalty INTEGER NOT NULL,
                PRIMARY KEY (contest_id, user_id, problem_id)
            )
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_testcases_problem ON testcases(problem_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_submissions_lookup ON submissions(contest_id, user_id, problem_id)")

    def _in_transaction(
        self,
        work: Callable[[duckdb.DuckDBPyConnection], T],
        retry_on: Tuple[Type[duckdb.Error], ...] = (duckdb.TransactionException,),
    ) -> T:
        """Run `work` inside a transaction, retrying on write-write conflicts"""
        conn = self._get_conn()
        for attempt in range(1, MAX_TRANSACTION_ATTEMPTS + 1):
            conn.execute("BEGIN TRANSACTION")
            try:
                result = work(conn)
                conn.execute("COMMIT")
                return result
            except retry_on as e:
                self._rollback(conn)
                if attempt == MAX_TRANSACTION_ATTEMPTS:
                    raise PersistenceError(f"Transaction conflict persisted after {attempt} attempts: {e}") from e
                logger.warning(f"Transaction conflict (attempt {attempt}), retrying: {e}")
                # Back off so the competing writer can commit
                time.sleep(random.uniform(0, RETRY_BACKOFF_SECONDS * attempt))
            except Exception:
                self._rollback(conn)
                raise
        raise PersistenceError("Transaction was not attempted")

    def _rollback(self, conn: duckdb.DuckDBPyConnection) -> None:
        try:
            conn.execute("ROLLBACK")
        except duckdb.Error as e:
            # DuckDB already aborted the transaction
            logger.debug(f"Rollback skipped: {e}")

    def _write(self, query: str, params: list, what: str) -> None:
        try:
            self._get_conn().execute(query, params)
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to create {what}: {e}") from e

    # Bootstrap writers. Contest/problem CRUD lives outside the grading core;
    # these exist for the CLI demo and tests.

    def create_contest(self, title: str, start_time: datetime, end_time: Optional[datetime] = None) -> Contest:
        contest = Contest(id=generate_id(), title=title, start_time=start_time, end_time=end_time)
        self._write(
            "INSERT INTO contests (id, title, start_time, end_time) VALUES (?, ?, ?, ?)",
            [contest.id, title, start_time, end_time],
            "contest",
        )
        return contest

    def create_problem(self, contest_id: str, title: str, time_limit_ms: int = 1000, memory_limit_mb: int = 256) -> Problem:
        problem = Problem(
            id=generate_id(),
            contest_id=contest_id,
            title=title,
            time_limit_ms=time_limit_ms,
            memory_limit_mb=memory_limit_mb,
        )
        self._write(
            "INSERT INTO problems (id, contest_id, title, time_limit_ms, memory_limit_mb) VALUES (?, ?, ?, ?, ?)",
            [problem.id, contest_id, title, time_limit_ms, memory_limit_mb],
            "problem",
        )
        return problem

    def add_testcase(self, problem_id: str, input: str, expected_output: str, is_sample: bool = False) -> Testcase:
        testcase = Testcase(
            id=generate_id(),
            problem_id=problem_id,
            input=input,
            expected_output=expected_output,
            is_sample=is_sample,
            created_at=datetime.now(),
        )
        self._write(
            "INSERT INTO testcases (id, problem_id, input, expected_output, is_sample, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            [testcase.id, problem_id, input, expected_output, is_sample, testcase.created_at],
            "test case",
        )
        return testcase

    # Repository

    def create_submission(
        self,
        user_id: str,
        contest_id: str,
        problem_id: str,
        language: str,
        code: str,
        created_at: Optional[datetime] = None,
    ) -> Submission:
        submission = Submission(
            id=generate_id(),
            user_id=user_id,
            problem_id=problem_id,
            contest_id=contest_id,
            language=language,
            code=code,
            created_at=created_at or datetime.now(),
            status=SubmissionStatus.PENDING,
        )
        try:
            self._get_conn().execute("""
                INSERT INTO submissions
                (id, user_id, problem_id, contest_id, language, code, status, score, runtime, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                submission.id, user_id, problem_id, contest_id, language, code,
                submission.status.value, 0, 0, submission.created_at
            ])
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to create submission: {e}") from e
        logger.debug(f"Created pending submission {submission.id}")
        return submission

    def get_submission(self, submission_id: str, include_code: bool = False) -> Optional[Submission]:
        row = self._get_conn().execute("""
            SELECT id, user_id, problem_id, contest_id, language, code, status, score, runtime, created_at
            FROM submissions WHERE id = ?
        """, [submission_id]).fetchone()
        if not row:
            return None
        return self._row_to_submission(row, include_code)

    def list_user_submissions(self, contest_id: str, user_id: Optional[str] = None) -> List[Submission]:
        query = """
            SELECT id, user_id, problem_id, contest_id, language, code, status, score, runtime, created_at
            FROM submissions WHERE contest_id = ?
        """
        params = [contest_id]
        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY created_at DESC"

        rows = self._get_conn().execute(query, params).fetchall()
        return [self._row_to_submission(row, include_code=False) for row in rows]

    def _row_to_submission(self, row: Tuple, include_code: bool) -> Submission:
        return Submission(
            id=row[0],
            user_id=row[1],
            problem_id=row[2],
            contest_id=row[3],
            language=row[4],
            code=row[5] if include_code else "",
            status=SubmissionStatus(row[6]),
            score=row[7] or 0,
            runtime=row[8] or 0,
            created_at=row[9],
        )

    def get_contest(self, contest_id: str) -> Optional[Contest]:
        row = self._get_conn().execute(
            "SELECT id, title, start_time, end_time FROM contests WHERE id = ?", [contest_id]
        ).fetchone()
        if not row:
            return None
        return Contest(id=row[0], title=row[1], start_time=row[2], end_time=row[3])

    def get_problem(self, problem_id: str) -> Optional[Problem]:
        row = self._get_conn().execute(
            "SELECT id, contest_id, title, time_limit_ms, memory_limit_mb FROM problems WHERE id = ?", [problem_id]
        ).fetchone()
        if not row:
            return None
        return Problem(
            id=row[0],
            contest_id=row[1],
            title=row[2],
            time_limit_ms=row[3] or 1000,
            memory_limit_mb=row[4] or 256,
        )

    def list_testcases(self, problem_id: str) -> List[Testcase]:
        rows = self._get_conn().execute("""
            SELECT id, problem_id, input, expected_output, is_sample, created_at
            FROM testcases WHERE problem_id = ?
            ORDER BY seq
        """, [problem_id]).fetchall()
        return [
            Testcase(
                id=row[0],
                problem_id=row[1],
                input=row[2] or "",
                expected_output=row[3] or "",
                is_sample=bool(row[4]),
                created_at=row[5],
            )
            for row in rows
        ]

    def update_submission_result(
        self, submission_id: str, status: SubmissionStatus, score: int, runtime: int
    ) -> None:
        try:
            result = self._get_conn().execute("""
                UPDATE submissions
                SET status = ?, score = ?, runtime = ?
                WHERE id = ?
            """, [status.value, score, runtime, submission_id]).fetchone()
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to update submission {submission_id}: {e}") from e

        updated = result[0] if result else 0
        if updated != 1:
            raise PersistenceError(f"Submission {submission_id} not found")

    def _earliest_accepted(
        self, conn: duckdb.DuckDBPyConnection, contest_id: str, user_id: str, problem_id: str
    ) -> Optional[datetime]:
        row = conn.execute("""
            SELECT MIN(created_at) FROM submissions
            WHERE contest_id = ? AND user_id = ? AND problem_id = ? AND status = ?
        """, [contest_id, user_id, problem_id, SubmissionStatus.ACCEPTED.value]).fetchone()
        return row[0] if row else None

    def credit_first_accepted(
        self,
        contest_id: str,
        user_id: str,
        problem_id: str,
        penalty_of: Callable[[datetime], int],
        fallback_solved_at: Optional[datetime] = None,
    ) -> Optional[LeaderboardEntry]:
        def work(conn: duckdb.DuckDBPyConnection) -> Optional[LeaderboardEntry]:
            solved_at = self._earliest_accepted(conn, contest_id, user_id, problem_id) or fallback_solved_at
            if solved_at is None:
                return None
            penalty = penalty_of(solved_at)

            credited = conn.execute("""
                SELECT solved_at, penalty FROM leaderboard_solves
                WHERE contest_id = ? AND user_id = ? AND problem_id = ?
            """, [contest_id, user_id, problem_id]).fetchone()

            if credited is not None:
                credited_at, credited_penalty = credited
                if credited_at <= solved_at:
                    return None
                # An earlier accepted submission finished grading after a later one
                conn.execute("""
                    UPDATE leaderboard_solves SET solved_at = ?, penalty = ?
                    WHERE contest_id = ? AND user_id = ? AND problem_id = ?
                """, [solved_at, penalty, contest_id, user_id, problem_id])
                conn.execute("""
                    UPDATE leaderboard SET penalty = penalty + ?
                    WHERE contest_id = ? AND user_id = ?
                """, [penalty - credited_penalty, contest_id, user_id])
            else:
                conn.execute("""
                    INSERT INTO leaderboard_solves (contest_id, user_id, problem_id, solved_at, penalty)
                    VALUES (?, ?, ?, ?, ?)
                """, [contest_id, user_id, problem_id, solved_at, penalty])
                existing = conn.execute("""
                    SELECT 1 FROM leaderboard WHERE contest_id = ? AND user_id = ?
                """, [contest_id, user_id]).fetchone()
                if existing is None:
                    conn.execute("""
                        INSERT INTO leaderboard (contest_id, user_id, solved_count, penalty, last_submission_time)
                        VALUES (?, ?, 1, ?, ?)
                    """, [contest_id, user_id, penalty, solved_at])
                else:
                    conn.execute("""
                        UPDATE leaderboard
                        SET solved_count = solved_count + 1, penalty = penalty + ?
                        WHERE contest_id = ? AND user_id = ?
                    """, [penalty, contest_id, user_id])

            conn.execute("""
                UPDATE leaderboard
                SET last_submission_time = (
                    SELECT MAX(solved_at) FROM leaderboard_solves
                    WHERE contest_id = ? AND user_id = ?
                )
                WHERE contest_id = ? AND user_id = ?
            """, [contest_id, user_id, contest_id, user_id])
            return self._fetch_entry(conn, contest_id, user_id)

        try:
            # A constraint conflict means a concurrent writer committed first;
            # the retried transaction sees its ledger row
            return self._in_transaction(
                work, retry_on=(duckdb.TransactionException, duckdb.ConstraintException)
            )
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to credit leaderboard for {user_id}: {e}") from e

    def get_leaderboard_entry(self, contest_id: str, user_id: str) -> Optional[LeaderboardEntry]:
        return self._fetch_entry(self._get_conn(), contest_id, user_id)

    def _fetch_entry(self, conn: duckdb.DuckDBPyConnection, contest_id: str, user_id: str) -> Optional[LeaderboardEntry]:
        row = conn.execute("""
            SELECT contest_id, user_id, solved_count, penalty, last_submission_time
            FROM leaderboard WHERE contest_id = ? AND user_id = ?
        """, [contest_id, user_id]).fetchone()
        if not row:
            return None
        return LeaderboardEntry(
            contest_id=row[0],
            user_id=row[1],
            solved_count=row[2] or 0,
            penalty=row[3] or 0,
            last_submission_time=row[4],
        )

    def list_leaderboard(self, contest_id: str) -> List[LeaderboardEntry]:
        rows = self._get_conn().execute("""
            SELECT
                contest_id,
                user_id,
                solved_count,
                penalty,
                last_submission_time,
                RANK() OVER (ORDER BY solved_count DESC, penalty ASC) AS rank
            FROM leaderboard
            WHERE contest_id = ?
            ORDER BY solved_count DESC, penalty ASC, last_submission_time ASC, user_id ASC
        """, [contest_id]).fetchall()
        return [
            LeaderboardEntry(
                contest_id=row[0],
                user_id=row[1],
                solved_count=row[2] or 0,
                penalty=row[3] or 0,
                last_submission_time=row[4],
                rank=row[5],
            )
            for row in rows
        ]

    def list_first_accepted(self, contest_id: str) -> List[Tuple[str, str, datetime]]:
        rows = self._get_conn().execute("""
            SELECT user_id, problem_id, MIN(created_at)
            FROM submissions
            WHERE contest_id = ? AND status = ?
            GROUP BY user_id, problem_id
            ORDER BY user_id, problem_id
        """, [contest_id, SubmissionStatus.ACCEPTED.value]).fetchall()
        return [(row[0], row[1], row[2]) for row in rows]

    def replace_leaderboard(self, contest_id: str, credits: List[SolveCredit]) -> List[LeaderboardEntry]:
        # Rows are diffed rather than deleted and re-inserted: DuckDB checks
        # primary keys eagerly within a transaction.
        solves = {(user_id, problem_id): (solved_at, penalty) for user_id, problem_id, solved_at, penalty in credits}
        totals = {}
        for (user_id, _), (solved_at, penalty) in solves.items():
            solved, total_penalty, last = totals.get(user_id, (0, 0, solved_at))
            totals[user_id] = (solved + 1, total_penalty + penalty, max(last, solved_at))

        def work(conn: duckdb.DuckDBPyConnection) -> None:
            current_solves = {
                (row[0], row[1])
                for row in conn.execute(
                    "SELECT user_id, problem_id FROM leaderboard_solves WHERE contest_id = ?", [contest_id]
                ).fetchall()
            }
            for user_id, problem_id in current_solves - solves.keys():
                conn.execute("""
                    DELETE FROM leaderboard_solves WHERE contest_id = ? AND user_id = ? AND problem_id = ?
                """, [contest_id, user_id, problem_id])
            for (user_id, problem_id), (solved_at, penalty) in solves.items():
                if (user_id, problem_id) in current_solves:
                    conn.execute("""
                        UPDATE leaderboard_solves SET solved_at = ?, penalty = ?
                        WHERE contest_id = ? AND user_id = ? AND problem_id = ?
                    """, [solved_at, penalty, contest_id, user_id, problem_id])
                else:
                    conn.execute("""
                        INSERT INTO leaderboard_solves (contest_id, user_id, problem_id, solved_at, penalty)
                        VALUES (?, ?, ?, ?, ?)
                    """, [contest_id, user_id, problem_id, solved_at, penalty])

            current_users = {
                row[0]
                for row in conn.execute(
                    "SELECT user_id FROM leaderboard WHERE contest_id = ?", [contest_id]
                ).fetchall()
            }
            for user_id in current_users - totals.keys():
                conn.execute("DELETE FROM leaderboard WHERE contest_id = ? AND user_id = ?", [contest_id, user_id])
            for user_id, (solved, total_penalty, last) in totals.items():
                if user_id in current_users:
                    conn.execute("""
                        UPDATE leaderboard
                        SET solved_count = ?, penalty = ?, last_submission_time = ?
                        WHERE contest_id = ? AND user_id = ?
                    """, [solved, total_penalty, last, contest_id, user_id])
                else:
                    conn.execute("""
                        INSERT INTO leaderboard (contest_id, user_id, solved_count, penalty, last_submission_time)
                        VALUES (?, ?, ?, ?, ?)
                    """, [contest_id, user_id, solved, total_penalty, last])

        try:
            self._in_transaction(work)
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to rebuild leaderboard for {contest_id}: {e}") from e
        return self.list_leaderboard(contest_id)

    def close(self) -> None:
        """Close every cursor and the database connection"""
        with self._cursors_lock:
            for conn in self._cursors:
                try:
                    conn.close()
                except duckdb.Error:
                    pass
            self._cursors.clear()
        self._root_conn.close()

    def __enter__(self):
        """Called when entering the context manager"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Called when exiting the context manager, ensures connection is closed"""
        self.close()
