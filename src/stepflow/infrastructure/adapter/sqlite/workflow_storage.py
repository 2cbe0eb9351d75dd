from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone

import msgspec

from stepflow.application.port import WorkflowStorage
from stepflow.domain.entity import Workflow, WorkflowSummary


class SQLiteWorkflowStorage(WorkflowStorage):
    """SQLite-based storage for workflow definitions."""

    def __init__(self, db_path: str = ":memory:"):
        """
        Initialize the SQLite workflow storage.

        :param db_path: Path to SQLite database file (defaults to in-memory)
        :type db_path: str
        """
        self.db_path = db_path
        self._conn = None
        self._lock = threading.Lock()
        self._init_database()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        return self._conn

    def _init_database(self):
        """Initialize the database schema."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                tags TEXT NOT NULL,
                step_count INTEGER NOT NULL,
                definition TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                revision INTEGER NOT NULL
            )
        """)
        conn.commit()

    def save(self, workflow: Workflow, tags: list[str] | None = None) -> None:
        """
        Stores a workflow. Re-saving keeps the original ``created_at``.

        :param workflow: The workflow to store
        :type workflow: Workflow
        :param tags: Optional tags used by search
        :type tags: list[str] | None
        """
        now = datetime.now(timezone.utc).isoformat()
        definition = msgspec.json.encode(workflow).decode("utf-8")
        tags_json = msgspec.json.encode(list(tags or [])).decode("utf-8")
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO workflows
                    (id, name, description, tags, step_count, definition, created_at, updated_at, revision)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, (SELECT COALESCE(MAX(revision), 0) + 1 FROM workflows))
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    tags = excluded.tags,
                    step_count = excluded.step_count,
                    definition = excluded.definition,
                    updated_at = excluded.updated_at,
                    revision = excluded.revision
                """,
                (
                    workflow.id,
                    workflow.name,
                    workflow.description,
                    tags_json,
                    workflow.step_count,
                    definition,
                    now,
                    now,
                ),
            )
            conn.commit()

    def load(self, workflow_id: str) -> Workflow | None:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT definition FROM workflows WHERE id = ?", (workflow_id,)
            ).fetchone()
        if row is None:
            return None
        return msgspec.json.decode(row[0].encode("utf-8"), type=Workflow)

    def list(self) -> list[WorkflowSummary]:
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT id, name, description, tags, step_count, created_at, updated_at
                FROM workflows ORDER BY revision DESC
                """
            ).fetchall()
        return [
            WorkflowSummary(
                id=row[0],
                name=row[1],
                description=row[2],
                tags=msgspec.json.decode(row[3].encode("utf-8"), type=list[str]),
                step_count=row[4],
                created_at=datetime.fromisoformat(row[5]),
                updated_at=datetime.fromisoformat(row[6]),
            )
            for row in rows
        ]

    def delete(self, workflow_id: str) -> bool:
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
            conn.commit()
        return cursor.rowcount > 0

    def exists(self, workflow_id: str) -> bool:
        with self._lock:
            row = self._get_connection().execute("SELECT 1 FROM workflows WHERE id = ?", (workflow_id,)).fetchone()
        return row is not None

    def clear(self) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute("DELETE FROM workflows")
            conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __del__(self):
        """Close the database connection on cleanup."""
        self.close()
