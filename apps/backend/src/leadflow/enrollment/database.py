"""SQLite database setup for enrollment persistence (WAL mode, idempotent schema)."""

from __future__ import annotations

import sqlite3
from pathlib import Path

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS enrollments (
    id TEXT PRIMARY KEY,
    workflow_id TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT 'live',
    lead TEXT NOT NULL DEFAULT '{}',
    overrides TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'in-progress'
        CHECK (status IN ('in-progress', 'success', 'failed')),
    created_at TEXT NOT NULL,
    completed_at TEXT,
    resume_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_enrollments_workflow_created
    ON enrollments(workflow_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_enrollments_resume_at
    ON enrollments(resume_at) WHERE resume_at IS NOT NULL;

CREATE TABLE IF NOT EXISTS enrollment_steps (
    enrollment_id TEXT NOT NULL REFERENCES enrollments(id) ON DELETE CASCADE,
    seq INTEGER NOT NULL,
    node_id TEXT NOT NULL,
    node_type TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('success', 'failed')),
    output TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    PRIMARY KEY (enrollment_id, seq)
);
"""


def init_db(db_path: Path) -> sqlite3.Connection:
    """Open (creating if needed) the enrollment database.

    Safe to call multiple times: all schema objects use IF NOT EXISTS.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = sqlite3.Row
    conn.executescript(_SCHEMA)
    return conn
