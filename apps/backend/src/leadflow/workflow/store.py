"""File based, versioned workflow storage."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .schema import WorkflowRecord

try:  # pragma: no cover - platform-dependent import
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX: thread lock only
    fcntl = None


class WorkflowStore:
    """Stores every version of a workflow as a JSON file: ``{id}-v{version}.json``.

    Version files are immutable once published. Saves take an exclusive
    lock on ``.workflow_store.lock`` (shared with other processes on POSIX)
    so two writers never claim the same version number.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock_path = base_dir / ".workflow_store.lock"
        self._thread_lock = threading.RLock()

    def save(self, workflow: WorkflowRecord) -> WorkflowRecord:
        """Save a workflow as a new version and return the stored record."""
        with self._locked():
            latest = self._latest_path(workflow.id)
            if latest is not None:
                current = self._read(latest)
                workflow = workflow.model_copy(
                    update={
                        "version": current.version + 1,
                        "created_at": current.created_at,
                        "updated_at": datetime.now(timezone.utc),
                    }
                )
            self._publish(workflow)
        return workflow

    def load(self, workflow_id: str) -> WorkflowRecord | None:
        """Load the latest version of a workflow by ID."""
        with self._locked():
            latest = self._latest_path(workflow_id)
            if latest is None:
                return None
            return self._read(latest)

    def list_all(self) -> list[WorkflowRecord]:
        """List the latest version of every workflow, most recently updated first."""
        with self._locked():
            latest: dict[str, WorkflowRecord] = {}
            for filepath in self.base_dir.glob("*-v*.json"):
                wf = self._read(filepath)
                if wf.id not in latest or wf.version > latest[wf.id].version:
                    latest[wf.id] = wf
        return sorted(latest.values(), key=lambda wf: wf.updated_at, reverse=True)

    def delete(self, workflow_id: str) -> bool:
        """Delete all versions of a workflow. Returns True if any were deleted."""
        with self._locked():
            matches = self._versions(workflow_id)
            for f in matches:
                f.unlink()
        return len(matches) > 0

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._thread_lock, self._lock_path.open("a") as lock_file:
            if fcntl is not None:
                # released when the lock file is closed
                fcntl.flock(lock_file, fcntl.LOCK_EX)
            yield

    def _publish(self, workflow: WorkflowRecord) -> Path:
        """Write the version file through a temp file and hard-link it into place.

        Linking fails with FileExistsError instead of replacing a published version.
        """
        target = self.base_dir / f"{workflow.id}-v{workflow.version}.json"
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=self.base_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(workflow.model_dump_json(indent=2, by_alias=True))
                handle.flush()
                os.fsync(handle.fileno())
            os.link(tmp_name, target)
        finally:
            os.unlink(tmp_name)
        return target

    def _versions(self, workflow_id: str) -> list[Path]:
        prefix = f"{workflow_id}-v"
        return [
            p
            for p in self.base_dir.glob(f"{workflow_id}-v*.json")
            if p.stem[len(prefix):].isdigit()
        ]

    def _latest_path(self, workflow_id: str) -> Path | None:
        # Numeric sort: v10 must win over v9
        matches = sorted(self._versions(workflow_id), key=lambda p: int(p.stem.rsplit("-v", 1)[1]))
        return matches[-1] if matches else None

    @staticmethod
    def _read(path: Path) -> WorkflowRecord:
        return WorkflowRecord.model_validate(json.loads(path.read_text()))
