"""In-memory alignment job store with TTL cleanup.

WHY: Aligning a full audiobook takes minutes to hours (one transcription
request per chunk), so the HTTP API accepts the upload, returns a job id
immediately, and runs the pipeline in the background. A process-local
store is enough for a single-worker service with no durability needs.

HOW: JobStatus enumerates the lifecycle, Job holds one run's inputs,
progress, and result, and JobStore is a lock-protected dict with
create/get/list/update/delete and TTL expiry of finished jobs.

RULES:
- All store mutations hold self._lock
- Each job owns a work directory for its uploaded book and audio files
- Only terminal jobs (completed, failed) expire, measured from completed_at
- Job ids are uuid4 hex strings
"""

from __future__ import annotations

import enum
import logging
import shutil
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
BOOK_FILENAME = "book.json"


class JobStatus(str, enum.Enum):
    """Lifecycle of an alignment job.

    - pending: accepted, background task not started
    - running: chunking, transcribing, or aligning
    - completed: result available
    - failed: the run aborted; error is set
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_TERMINAL = (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Job:
    """State for one alignment job.

    RULES:
    - audio_files lists stored audio filenames in playback order
    - progress holds the latest pipeline status message
    - result is the serialized alignment, set only when completed
    """

    id: str
    status: JobStatus
    book_id: str
    audio_files: List[str]
    work_dir: Path
    created_at: float
    updated_at: float
    completed_at: Optional[float] = None
    error: Optional[str] = None
    progress: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None

    @property
    def book_path(self) -> Path:
        """Where the uploaded book JSON is stored."""
        return self.work_dir / BOOK_FILENAME

    @property
    def audio_paths(self) -> List[Path]:
        """Stored audio files, in playback order."""
        return [self.work_dir / name for name in self.audio_files]


class JobStore:
    """Thread-safe store shared by request handlers and background runs."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_jobs: int = 20,
    ) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self.max_jobs = max_jobs

    def create_job(
        self,
        book_id: str,
        audio_files: List[str],
        config: Optional[Dict[str, Any]] = None,
    ) -> Job:
        """Create a PENDING job with a fresh work directory.

        Raises:
            ValueError: The store already holds max_jobs jobs.
        """
        with self._lock:
            if len(self._jobs) >= self.max_jobs:
                raise ValueError(
                    "Maximum number of concurrent jobs ({}) reached".format(self.max_jobs)
                )

            job_id = uuid.uuid4().hex
            now = time.time()
            job = Job(
                id=job_id,
                status=JobStatus.PENDING,
                book_id=book_id,
                audio_files=list(audio_files),
                work_dir=Path(tempfile.mkdtemp(prefix="aligner_job_")),
                created_at=now,
                updated_at=now,
                config=config or {},
            )
            self._jobs[job_id] = job

        logger.info("Created job %s for book %s (%d audio file(s))", job_id, book_id, len(audio_files))
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> List[Job]:
        """Snapshot of all jobs, oldest first."""
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.created_at)

    def update_job(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        error: Optional[str] = None,
        progress: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> Optional[Job]:
        """Apply the non-None fields; returns None for unknown (e.g. deleted) jobs."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None

            now = time.time()
            if status is not None:
                job.status = status
            if error is not None:
                job.error = error
            if progress is not None:
                job.progress = progress
            if result is not None:
                job.result = result
            job.updated_at = now

            if job.status in _TERMINAL and job.completed_at is None:
                job.completed_at = now
            return job

    def delete_job(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.pop(job_id, None)
        if job is None:
            return False

        self._cleanup_work_dir(job.work_dir)
        logger.info("Deleted job %s", job_id)
        return True

    def cleanup_expired(self) -> int:
        """Remove terminal jobs older than the TTL; returns how many were removed."""
        now = time.time()
        expired: List[Job] = []

        with self._lock:
            for job_id, job in list(self._jobs.items()):
                if job.status not in _TERMINAL or job.completed_at is None:
                    continue
                if now - job.completed_at > self._ttl_seconds:
                    expired.append(self._jobs.pop(job_id))

        for job in expired:
            self._cleanup_work_dir(job.work_dir)
            logger.info("Expired job %s (completed %.0fs ago)", job.id, now - job.completed_at)
        return len(expired)

    @staticmethod
    def _cleanup_work_dir(work_dir: Path) -> None:
        if work_dir.exists():
            try:
                shutil.rmtree(work_dir)
            except OSError:
                logger.warning("Failed to clean up work dir: %s", work_dir)
