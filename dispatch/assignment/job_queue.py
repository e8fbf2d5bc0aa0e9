"""
DISPATCH JOB QUEUE

Purpose:
- Named queues of delayed jobs consumed by the assignment worker
- Jobs can start later (start_after), expire while active, and retry
- Finished jobs are archived, then purged

Job states:
    created -> active -> completed
                      -> failed     (retry_limit exhausted)
                      -> created    (retry pending)
                      -> expired    (active longer than expire_in)
    created -> cancelled

Requirements:
• Thread-safe (worker thread + request threads)
• Deterministic ordering: earliest start first, then creation order
• Never loses a job silently: every transition is logged
"""

import itertools
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class QueueError(Exception):
    """Raised when a queue operation cannot be performed."""
    pass


# ==================================================
# QUEUE NAMES
# ==================================================

FIND_SHIPPER = "find-shipper"

STATE_CREATED = "created"
STATE_ACTIVE = "active"
STATE_COMPLETED = "completed"
STATE_FAILED = "failed"
STATE_CANCELLED = "cancelled"
STATE_EXPIRED = "expired"

FINISHED_STATES = {STATE_COMPLETED, STATE_FAILED, STATE_CANCELLED, STATE_EXPIRED}

_sequence = itertools.count()


@dataclass
class Job:
    id: str
    queue: str
    data: Dict[str, Any]
    start_at: float
    retry_limit: int = 0
    retry_count: int = 0
    expire_in_seconds: float = 15 * 60
    state: str = STATE_CREATED
    created_at: float = 0.0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    error: Optional[str] = None
    seq: int = field(default_factory=lambda: next(_sequence))


class QueueService:

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._lock = threading.Lock()
        self._jobs: Dict[str, Job] = {}
        self._archive: Dict[str, Job] = {}
        logger.info("QueueService initialized")

    # ──────────────────────────────────────────────
    # INTERNALS
    # ──────────────────────────────────────────────

    @staticmethod
    def _check_queue_name(queue_name: str) -> None:
        if not queue_name or not str(queue_name).strip():
            raise QueueError("Queue name is required")

    def _get_job(self, queue_name: str, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None or job.queue != queue_name:
            raise QueueError(f"Job {job_id} not found in queue '{queue_name}'")
        return job

    def _expire_stale(self, now: float) -> None:
        for job in self._jobs.values():
            if job.state == STATE_ACTIVE and job.started_at is not None:
                if now - job.started_at > job.expire_in_seconds:
                    job.state = STATE_EXPIRED
                    job.finished_at = now
                    logger.warning(f"Job {job.id} in queue '{job.queue}' expired while active")

    # ──────────────────────────────────────────────
    # PRODUCER
    # ──────────────────────────────────────────────

    def add_job(
        self,
        queue_name: str,
        data: Dict[str, Any],
        start_after: float = 0,
        retry_limit: int = 0,
        expire_in_minutes: float = 15,
    ) -> str:
        """
        Add a job to a queue.

        Args:
            queue_name: Target queue (e.g. FIND_SHIPPER)
            data: JSON-safe job payload
            start_after: Delay in seconds before the job becomes fetchable
            retry_limit: Automatic retries after fail()
            expire_in_minutes: Max time a job may stay active

        Returns:
            str: Job id
        """
        self._check_queue_name(queue_name)
        if start_after < 0:
            raise QueueError("start_after must be >= 0")

        now = self.clock()
        job = Job(
            id=str(uuid.uuid4()),
            queue=queue_name,
            data=dict(data),
            start_at=now + start_after,
            retry_limit=retry_limit,
            expire_in_seconds=expire_in_minutes * 60,
            created_at=now,
        )

        with self._lock:
            self._jobs[job.id] = job

        logger.debug(f"Job {job.id} added to queue '{queue_name}' (start in {start_after}s)")
        return job.id

    # ──────────────────────────────────────────────
    # CONSUMER
    # ──────────────────────────────────────────────

    def fetch(self, queue_name: str, batch_size: int = 1) -> List[Job]:
        """Claim up to batch_size due jobs and mark them active."""
        self._check_queue_name(queue_name)
        now = self.clock()

        with self._lock:
            self._expire_stale(now)

            due = [
                j for j in self._jobs.values()
                if j.queue == queue_name and j.state == STATE_CREATED and j.start_at <= now
            ]
            due.sort(key=lambda j: (j.start_at, j.seq))
            claimed = due[:max(0, batch_size)]

            for job in claimed:
                job.state = STATE_ACTIVE
                job.started_at = now

        return claimed

    def complete_job(self, queue_name: str, job_id: str) -> bool:
        with self._lock:
            job = self._get_job(queue_name, job_id)
            job.state = STATE_COMPLETED
            job.finished_at = self.clock()
        return True

    def fail_job(self, queue_name: str, job_id: str, error_message: Optional[str] = None) -> bool:
        with self._lock:
            job = self._get_job(queue_name, job_id)
            job.error = error_message

            if job.retry_count < job.retry_limit:
                job.retry_count += 1
                job.state = STATE_CREATED
                job.start_at = self.clock()
                job.started_at = None
                logger.info(f"Job {job_id} failed, retry {job.retry_count}/{job.retry_limit} queued")
            else:
                job.state = STATE_FAILED
                job.finished_at = self.clock()
                logger.info(f"Job {job_id} failed. Reason: {error_message or 'No reason provided'}")
        return True

    def cancel_job(self, queue_name: str, job_id: str) -> bool:
        with self._lock:
            job = self._get_job(queue_name, job_id)
            if job.state in FINISHED_STATES:
                return False
            job.state = STATE_CANCELLED
            job.finished_at = self.clock()
        return True

    # ──────────────────────────────────────────────
    # INSPECTION
    # ──────────────────────────────────────────────

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id) or self._archive.get(job_id)

    def has_live_job(self, queue_name: str, key: str, value: Any) -> bool:
        """True when a created or active job in the queue carries data[key] == value."""
        self._check_queue_name(queue_name)
        with self._lock:
            return any(
                j.queue == queue_name
                and j.state in (STATE_CREATED, STATE_ACTIVE)
                and j.data.get(key) == value
                for j in self._jobs.values()
            )

    def get_queue_size(self, queue_name: str) -> int:
        """Jobs waiting to be fetched (including delayed ones)."""
        self._check_queue_name(queue_name)
        with self._lock:
            return sum(
                1 for j in self._jobs.values()
                if j.queue == queue_name and j.state == STATE_CREATED
            )

    def get_pending_jobs(self, queue_name: str, limit: int = 10) -> List[Job]:
        self._check_queue_name(queue_name)
        with self._lock:
            pending = [
                j for j in self._jobs.values()
                if j.queue == queue_name and j.state == STATE_CREATED
            ]
        pending.sort(key=lambda j: (j.start_at, j.seq))
        return pending[:limit]

    def get_queue_stats(self, queue_name: str) -> Dict[str, Any]:
        size = self.get_queue_size(queue_name)
        jobs = self.get_pending_jobs(queue_name, 5)
        return {
            "size": size,
            "pending_jobs": [{"id": j.id, "data": j.data, "start_at": j.start_at} for j in jobs],
        }

    # ──────────────────────────────────────────────
    # MAINTENANCE
    # ──────────────────────────────────────────────

    def archive_completed_jobs(self, older_than_hours: float = 24) -> int:
        cutoff = self.clock() - older_than_hours * 3600
        with self._lock:
            to_archive = [
                j for j in self._jobs.values()
                if j.state in FINISHED_STATES and (j.finished_at or 0) <= cutoff
            ]
            for job in to_archive:
                self._archive[job.id] = self._jobs.pop(job.id)

        if to_archive:
            logger.info(f"Archived {len(to_archive)} finished jobs")
        return len(to_archive)

    def purge_archived_jobs(self, older_than_days: float = 7) -> int:
        cutoff = self.clock() - older_than_days * 86400
        with self._lock:
            to_purge = [j.id for j in self._archive.values() if (j.finished_at or 0) <= cutoff]
            for job_id in to_purge:
                del self._archive[job_id]

        if to_purge:
            logger.info(f"Purged {len(to_purge)} archived jobs")
        return len(to_purge)

    def get_health_status(self) -> Dict[str, Any]:
        with self._lock:
            active = sum(1 for j in self._jobs.values() if j.state == STATE_ACTIVE)
            waiting = sum(1 for j in self._jobs.values() if j.state == STATE_CREATED)
            failed = sum(1 for j in self._jobs.values() if j.state == STATE_FAILED)
        return {
            "is_healthy": True,
            "active": active,
            "waiting": waiting,
            "failed": failed,
        }
