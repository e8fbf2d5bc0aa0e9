"""
PENDING SHIPPER ASSIGNMENTS

Purpose:
- Durable queue of confirmed orders still waiting for a shipper
- One row per order (idempotent enqueue)
- Attempt counter + backoff schedule drive the find-shipper jobs

Retry policy:
• Attempt N failing schedules the next one min(5 * N, 30) minutes later
• After 5 attempts, or 2 hours since enqueue, the row is abandoned
  (kept with a note for manual intervention, never retried)
• Rows older than 4 hours are deleted by the hourly cleanup
• Jobs live in memory only: on startup every open row gets its
  find-shipper job back, due at its stored next_attempt_at
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from dispatch.assignment.errors import AssignmentConflictError, AssignmentError, OrderNotFoundError
from dispatch.assignment.job_queue import FIND_SHIPPER, QueueService
from dispatch.core.models import ORDER_CONFIRMED, PendingShipperAssignment, new_id
from dispatch.realtime.pubsub import PENDING_ASSIGNMENT_ABANDONED, PubSub
from dispatch.storage.repositories import Repositories

logger = logging.getLogger(__name__)

BACKOFF_STEP_MINUTES = 5
BACKOFF_MAX_MINUTES = 30
MAX_ATTEMPTS = 5
MAX_AGE_SECONDS = 2 * 60 * 60
CLEANUP_AGE_SECONDS = 4 * 60 * 60
JOB_EXPIRE_MINUTES = 10


def backoff_minutes(attempt_count: int) -> int:
    return min(attempt_count * BACKOFF_STEP_MINUTES, BACKOFF_MAX_MINUTES)


class PendingAssignmentService:

    def __init__(
        self,
        repos: Repositories,
        queue: QueueService,
        pubsub: Optional[PubSub] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.repos = repos
        self.queue = queue
        self.pubsub = pubsub
        self.clock = clock
        self._lock = threading.Lock()

    def _schedule_attempt(self, assignment: PendingShipperAssignment, start_after: float = 0) -> str:
        return self.queue.add_job(
            FIND_SHIPPER,
            {
                "pending_assignment_id": assignment.id,
                "order_id": assignment.order_id,
                "attempt": assignment.attempt_count + 1,
            },
            start_after=start_after,
            retry_limit=0,
            expire_in_minutes=JOB_EXPIRE_MINUTES,
        )

    def add_pending_assignment(self, order_id: str, priority: int = 1) -> PendingShipperAssignment:
        """Put a confirmed, unassigned order up for shipper matching."""
        existing = self.repos.pending_assignments.find_by_order(order_id)
        if existing:
            logger.warning(f"Pending assignment already exists for order {order_id}")
            return existing

        order = self.repos.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")

        if order.status != ORDER_CONFIRMED:
            raise AssignmentError(f"Order {order_id} is not confirmed (status: {order.status})")

        if order.is_assigned:
            raise AssignmentConflictError(f"Order {order_id} is already assigned to a shipper")

        now = self.clock()
        assignment = PendingShipperAssignment(
            id=new_id(),
            order_id=order_id,
            priority=priority,
            attempt_count=0,
            next_attempt_at=now,
            created_at=now,
        )
        with self._lock:
            self.repos.pending_assignments.save(assignment)
            self._schedule_attempt(assignment)

        logger.info(f"Added pending assignment {assignment.id} for order {order_id}")
        return assignment

    def remove_pending_assignment(self, order_id: str) -> int:
        removed = self.repos.pending_assignments.delete_by_order(order_id)
        if removed:
            logger.info(f"Removed pending assignment for order {order_id}")
        return removed

    def mark_sent_to_shipper(self, pending_assignment_id: str) -> None:
        assignment = self.repos.pending_assignments.get(pending_assignment_id)
        if assignment and not assignment.is_sent_to_shipper:
            assignment.is_sent_to_shipper = True
            self.repos.pending_assignments.save(assignment)

    def update_attempt(self, pending_assignment_id: str, success: bool = False) -> Optional[PendingShipperAssignment]:
        """
        Record the outcome of one find-shipper attempt.

        Returns the updated row, or None when it was removed or missing.
        """
        assignment = self.repos.pending_assignments.get(pending_assignment_id)
        if assignment is None:
            logger.warning(f"Pending assignment {pending_assignment_id} not found")
            return None

        if success:
            self.repos.pending_assignments.delete(assignment.id)
            logger.info(f"Successfully assigned order {assignment.order_id}, removed from pending")
            return None

        now = self.clock()
        assignment.attempt_count += 1
        assignment.last_attempt_at = now

        delay_minutes = backoff_minutes(assignment.attempt_count)
        assignment.next_attempt_at = now + delay_minutes * 60

        is_expired = now - assignment.created_at > MAX_AGE_SECONDS
        if assignment.attempt_count >= MAX_ATTEMPTS or is_expired:
            assignment.abandoned = True
            assignment.notes = f"Max attempts reached ({assignment.attempt_count}) or expired"
            self.repos.pending_assignments.save(assignment)

            logger.warning(
                f"Order {assignment.order_id} assignment abandoned after {assignment.attempt_count} attempts"
            )
            if self.pubsub is not None:
                self.pubsub.publish(PENDING_ASSIGNMENT_ABANDONED, {
                    "order_id": assignment.order_id,
                    "pending_assignment_id": assignment.id,
                    "attempt_count": assignment.attempt_count,
                    "notes": assignment.notes,
                })
            return assignment

        with self._lock:
            self.repos.pending_assignments.save(assignment)
            self._schedule_attempt(assignment, start_after=delay_minutes * 60)

        logger.info(
            f"Scheduled retry {assignment.attempt_count + 1} for order {assignment.order_id} "
            f"in {delay_minutes} minutes"
        )
        return assignment

    def requeue_open_assignments(self) -> int:
        """
        Give every open row without a live job its find-shipper job back.

        Rows written by an earlier process keep their schedule: the job
        starts at the stored next_attempt_at (immediately if overdue).
        Abandoned rows are left for manual handling.
        """
        now = self.clock()
        restored = 0

        with self._lock:
            for assignment in self.repos.pending_assignments.find(lambda p: not p.abandoned):
                if self.queue.has_live_job(FIND_SHIPPER, "pending_assignment_id", assignment.id):
                    continue
                next_at = assignment.next_attempt_at if assignment.next_attempt_at is not None else now
                self._schedule_attempt(assignment, start_after=max(0.0, next_at - now))
                restored += 1

        if restored:
            logger.info(f"Requeued find-shipper jobs for {restored} open pending assignments")
        return restored

    def get_pending_assignments(self, limit: int = 10) -> List[PendingShipperAssignment]:
        return self.repos.pending_assignments.ready(self.clock(), limit)

    def list_all(self) -> List[PendingShipperAssignment]:
        rows = self.repos.pending_assignments.all()
        rows.sort(key=lambda p: (-p.priority, p.created_at))
        return rows

    def cleanup_expired_assignments(self) -> int:
        cutoff = self.clock() - CLEANUP_AGE_SECONDS
        removed = self.repos.pending_assignments.delete_created_before(cutoff)
        if removed:
            logger.info(f"Cleaned up {removed} expired pending assignments")
        return removed
