# dispatch/assignment/worker.py

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional

from dispatch.assignment.active_pool import ActiveShipperTracker, build_offer_payload
from dispatch.assignment.job_queue import FIND_SHIPPER, Job, QueueService
from dispatch.assignment.offers import ShipperOfferService
from dispatch.assignment.pending_assignments import PendingAssignmentService
from dispatch.core.models import ORDER_CONFIRMED
from dispatch.intelligence.earnings import earnings_breakdown
from dispatch.realtime.pubsub import ORDER_CONFIRMED_FOR_SHIPPERS, PubSub
from dispatch.storage.repositories import Repositories

logger = logging.getLogger(__name__)


# ==================================================
# WORKER CONFIG
# ==================================================

POLL_INTERVAL_SECONDS = 5
BATCH_SIZE = 2
OFFERS_PER_ATTEMPT = 3

PENDING_CLEANUP_INTERVAL_SECONDS = 60 * 60
POOL_CLEANUP_INTERVAL_SECONDS = 5 * 60
JOB_ARCHIVE_INTERVAL_SECONDS = 24 * 60 * 60


class ShipperAssignmentWorker:
    """
    Consumes find-shipper jobs.

    One attempt = offer the order to the best-ranked online shippers,
    wait for someone to take it, then report success or failure to the
    pending-assignment queue (which schedules the retry).
    """

    def __init__(
        self,
        repos: Repositories,
        queue: QueueService,
        pending: PendingAssignmentService,
        tracker: ActiveShipperTracker,
        pubsub: PubSub,
        offers: Optional[ShipperOfferService] = None,
        clock: Callable[[], float] = time.time,
        pickup_wait_seconds: float = 30,
        sleep: Callable[[float], None] = time.sleep,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        batch_size: int = BATCH_SIZE,
    ):
        self.repos = repos
        self.queue = queue
        self.pending = pending
        self.tracker = tracker
        self.pubsub = pubsub
        self.offers = offers
        self.clock = clock
        self.pickup_wait_seconds = pickup_wait_seconds
        self.sleep = sleep
        self.poll_interval_seconds = poll_interval_seconds
        self.batch_size = batch_size

        self._last_pending_cleanup = 0.0
        self._last_pool_cleanup = 0.0
        self._last_job_archive = 0.0

    # ==================================================
    # JOB HANDLER
    # ==================================================

    def handle_find_shipper(self, job: Job) -> Dict:
        pending_id = job.data.get("pending_assignment_id")
        order_id = job.data.get("order_id")
        attempt = job.data.get("attempt", 1)

        logger.info(f"Processing find-shipper job for order {order_id}, attempt {attempt}")

        try:
            order = self.repos.orders.get(order_id)

            if order is None or order.status != ORDER_CONFIRMED or order.is_assigned:
                logger.info(f"Order {order_id} no longer needs a shipper, removing from pending")
                self.pending.remove_pending_assignment(order_id)
                self.tracker.remove_order_from_queues(order_id)
                return {"order_id": order_id, "status": "skipped"}

            if order.restaurant_lat is None or order.restaurant_lng is None:
                logger.warning(f"Order {order_id} has no restaurant location")
                self.pending.update_attempt(pending_id, success=False)
                return {"order_id": order_id, "status": "no_location"}

            earnings = earnings_breakdown(order)
            candidates = self.tracker.create_shipper_queue_for_order(
                order.id,
                order.restaurant_lat,
                order.restaurant_lng,
                order_value=order.total,
                urgency=earnings["urgency"],
            )

            if not candidates:
                logger.info(f"No shippers in range for order {order_id}")
                self.pending.update_attempt(pending_id, success=False)
                return {"order_id": order_id, "status": "no_shippers"}

            sent = 0
            while sent < OFFERS_PER_ATTEMPT:
                entry = self.tracker.get_next_shipper_from_queue(order.id)
                if entry is None:
                    break
                self.pubsub.publish(
                    ORDER_CONFIRMED_FOR_SHIPPERS,
                    build_offer_payload(order, entry.shipper_id, entry.distance_km, entry.priority),
                )
                sent += 1

            self.pending.mark_sent_to_shipper(pending_id)
            logger.info(f"Offered order {order_id} to {sent} shippers, waiting {self.pickup_wait_seconds}s")

            self.sleep(self.pickup_wait_seconds)

            current = self.repos.orders.get(order_id)
            assigned = current is not None and current.is_assigned

            self.pending.update_attempt(pending_id, success=assigned)
            if assigned:
                self.tracker.remove_order_from_queues(order_id)
                logger.info(f"Order {order_id} picked up by shipper {current.shipper_id}")
                return {"order_id": order_id, "status": "assigned", "shipper_id": current.shipper_id}

            return {"order_id": order_id, "status": "retry_scheduled", "offered": sent}

        except Exception as e:
            logger.error(f"Error processing find-shipper job for order {order_id}: {e}")
            try:
                self.pending.update_attempt(pending_id, success=False)
            except Exception as update_error:
                logger.error(f"Failed to record attempt for order {order_id}: {update_error}")
            raise

    # ==================================================
    # LOOP
    # ==================================================

    def _process(self, job: Job) -> None:
        try:
            self.handle_find_shipper(job)
            self.queue.complete_job(FIND_SHIPPER, job.id)
        except Exception as e:
            self.queue.fail_job(FIND_SHIPPER, job.id, str(e))

    def run_once(self) -> int:
        """
        Process one batch. Returns the number of jobs handled.

        Jobs of a batch run side by side, so their pickup waits overlap.
        """
        if self.offers is not None:
            self.offers.expire_offers()

        jobs = self.queue.fetch(FIND_SHIPPER, self.batch_size)

        if len(jobs) == 1:
            self._process(jobs[0])
        elif jobs:
            with ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="find-shipper") as executor:
                list(executor.map(self._process, jobs))

        return len(jobs)

    def run_maintenance(self) -> None:
        now = self.clock()

        if now - self._last_pending_cleanup >= PENDING_CLEANUP_INTERVAL_SECONDS:
            self.pending.cleanup_expired_assignments()
            self.pending.requeue_open_assignments()
            if self.offers is not None:
                self.offers.cleanup_expired_data()
            self._last_pending_cleanup = now

        if now - self._last_pool_cleanup >= POOL_CLEANUP_INTERVAL_SECONDS:
            self.tracker.cleanup()
            self._last_pool_cleanup = now

        if now - self._last_job_archive >= JOB_ARCHIVE_INTERVAL_SECONDS:
            self.queue.archive_completed_jobs()
            self.queue.purge_archived_jobs()
            self._last_job_archive = now

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        """
        Long-running assignment loop.

        Responsibilities:
        - Drain due find-shipper jobs
        - Expire offer holds
        - Periodic cleanup of pending rows, pool and job archive
        - NEVER crash on a single bad cycle
        """
        stop_event = stop_event or threading.Event()
        logger.info("Shipper assignment worker started")

        while not stop_event.is_set():
            try:
                self.run_once()
                self.run_maintenance()
            except Exception as e:
                logger.error(f"Assignment worker cycle failed: {e}")

            self.sleep(self.poll_interval_seconds)

        logger.info("Shipper assignment worker stopped")
