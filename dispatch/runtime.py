# dispatch/runtime.py

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from dispatch import config
from dispatch.assignment.active_pool import ActiveShipperTracker
from dispatch.assignment.job_queue import QueueService
from dispatch.assignment.offers import ShipperOfferService
from dispatch.assignment.pending_assignments import PendingAssignmentService
from dispatch.assignment.worker import ShipperAssignmentWorker
from dispatch.core.order_service import OrderService
from dispatch.intelligence.system_constraints import SystemConstraintsService
from dispatch.notifications.in_app_notifier import wire_dispatch_notifications
from dispatch.realtime.location_tracking import LocationTracker
from dispatch.realtime.pubsub import PubSub
from dispatch.storage.repositories import Repositories

logger = logging.getLogger(__name__)


@dataclass
class DispatchRuntime:
    """Every dispatch service, wired to one store, bus and clock."""

    repos: Repositories
    pubsub: PubSub
    queue: QueueService
    constraints: SystemConstraintsService
    pending: PendingAssignmentService
    tracker: ActiveShipperTracker
    offers: ShipperOfferService
    orders: OrderService
    locations: LocationTracker
    worker: ShipperAssignmentWorker
    _worker_thread: Optional[threading.Thread] = None
    _expiry_thread: Optional[threading.Thread] = None
    _stop_event: Optional[threading.Event] = None

    def start_worker(self) -> threading.Thread:
        if self._worker_thread is not None and self._worker_thread.is_alive():
            return self._worker_thread

        self._stop_event = threading.Event()
        self._worker_thread = threading.Thread(
            target=self.worker.run_forever,
            args=(self._stop_event,),
            name="shipper-assignment-worker",
            daemon=True,
        )
        self._expiry_thread = threading.Thread(
            target=self.offers.watch_expiry,
            args=(self._stop_event, config.OFFER_EXPIRY_CHECK_SECONDS, self.worker.sleep),
            name="offer-expiry-watcher",
            daemon=True,
        )
        self._worker_thread.start()
        self._expiry_thread.start()
        return self._worker_thread

    def stop_worker(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()


def build_runtime(
    repos: Optional[Repositories] = None,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], None] = time.sleep,
    notifications: bool = True,
) -> DispatchRuntime:
    repos = repos or Repositories.on_disk(config.DISPATCH_DATA_DIR)
    pubsub = PubSub()
    queue = QueueService(clock=clock)
    constraints = SystemConstraintsService(repos.constraints, clock=clock)
    pending = PendingAssignmentService(repos, queue, pubsub, clock=clock)
    tracker = ActiveShipperTracker(repos, constraints, pubsub, clock=clock)
    offers = ShipperOfferService(repos, pubsub, clock=clock, offer_timeout_seconds=config.OFFER_TIMEOUT_SECONDS)
    orders = OrderService(repos, constraints, pending, pubsub, clock=clock)
    locations = LocationTracker(pubsub, repos.orders, clock=clock)
    worker = ShipperAssignmentWorker(
        repos,
        queue,
        pending,
        tracker,
        pubsub,
        offers=offers,
        clock=clock,
        pickup_wait_seconds=config.PICKUP_WAIT_SECONDS,
        sleep=sleep,
        poll_interval_seconds=config.WORKER_POLL_INTERVAL_SECONDS,
        batch_size=config.WORKER_BATCH_SIZE,
    )

    if notifications:
        wire_dispatch_notifications(pubsub)

    # find-shipper jobs are in-memory; rows from a previous run need theirs back
    pending.requeue_open_assignments()

    logger.info("Dispatch runtime ready")
    return DispatchRuntime(
        repos=repos,
        pubsub=pubsub,
        queue=queue,
        constraints=constraints,
        pending=pending,
        tracker=tracker,
        offers=offers,
        orders=orders,
        locations=locations,
        worker=worker,
    )
