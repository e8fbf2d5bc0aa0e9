import threading

from conftest import HCMC, make_order, make_shipper
from dispatch.assignment.job_queue import FIND_SHIPPER, STATE_COMPLETED, STATE_FAILED
from dispatch.realtime.pubsub import ORDER_CONFIRMED_FOR_SHIPPERS
from dispatch.runtime import build_runtime
from dispatch.storage.repositories import Repositories

NEAR = (HCMC[0] + 0.01, HCMC[1])


def _confirmed_order(runtime, repos, clock):
    order = make_order(repos, clock, status="pending")
    runtime.orders.confirm_order(order.id)
    return order


def test_no_shippers_schedules_retry(runtime, repos, clock):
    order = _confirmed_order(runtime, repos, clock)

    assert runtime.worker.run_once() == 1

    row = repos.pending_assignments.find_by_order(order.id)
    assert row.attempt_count == 1
    assert row.next_attempt_at == clock() + 5 * 60
    assert runtime.queue.get_queue_size(FIND_SHIPPER) == 1


def test_offer_sent_then_retry_when_nobody_accepts(runtime, repos, clock):
    offers = runtime.pubsub.subscribe(ORDER_CONFIRMED_FOR_SHIPPERS)
    shipper = make_shipper(repos, clock)
    runtime.tracker.add_shipper(shipper.id, *NEAR, 10)
    order = _confirmed_order(runtime, repos, clock)
    started = clock()

    runtime.worker.run_once()

    payload = offers.get()
    assert payload["target_shipper_id"] == shipper.id
    assert payload[ORDER_CONFIRMED_FOR_SHIPPERS]["id"] == order.id
    assert payload["earnings"]["shipper_earnings"] == 12000

    # waited for the pickup window before giving up
    assert clock() == started + 30
    row = repos.pending_assignments.find_by_order(order.id)
    assert row.is_sent_to_shipper
    assert row.attempt_count == 1


def test_accept_during_wait_clears_pending(runtime, repos, clock):
    shipper = make_shipper(repos, clock)
    runtime.tracker.add_shipper(shipper.id, *NEAR, 10)
    order = _confirmed_order(runtime, repos, clock)

    def shipper_accepts(seconds):
        clock.advance(seconds / 2)
        hold = runtime.offers.request_order_assignment(order.id, shipper.id)
        runtime.offers.accept_assignment(hold["assignment_id"], shipper.id)

    runtime.worker.sleep = shipper_accepts
    runtime.worker.run_once()

    assert repos.pending_assignments.count() == 0
    assert repos.orders.get(order.id).shipper_id == shipper.id
    assert runtime.queue.get_queue_size(FIND_SHIPPER) == 0
    assert runtime.tracker.get_shipper_queue(order.id) == []


def test_stale_job_for_cancelled_order_is_dropped(runtime, repos, clock):
    order = _confirmed_order(runtime, repos, clock)
    order = repos.orders.get(order.id)
    order.status = "canceled"
    repos.orders.save(order)

    runtime.worker.run_once()

    assert repos.pending_assignments.count() == 0


def test_handler_error_records_attempt_and_fails_job(runtime, repos, clock, monkeypatch):
    order = _confirmed_order(runtime, repos, clock)
    job_id = runtime.queue.get_pending_jobs(FIND_SHIPPER)[0].id

    def broken(*args, **kwargs):
        raise RuntimeError("pool unavailable")

    monkeypatch.setattr(runtime.tracker, "create_shipper_queue_for_order", broken)
    runtime.worker.run_once()

    job = runtime.queue.get_job(job_id)
    assert job.state == STATE_FAILED
    assert job.error == "pool unavailable"
    assert repos.pending_assignments.find_by_order(order.id).attempt_count == 1


def test_completed_job_state(runtime, repos, clock):
    _confirmed_order(runtime, repos, clock)
    job_id = runtime.queue.get_pending_jobs(FIND_SHIPPER)[0].id

    runtime.worker.run_once()

    assert runtime.queue.get_job(job_id).state == STATE_COMPLETED


def test_run_once_expires_offer_holds(runtime, repos, clock):
    shipper = make_shipper(repos, clock)
    order = make_order(repos, clock)
    runtime.offers.request_order_assignment(order.id, shipper.id)

    clock.advance(121)
    runtime.worker.run_once()

    assert runtime.offers.active_holds() == []


def test_run_forever_runs_maintenance_and_stops(runtime, repos, clock):
    old = _confirmed_order(runtime, repos, clock)
    clock.advance(5 * 3600)
    stop = threading.Event()
    runtime.worker.sleep = lambda seconds: stop.set()

    runtime.worker.run_forever(stop)

    assert stop.is_set()
    assert repos.pending_assignments.find_by_order(old.id) is None


def test_update_attempt_failure_keeps_original_error(runtime, repos, clock, monkeypatch):
    _confirmed_order(runtime, repos, clock)
    job_id = runtime.queue.get_pending_jobs(FIND_SHIPPER)[0].id

    def broken_pool(*args, **kwargs):
        raise RuntimeError("pool unavailable")

    def broken_store(*args, **kwargs):
        raise IOError("disk full")

    monkeypatch.setattr(runtime.tracker, "create_shipper_queue_for_order", broken_pool)
    monkeypatch.setattr(runtime.pending, "update_attempt", broken_store)
    runtime.worker.run_once()

    job = runtime.queue.get_job(job_id)
    assert job.state == STATE_FAILED
    assert job.error == "pool unavailable"


def test_batch_jobs_wait_for_pickup_side_by_side(runtime, repos, clock):
    shipper = make_shipper(repos, clock)
    runtime.tracker.add_shipper(shipper.id, *NEAR, 10)
    _confirmed_order(runtime, repos, clock)
    _confirmed_order(runtime, repos, clock)
    job_ids = [j.id for j in runtime.queue.get_pending_jobs(FIND_SHIPPER)]

    # both pickup waits must be in progress at once to pass the barrier
    both_waiting = threading.Barrier(2, timeout=5)
    runtime.worker.sleep = lambda seconds: both_waiting.wait()

    assert runtime.worker.run_once() == 2

    assert [runtime.queue.get_job(j).state for j in job_ids] == [STATE_COMPLETED, STATE_COMPLETED]
    assert all(row.attempt_count == 1 for row in repos.pending_assignments.all())


def test_restart_requeues_open_rows_from_disk(tmp_path, clock):
    data_dir = str(tmp_path)
    first = build_runtime(Repositories.on_disk(data_dir), clock=clock, sleep=clock.advance)
    order = _confirmed_order(first, first.repos, clock)
    first.worker.run_once()

    restarted = build_runtime(Repositories.on_disk(data_dir), clock=clock, sleep=clock.advance)
    assert restarted.queue.get_queue_size(FIND_SHIPPER) == 1

    shipper = make_shipper(restarted.repos, clock)
    restarted.tracker.add_shipper(shipper.id, *NEAR, 10)

    def shipper_accepts(seconds):
        hold = restarted.offers.request_order_assignment(order.id, shipper.id)
        restarted.offers.accept_assignment(hold["assignment_id"], shipper.id)

    restarted.worker.sleep = shipper_accepts
    assert restarted.worker.run_once() == 0
    clock.advance(5 * 60)
    assert restarted.worker.run_once() == 1

    assert restarted.repos.orders.get(order.id).shipper_id == shipper.id
    assert restarted.repos.pending_assignments.count() == 0


def test_requeue_skips_rows_with_live_jobs(runtime, repos, clock):
    _confirmed_order(runtime, repos, clock)

    assert runtime.pending.requeue_open_assignments() == 0
    assert runtime.queue.get_queue_size(FIND_SHIPPER) == 1
