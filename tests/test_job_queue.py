import pytest

from conftest import FakeClock
from dispatch.assignment.job_queue import (
    FIND_SHIPPER,
    STATE_ACTIVE,
    STATE_CANCELLED,
    STATE_COMPLETED,
    STATE_CREATED,
    STATE_EXPIRED,
    STATE_FAILED,
    QueueError,
    QueueService,
)


@pytest.fixture
def queue(clock):
    return QueueService(clock=clock)


def test_blank_queue_name_rejected(queue):
    with pytest.raises(QueueError):
        queue.add_job("  ", {})
    with pytest.raises(QueueError):
        queue.fetch("")


def test_fetch_orders_by_start_then_creation(queue, clock):
    later = queue.add_job(FIND_SHIPPER, {"n": "later"}, start_after=10)
    first = queue.add_job(FIND_SHIPPER, {"n": "first"})
    second = queue.add_job(FIND_SHIPPER, {"n": "second"})

    assert [j.id for j in queue.fetch(FIND_SHIPPER, 5)] == [first, second]
    assert queue.fetch(FIND_SHIPPER, 5) == []

    clock.advance(10)
    jobs = queue.fetch(FIND_SHIPPER, 5)
    assert [j.id for j in jobs] == [later]
    assert jobs[0].state == STATE_ACTIVE


def test_queue_size_counts_delayed_jobs(queue):
    queue.add_job(FIND_SHIPPER, {}, start_after=600)
    queue.add_job(FIND_SHIPPER, {})

    assert queue.get_queue_size(FIND_SHIPPER) == 2
    stats = queue.get_queue_stats(FIND_SHIPPER)
    assert stats["size"] == 2
    assert len(stats["pending_jobs"]) == 2


def test_complete_and_fail(queue):
    ok = queue.add_job(FIND_SHIPPER, {})
    bad = queue.add_job(FIND_SHIPPER, {})
    queue.fetch(FIND_SHIPPER, 2)

    queue.complete_job(FIND_SHIPPER, ok)
    queue.fail_job(FIND_SHIPPER, bad, "boom")

    assert queue.get_job(ok).state == STATE_COMPLETED
    assert queue.get_job(bad).state == STATE_FAILED
    assert queue.get_job(bad).error == "boom"
    assert queue.get_health_status()["failed"] == 1


def test_fail_requeues_while_retries_remain(queue):
    job_id = queue.add_job(FIND_SHIPPER, {}, retry_limit=1)

    queue.fetch(FIND_SHIPPER)
    queue.fail_job(FIND_SHIPPER, job_id, "first")
    assert queue.get_job(job_id).state == STATE_CREATED

    queue.fetch(FIND_SHIPPER)
    queue.fail_job(FIND_SHIPPER, job_id, "second")
    assert queue.get_job(job_id).state == STATE_FAILED
    assert queue.get_job(job_id).retry_count == 1


def test_unknown_job_raises(queue):
    with pytest.raises(QueueError):
        queue.complete_job(FIND_SHIPPER, "nope")


def test_cancel_only_unfinished(queue):
    job_id = queue.add_job(FIND_SHIPPER, {})
    assert queue.cancel_job(FIND_SHIPPER, job_id) is True
    assert queue.get_job(job_id).state == STATE_CANCELLED
    assert queue.cancel_job(FIND_SHIPPER, job_id) is False
    assert queue.fetch(FIND_SHIPPER) == []


def test_active_jobs_expire(queue, clock):
    job_id = queue.add_job(FIND_SHIPPER, {}, expire_in_minutes=1)
    queue.fetch(FIND_SHIPPER)

    clock.advance(61)
    queue.fetch(FIND_SHIPPER)

    assert queue.get_job(job_id).state == STATE_EXPIRED


def test_archive_then_purge(queue, clock):
    job_id = queue.add_job(FIND_SHIPPER, {})
    queue.fetch(FIND_SHIPPER)
    queue.complete_job(FIND_SHIPPER, job_id)

    assert queue.archive_completed_jobs(older_than_hours=24) == 0
    clock.advance(24 * 3600)
    assert queue.archive_completed_jobs(older_than_hours=24) == 1
    assert queue.get_job(job_id) is not None

    clock.advance(7 * 86400)
    assert queue.purge_archived_jobs(older_than_days=7) == 1
    assert queue.get_job(job_id) is None


def test_independent_clocks_per_service():
    a = QueueService(clock=FakeClock(0))
    a.add_job(FIND_SHIPPER, {}, start_after=5)
    assert a.fetch(FIND_SHIPPER) == []
