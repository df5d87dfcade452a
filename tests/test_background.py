import pytest

from reminder_service.reminders.background import BackgroundTaskQueue


@pytest.fixture
def queue():
    q = BackgroundTaskQueue(maxsize=10, workers=1, max_attempts=3, backoff_seconds=0)
    q.start()
    yield q
    q.stop()


def test_runs_submitted_jobs(queue):
    seen = []
    assert queue.submit("append", seen.append, 1)
    queue.drain()
    assert seen == [1]


def test_retries_until_success(queue):
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("not yet")

    queue.submit("flaky", flaky)
    queue.drain()
    assert len(attempts) == 3


def test_false_result_counts_as_failure(queue):
    attempts = []

    def unconfirmed():
        attempts.append(1)
        return False

    queue.submit("unconfirmed", unconfirmed)
    queue.drain()
    assert len(attempts) == 3


def test_full_queue_drops_jobs():
    q = BackgroundTaskQueue(maxsize=1, workers=1, backoff_seconds=0)
    # Not started, so nothing drains the queue
    assert q.submit("first", lambda: None)
    assert not q.submit("second", lambda: None)


def test_stop_joins_workers():
    q = BackgroundTaskQueue(workers=2, backoff_seconds=0)
    q.start()
    assert q.running
    q.stop()
    assert not q.running
