import threading
import time

from protocom.frames import PLAIN_HEADER, Frame
from protocom.workqueue import FetchCancelled, WorkItem, WorkQueue


def _item(fd, payload=b"x"):
    return WorkItem(fd, Frame(PLAIN_HEADER, payload))


def test_fifo_order():
    queue = WorkQueue()
    for fd in range(3):
        assert queue.push(_item(fd))
    assert len(queue) == 3
    assert [queue.fetch().fd for _ in range(3)] == [0, 1, 2]
    assert len(queue) == 0


def test_item_limit_drops_extra():
    queue = WorkQueue(item_limit=2)
    assert queue.push(_item(1))
    assert queue.push(_item(2))
    assert not queue.push(_item(3))
    assert len(queue) == 2
    assert queue.fetch_nowait().fd == 1


def test_fetch_nowait_empty_returns_none():
    queue = WorkQueue()
    assert queue.fetch_nowait() is None


def test_fetch_nowait_returns_item():
    queue = WorkQueue()
    item = _item(7, b"payload")
    queue.push(item)
    assert queue.fetch_nowait() == item
    assert queue.fetch_nowait() is None


def test_blocking_fetch_wakes_on_push():
    queue = WorkQueue()
    results = []
    worker = threading.Thread(target=lambda: results.append(queue.fetch()))
    worker.start()
    time.sleep(0.05)
    queue.push(_item(5))
    worker.join(timeout=5)
    assert results == [_item(5)]


def test_cancel_fetch_interrupts_waiter():
    queue = WorkQueue()
    errors = []

    def waiter():
        try:
            queue.fetch()
        except FetchCancelled as exc:
            errors.append(exc)

    worker = threading.Thread(target=waiter)
    worker.start()
    deadline = time.monotonic() + 5
    while worker.is_alive() and time.monotonic() < deadline:
        queue.cancel_fetch()
        time.sleep(0.01)
    worker.join(timeout=1)
    assert not worker.is_alive()
    assert len(errors) == 1
    assert str(errors[0]) == "Work queue blocking fetch was cancelled"
    assert len(queue) == 0
    assert queue.push(_item(9))
    assert queue.fetch_nowait() == _item(9)


def test_cancelled_exception_message():
    assert str(FetchCancelled()) == "Work queue blocking fetch was cancelled"