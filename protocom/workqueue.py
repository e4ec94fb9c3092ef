"""Thread-safe FIFO of frames tagged with their connection."""

from __future__ import annotations

import threading
from collections import deque
from typing import NamedTuple

from .frames import Frame


class WorkItem(NamedTuple):
    """A frame together with the descriptor of its connection."""

    fd: int
    frame: Frame


class FetchCancelled(Exception):
    """Raised by a blocking fetch that was cancelled."""

    def __init__(self) -> None:
        super().__init__("Work queue blocking fetch was cancelled")


class WorkQueue:
    """A FIFO with an optional item limit; 0 means unlimited."""

    def __init__(self, item_limit: int = 0) -> None:
        self.item_limit = item_limit
        self._items: deque[WorkItem] = deque()
        self._cond = threading.Condition()
        self._cancelled = False

    def push(self, item: WorkItem) -> bool:
        """Append an item; return False if it was dropped because the queue is full."""
        with self._cond:
            if self.item_limit and len(self._items) >= self.item_limit:
                return False
            self._items.append(item)
            self._cond.notify()
            return True

    def fetch(self) -> WorkItem:
        """Wait for and remove the oldest item; raise FetchCancelled if cancelled."""
        with self._cond:
            self._cancelled = False
            self._cond.wait_for(lambda: self._items or self._cancelled)
            if self._cancelled:
                raise FetchCancelled()
            return self._items.popleft()

    def fetch_nowait(self) -> WorkItem | None:
        """Remove the oldest item, or return None if the queue is empty."""
        with self._cond:
            return self._items.popleft() if self._items else None

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def cancel_fetch(self) -> None:
        """Wake every blocked fetch and make it raise FetchCancelled."""
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()