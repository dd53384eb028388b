"""JobRegistry: In-flight requests for a single aggregator contract.

The registry is the single source of truth for what is outstanding. A
request is inserted once (the seen set rejects redeliveries for the
lifetime of the registry) and removed exactly once, either by a matching
fulfillment or by a deadline scan. Both removal paths take the same lock,
so whichever gets there first wins and the other sees nothing.

.. code-block:: python

    >>> registry = JobRegistry()
    >>> registry.try_insert(job)
    True
    >>> registry.try_insert(job)
    False
    >>> registry.remove(job.request_id)
    PendingJob(...)
    >>> registry.remove(job.request_id) is None
    True
"""

from __future__ import annotations

import logging
import threading

from .Events import PendingJob

logger = logging.getLogger(__name__)


class JobRegistry:
    """Pending job table with duplicate suppression.

    A single lock guards the pending table and the seen set as one unit.

    :ivar label: Name used in log messages (usually the aggregator address).
    """

    def __init__(self, label: str = "") -> None:
        """Initialize an empty registry.

        :param label: Name used in log messages.
        """
        self.label = label
        self._lock = threading.Lock()
        self._pending: dict[str, PendingJob] = {}
        self._seen: set[str] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, request_id: bytes) -> bool:
        with self._lock:
            return request_id.hex() in self._pending

    def try_insert(self, job: PendingJob) -> bool:
        """Insert a job unless its request ID was ever seen before.

        :param job: Job to insert.
        :returns: True if inserted, False if the request ID is a duplicate.
        """
        key = job.key
        with self._lock:
            if key in self._seen:
                duplicate = True
            else:
                duplicate = False
                self._seen.add(key)
                self._pending[key] = job

        if duplicate:
            logger.info(
                f"[{self.label}] request dropped; already seen same reqID "
                f"(request_id=0x{key}, spec_id={job.spec_label}, "
                f"request_height={job.request_height})"
            )
            return False
        return True

    def remove(self, request_id: bytes) -> PendingJob | None:
        """Atomically remove and return the job for a request ID.

        :param request_id: Request identifier.
        :returns: The removed job, or None if it was not pending.
        """
        with self._lock:
            return self._pending.pop(request_id.hex(), None)

    def scan_expired(self, current_height: int, miss_threshold: int) -> list[PendingJob]:
        """Remove and return every job past its deadline.

        A job expires when ``current_height - request_height > miss_threshold``.
        The scan and the removals happen under one lock acquisition.

        :param current_height: Latest block height.
        :param miss_threshold: Maximum allowed delta in blocks.
        :returns: Expired jobs, in insertion order.
        """
        with self._lock:
            expired = [
                job
                for job in self._pending.values()
                if current_height - job.request_height > miss_threshold
            ]
            for job in expired:
                del self._pending[job.key]
        return expired

    def pending(self) -> list[PendingJob]:
        """Snapshot of the currently pending jobs."""
        with self._lock:
            return list(self._pending.values())

    def seen_count(self) -> int:
        """Number of distinct request IDs ever inserted."""
        with self._lock:
            return len(self._seen)
