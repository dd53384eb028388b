"""FeedSupervisor: Restartable subscription loop with fixed backoff.

Each feed runs as an independent task. An attempt subscribes (bounded by
a setup timeout), then hands every event to a handler until the stream
errors, ends, or goes quiet for longer than the liveness timeout. The
supervisor then waits a fixed delay and subscribes again, forever.

.. code-block:: python

    supervisor = FeedSupervisor(
        name="head",
        subscribe=source.subscribe_headers,
        handle=lambda header: coordinator.on_new_block(header.number),
        liveness_timeout=60.0,
    )
    await supervisor.run()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)


class FeedSupervisor:
    """Supervises one long-lived event subscription.

    :ivar name: Feed name used in log messages.
    :ivar backoff_seconds: Fixed delay before resubscribing.
    :ivar setup_timeout: Maximum time to establish a subscription.
    :ivar liveness_timeout: Maximum wait for the next event, or None.
    :ivar restarts: Number of attempts that ended and were restarted.
    :ivar events_handled: Number of events passed to the handler.
    """

    DEFAULT_BACKOFF_SECONDS = 5.0
    DEFAULT_SETUP_TIMEOUT = 10.0

    def __init__(
        self,
        name: str,
        subscribe: Callable[[], Awaitable[AsyncIterator[Any]]],
        handle: Callable[[Any], Any],
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        setup_timeout: float = DEFAULT_SETUP_TIMEOUT,
        liveness_timeout: float | None = None,
    ) -> None:
        """Initialize the supervisor.

        :param name: Feed name used in log messages.
        :param subscribe: Coroutine function returning an async iterator of events.
        :param handle: Called for every event; may be sync or async.
        :param backoff_seconds: Delay before resubscribing (default: 5.0).
        :param setup_timeout: Subscription setup timeout (default: 10.0).
        :param liveness_timeout: Max seconds between events, None to disable.
        :raises ValueError: If a delay or timeout is negative.
        """
        if backoff_seconds < 0:
            raise ValueError("backoff_seconds must not be negative")
        if setup_timeout <= 0:
            raise ValueError("setup_timeout must be positive")
        if liveness_timeout is not None and liveness_timeout <= 0:
            raise ValueError("liveness_timeout must be positive")

        self.name = name
        self.subscribe = subscribe
        self.handle = handle
        self.backoff_seconds = backoff_seconds
        self.setup_timeout = setup_timeout
        self.liveness_timeout = liveness_timeout
        self.restarts = 0
        self.events_handled = 0
        self._stopped = False

    def stop(self) -> None:
        """Stop resubscribing once the current attempt ends."""
        self._stopped = True

    async def run(self) -> None:
        """Run attempts until stopped, sleeping between them."""
        while not self._stopped:
            logger.info(f"Starting {self.name} routine")
            await self.run_once()
            if self._stopped:
                break

            self.restarts += 1
            logger.warning(
                f"{self.name} routine died. restarting in {self.backoff_seconds:g}sec"
            )
            await asyncio.sleep(self.backoff_seconds)

    async def run_once(self) -> None:
        """Run a single subscription attempt until it fails or ends.

        Transport failures are logged and absorbed; cancellation propagates.
        """
        try:
            stream = await asyncio.wait_for(self.subscribe(), self.setup_timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"failed to subscribe to {self.name}: "
                f"timed out after {self.setup_timeout:g}s"
            )
            return
        except Exception as e:
            logger.error(f"failed to subscribe to {self.name}: {e}")
            return

        try:
            while not self._stopped:
                try:
                    event = await asyncio.wait_for(
                        stream.__anext__(), self.liveness_timeout
                    )
                except StopAsyncIteration:
                    logger.error(f"{self.name} subscription closed")
                    return
                except asyncio.TimeoutError:
                    logger.error(
                        f"{self.name} subscription stalled: no events for "
                        f"{self.liveness_timeout:g}s"
                    )
                    return
                except Exception as e:
                    logger.error(f"{self.name} subscription errored: {e}")
                    return

                await self._dispatch(event)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.debug(f"{self.name}: error closing subscription: {e}")

    async def _dispatch(self, event: Any) -> None:
        """Pass one event to the handler.

        A handler failure is logged and does not end the subscription.
        """
        self.events_handled += 1
        try:
            result = self.handle(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"{self.name}: failed to handle event {event!r}: {e}")
