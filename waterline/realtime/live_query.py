"""
Live-query projections.

A LiveQuery is a cancellable task that owns one SnapshotSlot. It subscribes
to change events first, then publishes an initial snapshot, and afterwards
re-runs its query from scratch on every relevant change, replacing the slot
content with the full result. Snapshot sequence numbers only grow within one
LiveQuery; nothing orders snapshots across different LiveQuery instances.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, Literal, Optional, TypeVar

from waterline.core.logging import get_logger
from waterline.database.queries import QueryIndexMissingError, StoreUnavailableError
from waterline.realtime.broker import BrokerError, ChangeBroker, ChangeEvent, ChangeSubscription

logger = get_logger(__name__)

T = TypeVar("T")

SnapshotState = Literal["ok", "needs_index", "syncing", "closed"]


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    """One published state of a live query."""

    sequence: int
    state: SnapshotState
    data: Optional[T] = None
    message: Optional[str] = None


class SnapshotSlot(Generic[T]):
    """Single latest-value slot written by one LiveQuery.

    Readers wait for a sequence newer than the one they last saw; if several
    snapshots were published in between they only observe the newest.
    """

    def __init__(self) -> None:
        self._condition = asyncio.Condition()
        self._current: Optional[Snapshot[T]] = None
        self._sequence = 0

    @property
    def current(self) -> Optional[Snapshot[T]]:
        return self._current

    async def publish(
        self,
        state: SnapshotState,
        data: Optional[T] = None,
        message: Optional[str] = None,
    ) -> Snapshot[T]:
        async with self._condition:
            self._sequence += 1
            self._current = Snapshot(self._sequence, state, data, message)
            self._condition.notify_all()
            return self._current

    async def wait_next(self, after: int = 0) -> Snapshot[T]:
        """Wait for a snapshot with sequence greater than ``after``."""
        async with self._condition:
            await self._condition.wait_for(
                lambda: self._current is not None and self._current.sequence > after
            )
            return self._current


class LiveQuery(Generic[T]):
    """Re-run ``fetch`` on every change to ``collections``.

    Args:
        name: Label used in logs
        broker: Source of change events
        collections: Collections whose writes invalidate the result
        fetch: Coroutine factory computing the full result
        relevant: Optional filter deciding whether an event requires a refresh
        retry_delay: Seconds to wait before resubscribing after a broker failure
    """

    def __init__(
        self,
        name: str,
        broker: ChangeBroker,
        collections: Iterable[str],
        fetch: Callable[[], Awaitable[T]],
        relevant: Optional[Callable[[ChangeEvent], bool]] = None,
        retry_delay: float = 2.0,
    ):
        self.name = name
        self.slot: SnapshotSlot[T] = SnapshotSlot()
        self._broker = broker
        self._collections = tuple(collections)
        self._fetch = fetch
        self._relevant = relevant
        self._retry_delay = retry_delay
        self._subscription: Optional[ChangeSubscription] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> "LiveQuery[T]":
        """Subscribe, publish the initial snapshot and start following changes."""
        if self._task is not None:
            return self
        self._subscription = await self._broker.subscribe(self._collections)
        try:
            await self.refresh()
        except BaseException:
            await self._drop_subscription()
            raise
        self._task = asyncio.create_task(self._run(), name=f"live-query:{self.name}")
        logger.info("Live query started", live_query=self.name, collections=self._collections)
        return self

    async def refresh(self) -> Snapshot[T]:
        """Recompute the full result and publish it."""
        try:
            data = await self._fetch()
        except QueryIndexMissingError as e:
            logger.error(
                "Live query needs an index",
                live_query=self.name,
                index=e.index_name,
            )
            return await self.slot.publish("needs_index", message=str(e))
        except StoreUnavailableError as e:
            logger.warning("Live query store unavailable", live_query=self.name, error=str(e))
            return await self.slot.publish("syncing", message=str(e))
        return await self.slot.publish("ok", data=data)

    async def _run(self) -> None:
        while True:
            try:
                if self._subscription is None:
                    self._subscription = await self._broker.subscribe(self._collections)
                    await self.refresh()
                async for event in self._subscription:
                    if self._relevant is not None and not self._relevant(event):
                        continue
                    await self.refresh()
                return
            except BrokerError as e:
                logger.warning(
                    "Live query lost its change feed, resubscribing",
                    live_query=self.name,
                    error=str(e),
                )
                await self.slot.publish("syncing", message=str(e))
                await self._drop_subscription()
                await asyncio.sleep(self._retry_delay)
            except Exception as e:
                logger.error(
                    "Live query failed",
                    live_query=self.name,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                await self.slot.publish("closed", message="Live updates stopped.")
                raise

    async def _drop_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        try:
            await subscription.close()
        except BrokerError as e:
            logger.debug("Closing dead subscription failed", live_query=self.name, error=str(e))

    async def close(self) -> None:
        """Cancel the task and release the subscription. Safe to call twice."""
        task, self._task = self._task, None
        if task is None:
            await self._drop_subscription()
            return
        task.cancel()
        # failures inside the task were already logged by _run
        await asyncio.gather(task, return_exceptions=True)
        await self._drop_subscription()
        await self.slot.publish("closed")
        logger.info("Live query closed", live_query=self.name)

    async def __aenter__(self) -> "LiveQuery[T]":
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
