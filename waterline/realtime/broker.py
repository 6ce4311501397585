"""
Change notification brokers.

``InMemoryChangeBroker`` fans events out to subscribers of one process with
asyncio queues. ``RedisChangeBroker`` uses Redis pub/sub so that several
API processes observe each other's writes. Delivery is at-least-once from
the subscriber's point of view: events only say *that* a collection changed,
and subscribers always re-read the current state.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import AsyncIterator, Iterable, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from waterline.core.config import Settings, get_settings
from waterline.core.logging import get_logger

logger = get_logger(__name__)

ORDERS = "orders"
SETTINGS = "settings"


class BrokerError(Exception):
    """Raised when a change notification cannot be published or received."""


@dataclass(frozen=True)
class ChangeEvent:
    """Notification that a document in a collection was written."""

    collection: str
    document_id: str

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ChangeEvent":
        data = json.loads(raw)
        return cls(collection=str(data["collection"]), document_id=str(data["document_id"]))


class ChangeSubscription(ABC):
    """Stream of change events for a fixed set of collections."""

    def __init__(self, collections: Iterable[str]):
        self.collections: Set[str] = set(collections)

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def __aenter__(self) -> "ChangeSubscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class ChangeBroker(ABC):
    """Publishes change events and hands out subscriptions."""

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        ...

    @abstractmethod
    async def subscribe(self, collections: Iterable[str]) -> ChangeSubscription:
        ...

    async def close(self) -> None:
        return None


class _QueueSubscription(ChangeSubscription):
    def __init__(self, broker: "InMemoryChangeBroker", collections: Iterable[str]):
        super().__init__(collections)
        self._broker = broker
        self.queue: asyncio.Queue[Optional[ChangeEvent]] = asyncio.Queue()
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._broker._subscriptions.discard(self)
        self.queue.put_nowait(None)


class InMemoryChangeBroker(ChangeBroker):
    """Process-local broker."""

    def __init__(self) -> None:
        self._subscriptions: Set[_QueueSubscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if event.collection in subscription.collections:
                subscription.queue.put_nowait(event)
        logger.debug(
            "Change published",
            collection=event.collection,
            document_id=event.document_id,
            subscribers=len(self._subscriptions),
        )

    async def subscribe(self, collections: Iterable[str]) -> ChangeSubscription:
        subscription = _QueueSubscription(self, collections)
        self._subscriptions.add(subscription)
        return subscription

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.close()


class _RedisSubscription(ChangeSubscription):
    def __init__(self, pubsub, channels: dict[str, str]):
        super().__init__(channels.values())
        self._pubsub = pubsub
        self._channels = channels

    async def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield ChangeEvent.from_json(message["data"])
                except (ValueError, KeyError) as e:
                    logger.warning("Ignoring malformed change message", error=str(e))
        except RedisError as e:
            raise BrokerError(f"Change subscription lost: {e}") from e

    async def close(self) -> None:
        try:
            await self._pubsub.unsubscribe(*self._channels)
            await self._pubsub.aclose()
        except RedisError as e:
            raise BrokerError(f"Failed to close change subscription: {e}") from e


class RedisChangeBroker(ChangeBroker):
    """Broker backed by Redis pub/sub, one channel per collection."""

    def __init__(self, client: redis.Redis, channel_prefix: str):
        self._client = client
        self._prefix = channel_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisChangeBroker":
        client = redis.from_url(settings.redis_url, decode_responses=True)
        return cls(client, settings.change_channel_prefix)

    def channel(self, collection: str) -> str:
        return f"{self._prefix}:{collection}"

    async def publish(self, event: ChangeEvent) -> None:
        try:
            await self._client.publish(self.channel(event.collection), event.to_json())
        except RedisError as e:
            raise BrokerError(f"Failed to publish change: {e}") from e

    async def subscribe(self, collections: Iterable[str]) -> ChangeSubscription:
        channels = {self.channel(c): c for c in collections}
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(*channels)
        except RedisError as e:
            await pubsub.aclose()
            raise BrokerError(f"Failed to subscribe to changes: {e}") from e
        return _RedisSubscription(pubsub, channels)

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis change broker closed")


def create_change_broker(settings: Optional[Settings] = None) -> ChangeBroker:
    """Build the broker selected by configuration."""
    settings = settings or get_settings()
    if settings.change_broker == "redis":
        logger.info("Using Redis change broker", channel_prefix=settings.change_channel_prefix)
        return RedisChangeBroker.from_settings(settings)
    logger.info("Using in-memory change broker")
    return InMemoryChangeBroker()
