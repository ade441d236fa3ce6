"""In-process message broker: publish → pending → deliver to subscribers.

Each subscription owns an asyncio.Queue as its delivery channel and a worker
task that drains it, so first-attempt delivery follows publish order per
subscriber. Failed deliveries are either rescheduled with backoff or left
pending for the next subscribe to replay, depending on ``redeliver``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

from ingestor.broker.models import (
    BrokerStats,
    DeadLetterEntry,
    Message,
    Record,
    new_message_id,
    utc_now,
)
from ingestor.logging_config import with_correlation

logger = logging.getLogger(__name__)

Handler = Callable[[Message], Awaitable[None]]

MAX_ATTEMPTS = 3


class _Subscription:
    """One handler's independent delivery stream on a topic."""

    def __init__(self, topic: str, handler: Handler, subscriber_id: str) -> None:
        self.topic = topic
        self.handler = handler
        self.subscriber_id = subscriber_id
        self.queue: asyncio.Queue[Message] = asyncio.Queue()
        self.task: asyncio.Task[None] | None = None
        self.retry_tasks: set[asyncio.Task[None]] = set()
        self.active = True


class _Topic:
    def __init__(self, name: str) -> None:
        self.name = name
        self.pending: list[Message] = []
        self.subscriptions: list[_Subscription] = []


def _validate_topic_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"Invalid topic name: {name!r}")
    return name


class Broker:
    """Topic registry with at-least-once delivery, bounded retries and a dead-letter set."""

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = 0.5,
        retry_backoff: float = 2.0,
        max_retry_delay: float = 30.0,
        redeliver: bool = True,
        handler_timeout: float | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._retry_backoff = retry_backoff
        self._max_retry_delay = max_retry_delay
        self._redeliver = redeliver
        self._handler_timeout = handler_timeout
        self._topics: dict[str, _Topic] = {}
        self._dead_letters: list[DeadLetterEntry] = []
        # Queued deliveries + scheduled redeliveries + deliveries in progress
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def create_topic(self, name: str) -> None:
        """Create topic if missing. No-op for an existing topic."""
        self._get_topic(name)

    def _get_topic(self, name: str) -> _Topic:
        topic = self._topics.get(_validate_topic_name(name))
        if topic is None:
            topic = _Topic(name)
            self._topics[name] = topic
            logger.info("Topic created: %s", name)
        return topic

    async def publish(
        self,
        topic: str,
        body: Iterable[Record],
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Append a message to the topic and hand it to every subscriber. Returns message id.

        Fire-and-forget for the caller: returns once the message is enqueued,
        never waits for handlers.
        """
        t = self._get_topic(topic)
        message = Message(
            id=new_message_id(),
            topic=topic,
            body=list(body),
            metadata={**(metadata or {}), "timestamp": utc_now()},
        )
        t.pending.append(message)
        for sub in t.subscriptions:
            self._enqueue(sub, message)
        with_correlation(logger, message.correlation_id).debug(
            "Message %s published to %s (%d records)", message.id, topic, len(message.body)
        )
        return message.id

    def subscribe(
        self,
        topic: str,
        handler: Handler,
        subscriber_id: str | None = None,
    ) -> Callable[[], None]:
        """Register handler and replay every message already pending. Returns unsubscribe.

        Must be called from a running event loop: the subscription's worker is
        started immediately.
        """
        t = self._get_topic(topic)
        sub_id = subscriber_id or getattr(handler, "__qualname__", repr(handler))
        sub = _Subscription(topic, handler, sub_id)
        sub.task = asyncio.get_running_loop().create_task(self._run_subscription(sub))
        t.subscriptions.append(sub)
        for message in list(t.pending):
            self._enqueue(sub, message)
        logger.info("Subscribed %s to %s (%d pending replayed)", sub_id, topic, len(t.pending))

        def unsubscribe() -> None:
            self._unsubscribe(t, sub)

        return unsubscribe

    def _unsubscribe(self, topic: _Topic, sub: _Subscription) -> None:
        if not sub.active:
            return
        sub.active = False
        if sub in topic.subscriptions:
            topic.subscriptions.remove(sub)
        if sub.task:
            sub.task.cancel()
        for task in list(sub.retry_tasks):
            task.cancel()
        while not sub.queue.empty():
            sub.queue.get_nowait()
            self._untrack()
        logger.info("Unsubscribed %s from %s", sub.subscriber_id, topic.name)

    def get_stats(self) -> BrokerStats:
        """Pending count per topic and dead-letter size. Does not mutate state."""
        return BrokerStats(
            queues={name: len(t.pending) for name, t in self._topics.items()},
            dead_letter_count=len(self._dead_letters),
        )

    def pending(self, topic: str) -> list[Message]:
        """Snapshot of messages still pending on topic."""
        t = self._topics.get(topic)
        return list(t.pending) if t else []

    def dead_letters(self) -> list[DeadLetterEntry]:
        return list(self._dead_letters)

    async def join(self, timeout: float | None = None) -> None:
        """Wait until no delivery is queued, running or scheduled for retry."""
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    async def stop(self) -> None:
        """Cancel all subscription workers and scheduled redeliveries."""
        tasks: list[asyncio.Task[None]] = []
        for topic in self._topics.values():
            for sub in list(topic.subscriptions):
                if sub.task:
                    tasks.append(sub.task)
                tasks.extend(sub.retry_tasks)
                self._unsubscribe(topic, sub)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Broker stopped")

    def _track(self) -> None:
        self._outstanding += 1
        self._idle.clear()

    def _untrack(self) -> None:
        self._outstanding -= 1
        if self._outstanding <= 0:
            self._outstanding = 0
            self._idle.set()

    def _enqueue(self, sub: _Subscription, message: Message) -> None:
        self._track()
        sub.queue.put_nowait(message)

    def _find_pending(self, topic: str, message_id: str) -> Message | None:
        t = self._topics.get(topic)
        if t is None:
            return None
        for message in t.pending:
            if message.id == message_id:
                return message
        return None

    def _remove_pending(self, topic: str, message_id: str) -> Message | None:
        """Remove by id. Returns None when already gone (duplicate delivery)."""
        t = self._topics.get(topic)
        if t is None:
            return None
        for index, message in enumerate(t.pending):
            if message.id == message_id:
                return t.pending.pop(index)
        return None

    async def _run_subscription(self, sub: _Subscription) -> None:
        """Worker loop: deliver queued messages one at a time, in queue order.

        Every subscriber gets its own delivery even when another subscriber has
        already completed the message; only redeliveries check pending state.
        """
        while True:
            message = await sub.queue.get()
            try:
                await self._deliver(sub, message)
            finally:
                self._untrack()

    async def _deliver(self, sub: _Subscription, message: Message) -> None:
        message.attempts += 1
        try:
            if self._handler_timeout is not None:
                await asyncio.wait_for(sub.handler(message), timeout=self._handler_timeout)
            else:
                await sub.handler(message)
        except asyncio.CancelledError as e:
            # Only a cancel aimed at this worker stops it; a handler that awaited
            # a cancelled future has simply failed.
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            self._on_failure(sub, message, e)
            return
        except Exception as e:
            self._on_failure(sub, message, e)
            return

        self._remove_pending(sub.topic, message.id)
        with_correlation(logger, message.correlation_id).debug(
            "Message %s processed from %s by %s", message.id, sub.topic, sub.subscriber_id
        )

    def _on_failure(self, sub: _Subscription, message: Message, exc: BaseException) -> None:
        log = with_correlation(logger, message.correlation_id)
        error_msg = str(exc) or type(exc).__name__
        log.error(
            "Error processing message %s from %s by %s (attempt %d/%d): %s",
            message.id,
            sub.topic,
            sub.subscriber_id,
            message.attempts,
            self._max_attempts,
            error_msg,
        )
        if message.attempts >= self._max_attempts:
            failed = self._remove_pending(sub.topic, message.id)
            if failed is not None:
                failed.error = error_msg
                self._dead_letters.append(
                    DeadLetterEntry(
                        message=failed,
                        error=error_msg,
                        topic=sub.topic,
                        dead_lettered_at=utc_now(),
                    )
                )
                log.warning(
                    "Message %s moved to dead-letter from %s after %d attempts",
                    message.id,
                    sub.topic,
                    message.attempts,
                )
            return
        if self._redeliver and sub.active:
            self._schedule_redelivery(sub, message)

    def retry_delay_for(self, attempts: int) -> float:
        """Backoff before the next attempt, given attempts already made."""
        delay = self._retry_delay * (self._retry_backoff ** max(attempts - 1, 0))
        return min(delay, self._max_retry_delay)

    def _schedule_redelivery(self, sub: _Subscription, message: Message) -> None:
        delay = self.retry_delay_for(message.attempts)
        self._track()
        task = asyncio.get_running_loop().create_task(self._redeliver_later(sub, message, delay))
        sub.retry_tasks.add(task)
        task.add_done_callback(sub.retry_tasks.discard)
        # Untrack from the callback: a task cancelled before it starts never runs its body
        task.add_done_callback(lambda _t: self._untrack())

    async def _redeliver_later(
        self, sub: _Subscription, message: Message, delay: float
    ) -> None:
        await asyncio.sleep(delay)
        if sub.active and self._find_pending(sub.topic, message.id) is not None:
            self._enqueue(sub, message)
        else:
            logger.debug("Dropping redelivery of %s: no longer pending", message.id)
