import logging
from collections import defaultdict
from typing import Any, Protocol


logger = logging.getLogger("giftcircle.ws")


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


def group_stream(group_id: int) -> str:
    return f"group:{group_id}"


def notifications_stream(user_id: str) -> str:
    return f"notifications:{user_id}"


class Subscription:
    """Handle returned by ``subscribe``; pushes continue until ``release``."""

    def __init__(
        self,
        manager: "FeedConnectionManager",
        stream: str,
        subscriber: Subscriber,
        user_id: str | None = None,
    ) -> None:
        self.manager = manager
        self.stream = stream
        self.subscriber = subscriber
        self.user_id = user_id
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.manager.unsubscribe(self.stream, self.subscriber)
        self.released = True


class FeedConnectionManager:
    def __init__(self) -> None:
        self._connections: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(self, stream: str, subscriber: Subscriber, user_id: str | None = None) -> Subscription:
        subscription = Subscription(self, stream, subscriber, user_id)
        self._connections[stream].append(subscription)
        logger.info("WS subscribe stream=%s user_id=%s total=%s", stream, user_id, len(self._connections[stream]))
        return subscription

    def _keep(self, stream: str, keep) -> int:
        if stream not in self._connections:
            return 0
        before = self._connections[stream]
        remaining = [s for s in before if keep(s)]
        for subscription in before:
            if subscription not in remaining:
                subscription.released = True
        if remaining:
            self._connections[stream] = remaining
        else:
            self._connections.pop(stream, None)
        return len(before) - len(remaining)

    def unsubscribe(self, stream: str, subscriber: Subscriber) -> None:
        if self._keep(stream, lambda s: s.subscriber is not subscriber):
            logger.info("WS unsubscribe stream=%s total=%s", stream, self.subscriber_count(stream))

    def release_user(self, stream: str, user_id: str) -> int:
        """Stop pushing ``stream`` to every subscription held by ``user_id``."""
        dropped = self._keep(stream, lambda s: s.user_id != user_id)
        if dropped:
            logger.info("WS released stream=%s user_id=%s dropped=%s", stream, user_id, dropped)
        return dropped

    def release_stream(self, stream: str) -> int:
        return self._keep(stream, lambda s: False)

    def subscriber_count(self, stream: str) -> int:
        return len(self._connections.get(stream, []))

    async def publish(self, stream: str, event_type: str, payload: dict[str, Any]) -> int:
        """Push one insert event to every holder of ``stream``.

        Returns the number of successful deliveries. Subscribers whose send
        fails are pruned; the caller's write is never affected.
        """
        if stream not in self._connections:
            return 0

        delivered = 0
        failed: list[Subscription] = []
        for subscription in list(self._connections[stream]):
            try:
                await subscription.subscriber.send_json({"type": event_type, "data": payload})
                delivered += 1
            except Exception:
                logger.exception("WS publish failed stream=%s", stream)
                failed.append(subscription)

        if failed:
            self._keep(stream, lambda s: s not in failed)
            logger.info("WS pruned stream=%s total=%s", stream, self.subscriber_count(stream))
        return delivered


manager = FeedConnectionManager()
