"""
In-Memory Event Bus.

Synchronous topic-based publish/subscribe used as the internal transport
between the smart home pollers and the rituals engine.

Delivery: in registration order, at most once per subscriber per publish.
Each handler call is isolated: an exception is logged and dispatch moves on
to the next handler. Handlers returning an awaitable are scheduled on the
running loop (fire-and-forget); publish() never waits for them.
No persistence: publishing to a topic without subscribers discards the payload.

One instance is built at app startup and passed explicitly to its producers
and consumers (see backend.app.core.pipeline).
"""
import asyncio
import inspect
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe(); pass it to unsubscribe()."""
    topic: str
    handler: Handler = field(compare=False)
    seq: int = 0


class EventBus:
    """Topic-routed, registration-ordered, failure-isolated pub/sub."""

    def __init__(self, history_size: int = 100):
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._seq = itertools.count(1)
        self._history: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self._pending: set = set()
        self.enabled = True

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        subscription = Subscription(topic=topic, handler=handler, seq=next(self._seq))
        self._subscriptions.setdefault(topic, []).append(subscription)
        logger.debug(f"Subscribed {_handler_name(handler)} to {topic} (seq={subscription.seq})")
        return subscription

    def once(self, topic: str, handler: Handler) -> Subscription:
        """Subscribe a handler that is removed after its first delivery."""
        subscription: Optional[Subscription] = None

        def _once(payload: Any) -> Any:
            self.unsubscribe(subscription)
            return handler(payload)

        _once.__name__ = f"once({_handler_name(handler)})"
        subscription = self.subscribe(topic, _once)
        return subscription

    def unsubscribe(self, subscription: Optional[Subscription]) -> bool:
        """Remove a subscription. Returns False if it was already gone."""
        if subscription is None:
            return False
        handlers = self._subscriptions.get(subscription.topic)
        if not handlers:
            return False
        for index, existing in enumerate(handlers):
            if existing.seq == subscription.seq:
                # Rebind instead of mutating so in-flight dispatch snapshots stay intact
                remaining = handlers[:index] + handlers[index + 1:]
                if remaining:
                    self._subscriptions[subscription.topic] = remaining
                else:
                    del self._subscriptions[subscription.topic]
                return True
        return False

    def clear(self, topic: Optional[str] = None) -> None:
        """Drop all subscriptions for one topic, or for every topic."""
        if topic is None:
            self._subscriptions = {}
        else:
            self._subscriptions.pop(topic, None)

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        logger.info(f"Event bus {'enabled' if enabled else 'disabled'}")

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def publish(self, topic: str, payload: Any = None) -> int:
        """
        Deliver payload to every current subscriber of topic, in order.

        Returns the number of handlers invoked.
        """
        if not self.enabled:
            logger.debug(f"Event bus disabled, dropped publish on {topic}")
            return 0

        self._record(topic)
        handlers = tuple(self._subscriptions.get(topic, ()))
        if not handlers:
            logger.debug(f"No subscribers for {topic}, payload discarded")
            return 0

        for subscription in handlers:
            try:
                result = subscription.handler(payload)
            except Exception as e:
                logger.error(
                    f"Subscriber {_handler_name(subscription.handler)} failed on {topic}: {e}",
                    exc_info=True,
                )
                continue
            if inspect.isawaitable(result):
                self._schedule(topic, subscription, result)

        return len(handlers)

    async def publish_async(self, topic: str, payload: Any = None) -> int:
        """
        Like publish(), but awaits each handler's asynchronous work in
        registration order before moving on to the next handler.
        """
        if not self.enabled:
            logger.debug(f"Event bus disabled, dropped publish on {topic}")
            return 0

        self._record(topic)
        handlers = tuple(self._subscriptions.get(topic, ()))
        if not handlers:
            logger.debug(f"No subscribers for {topic}, payload discarded")
            return 0

        for subscription in handlers:
            try:
                result = subscription.handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Async subscriber {_handler_name(subscription.handler)} failed on {topic}: {e}",
                    exc_info=True,
                )

        return len(handlers)

    def _schedule(self, topic: str, subscription: Subscription, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
            task = asyncio.ensure_future(awaitable, loop=loop)
        except RuntimeError:
            # No running loop: nothing can drive the coroutine
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.error(
                f"Subscriber {_handler_name(subscription.handler)} on {topic} returned an "
                f"awaitable outside of an event loop; dropped"
            )
            return

        self._pending.add(task)

        def _done(t: "asyncio.Future") -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    f"Background work of {_handler_name(subscription.handler)} failed on {topic}: {exc}",
                    exc_info=exc,
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for fire-and-forget handler work scheduled so far (tests, shutdown)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def _record(self, topic: str) -> None:
        self._history.append({"topic": topic, "published_at": time.time()})

    def history(self, limit: int = 50) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def clear_history(self) -> None:
        self._history.clear()

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))

    def active_topics(self) -> List[str]:
        return list(self._subscriptions.keys())

    def stats(self) -> Dict[str, Any]:
        breakdown = {topic: len(subs) for topic, subs in self._subscriptions.items()}
        return {
            "enabled": self.enabled,
            "active_topics": len(breakdown),
            "total_subscribers": sum(breakdown.values()),
            "topics": breakdown,
            "recent": self.history(10),
        }


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or getattr(handler, "__name__", repr(handler))
