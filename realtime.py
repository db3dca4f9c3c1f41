"""
In-process live subscriptions.

Writers call ``hub.publish(topic)`` after a successful write. Each
subscriber owns an asyncio queue bound to the event loop it subscribed
from; publishing is thread-safe so synchronous route handlers running in
the threadpool can notify WebSocket streams.
"""
import asyncio
import logging
import threading
from collections import defaultdict

from models.user_model import Role

logger = logging.getLogger(__name__)


def conversations_topic(role: Role, uid: str) -> str:
    return f"conversations:{role.value}:{uid}"


def messages_topic(conversation_id: str) -> str:
    return f"messages:{conversation_id}"


def appointments_topic(role: Role, uid: str) -> str:
    return f"appointments:{role.value}:{uid}"


class Subscription:
    def __init__(self, topic: str):
        self.topic = topic
        self.loop = asyncio.get_running_loop()
        self.queue = asyncio.Queue()

    def notify(self):
        self.loop.call_soon_threadsafe(self.queue.put_nowait, self.topic)

    async def wait(self):
        """Block until the topic changes; bursts of changes collapse into one."""
        await self.queue.get()
        while not self.queue.empty():
            self.queue.get_nowait()


class SubscriptionHub:
    def __init__(self):
        self._subscriptions = defaultdict(set)
        self._lock = threading.Lock()

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(topic)
        with self._lock:
            self._subscriptions[topic].add(subscription)
        logger.debug(f"Subscribed to {topic}")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscriptions.get(subscription.topic)
            if subscribers is None:
                return
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscriptions[subscription.topic]
        logger.debug(f"Unsubscribed from {subscription.topic}")

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(topic, ()))

    def publish(self, *topics: str):
        for topic in topics:
            with self._lock:
                subscribers = list(self._subscriptions.get(topic, ()))
            for subscription in subscribers:
                try:
                    subscription.notify()
                except RuntimeError:
                    # Event loop already closed; the stream is gone
                    logger.warning(f"Dropping stale subscription to {topic}")
                    self.unsubscribe(subscription)


hub = SubscriptionHub()
