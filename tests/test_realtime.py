import asyncio
import threading

import pytest

from models.user_model import Role
from realtime import SubscriptionHub, conversations_topic, messages_topic


def test_topic_names():
    assert conversations_topic(Role.DOCTOR, "u1") == "conversations:doctor:u1"
    assert messages_topic("c1") == "messages:c1"


@pytest.mark.asyncio
async def test_publish_wakes_subscriber():
    hub = SubscriptionHub()
    subscription = hub.subscribe("messages:c1")

    hub.publish("messages:c1")
    await asyncio.wait_for(subscription.wait(), timeout=1)


@pytest.mark.asyncio
async def test_other_topics_do_not_wake_subscriber():
    hub = SubscriptionHub()
    subscription = hub.subscribe("messages:c1")

    hub.publish("messages:c2")
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(subscription.wait(), timeout=0.1)


@pytest.mark.asyncio
async def test_bursts_collapse_into_one_wakeup():
    hub = SubscriptionHub()
    subscription = hub.subscribe("t")

    for _ in range(5):
        hub.publish("t")
    await asyncio.sleep(0.01)
    await asyncio.wait_for(subscription.wait(), timeout=1)
    assert subscription.queue.empty()


@pytest.mark.asyncio
async def test_publish_from_worker_thread():
    hub = SubscriptionHub()
    subscription = hub.subscribe("t")

    worker = threading.Thread(target=hub.publish, args=("t",))
    worker.start()
    worker.join()
    await asyncio.wait_for(subscription.wait(), timeout=1)


@pytest.mark.asyncio
async def test_unsubscribe():
    hub = SubscriptionHub()
    subscription = hub.subscribe("t")
    assert hub.subscriber_count("t") == 1

    hub.unsubscribe(subscription)
    assert hub.subscriber_count("t") == 0
    hub.publish("t")
    assert subscription.queue.empty()
