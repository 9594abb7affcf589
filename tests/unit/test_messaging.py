#!/usr/bin/env python3
"""
Messaging Unit Tests

Tests for domain events, the event bus, message queues and the publisher.
"""

import json
import unittest
from unittest.mock import Mock

import redis

from parkwise.infrastructure.messaging import (
    DomainEvent, EventType, EventHandler, EventBus, EventPublisher,
    InMemoryMessageQueue, RedisMessageQueue, MessageBrokerFactory
)


class RecordingHandler(EventHandler):
    def __init__(self):
        self.events = []

    def handle(self, event: DomainEvent) -> None:
        self.events.append(event)


class FailingHandler(EventHandler):
    def handle(self, event: DomainEvent) -> None:
        raise RuntimeError("handler exploded")


class TestDomainEvent(unittest.TestCase):
    """Unit tests for DomainEvent serialization"""

    def test_json_round_trip(self):
        event = DomainEvent(EventType.SPOT_ALLOCATED, "session-1", {"spot_label": "L1-A-001"})

        restored = DomainEvent.from_json(event.to_json())

        self.assertEqual(restored.event_type, EventType.SPOT_ALLOCATED)
        self.assertEqual(restored.message_id, event.message_id)
        self.assertEqual(restored.timestamp, event.timestamp)
        self.assertEqual(restored.data, {"spot_label": "L1-A-001"})

    def test_wire_format(self):
        """Event type and timestamp travel as plain strings"""
        data = json.loads(DomainEvent(EventType.SPOT_RELEASED, "session-2").to_json())

        self.assertEqual(data["event_type"], "spot_released")
        self.assertEqual(data["source"], "parkwise")
        self.assertIsInstance(data["timestamp"], str)


class TestEventBus(unittest.TestCase):
    """Unit tests for EventBus"""

    def setUp(self):
        """Set up test data"""
        self.bus = EventBus()
        self.handler = RecordingHandler()

    def test_delivery_by_type(self):
        """Handlers only see the event types they subscribed to"""
        self.bus.subscribe(EventType.SPOT_ALLOCATED, self.handler)

        self.bus.publish(DomainEvent(EventType.SPOT_ALLOCATED, "a"))
        self.bus.publish(DomainEvent(EventType.SPOT_RELEASED, "b"))

        self.assertEqual([e.aggregate_id for e in self.handler.events], ["a"])

    def test_duplicate_subscription_ignored(self):
        self.bus.subscribe(EventType.SPOT_ALLOCATED, self.handler)
        self.bus.subscribe(EventType.SPOT_ALLOCATED, self.handler)

        self.bus.publish(DomainEvent(EventType.SPOT_ALLOCATED, "a"))

        self.assertEqual(len(self.handler.events), 1)

    def test_unsubscribe(self):
        self.bus.subscribe(EventType.SPOT_ALLOCATED, self.handler)
        self.bus.unsubscribe(EventType.SPOT_ALLOCATED, self.handler)

        self.bus.publish(DomainEvent(EventType.SPOT_ALLOCATED, "a"))

        self.assertEqual(self.handler.events, [])

    def test_failing_handler_isolated(self):
        """One failing handler does not stop the others"""
        self.bus.subscribe(EventType.SPOT_ALLOCATED, FailingHandler())
        self.bus.subscribe(EventType.SPOT_ALLOCATED, self.handler)

        with self.assertLogs("EventBus", level="ERROR"):
            self.bus.publish(DomainEvent(EventType.SPOT_ALLOCATED, "a"))

        self.assertEqual(len(self.handler.events), 1)


class TestInMemoryMessageQueue(unittest.TestCase):
    """Unit tests for InMemoryMessageQueue"""

    def test_publish_and_subscribe(self):
        queue = InMemoryMessageQueue()
        received = []
        subscription = queue.subscribe("parking_events", received.append)

        self.assertTrue(queue.publish("parking_events", DomainEvent(EventType.SPOT_ALLOCATED, "a")))
        self.assertTrue(queue.unsubscribe(subscription))
        queue.publish("parking_events", DomainEvent(EventType.SPOT_RELEASED, "b"))

        self.assertEqual([e.aggregate_id for e in received], ["a"])
        self.assertEqual(len(queue.get_messages("parking_events")), 2)
        self.assertFalse(queue.unsubscribe(subscription))


class TestRedisMessageQueue(unittest.TestCase):
    """Unit tests for RedisMessageQueue with a mocked client"""

    def setUp(self):
        """Set up a mocked Redis client"""
        self.client = Mock()
        self.queue = RedisMessageQueue(client=self.client)

    def test_publish(self):
        self.client.publish.return_value = 1
        event = DomainEvent(EventType.SPOT_ALLOCATED, "a")

        self.assertTrue(self.queue.publish("parking_events", event))
        self.client.publish.assert_called_once_with("parking_events", event.to_json())

    def test_publish_failure(self):
        """Redis errors are reported as an undelivered message"""
        self.client.publish.side_effect = redis.ConnectionError("connection refused")

        with self.assertLogs("RedisMessageQueue", level="ERROR"):
            delivered = self.queue.publish("parking_events", DomainEvent(EventType.SPOT_ALLOCATED, "a"))

        self.assertFalse(delivered)

    def test_incoming_message_dispatch(self):
        """Messages from the channel reach the matching callbacks"""
        received = []
        self.queue._subscriptions["sub-1"] = "parking_events"
        self.queue._callbacks["sub-1"] = received.append
        event = DomainEvent(EventType.SPOT_RELEASED, "s-9")

        self.queue._handle_message({
            "type": "message",
            "channel": b"parking_events",
            "data": event.to_json().encode("utf-8"),
        })

        self.assertEqual(received[0].aggregate_id, "s-9")


class TestEventPublisher(unittest.TestCase):
    """Unit tests for EventPublisher"""

    def test_publishes_to_bus_and_queue(self):
        queue = InMemoryMessageQueue()
        publisher = EventPublisher(message_queue=queue, topic="garage")
        handler = RecordingHandler()
        publisher.event_bus.subscribe(EventType.SPOT_ALLOCATED, handler)

        publisher.publish(DomainEvent(EventType.SPOT_ALLOCATED, "a"))

        self.assertEqual(len(handler.events), 1)
        self.assertEqual(len(queue.get_messages("garage")), 1)

    def test_queue_failure_is_swallowed(self):
        """A broken broker never fails the caller"""
        queue = Mock()
        queue.publish.side_effect = RuntimeError("broker down")
        publisher = EventPublisher(message_queue=queue)

        with self.assertLogs("EventPublisher", level="ERROR"):
            publisher.publish(DomainEvent(EventType.SPOT_ALLOCATED, "a"))

    def test_factory_backends(self):
        memory = MessageBrokerFactory.create_publisher("memory")
        silent = MessageBrokerFactory.create_publisher("none")

        self.assertIsInstance(memory.message_queue, InMemoryMessageQueue)
        self.assertIsNone(silent.message_queue)
        with self.assertRaises(ValueError):
            MessageBrokerFactory.create_publisher("carrier-pigeon")


if __name__ == '__main__':
    unittest.main()
