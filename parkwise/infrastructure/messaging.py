# File: parkwise/infrastructure/messaging.py
"""
Messaging Infrastructure for the Parking Engine

Domain events are published after a transaction has committed:
1. Event Bus - intra-process publish/subscribe
2. Message Queue - inter-process delivery (Redis Pub/Sub, or in-memory for tests)
3. Event Publisher - feeds both from the application service

Publishing is best effort. A failed delivery is logged and never undoes the
committed allocation or release.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, List, Any, Callable
from datetime import datetime
import logging
import json
import threading
import time
from dataclasses import dataclass, asdict, field
from enum import Enum
from uuid import uuid4

import redis

from ..domain.models import utcnow


# ============================================================================
# EVENT TYPES
# ============================================================================

class EventType(str, Enum):
    """Domain events emitted by the engine"""
    SPOT_ALLOCATED = "spot_allocated"
    SPOT_RELEASED = "spot_released"
    SPOT_STATE_CHANGED = "spot_state_changed"


# ============================================================================
# MESSAGE CLASSES
# ============================================================================

@dataclass
class DomainEvent:
    """Domain event message"""
    event_type: EventType
    aggregate_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    message_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utcnow)
    source: str = "parkwise"

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to dictionary"""
        data = asdict(self)
        data['event_type'] = self.event_type.value
        data['timestamp'] = self.timestamp.isoformat()
        return data

    def to_json(self) -> str:
        """Convert message to JSON string"""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DomainEvent':
        """Create message from dictionary"""
        data = dict(data)
        data['event_type'] = EventType(data['event_type'])
        data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'DomainEvent':
        """Create message from JSON string"""
        return cls.from_dict(json.loads(json_str))


# ============================================================================
# EVENT HANDLERS
# ============================================================================

class EventHandler(ABC):
    """Abstract base class for event handlers"""

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        """Handle a domain event"""
        pass

    def can_handle(self, event: DomainEvent) -> bool:
        """Check if this handler can handle the event"""
        return True


# ============================================================================
# EVENT BUS (In-memory)
# ============================================================================

class EventBus:
    """
    In-memory event bus for intra-process event publishing

    Handler failures are logged and do not stop delivery to other handlers.
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[EventHandler]] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe to events of a specific type"""
        with self._lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)
                self._logger.debug(f"Subscribed {handler.__class__.__name__} to {event_type.value}")

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Unsubscribe handler from events"""
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                self._logger.debug(f"Unsubscribed {handler.__class__.__name__} from {event_type.value}")

    def publish(self, event: DomainEvent) -> None:
        """Publish an event to all subscribers"""
        self._logger.debug(f"Publishing event: {event.event_type.value} (ID: {event.message_id})")

        with self._lock:
            handlers = list(self._subscribers.get(event.event_type, []))

        for handler in handlers:
            if handler.can_handle(event):
                try:
                    handler.handle(event)
                except Exception as e:
                    self._logger.error(
                        f"Error handling event {event.event_type.value} with {handler.__class__.__name__}: {e}"
                    )


# ============================================================================
# MESSAGE QUEUE ABSTRACTION
# ============================================================================

class MessageQueue(ABC):
    """Abstract base class for message queues"""

    @abstractmethod
    def publish(self, topic: str, message: DomainEvent) -> bool:
        """Publish a message to a topic"""
        pass

    @abstractmethod
    def subscribe(self, topic: str, callback: Callable[[DomainEvent], None]) -> str:
        """Subscribe to messages from a topic"""
        pass

    @abstractmethod
    def unsubscribe(self, subscription_id: str) -> bool:
        """Unsubscribe from a topic"""
        pass

    def close(self) -> None:
        """Release connections"""
        pass


# ============================================================================
# REDIS MESSAGE QUEUE
# ============================================================================

class RedisMessageQueue(MessageQueue):
    """Redis-based message queue using Pub/Sub"""

    def __init__(self, redis_url: str = "redis://localhost:6379/0", client: Optional[redis.Redis] = None, **kwargs):
        self.redis_url = redis_url
        self._logger = logging.getLogger(self.__class__.__name__)

        # Redis connection
        self.redis_client = client or redis.Redis.from_url(redis_url, **kwargs)
        self.pubsub = self.redis_client.pubsub()

        # Subscription tracking
        self._subscriptions: Dict[str, str] = {}  # subscription_id -> topic
        self._callbacks: Dict[str, Callable[[DomainEvent], None]] = {}
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def publish(self, topic: str, message: DomainEvent) -> bool:
        """Publish a message to a Redis channel"""
        try:
            receivers = self.redis_client.publish(topic, message.to_json())
            self._logger.debug(f"Published message to {topic}: {message.message_id} ({receivers} receivers)")
            return True
        except redis.RedisError as e:
            self._logger.error(f"Error publishing to Redis: {e}")
            return False

    def subscribe(self, topic: str, callback: Callable[[DomainEvent], None]) -> str:
        """Subscribe to a Redis channel"""
        subscription_id = str(uuid4())

        self._subscriptions[subscription_id] = topic
        self._callbacks[subscription_id] = callback
        self.pubsub.subscribe(topic)

        if not self._running:
            self._start_listener()

        self._logger.debug(f"Subscribed to {topic} with ID {subscription_id}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Unsubscribe from a Redis channel"""
        topic = self._subscriptions.pop(subscription_id, None)
        if topic is None:
            return False
        self._callbacks.pop(subscription_id, None)

        # Unsubscribe from Redis if no more subscribers for this topic
        if topic not in self._subscriptions.values():
            self.pubsub.unsubscribe(topic)
            self._logger.debug(f"Unsubscribed from {topic}")

        return True

    def _start_listener(self):
        """Start the Redis message listener in a separate thread"""
        self._running = True
        self._thread = threading.Thread(target=self._listen, daemon=True)
        self._thread.start()
        self._logger.info("Started Redis message listener")

    def _listen(self):
        """Listen for Redis messages"""
        while self._running:
            try:
                message = self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message['type'] == 'message':
                    self._handle_message(message)
            except redis.RedisError as e:
                self._logger.error(f"Error in Redis listener: {e}")
                time.sleep(1)  # Avoid tight loop on error

    def _handle_message(self, redis_message: Dict[str, Any]):
        """Handle incoming Redis message"""
        topic = redis_message['channel']
        data = redis_message['data']
        if isinstance(topic, bytes):
            topic = topic.decode('utf-8')
        if isinstance(data, bytes):
            data = data.decode('utf-8')

        try:
            message = DomainEvent.from_json(data)
        except (ValueError, KeyError, TypeError) as e:
            self._logger.error(f"Discarding malformed message on {topic}: {e}")
            return

        for subscription_id, callback_topic in list(self._subscriptions.items()):
            if callback_topic == topic:
                try:
                    self._callbacks[subscription_id](message)
                except Exception as e:
                    self._logger.error(f"Error in callback for subscription {subscription_id}: {e}")

    def close(self):
        """Close Redis connections"""
        self._running = False
        if self._thread:
            self._thread.join(timeout=5.0)

        self.pubsub.close()
        self.redis_client.close()
        self._logger.info("Redis message queue closed")


# ============================================================================
# IN-MEMORY MESSAGE QUEUE (For Testing)
# ============================================================================

class InMemoryMessageQueue(MessageQueue):
    """In-memory message queue for testing"""

    def __init__(self):
        self._callbacks: Dict[str, Callable[[DomainEvent], None]] = {}
        self._subscriptions: Dict[str, str] = {}  # subscription_id -> topic
        self._messages: Dict[str, List[DomainEvent]] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def publish(self, topic: str, message: DomainEvent) -> bool:
        """Publish message to in-memory topic"""
        with self._lock:
            self._messages.setdefault(topic, []).append(message)
            callbacks = [
                self._callbacks[sid] for sid, t in self._subscriptions.items() if t == topic
            ]

        for callback in callbacks:
            try:
                callback(message)
            except Exception as e:
                self._logger.error(f"Error in callback for topic {topic}: {e}")

        self._logger.debug(f"Published to {topic}: {message.message_id}")
        return True

    def subscribe(self, topic: str, callback: Callable[[DomainEvent], None]) -> str:
        """Subscribe to in-memory topic"""
        subscription_id = str(uuid4())
        with self._lock:
            self._subscriptions[subscription_id] = topic
            self._callbacks[subscription_id] = callback
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Unsubscribe from topic"""
        with self._lock:
            if subscription_id not in self._subscriptions:
                return False
            del self._subscriptions[subscription_id]
            del self._callbacks[subscription_id]
            return True

    def get_messages(self, topic: str) -> List[DomainEvent]:
        """Get all messages for a topic (for testing)"""
        with self._lock:
            return list(self._messages.get(topic, []))


# ============================================================================
# EVENT PUBLISHER
# ============================================================================

class EventPublisher:
    """
    Publishes domain events to the in-process bus and, when configured, to a
    message queue topic
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        message_queue: Optional[MessageQueue] = None,
        topic: str = "parking_events"
    ):
        self.event_bus = event_bus or EventBus()
        self.message_queue = message_queue
        self.topic = topic
        self._logger = logging.getLogger(self.__class__.__name__)

    def publish(self, event: DomainEvent) -> None:
        """Deliver an event; failures are logged, never raised"""
        self.event_bus.publish(event)

        if self.message_queue is None:
            return

        try:
            if not self.message_queue.publish(self.topic, event):
                self._logger.warning(f"Event {event.event_type.value} ({event.message_id}) was not delivered")
        except Exception as e:
            self._logger.error(f"Error publishing event {event.event_type.value}: {e}")

    def close(self) -> None:
        if self.message_queue is not None:
            self.message_queue.close()


class MessageBrokerFactory:
    """Factory for creating message brokers"""

    @staticmethod
    def create_redis_broker(redis_url: str = "redis://localhost:6379/0", **kwargs) -> RedisMessageQueue:
        """Create Redis message broker"""
        return RedisMessageQueue(redis_url, **kwargs)

    @staticmethod
    def create_in_memory_broker() -> InMemoryMessageQueue:
        """Create in-memory message broker (for testing)"""
        return InMemoryMessageQueue()

    @staticmethod
    def create_publisher(backend: str = "memory", redis_url: str = "redis://localhost:6379/0",
                         topic: str = "parking_events") -> EventPublisher:
        """Create an event publisher with the configured broker"""
        if backend == "redis":
            broker = MessageBrokerFactory.create_redis_broker(redis_url)
        elif backend == "memory":
            broker = MessageBrokerFactory.create_in_memory_broker()
        elif backend == "none":
            broker = None
        else:
            raise ValueError(f"Unknown broker type: {backend}")

        return EventPublisher(event_bus=EventBus(), message_queue=broker, topic=topic)
