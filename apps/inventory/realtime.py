# apps/inventory/realtime.py
"""
Realtime pub/sub for inventory events.

Two topics are used:
    inventory-alerts   one message per published alert
    inventory-changes  one message per ledger mutation (lot created/updated)

ChannelsRealtimeChannel fans each message out to in-process subscribers
and forwards it to the Django Channels group of the same name, so
websocket consumers joined to that group receive it too.

Broadcast failures are logged and never propagate to the caller.
"""
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

ALERTS_TOPIC = 'inventory-alerts'
CHANGES_TOPIC = 'inventory-changes'


class RealtimeChannel(ABC):

    @abstractmethod
    def broadcast(self, topic, payload):
        """Publish a JSON-serializable payload on a topic."""

    @abstractmethod
    def subscribe(self, topic, callback):
        """
        Register callback(payload) for a topic.

        Returns:
            Callable that removes the subscription (safe to call twice)
        """


class LocalRealtimeChannel(RealtimeChannel):
    """In-process fan-out only."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = defaultdict(list)

    def subscribe(self, topic, callback):
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def subscriber_count(self, topic):
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def broadcast(self, topic, payload):
        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))
        for callback in callbacks:
            try:
                callback(payload)
            except Exception:
                logger.warning(f'Realtime subscriber failed on {topic}', exc_info=True)


def _get_channel_layer():
    """Get the channel layer, returning None if unavailable."""
    try:
        layer = get_channel_layer()
        if layer is None:
            logger.debug('Channel layer is not configured')
        return layer
    except Exception:
        logger.debug('Failed to get channel layer', exc_info=True)
        return None


class ChannelsRealtimeChannel(LocalRealtimeChannel):
    """
    Local fan-out plus Django Channels group broadcast.

    The group message type is the topic with dots ('inventory.alerts'),
    so a consumer handles it in an `inventory_alerts` method.

    Usage:
        channel = ChannelsRealtimeChannel()
        unsubscribe = channel.subscribe(ALERTS_TOPIC, print)
        channel.broadcast(ALERTS_TOPIC, alert.to_dict())
    """

    def __init__(self, layer=None):
        super().__init__()
        self._layer = layer

    @property
    def layer(self):
        if self._layer is None:
            self._layer = _get_channel_layer()
        return self._layer

    def broadcast(self, topic, payload):
        super().broadcast(topic, payload)

        layer = self.layer
        if not layer:
            return

        try:
            async_to_sync(layer.group_send)(
                topic,
                {
                    'type': topic.replace('-', '.'),
                    'data': payload,
                }
            )
        except Exception:
            logger.warning(f'Failed to broadcast on {topic}', exc_info=True)
