"""Event bus for decoupled communication between engine components."""
import asyncio
import itertools
import logging

from pixelsingularity.errors import EventTimeoutError

logger = logging.getLogger(__name__)

# Event topics
GAME_INITIALIZED = 'game_initialized'
GAME_PAUSED = 'game_paused'
GAME_RESUMED = 'game_resumed'
GAME_SAVED = 'game_saved'
TICK = 'tick'
RESOURCE_CHANGED = 'resource_changed'
RESOURCE_UNLOCKED = 'resource_unlocked'
PRODUCTION_CHANGED = 'production_changed'
PHASE_UNLOCKED = 'phase_unlocked'
PHASE_ENTERED = 'phase_entered'
PHASE_TRANSITION = 'phase_transition'
UPGRADE_PURCHASED = 'upgrade_purchased'
UPGRADE_UNLOCKED = 'upgrade_unlocked'
PRODUCER_PURCHASED = 'producer_purchased'
PRODUCER_UNLOCKED = 'producer_unlocked'
MULTIPLIER_CHANGED = 'multiplier_changed'
ACHIEVEMENT_UNLOCKED = 'achievement_unlocked'
SECRET_DISCOVERED = 'secret_discovered'
CHOICE_MADE = 'choice_made'
REBIRTH_STARTED = 'rebirth_started'
REBIRTH_COMPLETED = 'rebirth_completed'
OFFLINE_GAINS_CALCULATED = 'offline_gains_calculated'


class _Listener:
    """A registered handler."""

    __slots__ = ('handler', 'once', 'priority', 'order', 'removed')

    def __init__(self, handler, once, priority, order):
        self.handler = handler
        self.once = once
        self.priority = priority
        self.order = order
        self.removed = False


class EventBus:
    """Synchronous publish/subscribe bus with priorities and one-shot handlers."""

    def __init__(self, debug=False):
        self._listeners = {}  # {topic: [_Listener, ...]} kept sorted
        self._publish_counts = {}
        self._sequence = itertools.count()
        self.debug = debug

    def subscribe(self, topic, handler, once=False, priority=0):
        """Register a handler and return a callable that removes it."""
        listener = _Listener(handler, once, priority, next(self._sequence))
        listeners = list(self._listeners.get(topic, []))
        listeners.append(listener)
        # Higher priority first; equal priorities keep registration order
        listeners.sort(key=lambda l: (-l.priority, l.order))
        self._listeners[topic] = listeners

        def unsubscribe():
            self._remove(topic, listener)

        return unsubscribe

    on = subscribe

    def once(self, topic, handler, priority=0):
        """Register a handler that runs for the next publish only."""
        return self.subscribe(topic, handler, once=True, priority=priority)

    def _remove(self, topic, listener):
        listener.removed = True
        listeners = self._listeners.get(topic)
        if not listeners:
            return
        # Replace rather than mutate so an in-flight dispatch keeps its snapshot
        remaining = [l for l in listeners if l is not listener]
        if remaining:
            self._listeners[topic] = remaining
        else:
            del self._listeners[topic]

    def publish(self, topic, payload=None):
        """Dispatch payload to every current listener of topic."""
        self._publish_counts[topic] = self._publish_counts.get(topic, 0) + 1
        if self.debug:
            logger.debug("publish %s %r", topic, payload)

        snapshot = self._listeners.get(topic)
        if not snapshot:
            return

        for listener in snapshot:
            if listener.once:
                if listener.removed:
                    continue
                self._remove(topic, listener)
            try:
                listener.handler(payload)
            except Exception:
                logger.exception("Error in event handler for %s", topic)

    emit = publish

    def unsubscribe_all(self, topic=None):
        """Remove the listeners of one topic, or of every topic."""
        if topic is None:
            self._listeners.clear()
        else:
            self._listeners.pop(topic, None)

    def clear(self):
        self.unsubscribe_all()

    def listener_count(self, topic=None):
        if topic is None:
            return sum(len(listeners) for listeners in self._listeners.values())
        return len(self._listeners.get(topic, []))

    def registered_topics(self):
        return list(self._listeners.keys())

    def publish_count(self, topic):
        return self._publish_counts.get(topic, 0)

    def set_debug(self, enabled):
        self.debug = bool(enabled)

    async def wait_for(self, topic, timeout=0):
        """Wait for the next publish to topic and return its payload.

        ``timeout`` is in milliseconds; zero or None waits forever.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def resolve(payload):
            if not future.done():
                future.set_result(payload)

        unsubscribe = self.once(topic, resolve)
        try:
            if timeout:
                return await asyncio.wait_for(future, timeout / 1000.0)
            return await future
        except asyncio.TimeoutError:
            raise EventTimeoutError(topic, timeout) from None
        finally:
            unsubscribe()
