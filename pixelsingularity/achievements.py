"""Achievement tracking and rewards."""
import logging
import time
from collections import deque
from dataclasses import dataclass, field

from pixelsingularity import bignum, events
from pixelsingularity.bignum import D, ZERO

logger = logging.getLogger(__name__)

TIERS = ('common', 'uncommon', 'rare', 'epic', 'legendary', 'secret')
CHECK_INTERVAL = 2.0  # seconds
MAX_NOTIFICATIONS = 10


@dataclass
class AchievementReward:
    primordial_pixels: object = ZERO
    unlocks: list = field(default_factory=list)

    def __post_init__(self):
        self.primordial_pixels = D(self.primordial_pixels)


@dataclass
class AchievementDefinition:
    id: str
    name: str
    condition: object
    description: str = ''
    tier: str = 'common'
    reward: AchievementReward = field(default_factory=AchievementReward)
    hidden: bool = False
    prerequisites: list = field(default_factory=list)


class AchievementManager:
    """Checks achievement conditions and hands out rewards."""

    def __init__(self, event_bus, evaluator, definitions=(), reward_context=None, clock=None):
        self.event_bus = event_bus
        self.evaluator = evaluator
        self.definitions = {}
        self.reward_context = reward_context
        self.clock = clock or (lambda: int(time.time() * 1000))
        self.unlocked = {}  # {achievement_id: unlocked_at}
        self.progress = {}
        self.notifications = deque(maxlen=MAX_NOTIFICATIONS)
        self.needs_check = False
        self._since_check = 0.0
        self._subscriptions = []
        for definition in definitions:
            self.register(definition)

    def register(self, definition):
        if definition.tier not in TIERS:
            raise ValueError(f"Unknown achievement tier: {definition.tier}")
        self.definitions[definition.id] = definition

    def init(self):
        self.destroy()
        for topic in (events.PHASE_ENTERED, events.UPGRADE_PURCHASED, events.PRODUCER_PURCHASED,
                      events.CHOICE_MADE, events.REBIRTH_COMPLETED):
            self._subscriptions.append(self.event_bus.subscribe(topic, self._on_milestone))
        self._subscriptions.append(
            self.event_bus.subscribe(events.RESOURCE_CHANGED, self._on_resource_changed))

    def clear(self):
        """Forget every unlock and all progress."""
        self.unlocked = {}
        self.progress = {}
        self.notifications.clear()
        self.needs_check = False
        self._since_check = 0.0

    def destroy(self):
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []

    def _on_milestone(self, payload):
        self.check()

    def _on_resource_changed(self, payload):
        self.needs_check = True

    def tick(self, dt):
        self._since_check += dt
        if self.needs_check or self._since_check >= CHECK_INTERVAL:
            self.check()

    def check(self):
        """Evaluate every locked achievement and unlock the ones that are met."""
        self.needs_check = False
        self._since_check = 0.0
        for achievement_id, definition in self.definitions.items():
            if achievement_id in self.unlocked:
                continue
            if not all(req in self.unlocked for req in definition.prerequisites):
                continue
            result = self.evaluator.evaluate_with_details(definition.condition)
            if result.progress is not None:
                self.progress[achievement_id] = result.progress
            if result.met:
                self._unlock(definition)

    def _unlock(self, definition):
        self.unlocked[definition.id] = self.clock()
        self.progress[definition.id] = 1.0
        reward = definition.reward
        if self.reward_context is not None:
            if reward.primordial_pixels > 0:
                self.reward_context.add_primordial_pixels(reward.primordial_pixels)
            for unlock_id in reward.unlocks:
                self.reward_context.apply_unlock(unlock_id)
        payload = {
            'achievementId': definition.id,
            'name': definition.name,
            'description': definition.description,
            'tier': definition.tier,
        }
        self.notifications.append(payload)
        logger.info("Achievement unlocked: %s", definition.id)
        self.event_bus.publish(events.ACHIEVEMENT_UNLOCKED, payload)

    def has_achievement(self, achievement_id):
        return achievement_id in self.unlocked

    def manual_unlock(self, achievement_id):
        definition = self.definitions.get(achievement_id)
        if definition is None or achievement_id in self.unlocked:
            return False
        self._unlock(definition)
        return True

    def set_progress(self, achievement_id, progress):
        if achievement_id in self.definitions:
            self.progress[achievement_id] = min(1.0, max(0.0, float(progress)))

    def get_progress(self, achievement_id):
        if achievement_id in self.unlocked:
            return 1.0
        return self.progress.get(achievement_id, 0.0)

    def pop_notifications(self):
        notifications = list(self.notifications)
        self.notifications.clear()
        return notifications

    def unlocked_count(self):
        return len(self.unlocked)

    def get_visible(self):
        return [
            d for aid, d in self.definitions.items()
            if not d.hidden or aid in self.unlocked
        ]

    def total_reward(self):
        return bignum.dsum(
            self.definitions[aid].reward.primordial_pixels
            for aid in self.unlocked if aid in self.definitions
        )

    def serialize(self):
        return {
            'unlocked': list(self.unlocked.keys()),
            'unlockedAt': dict(self.unlocked),
            'progress': dict(self.progress),
        }

    def deserialize(self, data):
        data = data or {}
        unlocked_at = data.get('unlockedAt') or {}
        for achievement_id in data.get('unlocked') or []:
            self.unlocked[achievement_id] = unlocked_at.get(achievement_id)
        for achievement_id, value in (data.get('progress') or {}).items():
            try:
                self.progress[achievement_id] = min(1.0, max(0.0, float(value)))
            except (TypeError, ValueError):
                continue
