"""Secret discoveries: hidden content found through flags, stats and timing.

Secrets work like achievements but are never listed up front. Their
conditions mix the ordinary condition nodes with a few leaves of their own
(flags, named statistics, phase comparisons and the hour of day), which the
manager registers on the shared ConditionEvaluator.
"""
import logging
import operator
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from pixelsingularity import bignum, events
from pixelsingularity.bignum import D, ZERO
from pixelsingularity.conditions import ConditionResult, PhaseCondition, condition_from_dict

logger = logging.getLogger(__name__)

SECRET_TYPES = ('easter_egg', 'hidden_mechanic', 'meta_secret', 'glitch')
CHECK_INTERVAL = 3.0  # seconds
MAX_NOTIFICATIONS = 10

COMPARISONS = {
    '>=': operator.ge,
    '<=': operator.le,
    '>': operator.gt,
    '<': operator.lt,
    '=': operator.eq,
    '!=': operator.ne,
}


def _check_operator(op):
    if op not in COMPARISONS:
        raise ValueError(f"Unknown comparison operator: {op}")


@dataclass(frozen=True)
class FlagCondition:
    """A flag is set; with a value, the flag must equal it."""
    flag: str
    value: object = None
    description: str = None


@dataclass(frozen=True)
class StatCondition:
    stat: str
    operator: str
    value: float
    description: str = None

    def __post_init__(self):
        _check_operator(self.operator)


@dataclass(frozen=True)
class PhaseCompareCondition:
    operator: str
    phase: int
    description: str = None

    def __post_init__(self):
        _check_operator(self.operator)


@dataclass(frozen=True)
class HourCondition:
    """Local hour of day, 0-23."""
    operator: str
    hour: int
    description: str = None

    def __post_init__(self):
        _check_operator(self.operator)


def _phase_node(data):
    if 'operator' in data:
        return PhaseCompareCondition(data['operator'], int(data['phase']), data.get('description'))
    return PhaseCondition(int(data['phase']), bool(data.get('completed', False)), data.get('description'))


SECRET_CONDITION_PARSERS = {
    'flag': lambda d: FlagCondition(d['flag'], d.get('value'), d.get('description')),
    'stat': lambda d: StatCondition(d['stat'], d['operator'], float(d['value']), d.get('description')),
    'phase': _phase_node,
    'hour': lambda d: HourCondition(d['operator'], int(d['hour']), d.get('description')),
}


def secret_condition_from_dict(data):
    return condition_from_dict(data, SECRET_CONDITION_PARSERS)


@dataclass
class SecretReward:
    primordial_pixels: object = ZERO
    unlocks: list = field(default_factory=list)
    flag: str = None

    def __post_init__(self):
        self.primordial_pixels = D(self.primordial_pixels)


@dataclass
class SecretDefinition:
    id: str
    name: str
    condition: object
    description: str = ''
    hint: str = ''
    type: str = 'easter_egg'
    reward: SecretReward = field(default_factory=SecretReward)
    reveal_text: list = field(default_factory=list)


class SecretManager:
    """Watches for secret conditions and hands out their rewards.

    ``reward_context`` supplies rewards and built-in statistics:
    ``add_primordial_pixels(amount)``, ``apply_unlock(unlock_id)`` and
    ``get_secret_stat(name)`` (None for names it does not track, which then
    fall back to the custom stats kept here).
    """

    def __init__(self, event_bus, evaluator, definitions=(), reward_context=None,
                 clock=None, hour=None):
        self.event_bus = event_bus
        self.evaluator = evaluator
        self.definitions = {}
        self.reward_context = reward_context
        self.clock = clock or (lambda: int(time.time() * 1000))
        self.hour = hour or (lambda: datetime.now().hour)
        self.discovered = {}  # {secret_id: discovered_at}
        self.flags = {}
        self.stats = {}
        self.session_discoveries = set()
        self.notifications = deque(maxlen=MAX_NOTIFICATIONS)
        self.needs_check = False
        self._since_check = 0.0
        self._subscriptions = []
        for definition in definitions:
            self.register(definition)

        evaluator.register_handler(FlagCondition, self._flag)
        evaluator.register_handler(StatCondition, self._stat)
        evaluator.register_handler(PhaseCompareCondition, self._phase_compare)
        evaluator.register_handler(HourCondition, self._hour)

    def register(self, definition):
        if definition.type not in SECRET_TYPES:
            raise ValueError(f"Unknown secret type: {definition.type}")
        self.definitions[definition.id] = definition

    def init(self):
        self.destroy()
        for topic in (events.PHASE_ENTERED, events.CHOICE_MADE, events.RESOURCE_CHANGED,
                      events.UPGRADE_PURCHASED, events.REBIRTH_COMPLETED):
            self._subscriptions.append(self.event_bus.subscribe(topic, self._on_change))

    def destroy(self):
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []

    def clear(self):
        """Forget every discovery, flag and stat."""
        self.discovered = {}
        self.flags = {}
        self.stats = {}
        self.reset()

    def reset(self):
        # Discoveries survive a rebirth; only session bookkeeping restarts.
        self.session_discoveries = set()
        self.notifications.clear()
        self.needs_check = False
        self._since_check = 0.0

    def _on_change(self, payload):
        self.needs_check = True

    def tick(self, dt):
        self._since_check += dt
        if self.needs_check or self._since_check >= CHECK_INTERVAL:
            self.check()

    def check(self):
        """Discover every secret whose condition now holds."""
        self.needs_check = False
        self._since_check = 0.0
        found = [
            definition for secret_id, definition in self.definitions.items()
            if secret_id not in self.discovered and self.evaluator.evaluate(definition.condition)
        ]
        for definition in found:
            if definition.id not in self.discovered:
                self._discover(definition)

    def _discover(self, definition):
        self.discovered[definition.id] = self.clock()
        self.session_discoveries.add(definition.id)
        reward = definition.reward
        if self.reward_context is not None:
            if reward.primordial_pixels > 0:
                self.reward_context.add_primordial_pixels(reward.primordial_pixels)
            for unlock_id in reward.unlocks:
                self.reward_context.apply_unlock(unlock_id)
        if reward.flag:
            self.flags[reward.flag] = True
        payload = {
            'secretId': definition.id,
            'name': definition.name,
            'description': definition.description,
            'type': definition.type,
            'revealText': list(definition.reveal_text),
        }
        self.notifications.append(payload)
        logger.info("Secret discovered: %s", definition.id)
        self.event_bus.publish(events.SECRET_DISCOVERED, payload)

    def discover(self, secret_id):
        """Reveal a secret directly; False for unknown or already found ones."""
        definition = self.definitions.get(secret_id)
        if definition is None:
            logger.warning("Secret not found: %s", secret_id)
            return False
        if secret_id in self.discovered:
            return False
        self._discover(definition)
        return True

    # Flags and stats

    def set_flag(self, flag, value=True):
        self.flags[flag] = value
        self.check()

    def get_flag(self, flag):
        return self.flags.get(flag)

    def has_flag(self, flag):
        return bool(self.flags.get(flag))

    def set_stat(self, stat, value):
        self.stats[stat] = value
        self.needs_check = True

    def increment_stat(self, stat, delta=1):
        self.stats[stat] = self.stats.get(stat, 0) + delta
        self.needs_check = True

    def get_stat(self, stat):
        return self.stats.get(stat, 0)

    def _stat_value(self, stat):
        if self.reward_context is not None:
            value = self.reward_context.get_secret_stat(stat)
            if value is not None:
                return value
        return self.stats.get(stat)

    # Condition leaves

    def _flag(self, c):
        value = self.flags.get(c.flag)
        if value is None:
            met = False
        elif c.value is not None:
            met = value == c.value
        else:
            met = bool(value)
        return ConditionResult(met=met, progress=1.0 if met else 0.0, description=f"Flag {c.flag}")

    def _stat(self, c):
        value = self._stat_value(c.stat)
        met = value is not None and COMPARISONS[c.operator](value, c.value)
        return ConditionResult(met=met, progress=1.0 if met else 0.0,
                               description=f"{c.stat} {c.operator} {c.value:g}")

    def _phase_compare(self, c):
        met = COMPARISONS[c.operator](self.evaluator.context.get_current_phase(), c.phase)
        return ConditionResult(met=met, progress=1.0 if met else 0.0,
                               description=f"Phase {c.operator} {c.phase}")

    def _hour(self, c):
        met = COMPARISONS[c.operator](self.hour(), c.hour)
        return ConditionResult(met=met, progress=1.0 if met else 0.0,
                               description=f"Hour {c.operator} {c.hour}")

    # Queries

    def is_discovered(self, secret_id):
        return secret_id in self.discovered

    def is_new_discovery(self, secret_id):
        return secret_id in self.session_discoveries

    def discovery_time(self, secret_id):
        return self.discovered.get(secret_id)

    def get_discovered(self):
        return [self.definitions[sid] for sid in self.discovered if sid in self.definitions]

    def get_discovered_by_type(self, secret_type):
        return [d for d in self.get_discovered() if d.type == secret_type]

    def get_undiscovered_hints(self):
        return {
            sid: d.hint for sid, d in self.definitions.items()
            if sid not in self.discovered
        }

    def discovered_count(self):
        return len(self.discovered)

    def discovery_percentage(self):
        if not self.definitions:
            return 0.0
        return self.discovered_count() / len(self.definitions) * 100

    def total_reward(self):
        return bignum.dsum(
            self.definitions[sid].reward.primordial_pixels
            for sid in self.discovered if sid in self.definitions
        )

    def pop_notifications(self):
        notifications = list(self.notifications)
        self.notifications.clear()
        return notifications

    def serialize(self):
        return {
            'discovered': list(self.discovered.keys()),
            'discoveredAt': dict(self.discovered),
            'flags': dict(self.flags),
            'stats': dict(self.stats),
        }

    def deserialize(self, data):
        data = data or {}
        discovered_at = data.get('discoveredAt') or {}
        for secret_id in data.get('discovered') or []:
            self.discovered[secret_id] = discovered_at.get(secret_id)
        self.flags.update(data.get('flags') or {})
        self.stats.update(data.get('stats') or {})
