"""Upgrades: one-time and repeatable purchases with declarative effects."""
import logging
import time
from dataclasses import dataclass, field
from functools import singledispatch

from pixelsingularity import bignum, events
from pixelsingularity.bignum import D, ONE, ZERO
from pixelsingularity.production_pipeline import ADDITIVE, MULTIPLICATIVE, Multiplier
from pixelsingularity.resources import PurchaseResult

logger = logging.getLogger(__name__)

CATEGORIES = ('run', 'eternal', 'secret')
MAX_AFFORDABLE_CAP = 1000

# Effect targets that mean "every resource"
GLOBAL_TARGETS = ('', 'production', 'all')


def normalize_target(target):
    return '' if target in GLOBAL_TARGETS or target is None else target


# Effects

@dataclass(frozen=True)
class MultiplierEffect:
    target: str
    value: object
    scaling: str = 'none'  # none, linear or exponential
    scaling_factor: object = None


@dataclass(frozen=True)
class AdditiveEffect:
    target: str
    value: object
    scales_with_level: bool = True


@dataclass(frozen=True)
class UnlockEffect:
    unlock_id: str
    unlock_type: str = 'feature'  # resource, upgrade, producer or feature


@dataclass(frozen=True)
class ClickEffect:
    value: object
    mode: str = 'additive'  # additive or multiplicative


@dataclass(frozen=True)
class StartingBonusEffect:
    resource_id: str
    amount: object


@dataclass(frozen=True)
class PassiveEffect:
    bonus_id: str
    value: object


def effect_from_dict(data):
    """Build an effect from its JSON form."""
    kind = data.get('type')
    if kind == 'multiplier':
        return MultiplierEffect(
            target=normalize_target(data.get('target')),
            value=D(data['value']),
            scaling=data.get('scaling', 'none'),
            scaling_factor=D(data['scaling_factor']) if data.get('scaling_factor') is not None else None,
        )
    if kind == 'additive':
        return AdditiveEffect(normalize_target(data.get('target')), D(data['value']),
                              bool(data.get('scales_with_level', True)))
    if kind == 'unlock':
        return UnlockEffect(data['unlock_id'], data.get('unlock_type', 'feature'))
    if kind == 'click':
        return ClickEffect(D(data['value']), data.get('mode', 'additive'))
    if kind == 'starting_bonus':
        return StartingBonusEffect(data['resource_id'], D(data['amount']))
    if kind == 'passive':
        return PassiveEffect(data['bonus_id'], D(data['value']))
    raise ValueError(f"Unknown effect type: {kind}")


def multiplier_value(effect, level):
    """Value of a multiplier effect at a given level."""
    value = D(effect.value)
    if effect.scaling == 'linear':
        return bignum.add(ONE, bignum.mul(bignum.sub(value, ONE), level))
    if effect.scaling == 'exponential':
        factor = effect.scaling_factor if effect.scaling_factor is not None else value
        return bignum.pow(factor, level)
    return value


def additive_value(effect, level):
    if effect.scales_with_level:
        return bignum.mul(effect.value, level)
    return D(effect.value)


def effect_multiplier_id(upgrade_id, index):
    if index == 0:
        return f"upgrade_{upgrade_id}"
    return f"upgrade_{upgrade_id}_{index}"


@singledispatch
def apply_effect(effect, upgrade_id, level, pipeline, index=0):
    """Push one effect of an owned upgrade into the engine.

    Returns the UnlockEffect for unlocks so the caller can act on it,
    otherwise None.
    """
    raise TypeError(f"Unknown effect type: {type(effect).__name__}")


@apply_effect.register
def _(effect: MultiplierEffect, upgrade_id, level, pipeline, index=0):
    pipeline.add_multiplier(Multiplier(
        id=effect_multiplier_id(upgrade_id, index),
        name=upgrade_id,
        value=multiplier_value(effect, level),
        source='upgrade',
        stacking=MULTIPLICATIVE,
        resource_id=effect.target,
    ))
    return None


@apply_effect.register
def _(effect: AdditiveEffect, upgrade_id, level, pipeline, index=0):
    pipeline.add_multiplier(Multiplier(
        id=effect_multiplier_id(upgrade_id, index),
        name=upgrade_id,
        value=additive_value(effect, level),
        source='upgrade',
        stacking=ADDITIVE,
        resource_id=effect.target,
    ))
    return None


@apply_effect.register
def _(effect: UnlockEffect, upgrade_id, level, pipeline, index=0):
    return effect


# Click, passive and starting bonuses are read on demand rather than pushed.

@apply_effect.register
def _(effect: ClickEffect, upgrade_id, level, pipeline, index=0):
    return None


@apply_effect.register
def _(effect: StartingBonusEffect, upgrade_id, level, pipeline, index=0):
    return None


@apply_effect.register
def _(effect: PassiveEffect, upgrade_id, level, pipeline, index=0):
    return None


@dataclass
class UpgradeDefinition:
    id: str
    name: str
    base_cost: object
    currency: str = 'pixels'
    description: str = ''
    cost_multiplier: object = '1.15'
    effects: list = field(default_factory=list)
    min_phase: int = 1
    unlock_conditions: list = field(default_factory=list)
    requires: list = field(default_factory=list)
    hidden: bool = False
    category: str = 'run'
    display_order: int = 0
    max_level: int = None  # None is one-time, 0 is unlimited

    def __post_init__(self):
        self.base_cost = D(self.base_cost)
        self.cost_multiplier = D(self.cost_multiplier)

    @property
    def is_repeatable(self):
        if self.max_level is None:
            return False
        return self.max_level == 0 or self.max_level > 1


class UpgradeManager:
    """Owns upgrade levels and the effects they contribute."""

    def __init__(self, event_bus, resources, pipeline, evaluator, clock=None):
        self.event_bus = event_bus
        self.resources = resources
        self.pipeline = pipeline
        self.evaluator = evaluator
        self.clock = clock or (lambda: int(time.time() * 1000))
        self.definitions = {}
        self.levels = {}
        self.unlocked = set()
        self.affordable = set()
        self.total_spent = {}
        self.first_purchase_times = {}
        self.current_phase = 1
        self.on_unlock = None  # callable(unlock_type, unlock_id)

    def register_upgrade(self, definition):
        if definition.category not in CATEGORIES:
            raise ValueError(f"Unknown upgrade category: {definition.category}")
        self.definitions[definition.id] = definition
        self.levels.setdefault(definition.id, 0)

    def register_upgrades(self, definitions):
        for definition in definitions:
            self.register_upgrade(definition)

    def get_definition(self, upgrade_id):
        return self.definitions.get(upgrade_id)

    def init(self):
        """Start from nothing owned and nothing unlocked."""
        self.levels = {uid: 0 for uid in self.definitions}
        self.unlocked = set()
        self.affordable = set()
        self.total_spent = {}
        self.first_purchase_times = {}
        self.current_phase = 1
        self.pipeline.clear_by_source('upgrade')
        self.check_unlocks()

    # Costs

    def is_at_max_level(self, upgrade_id):
        definition = self.definitions[upgrade_id]
        level = self.levels.get(upgrade_id, 0)
        if not definition.is_repeatable:
            return level >= 1
        if definition.max_level == 0:
            return False
        return level >= definition.max_level

    def _remaining_levels(self, upgrade_id):
        definition = self.definitions[upgrade_id]
        level = self.levels.get(upgrade_id, 0)
        if not definition.is_repeatable:
            return max(0, 1 - level)
        if definition.max_level == 0:
            return None
        return max(0, definition.max_level - level)

    def calculate_cost(self, upgrade_id, level=None):
        """Cost of buying the upgrade when it sits at ``level``."""
        definition = self.definitions.get(upgrade_id)
        if definition is None:
            return ZERO
        if not definition.is_repeatable:
            return definition.base_cost
        if level is None:
            level = self.levels.get(upgrade_id, 0)
        return bignum.exponential_cost(definition.base_cost, definition.cost_multiplier, level)

    def calculate_cost_for_amount(self, upgrade_id, amount):
        definition = self.definitions.get(upgrade_id)
        if definition is None or amount <= 0:
            return ZERO
        if not definition.is_repeatable:
            return definition.base_cost
        return bignum.bulk_cost(definition.base_cost, definition.cost_multiplier,
                                self.levels.get(upgrade_id, 0), amount)

    def get_next_cost(self, upgrade_id):
        return self.calculate_cost(upgrade_id)

    def can_afford(self, upgrade_id, amount=1):
        definition = self.definitions.get(upgrade_id)
        if definition is None:
            return False
        return self.resources.can_afford(definition.currency,
                                         self.calculate_cost_for_amount(upgrade_id, amount))

    def get_max_affordable(self, upgrade_id):
        """Largest affordable amount, found by binary search."""
        definition = self.definitions.get(upgrade_id)
        if definition is None or self.is_at_max_level(upgrade_id):
            return 0
        remaining = self._remaining_levels(upgrade_id)
        high = MAX_AFFORDABLE_CAP if remaining is None else min(MAX_AFFORDABLE_CAP, remaining)
        available = self.resources.get_amount(definition.currency)
        low = 0
        while low < high:
            mid = (low + high + 1) // 2
            if self.calculate_cost_for_amount(upgrade_id, mid) <= available:
                low = mid
            else:
                high = mid - 1
        return low

    # Purchasing

    def purchase(self, upgrade_id, amount=1, buy_max=False):
        """Buy levels of an upgrade; failures come back as a failed result."""
        definition = self.definitions.get(upgrade_id)
        if definition is None:
            return PurchaseResult.failed(f"Unknown upgrade: {upgrade_id}")
        if upgrade_id not in self.unlocked:
            return PurchaseResult.failed(f"Upgrade {upgrade_id} is locked")
        if self.is_at_max_level(upgrade_id):
            return PurchaseResult.failed(f"Upgrade {upgrade_id} is at max level")

        if buy_max:
            amount = self.get_max_affordable(upgrade_id)
            if amount <= 0:
                return PurchaseResult.failed("Cannot afford")
        if not definition.is_repeatable:
            amount = 1
        if amount <= 0:
            return PurchaseResult.failed("Amount must be positive")
        remaining = self._remaining_levels(upgrade_id)
        if remaining is not None and amount > remaining:
            return PurchaseResult.failed(f"Upgrade {upgrade_id} is at max level")

        cost = self.calculate_cost_for_amount(upgrade_id, amount)
        if not self.resources.spend(definition.currency, cost):
            return PurchaseResult.failed("Cannot afford")

        previous_level = self.levels.get(upgrade_id, 0)
        self.levels[upgrade_id] = previous_level + amount
        self.total_spent[upgrade_id] = bignum.add(self.total_spent.get(upgrade_id, ZERO), cost)
        if upgrade_id not in self.first_purchase_times:
            self.first_purchase_times[upgrade_id] = self.clock()

        unlocks = self.apply_effects(upgrade_id)
        if previous_level == 0:
            for unlock in unlocks:
                self._dispatch_unlock(unlock)

        self.event_bus.publish(events.UPGRADE_PURCHASED, {
            'upgradeId': upgrade_id,
            'cost': cost,
            'level': self.levels[upgrade_id],
        })
        return PurchaseResult(success=True, amount_purchased=amount, cost_paid=cost)

    def apply_effects(self, upgrade_id):
        """Re-register an owned upgrade's effects at its current level."""
        definition = self.definitions[upgrade_id]
        level = self.levels.get(upgrade_id, 0)
        unlocks = []
        if level <= 0:
            return unlocks
        for index, effect in enumerate(definition.effects):
            result = apply_effect(effect, upgrade_id, level, self.pipeline, index)
            if result is not None:
                unlocks.append(result)
        return unlocks

    def _remove_effects(self, upgrade_id):
        definition = self.definitions[upgrade_id]
        for index in range(len(definition.effects)):
            self.pipeline.remove_multiplier(effect_multiplier_id(upgrade_id, index))

    def _dispatch_unlock(self, unlock):
        if self.on_unlock is not None:
            self.on_unlock(unlock.unlock_type, unlock.unlock_id)

    # Unlocking

    def tick(self, dt):
        self.check_unlocks()
        self.affordable = {
            uid for uid in self.unlocked
            if not self.is_at_max_level(uid) and self.can_afford(uid)
        }

    def check_unlocks(self):
        for upgrade_id, definition in self.definitions.items():
            if upgrade_id in self.unlocked or definition.min_phase > self.current_phase:
                continue
            if not all(self.levels.get(req, 0) > 0 for req in definition.requires):
                continue
            if definition.unlock_conditions:
                if self.evaluator.evaluate_all(definition.unlock_conditions):
                    self.unlock(upgrade_id)
            elif not definition.hidden:
                self.unlock(upgrade_id)

    def unlock(self, upgrade_id):
        definition = self.definitions.get(upgrade_id)
        if definition is None or upgrade_id in self.unlocked:
            return
        self.unlocked.add(upgrade_id)
        self.event_bus.publish(events.UPGRADE_UNLOCKED, {
            'upgradeId': upgrade_id,
            'name': definition.name,
            'category': definition.category,
        })

    def set_phase(self, phase):
        self.current_phase = phase
        self.check_unlocks()

    # Queries

    def get_level(self, upgrade_id):
        return self.levels.get(upgrade_id, 0)

    def is_owned(self, upgrade_id):
        return self.levels.get(upgrade_id, 0) > 0

    def is_unlocked(self, upgrade_id):
        return upgrade_id in self.unlocked

    def get_by_category(self, category):
        return [d for d in self.definitions.values() if d.category == category]

    def get_visible_upgrades(self):
        visible = [self.definitions[uid] for uid in self.unlocked]
        return sorted(visible, key=lambda d: d.display_order)

    def get_total_spent(self, upgrade_id=None):
        if upgrade_id is not None:
            return self.total_spent.get(upgrade_id, ZERO)
        return bignum.dsum(self.total_spent.values())

    def total_purchased(self):
        return sum(self.levels.values())

    def get_active_effects(self, effect_type=None):
        """(upgrade_id, effect, level) for every effect of an owned upgrade."""
        active = []
        for upgrade_id, definition in self.definitions.items():
            level = self.levels.get(upgrade_id, 0)
            if level <= 0:
                continue
            for effect in definition.effects:
                if effect_type is None or isinstance(effect, effect_type):
                    active.append((upgrade_id, effect, level))
        return active

    def get_multiplier(self, target=''):
        target = normalize_target(target)
        return bignum.dprod(
            multiplier_value(effect, level)
            for _, effect, level in self.get_active_effects(MultiplierEffect)
            if effect.target == target
        )

    def get_additive_bonus(self, target=''):
        target = normalize_target(target)
        return bignum.dsum(
            additive_value(effect, level)
            for _, effect, level in self.get_active_effects(AdditiveEffect)
            if effect.target == target
        )

    def is_feature_unlocked(self, feature):
        return any(effect.unlock_id == feature
                   for _, effect, _ in self.get_active_effects(UnlockEffect))

    def get_click_bonus_components(self):
        """(additive, multiplicative) click bonuses from owned upgrades.

        Additive click effects add value x level. Multiplicative ones compound
        per level as value ** level.
        """
        additive = ZERO
        multiplicative = ONE
        for _, effect, level in self.get_active_effects(ClickEffect):
            if effect.mode == 'multiplicative':
                multiplicative = bignum.mul(multiplicative, bignum.pow(effect.value, level))
            else:
                additive = bignum.add(additive, bignum.mul(effect.value, level))
        return additive, multiplicative

    def get_passive_total(self, bonus_id):
        return bignum.dsum(
            bignum.mul(effect.value, level)
            for _, effect, level in self.get_active_effects(PassiveEffect)
            if effect.bonus_id == bonus_id
        )

    def to_dict(self, upgrade_id):
        definition = self.definitions[upgrade_id]
        return {
            'id': upgrade_id,
            'name': definition.name,
            'category': definition.category,
            'level': self.get_level(upgrade_id),
            'maxLevel': definition.max_level,
            'nextCost': bignum.serialize(self.get_next_cost(upgrade_id)),
            'currency': definition.currency,
            'affordable': upgrade_id in self.affordable,
            'atMaxLevel': self.is_at_max_level(upgrade_id),
        }

    # Rebirth and persistence

    def reset(self):
        """Drop run upgrades for a rebirth and apply starting bonuses."""
        for upgrade_id, definition in self.definitions.items():
            if definition.category != 'run':
                continue
            self._remove_effects(upgrade_id)
            self.levels[upgrade_id] = 0
            self.unlocked.discard(upgrade_id)
            self.total_spent.pop(upgrade_id, None)
            self.first_purchase_times.pop(upgrade_id, None)
        self.current_phase = 1
        self.affordable = set()
        self.check_unlocks()
        self.apply_starting_bonuses()

    def apply_starting_bonuses(self):
        for _, effect, level in self.get_active_effects(StartingBonusEffect):
            self.resources.add(effect.resource_id, bignum.mul(effect.amount, level), 'starting_bonus')

    def _levels_for(self, category):
        return {
            uid: level for uid, level in self.levels.items()
            if level > 0 and self.definitions[uid].category == category
        }

    def serialize(self):
        return {
            'runLevels': self._levels_for('run'),
            'eternalLevels': self._levels_for('eternal'),
            'secretLevels': self._levels_for('secret'),
            'unlocked': sorted(self.unlocked),
            'totalSpent': {uid: bignum.serialize(v) for uid, v in self.total_spent.items()},
            'firstPurchaseTimes': dict(self.first_purchase_times),
        }

    def deserialize(self, data):
        """Restore levels and re-apply every owned upgrade's effects."""
        data = data or {}
        for key in ('runLevels', 'eternalLevels', 'secretLevels'):
            for upgrade_id, level in (data.get(key) or {}).items():
                if upgrade_id in self.definitions:
                    self.levels[upgrade_id] = max(0, int(level))
        for upgrade_id in data.get('unlocked') or []:
            if upgrade_id in self.definitions:
                self.unlocked.add(upgrade_id)
        for upgrade_id, value in (data.get('totalSpent') or {}).items():
            self.total_spent[upgrade_id] = bignum.deserialize(value)
        self.first_purchase_times.update(data.get('firstPurchaseTimes') or {})
        for upgrade_id in self.definitions:
            self._remove_effects(upgrade_id)
            self.apply_effects(upgrade_id)
