"""Producers: buildings bought with resources that generate resources over time."""
import logging
import time
from dataclasses import dataclass

from pixelsingularity import bignum, events
from pixelsingularity.bignum import D, ZERO
from pixelsingularity.production_pipeline import Multiplier
from pixelsingularity.resources import PurchaseResult

logger = logging.getLogger(__name__)

CLICK_BOOSTER = 'click_booster'


@dataclass
class ProducerMultiplier:
    """A producer that scales production instead of generating it."""
    per_level: object
    resource_id: str = ''
    priority: int = 10

    def __post_init__(self):
        self.per_level = D(self.per_level)


@dataclass
class ProducerDefinition:
    id: str
    name: str
    cost_resource: str
    base_cost: object
    description: str = ''
    cost_multiplier: object = '1.15'
    produces_resource: str = None
    base_production: object = ZERO
    min_phase: int = 1
    hidden: bool = False
    max_level: int = 0  # 0 means unlimited
    display_order: int = 0
    unlock_condition: object = None
    multiplier: ProducerMultiplier = None

    def __post_init__(self):
        self.base_cost = D(self.base_cost)
        self.cost_multiplier = D(self.cost_multiplier)
        self.base_production = D(self.base_production)


class ProducerState:
    """Live state of one producer."""

    def __init__(self):
        self.level = 0
        self.unlocked = False
        self.current_production = ZERO
        self.next_cost = ZERO
        self.total_produced = ZERO
        self.first_purchase_time = None


class ProducerManager:
    """Owns producer levels and feeds producer multipliers into the pipeline."""

    def __init__(self, event_bus, resources, pipeline, evaluator, definitions=(), clock=None):
        self.event_bus = event_bus
        self.resources = resources
        self.pipeline = pipeline
        self.evaluator = evaluator
        self.clock = clock or (lambda: int(time.time() * 1000))
        self.definitions = {}
        self.states = {}
        self.current_phase = 1
        for definition in definitions:
            self.register(definition)

    def register(self, definition):
        self.definitions[definition.id] = definition
        self.states.setdefault(definition.id, ProducerState())
        self._update_next_cost(definition.id)

    def init(self):
        self.states = {pid: ProducerState() for pid in self.definitions}
        for producer_id in self.definitions:
            self._update_next_cost(producer_id)
        self.check_unlocks()

    def tick(self, dt):
        """Generate one tick of output, then look for newly unlocked producers."""
        for producer_id, state in self.states.items():
            definition = self.definitions[producer_id]
            if not state.unlocked or state.level <= 0:
                continue
            if not definition.produces_resource or definition.base_production <= 0:
                continue
            per_second = self.pipeline.calculate(
                definition.produces_resource,
                bignum.mul(definition.base_production, state.level),
            )
            state.current_production = per_second
            amount = bignum.mul(per_second, dt)
            if amount > 0:
                state.total_produced = bignum.add(state.total_produced, amount)
                self.resources.add(definition.produces_resource, amount, 'production')
        self.check_unlocks()

    def check_unlocks(self):
        for producer_id, state in self.states.items():
            if state.unlocked:
                continue
            definition = self.definitions[producer_id]
            if definition.min_phase > self.current_phase:
                continue
            if definition.unlock_condition is not None:
                if self.evaluator.evaluate(definition.unlock_condition):
                    self.unlock(producer_id)
            elif not definition.hidden:
                self.unlock(producer_id)

    def unlock(self, producer_id):
        state = self.states.get(producer_id)
        if state is None or state.unlocked:
            return
        state.unlocked = True
        self.event_bus.publish(events.PRODUCER_UNLOCKED, {
            'producerId': producer_id,
            'name': self.definitions[producer_id].name,
        })

    def set_phase(self, phase):
        self.current_phase = phase
        self.check_unlocks()

    # Costs

    def calculate_cost(self, producer_id, amount=1):
        """Total cost of the next ``amount`` levels."""
        definition = self.definitions.get(producer_id)
        if definition is None:
            return ZERO
        return bignum.bulk_cost(definition.base_cost, definition.cost_multiplier,
                                self.states[producer_id].level, amount)

    def _remaining_levels(self, producer_id):
        definition = self.definitions[producer_id]
        if definition.max_level <= 0:
            return None
        return max(0, definition.max_level - self.states[producer_id].level)

    def get_max_affordable(self, producer_id):
        definition = self.definitions.get(producer_id)
        if definition is None:
            return 0
        count = bignum.max_affordable(
            self.resources.get_amount(definition.cost_resource),
            definition.base_cost,
            definition.cost_multiplier,
            self.states[producer_id].level,
        )
        remaining = self._remaining_levels(producer_id)
        if remaining is not None:
            count = min(count, remaining)
        return count

    def can_afford(self, producer_id, amount=1):
        definition = self.definitions.get(producer_id)
        if definition is None:
            return False
        return self.resources.can_afford(definition.cost_resource,
                                         self.calculate_cost(producer_id, amount))

    def _update_next_cost(self, producer_id):
        self.states[producer_id].next_cost = self.calculate_cost(producer_id, 1)

    # Purchasing

    def buy(self, producer_id, amount=1):
        """Buy ``amount`` levels of a producer."""
        definition = self.definitions.get(producer_id)
        if definition is None:
            return PurchaseResult.failed(f"Unknown producer: {producer_id}")
        state = self.states[producer_id]
        if not state.unlocked:
            return PurchaseResult.failed(f"Producer {producer_id} is locked")
        if amount <= 0:
            return PurchaseResult.failed("Amount must be positive")
        remaining = self._remaining_levels(producer_id)
        if remaining is not None and amount > remaining:
            return PurchaseResult.failed(f"Producer {producer_id} is at max level")

        cost = self.calculate_cost(producer_id, amount)
        if not self.resources.spend(definition.cost_resource, cost):
            return PurchaseResult.failed("Cannot afford")

        state.level += amount
        if state.first_purchase_time is None:
            state.first_purchase_time = self.clock()
        self._update_next_cost(producer_id)
        self._apply_multiplier(producer_id)

        self.event_bus.publish(events.PRODUCER_PURCHASED, {
            'producerId': producer_id,
            'amount': amount,
            'newLevel': state.level,
            'cost': cost,
            'costResource': definition.cost_resource,
        })
        return PurchaseResult(success=True, amount_purchased=amount, cost_paid=cost)

    def buy_max(self, producer_id):
        count = self.get_max_affordable(producer_id)
        if count <= 0:
            if producer_id not in self.definitions:
                return PurchaseResult.failed(f"Unknown producer: {producer_id}")
            return PurchaseResult.failed("Cannot afford")
        return self.buy(producer_id, count)

    def _multiplier_id(self, producer_id):
        return f"producer_{producer_id}"

    def _apply_multiplier(self, producer_id):
        """Sync a multiplier-type producer's pipeline entry with its level."""
        definition = self.definitions[producer_id]
        if definition.multiplier is None:
            return
        level = self.states[producer_id].level
        multiplier_id = self._multiplier_id(producer_id)
        if level <= 0:
            self.pipeline.remove_multiplier(multiplier_id)
            return
        value = bignum.pow(definition.multiplier.per_level, level)
        self.pipeline.add_multiplier(Multiplier(
            id=multiplier_id,
            name=definition.name,
            value=value,
            source='producer',
            resource_id=definition.multiplier.resource_id,
            priority=definition.multiplier.priority,
        ))
        self.event_bus.publish(events.MULTIPLIER_CHANGED, {
            'multiplierId': multiplier_id,
            'value': value,
            'resourceId': definition.multiplier.resource_id,
        })

    # Queries

    def get_level(self, producer_id):
        state = self.states.get(producer_id)
        return state.level if state else 0

    def is_unlocked(self, producer_id):
        state = self.states.get(producer_id)
        return bool(state and state.unlocked)

    def get_production(self, producer_id):
        """Per-second output of one producer after multipliers."""
        definition = self.definitions.get(producer_id)
        if definition is None or not definition.produces_resource:
            return ZERO
        level = self.get_level(producer_id)
        return self.pipeline.calculate(definition.produces_resource,
                                       bignum.mul(definition.base_production, level))

    def get_total_production(self, resource_id):
        return bignum.dsum(
            self.get_production(pid) for pid, d in self.definitions.items()
            if d.produces_resource == resource_id and self.is_unlocked(pid)
        )

    def get_click_power(self):
        return D(self.get_level(CLICK_BOOSTER))

    def add_multiplier(self, multiplier_id, name, value, source, resource_id='', eternal=False):
        return self.pipeline.add_multiplier(Multiplier(
            id=multiplier_id,
            name=name,
            value=value,
            source=source,
            resource_id=resource_id,
            priority=100 if eternal else 50,
        ))

    def remove_multiplier(self, multiplier_id):
        return self.pipeline.remove_multiplier(multiplier_id)

    def get_production_breakdown(self, resource_id, base):
        return self.pipeline.get_breakdown(resource_id, base)

    def get_visible_producers(self):
        visible = [d for pid, d in self.definitions.items() if self.states[pid].unlocked]
        return sorted(visible, key=lambda d: d.display_order)

    def to_dict(self, producer_id):
        definition = self.definitions[producer_id]
        state = self.states[producer_id]
        return {
            'id': producer_id,
            'name': definition.name,
            'level': state.level,
            'unlocked': state.unlocked,
            'nextCost': bignum.serialize(state.next_cost),
            'costResource': definition.cost_resource,
            'producesResource': definition.produces_resource,
            'production': bignum.serialize(self.get_production(producer_id)),
            'maxAffordable': self.get_max_affordable(producer_id),
        }

    # Rebirth and persistence

    def reset(self):
        """Return every producer to level 0; eternal multipliers survive."""
        self.pipeline.clear_by_source('producer')
        self.pipeline.clear_by_source('temporary')
        self.current_phase = 1
        self.init()

    def serialize(self):
        return {
            'levels': {pid: s.level for pid, s in self.states.items()},
            'unlocked': [pid for pid, s in self.states.items() if s.unlocked],
            'totalProduced': {pid: bignum.serialize(s.total_produced) for pid, s in self.states.items()},
            'firstPurchaseTimes': {
                pid: s.first_purchase_time for pid, s in self.states.items()
                if s.first_purchase_time is not None
            },
        }

    def deserialize(self, data):
        data = data or {}
        for producer_id, level in (data.get('levels') or {}).items():
            if producer_id in self.states:
                self.states[producer_id].level = max(0, int(level))
        for producer_id in data.get('unlocked') or []:
            if producer_id in self.states:
                self.states[producer_id].unlocked = True
        for producer_id, value in (data.get('totalProduced') or {}).items():
            if producer_id in self.states:
                self.states[producer_id].total_produced = bignum.deserialize(value)
        for producer_id, value in (data.get('firstPurchaseTimes') or {}).items():
            if producer_id in self.states:
                self.states[producer_id].first_purchase_time = value
        for producer_id in self.definitions:
            self._update_next_cost(producer_id)
            self._apply_multiplier(producer_id)
