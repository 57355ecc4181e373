"""Resource amounts, production rates and unlock state."""
import logging
from dataclasses import dataclass

from pixelsingularity import bignum, events
from pixelsingularity.bignum import D, ZERO

logger = logging.getLogger(__name__)

PRIMARY_RESOURCE = 'pixels'


@dataclass
class ResourceDefinition:
    """Static description of a resource."""
    id: str
    name: str
    description: str = ''
    category: str = 'run'  # run, phase or eternal
    hidden: bool = False
    min_phase: int = 1
    can_produce: bool = True
    can_click: bool = False
    base_click_amount: object = bignum.ONE
    display_order: int = 0

    def __post_init__(self):
        self.base_click_amount = D(self.base_click_amount)

    @property
    def is_eternal(self):
        return self.category == 'eternal'


class ResourceState:
    """Live state of one resource."""

    def __init__(self, unlocked=False):
        self.amount = ZERO
        self.production_rate = ZERO
        self.unlocked = unlocked
        self.total_generated = ZERO
        self.total_spent = ZERO


class ResourceManager:
    """Owns every resource amount in the game."""

    def __init__(self, event_bus, definitions=()):
        self.event_bus = event_bus
        self.definitions = {}
        self.states = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition):
        self.definitions[definition.id] = definition

    def init(self):
        """Create fresh state for every registered resource."""
        self.states = {}
        for resource_id, definition in self.definitions.items():
            unlocked = not definition.hidden or resource_id == PRIMARY_RESOURCE
            self.states[resource_id] = ResourceState(unlocked=unlocked)

    def _state(self, resource_id):
        state = self.states.get(resource_id)
        if state is None and resource_id in self.definitions:
            state = self.states[resource_id] = ResourceState()
        return state

    def tick(self, dt):
        """Add one tick of production to every producing resource."""
        for resource_id, state in list(self.states.items()):
            if state.production_rate > 0:
                self.add(resource_id, bignum.mul(state.production_rate, dt), 'production')

    def reset(self):
        """Clear run-scoped resources for a rebirth."""
        for resource_id, state in self.states.items():
            definition = self.definitions[resource_id]
            if definition.is_eternal:
                continue
            state.amount = ZERO
            state.production_rate = ZERO
            state.total_generated = ZERO
            state.total_spent = ZERO
            state.unlocked = not definition.hidden or resource_id == PRIMARY_RESOURCE

    # Queries

    def get_amount(self, resource_id):
        state = self.states.get(resource_id)
        return state.amount if state else ZERO

    def get_production_rate(self, resource_id):
        state = self.states.get(resource_id)
        return state.production_rate if state else ZERO

    def get_total_generated(self, resource_id):
        state = self.states.get(resource_id)
        return state.total_generated if state else ZERO

    def is_unlocked(self, resource_id):
        state = self.states.get(resource_id)
        return bool(state and state.unlocked)

    def get_definition(self, resource_id):
        return self.definitions.get(resource_id)

    def get_visible_resources(self):
        """Unlocked resources in display order."""
        visible = [self.definitions[rid] for rid, s in self.states.items() if s.unlocked]
        return sorted(visible, key=lambda d: d.display_order)

    def unlocked_count(self):
        return sum(1 for state in self.states.values() if state.unlocked)

    def can_afford(self, resource_id, amount):
        return self.get_amount(resource_id) >= D(amount)

    def can_afford_multiple(self, costs):
        return all(self.can_afford(rid, amount) for rid, amount in costs.items())

    # Mutation

    def add(self, resource_id, amount, source='manual'):
        """Increase a resource; non-positive amounts and unknown ids are ignored."""
        amount = D(amount)
        if amount <= 0:
            return
        state = self._state(resource_id)
        if state is None:
            logger.debug("Ignoring add to unknown resource %s", resource_id)
            return
        previous = state.amount
        state.amount = bignum.add(previous, amount)
        state.total_generated = bignum.add(state.total_generated, amount)
        self.event_bus.publish(events.RESOURCE_CHANGED, {
            'resourceId': resource_id,
            'previousAmount': previous,
            'newAmount': state.amount,
            'delta': amount,
            'source': source,
        })

    def click(self, resource_id, amount):
        self.add(resource_id, amount, 'click')

    def spend(self, resource_id, amount):
        """Remove amount if it is available; returns whether it was."""
        amount = D(amount)
        state = self.states.get(resource_id)
        if state is None or amount < 0 or state.amount < amount:
            return False
        if amount == 0:
            return True
        previous = state.amount
        state.amount = bignum.sub(previous, amount)
        state.total_spent = bignum.add(state.total_spent, amount)
        self.event_bus.publish(events.RESOURCE_CHANGED, {
            'resourceId': resource_id,
            'previousAmount': previous,
            'newAmount': state.amount,
            'delta': bignum.neg(amount),
            'source': 'purchase',
        })
        return True

    def spend_multiple(self, costs):
        """Spend several resources at once, or none of them."""
        if not self.can_afford_multiple(costs):
            return False
        for resource_id, amount in costs.items():
            self.spend(resource_id, amount)
        return True

    def set_amount(self, resource_id, amount):
        state = self._state(resource_id)
        if state is None:
            return
        previous = state.amount
        state.amount = bignum.dmax(amount, ZERO)
        if previous != state.amount:
            self.event_bus.publish(events.RESOURCE_CHANGED, {
                'resourceId': resource_id,
                'previousAmount': previous,
                'newAmount': state.amount,
                'delta': bignum.sub(state.amount, previous),
                'source': 'set',
            })

    def set_production_rate(self, resource_id, rate):
        state = self._state(resource_id)
        if state is None:
            return
        previous = state.production_rate
        state.production_rate = D(rate)
        if previous != state.production_rate:
            self.event_bus.publish(events.PRODUCTION_CHANGED, {
                'resourceId': resource_id,
                'previousRate': previous,
                'newRate': state.production_rate,
            })

    def add_production_rate(self, resource_id, delta):
        self.set_production_rate(resource_id, bignum.add(self.get_production_rate(resource_id), delta))

    def unlock(self, resource_id):
        state = self._state(resource_id)
        if state is None or state.unlocked:
            return
        state.unlocked = True
        self.event_bus.publish(events.RESOURCE_UNLOCKED, {
            'resourceId': resource_id,
            'name': self.definitions[resource_id].name,
        })

    def set_phase(self, phase):
        """Unlock visible resources that become available at this phase."""
        for resource_id, definition in self.definitions.items():
            if not definition.hidden and definition.min_phase <= phase:
                self.unlock(resource_id)

    # Persistence

    def serialize(self):
        return {
            'amounts': {rid: bignum.serialize(s.amount) for rid, s in self.states.items()},
            'productionRates': {rid: bignum.serialize(s.production_rate) for rid, s in self.states.items()},
            'unlocked': [rid for rid, s in self.states.items() if s.unlocked],
            'totalGenerated': {rid: bignum.serialize(s.total_generated) for rid, s in self.states.items()},
            'totalSpent': {rid: bignum.serialize(s.total_spent) for rid, s in self.states.items()},
        }

    def deserialize(self, data):
        data = data or {}
        unlocked = set(data.get('unlocked') or [])
        for key, attr in (('amounts', 'amount'), ('productionRates', 'production_rate'),
                          ('totalGenerated', 'total_generated'), ('totalSpent', 'total_spent')):
            for resource_id, value in (data.get(key) or {}).items():
                state = self._state(resource_id)
                if state is not None:
                    setattr(state, attr, bignum.deserialize(value))
        for resource_id in unlocked:
            state = self._state(resource_id)
            if state is not None:
                state.unlocked = True


@dataclass
class PurchaseResult:
    """Outcome of a producer or upgrade purchase."""
    success: bool
    amount_purchased: int = 0
    cost_paid: object = ZERO
    error: str = None

    @classmethod
    def failed(cls, error):
        return cls(success=False, error=error)

    def to_dict(self):
        return {
            'success': self.success,
            'amountPurchased': self.amount_purchased,
            'costPaid': bignum.serialize(self.cost_paid),
            'error': self.error,
        }
