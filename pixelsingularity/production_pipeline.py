"""Stacks named multipliers on top of base production values."""
import logging
from dataclasses import dataclass, field

from pixelsingularity import bignum
from pixelsingularity.bignum import D, ONE, ZERO

logger = logging.getLogger(__name__)

SOURCES = ('producer', 'upgrade', 'achievement', 'phase', 'eternal', 'temporary', 'other')
MULTIPLICATIVE = 'multiplicative'
ADDITIVE = 'additive'

# Only these sources are persisted; everything else is rebuilt on load
PERSISTED_SOURCES = ('producer', 'upgrade')


@dataclass
class Multiplier:
    """A named production modifier."""
    id: str
    name: str = ''
    value: object = ONE
    source: str = 'other'
    stacking: str = MULTIPLICATIVE
    resource_id: str = ''  # empty targets every resource
    priority: int = 0
    active: bool = True
    description: str = ''
    condition: object = None

    def __post_init__(self):
        self.value = D(self.value)
        if not self.name:
            self.name = self.id


@dataclass
class ProductionBreakdown:
    """How a final production value was reached."""
    base: object
    multiplicative_factor: object
    additive_bonus: object
    final: object
    active_multipliers: list = field(default_factory=list)

    def to_dict(self):
        return {
            'base': bignum.serialize(self.base),
            'multiplicativeFactor': bignum.serialize(self.multiplicative_factor),
            'additiveBonus': bignum.serialize(self.additive_bonus),
            'final': bignum.serialize(self.final),
            'activeMultipliers': [
                {
                    'id': m.id,
                    'name': m.name,
                    'value': bignum.serialize(m.value),
                    'stacking': m.stacking,
                    'source': m.source,
                }
                for m in self.active_multipliers
            ],
        }


class ProductionPipeline:
    """Registry of multipliers keyed by id."""

    def __init__(self):
        self._multipliers = {}

    def add_multiplier(self, multiplier=None, **fields):
        """Insert or replace a multiplier; accepts a Multiplier or keyword fields."""
        if multiplier is None:
            multiplier = Multiplier(**fields)
        self._multipliers[multiplier.id] = multiplier
        return multiplier

    def remove_multiplier(self, multiplier_id):
        return self._multipliers.pop(multiplier_id, None) is not None

    def update_multiplier_value(self, multiplier_id, value):
        multiplier = self._multipliers.get(multiplier_id)
        if multiplier is None:
            return False
        multiplier.value = D(value)
        return True

    def set_multiplier_active(self, multiplier_id, active):
        multiplier = self._multipliers.get(multiplier_id)
        if multiplier is None:
            return False
        multiplier.active = bool(active)
        return True

    def get_multiplier(self, multiplier_id):
        return self._multipliers.get(multiplier_id)

    def has_multiplier(self, multiplier_id):
        return multiplier_id in self._multipliers

    def _condition_holds(self, multiplier):
        if multiplier.condition is None:
            return True
        try:
            return bool(multiplier.condition())
        except Exception:
            logger.exception("Multiplier condition failed for %s", multiplier.id)
            return False

    def get_multipliers_for_resource(self, resource_id):
        """Active multipliers applying to resource_id, lowest priority first."""
        applicable = [
            m for m in self._multipliers.values()
            if m.active
            and (m.resource_id == '' or m.resource_id == resource_id)
            and self._condition_holds(m)
        ]
        applicable.sort(key=lambda m: m.priority)
        return applicable

    def get_multipliers_by_source(self, source):
        return [m for m in self._multipliers.values() if m.source == source]

    def _factors(self, multipliers):
        factor = ONE
        bonus = ZERO
        for multiplier in multipliers:
            if multiplier.stacking == ADDITIVE:
                bonus = bignum.add(bonus, multiplier.value)
            else:
                factor = bignum.mul(factor, multiplier.value)
        return factor, bonus

    def calculate(self, resource_id, base):
        """Apply every applicable multiplier to a base value."""
        base = D(base)
        if base <= 0:
            return ZERO
        factor, bonus = self._factors(self.get_multipliers_for_resource(resource_id))
        return bignum.mul(bignum.mul(base, factor), bignum.add(ONE, bonus))

    def get_breakdown(self, resource_id, base):
        base = D(base)
        multipliers = self.get_multipliers_for_resource(resource_id)
        factor, bonus = self._factors(multipliers)
        if base <= 0:
            final = ZERO
        else:
            final = bignum.mul(bignum.mul(base, factor), bignum.add(ONE, bonus))
        return ProductionBreakdown(
            base=base,
            multiplicative_factor=factor,
            additive_bonus=bonus,
            final=final,
            active_multipliers=multipliers,
        )

    def get_total_multiplicative(self, resource_id):
        return self._factors(self.get_multipliers_for_resource(resource_id))[0]

    def get_total_additive(self, resource_id):
        return self._factors(self.get_multipliers_for_resource(resource_id))[1]

    def get_combined_multiplier(self, resource_id):
        """Overall factor a base value is scaled by."""
        factor, bonus = self._factors(self.get_multipliers_for_resource(resource_id))
        return bignum.mul(factor, bignum.add(ONE, bonus))

    def clear(self):
        self._multipliers.clear()

    def clear_by_source(self, source):
        """Remove every multiplier from one source, returning how many went."""
        doomed = [mid for mid, m in self._multipliers.items() if m.source == source]
        for multiplier_id in doomed:
            del self._multipliers[multiplier_id]
        return len(doomed)

    def active_count(self):
        return sum(1 for m in self._multipliers.values() if m.active)

    def ids(self):
        return list(self._multipliers.keys())

    def serialize(self):
        return {
            m.id: {'value': bignum.serialize(m.value), 'active': m.active}
            for m in self._multipliers.values()
            if m.source in PERSISTED_SOURCES
        }

    def deserialize(self, data):
        """Restore values and flags of multipliers that already exist."""
        for multiplier_id, entry in (data or {}).items():
            multiplier = self._multipliers.get(multiplier_id)
            if multiplier is None or not isinstance(entry, dict):
                continue
            if 'value' in entry:
                multiplier.value = bignum.deserialize(entry['value'])
            if 'active' in entry:
                multiplier.active = bool(entry['active'])
