"""Condition trees and their evaluation against game state.

Conditions gate unlocks, phase transitions and achievements. A condition is
an immutable node; the evaluator reads live state through an
``EvaluationContext`` and never changes it.
"""
from dataclasses import dataclass, field

from pixelsingularity import bignum
from pixelsingularity.bignum import D

RESOURCE_OPERATORS = ('eq', 'gt', 'gte', 'lt', 'lte')


@dataclass(frozen=True)
class ResourceCondition:
    resource_id: str
    amount: object
    operator: str = 'gte'
    description: str = None

    def __post_init__(self):
        object.__setattr__(self, 'amount', D(self.amount))
        if self.operator not in RESOURCE_OPERATORS:
            raise ValueError(f"Unknown resource operator: {self.operator}")


@dataclass(frozen=True)
class TimeCondition:
    """Time spent in the current phase, in seconds."""
    min_seconds: float
    description: str = None


@dataclass(frozen=True)
class ChoiceCondition:
    choice_id: str
    value: object
    description: str = None


@dataclass(frozen=True)
class PhaseCondition:
    phase: int
    completed: bool = False
    description: str = None


@dataclass(frozen=True)
class ProducerCondition:
    producer_id: str
    amount: int
    description: str = None


@dataclass(frozen=True)
class UpgradeCondition:
    upgrade_id: str
    level: int = 1
    description: str = None


@dataclass(frozen=True)
class AchievementCondition:
    achievement_id: str
    description: str = None


@dataclass(frozen=True)
class AndCondition:
    conditions: tuple = ()
    description: str = None

    def __post_init__(self):
        object.__setattr__(self, 'conditions', tuple(self.conditions))


@dataclass(frozen=True)
class OrCondition:
    conditions: tuple = ()
    description: str = None

    def __post_init__(self):
        object.__setattr__(self, 'conditions', tuple(self.conditions))


@dataclass(frozen=True)
class NotCondition:
    condition: object
    description: str = None


@dataclass(frozen=True)
class AlwaysCondition:
    description: str = None


@dataclass(frozen=True)
class NeverCondition:
    description: str = None


@dataclass
class ConditionResult:
    """Outcome of evaluating one node, with its children."""
    met: bool
    progress: float = None
    description: str = ''
    children: list = field(default_factory=list)

    def to_dict(self):
        return {
            'met': self.met,
            'progress': self.progress,
            'description': self.description,
            'children': [child.to_dict() for child in self.children],
        }


class EvaluationContext:
    """Read-only view of game state used by the evaluator.

    The defaults describe an empty game; implementations override what they
    can answer.
    """

    def get_resource_amount(self, resource_id):
        return bignum.ZERO

    def get_current_phase_time(self):
        return 0.0

    def get_choice_value(self, choice_id):
        return None

    def get_current_phase(self):
        return 1

    def is_phase_completed(self, phase):
        return False

    def get_producer_count(self, producer_id):
        return 0

    def has_upgrade(self, upgrade_id):
        return False

    def get_upgrade_level(self, upgrade_id):
        return 0

    def has_achievement(self, achievement_id):
        return False


def _ratio(current, required):
    """min(1, current/required) as a float, 1 when nothing is required."""
    required = D(required)
    if required <= 0:
        return 1.0
    return min(1.0, bignum.to_float(bignum.div(current, required)))


def _child_progress(result):
    if result.progress is None:
        return 1.0 if result.met else 0.0
    return result.progress


class ConditionEvaluator:
    """Evaluates condition nodes against an EvaluationContext."""

    def __init__(self, context=None):
        self.context = context or EvaluationContext()
        self._handlers = {
            ResourceCondition: self._resource,
            TimeCondition: self._time,
            ChoiceCondition: self._choice,
            PhaseCondition: self._phase,
            ProducerCondition: self._producer,
            UpgradeCondition: self._upgrade,
            AchievementCondition: self._achievement,
            AndCondition: self._and,
            OrCondition: self._or,
            NotCondition: self._not,
            AlwaysCondition: self._always,
            NeverCondition: self._never,
        }

    def set_context(self, context):
        self.context = context

    def register_handler(self, condition_type, handler):
        """Teach the evaluator a new leaf type; handler(node) returns a ConditionResult."""
        self._handlers[condition_type] = handler

    def evaluate(self, condition):
        return self.evaluate_with_details(condition).met

    def evaluate_with_details(self, condition):
        handler = self._handlers.get(type(condition))
        if handler is None:
            raise TypeError(f"Unknown condition type: {type(condition).__name__}")
        result = handler(condition)
        if condition.description:
            result.description = condition.description
        return result

    def evaluate_all(self, conditions):
        return all(self.evaluate(c) for c in conditions)

    def evaluate_any(self, conditions):
        return any(self.evaluate(c) for c in conditions)

    def evaluate_progress(self, conditions):
        """Unweighted mean progress over a list of conditions."""
        conditions = list(conditions)
        if not conditions:
            return 1.0
        total = sum(_child_progress(self.evaluate_with_details(c)) for c in conditions)
        return total / len(conditions)

    # Leaves

    def _resource(self, c):
        current = D(self.context.get_resource_amount(c.resource_id))
        required = c.amount
        op = c.operator
        if op == 'eq':
            met = current == required
        elif op == 'gt':
            met = current > required
        elif op == 'lt':
            met = current < required
        elif op == 'lte':
            met = current <= required
        else:
            met = current >= required

        progress = None
        if op in ('gte', 'gt'):
            progress = 1.0 if met else _ratio(current, required)
        symbol = {'eq': '=', 'gt': '>', 'gte': '≥', 'lt': '<', 'lte': '≤'}[op]
        return ConditionResult(
            met=met,
            progress=progress,
            description=f"{c.resource_id} {symbol} {bignum.serialize(required)}",
        )

    def _time(self, c):
        elapsed = float(self.context.get_current_phase_time() or 0)
        required = float(c.min_seconds)
        met = elapsed >= required
        progress = 1.0 if required <= 0 else min(1.0, elapsed / required)
        return ConditionResult(met=met, progress=progress,
                               description=f"Spend {required:g}s in this phase")

    def _choice(self, c):
        met = self.context.get_choice_value(c.choice_id) == c.value
        return ConditionResult(met=met, progress=1.0 if met else 0.0,
                               description=f"Choose {c.value} for {c.choice_id}")

    def _phase(self, c):
        if c.completed:
            met = bool(self.context.is_phase_completed(c.phase))
            return ConditionResult(met=met, progress=1.0 if met else 0.0,
                                   description=f"Complete phase {c.phase}")
        current = self.context.get_current_phase()
        met = current >= c.phase
        progress = 1.0 if c.phase <= 0 else min(1.0, current / c.phase)
        return ConditionResult(met=met, progress=progress,
                               description=f"Reach phase {c.phase}")

    def _producer(self, c):
        count = self.context.get_producer_count(c.producer_id)
        met = count >= c.amount
        progress = 1.0 if c.amount <= 0 else min(1.0, count / c.amount)
        return ConditionResult(met=met, progress=progress,
                               description=f"Own {c.amount} {c.producer_id}")

    def _upgrade(self, c):
        if c.level <= 1:
            met = bool(self.context.has_upgrade(c.upgrade_id))
            return ConditionResult(met=met, progress=1.0 if met else 0.0,
                                   description=f"Purchase {c.upgrade_id}")
        level = self.context.get_upgrade_level(c.upgrade_id)
        met = level >= c.level
        return ConditionResult(met=met, progress=min(1.0, level / c.level),
                               description=f"{c.upgrade_id} level {c.level}")

    def _achievement(self, c):
        met = bool(self.context.has_achievement(c.achievement_id))
        return ConditionResult(met=met, progress=1.0 if met else 0.0,
                               description=f"Unlock {c.achievement_id}")

    # Composites

    def _and(self, c):
        children = [self.evaluate_with_details(child) for child in c.conditions]
        if not children:
            return ConditionResult(met=True, progress=1.0, description='All of: nothing')
        met = all(child.met for child in children)
        progress = sum(_child_progress(child) for child in children) / len(children)
        return ConditionResult(met=met, progress=progress,
                               description='All of', children=children)

    def _or(self, c):
        children = [self.evaluate_with_details(child) for child in c.conditions]
        if not children:
            return ConditionResult(met=False, progress=0.0, description='Any of: nothing')
        met = any(child.met for child in children)
        progress = max(_child_progress(child) for child in children)
        return ConditionResult(met=met, progress=progress,
                               description='Any of', children=children)

    def _not(self, c):
        child = self.evaluate_with_details(c.condition)
        met = not child.met
        return ConditionResult(met=met, progress=1.0 if met else 0.0,
                               description='Not', children=[child])

    def _always(self, c):
        return ConditionResult(met=True, progress=1.0, description='Always')

    def _never(self, c):
        return ConditionResult(met=False, progress=0.0, description='Never')


class Conditions:
    """Shorthand constructors for condition nodes."""

    @staticmethod
    def resource(resource_id, amount, operator='gte', description=None):
        return ResourceCondition(resource_id, amount, operator, description)

    @staticmethod
    def time(seconds, description=None):
        return TimeCondition(seconds, description)

    @staticmethod
    def time_minutes(minutes, description=None):
        return TimeCondition(minutes * 60, description)

    @staticmethod
    def choice(choice_id, value, description=None):
        return ChoiceCondition(choice_id, value, description)

    @staticmethod
    def phase(phase, completed=False, description=None):
        return PhaseCondition(phase, completed, description)

    @staticmethod
    def producer(producer_id, amount, description=None):
        return ProducerCondition(producer_id, amount, description)

    @staticmethod
    def upgrade(upgrade_id, level=1, description=None):
        return UpgradeCondition(upgrade_id, level, description)

    @staticmethod
    def achievement(achievement_id, description=None):
        return AchievementCondition(achievement_id, description)

    @staticmethod
    def and_(*conditions, description=None):
        return AndCondition(conditions, description)

    @staticmethod
    def or_(*conditions, description=None):
        return OrCondition(conditions, description)

    @staticmethod
    def not_(condition, description=None):
        return NotCondition(condition, description)

    @staticmethod
    def always():
        return AlwaysCondition()

    @staticmethod
    def never():
        return NeverCondition()


def condition_from_dict(data, parsers=None):
    """Build a condition node from its JSON form.

    ``parsers`` maps extra type names to functions that build their nodes;
    they take precedence over the built-in types.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Condition must be an object, got {type(data).__name__}")
    kind = data.get('type')
    description = data.get('description')
    if parsers and kind in parsers:
        return parsers[kind](data)

    if kind == 'resource':
        return ResourceCondition(data['resource_id'], D(data['amount']),
                                 data.get('operator', 'gte'), description)
    if kind == 'time':
        if 'minutes' in data:
            return TimeCondition(float(data['minutes']) * 60, description)
        return TimeCondition(float(data['min_seconds']), description)
    if kind == 'choice':
        return ChoiceCondition(data['choice_id'], data['value'], description)
    if kind == 'phase':
        return PhaseCondition(int(data['phase']), bool(data.get('completed', False)), description)
    if kind == 'producer':
        return ProducerCondition(data['producer_id'], int(data['amount']), description)
    if kind == 'upgrade':
        return UpgradeCondition(data['upgrade_id'], int(data.get('level', 1)), description)
    if kind == 'achievement':
        return AchievementCondition(data['achievement_id'], description)
    if kind == 'and':
        return AndCondition([condition_from_dict(c, parsers) for c in data.get('conditions', [])], description)
    if kind == 'or':
        return OrCondition([condition_from_dict(c, parsers) for c in data.get('conditions', [])], description)
    if kind == 'not':
        return NotCondition(condition_from_dict(data['condition'], parsers), description)
    if kind == 'always':
        return AlwaysCondition(description)
    if kind == 'never':
        return NeverCondition(description)
    raise ValueError(f"Unknown condition type: {kind}")


def condition_to_dict(condition):
    """Inverse of condition_from_dict."""
    if isinstance(condition, ResourceCondition):
        data = {'type': 'resource', 'resource_id': condition.resource_id,
                'amount': bignum.serialize(condition.amount), 'operator': condition.operator}
    elif isinstance(condition, TimeCondition):
        data = {'type': 'time', 'min_seconds': condition.min_seconds}
    elif isinstance(condition, ChoiceCondition):
        data = {'type': 'choice', 'choice_id': condition.choice_id, 'value': condition.value}
    elif isinstance(condition, PhaseCondition):
        data = {'type': 'phase', 'phase': condition.phase, 'completed': condition.completed}
    elif isinstance(condition, ProducerCondition):
        data = {'type': 'producer', 'producer_id': condition.producer_id, 'amount': condition.amount}
    elif isinstance(condition, UpgradeCondition):
        data = {'type': 'upgrade', 'upgrade_id': condition.upgrade_id, 'level': condition.level}
    elif isinstance(condition, AchievementCondition):
        data = {'type': 'achievement', 'achievement_id': condition.achievement_id}
    elif isinstance(condition, AndCondition):
        data = {'type': 'and', 'conditions': [condition_to_dict(c) for c in condition.conditions]}
    elif isinstance(condition, OrCondition):
        data = {'type': 'or', 'conditions': [condition_to_dict(c) for c in condition.conditions]}
    elif isinstance(condition, NotCondition):
        data = {'type': 'not', 'condition': condition_to_dict(condition.condition)}
    elif isinstance(condition, AlwaysCondition):
        data = {'type': 'always'}
    elif isinstance(condition, NeverCondition):
        data = {'type': 'never'}
    else:
        raise ValueError(f"Unknown condition type: {type(condition).__name__}")
    if condition.description:
        data['description'] = condition.description
    return data
