"""Shared fixtures for the engine tests."""
import pytest

from pixelsingularity.conditions import ConditionEvaluator, EvaluationContext
from pixelsingularity.config import GameConfig, TestingConfig
from pixelsingularity.events import EventBus
from pixelsingularity.game import Game
from pixelsingularity.production_pipeline import ProductionPipeline
from pixelsingularity.storage import MemoryStorage


class FakeClock:
    """Manually advanced clock; returns whatever ``now`` is set to."""

    def __init__(self, now=1_700_000_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, amount):
        self.now += amount


class FakeContext(EvaluationContext):
    """Evaluation context backed by plain dicts."""

    def __init__(self):
        self.resources = {}
        self.phase = 1
        self.phase_time = 0.0
        self.choices = {}
        self.completed = set()
        self.producers = {}
        self.upgrades = {}
        self.achievements = set()

    def get_resource_amount(self, resource_id):
        return self.resources.get(resource_id, 0)

    def get_current_phase_time(self):
        return self.phase_time

    def get_choice_value(self, choice_id):
        return self.choices.get(choice_id)

    def get_current_phase(self):
        return self.phase

    def is_phase_completed(self, phase):
        return phase in self.completed

    def get_producer_count(self, producer_id):
        return self.producers.get(producer_id, 0)

    def has_upgrade(self, upgrade_id):
        return self.upgrades.get(upgrade_id, 0) > 0

    def get_upgrade_level(self, upgrade_id):
        return self.upgrades.get(upgrade_id, 0)

    def has_achievement(self, achievement_id):
        return achievement_id in self.achievements


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def pipeline():
    return ProductionPipeline()


@pytest.fixture
def context():
    return FakeContext()


@pytest.fixture
def evaluator(context):
    return ConditionEvaluator(context)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def game_config():
    return GameConfig.from_object(TestingConfig)


@pytest.fixture
def game(game_config, storage, clock):
    g = Game(game_config, storage=storage, clock=clock)
    g.init()
    yield g
    g.destroy()
