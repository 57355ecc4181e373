"""Tests for save migration and sanitization."""
import sys

import pytest

from pixelsingularity.errors import MigrationError, MissingMigrationError
from pixelsingularity.save_migration import (
    MAX_SAFE_INTEGER, MigrationRegistry, default_eternal_state, default_run_state,
    sanitize_phase_progress, sanitize_save_data,
)

NOW = 1_700_000_000_000


# ─────────────────────────────────────────────────────
# Migration chain
# ─────────────────────────────────────────────────────

class TestMigrationRegistry:
    def test_migrations_run_in_order(self):
        registry = MigrationRegistry(current_version=3)
        order = []

        def to_v2(data):
            order.append(2)
            data['run']['renamed'] = True
            return data

        def to_v3(data):
            order.append(3)
            assert data['meta']['version'] == 2
            return data

        registry.register_migration(3, to_v3)
        registry.register_migration(2, to_v2)
        result = registry.migrate({'meta': {'version': 1}, 'run': {}})
        assert order == [2, 3]
        assert result['meta']['version'] == 3
        assert result['run']['renamed'] is True

    def test_missing_step(self):
        registry = MigrationRegistry(current_version=3)
        registry.register_migration(2, lambda d: d)
        assert not registry.can_migrate(1)
        with pytest.raises(MissingMigrationError) as excinfo:
            registry.migrate({'meta': {'version': 1}})
        assert str(excinfo.value) == "Missing migration for version 3. Cannot migrate from 1 to 3."

    def test_duplicate_registration(self):
        registry = MigrationRegistry(current_version=2)
        registry.register_migration(2, lambda d: d)
        with pytest.raises(MigrationError):
            registry.register_migration(2, lambda d: d)

    def test_newer_save_is_left_alone(self):
        registry = MigrationRegistry(current_version=1)
        data = {'meta': {'version': 5}}
        assert registry.migrate(data) is data
        assert data['meta']['version'] == 5

    def test_current_version_is_noop(self):
        registry = MigrationRegistry(current_version=2)
        assert registry.can_migrate(2)
        assert registry.migrate({'meta': {'version': 2}})['meta']['version'] == 2


# ─────────────────────────────────────────────────────
# Sanitization
# ─────────────────────────────────────────────────────

class TestSanitize:
    def test_garbage_becomes_defaults(self):
        data = sanitize_save_data('not a save', NOW)
        assert data['run'] == default_run_state()
        assert data['eternal'] == default_eternal_state(NOW)
        assert data['meta']['version'] == 1
        assert data['meta']['saveId'].startswith(f"save_{NOW}_")

    def test_bad_fields_are_repaired(self):
        data = sanitize_save_data({
            'run': {
                'resources': {'pixels': 'lots', 'red': 12, 'blue': '1e400'},
                'currentPhase': 99,
                'highestPhase': 'x',
                'producerLevels': {'pixel_generator': 3.7, 'bad': -2, 'worse': 'many'},
                'unlockedResources': ['red', 'red', 7],
                'runTime': -5,
            },
            'eternal': {
                'totalRebirths': float('nan'),
                'achievementProgress': {'a': 2.0, 'b': 0.5},
                'preferences': {'notation': 'roman', 'animationSpeed': 10, 'volume': {'music': -1}},
            },
        }, NOW)
        run = data['run']
        assert run['resources'] == {'pixels': '0', 'red': '12', 'blue': '1e400'}
        assert run['currentPhase'] == 20
        assert run['highestPhase'] == 20
        assert run['producerLevels'] == {'pixel_generator': 3, 'bad': 0}
        assert run['unlockedResources'] == ['pixels', 'red']
        assert run['runTime'] == 0

        eternal = data['eternal']
        assert eternal['totalRebirths'] == 0
        assert eternal['achievementProgress'] == {'a': 1.0, 'b': 0.5}
        assert eternal['preferences']['notation'] == 'mixed'
        assert eternal['preferences']['animationSpeed'] == 2.0
        assert eternal['preferences']['volume'] == {'master': 1.0, 'music': 0.0, 'sfx': 0.8}

    def test_huge_integers_are_clamped(self):
        huge = 10 ** 400
        data = sanitize_save_data({
            'meta': {'lastSaved': huge, 'lastPlayed': huge},
            'run': {
                'runTime': huge,
                'currentPhase': huge,
                'producerLevels': {'pixel_generator': huge},
                'resources': {'pixels': huge},
                'producerFirstPurchaseTimes': {'pixel_generator': -huge},
            },
            'eternal': {
                'totalRebirths': huge,
                'totalPlayTime': -huge,
                'achievementProgress': {'a': huge},
                'statistics': {'totalClicks': huge, 'firstPlayDate': huge},
            },
        }, NOW)
        run = data['run']
        assert run['runTime'] == sys.float_info.max
        assert run['currentPhase'] == 20
        assert run['producerLevels'] == {'pixel_generator': MAX_SAFE_INTEGER}
        assert run['resources']['pixels'] == str(huge)
        assert run['producerFirstPurchaseTimes'] == {'pixel_generator': 0}

        eternal = data['eternal']
        assert eternal['totalRebirths'] == MAX_SAFE_INTEGER
        assert eternal['totalPlayTime'] == 0
        assert eternal['achievementProgress'] == {'a': 1.0}
        assert eternal['statistics']['totalClicks'] == MAX_SAFE_INTEGER
        assert float(data['meta']['lastSaved']) > 0

    def test_hostile_input_then_migrate(self):
        registry = MigrationRegistry(current_version=2)
        seen = []

        def to_v2(data):
            seen.append(data)
            data['run']['producerLevels'] = {
                pid: level * 2 for pid, level in data['run']['producerLevels'].items()
            }
            return data

        registry.register_migration(2, to_v2)
        hostile = {
            'meta': {'version': 1, 'saveId': ['x']},
            'run': {
                'producerLevels': {'pixel_generator': 10 ** 400, 'bad': 'x', '': 3},
                'phaseProgress': {'progress': {'abc': {'timeSpent': 1}}},
            },
            'eternal': 'nope',
        }
        result = registry.migrate(sanitize_save_data(hostile, NOW))
        assert len(seen) == 1
        assert result['meta']['version'] == 2
        assert result['run']['producerLevels'] == {'pixel_generator': MAX_SAFE_INTEGER * 2}
        assert result['run']['phaseProgress']['progress'] == {}
        assert result['eternal'] == default_eternal_state(NOW)


class TestSanitizePhaseProgress:
    def test_empty_or_wrong_type(self):
        assert sanitize_phase_progress(None) == {}
        assert sanitize_phase_progress({}) == {}
        assert sanitize_phase_progress(['progress']) == {}

    def test_bad_keys_and_records(self):
        progress = sanitize_phase_progress({
            'currentPhase': 3,
            'highestPhase': 2,
            'unlockedPhases': [1, '2', 'abc', 99, True, 3],
            'choices': {'ok': 'yes', 'bad': {'nested': 1}},
            'progress': {
                'abc': {'timeSpent': 5},
                '0': {'timeSpent': 5},
                '21': {'timeSpent': 5},
                '2': {
                    'entered': 'yes',
                    'completed': True,
                    'timeSpent': -500,
                    'bestTime': 'x',
                    'timesEntered': 2.5,
                    'firstEntered': 10 ** 400,
                    'lastEntered': -1,
                    'choices': {'c': 1, 'd': [1]},
                    'triggeredEvents': ['e', 'e', 3],
                },
                '3': 'garbage',
            },
        })
        assert progress['currentPhase'] == 3
        assert progress['highestPhase'] == 3
        assert progress['unlockedPhases'] == [1, 2, 3]
        assert progress['choices'] == {'ok': 'yes'}
        assert set(progress['progress']) == {'2'}
        record = progress['progress']['2']
        assert record['entered'] is False
        assert record['completed'] is True
        assert record['timeSpent'] == 0
        assert record['bestTime'] is None
        assert record['timesEntered'] == 2
        assert record['firstEntered'] == sys.float_info.max
        assert record['lastEntered'] == 0
        assert record['choices'] == {'c': 1}
        assert record['triggeredEvents'] == ['e']
