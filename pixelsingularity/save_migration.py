"""Save data versioning: migration registry and sanitization.

Loaded saves are always sanitized first, so migrations can rely on a
well-formed envelope, and then migrated up to the current version.
"""
import logging
import math
import random
import string
import sys
import time

from pixelsingularity import bignum
from pixelsingularity.errors import MigrationError, MissingMigrationError

logger = logging.getLogger(__name__)

CURRENT_SAVE_VERSION = 1
DEFAULT_GAME_VERSION = '0.1.0'
TOTAL_PHASES = 20
NOTATIONS = ('scientific', 'engineering', 'mixed', 'letters')


class MigrationRegistry:
    """Ordered chain of single-version migration functions."""

    def __init__(self, current_version=CURRENT_SAVE_VERSION):
        self.current_version = current_version
        self._migrations = {}

    def register_migration(self, version, migrate_fn):
        """Register the function that upgrades data from version-1 to version."""
        if version in self._migrations:
            raise MigrationError(f"Migration for version {version} already exists")
        self._migrations[version] = migrate_fn

    def registered_versions(self):
        return sorted(self._migrations)

    def can_migrate(self, from_version):
        if from_version >= self.current_version:
            return True
        return all(v in self._migrations for v in range(from_version + 1, self.current_version + 1))

    def migrate(self, data):
        meta = data.setdefault('meta', {})
        from_version = meta.get('version', 1)
        if from_version == self.current_version:
            return data
        if from_version > self.current_version:
            logger.warning(
                "Save version %s is newer than current version %s. This may cause data loss.",
                from_version, self.current_version,
            )
            return data

        for version in range(from_version + 1, self.current_version + 1):
            migrate_fn = self._migrations.get(version)
            if migrate_fn is None:
                raise MissingMigrationError(version, from_version, self.current_version)
            logger.info("Migrating save from version %s to %s", version - 1, version)
            data = migrate_fn(data)
            data.setdefault('meta', {})['version'] = version
        return data


def generate_save_id(now_ms=None):
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"save_{now_ms}_{suffix}"


def default_statistics(now_ms):
    return {
        'totalPixelsGenerated': '0',
        'totalClicks': 0,
        'fastestPhaseTimes': {},
        'fastestRunTime': None,
        'totalUpgradesPurchased': 0,
        'totalStoryEventsTriggered': 0,
        'firstPlayDate': now_ms,
        'lastPlayDate': now_ms,
    }


def default_preferences():
    return {
        'notation': 'mixed',
        'animationSpeed': 1.0,
        'showOfflineProgress': True,
        'autoSaveInterval': 30,
        'pauseOnStory': False,
        'confirmRebirth': True,
        'volume': {'master': 1.0, 'music': 0.7, 'sfx': 0.8},
    }


def default_run_state():
    return {
        'resources': {'pixels': '0'},
        'productionRates': {},
        'totalGenerated': {},
        'purchasedUpgrades': [],
        'upgradeLevels': {},
        'producerLevels': {},
        'unlockedProducers': [],
        'currentPhase': 1,
        'highestPhase': 1,
        'phaseProgress': {},
        'runTime': 0,
        'triggeredStoryEvents': [],
        'storyChoices': {},
        'unlockedResources': ['pixels'],
        'unlockedUpgrades': [],
        'producerTotalProduced': {},
        'producerFirstPurchaseTimes': {},
        'upgradeTotalSpent': {},
        'upgradeFirstPurchaseTimes': {},
    }


def default_eternal_state(now_ms=None):
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return {
        'totalRebirths': 0,
        'totalPlayTime': 0,
        'eternalResources': {'primordial_pixels': '0'},
        'eternalUpgrades': {},
        'achievements': [],
        'achievementTimes': {},
        'achievementProgress': {},
        'permanentStoryFlags': [],
        'permanentChoices': {},
        'statistics': default_statistics(now_ms),
        'highestPhaseEver': 1,
        'discoveredSecrets': [],
        'secretTimes': {},
        'secretFlags': {},
        'secretStats': {},
        'upgradeTotalSpent': {},
        'upgradeFirstPurchaseTimes': {},
        'preferences': default_preferences(),
    }


# Field sanitizers

# Largest integer a JSON number keeps exactly; integral counters clamp here.
MAX_SAFE_INTEGER = 2 ** 53 - 1
FLOAT_MAX = sys.float_info.max


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_nan(value):
    return isinstance(value, float) and math.isnan(value)


def _is_finite(value):
    # ints of any size are finite; only floats can be nan or inf
    return not isinstance(value, float) or math.isfinite(value)


def _number(value, default, minimum=None, maximum=None, integer=False):
    if not _is_number(value):
        return default
    if not _is_finite(value):
        return minimum if minimum is not None else default
    if integer:
        value = math.floor(value)
        maximum = MAX_SAFE_INTEGER if maximum is None else min(maximum, MAX_SAFE_INTEGER)
    elif isinstance(value, int) and abs(value) > FLOAT_MAX:
        value = FLOAT_MAX if value > 0 else -FLOAT_MAX
    if minimum is not None and value < minimum:
        value = minimum
    if maximum is not None and value > maximum:
        value = maximum
    return value


def _decimal_string(value, default='0'):
    if isinstance(value, str) and bignum.is_valid_number_string(value):
        return value.strip()
    if _is_number(value) and _is_finite(value):
        return bignum.serialize(value)
    return default


def _string_record(value):
    """Keep entries whose values are decimal strings or finite numbers."""
    if not isinstance(value, dict):
        return {}
    record = {}
    for key, item in value.items():
        if not isinstance(key, str) or not key:
            continue
        if isinstance(item, str) and item.strip():
            record[key] = _decimal_string(item)
        elif _is_number(item) and not _is_nan(item):
            record[key] = _decimal_string(item)
    return record


def _number_record(value):
    """Non-negative integer counters keyed by id."""
    if not isinstance(value, dict):
        return {}
    record = {}
    for key, item in value.items():
        if isinstance(key, str) and key and _is_number(item) and not _is_nan(item):
            record[key] = _number(item, 0, minimum=0, integer=True)
    return record


def _float_record(value, minimum=0.0, maximum=None):
    if not isinstance(value, dict):
        return {}
    record = {}
    for key, item in value.items():
        if isinstance(key, str) and key and _is_number(item) and not _is_nan(item):
            record[key] = _number(item, minimum, minimum=minimum, maximum=maximum)
    return record


def _string_array(value):
    """Deduplicated non-empty strings, first occurrence wins."""
    if not isinstance(value, list):
        return []
    seen = []
    for item in value:
        if isinstance(item, str) and item and item not in seen:
            seen.append(item)
    return seen


def _scalar_record(value):
    if not isinstance(value, dict):
        return {}
    return {
        k: v for k, v in value.items()
        if isinstance(k, str) and k and (v is None or isinstance(v, (str, int, float, bool)))
    }


def _dict(value):
    return value if isinstance(value, dict) else {}


def _phase(value):
    return _number(value, 1, minimum=1, maximum=TOTAL_PHASES, integer=True)


def _phase_key(key):
    """Phase number from a record key ('3' or 3), None when it is not one."""
    if isinstance(key, str) and key.isdecimal() and len(key) <= 2:
        key = int(key)
    if not _is_number(key) or not isinstance(key, int):
        return None
    return key if 1 <= key <= TOTAL_PHASES else None


def sanitize_phase_record(record):
    record = _dict(record)
    best_time = record.get('bestTime')

    def stamp(key):
        value = record.get(key)
        return None if value is None else _number(value, None, minimum=0)

    return {
        'entered': record.get('entered') is True,
        'completed': record.get('completed') is True,
        'timeSpent': _number(record.get('timeSpent'), 0.0, minimum=0.0),
        'bestTime': None if best_time is None else _number(best_time, None, minimum=0.0),
        'timesEntered': _number(record.get('timesEntered'), 0, minimum=0, integer=True),
        'firstEntered': stamp('firstEntered'),
        'lastEntered': stamp('lastEntered'),
        'completedAt': stamp('completedAt'),
        'choices': _scalar_record(record.get('choices')),
        'triggeredEvents': _string_array(record.get('triggeredEvents')),
    }


def sanitize_phase_progress(value):
    """Per-phase records keyed by phase number; an empty input stays empty."""
    value = _dict(value)
    if not value:
        return {}
    progress = {}
    for key, record in _dict(value.get('progress')).items():
        phase = _phase_key(key)
        if phase is not None and isinstance(record, dict):
            progress[str(phase)] = sanitize_phase_record(record)
    unlocked = value.get('unlockedPhases')
    current = _phase(value.get('currentPhase'))
    return {
        'currentPhase': current,
        'highestPhase': max(current, _phase(value.get('highestPhase'))),
        'unlockedPhases': sorted(
            {_phase_key(p) for p in (unlocked if isinstance(unlocked, list) else [])} - {None}
        ),
        'choices': _scalar_record(value.get('choices')),
        'progress': progress,
    }


def sanitize_meta(meta, now_ms):
    meta = _dict(meta)
    game_version = meta.get('gameVersion')
    save_id = meta.get('saveId')
    return {
        'version': _number(meta.get('version'), 1, minimum=1, integer=True),
        'lastSaved': _number(meta.get('lastSaved'), now_ms, minimum=0),
        'lastPlayed': _number(meta.get('lastPlayed'), now_ms, minimum=0),
        'gameVersion': game_version if isinstance(game_version, str) and game_version else DEFAULT_GAME_VERSION,
        'saveId': save_id if isinstance(save_id, str) and save_id else generate_save_id(now_ms),
    }


def sanitize_run_state(run):
    run = _dict(run)
    resources = _string_record(run.get('resources'))
    resources.setdefault('pixels', '0')
    unlocked_resources = _string_array(run.get('unlockedResources'))
    if 'pixels' not in unlocked_resources:
        unlocked_resources.insert(0, 'pixels')
    current = _phase(run.get('currentPhase'))
    return {
        'resources': resources,
        'productionRates': _string_record(run.get('productionRates')),
        'totalGenerated': _string_record(run.get('totalGenerated')),
        'purchasedUpgrades': _string_array(run.get('purchasedUpgrades')),
        'upgradeLevels': _number_record(run.get('upgradeLevels')),
        'producerLevels': _number_record(run.get('producerLevels')),
        'unlockedProducers': _string_array(run.get('unlockedProducers')),
        'currentPhase': current,
        'highestPhase': max(current, _phase(run.get('highestPhase'))),
        'phaseProgress': sanitize_phase_progress(run.get('phaseProgress')),
        'runTime': _number(run.get('runTime'), 0, minimum=0),
        'triggeredStoryEvents': _string_array(run.get('triggeredStoryEvents')),
        'storyChoices': _scalar_record(run.get('storyChoices')),
        'unlockedResources': unlocked_resources,
        'unlockedUpgrades': _string_array(run.get('unlockedUpgrades')),
        'producerTotalProduced': _string_record(run.get('producerTotalProduced')),
        'producerFirstPurchaseTimes': _number_record(run.get('producerFirstPurchaseTimes')),
        'upgradeTotalSpent': _string_record(run.get('upgradeTotalSpent')),
        'upgradeFirstPurchaseTimes': _number_record(run.get('upgradeFirstPurchaseTimes')),
    }


def sanitize_statistics(stats, now_ms):
    stats = _dict(stats)
    fastest_run = stats.get('fastestRunTime')
    return {
        'totalPixelsGenerated': _decimal_string(stats.get('totalPixelsGenerated')),
        'totalClicks': _number(stats.get('totalClicks'), 0, minimum=0, integer=True),
        'fastestPhaseTimes': _float_record(stats.get('fastestPhaseTimes')),
        'fastestRunTime': None if fastest_run is None else _number(fastest_run, None, minimum=0),
        'totalUpgradesPurchased': _number(stats.get('totalUpgradesPurchased'), 0, minimum=0, integer=True),
        'totalStoryEventsTriggered': _number(stats.get('totalStoryEventsTriggered'), 0, minimum=0, integer=True),
        'firstPlayDate': _number(stats.get('firstPlayDate'), now_ms, minimum=0),
        'lastPlayDate': _number(stats.get('lastPlayDate'), now_ms, minimum=0),
    }


def sanitize_preferences(prefs):
    prefs = _dict(prefs)
    defaults = default_preferences()
    volume = _dict(prefs.get('volume'))
    notation = prefs.get('notation')

    def flag(key):
        value = prefs.get(key)
        return value if isinstance(value, bool) else defaults[key]

    return {
        'notation': notation if notation in NOTATIONS else 'mixed',
        'animationSpeed': _number(prefs.get('animationSpeed'), 1.0, minimum=0.5, maximum=2.0),
        'showOfflineProgress': flag('showOfflineProgress'),
        'autoSaveInterval': _number(prefs.get('autoSaveInterval'), 30, minimum=0),
        'pauseOnStory': flag('pauseOnStory'),
        'confirmRebirth': flag('confirmRebirth'),
        'volume': {
            channel: _number(volume.get(channel), default, minimum=0.0, maximum=1.0)
            for channel, default in defaults['volume'].items()
        },
    }


def sanitize_eternal_state(eternal, now_ms):
    eternal = _dict(eternal)
    eternal_resources = _string_record(eternal.get('eternalResources'))
    eternal_resources.setdefault('primordial_pixels', '0')
    return {
        'totalRebirths': _number(eternal.get('totalRebirths'), 0, minimum=0, integer=True),
        'totalPlayTime': _number(eternal.get('totalPlayTime'), 0, minimum=0),
        'eternalResources': eternal_resources,
        'eternalUpgrades': _number_record(eternal.get('eternalUpgrades')),
        'achievements': _string_array(eternal.get('achievements')),
        'achievementTimes': _number_record(eternal.get('achievementTimes')),
        'achievementProgress': _float_record(eternal.get('achievementProgress'), maximum=1.0),
        'permanentStoryFlags': _string_array(eternal.get('permanentStoryFlags')),
        'permanentChoices': _scalar_record(eternal.get('permanentChoices')),
        'statistics': sanitize_statistics(eternal.get('statistics'), now_ms),
        'highestPhaseEver': _phase(eternal.get('highestPhaseEver')),
        'discoveredSecrets': _string_array(eternal.get('discoveredSecrets')),
        'secretTimes': _number_record(eternal.get('secretTimes')),
        'secretFlags': _scalar_record(eternal.get('secretFlags')),
        'secretStats': _float_record(eternal.get('secretStats')),
        'upgradeTotalSpent': _string_record(eternal.get('upgradeTotalSpent')),
        'upgradeFirstPurchaseTimes': _number_record(eternal.get('upgradeFirstPurchaseTimes')),
        'preferences': sanitize_preferences(eternal.get('preferences')),
    }


def sanitize_save_data(data, now_ms=None):
    """Return a well-formed save envelope built from arbitrary input."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    data = _dict(data)
    return {
        'meta': sanitize_meta(data.get('meta'), now_ms),
        'run': sanitize_run_state(data.get('run')),
        'eternal': sanitize_eternal_state(data.get('eternal'), now_ms),
    }
