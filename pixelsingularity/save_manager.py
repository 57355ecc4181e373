"""Persists the game envelope to a key/value Storage with backups."""
import base64
import binascii
import json
import logging
import time

from pixelsingularity import events
from pixelsingularity.errors import InvalidSaveError, MigrationError
from pixelsingularity.save_migration import (
    CURRENT_SAVE_VERSION, DEFAULT_GAME_VERSION, MigrationRegistry,
    default_eternal_state, default_run_state, sanitize_meta, sanitize_save_data,
)

logger = logging.getLogger(__name__)

SAVE_THROTTLE_MS = 1000
EMERGENCY_BACKUP_TTL_MS = 24 * 60 * 60 * 1000
DEFAULT_SAVE_KEY = 'pixel_singularity_save'


def _now_ms():
    return int(time.time() * 1000)


class SaveManager:
    """Saves, loads, exports and recovers the {run, eternal, meta} envelope."""

    def __init__(self, storage, event_bus=None, save_key=DEFAULT_SAVE_KEY,
                 format_version=CURRENT_SAVE_VERSION, game_version=DEFAULT_GAME_VERSION,
                 auto_save_interval=30000, registry=None, clock=None):
        self.storage = storage
        self.event_bus = event_bus
        self.save_key = save_key
        self.backup_key = f"{save_key}_backup"
        self.emergency_key = f"{save_key}_emergency_backup"
        self.emergency_timestamp_key = f"{save_key}_emergency_backup_timestamp"
        self.format_version = format_version
        self.game_version = game_version
        self.registry = registry or MigrationRegistry(format_version)
        self.clock = clock or _now_ms

        self.auto_save_enabled = True
        self.auto_save_interval = auto_save_interval  # ms
        self.last_save_time = None
        self.last_auto_save_time = None

        self.state_provider = None  # callable returning the current envelope
        self.state = None
        self.is_dirty = False

    def init(self):
        self.clean_expired_emergency_backup()
        self.state = self.create_fresh_state()
        self.last_auto_save_time = self.clock()

    def create_fresh_state(self):
        now = self.clock()
        meta = sanitize_meta({}, now)
        meta['version'] = self.registry.current_version
        meta['gameVersion'] = self.game_version
        return {
            'meta': meta,
            'run': default_run_state(),
            'eternal': default_eternal_state(now),
        }

    # State access

    def get_state(self):
        return self.state

    def set_state(self, state):
        self.state = state
        self.is_dirty = True

    def mark_dirty(self):
        self.is_dirty = True

    def _current_state(self):
        if self.state_provider is not None:
            self.state = self.state_provider()
        return self.state

    def _encode(self, state, now):
        wire = {
            'state': state,
            'formatVersion': self.format_version,
            'lastModified': now,
        }
        return json.dumps(wire, separators=(',', ':'))

    def _decode(self, raw):
        """Parse, sanitize and migrate a stored blob."""
        try:
            wire = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise InvalidSaveError(f"Save data is not valid JSON: {e}") from e
        if not isinstance(wire, dict) or not isinstance(wire.get('state'), dict):
            raise InvalidSaveError("Save data has no state")
        state = sanitize_save_data(wire['state'], self.clock())
        return self.registry.migrate(state)

    # Saving

    def should_save(self, force=False, skip_throttle=False):
        if force:
            return True
        if not self.is_dirty:
            return False
        if skip_throttle or self.last_save_time is None:
            return True
        return self.clock() - self.last_save_time >= SAVE_THROTTLE_MS

    def save(self, is_auto_save=False, force=False, skip_throttle=False):
        """Write the current state, keeping the previous blob as a backup."""
        if not self.should_save(force, skip_throttle):
            return False
        state = self._current_state()
        if state is None:
            return False

        now = self.clock()
        meta = state.setdefault('meta', {})
        meta['lastSaved'] = now
        meta['lastPlayed'] = now
        try:
            blob = self._encode(state, now)
            previous = self.storage.get(self.save_key)
            if previous is not None:
                self.storage.set(self.backup_key, previous)
            self.storage.set(self.save_key, blob)
        except Exception:
            logger.exception("Failed to save game")
            return False

        self.is_dirty = False
        self.last_save_time = now
        if self.event_bus is not None:
            self.event_bus.publish(events.GAME_SAVED, {
                'timestamp': now,
                'saveSize': len(blob),
                'isAutoSave': is_auto_save,
            })
        return True

    def should_auto_save(self, now=None):
        if not self.auto_save_enabled or self.auto_save_interval <= 0:
            return False
        if now is None:
            now = self.clock()
        if self.last_auto_save_time is None:
            self.last_auto_save_time = now
            return False
        return now - self.last_auto_save_time >= self.auto_save_interval

    def auto_save_tick(self):
        now = self.clock()
        if not self.should_auto_save(now):
            return False
        self.last_auto_save_time = now
        return self.save(is_auto_save=True)

    def set_auto_save_enabled(self, enabled):
        self.auto_save_enabled = bool(enabled)

    def set_auto_save_interval(self, interval_ms):
        self.auto_save_interval = max(0, int(interval_ms))

    # Loading

    def has_save(self):
        return self.storage.get(self.save_key) is not None

    def load(self):
        """Load the main save, falling back to the backup; None when neither works."""
        raw = self.storage.get(self.save_key)
        if raw is None:
            return None
        try:
            state = self._decode(raw)
        except InvalidSaveError as e:
            logger.warning("Main save is unreadable (%s), trying backup", e)
            return self.load_backup()
        self.state = state
        self.is_dirty = False
        return state

    def load_backup(self):
        raw = self.storage.get(self.backup_key)
        if raw is None:
            return None
        try:
            state = self._decode(raw)
        except InvalidSaveError:
            logger.exception("Backup save is unreadable")
            return None
        logger.warning("Loaded game from backup save")
        self.state = state
        self.is_dirty = True
        return state

    def delete_save(self):
        self.storage.remove(self.save_key)
        self.storage.remove(self.backup_key)

    # Export and import

    def export_save(self):
        """Base64 text of the current state, or None when there is none."""
        state = self._current_state()
        if state is None:
            return None
        blob = self._encode(state, self.clock())
        return base64.b64encode(blob.encode('utf-8')).decode('ascii')

    def parse_import(self, text):
        """Decode, sanitize and migrate exported text; None when it is rejected."""
        try:
            raw = base64.b64decode(text, validate=True).decode('utf-8')
            wire = json.loads(raw)
        except (binascii.Error, TypeError, ValueError):
            logger.warning("Rejected import: not base64-encoded JSON")
            return None

        state = wire.get('state') if isinstance(wire, dict) else None
        if not isinstance(state, dict) or not all(
                isinstance(state.get(key), dict) for key in ('meta', 'run', 'eternal')):
            logger.warning("Rejected import: missing state sections")
            return None

        try:
            return self.registry.migrate(sanitize_save_data(state, self.clock()))
        except MigrationError:
            logger.exception("Rejected import: cannot migrate")
            return None

    def commit_state(self, state):
        """Write state as the main save and adopt it; the previous blob becomes the backup."""
        now = self.clock()
        try:
            previous = self.storage.get(self.save_key)
            if previous is not None:
                self.storage.set(self.backup_key, previous)
            self.storage.set(self.save_key, self._encode(state, now))
        except Exception:
            logger.exception("Failed to write save state")
            return False

        self.state = state
        self.is_dirty = False
        self.last_save_time = now
        return True

    def import_save(self, text):
        """Replace the current save with exported text; False leaves everything untouched."""
        state = self.parse_import(text)
        if state is None:
            return False
        return self.commit_state(state)

    # Hard reset and emergency backup

    def hard_reset(self):
        """Wipe the save, keeping an emergency copy for 24 hours."""
        self.clean_expired_emergency_backup()
        now = self.clock()
        blob = self.storage.get(self.save_key)
        if blob is None and self._current_state() is not None:
            blob = self._encode(self.state, now)
        if blob is not None:
            self.storage.set(self.emergency_key, blob)
            self.storage.set(self.emergency_timestamp_key, str(now))
        self.storage.remove(self.save_key)
        self.storage.remove(self.backup_key)
        self.state = self.create_fresh_state()
        self.is_dirty = False
        logger.info("Hard reset performed")
        return True

    def _emergency_timestamp(self):
        raw = self.storage.get(self.emergency_timestamp_key)
        try:
            return int(raw) if raw is not None else None
        except ValueError:
            return None

    def _purge_emergency_backup(self):
        self.storage.remove(self.emergency_key)
        self.storage.remove(self.emergency_timestamp_key)

    def _emergency_expired(self, timestamp):
        return timestamp is None or self.clock() - timestamp > EMERGENCY_BACKUP_TTL_MS

    def clean_expired_emergency_backup(self):
        if self.storage.get(self.emergency_key) is None:
            return False
        if self._emergency_expired(self._emergency_timestamp()):
            self._purge_emergency_backup()
            return True
        return False

    def has_emergency_backup(self):
        if self.storage.get(self.emergency_key) is None:
            return False
        if self._emergency_expired(self._emergency_timestamp()):
            self._purge_emergency_backup()
            return False
        return True

    def read_emergency_backup(self):
        """Decoded emergency copy, or None when it is missing, expired or unreadable."""
        blob = self.storage.get(self.emergency_key)
        if blob is None:
            return None
        if self._emergency_expired(self._emergency_timestamp()):
            logger.warning("Emergency backup is older than 24 hours, discarding")
            self._purge_emergency_backup()
            return None
        try:
            return self._decode(blob)
        except InvalidSaveError:
            logger.exception("Emergency backup is unreadable")
            return None

    def adopt_emergency_backup(self, state):
        """Commit a decoded emergency copy as the main save and drop the copy."""
        if not self.commit_state(state):
            return False
        self._purge_emergency_backup()
        return True

    def recover_from_emergency_backup(self):
        """Restore the emergency copy as the main save and load it."""
        state = self.read_emergency_backup()
        if state is None:
            return False
        return self.adopt_emergency_backup(state)
