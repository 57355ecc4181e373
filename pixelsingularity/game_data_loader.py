"""Game data loader for loading JSON content files."""
import json
from pathlib import Path

from pixelsingularity.achievements import AchievementDefinition, AchievementReward
from pixelsingularity.conditions import condition_from_dict
from pixelsingularity.phases import PhaseDefinition, TOTAL_PHASES
from pixelsingularity.producers import ProducerDefinition, ProducerMultiplier
from pixelsingularity.resources import ResourceDefinition
from pixelsingularity.secrets import SECRET_TYPES, SecretDefinition, SecretReward, secret_condition_from_dict
from pixelsingularity.upgrades import UpgradeDefinition, effect_from_dict

class GameDataLoader:
    """Loads and caches game data from JSON files."""

    def __init__(self, data_dir=None):
        """Initialize the data loader."""
        if data_dir is None:
            # Assume we're running from project root
            self.data_dir = Path(__file__).parent.parent / 'game_data'
        else:
            self.data_dir = Path(data_dir)

        self._resources = None
        self._producers = None
        self._upgrades = None
        self._phases = None
        self._achievements = None
        self._secrets = None

    def _read(self, filename, key):
        """Read one list out of a data file; a missing file is an empty list."""
        file_path = self.data_dir / filename
        if not file_path.exists():
            return []
        with open(file_path, 'r') as f:
            data = json.load(f)
        return data.get(key, [])

    def load_resources(self):
        """Load resource definitions."""
        if self._resources is None:
            self._resources = [
                ResourceDefinition(**entry)
                for entry in self._read('resources.json', 'resources')
            ]
        return self._resources

    def load_producers(self):
        """Load producer definitions."""
        if self._producers is None:
            self._producers = []
            for entry in self._read('producers.json', 'producers'):
                entry = dict(entry)
                if entry.get('unlock_condition') is not None:
                    entry['unlock_condition'] = condition_from_dict(entry['unlock_condition'])
                if entry.get('multiplier') is not None:
                    entry['multiplier'] = ProducerMultiplier(**entry['multiplier'])
                self._producers.append(ProducerDefinition(**entry))
        return self._producers

    def load_upgrades(self):
        """Load upgrade definitions."""
        if self._upgrades is None:
            self._upgrades = []
            for entry in self._read('upgrades.json', 'upgrades'):
                entry = dict(entry)
                entry['effects'] = [effect_from_dict(e) for e in entry.get('effects', [])]
                entry['unlock_conditions'] = [
                    condition_from_dict(c) for c in entry.get('unlock_conditions', [])
                ]
                self._upgrades.append(UpgradeDefinition(**entry))
        return self._upgrades

    def load_phases(self):
        """Load the phase definitions, ordered by phase number."""
        if self._phases is None:
            self._phases = []
            for entry in self._read('phases.json', 'phases'):
                entry = dict(entry)
                entry['transition_conditions'] = [
                    condition_from_dict(c) for c in entry.get('transition_conditions', [])
                ]
                self._phases.append(PhaseDefinition(**entry))
            self._phases.sort(key=lambda p: p.id)
        return self._phases

    def load_achievements(self):
        """Load achievement definitions."""
        if self._achievements is None:
            self._achievements = []
            for entry in self._read('achievements.json', 'achievements'):
                entry = dict(entry)
                entry['condition'] = condition_from_dict(entry['condition'])
                entry['reward'] = AchievementReward(**entry.get('reward', {}))
                self._achievements.append(AchievementDefinition(**entry))
        return self._achievements

    def load_secrets(self):
        """Load secret definitions; their conditions may use the secret-only leaves."""
        if self._secrets is None:
            self._secrets = []
            for entry in self._read('secrets.json', 'secrets'):
                entry = dict(entry)
                entry['condition'] = secret_condition_from_dict(entry['condition'])
                entry['reward'] = SecretReward(**entry.get('reward', {}))
                self._secrets.append(SecretDefinition(**entry))
        return self._secrets

    def get_phase(self, phase_id):
        """Get phase definition by number."""
        for phase in self.load_phases():
            if phase.id == phase_id:
                return phase
        return None

    def get_producer_by_id(self, producer_id):
        """Get producer definition by ID."""
        for producer in self.load_producers():
            if producer.id == producer_id:
                return producer
        return None

    def get_upgrade_by_id(self, upgrade_id):
        """Get upgrade definition by ID."""
        for upgrade in self.load_upgrades():
            if upgrade.id == upgrade_id:
                return upgrade
        return None

    def validate_data(self):
        """Validate loaded data structure."""
        errors = []

        # Validate resources
        resources = self.load_resources()
        if not resources:
            errors.append("No resources loaded")
        resource_ids = [r.id for r in resources]
        if len(resource_ids) != len(set(resource_ids)):
            errors.append("Duplicate resource IDs found")
        known = set(resource_ids)

        # Validate producers
        producers = self.load_producers()
        producer_ids = [p.id for p in producers]
        if len(producer_ids) != len(set(producer_ids)):
            errors.append("Duplicate producer IDs found")
        for producer in producers:
            if producer.cost_resource not in known:
                errors.append(f"Producer {producer.id} costs unknown resource {producer.cost_resource}")
            if producer.produces_resource and producer.produces_resource not in known:
                errors.append(f"Producer {producer.id} produces unknown resource {producer.produces_resource}")

        # Validate upgrades
        upgrades = self.load_upgrades()
        upgrade_ids = {u.id for u in upgrades}
        for upgrade in upgrades:
            if upgrade.currency not in known:
                errors.append(f"Upgrade {upgrade.id} uses unknown currency {upgrade.currency}")
            for required in upgrade.requires:
                if required not in upgrade_ids:
                    errors.append(f"Upgrade {upgrade.id} requires unknown upgrade {required}")

        # Validate phases
        phase_ids = [p.id for p in self.load_phases()]
        if phase_ids != list(range(1, TOTAL_PHASES + 1)):
            errors.append(f"Expected phases 1-{TOTAL_PHASES}, found {phase_ids}")

        # Validate achievements
        achievement_ids = {a.id for a in self.load_achievements()}
        for achievement in self.load_achievements():
            for required in achievement.prerequisites:
                if required not in achievement_ids:
                    errors.append(f"Achievement {achievement.id} requires unknown achievement {required}")

        # Validate secrets
        secret_ids = [s.id for s in self.load_secrets()]
        if len(secret_ids) != len(set(secret_ids)):
            errors.append("Duplicate secret IDs found")
        for secret in self.load_secrets():
            if secret.type not in SECRET_TYPES:
                errors.append(f"Secret {secret.id} has unknown type {secret.type}")

        return errors

# Global instance
_game_data_loader = None

def get_game_data_loader(data_dir=None):
    """Get or create the global game data loader instance."""
    global _game_data_loader
    if _game_data_loader is None:
        _game_data_loader = GameDataLoader(data_dir)
    return _game_data_loader
