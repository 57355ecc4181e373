"""Configuration settings for the Flask application and the game engine."""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        os.environ.get('SQLALCHEMY_DATABASE_URI') or \
        'sqlite:///pixel_singularity.db'
    DEBUG = _env_bool('DEBUG')

    # Game loop
    TICK_RATE = int(os.environ.get('TICK_RATE', 20))  # ticks per second
    MAX_DELTA_TIME = float(os.environ.get('MAX_DELTA_TIME', 0.1))  # seconds, lag clamp
    TRANSITION_SPEED = float(os.environ.get('TRANSITION_SPEED', 1.0))

    # Saving
    SAVE_KEY = os.environ.get('SAVE_KEY', 'pixel_singularity_save')
    AUTO_SAVE_INTERVAL = int(os.environ.get('AUTO_SAVE_INTERVAL', 30000))  # ms
    GAME_VERSION = os.environ.get('GAME_VERSION', '0.1.0')
    SAVE_FORMAT_VERSION = int(os.environ.get('SAVE_FORMAT_VERSION', 1))

    # Offline progress
    MAX_OFFLINE_TIME = int(os.environ.get('MAX_OFFLINE_TIME', 86400))  # seconds
    OFFLINE_EFFICIENCY = float(os.environ.get('OFFLINE_EFFICIENCY', 0.5))
    OFFLINE_MINIMUM_TIME = int(os.environ.get('OFFLINE_MINIMUM_TIME', 60))  # seconds

    # Game constants
    TOTAL_PHASES = 20
    ABSTRACT_MODE_START_PHASE = 11
    MIN_REBIRTH_PHASE = 5
    PRESTIGE_REQUIREMENT_BASE = 1e6  # pixels generated in a run
    PRESTIGE_REWARD_RATIO = 0.1

class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True

class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False

class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    AUTO_SAVE_INTERVAL = 0

config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}

GAME_OPTIONS = (
    'TICK_RATE', 'MAX_DELTA_TIME', 'TRANSITION_SPEED', 'DEBUG',
    'SAVE_KEY', 'AUTO_SAVE_INTERVAL', 'GAME_VERSION', 'SAVE_FORMAT_VERSION',
    'MAX_OFFLINE_TIME', 'OFFLINE_EFFICIENCY', 'OFFLINE_MINIMUM_TIME',
    'TOTAL_PHASES', 'ABSTRACT_MODE_START_PHASE',
    'MIN_REBIRTH_PHASE', 'PRESTIGE_REQUIREMENT_BASE', 'PRESTIGE_REWARD_RATIO',
)


class GameConfig:
    """Engine options, read from a Config class or a Flask app.config."""

    def __init__(self, **options):
        for name in GAME_OPTIONS:
            setattr(self, name, options.get(name, getattr(Config, name)))

    @classmethod
    def from_object(cls, source=None):
        """Build from a Config class, an object with attributes or a mapping."""
        if source is None:
            source = Config
        options = {}
        for name in GAME_OPTIONS:
            if isinstance(source, dict):
                if name in source:
                    options[name] = source[name]
            elif hasattr(source, name):
                options[name] = getattr(source, name)
        return cls(**options)

    def updated(self, **changes):
        """Copy with some options replaced."""
        options = {name: getattr(self, name) for name in GAME_OPTIONS}
        options.update(changes)
        return GameConfig(**options)

    def to_dict(self):
        return {name: getattr(self, name) for name in GAME_OPTIONS}
