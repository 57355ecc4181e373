"""API blueprints for Pixel Singularity."""
from pixelsingularity.api.game import game_bp
from pixelsingularity.api.saves import saves_bp

__all__ = ['game_bp', 'saves_bp']
