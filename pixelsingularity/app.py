"""Flask application entry point."""
import logging
import os

from flask import Flask, current_app
from flask_cors import CORS
from flask_migrate import Migrate

from pixelsingularity.config import GameConfig, config
from pixelsingularity.game import Game
from pixelsingularity.game_data_loader import get_game_data_loader
from pixelsingularity.models import db
from pixelsingularity.storage import MemoryStorage, SqlStorage

GAMES_EXTENSION = 'pixelsingularity_games'

def create_app(config_name=None):
    """Create and configure Flask application."""
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')
    app.config.from_object(config[config_name])

    if app.config.get('DEBUG'):
        logging.basicConfig(level=logging.DEBUG)

    # Initialize extensions
    db.init_app(app)
    CORS(app)
    Migrate(app, db)
    app.extensions[GAMES_EXTENSION] = {}

    # Initialize game data loader
    with app.app_context():
        data_loader = get_game_data_loader()
        errors = data_loader.validate_data()
        if errors:
            app.logger.warning(f"Game data validation warnings: {errors}")
        db.create_all()

    # Register blueprints
    from pixelsingularity.api import game_bp, saves_bp
    app.register_blueprint(game_bp, url_prefix='/api/game')
    app.register_blueprint(saves_bp, url_prefix='/api/saves')

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return {'error': 'Not found'}, 404

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return {'error': 'Internal server error'}, 500

    return app

def get_game(save_key=None):
    """Get or create the game for a save slot on the current app."""
    games = current_app.extensions[GAMES_EXTENSION]
    game_config = GameConfig.from_object(current_app.config)
    if save_key:
        game_config = game_config.updated(SAVE_KEY=save_key)
    key = game_config.SAVE_KEY
    if key not in games:
        storage = MemoryStorage() if current_app.config.get('TESTING') else SqlStorage()
        game = Game(game_config, storage=storage)
        game.init()
        games[key] = game
    return games[key]

if __name__ == '__main__':
    app = create_app()
    port = int(os.environ.get('PORT', 5001))
    app.run(debug=True, host='0.0.0.0', port=port)
