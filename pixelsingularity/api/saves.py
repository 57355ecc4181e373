"""Save management API endpoints."""
from flask import Blueprint, request, jsonify

from pixelsingularity.app import get_game
from pixelsingularity.errors import MigrationError

saves_bp = Blueprint('saves', __name__)

def _game():
    return get_game(request.args.get('slot'))

@saves_bp.route('/save', methods=['POST'])
def save_game():
    """Write the current game to storage."""
    saved = _game().save_game(force=True)
    if not saved:
        return jsonify({'error': 'Save failed'}), 500
    return jsonify({'success': True})

@saves_bp.route('/load', methods=['POST'])
def load_game():
    """Reload the game from storage."""
    try:
        loaded = _game().load_game()
    except MigrationError as e:
        return jsonify({'error': str(e)}), 409
    if not loaded:
        return jsonify({'error': 'No save found'}), 404
    return jsonify({'success': True, 'game_state': _game().get_state()})

@saves_bp.route('/export', methods=['GET'])
def export_save():
    """Export the current game as base64 text."""
    return jsonify({'data': _game().export_save()})

@saves_bp.route('/import', methods=['POST'])
def import_save():
    """Replace the current game with exported text."""
    data = request.get_json(silent=True) or {}
    if not data.get('data'):
        return jsonify({'error': 'Missing data'}), 400
    game = _game()
    if not game.import_save(data['data']):
        return jsonify({'error': 'Invalid save data'}), 400
    return jsonify({'success': True, 'game_state': game.get_state()})

@saves_bp.route('/hard-reset', methods=['POST'])
def hard_reset():
    """Wipe all progress, keeping an emergency backup for 24 hours."""
    game = _game()
    game.hard_reset()
    return jsonify({'success': True, 'has_emergency_backup': game.save_manager.has_emergency_backup()})

@saves_bp.route('/emergency', methods=['GET'])
def emergency_status():
    return jsonify({'has_emergency_backup': _game().save_manager.has_emergency_backup()})

@saves_bp.route('/emergency/recover', methods=['POST'])
def recover_emergency():
    """Restore the game from the emergency backup."""
    game = _game()
    if not game.recover_from_emergency_backup():
        return jsonify({'error': 'No emergency backup available'}), 404
    return jsonify({'success': True, 'game_state': game.get_state()})
