"""Game API endpoints."""
from flask import Blueprint, request, jsonify

from pixelsingularity import bignum
from pixelsingularity.app import get_game

game_bp = Blueprint('game', __name__)

def _game():
    return get_game(request.args.get('slot'))

@game_bp.route('/state', methods=['GET'])
def get_game_state():
    """Get the current game snapshot."""
    return jsonify({'game_state': _game().get_state()})

@game_bp.route('/tick', methods=['POST'])
def tick_game():
    """Advance the simulation by delta seconds (clamped to the loop's max delta)."""
    data = request.get_json(silent=True) or {}
    game = _game()
    try:
        delta = float(data.get('delta', game.loop.config.tick_interval))
    except (TypeError, ValueError):
        return jsonify({'error': 'delta must be a number'}), 400
    if delta < 0:
        return jsonify({'error': 'delta must not be negative'}), 400

    game.tick(min(delta, game.loop.config.max_delta))
    return jsonify({'game_state': game.get_state(), 'tick_count': game.tick_count})

@game_bp.route('/click', methods=['POST'])
def click():
    """Click a resource (pixels by default)."""
    data = request.get_json(silent=True) or {}
    game = _game()
    try:
        value = game.click(data.get('resource_id', 'pixels'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({
        'value': bignum.serialize(value),
        'amount': bignum.serialize(game.resources.get_amount(data.get('resource_id', 'pixels'))),
    })

@game_bp.route('/producers/<producer_id>/buy', methods=['POST'])
def buy_producer(producer_id):
    """Buy levels of a producer; pass {"max": true} to buy as many as possible."""
    data = request.get_json(silent=True) or {}
    game = _game()
    try:
        if data.get('max'):
            result = game.buy_producer_max(producer_id)
        else:
            result = game.buy_producer(producer_id, int(data.get('amount', 1)))
    except (TypeError, ValueError) as e:
        return jsonify({'error': str(e)}), 400

    code = 200 if result.success else 409
    return jsonify({'result': result.to_dict(), 'producer': game.producers.to_dict(producer_id)}), code

@game_bp.route('/upgrades/<upgrade_id>/buy', methods=['POST'])
def buy_upgrade(upgrade_id):
    """Buy an upgrade."""
    data = request.get_json(silent=True) or {}
    game = _game()
    try:
        result = game.purchase_upgrade(upgrade_id, int(data.get('amount', 1)), bool(data.get('max')))
    except (TypeError, ValueError) as e:
        return jsonify({'error': str(e)}), 400

    code = 200 if result.success else 409
    return jsonify({'result': result.to_dict(), 'upgrade': game.upgrades.to_dict(upgrade_id)}), code

@game_bp.route('/phase/advance', methods=['POST'])
def advance_phase():
    """Advance to the next phase when its exit conditions are met."""
    game = _game()
    advanced = game.phases.advance_now()
    return jsonify({
        'advanced': advanced,
        'phase': game.phases.current_phase,
        'progress': game.phases.advance_progress(),
    })

@game_bp.route('/choice', methods=['POST'])
def make_choice():
    """Record a player choice."""
    data = request.get_json(silent=True) or {}
    if not data.get('choice_id'):
        return jsonify({'error': 'Missing choice_id'}), 400
    _game().make_choice(data['choice_id'], data.get('value'))
    return jsonify({'success': True})

@game_bp.route('/secrets/flag', methods=['POST'])
def set_secret_flag():
    """Set a secret flag; secrets it completes are discovered right away."""
    data = request.get_json(silent=True) or {}
    flag = data.get('flag')
    if not isinstance(flag, str) or not flag:
        return jsonify({'error': 'Missing flag'}), 400
    value = data.get('value', True)
    if value is not None and not isinstance(value, (str, int, float, bool)):
        return jsonify({'error': 'value must be a scalar'}), 400
    game = _game()
    game.secrets.set_flag(flag, value)
    return jsonify({
        'flag': flag,
        'discovered': game.secrets.pop_notifications(),
    })

@game_bp.route('/rebirth', methods=['POST'])
def rebirth():
    """Trade the current run for primordial pixels."""
    game = _game()
    gains = game.rebirth()
    if gains is None:
        return jsonify({'error': 'Rebirth is not available yet'}), 409
    return jsonify({
        'gains': bignum.serialize(gains),
        'total_rebirths': game.total_rebirths,
        'game_state': game.get_state(),
    })

@game_bp.route('/pause', methods=['POST'])
def pause():
    data = request.get_json(silent=True) or {}
    game = _game()
    game.pause(data.get('reason', 'manual'))
    return jsonify({'paused': game.paused})

@game_bp.route('/resume', methods=['POST'])
def resume():
    game = _game()
    game.resume()
    return jsonify({'paused': game.paused})

@game_bp.route('/loop', methods=['GET'])
def loop_stats():
    """Get game loop performance statistics."""
    return jsonify({'stats': _game().loop.get_stats().to_dict()})
