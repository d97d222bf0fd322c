from flask import Blueprint, jsonify, current_app

from relay.services.participants import TIERS
from relay.services.solo import GOALS, TOPIC_TEXTS
from relay.services.targets import MODES

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the relay exercise server!'})


@main.route('/api/options')
def options():
    """Static choices the setup screens offer."""
    cfg = current_app.config
    return jsonify({
        'modes': list(MODES),
        'difficulties': {
            name: {'hints_enabled': t.hints_enabled, 'max_hints': t.max_hints, 'duration_sec': t.duration_sec}
            for name, t in TIERS.items()
        },
        'topics': sorted(TOPIC_TEXTS) + ['custom'],
        'goals': list(GOALS),
        'extend_default_sec': int(cfg.get('EXTEND_DEFAULT_SEC', 30)),
    })
