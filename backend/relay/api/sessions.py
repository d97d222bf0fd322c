from flask import Blueprint, jsonify, request, current_app
import secrets

from relay.errors import RelayError
from relay.services import aggregator
from relay.services.registry import current_manager, current_seats
from relay.services.scheduler import schedule_session_timer
from relay.services.sessions import ACTIVE
from relay.services.targets import ALPHABET_WORD

sessions = Blueprint('sessions', __name__)


@sessions.errorhandler(RelayError)
def handle_relay_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def _view(code):
    manager = current_manager()
    manager.end_if_expired(code)
    return aggregator.session_view(manager.snapshot(code), manager.clock(), manager.hint_fresh_sec)


def _owner_error(code, data):
    """Return an error response unless the request carries the owner token."""
    if not current_manager().verify_owner(code, data.get('owner_token')):
        return jsonify({'error': 'Only the session owner may do that'}), 403
    return None


@sessions.route('/create', methods=['POST'])
def create_session():
    data = request.get_json(silent=True) or {}
    owner_name = data.get('owner_name')
    source_text = data.get('source_text')
    if not all([owner_name, source_text]):
        return jsonify({'error': 'Owner name and source text are required'}), 400

    token = secrets.token_urlsafe(16)
    code = current_manager().create_session(
        owner_name,
        data.get('mode') or ALPHABET_WORD,
        source_text,
        data.get('duration_minutes', 5),
        difficulty=data.get('difficulty'),
        owner_token=token,
    )
    return jsonify({
        'message': 'New session created!',
        'code': code,
        'owner_token': token,
    }), 201


@sessions.route('/join', methods=['POST'])
def join_session():
    data = request.get_json(silent=True) or {}
    code = data.get('code')
    name = data.get('name')
    if not all([code, name]):
        return jsonify({'error': 'Session code and name are required'}), 400

    context = current_manager().join_session(name, code)
    seat = current_seats().register(context)
    return jsonify({
        'participant': seat.controller.state.to_dict(),
        'session': _view(context.code),
    }), 201


@sessions.route('/<string:code>/state', methods=['GET'])
def get_state(code):
    return jsonify(_view(code))


@sessions.route('/<string:code>/status', methods=['POST'])
def set_status(code):
    data = request.get_json(silent=True) or {}
    denied = _owner_error(code, data)
    if denied:
        return denied
    status = data.get('status')
    if not status:
        return jsonify({'error': 'Status is required'}), 400

    current_manager().set_status(code, status)
    if status == ACTIVE:
        schedule_session_timer(current_app._get_current_object(), code)
    return jsonify(_view(code))


@sessions.route('/<string:code>/extend', methods=['POST'])
def extend_duration(code):
    data = request.get_json(silent=True) or {}
    denied = _owner_error(code, data)
    if denied:
        return denied
    seconds = data.get('seconds', current_app.config.get('EXTEND_DEFAULT_SEC', 30))
    duration = current_manager().extend_duration(code, seconds)
    return jsonify({'durationSeconds': duration, 'session': _view(code)})


@sessions.route('/<string:code>/hint', methods=['POST'])
def broadcast_hint(code):
    data = request.get_json(silent=True) or {}
    denied = _owner_error(code, data)
    if denied:
        return denied
    hint = current_manager().broadcast_hint(code, data.get('text'))
    return jsonify({'broadcastHint': hint})


@sessions.route('/<string:code>/results', methods=['GET'])
def get_results(code):
    snapshot = current_manager().snapshot(code)
    payload = aggregator.results(aggregator.roster(snapshot))
    payload['status'] = snapshot.get('status')
    return jsonify(payload)


@sessions.route('/<string:code>/leave', methods=['POST'])
def leave_session(code):
    """Remove a participant from the session. The session itself stays."""
    data = request.get_json(silent=True) or {}
    participant_id = data.get('participant_id')
    if not participant_id:
        return jsonify({'error': 'Participant ID is required'}), 400

    manager = current_manager()
    seat = current_seats().drop(code, participant_id)
    context = seat.context if seat else manager.context_for(code, participant_id)
    manager.leave_session(context)
    return jsonify({'message': 'You have left the session.'}), 200
