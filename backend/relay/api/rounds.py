from flask import Blueprint, jsonify, request, current_app

from relay.errors import RelayError
from relay.services.aggregator import remaining_seconds
from relay.services.registry import current_manager, current_seats
from relay.services.scheduler import end_if_team_complete
from relay.services.sessions import ACTIVE, ENDED
from relay.services.solo import start_solo

rounds = Blueprint('rounds', __name__)


@rounds.errorhandler(RelayError)
def handle_relay_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def _delays():
    cfg = current_app.config
    return {
        'resolve_ms': int(cfg.get('RESOLVE_DELAY_MS', 300)),
        'feedback_ms': int(cfg.get('FEEDBACK_DELAY_MS', 1000)),
    }


def _unit_from(data):
    unit = data.get('unit')
    if isinstance(unit, bool) or not isinstance(unit, int):
        return None
    return unit


def _seat_payload(seat, verdict=None, **extra):
    payload = seat.controller.to_dict()
    payload['verdict'] = verdict.to_dict() if verdict else None
    payload['delays'] = _delays()
    payload.update(extra)
    return payload


def _not_playing(code):
    manager = current_manager()
    snap = manager.snapshot(code)
    status = snap.get('status')
    if status == ACTIVE and remaining_seconds(snap, manager.clock()) <= 0:
        # Deadline holds even without a running timer worker
        manager.end_if_expired(code)
        status = ENDED
    if status != ACTIVE:
        return jsonify({'error': 'Not accepting selections at this time', 'status': status}), 409
    return None


# ---- Session participants ----

@rounds.route('/sessions/<string:code>/participants/<string:pid>/round', methods=['GET'])
def get_round(code, pid):
    seat = current_seats().seat(code, pid)
    with seat.lock:
        seat.controller.refresh()
        return jsonify(_seat_payload(seat))


@rounds.route('/sessions/<string:code>/participants/<string:pid>/select', methods=['POST'])
def select_unit(code, pid):
    data = request.get_json(silent=True) or {}
    unit = _unit_from(data)
    if unit is None:
        return jsonify({'error': 'Unit index is required'}), 400
    blocked = _not_playing(code)
    if blocked:
        return blocked

    seat = current_seats().seat(code, pid)
    with seat.lock:
        verdict = seat.controller.select(unit)
        payload = _seat_payload(seat, verdict)
    if verdict is not None and verdict.correct:
        end_if_team_complete(current_app._get_current_object(), code)
    return jsonify(payload)


@rounds.route('/sessions/<string:code>/participants/<string:pid>/undo', methods=['POST'])
def undo_unit(code, pid):
    seat = current_seats().seat(code, pid)
    with seat.lock:
        undone = seat.controller.undo()
        return jsonify(_seat_payload(seat, undone=undone))


@rounds.route('/sessions/<string:code>/participants/<string:pid>/clear', methods=['POST'])
def clear_path(code, pid):
    seat = current_seats().seat(code, pid)
    with seat.lock:
        seat.controller.clear()
        return jsonify(_seat_payload(seat))


@rounds.route('/sessions/<string:code>/participants/<string:pid>/hint', methods=['POST'])
def use_hint(code, pid):
    blocked = _not_playing(code)
    if blocked:
        return blocked
    seat = current_seats().seat(code, pid)
    with seat.lock:
        revealed = seat.controller.hint()
        return jsonify(_seat_payload(seat, hint=revealed))


@rounds.route('/sessions/<string:code>/participants/<string:pid>/heartbeat', methods=['POST'])
def heartbeat(code, pid):
    seat = current_seats().seat(code, pid)
    return jsonify({'ok': current_manager().heartbeat(seat.context)})


# ---- Solo practice ----

@rounds.route('/solo/start', methods=['POST'])
def start_solo_run():
    data = request.get_json(silent=True) or {}
    run = start_solo(
        data.get('name'),
        data.get('mode') or 'alphabet-word',
        difficulty=data.get('difficulty') or 'medium',
        topic=data.get('topic') or 'general',
        custom_text=data.get('custom_text'),
        goal=data.get('goal') or 'practice',
        rules=current_manager().rules,
    )
    current_seats().add_solo(run)
    payload = run.to_dict()
    payload['delays'] = _delays()
    return jsonify(payload), 201


@rounds.route('/solo/<string:run_id>/round', methods=['GET'])
def get_solo_round(run_id):
    run = current_seats().solo(run_id)
    with run.lock:
        run.controller.refresh()
        return jsonify(run.to_dict())


@rounds.route('/solo/<string:run_id>/select', methods=['POST'])
def select_solo_unit(run_id):
    data = request.get_json(silent=True) or {}
    unit = _unit_from(data)
    if unit is None:
        return jsonify({'error': 'Unit index is required'}), 400
    run = current_seats().solo(run_id)
    with run.lock:
        verdict = run.select(unit)
        payload = run.to_dict()
    payload['verdict'] = verdict.to_dict() if verdict else None
    return jsonify(payload)


@rounds.route('/solo/<string:run_id>/undo', methods=['POST'])
def undo_solo_unit(run_id):
    run = current_seats().solo(run_id)
    with run.lock:
        undone = run.controller.undo()
        payload = run.to_dict()
    payload['undone'] = undone
    return jsonify(payload)


@rounds.route('/solo/<string:run_id>/clear', methods=['POST'])
def clear_solo_path(run_id):
    run = current_seats().solo(run_id)
    with run.lock:
        run.controller.clear()
        return jsonify(run.to_dict())


@rounds.route('/solo/<string:run_id>/hint', methods=['POST'])
def use_solo_hint(run_id):
    run = current_seats().solo(run_id)
    with run.lock:
        revealed = run.hint()
        payload = run.to_dict()
    payload['hint'] = revealed
    return jsonify(payload)


@rounds.route('/solo/<string:run_id>/results', methods=['GET'])
def get_solo_results(run_id):
    run = current_seats().solo(run_id)
    with run.lock:
        return jsonify(run.results())
