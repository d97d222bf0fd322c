from flask_socketio import join_room, leave_room, emit
from relay import socketio
from flask import current_app, request
from relay.errors import RelayError
from relay.services import aggregator
from relay.services.sessions import normalize_code, session_path
from typing import Dict, Any, List
import threading


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect():
    # Dropping the socket only detaches its watcher; the participant stays
    # in the session until an explicit leave
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx:
        return
    _unwatch(ctx['code'])


def handle_join_session(data):
    data = data or {}
    participant_id = data.get('participant_id')
    try:
        code = normalize_code(data.get('code'))
        current_app.extensions['relay']['manager'].snapshot(code)
    except RelayError as exc:
        emit('error', {'message': exc.message})
        return
    room = f"session:{code}"
    join_room(room)
    if participant_id:
        join_room(f"seat:{participant_id}")
    previous = _sid_to_ctx.get(_get_sid())
    _sid_to_ctx[_get_sid()] = {'code': code, 'participant_id': participant_id}
    if previous:
        _unwatch(previous['code'])
    emit('joined', {'room': room})
    _watch(current_app._get_current_object(), code)


def handle_leave_session(data):
    data = data or {}
    participant_id = data.get('participant_id')
    try:
        code = normalize_code(data.get('code'))
    except RelayError as exc:
        emit('error', {'message': exc.message})
        return
    room = f"session:{code}"
    leave_room(room)
    ctx = _sid_to_ctx.get(_get_sid())
    if ctx and ctx['code'] == code:
        _sid_to_ctx.pop(_get_sid(), None)
        _unwatch(code)
    emit('left', {'room': room})
    if participant_id:
        # Explicit quit: remove the participant record
        leave_room(f"seat:{participant_id}")
        relay_ext = current_app.extensions['relay']
        seat = relay_ext['seats'].drop(code, participant_id)
        try:
            context = seat.context if seat else relay_ext['manager'].context_for(code, participant_id)
            relay_ext['manager'].leave_session(context)
        except RelayError as exc:
            emit('error', {'message': exc.message})


def handle_ping(data):
    data = data or {}
    code = data.get('code')
    participant_id = data.get('participant_id')
    if code and participant_id:
        seat = current_app.extensions['relay']['seats'].existing(code, participant_id)
        if seat is not None:
            current_app.extensions['relay']['manager'].heartbeat(seat.context)
    emit('pong', data)

# ---- Store watchers: one subscription per session code with listeners ----

_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
_watchers: Dict[str, List[Any]] = {}  # code -> [subscription, socket count]
_watch_lock = threading.Lock()


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _push_state(app, code: str, snapshot) -> None:
    """Forward a full snapshot, with derived stats recomputed, to the session room."""
    if snapshot is None:
        return
    manager = app.extensions['relay']['manager']
    view = aggregator.session_view(snapshot, manager.clock(), manager.hint_fresh_sec)
    socketio.emit('state_update', view, to=f"session:{code}", namespace='/ws')


def _watch(app, code: str) -> None:
    with _watch_lock:
        entry = _watchers.get(code)
        if entry is not None:
            entry[1] += 1
            fresh = False
        else:
            entry = [None, 1]
            _watchers[code] = entry
            fresh = True
    manager = app.extensions['relay']['manager']
    if fresh:
        try:
            entry[0] = manager.subscribe(code, lambda snap: _push_state(app, code, snap))
        except RelayError as exc:
            app.logger.warning(f"[watch-fail] code={code} error={exc.message}")
            with _watch_lock:
                _watchers.pop(code, None)
    else:
        # Newcomers get the current value immediately, like a fresh subscription
        _push_state(app, code, manager.channel.read(session_path(code)))


def _unwatch(code: str) -> None:
    with _watch_lock:
        entry = _watchers.get(code)
        if entry is None:
            return
        entry[1] -= 1
        if entry[1] > 0:
            return
        _watchers.pop(code, None)
    if entry[0] is not None:
        entry[0].cancel()


def round_listener_factory(app):
    """Build per-seat listeners that forward round events to the participant's sockets."""
    def factory(code: str, participant_id: str):
        def listener(event: str, payload: Dict[str, Any]) -> None:
            socketio.emit('round_event', {'event': event, **payload}, to=f"seat:{participant_id}", namespace='/ws')
            if event == 'cooldown':
                from relay.services.scheduler import schedule_cooldown_restore
                until = payload.get('until') or 0
                delay = until - app.extensions['relay']['manager'].clock()
                schedule_cooldown_restore(app, code, participant_id, delay)
        return listener
    return factory


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    # Primary namespace
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('disconnect', handle_disconnect, namespace='/ws')
    socketio.on_event('join_session', handle_join_session, namespace='/ws')
    socketio.on_event('leave_session', handle_leave_session, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('disconnect', handle_disconnect, namespace='/')
        socketio.on_event('join_session', handle_join_session, namespace='/')
        socketio.on_event('leave_session', handle_leave_session, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
