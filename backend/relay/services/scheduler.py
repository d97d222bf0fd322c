"""Session clock workers: timeout, team completion and cooldown restore.

Workers run through ``socketio.start_background_task``. They are no-ops in
TESTING mode unless ``ENABLE_SCHEDULER_IN_TESTS`` is set, in which case they
run inline.
"""

import time
from typing import Set

from relay import socketio
from relay.errors import RelayError
from .aggregator import remaining_seconds
from .sessions import ACTIVE, PAUSED, normalize_code

_scheduled_timers: Set[str] = set()


def _enabled(app) -> bool:
    return not (app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'))


def _run(app, worker, *args) -> None:
    if app.config.get('TESTING'):
        worker(*args)
    else:
        socketio.start_background_task(worker, *args)


def schedule_session_timer(app, code: str) -> None:
    """End the session once the shared timer reaches zero.

    - Ensures a single timer per session code
    - Re-reads the duration on every wake-up so extensions are honoured
    - Stops quietly if the session ended by other means
    """
    if not _enabled(app):
        return
    code = normalize_code(code)
    manager = app.extensions['relay']['manager']

    with app.app_context():
        try:
            snap = manager.snapshot(code)
        except RelayError:
            return
        if snap.get('status') != ACTIVE:
            return
        if code in _scheduled_timers:
            app.logger.info(f"[timer-skip] code={code} already scheduled")
            return
        _scheduled_timers.add(code)
        app.logger.info(f"[timer-set] code={code} remaining={remaining_seconds(snap, manager.clock())}s")

    def _worker(session_code: str):
        try:
            hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
        except (TypeError, ValueError):
            hb = 0
        try:
            while True:
                with app.app_context():
                    try:
                        snap = manager.snapshot(session_code)
                    except RelayError:
                        app.logger.info(f"[timer-abort] code={session_code} session unavailable")
                        return
                    if snap.get('status') not in (ACTIVE, PAUSED):
                        app.logger.info(f"[timer-abort] code={session_code} status={snap.get('status')}")
                        return
                    remaining = remaining_seconds(snap, manager.clock())
                    if remaining <= 0:
                        manager.end_if_expired(session_code)
                        app.logger.info(f"[timer-fire] code={session_code} session ended")
                        return
                step = min(hb, remaining) if hb and hb > 0 else remaining
                time.sleep(step)
                if hb and hb > 0:
                    app.logger.info(f"[timer-heartbeat] code={session_code} remaining={max(0, remaining - step)}s")
        finally:
            _scheduled_timers.discard(session_code)

    _run(app, _worker, code)


def schedule_cooldown_restore(app, code: str, participant_id: str, delay: float) -> None:
    """Restore one life after the cooldown so other views see it without waiting for the participant."""
    if not _enabled(app):
        return

    def _worker(session_code: str, pid: str, wait: float):
        time.sleep(max(0.0, wait))
        with app.app_context():
            seat = app.extensions['relay']['seats'].existing(session_code, pid)
            if seat is None:
                return
            with seat.lock:
                restored = seat.controller.refresh()
            if restored:
                app.logger.info(f"[cooldown-restore] code={session_code} participant={pid}")

    _run(app, _worker, normalize_code(code), participant_id, delay)


def end_if_team_complete(app, code: str) -> bool:
    if not app.config.get('AUTO_END_ON_TEAM_COMPLETE', True):
        return False
    manager = app.extensions['relay']['manager']
    try:
        return manager.end_if_team_complete(code)
    except RelayError as exc:
        app.logger.warning(f"[team-check-fail] code={code} error={exc.message}")
        return False
