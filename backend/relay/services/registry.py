"""Live round controllers held by this server process.

A seat is rebuilt from the stored participant record on first use, so a
restart only loses the in-progress board, never the participant's economy.
"""

import logging
import threading
from functools import partial
from typing import Callable, Dict, Optional, Tuple

from flask import current_app

from relay.errors import NotFound
from .rounds import RoundController
from .sessions import ENDED, SessionContext, SessionManager, normalize_code
from .solo import SoloRun

logger = logging.getLogger(__name__)


class Seat:

    def __init__(self, context: SessionContext, controller: RoundController):
        self.context = context
        self.controller = controller
        self.lock = threading.RLock()


class SeatRegistry:

    def __init__(self, manager: SessionManager,
                 listener_factory: Optional[Callable[[str, str], Callable]] = None,
                 solo_retention: float = 600.0):
        self.manager = manager
        self.listener_factory = listener_factory
        self.solo_retention = solo_retention
        self._seats: Dict[Tuple[str, str], Seat] = {}
        self._solo: Dict[str, SoloRun] = {}
        self._lock = threading.Lock()
        manager.on_end(self.drop_session)

    def _build(self, context: SessionContext) -> Seat:
        state = self.manager.participant_state(context.code, context.participant_id)
        controller = RoundController(
            state,
            context.mode,
            context.targets,
            mirror=partial(self.manager.mirror, context),
            clock=self.manager.clock,
        )
        if self.listener_factory is not None:
            controller.add_listener(self.listener_factory(context.code, context.participant_id))
        return Seat(context, controller)

    def register(self, context: SessionContext) -> Seat:
        seat = self._build(context)
        with self._lock:
            self._seats[(context.code, context.participant_id)] = seat
        return seat

    def seat(self, code, participant_id) -> Seat:
        key = (normalize_code(code), participant_id)
        with self._lock:
            existing = self._seats.get(key)
        if existing is not None:
            return existing
        context = self.manager.context_for(key[0], participant_id)
        seat = self._build(context)
        if context.snapshot.get('status') == ENDED:
            # Read-only view of a finished session; not worth keeping
            return seat
        with self._lock:
            return self._seats.setdefault(key, seat)

    def existing(self, code, participant_id) -> Optional[Seat]:
        with self._lock:
            return self._seats.get((normalize_code(code), participant_id))

    def drop(self, code, participant_id) -> Optional[Seat]:
        with self._lock:
            return self._seats.pop((normalize_code(code), participant_id), None)

    def drop_session(self, code) -> int:
        """Forget every seat of a session, e.g. once it has ended."""
        code = normalize_code(code)
        with self._lock:
            keys = [key for key in self._seats if key[0] == code]
            for key in keys:
                self._seats.pop(key)
        if keys:
            logger.info(f"[seats-drop] code={code} count={len(keys)}")
        return len(keys)

    def _evict_stale_solo(self) -> None:
        with self._lock:
            stale = [run_id for run_id, run in self._solo.items() if run.stale(self.solo_retention)]
            for run_id in stale:
                self._solo.pop(run_id)
        if stale:
            logger.info(f"[solo-evict] count={len(stale)}")

    def add_solo(self, run: SoloRun) -> SoloRun:
        self._evict_stale_solo()
        with self._lock:
            self._solo[run.id] = run
        return run

    def solo(self, run_id) -> SoloRun:
        self._evict_stale_solo()
        with self._lock:
            run = self._solo.get(run_id)
        if run is None:
            raise NotFound('Solo run not found')
        return run


def current_manager() -> SessionManager:
    return current_app.extensions['relay']['manager']


def current_seats() -> SeatRegistry:
    return current_app.extensions['relay']['seats']
