"""One participant's live rounds.

The controller is the synchronous core: each call validates, mutates the
participant state, mirrors it outward and returns. Presentation listeners
are told afterwards and can never delay or veto the state write.
"""

import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional

from relay.errors import HintUnavailable
from .participants import DONE, READY, ParticipantState
from .paths import RoundPath, Verdict, build_units
from .targets import KIND_WORD, targets_for_mode

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict[str, Any]], None]


class RoundController:

    def __init__(self, state: ParticipantState, mode: str, targets,
                 mirror: Optional[Callable[[ParticipantState], Any]] = None,
                 rng: Optional[random.Random] = None, clock: Callable[[], float] = time.time,
                 listeners: Optional[List[Listener]] = None):
        self.state = state
        self.mode = mode
        self.rotation = targets_for_mode(mode, targets)
        self.mirror = mirror
        self.rng = rng or random.Random()
        self.clock = clock
        self.listeners: List[Listener] = list(listeners or [])
        self.round: Optional[RoundPath] = None
        self._load_target()

    def _load_target(self) -> None:
        if not self.rotation:
            self.round = None
            return
        kind, target = self.rotation[self.state.current_stage % len(self.rotation)]
        self.round = RoundPath(kind, target, build_units(kind, target, self.rng))

    def add_listener(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        for listener in list(self.listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception(f"[listener-error] participant={self.state.id} event={event}")

    def _sync(self) -> None:
        if self.mirror is not None:
            self.mirror(self.state)

    @property
    def has_target(self) -> bool:
        return self.round is not None

    def refresh(self, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        if self.state.refresh(now):
            self._sync()
            self._emit('lives_restored', {'lives': self.state.lives})
            return True
        return False

    def accepting(self, now: Optional[float] = None) -> bool:
        self.refresh(now)
        return self.has_target and self.state.status != DONE and not self.state.in_cooldown()

    def select(self, index: int) -> Optional[Verdict]:
        """Select a unit; returns the verdict when this selection completes the path."""
        now = self.clock()
        if not self.accepting(now):
            return None
        if not self.round.select(index):
            return None
        was_ready = self.state.status == READY
        self.state.mark_active(now)
        if not self.round.is_complete:
            if was_ready:
                self._sync()
            self._emit('selected', {'index': index, 'path': list(self.round.path)})
            return None
        return self._resolve(now)

    def _resolve(self, now: float) -> Verdict:
        verdict = self.round.resolve()
        cooldown = completed = False
        if verdict.correct:
            self.state.apply_correct(verdict.path_length, now)
            if self.state.progress >= 100:
                self.state.complete_stage(now)
                completed = True
            else:
                self.state.advance_stage(now)
        else:
            cooldown = self.state.apply_incorrect(now)
        self._sync()

        payload = verdict.to_dict()
        payload['participant'] = self.state.to_dict()
        self._emit('resolved', payload)
        if cooldown:
            self._emit('cooldown', {'until': self.state.cooldown_until})
        if completed:
            self._emit('stage_complete', {'score': self.state.score})

        if verdict.correct and not completed:
            self._load_target()
        else:
            self.round.reset()
        return verdict

    def undo(self) -> bool:
        if self.round is None:
            return False
        return self.round.undo()

    def clear(self) -> None:
        if self.round is not None:
            self.round.clear()

    def hint(self) -> Optional[str]:
        """Spend a hint and reveal the next unit the path needs."""
        if self.round is None or self.state.status == DONE:
            raise HintUnavailable('No active target')
        now = self.clock()
        self.state.use_hint(now)
        revealed = self.round.next_required()
        if revealed is not None and self.round.kind == KIND_WORD:
            revealed = revealed.upper()
        self._sync()
        self._emit('hint', {'value': revealed})
        return revealed

    def complete_stage(self) -> None:
        self.state.complete_stage(self.clock())
        self._sync()
        self._emit('stage_complete', {'score': self.state.score})

    def to_dict(self):
        return {
            'mode': self.mode,
            'stageCount': len(self.rotation),
            'participant': self.state.to_dict(),
            'hintsRemaining': self.state.hints_remaining,
            'inCooldown': self.state.in_cooldown(),
            'round': self.round.to_dict() if self.round else None,
        }
