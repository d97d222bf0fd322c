"""Session (room) lifecycle on top of a SyncChannel.

Layout in the store::

    rooms/<code>                      session record
    rooms/<code>/participants/<id>    one participant, written by its own client
    owners/<code>                     owner token, never pushed to participants

Owner actions take the session code; participant actions take the
``SessionContext`` handed out by ``join_session``.
"""

import logging
import random
import string
import time
from typing import Any, Callable, Dict, List, Optional

from relay.errors import (
    CreateFailed,
    InvalidTransition,
    NotFound,
    SessionClosed,
    StoreFailure,
    ValidationError,
)
from relay.sync import Subscription, SyncChannel, join_path
from . import aggregator
from .aggregator import hint_is_fresh, remaining_seconds
from .participants import ParticipantState, Rules, get_tier
from .targets import MODES, generate

logger = logging.getLogger(__name__)

WAITING = 'waiting'
ACTIVE = 'active'
PAUSED = 'paused'
ENDED = 'ended'
STATUSES = (WAITING, ACTIVE, PAUSED, ENDED)

TRANSITIONS = {
    WAITING: {ACTIVE, ENDED},
    ACTIVE: {PAUSED, ENDED},
    PAUSED: {ACTIVE, ENDED},
    ENDED: set(),
}

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_code(length: int = 6, rng=None) -> str:
    return ''.join((rng or random).choices(CODE_ALPHABET, k=length))


def normalize_code(code) -> str:
    code = (code or '').strip().upper()
    if not code:
        raise ValidationError('Session code is required')
    return code


def session_path(code: str) -> str:
    return join_path('rooms', code)


def participant_path(code: str, participant_id: str) -> str:
    return join_path('rooms', code, 'participants', participant_id)


def owner_path(code: str) -> str:
    return join_path('owners', code)


class SessionContext:
    """A participant's connection to one session, from join until leave."""

    def __init__(self, manager: 'SessionManager', code: str, participant_id: str,
                 name: str, snapshot: Optional[Dict[str, Any]] = None):
        self.manager = manager
        self.code = code
        self.participant_id = participant_id
        self.name = name
        self.snapshot = snapshot or {}
        self.subscriptions: List[Subscription] = []
        self.closed = False

    @property
    def mode(self) -> Optional[str]:
        return self.snapshot.get('mode')

    @property
    def targets(self) -> Dict[str, List[str]]:
        return self.snapshot.get('targets') or {'words': [], 'sentences': []}

    def attach(self, subscription: Subscription) -> None:
        self.subscriptions.append(subscription)

    def close(self) -> None:
        for sub in self.subscriptions:
            sub.cancel()
        self.subscriptions = []
        self.closed = True


class SessionManager:

    def __init__(self, channel: SyncChannel, rules: Optional[Rules] = None, code_length: int = 6,
                 max_attempts: int = 10, default_difficulty: str = 'easy', hint_fresh_sec: float = 5.0,
                 clock: Callable[[], float] = time.time, rng=None):
        self.channel = channel
        self.rules = rules or Rules()
        self.code_length = code_length
        self.max_attempts = max_attempts
        self.default_difficulty = default_difficulty
        self.hint_fresh_sec = hint_fresh_sec
        self.clock = clock
        self.rng = rng
        self._end_listeners: List[Callable[[str], None]] = []

    @classmethod
    def from_config(cls, channel: SyncChannel, cfg) -> 'SessionManager':
        return cls(
            channel,
            rules=Rules.from_config(cfg),
            code_length=int(cfg.get('CODE_LENGTH', 6)),
            max_attempts=int(cfg.get('CODE_MAX_ATTEMPTS', 10)),
            default_difficulty=cfg.get('DEFAULT_DIFFICULTY', 'easy'),
            hint_fresh_sec=float(cfg.get('HINT_FRESH_SEC', 5)),
        )

    def on_end(self, listener: Callable[[str], None]) -> None:
        """Call ``listener(code)`` whenever a session moves to ended."""
        self._end_listeners.append(listener)

    def generate_code(self) -> str:
        return generate_code(self.code_length, self.rng)

    # -- owner actions ------------------------------------------------------

    def create_session(self, owner_name, mode, source_text, duration_minutes,
                       difficulty: Optional[str] = None, owner_token: Optional[str] = None) -> str:
        owner_name = (owner_name or '').strip()
        source_text = (source_text or '').strip()
        if not owner_name or not source_text:
            raise ValidationError('Owner name and source text are required')
        if mode not in MODES:
            raise ValidationError(f'Unknown mode: {mode}')
        try:
            duration_seconds = int(round(float(duration_minutes) * 60))
        except (TypeError, ValueError):
            raise ValidationError('Duration must be a number of minutes') from None
        if duration_seconds <= 0:
            raise ValidationError('Duration must be positive')
        difficulty = difficulty or self.default_difficulty
        get_tier(difficulty)

        now = self.clock()
        record = {
            'ownerName': owner_name,
            'mode': mode,
            'sourceText': source_text,
            'targets': generate(mode, source_text),
            'durationSeconds': duration_seconds,
            'difficulty': difficulty,
            'status': WAITING,
            'createdAt': now,
            'statusChangedAt': now,
        }
        for attempt in range(1, self.max_attempts + 1):
            code = self.generate_code()
            try:
                claimed = self.channel.create_if_absent(session_path(code), dict(record, code=code))
                if claimed and owner_token:
                    self.channel.write(owner_path(code), owner_token)
            except StoreFailure as exc:
                raise CreateFailed('Failed to create session') from exc
            if claimed:
                logger.info(f"[create] code={code} mode={mode} duration={duration_seconds}s attempt={attempt}")
                return code
            logger.info(f"[create-collision] code={code} attempt={attempt}")
        raise CreateFailed(f'No free session code after {self.max_attempts} attempts')

    def verify_owner(self, code, token) -> bool:
        if not token:
            return False
        stored = self.channel.read(owner_path(normalize_code(code)))
        return stored is not None and stored == token

    def snapshot(self, code) -> Dict[str, Any]:
        code = normalize_code(code)
        snap = self.channel.read(session_path(code))
        if snap is None:
            raise NotFound('Session not found')
        return snap

    def _open_snapshot(self, code) -> Dict[str, Any]:
        snap = self.snapshot(code)
        if snap.get('status') == ENDED:
            raise SessionClosed('Session has ended')
        return snap

    def set_status(self, code, status) -> Dict[str, Any]:
        code = normalize_code(code)
        if status not in STATUSES:
            raise ValidationError(f'Unknown status: {status}')
        current = self.snapshot(code).get('status', WAITING)
        if current == status:
            return {'status': current, 'changed': False}
        if status not in TRANSITIONS.get(current, set()):
            raise InvalidTransition(f'Cannot change status from {current} to {status}')
        now = self.clock()
        self.channel.merge(session_path(code), {'status': status, 'statusChangedAt': now})
        logger.info(f"[status] code={code} {current} -> {status}")
        if status == ENDED:
            for listener in list(self._end_listeners):
                try:
                    listener(code)
                except Exception:
                    logger.exception(f"[end-listener-error] code={code}")
        return {'status': status, 'changed': True}

    def extend_duration(self, code, delta_seconds) -> int:
        code = normalize_code(code)
        try:
            delta_seconds = int(delta_seconds)
        except (TypeError, ValueError):
            raise ValidationError('Extension must be a whole number of seconds') from None
        if delta_seconds <= 0:
            raise ValidationError('Extension must be positive')
        self._open_snapshot(code)
        new_duration = self.channel.increment(join_path(session_path(code), 'durationSeconds'), delta_seconds)
        logger.info(f"[extend] code={code} +{delta_seconds}s duration={new_duration}s")
        return new_duration

    def broadcast_hint(self, code, text) -> Dict[str, Any]:
        code = normalize_code(code)
        text = (text or '').strip()
        if not text:
            raise ValidationError('Hint text is required')
        self._open_snapshot(code)
        hint = {'text': text, 'timestamp': self.clock()}
        self.channel.merge(session_path(code), {'broadcastHint': hint})
        logger.info(f"[hint] code={code} len={len(text)}")
        return hint

    def end_if_team_complete(self, code) -> bool:
        snap = self.snapshot(code)
        if snap.get('status') != ACTIVE:
            return False
        if not aggregator.team_complete(aggregator.roster(snap)):
            return False
        self.set_status(code, ENDED)
        logger.info(f"[team-complete] code={normalize_code(code)}")
        return True

    def end_if_expired(self, code, now: Optional[float] = None) -> bool:
        snap = self.snapshot(code)
        if snap.get('status') not in (ACTIVE, PAUSED):
            return False
        if remaining_seconds(snap, self.clock() if now is None else now) > 0:
            return False
        self.set_status(code, ENDED)
        return True

    def remaining(self, code, now: Optional[float] = None) -> int:
        return remaining_seconds(self.snapshot(code), self.clock() if now is None else now)

    def hint_is_fresh(self, hint, now: Optional[float] = None) -> bool:
        return hint_is_fresh(hint, self.clock() if now is None else now, self.hint_fresh_sec)

    # -- participant actions ------------------------------------------------

    def join_session(self, participant_name, code) -> SessionContext:
        participant_name = (participant_name or '').strip()
        if not participant_name:
            raise ValidationError('Name and session code are required')
        code = normalize_code(code)
        snap = self._open_snapshot(code)

        participants = join_path(session_path(code), 'participants')
        participant_id = self.channel.create_child(participants)
        state = ParticipantState(
            participant_id,
            participant_name,
            difficulty=snap.get('difficulty') or self.default_difficulty,
            rules=self.rules,
            joined_at=self.clock(),
        )
        self.channel.write(participant_path(code, participant_id), state.to_dict())
        logger.info(f"[join] code={code} participant={participant_id}")
        return SessionContext(self, code, participant_id, participant_name, snapshot=self.snapshot(code))

    def participant_state(self, code, participant_id) -> ParticipantState:
        code = normalize_code(code)
        data = self.channel.read(participant_path(code, participant_id))
        if not data:
            raise NotFound('Participant not found')
        data.setdefault('id', participant_id)
        return ParticipantState.from_dict(data, rules=self.rules)

    def context_for(self, code, participant_id) -> SessionContext:
        """Rebuild a context for a participant that joined earlier."""
        state = self.participant_state(code, participant_id)
        code = normalize_code(code)
        return SessionContext(self, code, participant_id, state.name, snapshot=self.snapshot(code))

    def _merge_participant(self, context: SessionContext, fields, tag: str) -> bool:
        # Merging into a removed record would resurrect a partial participant
        if context.closed:
            return False
        path = participant_path(context.code, context.participant_id)
        try:
            status = self.channel.read(join_path(session_path(context.code), 'status'))
            if status == ENDED:
                logger.info(f"[{tag}-skip] code={context.code} participant={context.participant_id} session ended")
                return False
            if self.channel.read(join_path(path, 'id')) is None:
                logger.info(f"[{tag}-skip] code={context.code} participant={context.participant_id} removed")
                return False
            self.channel.merge(path, fields)
        except StoreFailure as exc:
            logger.warning(f"[{tag}-fail] code={context.code} participant={context.participant_id} error={exc.message}")
            return False
        return True

    def mirror(self, context: SessionContext, state: ParticipantState) -> bool:
        """Push the participant's public fields. Failures never interrupt play."""
        return self._merge_participant(context, state.public_fields(), 'mirror')

    def heartbeat(self, context: SessionContext) -> bool:
        return self._merge_participant(context, {'lastUpdate': self.clock()}, 'heartbeat')

    def leave_session(self, context: SessionContext) -> None:
        if context.closed:
            return
        self.channel.remove(participant_path(context.code, context.participant_id))
        context.close()
        logger.info(f"[leave] code={context.code} participant={context.participant_id}")

    def subscribe(self, code, on_value: Callable[[Any], None],
                  context: Optional[SessionContext] = None) -> Subscription:
        sub = self.channel.subscribe(session_path(normalize_code(code)), on_value)
        if context is not None:
            context.attach(sub)
        return sub
