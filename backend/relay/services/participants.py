"""Per-participant economy: lives, score, progress, hints and cooldown."""

import time
from dataclasses import dataclass
from typing import Optional

from relay.errors import HintUnavailable, ValidationError

READY = 'ready'
ACTIVE = 'active'
DONE = 'done'


@dataclass(frozen=True)
class DifficultyTier:
    name: str
    hints_enabled: bool
    max_hints: int
    duration_sec: int


TIERS = {
    'easy': DifficultyTier('easy', hints_enabled=True, max_hints=999, duration_sec=300),
    'medium': DifficultyTier('medium', hints_enabled=True, max_hints=5, duration_sec=180),
    'hard': DifficultyTier('hard', hints_enabled=False, max_hints=0, duration_sec=120),
}


def get_tier(name: str) -> DifficultyTier:
    try:
        return TIERS[name]
    except KeyError:
        raise ValidationError(f'Unknown difficulty: {name}') from None


@dataclass(frozen=True)
class Rules:
    starting_lives: int = 3
    max_lives: int = 5
    cooldown_sec: float = 3.0
    progress_per_round: int = 20
    hint_cost: int = 10
    score_per_unit: int = 100

    @classmethod
    def from_config(cls, cfg) -> 'Rules':
        return cls(
            starting_lives=int(cfg.get('STARTING_LIVES', cls.starting_lives)),
            max_lives=int(cfg.get('MAX_LIVES', cls.max_lives)),
            cooldown_sec=float(cfg.get('COOLDOWN_SEC', cls.cooldown_sec)),
            progress_per_round=int(cfg.get('PROGRESS_PER_ROUND', cls.progress_per_round)),
            hint_cost=int(cfg.get('HINT_COST', cls.hint_cost)),
        )


def _clamp(value, low, high):
    return max(low, min(high, value))


class ParticipantState:
    """Mutable state of one participant, owned by that participant's client.

    Every mutation leaves lives in [0, max_lives], score >= 0 and progress
    in [0, 100]. Reaching zero lives starts a cooldown; ``refresh()`` after
    it elapses puts the participant back on exactly one life.
    """

    def __init__(self, participant_id: str, name: str, difficulty: str = 'easy',
                 rules: Optional[Rules] = None, lives: Optional[int] = None, score: int = 0,
                 progress: int = 0, current_stage: int = 0, status: str = READY,
                 joined_at: Optional[float] = None, last_update: Optional[float] = None,
                 hints_used: int = 0, cooldown_until: Optional[float] = None):
        self.rules = rules or Rules()
        self.tier = get_tier(difficulty)
        self.id = participant_id
        self.name = name
        self.lives = self.rules.starting_lives if lives is None else lives
        self.score = score
        self.progress = progress
        self.current_stage = current_stage
        self.status = status
        self.joined_at = joined_at if joined_at is not None else time.time()
        self.last_update = last_update if last_update is not None else self.joined_at
        self.hints_used = hints_used
        self.cooldown_until = cooldown_until
        self._clamp()

    def _clamp(self) -> None:
        self.lives = _clamp(int(self.lives), 0, self.rules.max_lives)
        self.score = max(0, int(self.score))
        self.progress = _clamp(int(self.progress), 0, 100)
        self.current_stage = max(0, int(self.current_stage))

    def _touch(self, now: Optional[float] = None) -> None:
        self.last_update = now if now is not None else time.time()

    @property
    def hints_remaining(self) -> int:
        if not self.tier.hints_enabled:
            return 0
        return max(0, self.tier.max_hints - self.hints_used)

    def in_cooldown(self) -> bool:
        return self.lives == 0

    def mark_active(self, now: Optional[float] = None) -> None:
        if self.status == READY:
            self.status = ACTIVE
            self._touch(now)

    def apply_correct(self, path_length: int, now: Optional[float] = None) -> None:
        self.score += self.rules.score_per_unit * path_length
        self.lives = min(self.rules.max_lives, self.lives + 1)
        self.progress += self.rules.progress_per_round
        self._clamp()
        self._touch(now)

    def apply_incorrect(self, now: Optional[float] = None) -> bool:
        """Lose a life. Returns True when this starts the cooldown."""
        now = now if now is not None else time.time()
        self.lives -= 1
        self._clamp()
        self._touch(now)
        if self.lives == 0:
            self.cooldown_until = now + self.rules.cooldown_sec
            return True
        return False

    def refresh(self, now: Optional[float] = None) -> bool:
        """Finish an elapsed cooldown. Returns True when lives were restored."""
        now = now if now is not None else time.time()
        if self.lives > 0:
            return False
        if self.cooldown_until is not None and now < self.cooldown_until:
            return False
        self.lives = 1
        self.cooldown_until = None
        self._touch(now)
        return True

    def use_hint(self, now: Optional[float] = None) -> None:
        if not self.tier.hints_enabled:
            raise HintUnavailable(f'Hints are disabled on {self.tier.name} difficulty')
        if self.hints_used >= self.tier.max_hints:
            raise HintUnavailable('No hints remaining')
        self.score = max(0, self.score - self.rules.hint_cost)
        self.hints_used += 1
        self._clamp()
        self._touch(now)

    def advance_stage(self, now: Optional[float] = None) -> None:
        self.current_stage += 1
        self._touch(now)

    def complete_stage(self, now: Optional[float] = None) -> None:
        self.progress = 100
        self.status = DONE
        self._touch(now)

    def public_fields(self):
        """Fields mirrored to the store after each mutation."""
        return {
            'lives': self.lives,
            'score': self.score,
            'progress': self.progress,
            'currentStage': self.current_stage,
            'status': self.status,
            'hintsUsed': self.hints_used,
            'cooldownUntil': self.cooldown_until,
            'lastUpdate': self.last_update,
        }

    def to_dict(self):
        data = {
            'id': self.id,
            'name': self.name,
            'difficulty': self.tier.name,
            'joinedAt': self.joined_at,
        }
        data.update(self.public_fields())
        return data

    @classmethod
    def from_dict(cls, data, rules: Optional[Rules] = None) -> 'ParticipantState':
        return cls(
            participant_id=data['id'],
            name=data.get('name', ''),
            difficulty=data.get('difficulty') or 'easy',
            rules=rules,
            lives=data.get('lives'),
            score=data.get('score', 0),
            progress=data.get('progress', 0),
            current_stage=data.get('currentStage', 0),
            status=data.get('status', READY),
            joined_at=data.get('joinedAt'),
            last_update=data.get('lastUpdate'),
            hints_used=data.get('hintsUsed', 0),
            cooldown_until=data.get('cooldownUntil'),
        )
