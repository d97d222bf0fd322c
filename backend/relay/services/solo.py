"""Single-player practice runs.

A solo run plays the same rounds as a session participant but is never
mirrored to the store. Its clock starts immediately and lasts as long as
the difficulty tier allows.
"""

import secrets
import threading
import time
from typing import Callable, Optional

from relay.errors import HintUnavailable, ValidationError
from . import aggregator
from .participants import ParticipantState, Rules, get_tier
from .rounds import RoundController
from .targets import MODES, generate

TOPIC_TEXTS = {
    'general': "Learning wonderful process helps students develop skills through practice dedication. Knowledge grows stronger when challenge yourself daily. Success comes from persistent effort continuous improvement.",
    'academic': "Research demonstrates significant correlation between vocabulary acquisition academic achievement. Scholars investigate phenomena utilizing empirical methodologies rigorous analysis. Comprehension facilitates effective communication professional contexts.",
    'business': "Marketing strategy requires comprehensive analysis customer behavior market trends. Management focuses maximizing productivity efficiency organizational performance. Leadership involves strategic decision making effective communication.",
    'technology': "Software development requires systematic approach problem solving debugging. Programming languages enable developers create innovative applications solutions. Technology advances rapidly requiring continuous learning adaptation.",
}
GOALS = ('score', 'time', 'accuracy', 'practice')


def source_text_for(topic: str, custom_text: Optional[str] = None) -> str:
    if topic == 'custom' and custom_text and custom_text.strip():
        return custom_text.strip()
    return TOPIC_TEXTS.get(topic, TOPIC_TEXTS['general'])


class SoloRun:

    def __init__(self, run_id: str, controller: RoundController, goal: str, duration: int,
                 clock: Callable[[], float] = time.time):
        self.id = run_id
        self.controller = controller
        self.goal = goal
        self.duration = duration
        self.clock = clock
        self.started_at = clock()
        self.lock = threading.RLock()

    @property
    def state(self) -> ParticipantState:
        return self.controller.state

    def remaining(self, now: Optional[float] = None) -> int:
        snapshot = {'createdAt': self.started_at, 'durationSeconds': self.duration}
        return aggregator.remaining_seconds(snapshot, self.clock() if now is None else now)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def stale(self, retention: float, now: Optional[float] = None) -> bool:
        """Expired for longer than ``retention`` seconds, so its results are no longer kept."""
        now = self.clock() if now is None else now
        return now - (self.started_at + self.duration) > retention

    def select(self, index: int):
        if self.expired:
            return None
        return self.controller.select(index)

    def hint(self):
        if self.expired:
            raise HintUnavailable('Practice time is over')
        return self.controller.hint()

    def results(self):
        state = self.state
        return aggregator.solo_summary(
            self.goal, state.score, state.progress, state.hints_used, state.lives, state.rules.max_lives,
        )

    def to_dict(self):
        data = self.controller.to_dict()
        data.update({
            'runId': self.id,
            'goal': self.goal,
            'difficulty': self.state.tier.name,
            'remainingSeconds': self.remaining(),
        })
        return data


def start_solo(name, mode, difficulty='medium', topic='general', custom_text=None, goal='practice',
               rules: Optional[Rules] = None, clock: Callable[[], float] = time.time, rng=None) -> SoloRun:
    name = (name or '').strip()
    if not name:
        raise ValidationError('Please enter your name')
    if mode not in MODES:
        raise ValidationError(f'Unknown mode: {mode}')
    if goal not in GOALS:
        raise ValidationError(f'Unknown goal: {goal}')
    tier = get_tier(difficulty)

    run_id = secrets.token_hex(8)
    targets = generate(mode, source_text_for(topic, custom_text))
    state = ParticipantState(run_id, name, difficulty=tier.name, rules=rules, joined_at=clock())
    controller = RoundController(state, mode, targets, rng=rng, clock=clock)
    return SoloRun(run_id, controller, goal, tier.duration_sec, clock=clock)
