"""Ordered-path round mechanic.

A round moves ``idle -> building -> resolved-correct | resolved-incorrect``
and back to ``idle`` on ``reset()``. Units consumed by a correct round stay
disabled for the rest of the board's life; units of an incorrect round are
released.
"""

import random
import string
from dataclasses import dataclass, field
from typing import List, Optional

from .targets import KIND_SENTENCE, KIND_WORD

IDLE = 'idle'
BUILDING = 'building'
RESOLVED_CORRECT = 'resolved-correct'
RESOLVED_INCORRECT = 'resolved-incorrect'

LETTER_DISTRACTORS = 15
WORD_DISTRACTORS = 5
DISTRACTOR_WORDS = ['the', 'and', 'but', 'not', 'very', 'much', 'some', 'many']


def canonical(kind: str, target: str) -> str:
    if kind == KIND_SENTENCE:
        return ' '.join(target.split())
    return target


def target_units(kind: str, target: str) -> List[str]:
    if kind == KIND_WORD:
        return list(target)
    if kind == KIND_SENTENCE:
        return target.split()
    raise ValueError(f'unknown round kind: {kind}')


def unit_count(kind: str, target: str) -> int:
    return len(target_units(kind, target))


def join_units(kind: str, values) -> str:
    separator = ' ' if kind == KIND_SENTENCE else ''
    return separator.join(values)


def resolve(kind: str, values, target: str) -> bool:
    """Case-insensitive exact match of the joined path against the target."""
    return join_units(kind, values).lower() == canonical(kind, target).lower()


@dataclass
class Unit:
    index: int
    value: str
    disabled: bool = False

    def to_dict(self):
        return {'index': self.index, 'value': self.value, 'disabled': self.disabled}


@dataclass
class Verdict:
    correct: bool
    kind: str
    target: str
    path: List[str] = field(default_factory=list)

    @property
    def path_length(self) -> int:
        return len(self.path)

    def to_dict(self):
        return {
            'correct': self.correct,
            'kind': self.kind,
            'target': self.target,
            'path': list(self.path),
        }


def build_units(kind: str, target: str, rng: Optional[random.Random] = None) -> List[Unit]:
    """Lay out a shuffled board holding every target unit plus distractors.

    Repeated letters get one unit per occurrence, otherwise a word like
    "hello" could never be spelled without reselecting a unit.
    """
    rng = rng or random.Random()
    needed = target_units(kind, target)
    if kind == KIND_WORD:
        pool = [c for c in string.ascii_lowercase if c not in set(needed)]
        extras = rng.sample(pool, min(LETTER_DISTRACTORS, len(pool)))
        values = [v.upper() for v in needed + extras]
    else:
        lowered = {w.lower() for w in needed}
        extras = [w for w in DISTRACTOR_WORDS[:WORD_DISTRACTORS] if w not in lowered]
        values = needed + extras
    rng.shuffle(values)
    return [Unit(index=i, value=v) for i, v in enumerate(values)]


class RoundPath:
    """Selection state for one board."""

    def __init__(self, kind: str, target: str, units: List[Unit]):
        self.kind = kind
        self.target = target
        self.units = units
        self.path: List[int] = []
        self.state = IDLE

    @property
    def required(self) -> int:
        return unit_count(self.kind, self.target)

    @property
    def is_complete(self) -> bool:
        return len(self.path) == self.required

    def values(self) -> List[str]:
        return [self.units[i].value for i in self.path]

    def select(self, index: int) -> bool:
        """Append a unit. Returns False (and changes nothing) if rejected."""
        if self.state in (RESOLVED_CORRECT, RESOLVED_INCORRECT):
            return False
        if not isinstance(index, int) or not 0 <= index < len(self.units):
            return False
        if self.units[index].disabled or index in self.path:
            return False
        self.path.append(index)
        self.state = BUILDING
        return True

    def undo(self) -> bool:
        if self.state != BUILDING or not self.path:
            return False
        self.path.pop()
        if not self.path:
            self.state = IDLE
        return True

    def clear(self) -> None:
        if self.state == BUILDING:
            self.path = []
            self.state = IDLE

    def resolve(self) -> Verdict:
        if self.state != BUILDING:
            raise RuntimeError(f'cannot resolve a round in state {self.state}')
        values = self.values()
        correct = resolve(self.kind, values, self.target)
        if correct:
            for i in self.path:
                self.units[i].disabled = True
            self.state = RESOLVED_CORRECT
        else:
            self.state = RESOLVED_INCORRECT
        return Verdict(correct=correct, kind=self.kind, target=self.target, path=values)

    def reset(self) -> None:
        """Return to idle after the feedback delay."""
        self.path = []
        self.state = IDLE

    def next_required(self) -> Optional[str]:
        needed = target_units(self.kind, canonical(self.kind, self.target))
        position = len(self.path)
        if position < len(needed):
            return needed[position]
        return None

    def to_dict(self):
        return {
            'kind': self.kind,
            'target': self.target,
            'state': self.state,
            'required': self.required,
            'path': list(self.path),
            'selection': join_units(self.kind, self.values()),
            'units': [u.to_dict() for u in self.units],
        }
