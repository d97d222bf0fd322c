import random

import pytest

from relay.errors import ValidationError
from relay.services.solo import TOPIC_TEXTS, source_text_for, start_solo
from relay.services.targets import ALPHABET_WORD, WORD_SENTENCE


def test_source_text_for_topics():
    assert source_text_for('business') == TOPIC_TEXTS['business']
    assert source_text_for('custom', '  Bring your own words.  ') == 'Bring your own words.'
    # Empty custom text and unknown topics fall back to general
    assert source_text_for('custom', '   ') == TOPIC_TEXTS['general']
    assert source_text_for('astrology') == TOPIC_TEXTS['general']


def test_start_solo_validates(clock):
    with pytest.raises(ValidationError):
        start_solo('', ALPHABET_WORD, clock=clock)
    with pytest.raises(ValidationError):
        start_solo('Sam', 'freestyle', clock=clock)
    with pytest.raises(ValidationError):
        start_solo('Sam', ALPHABET_WORD, goal='fame', clock=clock)
    with pytest.raises(ValidationError):
        start_solo('Sam', ALPHABET_WORD, difficulty='insane', clock=clock)


def test_solo_run_uses_tier_duration(clock):
    run = start_solo('Sam', WORD_SENTENCE, difficulty='hard', clock=clock, rng=random.Random(2))
    assert run.remaining() == 120
    assert run.controller.round.kind == 'sentence'
    clock.advance(119.5)
    assert run.remaining() == 1
    clock.advance(1)
    assert run.expired
    assert run.select(0) is None
    assert run.controller.round.path == []


def test_solo_results_and_payload(clock):
    run = start_solo('Sam', ALPHABET_WORD, goal='score', clock=clock, rng=random.Random(2))
    payload = run.to_dict()
    assert payload['runId'] == run.id
    assert payload['difficulty'] == 'medium'
    assert payload['remainingSeconds'] == 180
    assert payload['round']['target'] == 'learning'
    summary = run.results()
    assert summary['goal'] == 'score'
    assert summary['achieved'] is False
