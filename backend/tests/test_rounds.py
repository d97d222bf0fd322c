import random

import pytest

from relay.errors import HintUnavailable
from relay.services.participants import DONE, ParticipantState, Rules
from relay.services.rounds import RoundController
from relay.services.targets import ALPHABET_WORD, MIXED_RELAY, WORD_SENTENCE

TARGETS = {'words': ['hello', 'world'], 'sentences': ['Hi there.']}


def _controller(clock, mode=ALPHABET_WORD, targets=TARGETS, **state_kwargs):
    mirrored = []
    state = ParticipantState('p1', 'Alice', joined_at=clock(), **state_kwargs)
    controller = RoundController(
        state, mode, targets,
        mirror=lambda s: mirrored.append(s.public_fields()),
        rng=random.Random(3), clock=clock,
    )
    return controller, mirrored


def _spell(controller, values):
    verdict = None
    used = []
    for value in values:
        index = next(
            u.index for u in controller.round.units
            if u.value.lower() == value.lower() and u.index not in used and not u.disabled
        )
        used.append(index)
        verdict = controller.select(index)
    return verdict


def test_correct_word_advances_to_next_target(clock):
    controller, mirrored = _controller(clock)
    assert controller.round.target == 'hello'
    verdict = _spell(controller, 'hello')
    assert verdict.correct
    state = controller.state
    assert state.score == 500
    assert state.lives == 4
    assert state.progress == 20
    assert state.current_stage == 1
    assert controller.round.target == 'world'
    # First activation mirrors once, the resolution mirrors again
    assert mirrored[0]['status'] == 'active'
    assert mirrored[-1]['score'] == 500


def test_selection_returns_none_until_path_complete(clock):
    controller, _ = _controller(clock)
    index = next(u.index for u in controller.round.units if u.value == 'H')
    assert controller.select(index) is None
    assert controller.round.path == [index]


def test_incorrect_word_costs_life_and_resets_board(clock):
    controller, _ = _controller(clock)
    verdict = _spell(controller, 'olleh')
    assert not verdict.correct
    assert controller.state.lives == 2
    assert controller.state.current_stage == 0
    assert controller.round.path == []
    assert controller.round.target == 'hello'


def test_cooldown_blocks_selection_until_restored(clock):
    controller, _ = _controller(clock, lives=1)
    events = []
    controller.add_listener(lambda event, payload: events.append(event))
    _spell(controller, 'olleh')
    assert controller.state.lives == 0
    assert 'cooldown' in events
    assert controller.select(0) is None
    assert controller.round.path == []
    clock.advance(3)
    assert controller.accepting()
    assert controller.state.lives == 1
    assert 'lives_restored' in events


def test_sentence_mode(clock):
    controller, _ = _controller(clock, mode=WORD_SENTENCE)
    assert controller.round.kind == 'sentence'
    verdict = _spell(controller, ['Hi', 'there.'])
    assert verdict.correct
    assert controller.state.score == 200


def test_rotation_wraps_for_short_target_lists(clock):
    controller, _ = _controller(clock, targets={'words': ['hello'], 'sentences': []})
    _spell(controller, 'hello')
    assert controller.state.current_stage == 1
    assert controller.round.target == 'hello'
    assert not any(u.disabled for u in controller.round.units)


def test_mixed_relay_moves_from_words_to_sentences(clock):
    controller, _ = _controller(clock, mode=MIXED_RELAY)
    _spell(controller, 'hello')
    _spell(controller, 'world')
    assert controller.round.kind == 'sentence'
    assert controller.round.target == 'Hi there.'


def test_stage_completes_at_full_progress(clock):
    controller, _ = _controller(clock, progress=80)
    events = []
    controller.add_listener(lambda event, payload: events.append(event))
    _spell(controller, 'hello')
    assert controller.state.progress == 100
    assert controller.state.status == DONE
    assert 'stage_complete' in events
    assert controller.select(0) is None


def test_listener_errors_do_not_block_state(clock):
    controller, _ = _controller(clock)

    def broken(event, payload):
        raise RuntimeError('boom')

    controller.add_listener(broken)
    verdict = _spell(controller, 'hello')
    assert verdict.correct
    assert controller.state.score == 500


def test_hint_reveals_next_letter(clock):
    controller, mirrored = _controller(clock, score=50)
    assert controller.hint() == 'H'
    assert controller.state.score == 40
    assert mirrored[-1]['hintsUsed'] == 1


def test_hint_on_hard_tier_raises(clock):
    controller, _ = _controller(clock, difficulty='hard', score=50)
    with pytest.raises(HintUnavailable):
        controller.hint()
    assert controller.state.score == 50


def test_no_targets_means_no_round(clock):
    controller, _ = _controller(clock, targets={'words': [], 'sentences': []})
    assert not controller.has_target
    assert controller.select(0) is None
    assert controller.undo() is False
    with pytest.raises(HintUnavailable):
        controller.hint()


def test_custom_progress_rules(clock):
    state = ParticipantState('p1', 'Alice', rules=Rules(progress_per_round=50), joined_at=clock())
    controller = RoundController(state, ALPHABET_WORD, TARGETS, rng=random.Random(1), clock=clock)
    _spell(controller, 'hello')
    _spell(controller, 'world')
    assert controller.state.status == DONE
