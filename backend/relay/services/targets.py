"""Target extraction from free text.

Both lists are always produced from the same source text so that
regenerating targets for a session is deterministic. A mode only decides
which of them a participant rotates through (see ``targets_for_mode``).
"""

import re
from typing import Dict, List, Tuple

ALPHABET_WORD = 'alphabet-word'
WORD_SENTENCE = 'word-sentence'
MIXED_RELAY = 'mixed-relay'
MODES = (ALPHABET_WORD, WORD_SENTENCE, MIXED_RELAY)

# Kinds of round: spell a word letter by letter, or build a sentence word by word
KIND_WORD = 'word'
KIND_SENTENCE = 'sentence'

MIN_WORD_LENGTH = 5
MAX_WORDS = 8
MAX_SENTENCES = 3

_WORD_RE = re.compile(r'[A-Za-z]+')
_SENTENCE_RE = re.compile(r'[^.!?]+[.!?]')


def extract_words(source_text: str) -> List[str]:
    seen = []
    for run in _WORD_RE.findall(source_text or ''):
        if len(run) < MIN_WORD_LENGTH:
            continue
        word = run.lower()
        if word not in seen:
            seen.append(word)
        if len(seen) == MAX_WORDS:
            break
    return seen


def extract_sentences(source_text: str) -> List[str]:
    sentences = [s.strip() for s in _SENTENCE_RE.findall(source_text or '')]
    return [s for s in sentences if s][:MAX_SENTENCES]


def generate(mode: str, source_text: str) -> Dict[str, List[str]]:
    """Return ``{'words': [...], 'sentences': [...]}`` for ``source_text``.

    Raises ValueError for an unknown mode. Empty lists are valid output.
    """
    if mode not in MODES:
        raise ValueError(f'unknown mode: {mode}')
    return {
        'words': extract_words(source_text),
        'sentences': extract_sentences(source_text),
    }


def targets_for_mode(mode: str, targets) -> List[Tuple[str, str]]:
    """Ordered ``(kind, target)`` rotation a participant plays through."""
    targets = targets or {}
    words = [(KIND_WORD, w) for w in targets.get('words') or []]
    sentences = [(KIND_SENTENCE, s) for s in targets.get('sentences') or []]
    if mode == ALPHABET_WORD:
        return words
    if mode == WORD_SENTENCE:
        return sentences
    if mode == MIXED_RELAY:
        return words + sentences
    raise ValueError(f'unknown mode: {mode}')
