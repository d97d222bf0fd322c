"""Read-only analytics over participant snapshots.

Inputs are plain participant dicts as stored in the session record. Every
function recomputes from scratch; callers pass the latest full roster.
"""

import math
import time
from typing import Any, Dict, List, Mapping, Optional

HISTOGRAM_LABELS = ['0-20%', '20-40%', '40-60%', '60-80%', '80-100%']


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _field(participant, name, default=0):
    if isinstance(participant, Mapping):
        return participant.get(name, default)
    return getattr(participant, name, default)


def roster(snapshot) -> List[Dict[str, Any]]:
    """Participants of a session snapshot ordered by join time."""
    participants = (snapshot or {}).get('participants') or {}
    people = []
    for pid, data in participants.items():
        entry = dict(data)
        entry.setdefault('id', pid)
        people.append(entry)
    people.sort(key=lambda p: (p.get('joinedAt') or 0, p['id']))
    return people


def team_progress(participants) -> int:
    participants = list(participants or [])
    if not participants:
        return 0
    total = sum(_field(p, 'progress') for p in participants)
    return _round_half_up(total / len(participants))


def team_complete(participants) -> bool:
    # An empty roster is never complete
    participants = list(participants or [])
    if not participants:
        return False
    return all(_field(p, 'progress') >= 100 for p in participants)


def progress_histogram(participants) -> List[int]:
    buckets = [0] * len(HISTOGRAM_LABELS)
    for p in participants or []:
        progress = _field(p, 'progress')
        idx = min(int(progress // 20), len(buckets) - 1)
        buckets[max(0, idx)] += 1
    return buckets


def analytics(participants) -> Dict[str, Any]:
    participants = list(participants or [])
    count = len(participants)
    avg_score = _round_half_up(sum(_field(p, 'score') for p in participants) / count) if count else 0
    return {
        'count': count,
        'averageProgress': team_progress(participants),
        'averageScore': avg_score,
        'struggling': sum(1 for p in participants if _field(p, 'lives') <= 1),
        'completed': sum(1 for p in participants if _field(p, 'progress') >= 100),
        'histogram': progress_histogram(participants),
        'histogramLabels': list(HISTOGRAM_LABELS),
    }


def leaderboard(participants) -> List[Dict[str, Any]]:
    ranked = sorted(participants or [], key=lambda p: _field(p, 'score'), reverse=True)
    return [
        {
            'rank': i + 1,
            'id': _field(p, 'id', None),
            'name': _field(p, 'name', ''),
            'score': _field(p, 'score'),
            'progress': _field(p, 'progress'),
            'lives': _field(p, 'lives'),
        }
        for i, p in enumerate(ranked)
    ]


def results(participants) -> Dict[str, Any]:
    participants = list(participants or [])
    stats = analytics(participants)
    return {
        'completed': stats['completed'],
        'total': stats['count'],
        'averageScore': stats['averageScore'],
        'teamComplete': team_complete(participants),
        'leaderboard': leaderboard(participants),
    }


def solo_summary(goal: str, score: int, progress: int, hints_used: int, lives: int, max_lives: int = 5) -> Dict[str, Any]:
    """Goal verdict shown at the end of a solo run."""
    verdicts = {
        'score': (score >= 500, 'High Score Achieved!', 'Keep practicing for higher scores!'),
        'time': (progress >= 100, 'Speed Challenge Complete!', 'Almost there!'),
        'accuracy': (hints_used == 0 and lives == max_lives, 'Perfect Accuracy!', 'Try for no hints next time!'),
        'practice': (True, 'Great practice session!', 'Great practice session!'),
    }
    achieved, win, miss = verdicts.get(goal, verdicts['practice'])
    return {
        'goal': goal if goal in verdicts else 'practice',
        'achieved': achieved,
        'message': win if achieved else miss,
        'score': score,
        'progress': progress,
        'hintsUsed': hints_used,
        'lives': lives,
    }


def remaining_seconds(snapshot, now: Optional[float] = None) -> int:
    """The one timer every view computes: duration minus time since creation."""
    if not snapshot:
        return 0
    now = time.time() if now is None else now
    created = snapshot.get('createdAt')
    duration = snapshot.get('durationSeconds')
    elapsed = 0.0 if created is None else now - float(created)
    return max(0, math.ceil(float(0 if duration is None else duration) - elapsed))


def hint_is_fresh(hint, now: Optional[float] = None, window: float = 5.0) -> bool:
    """Broadcast hints are shown only shortly after their timestamp (local clock)."""
    if not hint or hint.get('timestamp') is None:
        return False
    now = time.time() if now is None else now
    # A hint stamped ahead of this clock is not shown until its time comes
    age = now - float(hint['timestamp'])
    return 0 <= age <= window


def session_view(snapshot, now: Optional[float] = None, hint_window: float = 5.0) -> Dict[str, Any]:
    """Full snapshot plus everything a view derives from it."""
    snapshot = dict(snapshot or {})
    people = roster(snapshot)
    snapshot['participants'] = people
    snapshot['analytics'] = analytics(people)
    snapshot['teamProgress'] = team_progress(people)
    snapshot['teamComplete'] = team_complete(people)
    snapshot['remainingSeconds'] = remaining_seconds(snapshot, now)
    snapshot['hintFresh'] = hint_is_fresh(snapshot.get('broadcastHint'), now, hint_window)
    return snapshot
