import threading

import pytest

from relay import db
from relay.errors import StoreFailure
from relay.sync import MemoryChannel
from relay.sync.channel import compact, paths_related
from relay.sync.sql import SqlChannel, flatten


@pytest.fixture(params=['memory', 'sql'])
def store(request):
    if request.param == 'memory':
        yield MemoryChannel()
    else:
        request.getfixturevalue('flask_app')
        yield SqlChannel(db)


def test_helpers():
    assert compact({'a': None, 'b': {}, 'c': {'d': 1}}) == {'c': {'d': 1}}
    assert paths_related('rooms/A', 'rooms/A/participants/x')
    assert not paths_related('rooms/A', 'rooms/AB')
    assert sorted(flatten('r', {'a': 1, 'b': {'c': 'x'}})) == [('r/a', 1), ('r/b/c', 'x')]


def test_write_read_tree(store):
    store.write('rooms/ABC', {'status': 'waiting', 'targets': {'words': ['hello'], 'sentences': []}})
    assert store.read('rooms/ABC') == {'status': 'waiting', 'targets': {'words': ['hello'], 'sentences': []}}
    assert store.read('rooms/ABC/status') == 'waiting'
    assert store.read('rooms/NOPE') is None


def test_write_replaces_subtree(store):
    store.write('rooms/ABC', {'a': 1, 'b': 2})
    store.write('rooms/ABC', {'c': 3})
    assert store.read('rooms/ABC') == {'c': 3}


def test_merge_keeps_siblings(store):
    store.write('rooms/ABC', {'status': 'waiting', 'durationSeconds': 60})
    store.merge('rooms/ABC', {'status': 'active', 'broadcastHint': {'text': 'hi', 'timestamp': 1.5}})
    assert store.read('rooms/ABC') == {
        'status': 'active', 'durationSeconds': 60, 'broadcastHint': {'text': 'hi', 'timestamp': 1.5},
    }


def test_remove(store):
    store.write('rooms/ABC/participants/p1', {'name': 'Alice'})
    store.write('rooms/ABC/participants/p2', {'name': 'Bob'})
    store.remove('rooms/ABC/participants/p1')
    assert store.read('rooms/ABC/participants') == {'p2': {'name': 'Bob'}}


def test_increment(store):
    store.write('rooms/ABC', {'durationSeconds': 60})
    assert store.increment('rooms/ABC/durationSeconds', 30) == 90
    assert store.increment('rooms/ABC/counter', 2) == 2
    assert store.read('rooms/ABC/durationSeconds') == 90


def test_increment_rejects_non_numeric(store):
    store.write('rooms/ABC', {'status': 'waiting', 'nested': {'x': 1}})
    with pytest.raises(StoreFailure):
        store.increment('rooms/ABC/nested', 1)


def test_create_if_absent(store):
    assert store.create_if_absent('rooms/ABC', {'owner': 'first'}) is True
    assert store.create_if_absent('rooms/ABC', {'owner': 'second'}) is False
    assert store.read('rooms/ABC/owner') == 'first'


def test_create_child_keys_are_unique_and_ordered(store):
    keys = [store.create_child('rooms/ABC/participants') for _ in range(20)]
    assert len(set(keys)) == 20
    assert [k[:13] for k in keys] == sorted(k[:13] for k in keys)


def test_subscribe_delivers_current_then_changes(store):
    store.write('rooms/ABC', {'status': 'waiting'})
    seen = []
    sub = store.subscribe('rooms/ABC', seen.append)
    assert seen == [{'status': 'waiting'}]
    store.merge('rooms/ABC', {'status': 'active'})
    store.write('rooms/ABC/participants/p1', {'name': 'Alice'})
    store.write('rooms/OTHER', {'status': 'waiting'})
    assert len(seen) == 3
    assert seen[-1] == {'status': 'active', 'participants': {'p1': {'name': 'Alice'}}}
    sub.cancel()
    store.merge('rooms/ABC', {'status': 'ended'})
    assert len(seen) == 3
    assert store.subscriber_count() == 0


def test_observer_errors_are_contained(store):
    def broken(value):
        raise RuntimeError('observer failed')

    store.subscribe('rooms/ABC', broken)
    store.write('rooms/ABC', {'status': 'waiting'})
    assert store.read('rooms/ABC/status') == 'waiting'


def test_deliveries_are_copies():
    store = MemoryChannel()
    store.write('rooms/ABC', {'status': 'waiting'})
    seen = []
    store.subscribe('rooms/ABC', seen.append)
    seen[-1]['status'] = 'tampered'
    assert store.read('rooms/ABC/status') == 'waiting'


def _hammer(increment, threads=8, per_thread=25):
    workers = [threading.Thread(target=lambda: [increment() for _ in range(per_thread)]) for _ in range(threads)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()
    return threads * per_thread


def test_memory_increment_is_atomic_under_threads():
    store = MemoryChannel()
    store.write('rooms/ABC', {'durationSeconds': 60})
    added = _hammer(lambda: store.increment('rooms/ABC/durationSeconds', 1))
    assert store.read('rooms/ABC/durationSeconds') == 60 + added


def test_sql_increment_is_atomic_under_threads(flask_app):
    store = SqlChannel(db)
    store.write('rooms/ABC', {'durationSeconds': 60})

    def bump():
        with flask_app.app_context():
            store.increment('rooms/ABC/durationSeconds', 1)

    added = _hammer(bump)
    assert store.read('rooms/ABC/durationSeconds') == 60 + added
