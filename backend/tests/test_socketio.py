def _create_and_join(client, name='Alice'):
    res = client.post('/api/sessions/create', json={
        'owner_name': 'Ms. Owner', 'source_text': 'Hello world this is testing.', 'duration_minutes': 2,
    })
    created = res.get_json()
    res = client.post('/api/sessions/join', json={'code': created['code'], 'name': name})
    return created['code'], created['owner_token'], res.get_json()['participant']


def _events(sio_client, name):
    return [pkt for pkt in sio_client.get_received('/ws') if pkt['name'] == name]


def test_socket_connect(sio_client):
    # Ensure we are connected to /ws
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'connected' for pkt in received)


def test_join_unknown_session_reports_error(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('join_session', {'code': 'ZZZZZZ'}, namespace='/ws')
    errors = _events(sio_client, 'error')
    assert errors and errors[0]['args'][0]['message'] == 'Session not found'


def test_join_session_receives_snapshot(client, sio_client):
    code, _, alice = _create_and_join(client)
    sio_client.get_received('/ws')
    sio_client.emit('join_session', {'code': code, 'participant_id': alice['id']}, namespace='/ws')
    received = sio_client.get_received('/ws')
    names = [pkt['name'] for pkt in received]
    assert 'joined' in names
    update = [pkt for pkt in received if pkt['name'] == 'state_update'][-1]['args'][0]
    assert update['code'] == code
    assert update['participants'][0]['name'] == 'Alice'
    assert update['analytics']['count'] == 1
    assert update['remainingSeconds'] == 120


def test_state_updates_follow_store_changes(client, sio_client):
    code, token, _ = _create_and_join(client)
    sio_client.emit('join_session', {'code': code}, namespace='/ws')
    sio_client.get_received('/ws')

    client.post(f'/api/sessions/{code}/status', json={'owner_token': token, 'status': 'active'})
    updates = _events(sio_client, 'state_update')
    assert updates
    assert updates[-1]['args'][0]['status'] == 'active'

    client.post('/api/sessions/join', json={'code': code, 'name': 'Bob'})
    updates = _events(sio_client, 'state_update')
    assert [p['name'] for p in updates[-1]['args'][0]['participants']] == ['Alice', 'Bob']


def test_round_events_reach_the_seat(client, sio_client):
    code, token, alice = _create_and_join(client)
    client.post(f'/api/sessions/{code}/status', json={'owner_token': token, 'status': 'active'})
    sio_client.emit('join_session', {'code': code, 'participant_id': alice['id']}, namespace='/ws')
    sio_client.get_received('/ws')

    base = f"/api/sessions/{code}/participants/{alice['id']}"
    board = client.get(f'{base}/round').get_json()['round']
    first = next(u['index'] for u in board['units'] if u['value'] == 'H')
    client.post(f'{base}/select', json={'unit': first})
    events = _events(sio_client, 'round_event')
    assert events[-1]['args'][0]['event'] == 'selected'
    assert events[-1]['args'][0]['path'] == [first]


def test_leave_session_removes_participant(client, sio_client):
    code, _, alice = _create_and_join(client)
    sio_client.emit('join_session', {'code': code, 'participant_id': alice['id']}, namespace='/ws')
    sio_client.get_received('/ws')
    sio_client.emit('leave_session', {'code': code, 'participant_id': alice['id']}, namespace='/ws')
    assert _events(sio_client, 'left')
    state = client.get(f'/api/sessions/{code}/state').get_json()
    assert state['participants'] == []


def test_ping_refreshes_heartbeat(client, sio_client):
    code, _, alice = _create_and_join(client)
    sio_client.get_received('/ws')
    payload = {'code': code, 'participant_id': alice['id']}
    sio_client.emit('ping', payload, namespace='/ws')
    pongs = _events(sio_client, 'pong')
    assert pongs and pongs[0]['args'][0] == payload


def test_second_watcher_gets_current_snapshot(flask_app, client, sio_client):
    from relay import socketio as _sio
    code, _, _ = _create_and_join(client)
    sio_client.emit('join_session', {'code': code}, namespace='/ws')
    other = _sio.test_client(flask_app, namespace='/ws')
    other.get_received('/ws')
    other.emit('join_session', {'code': code}, namespace='/ws')
    updates = [pkt for pkt in other.get_received('/ws') if pkt['name'] == 'state_update']
    other.disconnect(namespace='/ws')
    assert updates
    assert updates[-1]['args'][0]['code'] == code
