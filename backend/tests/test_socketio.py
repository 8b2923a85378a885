def _names(events):
    return [e['name'] for e in events]


def _last(events, name):
    matching = [e['args'][0] for e in events if e['name'] == name]
    return matching[-1] if matching else None


def test_socket_connect_and_ping(flask_app):
    from armada import socketio
    sio_client = socketio.test_client(flask_app, namespace='/ws')
    assert sio_client.is_connected('/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'connected' for pkt in received)

    ack = sio_client.emit('ping', namespace='/ws', callback=True)
    assert ack['pong'] is True
    assert isinstance(ack['serverTime'], int)
    sio_client.disconnect(namespace='/ws')


def test_join_with_invalid_code_returns_error(sio_factory):
    sio_client = sio_factory()
    ack = sio_client.emit('joinRoom', {'roomCode': '!!'}, namespace='/ws', callback=True)
    assert ack['code'] == 'InvalidRoomCode'


def test_two_players_play_until_game_over(sio_factory, scheduler):
    host = sio_factory()
    guest = sio_factory()

    a = host.emit('joinRoom', {'roomCode': 'abc123'}, namespace='/ws', callback=True)
    b = guest.emit('joinRoom', 'ABC123', namespace='/ws', callback=True)
    assert a['success'] and b['success']
    assert 'roomReady' in _names(host.get_received('/ws'))
    guest.get_received('/ws')

    assert host.emit('submitBoard', {'board': [[0] * 10] * 10}, namespace='/ws', callback=True) == {'success': True}
    assert guest.emit('submitBoard', {'board': [[1] * 10] * 10}, namespace='/ws', callback=True) == {'success': True}
    host_events = host.get_received('/ws')
    assert _last(host_events, 'gameStarted')['startedBy'] == a['playerIdentity']
    assert _last(host_events, 'turnBegan')['currentPlayer'] == a['playerIdentity']
    guest.get_received('/ws')

    assert host.emit('submitShot', {'row': 3, 'col': 4}, namespace='/ws', callback=True) == {'success': True}
    incoming = _last(guest.get_received('/ws'), 'shotIncoming')
    assert (incoming['row'], incoming['col'], incoming['from']) == (3, 4, a['playerIdentity'])
    assert 'shotIncoming' not in _names(host.get_received('/ws'))

    ack = guest.emit('submitResult', {'outcome': 'hit', 'row': 3, 'col': 4, 'allSunk': False},
                     namespace='/ws', callback=True)
    assert ack == {'success': True}
    assert _last(host.get_received('/ws'), 'shotFeedback')['nextPlayer'] == b['playerIdentity']
    assert _last(guest.get_received('/ws'), 'turnBegan')['currentPlayer'] == b['playerIdentity']

    # The host no longer holds the turn
    ack = host.emit('submitShot', {'row': 0, 'col': 0}, namespace='/ws', callback=True)
    assert ack['code'] == 'NotYourTurn'

    scheduler.advance(2)
    guest.emit('submitShot', {'row': 1, 'col': 1}, namespace='/ws', callback=True)
    host.emit('submitResult', {'outcome': 'sunk', 'row': 1, 'col': 1, 'allSunk': True}, namespace='/ws', callback=True)
    for sio_client in (host, guest):
        ended = _last(sio_client.get_received('/ws'), 'gameEnded')
        assert ended['winner'] == b['playerIdentity']
        assert ended['loser'] == a['playerIdentity']


def test_reconnect_with_session_token(flask_app, sio_factory):
    host = sio_factory()
    guest = sio_factory()
    a = host.emit('joinRoom', {'roomCode': 'ABC123'}, namespace='/ws', callback=True)
    guest.emit('joinRoom', {'roomCode': 'ABC123'}, namespace='/ws', callback=True)
    guest.get_received('/ws')

    host.disconnect(namespace='/ws')
    dropped = _last(guest.get_received('/ws'), 'opponentDisconnected')
    assert dropped['graceSeconds'] == 300

    returning = sio_factory()
    ack = returning.emit('joinRoom', {'roomCode': 'ABC123', 'sessionToken': a['sessionToken']},
                         namespace='/ws', callback=True)
    assert ack['resumed'] is True
    assert ack['playerIdentity'] == a['playerIdentity']
    snapshot = _last(returning.get_received('/ws'), 'stateSnapshot')
    assert len(snapshot['players']) == 2
    assert 'opponentReconnected' in _names(guest.get_received('/ws'))


def test_leave_room_notifies_opponent(flask_app, sio_factory):
    host = sio_factory()
    guest = sio_factory()
    host.emit('joinRoom', 'ABC123', namespace='/ws', callback=True)
    guest.emit('joinRoom', 'ABC123', namespace='/ws', callback=True)
    guest.get_received('/ws')

    assert host.emit('leaveRoom', namespace='/ws', callback=True) == {'success': True}
    events = guest.get_received('/ws')
    assert 'opponentLeft' in _names(events)
    assert len(_last(events, 'playersUpdated')['players']) == 1
    room = flask_app.extensions['armada'].store.get('ABC123')
    assert len(room.players) == 1
