def test_index_and_health(client):
    res = client.get('/')
    assert res.status_code == 200
    res = client.get('/health')
    assert res.status_code == 200
    assert res.get_json() == {'status': 'ok', 'rooms': 0}


def test_room_state(client, sio_factory):
    player = sio_factory()
    a = player.emit('joinRoom', 'abc123', namespace='/ws', callback=True)
    player.emit('submitBoard', {'board': 'secret'}, namespace='/ws', callback=True)

    res = client.get('/api/rooms/abc123')
    assert res.status_code == 200
    state = res.get_json()
    assert state['roomCode'] == 'ABC123'
    assert state['players'] == [a['playerIdentity']]
    assert state['phase'] == 'waiting_for_players'
    assert 'boards' not in state
    assert 'secret' not in res.get_data(as_text=True)


def test_room_state_errors(client):
    assert client.get('/api/rooms/NOPE').status_code == 404
    res = client.get('/api/rooms/' + 'A' * 40)
    assert res.status_code == 400
    assert 'error' in res.get_json()


def test_cli_lists_and_evicts_rooms(flask_app, sio_factory):
    runner = flask_app.test_cli_runner()
    result = runner.invoke(args=['rooms-list'])
    assert 'No active rooms.' in result.output

    sio_factory().emit('joinRoom', 'ABC123', namespace='/ws', callback=True)
    result = runner.invoke(args=['rooms-list'])
    assert 'ABC123' in result.output
    assert 'waiting_for_players' in result.output

    result = runner.invoke(args=['rooms-evict', 'abc123'])
    assert 'Room ABC123 evicted.' in result.output
    assert 'ABC123' not in flask_app.extensions['armada'].store
