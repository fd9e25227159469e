import json

import app as wheel_app
from conftest import StubRandom, config_document
from storage import CONFIG_FILE, PLAYS_FILE, REQUESTS_FILE, USERS_FILE


def test_login_hides_password(client):
    response = client.post('/api/login', json={'username': 'alice', 'password': 'alice-pw'})
    assert response.status_code == 200
    user = response.get_json()['user']
    assert user['user'] == 'alice'
    assert 'password' not in user


def test_login_rejects_bad_password(client):
    response = client.post('/api/login', json={'username': 'alice', 'password': 'nope'})
    assert response.status_code == 401


def test_spin_requires_login(client):
    assert client.post('/api/spin').status_code == 401


def test_spin_appends_winning_play(client, login, store):
    login('alice', 'alice-pw')
    response = client.post('/api/spin')
    assert response.status_code == 200

    body = response.get_json()
    assert body['success'] is True
    assert body['prize']['is_winning'] is True
    assert body['rotation'] == 337.5 + 5 * 360
    assert body['plays_remaining'] == 0

    plays = store.load(PLAYS_FILE, [])
    assert len(plays) == 1
    assert plays[0]['user'] == 'alice'
    assert plays[0]['date'] == '2024-06-01'
    assert plays[0]['time'] == '15:30:45'
    assert plays[0]['claimed'] is False
    assert plays[0]['win_code'] == body['record']['win_code']


def test_second_spin_same_day_is_rejected(client, login, store):
    login('alice', 'alice-pw')
    assert client.post('/api/spin').status_code == 200

    response = client.post('/api/spin')
    assert response.status_code == 409
    assert response.get_json()['error'] == 'daily_limit_reached'
    assert len(store.load(PLAYS_FILE, [])) == 1


def test_global_win_cap_applies_across_users(client, login, store):
    login('alice', 'alice-pw')
    assert client.post('/api/spin').get_json()['prize']['is_winning'] is True

    login('bob', 'bob-pw')
    body = client.post('/api/spin').get_json()
    assert body['success'] is True
    assert body['prize']['is_winning'] is False
    assert 'win_code' not in body['record']


def test_rotation_continues_within_session(client, login, store, monkeypatch):
    doc = config_document(max_plays=3, max_wins=0)
    store.save(CONFIG_FILE, doc)
    login('alice', 'alice-pw')

    first = client.post('/api/spin').get_json()['rotation']
    second = client.post('/api/spin').get_json()['rotation']
    assert second > first
    assert client.get('/api/me').get_json()['rotation'] == second


def test_inactive_wheel_blocks_players_but_not_admins(client, login, store):
    store.save(CONFIG_FILE, config_document(active=False))

    login('alice', 'alice-pw')
    response = client.post('/api/spin')
    assert response.status_code == 403
    assert response.get_json()['error'] == 'wheel_inactive'

    login('admin', 'secret')
    assert client.post('/api/spin').status_code == 200


def test_invalid_stored_configuration_refuses_spin(client, login, store):
    store.save(CONFIG_FILE, {'prizes': [], 'max_plays_per_user_per_day': 1, 'max_global_wins_per_day': 1})
    login('alice', 'alice-pw')
    response = client.post('/api/spin')
    assert response.status_code == 503
    assert response.get_json()['error'] == 'configuration_error'
    assert store.load(PLAYS_FILE, []) == []


def test_game_state_reports_remaining_plays(client, login, store):
    store.save(CONFIG_FILE, config_document(max_plays=2))
    login('alice', 'alice-pw')
    client.post('/api/spin')

    body = client.get('/api/game').get_json()
    assert body['wheel_name'] == 'Test Wheel'
    assert len(body['segments']) == 8
    assert body['plays_today'] == 1
    assert body['plays_remaining'] == 1
    assert body['can_play'] is True


def test_admin_endpoints_require_admin_role(client, login):
    assert client.get('/api/config').status_code == 401
    login('alice', 'alice-pw')
    assert client.get('/api/config').status_code == 403
    assert client.get('/api/plays').status_code == 403


def test_save_config_validates_document(client, login, store):
    login('admin', 'secret')

    bad = config_document()
    bad['prizes'] = []
    response = client.post('/api/config', json=bad)
    assert response.status_code == 400

    good = config_document(winning=1, losing=1, probability=20)
    good['theme'] = 'dark'
    response = client.post('/api/config', json=good)
    assert response.status_code == 200
    saved = store.load(CONFIG_FILE, {})
    assert saved['win_probability_percent'] == 20
    assert saved['theme'] == 'dark'
    assert len(saved['prizes']) == 2


def test_claim_and_delete_plays(client, login, store):
    store.save(PLAYS_FILE, [
        {'user': 'alice', 'date': '2024-06-01', 'time': '10:00:00', 'result': 'Coppa',
         'is_win': True, 'claimed': False, 'win_code': 'WIN12345'},
        {'user': 'bob', 'date': '2024-06-01', 'time': '11:00:00', 'result': 'Niente', 'is_win': False},
    ])
    login('admin', 'secret')

    assert client.post('/api/plays/1/claim').status_code == 400
    assert client.post('/api/plays/5/claim').status_code == 404

    response = client.post('/api/plays/0/claim')
    assert response.status_code == 200
    assert store.load(PLAYS_FILE, [])[0]['claimed'] is True

    assert client.delete('/api/plays/1').status_code == 200
    plays = store.load(PLAYS_FILE, [])
    assert [p['user'] for p in plays] == ['alice']


def test_play_log_listing_is_newest_first_and_searchable(client, login, store):
    store.save(PLAYS_FILE, [
        {'user': 'alice', 'date': '2024-05-30', 'time': '10:00:00', 'result': 'Niente', 'is_win': False},
        {'user': 'bob', 'date': '2024-06-01', 'time': '09:00:00', 'result': 'Coppa',
         'is_win': True, 'claimed': False, 'win_code': 'ZX81ABCD'},
    ])
    login('admin', 'secret')

    plays = client.get('/api/plays').get_json()['plays']
    assert [p['index'] for p in plays] == [1, 0]

    found = client.get('/api/plays?q=zx81').get_json()['plays']
    assert len(found) == 1 and found[0]['user'] == 'bob'


def test_save_users_requires_an_admin(client, login, store):
    login('admin', 'secret')
    response = client.post('/api/users', json=[{'user': 'alice', 'password': 'x', 'role': 'user'}])
    assert response.status_code == 400

    response = client.post('/api/users', json=[
        {'user': 'admin', 'password': 'secret', 'role': 'admin'},
        {'user': 'admin', 'password': 'again', 'role': 'user'},
    ])
    assert response.status_code == 400
    assert len(store.load(USERS_FILE, [])) == 3


def test_registration_request_to_user_account(client, login, store, monkeypatch):
    response = client.post('/api/requests', json={
        'nome': 'Mario', 'cognome': 'Rossi', 'email': 'mario@example.com', 'gdpr_consent': True,
    })
    assert response.status_code == 201
    assert client.post('/api/requests', json={'nome': 'Anna'}).status_code == 400

    store.save(USERS_FILE, store.load(USERS_FILE, []) + [{'user': 'marior', 'password': 'x', 'role': 'user'}])
    login('admin', 'secret')

    response = client.post('/api/requests/0/create-user')
    assert response.status_code == 200
    body = response.get_json()
    assert body['username'] == 'marior1'
    assert len(body['password']) == 8

    registration = store.load(REQUESTS_FILE, [])[0]
    assert registration['creato'] is True
    assert registration['username'] == 'marior1'
    created = [u for u in store.load(USERS_FILE, []) if u['user'] == 'marior1'][0]
    assert created['role'] == 'user'
    assert created['email'] == 'mario@example.com'

    assert client.post('/api/requests/0/create-user').status_code == 409
    assert client.delete('/api/requests/0').status_code == 200
    assert store.load(REQUESTS_FILE, []) == []


def test_dashboard_counts(client, login, store):
    store.save(PLAYS_FILE, [
        {'user': 'alice', 'date': '2024-06-01', 'time': '10:00:00', 'result': 'Coppa',
         'is_win': True, 'claimed': False, 'win_code': 'AAAA1111'},
        {'user': 'bob', 'date': '2024-05-31', 'time': '10:00:00', 'result': 'Coppa',
         'is_win': True, 'claimed': True, 'win_code': 'BBBB2222'},
    ])
    login('admin', 'secret')
    stats = client.get('/api/dashboard_data').get_json()['stats']
    assert stats['plays_today'] == 1
    assert stats['wins_today'] == 1
    assert stats['unclaimed_wins'] == 1
    assert stats['users'] == 3


def test_qr_code_points_at_host(client):
    body = client.get('/api/qr_code').get_json()
    assert body['qr_code'].startswith('data:image/png;base64,')
    assert body['url'] == 'http://localhost/'


def test_spin_is_broadcast_to_dashboards(client, login, store):
    sio = wheel_app.socketio.test_client(wheel_app.app, flask_test_client=client)
    assert sio.is_connected()
    sio.get_received()

    login('alice', 'alice-pw')
    client.post('/api/spin')

    events = {event['name']: event['args'] for event in sio.get_received()}
    assert events['play_logged'][0]['user'] == 'alice'
    assert events['state_update'][0]['stats']['plays_today'] == 1
    sio.disconnect()


def test_losing_spin_with_stub_draw(client, login, store, monkeypatch):
    monkeypatch.setattr(wheel_app, 'rng', StubRandom(0.99))
    store.save(CONFIG_FILE, config_document(probability=50))
    login('alice', 'alice-pw')

    body = client.post('/api/spin').get_json()
    assert body['prize']['label'] == 'Try again 0'
    assert body['prize']['index'] == 3
    assert body['record']['is_win'] is False


def test_spin_refused_when_play_log_cannot_be_read(client, login, store, monkeypatch):
    history = [{'user': 'bob', 'date': '2024-05-31', 'time': '10:00:00', 'result': 'Niente', 'is_win': False}]
    store.save(PLAYS_FILE, history)
    login('alice', 'alice-pw')

    real_open = open

    def guarded_open(file, mode='r', *args, **kwargs):
        if str(file).endswith(PLAYS_FILE) and 'r' in mode:
            raise PermissionError(f"Permission denied: {file}")
        return real_open(file, mode, *args, **kwargs)

    monkeypatch.setattr('storage.open', guarded_open, raising=False)

    response = client.post('/api/spin')
    assert response.status_code == 500
    assert response.get_json()['error'] == 'storage_error'

    with real_open(store.path(PLAYS_FILE), encoding='utf-8') as f:
        assert json.load(f) == history


def test_player_can_change_own_password(client, login, store):
    assert client.post('/api/password', json={'password': 'new-pass'}).status_code == 401

    login('alice', 'alice-pw')
    assert client.post('/api/password', json={'password': 'abc'}).status_code == 400
    assert client.post('/api/password', json={'password': 1234}).status_code == 400

    response = client.post('/api/password', json={'password': 'new-pass'})
    assert response.status_code == 200

    client.post('/api/logout')
    assert client.post('/api/login', json={'username': 'alice', 'password': 'alice-pw'}).status_code == 401
    login('alice', 'new-pass')
    bob = [u for u in store.load(USERS_FILE, []) if u['user'] == 'bob'][0]
    assert bob['password'] == 'bob-pw'


def test_dashboard_reports_connection_counters(client, login, store):
    first = wheel_app.socketio.test_client(wheel_app.app, flask_test_client=client)
    second = wheel_app.socketio.test_client(wheel_app.app, flask_test_client=client)
    second.disconnect()

    login('admin', 'secret')
    status = client.get('/api/dashboard_data').get_json()['wheel_status']
    assert status['connected_clients'] == 1
    assert status['total_connections'] == 2
    assert status['peak_concurrent'] == 2
    first.disconnect()


def test_play_search_tolerates_null_fields(client, login, store):
    store.save(PLAYS_FILE, [
        {'user': None, 'date': None, 'time': None, 'result': None, 'is_win': False},
        {'user': 'alice', 'date': '2024-06-01', 'time': '10:00:00', 'result': 'Coppa',
         'is_win': True, 'claimed': False, 'win_code': None},
    ])
    login('admin', 'secret')

    assert len(client.get('/api/plays').get_json()['plays']) == 2

    response = client.get('/api/plays?q=coppa')
    assert response.status_code == 200
    found = response.get_json()['plays']
    assert [p['user'] for p in found] == ['alice']
