import pytest

pytestmark = pytest.mark.integration


def test_health(client):
    resp = client.get('/health')
    assert resp.status_code == 200
    body = resp.json()
    assert body['status'] == 'ok'
    assert body['service'] == 'neuroleaf'


def test_ready_without_optional_services(client):
    resp = client.get('/ready')
    assert resp.status_code == 200
    services = resp.json()['services']
    assert services['database'] == 'ok'
    assert services['openai'] == 'warn: no openai key'
    assert services['stripe'] == 'warn: no stripe key'
    assert services['redis'].startswith('error')


def test_request_id_is_echoed(client, auth_headers):
    resp = client.get('/accounts/me', headers={**auth_headers, 'X-Request-ID': 'trace-42'})
    assert resp.headers['X-Request-ID'] == 'trace-42'
    assert resp.json()['request_id'] == 'trace-42'
    assert resp.json()['account']['email'] == 'learner@example.com'


def test_missing_user_header_is_rejected(client):
    resp = client.get('/decks')
    assert resp.status_code == 401
    assert resp.json()['error'] == 'User not authenticated'


def test_unknown_account(client):
    resp = client.get('/subscription', headers={'X-User-ID': 'ghost'})
    assert resp.status_code == 404


def test_create_account(client):
    resp = client.post('/accounts', json={'email': 'New@Example.com', 'name': 'New'}, headers={'X-User-ID': 'user-new'})
    assert resp.status_code == 201
    assert resp.json()['account']['id'] == 'user-new'
    assert resp.json()['account']['email'] == 'new@example.com'


def test_subscription_endpoints(client, auth_headers):
    sub = client.get('/subscription', headers=auth_headers).json()['subscription']
    assert sub['tier'] == 'free'
    assert sub['remaining_decks'] == 3
    tiers = client.get('/subscription/tiers').json()['tiers']
    assert set(tiers) == {'free', 'pro'}
