"""
HTTP tests for the offline blueprint and system endpoints.

Identity is injected through headers by the test app's before_request hook.
"""

from tillsync.models import OfflineAction

from conftest import identity_headers, sale_action


def test_health_reports_checks(client, tenant):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.json['status'] == 'healthy'
    assert response.json['checks']['database']['details']['businesses'] == 1
    assert 'offline_queue' in response.json['checks']


def test_version(client):
    response = client.get('/version')

    assert response.status_code == 200
    assert response.json['api_version']


def test_missing_identity_is_401(client, db_session):
    response = client.post('/api/offline/sync', json={'device_id': 'x', 'actions': []})
    assert response.status_code == 401


def test_missing_permission_is_403(client, business, cashier):
    response = client.get('/api/offline/risk', headers=identity_headers(business.id, 999999))

    assert response.status_code == 403
    assert response.json['required_permission'] == 'VIEW_OFFLINE'


def test_register_device_returns_key_once(client, business, cashier):
    headers = identity_headers(business.id, cashier.id)

    response = client.post('/api/offline/devices', json={'device_name': 'Front Till', 'device_id': 'till-1'}, headers=headers)
    assert response.status_code == 201
    assert response.json['device']['id'] == 'till-1'
    assert response.json['device']['device_key'].startswith('dev-')

    status = client.get('/api/offline/status?device_id=till-1', headers=headers)
    assert status.status_code == 200
    assert 'device_key' not in status.json['device']
    assert status.json['offline_enabled'] is True
    assert status.json['limits']['offline_devices'] == 5
    assert status.json['limits']['offline_limits']['max_duration_hours'] == 72
    assert status.json['pending_count'] == 0


def test_register_device_on_starter_tier_is_403(client, business, cashier, db_session):
    business.subscription_tier = 'STARTER'
    db_session.commit()

    response = client.post('/api/offline/devices', json={'device_name': 'Front Till'}, headers=identity_headers(business.id, cashier.id))

    assert response.status_code == 403
    assert 'not enabled' in response.json['error']


def test_status_for_unknown_device_is_400(client, business, cashier):
    response = client.get('/api/offline/status?device_id=ghost', headers=identity_headers(business.id, cashier.id))
    assert response.status_code == 400


def test_heartbeat(client, business, cashier, cashier_device):
    response = client.post(
        '/api/offline/status',
        json={'device_id': cashier_device.id, 'status': 'OFFLINE', 'since': '2026-01-05T08:00:00Z'},
        headers=identity_headers(business.id, cashier.id),
    )

    assert response.status_code == 200
    assert response.json['device']['last_seen_at'] == '2026-01-05T08:00:00Z'


def test_sync_round_trip(client, business, branch, variant, cashier, cashier_device):
    headers = identity_headers(business.id, cashier.id)
    body = {
        'device_id': cashier_device.id,
        'actions': [sale_action('s1', branch_id=branch.id, variant_id=variant.id, quantity=2)],
    }

    response = client.post('/api/offline/sync', json=body, headers=headers)

    assert response.status_code == 200
    result = response.json['results'][0]
    assert result['status'] == 'APPLIED'
    assert result['result']['sale_id']
    assert response.json['cache']['stock_snapshots'][0]['quantity'] == 8

    # Resubmission returns the stored outcome
    again = client.post('/api/offline/sync', json=body, headers=headers)
    assert again.json['results'] == response.json['results']
    assert again.json['cache']['stock_snapshots'][0]['quantity'] == 8


def test_sync_bad_batch_is_400(client, business, cashier, cashier_device, db_session):
    response = client.post(
        '/api/offline/sync',
        json={'device_id': cashier_device.id, 'actions': [{'action_type': 'REFUND', 'payload': {}, 'checksum': 'x'}]},
        headers=identity_headers(business.id, cashier.id),
    )

    assert response.status_code == 400
    assert 'unsupported action_type' in response.json['error']
    assert db_session.query(OfflineAction).count() == 0


def test_sync_on_revoked_device_is_403(client, business, owner, cashier, cashier_device):
    client.post(
        '/api/offline/devices/revoke',
        json={'device_id': cashier_device.id},
        headers=identity_headers(business.id, owner.id),
    )

    response = client.post(
        '/api/offline/sync',
        json={'device_id': cashier_device.id, 'actions': []},
        headers=identity_headers(business.id, cashier.id),
    )

    assert response.status_code == 403
    assert response.json['error'] == 'Offline device is not active.'


def test_conflict_listing_and_resolution(client, business, branch, variant, cashier, cashier_device):
    headers = identity_headers(business.id, cashier.id)
    client.post('/api/offline/sync', json={
        'device_id': cashier_device.id,
        'actions': [sale_action('cheap', branch_id=branch.id, variant_id=variant.id, unit_price_cents=900)],
    }, headers=headers)

    listing = client.get(f'/api/offline/conflicts?device_id={cashier_device.id}&limit=10', headers=headers)
    assert listing.status_code == 200
    assert [item['conflict_reason'] for item in listing.json['items']] == ['PRICE_VARIANCE']
    assert listing.json['next_cursor'] is None

    action_id = listing.json['items'][0]['id']
    resolved = client.post('/api/offline/conflicts/resolve', json={'action_id': action_id, 'resolution': 'OVERRIDE_PRICE'}, headers=headers)
    assert resolved.status_code == 200
    assert resolved.json['action']['status'] == 'APPLIED'

    listing = client.get(f'/api/offline/conflicts?device_id={cashier_device.id}', headers=headers)
    assert listing.json['items'] == []


def test_resolve_requires_fields(client, business, cashier):
    headers = identity_headers(business.id, cashier.id)

    assert client.post('/api/offline/conflicts/resolve', json={}, headers=headers).status_code == 400
    response = client.post('/api/offline/conflicts/resolve', json={'action_id': 1, 'resolution': 'SHRUG'}, headers=headers)
    assert response.status_code == 400


def test_risk_endpoint(client, business, owner):
    response = client.get('/api/offline/risk', headers=identity_headers(business.id, owner.id))

    assert response.status_code == 200
    assert response.json['risk_level'] == 'LOW'
    assert response.json['devices'] == {'active': 0, 'stale': 0, 'expired': 0}
