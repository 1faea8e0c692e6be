#!/usr/bin/env python3

"""
API tests for the Switchbook endpoints: health, accounts, switch CRUD,
sharing, export, wishlist and notifications.
"""

from switchbook_api.database import db
from switchbook_api.models import Switch

def _create_switch(client, **fields):
    payload = {'name': 'Cherry MX Red', 'manufacturer': 'Cherry', 'type': 'LINEAR', **fields}
    response = client.post('/api/switches', json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()

def test_app_creation(app):
    """Test Flask app creation."""
    assert {'auth', 'switches', 'images', 'master_switches', 'admin', 'wishlist',
            'catalog'} <= set(app.blueprints)
    assert app.config['MAX_PAGE_SIZE'] == 50

def test_health_check(app):
    response = app.test_client().get('/api/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'healthy', 'database': 'connected'}

def test_unknown_route_returns_json_404(app):
    response = app.test_client().get('/api/does-not-exist')
    assert response.status_code == 404
    assert response.get_json()['error'] == 'Not found'

def test_register_login_logout_flow(app):
    client = app.test_client()

    response = client.post('/api/auth/register', json={
        'email': 'Carol@Example.com', 'username': 'carol', 'password': 'correct-horse'
    })
    assert response.status_code == 201
    assert response.get_json()['user']['email'] == 'carol@example.com'

    assert client.get('/api/auth/me').get_json()['user']['username'] == 'carol'

    client.post('/api/auth/logout')
    assert client.get('/api/auth/me').status_code == 401

    bad = client.post('/api/auth/login', json={'email': 'carol@example.com', 'password': 'nope-nope'})
    assert bad.status_code == 401

    good = client.post('/api/auth/login', json={'email': 'carol@example.com', 'password': 'correct-horse'})
    assert good.status_code == 200
    assert client.get('/api/auth/me').status_code == 200

def test_register_rejects_duplicates_and_bad_input(app, user_id):
    client = app.test_client()
    duplicate = client.post('/api/auth/register', json={
        'email': 'alice@example.com', 'username': 'alice2', 'password': 'password123'
    })
    assert duplicate.status_code == 409

    invalid = client.post('/api/auth/register', json={
        'email': 'not-an-email', 'username': 'x', 'password': 'short'
    })
    assert invalid.status_code == 400
    fields = {detail['field'] for detail in invalid.get_json()['details']}
    assert fields == {'email', 'username', 'password'}

def test_switches_require_authentication(app):
    client = app.test_client()
    assert client.get('/api/switches').status_code == 401
    assert client.post('/api/switches/bulk', json={'switches': [{'name': 'x'}]}).status_code == 401

def test_non_admin_is_refused_on_admin_routes(user_client):
    response = user_client.get('/api/admin/master-switches')
    assert response.status_code == 401
    assert response.get_json()['message'] == 'Admin access required'

def test_switch_crud(user_client):
    created = _create_switch(user_client, actuationForce=45, dateObtained='2024-03-01',
                             personalNotes='  lubed  ', chineseName='')
    assert created['actuationForce'] == 45
    assert created['dateObtained'] == '2024-03-01'
    assert created['personalNotes'] == 'lubed'
    assert created['chineseName'] is None
    assert created['images'] == []

    switch_id = created['id']
    fetched = user_client.get(f'/api/switches/{switch_id}').get_json()
    assert fetched['name'] == 'Cherry MX Red'

    updated = user_client.put(f'/api/switches/{switch_id}', json={
        'name': 'Cherry MX Red', 'actuationForce': 47
    })
    assert updated.status_code == 200
    assert updated.get_json()['actuationForce'] == 47

    listing = user_client.get('/api/switches?search=cherry').get_json()
    assert listing['total'] == 1

    assert user_client.delete(f'/api/switches/{switch_id}').status_code == 200
    assert user_client.get(f'/api/switches/{switch_id}').status_code == 404

def test_create_switch_validation_errors(user_client):
    missing_name = user_client.post('/api/switches', json={'manufacturer': 'Cherry'})
    assert missing_name.status_code == 400
    assert missing_name.get_json()['details'][0]['field'] == '(root)'

    bad_type = user_client.post('/api/switches', json={'name': 'X', 'type': 'SQUISHY'})
    assert bad_type.status_code == 400

    insecure_image = user_client.post('/api/switches', json={
        'name': 'X', 'imageUrl': 'http://example.com/switch.jpg'
    })
    assert insecure_image.status_code == 400
    assert insecure_image.get_json()['details'] == [
        {'field': 'imageUrl', 'message': 'Image URL must use HTTPS'}
    ]

def test_impossible_dates_are_rejected(user_client):
    response = user_client.post('/api/switches', json={'name': 'X', 'dateObtained': '2024-13-45'})
    assert response.status_code == 400
    assert [d['field'] for d in response.get_json()['details']] == ['dateObtained']

    switch_id = _create_switch(user_client)['id']
    updated = user_client.put(f'/api/switches/{switch_id}', json={
        'name': 'Cherry MX Red', 'dateObtained': '2024-02-30'
    })
    assert updated.status_code == 400
    assert updated.get_json()['details'][0]['field'] == 'dateObtained'

    accepted = user_client.put(f'/api/switches/{switch_id}', json={
        'name': 'Cherry MX Red', 'dateObtained': '2024-02-29T10:00:00Z'
    })
    assert accepted.get_json()['dateObtained'] == '2024-02-29'

def test_switch_manufacturer_is_normalized(user_client, admin_client):
    admin_client.post('/api/admin/manufacturers', json={'name': 'Cherry', 'aliases': ['Cherry Corp']})
    created = _create_switch(user_client, manufacturer='cherry corp')
    assert created['manufacturer'] == 'Cherry'

def test_switches_of_other_users_are_not_found(user_client, login_as, other_user_id):
    switch_id = _create_switch(user_client)['id']
    intruder = login_as(other_user_id)
    assert intruder.get(f'/api/switches/{switch_id}').status_code == 404
    assert intruder.delete(f'/api/switches/{switch_id}').status_code == 404

def test_personal_notes_do_not_mark_modification(user_client):
    switch_id = _create_switch(user_client)['id']
    response = user_client.put(f'/api/switches/{switch_id}/notes', json={'personalNotes': 'Smooth'})
    assert response.status_code == 200
    body = response.get_json()
    assert body['personalNotes'] == 'Smooth'
    assert body['isModified'] is False

def test_share_switch(app, user_client):
    switch_id = _create_switch(user_client)['id']
    shared = user_client.post(f'/api/switches/{switch_id}/share').get_json()
    again = user_client.post(f'/api/switches/{switch_id}/share').get_json()
    assert shared['shareableId'] == again['shareableId']

    public = app.test_client().get(f"/api/share/switch/{shared['shareableId']}")
    assert public.status_code == 200
    body = public.get_json()
    assert body['kind'] == 'user_switch'
    assert body['switch']['owner'] == 'alice'
    assert 'userId' not in body['switch']

    assert app.test_client().get('/api/share/switch/unknown').status_code == 404

def test_export_matches_bulk_shape(user_client):
    _create_switch(user_client, personalNotes='Favourite')
    exported = user_client.get('/api/switches/export').get_json()
    assert exported['total'] == 1
    item = exported['switches'][0]
    assert item['personalNotes'] == 'Favourite'
    assert 'id' not in item

    reimported = user_client.post('/api/switches/bulk', json={'switches': exported['switches']})
    assert reimported.status_code == 200
    assert reimported.get_json()['results']['success'] == 1

def test_pagination_limits(app):
    client = app.test_client()
    assert client.get('/api/master-switches?page_size=51').status_code == 400
    assert client.get('/api/master-switches?page=0').status_code == 400
    assert client.get('/api/master-switches?page=abc').status_code == 400

    body = client.get('/api/master-switches').get_json()
    assert body['switches'] == []
    assert body['page_size'] == 20

def test_wishlist_custom_entry_moves_to_collection(app, user_client):
    added = user_client.post('/api/wishlist', json={'customName': 'Boba U4T', 'customManufacturer': 'Gazzew'})
    assert added.status_code == 201
    entry_id = added.get_json()['id']

    moved = user_client.post(f'/api/wishlist/{entry_id}/move-to-collection')
    assert moved.status_code == 201
    assert moved.get_json()['switch']['name'] == 'Boba U4T'
    assert user_client.get('/api/wishlist').get_json()['items'] == []

def test_wishlist_rejects_duplicate_master(user_client, make_master):
    master_id = make_master()
    assert user_client.post('/api/wishlist', json={'masterSwitchId': master_id}).status_code == 201
    duplicate = user_client.post('/api/wishlist', json={'masterSwitchId': master_id})
    assert duplicate.status_code == 400

    assert user_client.post('/api/wishlist', json={}).status_code == 400

def test_wishlist_master_entry_becomes_linked_switch(app, user_client, make_master, user_id):
    master_id = make_master()
    entry_id = user_client.post('/api/wishlist', json={'masterSwitchId': master_id}).get_json()['id']
    moved = user_client.post(f'/api/wishlist/{entry_id}/move-to-collection').get_json()
    assert moved['switch']['masterSwitchId'] == master_id
    assert moved['switch']['masterSwitchVersion'] == 1

    with app.app_context():
        assert db.session.query(Switch).filter_by(user_id=user_id).count() == 1

def test_notifications_after_review(user_client, admin_client):
    submitted = user_client.post('/api/master-switches/submit', json={
        'name': 'Akko Cream Yellow', 'manufacturer': 'Akko',
        'submissionNotes': 'Factory lubed linear switch'
    }).get_json()['masterSwitch']
    admin_client.post(f"/api/admin/master-switches/{submitted['id']}/approve")

    notifications = user_client.get('/api/user/notifications').get_json()
    assert notifications['unreadCount'] == 1
    assert notifications['notifications'][0]['type'] == 'SUBMISSION_APPROVED'

    user_client.post('/api/user/notifications/read-all')
    assert user_client.get('/api/user/notifications?unread=true').get_json()['notifications'] == []

    submissions = user_client.get('/api/user/submissions').get_json()['submissions']
    assert [s['status'] for s in submissions] == ['APPROVED']
