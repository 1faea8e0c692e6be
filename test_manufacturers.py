"""
Tests for manufacturer maintenance and the public manufacturer endpoints.
"""

from switchbook_api.database import db
from switchbook_api.models import Manufacturer, Switch

def _create(admin_client, name, **fields):
    response = admin_client.post('/api/admin/manufacturers', json={'name': name, **fields})
    assert response.status_code == 201, response.get_json()
    return response.get_json()

def test_create_and_list(app, admin_client):
    created = _create(admin_client, 'Gateron', aliases=['Gateron Optoelectronic', 'gateron', ' '])
    assert created['aliases'] == ['Gateron Optoelectronic']
    assert created['verified'] is True

    assert admin_client.post('/api/admin/manufacturers', json={'name': 'GATERON'}).status_code == 409

    _create(admin_client, 'Outemu', verified=False)
    public = app.test_client().get('/api/manufacturers').get_json()['manufacturers']
    assert [m['name'] for m in public] == ['Gateron', 'Outemu']
    verified = app.test_client().get('/api/manufacturers?verified=true').get_json()['manufacturers']
    assert [m['name'] for m in verified] == ['Gateron']

def test_rename_rewrites_switches(app, admin_client, user_client):
    manufacturer = _create(admin_client, 'Kail')
    user_client.post('/api/switches', json={'name': 'Box Jade', 'manufacturer': 'Kail'})

    renamed = admin_client.put(f"/api/admin/manufacturers/{manufacturer['id']}", json={'name': 'Kailh'})
    assert renamed.status_code == 200

    switches = user_client.get('/api/switches').get_json()['switches']
    assert switches[0]['manufacturer'] == 'Kailh'

def test_delete_refuses_manufacturers_in_use(admin_client, user_client):
    used = _create(admin_client, 'Akko')
    unused = _create(admin_client, 'Zeal')
    user_client.post('/api/switches', json={'name': 'Cream Yellow', 'manufacturer': 'Akko'})

    refused = admin_client.delete(f"/api/admin/manufacturers/{used['id']}")
    assert refused.status_code == 400
    assert refused.get_json()['usage'] == {'switches': 1, 'masterSwitches': 0}

    assert admin_client.delete(f"/api/admin/manufacturers/{unused['id']}").status_code == 200

def test_merge_folds_source_into_target(app, admin_client, user_id):
    target = _create(admin_client, 'JWK', aliases=['JWICK'])
    source = _create(admin_client, 'Durock', aliases=['Durock Co'])
    with app.app_context():
        db.session.add(Switch(user_id=user_id, name='Alpaca', manufacturer='Durock'))
        db.session.commit()

    merged = admin_client.post('/api/admin/manufacturers/merge',
                               json={'sourceId': source['id'], 'targetId': target['id']})

    assert merged.status_code == 200
    body = merged.get_json()
    assert body['switchesUpdated'] == 1
    assert body['manufacturer']['aliases'] == ['JWICK', 'Durock', 'Durock Co']
    with app.app_context():
        assert db.session.get(Manufacturer, source['id']) is None
        assert Switch.query.filter_by(user_id=user_id).one().manufacturer == 'JWK'

    self_merge = admin_client.post('/api/admin/manufacturers/merge',
                                   json={'sourceId': target['id'], 'targetId': target['id']})
    assert self_merge.status_code == 400

def test_admin_listing_includes_usage(admin_client, user_client):
    _create(admin_client, 'Cherry')
    user_client.post('/api/switches', json={'name': 'MX Red', 'manufacturer': 'cherry'})

    listing = admin_client.get('/api/admin/manufacturers').get_json()['manufacturers']
    assert listing[0]['usage'] == {'switches': 1, 'masterSwitches': 0}

def test_validate_endpoint(admin_client, user_client):
    _create(admin_client, 'Cherry', aliases=['Cherry Corp'])

    response = user_client.post('/api/manufacturers/validate',
                                json={'manufacturers': ['cherry corp', 'Unknown Co']})
    results = response.get_json()['results']
    assert [r['normalized'] for r in results] == ['Cherry', 'Unknown Co']
    assert [r['isValid'] for r in results] == [True, False]

    bad = user_client.post('/api/manufacturers/validate', json={'manufacturers': 'Cherry'})
    assert bad.status_code == 400
