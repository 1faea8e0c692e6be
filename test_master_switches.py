"""
Tests for the master switch lifecycle: submission with duplicate detection,
moderation, edit suggestions and version bumps.
"""

import pytest

from switchbook_api.database import db
from switchbook_api.models import MasterSwitch, MasterSwitchEdit, Switch
from switchbook_api.snapshots import SwitchSnapshot

SUBMISSION = {
    'name': 'Gateron Yellow',
    'manufacturer': 'Gateron',
    'type': 'LINEAR',
    'actuationForce': 50,
    'submissionNotes': 'Stock linear with a yellow stem'
}

def _submit(client, **overrides):
    return client.post('/api/master-switches/submit', json={**SUBMISSION, **overrides})

def _suggest(client, master_id, **overrides):
    payload = {
        'name': 'Gateron Yellow',
        'manufacturer': 'Gateron',
        'actuationForce': 52,
        'notes': 'Should not be applied',
        'changedFields': ['actuationForce'],
        'editReason': 'Measured with a force curve rig',
        **overrides
    }
    return client.post(f'/api/master-switches/{master_id}/suggest-edit', json=payload)

def test_submission_is_pending_until_approved(app, user_client, admin_client):
    response = _submit(user_client)
    assert response.status_code == 201
    master = response.get_json()['masterSwitch']
    assert master['status'] == 'PENDING'

    assert app.test_client().get(f"/api/master-switches/{master['id']}").status_code == 404
    assert user_client.get(f"/api/master-switches/{master['id']}").status_code == 200

    approved = admin_client.post(f"/api/admin/master-switches/{master['id']}/approve")
    assert approved.get_json()['masterSwitch']['status'] == 'APPROVED'
    assert approved.get_json()['masterSwitch']['version'] == 1

    again = admin_client.post(f"/api/admin/master-switches/{master['id']}/approve")
    assert again.status_code == 400

def test_exact_duplicate_is_rejected_without_insert(app, user_client, make_master):
    existing_id = make_master()

    response = _submit(user_client, name='gateron yellow', manufacturer='GATERON')

    assert response.status_code == 400
    body = response.get_json()
    assert body['duplicateType'] == 'exact'
    assert body['existingId'] == existing_id
    with app.app_context():
        assert MasterSwitch.query.count() == 1

def test_similar_name_requires_confirmation(app, user_client, make_master):
    existing_id = make_master()

    response = _submit(user_client, name='Gateron Yelow')
    assert response.status_code == 409
    body = response.get_json()
    assert body['requiresConfirmation'] is True
    assert [s['id'] for s in body['similarSwitches']] == [existing_id]

    confirmed = _submit(user_client, name='Gateron Yelow', confirmNotDuplicate=True)
    assert confirmed.status_code == 201
    with app.app_context():
        assert MasterSwitch.query.count() == 2

def test_submission_requires_notes(user_client):
    response = _submit(user_client, submissionNotes='short')
    assert response.status_code == 400
    assert response.get_json()['details'][0]['field'] == 'submissionNotes'

def test_submission_links_source_switch(app, user_client):
    switch_id = user_client.post('/api/switches', json={'name': 'Gateron Yellow'}).get_json()['id']

    master = _submit(user_client, sourceSwitchId=switch_id).get_json()['masterSwitch']

    with app.app_context():
        switch = db.session.get(Switch, switch_id)
        assert switch.master_switch_id == master['id']
        assert switch.master_switch_version == 1
        stored = db.session.get(MasterSwitch, master['id'])
        assert stored.original_submission_data['submissionNotes'] == SUBMISSION['submissionNotes']

def test_reject_requires_reason(user_client, admin_client):
    master_id = _submit(user_client).get_json()['masterSwitch']['id']

    assert admin_client.post(f'/api/admin/master-switches/{master_id}/reject', json={}).status_code == 400
    blank = admin_client.post(f'/api/admin/master-switches/{master_id}/reject', json={'reason': '   '})
    assert blank.status_code == 400

    rejected = admin_client.post(f'/api/admin/master-switches/{master_id}/reject',
                                 json={'reason': 'Duplicate of an existing entry'})
    body = rejected.get_json()['masterSwitch']
    assert body['status'] == 'REJECTED'
    assert body['rejectionReason'] == 'Duplicate of an existing entry'

    notifications = user_client.get('/api/user/notifications').get_json()['notifications']
    assert notifications[0]['type'] == 'SUBMISSION_REJECTED'

def test_admin_lists_by_status(admin_client, user_client, make_master):
    make_master()
    _submit(user_client, name='Akko Lavender', manufacturer='Akko')

    pending = admin_client.get('/api/admin/master-switches').get_json()
    assert [s['name'] for s in pending['switches']] == ['Akko Lavender']
    approved = admin_client.get('/api/admin/master-switches?status=approved').get_json()
    assert approved['total_records'] == 1
    assert admin_client.get('/api/admin/master-switches?status=unknown').status_code == 400

def test_search_and_view_count(app, user_client, make_master):
    master_id = make_master()
    make_master(name='Kailh Box Jade', manufacturer='Kailh', type='CLICKY')

    results = app.test_client().get('/api/master-switches?search=yellow').get_json()
    assert [s['id'] for s in results['switches']] == [master_id]
    assert app.test_client().get('/api/master-switches?type=CLICKY').get_json()['total_records'] == 1

    app.test_client().get(f'/api/master-switches/{master_id}')
    detail = user_client.get(f'/api/master-switches/{master_id}').get_json()
    assert detail['viewCount'] == 2
    assert detail['userSwitchId'] is None

def test_approved_edit_applies_listed_fields_and_bumps_version(app, user_client, admin_client, make_master):
    master_id = make_master(notes='Original notes')

    suggested = _suggest(user_client, master_id)
    assert suggested.status_code == 201
    edit = suggested.get_json()['edit']
    assert edit['previousData']['actuationForce'] == 50.0
    assert edit['newData']['editReason'] == 'Measured with a force curve rig'
    assert edit['newData']['schemaVersion'] == 1

    pending = admin_client.get('/api/admin/master-switch-edits').get_json()['edits']
    assert [e['id'] for e in pending] == [edit['id']]

    approved = admin_client.post(f"/api/admin/master-switch-edits/{edit['id']}/approve")
    assert approved.status_code == 200
    master = approved.get_json()['masterSwitch']
    assert master['version'] == 2
    assert master['actuationForce'] == 52
    assert master['notes'] == 'Original notes'

    with app.app_context():
        stored = db.session.get(MasterSwitchEdit, edit['id'])
        assert stored.previous_data['actuationForce'] == 50.0

    history = app.test_client().get(f'/api/master-switches/{master_id}/history').get_json()['edits']
    assert [e['id'] for e in history] == [edit['id']]

    assert admin_client.post(f"/api/admin/master-switch-edits/{edit['id']}/approve").status_code == 400

    notifications = user_client.get('/api/user/notifications').get_json()['notifications']
    assert notifications[0]['type'] == 'EDIT_APPROVED'

def test_rejected_edit_leaves_master_unchanged(app, user_client, admin_client, make_master):
    master_id = make_master()
    edit_id = _suggest(user_client, master_id).get_json()['edit']['id']

    missing_reason = admin_client.post(f'/api/admin/master-switch-edits/{edit_id}/reject', json={})
    assert missing_reason.status_code == 400

    rejected = admin_client.post(f'/api/admin/master-switch-edits/{edit_id}/reject',
                                 json={'reason': 'Measurement looks off'})
    assert rejected.get_json()['edit']['status'] == 'REJECTED'

    with app.app_context():
        master = db.session.get(MasterSwitch, master_id)
        assert master.version == 1
        assert master.actuation_force == 50.0

def test_edit_suggestion_rules(user_client, make_master, user_id):
    pending_id = make_master(submitted_by=user_id, status='PENDING', name='Unreviewed')
    assert _suggest(user_client, pending_id).status_code == 400

    master_id = make_master()
    assert _suggest(user_client, master_id, editReason='too short').status_code == 400
    assert _suggest(user_client, master_id, changedFields=[]).status_code == 400
    assert _suggest(user_client, master_id, changedFields=['personalNotes']).status_code == 400
    assert _suggest(user_client, 'missing-id').status_code == 404

def test_snapshot_rejects_unknown_schema_version():
    with pytest.raises(ValueError):
        SwitchSnapshot.from_stored({'schemaVersion': 99, 'name': 'Anything'})
    with pytest.raises(ValueError):
        SwitchSnapshot.from_stored({'schemaVersion': 1})

def test_snapshot_round_trips_camel_case_keys():
    snapshot = SwitchSnapshot.model_validate({'name': 'Oil King', 'bottomOutForce': 65, 'stemColor': ''})
    stored = snapshot.to_stored(editReason='because')
    assert stored['bottomOutForce'] == 65
    assert stored['stemColor'] is None
    assert stored['editReason'] == 'because'
    assert SwitchSnapshot.from_stored(stored).values(['bottom_out_force']) == {'bottom_out_force': 65}
