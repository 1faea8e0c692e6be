"""
Collection routes: switch CRUD, bulk ingestion, sharing, export and master sync.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from ..auth import current_user, login_required
from ..database import db
from ..errors import ApiError, NotFound
from ..models import Switch, generate_shareable_id
from ..normalization import resolve_manufacturer_name, transform_switch_data
from ..services.bulk_ingestion import BulkIngestionService
from ..services.images import get_image_service
from ..services.sync import (check_all_updates, check_switch_updates, record_modifications,
                             sync_all_switches, sync_switch)
from ..validation import (BULK_CREATE_SCHEMA, BULK_UPDATE_SCHEMA, NOTES_SCHEMA, SWITCH_SCHEMA,
                          validate_payload)
from .utils import get_json_body, server_error

logger = logging.getLogger(__name__)

switch_bp = Blueprint('switches', __name__)

bulk_service = BulkIngestionService()

def _get_owned_switch(switch_id: str) -> Switch:
    switch = Switch.query.filter_by(id=switch_id, user_id=current_user().id).first()
    if switch is None:
        raise NotFound('Switch not found')
    return switch

def _apply_payload(switch: Switch, data: dict):
    fields = transform_switch_data(data)
    if 'manufacturer' in fields:
        fields['manufacturer'] = resolve_manufacturer_name(fields['manufacturer'])
    switch.apply_fields(fields)
    if 'personal_notes' in fields:
        switch.personal_notes = fields['personal_notes']
    if 'date_obtained' in fields:
        switch.date_obtained = fields['date_obtained']

@switch_bp.route('/switches', methods=['GET'])
@login_required
def list_switches():
    """
    List the caller's switches.

    Query Parameters:
        search (str, optional): Substring of name or manufacturer
        type (str, optional): Switch type filter
    """
    try:
        query = Switch.query.filter_by(user_id=current_user().id)

        search = request.args.get('search', '').strip()
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(or_(func.lower(Switch.name).like(pattern),
                                     func.lower(Switch.manufacturer).like(pattern)))
        switch_type = request.args.get('type')
        if switch_type:
            query = query.filter(Switch.type == switch_type)

        switches = query.order_by(Switch.created_at.desc()).all()
        return jsonify({'switches': [s.to_dict() for s in switches], 'total': len(switches)})

    except ApiError:
        raise
    except Exception as e:
        return server_error('list_switches', e, 'An error occurred while loading switches')

@switch_bp.route('/switches', methods=['POST'])
@login_required
def create_switch():
    try:
        data = validate_payload(get_json_body(), SWITCH_SCHEMA)
        switch = Switch(user_id=current_user().id)
        _apply_payload(switch, data)
        db.session.add(switch)
        db.session.commit()
        return jsonify(switch.to_dict()), 201

    except ApiError:
        raise
    except Exception as e:
        return server_error('create_switch', e, 'An error occurred while creating the switch')

@switch_bp.route('/switches/<switch_id>', methods=['GET'])
@login_required
def get_switch(switch_id):
    switch = _get_owned_switch(switch_id)
    result = switch.to_dict()
    if switch.master_switch is not None:
        result['masterSwitch'] = switch.master_switch.to_dict()
    return jsonify(result)

@switch_bp.route('/switches/<switch_id>', methods=['PUT'])
@login_required
def update_switch(switch_id):
    """Update a switch; linked switches track which fields now differ from the master."""
    try:
        data = validate_payload(get_json_body(), SWITCH_SCHEMA)
        switch = _get_owned_switch(switch_id)
        _apply_payload(switch, data)
        record_modifications(switch)
        db.session.commit()
        return jsonify(switch.to_dict())

    except ApiError:
        raise
    except Exception as e:
        return server_error('update_switch', e, 'An error occurred while updating the switch')

@switch_bp.route('/switches/<switch_id>', methods=['DELETE'])
@login_required
def delete_switch(switch_id):
    try:
        switch = _get_owned_switch(switch_id)
        storage_keys = [image.storage_key for image in switch.images if image.storage_key]
        db.session.delete(switch)
        db.session.commit()

        image_service = get_image_service()
        for key in storage_keys:
            image_service.delete_files(key)
        return jsonify({'success': True})

    except ApiError:
        raise
    except Exception as e:
        return server_error('delete_switch', e, 'An error occurred while deleting the switch')

@switch_bp.route('/switches/<switch_id>/notes', methods=['PUT'])
@login_required
def update_notes(switch_id):
    """Personal notes never count as a modification from the master."""
    try:
        data = validate_payload(get_json_body(), NOTES_SCHEMA)
        switch = _get_owned_switch(switch_id)
        switch.personal_notes = (data.get('personalNotes') or '').strip() or None
        db.session.commit()
        return jsonify(switch.to_dict(include_images=False))

    except ApiError:
        raise
    except Exception as e:
        return server_error('update_notes', e, 'An error occurred while saving notes')

@switch_bp.route('/switches/<switch_id>/share', methods=['POST'])
@login_required
def share_switch(switch_id):
    try:
        switch = _get_owned_switch(switch_id)
        if not switch.shareable_id:
            switch.shareable_id = generate_shareable_id()
            db.session.commit()
        return jsonify({
            'shareableId': switch.shareable_id,
            'url': f"/share/switch/{switch.shareable_id}"
        })

    except ApiError:
        raise
    except Exception as e:
        return server_error('share_switch', e, 'An error occurred while sharing the switch')

@switch_bp.route('/switches/export', methods=['GET'])
@login_required
def export_switches():
    """Export the collection in the same shape the bulk endpoint accepts."""
    switches = (Switch.query
                .filter_by(user_id=current_user().id)
                .order_by(Switch.name)
                .all())
    exported = []
    for switch in switches:
        item = {key: value for key, value in switch.spec_dict().items() if value is not None}
        if switch.personal_notes:
            item['personalNotes'] = switch.personal_notes
        if switch.date_obtained:
            item['dateObtained'] = switch.date_obtained.isoformat()
        exported.append(item)
    return jsonify({'switches': exported, 'total': len(exported)})

@switch_bp.route('/switches/bulk', methods=['POST'])
@login_required
def bulk_create():
    """
    Create up to 500 switches in one request.

    Request Body:
        switches (list, required): Switch payloads
        batchId (str, optional): Client identifier echoed back

    Returns:
        JSON with per-item results ({success, failed, errors}) and timing
    """
    try:
        data = validate_payload(get_json_body(), BULK_CREATE_SCHEMA)
        result = bulk_service.create_switches(
            current_user().id, data['switches'], batch_id=data.get('batchId')
        )
        return jsonify({'message': 'Bulk operation completed successfully', **result})

    except ApiError:
        raise
    except Exception as e:
        return server_error('bulk_create', e, 'Failed to process bulk operation',
                            suggestion='Please try again with a smaller batch or contact support '
                                       'if the problem persists.')

@switch_bp.route('/switches/bulk', methods=['PUT'])
@login_required
def bulk_update():
    try:
        data = validate_payload(get_json_body(), BULK_UPDATE_SCHEMA)
        result = bulk_service.update_switches(current_user().id, data['switches'])
        return jsonify({'message': 'Bulk update completed successfully', **result})

    except ApiError:
        raise
    except Exception as e:
        return server_error('bulk_update', e, 'Failed to process bulk update')

@switch_bp.route('/switches/<switch_id>/sync-master', methods=['GET'])
@login_required
def get_sync_status(switch_id):
    try:
        return jsonify(check_switch_updates(current_user().id, switch_id))
    except ApiError:
        raise
    except Exception as e:
        return server_error('get_sync_status', e, 'An error occurred while checking for updates')

@switch_bp.route('/switches/<switch_id>/sync-master', methods=['POST'])
@login_required
def sync_with_master(switch_id):
    try:
        switch = sync_switch(current_user().id, switch_id)
        return jsonify({
            'success': True,
            'switch': switch.to_dict(),
            'message': 'Switch synced with master data'
        })
    except ApiError:
        raise
    except Exception as e:
        return server_error('sync_with_master', e, 'An error occurred while syncing the switch')

@switch_bp.route('/switches/sync-all-master', methods=['POST'])
@login_required
def sync_all_with_master():
    try:
        result = sync_all_switches(current_user().id)
        return jsonify({'success': True, **result})
    except ApiError:
        raise
    except Exception as e:
        return server_error('sync_all_with_master', e, 'An error occurred while syncing switches')

@switch_bp.route('/switches/check-master-updates', methods=['GET'])
@login_required
def check_master_updates():
    try:
        return jsonify(check_all_updates(current_user().id))
    except ApiError:
        raise
    except Exception as e:
        return server_error('check_master_updates', e, 'An error occurred while checking for updates')
