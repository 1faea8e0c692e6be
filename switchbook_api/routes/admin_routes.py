"""
Admin routes: master switch moderation, edit review and manufacturer maintenance.
"""

import logging

from flask import Blueprint, jsonify, request

from ..auth import admin_required, current_user
from ..errors import ApiError, ValidationFailed
from ..models import MasterSwitchStatus
from ..services import manufacturers
from ..services.images import get_image_service
from ..services.master_switches import MasterSwitchService
from ..validation import (MANUFACTURER_MERGE_SCHEMA, MANUFACTURER_SCHEMA, REJECTION_SCHEMA,
                          validate_payload)
from .utils import get_json_body, get_pagination_params, server_error

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__)

master_switch_service = MasterSwitchService()

def _rejection_reason() -> str:
    data = validate_payload(get_json_body(), REJECTION_SCHEMA)
    reason = data['reason'].strip()
    if not reason:
        raise ValidationFailed('Rejection reason is required')
    return reason

@admin_bp.route('/admin/master-switches', methods=['GET'])
@admin_required
def list_master_switches():
    """
    List master switches by status.

    Query Parameters:
        status (str, optional): PENDING (default), APPROVED or REJECTED
    """
    try:
        status = request.args.get('status', MasterSwitchStatus.PENDING.value).upper()
        if status not in [s.value for s in MasterSwitchStatus]:
            raise ValidationFailed('status must be PENDING, APPROVED or REJECTED')
        page, page_size = get_pagination_params()
        result = master_switch_service.list_by_status(status, page, page_size)
        return jsonify({'switches': result['data'], **result['pagination']})

    except ApiError:
        raise
    except Exception as e:
        return server_error('list_master_switches', e, 'An error occurred while loading submissions')

@admin_bp.route('/admin/master-switches/<master_id>/approve', methods=['POST'])
@admin_required
def approve_master_switch(master_id):
    try:
        master = master_switch_service.approve(current_user(), master_id)
        return jsonify({'success': True, 'masterSwitch': master.to_dict()})
    except ApiError:
        raise
    except Exception as e:
        return server_error('approve_master_switch', e, 'An error occurred while approving the switch')

@admin_bp.route('/admin/master-switches/<master_id>/reject', methods=['POST'])
@admin_required
def reject_master_switch(master_id):
    try:
        master = master_switch_service.reject(current_user(), master_id, _rejection_reason())
        return jsonify({'success': True, 'masterSwitch': master.to_dict()})
    except ApiError:
        raise
    except Exception as e:
        return server_error('reject_master_switch', e, 'An error occurred while rejecting the switch')

@admin_bp.route('/admin/master-switches/<master_id>/images', methods=['POST'])
@admin_required
def upload_master_switch_image(master_id):
    try:
        upload = request.files.get('file')
        if upload is None or not upload.filename:
            raise ValidationFailed('No file provided')
        image = get_image_service().upload_to_master(
            master_id, upload.read(), upload.mimetype, upload.filename,
            caption=request.form.get('caption')
        )
        return jsonify(image.to_dict()), 201
    except ApiError:
        raise
    except Exception as e:
        return server_error('upload_master_switch_image', e, 'An error occurred while uploading the image')

@admin_bp.route('/admin/master-switch-edits', methods=['GET'])
@admin_required
def list_pending_edits():
    try:
        return jsonify({'edits': master_switch_service.list_pending_edits()})
    except ApiError:
        raise
    except Exception as e:
        return server_error('list_pending_edits', e, 'An error occurred while loading edits')

@admin_bp.route('/admin/master-switch-edits/<edit_id>/approve', methods=['POST'])
@admin_required
def approve_edit(edit_id):
    try:
        master = master_switch_service.approve_edit(current_user(), edit_id)
        return jsonify({'success': True, 'masterSwitch': master.to_dict()})
    except ApiError:
        raise
    except Exception as e:
        return server_error('approve_edit', e, 'An error occurred while approving the edit')

@admin_bp.route('/admin/master-switch-edits/<edit_id>/reject', methods=['POST'])
@admin_required
def reject_edit(edit_id):
    try:
        edit = master_switch_service.reject_edit(current_user(), edit_id, _rejection_reason())
        return jsonify({'success': True, 'edit': edit.to_dict()})
    except ApiError:
        raise
    except Exception as e:
        return server_error('reject_edit', e, 'An error occurred while rejecting the edit')

@admin_bp.route('/admin/manufacturers', methods=['GET'])
@admin_required
def admin_list_manufacturers():
    """All manufacturers with how many switches use each name."""
    try:
        result = []
        for manufacturer in manufacturers.list_manufacturers():
            item = manufacturer.to_dict()
            item['usage'] = manufacturers.usage_counts(manufacturer.name)
            result.append(item)
        return jsonify({'manufacturers': result})
    except ApiError:
        raise
    except Exception as e:
        return server_error('admin_list_manufacturers', e, 'An error occurred while loading manufacturers')

@admin_bp.route('/admin/manufacturers', methods=['POST'])
@admin_required
def create_manufacturer():
    try:
        data = validate_payload(get_json_body(), MANUFACTURER_SCHEMA)
        return jsonify(manufacturers.create_manufacturer(data).to_dict()), 201
    except ApiError:
        raise
    except Exception as e:
        return server_error('create_manufacturer', e, 'An error occurred while creating the manufacturer')

@admin_bp.route('/admin/manufacturers/<manufacturer_id>', methods=['PUT'])
@admin_required
def update_manufacturer(manufacturer_id):
    try:
        data = validate_payload(get_json_body(), MANUFACTURER_SCHEMA)
        return jsonify(manufacturers.update_manufacturer(manufacturer_id, data).to_dict())
    except ApiError:
        raise
    except Exception as e:
        return server_error('update_manufacturer', e, 'An error occurred while updating the manufacturer')

@admin_bp.route('/admin/manufacturers/<manufacturer_id>', methods=['DELETE'])
@admin_required
def delete_manufacturer(manufacturer_id):
    try:
        manufacturers.delete_manufacturer(manufacturer_id)
        return jsonify({'success': True})
    except ApiError:
        raise
    except Exception as e:
        return server_error('delete_manufacturer', e, 'An error occurred while deleting the manufacturer')

@admin_bp.route('/admin/manufacturers/merge', methods=['POST'])
@admin_required
def merge_manufacturers():
    try:
        data = validate_payload(get_json_body(), MANUFACTURER_MERGE_SCHEMA)
        return jsonify(manufacturers.merge_manufacturers(data['sourceId'], data['targetId']))
    except ApiError:
        raise
    except Exception as e:
        return server_error('merge_manufacturers', e, 'An error occurred while merging manufacturers')
