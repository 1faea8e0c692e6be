"""
Master switch routes: browsing, submission, edit suggestions and collection links.
"""

import logging

from flask import Blueprint, jsonify, request

from ..auth import current_user, login_required
from ..database import db
from ..errors import ApiError, NotFound, ValidationFailed
from ..models import MasterSwitch, Switch
from ..services.master_switches import MasterSwitchService
from ..services.sync import create_from_master, link_switch_to_master
from ..validation import MASTER_SWITCH_SUBMISSION_SCHEMA, SUGGEST_EDIT_SCHEMA, validate_payload
from .utils import get_json_body, get_pagination_params, server_error

logger = logging.getLogger(__name__)

master_switch_bp = Blueprint('master_switches', __name__)

master_switch_service = MasterSwitchService()

def _get_approved(master_id: str) -> MasterSwitch:
    master = db.session.get(MasterSwitch, master_id)
    if master is None or not master.is_approved:
        raise NotFound('Master switch not found')
    return master

@master_switch_bp.route('/master-switches', methods=['GET'])
def search_master_switches():
    """
    Browse approved master switches.

    Query Parameters:
        search (str, optional): Substring of name, Chinese name or manufacturer
        manufacturer (str, optional): Exact manufacturer filter
        type (str, optional): Switch type filter
        page (int, optional): Page number (default: 1)
        page_size (int, optional): Results per page
    """
    try:
        page, page_size = get_pagination_params()
        result = master_switch_service.search_approved(
            search=(request.args.get('search') or '').strip() or None,
            manufacturer=(request.args.get('manufacturer') or '').strip() or None,
            switch_type=request.args.get('type') or None,
            page=page,
            page_size=page_size
        )
        return jsonify({
            'switches': result['data'],
            **result['pagination']
        })

    except ApiError:
        raise
    except Exception as e:
        return server_error('search_master_switches', e, 'An error occurred while searching master switches')

@master_switch_bp.route('/master-switches/<master_id>', methods=['GET'])
def get_master_switch(master_id):
    try:
        return jsonify(master_switch_service.get_for_viewer(master_id, current_user()))
    except ApiError:
        raise
    except Exception as e:
        return server_error('get_master_switch', e, 'An error occurred while loading the master switch')

@master_switch_bp.route('/master-switches/submit', methods=['POST'])
@login_required
def submit_master_switch():
    """
    Submit a new switch to the master database.

    Exact duplicates are rejected with 400 and duplicateType 'exact'. Similar
    names answer 409 with the candidates until confirmNotDuplicate is sent.
    """
    try:
        data = validate_payload(get_json_body(), MASTER_SWITCH_SUBMISSION_SCHEMA)
        master = master_switch_service.submit(current_user(), data)
        return jsonify({
            'success': True,
            'masterSwitch': master.to_dict(),
            'message': 'Switch submitted for review'
        }), 201

    except ApiError:
        raise
    except Exception as e:
        return server_error('submit_master_switch', e, 'An error occurred while submitting the switch')

@master_switch_bp.route('/master-switches/<master_id>/suggest-edit', methods=['POST'])
@login_required
def suggest_edit(master_id):
    try:
        data = validate_payload(get_json_body(), SUGGEST_EDIT_SCHEMA)
        edit = master_switch_service.suggest_edit(current_user(), master_id, data)
        return jsonify({
            'success': True,
            'edit': edit.to_dict(),
            'message': 'Edit suggestion submitted for review'
        }), 201

    except ApiError:
        raise
    except Exception as e:
        return server_error('suggest_edit', e, 'An error occurred while suggesting the edit')

@master_switch_bp.route('/master-switches/<master_id>/history', methods=['GET'])
def master_switch_history(master_id):
    try:
        return jsonify({'edits': master_switch_service.history(master_id)})
    except ApiError:
        raise
    except Exception as e:
        return server_error('master_switch_history', e, 'An error occurred while loading the history')

@master_switch_bp.route('/master-switches/<master_id>/add-to-collection', methods=['POST'])
@login_required
def add_to_collection(master_id):
    """Copy an approved master switch into the caller's collection as a linked switch."""
    try:
        user = current_user()
        master = _get_approved(master_id)

        existing = Switch.query.filter_by(user_id=user.id, master_switch_id=master.id).first()
        if existing:
            raise ValidationFailed('This switch is already in your collection',
                                   {'switchId': existing.id})

        body = request.get_json(silent=True) or {}
        switch = create_from_master(user.id, master, personal_notes=body.get('personalNotes'))
        db.session.commit()
        return jsonify({'success': True, 'switch': switch.to_dict()}), 201

    except ApiError:
        raise
    except Exception as e:
        return server_error('add_to_collection', e, 'An error occurred while adding the switch')

@master_switch_bp.route('/master-switches/<master_id>/link-existing', methods=['POST'])
@login_required
def link_existing(master_id):
    """Link one of the caller's existing switches to an approved master switch."""
    try:
        user = current_user()
        master = _get_approved(master_id)

        data = get_json_body()
        switch_id = data.get('switchId')
        if not switch_id:
            raise ValidationFailed('switchId is required')

        switch = Switch.query.filter_by(id=switch_id, user_id=user.id).first()
        if switch is None:
            raise NotFound('Switch not found')
        if switch.master_switch_id:
            raise ValidationFailed('Switch is already linked to a master switch')

        link_switch_to_master(switch, master)
        db.session.commit()
        return jsonify({'success': True, 'switch': switch.to_dict()})

    except ApiError:
        raise
    except Exception as e:
        return server_error('link_existing', e, 'An error occurred while linking the switch')
