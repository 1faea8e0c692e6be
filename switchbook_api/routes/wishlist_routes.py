"""
Wishlist routes.
"""

import logging

from flask import Blueprint, jsonify

from ..auth import current_user, login_required
from ..database import db
from ..errors import ApiError, NotFound, ValidationFailed
from ..models import MasterSwitch, Switch, Wishlist
from ..normalization import resolve_manufacturer_name
from ..services.sync import create_from_master
from ..validation import WISHLIST_SCHEMA, validate_payload
from .utils import get_json_body, server_error

logger = logging.getLogger(__name__)

wishlist_bp = Blueprint('wishlist', __name__)

def _get_owned_entry(entry_id: str) -> Wishlist:
    entry = Wishlist.query.filter_by(id=entry_id, user_id=current_user().id).first()
    if entry is None:
        raise NotFound('Wishlist item not found')
    return entry

@wishlist_bp.route('/wishlist', methods=['GET'])
@login_required
def list_wishlist():
    entries = (Wishlist.query
               .filter_by(user_id=current_user().id)
               .order_by(Wishlist.created_at.desc())
               .all())
    return jsonify({'items': [entry.to_dict() for entry in entries]})

@wishlist_bp.route('/wishlist', methods=['POST'])
@login_required
def add_to_wishlist():
    """Add an approved master switch, or a free-text custom switch, to the wishlist."""
    try:
        data = validate_payload(get_json_body(), WISHLIST_SCHEMA)
        user = current_user()
        master_id = data.get('masterSwitchId')

        if master_id:
            master = db.session.get(MasterSwitch, master_id)
            if master is None or not master.is_approved:
                raise NotFound('Master switch not found')
            if Wishlist.query.filter_by(user_id=user.id, master_switch_id=master_id).first():
                raise ValidationFailed('This switch is already in your wishlist')
            entry = Wishlist(user_id=user.id, master_switch_id=master_id,
                             custom_notes=data.get('customNotes'))
        else:
            entry = Wishlist(
                user_id=user.id,
                custom_name=data['customName'].strip(),
                custom_manufacturer=resolve_manufacturer_name(data.get('customManufacturer')),
                custom_notes=data.get('customNotes')
            )

        db.session.add(entry)
        db.session.commit()
        return jsonify(entry.to_dict()), 201

    except ApiError:
        raise
    except Exception as e:
        return server_error('add_to_wishlist', e, 'An error occurred while updating the wishlist')

@wishlist_bp.route('/wishlist/<entry_id>', methods=['DELETE'])
@login_required
def remove_from_wishlist(entry_id):
    try:
        entry = _get_owned_entry(entry_id)
        db.session.delete(entry)
        db.session.commit()
        return jsonify({'success': True})
    except ApiError:
        raise
    except Exception as e:
        return server_error('remove_from_wishlist', e, 'An error occurred while updating the wishlist')

@wishlist_bp.route('/wishlist/<entry_id>/move-to-collection', methods=['POST'])
@login_required
def move_to_collection(entry_id):
    """Turn a wishlist entry into a switch in the collection and drop the entry."""
    try:
        user = current_user()
        entry = _get_owned_entry(entry_id)

        if entry.master_switch is not None:
            if Switch.query.filter_by(user_id=user.id, master_switch_id=entry.master_switch_id).first():
                raise ValidationFailed('This switch is already in your collection')
            switch = create_from_master(user.id, entry.master_switch,
                                        personal_notes=entry.custom_notes)
        else:
            switch = Switch(
                user_id=user.id,
                name=entry.custom_name,
                manufacturer=entry.custom_manufacturer,
                personal_notes=entry.custom_notes
            )
            db.session.add(switch)

        db.session.delete(entry)
        db.session.commit()
        return jsonify({'success': True, 'switch': switch.to_dict()}), 201

    except ApiError:
        raise
    except Exception as e:
        return server_error('move_to_collection', e, 'An error occurred while moving the switch')
