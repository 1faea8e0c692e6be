"""
Public catalogue routes: manufacturers, shared switches and force curve lookups,
plus the caller's submissions and notifications.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from ..auth import current_user, login_required
from ..database import db
from ..errors import ApiError, NotFound, ValidationFailed
from ..models import MasterSwitch, MasterSwitchStatus, Notification, Switch
from ..normalization import load_manufacturer_index, validate_manufacturers
from ..services import manufacturers
from ..services.force_curves import ForceCurveService
from ..services.master_switches import MasterSwitchService
from .utils import get_json_body, server_error

logger = logging.getLogger(__name__)

catalog_bp = Blueprint('catalog', __name__)

master_switch_service = MasterSwitchService()

def _force_curve_service() -> ForceCurveService:
    service = current_app.extensions.get('switchbook_force_curves')
    if service is None:
        service = ForceCurveService(github_token=current_app.config.get('GITHUB_TOKEN'))
        current_app.extensions['switchbook_force_curves'] = service
    return service

@catalog_bp.route('/manufacturers', methods=['GET'])
def list_manufacturers():
    """
    Known manufacturers for autocomplete.

    Query Parameters:
        verified (bool, optional): Only verified manufacturers when true
    """
    try:
        verified_only = request.args.get('verified', '').lower() in ('true', '1', 'yes')
        return jsonify({
            'manufacturers': [m.to_dict() for m in manufacturers.list_manufacturers(verified_only)]
        })
    except ApiError:
        raise
    except Exception as e:
        return server_error('list_manufacturers', e, 'An error occurred while loading manufacturers')

@catalog_bp.route('/manufacturers/validate', methods=['POST'])
@login_required
def validate_manufacturer_names():
    """Check a list of manufacturer names before a bulk upload."""
    try:
        names = get_json_body().get('manufacturers')
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise ValidationFailed('manufacturers must be a list of strings')
        return jsonify({'results': validate_manufacturers(names, load_manufacturer_index())})
    except ApiError:
        raise
    except Exception as e:
        return server_error('validate_manufacturer_names', e, 'An error occurred while validating manufacturers')

@catalog_bp.route('/share/switch/<shareable_id>', methods=['GET'])
def view_shared_switch(shareable_id):
    """A user switch or approved master switch by its public share id."""
    switch = Switch.query.filter_by(shareable_id=shareable_id).first()
    if switch is not None:
        result = switch.to_dict()
        result.pop('userId', None)
        result['owner'] = switch.user.username
        return jsonify({'kind': 'user_switch', 'switch': result})

    master = MasterSwitch.query.filter_by(
        shareable_id=shareable_id, status=MasterSwitchStatus.APPROVED.value).first()
    if master is not None:
        return jsonify({'kind': 'master_switch', 'switch': master.to_dict(include_images=True)})

    raise NotFound('Shared switch not found')

@catalog_bp.route('/force-curve-check', methods=['GET'])
def force_curve_check():
    """
    Whether force curve measurements exist for a switch.

    Query Parameters:
        switchName (str, required): Switch name
        manufacturer (str, optional): Manufacturer name
    """
    try:
        switch_name = (request.args.get('switchName') or '').strip()
        if not switch_name:
            raise ValidationFailed('switchName parameter is required')
        manufacturer = (request.args.get('manufacturer') or '').strip() or None
        return jsonify(_force_curve_service().check(switch_name, manufacturer))
    except ApiError:
        raise
    except Exception as e:
        return server_error('force_curve_check', e, 'An error occurred while checking force curves')

@catalog_bp.route('/user/submissions', methods=['GET'])
@login_required
def my_submissions():
    return jsonify({'submissions': master_switch_service.submissions_for(current_user().id)})

@catalog_bp.route('/user/notifications', methods=['GET'])
@login_required
def my_notifications():
    """
    The caller's notifications, newest first.

    Query Parameters:
        unread (bool, optional): Only unread notifications when true
    """
    query = Notification.query.filter_by(user_id=current_user().id)
    if request.args.get('unread', '').lower() in ('true', '1', 'yes'):
        query = query.filter_by(is_read=False)
    notifications = query.order_by(Notification.created_at.desc()).limit(100).all()
    unread = Notification.query.filter_by(user_id=current_user().id, is_read=False).count()
    return jsonify({
        'notifications': [n.to_dict() for n in notifications],
        'unreadCount': unread
    })

@catalog_bp.route('/user/notifications/<notification_id>/read', methods=['POST'])
@login_required
def mark_notification_read(notification_id):
    notification = Notification.query.filter_by(
        id=notification_id, user_id=current_user().id).first()
    if notification is None:
        raise NotFound('Notification not found')
    notification.is_read = True
    db.session.commit()
    return jsonify(notification.to_dict())

@catalog_bp.route('/user/notifications/read-all', methods=['POST'])
@login_required
def mark_all_notifications_read():
    updated = (Notification.query
               .filter_by(user_id=current_user().id, is_read=False)
               .update({Notification.is_read: True}, synchronize_session=False))
    db.session.commit()
    return jsonify({'success': True, 'updated': updated})

@catalog_bp.route('/user/notifications/<notification_id>', methods=['DELETE'])
@login_required
def dismiss_notification(notification_id):
    notification = Notification.query.filter_by(
        id=notification_id, user_id=current_user().id).first()
    if notification is None:
        raise NotFound('Notification not found')
    db.session.delete(notification)
    db.session.commit()
    return jsonify({'success': True})
