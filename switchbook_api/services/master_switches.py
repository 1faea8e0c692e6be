# Switchbook - Mechanical Keyboard Switch Catalogue
# Copyright (C) 2025 Mariano Rozanski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Master switch lifecycle: submission with duplicate detection, admin review,
edit suggestions and version bumps on approved edits.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import func, or_

from ..database import db
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import (EditStatus, MasterSwitch, MasterSwitchEdit, MasterSwitchStatus,
                      NotificationType, Switch, User, to_snake)
from ..normalization import find_similar, resolve_manufacturer_name, transform_switch_data
from ..snapshots import SwitchSnapshot
from .notifications import create_notification, email_user, notify_admins_of_submission

logger = logging.getLogger(__name__)

def paginate_query(query, page: int, page_size: int, serializer) -> Dict[str, Any]:
    """Run a paginated query and wrap it with pagination metadata."""
    pagination = query.paginate(page=page, per_page=page_size, error_out=False)
    return {
        'data': [serializer(item) for item in pagination.items],
        'pagination': {
            'total_records': pagination.total,
            'current_page': page,
            'page_size': page_size,
            'total_pages': pagination.pages
        }
    }

class MasterSwitchService:
    """Submission, review and editing of community master switches."""

    # Submission

    def find_exact_duplicate(self, name: str, manufacturer: str) -> Optional[MasterSwitch]:
        return (MasterSwitch.query
                .filter(MasterSwitch.status == MasterSwitchStatus.APPROVED.value,
                        func.lower(MasterSwitch.name) == name.lower(),
                        func.lower(MasterSwitch.manufacturer) == manufacturer.lower())
                .first())

    def find_similar_switches(self, name: str, manufacturer: str) -> List[Dict[str, Any]]:
        """Approved switches from the same manufacturer whose names are similar to name."""
        candidates = (MasterSwitch.query
                      .filter(MasterSwitch.status == MasterSwitchStatus.APPROVED.value,
                              func.lower(MasterSwitch.manufacturer) == manufacturer.lower())
                      .all())
        return [
            {
                'id': entry['item'].id,
                'name': entry['item'].name,
                'manufacturer': entry['item'].manufacturer,
                'similarity': round(entry['similarity'], 3)
            }
            for entry in find_similar(name, candidates)
        ]

    def submit(self, user: User, payload: Dict[str, Any]) -> MasterSwitch:
        """
        Submit a new master switch for review.

        Raises:
            ValidationFailed: exact duplicate of an approved switch (duplicateType 'exact')
            Conflict: similar switches exist and confirmNotDuplicate was not set
        """
        data = transform_switch_data(payload)
        name = data.get('name')
        if not name:
            raise ValidationFailed('Switch name is required')
        manufacturer = resolve_manufacturer_name(data.get('manufacturer'))
        if not manufacturer:
            raise ValidationFailed('Manufacturer is required')
        data['manufacturer'] = manufacturer

        existing = self.find_exact_duplicate(name, manufacturer)
        if existing:
            raise ValidationFailed(
                'A master switch with this name and manufacturer already exists',
                {'duplicateType': 'exact', 'existingId': existing.id}
            )

        if not payload.get('confirmNotDuplicate'):
            similar = self.find_similar_switches(name, manufacturer)
            if similar:
                raise Conflict(
                    'Similar switches found',
                    {'similarSwitches': similar, 'requiresConfirmation': True}
                )

        master = MasterSwitch(
            status=MasterSwitchStatus.PENDING.value,
            submitted_by_id=user.id,
            original_submission_data=dict(payload)
        )
        master.apply_fields(data)
        db.session.add(master)
        db.session.commit()
        logger.info(f"Master switch {master.id} submitted by {user.id}")

        source_id = payload.get('sourceSwitchId')
        if source_id:
            self._link_source_switch(user.id, source_id, master)

        notify_admins_of_submission(master, user)
        return master

    def _link_source_switch(self, user_id: str, switch_id: str, master: MasterSwitch):
        try:
            switch = (Switch.query
                      .filter_by(id=switch_id, user_id=user_id, master_switch_id=None)
                      .first())
            if switch is None:
                return
            switch.master_switch_id = master.id
            switch.master_switch_version = 1
            switch.is_modified = False
            switch.modified_fields = []
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to link switch {switch_id} to submission {master.id}: {e}")

    # Admin review of submissions

    def _get(self, master_id: str) -> MasterSwitch:
        master = db.session.get(MasterSwitch, master_id)
        if master is None:
            raise NotFound('Master switch not found')
        return master

    def _get_pending(self, master_id: str) -> MasterSwitch:
        master = self._get(master_id)
        if master.status != MasterSwitchStatus.PENDING.value:
            raise ValidationFailed('Master switch is not pending approval')
        return master

    def approve(self, admin: User, master_id: str) -> MasterSwitch:
        master = self._get_pending(master_id)
        master.status = MasterSwitchStatus.APPROVED.value
        master.approved_by_id = admin.id
        master.approved_at = datetime.utcnow()
        master.version = 1
        master.rejection_reason = None

        create_notification(
            master.submitted_by_id,
            NotificationType.SUBMISSION_APPROVED.value,
            'Submission approved',
            f'Your submission "{master.name}" is now part of the master database.',
            link=f'/switches/{master.id}'
        )
        db.session.commit()
        logger.info(f"Master switch {master.id} approved by {admin.id}")
        return master

    def reject(self, admin: User, master_id: str, reason: str) -> MasterSwitch:
        master = self._get_pending(master_id)
        master.status = MasterSwitchStatus.REJECTED.value
        master.approved_by_id = admin.id
        master.rejection_reason = reason

        create_notification(
            master.submitted_by_id,
            NotificationType.SUBMISSION_REJECTED.value,
            'Submission rejected',
            f'Your submission "{master.name}" was rejected: {reason}',
            link='/user/submissions'
        )
        db.session.commit()
        logger.info(f"Master switch {master.id} rejected by {admin.id}")
        return master

    def list_by_status(self, status: str, page: int, page_size: int) -> Dict[str, Any]:
        query = (MasterSwitch.query
                 .filter(MasterSwitch.status == status)
                 .order_by(MasterSwitch.created_at.desc()))
        return paginate_query(query, page, page_size, lambda m: m.to_dict())

    # Browsing

    def search_approved(self, search: Optional[str], manufacturer: Optional[str],
                        switch_type: Optional[str], page: int, page_size: int) -> Dict[str, Any]:
        query = MasterSwitch.query.filter(
            MasterSwitch.status == MasterSwitchStatus.APPROVED.value)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(or_(func.lower(MasterSwitch.name).like(pattern),
                                     func.lower(MasterSwitch.manufacturer).like(pattern),
                                     func.lower(MasterSwitch.chinese_name).like(pattern)))
        if manufacturer:
            query = query.filter(func.lower(MasterSwitch.manufacturer) == manufacturer.lower())
        if switch_type:
            query = query.filter(MasterSwitch.type == switch_type)
        query = query.order_by(MasterSwitch.manufacturer, MasterSwitch.name)
        return paginate_query(query, page, page_size, lambda m: m.to_dict())

    def get_for_viewer(self, master_id: str, viewer: Optional[User]) -> Dict[str, Any]:
        """
        Detail view of a master switch.

        Non-approved records are only visible to their submitter and to admins.
        Viewing an approved record increments its view count.
        """
        master = self._get(master_id)
        is_owner = viewer is not None and viewer.id == master.submitted_by_id
        if not master.is_approved and not (is_owner or (viewer and viewer.is_admin)):
            raise NotFound('Master switch not found')

        if master.is_approved:
            master.view_count = (master.view_count or 0) + 1
            db.session.commit()

        result = master.to_dict(include_images=True)
        if viewer is not None:
            owned = Switch.query.filter_by(user_id=viewer.id, master_switch_id=master.id).first()
            result['userSwitchId'] = owned.id if owned else None
        return result

    def history(self, master_id: str) -> List[Dict[str, Any]]:
        """Approved edits of a master switch, newest first."""
        master = self._get(master_id)
        if not master.is_approved:
            raise NotFound('Master switch not found')
        edits = (master.edits
                 .filter(MasterSwitchEdit.status == EditStatus.APPROVED.value)
                 .order_by(MasterSwitchEdit.approved_at.desc())
                 .all())
        return [edit.to_dict() for edit in edits]

    def submissions_for(self, user_id: str) -> List[Dict[str, Any]]:
        submissions = (MasterSwitch.query
                       .filter_by(submitted_by_id=user_id)
                       .order_by(MasterSwitch.created_at.desc())
                       .all())
        return [m.to_dict() for m in submissions]

    # Edit suggestions

    def suggest_edit(self, user: User, master_id: str, payload: Dict[str, Any]) -> MasterSwitchEdit:
        """
        Propose changes to an approved master switch.

        previousData snapshots the live record now; newData is the proposed
        record plus the reason. Only changedFields are applied on approval.
        """
        master = self._get(master_id)
        if not master.is_approved:
            raise ValidationFailed('Edits can only be suggested for approved master switches')

        changed_fields = list(payload.get('changedFields') or [])
        if not changed_fields:
            raise ValidationFailed('At least one field must be changed')

        reason = (payload.get('editReason') or '').strip()
        if len(reason) < 10:
            raise ValidationFailed('Edit reason must be at least 10 characters')

        try:
            proposed = SwitchSnapshot.model_validate(payload)
        except ValidationError as e:
            raise ValidationFailed('Invalid proposed data',
                                   {'details': [{'field': '.'.join(str(p) for p in err['loc']),
                                                 'message': err['msg']} for err in e.errors()]})

        if 'manufacturer' in changed_fields and proposed.manufacturer:
            proposed.manufacturer = resolve_manufacturer_name(proposed.manufacturer)

        edit = MasterSwitchEdit(
            master_switch_id=master.id,
            edited_by_id=user.id,
            previous_data=SwitchSnapshot.from_model(master).to_stored(),
            new_data=proposed.to_stored(editReason=reason),
            changed_fields=changed_fields,
            edit_reason=reason,
            status=EditStatus.PENDING.value
        )
        db.session.add(edit)
        db.session.commit()
        logger.info(f"Edit {edit.id} suggested for master switch {master.id} by {user.id}")
        return edit

    def list_pending_edits(self) -> List[Dict[str, Any]]:
        edits = (MasterSwitchEdit.query
                 .filter_by(status=EditStatus.PENDING.value)
                 .order_by(MasterSwitchEdit.created_at.desc())
                 .all())
        return [edit.to_dict() for edit in edits]

    def _get_pending_edit(self, edit_id: str) -> MasterSwitchEdit:
        edit = db.session.get(MasterSwitchEdit, edit_id)
        if edit is None:
            raise NotFound('Edit not found')
        if edit.status != EditStatus.PENDING.value:
            raise ValidationFailed('Edit has already been processed')
        return edit

    def approve_edit(self, admin: User, edit_id: str) -> MasterSwitch:
        """
        Apply the listed fields of a pending edit and bump the master version by one.
        """
        edit = self._get_pending_edit(edit_id)
        master = edit.master_switch

        try:
            proposed = SwitchSnapshot.from_stored(edit.new_data)
        except ValueError as e:
            raise ValidationFailed(str(e))

        fields = [to_snake(name) for name in edit.changed_fields]
        master.apply_fields(proposed.values(fields), fields)
        master.version = (master.version or 1) + 1
        master.last_modified_at = datetime.utcnow()

        edit.status = EditStatus.APPROVED.value
        edit.approved_by_id = admin.id
        edit.approved_at = datetime.utcnow()

        create_notification(
            edit.edited_by_id,
            NotificationType.EDIT_APPROVED.value,
            'Edit approved',
            f'Your edit to "{master.name}" was approved.',
            link=f'/switches/{master.id}'
        )
        db.session.commit()
        logger.info(f"Edit {edit.id} approved; master switch {master.id} now v{master.version}")

        email_user(edit.edited_by, f'Your edit to {master.name} was approved',
                   f'Thanks for improving the database. "{master.name}" is now at version {master.version}.')
        return master

    def reject_edit(self, admin: User, edit_id: str, reason: str) -> MasterSwitchEdit:
        edit = self._get_pending_edit(edit_id)
        edit.status = EditStatus.REJECTED.value
        edit.approved_by_id = admin.id
        edit.rejection_reason = reason

        create_notification(
            edit.edited_by_id,
            NotificationType.EDIT_REJECTED.value,
            'Edit rejected',
            f'Your edit to "{edit.master_switch.name}" was rejected: {reason}',
            link=f'/switches/{edit.master_switch_id}'
        )
        db.session.commit()
        logger.info(f"Edit {edit.id} rejected by {admin.id}")

        email_user(edit.edited_by, f'Your edit to {edit.master_switch.name} was rejected',
                   f'Reason: {reason}')
        return edit
