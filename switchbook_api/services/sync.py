# Switchbook - Mechanical Keyboard Switch Catalogue
# Copyright (C) 2025 Mariano Rozanski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Pull master switch data into user-owned copies.

Single and bulk sync share one field list: every descriptive field, with the
magnetic fields included only when the master's technology is MAGNETIC.
Personal notes, acquisition date and images (other than the master's image
URL) are never touched.
"""

import logging
from typing import Any, Dict, List, Optional

from ..database import db
from ..errors import NotFound, ValidationFailed
from ..models import (ImageType, MAGNETIC_FIELDS, MasterSwitch, Switch, SwitchImage,
                      SwitchTechnology, SWITCH_SPEC_FIELDS, to_camel)

logger = logging.getLogger(__name__)

BASE_SYNC_FIELDS = [f for f in SWITCH_SPEC_FIELDS if f not in MAGNETIC_FIELDS]

def sync_fields_for(master: MasterSwitch) -> List[str]:
    """Fields copied from master into linked switches."""
    if master.technology == SwitchTechnology.MAGNETIC.value:
        return BASE_SYNC_FIELDS + MAGNETIC_FIELDS
    return list(BASE_SYNC_FIELDS)

def field_differences(switch: Switch, master: MasterSwitch) -> List[Dict[str, Any]]:
    """Per-field differences between a user switch and its master."""
    differences = []
    for field in sync_fields_for(master):
        current = getattr(switch, field)
        latest = getattr(master, field)
        if current != latest:
            differences.append({
                'field': to_camel(field),
                'currentValue': current,
                'masterValue': latest
            })
    return differences

def record_modifications(switch: Switch):
    """Flag a linked switch whose fields have drifted from its master."""
    if not switch.master_switch_id or switch.master_switch is None:
        return
    changed = [d['field'] for d in field_differences(switch, switch.master_switch)]
    switch.is_modified = bool(changed)
    switch.modified_fields = changed

def _apply_master(switch: Switch, master: MasterSwitch):
    for field in sync_fields_for(master):
        setattr(switch, field, getattr(master, field))
    switch.is_modified = False
    switch.modified_fields = []
    switch.master_switch_version = master.version

def _ensure_master_image(switch: Switch, master: MasterSwitch) -> Optional[SwitchImage]:
    """Add the master's image URL as a LINKED image unless the switch already has it."""
    if not master.image_url:
        return None
    if any(image.url == master.image_url for image in switch.images):
        return None

    image = SwitchImage(
        switch_id=switch.id,
        url=master.image_url,
        type=ImageType.LINKED.value,
        display_order=0
    )
    db.session.add(image)
    switch.images.append(image)
    db.session.flush()
    if not switch.primary_image_id:
        switch.primary_image_id = image.id
    return image

def get_owned_linked_switch(user_id: str, switch_id: str) -> Switch:
    switch = Switch.query.filter_by(id=switch_id, user_id=user_id).first()
    if switch is None:
        raise NotFound('Switch not found')
    if not switch.master_switch_id or switch.master_switch is None:
        raise ValidationFailed('Switch is not linked to a master switch')
    return switch

def check_switch_updates(user_id: str, switch_id: str) -> Dict[str, Any]:
    """Whether a linked switch is behind its master, with the differing fields."""
    switch = get_owned_linked_switch(user_id, switch_id)
    master = switch.master_switch
    current_version = switch.master_switch_version or 0
    return {
        'hasUpdates': master.version > current_version,
        'currentVersion': switch.master_switch_version,
        'latestVersion': master.version,
        'differences': field_differences(switch, master),
        'masterSwitch': master.to_dict()
    }

def sync_switch(user_id: str, switch_id: str) -> Switch:
    """Overwrite a single linked switch with its master's current data."""
    switch = get_owned_linked_switch(user_id, switch_id)
    master = switch.master_switch

    _apply_master(switch, master)
    _ensure_master_image(switch, master)
    db.session.commit()
    logger.info(f"Synced switch {switch.id} to master {master.id} v{master.version}")
    return switch

def _linked_switches(user_id: str) -> List[Switch]:
    return (Switch.query
            .filter(Switch.user_id == user_id, Switch.master_switch_id.isnot(None))
            .all())

def _is_current(switch: Switch, master: MasterSwitch) -> bool:
    return bool(switch.master_switch_version) and master.version <= switch.master_switch_version

def sync_all_switches(user_id: str) -> Dict[str, Any]:
    """
    Sync every linked switch of the user that is behind its master.

    Returns:
        Dict with the number updated, per-switch version changes and the
        highest master version seen
    """
    updates = []
    highest_version = 0

    for switch in _linked_switches(user_id):
        master = switch.master_switch
        if master is None:
            continue
        highest_version = max(highest_version, master.version)
        if _is_current(switch, master):
            continue

        previous_version = switch.master_switch_version
        _apply_master(switch, master)
        _ensure_master_image(switch, master)
        updates.append({
            'id': switch.id,
            'name': switch.name,
            'previousVersion': previous_version,
            'newVersion': master.version
        })

    db.session.commit()
    if updates:
        logger.info(f"Synced {len(updates)} switches for user {user_id}")

    return {
        'updated': len(updates),
        'updates': updates,
        'highestMasterVersion': highest_version
    }

def check_all_updates(user_id: str) -> Dict[str, Any]:
    """List linked switches that are behind their master without changing anything."""
    linked = _linked_switches(user_id)
    stale = []
    highest_version = 0

    for switch in linked:
        master = switch.master_switch
        if master is None:
            continue
        highest_version = max(highest_version, master.version)
        if not _is_current(switch, master):
            stale.append({
                'id': switch.id,
                'name': switch.name,
                'masterSwitchId': master.id,
                'currentVersion': switch.master_switch_version,
                'latestVersion': master.version
            })

    return {
        'updatesAvailable': len(stale),
        'switches': stale,
        'highestMasterVersion': highest_version,
        'totalSwitchesChecked': len(linked)
    }

def link_switch_to_master(switch: Switch, master: MasterSwitch):
    """
    Link an existing user switch to a master and take over its data.

    Notes the user wrote on the switch are moved into personal notes.
    """
    if switch.notes:
        previous = f"Previous notes: {switch.notes}"
        switch.personal_notes = (f"{switch.personal_notes}\n\n{previous}"
                                 if switch.personal_notes else previous)
    switch.master_switch_id = master.id
    switch.master_switch = master
    _apply_master(switch, master)
    _ensure_master_image(switch, master)

def create_from_master(user_id: str, master: MasterSwitch,
                       personal_notes: Optional[str] = None) -> Switch:
    """Create a linked copy of a master switch in the user's collection."""
    switch = Switch(user_id=user_id, master_switch_id=master.id, personal_notes=personal_notes)
    switch.master_switch = master
    _apply_master(switch, master)
    db.session.add(switch)
    db.session.flush()
    _ensure_master_image(switch, master)
    return switch
