"""
Manufacturer maintenance: create, update, delete and merge.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from ..database import db
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import Manufacturer, MasterSwitch, Switch

logger = logging.getLogger(__name__)

def _clean_aliases(aliases: Optional[List[str]], name: str) -> List[str]:
    seen = set()
    cleaned = []
    for alias in aliases or []:
        alias = alias.strip()
        if alias and alias.lower() != name.lower() and alias.lower() not in seen:
            seen.add(alias.lower())
            cleaned.append(alias)
    return cleaned

def _name_taken(name: str, exclude_id: Optional[str] = None) -> bool:
    query = Manufacturer.query.filter(func.lower(Manufacturer.name) == name.lower())
    if exclude_id:
        query = query.filter(Manufacturer.id != exclude_id)
    return query.first() is not None

def usage_counts(name: str) -> Dict[str, int]:
    return {
        'switches': Switch.query.filter(Switch.manufacturer == name).count(),
        'masterSwitches': MasterSwitch.query.filter(MasterSwitch.manufacturer == name).count()
    }

def list_manufacturers(verified_only: bool = False) -> List[Manufacturer]:
    query = Manufacturer.query
    if verified_only:
        query = query.filter_by(verified=True)
    return query.order_by(Manufacturer.name).all()

def create_manufacturer(data: Dict[str, Any]) -> Manufacturer:
    name = data['name'].strip()
    if not name:
        raise ValidationFailed('Manufacturer name is required')
    if _name_taken(name):
        raise Conflict('A manufacturer with this name already exists')

    manufacturer = Manufacturer(
        name=name,
        aliases=_clean_aliases(data.get('aliases'), name),
        verified=data.get('verified', True)
    )
    db.session.add(manufacturer)
    db.session.commit()
    logger.info(f"Manufacturer {manufacturer.name} created")
    return manufacturer

def update_manufacturer(manufacturer_id: str, data: Dict[str, Any]) -> Manufacturer:
    """Update a manufacturer; renaming also rewrites switches that used the old name."""
    manufacturer = db.session.get(Manufacturer, manufacturer_id)
    if manufacturer is None:
        raise NotFound('Manufacturer not found')

    new_name = data['name'].strip()
    if _name_taken(new_name, exclude_id=manufacturer.id):
        raise Conflict('A manufacturer with this name already exists')

    old_name = manufacturer.name
    if new_name != old_name:
        Switch.query.filter(Switch.manufacturer == old_name).update(
            {Switch.manufacturer: new_name}, synchronize_session=False)
        MasterSwitch.query.filter(MasterSwitch.manufacturer == old_name).update(
            {MasterSwitch.manufacturer: new_name}, synchronize_session=False)

    manufacturer.name = new_name
    if 'aliases' in data:
        manufacturer.aliases = _clean_aliases(data['aliases'], new_name)
    if 'verified' in data:
        manufacturer.verified = data['verified']
    db.session.commit()
    return manufacturer

def delete_manufacturer(manufacturer_id: str):
    """Delete a manufacturer that no switch refers to."""
    manufacturer = db.session.get(Manufacturer, manufacturer_id)
    if manufacturer is None:
        raise NotFound('Manufacturer not found')

    usage = usage_counts(manufacturer.name)
    if usage['switches'] or usage['masterSwitches']:
        raise ValidationFailed('Manufacturer is still in use', {'usage': usage})

    db.session.delete(manufacturer)
    db.session.commit()

def merge_manufacturers(source_id: str, target_id: str) -> Dict[str, Any]:
    """
    Fold source into target.

    Source's name and aliases become aliases of target, every switch and
    master switch using source's name is rewritten, and source is deleted.
    """
    if source_id == target_id:
        raise ValidationFailed('Cannot merge a manufacturer into itself')

    source = db.session.get(Manufacturer, source_id)
    target = db.session.get(Manufacturer, target_id)
    if source is None or target is None:
        raise NotFound('Manufacturer not found')

    switches_updated = Switch.query.filter(Switch.manufacturer == source.name).update(
        {Switch.manufacturer: target.name}, synchronize_session=False)
    masters_updated = MasterSwitch.query.filter(MasterSwitch.manufacturer == source.name).update(
        {MasterSwitch.manufacturer: target.name}, synchronize_session=False)

    target.aliases = _clean_aliases(
        list(target.aliases or []) + [source.name] + list(source.aliases or []), target.name)
    db.session.delete(source)
    db.session.commit()
    logger.info(f"Merged manufacturer {source_id} into {target.name}")

    return {
        'manufacturer': target.to_dict(),
        'switchesUpdated': switches_updated,
        'masterSwitchesUpdated': masters_updated
    }
