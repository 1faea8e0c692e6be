# Switchbook - Mechanical Keyboard Switch Catalogue
# Copyright (C) 2025 Mariano Rozanski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Relational schema for the Switchbook catalogue.

User-owned switches, community master switches with their edit history,
images, wishlists, manufacturers, force-curve lookups and notifications.
Attributes are snake_case; to_dict() renders the camelCase keys used by the
JSON API.
"""

import secrets
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .database import db

class SwitchType(Enum):
    LINEAR = "LINEAR"
    TACTILE = "TACTILE"
    CLICKY = "CLICKY"
    SILENT_LINEAR = "SILENT_LINEAR"
    SILENT_TACTILE = "SILENT_TACTILE"

class SwitchTechnology(Enum):
    MECHANICAL = "MECHANICAL"
    OPTICAL = "OPTICAL"
    MAGNETIC = "MAGNETIC"
    INDUCTIVE = "INDUCTIVE"
    ELECTRO_CAPACITIVE = "ELECTRO_CAPACITIVE"

class ClickType(Enum):
    CLICK_LEAF = "CLICK_LEAF"
    CLICK_BAR = "CLICK_BAR"
    CLICK_JACKET = "CLICK_JACKET"

class MasterSwitchStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class EditStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class ImageType(Enum):
    UPLOADED = "UPLOADED"
    LINKED = "LINKED"

class UserRole(Enum):
    USER = "USER"
    ADMIN = "ADMIN"

class NotificationType(Enum):
    SUBMISSION_APPROVED = "SUBMISSION_APPROVED"
    SUBMISSION_REJECTED = "SUBMISSION_REJECTED"
    EDIT_APPROVED = "EDIT_APPROVED"
    EDIT_REJECTED = "EDIT_REJECTED"

# Descriptive fields shared by Switch and MasterSwitch, in display order
SWITCH_SPEC_FIELDS = [
    'name', 'chinese_name', 'type', 'technology', 'manufacturer', 'compatibility',
    'initial_force', 'actuation_force', 'tactile_force', 'tactile_position',
    'bottom_out_force', 'pre_travel', 'bottom_out', 'spring_weight', 'spring_length',
    'progressive_spring', 'double_stage', 'click_type',
    'top_housing', 'bottom_housing', 'stem',
    'top_housing_color', 'bottom_housing_color', 'stem_color', 'stem_shape', 'markings',
    'magnet_orientation', 'magnet_position', 'magnet_polarity',
    'initial_magnetic_flux', 'bottom_out_magnetic_flux', 'pcb_thickness',
    'notes', 'image_url',
]

# Only meaningful when technology is MAGNETIC
MAGNETIC_FIELDS = [
    'magnet_orientation', 'magnet_position', 'magnet_polarity', 'initial_force',
    'initial_magnetic_flux', 'bottom_out_magnetic_flux', 'pcb_thickness', 'compatibility',
]

def to_camel(name: str) -> str:
    """snake_case attribute name to the camelCase key used on the wire."""
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)

def to_snake(name: str) -> str:
    """camelCase wire key back to the snake_case attribute name."""
    return ''.join('_' + c.lower() if c.isupper() else c for c in name)

def generate_id() -> str:
    return str(uuid.uuid4())

def generate_shareable_id() -> str:
    return secrets.token_urlsafe(9)

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None

class SwitchSpecMixin:
    """Columns for the descriptive switch fields."""

    name = db.Column(db.String(100), nullable=False)
    chinese_name = db.Column(db.String(100))
    type = db.Column(db.String(20))
    technology = db.Column(db.String(20))
    manufacturer = db.Column(db.String(100))
    compatibility = db.Column(db.String(100))
    initial_force = db.Column(db.Float)
    actuation_force = db.Column(db.Float)
    tactile_force = db.Column(db.Float)
    tactile_position = db.Column(db.Float)
    bottom_out_force = db.Column(db.Float)
    pre_travel = db.Column(db.Float)
    bottom_out = db.Column(db.Float)
    spring_weight = db.Column(db.String(50))
    spring_length = db.Column(db.String(50))
    progressive_spring = db.Column(db.Boolean)
    double_stage = db.Column(db.Boolean)
    click_type = db.Column(db.String(20))
    top_housing = db.Column(db.String(100))
    bottom_housing = db.Column(db.String(100))
    stem = db.Column(db.String(100))
    top_housing_color = db.Column(db.String(50))
    bottom_housing_color = db.Column(db.String(50))
    stem_color = db.Column(db.String(50))
    stem_shape = db.Column(db.String(50))
    markings = db.Column(db.String(100))
    magnet_orientation = db.Column(db.String(50))
    magnet_position = db.Column(db.String(50))
    magnet_polarity = db.Column(db.String(50))
    initial_magnetic_flux = db.Column(db.Float)
    bottom_out_magnetic_flux = db.Column(db.Float)
    pcb_thickness = db.Column(db.String(20))
    notes = db.Column(db.Text)
    image_url = db.Column(db.String(2048))

    def spec_dict(self) -> Dict[str, Any]:
        """Descriptive fields keyed by their wire names."""
        return {to_camel(field): getattr(self, field) for field in SWITCH_SPEC_FIELDS}

    def apply_fields(self, data: Dict[str, Any], fields: Optional[List[str]] = None):
        """Copy snake_case values from data onto this row (all fields by default)."""
        for field in fields or SWITCH_SPEC_FIELDS:
            if field in data:
                setattr(self, field, data[field])

class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    email = db.Column(db.String(120), unique=True, nullable=False)
    username = db.Column(db.String(50), unique=True, nullable=False)
    password_hash = db.Column(db.String(256))
    role = db.Column(db.String(20), default=UserRole.USER.value, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    switches = db.relationship('Switch', backref='user', lazy='dynamic',
                               cascade='all, delete-orphan')

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return bool(self.password_hash) and check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'email': self.email,
            'username': self.username,
            'role': self.role,
            'createdAt': _iso(self.created_at)
        }

class MasterSwitch(SwitchSpecMixin, db.Model):
    __tablename__ = 'master_switches'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    status = db.Column(db.String(20), default=MasterSwitchStatus.PENDING.value,
                       nullable=False, index=True)
    version = db.Column(db.Integer, default=1, nullable=False)
    submitted_by_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)
    approved_by_id = db.Column(db.String(36), db.ForeignKey('users.id'))
    approved_at = db.Column(db.DateTime)
    rejection_reason = db.Column(db.Text)
    original_submission_data = db.Column(db.JSON)
    shareable_id = db.Column(db.String(32), unique=True, default=generate_shareable_id)
    view_count = db.Column(db.Integer, default=0, nullable=False)
    last_modified_at = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    submitted_by = db.relationship('User', foreign_keys=[submitted_by_id])
    approved_by = db.relationship('User', foreign_keys=[approved_by_id])
    images = db.relationship('SwitchImage', backref='master_switch',
                             order_by='SwitchImage.display_order',
                             cascade='all, delete-orphan')
    edits = db.relationship('MasterSwitchEdit', backref='master_switch', lazy='dynamic',
                            cascade='all, delete-orphan')

    @property
    def is_approved(self) -> bool:
        return self.status == MasterSwitchStatus.APPROVED.value

    def to_dict(self, include_images: bool = False) -> Dict[str, Any]:
        result = {
            'id': self.id,
            **self.spec_dict(),
            'status': self.status,
            'version': self.version,
            'submittedById': self.submitted_by_id,
            'submittedBy': self.submitted_by.username if self.submitted_by else None,
            'approvedById': self.approved_by_id,
            'approvedAt': _iso(self.approved_at),
            'rejectionReason': self.rejection_reason,
            'shareableId': self.shareable_id,
            'viewCount': self.view_count,
            'lastModifiedAt': _iso(self.last_modified_at),
            'createdAt': _iso(self.created_at)
        }
        if include_images:
            result['images'] = [image.to_dict() for image in self.images]
        return result

class Switch(SwitchSpecMixin, db.Model):
    __tablename__ = 'switches'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    personal_notes = db.Column(db.Text)
    date_obtained = db.Column(db.Date)
    master_switch_id = db.Column(db.String(36), db.ForeignKey('master_switches.id'), index=True)
    master_switch_version = db.Column(db.Integer)
    is_modified = db.Column(db.Boolean, default=False, nullable=False)
    modified_fields = db.Column(db.JSON, default=list)
    primary_image_id = db.Column(db.String(36))
    shareable_id = db.Column(db.String(32), unique=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    master_switch = db.relationship('MasterSwitch')
    images = db.relationship('SwitchImage', backref='switch',
                             order_by='SwitchImage.display_order',
                             cascade='all, delete-orphan')

    def to_dict(self, include_images: bool = True) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'userId': self.user_id,
            **self.spec_dict(),
            'personalNotes': self.personal_notes,
            'dateObtained': self.date_obtained.isoformat() if self.date_obtained else None,
            'masterSwitchId': self.master_switch_id,
            'masterSwitchVersion': self.master_switch_version,
            'isModified': self.is_modified,
            'modifiedFields': self.modified_fields or [],
            'primaryImageId': self.primary_image_id,
            'shareableId': self.shareable_id,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at)
        }
        if include_images:
            result['images'] = [image.to_dict() for image in self.images]
        return result

class MasterSwitchEdit(db.Model):
    __tablename__ = 'master_switch_edits'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    master_switch_id = db.Column(db.String(36), db.ForeignKey('master_switches.id'),
                                 nullable=False, index=True)
    edited_by_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)
    previous_data = db.Column(db.JSON, nullable=False)  # Snapshot before the edit, never updated
    new_data = db.Column(db.JSON, nullable=False)
    changed_fields = db.Column(db.JSON, nullable=False)
    edit_reason = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), default=EditStatus.PENDING.value, nullable=False, index=True)
    approved_by_id = db.Column(db.String(36), db.ForeignKey('users.id'))
    approved_at = db.Column(db.DateTime)
    rejection_reason = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    edited_by = db.relationship('User', foreign_keys=[edited_by_id])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'masterSwitchId': self.master_switch_id,
            'masterSwitchName': self.master_switch.name if self.master_switch else None,
            'editedById': self.edited_by_id,
            'editedBy': self.edited_by.username if self.edited_by else None,
            'previousData': self.previous_data,
            'newData': self.new_data,
            'changedFields': self.changed_fields,
            'editReason': self.edit_reason,
            'status': self.status,
            'approvedById': self.approved_by_id,
            'approvedAt': _iso(self.approved_at),
            'rejectionReason': self.rejection_reason,
            'createdAt': _iso(self.created_at)
        }

class SwitchImage(db.Model):
    __tablename__ = 'switch_images'
    __table_args__ = (
        db.CheckConstraint(
            '(switch_id IS NULL) <> (master_switch_id IS NULL)',
            name='switch_image_single_owner'
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    switch_id = db.Column(db.String(36), db.ForeignKey('switches.id'), index=True)
    master_switch_id = db.Column(db.String(36), db.ForeignKey('master_switches.id'), index=True)
    url = db.Column(db.String(2048), nullable=False)
    thumbnail_url = db.Column(db.String(2048))
    medium_url = db.Column(db.String(2048))
    type = db.Column(db.String(20), default=ImageType.UPLOADED.value, nullable=False)
    display_order = db.Column(db.Integer, default=0, nullable=False)
    caption = db.Column(db.String(200))
    width = db.Column(db.Integer)
    height = db.Column(db.Integer)
    size = db.Column(db.Integer)
    storage_key = db.Column(db.String(512))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'switchId': self.switch_id,
            'masterSwitchId': self.master_switch_id,
            'url': self.url,
            'thumbnailUrl': self.thumbnail_url,
            'mediumUrl': self.medium_url,
            'type': self.type,
            'order': self.display_order,
            'caption': self.caption,
            'width': self.width,
            'height': self.height,
            'size': self.size,
            'createdAt': _iso(self.created_at)
        }

class Manufacturer(db.Model):
    __tablename__ = 'manufacturers'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    name = db.Column(db.String(100), unique=True, nullable=False)
    aliases = db.Column(db.JSON, default=list, nullable=False)
    verified = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'aliases': self.aliases or [],
            'verified': self.verified,
            'createdAt': _iso(self.created_at)
        }

class Wishlist(db.Model):
    __tablename__ = 'wishlist'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    master_switch_id = db.Column(db.String(36), db.ForeignKey('master_switches.id'))
    custom_name = db.Column(db.String(100))
    custom_manufacturer = db.Column(db.String(100))
    custom_notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    master_switch = db.relationship('MasterSwitch')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'masterSwitchId': self.master_switch_id,
            'masterSwitch': self.master_switch.to_dict() if self.master_switch else None,
            'customName': self.custom_name,
            'customManufacturer': self.custom_manufacturer,
            'customNotes': self.custom_notes,
            'createdAt': _iso(self.created_at)
        }

class ForceCurveCache(db.Model):
    __tablename__ = 'force_curve_cache'
    __table_args__ = (
        db.UniqueConstraint('switch_name', 'manufacturer', name='force_curve_cache_lookup'),
    )

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    switch_name = db.Column(db.String(100), nullable=False)
    manufacturer = db.Column(db.String(100), nullable=False, default='')
    has_force_curve = db.Column(db.Boolean, default=False, nullable=False)
    folder_url = db.Column(db.String(512))
    last_checked_at = db.Column(db.DateTime, default=datetime.utcnow)
    next_check_at = db.Column(db.DateTime)

class Notification(db.Model):
    __tablename__ = 'notifications'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(512))
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'link': self.link,
            'isRead': self.is_read,
            'createdAt': _iso(self.created_at)
        }
