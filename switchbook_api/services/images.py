# Switchbook - Mechanical Keyboard Switch Catalogue
# Copyright (C) 2025 Mariano Rozanski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Switch Image Pipeline
Handles upload validation, format conversion, variant generation, storage
and primary-image bookkeeping for switch and master switch images.
"""

import io
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import cloudinary
import cloudinary.uploader
from flask import current_app
from PIL import Image, ImageOps, UnidentifiedImageError
from pillow_heif import register_heif_opener
from sqlalchemy import func

from ..config import IMAGE_CONFIG
from ..database import db
from ..errors import CapacityExceeded, NotFound, ValidationFailed
from ..models import ImageType, MasterSwitch, Switch, SwitchImage, generate_id
from ..validation import validate_image_url
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

register_heif_opener()

upload_limiter = RateLimiter(IMAGE_CONFIG['UPLOADS_PER_MINUTE'], 60, 'uploads')
url_validation_limiter = RateLimiter(IMAGE_CONFIG['URL_VALIDATIONS_PER_MINUTE'], 60,
                                     'image URL validations')

# Declared MIME type -> signatures its bytes may carry
MIME_SIGNATURES = {
    'image/jpeg': {'jpeg'},
    'image/jpg': {'jpeg'},
    'image/png': {'png'},
    'image/webp': {'webp'},
    'image/heic': {'heic', 'heif'},
    'image/heif': {'heic', 'heif'},
}

EXTENSION_MIME_TYPES = {
    '.jpg': {'image/jpeg', 'image/jpg'},
    '.jpeg': {'image/jpeg', 'image/jpg'},
    '.png': {'image/png'},
    '.webp': {'image/webp'},
    '.heic': {'image/heic', 'image/heif'},
    '.heif': {'image/heic', 'image/heif'},
}

def detect_image_signature(data: bytes) -> Optional[str]:
    """Identify an image by its leading bytes; None for anything unrecognized."""
    if data[:3] == b'\xff\xd8\xff':
        return 'jpeg'
    if data[:8] == b'\x89PNG\r\n\x1a\n':
        return 'png'
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return 'webp'
    if data[4:12] == b'ftypheic':
        return 'heic'
    if data[4:12] == b'ftypheif':
        return 'heif'
    return None

def validate_upload(data: bytes, mime_type: Optional[str], filename: Optional[str]):
    """
    Check declared type, extension, signature and size of an uploaded file.

    Raises:
        ValidationFailed: on the first problem found
    """
    mime_type = (mime_type or '').lower()
    if mime_type not in IMAGE_CONFIG['ALLOWED_MIME_TYPES']:
        raise ValidationFailed('Invalid file type. Allowed: JPEG, PNG, WebP, HEIC')

    extension = Path(filename or '').suffix.lower()
    if extension not in IMAGE_CONFIG['ALLOWED_EXTENSIONS']:
        raise ValidationFailed('Invalid file extension')
    if mime_type not in EXTENSION_MIME_TYPES[extension]:
        raise ValidationFailed('File extension does not match file type')

    if len(data) == 0:
        raise ValidationFailed('File is empty')
    if len(data) > IMAGE_CONFIG['MAX_FILE_SIZE']:
        max_mb = IMAGE_CONFIG['MAX_FILE_SIZE'] // (1024 * 1024)
        raise ValidationFailed(f'File too large. Maximum size is {max_mb}MB')

    if detect_image_signature(data) not in MIME_SIGNATURES[mime_type]:
        raise ValidationFailed('File type does not match its content')

@dataclass
class ProcessedUpload:
    """Bytes ready for storage plus what we learned about the image."""
    data: bytes
    extension: str
    mime_type: str
    width: int
    height: int
    variants: Dict[str, bytes]

class SwitchImageProcessor:
    """Decodes uploads with Pillow, converts HEIC to JPEG and renders size variants."""

    VARIANTS = {
        'thumb': ('cover', IMAGE_CONFIG['THUMBNAIL_SIZE']),
        'medium': ('inside', IMAGE_CONFIG['MEDIUM_SIZE']),
    }

    def process(self, data: bytes, mime_type: str) -> ProcessedUpload:
        try:
            img = Image.open(io.BytesIO(data))
            width, height = img.size
        except (UnidentifiedImageError, OSError) as e:
            raise ValidationFailed(f'Could not read image: {e}')

        max_dimension = IMAGE_CONFIG['MAX_DIMENSION']
        if width > max_dimension or height > max_dimension:
            raise ValidationFailed(
                f'Image dimensions too large. Maximum is {max_dimension}x{max_dimension} pixels'
            )

        try:
            img = ImageOps.exif_transpose(img)
            extension = self._extension_for(mime_type)
            if mime_type in ('image/heic', 'image/heif'):
                data = self._encode_jpeg(img)
                extension, mime_type = 'jpg', 'image/jpeg'
            variants = {name: self._render_variant(img, mode, size)
                        for name, (mode, size) in self.VARIANTS.items()}
        except OSError as e:
            raise ValidationFailed(f'Could not process image: {e}')

        return ProcessedUpload(
            data=data,
            extension=extension,
            mime_type=mime_type,
            width=img.width,
            height=img.height,
            variants=variants
        )

    @staticmethod
    def _extension_for(mime_type: str) -> str:
        return {
            'image/jpeg': 'jpg', 'image/jpg': 'jpg', 'image/png': 'png',
            'image/webp': 'webp', 'image/heic': 'heic', 'image/heif': 'heif'
        }[mime_type]

    @staticmethod
    def _encode_jpeg(img: Image.Image) -> bytes:
        if img.mode != 'RGB':
            img = img.convert('RGB')
        buffer = io.BytesIO()
        # Re-encoding without passing exif drops the original metadata
        img.save(buffer, format='JPEG', quality=IMAGE_CONFIG['JPEG_QUALITY'], optimize=True)
        return buffer.getvalue()

    def _render_variant(self, img: Image.Image, mode: str, size: Tuple[int, int]) -> bytes:
        if mode == 'cover':
            variant = ImageOps.fit(img, size, method=Image.Resampling.LANCZOS)
        else:
            variant = img.copy()
            variant.thumbnail(size, Image.Resampling.LANCZOS)
        return self._encode_jpeg(variant)

class LocalImageStorage:
    """Writes images below a directory and serves them from a URL prefix."""

    def __init__(self, upload_dir: str, url_prefix: str):
        self.upload_dir = Path(upload_dir)
        self.url_prefix = url_prefix.rstrip('/')

    def save(self, key: str, data: bytes, mime_type: str) -> str:
        path = self.upload_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return f"{self.url_prefix}/{key}"

    def delete(self, key: str):
        path = self.upload_dir / key
        if path.exists():
            path.unlink()

class CloudinaryImageStorage:
    """Stores images on Cloudinary under the same keys as local storage."""

    def __init__(self, config: Dict[str, str]):
        cloudinary.config(
            cloud_name=config['cloudinary_cloud_name'],
            api_key=config['cloudinary_api_key'],
            api_secret=config['cloudinary_api_secret']
        )

    @staticmethod
    def _public_id(key: str) -> str:
        return key.rsplit('.', 1)[0]

    def save(self, key: str, data: bytes, mime_type: str) -> str:
        result = cloudinary.uploader.upload(
            data,
            public_id=self._public_id(key),
            overwrite=False,
            resource_type='image',
            tags=['switchbook'],
            context={'uploaded_at': datetime.utcnow().isoformat()}
        )
        return result['secure_url']

    def delete(self, key: str):
        cloudinary.uploader.destroy(self._public_id(key), resource_type='image')

def get_storage(app_config) -> object:
    """Cloudinary when credentials are configured, local disk otherwise."""
    if app_config.get('CLOUDINARY'):
        return CloudinaryImageStorage(app_config['CLOUDINARY'])
    return LocalImageStorage(app_config['UPLOAD_DIR'], app_config['UPLOAD_URL_PREFIX'])

def storage_prefix(switch: Optional[Switch] = None,
                   master_switch: Optional[MasterSwitch] = None) -> str:
    """Storage folder keyed by the owning entity."""
    if switch is not None:
        return f"switches/{switch.user_id}/{switch.id}"
    return f"master-switches/{master_switch.id}"

class SwitchImageService:
    """Image operations on user switches and master switches."""

    def __init__(self, storage, processor: Optional[SwitchImageProcessor] = None):
        self.storage = storage
        self.processor = processor or SwitchImageProcessor()

    def get_owned_switch(self, user_id: str, switch_id: str) -> Switch:
        switch = Switch.query.filter_by(id=switch_id, user_id=user_id).first()
        if switch is None:
            raise NotFound('Switch not found')
        return switch

    @staticmethod
    def user_storage_used(user_id: str) -> int:
        """Bytes of uploaded images across all of the user's switches."""
        total = (db.session.query(func.coalesce(func.sum(SwitchImage.size), 0))
                 .join(Switch, SwitchImage.switch_id == Switch.id)
                 .filter(Switch.user_id == user_id)
                 .scalar())
        return int(total or 0)

    @staticmethod
    def _next_order(images: List[SwitchImage]) -> int:
        return max((image.display_order for image in images), default=-1) + 1

    @staticmethod
    def _check_image_count(images: List[SwitchImage]):
        if len(images) >= IMAGE_CONFIG['MAX_IMAGES_PER_SWITCH']:
            raise ValidationFailed(
                f"Maximum {IMAGE_CONFIG['MAX_IMAGES_PER_SWITCH']} images per switch"
            )

    def _store(self, prefix: str, image_id: str, processed: ProcessedUpload) -> Dict[str, str]:
        key = f"{prefix}/{image_id}.{processed.extension}"
        urls = {
            'url': self.storage.save(key, processed.data, processed.mime_type),
            'storage_key': key
        }
        for name, variant in processed.variants.items():
            variant_key = f"{prefix}/{image_id}-{name}.jpg"
            urls[f'{name}_url'] = self.storage.save(variant_key, variant, 'image/jpeg')
        return urls

    def upload_to_switch(self, user_id: str, switch_id: str, data: bytes,
                         mime_type: Optional[str], filename: Optional[str],
                         caption: Optional[str] = None) -> SwitchImage:
        """
        Validate, process and store an uploaded image for a user switch.

        The first image on a switch becomes its primary image.
        """
        switch = self.get_owned_switch(user_id, switch_id)
        self._check_image_count(switch.images)
        validate_upload(data, mime_type, filename)

        used = self.user_storage_used(user_id)
        if used + len(data) > IMAGE_CONFIG['MAX_USER_STORAGE']:
            raise CapacityExceeded(
                'Storage limit exceeded',
                payload={
                    'usedBytes': used,
                    'maxBytes': IMAGE_CONFIG['MAX_USER_STORAGE'],
                    'suggestion': 'Delete some images to free up space.'
                }
            )

        processed = self.processor.process(data, mime_type.lower())
        image_id = generate_id()
        stored = self._store(storage_prefix(switch=switch), image_id, processed)

        image = SwitchImage(
            id=image_id,
            switch_id=switch.id,
            url=stored['url'],
            thumbnail_url=stored.get('thumb_url'),
            medium_url=stored.get('medium_url'),
            storage_key=stored['storage_key'],
            type=ImageType.UPLOADED.value,
            display_order=self._next_order(switch.images),
            caption=caption,
            width=processed.width,
            height=processed.height,
            size=len(processed.data)
        )
        return self._attach(switch, image)

    def upload_to_master(self, master_id: str, data: bytes, mime_type: Optional[str],
                         filename: Optional[str], caption: Optional[str] = None) -> SwitchImage:
        """Admin upload for a master switch; the first image also sets imageUrl."""
        master = db.session.get(MasterSwitch, master_id)
        if master is None:
            raise NotFound('Master switch not found')
        self._check_image_count(master.images)
        validate_upload(data, mime_type, filename)

        processed = self.processor.process(data, mime_type.lower())
        image_id = generate_id()
        stored = self._store(storage_prefix(master_switch=master), image_id, processed)

        image = SwitchImage(
            id=image_id,
            master_switch_id=master.id,
            url=stored['url'],
            thumbnail_url=stored.get('thumb_url'),
            medium_url=stored.get('medium_url'),
            storage_key=stored['storage_key'],
            type=ImageType.UPLOADED.value,
            display_order=self._next_order(master.images),
            caption=caption,
            width=processed.width,
            height=processed.height,
            size=len(processed.data)
        )
        db.session.add(image)
        if not master.image_url:
            master.image_url = image.url
        db.session.commit()
        return image

    def link_to_switch(self, user_id: str, switch_id: str, url: str,
                       caption: Optional[str] = None) -> SwitchImage:
        """Attach an external image by URL after the SSRF checks."""
        switch = self.get_owned_switch(user_id, switch_id)
        self._check_image_count(switch.images)

        problem = validate_image_url(url)
        if problem:
            raise ValidationFailed(problem)
        if any(image.url == url for image in switch.images):
            raise ValidationFailed('This image is already attached to the switch')

        image = SwitchImage(
            switch_id=switch.id,
            url=url,
            type=ImageType.LINKED.value,
            display_order=self._next_order(switch.images),
            caption=caption
        )
        return self._attach(switch, image)

    def _attach(self, switch: Switch, image: SwitchImage) -> SwitchImage:
        db.session.add(image)
        switch.images.append(image)
        db.session.flush()
        if not switch.primary_image_id or len(switch.images) == 1:
            switch.primary_image_id = image.id
        db.session.commit()
        logger.info(f"Image {image.id} added to switch {switch.id}")
        return image

    def _get_switch_image(self, switch: Switch, image_id: str) -> SwitchImage:
        for image in switch.images:
            if image.id == image_id:
                return image
        raise NotFound('Image not found')

    def delete_from_switch(self, user_id: str, switch_id: str, image_id: str):
        """
        Remove an image, hand the primary flag to the next image by order and
        renumber the remaining images from 0.
        """
        switch = self.get_owned_switch(user_id, switch_id)
        image = self._get_switch_image(switch, image_id)
        storage_key = image.storage_key

        switch.images.remove(image)
        db.session.delete(image)

        remaining = sorted(switch.images, key=lambda i: i.display_order)
        if switch.primary_image_id == image_id:
            switch.primary_image_id = remaining[0].id if remaining else None
        for position, other in enumerate(remaining):
            other.display_order = position

        db.session.commit()
        if storage_key:
            self.delete_files(storage_key)

    def delete_files(self, storage_key: str):
        base, _, _ = storage_key.rpartition('.')
        for key in [storage_key, f"{base}-thumb.jpg", f"{base}-medium.jpg"]:
            try:
                self.storage.delete(key)
            except Exception as e:
                logger.warning(f"Failed to delete stored image {key}: {e}")

    def reorder(self, user_id: str, switch_id: str, image_ids: List[str]) -> List[SwitchImage]:
        """Set display order from the given id sequence; the first becomes primary."""
        switch = self.get_owned_switch(user_id, switch_id)
        by_id = {image.id: image for image in switch.images}
        if set(image_ids) != set(by_id) or len(image_ids) != len(by_id):
            raise ValidationFailed('Image list must contain every image of the switch exactly once')

        for position, image_id in enumerate(image_ids):
            by_id[image_id].display_order = position
        switch.primary_image_id = image_ids[0]
        db.session.commit()
        return sorted(switch.images, key=lambda i: i.display_order)

    def update(self, user_id: str, switch_id: str, image_id: str,
               caption: Optional[str] = None, order: Optional[int] = None,
               make_primary: bool = False) -> SwitchImage:
        switch = self.get_owned_switch(user_id, switch_id)
        image = self._get_switch_image(switch, image_id)
        if caption is not None:
            image.caption = caption or None
        if order is not None:
            image.display_order = order
        if make_primary:
            switch.primary_image_id = image.id
        db.session.commit()
        return image

def get_image_service() -> SwitchImageService:
    """Image service bound to the current app's storage backend."""
    service = current_app.extensions.get('switchbook_images')
    if service is None:
        service = SwitchImageService(get_storage(current_app.config))
        current_app.extensions['switchbook_images'] = service
    return service
