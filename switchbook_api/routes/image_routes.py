"""
Image routes for user switches: upload, link by URL, reorder, edit and delete.
"""

import logging

from flask import Blueprint, jsonify, request

from ..auth import current_user, login_required
from ..errors import ApiError, ValidationFailed
from ..services.images import get_image_service, upload_limiter, url_validation_limiter
from ..validation import (IMAGE_LINK_SCHEMA, IMAGE_REORDER_SCHEMA, IMAGE_UPDATE_SCHEMA,
                          validate_payload)
from .utils import get_json_body, server_error

logger = logging.getLogger(__name__)

image_bp = Blueprint('images', __name__)

def _with_headers(response, headers):
    for name, value in headers.items():
        response.headers[name] = value
    return response

@image_bp.route('/switches/<switch_id>/images', methods=['GET'])
@login_required
def list_images(switch_id):
    service = get_image_service()
    switch = service.get_owned_switch(current_user().id, switch_id)
    return jsonify({
        'images': [image.to_dict() for image in switch.images],
        'primaryImageId': switch.primary_image_id
    })

@image_bp.route('/switches/<switch_id>/images', methods=['POST'])
@login_required
def upload_image(switch_id):
    """
    Upload an image file (multipart field "file", optional "caption").

    Limited to 10 uploads per minute per user.
    """
    try:
        user = current_user()
        rate_headers = upload_limiter.hit(user.id)

        upload = request.files.get('file')
        if upload is None or not upload.filename:
            raise ValidationFailed('No file provided')

        data = upload.read()
        image = get_image_service().upload_to_switch(
            user.id, switch_id, data, upload.mimetype, upload.filename,
            caption=request.form.get('caption')
        )
        response = jsonify(image.to_dict())
        response.status_code = 201
        return _with_headers(response, rate_headers)

    except ApiError:
        raise
    except Exception as e:
        return server_error('upload_image', e, 'An error occurred while uploading the image')

@image_bp.route('/switches/<switch_id>/images/link', methods=['POST'])
@login_required
def link_image(switch_id):
    """Attach an external HTTPS image URL; limited to 20 validations per minute per IP."""
    try:
        rate_headers = url_validation_limiter.hit(request.remote_addr or 'unknown')
        data = validate_payload(get_json_body(), IMAGE_LINK_SCHEMA)
        image = get_image_service().link_to_switch(
            current_user().id, switch_id, data['url'].strip(), caption=data.get('caption')
        )
        response = jsonify(image.to_dict())
        response.status_code = 201
        return _with_headers(response, rate_headers)

    except ApiError:
        raise
    except Exception as e:
        return server_error('link_image', e, 'An error occurred while linking the image')

@image_bp.route('/switches/<switch_id>/images/reorder', methods=['POST'])
@login_required
def reorder_images(switch_id):
    try:
        data = validate_payload(get_json_body(), IMAGE_REORDER_SCHEMA)
        images = get_image_service().reorder(current_user().id, switch_id, data['imageIds'])
        return jsonify({'images': [image.to_dict() for image in images]})

    except ApiError:
        raise
    except Exception as e:
        return server_error('reorder_images', e, 'An error occurred while reordering images')

@image_bp.route('/switches/<switch_id>/images/<image_id>', methods=['PATCH'])
@login_required
def update_image(switch_id, image_id):
    try:
        data = validate_payload(get_json_body(), IMAGE_UPDATE_SCHEMA)
        image = get_image_service().update(
            current_user().id, switch_id, image_id,
            caption=data.get('caption'),
            order=data.get('order'),
            make_primary=bool(request.args.get('primary') == 'true')
        )
        return jsonify(image.to_dict())

    except ApiError:
        raise
    except Exception as e:
        return server_error('update_image', e, 'An error occurred while updating the image')

@image_bp.route('/switches/<switch_id>/images', methods=['DELETE'])
@login_required
def delete_image(switch_id):
    """Delete one image; the id comes from the imageId query parameter."""
    try:
        image_id = request.args.get('imageId')
        if not image_id:
            raise ValidationFailed('imageId parameter is required')
        get_image_service().delete_from_switch(current_user().id, switch_id, image_id)
        return jsonify({'success': True})

    except ApiError:
        raise
    except Exception as e:
        return server_error('delete_image', e, 'An error occurred while deleting the image')
