"""
Tests for the image pipeline: upload validation, Pillow processing, local
storage, primary image bookkeeping and rate limits.
"""

import io
from pathlib import Path

import pytest

from switchbook_api.config import IMAGE_CONFIG
from switchbook_api.database import db
from switchbook_api.errors import RateLimited, ValidationFailed
from switchbook_api.models import MasterSwitch
from switchbook_api.services.images import (detect_image_signature, get_image_service,
                                            upload_limiter, validate_upload)
from switchbook_api.services.rate_limit import RateLimiter

def _new_switch(client, name='Cherry MX Red'):
    return client.post('/api/switches', json={'name': name}).get_json()['id']

def _upload(client, switch_id, data, filename='switch.png', mime_type='image/png'):
    return client.post(
        f'/api/switches/{switch_id}/images',
        data={'file': (io.BytesIO(data), filename, mime_type), 'caption': 'Top view'},
        content_type='multipart/form-data'
    )

def test_detect_image_signature(image_bytes):
    assert detect_image_signature(image_bytes('PNG')) == 'png'
    assert detect_image_signature(image_bytes('JPEG')) == 'jpeg'
    assert detect_image_signature(image_bytes('WEBP')) == 'webp'
    assert detect_image_signature(b'GIF89a......') is None

def test_validate_upload_rules(image_bytes):
    png = image_bytes('PNG')
    validate_upload(png, 'image/png', 'switch.png')

    with pytest.raises(ValidationFailed, match='Invalid file type'):
        validate_upload(png, 'image/gif', 'switch.gif')
    with pytest.raises(ValidationFailed, match='does not match file type'):
        validate_upload(png, 'image/png', 'switch.jpg')
    with pytest.raises(ValidationFailed, match='does not match its content'):
        validate_upload(image_bytes('JPEG'), 'image/png', 'switch.png')
    with pytest.raises(ValidationFailed, match='empty'):
        validate_upload(b'', 'image/png', 'switch.png')
    with pytest.raises(ValidationFailed, match='too large'):
        validate_upload(png + b'\0' * IMAGE_CONFIG['MAX_FILE_SIZE'], 'image/png', 'switch.png')

def test_upload_stores_variants_and_sets_primary(app, user_client, image_bytes):
    switch_id = _new_switch(user_client)

    response = _upload(user_client, switch_id, image_bytes('PNG', (1200, 900)))

    assert response.status_code == 201
    assert response.headers['X-RateLimit-Remaining'] == '9'
    image = response.get_json()
    assert image['type'] == 'UPLOADED'
    assert image['order'] == 0
    assert image['caption'] == 'Top view'
    assert (image['width'], image['height']) == (1200, 900)
    assert image['url'].endswith('.png')
    assert image['thumbnailUrl'].endswith('-thumb.jpg')
    assert image['mediumUrl'].endswith('-medium.jpg')

    upload_dir = Path(app.config['UPLOAD_DIR'])
    assert len(list(upload_dir.rglob('*'))) > 3
    assert user_client.get(image['url']).status_code == 200

    listing = user_client.get(f'/api/switches/{switch_id}/images').get_json()
    assert listing['primaryImageId'] == image['id']

def test_heic_uploads_are_stored_as_jpeg(app, user_client, image_bytes):
    switch_id = _new_switch(user_client)

    response = _upload(user_client, switch_id, image_bytes('HEIF', (320, 240)), 'switch.heic', 'image/heic')

    assert response.status_code == 201, response.get_json()
    image = response.get_json()
    assert image['url'].endswith('.jpg')
    assert (image['width'], image['height']) == (320, 240)

    stored = Path(app.config['UPLOAD_DIR']) / image['url'][len('/uploads/'):]
    assert stored.read_bytes()[:3] == b'\xff\xd8\xff'
    served = user_client.get(image['url'])
    assert served.headers['Content-Type'] == 'image/jpeg'

def test_upload_rejects_mismatched_content(user_client, image_bytes):
    switch_id = _new_switch(user_client)

    response = _upload(user_client, switch_id, image_bytes('JPEG'))

    assert response.status_code == 400
    assert response.get_json()['message'] == 'File type does not match its content'

def test_upload_rejects_oversized_dimensions(user_client, image_bytes):
    switch_id = _new_switch(user_client)
    response = _upload(user_client, switch_id, image_bytes('PNG', (IMAGE_CONFIG['MAX_DIMENSION'] + 1, 1)))
    assert response.status_code == 400
    assert 'dimensions too large' in response.get_json()['message']

def test_upload_respects_user_storage_limit(user_client, image_bytes, monkeypatch):
    monkeypatch.setitem(IMAGE_CONFIG, 'MAX_USER_STORAGE', 10)
    switch_id = _new_switch(user_client)

    response = _upload(user_client, switch_id, image_bytes('PNG'))

    assert response.status_code == 400
    assert response.get_json()['message'] == 'Storage limit exceeded'

def test_upload_rate_limit(user_client, user_id, image_bytes):
    switch_id = _new_switch(user_client)
    for _ in range(IMAGE_CONFIG['UPLOADS_PER_MINUTE']):
        upload_limiter.hit(user_id)

    response = _upload(user_client, switch_id, image_bytes('PNG'))

    assert response.status_code == 429
    assert int(response.headers['Retry-After']) >= 1
    assert response.headers['X-RateLimit-Remaining'] == '0'

def test_rate_limiter_windows_are_per_key():
    limiter = RateLimiter(2, 60, 'tests')
    assert limiter.hit('a')['X-RateLimit-Remaining'] == '1'
    limiter.hit('a')
    with pytest.raises(RateLimited):
        limiter.hit('a')
    assert limiter.hit('b')['X-RateLimit-Remaining'] == '1'

def test_rate_limiter_forgets_closed_windows():
    now = [1000.0]
    limiter = RateLimiter(5, 60, 'tests', clock=lambda: now[0])
    for key in ('a', 'b', 'c'):
        limiter.hit(key)
    assert len(limiter) == 3

    now[0] += 61
    limiter.hit('d')

    assert len(limiter) == 1
    assert limiter.hit('a')['X-RateLimit-Remaining'] == '4'

def test_delete_reassigns_primary_and_renumbers(user_client, image_bytes):
    switch_id = _new_switch(user_client)
    first = _upload(user_client, switch_id, image_bytes('PNG')).get_json()
    second = _upload(user_client, switch_id, image_bytes('JPEG'), 'b.jpg', 'image/jpeg').get_json()
    third = user_client.post(f'/api/switches/{switch_id}/images/link',
                             json={'url': 'https://cdn.example.com/c.png'}).get_json()
    assert [first['order'], second['order'], third['order']] == [0, 1, 2]

    deleted = user_client.delete(f"/api/switches/{switch_id}/images?imageId={first['id']}")
    assert deleted.status_code == 200

    listing = user_client.get(f'/api/switches/{switch_id}/images').get_json()
    assert listing['primaryImageId'] == second['id']
    assert [(i['id'], i['order']) for i in listing['images']] == [(second['id'], 0), (third['id'], 1)]

    assert user_client.delete(f'/api/switches/{switch_id}/images').status_code == 400
    assert user_client.delete(f"/api/switches/{switch_id}/images?imageId={first['id']}").status_code == 404

def test_reorder_and_update(user_client):
    switch_id = _new_switch(user_client)
    ids = [
        user_client.post(f'/api/switches/{switch_id}/images/link',
                         json={'url': f'https://cdn.example.com/{n}.jpg'}).get_json()['id']
        for n in ('a', 'b', 'c')
    ]

    reordered = user_client.post(f'/api/switches/{switch_id}/images/reorder',
                                 json={'imageIds': list(reversed(ids))})
    assert [i['id'] for i in reordered.get_json()['images']] == list(reversed(ids))
    listing = user_client.get(f'/api/switches/{switch_id}/images').get_json()
    assert listing['primaryImageId'] == ids[-1]

    incomplete = user_client.post(f'/api/switches/{switch_id}/images/reorder', json={'imageIds': ids[:2]})
    assert incomplete.status_code == 400

    patched = user_client.patch(f'/api/switches/{switch_id}/images/{ids[0]}?primary=true',
                                json={'caption': 'Side view'})
    assert patched.get_json()['caption'] == 'Side view'
    listing = user_client.get(f'/api/switches/{switch_id}/images').get_json()
    assert listing['primaryImageId'] == ids[0]

def test_link_image_validation(user_client):
    switch_id = _new_switch(user_client)

    insecure = user_client.post(f'/api/switches/{switch_id}/images/link',
                                json={'url': 'https://10.1.2.3/a.png'})
    assert insecure.status_code == 400

    url = 'https://cdn.example.com/a.png'
    linked = user_client.post(f'/api/switches/{switch_id}/images/link', json={'url': url})
    assert linked.status_code == 201
    assert linked.get_json()['type'] == 'LINKED'
    assert 'X-RateLimit-Limit' in linked.headers

    duplicate = user_client.post(f'/api/switches/{switch_id}/images/link', json={'url': url})
    assert duplicate.status_code == 400

def test_image_count_limit(app, user_id, user_client):
    switch_id = _new_switch(user_client)
    with app.app_context():
        service = get_image_service()
        for n in range(IMAGE_CONFIG['MAX_IMAGES_PER_SWITCH']):
            service.link_to_switch(user_id, switch_id, f'https://cdn.example.com/{n}.png')
        with pytest.raises(ValidationFailed, match='Maximum 10 images'):
            service.link_to_switch(user_id, switch_id, 'https://cdn.example.com/extra.png')

def test_images_of_other_users_are_hidden(user_client, login_as, other_user_id):
    switch_id = _new_switch(user_client)
    intruder = login_as(other_user_id)
    assert intruder.get(f'/api/switches/{switch_id}/images').status_code == 404
    assert intruder.post(f'/api/switches/{switch_id}/images/link',
                         json={'url': 'https://cdn.example.com/a.png'}).status_code == 404

def test_deleting_a_switch_removes_its_files(app, user_client, image_bytes):
    switch_id = _new_switch(user_client)
    _upload(user_client, switch_id, image_bytes('PNG'))
    upload_dir = Path(app.config['UPLOAD_DIR'])
    assert [p for p in upload_dir.rglob('*') if p.is_file()]

    user_client.delete(f'/api/switches/{switch_id}')

    assert not [p for p in upload_dir.rglob('*') if p.is_file()]

def test_admin_master_image_sets_image_url(app, admin_client, make_master, image_bytes):
    master_id = make_master()

    response = admin_client.post(
        f'/api/admin/master-switches/{master_id}/images',
        data={'file': (io.BytesIO(image_bytes('JPEG')), 'master.jpg', 'image/jpeg')},
        content_type='multipart/form-data'
    )

    assert response.status_code == 201
    with app.app_context():
        master = db.session.get(MasterSwitch, master_id)
        assert master.image_url == response.get_json()['url']
        assert master.images[0].master_switch_id == master_id
