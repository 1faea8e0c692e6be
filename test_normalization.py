"""
Tests for similarity scoring, manufacturer canonicalization, payload
transformation and the image URL safety checks.
"""

from datetime import date

import pytest

from switchbook_api.normalization import (calculate_similarity, find_similar, is_similar,
                                          normalize_for_comparison, normalize_manufacturer,
                                          transform_switch_data, validate_manufacturers)
from switchbook_api.validation import validate_image_url

MANUFACTURERS = [
    {'id': 'm-cherry', 'name': 'Cherry', 'aliases': ['Cherry Corp', 'Cherry MX'], 'verified': True},
    {'id': 'm-gateron', 'name': 'Gateron', 'aliases': [], 'verified': True},
    {'id': 'm-jwk', 'name': 'JWK', 'aliases': ['JWICK', 'Durock'], 'verified': False},
]

def test_normalize_for_comparison():
    assert normalize_for_comparison('Cherry MX-Red (2024)') == 'cherrymxred2024'
    assert normalize_for_comparison(None) == ''

def test_similarity_ignores_case_and_punctuation():
    assert calculate_similarity('Cherry MX Red', 'cherry-mx-red') == 1.0
    assert calculate_similarity('', '') == 1.0
    assert calculate_similarity('abc', '') == 0.0

def test_similarity_threshold_is_exclusive():
    # One edit in five characters scores exactly 0.8
    assert calculate_similarity('abcde', 'abcdx') == pytest.approx(0.8)
    assert not is_similar('abcde', 'abcdx')
    assert is_similar('Gateron Yellow', 'Gateron Yelow')

def test_find_similar_orders_best_first_and_limits():
    candidates = ['Gateron Yellow', 'Gateron Yelow', 'Gateron Yellw', 'Kailh Box Jade']
    results = find_similar('Gateron Yellow', candidates, key=lambda c: c, limit=2)
    assert [r['item'] for r in results] == ['Gateron Yellow', 'Gateron Yelow']
    assert results[0]['similarity'] == 1.0

def test_manufacturer_exact_name_is_case_insensitive():
    match = normalize_manufacturer('  cherry ', MANUFACTURERS)
    assert match.name == 'Cherry'
    assert match.is_alias is False
    assert match.manufacturer_id == 'm-cherry'

def test_manufacturer_alias_resolves_to_canonical_name():
    match = normalize_manufacturer('cherry corp', MANUFACTURERS)
    assert match.name == 'Cherry'
    assert match.is_alias is True
    assert match.verified is True

    assert normalize_manufacturer('durock', MANUFACTURERS).name == 'JWK'

def test_manufacturer_fuzzy_match_above_threshold():
    match = normalize_manufacturer('Gateronn', MANUFACTURERS)
    assert match.name == 'Gateron'
    assert match.similarity == pytest.approx(7 / 8)

def test_unknown_manufacturer_is_returned_trimmed():
    match = normalize_manufacturer('  Acme Switches ', MANUFACTURERS)
    assert match.name == 'Acme Switches'
    assert match.manufacturer_id is None
    assert match.verified is False
    assert normalize_manufacturer(None, MANUFACTURERS).name == ''

def test_validate_manufacturers_suggests_containing_names():
    report = validate_manufacturers(['Gat', 'Cherry MX'], MANUFACTURERS)
    assert report[0]['isValid'] is False
    assert report[0]['suggestions'] == ['Gateron']
    assert report[1] == {
        'input': 'Cherry MX', 'normalized': 'Cherry', 'isValid': True,
        'verified': True, 'isAlias': True, 'suggestions': []
    }

def test_transform_switch_data():
    data = transform_switch_data({
        'name': ' Boba U4T ',
        'chineseName': '',
        'actuationForce': 62,
        'personalNotes': 'Thocky',
        'dateObtained': '2024-03-01T10:00:00Z',
        'somethingElse': 'dropped',
    })
    assert data == {
        'name': 'Boba U4T',
        'chinese_name': None,
        'actuation_force': 62,
        'personal_notes': 'Thocky',
        'date_obtained': date(2024, 3, 1),
    }

@pytest.mark.parametrize('url', [
    None,
    '',
    'https://example.com/switch.jpg',
    'https://cdn.example.com/images/12345',
    'https://example.com/photos/switch.WEBP?size=large',
])
def test_image_url_accepted(url):
    assert validate_image_url(url) is None

@pytest.mark.parametrize('url, message', [
    ('http://example.com/switch.jpg', 'Image URL must use HTTPS'),
    ('ftp://example.com/switch.jpg', 'Image URL must use HTTPS'),
    ('https://localhost/switch.png', 'Image URL host is not allowed'),
    ('https://169.254.169.254/latest/meta-data', 'Image URL host is not allowed'),
    ('https://metadata.google.internal/x.png', 'Image URL host is not allowed'),
    ('https://[::1]/switch.png', 'Image URL host is not allowed'),
    ('https://10.0.0.5/switch.png', 'Image URL points to a private network address'),
    ('https://172.16.4.1/switch.png', 'Image URL points to a private network address'),
    ('https://192.168.1.20/switch.png', 'Image URL points to a private network address'),
    ('https://printer.local/switch.png', 'Image URL host is not allowed'),
    ('https://example.com/../etc/passwd', 'Image URL path is not allowed'),
    ('https://example.com/%2e%2e/secret.png', 'Image URL path is not allowed'),
    ('https://example.com/payload.exe', 'Image URL must point to an image file'),
    ('https://example.com/' + 'a' * 2100 + '.png', 'Image URL is too long'),
])
def test_image_url_rejected(url, message):
    assert validate_image_url(url) == message
