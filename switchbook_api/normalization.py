# Switchbook - Mechanical Keyboard Switch Catalogue
# Copyright (C) 2025 Mariano Rozanski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Normalization helpers: name similarity, manufacturer canonicalization and
the field transform applied to incoming switch payloads.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from rapidfuzz.distance import Levenshtein

from .database import db
from .models import Manufacturer, SWITCH_SPEC_FIELDS, to_camel

SIMILARITY_THRESHOLD = 0.8
MAX_SIMILAR_RESULTS = 5

_NON_ALNUM = re.compile(r'[^a-z0-9]')

@dataclass
class ManufacturerMatch:
    """Result of canonicalizing a free-text manufacturer string."""
    name: str
    verified: bool = False
    is_alias: bool = False
    similarity: float = 0.0
    manufacturer_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'verified': self.verified,
            'isAlias': self.is_alias,
            'similarity': round(self.similarity, 3),
            'manufacturerId': self.manufacturer_id
        }

def normalize_for_comparison(text: Optional[str]) -> str:
    """Lowercase and drop everything that is not a letter or digit."""
    if not text:
        return ""
    return _NON_ALNUM.sub('', text.lower())

def calculate_similarity(str1: Optional[str], str2: Optional[str]) -> float:
    """
    Normalized Levenshtein similarity in [0, 1].

    Both strings are normalized first; identical normalized strings score 1.0,
    otherwise the score is (len(longer) - distance) / len(longer).
    """
    s1 = normalize_for_comparison(str1)
    s2 = normalize_for_comparison(str2)

    if s1 == s2:
        return 1.0

    longer, shorter = (s1, s2) if len(s1) >= len(s2) else (s2, s1)
    if len(longer) == 0:
        return 1.0

    distance = Levenshtein.distance(longer, shorter)
    return (len(longer) - distance) / len(longer)

def is_similar(str1: Optional[str], str2: Optional[str],
               threshold: float = SIMILARITY_THRESHOLD) -> bool:
    """Strictly above the threshold; a score equal to it is not similar."""
    return calculate_similarity(str1, str2) > threshold

def find_similar(name: str, candidates: Iterable[Any], key=lambda c: c.name,
                 threshold: float = SIMILARITY_THRESHOLD,
                 limit: int = MAX_SIMILAR_RESULTS) -> List[Dict[str, Any]]:
    """
    Score candidates against name and keep those above the threshold.

    Returns:
        List of {'item', 'similarity'} dicts, best first, at most `limit` long
    """
    scored = []
    for candidate in candidates:
        score = calculate_similarity(name, key(candidate))
        if score > threshold:
            scored.append({'item': candidate, 'similarity': score})
    scored.sort(key=lambda entry: entry['similarity'], reverse=True)
    return scored[:limit]

def load_manufacturer_index() -> List[Dict[str, Any]]:
    """Snapshot of known manufacturers as plain dicts, safe to share across threads."""
    return [
        {
            'id': m.id,
            'name': m.name,
            'aliases': list(m.aliases or []),
            'verified': bool(m.verified)
        }
        for m in db.session.query(Manufacturer).all()
    ]

def normalize_manufacturer(raw: Optional[str],
                           manufacturers: List[Dict[str, Any]]) -> ManufacturerMatch:
    """
    Canonicalize a manufacturer name against the known manufacturers.

    Exact case-insensitive name match, then exact alias match, then the best
    fuzzy match over names and aliases above SIMILARITY_THRESHOLD. Anything
    else comes back trimmed and unverified. Never raises.
    """
    trimmed = (raw or '').strip()
    if not trimmed:
        return ManufacturerMatch(name=trimmed)

    lowered = trimmed.lower()
    for m in manufacturers:
        if m['name'].lower() == lowered:
            return ManufacturerMatch(m['name'], m['verified'], False, 1.0, m['id'])

    for m in manufacturers:
        if any(alias.lower() == lowered for alias in m['aliases']):
            return ManufacturerMatch(m['name'], m['verified'], True, 1.0, m['id'])

    best: Optional[ManufacturerMatch] = None
    for m in manufacturers:
        options = [(m['name'], False)] + [(alias, True) for alias in m['aliases']]
        for option, via_alias in options:
            score = calculate_similarity(trimmed, option)
            if score > SIMILARITY_THRESHOLD and (best is None or score > best.similarity):
                best = ManufacturerMatch(m['name'], m['verified'], via_alias, score, m['id'])

    return best or ManufacturerMatch(name=trimmed)

def resolve_manufacturer_name(raw: Optional[str]) -> Optional[str]:
    """Canonical manufacturer name for raw, looked up against the database."""
    if raw is None:
        return None
    return normalize_manufacturer(raw, load_manufacturer_index()).name or None

def validate_manufacturers(names: Iterable[str],
                           manufacturers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Report which manufacturer names resolve and suggest alternatives for the rest.

    Suggestions are canonical names containing, or contained in, the input.
    """
    report = []
    for name in names:
        match = normalize_manufacturer(name, manufacturers)
        known = match.manufacturer_id is not None
        suggestions = []
        if not known and name and name.strip():
            lowered = name.strip().lower()
            suggestions = [
                m['name'] for m in manufacturers
                if lowered in m['name'].lower() or m['name'].lower() in lowered
            ][:5]
        report.append({
            'input': name,
            'normalized': match.name,
            'isValid': known,
            'verified': match.verified,
            'isAlias': match.is_alias,
            'suggestions': suggestions
        })
    return report

def parse_date(value: Any) -> Optional[date]:
    """ISO date or datetime text to a date; raises ValueError for impossible dates."""
    if not value:
        return None
    if isinstance(value, date):
        return value
    text = str(value)
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        return date.fromisoformat(text[:10])

def transform_switch_data(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a camelCase switch payload onto model attribute names.

    Blank strings become None, dateObtained is parsed. Keys that are not
    switch fields are dropped.
    """
    result = {}
    for field in SWITCH_SPEC_FIELDS + ['personal_notes']:
        key = to_camel(field)
        if key not in payload:
            continue
        value = payload[key]
        if isinstance(value, str):
            value = value.strip() or None
        result[field] = value

    if 'dateObtained' in payload:
        result['date_obtained'] = parse_date(payload['dateObtained'])
    return result
