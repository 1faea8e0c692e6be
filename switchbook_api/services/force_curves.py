"""
Force curve lookups against the ThereminGoat/force-curves GitHub repository.

The repository's folder list is fetched with requests and memoized for an
hour; per-switch answers are cached in the force_curve_cache table for 30
days when found and 7 days when not.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from ..database import db
from ..models import ForceCurveCache

logger = logging.getLogger(__name__)

FORCE_CURVES_REPO = 'ThereminGoat/force-curves'
GITHUB_API_BASE = 'https://api.github.com'
FOLDER_CACHE_SECONDS = 60 * 60
FOUND_CACHE_DAYS = 30
NOT_FOUND_CACHE_DAYS = 7

class ForceCurveService:
    """Finds force curve folders for switches and caches the answers."""

    def __init__(self, github_token: Optional[str] = None, session: Optional[requests.Session] = None):
        self.github_token = github_token
        self.session = session or requests.Session()
        self._folders: Optional[List[str]] = None
        self._fetched_at: Optional[float] = None
        self._lock = threading.Lock()

    def fetch_switch_folders(self) -> List[str]:
        """Top-level folder names of the repository, one per measured switch."""
        with self._lock:
            if self._folders is not None and time.time() - self._fetched_at < FOLDER_CACHE_SECONDS:
                return self._folders

            headers = {
                'Accept': 'application/vnd.github.v3+json',
                'User-Agent': 'Switchbook-App'
            }
            if self.github_token:
                headers['Authorization'] = f'token {self.github_token}'

            try:
                response = self.session.get(
                    f'{GITHUB_API_BASE}/repos/{FORCE_CURVES_REPO}/git/trees/main?recursive=1',
                    headers=headers,
                    timeout=15
                )
                response.raise_for_status()
                tree = response.json().get('tree', [])
                self._folders = sorted(
                    item['path'] for item in tree
                    if item.get('type') == 'tree' and '/' not in item['path']
                )
                self._fetched_at = time.time()
            except (requests.RequestException, ValueError) as e:
                logger.error(f"Failed to fetch force curve folders: {e}")
                return self._folders or []

            return self._folders

    @staticmethod
    def _folder_url(folder: str) -> str:
        return f'https://github.com/{FORCE_CURVES_REPO}/tree/main/{quote(folder)}'

    def find_folder(self, switch_name: str, manufacturer: Optional[str] = None) -> Optional[str]:
        """
        Match a switch to a folder: exact name, "manufacturer name", then
        containment either way, then manufacturer-prefixed containment.
        """
        folders = self.fetch_switch_folders()
        name = switch_name.lower().strip()
        maker = (manufacturer or '').lower().strip()
        if not name:
            return None

        for folder in folders:
            if folder.lower() == name:
                return folder

        if maker:
            for folder in folders:
                if folder.lower() == f'{maker} {name}':
                    return folder

        for folder in folders:
            lowered = folder.lower()
            if lowered in name or name in lowered:
                return folder

        if maker:
            for folder in folders:
                lowered = folder.lower()
                if lowered.startswith(maker):
                    remainder = lowered.replace(maker, '', 1).strip()
                    if name in lowered or (remainder and remainder in name):
                        return folder

        return None

    def check(self, switch_name: str, manufacturer: Optional[str] = None) -> Dict[str, Any]:
        """Cached availability check for one switch."""
        maker = (manufacturer or '').strip()
        now = datetime.utcnow()
        entry = ForceCurveCache.query.filter_by(switch_name=switch_name, manufacturer=maker).first()

        if entry and entry.next_check_at and entry.next_check_at > now:
            return {
                'hasForceCurve': entry.has_force_curve,
                'url': entry.folder_url,
                'cached': True
            }

        folder = self.find_folder(switch_name, maker or None)
        url = self._folder_url(folder) if folder else None

        if entry is None:
            entry = ForceCurveCache(switch_name=switch_name, manufacturer=maker)
            db.session.add(entry)
        entry.has_force_curve = folder is not None
        entry.folder_url = url
        entry.last_checked_at = now
        entry.next_check_at = now + timedelta(days=FOUND_CACHE_DAYS if folder else NOT_FOUND_CACHE_DAYS)
        db.session.commit()

        return {'hasForceCurve': folder is not None, 'url': url, 'cached': False}
