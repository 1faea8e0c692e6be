# Switchbook - Mechanical Keyboard Switch Catalogue
# Copyright (C) 2025 Mariano Rozanski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Bulk switch ingestion with per-item error isolation.

Items are processed in sub-batches. Within a sub-batch the payloads are
transformed and manufacturer-normalized on a worker pool, then written one
row per transaction so a failing item never rolls back its neighbours.
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..config import BULK_CONFIG
from ..database import db
from ..errors import CapacityExceeded
from ..models import Switch
from ..normalization import load_manufacturer_index, normalize_manufacturer, transform_switch_data
from ..validation import SWITCH_SCHEMA, SWITCH_UPDATE_SCHEMA, switch_item_errors
from .rate_limit import BulkOperationTracker
from .sync import record_modifications

logger = logging.getLogger(__name__)

bulk_tracker = BulkOperationTracker(BULK_CONFIG['MAX_CONCURRENT_OPERATIONS'])

@dataclass
class OperationMetrics:
    """Timing and outcome of one bulk run."""
    operation: str
    user_id: str
    item_count: int
    started_at: float = field(default_factory=time.time)
    duration_ms: Optional[int] = None
    failed: int = 0
    status: str = 'running'

    def finish(self, status: str, failed: int = 0):
        self.duration_ms = int((time.time() - self.started_at) * 1000)
        self.status = status
        self.failed = failed
        logger.info(
            f"Bulk {self.operation} for user {self.user_id}: {self.item_count} items, "
            f"{self.failed} failed, {self.duration_ms}ms ({self.status})"
        )

    def to_dict(self) -> Dict[str, Any]:
        items_per_second = 0
        if self.duration_ms:
            items_per_second = round(self.item_count / self.duration_ms * 1000)
        return {'duration': self.duration_ms, 'itemsPerSecond': items_per_second}

class BulkIngestionService:
    """Creates and updates many switches for one user in a single request."""

    def __init__(self, tracker: Optional[BulkOperationTracker] = None,
                 config: Optional[Dict[str, Any]] = None):
        self.tracker = tracker or bulk_tracker
        self.config = {**BULK_CONFIG, **(config or {})}

    def create_switches(self, user_id: str, switches: List[Dict[str, Any]],
                        batch_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Insert a batch of switch payloads for user_id.

        Returns:
            Dict with results ({success, failed, errors}), processed count,
            batchId, performance metrics and the limits that applied

        Raises:
            CapacityExceeded: 409 when too many operations are running for the
                user, 400 when the batch would exceed the per-user switch cap
        """
        self.tracker.acquire(user_id)
        metrics = OperationMetrics('create', user_id, len(switches))
        try:
            current_count = Switch.query.filter_by(user_id=user_id).count()
            max_total = self.config['MAX_TOTAL_SWITCHES_PER_USER']
            if current_count + len(switches) > max_total:
                raise CapacityExceeded(
                    f"Adding {len(switches)} switches would exceed the maximum limit of "
                    f"{max_total} switches per user. Current count: {current_count}",
                    payload={
                        'currentCount': current_count,
                        'maxAllowed': max_total,
                        'remainingCapacity': max_total - current_count,
                        'suggestion': 'Consider organizing your collection or contact support '
                                      'if you need a higher limit.'
                    }
                )

            results = self._process(switches, SWITCH_SCHEMA,
                                    lambda data: self._insert(user_id, data))
            metrics.finish('completed', results['failed'])

            return {
                'results': results,
                'batchId': batch_id or str(uuid.uuid4()),
                'processed': len(switches),
                'performance': metrics.to_dict(),
                'config': {
                    'maxSwitchesPerRequest': self.config['MAX_SWITCHES_PER_REQUEST'],
                    'maxTotalSwitchesPerUser': max_total,
                    'currentUserSwitchCount': current_count + results['success']
                }
            }
        except Exception:
            if metrics.status == 'running':
                metrics.finish('failed')
            raise
        finally:
            self.tracker.release(user_id)

    def update_switches(self, user_id: str, switches: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Update a batch of switches owned by user_id; each payload carries its id.

        Items naming a switch the user does not own fail individually.
        """
        self.tracker.acquire(user_id)
        metrics = OperationMetrics('update', user_id, len(switches))
        try:
            results = self._process(switches, SWITCH_UPDATE_SCHEMA,
                                    lambda data: self._update(user_id, data))
            metrics.finish('completed', results['failed'])
            return {
                'results': results,
                'processed': len(switches),
                'performance': metrics.to_dict()
            }
        except Exception:
            if metrics.status == 'running':
                metrics.finish('failed')
            raise
        finally:
            self.tracker.release(user_id)

    def _process(self, items: List[Dict[str, Any]], schema: Dict[str, Any],
                 persist: Callable[[Dict[str, Any]], Any]) -> Dict[str, Any]:
        results = {'success': 0, 'failed': 0, 'errors': []}
        total = len(items)
        sub_batch_size = self.config['SUB_BATCH_SIZE']
        manufacturers = load_manufacturer_index()

        with ThreadPoolExecutor(max_workers=self.config['MAX_WORKERS']) as executor:
            for start in range(0, total, sub_batch_size):
                chunk = items[start:start + sub_batch_size]
                futures = [executor.submit(self._prepare, item, schema, manufacturers)
                           for item in chunk]

                for offset, future in enumerate(futures):
                    index = start + offset + 1
                    try:
                        persist(future.result())
                        db.session.commit()
                        results['success'] += 1
                    except Exception as e:
                        db.session.rollback()
                        results['failed'] += 1
                        results['errors'].append(f"Switch {index}: {e}")
                        logger.warning(f"Bulk item {index} failed: {e}")

                more_to_come = start + sub_batch_size < total
                if more_to_come and total > self.config['LARGE_BATCH_THRESHOLD']:
                    time.sleep(self.config['LARGE_BATCH_DELAY_SECONDS'])

        return results

    @staticmethod
    def _prepare(item: Dict[str, Any], schema: Dict[str, Any],
                 manufacturers: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Validate, transform and normalize one payload on a worker thread (no DB access)."""
        name = item.get('name') if isinstance(item, dict) else None
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Switch name is required")
        problems = switch_item_errors(item, schema)
        if problems:
            raise ValueError('; '.join(f"{p['field']}: {p['message']}" for p in problems))

        data = transform_switch_data(item)
        if 'manufacturer' in data:
            data['manufacturer'] = normalize_manufacturer(data['manufacturer'], manufacturers).name or None
        if item.get('id'):
            data['id'] = item['id']
        return data

    @staticmethod
    def _insert(user_id: str, data: Dict[str, Any]) -> Switch:
        switch = Switch(user_id=user_id)
        switch.apply_fields(data)
        switch.personal_notes = data.get('personal_notes')
        switch.date_obtained = data.get('date_obtained')
        db.session.add(switch)
        db.session.flush()
        return switch

    @staticmethod
    def _update(user_id: str, data: Dict[str, Any]) -> Switch:
        switch = Switch.query.filter_by(id=data['id'], user_id=user_id).first()
        if switch is None:
            raise LookupError("Switch not found or unauthorized")

        switch.apply_fields(data)
        if 'personal_notes' in data:
            switch.personal_notes = data['personal_notes']
        if 'date_obtained' in data:
            switch.date_obtained = data['date_obtained']
        record_modifications(switch)
        db.session.flush()
        return switch
