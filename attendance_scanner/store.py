"""
Document store module.

Persistence collaborators of the scanner:
- list enrolled identities with their reference descriptors
- save (overwrite) a reference descriptor
- upsert the day's attendance record for an identity

BackendStore talks to the REST document store; MemoryStore keeps the same
contract in-process for offline runs and tests.
"""

import threading
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import numpy as np
import requests

from .attendance import AttendanceRecord, attendance_record_id, merge_sighting
from .logging_config import get_logger
from .recognition.types import EnrolledIdentity
from .utils.timing import retry_with_backoff

logger = get_logger(__name__)


class StoreError(Exception):
    """Raised when enrolled identities cannot be read."""


def identity_from_record(record: Dict[str, Any]) -> EnrolledIdentity:
    """
    Build an identity from a stored {'id', 'descriptor', 'name'} document.

    Raises:
        KeyError, TypeError, ValueError: On malformed documents
    """
    return EnrolledIdentity(
        identity_id=str(record['id']),
        descriptor=np.asarray(record['descriptor'], dtype=np.float64),
        name=record.get('name'),
    )


def identity_to_record(identity: EnrolledIdentity) -> Dict[str, Any]:
    record = {
        'id': identity.identity_id,
        'descriptor': [float(v) for v in np.asarray(identity.descriptor).ravel()],
    }
    if identity.name:
        record['name'] = identity.name
    return record


class BackendStore:
    """REST client for the document store."""

    def __init__(self, backend_url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        """
        Args:
            backend_url: Base URL of the backend API
            timeout: Per-request timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.backend_url = backend_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def list_enrolled_identities(self) -> List[EnrolledIdentity]:
        """
        Fetch all enrolled identities.

        Raises:
            StoreError: If the backend is unreachable or returns bad data
        """
        url = f'{self.backend_url}/api/face-descriptors'

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            records = response.json()
        except requests.exceptions.RequestException as e:
            raise StoreError(f'Failed to fetch face descriptors: {e}') from e
        except ValueError as e:
            raise StoreError(f'Invalid JSON from {url}: {e}') from e

        identities = []
        for record in records:
            try:
                identities.append(identity_from_record(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f'Skipping malformed descriptor record: {e}')

        logger.info(f'Fetched {len(identities)} enrolled identities from backend')
        return identities

    def save_identity_descriptor(self, identity_id: str, descriptor: np.ndarray) -> bool:
        """
        Overwrite the reference descriptor of an identity.

        Returns:
            True if saved
        """
        url = f'{self.backend_url}/api/face-descriptors/{identity_id}'
        payload = {
            'id': identity_id,
            'descriptor': [float(v) for v in np.asarray(descriptor).ravel()],
        }

        try:
            logger.info(f'Saving face descriptor for {identity_id}')
            response = self.session.put(url, json=payload, timeout=self.timeout)
            if response.ok:
                return True
            logger.error(f'Failed to save descriptor: {response.status_code} {response.text}')
            return False
        except requests.exceptions.Timeout:
            logger.error(f'Timeout saving descriptor to {url}')
            return False
        except requests.exceptions.RequestException as e:
            logger.error(f'Error saving descriptor: {e}')
            return False

    def record_attendance(self, identity_id: str, day: date, seen_at: datetime) -> bool:
        """
        Create the day's attendance record or move its lastSeen forward.

        The write is retried once immediately on transport errors.

        Returns:
            True if the record was written
        """
        try:
            return retry_with_backoff(
                lambda: self._upsert_attendance(identity_id, day, seen_at),
                exceptions=(requests.exceptions.RequestException,),
            )
        except requests.exceptions.RequestException as e:
            logger.error(f'Error recording attendance for {identity_id}: {e}')
            return False
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f'Unreadable attendance record for {identity_id}: {e}')
            return False

    def _upsert_attendance(self, identity_id: str, day: date, seen_at: datetime) -> bool:
        record_id = attendance_record_id(identity_id, day)
        url = f'{self.backend_url}/api/attendance/{record_id}'

        response = self.session.get(url, timeout=self.timeout)
        if response.status_code == 404:
            existing = None
        else:
            response.raise_for_status()
            existing = AttendanceRecord.from_dict(response.json())

        merged = merge_sighting(existing, identity_id, day, seen_at)

        response = self.session.put(url, json=merged.to_dict(), timeout=self.timeout)
        response.raise_for_status()

        action = 'Created' if existing is None else 'Updated'
        logger.info(f'{action} attendance {record_id} (lastSeen {merged.last_seen})')
        return True


class MemoryStore:
    """In-process store with the same contract as BackendStore."""

    def __init__(self):
        self._lock = threading.Lock()
        self._identities: Dict[str, EnrolledIdentity] = {}
        self._attendance: Dict[str, AttendanceRecord] = {}

    def add_identity(self, identity_id: str, descriptor, name: Optional[str] = None) -> None:
        with self._lock:
            self._identities[identity_id] = EnrolledIdentity(
                identity_id, np.array(descriptor, dtype=np.float64), name
            )

    def list_enrolled_identities(self) -> List[EnrolledIdentity]:
        with self._lock:
            return [
                EnrolledIdentity(i.identity_id, i.descriptor.copy(), i.name)
                for i in self._identities.values()
            ]

    def save_identity_descriptor(self, identity_id: str, descriptor: np.ndarray) -> bool:
        with self._lock:
            previous = self._identities.get(identity_id)
            self._identities[identity_id] = EnrolledIdentity(
                identity_id,
                np.array(descriptor, dtype=np.float64),
                previous.name if previous else None,
            )
        logger.info(f'Saved face descriptor for {identity_id}')
        return True

    def record_attendance(self, identity_id: str, day: date, seen_at: datetime) -> bool:
        record_id = attendance_record_id(identity_id, day)
        with self._lock:
            merged = merge_sighting(self._attendance.get(record_id), identity_id, day, seen_at)
            self._attendance[record_id] = merged
        logger.info(f'Recorded attendance {record_id} (lastSeen {merged.last_seen})')
        return True

    def attendance_records(self) -> List[AttendanceRecord]:
        with self._lock:
            return list(self._attendance.values())

    def get_attendance(self, identity_id: str, day: date) -> Optional[AttendanceRecord]:
        with self._lock:
            return self._attendance.get(attendance_record_id(identity_id, day))
