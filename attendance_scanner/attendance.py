"""
Attendance record module.

One record per identity per day, keyed "<identityId>_<YYYY-MM-DD>".
Later sightings update lastSeen in place instead of adding records.

The same key is shared with day records written by hand from the
dashboard ({id, studentId, date, status} with no times); those are
accepted and their extra fields are carried through on write.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional

STATUS_PRESENT = 'Present'
TIME_FORMAT = '%H:%M:%S'

_OWN_FIELDS = ('id', 'identityId', 'date', 'status', 'inTime', 'lastSeen')


def attendance_record_id(identity_id: str, day: date) -> str:
    return f'{identity_id}_{day.isoformat()}'


@dataclass(frozen=True)
class AttendanceRecord:
    """Attendance for one identity on one day."""

    identity_id: str
    date: str
    first_seen: Optional[str]
    last_seen: Optional[str]
    status: str = STATUS_PRESENT
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def record_id(self) -> str:
        return f'{self.identity_id}_{self.date}'

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'id': self.record_id,
            'identityId': self.identity_id,
            'date': self.date,
            'status': self.status,
            'inTime': self.first_seen,
            'lastSeen': self.last_seen,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttendanceRecord':
        """
        Build from a stored document.

        Dashboard records name the identity "studentId" and carry no times.

        Raises:
            KeyError: If the identity or date is missing
        """
        identity_id = data.get('identityId') or data.get('studentId')
        if not identity_id:
            raise KeyError('identityId')

        first_seen = data.get('inTime') or None
        return cls(
            identity_id=str(identity_id),
            date=data['date'],
            first_seen=first_seen,
            last_seen=data.get('lastSeen') or first_seen,
            status=data.get('status') or STATUS_PRESENT,
            extra={k: v for k, v in data.items() if k not in _OWN_FIELDS},
        )


def merge_sighting(
    existing: Optional[AttendanceRecord],
    identity_id: str,
    day: date,
    seen_at: datetime
) -> AttendanceRecord:
    """
    Fold one sighting into the day's record.

    Args:
        existing: Stored record for (identity_id, day), if any
        identity_id: Recognized identity
        day: Attendance date
        seen_at: Time of the sighting

    Returns:
        New record: created on first sighting, otherwise with the first
        seen time kept and last seen moved forward (never backwards).
        A record without times or with another status (Absent, Holiday)
        becomes Present as of this sighting.
    """
    seen = seen_at.strftime(TIME_FORMAT)

    if existing is None:
        return AttendanceRecord(
            identity_id=identity_id,
            date=day.isoformat(),
            first_seen=seen,
            last_seen=seen,
        )

    if existing.first_seen is None or existing.status != STATUS_PRESENT:
        return AttendanceRecord(
            identity_id=existing.identity_id,
            date=existing.date,
            first_seen=seen,
            last_seen=seen,
            extra=existing.extra,
        )

    # HH:MM:SS strings order chronologically
    return AttendanceRecord(
        identity_id=existing.identity_id,
        date=existing.date,
        first_seen=min(existing.first_seen, seen),
        last_seen=max(existing.last_seen or seen, seen),
        extra=existing.extra,
    )
