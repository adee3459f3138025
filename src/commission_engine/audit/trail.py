"""Append-only audit trail for commissions and rule changes.

Entries are never removed and never rewritten, with one exception: the
free-text ``notes`` field may be edited after the fact. Whether a given
user may edit a given entry is decided by the caller (see
``AuditEntry.can_edit_notes``), since identity lives outside the engine.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import copy
import logging
import threading
import uuid

from ..core.errors import PersistenceError
from ..storage.store import AUDIT_KEY, KeyValueStore

logger = logging.getLogger(__name__)


class AuditAction(Enum):
    """What happened to the subject."""
    CREATED = "created"
    UPDATED = "updated"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    DELETED = "deleted"
    MANUAL_NOTE = "manual_note"


@dataclass(frozen=True)
class Actor:
    """Caller-supplied identity, accepted as-is."""
    user_id: str
    user_name: str = ""


class AuditScope(Enum):
    """Whether an entry concerns a commission/deal or rule configuration."""
    COMMISSION = "commission"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditEntry:
    """One recorded state change or annotation."""
    id: str
    subject_id: str
    user_id: str
    user_name: str
    action: AuditAction
    deal_id: Optional[str] = None
    scope: AuditScope = AuditScope.COMMISSION
    previous_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    notes: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def concerns(self, subject_id: str) -> bool:
        return self.subject_id == subject_id or (self.deal_id is not None and self.deal_id == subject_id)

    @property
    def status_change(self) -> Optional[Tuple[str, str]]:
        """(from, to) statuses when the entry records a status change.

        Covers both the dedicated approved/rejected/paid entries and generic
        "updated" entries whose values carry a status.
        """
        before = (self.previous_value or {}).get("status")
        after = (self.new_value or {}).get("status")
        if before and after and before != after:
            return before, after
        return None

    def can_edit_notes(self, user_id: str) -> bool:
        return self.action == AuditAction.MANUAL_NOTE or self.user_id == user_id


def entry_to_dict(entry: AuditEntry) -> Dict[str, Any]:
    return {
        'id': entry.id,
        'subject_id': entry.subject_id,
        'deal_id': entry.deal_id,
        'scope': entry.scope.value,
        'user_id': entry.user_id,
        'user_name': entry.user_name,
        'action': entry.action.value,
        'previous_value': entry.previous_value,
        'new_value': entry.new_value,
        'notes': entry.notes,
        'timestamp': entry.timestamp.isoformat(),
    }


def entry_from_dict(e: Dict[str, Any]) -> AuditEntry:
    return AuditEntry(
        id=e['id'],
        subject_id=e['subject_id'],
        deal_id=e.get('deal_id'),
        scope=AuditScope(e.get('scope', 'commission')),
        user_id=e.get('user_id', ''),
        user_name=e.get('user_name', ''),
        action=AuditAction(e['action']),
        previous_value=e.get('previous_value'),
        new_value=e.get('new_value'),
        notes=e.get('notes') or '',
        timestamp=datetime.fromisoformat(e['timestamp']),
    )


class AuditTrail:
    """Owns the audit entry collection."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.entries: List[AuditEntry] = []
        self._lock = threading.RLock()

        self._load_data()

    def _load_data(self):
        """Load entries from storage."""
        for e in self.store.load(AUDIT_KEY, []):
            try:
                self.entries.append(entry_from_dict(e))
            except (KeyError, TypeError, ValueError) as ex:
                logger.error(f"Unreadable audit entry {e!r}: {ex}")
                raise PersistenceError(
                    f"Audit trail contains an unreadable entry: {ex}", {'entry': e}
                ) from ex

    def save(self):
        """Persist the full entry collection."""
        with self._lock:
            self.store.save(AUDIT_KEY, [entry_to_dict(e) for e in self.entries])

    def append(self, entry: AuditEntry, persist: bool = True) -> AuditEntry:
        """Add an entry; assigns an id and timestamp when missing."""
        if not entry.id:
            entry = replace(entry, id=str(uuid.uuid4())[:12])
        if entry.timestamp is None:
            entry = replace(entry, timestamp=datetime.now())

        # Snapshots must not change if the caller mutates its dicts later
        entry = replace(
            entry,
            previous_value=copy.deepcopy(entry.previous_value),
            new_value=copy.deepcopy(entry.new_value),
        )

        with self._lock:
            self.entries.append(entry)
            if persist:
                try:
                    self.save()
                except Exception:
                    self.entries.remove(entry)
                    raise

        logger.debug(f"Audit {entry.action.value} on {entry.subject_id} by {entry.user_id}")
        return entry

    def record(
        self,
        subject_id: str,
        action: AuditAction,
        user_id: str,
        user_name: str,
        previous_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        notes: str = "",
        deal_id: Optional[str] = None,
        scope: AuditScope = AuditScope.COMMISSION,
        persist: bool = True
    ) -> AuditEntry:
        """Build and append an entry in one call."""
        return self.append(AuditEntry(
            id="",
            subject_id=subject_id,
            deal_id=deal_id,
            scope=scope,
            user_id=user_id,
            user_name=user_name,
            action=action,
            previous_value=previous_value,
            new_value=new_value,
            notes=notes or "",
        ), persist=persist)

    def add_note(
        self,
        subject_id: str,
        user_id: str,
        user_name: str,
        notes: str,
        deal_id: Optional[str] = None
    ) -> AuditEntry:
        """Attach a free-form note to a commission or deal."""
        return self.record(
            subject_id=subject_id,
            action=AuditAction.MANUAL_NOTE,
            user_id=user_id,
            user_name=user_name,
            notes=notes,
            deal_id=deal_id,
        )

    def get(self, entry_id: str) -> Optional[AuditEntry]:
        with self._lock:
            for entry in self.entries:
                if entry.id == entry_id:
                    return entry
        return None

    def update_notes(self, entry_id: str, notes: str) -> Optional[AuditEntry]:
        """Replace an entry's notes. Returns None if the entry doesn't exist."""
        with self._lock:
            for index, entry in enumerate(self.entries):
                if entry.id == entry_id:
                    updated = replace(entry, notes=notes)
                    self.entries[index] = updated
                    try:
                        self.save()
                    except Exception:
                        self.entries[index] = entry
                        raise
                    return updated

        logger.warning(f"Audit entry {entry_id} not found; notes not updated")
        return None

    def _newest_first(self, entries: List[AuditEntry]) -> List[AuditEntry]:
        # Entries sharing a timestamp keep reverse insertion order
        indexed = list(enumerate(entries))
        indexed.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [entry for _, entry in indexed]

    def list_by_subject(self, subject_id: str) -> List[AuditEntry]:
        """Entries for a commission id or deal id, newest first."""
        with self._lock:
            return self._newest_first([e for e in self.entries if e.concerns(subject_id)])

    def list_by_actor(self, user_id: str) -> List[AuditEntry]:
        with self._lock:
            return self._newest_first([e for e in self.entries if e.user_id == user_id])

    def list_all(self, scope: Optional[AuditScope] = None) -> List[AuditEntry]:
        with self._lock:
            entries = [e for e in self.entries if scope is None or e.scope == scope]
            return self._newest_first(entries)
