"""Commission collection storage and queries."""

from typing import Dict, List, Optional
import logging
import threading

from ..core.errors import CommissionNotFound, PersistenceError
from ..storage.store import COMMISSIONS_KEY, KeyValueStore
from .models import (
    Commission,
    CommissionStatus,
    commission_from_dict,
    commission_to_dict,
)

logger = logging.getLogger(__name__)


class CommissionRepository:
    """Owns the commission collection.

    Commissions are never deleted. Changes go through CommissionLifecycle,
    which uses put()/save() here and keeps the audit trail in step.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.commissions: Dict[str, Commission] = {}
        self._lock = threading.RLock()

        self._load_data()

    def _load_data(self):
        """Load commissions from storage."""
        for c in self.store.load(COMMISSIONS_KEY, []):
            try:
                commission = commission_from_dict(c)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Unreadable commission {c!r}: {e}")
                raise PersistenceError(
                    f"Commission collection contains an unreadable record: {e}", {'record': c}
                ) from e
            self.commissions[commission.id] = commission

    def save(self):
        """Persist the full collection."""
        with self._lock:
            self.store.save(COMMISSIONS_KEY, [commission_to_dict(c) for c in self.commissions.values()])

    def put(self, commission: Commission):
        with self._lock:
            self.commissions[commission.id] = commission

    def rollback(self, commission_id: str, previous: Optional[Commission]):
        """Undo a put() whose save failed."""
        with self._lock:
            if previous is None:
                self.commissions.pop(commission_id, None)
            else:
                self.commissions[commission_id] = previous

    def get(self, commission_id: str) -> Optional[Commission]:
        """Get a commission by ID."""
        return self.commissions.get(commission_id)

    def require(self, commission_id: str) -> Commission:
        """Get a commission by ID or raise CommissionNotFound."""
        commission = self.commissions.get(commission_id)
        if commission is None:
            raise CommissionNotFound(commission_id)
        return commission

    def list(self) -> List[Commission]:
        """All commissions, newest first."""
        commissions = list(self.commissions.values())
        commissions.sort(key=lambda c: c.created_at, reverse=True)
        return commissions

    def by_sales_person(self, sales_person_id: str) -> List[Commission]:
        return [c for c in self.list() if c.sales_person_id == sales_person_id]

    def by_deal(self, deal_id: str) -> List[Commission]:
        return [c for c in self.list() if c.deal_id == deal_id]

    def by_status(self, status: CommissionStatus) -> List[Commission]:
        return [c for c in self.list() if c.status == status]
