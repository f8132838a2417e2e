"""
Usage counter storage.

Both stores apply an increment at most once per idempotency key and,
when a limit is given, only while the counter is below it. The check
and the increment are one atomic step.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from harmony_ai.models.usage import UsageCounter, UsageIncrement

logger = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
DENIED = "denied"


@dataclass(frozen=True)
class IncrementOutcome:
    status: str  # applied|duplicate|denied
    count: int   # counter value after the call


class UsageStore(ABC):

    @abstractmethod
    def get_count(self, user_id: str, metric_type: str, period_start: datetime) -> int:
        pass

    @abstractmethod
    def get_counts(self, user_id: str, period_start: datetime) -> Dict[str, int]:
        pass

    @abstractmethod
    def increment(
        self,
        user_id: str,
        metric_type: str,
        period_start: datetime,
        idempotency_key: str,
        limit: Optional[int] = None,
    ) -> IncrementOutcome:
        """
        Add one to the counter.

        Args:
            limit: When set, the increment only happens if the current count is below it.

        Returns:
            DUPLICATE if the key was already applied (no change), DENIED if
            the limit was reached (no change), APPLIED otherwise.
        """
        pass


class InMemoryUsageStore(UsageStore):

    def __init__(self):
        self._counts: Dict[Tuple[str, str, datetime], int] = {}
        self._applied_keys = set()
        self._lock = threading.Lock()

    def get_count(self, user_id: str, metric_type: str, period_start: datetime) -> int:
        with self._lock:
            return self._counts.get((user_id, metric_type, period_start), 0)

    def get_counts(self, user_id: str, period_start: datetime) -> Dict[str, int]:
        with self._lock:
            return {
                metric: count
                for (uid, metric, start), count in self._counts.items()
                if uid == user_id and start == period_start
            }

    def increment(self, user_id, metric_type, period_start, idempotency_key, limit=None) -> IncrementOutcome:
        slot = (user_id, metric_type, period_start)
        with self._lock:
            current = self._counts.get(slot, 0)
            if idempotency_key in self._applied_keys:
                return IncrementOutcome(DUPLICATE, current)
            if limit is not None and current >= limit:
                return IncrementOutcome(DENIED, current)

            self._counts[slot] = current + 1
            self._applied_keys.add(idempotency_key)
            return IncrementOutcome(APPLIED, current + 1)


class SqlUsageStore(UsageStore):
    """
    SQLAlchemy-backed counters.

    Atomicity comes from a conditional UPDATE (count < limit) and the
    primary key on usage_increments.idempotency_key, both committed in
    one transaction.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_count(self, user_id: str, metric_type: str, period_start: datetime) -> int:
        with self.session_factory() as db:
            count = db.scalar(
                select(UsageCounter.count).where(
                    UsageCounter.user_id == user_id,
                    UsageCounter.metric_type == metric_type,
                    UsageCounter.period_start == period_start,
                )
            )
            return count or 0

    def get_counts(self, user_id: str, period_start: datetime) -> Dict[str, int]:
        with self.session_factory() as db:
            rows = db.execute(
                select(UsageCounter.metric_type, UsageCounter.count).where(
                    UsageCounter.user_id == user_id,
                    UsageCounter.period_start == period_start,
                )
            ).all()
            return {metric: count for metric, count in rows}

    def _ensure_counter(self, user_id: str, metric_type: str, period_start: datetime) -> None:
        with self.session_factory() as db:
            exists = db.scalar(
                select(UsageCounter.id).where(
                    UsageCounter.user_id == user_id,
                    UsageCounter.metric_type == metric_type,
                    UsageCounter.period_start == period_start,
                )
            )
            if exists is not None:
                return
            db.add(UsageCounter(user_id=user_id, metric_type=metric_type, period_start=period_start, count=0))
            try:
                db.commit()
            except IntegrityError:
                # Another worker created the row first
                db.rollback()

    def increment(self, user_id, metric_type, period_start, idempotency_key, limit=None) -> IncrementOutcome:
        self._ensure_counter(user_id, metric_type, period_start)

        with self.session_factory() as db:
            if db.get(UsageIncrement, idempotency_key) is not None:
                return IncrementOutcome(DUPLICATE, self.get_count(user_id, metric_type, period_start))

            stmt = (
                update(UsageCounter)
                .where(
                    UsageCounter.user_id == user_id,
                    UsageCounter.metric_type == metric_type,
                    UsageCounter.period_start == period_start,
                )
                .values(count=UsageCounter.count + 1)
            )
            if limit is not None:
                stmt = stmt.where(UsageCounter.count < limit)

            result = db.execute(stmt)
            if result.rowcount == 0:
                db.rollback()
                return IncrementOutcome(DENIED, self.get_count(user_id, metric_type, period_start))

            db.add(UsageIncrement(
                idempotency_key=idempotency_key,
                user_id=user_id,
                metric_type=metric_type,
                period_start=period_start,
            ))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info(f"Usage increment {idempotency_key} already applied by a concurrent call")
                return IncrementOutcome(DUPLICATE, self.get_count(user_id, metric_type, period_start))

        return IncrementOutcome(APPLIED, self.get_count(user_id, metric_type, period_start))
