"""
History Store

Durable generation records. One record per logical generation, updated
in place as it moves pending -> processing -> completed | failed.
Terminal records never change state again.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete as sql_delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from harmony_ai.errors import InvalidStatusTransition, PersistenceError
from harmony_ai.models.base import utcnow
from harmony_ai.models.generation import GenerationHistory, GenerationStatus
from harmony_ai.schemas.generation import GenerationRecord, HistoryFilters, HistoryPage

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

_UPDATABLE_FIELDS = {
    "status",
    "fingerprint",
    "refined_output",
    "provider_used",
    "degraded",
    "attempts",
    "error_message",
    "processing_time_ms",
    "completed_at",
}


def _check_transition(record_id: str, current: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(patch) - _UPDATABLE_FIELDS
    if unknown:
        raise PersistenceError(f"Cannot update fields {sorted(unknown)} on generation {record_id}")

    patch = dict(patch)
    if "status" in patch:
        current_status = GenerationStatus(current)
        new_status = GenerationStatus(patch["status"])
        if not current_status.can_transition_to(new_status):
            raise InvalidStatusTransition(record_id, current_status.value, new_status.value)
        patch["status"] = new_status.value
        if new_status.is_terminal and not patch.get("completed_at"):
            patch["completed_at"] = utcnow()
    return patch


def _page_bounds(page: int, limit: int):
    page = max(1, int(page))
    limit = max(1, min(MAX_PAGE_SIZE, int(limit)))
    return page, limit, (page - 1) * limit


def summarize(records: Iterable[GenerationRecord]) -> Dict[str, Any]:
    """Counts by operation, provider usage and success rates."""
    by_operation: Dict[str, Counter] = defaultdict(Counter)
    provider_usage: Counter = Counter()
    total = completed = degraded = 0
    processing_ms = []

    for record in records:
        total += 1
        status = GenerationStatus(record.status)
        by_operation[record.operation]["total"] += 1
        by_operation[record.operation][status.value] += 1
        if status == GenerationStatus.COMPLETED:
            completed += 1
            processing_ms.append(record.processing_time_ms)
            if record.provider_used:
                provider_usage[record.provider_used] += 1
        if record.degraded:
            degraded += 1

    return {
        "total": total,
        "completed": completed,
        "degraded": degraded,
        "success_rate": round(completed / total, 4) if total else 0.0,
        "avg_processing_time_ms": round(sum(processing_ms) / len(processing_ms), 1) if processing_ms else 0.0,
        "provider_usage": dict(provider_usage),
        "by_operation": {
            op: {
                "total": counts["total"],
                "completed": counts[GenerationStatus.COMPLETED.value],
                "failed": counts[GenerationStatus.FAILED.value],
                "success_rate": round(counts[GenerationStatus.COMPLETED.value] / counts["total"], 4),
            }
            for op, counts in by_operation.items()
        },
    }


class HistoryStore(ABC):

    @abstractmethod
    def save(self, record: GenerationRecord) -> GenerationRecord:
        pass

    @abstractmethod
    def update(self, record_id: str, **patch) -> GenerationRecord:
        """
        Apply a partial update.

        Raises:
            InvalidStatusTransition: the status change is not allowed
            PersistenceError: unknown record or storage failure
        """
        pass

    @abstractmethod
    def get(self, record_id: str, user_id: str) -> Optional[GenerationRecord]:
        pass

    @abstractmethod
    def list(self, user_id: str, filters: Optional[HistoryFilters] = None, page: int = 1, limit: int = 20) -> HistoryPage:
        pass

    @abstractmethod
    def delete(self, record_id: str, user_id: str) -> bool:
        pass

    @abstractmethod
    def stats(self, user_id: str) -> Dict[str, Any]:
        pass


class InMemoryHistoryStore(HistoryStore):

    def __init__(self):
        self._records: Dict[str, GenerationRecord] = {}
        self._lock = threading.Lock()

    def save(self, record: GenerationRecord) -> GenerationRecord:
        with self._lock:
            if record.id in self._records:
                raise PersistenceError(f"Generation {record.id} already exists")
            self._records[record.id] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    def update(self, record_id: str, **patch) -> GenerationRecord:
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise PersistenceError(f"Generation {record_id} not found")
            patch = _check_transition(record_id, current.status.value, patch)
            updated = GenerationRecord.model_validate({**current.model_dump(), **copy.deepcopy(patch)})
            self._records[record_id] = updated
            return updated.model_copy(deep=True)

    def get(self, record_id: str, user_id: str) -> Optional[GenerationRecord]:
        with self._lock:
            record = self._records.get(record_id)
            if record is None or record.user_id != user_id:
                return None
            return record.model_copy(deep=True)

    def _matching(self, user_id: str, filters: Optional[HistoryFilters]) -> List[GenerationRecord]:
        filters = filters or HistoryFilters()
        records = [r for r in self._records.values() if r.user_id == user_id]
        if filters.operation is not None:
            records = [r for r in records if r.operation == filters.operation.value]
        if filters.provider is not None:
            records = [r for r in records if r.provider_used == filters.provider]
        if filters.status is not None:
            records = [r for r in records if r.status == filters.status]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def list(self, user_id: str, filters: Optional[HistoryFilters] = None, page: int = 1, limit: int = 20) -> HistoryPage:
        page, limit, offset = _page_bounds(page, limit)
        with self._lock:
            records = self._matching(user_id, filters)
            items = [r.model_copy(deep=True) for r in records[offset:offset + limit]]
        return HistoryPage(items=items, page=page, limit=limit, total=len(records))

    def delete(self, record_id: str, user_id: str) -> bool:
        with self._lock:
            record = self._records.get(record_id)
            if record is None or record.user_id != user_id:
                return False
            del self._records[record_id]
            return True

    def stats(self, user_id: str) -> Dict[str, Any]:
        with self._lock:
            records = [r for r in self._records.values() if r.user_id == user_id]
            return summarize(records)


class SqlHistoryStore(HistoryStore):
    """History in the ai_generation_history table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_record(row: GenerationHistory) -> GenerationRecord:
        return GenerationRecord.model_validate(row)

    def save(self, record: GenerationRecord) -> GenerationRecord:
        row = GenerationHistory(
            id=record.id,
            user_id=record.user_id,
            artist_id=record.artist_id,
            operation=record.operation,
            status=record.status.value,
            fingerprint=record.fingerprint,
            input_snapshot=record.input_snapshot,
            refined_output=record.refined_output,
            provider_used=record.provider_used,
            degraded=record.degraded,
            attempts=record.attempts,
            error_message=record.error_message,
            processing_time_ms=record.processing_time_ms,
            created_at=record.created_at,
            completed_at=record.completed_at,
        )
        with self.session_factory() as db:
            try:
                db.add(row)
                db.commit()
                db.refresh(row)
                return self._to_record(row)
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to save generation {record.id}: {e}")

    def update(self, record_id: str, **patch) -> GenerationRecord:
        with self.session_factory() as db:
            try:
                row = db.get(GenerationHistory, record_id, with_for_update=True)
                if row is None:
                    raise PersistenceError(f"Generation {record_id} not found")
                patch = _check_transition(record_id, row.status, patch)
                for field, value in patch.items():
                    setattr(row, field, value)
                db.commit()
                db.refresh(row)
                return self._to_record(row)
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to update generation {record_id}: {e}")

    def get(self, record_id: str, user_id: str) -> Optional[GenerationRecord]:
        with self.session_factory() as db:
            row = db.get(GenerationHistory, record_id)
            if row is None or row.user_id != user_id:
                return None
            return self._to_record(row)

    def list(self, user_id: str, filters: Optional[HistoryFilters] = None, page: int = 1, limit: int = 20) -> HistoryPage:
        filters = filters or HistoryFilters()
        page, limit, offset = _page_bounds(page, limit)

        conditions = [GenerationHistory.user_id == user_id]
        if filters.operation is not None:
            conditions.append(GenerationHistory.operation == filters.operation.value)
        if filters.provider is not None:
            conditions.append(GenerationHistory.provider_used == filters.provider)
        if filters.status is not None:
            conditions.append(GenerationHistory.status == filters.status.value)

        with self.session_factory() as db:
            total = db.scalar(select(func.count()).select_from(GenerationHistory).where(*conditions)) or 0
            rows = db.scalars(
                select(GenerationHistory)
                .where(*conditions)
                .order_by(GenerationHistory.created_at.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            return HistoryPage(items=[self._to_record(r) for r in rows], page=page, limit=limit, total=total)

    def delete(self, record_id: str, user_id: str) -> bool:
        with self.session_factory() as db:
            result = db.execute(
                sql_delete(GenerationHistory).where(
                    GenerationHistory.id == record_id,
                    GenerationHistory.user_id == user_id,
                )
            )
            db.commit()
            return result.rowcount > 0

    def stats(self, user_id: str) -> Dict[str, Any]:
        with self.session_factory() as db:
            rows = db.scalars(select(GenerationHistory).where(GenerationHistory.user_id == user_id)).all()
            return summarize(self._to_record(r) for r in rows)
