# FILE: backend/fileconvert/services/history_service.py
# CONVERSION HISTORY
# 1. Records are created once and never updated; delete is idempotent.
# 2. Ids come from an atomic increment (lock in memory, $inc in MongoDB).
# 3. Ordering is applied at query time (newest first), not at insert time.

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Protocol

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from ..models.conversion import ConversionRecord, ConversionRecordCreate

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConversionHistoryStore(Protocol):
    def create(self, data: ConversionRecordCreate) -> ConversionRecord:
        ...

    def list(self) -> List[ConversionRecord]:
        ...

    def list_since(self, days: int) -> List[ConversionRecord]:
        ...

    def delete(self, record_id: int) -> None:
        ...


def _newest_first(records) -> List[ConversionRecord]:
    return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)


def _cutoff(now: datetime, days: int) -> datetime:
    # Windows reaching past year 1 mean "everything".
    try:
        return now - timedelta(days=days)
    except OverflowError:
        return datetime.min.replace(tzinfo=timezone.utc)


class InMemoryHistoryStore:
    """Single-process store. Safe for concurrent creates."""

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._records: Dict[int, ConversionRecord] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def create(self, data: ConversionRecordCreate) -> ConversionRecord:
        with self._lock:
            record = ConversionRecord(id=self._next_id, created_at=self._clock(), **data.model_dump())
            self._records[record.id] = record
            self._next_id += 1
        logger.info("history.record_created", record_id=record.id, status=record.status)
        return record

    def list(self) -> List[ConversionRecord]:
        with self._lock:
            snapshot = list(self._records.values())
        return _newest_first(snapshot)

    def list_since(self, days: int) -> List[ConversionRecord]:
        cutoff = _cutoff(self._clock(), days)
        return [r for r in self.list() if r.created_at >= cutoff]

    def delete(self, record_id: int) -> None:
        with self._lock:
            self._records.pop(record_id, None)


class MongoHistoryStore:
    """Durable store for multi-instance deployments."""

    COUNTER_ID = "conversions"

    def __init__(self, db: Database, clock: Clock = utc_now):
        self.db = db
        self._clock = clock

    def ensure_indexes(self) -> None:
        self.db.conversions.create_index([("created_at", DESCENDING)])

    def _next_id(self) -> int:
        counter = self.db.counters.find_one_and_update(
            {"_id": self.COUNTER_ID},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(counter["seq"])

    def create(self, data: ConversionRecordCreate) -> ConversionRecord:
        record = ConversionRecord(id=self._next_id(), created_at=self._clock(), **data.model_dump())
        doc = record.model_dump()
        doc["_id"] = record.id
        self.db.conversions.insert_one(doc)
        logger.info("history.record_created", record_id=record.id, status=record.status)
        return record

    def list(self) -> List[ConversionRecord]:
        cursor = self.db.conversions.find({}).sort([("created_at", DESCENDING), ("id", DESCENDING)])
        return [self._to_record(doc) for doc in cursor]

    def list_since(self, days: int) -> List[ConversionRecord]:
        cutoff = _cutoff(self._clock(), days)
        cursor = self.db.conversions.find({"created_at": {"$gte": cutoff}}).sort(
            [("created_at", DESCENDING), ("id", DESCENDING)]
        )
        return [self._to_record(doc) for doc in cursor]

    def delete(self, record_id: int) -> None:
        self.db.conversions.delete_one({"_id": record_id})

    @staticmethod
    def _to_record(doc: dict) -> ConversionRecord:
        doc = {k: v for k, v in doc.items() if k != "_id"}
        created_at = doc.get("created_at")
        # PyMongo returns naive UTC datetimes unless tz_aware=True
        if isinstance(created_at, datetime) and created_at.tzinfo is None:
            doc["created_at"] = created_at.replace(tzinfo=timezone.utc)
        return ConversionRecord(**doc)
