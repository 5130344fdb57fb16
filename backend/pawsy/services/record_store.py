import logging
import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from pawsy.models import Alert, AnalysisRecord, Fact

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

FACTS = "facts"
ALERTS = "alerts"
ANALYSES = "analyses"


class RecordStore(Protocol):
    """Per-dog persistence used by the analysis pipeline.

    ``save_*`` inserts a record or replaces the stored record with the same id.
    ``get_*`` returns a dog's records oldest first. Write failures raise.
    """

    def save_fact(self, dog_id: str, fact: Fact) -> None: ...

    def get_facts(self, dog_id: str) -> List[Fact]: ...

    def save_alert(self, dog_id: str, alert: Alert) -> None: ...

    def get_alerts(self, dog_id: str) -> List[Alert]: ...

    def save_analysis(self, dog_id: str, record: AnalysisRecord) -> None: ...

    def get_analyses(self, dog_id: str, kinds: Optional[Iterable[str]] = None) -> List[AnalysisRecord]: ...


class SqliteRecordStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS pet_records (
                        collection TEXT NOT NULL,
                        record_id TEXT NOT NULL,
                        dog_id TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        record_json TEXT NOT NULL,
                        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (collection, record_id)
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_pet_records_dog ON pet_records (collection, dog_id, created_at)"
                )
                conn.commit()

    def _save(self, collection: str, dog_id: str, record_id: str, created_at: str, record_json: str) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO pet_records (collection, record_id, dog_id, created_at, record_json, updated_at)
                    VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(collection, record_id) DO UPDATE SET
                        record_json = excluded.record_json,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (collection, record_id, dog_id, created_at, record_json),
                )
                conn.commit()

    def _load(self, collection: str, dog_id: str, model: Type[RecordT]) -> List[RecordT]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT record_id, record_json
                    FROM pet_records
                    WHERE collection = ? AND dog_id = ?
                    ORDER BY created_at ASC, rowid ASC
                    """,
                    (collection, dog_id),
                ).fetchall()

        records: List[RecordT] = []
        for row in rows:
            try:
                records.append(model.model_validate_json(row["record_json"]))
            except ValidationError:
                logger.warning("Skipping unreadable %s record %s", collection, row["record_id"])
        return records

    def save_fact(self, dog_id: str, fact: Fact) -> None:
        self._save(FACTS, dog_id, fact.id, fact.created_at.isoformat(), fact.model_dump_json())

    def get_facts(self, dog_id: str) -> List[Fact]:
        return self._load(FACTS, dog_id, Fact)

    def save_alert(self, dog_id: str, alert: Alert) -> None:
        self._save(ALERTS, dog_id, alert.id, alert.created_at.isoformat(), alert.model_dump_json())

    def get_alerts(self, dog_id: str) -> List[Alert]:
        return self._load(ALERTS, dog_id, Alert)

    def save_analysis(self, dog_id: str, record: AnalysisRecord) -> None:
        self._save(ANALYSES, dog_id, record.id, record.created_at.isoformat(), record.model_dump_json())

    def get_analyses(self, dog_id: str, kinds: Optional[Iterable[str]] = None) -> List[AnalysisRecord]:
        records = self._load(ANALYSES, dog_id, AnalysisRecord)
        if kinds is None:
            return records
        wanted = set(kinds)
        return [record for record in records if record.kind in wanted]


class InMemoryRecordStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._records: Dict[Tuple[str, str], List[BaseModel]] = {}

    def _save(self, collection: str, dog_id: str, record: BaseModel) -> None:
        stored = record.model_copy(deep=True)
        with self._lock:
            rows = self._records.setdefault((collection, dog_id), [])
            for idx, row in enumerate(rows):
                if getattr(row, "id") == getattr(stored, "id"):
                    rows[idx] = stored
                    return
            rows.append(stored)

    def _load(self, collection: str, dog_id: str) -> List[BaseModel]:
        with self._lock:
            rows = list(self._records.get((collection, dog_id), []))
        rows.sort(key=lambda row: getattr(row, "created_at"))
        return [row.model_copy(deep=True) for row in rows]

    def save_fact(self, dog_id: str, fact: Fact) -> None:
        self._save(FACTS, dog_id, fact)

    def get_facts(self, dog_id: str) -> List[Fact]:
        return self._load(FACTS, dog_id)  # type: ignore[return-value]

    def save_alert(self, dog_id: str, alert: Alert) -> None:
        self._save(ALERTS, dog_id, alert)

    def get_alerts(self, dog_id: str) -> List[Alert]:
        return self._load(ALERTS, dog_id)  # type: ignore[return-value]

    def save_analysis(self, dog_id: str, record: AnalysisRecord) -> None:
        self._save(ANALYSES, dog_id, record)

    def get_analyses(self, dog_id: str, kinds: Optional[Iterable[str]] = None) -> List[AnalysisRecord]:
        records: List[AnalysisRecord] = self._load(ANALYSES, dog_id)  # type: ignore[assignment]
        if kinds is None:
            return records
        wanted = set(kinds)
        return [record for record in records if record.kind in wanted]
