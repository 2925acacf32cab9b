from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Dict, List, Optional, Protocol

from pydantic import ValidationError

from ...models import SessionRecord

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def get(self, session_id: str) -> Optional[SessionRecord]:
        ...

    def list(self) -> List[SessionRecord]:
        ...

    def save(self, record: SessionRecord) -> None:
        ...

    def delete(self, session_id: str) -> None:
        ...


class InMemorySessionStore:
    def __init__(self) -> None:
        self._records: Dict[str, SessionRecord] = {}

    def get(self, session_id: str) -> Optional[SessionRecord]:
        record = self._records.get(session_id)
        return record.model_copy() if record else None

    def list(self) -> List[SessionRecord]:
        return [record.model_copy() for record in self._records.values()]

    def save(self, record: SessionRecord) -> None:
        self._records[record.id] = record.model_copy()

    def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)


class JsonFileSessionStore:
    """Session records kept in one JSON file, rewritten atomically on change."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._records: Dict[str, SessionRecord] = self._load()

    def _load(self) -> Dict[str, SessionRecord]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Session store unreadable, starting empty: %s", self._path, exc_info=True)
            return {}
        records: Dict[str, SessionRecord] = {}
        for item in payload.get("sessions", []) if isinstance(payload, dict) else []:
            try:
                record = SessionRecord.model_validate(item)
            except ValidationError:
                logger.warning("Skipping invalid session record in %s", self._path)
                continue
            records[record.id] = record
        return records

    def _flush(self) -> None:
        payload = {"sessions": [record.model_dump(mode="json") for record in self._records.values()]}
        content = json.dumps(payload, ensure_ascii=False, indent=2) + "\n"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = ""
        with NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(self._path.parent)) as tmp:
            tmp.write(content)
            tmp_path = tmp.name
        try:
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            record = self._records.get(session_id)
            return record.model_copy() if record else None

    def list(self) -> List[SessionRecord]:
        with self._lock:
            return [record.model_copy() for record in self._records.values()]

    def save(self, record: SessionRecord) -> None:
        with self._lock:
            self._records[record.id] = record.model_copy()
            self._flush()

    def delete(self, session_id: str) -> None:
        with self._lock:
            if self._records.pop(session_id, None) is not None:
                self._flush()
