"""Local storages: SQLite key-value store, in-memory request queue and JSONL dataset."""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from . import config
from .models import QueueOperationInfo
from .reporting import ensure_dir, utc_now_iso, write_jsonl

logger = logging.getLogger(__name__)


class KeyValueStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._configure_conn()
        self._init_db()

    def _configure_conn(self) -> None:
        cur = self.conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL")
            cur.fetchone()
        except sqlite3.DatabaseError:
            pass

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS records (
                key TEXT PRIMARY KEY,
                value BLOB,
                content_type TEXT,
                updated_at TEXT
            )
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.commit()
        self.conn.close()

    def put(self, key: str, value: Union[str, bytes], content_type: str = "text/plain") -> None:
        if isinstance(value, str):
            value = value.encode("utf-8")
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO records (key, value, content_type, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                content_type = excluded.content_type,
                updated_at = excluded.updated_at
            """,
            (key, value, content_type, utc_now_iso()),
        )
        self.conn.commit()

    def get(self, key: str) -> Optional[bytes]:
        cur = self.conn.cursor()
        cur.execute("SELECT value FROM records WHERE key = ?", (key,))
        row = cur.fetchone()
        if not row:
            return None
        return bytes(row["value"])

    def get_content_type(self, key: str) -> Optional[str]:
        cur = self.conn.cursor()
        cur.execute("SELECT content_type FROM records WHERE key = ?", (key,))
        row = cur.fetchone()
        return row["content_type"] if row else None

    def put_json(self, key: str, payload: Any) -> None:
        self.put(key, json.dumps(payload, ensure_ascii=False), content_type="application/json")

    def get_json(self, key: str) -> Any:
        raw = self.get(key)
        if raw is None:
            return None
        return json.loads(raw.decode("utf-8"))

    def record_url(self, key: str) -> str:
        return f"sqlite://{os.path.abspath(self.db_path)}#{key}"


@dataclass
class QueuedRequest:
    id: str
    url: str
    unique_key: str
    user_data: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now_iso)


class RequestQueue:
    """Queue of detail requests keyed by unique_key.

    add_request is idempotent on unique_key, so the same place surfacing in
    several responses or searches is queued once.
    """

    def __init__(self) -> None:
        self._by_key: Dict[str, QueuedRequest] = {}
        self._order: List[str] = []

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[QueuedRequest]:
        for key in self._order:
            yield self._by_key[key]

    async def add_request(
        self,
        url: str,
        unique_key: Optional[str] = None,
        user_data: Optional[Dict[str, Any]] = None,
        forefront: bool = False,
    ) -> QueueOperationInfo:
        key = unique_key or url
        existing = self._by_key.get(key)
        if existing is not None:
            return QueueOperationInfo(request_id=existing.id, was_already_present=True)

        request = QueuedRequest(
            id=uuid.uuid4().hex,
            url=url,
            unique_key=key,
            user_data=dict(user_data or {}),
        )
        self._by_key[key] = request
        if forefront:
            self._order.insert(0, key)
        else:
            self._order.append(key)
        return QueueOperationInfo(request_id=request.id, was_already_present=False)

    def to_state(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": r.id,
                "url": r.url,
                "uniqueKey": r.unique_key,
                "userData": r.user_data,
                "createdAt": r.created_at,
            }
            for r in self
        ]

    def load_state(self, state: List[Dict[str, Any]]) -> None:
        self._by_key = {}
        self._order = []
        for item in state:
            request = QueuedRequest(
                id=item["id"],
                url=item["url"],
                unique_key=item["uniqueKey"],
                user_data=dict(item.get("userData") or {}),
                created_at=item.get("createdAt") or utc_now_iso(),
            )
            self._by_key[request.unique_key] = request
            self._order.append(request.unique_key)

    def persist(self, store: "KeyValueStore") -> None:
        store.put_json(config.REQUEST_QUEUE_KEY, self.to_state())

    def restore(self, store: "KeyValueStore") -> bool:
        state = store.get_json(config.REQUEST_QUEUE_KEY)
        if state is None:
            return False
        self.load_state(state)
        logger.info("Restored %s queued requests", len(self._order))
        return True

    def export_jsonl(self, path: str) -> None:
        write_jsonl(
            path,
            (
                {"url": r.url, "uniqueKey": r.unique_key, "userData": r.user_data}
                for r in self
            ),
        )


class Dataset:
    """Append-only JSONL sink for exported records.

    Records of an earlier run in the same file are kept and counted.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        ensure_dir(os.path.dirname(path) or ".")
        self.count = 0
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                self.count = sum(1 for line in f if line.strip())

    async def push(self, record: Dict[str, Any]) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False))
            f.write("\n")
        self.count += 1
