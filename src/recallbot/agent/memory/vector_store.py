from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
import json
import logging
import os
import sqlite3
import threading

import numpy as np

from recallbot.exceptions import (
    DimensionMismatchError,
    StorageError,
    StorageInitError,
    StorageWriteError,
)

from .types import MemoryRecord, SearchResult

logger = logging.getLogger(__name__)

IN_MEMORY_PATH = ":memory:"

_COLUMNS = (
    "id",
    "timestamp",
    "user_input",
    "bot_response",
    "embedding",
    "channel_id",
    "user_id",
    "user_name",
    "metadata",
)


class VectorStore(Protocol):
    """Protocol describing the minimum surface of a memory vector store.

    Any replacement (for instance one backed by an approximate index) must
    keep the ordering and filtering semantics of :meth:`search`.
    """

    def open(self) -> None:
        ...

    def put(self, record: MemoryRecord) -> MemoryRecord:
        ...

    def search(
        self,
        embedding: Sequence[float],
        *,
        limit: int = 5,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[SearchResult]:
        ...

    def recent(
        self,
        *,
        limit: int = 5,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[MemoryRecord]:
        ...

    def get(self, record_id: int) -> Optional[MemoryRecord]:
        ...

    def delete_by_id(self, record_id: int) -> bool:
        ...

    def count(self) -> int:
        ...

    def compact(self) -> None:
        ...

    def stats(self) -> Dict[str, Any]:
        ...

    def close(self) -> None:
        ...


def check_dimension(expected: int, actual: int) -> None:
    if expected != actual:
        raise DimensionMismatchError(expected, actual)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero magnitude. Raises
    `DimensionMismatchError` when the lengths differ.
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.ndim != 1 or vec_b.ndim != 1:
        raise ValueError("Embeddings must be 1D vectors.")
    check_dimension(vec_a.shape[0], vec_b.shape[0])
    return float(_cosine_scores(vec_b[np.newaxis, :], vec_a)[0])


def _cosine_scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Row-wise cosine similarity between `matrix` and `query`."""
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0])
    matrix_norms = np.linalg.norm(matrix, axis=1)
    zero_rows = matrix_norms == 0
    matrix_norms[zero_rows] = 1.0
    scores = (matrix @ query) / (matrix_norms * query_norm)
    scores[zero_rows] = 0.0
    # Rounding can push a vector's similarity with itself just past 1.
    return np.clip(scores, -1.0, 1.0)


class SQLiteVectorStore:
    """Memory records in a single SQLite file, searched by exact linear scan.

    Embeddings and metadata are stored as JSON text. Scope filters
    (`channel_id`, `user_id`) are applied in SQL and use indexes; cosine
    similarity is then computed with numpy over the filtered subset.

    The store is opened lazily by the first operation that needs it and
    holds an exclusive lock on the file until :meth:`close`. A re-entrant
    lock serializes every use of the shared connection, so concurrent
    writers never interleave and readers always see the last committed
    state.
    """

    def __init__(
        self,
        database_path: str | Path = IN_MEMORY_PATH,
        *,
        similarity_threshold: float = 0.7,
        table_name: str = "memories",
    ) -> None:
        self.database_path = str(database_path)
        self.similarity_threshold = similarity_threshold
        self.table_name = table_name
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> "SQLiteVectorStore":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # --- Lifecycle --------------------------------------------------------

    def open(self) -> None:
        with self._lock:
            if self._conn is not None:
                return
            if self.database_path != IN_MEMORY_PATH:
                try:
                    Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)
                except OSError as exc:
                    raise StorageInitError(
                        f"Cannot create directory for {self.database_path}: {exc}"
                    ) from exc
                existed = os.path.exists(self.database_path)
            else:
                existed = False

            conn = None
            try:
                conn = sqlite3.connect(self.database_path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA locking_mode = EXCLUSIVE")
                self._create_schema(conn)
                self._validate_schema(conn)
                conn.commit()
            except (sqlite3.Error, StorageInitError) as exc:
                if conn is not None:
                    conn.close()
                if isinstance(exc, StorageInitError):
                    raise
                raise StorageInitError(
                    f"Failed to open memory database {self.database_path}: {exc}"
                ) from exc
            self._conn = conn

        if existed:
            logger.info("Loaded memory database %s (%d records)", self.database_path, self.count())
        else:
            logger.info("Created new memory database %s", self.database_path)

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.commit()
            finally:
                self._conn.close()
                self._conn = None
        logger.info("Memory database %s closed", self.database_path)

    def _ensure_open(self) -> sqlite3.Connection:
        if self._conn is None:
            self.open()
        return self._conn

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp INTEGER NOT NULL,
                user_input TEXT NOT NULL,
                bot_response TEXT NOT NULL,
                embedding TEXT NOT NULL,
                channel_id TEXT,
                user_id TEXT,
                user_name TEXT,
                metadata TEXT
            )
            """
        )
        for column in ("timestamp", "channel_id", "user_id"):
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.table_name}_{column} "
                f"ON {self.table_name}({column})"
            )

    def _validate_schema(self, conn: sqlite3.Connection) -> None:
        rows = conn.execute(f"PRAGMA table_info({self.table_name})").fetchall()
        present = {row["name"] for row in rows}
        missing = [column for column in _COLUMNS if column not in present]
        if missing:
            raise StorageInitError(
                f"Table '{self.table_name}' in {self.database_path} is missing columns: "
                f"{', '.join(missing)}"
            )

    # --- Writes -----------------------------------------------------------

    def put(self, record: MemoryRecord) -> MemoryRecord:
        """Persist a new record and return it with its assigned id.

        The insert is committed before returning. On failure the transaction
        is rolled back, so nothing of the failed write is visible.
        """
        if record.id is not None:
            raise ValueError(f"Record already has id {record.id}; records are never updated.")
        if not record.embedding:
            raise ValueError("Cannot store a record with an empty embedding.")
        embedding_json = json.dumps([float(value) for value in record.embedding])
        metadata_json = json.dumps(record.metadata) if record.metadata is not None else None

        with self._lock:
            conn = self._ensure_open()
            try:
                with conn:
                    cursor = conn.execute(
                        f"INSERT INTO {self.table_name} (timestamp, user_input, bot_response, "
                        "embedding, channel_id, user_id, user_name, metadata) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            int(record.timestamp),
                            record.user_input,
                            record.bot_response,
                            embedding_json,
                            record.channel_id,
                            record.user_id,
                            record.user_name,
                            metadata_json,
                        ),
                    )
            except sqlite3.Error as exc:
                raise StorageWriteError(f"Failed to store memory: {exc}") from exc
            record_id = cursor.lastrowid

        logger.debug("Stored memory record with id %d", record_id)
        return replace(record, id=record_id)

    def delete_by_id(self, record_id: int) -> bool:
        with self._lock:
            conn = self._ensure_open()
            try:
                with conn:
                    cursor = conn.execute(
                        f"DELETE FROM {self.table_name} WHERE id = ?", (int(record_id),)
                    )
            except sqlite3.Error as exc:
                raise StorageWriteError(f"Failed to delete memory {record_id}: {exc}") from exc
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("Deleted memory with id %d", record_id)
        else:
            logger.debug("Memory with id %d not found", record_id)
        return deleted

    def compact(self) -> None:
        """Reclaim free pages and refresh the query planner statistics.

        VACUUM rebuilds the file inside a transaction, so an interrupted
        compaction leaves the previous contents intact.
        """
        with self._lock:
            conn = self._ensure_open()
            logger.info("Running memory database maintenance...")
            try:
                conn.commit()
                conn.execute("VACUUM")
                conn.execute("ANALYZE")
                conn.commit()
            except sqlite3.Error as exc:
                raise StorageError(f"Memory database maintenance failed: {exc}") from exc
        logger.info("Memory database maintenance completed")

    # --- Reads ------------------------------------------------------------

    def search(
        self,
        embedding: Sequence[float],
        *,
        limit: int = 5,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[SearchResult]:
        """Rank stored records by cosine similarity to `embedding`.

        Results below the similarity threshold are dropped. The remainder is
        sorted by similarity, newest first among equal scores, and truncated
        to `limit`. Records whose embedding length differs from the query
        are skipped.
        """
        query = np.asarray(embedding, dtype=np.float64)
        if query.ndim != 1 or query.size == 0:
            raise ValueError("Query embedding must be a non-empty 1D vector.")
        if limit <= 0:
            return []

        records = self._select(channel_id=channel_id, user_id=user_id)
        candidates: List[MemoryRecord] = []
        for record in records:
            try:
                check_dimension(query.shape[0], len(record.embedding))
            except DimensionMismatchError as exc:
                logger.warning("Skipping memory %s during search: %s", record.id, exc)
                continue
            candidates.append(record)
        if not candidates:
            return []

        matrix = np.asarray([record.embedding for record in candidates], dtype=np.float64)
        scores = _cosine_scores(matrix, query)

        results = [
            SearchResult(record=record, similarity=float(score))
            for record, score in zip(candidates, scores)
            if score >= self.similarity_threshold
        ]
        results.sort(key=lambda item: (-item.similarity, -item.record.timestamp, -item.record.id))
        results = results[:limit]
        logger.debug(
            "Found %d similar memories among %d candidates (threshold: %s)",
            len(results),
            len(candidates),
            self.similarity_threshold,
        )
        return results

    def recent(
        self,
        *,
        limit: int = 5,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[MemoryRecord]:
        if limit <= 0:
            return []
        return self._select(channel_id=channel_id, user_id=user_id, limit=limit)

    def get(self, record_id: int) -> Optional[MemoryRecord]:
        with self._lock:
            conn = self._ensure_open()
            row = conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM {self.table_name} WHERE id = ?",
                (int(record_id),),
            ).fetchone()
        return self._row_to_record(row) if row is not None else None

    def count(self) -> int:
        with self._lock:
            conn = self._ensure_open()
            row = conn.execute(f"SELECT COUNT(*) FROM {self.table_name}").fetchone()
        return int(row[0])

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            conn = self._ensure_open()
            page_count = conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            freelist_count = conn.execute("PRAGMA freelist_count").fetchone()[0]
        if self.database_path != IN_MEMORY_PATH and os.path.exists(self.database_path):
            file_size = os.path.getsize(self.database_path)
        else:
            file_size = page_count * page_size
        return {
            "page_count": page_count,
            "page_size": page_size,
            "freelist_count": freelist_count,
            "file_size_bytes": file_size,
        }

    def _select(
        self,
        *,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[MemoryRecord]:
        where, params = self._build_filter(channel_id=channel_id, user_id=user_id)
        sql = f"SELECT {', '.join(_COLUMNS)} FROM {self.table_name}{where} ORDER BY timestamp DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._lock:
            conn = self._ensure_open()
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    @staticmethod
    def _build_filter(
        *,
        channel_id: Optional[str],
        user_id: Optional[str],
    ) -> Tuple[str, List[Any]]:
        conditions: List[str] = []
        params: List[Any] = []
        if channel_id is not None:
            conditions.append("channel_id = ?")
            params.append(channel_id)
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)
        if not conditions:
            return "", params
        return " WHERE " + " AND ".join(conditions), params

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> MemoryRecord:
        metadata = row["metadata"]
        return MemoryRecord(
            id=row["id"],
            timestamp=row["timestamp"],
            user_input=row["user_input"],
            bot_response=row["bot_response"],
            embedding=[float(value) for value in json.loads(row["embedding"])],
            channel_id=row["channel_id"],
            user_id=row["user_id"],
            user_name=row["user_name"],
            metadata=json.loads(metadata) if metadata is not None else None,
        )
