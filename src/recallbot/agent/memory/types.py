from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class MemoryRecord:
    """A past user input paired with the final answer given to it.

    `embedding` is the embedding of `user_input` only. `id` is assigned by
    the store on first successful persistence and is `None` before that.
    """

    timestamp: int
    user_input: str
    bot_response: str
    embedding: List[float]
    channel_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class SearchResult:
    record: MemoryRecord
    similarity: float


class MemoryState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


__all__ = ["MemoryRecord", "SearchResult", "MemoryState"]
