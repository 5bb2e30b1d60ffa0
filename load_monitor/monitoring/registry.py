"""
Session registry: live connection handles and their per-connection sampling state.

One registry is created per process (or per test) and handed to the
SamplingDriver. Removing a connection drops its handle and both CPU
baselines in one step.
"""

import time
import uuid
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from .cpu_tracker import BusyIdleTracker, CpuDeltaTracker
from .errors import ConnectionNotFoundError

logger = logging.getLogger(__name__)


class QueryExecutor(Protocol):
    """What the sampler needs from a database session."""

    async def execute(self, query: str) -> List[Dict[str, Any]]:
        ...

    async def close(self) -> None:
        ...


class PollState(str, Enum):
    IDLE = "IDLE"
    QUERYING = "QUERYING"
    FALLBACK_QUERYING = "FALLBACK_QUERYING"
    METRICS_QUERYING = "METRICS_QUERYING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def in_flight(self) -> bool:
        return self in (PollState.QUERYING, PollState.FALLBACK_QUERYING, PollState.METRICS_QUERYING)


@dataclass
class ConnectionEntry:
    connection_id: str
    executor: QueryExecutor
    name: Optional[str] = None
    cpu_tracker: CpuDeltaTracker = field(default_factory=CpuDeltaTracker)
    busy_idle_tracker: BusyIdleTracker = field(default_factory=BusyIdleTracker)
    state: PollState = PollState.IDLE
    connected_at: float = field(default_factory=time.time)


def new_connection_id() -> str:
    return f"conn_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class SessionRegistry:
    """Connection id -> ConnectionEntry, with explicit create/destroy."""

    def __init__(self):
        self._entries: Dict[str, ConnectionEntry] = {}

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def ids(self) -> List[str]:
        return list(self._entries)

    def register(self, executor: QueryExecutor, name: Optional[str] = None) -> str:
        connection_id = new_connection_id()
        self._entries[connection_id] = ConnectionEntry(connection_id, executor, name=name)
        logger.info(f"🔗 Registered connection {connection_id} ({name or 'ad hoc'})")
        return connection_id

    def get(self, connection_id: str) -> ConnectionEntry:
        entry = self._entries.get(connection_id)
        if entry is None:
            raise ConnectionNotFoundError(connection_id)
        return entry

    def discard(self, connection_id: str) -> Optional[ConnectionEntry]:
        """Forget a connection and all of its sampling state, without closing it."""
        return self._entries.pop(connection_id, None)

    async def close(self, connection_id: str) -> bool:
        """
        Close and forget a connection.

        The entry is removed even if closing the handle fails.

        Returns:
            True if the handle closed cleanly, False if it was unknown or
            closing raised
        """
        entry = self.discard(connection_id)
        if entry is None:
            return False
        try:
            await entry.executor.close()
        except Exception as e:
            logger.error(f"❌ Failed to close connection {connection_id}: {e}")
            return False
        logger.info(f"🔌 Closed connection {connection_id}")
        return True

    async def close_all(self) -> None:
        for connection_id in self.ids():
            await self.close(connection_id)
