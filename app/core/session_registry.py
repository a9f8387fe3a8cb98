"""Live platform sessions keyed by channel id."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from app.constants.inbox import Platform, SessionState

_UNSET: Any = object()


@dataclass
class SessionRecord:
    channel_id: UUID
    platform: Platform
    session: Any
    state: SessionState = SessionState.INITIALIZING
    qr: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY


class ChannelSessionRegistry:
    """At most one live session per channel. Mutations are serialized by a lock."""

    def __init__(self) -> None:
        self._records: Dict[UUID, SessionRecord] = {}
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def get(self, channel_id: UUID) -> Optional[SessionRecord]:
        return self._records.get(channel_id)

    def is_ready(self, channel_id: UUID) -> bool:
        record = self._records.get(channel_id)
        return record is not None and record.is_ready

    def list(self) -> List[SessionRecord]:
        return list(self._records.values())

    async def put(self, record: SessionRecord) -> None:
        async with self._lock:
            self._records[record.channel_id] = record

    async def pop(self, channel_id: UUID, session: Any = _UNSET) -> Optional[SessionRecord]:
        """Remove the record. When `session` is given, only remove if it still owns the slot."""
        async with self._lock:
            return self._pop_locked(channel_id, session)

    def _pop_locked(self, channel_id: UUID, session: Any = _UNSET) -> Optional[SessionRecord]:
        record = self._records.get(channel_id)
        if record is None:
            return None
        if session is not _UNSET and record.session is not session:
            return None
        return self._records.pop(channel_id)

    async def update(
        self,
        channel_id: UUID,
        session: Any,
        *,
        state: Optional[SessionState] = None,
        qr: Any = _UNSET,
    ) -> Optional[SessionRecord]:
        """Update state/qr of the record owned by `session`. Stale sessions are ignored."""
        async with self._lock:
            record = self._records.get(channel_id)
            if record is None or record.session is not session:
                return None
            if state is not None:
                record.state = state
            if qr is not _UNSET:
                record.qr = qr
            record.updated_at = datetime.now(timezone.utc)
            return record
