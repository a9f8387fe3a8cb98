"""Channel CRUD, status transitions and stats."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.constants.inbox import CHANNEL_STATUS_TRANSITIONS, ChannelStatus, Platform
from app.core.credentials import (
    decrypt_secret,
    decrypt_session_data,
    encrypt_secret,
    encrypt_session_data,
)
from app.exceptions import ChannelConflict, ChannelNotFound, InvalidStatusTransition
from app.models.channel import Channel
from app.schemas.inbox import ChannelCreate, PlatformStats


class ChannelService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_channel(self, channel_id: UUID) -> Optional[Channel]:
        return self.db.query(Channel).filter(Channel.id == channel_id).first()

    def require_channel(self, channel_id: UUID) -> Channel:
        channel = self.get_channel(channel_id)
        if channel is None:
            raise ChannelNotFound(channel_id)
        return channel

    def get_channel_by_external_id(
        self, platform: Platform | str, external_id: str
    ) -> Optional[Channel]:
        """Resolve a channel by platform identifier, preferring the active one."""
        candidates = (
            self.db.query(Channel)
            .filter(Channel.platform == str(platform), Channel.external_id == external_id)
            .order_by(Channel.updated_at.desc())
            .all()
        )
        for channel in candidates:
            if channel.status == ChannelStatus.ACTIVE:
                return channel
        return candidates[0] if candidates else None

    def list_channels(
        self,
        platform: Optional[Platform | str] = None,
        status: Optional[ChannelStatus | str] = None,
    ) -> List[Channel]:
        q = self.db.query(Channel).order_by(Channel.created_at.desc())
        if platform is not None:
            q = q.filter(Channel.platform == str(platform))
        if status is not None:
            q = q.filter(Channel.status == str(status))
        return q.all()

    def list_resumable_channels(self, platform: Platform | str) -> List[Channel]:
        """Channels holding stored session credentials that were not explicitly disconnected."""
        return (
            self.db.query(Channel)
            .filter(
                Channel.platform == str(platform),
                Channel.session_data.isnot(None),
                Channel.status != ChannelStatus.DISCONNECTED.value,
            )
            .all()
        )

    def create_channel(self, data: ChannelCreate) -> Channel:
        payload = data.model_dump(exclude={"access_token"})
        payload["platform"] = str(data.platform)
        payload["status"] = str(data.status)
        channel = Channel(**payload, access_token=encrypt_secret(data.access_token))
        self.db.add(channel)
        self.db.commit()
        self.db.refresh(channel)
        return channel

    def update_channel_status(
        self,
        channel_id: UUID,
        status: ChannelStatus,
        external_id: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> Channel:
        """
        Move a channel along an allowed status edge.

        Raises:
            ChannelNotFound: unknown channel.
            InvalidStatusTransition: edge not allowed.
            ChannelConflict: another active channel owns the same platform identifier.
        """
        channel = self.require_channel(channel_id)
        current = ChannelStatus(channel.status)
        if status != ChannelStatus.DISCONNECTED and status not in CHANNEL_STATUS_TRANSITIONS[current]:
            raise InvalidStatusTransition(current, status)

        if external_id is not None:
            channel.external_id = external_id
        if phone_number is not None:
            channel.phone_number = phone_number

        if status == ChannelStatus.ACTIVE and channel.external_id is not None:
            clash = (
                self.db.query(Channel.id)
                .filter(
                    Channel.platform == channel.platform,
                    Channel.external_id == channel.external_id,
                    Channel.status == ChannelStatus.ACTIVE.value,
                    Channel.id != channel.id,
                )
                .first()
            )
            if clash is not None:
                self.db.rollback()
                raise ChannelConflict(
                    f"{channel.platform} identifier {channel.external_id} is already active on another channel"
                )

        channel.status = status.value
        if status == ChannelStatus.ACTIVE:
            channel.last_active_at = datetime.now(timezone.utc)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ChannelConflict(str(e.orig)) from e
        self.db.refresh(channel)
        return channel

    def touch(self, channel_id: UUID) -> None:
        self.db.query(Channel).filter(Channel.id == channel_id).update(
            {Channel.last_active_at: datetime.now(timezone.utc)},
            synchronize_session=False,
        )
        self.db.commit()

    def get_access_token(self, channel: Channel) -> Optional[str]:
        return decrypt_secret(channel.access_token)

    def update_access_token(self, channel_id: UUID, access_token: str) -> Channel:
        channel = self.require_channel(channel_id)
        channel.access_token = encrypt_secret(access_token)
        self.db.commit()
        self.db.refresh(channel)
        return channel

    def get_session_data(self, channel: Channel) -> Optional[Dict[str, Any]]:
        if channel.session_data is None:
            return None
        return decrypt_session_data(channel.session_data)

    def update_session_data(
        self, channel_id: UUID, session_data: Optional[Dict[str, Any]]
    ) -> Channel:
        channel = self.require_channel(channel_id)
        channel.session_data = (
            encrypt_session_data(session_data) if session_data is not None else None
        )
        self.db.commit()
        self.db.refresh(channel)
        return channel

    def delete_channel(self, channel_id: UUID) -> bool:
        channel = self.get_channel(channel_id)
        if channel is None:
            return False
        self.db.delete(channel)
        self.db.commit()
        return True

    def channel_stats(self) -> List[PlatformStats]:
        rows = (
            self.db.query(Channel.platform, Channel.status, func.count(Channel.id))
            .group_by(Channel.platform, Channel.status)
            .all()
        )
        stats: Dict[str, PlatformStats] = {
            p.value: PlatformStats(platform=p) for p in Platform
        }
        for platform, status, count in rows:
            entry = stats.setdefault(platform, PlatformStats(platform=platform))
            entry.total += count
            if status == ChannelStatus.ACTIVE.value:
                entry.active += count
        return list(stats.values())
