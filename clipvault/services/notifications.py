from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clipvault.core.logging import get_logger
from clipvault.db.models import Notification

_CONTEXT_KEYS = ("fileName", "originalName", "sourceUrl", "fileId")


def format_message(message: str, metadata: dict[str, Any] | None) -> str:
    """Prefix ``message`` with the most specific context found in ``metadata``."""
    for key in _CONTEXT_KEYS:
        value = (metadata or {}).get(key)
        if value:
            return f"[{value}] {message}"
    return message


class NotificationSink:
    """One-way user notifications persisted as rows; delivery never raises."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.logger = get_logger(component="notifications")

    async def notify(self, user_id: str, message: str, metadata: dict[str, Any] | None = None) -> None:
        try:
            async with self.session_factory() as session:
                session.add(Notification(user_id=user_id, message=format_message(message, metadata), meta_jsonb=metadata))
                await session.commit()
        except Exception:
            self.logger.exception("notification_failed", user_id=user_id, message=message)
            return
        self.logger.info("notification_sent", user_id=user_id, message=message)

    async def list_for(self, user_id: str) -> Sequence[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        async with self.session_factory() as session:
            return (await session.execute(stmt)).scalars().all()

    async def mark_read(self, user_id: str, notification_id: int) -> bool:
        stmt = (
            update(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .values(read=True)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return bool(result.rowcount)

    async def mark_all_read(self, user_id: str) -> int:
        stmt = update(Notification).where(Notification.user_id == user_id, Notification.read.is_(False)).values(read=True)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return int(result.rowcount or 0)


__all__ = ["NotificationSink", "format_message"]
