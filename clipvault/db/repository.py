from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clipvault.core.errors import DuplicateContentError
from clipvault.db.models import Asset


class AssetRepository(ABC):
    """Keyed access to stored asset records."""

    @abstractmethod
    async def find_by_hash(self, owner_id: str, content_hash: str) -> Asset | None: ...

    @abstractmethod
    async def find_by_id(self, asset_id: str, owner_id: str | None = None) -> Asset | None: ...

    @abstractmethod
    async def find_all(self, owner_id: str) -> Sequence[Asset]: ...

    @abstractmethod
    async def create(self, asset_id: str, **fields: Any) -> Asset: ...

    @abstractmethod
    async def update(self, asset_id: str, **fields: Any) -> None: ...

    @abstractmethod
    async def delete(self, asset_id: str) -> None: ...


class SqlAssetRepository(AssetRepository):
    """SQLAlchemy-backed repository; each call runs in its own short session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_by_hash(self, owner_id: str, content_hash: str) -> Asset | None:
        stmt = select(Asset).where(Asset.owner_id == owner_id, Asset.content_hash == content_hash)
        async with self.session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def find_by_id(self, asset_id: str, owner_id: str | None = None) -> Asset | None:
        stmt = select(Asset).where(Asset.id == asset_id)
        if owner_id is not None:
            stmt = stmt.where(Asset.owner_id == owner_id)
        async with self.session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def find_all(self, owner_id: str) -> Sequence[Asset]:
        stmt = select(Asset).where(Asset.owner_id == owner_id).order_by(Asset.created_at.desc(), Asset.id.desc())
        async with self.session_factory() as session:
            return (await session.execute(stmt)).scalars().all()

    async def create(self, asset_id: str, **fields: Any) -> Asset:
        asset = Asset(id=asset_id, **fields)
        async with self.session_factory() as session:
            session.add(asset)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                existing = await self.find_by_hash(fields["owner_id"], fields["content_hash"])
                if existing is None:
                    raise
                raise DuplicateContentError(existing.id) from exc
            await session.refresh(asset)
        return asset

    async def update(self, asset_id: str, **fields: Any) -> None:
        if not fields:
            return
        async with self.session_factory() as session:
            await session.execute(update(Asset).where(Asset.id == asset_id).values(**fields))
            await session.commit()

    async def delete(self, asset_id: str) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(Asset).where(Asset.id == asset_id))
            await session.commit()


__all__ = ["AssetRepository", "SqlAssetRepository"]
