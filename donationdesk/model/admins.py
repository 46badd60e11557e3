from __future__ import annotations
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts
from .orm import AdminUser


class AdminStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, username: str, password_hash: str) -> AdminUser:
        user = AdminUser(
            id=uuid.uuid4().hex,
            username=username,
            password_hash=password_hash,
            created_at=now_ts(),
        )
        self.db.add(user)
        await self.db.commit()
        return user

    async def find_by_username(self, username: str) -> Optional[AdminUser]:
        result = await self.db.execute(
            select(AdminUser)
            .where(AdminUser.username == username)
            .order_by(AdminUser.created_at.asc())
            .limit(1)
        )
        return result.scalars().first()

    async def count(self, username: Optional[str] = None) -> int:
        q = select(func.count()).select_from(AdminUser)
        if username is not None:
            q = q.where(AdminUser.username == username)
        return (await self.db.execute(q)).scalar_one()
