"""Read-only access to the external user store."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backlify.models.user_models import User


class UserCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_login(self, login: str) -> User | None:
        return await self.session.scalar(select(User).where(User.login == login))


__all__ = ["UserCRUD"]
