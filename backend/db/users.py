from typing import Optional

from fastapi_users.db import SQLAlchemyBaseUserTableUUID, SQLAlchemyUserDatabase
from sqlalchemy import Column, DateTime, String, func, select

from core.policy import Role
from .database import Base, utcnow


class User(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "users"

    name = Column(String(32), nullable=False, unique=True, index=True)
    role = Column(String(16), nullable=False, default=Role.STAFF.value)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class UserDatabase(SQLAlchemyUserDatabase):
    """fastapi-users adapter that can also resolve a user by login name."""

    async def get_by_name(self, name: str) -> Optional[User]:
        statement = select(self.user_table).where(
            func.lower(self.user_table.name) == func.lower(name)
        )
        return await self._get_user(statement)
