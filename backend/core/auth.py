import logging
import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from fastapi_users import BaseUserManager, FastAPIUsers, UUIDIDMixin, exceptions
from fastapi_users.authentication import AuthenticationBackend, BearerTransport, JWTStrategy
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings, settings as default_settings
from core.policy import Permission, Role, has_permission, parse_role
from db.database import get_async_session, utcnow
from db.users import User, UserDatabase

logger = logging.getLogger(__name__)


async def get_user_db(session: AsyncSession = Depends(get_async_session)):
    yield UserDatabase(session, User)


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):

    async def authenticate(self, credentials: OAuth2PasswordRequestForm) -> Optional[User]:
        """Accept either the email address or the login name in `username`."""
        try:
            user = await self.get_by_email(credentials.username)
        except exceptions.UserNotExists:
            user = await self.user_db.get_by_name(credentials.username)

        if user is None:
            # Hash anyway so unknown users take as long as wrong passwords.
            self.password_helper.hash(credentials.password)
            return None

        verified, updated_password_hash = self.password_helper.verify_and_update(
            credentials.password, user.hashed_password
        )
        if not verified:
            return None
        if updated_password_hash is not None:
            await self.user_db.update(user, {"hashed_password": updated_password_hash})
        return user

    async def on_after_register(self, user: User, request: Optional[Request] = None):
        logger.info("User %s registered (role=%s)", user.id, user.role)

    async def on_after_login(self, user: User, request: Optional[Request] = None, response=None):
        await self.user_db.update(user, {"last_login": utcnow()})
        logger.info("User %s logged in", user.id)


async def get_user_manager(request: Request, user_db: UserDatabase = Depends(get_user_db)):
    manager = UserManager(user_db)
    secret = get_settings(request).jwt_secret
    manager.reset_password_token_secret = secret
    manager.verification_token_secret = secret
    yield manager


bearer_transport = BearerTransport(tokenUrl=f"api/{default_settings.api_version}/auth/jwt/login")


def get_jwt_strategy(request: Request) -> JWTStrategy:
    cfg = get_settings(request)
    return JWTStrategy(secret=cfg.jwt_secret, lifetime_seconds=cfg.jwt_lifetime_seconds)


auth_backend = AuthenticationBackend(
    name="jwt",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)

fastapi_users = FastAPIUsers[User, uuid.UUID](get_user_manager, [auth_backend])

current_active_user = fastapi_users.current_user(active=True)


def role_of(user: User) -> Role:
    if user.is_superuser:
        return Role.ADMINISTRATOR
    return parse_role(user.role)


def require_permission(permission: Permission):
    """Route dependency: the active user, provided their role grants `permission`."""

    async def dependency(user: User = Depends(current_active_user)) -> User:
        if not has_permission(role_of(user), permission):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return dependency
