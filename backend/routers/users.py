import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi_users import exceptions
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import UserManager, get_user_manager, require_permission
from core.policy import Permission, Role
from db.database import get_async_session
from db.users import User
from schemas.users import ResetPasswordRequest, UserCreate, UserRead, UserUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_user(db: AsyncSession, user_id: UUID) -> User:
    res = await db.execute(select(User).where(User.id == user_id))
    user = res.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _is_admin(user: User) -> bool:
    return bool(user.is_superuser) or user.role == Role.ADMINISTRATOR.value


async def _active_admin_count(db: AsyncSession) -> int:
    res = await db.execute(
        select(func.count(User.id)).where(
            User.is_active.is_(True),
            or_(User.is_superuser.is_(True), User.role == Role.ADMINISTRATOR.value),
        )
    )
    return int(res.scalar_one())


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id=None) -> None:
    q = select(User.id).where(func.lower(User.name) == name.lower())
    if exclude_id is not None:
        q = q.where(User.id != exclude_id)
    if (await db.execute(q)).first() is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already exists")


async def _guard_last_admin(db: AsyncSession, target: User) -> None:
    if _is_admin(target) and target.is_active and await _active_admin_count(db) <= 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot remove the last active administrator",
        )


@router.get("/", response_model=List[UserRead])
async def list_users(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_USERS)),
):
    res = await db.execute(select(User).order_by(User.created_at.desc()))
    return [UserRead.model_validate(u) for u in res.scalars().all()]


@router.post("/", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_USERS)),
    user_manager: UserManager = Depends(get_user_manager),
):
    await _ensure_name_free(db, payload.name)
    try:
        created = await user_manager.create(payload, safe=False)
    except exceptions.UserAlreadyExists:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already exists")
    except exceptions.InvalidPasswordException as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.reason)
    logger.info("User %s created by %s", created.id, user.id)
    return UserRead.model_validate(created)


@router.get("/{user_id}", response_model=UserRead)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_USERS)),
):
    return UserRead.model_validate(await _get_user(db, user_id))


@router.patch("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: UUID,
    payload: UserUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_USERS)),
    user_manager: UserManager = Depends(get_user_manager),
):
    target = await _get_user(db, user_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("name"):
        await _ensure_name_free(db, data["name"], exclude_id=target.id)
    demoted = "role" in data and data["role"] != Role.ADMINISTRATOR.value and not target.is_superuser
    deactivated = data.get("is_active") is False
    if deactivated and target.id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot deactivate your own account")
    if demoted or deactivated:
        await _guard_last_admin(db, target)

    try:
        updated = await user_manager.update(payload, target, safe=False)
    except exceptions.UserAlreadyExists:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already exists")
    except exceptions.InvalidPasswordException as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.reason)
    return UserRead.model_validate(updated)


@router.delete("/{user_id}", response_model=UserRead)
async def deactivate_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_USERS)),
    user_manager: UserManager = Depends(get_user_manager),
):
    """Users are deactivated, never deleted; their ledger entries keep pointing at them."""
    if user_id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot deactivate your own account")
    target = await _get_user(db, user_id)
    await _guard_last_admin(db, target)

    updated = await user_manager.user_db.update(target, {"is_active": False})
    logger.info("User %s deactivated by %s", user_id, user.id)
    return UserRead.model_validate(updated)


@router.post("/{user_id}/reset-password")
async def reset_user_password(
    user_id: UUID,
    payload: ResetPasswordRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_USERS)),
    user_manager: UserManager = Depends(get_user_manager),
):
    target = await _get_user(db, user_id)
    await user_manager.update(UserUpdate(password=payload.new_password), target, safe=False)
    logger.info("Password reset for user %s by %s", user_id, user.id)
    return {"detail": "Password reset successfully"}
