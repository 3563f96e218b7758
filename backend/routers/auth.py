import logging

from fastapi import APIRouter, Depends, HTTPException, status

from core.auth import UserManager, current_active_user, get_user_manager
from db.users import User
from schemas.users import ChangePasswordRequest, UserRead, UserUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/me", response_model=UserRead)
async def me(user: User = Depends(current_active_user)):
    return UserRead.model_validate(user)


@router.put("/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    user: User = Depends(current_active_user),
    user_manager: UserManager = Depends(get_user_manager),
):
    verified, _ = user_manager.password_helper.verify_and_update(payload.current_password, user.hashed_password)
    if not verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    await user_manager.update(UserUpdate(password=payload.new_password), user, safe=True)
    logger.info("User %s changed their password", user.id)
    return {"detail": "Password changed successfully"}
