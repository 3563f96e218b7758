import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import require_permission
from core.errors import InvalidInput, NotFound
from core.policy import Permission
from db.branch import Branch as BranchModel
from db.database import get_async_session
from db.outgoing import OutgoingStock
from db.sale import Sale
from db.users import User
from schemas.branches import BranchCreate, BranchRead, BranchUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_branch(db: AsyncSession, branch_id: UUID) -> BranchModel:
    branch = (await db.execute(select(BranchModel).where(BranchModel.id == branch_id))).scalar_one_or_none()
    if branch is None:
        raise NotFound("Branch not found")
    return branch


async def _ensure_unique_name(db: AsyncSession, name: str, exclude_id=None) -> None:
    q = select(BranchModel.id).where(func.lower(BranchModel.name) == name.lower())
    if exclude_id is not None:
        q = q.where(BranchModel.id != exclude_id)
    if (await db.execute(q)).first() is not None:
        raise InvalidInput("Branch with this name already exists")


async def _ensure_manager(db: AsyncSession, manager_id) -> None:
    if manager_id is None:
        return
    if (await db.execute(select(User.id).where(User.id == manager_id))).first() is None:
        raise InvalidInput("Manager not found")


@router.get("/", response_model=List[BranchRead])
async def list_branches(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_INVENTORY)),
):
    res = await db.execute(select(BranchModel).order_by(BranchModel.name.asc()))
    return [BranchRead.model_validate(b) for b in res.scalars().all()]


@router.get("/{branch_id}", response_model=BranchRead)
async def get_branch(
    branch_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_INVENTORY)),
):
    return BranchRead.model_validate(await _get_branch(db, branch_id))


@router.post("/", response_model=BranchRead, status_code=status.HTTP_201_CREATED)
async def create_branch(
    payload: BranchCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_BRANCHES)),
):
    name = payload.name.strip()
    await _ensure_unique_name(db, name)
    await _ensure_manager(db, payload.manager_id)

    branch = BranchModel(name=name, address=payload.address, phone=payload.phone, manager_id=payload.manager_id)
    db.add(branch)
    await db.commit()
    await db.refresh(branch)
    logger.info("Branch created: %s", name)
    return BranchRead.model_validate(branch)


@router.put("/{branch_id}", response_model=BranchRead)
async def update_branch(
    branch_id: UUID,
    payload: BranchUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_BRANCHES)),
):
    branch = await _get_branch(db, branch_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("name"):
        name = data["name"].strip()
        await _ensure_unique_name(db, name, exclude_id=branch.id)
        branch.name = name
    if "manager_id" in data:
        await _ensure_manager(db, data["manager_id"])
        branch.manager_id = data["manager_id"]
    if "address" in data:
        branch.address = data["address"]
    if "phone" in data:
        branch.phone = data["phone"]

    await db.commit()
    await db.refresh(branch)
    return BranchRead.model_validate(branch)


@router.delete("/{branch_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_branch(
    branch_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_BRANCHES)),
):
    branch = await _get_branch(db, branch_id)
    in_use = (await db.execute(select(Sale.id).where(Sale.branch_id == branch.id).limit(1))).first()
    if in_use is None:
        in_use = (
            await db.execute(select(OutgoingStock.id).where(OutgoingStock.branch_id == branch.id).limit(1))
        ).first()
    if in_use is not None:
        raise InvalidInput("Cannot delete a branch that has sales or outgoing records")

    await db.delete(branch)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
