from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pitrace.api.deps import get_db
from pitrace.errors import NotFoundError, ValidationError
from pitrace.services.user_service import UserService

router = APIRouter()


@router.get("/users")
async def get_user(
    uid: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Look up a user profile by uid."""
    if not uid:
        raise ValidationError("User ID required")

    user = await UserService(db).get_user_by_uid(uid)
    if not user:
        raise NotFoundError("User not found")

    return {"success": True, "data": user.to_dict()}
