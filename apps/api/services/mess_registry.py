"""Read-only lookups against the mess / meal-plan registry."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.meal_plan import MealPlan
from models.mess_profile import MessProfile
from services.errors import ForbiddenError, NotFoundError


async def get_mess(mess_id: str, db: AsyncSession, *, for_update: bool = False) -> MessProfile:
    query = select(MessProfile).where(MessProfile.id == mess_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    mess = result.scalar_one_or_none()
    if not mess:
        raise NotFoundError("Mess not found", data={"mess_id": mess_id})
    return mess


async def require_mess_owner(mess_id: str, owner_id: str, db: AsyncSession) -> MessProfile:
    """Return the mess when ``owner_id`` owns it, otherwise raise ``ForbiddenError``."""
    result = await db.execute(
        select(MessProfile).where(
            MessProfile.id == mess_id,
            MessProfile.owner_id == owner_id,
        )
    )
    mess = result.scalar_one_or_none()
    if not mess:
        raise ForbiddenError("Mess not found or you do not have permission for this mess")
    return mess


async def get_owned_mess(owner_id: str, db: AsyncSession) -> MessProfile:
    """Resolve the mess profile owned by ``owner_id``."""
    result = await db.execute(
        select(MessProfile).where(MessProfile.owner_id == owner_id).order_by(MessProfile.created_at.asc())
    )
    mess = result.scalars().first()
    if not mess:
        raise NotFoundError("Mess profile not found")
    return mess


async def get_meal_plan(meal_plan_id: str, db: AsyncSession, *, mess_id: str | None = None) -> MealPlan:
    query = select(MealPlan).where(MealPlan.id == meal_plan_id)
    if mess_id is not None:
        query = query.where(MealPlan.mess_id == mess_id)
    result = await db.execute(query)
    plan = result.scalar_one_or_none()
    if not plan:
        raise NotFoundError("Meal plan not found", data={"meal_plan_id": meal_plan_id})
    return plan
