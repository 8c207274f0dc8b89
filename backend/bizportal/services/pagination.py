import math
from typing import Any, Callable

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession


async def paginate(
    db: AsyncSession,
    query: Select,
    page: int,
    per_page: int,
    to_item: Callable[[Any], Any],
) -> dict:
    total = (
        await db.execute(select(func.count()).select_from(query.order_by(None).subquery()))
    ).scalar_one()
    rows = (
        await db.execute(query.offset((page - 1) * per_page).limit(per_page))
    ).scalars().all()

    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": math.ceil(total / per_page) if total > 0 else 1,
        "items": [to_item(r) for r in rows],
    }
