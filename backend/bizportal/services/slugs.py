from typing import Any

from slugify import slugify
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


async def unique_slug(
    db: AsyncSession,
    model: Any,
    name: str,
    exclude_id: Any = None,
) -> str:
    """Slug for *name* that no other row of *model* uses; appends -1, -2, ..."""
    base = slugify(name) or "item"
    candidate = base
    counter = 1
    while True:
        q = select(model.id).where(model.slug == candidate)
        if exclude_id is not None:
            q = q.where(model.id != exclude_id)
        if (await db.execute(q)).first() is None:
            return candidate
        candidate = f"{base}-{counter}"
        counter += 1
