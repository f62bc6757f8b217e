from __future__ import annotations

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from revision_api.db.models import CategoryStat as CategoryStatRow
from revision_api.domain.schemas.revision import CategoryStat


class CategoryStatsRepository:
    """Precomputed per-domain averages used when a learner has no attempt history."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_category_stats(self, *, user_id: str) -> list[CategoryStat]:
        stmt: Select[tuple[CategoryStatRow]] = (
            select(CategoryStatRow)
            .where(CategoryStatRow.user_id == user_id)
            .order_by(CategoryStatRow.id.asc())
        )
        result = await self._session.execute(stmt)
        return [
            CategoryStat(
                domain=row.clinical_domain,
                average_score=row.average_score,
                total_attempts=row.total_attempts,
            )
            for row in result.scalars().all()
        ]


__all__ = ["CategoryStatsRepository"]
