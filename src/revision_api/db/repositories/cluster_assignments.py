from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from revision_api.db.models import ContextCluster, utcnow
from revision_api.db.upsert import dialect_insert
from revision_api.domain.enums import ClusterMatch, Difficulty, ItemType
from revision_api.domain.errors import LookupFailure


class ClusterAssignmentRepository:
    """Cached ``(item type, item id) -> cluster key`` assignments."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def assignments_for(
        self, item_type: ItemType, item_ids: Iterable[int]
    ) -> dict[int, str]:
        """Return cached cluster keys for the given items; uncached items are absent."""
        context_ids = sorted({str(item_id) for item_id in item_ids})
        if not context_ids:
            return {}

        stmt: Select[tuple[ContextCluster]] = select(ContextCluster).where(
            ContextCluster.context_type == item_type.value,
            ContextCluster.context_id.in_(context_ids),
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise LookupFailure(
                "Cluster assignment store is unavailable",
                context={"item_type": item_type.value, "item_ids": context_ids},
            ) from exc
        return {int(row.context_id): row.cluster_key for row in result.scalars().all()}

    async def get(self, item_type: ItemType, item_id: int) -> str | None:
        assignments = await self.assignments_for(item_type, [item_id])
        return assignments.get(item_id)

    async def upsert(
        self,
        *,
        item_type: ItemType,
        item_id: int,
        domain: str,
        difficulty: Difficulty | None,
        cluster_key: str,
        matched_by: ClusterMatch,
    ) -> None:
        now = utcnow()
        values = {
            "context_type": item_type.value,
            "context_id": str(item_id),
            "domain": domain,
            "difficulty_level": difficulty.value if difficulty else None,
            "cluster_key": cluster_key,
            "matched_by": matched_by.value,
            "created_at": now,
            "updated_at": now,
        }
        stmt = dialect_insert(self._session, ContextCluster).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ContextCluster.context_type, ContextCluster.context_id],
            set_={
                "domain": stmt.excluded.domain,
                "difficulty_level": stmt.excluded.difficulty_level,
                "cluster_key": stmt.excluded.cluster_key,
                "matched_by": stmt.excluded.matched_by,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self._session.execute(stmt)


__all__ = ["ClusterAssignmentRepository"]
