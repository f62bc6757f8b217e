from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from revision_api.db.models import RevisionTaxonomy
from revision_api.domain.errors import LookupFailure
from revision_api.domain.schemas.revision import TaxonomyEntry


class TaxonomyRepository:
    """Read access to the active revision taxonomy, ordered by cluster key."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def entries_for_domains(self, domains: Iterable[str]) -> dict[str, list[TaxonomyEntry]]:
        """Group active taxonomy entries by domain; unknown domains are omitted."""
        normalized = sorted({domain for domain in domains if domain})
        if not normalized:
            return {}

        stmt: Select[tuple[RevisionTaxonomy]] = (
            select(RevisionTaxonomy)
            .where(RevisionTaxonomy.domain.in_(normalized), RevisionTaxonomy.active.is_(True))
            .order_by(RevisionTaxonomy.domain.asc(), RevisionTaxonomy.cluster_key.asc())
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise LookupFailure(
                "Revision taxonomy is unavailable",
                context={"domains": normalized},
            ) from exc

        grouped: dict[str, list[TaxonomyEntry]] = {}
        for row in result.scalars().all():
            grouped.setdefault(row.domain, []).append(
                TaxonomyEntry(
                    domain=row.domain,
                    cluster_key=row.cluster_key,
                    label=row.cluster_label,
                    keywords=list(row.keywords or []),
                )
            )
        return grouped

    async def entries_for_domain(self, domain: str) -> list[TaxonomyEntry]:
        grouped = await self.entries_for_domains([domain])
        return grouped.get(domain, [])


__all__ = ["TaxonomyRepository"]
