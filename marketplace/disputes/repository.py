"""Repository layer for disputes."""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.models import Dispute
from marketplace.shared.exceptions import ConflictError
from marketplace.shared.utils.logging import get_logger

logger = get_logger(__name__)


class DisputeRepository:
    """Repository for dispute rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Dispute:
        dispute = Dispute(**kwargs)
        self.session.add(dispute)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError("A dispute already exists for this task") from e
        await self.session.refresh(dispute)
        return dispute

    async def get_by_id(self, dispute_id: UUID) -> Dispute | None:
        return await self.session.get(Dispute, dispute_id)

    async def get_for_update(self, dispute_id: UUID) -> Dispute | None:
        query = (
            select(Dispute)
            .where(Dispute.id == dispute_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_disputes(
        self,
        unresolved_only: bool = False,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Dispute], int]:
        base_query = select(Dispute)
        if unresolved_only:
            base_query = base_query.where(Dispute.resolved_at.is_(None))

        count_query = select(func.count()).select_from(base_query.subquery())
        total = (await self.session.execute(count_query)).scalar() or 0

        base_query = base_query.order_by(Dispute.created_at.desc()).offset(offset).limit(limit)
        result = await self.session.execute(base_query)
        return list(result.scalars().all()), total
