"""Repository for deployment record persistence."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from contractdeploy.errors import ConcurrentModificationError, PersistenceError
from contractdeploy.records.models import DeploymentRecord, DeploymentState

logger = logging.getLogger(__name__)


class DeploymentRepository:
    """Repository for all deployment record database operations.

    Every save is committed immediately so that a concurrent status read
    observes each completed saga step.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        contract_name: str,
        contract_bytecode: str,
        constructor_args: Optional[str] = None,
        network: Optional[str] = None,
        requester_id: Optional[str] = None,
    ) -> DeploymentRecord:
        """Create and persist a new record in INITIAL state."""
        record = DeploymentRecord(
            id=str(uuid.uuid4()),
            contract_name=contract_name,
            contract_bytecode=contract_bytecode,
            constructor_args=constructor_args,
            network=network,
            requester_id=requester_id,
            current_state=DeploymentState.INITIAL.value,
        )
        return await self.save(record)

    async def save(self, record: DeploymentRecord) -> DeploymentRecord:
        """Stamp timestamps, write the record and commit.

        Raises:
            ConcurrentModificationError: if the stored version moved on
            PersistenceError: on any other database failure
        """
        now = datetime.now(timezone.utc)
        if record.created_at is None:
            record.created_at = now
        record.updated_at = now

        self.session.add(record)
        # Rollback expires the instance, so nothing below may touch its attributes
        record_id = record.id
        try:
            await self.session.flush()
            await self.session.commit()
        except StaleDataError as e:
            await self.session.rollback()
            logger.warning(f"Stale write for deployment {record_id}: {e}")
            raise ConcurrentModificationError(
                f"Deployment {record_id} was modified by another operation",
            ) from e
        except IntegrityError as e:
            await self.session.rollback()
            logger.error(f"Integrity error saving deployment {record_id}: {e.orig}")
            raise PersistenceError(f"Integrity error saving deployment: {e.orig}") from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error saving deployment {record_id}: {e}")
            raise PersistenceError(f"Database error saving deployment: {e}") from e
        return record

    async def refresh(self, record: DeploymentRecord) -> DeploymentRecord:
        """Reload a record from the database, discarding unsaved changes."""
        try:
            await self.session.refresh(record)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not reload deployment record: {e}") from e
        return record

    async def rollback(self) -> None:
        """Discard pending changes in the session."""
        try:
            await self.session.rollback()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not roll back session: {e}") from e

    async def get_by_id(self, deployment_id: str) -> Optional[DeploymentRecord]:
        """Get record by internal ID."""
        stmt = select(DeploymentRecord).where(DeploymentRecord.id == deployment_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_request_id(self, request_id: str) -> Optional[DeploymentRecord]:
        """Get record by custody request ID."""
        stmt = select(DeploymentRecord).where(DeploymentRecord.request_id == request_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_recent(
        self,
        limit: int = 50,
        offset: int = 0,
        state: Optional[DeploymentState] = None,
    ) -> list[DeploymentRecord]:
        """List records, newest first, optionally filtered by state."""
        stmt = select(DeploymentRecord)
        if state is not None:
            stmt = stmt.where(DeploymentRecord.current_state == state.value)
        stmt = (
            stmt.order_by(DeploymentRecord.created_at.desc(), DeploymentRecord.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
