"""PostgreSQL database connection and operations"""
from datetime import datetime, UTC
from typing import Optional, List
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.future import select
from sqlalchemy import update

from orchestrator.db.models import (Base, EventModel, BuildModel, JoinRecordModel,
                                     ID_SEQUENCES)
from shared.enums import JoinRecordStatus
from shared.models import Event, EventQuery, Build, JoinKey, JoinRecord


class PostgresDB:
    """PostgreSQL database manager"""

    def __init__(self, database_url: str):
        self.engine = create_async_engine(database_url,
                                          echo=False,
                                          pool_pre_ping=True)
        self.async_session = async_sessionmaker(self.engine,
                                                class_=AsyncSession,
                                                expire_on_commit=False)

    async def init_db(self):
        """Initialize database schema"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connections"""
        await self.engine.dispose()

    async def next_id(self, kind: str) -> int:
        """Allocate an id from the sequence of an entity kind"""
        async with self.async_session() as session:
            result = await session.execute(
                select(ID_SEQUENCES[kind].next_value()))
            return result.scalar_one()

    # Event operations
    async def save_event(self, event: Event) -> None:
        """Save or update an event"""
        async with self.async_session() as session:
            model = EventModel(
                id=event.id,
                pipeline_id=event.pipeline_id,
                group_event_id=event.group_event_id,
                parent_event_id=event.parent_event_id,
                cause_build_id=event.cause_build_id,
                sha=event.sha,
                ref=event.ref,
                status=event.status,
                processing_errors=event.processing_errors,
                created_at=event.created_at,
                updated_at=event.updated_at,
            )
            await session.merge(model)
            await session.commit()

    async def get_event(self, event_id: int) -> Optional[EventModel]:
        """Get an event by ID"""
        async with self.async_session() as session:
            result = await session.execute(
                select(EventModel).where(EventModel.id == event_id))
            return result.scalar_one_or_none()

    async def list_events(self, query: EventQuery) -> List[EventModel]:
        """List events of a pipeline, oldest first"""
        statement = select(EventModel).where(
            EventModel.pipeline_id == query.pipeline_id)
        if query.group_event_id is not None:
            statement = statement.where(
                EventModel.group_event_id == query.group_event_id)
        if query.status is not None:
            statement = statement.where(EventModel.status == query.status)

        async with self.async_session() as session:
            result = await session.execute(statement.order_by(EventModel.id))
            return list(result.scalars().all())

    # Build operations
    async def save_build(self, build: Build) -> None:
        """Save or update a build"""
        async with self.async_session() as session:
            model = BuildModel(
                id=build.id,
                pipeline_id=build.pipeline_id,
                job_id=build.job_id,
                job_name=build.job_name,
                event_id=build.event_id,
                status=build.status,
                parent_builds=[
                    p.model_dump(mode="json") for p in build.parent_builds
                ],
                created_at=build.created_at,
                updated_at=build.updated_at,
            )
            await session.merge(model)
            await session.commit()

    async def get_build(self, build_id: int) -> Optional[BuildModel]:
        """Get a build by ID"""
        async with self.async_session() as session:
            result = await session.execute(
                select(BuildModel).where(BuildModel.id == build_id))
            return result.scalar_one_or_none()

    # Join record operations
    async def get_join_record(self, key: JoinKey) -> Optional[JoinRecordModel]:
        """Get the join record of a downstream job"""
        async with self.async_session() as session:
            result = await session.execute(
                select(JoinRecordModel).where(
                    JoinRecordModel.id == key.record_id))
            return result.scalar_one_or_none()

    async def list_join_records(self) -> List[JoinRecordModel]:
        """List all join records"""
        async with self.async_session() as session:
            result = await session.execute(select(JoinRecordModel))
            return list(result.scalars().all())

    def _join_values(self, record: JoinRecord) -> dict:
        return dict(
            id=record.key.record_id,
            pipeline_id=record.key.pipeline_id,
            job_name=record.key.job_name,
            group_event_id=record.key.group_event_id,
            status=JoinRecordStatus.PENDING,
            parent_builds=[
                p.model_dump(mode="json") for p in record.parent_builds
            ],
            build_id=record.build_id,
            reason=record.reason,
            updated_at=record.updated_at,
        )

    async def save_pending_join(self, record: JoinRecord) -> bool:
        """Insert or update a pending join record.

        A record that already left the pending state is never overwritten.
        Returns False in that case.
        """
        values = self._join_values(record)
        statement = insert(JoinRecordModel).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=[JoinRecordModel.id],
            set_={
                "parent_builds": statement.excluded.parent_builds,
                "updated_at": statement.excluded.updated_at,
            },
            where=JoinRecordModel.status == JoinRecordStatus.PENDING,
        )
        async with self.async_session() as session:
            result = await session.execute(statement)
            await session.commit()
            return result.rowcount == 1

    async def claim_join(self, record: JoinRecord,
                         status: JoinRecordStatus) -> bool:
        """Move a join record from pending to status.

        Compare-and-swap: only one caller can win the transition.
        """
        values = self._join_values(record)
        async with self.async_session() as session:
            await session.execute(
                insert(JoinRecordModel).values(
                    **values).on_conflict_do_nothing(
                        index_elements=[JoinRecordModel.id]))
            result = await session.execute(
                update(JoinRecordModel).where(
                    JoinRecordModel.id == record.key.record_id,
                    JoinRecordModel.status == JoinRecordStatus.PENDING).values(
                        status=status,
                        parent_builds=values["parent_builds"],
                        build_id=record.build_id,
                        reason=record.reason,
                        updated_at=datetime.now(UTC),
                    ))
            await session.commit()
            return result.rowcount == 1

    async def release_join(self, key: JoinKey) -> None:
        """Return a fired join record to pending"""
        async with self.async_session() as session:
            await session.execute(
                update(JoinRecordModel).where(
                    JoinRecordModel.id == key.record_id,
                    JoinRecordModel.status == JoinRecordStatus.FIRED).values(
                        status=JoinRecordStatus.PENDING,
                        build_id=None,
                        updated_at=datetime.now(UTC),
                    ))
            await session.commit()

    async def set_join_build(self, key: JoinKey, build_id: int) -> None:
        """Record which build a fired join started"""
        async with self.async_session() as session:
            await session.execute(
                update(JoinRecordModel).where(
                    JoinRecordModel.id == key.record_id).values(
                        build_id=build_id, updated_at=datetime.now(UTC)))
            await session.commit()
