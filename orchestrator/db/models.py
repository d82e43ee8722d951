"""SQLAlchemy ORM models for persistent storage"""
from sqlalchemy import (Column, String, DateTime, JSON, Integer, Sequence,
                        Enum as SQLEnum)
from sqlalchemy.orm import declarative_base
from shared.enums import BuildStatus, EventStatus, JoinRecordStatus

Base = declarative_base()

# Shared by every orchestrator process writing to the database
ID_SEQUENCES = {
    "event": Sequence("events_id_seq"),
    "build": Sequence("builds_id_seq"),
}


class EventModel(Base):
    """Persistent event storage"""
    __tablename__ = "events"

    id = Column(Integer, ID_SEQUENCES["event"], primary_key=True)
    pipeline_id = Column(Integer, nullable=False, index=True)
    group_event_id = Column(Integer, nullable=False, index=True)
    parent_event_id = Column(Integer, nullable=True)
    cause_build_id = Column(Integer, nullable=True)
    sha = Column(String, nullable=False, default="")
    ref = Column(String, nullable=False, default="")
    status = Column(SQLEnum(EventStatus), nullable=False)
    processing_errors = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class BuildModel(Base):
    """Persistent build storage"""
    __tablename__ = "builds"

    id = Column(Integer, ID_SEQUENCES["build"], primary_key=True)
    pipeline_id = Column(Integer, nullable=False, index=True)
    job_id = Column(Integer, nullable=False, index=True)
    job_name = Column(String, nullable=False)
    event_id = Column(Integer, nullable=False, index=True)
    status = Column(SQLEnum(BuildStatus), nullable=False)
    parent_builds = Column(JSON, default=list)  # List of ParentBuild dicts
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class JoinRecordModel(Base):
    """Parent reports of a downstream job that has not started"""
    __tablename__ = "join_records"

    id = Column(String, primary_key=True)  # pipeline_id:job_name:group_event_id
    pipeline_id = Column(Integer, nullable=False)
    job_name = Column(String, nullable=False)
    group_event_id = Column(Integer, nullable=False, index=True)
    status = Column(SQLEnum(JoinRecordStatus), nullable=False)
    parent_builds = Column(JSON, default=list)
    build_id = Column(Integer, nullable=True)
    reason = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
