"""
ORM models for the sync-run ledger.
"""

from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy import (
    Column, String, DateTime, Date, Integer, ForeignKey, Text
)

class Base(DeclarativeBase):
    pass

class SyncRun(Base):
    __tablename__ = "sync_runs"

    id              = Column(Integer, primary_key=True, autoincrement=True)
    started_at      = Column(DateTime(timezone=True), nullable=False)
    finished_at     = Column(DateTime(timezone=True))
    window_start    = Column(Date)
    window_end      = Column(Date)
    program_stage   = Column(String(11))
    status          = Column(String(20))   # RUNNING, COMPLETED, FAILED
    entities        = Column(Integer, default=0)
    episodes        = Column(Integer, default=0)
    events_computed = Column(Integer, default=0)
    skipped_batches = Column(Integer, default=0)
    error           = Column(Text)

    pages = relationship("UploadPage", back_populates="run", cascade="all, delete-orphan")

class UploadPage(Base):
    __tablename__ = "upload_pages"

    id          = Column(Integer, primary_key=True, autoincrement=True)
    run_id      = Column(Integer, ForeignKey("sync_runs.id"), nullable=False)
    page        = Column(Integer, nullable=False)
    events      = Column(Integer, default=0)
    imported    = Column(Integer, default=0)
    updated     = Column(Integer, default=0)
    ignored     = Column(Integer, default=0)
    deleted     = Column(Integer, default=0)
    conflicts   = Column(Text)
    error       = Column(Text)
    uploaded_at = Column(DateTime(timezone=True))

    run = relationship("SyncRun", back_populates="pages")
