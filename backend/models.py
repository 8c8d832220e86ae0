"""
SQLAlchemy model for persisted simulator documents
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from datetime import datetime
from database import Base

# ==================== Snapshot Storage ====================

class SnapshotRecord(Base):
    """One JSON document per storage key (printer snapshot, fleet, user settings)"""
    __tablename__ = "printer_snapshots"

    key = Column(String(255), primary_key=True, index=True)
    state = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SnapshotRecord {self.key} v{self.version}>"
