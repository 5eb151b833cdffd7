"""
Activity Record Database Model.

Append-only log of every group mutation. Ordering is the insertion order
(the primary key), not the timestamp, since timestamps may collide.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from backend.app.db.session import Base


class ActivityRecord(Base):
    """
    Activity log entry.

    Records are never updated or deleted.
    """
    __tablename__ = "activity_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)

    # What was done, and by whom (None for system actions)
    action = Column(String(100), nullable=False, index=True)
    actor_id = Column(Integer, index=True, nullable=True)

    # Structured context (JSON for flexibility)
    details = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ActivityRecord(id={self.id}, group={self.group_id}, action='{self.action}')>"
