# backend/medipublish/models/audit.py

from sqlalchemy import JSON, Column, String, TIMESTAMP

from medipublish.database import Base, BigIntId


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(BigIntId, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    activity = Column(String(64), nullable=False)
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
