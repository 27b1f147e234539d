from sqlalchemy import Column, String, DateTime, Index
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class AuditLogEntry(Base):
    """Append-only record of admin and reviewer actions."""
    __tablename__ = "audit_log"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    actor = Column(String(255), nullable=False)
    action = Column(String(100), nullable=False)
    target_type = Column(String(50), nullable=False)
    target_id = Column(String(50), nullable=True)
    before = Column("old_values", JSONType, nullable=True)
    after = Column("new_values", JSONType, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_audit_target", "target_type", "target_id"),
        Index("idx_audit_created", "created_at"),
    )
