from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from breach_registry.db.base import Base


class AuditLog(Base):
    """Append-only trail of registry actions, written with raw SQL by services.audit."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String(64), nullable=True, index=True)
    user_id = Column(String(64), nullable=True)
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=True)
    entity_id = Column(String(36), nullable=True)
    meta = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
