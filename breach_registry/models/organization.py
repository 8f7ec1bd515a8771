from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, text

from breach_registry.db.base import Base


class Organization(Base):
    """
    Tenant row owned by the surrounding application.

    The registry only reads `name` (for public verification) and advances
    `last_incident_internal_id`, the per-organization counter behind the
    human-readable incident number ("#42"). The counter only ever moves
    forward, so numbers of deleted incidents are never handed out again.
    """

    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=True, unique=True, index=True)

    last_incident_internal_id = Column(
        Integer, nullable=False, default=0, server_default=text("0")
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Organization id={self.id!r} name={self.name!r}>"
