from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base


class Org(Base):
    """Installer company; the tenant boundary for proposals and finance data."""

    __tablename__ = "orgs"

    id = Column(String, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    status = Column(String(50), nullable=False, default="ACTIVE")
    notification_email = Column(String(255), nullable=True)
    lender_settings = Column(JSONB, nullable=False, default=dict, server_default="{}")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
