import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class Proposal(Base):
    """HVAC sales proposal. Authored elsewhere; read here for customer and system data."""

    __tablename__ = "proposals"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(50), nullable=False, default="DRAFT")
    customer_data = Column(JSONB, nullable=False, default=dict, server_default="{}")
    home_data = Column(JSONB, nullable=False, default=dict, server_default="{}")
    selected_equipment = Column(JSONB, nullable=False, default=dict, server_default="{}")
    payment_method = Column(JSONB, nullable=True)
    financing_option = Column(JSONB, nullable=True)
    totals = Column(JSONB, nullable=False, default=dict, server_default="{}")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    finance_applications = relationship(
        "FinanceApplication",
        back_populates="proposal",
        order_by="FinanceApplication.created_at.desc()",
    )
