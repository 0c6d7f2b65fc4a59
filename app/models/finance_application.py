import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.models.types import EncryptedJSON


class FinanceApplication(Base):
    __tablename__ = "finance_applications"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'SUBMITTED', 'APPROVED', 'DENIED', 'CONDITIONAL', 'CANCELLED')",
            name="ck_finance_app_status",
        ),
        Index("ix_finance_app_proposal_lender", "proposal_id", "lender_id"),
        Index("ix_finance_app_external_id", "lender_id", "external_application_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    proposal_id = Column(UUID(as_uuid=True), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False)
    lender_id = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    external_application_id = Column(String(255), nullable=True)
    application_data = Column(EncryptedJSON(), nullable=False)
    response_data = Column(JSONB, nullable=False, default=dict, server_default="{}")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    proposal = relationship("Proposal", back_populates="finance_applications")
