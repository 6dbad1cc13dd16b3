from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    false,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


LOAN_STATUSES = ("pending", "in_progress", "approved", "rejected", "cancelled")
TERMINAL_STATUSES = ("approved", "rejected", "cancelled")
OPEN_STATUSES = ("pending", "in_progress")


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'approved', 'rejected', 'cancelled')",
            name="ck_loan_app_status",
        ),
        Index("ix_loan_applications_status_assignee", "status", "assigned_to_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    wp_entry_id = Column(String(64), nullable=False, unique=True, index=True)
    first_name = Column(String(255), nullable=False, default="Unknown")
    last_name = Column(String(255), nullable=False, default="Unknown")
    email = Column(String(255), nullable=False, default="")
    mobile = Column(String(64), nullable=False, default="", index=True)
    branch = Column(String(255), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", server_default="pending", index=True)
    assigned_to_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=True)
    verification_status = Column(Boolean, nullable=False, default=False, server_default=false())
    # Raw external form entry, kept verbatim; keys are the form's numeric field ids.
    details = Column(JSON, nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    assigned_to = relationship("User", foreign_keys=[assigned_to_id], lazy="raise")
    assignment_requests = relationship(
        "AssignmentRequest",
        back_populates="loan",
        cascade="all, delete-orphan",
        lazy="raise",
    )
