from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.orm import relationship

from app.db.base import Base


REQUEST_STATUSES = ("pending", "approved", "rejected")


class AssignmentRequest(Base):
    __tablename__ = "assignment_requests"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_assignment_request_status",
        ),
        # At most one pending request per (loan, officer).
        Index(
            "uq_assignment_requests_pending_pair",
            "loan_id",
            "requested_by_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    loan_id = Column(
        Integer,
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requested_by_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default="pending", server_default="pending")
    handled_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    handled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("LoanApplication", back_populates="assignment_requests", lazy="raise")
    requested_by = relationship("User", foreign_keys=[requested_by_id], lazy="raise")
