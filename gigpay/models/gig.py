"""Gig and gig application models."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_values


class GigStatus(str, PyEnum):
    OPEN = "open"
    REVIEWING = "reviewing"
    IN_PROGRESS = "in-progress"
    FUNDED = "funded"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ApplicationStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    FUNDED = "funded"
    COMPLETED = "completed"


class RateStatus(str, PyEnum):
    PROPOSED = "proposed"
    COUNTERED = "countered"
    AGREED = "agreed"


class RateParty(str, PyEnum):
    WORKER = "worker"
    EMPLOYER = "employer"


class ApplicationPaymentStatus(str, PyEnum):
    UNPAID = "unpaid"
    IN_ESCROW = "in_escrow"
    PAID = "paid"


# Applications holding the gig; at most one per gig.
HOLDING_STATUSES = (
    ApplicationStatus.ACCEPTED,
    ApplicationStatus.FUNDED,
    ApplicationStatus.COMPLETED,
)


class Gig(Base):
    """A short-term job posted by an employer."""

    __tablename__ = "gigs"
    __table_args__ = (
        CheckConstraint("budget > 0", name="ck_gig_budget_positive"),
        Index("ix_gigs_status", "status"),
    )

    employer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    budget: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[GigStatus] = mapped_column(
        SqlEnum(GigStatus, values_callable=enum_values, name="gigstatus"),
        default=GigStatus.OPEN,
        nullable=False,
    )
    max_applicants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assigned_worker_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    applications = relationship("GigApplication", back_populates="gig", order_by="GigApplication.id")


class GigApplication(Base):
    """A worker's application to a gig, including the rate negotiation."""

    __tablename__ = "gig_applications"
    __table_args__ = (
        CheckConstraint("proposed_rate > 0", name="ck_application_proposed_rate_positive"),
        Index("ix_gig_applications_gig_status", "gig_id", "status"),
        Index("ix_gig_applications_auto_release", "status", "completion_auto_release_at"),
    )

    gig_id: Mapped[int] = mapped_column(ForeignKey("gigs.id"), nullable=False, index=True)
    applicant_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ApplicationStatus] = mapped_column(
        SqlEnum(ApplicationStatus, values_callable=enum_values, name="applicationstatus"),
        default=ApplicationStatus.PENDING,
        nullable=False,
    )

    proposed_rate: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    agreed_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    rate_status: Mapped[RateStatus] = mapped_column(
        SqlEnum(RateStatus, values_callable=enum_values, name="ratestatus"),
        default=RateStatus.PROPOSED,
        nullable=False,
    )
    last_rate_update_by: Mapped[RateParty | None] = mapped_column(
        SqlEnum(RateParty, values_callable=enum_values, name="rateparty"), nullable=True
    )
    last_rate_update_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    last_rate_update_note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    last_rate_update_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    payment_status: Mapped[ApplicationPaymentStatus] = mapped_column(
        SqlEnum(ApplicationPaymentStatus, values_callable=enum_values, name="applicationpaymentstatus"),
        default=ApplicationPaymentStatus.UNPAID,
        nullable=False,
    )

    completion_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_requested_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    completion_auto_release_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    gig = relationship("Gig", back_populates="applications")

    @property
    def payable_rate(self) -> Decimal:
        """Amount the employer pays: the agreed rate once negotiated, else the proposal."""

        if self.agreed_rate is not None:
            return self.agreed_rate
        return self.proposed_rate
