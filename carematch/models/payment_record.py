"""Payment ledger definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from carematch.database import Base


class PaymentRecord(Base):
    """One money movement per appointment and action."""
    __tablename__ = "payment_records"
    __table_args__ = (
        UniqueConstraint('appointment_id', 'action', name='uq_payment_records_appointment_action'),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    action = Column(String, nullable=False)  # capture / refund / no_show
    amount = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False)
