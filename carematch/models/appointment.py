"""Appointment model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Time
from carematch.database import Base

APPOINTMENT_STATUSES = ('pending', 'accepted', 'rejected', 'completed', 'cancelled', 'no_show')
TERMINAL_STATUSES = ('rejected', 'completed', 'cancelled', 'no_show')
LOCATION_TYPES = ('online', 'home', 'office')
SETTLEMENT_STATUSES = ('not_required', 'pending', 'settled')


class Appointment(Base):
    """Represents a booked session between a family and an educator."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    family_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    educator_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    child_id = Column(Integer, nullable=True)

    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    location_type = Column(String, nullable=False, default='home')
    address = Column(String, nullable=True)

    status = Column(String, nullable=False, default='pending')
    price = Column(Integer, nullable=False, default=0)  # minor units
    pin_code = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    rejection_reason = Column(String, nullable=True)

    responded_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String, nullable=True)
    no_show_reported_at = Column(DateTime, nullable=True)

    refund_amount = Column(Integer, nullable=True)
    compensation_amount = Column(Integer, nullable=True)
    family_charge_amount = Column(Integer, nullable=True)

    settlement_action = Column(String, nullable=True)
    settlement_amount = Column(Integer, nullable=True)
    settlement_status = Column(String, nullable=False, default='not_required')
    invoiced_at = Column(DateTime, nullable=True)
