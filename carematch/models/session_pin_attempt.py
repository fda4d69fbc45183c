"""PIN attempt counter definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from carematch.database import Base

PIN_MODES = ('start', 'complete')


class SessionPinAttempt(Base):
    """Failed PIN entries for one appointment and one gate mode."""
    __tablename__ = "session_pin_attempts"
    __table_args__ = (
        UniqueConstraint('appointment_id', 'mode', name='uq_session_pin_attempts_appointment_mode'),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    mode = Column(String, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False)
    locked = Column(Boolean, nullable=False, default=False)
    locked_at = Column(DateTime, nullable=True)
