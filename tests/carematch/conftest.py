import os
from datetime import date, datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from carematch.database import Base  # noqa: E402
from carematch.models.appointment import Appointment  # noqa: E402
from carematch.models.payment_record import PaymentRecord  # noqa: E402
from carematch.models.session_pin_attempt import SessionPinAttempt  # noqa: E402
from carematch.models.user import User  # noqa: E402
from carematch.services.errors import ExternalServiceError  # noqa: E402

APPOINTMENT_DATE = date(2026, 3, 10)
TABLES = [User.__table__, Appointment.__table__, SessionPinAttempt.__table__, PaymentRecord.__table__]


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event, appointment, **payload):
        self.events.append((event, appointment.id, payload))

    def names(self):
        return [event for event, _, _ in self.events]


class FailingPayments:
    def __init__(self):
        self.calls = 0

    def capture(self, amount, appointment_id, action='capture'):
        self.calls += 1
        raise ExternalServiceError('Card declined.', appointment_id=appointment_id)

    def refund(self, amount, appointment_id):
        self.calls += 1
        raise ExternalServiceError('Refund rejected.', appointment_id=appointment_id)


class RecordingInvoices:
    def __init__(self):
        self.generated = []

    def generate(self, appointment):
        self.generated.append(appointment.id)


class FailingInvoices:
    def __init__(self):
        self.calls = 0

    def generate(self, appointment):
        self.calls += 1
        raise ExternalServiceError('Invoice service unavailable.', appointment_id=appointment.id)


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so that separate sessions see each other's commits.
    engine = create_engine(f'sqlite:///{tmp_path / "lifecycle.db"}')
    Base.metadata.create_all(bind=engine, tables=TABLES)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    family = User(email='family@example.com', full_name='Camille Martin', role='family')
    educator = User(email='educator@example.com', full_name='Alex Durand', role='educator')
    stranger = User(email='stranger@example.com', full_name='Sam Petit', role='family')
    admin = User(email='support@example.com', full_name='Support', role='admin')
    db.add_all([family, educator, stranger, admin])
    db.commit()
    return {'family': family, 'educator': educator, 'stranger': stranger, 'admin': admin}


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_appointment(db, users):
    def _make(
        status='accepted',
        start=time(14, 0),
        end=time(15, 0),
        price=10000,
        pin_code='4826',
        started_at=None,
        location_type='home',
        appointment_date=APPOINTMENT_DATE,
    ):
        appointment = Appointment(
            family_id=users['family'].id,
            educator_id=users['educator'].id,
            date=appointment_date,
            start_time=start,
            end_time=end,
            price=price,
            status=status,
            pin_code=pin_code if status != 'pending' else None,
            started_at=started_at,
            location_type=location_type,
            settlement_status='not_required',
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make
