from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carematch.auth.dependencies import get_current_user
from carematch.database import SessionLocal, ensure_appointment_schema
from carematch.models.appointment import LOCATION_TYPES, Appointment
from carematch.models.user import User
from carematch.services import calendar_export, countdown, temporal_policy
from carematch.services.countdown import CountdownSnapshot
from carematch.services.errors import ActionResult, LifecycleError
from carematch.services.registry import AppointmentRegistry
from carematch.services.session_gate import SessionGate
from carematch.services.temporal_policy import PolicySnapshot

router = APIRouter(tags=['appointments'])

MAX_APPOINTMENT_NOTES_LENGTH = 600
DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class CreateAppointmentRequest(BaseModel):
    educator_id: int
    date: date
    start_time: time
    end_time: time
    price: int
    location_type: str = 'home'
    child_id: int | None = None
    address: str | None = None
    notes: str | None = None

    @field_validator('location_type')
    @classmethod
    def validate_location_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in LOCATION_TYPES:
            raise ValueError('Invalid location type.')
        return normalized

    @field_validator('price')
    @classmethod
    def validate_price(cls, value: int) -> int:
        if value < 0:
            raise ValueError('Price must not be negative.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class RespondRequest(BaseModel):
    decision: str
    reason: str | None = None

    @field_validator('decision')
    @classmethod
    def validate_decision(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {'accept', 'reject'}:
            raise ValueError("Decision must be 'accept' or 'reject'.")
        return normalized


class PinRequest(BaseModel):
    pin: str

    @field_validator('pin')
    @classmethod
    def validate_pin(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('PIN is required.')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    family_id: int
    educator_id: int
    child_id: int | None = None
    date: date
    start_time: time
    end_time: time
    location_type: str
    address: str | None = None
    status: str
    price: int
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    refund_amount: int | None = None
    compensation_amount: int | None = None
    family_charge_amount: int | None = None
    settlement_status: str
    notes: str | None = None
    rejection_reason: str | None = None

    class Config:
        from_attributes = True


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def to_response(result: ActionResult) -> JSONResponse:
    return JSONResponse(
        status_code=result.http_status,
        content=result.model_dump(mode='json', exclude={'http_status'}),
    )


def load_visible_appointment(appointment_id: int, current_user: User, db: Session) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        )

    if current_user.role != 'admin' and current_user.id not in {appointment.family_id, appointment.educator_id}:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only the family or the educator of this appointment can view it.',
        )

    return appointment


def require_admin(current_user: User) -> None:
    if current_user.role != 'admin':
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only support staff can perform this action.',
        )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if current_user.role != 'family':
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only families can request appointments.',
        )

    ensure_database_ready()

    try:
        appointment = AppointmentRegistry(db).create_appointment(
            family_id=current_user.id,
            educator_id=data.educator_id,
            appointment_date=data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            price=data.price,
            location_type=data.location_type,
            child_id=data.child_id,
            address=data.address,
            notes=data.notes,
        )
        return appointment
    except LifecycleError as exc:
        raise HTTPException(status_code=exc.http_status, detail=exc.message) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return load_visible_appointment(appointment_id, current_user, db)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{appointment_id}/respond')
def respond_to_appointment(
    appointment_id: int,
    data: RespondRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        result = AppointmentRegistry(db).respond_to_appointment(
            appointment_id,
            data.decision,
            actor_id=current_user.id,
            reason=data.reason,
        )
        return to_response(result)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{appointment_id}/start')
def start_session(
    appointment_id: int,
    data: PinRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        result = SessionGate(db).start_session(appointment_id, data.pin, actor_id=current_user.id)
        return to_response(result)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{appointment_id}/complete')
def complete_session(
    appointment_id: int,
    data: PinRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        result = SessionGate(db).complete_session(appointment_id, data.pin, actor_id=current_user.id)
        return to_response(result)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{appointment_id}/cancel')
def cancel_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        result = AppointmentRegistry(db).cancel_appointment(appointment_id, actor_id=current_user.id)
        return to_response(result)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{appointment_id}/no-show')
def report_no_show(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        result = AppointmentRegistry(db).report_no_show(appointment_id, actor_id=current_user.id)
        return to_response(result)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/{appointment_id}/policy', response_model=PolicySnapshot)
def get_appointment_policy(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        appointment = load_visible_appointment(appointment_id, current_user, db)
        return temporal_policy.evaluate(appointment, temporal_policy.local_now())
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/{appointment_id}/countdown', response_model=CountdownSnapshot)
def get_session_countdown(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        appointment = load_visible_appointment(appointment_id, current_user, db)
        return countdown.countdown_for(appointment, temporal_policy.local_now())
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/{appointment_id}/calendar.ics')
def download_calendar_event(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        appointment = load_visible_appointment(appointment_id, current_user, db)
        educator = db.get(User, appointment.educator_id)
        event = calendar_export.build_calendar_event(
            appointment,
            educator_name=educator.full_name if educator else None,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    return Response(
        content=calendar_export.render_ics(event),
        media_type='text/calendar; charset=utf-8',
        headers={'Content-Disposition': f'attachment; filename="appointment-{appointment.id}.ics"'},
    )


@router.post('/{appointment_id}/settlement/retry')
def retry_settlement(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_admin(current_user)
    ensure_database_ready()

    try:
        result = SessionGate(db).retry_settlement(appointment_id)
        return to_response(result)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{appointment_id}/pin-attempts/{mode}/unlock')
def unlock_pin_attempts(
    appointment_id: int,
    mode: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        result = SessionGate(db).unlock_pin_attempts(appointment_id, mode, actor_role=current_user.role)
        return to_response(result)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc
