import logging
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from backend.auth.accounts import Account, AccountRole
from backend.auth.dependencies import require_role, resolve_token
from backend.core.errors import DownstreamUnavailable
from backend.database import get_db
from backend.lifecycle import AppServices, get_services
from backend.models.appointment import Appointment, AppointmentStatus
from backend.services.notification_hub import patient_room

router = APIRouter(tags=['notifications'])

logger = logging.getLogger(__name__)


class ReminderRunResponse(BaseModel):
    success: bool = True
    message: str
    total_found: int


def find_due_reminders(db: Session, today: date) -> list[Appointment]:
    tomorrow = today + timedelta(days=1)
    return db.query(Appointment).options(joinedload(Appointment.doctor)).filter(
        Appointment.date == tomorrow,
        Appointment.status == AppointmentStatus.CONFIRMED,
        Appointment.reminder_sent.is_(False),
    ).order_by(Appointment.time.asc()).all()


@router.post('/reminders', response_model=ReminderRunResponse)
def send_reminders(
    account: Account = Depends(require_role(AccountRole.ADMIN)),
    db: Session = Depends(get_db),
    services: AppServices = Depends(get_services),
):
    try:
        appointments = find_due_reminders(db, datetime.now().date())
        logger.info('Found %d appointments to remind.', len(appointments))

        for appointment in appointments:
            services.hub.publish(
                patient_room(appointment.patient_id),
                'appointment_reminder',
                {
                    'appointment_id': appointment.id,
                    'doctor_name': appointment.doctor.name if appointment.doctor else None,
                    'date': appointment.date,
                    'time': appointment.time,
                },
            )
            appointment.reminder_sent = True

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise DownstreamUnavailable() from exc

    return ReminderRunResponse(
        message=f'Sent {len(appointments)} reminders',
        total_found=len(appointments),
    )


def authenticate_socket(session_factory, token: str) -> Account:
    # Closed before the socket joins a room.
    db = session_factory()
    try:
        return resolve_token(token, db)
    finally:
        db.close()


@router.websocket('/ws')
async def notifications_socket(websocket: WebSocket, token: str = Query(...)):
    services = websocket.app.state.services
    try:
        account = await run_in_threadpool(authenticate_socket, services.session_factory, token)
    except HTTPException:
        await websocket.close(code=1008)
        return

    hub = services.hub
    await hub.connect(account.room, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(account.room, websocket)
