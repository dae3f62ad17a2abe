import asyncio
import logging

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import Base, engine, ensure_appointment_schema, ensure_doctor_schema
from backend.lifecycle import AppServices
from backend.models import admin, appointment, chat, doctor, patient, report, specialization  # noqa: F401
from backend.routes import (
    appointment_routes,
    chat_routes,
    notification_routes,
    report_routes,
    specialization_routes,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='MediCare+ API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_doctor_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


def start_services(loop: asyncio.AbstractEventLoop) -> AppServices:
    config.validate_runtime_config()
    initialize_database()
    services = AppServices()
    services.start(loop)
    return services


@app.on_event('startup')
async def startup() -> None:
    # Blocking setup stays off the event loop.
    app.state.services = await run_in_threadpool(start_services, asyncio.get_running_loop())


@app.on_event('shutdown')
def shutdown() -> None:
    services = getattr(app.state, 'services', None)
    if services is not None:
        services.shutdown()


@app.get('/')
def root():
    return {'status': 'MediCare+ API Running'}


app.include_router(specialization_routes.router, prefix='/specializations')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(report_routes.router, prefix='/reports')
app.include_router(chat_routes.router, prefix='/chat')
app.include_router(notification_routes.router, prefix='/notifications')
