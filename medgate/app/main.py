"""FastAPI application bootstrap for MedGate."""
from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from . import config
from .domain.results import SchedulingTimeout
from .infra.db import build_engine, init_db, session_factory
from .infra.repository import SqlAppointmentRepository
from .routers import appointments, audit, clinical
from .services.audit import AuditLog, SqlAuditSink
from .services.core import HospitalCore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db(app.state.engine)
    yield
    app.state.core.audit.close()


def create_app(bind_engine: Optional[Engine] = None) -> FastAPI:
    app = FastAPI(title=config.API_TITLE, version=config.API_VERSION, lifespan=lifespan)

    engine = bind_engine or build_engine(config.DATABASE_URL)
    sessions = session_factory(engine)
    app.state.engine = engine
    app.state.session_factory = sessions
    app.state.core = HospitalCore(
        repository=SqlAppointmentRepository(sessions),
        audit=AuditLog(SqlAuditSink(sessions)),
        lock_timeout=config.SCHEDULER_LOCK_TIMEOUT,
    )

    @app.exception_handler(SchedulingTimeout)
    async def scheduling_timeout_handler(request: Request, exc: SchedulingTimeout):
        logger.warning("%s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={"detail": {"kind": "timeout", "message": str(exc)}},
            headers={"Retry-After": "1"},
        )

    app.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
    app.include_router(clinical.router, tags=["clinical"])  # /patients, /records, /prescriptions
    app.include_router(audit.router, prefix="/audit", tags=["audit"])

    return app


app = create_app()
