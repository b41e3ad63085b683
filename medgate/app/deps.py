"""Dependency injection utilities."""
from collections.abc import Generator
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlmodel import Session

from .domain.models import Appointment
from .domain.policy import Identity, ResourceRef
from .services.core import HospitalCore
from .services.guard import GuardResult
from .services.scheduler import SchedulingResult


def db_session(request: Request) -> Generator[Session, None, None]:
    """Provide a scoped DB session to FastAPI endpoints."""
    with request.app.state.session_factory() as session:
        yield session


def get_core(request: Request) -> HospitalCore:
    return request.app.state.core


def current_identity(
    x_subject_id: Optional[str] = Header(None),
    x_role: Optional[str] = Header(None),
    x_scope: Optional[str] = Header(None),
) -> Identity:
    """Build the caller's identity from headers set by the authenticating gateway."""
    if not x_subject_id or not x_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing identity headers",
        )
    scope = frozenset(part.strip() for part in (x_scope or "").split(",") if part.strip())
    return Identity(subject_id=x_subject_id, role=x_role, scope_refs=scope)


def enforce(result: GuardResult) -> Optional[ResourceRef]:
    if not result.ok:
        raise HTTPException(status_code=result.error.status_code, detail=result.error.reason)
    return result.value


def unwrap(result: SchedulingResult) -> Appointment:
    if not result.ok:
        error = result.error
        raise HTTPException(
            status_code=error.status_code,
            detail={
                "kind": error.kind.value,
                "message": error.message,
                "conflicting_id": error.conflicting_id,
            },
        )
    return result.value

