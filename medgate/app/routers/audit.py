"""Audit routes."""
from datetime import datetime
from itertools import islice
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..deps import current_identity, enforce, get_core
from ..domain.models import DecisionCategory, DecisionRecordRead, Outcome
from ..domain.policy import Action, Identity, ResourceType, Verb
from ..domain.schemas import AuditHealthOut
from ..services.audit import AuditFilter
from ..services.core import HospitalCore

router = APIRouter()

READ_LOG = Action(Verb.READ, ResourceType.DECISION_LOG)


@router.get("/decisions", response_model=List[DecisionRecordRead])
def decisions(
    subject_id: Optional[str] = Query(None),
    outcome: Optional[Outcome] = Query(None),
    category: Optional[DecisionCategory] = Query(None),
    resource_type: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
):
    """Decision records in timestamp order, oldest first."""
    enforce(core.authorize(identity, READ_LOG))
    flt = AuditFilter(
        subject_id=subject_id,
        outcome=outcome,
        category=category,
        resource_type=resource_type,
        since=since,
        until=until,
    )
    return list(islice(core.decisions(flt), limit))


@router.get("/health", response_model=AuditHealthOut)
def audit_health(
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
):
    enforce(core.authorize(identity, READ_LOG))
    report = core.audit.verify()
    return AuditHealthOut(
        dropped=core.audit.dropped,
        chain_ok=report.ok,
        checked=report.checked,
        problems=report.problems,
    )
