"""
MedGate: authorization and appointment-scheduling core for a hospital
back-office API.

Every action is decided by a default-deny role policy before it runs, and
appointments are allocated per doctor without overlaps even when requests
race. Decisions and scheduling outcomes are kept in a hash-chained log.
"""

__all__ = [
    "Action",
    "AppointmentScheduler",
    "AuditLog",
    "HospitalCore",
    "Identity",
    "Interval",
    "PolicyEngine",
    "ResourceGuard",
    "evaluate",
]

from .app.domain.models import Interval
from .app.domain.policy import Action, Identity, PolicyEngine, evaluate
from .app.services.audit import AuditLog
from .app.services.core import HospitalCore
from .app.services.guard import ResourceGuard
from .app.services.scheduler import AppointmentScheduler

__version__ = "0.1.0"
