"""Role-based policy rules and the pure evaluator over them."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Tuple


class Role(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    NURSE = "nurse"
    RECEPTIONIST = "receptionist"
    PATIENT = "patient"


class Verb(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class ResourceType(str, Enum):
    USER = "user"
    PATIENT = "patient"
    DOCTOR = "doctor"
    APPOINTMENT = "appointment"
    MEDICAL_RECORD = "medical_record"
    PRESCRIPTION = "prescription"
    DECISION_LOG = "decision_log"


@dataclass(frozen=True)
class Identity:
    """Authenticated principal, built once per request by the caller."""

    subject_id: str
    role: Optional[str]
    scope_refs: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ResourceRef:
    """Owner-identifying fields of a resource; everything the predicates see."""

    resource_type: ResourceType
    resource_id: Optional[str] = None
    patient_id: Optional[str] = None
    doctor_id: Optional[str] = None
    user_id: Optional[str] = None
    ward: Optional[str] = None


@dataclass(frozen=True)
class Action:
    """Intent of a call.

    ``owner_refs`` describes the resource a CREATE would produce; other verbs
    address an existing resource through ``resource_id``.
    """

    verb: Verb
    resource_type: ResourceType
    resource_id: Optional[str] = None
    owner_refs: Optional[ResourceRef] = None


Predicate = Callable[[Identity, Optional[ResourceRef]], bool]


def always(identity: Identity, resource: Optional[ResourceRef]) -> bool:
    return True


def owns_as_patient(identity: Identity, resource: Optional[ResourceRef]) -> bool:
    return resource is not None and resource.patient_id == identity.subject_id


def assigned_doctor(identity: Identity, resource: Optional[ResourceRef]) -> bool:
    return resource is not None and resource.doctor_id == identity.subject_id


def is_self(identity: Identity, resource: Optional[ResourceRef]) -> bool:
    return resource is not None and resource.user_id == identity.subject_id


def in_ward_scope(identity: Identity, resource: Optional[ResourceRef]) -> bool:
    return (
        resource is not None
        and resource.ward is not None
        and resource.ward in identity.scope_refs
    )


@dataclass(frozen=True)
class PolicyRule:
    role: Role
    resource_type: ResourceType
    verb: Verb
    predicate: Predicate = always

    @property
    def unconditional(self) -> bool:
        return self.predicate is always


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    @classmethod
    def allow(cls, reason: str = "allowed") -> "Decision":
        return cls(True, reason)

    @classmethod
    def deny(cls, reason: str) -> "Decision":
        return cls(False, reason)


UNRECOGNIZED_ROLE = "unrecognized role"
NO_MATCHING_RULE = "no matching rule"
PREDICATE_FAILED = "ownership predicate failed"


def coerce_role(value: object) -> Optional[Role]:
    """Return the ``Role`` for ``value`` or ``None`` when it is not one."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def _grant(
    role: Role,
    resource_type: ResourceType,
    verbs: Iterable[Verb],
    predicate: Predicate = always,
) -> list[PolicyRule]:
    return [PolicyRule(role, resource_type, verb, predicate) for verb in verbs]


def _default_rules() -> Tuple[PolicyRule, ...]:
    R, C, U = Verb.READ, Verb.CREATE, Verb.UPDATE
    rules: list[PolicyRule] = []

    # superuser
    for resource_type in ResourceType:
        rules += _grant(Role.ADMIN, resource_type, Verb)

    rules += _grant(Role.DOCTOR, ResourceType.PATIENT, [R])
    rules += _grant(Role.DOCTOR, ResourceType.DOCTOR, [R])
    rules += _grant(Role.DOCTOR, ResourceType.DOCTOR, [U], is_self)
    rules += _grant(Role.DOCTOR, ResourceType.APPOINTMENT, [R, U], assigned_doctor)
    rules += _grant(Role.DOCTOR, ResourceType.MEDICAL_RECORD, [C, R])
    rules += _grant(Role.DOCTOR, ResourceType.MEDICAL_RECORD, [U], assigned_doctor)
    rules += _grant(Role.DOCTOR, ResourceType.PRESCRIPTION, [C, R])
    rules += _grant(Role.DOCTOR, ResourceType.PRESCRIPTION, [U], assigned_doctor)

    rules += _grant(Role.NURSE, ResourceType.PATIENT, [R, U], in_ward_scope)
    rules += _grant(Role.NURSE, ResourceType.MEDICAL_RECORD, [R], in_ward_scope)
    rules += _grant(Role.NURSE, ResourceType.PRESCRIPTION, [R], in_ward_scope)
    rules += _grant(Role.NURSE, ResourceType.APPOINTMENT, [R])
    rules += _grant(Role.NURSE, ResourceType.DOCTOR, [R])

    rules += _grant(Role.RECEPTIONIST, ResourceType.PATIENT, [C, R, U])
    rules += _grant(Role.RECEPTIONIST, ResourceType.APPOINTMENT, [C, R, U])
    rules += _grant(Role.RECEPTIONIST, ResourceType.DOCTOR, [R])

    # no DELETE anywhere; cancelling an own appointment is an UPDATE
    rules += _grant(Role.PATIENT, ResourceType.PATIENT, [R, U], owns_as_patient)
    rules += _grant(Role.PATIENT, ResourceType.APPOINTMENT, [C, R, U], owns_as_patient)
    rules += _grant(Role.PATIENT, ResourceType.MEDICAL_RECORD, [R], owns_as_patient)
    rules += _grant(Role.PATIENT, ResourceType.PRESCRIPTION, [R], owns_as_patient)
    rules += _grant(Role.PATIENT, ResourceType.DOCTOR, [R])

    for role in (Role.DOCTOR, Role.NURSE, Role.RECEPTIONIST, Role.PATIENT):
        rules += _grant(role, ResourceType.USER, [R], is_self)

    return tuple(rules)


DEFAULT_RULES: Tuple[PolicyRule, ...] = _default_rules()


class PolicyEngine:
    """Default-deny evaluator over a static, ordered rule set."""

    def __init__(self, rules: Iterable[PolicyRule] = DEFAULT_RULES) -> None:
        index: Dict[Tuple[Role, ResourceType, Verb], list[PolicyRule]] = {}
        for rule in rules:
            index.setdefault((rule.role, rule.resource_type, rule.verb), []).append(rule)
        self._index = {key: tuple(value) for key, value in index.items()}

    def rules_for(self, role: Optional[Role], action: Action) -> Tuple[PolicyRule, ...]:
        if role is None:
            return ()
        return self._index.get((role, action.resource_type, action.verb), ())

    def evaluate(
        self,
        identity: Identity,
        action: Action,
        resource: Optional[ResourceRef] = None,
    ) -> Decision:
        role = coerce_role(identity.role)
        if role is None:
            return Decision.deny(UNRECOGNIZED_ROLE)

        rules = self.rules_for(role, action)
        if not rules:
            return Decision.deny(NO_MATCHING_RULE)

        for rule in rules:
            if rule.predicate(identity, resource):
                return Decision.allow(f"{role.value} may {action.verb.value} {action.resource_type.value}")
        return Decision.deny(PREDICATE_FAILED)


default_engine = PolicyEngine()


def evaluate(
    identity: Identity,
    action: Action,
    resource: Optional[ResourceRef] = None,
) -> Decision:
    return default_engine.evaluate(identity, action, resource)
