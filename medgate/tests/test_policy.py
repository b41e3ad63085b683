"""
Table-driven tests for the default-deny policy engine.
"""

import itertools

import pytest

from medgate.app.domain.policy import (
    DEFAULT_RULES,
    NO_MATCHING_RULE,
    PREDICATE_FAILED,
    UNRECOGNIZED_ROLE,
    Action,
    Identity,
    PolicyEngine,
    PolicyRule,
    ResourceRef,
    ResourceType,
    Role,
    Verb,
    always,
    coerce_role,
    evaluate,
)


def _owned_by(subject_id: str, resource_type: ResourceType) -> ResourceRef:
    """A resource every predicate would accept for ``subject_id``."""
    return ResourceRef(
        resource_type,
        resource_id="r-1",
        patient_id=subject_id,
        doctor_id=subject_id,
        user_id=subject_id,
        ward="ward-a",
    )


ALL_COMBOS = list(itertools.product(Role, ResourceType, Verb))
UNCOVERED = [
    (role, resource_type, verb)
    for role, resource_type, verb in ALL_COMBOS
    if not PolicyEngine().rules_for(role, Action(verb, resource_type, resource_id="r-1"))
]


# ── Default deny ─────────────────────────────────────────────────────

@pytest.mark.parametrize("role,resource_type,verb", UNCOVERED)
def test_uncovered_combination_is_denied(role, resource_type, verb):
    engine = PolicyEngine()
    action = Action(verb, resource_type, resource_id="r-1")

    identity = Identity("u-1", role.value, frozenset({"ward-a"}))
    decision = engine.evaluate(identity, action, _owned_by("u-1", resource_type))

    assert not decision.allowed
    assert decision.reason == NO_MATCHING_RULE


def test_empty_rule_set_denies_everything():
    engine = PolicyEngine(rules=[])
    for role, resource_type, verb in ALL_COMBOS:
        decision = engine.evaluate(Identity("u-1", role.value), Action(verb, resource_type))
        assert not decision.allowed


@pytest.mark.parametrize("role", [None, "", "janitor", 42])
def test_unrecognized_role_is_denied(role):
    decision = evaluate(Identity("u-1", role), Action(Verb.READ, ResourceType.DOCTOR))
    assert not decision.allowed
    assert decision.reason == UNRECOGNIZED_ROLE


def test_role_strings_are_case_insensitive():
    assert coerce_role("PATIENT") is Role.PATIENT
    assert coerce_role(" Doctor ") is Role.DOCTOR
    assert coerce_role(Role.NURSE) is Role.NURSE


# ── Admin ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("resource_type,verb", list(itertools.product(ResourceType, Verb)))
def test_admin_is_allowed_everything(resource_type, verb):
    decision = evaluate(Identity("admin-1", "admin"), Action(verb, resource_type, "r-9"))
    assert decision.allowed


# ── Patient ──────────────────────────────────────────────────────────

def test_patient_reads_only_own_medical_record():
    patient = Identity("pat-1", "patient")
    action = Action(Verb.READ, ResourceType.MEDICAL_RECORD, resource_id="rec-1")

    own = ResourceRef(ResourceType.MEDICAL_RECORD, "rec-1", patient_id="pat-1", doctor_id="doc-1")
    other = ResourceRef(ResourceType.MEDICAL_RECORD, "rec-1", patient_id="pat-2", doctor_id="pat-1")

    assert evaluate(patient, action, own).allowed
    denied = evaluate(patient, action, other)
    assert not denied.allowed
    assert denied.reason == PREDICATE_FAILED


def test_patient_without_resource_is_denied_by_predicate():
    decision = evaluate(
        Identity("pat-1", "patient"),
        Action(Verb.READ, ResourceType.MEDICAL_RECORD, "rec-1"),
    )
    assert not decision.allowed
    assert decision.reason == PREDICATE_FAILED


@pytest.mark.parametrize("resource_type", list(ResourceType))
def test_patient_never_deletes(resource_type):
    decision = evaluate(
        Identity("pat-1", "patient"),
        Action(Verb.DELETE, resource_type, "r-1"),
        _owned_by("pat-1", resource_type),
    )
    assert not decision.allowed
    assert decision.reason == NO_MATCHING_RULE


def test_patient_cancels_own_appointment_through_update():
    patient = Identity("pat-1", "patient")
    appointment = ResourceRef(ResourceType.APPOINTMENT, "apt-1", patient_id="pat-1", doctor_id="doc-1")
    assert evaluate(patient, Action(Verb.UPDATE, ResourceType.APPOINTMENT, "apt-1"), appointment).allowed


def test_patient_books_only_for_self():
    patient = Identity("pat-1", "patient")
    for owner, expected in (("pat-1", True), ("pat-2", False)):
        refs = ResourceRef(ResourceType.APPOINTMENT, patient_id=owner, doctor_id="doc-1")
        action = Action(Verb.CREATE, ResourceType.APPOINTMENT, owner_refs=refs)
        assert evaluate(patient, action, refs).allowed is expected


# ── Staff ────────────────────────────────────────────────────────────

def test_nurse_is_scoped_to_ward():
    record = ResourceRef(ResourceType.MEDICAL_RECORD, "rec-1", patient_id="pat-1", ward="cardiology")
    action = Action(Verb.READ, ResourceType.MEDICAL_RECORD, "rec-1")

    assert evaluate(Identity("n-1", "nurse", frozenset({"cardiology"})), action, record).allowed
    assert not evaluate(Identity("n-2", "nurse", frozenset({"oncology"})), action, record).allowed
    assert not evaluate(Identity("n-3", "nurse"), action, ResourceRef(ResourceType.MEDICAL_RECORD)).allowed


def test_doctor_updates_only_assigned_appointment():
    doctor = Identity("doc-1", "doctor")
    action = Action(Verb.UPDATE, ResourceType.APPOINTMENT, "apt-1")
    mine = ResourceRef(ResourceType.APPOINTMENT, "apt-1", patient_id="pat-1", doctor_id="doc-1")
    theirs = ResourceRef(ResourceType.APPOINTMENT, "apt-1", patient_id="pat-1", doctor_id="doc-2")

    assert evaluate(doctor, action, mine).allowed
    assert not evaluate(doctor, action, theirs).allowed


def test_receptionist_has_no_clinical_access():
    receptionist = Identity("desk-1", "receptionist")
    for resource_type in (ResourceType.MEDICAL_RECORD, ResourceType.PRESCRIPTION):
        decision = evaluate(receptionist, Action(Verb.READ, resource_type, "r-1"))
        assert decision.reason == NO_MATCHING_RULE


# ── Engine mechanics ─────────────────────────────────────────────────

def test_rules_are_additive_in_declaration_order():
    never_calls = []

    def never(identity, resource):
        never_calls.append(resource)
        return False

    engine = PolicyEngine(
        [
            PolicyRule(Role.NURSE, ResourceType.PATIENT, Verb.READ, never),
            PolicyRule(Role.NURSE, ResourceType.PATIENT, Verb.READ, always),
        ]
    )
    decision = engine.evaluate(Identity("n-1", "nurse"), Action(Verb.READ, ResourceType.PATIENT, "p-1"))

    assert decision.allowed
    assert len(never_calls) == 1


def test_evaluation_is_deterministic():
    identity = Identity("pat-1", "patient")
    action = Action(Verb.READ, ResourceType.PRESCRIPTION, "rx-1")
    resource = ResourceRef(ResourceType.PRESCRIPTION, "rx-1", patient_id="pat-2")

    decisions = {evaluate(identity, action, resource) for _ in range(20)}
    assert len(decisions) == 1


def test_default_rules_cover_every_role():
    assert {rule.role for rule in DEFAULT_RULES} == set(Role)
