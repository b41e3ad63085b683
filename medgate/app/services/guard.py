"""Resource guard: policy pre-check, lazy lookup, ownership narrowing."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from ..domain.policy import (
    NO_MATCHING_RULE,
    PREDICATE_FAILED,
    UNRECOGNIZED_ROLE,
    Action,
    Identity,
    PolicyEngine,
    ResourceRef,
    ResourceType,
    Verb,
    coerce_role,
    default_engine,
)
from ..domain.results import AuthzError, Result
from .audit import AuditLog

logger = logging.getLogger(__name__)

ResourceLookup = Callable[[ResourceType, str], Optional[ResourceRef]]
GuardResult = Result[Optional[ResourceRef], AuthzError]


class ResourceGuard:
    """Decides every action before it reaches a domain operation.

    The resource is only fetched when no matching rule is unconditional, and
    only after the role has at least one rule for the resource type and verb,
    so callers without any rule always see Forbidden and never learn whether
    the resource exists. Callers whose rules all check ownership get the same
    Forbidden for a missing resource as for one they do not own. NotFound is
    left to the caller, after an unconditional allow.
    """

    def __init__(
        self,
        engine: PolicyEngine = default_engine,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self.engine = engine
        self.audit = audit

    def guard(
        self,
        identity: Identity,
        action: Action,
        resource_lookup: Optional[ResourceLookup] = None,
    ) -> GuardResult:
        role = coerce_role(identity.role)
        if role is None:
            return self._deny(identity, action, AuthzError.forbidden(UNRECOGNIZED_ROLE))

        rules = self.engine.rules_for(role, action)
        if not rules:
            return self._deny(identity, action, AuthzError.forbidden(NO_MATCHING_RULE))

        if any(rule.unconditional for rule in rules):
            decision = self.engine.evaluate(identity, action)
            return self._allow(identity, action, None, decision.reason)

        # every rule left is an ownership check; a missing resource fails it
        # exactly like someone else's, so ids reveal nothing
        resource = self._resolve(action, resource_lookup)
        if resource is None:
            return self._deny(identity, action, AuthzError.forbidden(PREDICATE_FAILED))

        decision = self.engine.evaluate(identity, action, resource)
        if not decision.allowed:
            return self._deny(identity, action, AuthzError.forbidden(decision.reason))
        return self._allow(identity, action, resource, decision.reason)

    __call__ = guard

    def refuse(self, identity: Identity, action: Action, reason: str) -> GuardResult:
        """Record and return a Forbidden decided outside the rule table."""
        return self._deny(identity, action, AuthzError.forbidden(reason))

    @staticmethod
    def _resolve(
        action: Action, resource_lookup: Optional[ResourceLookup]
    ) -> Optional[ResourceRef]:
        if action.verb == Verb.CREATE:
            return action.owner_refs
        if action.resource_id is None or resource_lookup is None:
            return None
        return resource_lookup(action.resource_type, action.resource_id)

    def _allow(
        self,
        identity: Identity,
        action: Action,
        resource: Optional[ResourceRef],
        reason: str,
    ) -> GuardResult:
        if self.audit is not None:
            self.audit.record_authorization(identity, action, True, reason)
        return Result.success(resource)

    def _deny(self, identity: Identity, action: Action, error: AuthzError) -> GuardResult:
        logger.info(
            "denied %s %s/%s for %s: %s",
            identity.role,
            action.verb.value,
            action.resource_type.value,
            identity.subject_id,
            error.reason,
        )
        if self.audit is not None:
            self.audit.record_authorization(identity, action, False, error.reason)
        return Result.failure(error)
