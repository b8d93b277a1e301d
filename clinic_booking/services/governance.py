"""Policy gate in front of every booking mutation.

The gate fails closed: a missing or incomplete control-plane context, a
deny decision, or an evaluator that blows up all stop the request.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from clinic_booking.core.exceptions import GovernanceDenied
from clinic_booking.schemas.governance import ControlPlaneContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason_code: str = "allowed"


class PolicyEvaluator(Protocol):
    async def evaluate_policy(
        self, context: ControlPlaneContext, action: str, resource_ref: str
    ) -> PolicyDecision:
        ...


class TenantPolicyEvaluator:
    """Allows an action when the actor's tenant owns the resource.

    ``tenant:<id>`` references must match the context tenant. Other
    references are checked for ownership by the caller after loading the
    resource. Actions listed in ``denied_actions`` are always refused.
    """

    def __init__(self, denied_actions: Optional[Iterable[str]] = None):
        self.denied_actions = frozenset(denied_actions or ())

    async def evaluate_policy(self, context, action, resource_ref):
        if action in self.denied_actions:
            return PolicyDecision(False, "action_disabled")
        kind, _, ident = resource_ref.partition(":")
        if kind == "tenant" and ident != context.tenant_id:
            return PolicyDecision(False, "tenant_mismatch")
        return PolicyDecision(True)


def enforce_context(context: Optional[ControlPlaneContext]) -> ControlPlaneContext:
    if context is None:
        raise GovernanceDenied("Missing control plane context", reason_code="missing_context")
    for field in ("trace_id", "actor_id", "tenant_id"):
        if not (getattr(context, field, None) or "").strip():
            raise GovernanceDenied(f"Control plane context is missing {field}", reason_code="incomplete_context")
    return context


async def authorize(
    evaluator: Optional[PolicyEvaluator],
    context: Optional[ControlPlaneContext],
    action: str,
    resource_ref: str,
) -> ControlPlaneContext:
    """Run the policy gate; returns the validated context or raises GovernanceDenied."""
    context = enforce_context(context)
    if evaluator is None:
        raise GovernanceDenied("No policy evaluator configured", reason_code="no_evaluator")

    try:
        decision = await evaluator.evaluate_policy(context, action, resource_ref)
    except Exception as e:
        logger.exception("Policy evaluation failed: action=%s resource=%s trace=%s", action, resource_ref, context.trace_id)
        raise GovernanceDenied("Policy evaluation failed", reason_code="evaluator_error") from e

    if not decision.allowed:
        logger.warning(
            "Policy denied: action=%s resource=%s actor=%s reason=%s trace=%s",
            action,
            resource_ref,
            context.actor_id,
            decision.reason_code,
            context.trace_id,
        )
        raise GovernanceDenied(f"Action {action} denied by policy", reason_code=decision.reason_code)

    return context
