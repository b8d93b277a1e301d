"""Tests for the policy gate."""

import pytest

from clinic_booking.core.exceptions import GovernanceDenied
from clinic_booking.schemas.governance import ControlPlaneContext
from clinic_booking.services.governance import PolicyDecision, TenantPolicyEvaluator, authorize


class BrokenEvaluator:
    async def evaluate_policy(self, context, action, resource_ref):
        raise ConnectionError("policy engine unreachable")


class RecordingEvaluator:
    def __init__(self):
        self.calls = []

    async def evaluate_policy(self, context, action, resource_ref):
        self.calls.append((action, resource_ref))
        return PolicyDecision(True)


@pytest.fixture
def ctx():
    return ControlPlaneContext(trace_id="t-1", actor_id="u-1", tenant_id="tenant-a")


@pytest.mark.asyncio
async def test_allowed_action_returns_context(ctx):
    evaluator = RecordingEvaluator()
    result = await authorize(evaluator, ctx, "appointment:create", "tenant:tenant-a")
    assert result is ctx
    assert evaluator.calls == [("appointment:create", "tenant:tenant-a")]


@pytest.mark.asyncio
async def test_missing_context_is_denied():
    with pytest.raises(GovernanceDenied) as exc_info:
        await authorize(TenantPolicyEvaluator(), None, "appointment:create", "tenant:tenant-a")
    assert exc_info.value.reason_code == "missing_context"
    assert exc_info.value.http_status == 403


@pytest.mark.asyncio
async def test_blank_context_field_is_denied():
    blank = ControlPlaneContext(trace_id="   ", actor_id="u-1", tenant_id="tenant-a")
    with pytest.raises(GovernanceDenied) as exc_info:
        await authorize(TenantPolicyEvaluator(), blank, "appointment:create", "tenant:tenant-a")
    assert exc_info.value.reason_code == "incomplete_context"


@pytest.mark.asyncio
async def test_missing_evaluator_is_denied(ctx):
    with pytest.raises(GovernanceDenied) as exc_info:
        await authorize(None, ctx, "appointment:create", "tenant:tenant-a")
    assert exc_info.value.reason_code == "no_evaluator"


@pytest.mark.asyncio
async def test_evaluator_failure_is_denied(ctx):
    with pytest.raises(GovernanceDenied) as exc_info:
        await authorize(BrokenEvaluator(), ctx, "appointment:create", "tenant:tenant-a")
    assert exc_info.value.reason_code == "evaluator_error"
    assert isinstance(exc_info.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_other_tenant_is_denied(ctx):
    with pytest.raises(GovernanceDenied) as exc_info:
        await authorize(TenantPolicyEvaluator(), ctx, "appointment:create", "tenant:tenant-b")
    assert exc_info.value.reason_code == "tenant_mismatch"


@pytest.mark.asyncio
async def test_disabled_action_is_denied(ctx):
    evaluator = TenantPolicyEvaluator(denied_actions=["appointment:delete"])
    with pytest.raises(GovernanceDenied) as exc_info:
        await authorize(evaluator, ctx, "appointment:delete", "appointment:123")
    assert exc_info.value.reason_code == "action_disabled"
    assert exc_info.value.to_detail()["error"] == "governance_denied"

    assert await authorize(evaluator, ctx, "appointment:create", "tenant:tenant-a") is ctx
