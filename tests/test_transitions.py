"""
tests/test_transitions.py
Tests for the status transition tables.
"""

import pytest

from services.moderation.transitions import (
    InvalidTransition,
    resolve_agent,
    resolve_booking,
    resolve_package,
    resolve_package_owner,
    resolve_plan,
)
from shared.models.models import (
    AgentStatus,
    BookingStatus,
    PackageStatus,
    PublishStatus,
    SubscriptionPlan,
)


# ── Agents ─────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("current", [AgentStatus.PENDING, AgentStatus.REJECTED, AgentStatus.SUSPENDED])
def test_approve_agent(current):
    assert resolve_agent("approve", current) == AgentStatus.APPROVED


def test_approve_approved_agent_is_noop():
    assert resolve_agent("approve", AgentStatus.APPROVED) is None


def test_reject_only_from_pending():
    assert resolve_agent("reject", AgentStatus.PENDING) == AgentStatus.REJECTED
    with pytest.raises(InvalidTransition):
        resolve_agent("reject", AgentStatus.APPROVED)


def test_suspend_only_from_approved():
    assert resolve_agent("suspend", AgentStatus.APPROVED) == AgentStatus.SUSPENDED
    with pytest.raises(InvalidTransition):
        resolve_agent("suspend", AgentStatus.PENDING)


def test_unknown_agent_action():
    with pytest.raises(InvalidTransition):
        resolve_agent("promote", AgentStatus.PENDING)


def test_plan_steps():
    assert resolve_plan("upgrade", SubscriptionPlan.TRIAL) == SubscriptionPlan.GROWTH
    assert resolve_plan("upgrade", SubscriptionPlan.GROWTH) == SubscriptionPlan.PRO
    assert resolve_plan("downgrade", SubscriptionPlan.PRO) == SubscriptionPlan.GROWTH


@pytest.mark.parametrize("action, current", [
    ("upgrade", SubscriptionPlan.PRO),
    ("downgrade", SubscriptionPlan.TRIAL),
])
def test_plan_cannot_step_past_either_end(action, current):
    with pytest.raises(InvalidTransition):
        resolve_plan(action, current)


# ── Packages ───────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("status", [PackageStatus.PENDING, PackageStatus.REJECTED])
def test_approve_package_publishes(status):
    assert resolve_package("approve", status, PublishStatus.DRAFT) == (
        PackageStatus.APPROVED, PublishStatus.PUBLISHED,
    )


def test_approve_live_package_is_noop():
    assert resolve_package("approve", PackageStatus.APPROVED, PublishStatus.PUBLISHED) is None


def test_approve_draft_package_is_invalid():
    with pytest.raises(InvalidTransition) as exc:
        resolve_package("approve", PackageStatus.DRAFT, PublishStatus.DRAFT)
    assert "draft/draft" in str(exc.value)


def test_reject_keeps_publish_status():
    assert resolve_package("reject", PackageStatus.APPROVED, PublishStatus.PUBLISHED) == (
        PackageStatus.REJECTED, PublishStatus.PUBLISHED,
    )


def test_unpublish_and_publish():
    assert resolve_package("unpublish", PackageStatus.APPROVED, PublishStatus.PUBLISHED) == (
        PackageStatus.APPROVED, PublishStatus.UNPUBLISHED,
    )
    assert resolve_package("publish", PackageStatus.APPROVED, PublishStatus.UNPUBLISHED) == (
        PackageStatus.APPROVED, PublishStatus.PUBLISHED,
    )
    with pytest.raises(InvalidTransition):
        resolve_package("publish", PackageStatus.PENDING, PublishStatus.DRAFT)


def test_owner_submit_and_archive():
    assert resolve_package_owner("submit", PackageStatus.DRAFT) == PackageStatus.PENDING
    assert resolve_package_owner("submit", PackageStatus.REJECTED) == PackageStatus.PENDING
    assert resolve_package_owner("submit", PackageStatus.PENDING) is None
    with pytest.raises(InvalidTransition):
        resolve_package_owner("submit", PackageStatus.APPROVED)
    assert resolve_package_owner("archive", PackageStatus.APPROVED) == PackageStatus.ARCHIVED
    assert resolve_package_owner("archive", PackageStatus.ARCHIVED) is None


# ── Bookings ───────────────────────────────────────────────────────────────────

def test_booking_lifecycle():
    assert resolve_booking("confirm", BookingStatus.PENDING) == BookingStatus.CONFIRMED
    assert resolve_booking("complete", BookingStatus.CONFIRMED) == BookingStatus.COMPLETED
    assert resolve_booking("cancel", BookingStatus.CONFIRMED) == BookingStatus.CANCELLED


@pytest.mark.parametrize("action, current", [
    ("complete", BookingStatus.PENDING),
    ("confirm", BookingStatus.CANCELLED),
    ("cancel", BookingStatus.COMPLETED),
])
def test_invalid_booking_transitions(action, current):
    with pytest.raises(InvalidTransition):
        resolve_booking(action, current)
