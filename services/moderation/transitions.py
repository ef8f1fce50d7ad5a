"""
services/moderation/transitions.py
Allowed status transitions per entity type.

Every status change in the platform is resolved through these tables.
resolve() returns the target state, None when the entity is already in it
(a no-op), or raises InvalidTransition.
"""

from dataclasses import dataclass
from typing import Generic, Hashable, Mapping, Optional, TypeVar

from shared.models.models import (
    AgentStatus,
    BookingStatus,
    PackageStatus,
    PublishStatus,
    SubscriptionPlan,
)
from shared.schemas.schemas import AgentAction, PackageAction

S = TypeVar("S", bound=Hashable)


class InvalidTransition(Exception):
    def __init__(self, entity_type: str, action: str, current: object):
        self.entity_type = entity_type
        self.action = action
        self.current = current
        super().__init__(f"Cannot {action} {entity_type} in state {_label(current)}")


def _label(state: object) -> str:
    if isinstance(state, tuple):
        return "/".join(_label(s) for s in state)
    return getattr(state, "value", str(state))


@dataclass(frozen=True)
class Transition(Generic[S]):
    allowed_from: frozenset
    to: S


def resolve(
    table: Mapping[str, Transition],
    entity_type: str,
    action: str,
    current: S,
) -> Optional[S]:
    transition = table.get(action)
    if transition is None:
        raise InvalidTransition(entity_type, action, current)
    if current == transition.to:
        return None
    if current not in transition.allowed_from:
        raise InvalidTransition(entity_type, action, current)
    return transition.to


# ── Agents ─────────────────────────────────────────────────────

AGENT_TRANSITIONS: dict[str, Transition[AgentStatus]] = {
    AgentAction.APPROVE.value: Transition(
        frozenset({AgentStatus.PENDING, AgentStatus.REJECTED, AgentStatus.SUSPENDED}),
        AgentStatus.APPROVED,
    ),
    AgentAction.REJECT.value: Transition(frozenset({AgentStatus.PENDING}), AgentStatus.REJECTED),
    AgentAction.SUSPEND.value: Transition(frozenset({AgentStatus.APPROVED}), AgentStatus.SUSPENDED),
}

PLAN_ORDER = [SubscriptionPlan.TRIAL, SubscriptionPlan.GROWTH, SubscriptionPlan.PRO]


def resolve_agent(action: str, current: AgentStatus) -> Optional[AgentStatus]:
    return resolve(AGENT_TRANSITIONS, "agent", action, current)


def resolve_plan(action: str, current: SubscriptionPlan) -> SubscriptionPlan:
    """One step along PLAN_ORDER. There is no no-op: stepping past either end is invalid."""
    index = PLAN_ORDER.index(current)
    step = {AgentAction.UPGRADE.value: 1, AgentAction.DOWNGRADE.value: -1}.get(action)
    if step is None or not 0 <= index + step < len(PLAN_ORDER):
        raise InvalidTransition("subscription plan", action, current)
    return PLAN_ORDER[index + step]


# ── Packages ───────────────────────────────────────────────────
# State is the pair (status, publish_status).

def resolve_package(
    action: str,
    status: PackageStatus,
    publish_status: PublishStatus,
) -> Optional[tuple[PackageStatus, PublishStatus]]:
    current = (status, publish_status)

    if action == PackageAction.APPROVE.value:
        table = {action: Transition(
            frozenset((s, p) for s in (PackageStatus.PENDING, PackageStatus.REJECTED)
                      for p in PublishStatus),
            (PackageStatus.APPROVED, PublishStatus.PUBLISHED),
        )}
    elif action == PackageAction.REJECT.value:
        # publish_status is left as it was
        table = {action: Transition(
            frozenset((s, publish_status) for s in (PackageStatus.PENDING, PackageStatus.APPROVED)),
            (PackageStatus.REJECTED, publish_status),
        )}
    elif action == PackageAction.UNPUBLISH.value:
        table = {action: Transition(
            frozenset({(PackageStatus.APPROVED, PublishStatus.PUBLISHED)}),
            (PackageStatus.APPROVED, PublishStatus.UNPUBLISHED),
        )}
    elif action == PackageAction.PUBLISH.value:
        table = {action: Transition(
            frozenset({(PackageStatus.APPROVED, PublishStatus.UNPUBLISHED)}),
            (PackageStatus.APPROVED, PublishStatus.PUBLISHED),
        )}
    else:
        raise InvalidTransition("package", action, current)

    return resolve(table, "package", action, current)


# Agent self-service on their own packages
PACKAGE_OWNER_TRANSITIONS: dict[str, Transition[PackageStatus]] = {
    "submit": Transition(frozenset({PackageStatus.DRAFT, PackageStatus.REJECTED}), PackageStatus.PENDING),
    "archive": Transition(
        frozenset({PackageStatus.DRAFT, PackageStatus.PENDING, PackageStatus.APPROVED, PackageStatus.REJECTED}),
        PackageStatus.ARCHIVED,
    ),
}


def resolve_package_owner(action: str, current: PackageStatus) -> Optional[PackageStatus]:
    return resolve(PACKAGE_OWNER_TRANSITIONS, "package", action, current)


# ── Bookings ───────────────────────────────────────────────────

BOOKING_TRANSITIONS: dict[str, Transition[BookingStatus]] = {
    "confirm": Transition(frozenset({BookingStatus.PENDING}), BookingStatus.CONFIRMED),
    "complete": Transition(frozenset({BookingStatus.CONFIRMED}), BookingStatus.COMPLETED),
    "cancel": Transition(
        frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED}), BookingStatus.CANCELLED
    ),
}


def resolve_booking(action: str, current: BookingStatus) -> Optional[BookingStatus]:
    return resolve(BOOKING_TRANSITIONS, "booking", action, current)
