"""
Plan catalogue.

Each plan maps to a pair of per-period ceilings. ``None`` means unlimited and is
stored as NULL in the ``*_left`` columns, so arithmetic on an unlimited counter
stays NULL instead of drifting a sentinel value.
"""

import enum
from dataclasses import dataclass
from typing import Dict, Optional


class PlanType(str, enum.Enum):
    BASIC = "BASIC"
    CORE = "CORE"
    ADVANCED = "ADVANCED"
    PRO = "PRO"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    PAST_DUE = "PAST_DUE"
    INCOMPLETE = "INCOMPLETE"
    INCOMPLETE_EXPIRED = "INCOMPLETE_EXPIRED"
    TRIALING = "TRIALING"
    UNPAID = "UNPAID"


class ResourceKind(str, enum.Enum):
    MESSAGE = "message"
    DOCUMENT = "document"


@dataclass(frozen=True)
class PlanLimits:
    messages: Optional[int]
    documents: Optional[int]

    def ceiling(self, kind: ResourceKind) -> Optional[int]:
        return self.messages if kind == ResourceKind.MESSAGE else self.documents


PLAN_LIMITS: Dict[PlanType, PlanLimits] = {
    PlanType.BASIC: PlanLimits(messages=20, documents=0),
    PlanType.CORE: PlanLimits(messages=100, documents=10),
    PlanType.ADVANCED: PlanLimits(messages=500, documents=50),
    PlanType.PRO: PlanLimits(messages=None, documents=None),
}

FREE_PLAN = PlanType.BASIC
PAID_PLANS = frozenset(plan for plan in PlanType if plan != FREE_PLAN)


def limits_for(plan: PlanType) -> PlanLimits:
    return PLAN_LIMITS[PlanType(plan)]


def is_paid(plan: PlanType) -> bool:
    return PlanType(plan) in PAID_PLANS
