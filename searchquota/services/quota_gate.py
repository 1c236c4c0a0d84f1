"""
Quota gate: the check-then-track facade used by request handlers.

check_* never mutates counts and returns decisions instead of raising.
track_* records usage after the gated action has succeeded; a tracking
failure is logged and reported in the result but never raised, so an action
that already happened is never reported as failed.

This is the only layer that turns decisions into user-facing messages.
"""
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from searchquota.core.config import FRONTEND_URL
from searchquota.core.exceptions import WindowComputationError
from searchquota.core.plan_limits import (
    get_recommended_plan,
    get_tier_limits,
    is_unlimited,
    is_weekly_kind,
)
from searchquota.core.time_windows import utc_now
from searchquota.services import usage_ledger_service, weekly_quota_service

logger = logging.getLogger(__name__)

Requirement = Union[dict, tuple]


@dataclass(frozen=True)
class AccountRef:
    """Opaque account id plus subscription tier, supplied by the caller."""
    id: str
    tier: str


@dataclass
class QuotaDecision:
    allowed: bool
    kind: str
    quantity: int
    current: int
    limit: int
    remaining: int  # -1 for unlimited
    plan: str
    window: str  # "monthly" | "weekly"
    reason: Optional[str] = None
    message: Optional[str] = None
    recommended_plan: Optional[str] = None
    upgrade_url: Optional[str] = None
    fallback: bool = False

    def to_detail(self) -> dict:
        return asdict(self)


@dataclass
class MultiDecision:
    allowed: bool
    decisions: List[QuotaDecision] = field(default_factory=list)

    @property
    def failed(self) -> List[QuotaDecision]:
        return [decision for decision in self.decisions if not decision.allowed]

    def to_detail(self) -> dict:
        return {
            "allowed": self.allowed,
            "failed_checks": [decision.to_detail() for decision in self.failed],
            "upgrade_required": not self.allowed,
        }


@dataclass
class TrackResult:
    kind: str
    quantity: int
    tracked: bool
    new_total: Optional[int] = None
    remaining: Optional[int] = None
    admitted: Optional[int] = None
    limit_reached: bool = False
    reason: Optional[str] = None  # set when less than quantity was admitted
    error: Optional[str] = None  # store failure; tracked is False only in this case


def _normalize_requirement(requirement: Requirement) -> tuple:
    if isinstance(requirement, dict):
        return (
            requirement["kind"],
            requirement.get("quantity", 1),
            requirement.get("metadata") or {},
        )
    kind, quantity, *rest = requirement
    return kind, quantity, (rest[0] if rest else {})


def _denial_message(kind: str, reason: Optional[str], limit: int, plan: str, window: str) -> str:
    label = kind.replace("_", " ")
    if reason == "not_included_in_plan":
        return f"{label.capitalize()} is not included in the {plan.title()} plan. Upgrade to unlock."
    period = "weekly" if window == "weekly" else "monthly"
    return f"You have reached your {period} limit of {limit} {label}. Upgrade your plan for more quota."


class QuotaGate:
    """
    Two-phase quota enforcement over the usage ledger and weekly quota.

    Args:
        db: Database session
        tier_limits: Tier -> {kind: limit} lookup, -1 meaning unlimited
        clock: Current-time source
    """

    def __init__(
        self,
        db: Session,
        tier_limits: Callable[[Optional[str]], Dict[str, int]] = get_tier_limits,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.tier_limits = tier_limits
        self.clock = clock

    # ------------------------------------------------------------------
    # Check phase
    # ------------------------------------------------------------------

    def check_action(self, account: AccountRef, kind: str, quantity: int = 1) -> QuotaDecision:
        """Decide whether quantity more of kind is allowed. Never mutates counts."""
        now = self.clock()
        try:
            if is_weekly_kind(kind):
                decision = self._check_weekly(account, kind, quantity, now)
            else:
                decision = self._check_monthly(account, kind, quantity, now)
        except (WindowComputationError, OverflowError) as e:
            logger.warning(
                f"Quota window unavailable, allowing with permissive fallback: "
                f"account_id={account.id}, kind={kind}, error={e}"
            )
            limit = self.tier_limits(account.tier).get(kind, 0)
            return QuotaDecision(
                allowed=True, kind=kind, quantity=quantity, current=0, limit=limit,
                remaining=-1 if is_unlimited(limit) else limit, plan=account.tier,
                window="weekly" if is_weekly_kind(kind) else "monthly", fallback=True,
            )

        if not decision.allowed:
            decision.message = _denial_message(kind, decision.reason, decision.limit, account.tier, decision.window)
            decision.recommended_plan = get_recommended_plan(kind)
            decision.upgrade_url = f"{FRONTEND_URL}/pricing"
            logger.warning(
                f"Quota denied: account_id={account.id}, kind={kind}, plan={account.tier}, "
                f"reason={decision.reason}, current={decision.current}, limit={decision.limit}"
            )
        return decision

    def _check_monthly(self, account: AccountRef, kind: str, quantity: int, now: datetime) -> QuotaDecision:
        result = usage_ledger_service.check(
            self.db, account.id, kind, quantity,
            tier=account.tier, tier_limits=self.tier_limits, now=now,
        )
        return QuotaDecision(
            allowed=result.allowed,
            kind=kind,
            quantity=quantity,
            current=result.current,
            limit=result.limit,
            remaining=result.remaining,
            plan=account.tier,
            window="monthly",
            reason=result.reason,
        )

    def _check_weekly(self, account: AccountRef, kind: str, quantity: int, now: datetime) -> QuotaDecision:
        fallback_limit = self.tier_limits(account.tier).get(kind, 0)
        stats = weekly_quota_service.current_stats(self.db, account.id, fallback_limit, now=now)

        # Weekly admission keeps whatever part of a batch fits, so any remaining quota allows
        allowed = is_unlimited(stats.limit) or stats.remaining > 0
        reason = None
        if not allowed:
            reason = "not_included_in_plan" if stats.limit == 0 else "weekly_limit_reached"
        return QuotaDecision(
            allowed=allowed,
            kind=kind,
            quantity=quantity,
            current=stats.consumed,
            limit=stats.limit,
            remaining=stats.remaining,
            plan=account.tier,
            window="weekly",
            reason=reason,
            fallback=stats.fallback,
        )

    def check_multiple(self, account: AccountRef, requirements: Iterable[Requirement]) -> MultiDecision:
        """Evaluate every requirement and report all failures, not just the first."""
        decisions = []
        for requirement in requirements:
            kind, quantity, _ = _normalize_requirement(requirement)
            decisions.append(self.check_action(account, kind, quantity))
        return MultiDecision(allowed=all(d.allowed for d in decisions), decisions=decisions)

    # ------------------------------------------------------------------
    # Track phase
    # ------------------------------------------------------------------

    def track_action(
        self,
        account: AccountRef,
        kind: str,
        quantity: int = 1,
        metadata: Optional[dict] = None,
    ) -> TrackResult:
        """
        Record usage for an action that already succeeded.

        Weekly kinds go through admission (metadata may carry run_id and label);
        monthly kinds are committed to the ledger. Store errors are logged and
        returned as tracked=False.
        """
        metadata = metadata or {}
        now = self.clock()
        try:
            if is_weekly_kind(kind):
                run_id = str(metadata.get("run_id") or f"{kind}-{uuid.uuid4().hex}")
                admission = weekly_quota_service.admit(
                    self.db, account.id, run_id, quantity,
                    label=metadata.get("label"),
                    tier=account.tier,
                    limit=self.tier_limits(account.tier).get(kind, 0),
                    now=now,
                )
                return TrackResult(
                    kind=kind,
                    quantity=quantity,
                    tracked=True,
                    new_total=admission.consumed,
                    remaining=admission.remaining,
                    admitted=admission.admitted,
                    limit_reached=admission.limit_reached,
                    reason=admission.reason or ("weekly_limit_reached" if admission.admitted < quantity else None),
                )

            committed = usage_ledger_service.commit(
                self.db, account.id, kind, quantity, metadata,
                tier=account.tier, tier_limits=self.tier_limits, now=now,
            )
            return TrackResult(
                kind=kind,
                quantity=quantity,
                tracked=True,
                new_total=committed.new_total,
                remaining=committed.remaining,
            )
        except Exception as e:
            # The gated action already succeeded; under-counting is the accepted cost
            logger.exception(f"Error tracking usage: account_id={account.id}, kind={kind}, quantity={quantity}")
            self.db.rollback()
            return TrackResult(kind=kind, quantity=quantity, tracked=False, error=str(e))

    def track_multiple(self, account: AccountRef, items: Iterable[Requirement]) -> List[TrackResult]:
        """Track each item independently; one failure does not stop the rest."""
        results = []
        for item in items:
            kind, quantity, metadata = _normalize_requirement(item)
            results.append(self.track_action(account, kind, quantity, metadata))
        return results

    # ------------------------------------------------------------------
    # Dashboards
    # ------------------------------------------------------------------

    def usage_summary(self, account: AccountRef) -> dict:
        """Monthly usage, weekly discovery stats and warnings for one account."""
        now = self.clock()
        usage = usage_ledger_service.get_usage_for_response(self.db, account.id, tier=account.tier, now=now)
        weekly_limit = self.tier_limits(account.tier).get("ai_job_discovery", 0)
        weekly = weekly_quota_service.current_stats(self.db, account.id, weekly_limit, now=now)
        usage["weekly"] = asdict(weekly)
        usage["warnings"] = usage_ledger_service.get_usage_warnings(usage)
        return usage

    def usage_warnings(self, account: AccountRef) -> List[dict]:
        usage = usage_ledger_service.get_usage_for_response(
            self.db, account.id, tier=account.tier, now=self.clock()
        )
        return usage_ledger_service.get_usage_warnings(usage)
