"""
Quota enforcement dependency for gated endpoints.

require_quota() runs the check phase before the endpoint body and hands the
endpoint a QuotaTicket. The endpoint performs its action and then calls
ticket.commit(); if the action fails the ticket is simply dropped and no
quota is consumed.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from searchquota.db.session import get_db
from searchquota.services.quota_gate import AccountRef, QuotaDecision, QuotaGate, TrackResult
from searchquota.services.usage_ledger_service import get_tier_for_account

logger = logging.getLogger(__name__)


def get_account(account_id: str, db: Session = Depends(get_db)) -> AccountRef:
    """Resolve the path's account id to an AccountRef with its subscription tier."""
    return AccountRef(id=account_id, tier=get_tier_for_account(db, account_id))


@dataclass
class QuotaTicket:
    """An allowed check waiting for its usage to be recorded."""
    gate: QuotaGate
    account: AccountRef
    decision: QuotaDecision

    def commit(self, metadata: Optional[dict] = None) -> TrackResult:
        return self.gate.track_action(self.account, self.decision.kind, self.decision.quantity, metadata)


def quota_exceeded_detail(decision: QuotaDecision) -> dict:
    detail = decision.to_detail()
    detail.pop("allowed", None)
    return {"error": "quota_exceeded", **detail}


def require_quota(kind: str, quantity: int = 1):
    """
    Dependency that enforces quota limits before allowing an action.

    Args:
        kind: Usage kind (e.g. "ai_job_searches", "job_imports", "ai_job_discovery")
        quantity: Amount the action will consume (default: 1)

    Returns:
        QuotaTicket to commit once the action has succeeded

    Raises:
        HTTPException 403: Quota exceeded with structured error detail
    """
    def quota_checker(
        account: AccountRef = Depends(get_account),
        db: Session = Depends(get_db)
    ) -> QuotaTicket:
        gate = QuotaGate(db)
        decision = gate.check_action(account, kind, quantity)

        if not decision.allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=quota_exceeded_detail(decision)
            )

        logger.debug(
            f"Quota check passed: account_id={account.id}, kind={kind}, quantity={quantity}, "
            f"plan={account.tier}, remaining={decision.remaining if decision.remaining >= 0 else 'unlimited'}"
        )
        return QuotaTicket(gate=gate, account=account, decision=decision)

    return quota_checker
