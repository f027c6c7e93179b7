"""
Submission status machine.

Every legal move of a submission is one named transition with the statuses
it may start from, the status it produces, and the single actor role that
may trigger it:

    submit          (none)          -> PENDING_AI      SUPPLIER
    start_analysis  PENDING_AI      -> AI_REVIEWING    SYSTEM
    analysis_passed AI_REVIEWING    -> PENDING_REVIEW  SYSTEM
    analysis_failed AI_REVIEWING    -> REJECTED        SYSTEM
    approve         PENDING_REVIEW  -> APPROVED        IQA
    reject          PENDING_REVIEW  -> REJECTED        IQA
    resubmit        REJECTED        -> PENDING_AI      SUPPLIER

Usage:
    from faiportal.services.status_machine import check_transition

    target = check_transition("approve", submission.id, submission.status, actor.role)
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from faiportal.core.exceptions import PermissionDeniedError, StateConflictError
from faiportal.db.schema import ActorRole, Decision, SubmissionStatus


TRANSITIONS: Dict[str, dict] = {
    "submit": {"from": [None], "to": SubmissionStatus.PENDING_AI, "actor": ActorRole.SUPPLIER},
    "start_analysis": {"from": [SubmissionStatus.PENDING_AI], "to": SubmissionStatus.AI_REVIEWING, "actor": ActorRole.SYSTEM},
    "analysis_passed": {"from": [SubmissionStatus.AI_REVIEWING], "to": SubmissionStatus.PENDING_REVIEW, "actor": ActorRole.SYSTEM},
    "analysis_failed": {"from": [SubmissionStatus.AI_REVIEWING], "to": SubmissionStatus.REJECTED, "actor": ActorRole.SYSTEM},
    "approve": {"from": [SubmissionStatus.PENDING_REVIEW], "to": SubmissionStatus.APPROVED, "actor": ActorRole.IQA},
    "reject": {"from": [SubmissionStatus.PENDING_REVIEW], "to": SubmissionStatus.REJECTED, "actor": ActorRole.IQA},
    "resubmit": {"from": [SubmissionStatus.REJECTED], "to": SubmissionStatus.PENDING_AI, "actor": ActorRole.SUPPLIER},
}

DECISION_ACTIONS = {
    Decision.APPROVED: "approve",
    Decision.REJECTED: "reject",
}

# Statuses the core can ever leave a submission in
REACHABLE_STATUSES = frozenset(rule["to"] for rule in TRANSITIONS.values())

# Business priority for "needs attention" lists: unreviewed work first,
# then rejected work waiting on the supplier.
ATTENTION_PRIORITY: Dict[SubmissionStatus, int] = {
    SubmissionStatus.PENDING_REVIEW: 1,
    SubmissionStatus.REJECTED: 2,
    SubmissionStatus.APPROVED: 3,
    SubmissionStatus.AI_REVIEWING: 4,
    SubmissionStatus.PENDING_AI: 5,
    SubmissionStatus.DRAFT: 6,
}
_UNKNOWN_PRIORITY = 99


def validate_transition(action: str, current: Optional[SubmissionStatus]) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": status|None, "to": status|None, "reason": str|None}
    """
    rule = TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": current, "to": None,
                "reason": f"Unknown action: {action}"}

    if current not in rule["from"]:
        return {"valid": False, "from": current, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{_label(current)}'"}

    return {"valid": True, "from": current, "to": rule["to"], "reason": None}


def check_transition(
    action: str,
    submission_id: str,
    current: Optional[SubmissionStatus],
    actor_role: ActorRole,
) -> SubmissionStatus:
    """
    Enforce actor and precondition for an action and return the target status.

    The actor check runs first so a reviewer poking at a supplier-only
    action learns about the role, not the submission's state.
    """
    rule = TRANSITIONS.get(action)
    if rule is None:
        raise ValueError(f"Unknown action: {action}")

    if actor_role != rule["actor"]:
        raise PermissionDeniedError(
            f"Only {rule['actor'].value} may '{action}' a submission."
        )

    result = validate_transition(action, current)
    if not result["valid"]:
        raise StateConflictError(submission_id, action, _label(current))
    return result["to"]


def allowed_actions(current: Optional[SubmissionStatus], actor_role: ActorRole) -> List[str]:
    """Actions the given role could take right now (drives UI buttons)."""
    return [
        action for action, rule in TRANSITIONS.items()
        if rule["actor"] == actor_role and current in rule["from"]
    ]


def attention_key(status: SubmissionStatus, timestamp: datetime) -> Tuple[int, float]:
    return (ATTENTION_PRIORITY.get(status, _UNKNOWN_PRIORITY), -timestamp.timestamp())


def sort_by_attention(submissions: Iterable) -> list:
    """Priority order first, newest first within the same status."""
    return sorted(submissions, key=lambda s: attention_key(s.status, s.timestamp))


def _label(status: Optional[SubmissionStatus]) -> Optional[str]:
    return status.value if isinstance(status, SubmissionStatus) else status
