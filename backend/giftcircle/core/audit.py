"""Audit logging for shared-row mutations and reconciliation events."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any


logger = logging.getLogger("giftcircle.audit")

_SENSITIVE_KEYS = ("password", "token", "secret", "key", "authorization")


class AuditAction(str, Enum):
    """Audit action types."""
    # Friendship graph
    FRIEND_REQUEST = "friend_request"
    FRIEND_ACCEPT = "friend_accept"
    FRIEND_REMOVE = "friend_remove"

    # Groups
    GROUP_CREATE = "group_create"
    GROUP_DELETE = "group_delete"
    MEMBER_ADD = "member_add"
    MEMBER_REMOVE = "member_remove"
    MEMBER_ROLE_CHANGE = "member_role_change"

    # Ledger
    RESERVATION_CREATE = "reservation_create"
    RESERVATION_CANCEL = "reservation_cancel"
    RESERVATION_COMPLETE = "reservation_complete"
    CONTRIBUTION_SET = "contribution_set"
    CONTRIBUTION_WITHDRAW = "contribution_withdraw"

    # A dependent second write failed; somebody has to reconcile.
    RECONCILIATION_NEEDED = "reconciliation_needed"
    AGGREGATE_CORRECTED = "aggregate_corrected"

    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


def audit_log(
    action: AuditAction,
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """
    Log an audit event.

    Args:
        action: The action being performed
        user_id: Account that performed the action
        details: Additional details about the action
        success: Whether the action completed cleanly
    """
    event: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.value,
        "success": success,
    }

    if user_id is not None:
        event["user_id"] = str(user_id)

    if details:
        event["details"] = {
            key: "***REDACTED***" if key in _SENSITIVE_KEYS else value
            for key, value in details.items()
        }

    if success:
        logger.info("AUDIT: %s", event)
    else:
        logger.warning("AUDIT: %s", event)


def audit_reconciliation(
    user_id: str | None,
    completed_step: str,
    failed_step: str,
    **details: Any,
) -> None:
    """Record that a composite write stopped half-way."""
    audit_log(
        AuditAction.RECONCILIATION_NEEDED,
        user_id=user_id,
        details={"completed_step": completed_step, "failed_step": failed_step, **details},
        success=False,
    )
