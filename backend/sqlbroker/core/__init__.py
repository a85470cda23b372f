"""
Core Package
"""
from sqlbroker.core.exceptions import (
    BrokerError, AuthorizationDenied, ConnectionUnavailable, ConnectionNotFound,
    ExecutionFailed, ExecutionTimedOut, ExecutionCancelled,
    CancelTargetNotFound, CancelForbidden, HistoryAccessDenied
)
from sqlbroker.core.roles import (
    Role, StatementKind, RolePolicy, AuthorizationDecision, ROLE_PERMISSIONS,
    authorize, classify, get_role_policy, is_valid_role
)

__all__ = [
    # Errors
    "BrokerError", "AuthorizationDenied", "ConnectionUnavailable", "ConnectionNotFound",
    "ExecutionFailed", "ExecutionTimedOut", "ExecutionCancelled",
    "CancelTargetNotFound", "CancelForbidden", "HistoryAccessDenied",
    # Roles
    "Role", "StatementKind", "RolePolicy", "AuthorizationDecision", "ROLE_PERMISSIONS",
    "authorize", "classify", "get_role_policy", "is_valid_role"
]
