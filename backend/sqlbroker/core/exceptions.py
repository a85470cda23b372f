"""
Broker error taxonomy

Every error the broker surfaces carries an HTTP status and a stable code so the
API layer can translate it without inspecting messages.
"""
from typing import Optional


class BrokerError(Exception):
    """Base class for errors surfaced by the query broker."""

    status_code = 500
    code = "broker_error"

    def __init__(self, message: str, execution_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.execution_id = execution_id

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message}
        if self.execution_id:
            payload["execution_id"] = self.execution_id
        return payload


class AuthorizationDenied(BrokerError):
    """Role policy forbids the statement kind."""

    status_code = 403
    code = "authorization_denied"


class ConnectionUnavailable(BrokerError):
    """Target connection could not be reached or its pool could not be built."""

    status_code = 503
    code = "connection_unavailable"


class ConnectionNotFound(ConnectionUnavailable):
    """Target connection profile is missing or inactive."""

    status_code = 404
    code = "connection_not_found"


class ExecutionFailed(BrokerError):
    """Target database reported an error for the statement."""

    status_code = 400
    code = "execution_failed"


class ExecutionTimedOut(BrokerError):
    """Statement exceeded the role's query timeout."""

    status_code = 408
    code = "execution_timed_out"


class ExecutionCancelled(BrokerError):
    """Statement was cancelled before it could report a result."""

    status_code = 409
    code = "execution_cancelled"


class CancelTargetNotFound(BrokerError):
    """No in-flight execution with that id; it already finished or never existed."""

    status_code = 404
    code = "cancel_target_not_found"


class CancelForbidden(BrokerError):
    """Requester is not allowed to cancel the execution."""

    status_code = 403
    code = "cancel_forbidden"


class HistoryAccessDenied(BrokerError):
    """Requester is not allowed to read the history record."""

    status_code = 403
    code = "history_access_denied"
