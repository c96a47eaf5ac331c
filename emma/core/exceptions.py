# emma/core/exceptions.py
from typing import Optional


class EmmaError(Exception):
    """Base error for the action validation pipeline."""


class InputValidationError(EmmaError, ValueError):
    """
    A candidate action is malformed (missing, unparsable, blank action type).
    Reported per item; never aborts a batch.
    """

    def __init__(self, message: str, *, index: Optional[int] = None, action_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.index = index
        self.action_id = action_id


class PolicyEvaluationError(EmmaError):
    """The LLM decision collaborator failed, timed out or answered garbage."""


class AuditWriteError(EmmaError):
    """The audit sink rejected or could not receive an event."""


class ApprovalRequestError(EmmaError):
    """
    Invalid operation on an approval request.
    `code` is one of: not_found, closed, expired, invalid
    """

    def __init__(self, message: str, *, code: str = "invalid", request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.request_id = request_id


class ExecutionBlockedError(EmmaError):
    """An action tried to cross the execution boundary without clearance."""

    def __init__(self, message: str, *, action_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.action_id = action_id
