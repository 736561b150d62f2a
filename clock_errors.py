from enum import Enum
from typing import List


class ValidationError(Exception):
    """Malformed or incomplete automation request (HTTP 400)."""

    def __init__(self, errors: List[str]):
        super().__init__(", ".join(errors))
        self.errors = list(errors)


class InvalidAction(ValidationError):
    def __init__(self, message: str):
        super().__init__([message])
        self.message = message


class DenialReason(str, Enum):
    BUSY = "busy"
    COOLDOWN = "cooldown"


class AdmissionDenied(Exception):
    def __init__(self, reason: DenialReason):
        super().__init__(f"Admission denied: {reason.value}")
        self.reason = reason


class WaitTimeout(Exception):
    """Raised by a browser driver when a bounded wait expires."""


class AutomationError(Exception):
    """Base class for every failure that aborts an automation run."""


class InstanceUnreachable(AutomationError):
    pass


class FormNotFound(AutomationError):
    pass


class AlternateLoginUnavailable(AutomationError):
    pass


class LoginInvalid(AutomationError):
    pass


class TotpFailed(AutomationError):
    pass


class LoginIncomplete(AutomationError):
    pass


class TimesheetActionFailed(AutomationError):
    pass


class DriverFault(AutomationError):
    """The browser engine itself failed (crash, disconnect, script error)."""
