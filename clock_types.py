from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any

VALID_ACTIONS = ("in", "out", "toggle")
STATUS_ACTION = "status"


class ClockState(str, Enum):
    CLOCKED_IN = "clocked-in"
    CLOCKED_OUT = "clocked-out"

    def flipped(self) -> "ClockState":
        if self is ClockState.CLOCKED_IN:
            return ClockState.CLOCKED_OUT
        return ClockState.CLOCKED_IN


@dataclass(frozen=True)
class AutomationRequest:
    instance: str
    user: str
    password: str = field(repr=False)
    totp_secret: str = field(repr=False)
    action: Optional[str] = None


@dataclass(frozen=True)
class AutomationResult:
    action: str
    state: ClockState

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "state": self.state.value}
