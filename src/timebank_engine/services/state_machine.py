"""Adjustment and closure state machines with transition validation."""

from __future__ import annotations

from enum import Enum

from timebank_engine.exceptions import ConflictError


class AdjustmentStatus(str, Enum):
    """Time-bank adjustment status values."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ClosureStatus(str, Enum):
    """Time-bank closure status values."""

    CLOSED = "closed"
    REOPENED = "reopened"


class InvalidTransitionError(ConflictError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = _value(from_status)
        self.to_status = _value(to_status)
        self.reason = reason
        msg = f"Invalid transition from '{self.from_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


def _value(status: str) -> str:
    return status.value if isinstance(status, Enum) else str(status)


class AdjustmentStateMachine:
    """State machine for adjustment decisions.

    Allowed transitions:
    - pending → approved
    - pending → rejected

    Approved and rejected are terminal.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        AdjustmentStatus.PENDING: [AdjustmentStatus.APPROVED, AdjustmentStatus.REJECTED],
        AdjustmentStatus.APPROVED: [],
        AdjustmentStatus.REJECTED: [],
    }

    # Only these statuses count toward a balance
    COUNTS_TOWARD_BALANCE = {AdjustmentStatus.APPROVED}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status, "adjustment already decided")

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status, [])

    @classmethod
    def is_valid_status(cls, status: str) -> bool:
        return status in {s.value for s in AdjustmentStatus}


class ClosureStateMachine:
    """State machine for period closures.

    Allowed transitions:
    - closed → reopened
    - reopened → closed (re-close regenerates the snapshot)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        ClosureStatus.CLOSED: [ClosureStatus.REOPENED],
        ClosureStatus.REOPENED: [ClosureStatus.CLOSED],
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_locking(cls, status: str) -> bool:
        """Check if dates covered by a closure in this status are locked."""
        return status == ClosureStatus.CLOSED
