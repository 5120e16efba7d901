"""
UserMission state machine.

All workflow invariants live here as pure functions over an immutable
MissionProgress snapshot, so they can be exercised without a database:

    ASSIGNED -> IN_PROGRESS -> SUBMITTED -> VERIFIED -> COMPLETED
                     ^             |           |
                     |             v           |
                     +-------- REJECTED        |
                     +-------------------------+  (more rounds needed)

The ORM model in models.py converts to and from MissionProgress; nothing else
is allowed to assign `status`, `current_progress` or the lifecycle stamps.
"""

import datetime
import enum
from dataclasses import dataclass, field, replace
from typing import Union

from exceptions import InvalidTransition


class UserMissionStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


class MissionEvent(str, enum.Enum):
    START = "START"
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    CONTINUE = "CONTINUE"   # approved round, target not reached yet
    COMPLETE = "COMPLETE"   # approved round that reaches the target


_TRANSITIONS = {
    (UserMissionStatus.ASSIGNED, MissionEvent.START): UserMissionStatus.IN_PROGRESS,
    (UserMissionStatus.IN_PROGRESS, MissionEvent.SUBMIT): UserMissionStatus.SUBMITTED,
    # a rejected round may be resubmitted as if it were still in progress
    (UserMissionStatus.REJECTED, MissionEvent.SUBMIT): UserMissionStatus.SUBMITTED,
    (UserMissionStatus.SUBMITTED, MissionEvent.APPROVE): UserMissionStatus.VERIFIED,
    (UserMissionStatus.SUBMITTED, MissionEvent.REJECT): UserMissionStatus.REJECTED,
    (UserMissionStatus.VERIFIED, MissionEvent.CONTINUE): UserMissionStatus.IN_PROGRESS,
    (UserMissionStatus.VERIFIED, MissionEvent.COMPLETE): UserMissionStatus.COMPLETED,
}

SUBMITTABLE_STATES = frozenset(
    state for (state, event) in _TRANSITIONS if event == MissionEvent.SUBMIT
)


def transition(state: UserMissionStatus, event: MissionEvent) -> UserMissionStatus:
    """Return the state reached by applying `event` to `state`, or raise InvalidTransition."""
    try:
        return _TRANSITIONS[(UserMissionStatus(state), MissionEvent(event))]
    except KeyError:
        raise InvalidTransition(
            f"Cannot apply {MissionEvent(event).value} to a mission in {UserMissionStatus(state).value}",
            details={"status": UserMissionStatus(state).value, "event": MissionEvent(event).value},
        ) from None


def can_submit(state: UserMissionStatus) -> bool:
    # ASSIGNED is accepted too: the coordinator starts progress implicitly
    return state == UserMissionStatus.ASSIGNED or state in SUBMITTABLE_STATES


# --- Lifecycle stamps ---

@dataclass(frozen=True)
class Pending:
    def __bool__(self):
        return False


@dataclass(frozen=True)
class Done:
    at: datetime.datetime


Stamp = Union[Pending, Done]
PENDING = Pending()


def stamp_from(value) -> Stamp:
    return Done(value) if value is not None else PENDING


def stamp_value(stamp: Stamp):
    return stamp.at if isinstance(stamp, Done) else None


@dataclass(frozen=True)
class MissionProgress:
    """Immutable snapshot of one UserMission's workflow state."""
    status: UserMissionStatus
    current_progress: int
    target_progress: int
    submitted: Stamp = field(default=PENDING)
    verified: Stamp = field(default=PENDING)
    completed: Stamp = field(default=PENDING)

    def __post_init__(self):
        if self.target_progress < 1:
            raise ValueError("target_progress must be at least 1")
        if not 0 <= self.current_progress <= self.target_progress:
            raise ValueError(
                f"current_progress {self.current_progress} outside 0..{self.target_progress}"
            )
        is_completed = self.status == UserMissionStatus.COMPLETED
        if is_completed != isinstance(self.completed, Done):
            raise ValueError("completed stamp must be set exactly when status is COMPLETED")
        if is_completed and self.current_progress != self.target_progress:
            raise ValueError("a completed mission must have reached its target")
        if self.status == UserMissionStatus.SUBMITTED and not isinstance(self.submitted, Done):
            raise ValueError("a submitted mission must carry a submission stamp")
        if self.status in (UserMissionStatus.VERIFIED, UserMissionStatus.COMPLETED) \
                and not isinstance(self.verified, Done):
            raise ValueError("a verified mission must carry a verification stamp")

    @classmethod
    def assigned(cls, target_progress: int) -> "MissionProgress":
        return cls(UserMissionStatus.ASSIGNED, 0, target_progress)

    @property
    def remaining(self) -> int:
        return self.target_progress - self.current_progress

    @property
    def is_completed(self) -> bool:
        return self.status == UserMissionStatus.COMPLETED


def start(progress: MissionProgress) -> MissionProgress:
    return replace(progress, status=transition(progress.status, MissionEvent.START))


def submit(progress: MissionProgress, now: datetime.datetime) -> MissionProgress:
    return replace(
        progress,
        status=transition(progress.status, MissionEvent.SUBMIT),
        submitted=Done(now),
    )


def record_verification(progress: MissionProgress, approved: bool, now: datetime.datetime) -> MissionProgress:
    """Approval stamps the round as verified; rejection never touches progress."""
    if approved:
        return replace(
            progress,
            status=transition(progress.status, MissionEvent.APPROVE),
            verified=Done(now),
        )
    return replace(progress, status=transition(progress.status, MissionEvent.REJECT))


def advance(progress: MissionProgress, now: datetime.datetime) -> MissionProgress:
    """
    Count one approved round. Reaching the target is the only way into
    COMPLETED; otherwise the mission goes back to IN_PROGRESS for another round.
    """
    if progress.status != UserMissionStatus.VERIFIED:
        # let transition() produce the error for the actual state
        transition(progress.status, MissionEvent.CONTINUE)
    new_progress = min(progress.current_progress + 1, progress.target_progress)
    if new_progress == progress.target_progress:
        return replace(
            progress,
            status=transition(progress.status, MissionEvent.COMPLETE),
            current_progress=new_progress,
            completed=Done(now),
        )
    return replace(
        progress,
        status=transition(progress.status, MissionEvent.CONTINUE),
        current_progress=new_progress,
    )
