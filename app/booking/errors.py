from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class RejectReason(str, Enum):
    DATE_UNAVAILABLE = "DateUnavailable"
    SLOT_NOT_OFFERED = "SlotNotOffered"
    SLOT_TAKEN = "SlotTaken"
    INVALID_CUSTOMER = "InvalidCustomer"
    ILLEGAL_TRANSITION = "IllegalTransition"
    DUPLICATE_SLOT = "DuplicateSlot"
    NOTHING_TO_COPY = "NothingToCopy"
    NO_TARGET_DATES = "NoTargetDates"
    PAST_DATE_TARGET = "PastDateTarget"
    SAME_DATE_TARGET = "SameDateTarget"
    PARTIAL_FAILURE = "PartialFailure"
    NETWORK_UNAVAILABLE = "NetworkUnavailable"
    SAVE_IN_PROGRESS = "SaveInProgress"
    UPDATE_IN_PROGRESS = "UpdateInProgress"
    NOT_FOUND = "NotFound"
    SERVER_ERROR = "ServerError"
    INVALID_INPUT = "InvalidInput"


@dataclass(frozen=True)
class Accepted(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Rejection:
    """A typed refusal the booking or admin surface turns into a user message."""

    reason: RejectReason
    message: str
    ok: bool = field(default=False, init=False)


@dataclass(frozen=True)
class PartialFailure:
    """Some dates of an availability save were stored, others were not."""

    succeeded: list[str]
    failed: dict[str, str]
    ok: bool = field(default=False, init=False)

    @property
    def reason(self) -> RejectReason:
        return RejectReason.PARTIAL_FAILURE

    @property
    def message(self) -> str:
        return (
            f"Saved {len(self.succeeded)} date(s) successfully, "
            f"{len(self.failed)} date(s) failed: {', '.join(sorted(self.failed))}"
        )


Result = Union[Accepted[T], Rejection]


class PersistenceError(RuntimeError):
    """The persistence service could not complete a request."""


class NetworkUnavailable(PersistenceError):
    pass


class SlotTakenError(PersistenceError):
    """A write would put a second pending/accepted appointment on one slot."""

    def __init__(self, date: str, time: str) -> None:
        super().__init__(f"This time slot is already booked: {date} {time}")
        self.date = date
        self.time = time


class RejectedByServer(PersistenceError):
    def __init__(self, reason: RejectReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message

    def as_rejection(self) -> Rejection:
        return Rejection(self.reason, self.message)


class StatusConflictError(PersistenceError):
    """The stored status changed between reading an appointment and writing it."""

    def __init__(self, appointment_id: str, expected: str) -> None:
        super().__init__(f"Appointment {appointment_id} is no longer {expected}")
        self.appointment_id = appointment_id
        self.expected = expected
