from __future__ import annotations

import logging
from datetime import date as Date
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Union

from ..schemas import AvailabilityDay, check_date
from .errors import Accepted, NetworkUnavailable, PartialFailure, PersistenceError, RejectReason, Rejection
from .slots import normalize_time, parse_date

if TYPE_CHECKING:
    from ..store import AvailabilityCache, PersistenceService

logger = logging.getLogger(__name__)


class EditorState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    SAVING = "saving"


class AvailabilityEditor:
    """Admin-side edits to the availability cache.

    Edits are local until ``save_snapshot`` pushes the whole map in one request.
    While a save is in flight every further edit or save is refused with
    ``SaveInProgress``.
    """

    def __init__(
        self,
        cache: "AvailabilityCache",
        persistence: "PersistenceService",
        today: Callable[[], Date] = Date.today,
    ) -> None:
        self.cache = cache
        self.persistence = persistence
        self.today = today
        self.state = EditorState.IDLE

    @property
    def has_unsaved_edits(self) -> bool:
        return self.state is not EditorState.IDLE

    def _busy(self) -> Rejection | None:
        if self.state is EditorState.SAVING:
            return Rejection(RejectReason.SAVE_IN_PROGRESS, "Save already in progress. Please wait.")
        return None

    def _invalid(self, exc: ValueError) -> Rejection:
        return Rejection(RejectReason.INVALID_INPUT, str(exc))

    def _store(self, date: str, day: AvailabilityDay) -> None:
        if day.is_empty:
            self.cache.days.pop(date, None)
            self.cache.removed.add(date)
        else:
            self.cache.days[date] = day
            self.cache.removed.discard(date)
        self.state = EditorState.EDITING

    def add_slot(self, date: str, time: str) -> Union[Accepted[list[str]], Rejection]:
        busy = self._busy()
        if busy:
            return busy
        try:
            check_date(date)
            time = normalize_time(time)
        except ValueError as exc:
            return self._invalid(exc)
        day = self.cache.days.get(date) or AvailabilityDay()
        if time in day.time_slots:
            return Rejection(RejectReason.DUPLICATE_SLOT, f"{time} is already offered on {date}")
        updated = day.model_copy(update={"time_slots": sorted([*day.time_slots, time])})
        self._store(date, updated)
        return Accepted(list(updated.time_slots))

    def remove_slot(self, date: str, time: str) -> Union[Accepted[list[str]], Rejection]:
        busy = self._busy()
        if busy:
            return busy
        day = self.cache.days.get(date)
        if day is None or time not in day.time_slots:
            return Accepted(list(day.time_slots) if day else [])
        updated = day.model_copy(update={"time_slots": [slot for slot in day.time_slots if slot != time]})
        self._store(date, updated)
        return Accepted(list(updated.time_slots))

    def set_closed(self, date: str, closed: bool) -> Union[Accepted[bool], Rejection]:
        busy = self._busy()
        if busy:
            return busy
        try:
            check_date(date)
        except ValueError as exc:
            return self._invalid(exc)
        day = self.cache.days.get(date) or AvailabilityDay()
        if day.closed == closed:
            return Accepted(closed)
        self._store(date, day.model_copy(update={"closed": closed}))
        return Accepted(closed)

    async def copy_slots(
        self, source_date: str, target_dates: Iterable[str]
    ) -> Union[Accepted[int], Rejection, PartialFailure]:
        """Replace each target date's availability with the source date's slots."""
        targets = sorted(set(target_dates))
        source = self.cache.days.get(source_date)
        if source is None or not source.time_slots:
            return Rejection(RejectReason.NOTHING_TO_COPY, "No time slots to copy from this day.")
        if not targets:
            return Rejection(RejectReason.NO_TARGET_DATES, "Please select at least one day to copy to.")
        try:
            for target in targets:
                check_date(target)
        except ValueError as exc:
            return self._invalid(exc)
        today = self.today()
        if any(parse_date(target) < today for target in targets):
            return Rejection(RejectReason.PAST_DATE_TARGET, "Cannot copy to past dates.")
        if source_date in targets:
            return Rejection(RejectReason.SAME_DATE_TARGET, "Cannot copy to the same day.")
        busy = self._busy()
        if busy:
            return busy

        # Overwrite, not merge: a target loses whatever slots it had before.
        for target in targets:
            self._store(target, AvailabilityDay(time_slots=list(source.time_slots), closed=False))
        logger.info("Copied %d slot(s) from %s to %d date(s)", len(source.time_slots), source_date, len(targets))

        result = await self.save_snapshot()
        if isinstance(result, Accepted):
            return Accepted(len(targets))
        return result

    def snapshot(self) -> dict[str, AvailabilityDay]:
        days = {date: day.model_copy() for date, day in self.cache.days.items()}
        for date in self.cache.removed:
            days.setdefault(date, AvailabilityDay())
        return days

    async def save_snapshot(self) -> Union[Accepted[int], PartialFailure, Rejection]:
        busy = self._busy()
        if busy:
            return busy
        self.state = EditorState.SAVING
        days = self.snapshot()
        try:
            result = await self.persistence.save_availability(days)
        except NetworkUnavailable as exc:
            self.state = EditorState.EDITING
            logger.warning("Availability save failed, edits kept locally: %s", exc)
            return Rejection(
                RejectReason.NETWORK_UNAVAILABLE,
                "Cannot connect to server. Changes were not saved; please try again.",
            )
        except PersistenceError as exc:
            self.state = EditorState.EDITING
            logger.warning("Availability save failed: %s", exc)
            return PartialFailure(succeeded=[], failed={date: str(exc) for date in days})

        failed = {error.date: error.error for error in result.errors}
        succeeded = sorted(date for date in days if date not in failed)
        self.cache.removed.difference_update(succeeded)
        if failed:
            self.state = EditorState.EDITING
            logger.warning("Availability save partially failed: %s", ", ".join(sorted(failed)))
            return PartialFailure(succeeded=succeeded, failed=failed)

        self.state = EditorState.IDLE
        await self.cache.refresh()
        return Accepted(len(succeeded))
