"""
Linear vesting schedules shared by the bond issuer and the mining emitter.

A schedule releases `total` linearly over `[start, start + duration)`. A
zero-duration schedule is fully vested at `start`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Mapping, Tuple


@dataclass(frozen=True)
class VestingSchedule:
    total: int
    start: int
    duration: int
    released: int = 0

    def __post_init__(self) -> None:
        if self.total <= 0:
            raise ValueError(f"total must be positive: {self.total}")
        if self.start < 0:
            raise ValueError(f"start must be non-negative: {self.start}")
        if self.duration < 0:
            raise ValueError(f"duration must be non-negative: {self.duration}")
        if not (0 <= self.released <= self.total):
            raise ValueError(f"released must be in [0, total]: {self.released}")

    @property
    def end(self) -> int:
        return self.start + self.duration

    def vested(self, now: int) -> int:
        if now <= self.start:
            return self.total if self.duration == 0 and now == self.start else 0
        if self.duration == 0 or now >= self.end:
            return self.total
        return (self.total * (now - self.start)) // self.duration

    def releasable(self, now: int) -> int:
        return self.vested(now) - self.released

    @property
    def done(self) -> bool:
        return self.released == self.total


VestingBook = Mapping[str, Tuple[VestingSchedule, ...]]


def add_schedule(book: VestingBook, beneficiary: str, schedule: VestingSchedule) -> dict[str, Tuple[VestingSchedule, ...]]:
    out = dict(book)
    out[beneficiary] = tuple(book.get(beneficiary, ())) + (schedule,)
    return out


def releasable(book: VestingBook, beneficiary: str, now: int) -> int:
    return sum(s.releasable(now) for s in book.get(beneficiary, ()))


def outstanding(book: VestingBook, beneficiary: str) -> int:
    """Amount still owed (vested or not) to `beneficiary`."""
    return sum(s.total - s.released for s in book.get(beneficiary, ()))


def release(book: VestingBook, beneficiary: str, now: int) -> Tuple[dict[str, Tuple[VestingSchedule, ...]], int]:
    """
    Mark everything vested by `now` as released.

    Fully released schedules are dropped. Returns `(new_book, amount)`.
    """
    amount = 0
    kept = []
    for schedule in book.get(beneficiary, ()):
        due = schedule.releasable(now)
        if due:
            schedule = replace(schedule, released=schedule.released + due)
            amount += due
        if not schedule.done:
            kept.append(schedule)

    out = dict(book)
    if kept:
        out[beneficiary] = tuple(kept)
    else:
        out.pop(beneficiary, None)
    return out, amount
