"""
Slot generation pipeline.

Builds a doctor's bookable slots from:
1. the recurring weekly template
2. one-off exceptions (extra availability or blocked ranges)
3. leaves (subtracted)
4. holidays (subtracted)
5. occupying appointments (subtracted, capacity aware)

Everything in this module is pure: "now", doctor settings and the stored
records are passed in, so the API and client-side previews run the same code.
Malformed records are logged and skipped; nothing here raises for bad data.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Mapping, Sequence

import pytz

log = logging.getLogger(__name__)

MODES = ("in_person", "telehealth", "both")
OCCUPYING_STATUSES = ("held", "booked", "checked_in")


@dataclass(frozen=True)
class TimeBlock:
    start: datetime
    end: datetime
    mode: str = "in_person"
    location_id: str | None = None
    capacity: int = 1
    duration: int = 15
    buffer: int = 0


@dataclass(frozen=True)
class ExceptionRule:
    exception_date: date
    exception_type: str  # add | block
    start_time: time | str
    end_time: time | str
    mode: str | None = None
    location_id: str | None = None
    duration: int | None = None
    buffer: int | None = None
    capacity: int | None = None


@dataclass(frozen=True)
class LeavePeriod:
    start: datetime
    end: datetime
    status: str = "active"
    reason: str | None = None


@dataclass(frozen=True)
class HolidayRule:
    holiday_date: date
    block_bookings: bool = True
    location_id: str | None = None


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime
    status: str = "booked"
    hold_expires_at: datetime | None = None

    def occupies(self, now: datetime) -> bool:
        if self.status not in OCCUPYING_STATUSES:
            return False
        if self.status == "held" and self.hold_expires_at is not None:
            return self.hold_expires_at > now
        return True


@dataclass(frozen=True)
class TimeSlot:
    id: str
    start: datetime
    end: datetime
    mode: str
    location_id: str | None
    capacity_remaining: int
    location_name: str | None = None
    status: str = "available"


@dataclass(frozen=True)
class LeaveInfo:
    reason: str | None
    end_date: date


@dataclass(frozen=True)
class DayAvailability:
    date: date
    status: str  # available | unavailable | leave
    slots: tuple[TimeSlot, ...] = ()
    leave_info: LeaveInfo | None = None
    next_available: datetime | None = None


@dataclass(frozen=True)
class AvailabilitySummary:
    status: str  # today | tomorrow | this_week | on_leave | no_schedule
    next_available: datetime | None = None
    leave_until: date | None = None


@dataclass(frozen=True)
class SlotGeneratorContext:
    timezone: str
    default_duration: int
    default_buffer: int
    min_lead_time: int  # minutes
    max_future_days: int
    week_pattern: Sequence[Mapping] = ()
    exceptions: Sequence[ExceptionRule] = ()
    leaves: Sequence[LeavePeriod] = ()
    holidays: Sequence[HolidayRule] = ()
    appointments: Sequence[BusyInterval] = ()
    appointment_type_duration: int | None = None
    appointment_type_buffer: int | None = None
    filter_mode: str | None = None
    filter_location_id: str | None = None
    location_names: Mapping[str, str] = field(default_factory=dict)
    exception_block_mode: str = "remove"  # remove | truncate


# ---- time helpers ----

def get_tz(name: str | None) -> pytz.BaseTzInfo:
    try:
        return pytz.timezone(name or "UTC")
    except pytz.UnknownTimeZoneError:
        log.warning("Unknown timezone %r, using UTC", name)
        return pytz.UTC


def js_weekday(day: date) -> int:
    # stored templates number days 0=Sunday..6=Saturday
    return (day.weekday() + 1) % 7


def date_range(start: date, end: date) -> Iterator[date]:
    cur = start
    while cur <= end:
        yield cur
        cur += timedelta(days=1)


def _parse_clock(value: time | str) -> tuple[time, int]:
    if isinstance(value, time):
        return value, 0
    parts = [int(p) for p in str(value).split(":")]
    hours = parts[0]
    minutes = parts[1] if len(parts) > 1 else 0
    seconds = parts[2] if len(parts) > 2 else 0
    if (hours, minutes, seconds) == (24, 0, 0):
        return time(0), 1
    return time(hours, minutes, seconds), 0


def local_at(tz: pytz.BaseTzInfo, day: date, value: time | str) -> datetime:
    t, carry = _parse_clock(value)
    return tz.localize(datetime.combine(day + timedelta(days=carry), t))


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


def last_leave_day(leave: LeavePeriod, tz: pytz.BaseTzInfo) -> date:
    # the end is exclusive; a leave ending at local midnight covers the day before
    return (leave.end - timedelta(microseconds=1)).astimezone(tz).date()


def slot_id(local_start: datetime, location_id: str | None) -> str:
    return f"{local_start:%Y-%m-%dT%H:%M}_{location_id or 'default'}"


# ---- pipeline steps ----

def _make_block(
    tz: pytz.BaseTzInfo,
    day: date,
    start: time | str,
    end: time | str,
    *,
    mode: str | None,
    location_id: str | None,
    capacity: int | None,
    duration: int | None,
    buffer: int | None,
    default_duration: int,
    default_buffer: int,
) -> TimeBlock | None:
    try:
        block = TimeBlock(
            start=local_at(tz, day, start),
            end=local_at(tz, day, end),
            mode=mode or "in_person",
            location_id=str(location_id) if location_id else None,
            capacity=int(capacity or 1),
            duration=int(duration or default_duration),
            buffer=int(buffer if buffer is not None else default_buffer),
        )
    except (TypeError, ValueError) as e:
        log.warning("Skipping malformed block on %s (%s-%s): %s", day, start, end, e)
        return None
    if block.mode not in MODES or block.start >= block.end or block.duration <= 0 or block.buffer < 0 or block.capacity < 1:
        log.warning("Skipping invalid block on %s: %s", day, block)
        return None
    return block


def expand_weekly_template(
    week_pattern: Sequence[Mapping],
    start_date: date,
    end_date: date,
    tz: pytz.BaseTzInfo,
    default_duration: int,
    default_buffer: int,
) -> list[TimeBlock]:
    by_day: dict[int, list] = {}
    for entry in week_pattern:
        try:
            by_day.setdefault(int(entry["day"]), list(entry.get("blocks") or []))
        except (KeyError, TypeError, ValueError):
            log.warning("Skipping malformed day schedule %r", entry)

    blocks: list[TimeBlock] = []
    for day in date_range(start_date, end_date):
        for raw in by_day.get(js_weekday(day), ()):
            if not isinstance(raw, Mapping):
                log.warning("Skipping malformed block %r", raw)
                continue
            block = _make_block(
                tz, day, raw.get("start"), raw.get("end"),
                mode=raw.get("mode"),
                location_id=raw.get("locationId"),
                capacity=raw.get("capacity"),
                duration=raw.get("duration"),
                buffer=raw.get("buffer"),
                default_duration=default_duration,
                default_buffer=default_buffer,
            )
            if block is not None:
                blocks.append(block)
    return blocks


def _truncate(block: TimeBlock, cut_start: datetime, cut_end: datetime) -> list[TimeBlock]:
    if not overlaps(block.start, block.end, cut_start, cut_end):
        return [block]
    pieces = []
    if block.start < cut_start:
        pieces.append(replace(block, end=cut_start))
    if cut_end < block.end:
        pieces.append(replace(block, start=cut_end))
    return pieces


def apply_exceptions(
    blocks: Sequence[TimeBlock],
    exceptions: Iterable[ExceptionRule],
    start_date: date,
    end_date: date,
    tz: pytz.BaseTzInfo,
    default_duration: int,
    default_buffer: int,
    block_mode: str = "remove",
) -> list[TimeBlock]:
    """Apply one-off exceptions in order.

    ``add`` appends a block built like a template block. ``block`` drops every
    block overlapping the range (``block_mode="remove"``) or cuts the range out
    of them (``block_mode="truncate"``).
    """
    result = list(blocks)
    for exc in exceptions:
        if exc.exception_date < start_date or exc.exception_date > end_date:
            continue
        if exc.exception_type == "add":
            block = _make_block(
                tz, exc.exception_date, exc.start_time, exc.end_time,
                mode=exc.mode,
                location_id=exc.location_id,
                capacity=exc.capacity,
                duration=exc.duration,
                buffer=exc.buffer,
                default_duration=default_duration,
                default_buffer=default_buffer,
            )
            if block is not None:
                result.append(block)
        elif exc.exception_type == "block":
            try:
                cut_start = local_at(tz, exc.exception_date, exc.start_time)
                cut_end = local_at(tz, exc.exception_date, exc.end_time)
            except (TypeError, ValueError) as e:
                log.warning("Skipping malformed block exception on %s: %s", exc.exception_date, e)
                continue
            if block_mode == "truncate":
                result = [piece for b in result for piece in _truncate(b, cut_start, cut_end)]
            else:
                result = [b for b in result if not overlaps(b.start, b.end, cut_start, cut_end)]
        else:
            log.warning("Skipping exception with unknown type %r", exc.exception_type)
    return result


def subtract_leaves(blocks: Sequence[TimeBlock], leaves: Iterable[LeavePeriod]) -> list[TimeBlock]:
    active = [l for l in leaves if l.status == "active"]
    return [
        b for b in blocks
        if not any(overlaps(b.start, b.end, l.start, l.end) for l in active)
    ]


def subtract_holidays(blocks: Sequence[TimeBlock], holidays: Iterable[HolidayRule]) -> list[TimeBlock]:
    blocking = [h for h in holidays if h.block_bookings]

    def closed(block: TimeBlock) -> bool:
        day = block.start.date()
        return any(
            h.holiday_date == day and (not h.location_id or h.location_id == block.location_id)
            for h in blocking
        )

    return [b for b in blocks if not closed(b)]


def filter_blocks(blocks: Sequence[TimeBlock], mode: str | None = None, location_id: str | None = None) -> list[TimeBlock]:
    out = list(blocks)
    if mode and mode != "both":
        out = [b for b in out if b.mode == mode or b.mode == "both"]
    if location_id:
        out = [b for b in out if b.location_id == location_id]
    return out


def _slots_for_block(
    block: TimeBlock,
    busy: Sequence[BusyInterval],
    tz: pytz.BaseTzInfo,
    min_start: datetime,
    horizon: datetime,
    duration: int,
    buffer: int,
    location_names: Mapping[str, str],
) -> Iterator[TimeSlot]:
    if duration <= 0 or buffer < 0:
        log.warning("Skipping block %s: duration=%s buffer=%s", block, duration, buffer)
        return
    length = timedelta(minutes=duration)
    step = timedelta(minutes=duration + buffer)
    t = block.start
    while t + length <= block.end:
        if t < min_start:
            t += step
            continue
        if t > horizon:
            break
        end = t + length
        used = sum(1 for a in busy if overlaps(t, end, a.start, a.end))
        remaining = block.capacity - used
        if remaining > 0:
            local_start = t.astimezone(tz)
            yield TimeSlot(
                id=slot_id(local_start, block.location_id),
                start=local_start,
                end=end.astimezone(tz),
                mode=block.mode,
                location_id=block.location_id,
                capacity_remaining=remaining,
                location_name=location_names.get(block.location_id) if block.location_id else None,
            )
        t += step


def generate_slots_from_blocks(
    blocks: Sequence[TimeBlock],
    appointments: Iterable[BusyInterval],
    now: datetime,
    tz: pytz.BaseTzInfo,
    min_lead_time: int,
    max_future_days: int,
    appointment_duration: int | None = None,
    appointment_buffer: int | None = None,
    location_names: Mapping[str, str] | None = None,
) -> list[TimeSlot]:
    min_start = now + timedelta(minutes=min_lead_time)
    horizon = now + timedelta(days=max_future_days)
    busy = [a for a in appointments if a.occupies(now)]
    names = location_names or {}

    seen: dict[str, TimeSlot] = {}
    for block in blocks:
        duration = appointment_duration or block.duration
        buffer = appointment_buffer if appointment_buffer is not None else block.buffer
        try:
            for slot in _slots_for_block(block, busy, tz, min_start, horizon, duration, buffer, names):
                seen.setdefault(slot.id, slot)
        except Exception:
            log.exception("Slot materialization failed for block %s", block)
    return sorted(seen.values(), key=lambda s: (s.start, s.id))


def generate_slots(ctx: SlotGeneratorContext, start_date: date, end_date: date, now: datetime) -> list[TimeSlot]:
    tz = get_tz(ctx.timezone)
    blocks = expand_weekly_template(ctx.week_pattern, start_date, end_date, tz, ctx.default_duration, ctx.default_buffer)
    blocks = apply_exceptions(blocks, ctx.exceptions, start_date, end_date, tz,
                              ctx.default_duration, ctx.default_buffer, ctx.exception_block_mode)
    blocks = subtract_leaves(blocks, ctx.leaves)
    blocks = subtract_holidays(blocks, ctx.holidays)
    blocks = filter_blocks(blocks, ctx.filter_mode, ctx.filter_location_id)
    return generate_slots_from_blocks(
        blocks,
        ctx.appointments,
        now,
        tz,
        ctx.min_lead_time,
        ctx.max_future_days,
        ctx.appointment_type_duration,
        ctx.appointment_type_buffer,
        ctx.location_names,
    )


# ---- grouping / summary ----

def group_slots_by_day(
    slots: Sequence[TimeSlot],
    start_date: date,
    end_date: date,
    leaves: Iterable[LeavePeriod],
    tz: pytz.BaseTzInfo,
) -> list[DayAvailability]:
    active = [l for l in leaves if l.status == "active"]
    by_day: dict[date, list[TimeSlot]] = defaultdict(list)
    for s in slots:
        by_day[s.start.astimezone(tz).date()].append(s)

    days = []
    for day in date_range(start_date, end_date):
        day_start = local_at(tz, day, time(0))
        day_end = local_at(tz, day + timedelta(days=1), time(0))
        day_slots = tuple(by_day.get(day, ()))
        leave = next((l for l in active if overlaps(day_start, day_end, l.start, l.end)), None)

        if leave is not None:
            status = "leave"
        elif not day_slots:
            status = "unavailable"
        else:
            status = "available"

        days.append(DayAvailability(
            date=day,
            status=status,
            slots=day_slots,
            leave_info=LeaveInfo(reason=leave.reason, end_date=last_leave_day(leave, tz)) if leave else None,
            next_available=day_slots[0].start if day_slots else None,
        ))
    return days


def compute_availability(ctx: SlotGeneratorContext, start_date: date, end_date: date, now: datetime) -> list[DayAvailability]:
    slots = generate_slots(ctx, start_date, end_date, now)
    return group_slots_by_day(slots, start_date, end_date, ctx.leaves, get_tz(ctx.timezone))


def first_available(days: Iterable[DayAvailability]) -> datetime | None:
    for day in days:
        if day.slots:
            return day.slots[0].start
    return None


def summarize_availability(
    days: Sequence[DayAvailability],
    leaves: Iterable[LeavePeriod],
    now: datetime,
    tz: pytz.BaseTzInfo,
) -> AvailabilitySummary:
    current = next((l for l in leaves if l.status == "active" and l.start <= now < l.end), None)
    if current is not None:
        return AvailabilitySummary(status="on_leave", leave_until=last_leave_day(current, tz))

    today = now.astimezone(tz).date()
    tomorrow = today + timedelta(days=1)
    for day in days:
        if day.slots and day.status == "available":
            nxt = day.slots[0].start
            if day.date == today:
                return AvailabilitySummary(status="today", next_available=nxt)
            if day.date == tomorrow:
                return AvailabilitySummary(status="tomorrow", next_available=nxt)
            return AvailabilitySummary(status="this_week", next_available=nxt)
    return AvailabilitySummary(status="no_schedule")
