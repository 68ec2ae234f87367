"""
Smart time resolver.

Turns relative phrases ("tomorrow", "in 30 min", "next friday", "afternoon")
into absolute dates/times anchored to the caller's local "now", and computes
the anchor values that the extraction prompt quotes back to the model.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from voice_actions.config import get_default_timezone
from voice_actions.models import Reminder, Task

logger = logging.getLogger("voice_actions.time_resolver")

HIGH = "high"
MEDIUM = "medium"
LOW = "low"
_RANK = {LOW: 0, MEDIUM: 1, HIGH: 2}

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

PART_OF_DAY = (
    (re.compile(r"\bmorning\b"), "09:00"),
    (re.compile(r"\b(noon|midday)\b"), "12:00"),
    (re.compile(r"\bafternoon\b"), "14:00"),
    (re.compile(r"\bevening\b"), "18:00"),
    (re.compile(r"\b(tonight|night)\b"), "21:00"),
)

_ISO_DATE = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:[t\s](\d{2}:\d{2})(?::\d{2}(?:\.\d+)?)?([+-]\d{2}:?\d{2}|z)?)?$")
_IN_DURATION = re.compile(
    r"\bin\s+(\d+|an?|one|half\s+an?)\s*(minutes?|mins?|min|hours?|hrs?|hr|h)\b"
)
_IN_DAYS = re.compile(r"\bin\s+(\d+)\s+days?\b")
_WEEKDAY = re.compile(r"\b(next\s+)?(" + "|".join(WEEKDAYS) + r")\b")
_CLOCK_AMPM = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)(?!\w)")
_CLOCK_24H = re.compile(r"\b(\d{1,2}):(\d{2})\b")
_CLOCK_H = re.compile(r"\b(\d{1,2})h(\d{2})?\b")
_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class ResolvedTime:
    date: Optional[date]
    time: Optional[str]
    confidence: str

    @property
    def matched(self) -> bool:
        return self.date is not None or self.time is not None


@dataclass(frozen=True)
class TimeAnchors:
    """Local "now" for one pipeline run plus pre-computed worked examples."""

    now: datetime
    timezone: str

    @property
    def current_date(self) -> str:
        return self.now.strftime("%Y-%m-%d")

    @property
    def current_time(self) -> str:
        return self.now.strftime("%H:%M:%S")

    @property
    def weekday(self) -> str:
        return WEEKDAYS[self.now.weekday()].capitalize()

    @property
    def tomorrow(self) -> str:
        return (self.now + timedelta(days=1)).strftime("%Y-%m-%d")

    @property
    def next_week(self) -> str:
        return (self.now + timedelta(days=7)).strftime("%Y-%m-%d")

    @property
    def in_10_min(self) -> str:
        return (self.now + timedelta(minutes=10)).replace(microsecond=0).isoformat()

    @property
    def in_30_min(self) -> str:
        return (self.now + timedelta(minutes=30)).replace(microsecond=0).isoformat()

    def worked_examples(self) -> str:
        return "\n".join(
            [
                f"- \"today\" -> {self.current_date}",
                f"- \"tomorrow\" -> {self.tomorrow}",
                f"- \"next week\" -> {self.next_week}",
                f"- \"in 10 minutes\" -> {self.in_10_min}",
                f"- \"in 30 minutes\" -> {self.in_30_min}",
                f"- \"tomorrow at 3pm\" -> dueDate {self.tomorrow}, dueTime 15:00",
            ]
        )


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    candidate = (name or "").strip() or get_default_timezone()
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("[time.tz] unknown timezone=%s; falling back to %s", candidate, get_default_timezone())
        try:
            return ZoneInfo(get_default_timezone())
        except (ZoneInfoNotFoundError, ValueError):
            return ZoneInfo("UTC")


def compute_anchors(tz_name: Optional[str], now: Optional[datetime] = None) -> TimeAnchors:
    tz = resolve_timezone(tz_name)
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return TimeAnchors(now=current.astimezone(tz), timezone=str(tz.key))


def _lowest(*levels: str) -> str:
    return min(levels, key=lambda level: _RANK[level])


def _hhmm(hour: int, minute: int) -> Optional[str]:
    if 0 <= hour <= 23 and 0 <= minute <= 59:
        return f"{hour:02d}:{minute:02d}"
    return None


def _parse_clock(text: str) -> Optional[str]:
    m = _CLOCK_AMPM.search(text)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2) or 0)
        meridiem = m.group(3).replace(".", "")
        if hour < 1 or hour > 12:
            return None
        if meridiem == "pm" and hour != 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
        return _hhmm(hour, minute)
    m = _CLOCK_24H.search(text)
    if m:
        return _hhmm(int(m.group(1)), int(m.group(2)))
    m = _CLOCK_H.search(text)
    if m:
        return _hhmm(int(m.group(1)), int(m.group(2) or 0))
    return None


def _duration_amount(token: str) -> float:
    token = token.strip()
    if token.isdigit():
        return float(token)
    if token.startswith("half"):
        return 0.5
    return 1.0


def _match_date(text: str, today: date) -> Tuple[Optional[date], str]:
    if "day after tomorrow" in text:
        return today + timedelta(days=2), HIGH
    if re.search(r"\b(today|tonight)\b", text):
        return today, HIGH
    if re.search(r"\btomorrow\b", text):
        return today + timedelta(days=1), HIGH
    m = _IN_DAYS.search(text)
    if m:
        return today + timedelta(days=int(m.group(1))), HIGH
    if re.search(r"\bnext week\b", text):
        return today + timedelta(days=7), HIGH
    if re.search(r"\bthis week\b", text) or re.search(r"\bend of (the )?week\b", text):
        return today + timedelta(days=(4 - today.weekday()) % 7), MEDIUM
    m = _WEEKDAY.search(text)
    if m:
        target = WEEKDAYS.index(m.group(2))
        days = (target - today.weekday()) % 7
        if days == 0:
            days = 7
        if m.group(1):
            days += 7
        return today + timedelta(days=days), MEDIUM
    return None, LOW


def resolve(expression: Optional[str], anchor: datetime) -> ResolvedTime:
    """Resolve ``expression`` against the local ``anchor`` datetime.

    Unmatched expressions yield ``ResolvedTime(None, None, "low")``; callers
    decide whether to fall back or drop the field.
    """
    text = (expression or "").strip().lower()
    if not text:
        return ResolvedTime(None, None, LOW)

    iso = _ISO_DATE.match(text)
    if iso:
        try:
            if iso.group(3):
                parsed = datetime.fromisoformat(text.upper().replace("Z", "+00:00")).astimezone(anchor.tzinfo)
                return ResolvedTime(parsed.date(), parsed.strftime("%H:%M"), HIGH)
            return ResolvedTime(date.fromisoformat(iso.group(1)), iso.group(2), HIGH)
        except ValueError:
            return ResolvedTime(None, None, LOW)

    m = _IN_DURATION.search(text)
    if m:
        amount = _duration_amount(m.group(1))
        unit = m.group(2)
        delta = timedelta(minutes=amount) if unit.startswith("m") else timedelta(hours=amount)
        target = anchor + delta
        return ResolvedTime(target.date(), target.strftime("%H:%M"), HIGH)

    today = anchor.date()
    resolved_date, date_conf = _match_date(text, today)

    clock = _parse_clock(text)
    time_conf = HIGH if clock else LOW
    if clock is None:
        for pattern, value in PART_OF_DAY:
            if pattern.search(text):
                clock = value
                time_conf = MEDIUM
                break

    if resolved_date is None and clock is None:
        return ResolvedTime(None, None, LOW)
    if resolved_date is None:
        # Bare clock time: the next occurrence of that time
        resolved_date = today
        if clock < anchor.strftime("%H:%M"):
            resolved_date = today + timedelta(days=1)
        return ResolvedTime(resolved_date, clock, time_conf)
    if clock is None:
        return ResolvedTime(resolved_date, None, date_conf)
    return ResolvedTime(resolved_date, clock, _lowest(date_conf, time_conf))


def to_absolute(resolved: ResolvedTime, anchor: datetime, default_time: str = "09:00") -> Optional[datetime]:
    if resolved.date is None:
        return None
    hh, mm = (resolved.time or default_time).split(":")
    return datetime.combine(resolved.date, time(int(hh), int(mm)), tzinfo=anchor.tzinfo)


def normalize_clock(value: Optional[str], anchor: datetime) -> Optional[str]:
    """Coerce a model-supplied time value to 24h ``HH:MM`` or None."""
    if not value:
        return None
    text = value.strip().lower()
    m = _HHMM.match(text)
    if m:
        return _hhmm(int(m.group(1)), int(m.group(2)))
    return resolve(text, anchor).time


def normalize_task_times(task: Task, anchor: datetime) -> Task:
    """Return ``task`` with ISO ``due_date`` and 24h ``due_time`` or cleared fields."""
    updates = {}
    if task.due_date:
        resolved = resolve(task.due_date, anchor)
        if resolved.date is None:
            logger.info("[time.task] dropping unresolved due_date=%r title=%r", task.due_date, task.title)
        updates["due_date"] = resolved.date.isoformat() if resolved.date else None
        if resolved.time and not task.due_time:
            updates["due_time"] = resolved.time
    due_time = updates.get("due_time", task.due_time)
    if due_time:
        updates["due_time"] = normalize_clock(due_time, anchor)
        if updates["due_time"] and not task.due_date:
            # a bare time is its next occurrence, never one already past
            upcoming = resolve(updates["due_time"], anchor)
            updates["due_date"] = upcoming.date.isoformat() if upcoming.date else None
    if not updates:
        return task
    return task.model_copy(update=updates)


def normalize_reminder_time(reminder: Reminder, anchor: datetime) -> Reminder:
    """Return ``reminder`` with an absolute ISO ``reminder_time``.

    Unresolvable or missing values default to the anchor "now".
    """
    when: Optional[datetime] = None
    if reminder.reminder_time:
        raw = reminder.reminder_time.strip()
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            when = parsed if parsed.tzinfo else parsed.replace(tzinfo=anchor.tzinfo)
        except ValueError:
            resolved = resolve(raw, anchor)
            when = to_absolute(resolved, anchor, default_time=anchor.strftime("%H:%M"))
            if when is None:
                logger.info("[time.reminder] unresolved reminder_time=%r title=%r", raw, reminder.title)
    if when is None:
        when = anchor
    return reminder.model_copy(update={"reminder_time": when.replace(microsecond=0).isoformat()})


__all__ = [
    "ResolvedTime",
    "TimeAnchors",
    "compute_anchors",
    "normalize_clock",
    "normalize_reminder_time",
    "normalize_task_times",
    "resolve",
    "resolve_timezone",
    "to_absolute",
]
