from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from cashback_config import CashbackProgram, CycleType
from config import get_settings


MONTH_ABBREVIATIONS = (
    "JAN",
    "FEB",
    "MAR",
    "APR",
    "MAY",
    "JUN",
    "JUL",
    "AUG",
    "SEP",
    "OCT",
    "NOV",
    "DEC",
)

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class CycleRange:
    start: datetime
    end: datetime

    @property
    def tag(self) -> str:
        return format_iso_cycle_tag(self.end)

    @property
    def legacy_tag(self) -> str:
        return format_legacy_cycle_tag(self.end)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _shift_month(year: int, month: int, months: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + months
    return total // 12, total % 12 + 1


def _clamped(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, days_in_month(year, month)))


def _span(start: date, end: date) -> CycleRange:
    return CycleRange(datetime.combine(start, time.min), datetime.combine(end, time.max))


def cycle_range(program: CashbackProgram, reference: DateLike) -> Optional[CycleRange]:
    """Return the cycle containing ``reference``, or None when the program has no cycle."""
    if program.cycle_type is None:
        return None

    ref = reference.date() if isinstance(reference, datetime) else reference

    if program.cycle_type != CycleType.statement_cycle or not program.statement_day:
        first = ref.replace(day=1)
        last = ref.replace(day=days_in_month(ref.year, ref.month))
        return _span(first, last)

    day = program.statement_day
    this_statement = _clamped(ref.year, ref.month, day)
    if ref >= this_statement:
        start = this_statement
        next_year, next_month = _shift_month(ref.year, ref.month, 1)
        next_statement = _clamped(next_year, next_month, day)
    else:
        prev_year, prev_month = _shift_month(ref.year, ref.month, -1)
        start = _clamped(prev_year, prev_month, day)
        next_statement = this_statement
    return _span(start, next_statement - timedelta(days=1))


def format_iso_cycle_tag(moment: DateLike) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def format_legacy_cycle_tag(moment: DateLike) -> str:
    return f"{MONTH_ABBREVIATIONS[moment.month - 1]}{moment.year % 100:02d}"


def parse_cycle_tag(tag: Optional[str]) -> Optional[tuple[int, int]]:
    """Read either ``2024-11`` or ``NOV24`` into ``(year, month)``."""
    if not tag:
        return None
    text = tag.strip().upper()
    if len(text) == 7 and text[4] == "-":
        try:
            year, month = int(text[:4]), int(text[5:])
        except ValueError:
            return None
        return (year, month) if 1 <= month <= 12 else None
    if len(text) == 5 and text[:3] in MONTH_ABBREVIATIONS and text[3:].isdigit():
        return 2000 + int(text[3:]), MONTH_ABBREVIATIONS.index(text[:3]) + 1
    return None


def iso_alias(tag: str) -> Optional[str]:
    parsed = parse_cycle_tag(tag)
    if parsed is None:
        return None
    year, month = parsed
    return format_iso_cycle_tag(date(year, month, 1))


def legacy_alias(tag: str) -> Optional[str]:
    parsed = parse_cycle_tag(tag)
    if parsed is None:
        return None
    year, month = parsed
    return format_legacy_cycle_tag(date(year, month, 1))


def tag_aliases(tag: str) -> set[str]:
    """Every spelling under which rows for this cycle may have been stored."""
    aliases = {tag}
    for alias in (iso_alias(tag), legacy_alias(tag)):
        if alias:
            aliases.add(alias)
    return aliases


def cycle_tags_for(program: CashbackProgram, moment: DateLike) -> tuple[str, str]:
    """Canonical and legacy tag for the cycle holding ``moment``.

    Programs without a cycle fall back to the calendar month of ``moment``.
    """
    rng = cycle_range(program, moment)
    tag_date = rng.end if rng else moment
    return format_iso_cycle_tag(tag_date), format_legacy_cycle_tag(tag_date)


def cycle_range_for_tag(program: CashbackProgram, tag: str) -> Optional[CycleRange]:
    """Range of the cycle that ends in the tagged month."""
    parsed = parse_cycle_tag(tag)
    if parsed is None:
        return None
    year, month = parsed
    # the end of a statement cycle is the day before the statement day,
    # so the day before it always lies inside the tagged cycle
    if program.cycle_type == CycleType.statement_cycle and program.statement_day:
        end_day = _clamped(year, month, program.statement_day) - timedelta(days=1)
        if end_day.month != month:
            end_day = date(year, month, days_in_month(year, month))
        return cycle_range(program, end_day)
    return cycle_range(program, date(year, month, 1))


def format_cycle_label(rng: CycleRange, *, with_year: bool = False) -> str:
    fmt = "%d.%m.%Y" if with_year else "%d.%m"
    return f"{rng.start.strftime(fmt)} - {rng.end.strftime(fmt)}"


def recent_cycle_ranges(
    program: CashbackProgram, reference: DateLike, count: int = 6
) -> list[CycleRange]:
    """The cycle holding ``reference`` followed by the ``count - 1`` before it."""
    ranges: list[CycleRange] = []
    current = cycle_range(program, reference)
    while current and len(ranges) < count:
        ranges.append(current)
        current = cycle_range(program, current.start - timedelta(days=1))
    return ranges
