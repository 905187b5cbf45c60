"""
Entry validation rules for a week of time entries.

One rule set serves both the preview endpoint and the submission gate. The
functions here are pure: they read entries, never mutate them, and never raise
for bad data. Results are split into blocking errors (refuse submission),
per-entry field errors (also blocking) and advisory warnings.

Entries are read by attribute, so ORM rows and Pydantic schemas both work.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence

from timeflow.models.timesheet import EntryCategory, EntryType

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
MAX_DESCRIPTION_LENGTH = 500

NEVER_BILLABLE = {EntryCategory.LEAVE, EntryCategory.MISCELLANEOUS}


@dataclass(frozen=True)
class ValidationRules:
    """Numeric thresholds of the deployment."""
    min_daily_hours: Decimal = Decimal("8")
    max_daily_hours: Decimal = Decimal("10")
    max_weekly_hours: Decimal = Decimal("56")
    weekend_warning_hours: Decimal = Decimal("10")
    hours_increment: Decimal = Decimal("0.25")
    max_entry_hours: Decimal = Decimal("24")
    training_billable: bool = False
    # When set, entries dated after this day are rejected
    today: Optional[date] = None

    @classmethod
    def from_settings(cls, settings: Any, today: Optional[date] = None) -> "ValidationRules":
        return cls(
            min_daily_hours=Decimal(str(settings.MIN_DAILY_HOURS)),
            max_daily_hours=Decimal(str(settings.MAX_DAILY_HOURS)),
            max_weekly_hours=Decimal(str(settings.MAX_WEEKLY_HOURS)),
            weekend_warning_hours=Decimal(str(settings.WEEKEND_WARNING_HOURS)),
            hours_increment=Decimal(str(settings.HOURS_INCREMENT)),
            max_entry_hours=Decimal(str(settings.MAX_ENTRY_HOURS)),
            training_billable=settings.TRAINING_BILLABLE,
            today=today if settings.REJECT_FUTURE_ENTRIES else None,
        )


@dataclass
class ValidationResult:
    blocking_errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    field_errors: Dict[int, Dict[str, str]] = field(default_factory=dict)
    daily_totals: Dict[date, Decimal] = field(default_factory=dict)
    weekly_total: Decimal = Decimal("0")

    @property
    def is_blocked(self) -> bool:
        return bool(self.blocking_errors or self.field_errors)

    def add_field_error(self, index: int, field_name: str, message: str) -> None:
        self.field_errors.setdefault(index, {}).setdefault(field_name, message)


def week_dates_for(week_start: date) -> List[date]:
    """The seven days of the week starting at ``week_start``."""
    return [week_start + timedelta(days=offset) for offset in range(7)]


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def format_hours(hours: Decimal) -> str:
    """7.50 -> '7.5', 8.00 -> '8'."""
    return ("%f" % hours).rstrip("0").rstrip(".")


def to_hours(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _category(entry: Any) -> EntryCategory:
    raw = getattr(entry, "entry_category", None) or EntryCategory.PROJECT
    try:
        return EntryCategory(raw)
    except ValueError:
        return EntryCategory.PROJECT


def _entry_type(entry: Any) -> EntryType:
    raw = getattr(entry, "entry_type", None) or EntryType.PROJECT_TASK
    try:
        return EntryType(raw)
    except ValueError:
        return EntryType.PROJECT_TASK


def _text(value: Optional[str]) -> str:
    return (value or "").strip()


def resolve_billable(
    entry_date: date,
    category: Any,
    requested: bool,
    rules: ValidationRules = ValidationRules(),
) -> bool:
    """The billable flag an entry is persisted with, whatever the user asked for."""
    category = EntryCategory(category or EntryCategory.PROJECT)
    if is_weekend(entry_date):
        return False
    if category in NEVER_BILLABLE:
        return False
    if category == EntryCategory.TRAINING:
        return bool(requested) and rules.training_billable
    return bool(requested)


def _check_entry_fields(
    index: int,
    entry: Any,
    week: Sequence[date],
    rules: ValidationRules,
    result: ValidationResult,
) -> None:
    category = _category(entry)
    hours = to_hours(getattr(entry, "hours", None))
    entry_date = getattr(entry, "date", None)

    if hours <= 0:
        result.add_field_error(index, "hours", "Hours must be greater than zero")
    elif hours > rules.max_entry_hours:
        result.add_field_error(
            index, "hours", f"Maximum {format_hours(rules.max_entry_hours)} hours per entry"
        )
    elif rules.hours_increment > 0 and hours % rules.hours_increment != 0:
        result.add_field_error(
            index,
            "hours",
            f"Hours must be in increments of {format_hours(rules.hours_increment)}",
        )

    if entry_date is None:
        result.add_field_error(index, "date", "Date is required")
    elif entry_date not in week:
        result.add_field_error(index, "date", "Date is outside the timesheet week")
    elif rules.today is not None and entry_date > rules.today:
        result.add_field_error(index, "date", "Future dates are not allowed")

    if category == EntryCategory.PROJECT:
        if not getattr(entry, "project_id", None):
            result.add_field_error(index, "project_id", "Project is required")
        task_id = getattr(entry, "task_id", None)
        custom = _text(getattr(entry, "custom_task_description", None))
        if _entry_type(entry) == EntryType.CUSTOM_TASK:
            if not custom:
                result.add_field_error(
                    index, "custom_task_description", "Custom task description is required"
                )
            elif task_id:
                result.add_field_error(index, "task_id", "Custom task entries cannot reference a task")
        else:
            if not task_id:
                result.add_field_error(index, "task_id", "Task is required")
            elif custom:
                result.add_field_error(
                    index, "custom_task_description", "Task entries cannot carry a custom task description"
                )

    if getattr(entry, "leave_session", None) and category != EntryCategory.LEAVE:
        result.add_field_error(index, "leave_session", "Leave session is only valid for leave entries")

    if len(_text(getattr(entry, "description", None))) > MAX_DESCRIPTION_LENGTH:
        result.add_field_error(index, "description", "Description too long")


def _duplicate_key(entry: Any) -> Optional[tuple]:
    if _category(entry) != EntryCategory.PROJECT:
        return None
    entry_type = _entry_type(entry)
    if entry_type == EntryType.CUSTOM_TASK:
        identifier = _text(getattr(entry, "custom_task_description", None)).lower()
    else:
        identifier = getattr(entry, "task_id", None)
    if not identifier:
        return None
    return (entry_type, getattr(entry, "project_id", None), identifier, getattr(entry, "date", None))


def validate(
    entries: Iterable[Any],
    week_dates: Sequence[date],
    rules: ValidationRules = ValidationRules(),
) -> ValidationResult:
    """
    Check a week of entries.

    Args:
        entries: Entries of one timesheet, in display order
        week_dates: The seven days of the week, Monday first
        rules: Deployment thresholds

    Returns:
        ValidationResult with blocking errors, warnings and per-entry field errors
    """
    entries = list(entries)
    week = list(week_dates)
    result = ValidationResult()

    totals: Dict[date, Decimal] = {day: Decimal("0") for day in week}
    days_with_entries = set()
    seen = set()
    billable_weekend = False

    for index, entry in enumerate(entries):
        _check_entry_fields(index, entry, week, rules, result)

        entry_date = getattr(entry, "date", None)
        if entry_date in totals:
            totals[entry_date] += to_hours(getattr(entry, "hours", None))
            days_with_entries.add(entry_date)
            if is_weekend(entry_date) and getattr(entry, "is_billable", False):
                billable_weekend = True

        key = _duplicate_key(entry)
        if key is not None:
            if key in seen:
                result.blocking_errors.append(
                    f"{entry_date.isoformat() if entry_date else 'Unknown date'}: "
                    f"Duplicate entry for the same project and task"
                )
            seen.add(key)

    for day in week:
        total = totals[day]
        label = f"{day.isoformat()} ({WEEKDAY_NAMES[day.weekday()]})"
        if is_weekend(day):
            if total > rules.weekend_warning_hours:
                result.warnings.append(
                    f"{label}: Weekend total exceeds recommended "
                    f"{format_hours(rules.weekend_warning_hours)} hours ({format_hours(total)}h)"
                )
        elif day not in days_with_entries:
            result.warnings.append(f"{label}: No entries logged for this weekday")
        elif total < rules.min_daily_hours:
            result.blocking_errors.append(
                f"{label}: Minimum {format_hours(rules.min_daily_hours)} hours required "
                f"for weekday (current: {format_hours(total)}h)"
            )
        elif total > rules.max_daily_hours:
            result.blocking_errors.append(
                f"{label}: Maximum {format_hours(rules.max_daily_hours)} hours allowed "
                f"for weekday (current: {format_hours(total)}h)"
            )

    weekly_total = sum(totals.values(), Decimal("0"))
    if weekly_total > rules.max_weekly_hours:
        result.blocking_errors.append(
            f"Weekly total {format_hours(weekly_total)}h exceeds maximum allowed "
            f"{format_hours(rules.max_weekly_hours)} hours"
        )

    if billable_weekend:
        result.warnings.append("Weekend entries are automatically set to non-billable")

    result.daily_totals = totals
    result.weekly_total = weekly_total
    return result
