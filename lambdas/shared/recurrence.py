"""
Recurrence rules for beats and their expansion into dated beat plans.

A rule is evaluated by walking every calendar day from the anchor date to the
rule's end date (inclusive) and keeping the days the rule matches. Nothing in
here reads the clock: the anchor date is always supplied by the caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterator, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

PERMANENT = "permanent"


class InvalidRuleError(ValueError):
    """Raised when a recurrence rule cannot be evaluated."""


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


# Weekday indices use 0=Sunday .. 6=Saturday
WEEKDAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


def weekday_index(d: date) -> int:
    return d.isoweekday() % 7


def normalize(value: Union[date, datetime, str]) -> date:
    """Drop any time-of-day component; accepts ISO strings."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency
    until: Union[date, str]
    weekdays: frozenset = field(default_factory=frozenset)
    interval_days: Optional[int] = None

    @property
    def is_permanent(self) -> bool:
        return isinstance(self.until, str) and self.until == PERMANENT


@dataclass(frozen=True)
class BeatPlan:
    beat_id: str
    beat_name: str
    plan_date: date
    retailer_ids: tuple
    # Rule dict + start_date the plan was expanded from; not part of plan identity
    schedule: Optional[dict] = field(default=None, compare=False)

    def to_row(self, user_id: Optional[str] = None) -> dict:
        """Serialize to the beat_plans table shape."""
        beat_data = {"retailer_ids": list(self.retailer_ids)}
        if self.schedule:
            beat_data["schedule"] = self.schedule
        return {
            "user_id": user_id,
            "beat_id": self.beat_id,
            "beat_name": self.beat_name,
            "plan_date": self.plan_date.isoformat(),
            "beat_data": beat_data,
        }


# ─── Rule construction / serialization ───────────────────────────────────────

def _whole_number(value, name: str) -> int:
    # 2.0 and "2" are accepted; 2.7, "2.7" and booleans are not
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise InvalidRuleError(f"Invalid {name}: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRuleError(f"Invalid {name}: {value!r}")


def rule_from_dict(data: dict) -> RecurrenceRule:
    """
    Build a rule from a request or stored payload, e.g.
      {"frequency": "weekly", "weekdays": [1, 3], "until": "2024-03-31"}
      {"frequency": "custom", "interval_days": 3, "until": "permanent"}
    Extra keys (start_date, monthly options) are ignored.
    """
    if not isinstance(data, dict):
        raise InvalidRuleError(f"Recurrence must be an object, got {type(data).__name__}")
    try:
        frequency = Frequency(str(data["frequency"]).lower())
    except ValueError:
        raise InvalidRuleError(f"Unknown frequency: {data['frequency']!r}")

    until = data.get("until") or PERMANENT
    if until != PERMANENT:
        try:
            until = normalize(until)
        except ValueError:
            raise InvalidRuleError(f"Invalid until date: {until!r}")

    raw_weekdays = data.get("weekdays") or ()
    if isinstance(raw_weekdays, (str, dict)):
        raise InvalidRuleError(f"Invalid weekdays: {raw_weekdays!r}")
    try:
        weekdays = frozenset(_whole_number(w, "weekdays") for w in raw_weekdays)
    except TypeError:
        raise InvalidRuleError(f"Invalid weekdays: {raw_weekdays!r}")

    interval = data.get("interval_days")
    if interval is not None:
        interval = _whole_number(interval, "interval_days")

    rule = RecurrenceRule(frequency=frequency, until=until, weekdays=weekdays, interval_days=interval)
    validate_rule(rule)
    return rule


def rule_to_dict(rule: RecurrenceRule) -> dict:
    return {
        "frequency": rule.frequency.value,
        "weekdays": sorted(rule.weekdays),
        "interval_days": rule.interval_days,
        "until": rule.until if rule.is_permanent else normalize(rule.until).isoformat(),
    }


def resolve_until(rule: RecurrenceRule, anchor_date: date, horizon_days: int = 365) -> RecurrenceRule:
    """Replace the permanent sentinel with anchor + horizon; concrete rules pass through."""
    if not rule.is_permanent:
        return rule
    end = normalize(anchor_date) + timedelta(days=horizon_days)
    return RecurrenceRule(
        frequency=rule.frequency,
        until=end,
        weekdays=rule.weekdays,
        interval_days=rule.interval_days,
    )


def validate_rule(rule: RecurrenceRule) -> None:
    if rule.frequency in (Frequency.WEEKLY, Frequency.MONTHLY):
        if not rule.weekdays:
            raise InvalidRuleError(f"{rule.frequency.value} rule needs at least one weekday")
        bad = sorted(w for w in rule.weekdays if not 0 <= w <= 6)
        if bad:
            raise InvalidRuleError(f"Weekday out of range 0..6: {bad}")
    elif rule.frequency is Frequency.CUSTOM:
        if rule.interval_days is None or rule.interval_days < 1:
            raise InvalidRuleError("custom rule needs interval_days >= 1")


# ─── Evaluation ───────────────────────────────────────────────────────────────

def rule_matches(rule: RecurrenceRule, current: date, anchor: date) -> bool:
    if rule.frequency is Frequency.DAILY:
        return True
    if rule.frequency is Frequency.WEEKLY:
        return weekday_index(current) in rule.weekdays
    if rule.frequency is Frequency.MONTHLY:
        # Same weekday filter as WEEKLY; week-of-month / day-of-month options are not applied
        return weekday_index(current) in rule.weekdays
    if rule.frequency is Frequency.CUSTOM:
        return (current - anchor).days % rule.interval_days == 0
    raise InvalidRuleError(f"Unhandled frequency: {rule.frequency!r}")


def matching_dates(rule: RecurrenceRule, anchor_date) -> Iterator[date]:
    """Yield every date in [anchor, until] the rule matches, ascending."""
    if rule.is_permanent:
        raise InvalidRuleError("Permanent rule must be resolved to a concrete end date first")
    validate_rule(rule)

    anchor = normalize(anchor_date)
    end = normalize(rule.until)
    if end < anchor:
        raise InvalidRuleError(f"End date {end} is before start date {anchor}")

    current = anchor
    while current <= end:
        if rule_matches(rule, current, anchor):
            yield current
        current += timedelta(days=1)


def expand(rule: RecurrenceRule, anchor_date, retailer_ids: Sequence[str],
           beat_id: str, beat_name: str) -> List[BeatPlan]:
    """
    Materialize one BeatPlan per matching date.
    retailer_ids is snapshotted as-is onto every plan; the caller has already
    checked it is non-empty. Each plan also records the rule and anchor it
    came from, so it can be checked later even after the beat's rule changes.
    """
    snapshot = tuple(retailer_ids)
    dates = list(matching_dates(rule, anchor_date))
    schedule = {**rule_to_dict(rule), "start_date": normalize(anchor_date).isoformat()}
    plans = [
        BeatPlan(beat_id=beat_id, beat_name=beat_name, plan_date=d, retailer_ids=snapshot, schedule=schedule)
        for d in dates
    ]
    logger.info(
        f"[PLAN] Expanded {rule.frequency.value} rule for beat {beat_id}: "
        f"{len(plans)} plan(s) from {normalize(anchor_date)} to {normalize(rule.until)}"
    )
    return plans


def describe(rule: RecurrenceRule) -> str:
    """Short human label for a rule, e.g. 'Weekly on Mon, Wed until 2024-03-31'."""
    days = ", ".join(WEEKDAY_NAMES[w] for w in sorted(rule.weekdays))
    until = "permanently" if rule.is_permanent else f"until {normalize(rule.until).isoformat()}"
    if rule.frequency is Frequency.DAILY:
        return f"Daily {until}"
    if rule.frequency is Frequency.CUSTOM:
        return f"Every {rule.interval_days} day(s) {until}"
    return f"{rule.frequency.value.capitalize()} on {days} {until}"
