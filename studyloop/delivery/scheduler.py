"""
Simplified SM-2 Schedule Calculator.

Turns a coarse grade into the next review schedule for one learner/item pair.

Coarse grades (what the learner reports after answering):
1 - Easy: the item felt trivial
3 - Good: appropriately challenging
5 - Hard: confusing, wrong, or not answered in time

All "N days from now" arithmetic happens on the learner's local calendar,
never as N * 86400 seconds, so intervals do not drift across DST changes.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import IntEnum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

UTC = timezone.utc


class Grade(IntEnum):
    """Coarse grade buckets; lower is better."""

    EASY = 1
    GOOD = 3
    HARD = 5

    @property
    def is_passing(self) -> bool:
        """Good-or-better grades count towards session accuracy."""
        return self <= Grade.GOOD


# =============================================================================
# Timezone Helpers
# =============================================================================


def ensure_aware(instant: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant


def resolve_timezone(name: str | None, fallback: str = "America/Toronto") -> tzinfo:
    """Look up an IANA timezone, falling back when the name is unknown."""
    for candidate in (name, fallback):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {candidate!r}")
    return UTC


def local_date(instant: datetime, tz: tzinfo) -> date:
    """Calendar date of an instant in the given timezone."""
    return ensure_aware(instant).astimezone(tz).date()


def start_of_local_day(instant: datetime, tz: tzinfo, offset_days: int = 0) -> datetime:
    """Local midnight of the instant's day (plus offset days), as a UTC instant."""
    day = local_date(instant, tz) + timedelta(days=offset_days)
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(UTC)


def add_local_days(instant: datetime, days: int, tz: tzinfo) -> datetime:
    """Same local wall-clock time, N calendar days later, as a UTC instant."""
    local = ensure_aware(instant).astimezone(tz)
    target = datetime.combine(local.date() + timedelta(days=days), local.time(), tzinfo=tz)
    return target.astimezone(UTC)


# =============================================================================
# Schedule State
# =============================================================================


@dataclass(frozen=True)
class ScheduleState:
    """Review schedule for one learner/item pair."""

    ease: float = 2.5
    repetitions: int = 0
    interval_days: int = 0
    next_due: datetime | None = None
    last_grade: Grade | None = None
    version: int = 0  # Bumped by the store on every write

    @classmethod
    def initial(cls, now: datetime) -> ScheduleState:
        """State for an item the learner has never been scheduled on."""
        return cls(next_due=ensure_aware(now))

    def is_due(self, now: datetime) -> bool:
        if self.next_due is None:
            return True
        return self.next_due <= ensure_aware(now)

    def days_overdue(self, now: datetime) -> int:
        """Whole days past the due instant (0 if not yet due)."""
        if self.next_due is None:
            return 0
        delta = ensure_aware(now) - self.next_due
        return max(0, delta.days)


# =============================================================================
# Calculator
# =============================================================================


@dataclass
class ScheduleConfig:
    """Configuration for the schedule calculator."""

    initial_ease: float = 2.5
    minimum_ease: float = 1.3
    hard_ease_penalty: float = 0.2
    easy_ease_bonus: float = 0.1
    easy_interval_bonus: float = 1.3
    good_steps: tuple[int, int] = (1, 3)  # Days for first and second repetition
    easy_steps: tuple[int, int] = (3, 6)
    min_interval_days: int = 1
    max_interval_days: int = 365
    jitter: float = 0.10  # +/- fraction applied to computed intervals

    @classmethod
    def from_settings(cls, settings) -> ScheduleConfig:
        return cls(
            max_interval_days=settings.max_interval_days,
            jitter=settings.schedule_jitter,
        )


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


class ScheduleCalculator:
    """
    Applies a coarse grade to a schedule state.

    Hard resets repetitions, lowers ease and brings the item back at the
    start of the learner's next calendar day. Good and Easy advance through
    fixed first steps, then grow the interval by the ease factor.
    """

    def __init__(self, config: ScheduleConfig | None = None, rng: random.Random | None = None):
        """
        Initialize the calculator.

        Args:
            config: Custom configuration (uses defaults if None)
            rng: Random source for interval jitter
        """
        self.config = config or ScheduleConfig()
        self.rng = rng or random.Random()

    def advance(
        self,
        state: ScheduleState,
        grade: Grade,
        now: datetime,
        tz: tzinfo = UTC,
    ) -> ScheduleState:
        """
        Calculate the next schedule state for a grade.

        Args:
            state: Current schedule state
            grade: Coarse grade applied to this attempt
            now: Instant of the attempt
            tz: Learner's timezone

        Returns:
            New ScheduleState (the version is left for the store to bump)
        """
        cfg = self.config
        now = ensure_aware(now)
        ease = max(cfg.minimum_ease, state.ease)

        if grade == Grade.HARD:
            return replace(
                state,
                ease=max(cfg.minimum_ease, ease - cfg.hard_ease_penalty),
                repetitions=0,
                interval_days=1,
                next_due=start_of_local_day(now, tz, offset_days=1),
                last_grade=Grade.HARD,
            )

        repetitions = state.repetitions + 1
        if grade == Grade.EASY:
            ease += cfg.easy_ease_bonus
            steps = cfg.easy_steps
            growth = ease * cfg.easy_interval_bonus
        else:
            steps = cfg.good_steps
            growth = ease

        if repetitions <= len(steps):
            interval = steps[repetitions - 1]
        else:
            interval = self._grow(state.interval_days, growth)

        logger.debug(
            f"Advanced schedule: grade={grade.name} reps={repetitions} "
            f"ease={ease:.2f} interval={interval}d"
        )
        return replace(
            state,
            ease=ease,
            repetitions=repetitions,
            interval_days=interval,
            next_due=add_local_days(now, interval, tz),
            last_grade=Grade(grade),
        )

    def _grow(self, previous_interval: int, factor: float) -> int:
        cfg = self.config
        jitter = 1.0 + self.rng.uniform(-cfg.jitter, cfg.jitter) if cfg.jitter else 1.0
        interval = _round_half_up(max(previous_interval, cfg.min_interval_days) * factor * jitter)
        return min(cfg.max_interval_days, max(cfg.min_interval_days, interval))
