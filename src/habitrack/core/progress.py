"""Progress engine: pure computations over a habit's log collection.

Nothing in this module performs I/O or mutates its arguments. The current
date is always passed in explicitly so results are deterministic.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from habitrack.core.models import (
    MAX_COMPLETION_RATE,
    GoalProgress,
    Habit,
    HabitsOverview,
    LogEntry,
)

_ONE_DAY = timedelta(days=1)


@dataclass(frozen=True, slots=True)
class ProgressStats:
    """Derived statistics recomputed after every log mutation."""

    completed_days: int
    completion_rate: int
    streak: int


def round_half_up(numerator: int, denominator: int) -> int:
    """Divide two non-negative integers, rounding halves up.

    Integer arithmetic avoids the banker's rounding of ``round()`` and float
    representation error at exact halves.
    """
    return (2 * numerator + denominator) // (2 * denominator)


def upsert_log(
    logs: Sequence[LogEntry],
    log_date: date,
    completed: bool,  # noqa: FBT001
    time: str | None = None,
    mood: str | None = None,
) -> list[LogEntry]:
    """Merge a log entry into a collection keyed by date.

    The entry for ``log_date`` is replaced in place when present, otherwise
    the new entry is appended. The order of all other entries is preserved.
    If the input already holds several entries for ``log_date``, the first
    position is replaced and the rest are dropped.

    Args:
        logs: Existing log entries (left untouched)
        log_date: Calendar date of the entry
        completed: Completion flag
        time: Optional wall-clock time (HH:MM)
        mood: Optional mood label

    Returns:
        list[LogEntry]: A new collection with exactly one entry for ``log_date``
    """
    entry = LogEntry(date=log_date, completed=completed, time=time, mood=mood)
    merged: list[LogEntry] = []
    replaced = False
    for existing in logs:
        if existing.date != log_date:
            merged.append(existing)
        elif not replaced:
            merged.append(entry)
            replaced = True
    if not replaced:
        merged.append(entry)
    return merged


def find_log(logs: Sequence[LogEntry], log_date: date) -> LogEntry | None:
    """Return the entry recorded for ``log_date``, if any."""
    found: LogEntry | None = None
    for entry in logs:
        if entry.date == log_date:
            found = entry
    return found


def compute_completed_days(logs: Sequence[LogEntry]) -> int:
    """Count entries marked as completed."""
    return sum(1 for entry in logs if entry.completed)


def compute_completion_rate(logs: Sequence[LogEntry]) -> int:
    """Percentage of logged days marked completed, rounded half up.

    Returns:
        int: Value in ``[0, 100]``; 0 when there are no logs
    """
    if not logs:
        return 0
    return round_half_up(MAX_COMPLETION_RATE * compute_completed_days(logs), len(logs))


def compute_streak(logs: Sequence[LogEntry], today: date) -> int:
    """Count consecutive completed days ending today.

    Walks backward one calendar day at a time starting at ``today``. The walk
    stops at the first day with no entry or with an incomplete entry,
    including today itself, so a run that ended yesterday scores 0.
    """
    by_date = {entry.date: entry for entry in logs}
    streak = 0
    check_date = today
    while (entry := by_date.get(check_date)) is not None and entry.completed:
        streak += 1
        check_date -= _ONE_DAY
    return streak


def recompute_progress(
    logs: Sequence[LogEntry],
    track_streak: bool,  # noqa: FBT001
    today: date,
) -> ProgressStats:
    """Recompute every derived statistic for a log collection.

    The streak is held at 0 when ``track_streak`` is false.
    """
    return ProgressStats(
        completed_days=compute_completed_days(logs),
        completion_rate=compute_completion_rate(logs),
        streak=compute_streak(logs, today) if track_streak else 0,
    )


def days_elapsed(start_date: date, today: date) -> int:
    """Whole days between ``start_date`` and ``today``, never negative."""
    return max(0, (today - start_date).days)


def summarize_goal(habit: Habit, today: date) -> GoalProgress:
    """Summarize a habit's progress toward its completion goal.

    Args:
        habit: Habit whose stored statistics are summarized
        today: Current calendar date

    Returns:
        GoalProgress: Remaining completions, percentage and timeframe status
    """
    elapsed = days_elapsed(habit.start_date, today)
    completed = habit.completed_days
    target = habit.target_completions
    percentage = min(MAX_COMPLETION_RATE, round_half_up(MAX_COMPLETION_RATE * completed, target))
    timeframe_remaining = (
        max(0, habit.timeframe - elapsed) if habit.timeframe is not None else None
    )
    return GoalProgress(
        habit_id=habit.id,
        days_elapsed=elapsed,
        completed_days=completed,
        target_completions=target,
        completions_remaining=max(0, target - completed),
        progress_percentage=percentage,
        timeframe_days_remaining=timeframe_remaining,
        goal_reached=completed >= target,
        streak=habit.streak,
        completion_rate=habit.completion_rate,
        today_log=find_log(habit.logs, today),
    )


def summarize_habits(habits: Sequence[Habit]) -> HabitsOverview:
    """Aggregate statistics across habits.

    A habit counts as active while its streak is above zero. Averages are
    rounded to one decimal place.
    """
    total = len(habits)
    if total == 0:
        return HabitsOverview()
    return HabitsOverview(
        total_habits=total,
        active_habits=sum(1 for habit in habits if habit.streak > 0),
        average_streak=round(sum(habit.streak for habit in habits) / total, 1),
        average_completion_rate=round(sum(habit.completion_rate for habit in habits) / total, 1),
    )
