# ruff: noqa: PLR2004
"""Tests for the progress engine (upsert, completion rate, streak)."""

from datetime import date

import pytest

from habitrack.core.models import LogEntry
from habitrack.core.progress import (
    compute_completed_days,
    compute_completion_rate,
    compute_streak,
    find_log,
    recompute_progress,
    round_half_up,
    upsert_log,
)
from tests.factories import TODAY, create_log, days_ago

SAMPLE_COLLECTIONS: list[list[LogEntry]] = [
    [],
    [create_log(TODAY, completed=False)],
    [create_log(TODAY, completed=True)],
    [create_log(days_ago(i), completed=i % 3 != 0) for i in range(7)],
    [create_log(days_ago(i), completed=False) for i in range(30)],
    [create_log(days_ago(i), completed=True) for i in range(30)],
]


class TestUpsertLog:
    """Test suite for upsert_log()."""

    def test_appends_new_date(self) -> None:
        """A date not yet logged is appended at the end."""
        logs = [create_log(days_ago(2)), create_log(days_ago(1))]

        merged = upsert_log(logs, TODAY, completed=True, time="09:15")

        assert [entry.date for entry in merged] == [days_ago(2), days_ago(1), TODAY]
        assert merged[-1] == LogEntry(date=TODAY, completed=True, time="09:15")

    def test_replaces_existing_date_in_place(self) -> None:
        """An existing date is replaced without moving other entries."""
        logs = [create_log(days_ago(2)), create_log(days_ago(1)), create_log(TODAY)]

        merged = upsert_log(logs, days_ago(1), completed=False, mood="Tired")

        assert [entry.date for entry in merged] == [days_ago(2), days_ago(1), TODAY]
        assert merged[1].completed is False
        assert merged[1].mood == "Tired"
        assert merged[0] == logs[0]
        assert merged[2] == logs[2]

    def test_does_not_mutate_input(self) -> None:
        """The input collection is left untouched."""
        logs = [create_log(TODAY, completed=False)]
        snapshot = list(logs)

        upsert_log(logs, TODAY, completed=True)

        assert logs == snapshot
        assert logs[0].completed is False

    def test_idempotent_for_same_date(self) -> None:
        """Applying the same upsert twice equals applying it once."""
        logs = [create_log(days_ago(3)), create_log(days_ago(1), completed=False)]

        once = upsert_log(logs, days_ago(1), completed=True, time="07:00")
        twice = upsert_log(once, days_ago(1), completed=True, time="07:00")

        assert twice == once

    def test_collapses_legacy_duplicates(self) -> None:
        """Pre-existing duplicates for the date collapse into the first position."""
        logs = [
            create_log(TODAY, completed=False),
            create_log(days_ago(1)),
            create_log(TODAY, completed=False),
        ]

        merged = upsert_log(logs, TODAY, completed=True)

        assert [entry.date for entry in merged] == [TODAY, days_ago(1)]
        assert merged[0].completed is True

    @pytest.mark.parametrize("logs", SAMPLE_COLLECTIONS)
    @pytest.mark.parametrize("log_date", [TODAY, days_ago(1), days_ago(40)])
    def test_never_produces_duplicate_dates(self, logs: list[LogEntry], log_date: date) -> None:
        """Every date appears at most once after an upsert."""
        merged = upsert_log(logs, log_date, completed=True)

        dates = [entry.date for entry in merged]
        assert len(dates) == len(set(dates))
        assert find_log(merged, log_date) is not None


class TestCompletionStatistics:
    """Test suite for completed days and completion rate."""

    def test_empty_logs_are_zero(self) -> None:
        """No logs means zero completed days, rate and streak."""
        assert compute_completed_days([]) == 0
        assert compute_completion_rate([]) == 0
        assert compute_streak([], TODAY) == 0

    def test_completion_rate_half(self) -> None:
        """Two of four completed is 50 percent."""
        logs = [
            create_log(days_ago(0), completed=True),
            create_log(days_ago(1), completed=True),
            create_log(days_ago(2), completed=False),
            create_log(days_ago(3), completed=False),
        ]

        assert compute_completed_days(logs) == 2
        assert compute_completion_rate(logs) == 50

    def test_completion_rate_rounds_half_up(self) -> None:
        """One of eight is 12.5 percent, which rounds up to 13."""
        logs = [create_log(days_ago(i), completed=i == 0) for i in range(8)]

        assert compute_completion_rate(logs) == 13

    def test_completion_rate_rounds_to_nearest(self) -> None:
        """Two of three is 66.67 percent, one of three is 33.33 percent."""
        two_of_three = [create_log(days_ago(i), completed=i < 2) for i in range(3)]
        one_of_three = [create_log(days_ago(i), completed=i < 1) for i in range(3)]

        assert compute_completion_rate(two_of_three) == 67
        assert compute_completion_rate(one_of_three) == 33

    @pytest.mark.parametrize("logs", SAMPLE_COLLECTIONS)
    @pytest.mark.parametrize("completed", [True, False])
    def test_completion_rate_stays_in_bounds(self, logs: list[LogEntry], completed: bool) -> None:  # noqa: FBT001
        """The rate after any upsert is within [0, 100]."""
        rate = compute_completion_rate(upsert_log(logs, TODAY, completed=completed))

        assert 0 <= rate <= 100

    @pytest.mark.parametrize(
        ("numerator", "denominator", "expected"),
        [(0, 4, 0), (1, 2, 1), (3, 2, 2), (5, 2, 3), (200, 3, 67), (100, 3, 33)],
    )
    def test_round_half_up(self, numerator: int, denominator: int, expected: int) -> None:
        """Integer division rounds exact halves upward."""
        assert round_half_up(numerator, denominator) == expected


class TestComputeStreak:
    """Test suite for compute_streak()."""

    def test_streak_stops_at_incomplete_day(self) -> None:
        """Today and yesterday completed, the day before missed: streak of 2."""
        logs = [
            create_log(TODAY, completed=True),
            create_log(days_ago(1), completed=True),
            create_log(days_ago(2), completed=False),
        ]

        assert compute_streak(logs, TODAY) == 2

    def test_streak_requires_entry_today(self) -> None:
        """A run that ended yesterday is not credited."""
        logs = [create_log(days_ago(1), completed=True)]

        assert compute_streak(logs, TODAY) == 0

    def test_streak_zero_when_today_missed(self) -> None:
        """An incomplete entry today stops the walk immediately."""
        logs = [create_log(days_ago(1)), create_log(TODAY, completed=False)]

        assert compute_streak(logs, TODAY) == 0

    def test_streak_stops_at_gap(self) -> None:
        """A missing day ends the run even if older days were completed."""
        logs = [create_log(TODAY), create_log(days_ago(1)), create_log(days_ago(3))]

        assert compute_streak(logs, TODAY) == 2

    def test_streak_independent_of_log_order(self) -> None:
        """Back-filled logs (out of date order) still count."""
        logs = [create_log(TODAY), create_log(days_ago(2)), create_log(days_ago(1))]

        assert compute_streak(logs, TODAY) == 3

    def test_streak_across_month_boundary(self) -> None:
        """Backward walk crosses month and year boundaries by calendar date."""
        today = date(2025, 1, 1)
        logs = [create_log(date(2024, 12, 30)), create_log(date(2024, 12, 31)), create_log(today)]

        assert compute_streak(logs, today) == 3

    def test_streak_ignores_future_entries(self) -> None:
        """Entries after today do not contribute."""
        logs = [create_log(date(2025, 9, 7)), create_log(TODAY)]

        assert compute_streak(logs, TODAY) == 1


class TestRecomputeProgress:
    """Test suite for recompute_progress()."""

    def test_recompute_with_streak_tracking(self) -> None:
        """All three statistics are derived from the logs."""
        logs = [create_log(days_ago(1)), create_log(TODAY), create_log(days_ago(2), completed=False)]

        stats = recompute_progress(logs, track_streak=True, today=TODAY)

        assert stats.completed_days == 2
        assert stats.completion_rate == 67
        assert stats.streak == 2

    def test_streak_held_at_zero_without_tracking(self) -> None:
        """Streak stays 0 when the habit does not track streaks."""
        logs = [create_log(days_ago(1)), create_log(TODAY)]

        stats = recompute_progress(logs, track_streak=False, today=TODAY)

        assert stats.streak == 0
        assert stats.completed_days == 2
        assert stats.completion_rate == 100
