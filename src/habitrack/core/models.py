"""Data models for habits, log entries and derived progress summaries.

Habits are persisted as camelCase documents (``targetCompletions``,
``trackStreak``, ...) while the Python API uses snake_case attributes. Every
field other than ``id``, ``name`` and ``start_date`` carries a default, so
documents written by older clients without ``logs`` or ``streak`` still load.
"""

from __future__ import annotations

import datetime as dt
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

DEFAULT_TARGET_COMPLETIONS = 21
MAX_COMPLETION_RATE = 100

# Configuration fields an edit may overwrite; everything else is preserved.
EDITABLE_FIELDS = (
    "name",
    "description",
    "target_completions",
    "timeframe",
    "track_streak",
    "target_time",
)


def _stored_int(value: Any) -> int | None:
    """Read an integer field written by any client, or None when unusable.

    Older clients store whatever their number parser produced, so floats,
    numeric strings and NaN all occur in practice.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


class MoodOption(StrEnum):
    """Predefined mood labels offered when a completion is logged."""

    HAPPY = "Happy"
    ENERGETIC = "Energetic"
    CALM = "Calm"
    PROUD = "Proud"
    SATISFIED = "Satisfied"
    NEUTRAL = "Neutral"
    TIRED = "Tired"
    STRESSED = "Stressed"
    DISAPPOINTED = "Disappointed"
    OTHER = "Other"


MOOD_OPTIONS: tuple[str, ...] = tuple(option.value for option in MoodOption)


class LogEntry(BaseModel):
    """A single day's completion record for a habit.

    ``time`` and ``mood`` are informational only and never influence the
    derived statistics.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    date: dt.date = Field(description="Calendar date of the entry (YYYY-MM-DD)")
    completed: bool = Field(default=False, description="Whether the habit was completed")
    time: str | None = Field(default=None, description="Wall-clock time of logging (HH:MM)")
    mood: str | None = Field(default=None, description="Optional mood label")


class Habit(BaseModel):
    """Habit aggregate: configuration, ordered logs and derived statistics.

    ``completed_days``, ``completion_rate`` and ``streak`` are recomputed by
    the progress engine after every log mutation and must not be edited
    directly.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(description="Store-assigned document ID")
    name: str = Field(min_length=1, description="Habit name")
    description: str = Field(default="", description="Free-text description")
    target_completions: int = Field(
        default=DEFAULT_TARGET_COMPLETIONS, ge=1, description="Completion goal"
    )
    timeframe: int | None = Field(default=None, ge=1, description="Goal window in days")
    track_streak: bool = Field(default=False, description="Whether streaks are computed")
    target_time: str | None = Field(default=None, description="Descriptive reminder time")
    start_date: dt.date = Field(description="Creation date; earliest loggable date")
    created_at: dt.datetime | None = Field(default=None, description="Creation timestamp")
    logs: list[LogEntry] = Field(default_factory=list, description="Insertion-ordered logs")
    completed_days: int = Field(default=0, ge=0)
    completion_rate: int = Field(default=0, ge=0, le=MAX_COMPLETION_RATE)
    streak: int = Field(default=0, ge=0)

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("logs", mode="before")
    @classmethod
    def _none_logs(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("track_streak", mode="before")
    @classmethod
    def _none_track_streak(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("target_completions", mode="before")
    @classmethod
    def _lenient_target(cls, value: Any) -> int:
        number = _stored_int(value)
        return number if number is not None and number >= 1 else DEFAULT_TARGET_COMPLETIONS

    @field_validator("timeframe", mode="before")
    @classmethod
    def _lenient_timeframe(cls, value: Any) -> int | None:
        number = _stored_int(value)
        return number if number is not None and number >= 1 else None

    @field_validator("completed_days", "streak", mode="before")
    @classmethod
    def _lenient_count(cls, value: Any) -> int:
        number = _stored_int(value)
        return max(number, 0) if number is not None else 0

    @field_validator("completion_rate", mode="before")
    @classmethod
    def _lenient_rate(cls, value: Any) -> int:
        number = _stored_int(value)
        return min(max(number, 0), MAX_COMPLETION_RATE) if number is not None else 0

    def editable_fields(self) -> dict[str, Any]:
        """Return the current editable configuration, keyed by attribute name."""
        return self.model_dump(include=set(EDITABLE_FIELDS))

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase document stored under the habit's ID.

        Returns:
            dict[str, Any]: JSON-compatible fields, without ``id``
        """
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain camelCase dictionary including ``id``."""
        return self.model_dump(mode="json", by_alias=True)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class HabitForm(BaseModel):
    """Raw create/edit form input.

    Numeric fields arrive as text from form inputs; blank values mean "use
    the default" (target completions) or "no limit" (timeframe).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    name: str = Field(min_length=1, description="Habit name (required)")
    description: str = Field(default="", description="Free-text description")
    target_completions: int | None = Field(
        default=None, ge=1, description="Completion goal; blank uses the default"
    )
    timeframe: int | None = Field(default=None, ge=1, description="Goal window in days")
    track_streak: bool = Field(default=False, description="Whether streaks are computed")
    target_time: str | None = Field(default=None, description="Descriptive reminder time")

    @field_validator("target_completions", "timeframe", "target_time", mode="before")
    @classmethod
    def _blank_optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("name", mode="before")
    @classmethod
    def _none_name(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("track_streak", mode="before")
    @classmethod
    def _none_track_streak(cls, value: Any) -> Any:
        return False if value is None else value


class GoalProgress(BaseModel):
    """Progress of a habit toward its completion goal as of a given day."""

    model_config = ConfigDict(frozen=True)

    habit_id: str
    days_elapsed: int
    completed_days: int
    target_completions: int
    completions_remaining: int
    progress_percentage: int = Field(ge=0, le=MAX_COMPLETION_RATE)
    timeframe_days_remaining: int | None = None
    goal_reached: bool
    streak: int
    completion_rate: int
    today_log: LogEntry | None = None


class HabitsOverview(BaseModel):
    """Aggregate statistics across all of a user's habits."""

    model_config = ConfigDict(frozen=True)

    total_habits: int = 0
    active_habits: int = 0
    average_streak: float = 0.0
    average_completion_rate: float = 0.0
