"""Habit repository facade.

HabitRepository is the only component that writes habit documents. It loads
the current aggregate, merges changes through the progress engine, and
persists the complete result in a single store write, so a failed operation
leaves the stored habit untouched.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date
from typing import Any

from pydantic import ValidationError

from habitrack.core.clock import Clock, ZoneClock
from habitrack.core.models import DEFAULT_TARGET_COMPLETIONS, EDITABLE_FIELDS, Habit, HabitForm
from habitrack.core.progress import recompute_progress, upsert_log
from habitrack.exceptions import (
    HabitBusyError,
    HabitNotFoundError,
    HabitStoreError,
    HabitValidationError,
    InvalidLogDateError,
)
from habitrack.store.protocols import (
    Document,
    DocumentStore,
    Unsubscribe,
    habits_collection_path,
    validate_document_id,
)

logger = logging.getLogger(__name__)

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
MAX_MOOD_LENGTH = 100

FormInput = HabitForm | Mapping[str, Any]


def dedupe_documents(documents: Sequence[Document]) -> list[Document]:
    """Collapse documents sharing an ID, keeping the last occurrence.

    Each surviving document keeps the position where its ID first appeared.
    """
    by_id: dict[Any, Document] = {}
    for document in documents:
        by_id[document.get("id")] = document
    return list(by_id.values())


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"]) or "input"
        parts.append(f"{location}: {detail['msg']}")
    return "; ".join(parts)


class HabitRepository:
    """Facade mediating every habit read and write against a document store.

    Mutating calls on the same habit ID are single-flight: while an update,
    log or delete for an ID is awaiting the store, another call naming that
    ID is declined with HabitBusyError instead of being queued.
    """

    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        clock: Clock | None = None,
        default_target_completions: int = DEFAULT_TARGET_COMPLETIONS,
    ) -> None:
        """Initialize the repository.

        Args:
            store: Document store holding the habits collection
            user_id: User whose habits collection is served
            clock: Source of the current date and time (UTC wall clock by default)
            default_target_completions: Goal used when a form leaves it blank
        """
        if not user_id:
            msg = "user_id cannot be empty"
            raise ValueError(msg)
        self._store = store
        self._collection = habits_collection_path(user_id)
        self._clock = clock or ZoneClock()
        self._default_target_completions = default_target_completions
        self._in_flight: set[str] = set()

    def __repr__(self) -> str:
        return f"HabitRepository(collection='{self._collection}', store={self._store!r})"

    @property
    def collection_path(self) -> str:
        return self._collection

    @property
    def clock(self) -> Clock:
        return self._clock

    def is_in_flight(self, habit_id: str) -> bool:
        """Report whether a mutating operation on ``habit_id`` is running."""
        return habit_id in self._in_flight

    @contextmanager
    def _claim(self, habit_id: str) -> Iterator[None]:
        # Check-and-add runs before any await, so it is atomic on the event loop.
        if habit_id in self._in_flight:
            logger.warning("Already processing habit %s, declining", habit_id)
            raise HabitBusyError(habit_id)
        self._in_flight.add(habit_id)
        try:
            yield
        finally:
            self._in_flight.discard(habit_id)

    @staticmethod
    def _require_id(habit_id: str) -> str:
        if not habit_id or not habit_id.strip():
            raise HabitValidationError.empty_habit_id()
        return validate_document_id(habit_id.strip())

    @staticmethod
    def _parse_form(form_input: FormInput) -> HabitForm:
        if isinstance(form_input, HabitForm):
            return form_input
        try:
            return HabitForm.model_validate(dict(form_input))
        except ValidationError as error:
            raise HabitValidationError(_format_validation_error(error)) from error

    def _parse_habit(self, document: Document) -> Habit:
        try:
            return Habit.model_validate(document)
        except ValidationError as error:
            raise HabitStoreError.create_parse_error(
                self._collection, doc_id=str(document.get("id")), errors=error.error_count()
            ) from error

    def _parse_documents(
        self, documents: Sequence[Document]
    ) -> tuple[list[Habit], list[HabitStoreError]]:
        # One unreadable document never hides the rest of the collection.
        habits: list[Habit] = []
        errors: list[HabitStoreError] = []
        for document in dedupe_documents(documents):
            try:
                habits.append(self._parse_habit(document))
            except HabitStoreError as error:
                logger.warning("Skipping unreadable habit document: %s", error)
                errors.append(error)
        return habits, errors

    async def _load(self, habit_id: str) -> Habit:
        document = await self._store.get_one(self._collection, habit_id)
        if document is None:
            logger.warning("Habit not found: %s", habit_id)
            raise HabitNotFoundError(habit_id)
        return self._parse_habit(document)

    async def get(self, habit_id: str) -> Habit:
        """Load a single habit.

        Raises:
            HabitValidationError: Empty habit ID or one containing a path
            HabitNotFoundError: No habit with that ID
            HabitStoreError: Store failure or malformed document
        """
        return await self._load(self._require_id(habit_id))

    async def list(self) -> list[Habit]:  # noqa: A003
        """Fetch all habits, deduplicated by ID (last occurrence wins).

        Documents that cannot be parsed are logged and left out.

        Raises:
            HabitStoreError: Store failure
        """
        documents = await self._store.get_all(self._collection)
        habits, _ = self._parse_documents(documents)
        logger.debug("Received %d habits, deduplicated to %d", len(documents), len(habits))
        return habits

    def subscribe(
        self,
        on_change: Callable[[list[Habit]], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> Unsubscribe:
        """Register for live habit updates.

        Every delivered batch is deduplicated and parsed like ``list()``.
        Store failures and each malformed document are passed to ``on_error``;
        the readable habits of the batch are still delivered.

        Returns:
            Unsubscribe: Callable that cancels the subscription
        """

        def report(error: Exception) -> None:
            if on_error is not None:
                on_error(error)
            else:
                logger.error("Habit subscription error: %s", error)

        def deliver(documents: list[Document]) -> None:
            habits, errors = self._parse_documents(documents)
            for error in errors:
                report(error)
            logger.debug("Received %d habits, deduplicated to %d", len(documents), len(habits))
            on_change(habits)

        logger.info("Subscribing to %s", self._collection)
        return self._store.subscribe(self._collection, deliver, report)

    async def create(self, form_input: FormInput) -> Habit:
        """Create a habit from form input.

        Starts today with no logs and zeroed statistics.

        Raises:
            HabitValidationError: Empty name or malformed numeric field
            HabitStoreError: Store failure
        """
        form = self._parse_form(form_input)
        fields = form.model_dump(include=set(EDITABLE_FIELDS))
        if fields["target_completions"] is None:
            fields["target_completions"] = self._default_target_completions
        draft = Habit(
            id="",
            start_date=self._clock.today(),
            created_at=self._clock.now(),
            **fields,
        )
        habit_id = await self._store.add(self._collection, draft.to_document())
        habit = draft.model_copy(update={"id": habit_id})
        logger.info("Habit created: %s", habit_id)
        return habit

    async def update(self, habit_id: str, form_input: FormInput) -> Habit:
        """Overwrite a habit's editable configuration.

        ID, start date, creation time, logs and derived statistics are kept.

        Raises:
            HabitValidationError: Empty name or malformed numeric field
            HabitBusyError: Another operation on this habit is in flight
            HabitNotFoundError: No habit with that ID
            HabitStoreError: Store failure
        """
        habit_id = self._require_id(habit_id)
        form = self._parse_form(form_input)
        changes = form.model_dump(include=set(EDITABLE_FIELDS))
        if changes["target_completions"] is None:
            changes["target_completions"] = self._default_target_completions
        with self._claim(habit_id):
            current = await self._load(habit_id)
            updated = current.model_copy(update=changes)
            await self._store.update(self._collection, habit_id, updated.to_document())
        logger.info("Habit edited: %s", habit_id)
        return updated

    def _resolve_log_date(self, log_date: date | str | None) -> date:
        if log_date is None:
            return self._clock.today()
        if isinstance(log_date, date):
            return log_date
        try:
            return date.fromisoformat(log_date.strip())
        except ValueError as error:
            msg = f"Invalid date format: {log_date}. Expected YYYY-MM-DD format"
            raise HabitValidationError(msg) from error

    def _resolve_log_time(self, time: str | None) -> str:
        if time is None or not time.strip():
            return self._clock.now().strftime("%H:%M")
        time = time.strip()
        if not _TIME_PATTERN.match(time):
            msg = f"Invalid time format: {time}. Expected HH:MM"
            raise HabitValidationError(msg)
        return time

    @staticmethod
    def _resolve_mood(mood: str | None) -> str | None:
        if mood is None or not mood.strip():
            return None
        mood = mood.strip()
        if len(mood) > MAX_MOOD_LENGTH:
            msg = f"Mood must be at most {MAX_MOOD_LENGTH} characters"
            raise HabitValidationError(msg)
        return mood

    async def log_progress(
        self,
        habit_id: str,
        completed: bool,  # noqa: FBT001
        log_date: date | str | None = None,
        time: str | None = None,
        mood: str | None = None,
    ) -> Habit:
        """Record a day's completion and recompute the derived statistics.

        Args:
            habit_id: Habit to log
            completed: Whether the habit was completed that day
            log_date: Day being logged (defaults to today)
            time: Time of logging, HH:MM (defaults to the current time)
            mood: Optional mood label; blank values are dropped

        Returns:
            Habit: The persisted habit with merged logs and fresh statistics

        Raises:
            HabitValidationError: Malformed date, time or mood
            HabitBusyError: Another operation on this habit is in flight
            HabitNotFoundError: No habit with that ID
            InvalidLogDateError: Date after today or before the start date
            HabitStoreError: Store failure
        """
        habit_id = self._require_id(habit_id)
        day = self._resolve_log_date(log_date)
        log_time = self._resolve_log_time(time)
        log_mood = self._resolve_mood(mood)
        with self._claim(habit_id):
            current = await self._load(habit_id)
            today = self._clock.today()
            if day > today or day < current.start_date:
                logger.warning("Invalid date for logging habit %s: %s", habit_id, day)
                raise InvalidLogDateError(
                    day.isoformat(), current.start_date.isoformat(), today.isoformat()
                )
            logs = upsert_log(current.logs, day, completed, log_time, log_mood)
            stats = recompute_progress(logs, current.track_streak, today)
            updated = current.model_copy(
                update={
                    "logs": logs,
                    "completed_days": stats.completed_days,
                    "completion_rate": stats.completion_rate,
                    "streak": stats.streak,
                }
            )
            await self._store.update(self._collection, habit_id, updated.to_document())
        logger.info(
            "Habit %s logged for %s (completed=%s, streak=%d, rate=%d%%)",
            habit_id,
            day.isoformat(),
            completed,
            updated.streak,
            updated.completion_rate,
        )
        return updated

    async def delete(self, habit_id: str) -> bool:
        """Delete a habit permanently.

        Returns:
            bool: True once the store confirms the deletion

        Raises:
            HabitBusyError: Another operation on this habit is in flight
            HabitStoreError: Store failure
        """
        habit_id = self._require_id(habit_id)
        with self._claim(habit_id):
            await self._store.delete(self._collection, habit_id)
        logger.info("Habit deleted: %s", habit_id)
        return True
