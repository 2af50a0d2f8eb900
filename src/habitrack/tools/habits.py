"""Habit management tools for the habitrack MCP server.

This module provides the HabitTools class which exposes the habit repository
as MCP tools (create, edit, log progress, delete) and read-only resources
(habit list with overview statistics, single habit with goal progress, mood
options).
"""

import logging
from typing import Any

from fastmcp import FastMCP
from fastmcp.server.context import Context as ServerContext

from habitrack.core.models import MOOD_OPTIONS
from habitrack.core.progress import summarize_goal, summarize_habits
from habitrack.core.repository import HabitRepository
from habitrack.exceptions import (
    HabitBusyError,
    HabitNotFoundError,
    HabitStoreError,
    HabitValidationError,
    InvalidLogDateError,
)

# Configure logger to write to stderr
logger = logging.getLogger(__name__)

_ERROR_CODES: tuple[tuple[type[Exception], str, str], ...] = (
    (HabitValidationError, "validation_error", "Validation failed"),
    (InvalidLogDateError, "invalid_date", "Invalid date"),
    (HabitNotFoundError, "not_found_error", "Habit not found"),
    (HabitBusyError, "busy", "Habit is busy"),
    (HabitStoreError, "store_error", "Store error"),
)


async def _report_failure(ctx: ServerContext, error: Exception, action: str) -> dict[str, Any]:
    """Translate a repository failure into an MCP error response.

    Args:
        ctx: MCP context used to surface the error
        error: The exception raised by the repository
        action: Short description of the attempted action, for logs

    Returns:
        dict[str, Any]: ``{"success": False, "error": <code>, "message": <text>}``
    """
    for error_type, code, label in _ERROR_CODES:
        if isinstance(error, error_type):
            message = f"{label}: {error}"
            logger.warning("Failed %s: %s", action, error)
            await ctx.error(message)
            return {"success": False, "error": code, "message": message}

    message = f"Unexpected error {action}: {error}"
    logger.error("Unexpected error %s", action, exc_info=error)
    await ctx.error(message)
    return {"success": False, "error": "unexpected_error", "message": message}


class HabitTools:
    """Habit management tools providing MCP tools and resources.

    This class encapsulates habit-related MCP endpoints, enabling AI models
    to create habits, log daily progress and read streak statistics through
    standardized MCP tool calls.
    """

    def __init__(self, mcp_instance: FastMCP, repository: HabitRepository) -> None:
        """Initialize HabitTools with MCP instance and habit repository.

        Args:
            mcp_instance: FastMCP server instance for registering tools
            repository: Habit repository performing all reads and writes
        """
        self.mcp = mcp_instance
        self.repository = repository
        self._register_tools()

    async def create_habit_tool(  # noqa: PLR0913
        self,
        ctx: ServerContext,
        name: str,
        description: str | None = None,
        target_completions: int | str | None = None,
        timeframe: int | str | None = None,
        track_streak: bool = False,  # noqa: FBT001, FBT002
        target_time: str | None = None,
    ) -> dict[str, Any]:
        """Create a new habit.

        Args:
            ctx: Server context for logging
            name: Habit name (required)
            description: Optional description
            target_completions: Completion goal (blank uses the configured default)
            timeframe: Optional goal window in days
            track_streak: Whether to compute streaks for this habit
            target_time: Optional descriptive reminder time

        Returns:
            Dict[str, Any]: ``{"success": True, "habit": {...}}`` or an error response
        """
        form = {
            "name": name,
            "description": description,
            "target_completions": target_completions,
            "timeframe": timeframe,
            "track_streak": track_streak,
            "target_time": target_time,
        }
        await ctx.info(f"Creating habit {name!r}")
        try:
            habit = await self.repository.create(form)
        except Exception as error:  # noqa: BLE001
            return await _report_failure(ctx, error, "creating habit")

        await ctx.info(f"Successfully created habit {habit.id}")
        return {"success": True, "habit": habit.to_dict(), "message": "Habit created successfully"}

    async def update_habit_tool(  # noqa: PLR0913
        self,
        ctx: ServerContext,
        id: str,  # noqa: A002  # Required by MCP tool API - habit ID parameter
        name: str | None = None,
        description: str | None = None,
        target_completions: int | str | None = None,
        timeframe: int | str | None = None,
        track_streak: bool | None = None,  # noqa: FBT001
        target_time: str | None = None,
    ) -> dict[str, Any]:
        """Edit a habit's configuration; logs and statistics are preserved.

        Only the fields provided are changed. The rest keep their current
        values, so renaming a habit leaves its goal and streak setting alone.
        An empty string clears the timeframe or target time.
        """
        habit_id = id
        given = {
            "name": name,
            "description": description,
            "target_completions": target_completions,
            "timeframe": timeframe,
            "track_streak": track_streak,
            "target_time": target_time,
        }
        changes = {field: value for field, value in given.items() if value is not None}
        await ctx.info(f"Editing habit {habit_id}: {', '.join(changes) or 'no changes'}")
        try:
            current = await self.repository.get(habit_id)
            habit = await self.repository.update(
                habit_id, {**current.editable_fields(), **changes}
            )
        except Exception as error:  # noqa: BLE001
            return await _report_failure(ctx, error, f"editing habit {habit_id}")

        await ctx.info(f"Successfully edited habit {habit_id}")
        return {"success": True, "habit": habit.to_dict(), "message": "Habit updated successfully"}

    async def log_habit_progress_tool(  # noqa: PLR0913
        self,
        ctx: ServerContext,
        id: str,  # noqa: A002  # Required by MCP tool API - habit ID parameter
        completed: bool,  # noqa: FBT001
        date: str | None = None,
        time: str | None = None,
        mood: str | None = None,
    ) -> dict[str, Any]:
        """Log completion (or a miss) of a habit for a day.

        Args:
            ctx: Server context for logging
            id: The ID of the habit to log
            completed: Whether the habit was completed
            date: Day in ISO-8601 format (YYYY-MM-DD); defaults to today
            time: Time of completion (HH:MM); defaults to now
            mood: Optional mood label, e.g. one of habitrack://moods

        Returns:
            Dict[str, Any]: Updated habit with streak and completion rate, or an error response
        """
        habit_id = id
        try:
            habit = await self.repository.log_progress(habit_id, completed, date, time, mood)
        except Exception as error:  # noqa: BLE001
            return await _report_failure(ctx, error, f"logging habit {habit_id}")

        logger.info("Successfully logged habit %s", habit_id)
        await ctx.info(f"Logged habit {habit_id}: streak {habit.streak}")
        return {
            "success": True,
            "habit": habit.to_dict(),
            "message": f"Successfully logged habit {habit_id}",
        }

    async def delete_habit_tool(
        self,
        ctx: ServerContext,
        id: str,  # noqa: A002  # Required by MCP tool API - habit ID parameter
    ) -> dict[str, Any]:
        """Delete a habit permanently."""
        habit_id = id
        await ctx.info(f"Deleting habit {habit_id}")
        try:
            await self.repository.delete(habit_id)
        except Exception as error:  # noqa: BLE001
            return await _report_failure(ctx, error, f"deleting habit {habit_id}")

        await ctx.info(f"Successfully deleted habit {habit_id}")
        return {"success": True, "habit_id": habit_id, "message": "Habit deleted successfully"}

    async def get_habits_resource(self, ctx: ServerContext) -> dict[str, Any]:
        """MCP resource listing all habits with overview statistics.

        Raises:
            HabitStoreError: When the store cannot be read
        """
        await ctx.info("Retrieving habits")
        habits = await self.repository.list()
        overview = summarize_habits(habits)
        return {
            "resource_type": "habitrack_habits",
            "overview": overview.model_dump(mode="json"),
            "habits": [habit.to_dict() for habit in habits],
        }

    async def get_habit_resource(self, ctx: ServerContext, habit_id: str) -> dict[str, Any]:
        """MCP resource returning one habit and its progress toward the goal.

        Raises:
            HabitNotFoundError: When the habit does not exist
            HabitStoreError: When the store cannot be read
        """
        await ctx.info(f"Retrieving habit {habit_id}")
        habit = await self.repository.get(habit_id)
        progress = summarize_goal(habit, self.repository.clock.today())
        return {
            "resource_type": "habitrack_habit",
            "habit": habit.to_dict(),
            "progress": progress.model_dump(mode="json"),
        }

    async def moods_resource(self, ctx: ServerContext) -> dict[str, Any]:
        """MCP resource listing the predefined mood labels."""
        await ctx.info("Serving mood options")
        return {"resource_type": "habitrack_moods", "moods": list(MOOD_OPTIONS)}

    def _register_tools(self) -> None:
        """Register all habit-related MCP tools and resources with the FastMCP instance."""

        # Wrapper functions inject dependencies and satisfy FastMCP signatures
        async def _create_habit(  # noqa: PLR0913
            ctx: ServerContext,
            name: str,
            description: str | None = None,
            target_completions: int | str | None = None,
            timeframe: int | str | None = None,
            track_streak: bool = False,  # noqa: FBT001, FBT002
            target_time: str | None = None,
        ) -> dict[str, Any]:
            """Create a new habit to track."""
            return await self.create_habit_tool(
                ctx, name, description, target_completions, timeframe, track_streak, target_time
            )

        async def _update_habit(  # noqa: PLR0913
            ctx: ServerContext,
            id: str,  # noqa: A002
            name: str | None = None,
            description: str | None = None,
            target_completions: int | str | None = None,
            timeframe: int | str | None = None,
            track_streak: bool | None = None,  # noqa: FBT001
            target_time: str | None = None,
        ) -> dict[str, Any]:
            """Edit an existing habit's configuration; omitted fields are unchanged."""
            return await self.update_habit_tool(
                ctx, id, name, description, target_completions, timeframe, track_streak, target_time
            )

        async def _log_habit_progress(  # noqa: PLR0913
            ctx: ServerContext,
            id: str,  # noqa: A002
            completed: bool,  # noqa: FBT001
            date: str | None = None,
            time: str | None = None,
            mood: str | None = None,
        ) -> dict[str, Any]:
            """Log completion of a habit for a day."""
            return await self.log_habit_progress_tool(ctx, id, completed, date, time, mood)

        async def _delete_habit(ctx: ServerContext, id: str) -> dict[str, Any]:  # noqa: A002
            """Delete a habit permanently."""
            return await self.delete_habit_tool(ctx, id)

        async def _habits(ctx: ServerContext) -> dict[str, Any]:
            return await self.get_habits_resource(ctx)

        async def _habit(habit_id: str, ctx: ServerContext) -> dict[str, Any]:
            return await self.get_habit_resource(ctx, habit_id)

        async def _moods(ctx: ServerContext) -> dict[str, Any]:
            return await self.moods_resource(ctx)

        self.mcp.tool(name="create_habit", description="Create a new habit to track")(
            _create_habit
        )
        self.mcp.tool(
            name="update_habit",
            description="Edit an existing habit's configuration; omitted fields are unchanged",
        )(_update_habit)
        self.mcp.tool(
            name="log_habit_progress",
            description="Log completion of a habit for a day and recompute its streak",
        )(_log_habit_progress)
        self.mcp.tool(name="delete_habit", description="Delete a habit permanently")(
            _delete_habit
        )
        self.mcp.resource("habitrack://habits")(_habits)
        self.mcp.resource("habitrack://habits/{habit_id}")(_habit)
        self.mcp.resource("habitrack://moods")(_moods)
