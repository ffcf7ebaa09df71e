"""Habit state kept in sync with the hosted backend.

``HabitStore`` holds one user's habits joined with their completions and
streaks. Reads never raise: a failed fetch is recorded in ``error`` and the
last good state is kept. Mutations record the error and re-raise so the
caller can react.
"""
import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Dict, List, Optional

from .client import BackendError, HabitBackend
from .models import Habit, HabitInsert, HabitUpdate, HabitWithStats

logger = logging.getLogger(__name__)


class HabitStore:
    def __init__(self, backend: HabitBackend, user_id: Optional[str], max_workers: int = 4):
        self.backend = backend
        self.user_id = user_id
        self.max_workers = max_workers
        self.habits: List[HabitWithStats] = []
        self.loading = True
        self.error: Optional[str] = None

    def find(self, habit_id: str) -> Optional[HabitWithStats]:
        for habit in self.habits:
            if habit.id == habit_id:
                return habit
        return None

    def _streak(self, habit_id: str) -> int:
        # a failed streak call shows as no streak rather than failing the fetch
        try:
            return self.backend.habit_streak(habit_id)
        except BackendError as exc:
            logger.warning("Streak unavailable for habit %s: %s", habit_id, exc.message)
            return 0

    def fetch_habits(self) -> None:
        if not self.user_id:
            self.habits = []
            self.loading = False
            return

        try:
            self.loading = True
            self.error = None

            habits = self.backend.list_habits(self.user_id)
            completions = self.backend.list_completions(self.user_id)

            dates_by_habit: Dict[str, List[date]] = defaultdict(list)
            for completion in completions:
                dates_by_habit[completion.habit_id].append(completion.completed_date)

            if habits:
                with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(habits)))) as pool:
                    streaks = list(pool.map(self._streak, [habit.id for habit in habits]))
            else:
                streaks = []

            result = []
            for habit, streak in zip(habits, streaks):
                completed = sorted(dates_by_habit.get(habit.id, []))
                result.append(HabitWithStats(
                    **habit.model_dump(),
                    streak=streak,
                    completed_dates=completed,
                    total_completions=len(completed),
                ))
            self.habits = result
        except BackendError as exc:
            self.error = exc.message
            logger.error("Error fetching habits: %s", exc.message)
        finally:
            self.loading = False

    refetch = fetch_habits

    def add_habit(self, name: str, color: Optional[str] = None) -> Optional[Habit]:
        if not self.user_id:
            return None

        try:
            habit = self.backend.insert_habit(HabitInsert(user_id=self.user_id, name=name.strip(), color=color))
        except BackendError as exc:
            self.error = exc.message
            raise

        self.habits = [HabitWithStats(**habit.model_dump())] + self.habits
        logger.info("Added habit %s for user %s", habit.id, self.user_id)
        return habit

    def update_habit(self, habit_id: str, name: Optional[str] = None,
                     color: Optional[str] = None) -> Optional[HabitWithStats]:
        if not self.user_id:
            return None

        values = HabitUpdate(name=name.strip() if name is not None else None, color=color)
        try:
            habit = self.backend.update_habit(habit_id, self.user_id, values)
        except BackendError as exc:
            self.error = exc.message
            raise
        if habit is None:
            return None

        current = self.find(habit_id)
        stats = {}
        if current is not None:
            stats = {
                "streak": current.streak,
                "completed_dates": current.completed_dates,
                "total_completions": current.total_completions,
            }
        updated = HabitWithStats(**habit.model_dump(), **stats)
        self.habits = [updated if h.id == habit_id else h for h in self.habits]
        return updated

    def toggle_habit(self, habit_id: str, day: date) -> None:
        if not self.user_id:
            return

        habit = self.find(habit_id)
        if habit is None:
            return

        completed = habit.is_completed_on(day)
        try:
            if completed:
                self.backend.delete_completion(habit_id, self.user_id, day)
            else:
                self.backend.insert_completion(habit_id, self.user_id, day)
        except BackendError as exc:
            self.error = exc.message
            raise

        # the write is committed; local dates hold even if the refetch below fails
        if completed:
            dates = [d for d in habit.completed_dates if d != day]
        else:
            dates = sorted(habit.completed_dates + [day])
        toggled = habit.model_copy(update={"completed_dates": dates, "total_completions": len(dates)})
        self.habits = [toggled if h.id == habit_id else h for h in self.habits]

        # streaks are recomputed remotely
        self.fetch_habits()

    def delete_habit(self, habit_id: str) -> None:
        if not self.user_id:
            return

        try:
            self.backend.delete_habit(habit_id, self.user_id)
        except BackendError as exc:
            self.error = exc.message
            raise

        self.habits = [h for h in self.habits if h.id != habit_id]
        logger.info("Deleted habit %s for user %s", habit_id, self.user_id)
