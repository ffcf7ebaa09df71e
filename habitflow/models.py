from datetime import date, datetime
from typing import List, Optional

from sqlmodel import Field, SQLModel


# ----- Rows -----
class Profile(SQLModel):
    id: str
    email: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Habit(SQLModel):
    id: str
    user_id: str
    name: str
    color: str
    created_at: datetime
    updated_at: datetime


class HabitCompletion(SQLModel):
    id: str
    habit_id: str
    user_id: str
    completed_date: date
    created_at: datetime


# ----- Inserts / updates -----
class HabitInsert(SQLModel):
    user_id: str
    name: str
    color: Optional[str] = None


class HabitUpdate(SQLModel):
    name: Optional[str] = None
    color: Optional[str] = None


class HabitCompletionInsert(SQLModel):
    habit_id: str
    user_id: str
    completed_date: date


# ----- Derived -----
class HabitWithStats(Habit):
    streak: int = 0
    completed_dates: List[date] = Field(default_factory=list)
    total_completions: int = 0

    def is_completed_on(self, day: date) -> bool:
        return day in self.completed_dates
