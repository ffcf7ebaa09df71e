import itertools
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from habitflow import app as app_module
from habitflow.client import AuthSession, AuthUser, BackendError
from habitflow.config import Settings
from habitflow.models import Habit, HabitCompletion, HabitInsert, HabitUpdate, Profile

JWT_SECRET = "test-jwt-secret"
USER_ID = "user-1"
TODAY = date(2025, 3, 10)


class FakeBackend:
    """In-memory stand-in for HabitBackend."""

    def __init__(self):
        self.habits: List[Habit] = []
        self.completions: List[HabitCompletion] = []
        self.streaks: Dict[str, int] = {}
        self.profiles: Dict[str, Profile] = {}
        self.failures: Dict[str, str] = {}
        self.calls: List[str] = []
        self.signed_out: List[str] = []
        self.user_tokens: List[str] = []
        self.closed = 0
        self._ids = itertools.count(1)
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def _call(self, name):
        self.calls.append(name)
        if name in self.failures:
            raise BackendError(self.failures[name])

    def _tick(self):
        self._clock += timedelta(minutes=1)
        return self._clock

    def seed_habit(self, name, user_id=USER_ID, color="#10B981") -> Habit:
        stamp = self._tick()
        habit = Habit(id="habit-%d" % next(self._ids), user_id=user_id, name=name,
                      color=color, created_at=stamp, updated_at=stamp)
        self.habits.append(habit)
        return habit

    def seed_completion(self, habit_id, day, user_id=USER_ID) -> HabitCompletion:
        completion = HabitCompletion(id="completion-%d" % next(self._ids), habit_id=habit_id,
                                     user_id=user_id, completed_date=day, created_at=self._tick())
        self.completions.append(completion)
        return completion

    # ----- HabitBackend surface -----
    def for_user(self, access_token):
        self.user_tokens.append(access_token)
        return self

    def close(self):
        self.closed += 1

    def list_habits(self, user_id):
        self._call("list_habits")
        rows = [h for h in self.habits if h.user_id == user_id]
        return sorted(rows, key=lambda h: h.created_at, reverse=True)

    def list_completions(self, user_id):
        self._call("list_completions")
        return [c for c in self.completions if c.user_id == user_id]

    def habit_streak(self, habit_id):
        self._call("habit_streak")
        return self.streaks.get(habit_id, 0)

    def insert_habit(self, values: HabitInsert):
        self._call("insert_habit")
        return self.seed_habit(values.name, user_id=values.user_id, color=values.color or "#10B981")

    def update_habit(self, habit_id, user_id, values: HabitUpdate):
        self._call("update_habit")
        for index, habit in enumerate(self.habits):
            if habit.id == habit_id and habit.user_id == user_id:
                changes = values.model_dump(exclude_none=True)
                updated = habit.model_copy(update=dict(changes, updated_at=self._tick()))
                self.habits[index] = updated
                return updated
        return None

    def delete_habit(self, habit_id, user_id):
        self._call("delete_habit")
        self.habits = [h for h in self.habits if not (h.id == habit_id and h.user_id == user_id)]
        self.completions = [c for c in self.completions if c.habit_id != habit_id]

    def insert_completion(self, habit_id, user_id, completed_date):
        self._call("insert_completion")
        for c in self.completions:
            if c.habit_id == habit_id and c.completed_date == completed_date:
                raise BackendError("duplicate key value violates unique constraint")
        self.seed_completion(habit_id, completed_date, user_id=user_id)

    def delete_completion(self, habit_id, user_id, completed_date):
        self._call("delete_completion")
        self.completions = [
            c for c in self.completions
            if not (c.habit_id == habit_id and c.user_id == user_id and c.completed_date == completed_date)
        ]

    def get_profile(self, user_id) -> Optional[Profile]:
        self._call("get_profile")
        return self.profiles.get(user_id)

    def sign_up(self, email, password):
        self._call("sign_up")
        return AuthSession(user=AuthUser(id="new-user", email=email))

    def sign_in(self, email, password):
        self._call("sign_in")
        if password != "correct horse":
            raise BackendError("Invalid login credentials")
        return AuthSession(access_token=make_token(), refresh_token="refresh",
                           user=AuthUser(id=USER_ID, email=email))

    def sign_out(self, access_token):
        self._call("sign_out")
        self.signed_out.append(access_token)

    def get_user(self, access_token):
        self._call("get_user")
        if access_token == "remote-ok":
            return AuthUser(id=USER_ID, email="remote@example.com")
        return None


def make_token(sub=USER_ID, email="ada@example.com", audience="authenticated",
               secret=JWT_SECRET, expires_in=timedelta(hours=1)) -> str:
    payload = {"aud": audience, "exp": datetime.now(timezone.utc) + expires_in, "email": email}
    if sub is not None:
        payload["sub"] = sub
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def settings():
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_anon_key="anon-key",
        supabase_jwt_secret=JWT_SECRET,
        streak_workers=2,
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(settings, backend):
    api = app_module.app
    api.dependency_overrides[app_module.get_settings] = lambda: settings
    api.dependency_overrides[app_module.get_auth_backend] = lambda: backend
    api.dependency_overrides[app_module.get_user_backend] = lambda: backend
    api.dependency_overrides[app_module.get_today] = lambda: TODAY
    with TestClient(api) as test_client:
        yield test_client
    api.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer %s" % make_token()}
