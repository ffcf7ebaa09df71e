"""Typed access to the hosted backend.

All persistence, authentication and streak computation live in the hosted
Supabase project. ``HabitBackend`` is the only place that knows table,
column and function names; everything above it works with the models in
``habitflow.models``.
"""
import logging
from datetime import date
from typing import Any, Callable, List, Optional

import httpx
from postgrest import SyncPostgrestClient
from postgrest.exceptions import APIError
from pydantic import BaseModel
from supabase import AuthError, Client, ClientOptions, create_client

from .config import Settings
from .models import (
    Habit,
    HabitCompletion,
    HabitCompletionInsert,
    HabitInsert,
    HabitUpdate,
    Profile,
)

logger = logging.getLogger(__name__)

HABITS_TABLE = "habits"
COMPLETIONS_TABLE = "habit_completions"
PROFILES_TABLE = "profiles"
STREAK_FUNCTION = "calculate_habit_streak"


class BackendError(Exception):
    """A request to the hosted backend failed."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None


class AuthSession(BaseModel):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    user: AuthUser


def create_backend_client(settings: Settings) -> Client:
    # shared across requests: no stored session, no refresh timer
    options = ClientOptions(persist_session=False, auto_refresh_token=False)
    return create_client(settings.supabase_url, settings.supabase_anon_key, options=options)


def _auth_user(user: Any) -> AuthUser:
    return AuthUser(id=str(user.id), email=getattr(user, "email", None))


class HabitBackend:
    """Gateway over one Supabase client.

    The shared instance talks to PostgREST with the anon key. ``for_user``
    derives a backend with its own PostgREST session carrying a user's
    token; that session belongs to the derived backend and is released by
    ``close()``.
    """

    def __init__(self, client: Client, rest: Optional[SyncPostgrestClient] = None):
        self.client = client
        self._owns_rest = rest is not None
        self.rest = rest if rest is not None else client.postgrest

    @classmethod
    def anonymous(cls, settings: Settings) -> "HabitBackend":
        return cls(create_backend_client(settings))

    def for_user(self, access_token: str) -> "HabitBackend":
        """Backend whose table and RPC requests run as the token's user."""
        headers = dict(self.client.options.headers)
        headers["apiKey"] = self.client.supabase_key
        rest = SyncPostgrestClient(str(self.client.rest_url), headers=headers)
        rest.auth(access_token)
        return HabitBackend(self.client, rest=rest)

    def close(self) -> None:
        if self._owns_rest:
            self.rest.session.close()

    def _execute(self, query) -> Any:
        try:
            return query.execute().data
        except APIError as exc:
            raise BackendError(exc.message or str(exc), code=exc.code) from exc
        except httpx.HTTPError as exc:
            raise BackendError("Backend unreachable: %s" % exc) from exc

    def _auth(self, call: Callable[[], Any]) -> Any:
        try:
            return call()
        except AuthError as exc:
            raise BackendError(exc.message, code=getattr(exc, "code", None)) from exc
        except httpx.HTTPError as exc:
            raise BackendError("Auth service unreachable: %s" % exc) from exc

    # ----- Habits -----
    def list_habits(self, user_id: str) -> List[Habit]:
        rows = self._execute(
            self.rest.from_(HABITS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
        )
        return [Habit.model_validate(row) for row in rows or []]

    def insert_habit(self, values: HabitInsert) -> Habit:
        rows = self._execute(
            self.rest.from_(HABITS_TABLE).insert(values.model_dump(mode="json", exclude_none=True))
        )
        if not rows:
            raise BackendError("Insert into habits returned no row")
        return Habit.model_validate(rows[0])

    def update_habit(self, habit_id: str, user_id: str, values: HabitUpdate) -> Optional[Habit]:
        rows = self._execute(
            self.rest.from_(HABITS_TABLE)
            .update(values.model_dump(mode="json", exclude_none=True))
            .eq("id", habit_id)
            .eq("user_id", user_id)
        )
        if not rows:
            return None
        return Habit.model_validate(rows[0])

    def delete_habit(self, habit_id: str, user_id: str) -> None:
        self._execute(
            self.rest.from_(HABITS_TABLE)
            .delete()
            .eq("id", habit_id)
            .eq("user_id", user_id)
        )

    def habit_streak(self, habit_id: str) -> int:
        data = self._execute(self.rest.rpc(STREAK_FUNCTION, {"habit_uuid": habit_id}))
        return int(data or 0)

    # ----- Completions -----
    def list_completions(self, user_id: str) -> List[HabitCompletion]:
        rows = self._execute(
            self.rest.from_(COMPLETIONS_TABLE).select("*").eq("user_id", user_id)
        )
        return [HabitCompletion.model_validate(row) for row in rows or []]

    def insert_completion(self, habit_id: str, user_id: str, completed_date: date) -> None:
        values = HabitCompletionInsert(habit_id=habit_id, user_id=user_id, completed_date=completed_date)
        self._execute(self.rest.from_(COMPLETIONS_TABLE).insert(values.model_dump(mode="json")))

    def delete_completion(self, habit_id: str, user_id: str, completed_date: date) -> None:
        self._execute(
            self.rest.from_(COMPLETIONS_TABLE)
            .delete()
            .eq("habit_id", habit_id)
            .eq("completed_date", completed_date.isoformat())
            .eq("user_id", user_id)
        )

    # ----- Profiles -----
    def get_profile(self, user_id: str) -> Optional[Profile]:
        rows = self._execute(self.rest.from_(PROFILES_TABLE).select("*").eq("id", user_id).limit(1))
        if not rows:
            return None
        return Profile.model_validate(rows[0])

    # ----- Auth -----
    def sign_up(self, email: str, password: str) -> AuthSession:
        response = self._auth(lambda: self.client.auth.sign_up({"email": email, "password": password}))
        if response.user is None:
            raise BackendError("Sign up returned no user")
        return self._session(response)

    def sign_in(self, email: str, password: str) -> AuthSession:
        response = self._auth(
            lambda: self.client.auth.sign_in_with_password({"email": email, "password": password}))
        if response.user is None or response.session is None:
            raise BackendError("Invalid login credentials")
        return self._session(response)

    def sign_out(self, access_token: str) -> None:
        self._auth(lambda: self.client.auth.admin.sign_out(access_token))

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        try:
            response = self.client.auth.get_user(access_token)
        except AuthError as exc:
            logger.info("Token rejected by auth service: %s", exc.message)
            return None
        except httpx.HTTPError as exc:
            raise BackendError("Auth service unreachable: %s" % exc) from exc
        if response is None or response.user is None:
            return None
        return _auth_user(response.user)

    @staticmethod
    def _session(response: Any) -> AuthSession:
        session = response.session
        return AuthSession(
            access_token=session.access_token if session else None,
            refresh_token=session.refresh_token if session else None,
            user=_auth_user(response.user),
        )
