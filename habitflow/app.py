import logging
import math
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, Field

from .auth import CurrentUser, oauth2_scheme, resolve_user
from .client import AuthUser, BackendError, HabitBackend
from .config import DEFAULT_COLOR, HABIT_COLORS, Settings, load_settings
from .habits import HabitStore
from .models import HabitWithStats, Profile

logger = logging.getLogger(__name__)

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


# ----- Schemas -----
class UserCreate(BaseModel):
    email: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str


class Me(BaseModel):
    user: AuthUser
    profile: Optional[Profile] = None


class HabitCreate(BaseModel):
    name: str
    color: str = Field(default=DEFAULT_COLOR, pattern=HEX_COLOR)


class HabitPatch(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)


class ToggleRequest(BaseModel):
    completed_date: Optional[date] = None


class HabitCard(HabitWithStats):
    completed_today: bool = False


class ToggleResult(HabitCard):
    error: Optional[str] = None


class Dashboard(BaseModel):
    today: date
    total_habits: int
    completed_today: int
    completion_rate: int
    error: Optional[str] = None
    habits: List[HabitCard]


def completion_rate(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    # halves round up
    return int(math.floor(completed / total * 100 + 0.5))


def habit_card(habit: HabitWithStats, today: date) -> HabitCard:
    return HabitCard(**habit.model_dump(), completed_today=habit.is_completed_on(today))


def build_dashboard(store: HabitStore, today: date) -> Dashboard:
    cards = [habit_card(h, today) for h in store.habits]
    done = sum(1 for card in cards if card.completed_today)
    return Dashboard(
        today=today,
        total_habits=len(cards),
        completed_today=done,
        completion_rate=completion_rate(done, len(cards)),
        error=store.error,
        habits=cards,
    )


# ----- Dependencies -----
@lru_cache()
def get_settings() -> Settings:
    return load_settings()


def get_today() -> date:
    return datetime.now(timezone.utc).date()


@lru_cache()
def shared_backend() -> HabitBackend:
    return HabitBackend.anonymous(get_settings())


def get_auth_backend() -> HabitBackend:
    return shared_backend()


def get_current_user(token: str = Depends(oauth2_scheme),
                     settings: Settings = Depends(get_settings),
                     backend: HabitBackend = Depends(get_auth_backend)) -> CurrentUser:
    return resolve_user(token, settings, backend)


def get_user_backend(user: CurrentUser = Depends(get_current_user),
                     backend: HabitBackend = Depends(get_auth_backend)):
    user_backend = backend.for_user(user.access_token)
    try:
        yield user_backend
    finally:
        user_backend.close()


def get_store(user: CurrentUser = Depends(get_current_user),
              backend: HabitBackend = Depends(get_user_backend),
              settings: Settings = Depends(get_settings)) -> HabitStore:
    return HabitStore(backend, user.id, max_workers=settings.streak_workers)


# ----- App -----
app = FastAPI(title="HabitFlow API")


@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError):
    logger.error("Backend error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": exc.message})


# ----- Auth endpoints -----
@app.post("/register", status_code=201, response_model=AuthUser)
def register(user_in: UserCreate, backend: HabitBackend = Depends(get_auth_backend)):
    try:
        session = backend.sign_up(user_in.email, user_in.password)
    except BackendError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    return session.user


@app.post("/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(),
          backend: HabitBackend = Depends(get_auth_backend)):
    try:
        session = backend.sign_in(form_data.username, form_data.password)
    except BackendError as exc:
        logger.info("Login failed for %s: %s", form_data.username, exc.message)
        raise HTTPException(status_code=401, detail="Incorrect email or password")
    return {"access_token": session.access_token, "token_type": "bearer"}


@app.post("/logout", status_code=204)
def logout(user: CurrentUser = Depends(get_current_user),
           backend: HabitBackend = Depends(get_auth_backend)):
    backend.sign_out(user.access_token)


@app.get("/me", response_model=Me)
def me(user: CurrentUser = Depends(get_current_user),
       backend: HabitBackend = Depends(get_user_backend)):
    return Me(user=AuthUser(id=user.id, email=user.email), profile=backend.get_profile(user.id))


# ----- View endpoints -----
@app.get("/colors", response_model=List[str])
def colors():
    return HABIT_COLORS


@app.get("/dashboard", response_model=Dashboard)
def dashboard(store: HabitStore = Depends(get_store), today: date = Depends(get_today)):
    store.refetch()
    return build_dashboard(store, today)


# ----- Habit endpoints -----
@app.get("/habits", response_model=List[HabitWithStats])
def list_habits(store: HabitStore = Depends(get_store)):
    store.refetch()
    if store.error:
        raise HTTPException(status_code=502, detail=store.error)
    return store.habits


@app.post("/habits", status_code=201, response_model=HabitWithStats)
def create_habit(habit_in: HabitCreate, store: HabitStore = Depends(get_store)):
    if not habit_in.name.strip():
        raise HTTPException(400, "Habit name is required")
    store.add_habit(habit_in.name, habit_in.color)
    return store.habits[0]


@app.patch("/habits/{habit_id}", response_model=HabitWithStats)
def update_habit(habit_id: str, habit_in: HabitPatch, store: HabitStore = Depends(get_store)):
    if habit_in.name is None and habit_in.color is None:
        raise HTTPException(400, "Nothing to update")
    if habit_in.name is not None and not habit_in.name.strip():
        raise HTTPException(400, "Habit name is required")
    store.refetch()
    if store.error:
        raise HTTPException(status_code=502, detail=store.error)
    habit = store.update_habit(habit_id, name=habit_in.name, color=habit_in.color)
    if habit is None:
        raise HTTPException(404, "Habit not found")
    return habit


@app.delete("/habits/{habit_id}", status_code=204)
def delete_habit(habit_id: str, store: HabitStore = Depends(get_store)):
    store.delete_habit(habit_id)


@app.post("/habits/{habit_id}/toggle", response_model=ToggleResult)
def toggle_habit(habit_id: str, toggle_in: Optional[ToggleRequest] = None,
                 store: HabitStore = Depends(get_store), today: date = Depends(get_today)):
    day = toggle_in.completed_date if toggle_in and toggle_in.completed_date else today
    store.refetch()
    if store.error:
        raise HTTPException(status_code=502, detail=store.error)
    if store.find(habit_id) is None:
        raise HTTPException(404, "Habit not found")

    store.toggle_habit(habit_id, day)
    habit = store.find(habit_id)
    if habit is None:
        raise HTTPException(404, "Habit not found")
    # any error here is from the refetch; the write itself went through
    return ToggleResult(**habit_card(habit, today).model_dump(), error=store.error)
