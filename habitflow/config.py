import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# ----- Palette -----
HABIT_COLORS = [
    "#10B981", "#3B82F6", "#8B5CF6", "#F59E0B", "#EF4444",
    "#06B6D4", "#84CC16", "#F97316", "#EC4899", "#6366F1",
]
DEFAULT_COLOR = HABIT_COLORS[0]


class ConfigError(RuntimeError):
    pass


class Settings(BaseModel):
    supabase_url: str
    supabase_anon_key: str
    supabase_jwt_secret: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None
    streak_workers: int = 4
    host: str = "127.0.0.1"
    port: int = 8000


def _first(environ: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from the environment.

    A `.env` file in the working directory is loaded first when reading the
    real process environment. The Vite-style variable names are accepted as
    a fallback so an existing frontend `.env` can be reused.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    url = _first(environ, "SUPABASE_URL", "VITE_SUPABASE_URL")
    anon_key = _first(environ, "SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY")
    if not url or not anon_key:
        raise ConfigError("Missing Supabase environment variables")

    values = {
        "supabase_url": url,
        "supabase_anon_key": anon_key,
        "supabase_jwt_secret": _first(environ, "SUPABASE_JWT_SECRET"),
        "log_file": _first(environ, "HABITFLOW_LOG_FILE"),
    }
    # unset knobs fall back to the model defaults
    for field, name in (
        ("log_level", "HABITFLOW_LOG_LEVEL"),
        ("streak_workers", "HABITFLOW_STREAK_WORKERS"),
        ("host", "HABITFLOW_HOST"),
        ("port", "HABITFLOW_PORT"),
    ):
        value = _first(environ, name)
        if value is not None:
            values[field] = value
    return Settings(**values)
