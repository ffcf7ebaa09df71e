"""HabitFlow: habit tracking on top of a hosted Supabase backend."""

__version__ = "0.1.0"
