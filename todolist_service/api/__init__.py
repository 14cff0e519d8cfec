"""API package initialization."""

from .dependencies import get_claims, get_current_user, get_todo_store
from .todolist import router as todolist_router

__all__ = ["get_claims", "get_current_user", "get_todo_store", "todolist_router"]
