"""Services package initialization."""

from .todo_store import TodoStore

__all__ = ["TodoStore"]
