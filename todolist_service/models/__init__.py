"""Models package initialization."""

from .todo import TodoItem, TodoItemCreate
from .user import AuthenticatedUser

__all__ = ["AuthenticatedUser", "TodoItem", "TodoItemCreate"]
