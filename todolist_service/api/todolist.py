"""
To-do list endpoints. Each caller only ever sees the items they created.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, status

from todolist_service.api.dependencies import get_current_user, get_todo_store
from todolist_service.models import AuthenticatedUser, TodoItem, TodoItemCreate
from todolist_service.services.todo_store import TodoStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/todolist", tags=["TodoList"])


@router.get("", response_model=List[TodoItem])
async def list_todos(
    current_user: AuthenticatedUser = Depends(get_current_user),
    store: TodoStore = Depends(get_todo_store),
):
    """
    Get the caller's to-do items.

    Items are keyed off the subject claim, an immutable identifier of the caller.
    """
    return store.list_for(current_user.subject)


@router.post("", response_model=TodoItem, status_code=status.HTTP_201_CREATED)
async def create_todo(
    todo: TodoItemCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    store: TodoStore = Depends(get_todo_store),
):
    """Add an item to the caller's to-do list."""
    item = store.add(current_user.subject, todo.title)
    logger.info(f"Added to-do item for {current_user.subject}")
    return item
