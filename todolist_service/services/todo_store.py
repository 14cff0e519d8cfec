"""
In-memory to-do storage. Items are lost when the service restarts.
"""

import threading
from typing import List

from todolist_service.models.todo import TodoItem


class TodoStore:
    """To-do items of all callers, partitioned by owner (the subject claim)."""

    def __init__(self) -> None:
        self._items: List[TodoItem] = []
        self._lock = threading.Lock()

    def add(self, owner: str, title: str) -> TodoItem:
        item = TodoItem(title=title, owner=owner)
        with self._lock:
            self._items.append(item)
        return item

    def list_for(self, owner: str) -> List[TodoItem]:
        with self._lock:
            return [item for item in self._items if item.owner == owner]
