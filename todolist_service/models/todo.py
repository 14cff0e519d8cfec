"""
To-do list models.
"""

from pydantic import BaseModel, Field, field_validator


class TodoItemCreate(BaseModel):
    """Body of a new to-do item."""

    title: str = Field(..., description="What needs doing")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Reject blank titles."""
        if not v or v.strip() == "":
            raise ValueError("title must not be blank")
        return v


class TodoItem(BaseModel):
    """A stored to-do item."""

    title: str
    owner: str = Field(..., description="Subject claim of the caller who created the item")
