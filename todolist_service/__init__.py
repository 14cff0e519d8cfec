"""TodoList service package initialization."""

__version__ = "1.0.0"
