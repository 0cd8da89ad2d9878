"""Typed wrappers for the remote todo and authentication endpoints."""

from .auth import AuthService
from .todos import TodoService

__all__ = ["AuthService", "TodoService"]
