"""Persistence backends for the vault core."""
from .abstract import AbstractStorage
from .memory import MemoryStorage
from .file import FileStorage

__all__ = ["AbstractStorage", "MemoryStorage", "FileStorage"]
