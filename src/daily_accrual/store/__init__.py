"""Backing store adapters for the accrual job."""

from .base import AccrualStore
from .memory import InMemoryStore
from .rest import SupabaseRestStore

__all__ = ["AccrualStore", "InMemoryStore", "SupabaseRestStore"]
