"""Adapters for integrating pipeaudit with storage and frameworks."""

from .memory import InMemoryEventStore
from .sqlalchemy_repo import SQLAlchemyEventStore

__all__ = ["InMemoryEventStore", "SQLAlchemyEventStore"]
