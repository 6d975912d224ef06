"""Plan persistence backends."""

from .base import PlanStore
from .files import FilePlanStore
from .memory import InMemoryPlanStore

__all__ = ["PlanStore", "FilePlanStore", "InMemoryPlanStore"]
