"""Cadence task engine.

Tracks work items through configurable workflows, keeps their dependency
graph acyclic and derives critical path, cycle time and sprint signals from
the transition history.
"""

from cadence.config import Settings
from cadence.tasks import TaskManager

__version__ = "0.1.0"
__all__ = ["Settings", "TaskManager", "__version__"]
