"""Index maintenance, execution plans and query resolution."""

from .delta import DeltaComputer, IndexDelta, IndexEntries
from .execution import (
    BodyWrite,
    ExecutionPlan,
    MixedWithCompensation,
    Pipelined,
    PlanExecutor,
    Step,
    Transactional,
    plan_for,
    steps_for,
)
from .query import Condition, Predicate, QueryResolver

__all__ = [
    "DeltaComputer",
    "IndexDelta",
    "IndexEntries",
    "BodyWrite",
    "ExecutionPlan",
    "MixedWithCompensation",
    "Pipelined",
    "PlanExecutor",
    "Step",
    "Transactional",
    "plan_for",
    "steps_for",
    "Condition",
    "Predicate",
    "QueryResolver",
]
