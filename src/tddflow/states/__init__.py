from tddflow.states.base import FlowState, StateName
from tddflow.states.dev import DevState
from tddflow.states.idle import IdleState
from tddflow.states.plan import PlanState
from tddflow.states.review import ReviewResult, ReviewState

__all__ = [
    "DevState",
    "FlowState",
    "IdleState",
    "PlanState",
    "ReviewResult",
    "ReviewState",
    "StateName",
]
