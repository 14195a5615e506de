from .orders import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, OrderWorkflow, can_transition
from .reviews import ReviewService

__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "OrderWorkflow",
    "ReviewService",
    "can_transition",
]
