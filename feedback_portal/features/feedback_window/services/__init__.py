"""
Service layer for the feedback window feature.
"""

from .countdown import CountdownPresenter
from .reconciler import SubmissionReconciler, reconcile
from .scheduler import FeedbackScheduler, ScheduleHandle
from .session import FeedbackSession
from .state_store import FeedbackStateStore

__all__ = [
    "CountdownPresenter",
    "FeedbackScheduler",
    "FeedbackSession",
    "FeedbackStateStore",
    "ScheduleHandle",
    "SubmissionReconciler",
    "reconcile",
]
