"""
Job runners for the feedback window feature.
"""

from .feedback_watch_job import start_feedback_watch

__all__ = ["start_feedback_watch"]
