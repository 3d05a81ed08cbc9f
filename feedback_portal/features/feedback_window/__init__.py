"""
Feedback window feature package.

Everything that decides when a meeting's feedback questions are offered
lives here: the window evaluator, the scheduler that tracks the next
meeting, the reveal/submit countdown, and the responded-set reconciler.

Only the domain layer is re-exported here; the portal client imports it.
"""

from .domain.models import MeetingRef, SessionSnapshot, WindowPhase  # noqa: F401
