"""
PRD session engine.

Turns a chat conversation into a product requirements document: session
persistence, stage handling, oracle turns, clarity scoring, priority
resolution, and the save/apply handoff to the issue queue.
"""

from prdwizard.pm.errors import (
    ApplyBlocked,
    ExternalServiceError,
    IncompleteDraft,
    InvalidPriority,
    InvalidQuickFormat,
    InvalidRole,
    PRDError,
    SerializationError,
    SessionNotFound,
)
from prdwizard.pm.models import PRDContext, PRDSession, PRDStory

__all__ = [
    "PRDError",
    "SessionNotFound",
    "IncompleteDraft",
    "InvalidRole",
    "InvalidPriority",
    "InvalidQuickFormat",
    "ExternalServiceError",
    "SerializationError",
    "ApplyBlocked",
    "PRDSession",
    "PRDStory",
    "PRDContext",
]
