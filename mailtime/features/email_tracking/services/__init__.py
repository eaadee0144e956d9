"""
Service layer for the email tracking feature.
"""

from .checkpoint_manager import CheckpointManager
from .classification import ActivityClassifier, ClassificationRule
from .history_poller import HistoryPoller, PollerState
from .session_tracker import SessionTracker
from .tracker_service import EmailActivityTracker, create_email_activity_tracker

__all__ = [
    "ActivityClassifier",
    "CheckpointManager",
    "ClassificationRule",
    "EmailActivityTracker",
    "HistoryPoller",
    "PollerState",
    "SessionTracker",
    "create_email_activity_tracker",
]
