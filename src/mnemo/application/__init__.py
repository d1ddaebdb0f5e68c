# Application Package
from .due_selector import count_quota, deck_overview, select_due
from .session_queue import SessionStats, StudySession, build_session
from .state_machine import CardStateMachine

__all__ = [
    "CardStateMachine",
    "select_due",
    "count_quota",
    "deck_overview",
    "build_session",
    "StudySession",
    "SessionStats",
]
